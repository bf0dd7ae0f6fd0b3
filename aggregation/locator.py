"""
Run Status — Publication Target Discovery

Finds the aggregator pod whose annotation carries the run status.
Zero matches fall back to a fixed default name; several matches pick
the first one listed and log a warning.
"""

from __future__ import annotations

import logging

from infra.kube import KubeAPIError, PodClient

log = logging.getLogger("runstatus.locator")

STATUS_POD_LABEL = "run=runstatus-aggregator"
DEFAULT_STATUS_POD_NAME = "runstatus"


class NoTargetWithLabelError(LookupError):
    """No pod carries the aggregator label."""


class LocatorError(Exception):
    """Discovery failed for a reason other than an empty result."""


class PodLocator:
    """Locates the aggregator pod by label."""

    def __init__(self, client: PodClient, label_selector: str = STATUS_POD_LABEL):
        self.client = client
        self.label_selector = label_selector

    def locate(self, namespace: str) -> str:
        """
        Return the name of the labelled pod in namespace.

        Raises NoTargetWithLabelError when there is none and LocatorError
        when pods cannot be listed.
        """
        try:
            pods = self.client.list_pods(namespace, self.label_selector)
        except KubeAPIError as e:
            raise LocatorError(
                f"unable to list pods with label {self.label_selector!r}"
            ) from e

        if not pods:
            raise NoTargetWithLabelError(
                f"no pods found with label {self.label_selector!r} in namespace {namespace}"
            )

        name = pods[0]["metadata"]["name"]
        if len(pods) > 1:
            log.warning(
                "Found more than one pod with label %r. Using pod with name %r",
                self.label_selector, name,
            )
        return name


def resolve_target_name(
    locator: PodLocator,
    namespace: str,
    default: str = DEFAULT_STATUS_POD_NAME,
) -> str:
    """Locate the target pod, falling back to default when none is labelled."""
    try:
        return locator.locate(namespace)
    except NoTargetWithLabelError as e:
        log.warning("Aggregator pod not found, using default pod name %r: %s", default, e)
        return default
