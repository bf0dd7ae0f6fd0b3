"""
Run Status — Status Publisher

Turns a serialized status document into a merge patch on the aggregator
pod's annotations, and reads it back for status queries.

Usage:
    publisher = StatusPublisher(client)
    target = publisher.publish("heptio-sonobuoy", updater.serialize())

    status = get_status(client, "heptio-sonobuoy")
"""

from __future__ import annotations

import logging
import time
from typing import Any

from aggregation.locator import (
    DEFAULT_STATUS_POD_NAME,
    LocatorError,
    PodLocator,
    resolve_target_name,
)
from aggregation.types import Status
from infra.kube import KubeAPIError, PodClient

log = logging.getLogger("runstatus.publisher")

STATUS_ANNOTATION_NAME = "runstatus.io/status"


class PublishError(Exception):
    """Publishing the status failed. The cause is chained."""


class StatusNotFound(LookupError):
    """The target pod carries no status annotation."""


def get_patch(annotation: str, key: str = STATUS_ANNOTATION_NAME) -> dict[str, Any]:
    """Merge patch that sets the status annotation to annotation."""
    return {
        "metadata": {
            "annotations": {
                key: annotation,
            },
        },
    }


class StatusPublisher:
    """Applies serialized snapshots to the aggregator pod."""

    def __init__(
        self,
        client: PodClient,
        locator: PodLocator | None = None,
        annotation_key: str = STATUS_ANNOTATION_NAME,
        default_target: str = DEFAULT_STATUS_POD_NAME,
    ):
        self.client = client
        self.locator = locator or PodLocator(client)
        self.annotation_key = annotation_key
        self.default_target = default_target

    def publish(self, namespace: str, serialized: str) -> str:
        """
        Annotate the aggregator pod with serialized. Returns the pod name.

        Raises PublishError on discovery or patch failure. Never retries.
        """
        try:
            target = resolve_target_name(self.locator, namespace, self.default_target)
        except LocatorError as e:
            raise PublishError("failed to get name of the aggregator pod to annotate") from e

        patch = get_patch(serialized, self.annotation_key)
        t0 = time.time()
        try:
            self.client.patch_pod(namespace, target, patch)
        except KubeAPIError as e:
            raise PublishError(f"couldn't patch pod annotation on {namespace}/{target}") from e
        log.debug("Patched %s/%s in %.1fms", namespace, target, (time.time() - t0) * 1000)
        return target


def get_status(
    client: PodClient,
    namespace: str,
    locator: PodLocator | None = None,
    annotation_key: str = STATUS_ANNOTATION_NAME,
    default_target: str = DEFAULT_STATUS_POD_NAME,
) -> Status:
    """Read the published status document from the aggregator pod."""
    locator = locator or PodLocator(client)
    target = resolve_target_name(locator, namespace, default_target)
    pod = client.get_pod(namespace, target)
    annotations = pod.get("metadata", {}).get("annotations") or {}
    raw = annotations.get(annotation_key)
    if not raw:
        raise StatusNotFound(f"pod {namespace}/{target} has no {annotation_key!r} annotation")
    return Status.from_json(raw)
