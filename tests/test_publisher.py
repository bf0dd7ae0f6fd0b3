"""Tests for target discovery, patch construction and status read-back."""

import json
import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from aggregation.locator import (
    DEFAULT_STATUS_POD_NAME, LocatorError, NoTargetWithLabelError, PodLocator,
    resolve_target_name,
)
from aggregation.publisher import (
    STATUS_ANNOTATION_NAME, PublishError, StatusNotFound, StatusPublisher,
    get_patch, get_status,
)
from aggregation.types import UnitState
from infra.kube import InMemoryPodClient, KubeAPIError

NS = "heptio-sonobuoy"
LABELS = {"run": "runstatus-aggregator"}


class _BrokenListClient(InMemoryPodClient):
    def list_pods(self, namespace, label_selector=""):
        raise KubeAPIError("apiserver unavailable", status_code=503)


class TestGetPatch(unittest.TestCase):

    def test_shape(self):
        self.assertEqual(get_patch('{"status":"running"}'), {
            "metadata": {"annotations": {STATUS_ANNOTATION_NAME: '{"status":"running"}'}},
        })

    def test_custom_key(self):
        patch = get_patch("x", key="example.com/status")
        self.assertEqual(patch["metadata"]["annotations"], {"example.com/status": "x"})


class TestPodLocator(unittest.TestCase):

    def setUp(self):
        self.client = InMemoryPodClient()

    def test_single_match(self):
        self.client.add_pod(NS, "agg-1", labels=LABELS)
        self.client.add_pod(NS, "worker", labels={"run": "worker"})
        self.assertEqual(PodLocator(self.client).locate(NS), "agg-1")

    def test_other_namespace_ignored(self):
        self.client.add_pod("elsewhere", "agg-1", labels=LABELS)
        with self.assertRaises(NoTargetWithLabelError):
            PodLocator(self.client).locate(NS)

    def test_multiple_matches_pick_first_and_warn(self):
        self.client.add_pod(NS, "agg-1", labels=LABELS)
        self.client.add_pod(NS, "agg-2", labels=LABELS)
        with self.assertLogs("runstatus.locator", level="WARNING") as cm:
            name = PodLocator(self.client).locate(NS)
        self.assertEqual(name, "agg-1")
        self.assertIn("more than one pod", cm.output[0])

    def test_list_failure(self):
        with self.assertRaises(LocatorError) as ctx:
            PodLocator(_BrokenListClient()).locate(NS)
        self.assertIsInstance(ctx.exception.__cause__, KubeAPIError)

    def test_custom_selector(self):
        self.client.add_pod(NS, "custom", labels={"app": "status", "tier": "ctl"})
        locator = PodLocator(self.client, label_selector="app=status,tier=ctl")
        self.assertEqual(locator.locate(NS), "custom")


class TestResolveTargetName(unittest.TestCase):

    def test_falls_back_to_default(self):
        with self.assertLogs("runstatus.locator", level="WARNING"):
            name = resolve_target_name(PodLocator(InMemoryPodClient()), NS)
        self.assertEqual(name, DEFAULT_STATUS_POD_NAME)

    def test_custom_default(self):
        name = resolve_target_name(PodLocator(InMemoryPodClient()), NS, default="fallback")
        self.assertEqual(name, "fallback")

    def test_hard_failure_propagates(self):
        with self.assertRaises(LocatorError):
            resolve_target_name(PodLocator(_BrokenListClient()), NS)


class TestStatusPublisher(unittest.TestCase):

    def test_publish_patches_annotation(self):
        client = InMemoryPodClient()
        client.add_pod(NS, "agg", labels=LABELS)
        target = StatusPublisher(client).publish(NS, '{"status":"running"}')
        self.assertEqual(target, "agg")
        self.assertEqual(client.patches, [(NS, "agg", get_patch('{"status":"running"}'))])

    def test_publish_preserves_other_annotations(self):
        client = InMemoryPodClient()
        client.add_pod(NS, "agg", labels=LABELS)
        client.patch_pod(NS, "agg", {"metadata": {"annotations": {"owner": "ops"}}})
        StatusPublisher(client).publish(NS, "{}")
        annotations = client.get_pod(NS, "agg")["metadata"]["annotations"]
        self.assertEqual(annotations["owner"], "ops")
        self.assertEqual(annotations[STATUS_ANNOTATION_NAME], "{}")

    def test_missing_default_pod_is_publish_error(self):
        client = InMemoryPodClient()
        with self.assertRaises(PublishError) as ctx:
            StatusPublisher(client).publish(NS, "{}")
        self.assertEqual(ctx.exception.__cause__.status_code, 404)

    def test_discovery_error_is_publish_error(self):
        with self.assertRaises(PublishError) as ctx:
            StatusPublisher(_BrokenListClient()).publish(NS, "{}")
        self.assertIsInstance(ctx.exception.__cause__, LocatorError)


class TestGetStatus(unittest.TestCase):

    def test_reads_published_document(self):
        client = InMemoryPodClient()
        client.add_pod(NS, "agg", labels=LABELS)
        doc = {"plugins": [{"plugin": "e2e", "node": "global", "status": "complete"}],
               "status": "complete"}
        StatusPublisher(client).publish(NS, json.dumps(doc))

        status = get_status(client, NS)
        self.assertEqual(status.status, UnitState.COMPLETE)
        self.assertEqual(status.plugins[0].plugin, "e2e")

    def test_missing_annotation(self):
        client = InMemoryPodClient()
        client.add_pod(NS, DEFAULT_STATUS_POD_NAME)
        with self.assertRaises(StatusNotFound):
            get_status(client, NS)


if __name__ == "__main__":
    unittest.main()
