"""Tests for the pod API clients. HTTP runs through httpx.MockTransport."""

import json
import os
import sys
import tempfile
import unittest
from unittest import mock

import httpx

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from infra.kube import (
    MERGE_PATCH_CONTENT_TYPE, InMemoryPodClient, KubeAPIError, KubeClient, merge_patch,
)

BASE = "https://apiserver.test:6443"


def _pod(name, labels=None):
    return {"metadata": {"name": name, "labels": labels or {}, "annotations": {}}}


class TestKubeClient(unittest.TestCase):

    def setUp(self):
        self.requests = []

    def _client(self, handler, token="secret"):
        def recording(request):
            self.requests.append(request)
            return handler(request)
        return KubeClient(BASE, token=token, transport=httpx.MockTransport(recording))

    def test_list_pods_sends_selector(self):
        client = self._client(lambda r: httpx.Response(200, json={"items": [_pod("agg")]}))
        pods = client.list_pods("ns1", "run=runstatus-aggregator")

        self.assertEqual([p["metadata"]["name"] for p in pods], ["agg"])
        req = self.requests[0]
        self.assertEqual(req.method, "GET")
        self.assertEqual(req.url.path, "/api/v1/namespaces/ns1/pods")
        self.assertEqual(req.url.params["labelSelector"], "run=runstatus-aggregator")
        self.assertEqual(req.headers["Authorization"], "Bearer secret")

    def test_list_pods_empty(self):
        client = self._client(lambda r: httpx.Response(200, json={"items": None}))
        self.assertEqual(client.list_pods("ns1"), [])
        self.assertNotIn("labelSelector", self.requests[0].url.params)

    def test_patch_uses_merge_patch(self):
        client = self._client(lambda r: httpx.Response(200, json=_pod("agg")))
        patch = {"metadata": {"annotations": {"k": "v"}}}
        client.patch_pod("ns1", "agg", patch)

        req = self.requests[0]
        self.assertEqual(req.method, "PATCH")
        self.assertEqual(req.url.path, "/api/v1/namespaces/ns1/pods/agg")
        self.assertEqual(req.headers["Content-Type"], MERGE_PATCH_CONTENT_TYPE)
        self.assertEqual(json.loads(req.content), patch)

    def test_no_token_no_auth_header(self):
        client = self._client(lambda r: httpx.Response(200, json=_pod("agg")), token="")
        client.get_pod("ns1", "agg")
        self.assertNotIn("Authorization", self.requests[0].headers)

    def test_http_error_carries_status(self):
        client = self._client(lambda r: httpx.Response(404, text="pods \"agg\" not found"))
        with self.assertRaises(KubeAPIError) as ctx:
            client.get_pod("ns1", "agg")
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertIn("404", str(ctx.exception))

    def test_transport_error_wrapped(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)
        client = self._client(boom)
        with self.assertRaises(KubeAPIError) as ctx:
            client.list_pods("ns1")
        self.assertIsNone(ctx.exception.status_code)
        self.assertIsInstance(ctx.exception.__cause__, httpx.ConnectError)

    def test_non_json_body_wrapped(self):
        client = self._client(lambda r: httpx.Response(200, text="<html>ok</html>"))
        with self.assertRaises(KubeAPIError) as ctx:
            client.patch_pod("ns1", "agg", {"metadata": {"annotations": {"k": "v"}}})
        self.assertIn("non-JSON body", str(ctx.exception))
        self.assertEqual(ctx.exception.status_code, 200)
        self.assertIsInstance(ctx.exception.__cause__, ValueError)


class TestInCluster(unittest.TestCase):

    def test_requires_service_host(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(KubeAPIError):
                KubeClient.in_cluster()

    def test_reads_token(self):
        with tempfile.TemporaryDirectory() as tmp:
            token_path = os.path.join(tmp, "token")
            with open(token_path, "w") as f:
                f.write("tok123\n")
            env = {"KUBERNETES_SERVICE_HOST": "10.0.0.1", "KUBERNETES_SERVICE_PORT": "8443"}
            with mock.patch.dict(os.environ, env, clear=True):
                client = KubeClient.in_cluster(
                    token_path=token_path, ca_path=os.path.join(tmp, "missing.crt"),
                )
        self.assertEqual(client.base_url, "https://10.0.0.1:8443")
        self.assertEqual(client.token, "tok123")
        self.assertIs(client.verify, True)


class TestMergePatch(unittest.TestCase):

    def test_nested_merge(self):
        target = {"metadata": {"name": "a", "annotations": {"x": "1"}}}
        out = merge_patch(target, {"metadata": {"annotations": {"y": "2"}}})
        self.assertEqual(out["metadata"]["annotations"], {"x": "1", "y": "2"})
        self.assertEqual(out["metadata"]["name"], "a")
        self.assertEqual(target["metadata"]["annotations"], {"x": "1"})

    def test_null_removes(self):
        out = merge_patch({"a": 1, "b": 2}, {"a": None})
        self.assertEqual(out, {"b": 2})

    def test_non_dict_replaces(self):
        self.assertEqual(merge_patch({"a": [1, 2]}, {"a": [3]}), {"a": [3]})


class TestInMemoryPodClient(unittest.TestCase):

    def test_get_missing(self):
        with self.assertRaises(KubeAPIError) as ctx:
            InMemoryPodClient().get_pod("ns", "nope")
        self.assertEqual(ctx.exception.status_code, 404)

    def test_returned_pods_are_copies(self):
        client = InMemoryPodClient()
        client.add_pod("ns", "agg")
        pod = client.get_pod("ns", "agg")
        pod["metadata"]["annotations"]["x"] = "y"
        self.assertEqual(client.get_pod("ns", "agg")["metadata"]["annotations"], {})


if __name__ == "__main__":
    unittest.main()
