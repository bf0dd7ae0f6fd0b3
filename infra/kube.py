"""
Run Status — Pod API Client

Minimal client for the three pod operations the aggregator needs:
list by label, get by name, and JSON merge patch.

The interface is transport-agnostic:
  - KubeClient:        HTTP against the API server (httpx)
  - InMemoryPodClient: dev/test, same process
"""

from __future__ import annotations

import abc
import copy
import logging
import os
import threading
from typing import Any

import httpx

logger = logging.getLogger("runstatus.kube")

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class KubeAPIError(Exception):
    """Raised when the pod API rejects a request or cannot be reached."""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PodClient(abc.ABC):
    """Pod operations used by the locator and the publisher."""

    @abc.abstractmethod
    def list_pods(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        """Return pod objects in namespace matching label_selector."""

    @abc.abstractmethod
    def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        """Return one pod object. Raises KubeAPIError(404) when absent."""

    @abc.abstractmethod
    def patch_pod(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply a JSON merge patch and return the updated pod."""


# ═══════════════════════════════════════════════════════════════════
# HTTP client
# ═══════════════════════════════════════════════════════════════════

class KubeClient(PodClient):
    """Pod API client over HTTP."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        verify: bool | str = True,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.verify = verify
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def in_cluster(
        cls,
        token_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/token",
        ca_path: str = "/var/run/secrets/kubernetes.io/serviceaccount/ca.crt",
        timeout: float = 10.0,
    ) -> KubeClient:
        """Build a client from the service account mounted into the pod."""
        host = os.environ.get("KUBERNETES_SERVICE_HOST")
        port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            raise KubeAPIError("KUBERNETES_SERVICE_HOST is not set; not running in a cluster")
        with open(token_path) as f:
            token = f.read().strip()
        verify: bool | str = ca_path if os.path.exists(ca_path) else True
        return cls(f"https://{host}:{port}", token=token, verify=verify, timeout=timeout)

    def _headers(self, content_type: str = "application/json") -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": content_type}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _client(self) -> httpx.Client:
        if self._transport is not None:
            return httpx.Client(transport=self._transport, timeout=self.timeout)
        return httpx.Client(verify=self.verify, timeout=self.timeout)

    def _request(self, method: str, path: str, content_type: str = "application/json",
                 **kwargs) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            with self._client() as client:
                resp = client.request(method, url, headers=self._headers(content_type), **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise KubeAPIError(
                f"{method} {path} returned {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise KubeAPIError(f"{method} {path} failed: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise KubeAPIError(
                f"{method} {path} returned non-JSON body", status_code=resp.status_code,
            ) from e

    def list_pods(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        params = {"labelSelector": label_selector} if label_selector else {}
        body = self._request("GET", f"/api/v1/namespaces/{namespace}/pods", params=params)
        return body.get("items") or []

    def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        return self._request("GET", f"/api/v1/namespaces/{namespace}/pods/{name}")

    def patch_pod(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "PATCH", f"/api/v1/namespaces/{namespace}/pods/{name}",
            content_type=MERGE_PATCH_CONTENT_TYPE, json=patch,
        )


# ═══════════════════════════════════════════════════════════════════
# In-memory client
# ═══════════════════════════════════════════════════════════════════

def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386). Returns a new object."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


def _matches(labels: dict[str, str], selector: str) -> bool:
    """Equality-based selectors only: "a=b,c=d"."""
    for term in filter(None, (t.strip() for t in selector.split(","))):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class InMemoryPodClient(PodClient):
    """Thread-safe pod store for development and tests."""

    def __init__(self):
        self._pods: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.patches: list[tuple[str, str, dict[str, Any]]] = []

    def add_pod(self, namespace: str, name: str,
                labels: dict[str, str] | None = None) -> dict[str, Any]:
        pod = {
            "metadata": {
                "name": name,
                "namespace": namespace,
                "labels": dict(labels or {}),
                "annotations": {},
            }
        }
        with self._lock:
            self._pods[(namespace, name)] = pod
        return copy.deepcopy(pod)

    def list_pods(self, namespace: str, label_selector: str = "") -> list[dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(pod) for (ns, _), pod in self._pods.items()
                if ns == namespace and _matches(pod["metadata"].get("labels", {}), label_selector)
            ]

    def get_pod(self, namespace: str, name: str) -> dict[str, Any]:
        with self._lock:
            pod = self._pods.get((namespace, name))
            if pod is None:
                raise KubeAPIError(f'pods "{name}" not found', status_code=404)
            return copy.deepcopy(pod)

    def patch_pod(self, namespace: str, name: str, patch: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            pod = self._pods.get((namespace, name))
            if pod is None:
                raise KubeAPIError(f'pods "{name}" not found', status_code=404)
            self._pods[(namespace, name)] = merge_patch(pod, patch)
            self.patches.append((namespace, name, copy.deepcopy(patch)))
            return copy.deepcopy(self._pods[(namespace, name)])
