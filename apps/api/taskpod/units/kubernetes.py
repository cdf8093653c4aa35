"""Kubernetes pod client.

Talks to the Kubernetes REST API directly over httpx:
- POST   /api/v1/namespaces/{ns}/pods              -> create unit
- GET    /api/v1/namespaces/{ns}/pods/{name}       -> phase and timestamps
- GET    /api/v1/namespaces/{ns}/pods/{name}/log   -> captured output
- DELETE /api/v1/namespaces/{ns}/pods/{name}       -> cleanup

Connection settings come from the explicit API URL/token in Settings, or from
the in-cluster service account when no URL is configured.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx

from taskpod.config import get_settings
from taskpod.errors import UnitClientError
from taskpod.schemas import UnitHandle, UnitPhase, UnitStatus
from taskpod.units.base import ExecutionUnitClient


logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
CONTAINER_NAME = "executor"
UNIT_LABEL = "taskpod.io/execution"


def parse_k8s_time(value: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as emitted by the API server."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def build_pod_manifest(name: str, command: str, image: str) -> dict[str, Any]:
    """Single-container, never-restarted pod running ``command`` under /bin/sh."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": name,
            "labels": {UNIT_LABEL: "true"},
        },
        "spec": {
            "restartPolicy": "Never",
            "containers": [
                {
                    "name": CONTAINER_NAME,
                    "image": image,
                    "command": ["/bin/sh", "-c", command],
                }
            ],
        },
    }


def parse_pod_status(pod: dict[str, Any]) -> UnitStatus:
    status = pod.get("status") or {}
    terminated_at = None
    exit_code = None
    container_statuses = status.get("containerStatuses") or []
    if container_statuses:
        terminated = (container_statuses[0].get("state") or {}).get("terminated")
        if terminated:
            terminated_at = parse_k8s_time(terminated.get("finishedAt"))
            exit_code = terminated.get("exitCode")
    return UnitStatus(
        phase=UnitPhase.parse(status.get("phase")),
        started_at=parse_k8s_time(status.get("startTime")),
        terminated_at=terminated_at,
        exit_code=exit_code,
    )


class KubernetesPodClient(ExecutionUnitClient):
    """Execution unit client backed by Kubernetes pods."""

    def __init__(
        self,
        api_url: str | None = None,
        token: str | None = None,
        namespace: str | None = None,
        image: str | None = None,
        verify: bool | str | None = None,
        timeout: float | None = None,
        max_output_bytes: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.api_url = api_url or settings.kube_api_url or self._in_cluster_url()
        self.token = token if token is not None else (settings.kube_token or self._in_cluster_token())
        self.namespace = namespace or settings.kube_namespace
        self.image = image or settings.executor_image
        self.max_output_bytes = max_output_bytes or settings.max_output_bytes
        timeout = timeout or settings.kube_request_timeout
        if verify is None:
            verify = self.resolve_verify(settings.kube_verify_ssl, settings.kube_ca_cert)

        if not self.api_url:
            raise ValueError("Kubernetes API server not configured")

        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    @property
    def backend_name(self) -> str:
        return "kubernetes"

    @staticmethod
    def _in_cluster_url() -> str:
        host = os.getenv("KUBERNETES_SERVICE_HOST")
        port = os.getenv("KUBERNETES_SERVICE_PORT", "443")
        if not host:
            return ""
        if ":" in host:
            host = f"[{host}]"
        return f"https://{host}:{port}"

    @staticmethod
    def _in_cluster_token() -> str:
        token_file = SERVICE_ACCOUNT_DIR / "token"
        if token_file.is_file():
            return token_file.read_text().strip()
        return ""

    @staticmethod
    def resolve_verify(verify_ssl: bool, ca_cert: str | None) -> bool | str:
        if not verify_ssl:
            return False
        if ca_cert:
            return ca_cert
        in_cluster_ca = SERVICE_ACCOUNT_DIR / "ca.crt"
        if in_cluster_ca.is_file():
            return str(in_cluster_ca)
        return True

    def _pod_path(self, namespace: str, name: str = "") -> str:
        path = f"/api/v1/namespaces/{namespace}/pods"
        return f"{path}/{name}" if name else path

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UnitClientError(
                f"{method} {path} failed with {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UnitClientError(f"{method} {path} failed: {e}") from e
        return response

    async def create_unit(self, name: str, command: str) -> UnitHandle:
        manifest = build_pod_manifest(name, command, self.image)
        await self._request("POST", self._pod_path(self.namespace), json=manifest)
        logger.debug(f"Created pod {self.namespace}/{name}")
        return UnitHandle(name=name, namespace=self.namespace)

    async def get_status(self, handle: UnitHandle) -> UnitStatus:
        response = await self._request("GET", self._pod_path(handle.namespace, handle.name))
        try:
            return parse_pod_status(response.json())
        except (ValueError, TypeError, AttributeError) as e:
            raise UnitClientError(f"Malformed pod status for {handle.name}: {e}") from e

    async def get_output(self, handle: UnitHandle) -> str:
        response = await self._request(
            "GET",
            self._pod_path(handle.namespace, handle.name) + "/log",
            params={"container": CONTAINER_NAME, "limitBytes": self.max_output_bytes},
        )
        return response.text

    async def delete_unit(self, handle: UnitHandle) -> None:
        try:
            await self._request(
                "DELETE",
                self._pod_path(handle.namespace, handle.name),
                params={"gracePeriodSeconds": 0},
            )
        except UnitClientError as e:
            if e.status_code == 404:
                logger.debug(f"Pod {handle.namespace}/{handle.name} already gone")
                return
            raise

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
