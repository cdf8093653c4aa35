"""Execution unit clients."""

from __future__ import annotations

from taskpod.config import Settings
from taskpod.units.base import ExecutionUnitClient
from taskpod.units.kubernetes import KubernetesPodClient


def create_unit_client(settings: Settings) -> ExecutionUnitClient:
    """Build the unit client described by ``settings``."""
    return KubernetesPodClient(
        api_url=settings.kube_api_url or None,
        token=settings.kube_token or None,
        namespace=settings.kube_namespace,
        image=settings.executor_image,
        verify=KubernetesPodClient.resolve_verify(settings.kube_verify_ssl, settings.kube_ca_cert),
        timeout=settings.kube_request_timeout,
        max_output_bytes=settings.max_output_bytes,
    )


__all__ = ["ExecutionUnitClient", "KubernetesPodClient", "create_unit_client"]
