"""Kubernetes Secret store for generated credentials."""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from kubernetes import client

from ... import metrics
from ...exceptions import KubernetesApiError
from ...utils import secrets as secret_utils
from ...utils.errors import sanitize_exception
from ...utils.rate_limit import call_with_rate_limit_retry, k8s_limiter

_T = TypeVar("_T")


def call_kubernetes(operation: str, func: Callable[[], _T]) -> _T:
    """Issue one Kubernetes API request with rate limiting and metrics.

    Raises:
        KubernetesApiError: If the API answers with an unexpected error
    """

    def limited() -> _T:
        k8s_limiter.wait()
        return func()

    start_time = time.time()
    result = "success"
    try:
        return call_with_rate_limit_retry(limited, api_type="k8s")
    except client.exceptions.ApiException as e:
        result = "error"
        raise KubernetesApiError(operation, sanitize_exception(e), status=e.status) from e
    finally:
        metrics.api_call_total.labels(api_type="k8s", operation=operation, result=result).inc()
        metrics.api_call_duration_seconds.labels(api_type="k8s", operation=operation).observe(
            time.time() - start_time
        )


class SecretStore:
    """Reads and writes the credential Secrets of ElasticsearchUser resources."""

    def __init__(self, api: client.CoreV1Api) -> None:
        self.api = api

    def get(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the decoded data of a Secret, or None if it does not exist."""
        return call_kubernetes(
            "read_secret", lambda: secret_utils.read_secret_data(self.api, namespace, name)
        )

    def create(
        self,
        namespace: str,
        name: str,
        data: dict[str, str],
        owner_references: list[dict[str, Any]] | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        call_kubernetes(
            "create_secret",
            lambda: secret_utils.create_secret(
                self.api, namespace, name, data, owner_references=owner_references, labels=labels
            ),
        )

    def patch(self, namespace: str, name: str, data: dict[str, str]) -> None:
        call_kubernetes(
            "patch_secret", lambda: secret_utils.patch_secret(self.api, namespace, name, data)
        )

    def delete(self, namespace: str, name: str) -> bool:
        """Delete a Secret. Returns False if it was already absent."""
        return call_kubernetes(
            "delete_secret", lambda: secret_utils.delete_secret(self.api, namespace, name)
        )
