"""Access to ElasticsearchUser custom resources."""

from __future__ import annotations

from typing import Any

from kubernetes import client

from ...constants import API_GROUP, API_VERSION, PLURAL_ELASTICSEARCH_USERS
from ...exceptions import KubernetesApiError
from .secret_store import call_kubernetes


class ElasticsearchUserClient:
    """CustomObjectsApi wrapper for the ElasticsearchUser kind."""

    def __init__(self, api: client.CustomObjectsApi, namespace: str | None = None) -> None:
        """Initialize the client.

        Args:
            api: Kubernetes custom objects API
            namespace: Restrict listing to one namespace (None lists all namespaces)
        """
        self.api = api
        self.namespace = namespace

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Fetch one resource, or None if it no longer exists."""
        try:
            return call_kubernetes(
                "get_elasticsearchuser",
                lambda: self.api.get_namespaced_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    namespace=namespace,
                    plural=PLURAL_ELASTICSEARCH_USERS,
                    name=name,
                ),
            )
        except KubernetesApiError as e:
            if e.status == 404:
                return None
            raise

    def list_all(self) -> list[dict[str, Any]]:
        """List all watched resources."""
        if self.namespace:
            response = call_kubernetes(
                "list_elasticsearchusers",
                lambda: self.api.list_namespaced_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    namespace=self.namespace,
                    plural=PLURAL_ELASTICSEARCH_USERS,
                ),
            )
        else:
            response = call_kubernetes(
                "list_elasticsearchusers",
                lambda: self.api.list_cluster_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    plural=PLURAL_ELASTICSEARCH_USERS,
                ),
            )
        return list(response.get("items", []))

    def patch_finalizers(
        self,
        namespace: str,
        name: str,
        finalizers: list[str] | None,
        resource_version: str | None = None,
    ) -> dict[str, Any]:
        """Replace the finalizer list of a resource.

        The resourceVersion guards against overwriting a concurrent change.
        """
        metadata: dict[str, Any] = {"finalizers": finalizers}
        if resource_version:
            metadata["resourceVersion"] = resource_version
        return call_kubernetes(
            "patch_finalizers",
            lambda: self.api.patch_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=PLURAL_ELASTICSEARCH_USERS,
                name=name,
                body={"metadata": metadata},
            ),
        )

    def patch_status(self, namespace: str, name: str, status: dict[str, Any]) -> dict[str, Any]:
        return call_kubernetes(
            "patch_status",
            lambda: self.api.patch_namespaced_custom_object_status(
                group=API_GROUP,
                version=API_VERSION,
                namespace=namespace,
                plural=PLURAL_ELASTICSEARCH_USERS,
                name=name,
                body={"status": status},
            ),
        )
