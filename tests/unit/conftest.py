"""Shared fixtures: in-memory stand-ins for Elasticsearch and the Kubernetes API."""

from __future__ import annotations

import copy
import itertools
from typing import Any
from unittest.mock import MagicMock

import pytest

from ext_elasticsearch_operator.constants import API_GROUP_VERSION, KIND_ELASTICSEARCH_USER
from ext_elasticsearch_operator.exceptions import ElasticsearchApiError, KubernetesApiError
from ext_elasticsearch_operator.reconciler.cache import ResourceCache
from ext_elasticsearch_operator.reconciler.loop import ReconcileLoop

ES_URL = "https://elastic.example:9200"


class FakeElasticsearch:
    """Security API backed by dictionaries."""

    def __init__(self) -> None:
        self.roles: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.writes: list[tuple[str, str]] = []

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise ElasticsearchApiError(operation, "connection refused")

    def get_role(self, name: str) -> dict[str, Any] | None:
        self._check("get_role")
        role = self.roles.get(name)
        return copy.deepcopy(role) if role is not None else None

    def put_role(self, name: str, indices: list[dict[str, Any]]) -> None:
        self._check("put_role")
        self.writes.append(("put_role", name))
        self.roles[name] = {
            "cluster": [],
            "indices": copy.deepcopy(indices),
            "applications": [],
            "run_as": [],
        }

    def delete_role(self, name: str) -> bool:
        self._check("delete_role")
        self.writes.append(("delete_role", name))
        return self.roles.pop(name, None) is not None

    def get_user(self, username: str) -> dict[str, Any] | None:
        self._check("get_user")
        user = self.users.get(username)
        if user is None:
            return None
        return {
            "username": username,
            "roles": list(user["roles"]),
            "metadata": dict(user["metadata"]),
            "enabled": user.get("enabled", True),
        }

    def put_user(
        self,
        username: str,
        roles: list[str],
        metadata: dict[str, Any],
        password: str | None = None,
    ) -> None:
        self._check("put_user")
        self.writes.append(("put_user", username))
        user = self.users.setdefault(username, {"password": None})
        user["roles"] = list(roles)
        user["metadata"] = dict(metadata)
        if password is not None:
            user["password"] = password

    def change_password(self, username: str, password: str) -> None:
        self._check("change_password")
        self.writes.append(("change_password", username))
        self.users[username]["password"] = password

    def delete_user(self, username: str) -> bool:
        self._check("delete_user")
        self.writes.append(("delete_user", username))
        return self.users.pop(username, None) is not None

    def authenticate(self, username: str, password: str) -> bool:
        self._check("authenticate")
        user = self.users.get(username)
        return user is not None and user.get("enabled", True) and user["password"] == password


class FakeSecretStore:
    """Secret store backed by a dictionary keyed by (namespace, name)."""

    def __init__(self) -> None:
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.writes: list[tuple[str, str]] = []

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise KubernetesApiError(operation, "Internal Server Error", status=500)

    def get(self, namespace: str, name: str) -> dict[str, str] | None:
        self._check("get")
        secret = self.secrets.get((namespace, name))
        return dict(secret["data"]) if secret is not None else None

    def create(
        self,
        namespace: str,
        name: str,
        data: dict[str, str],
        owner_references: list[dict[str, Any]] | None = None,
        labels: dict[str, str] | None = None,
    ) -> None:
        self._check("create")
        if (namespace, name) in self.secrets:
            raise KubernetesApiError("create_secret", "AlreadyExists", status=409)
        self.writes.append(("create", name))
        self.secrets[(namespace, name)] = {
            "data": dict(data),
            "owner_references": owner_references,
            "labels": labels,
        }

    def patch(self, namespace: str, name: str, data: dict[str, str]) -> None:
        self._check("patch")
        self.writes.append(("patch", name))
        self.secrets[(namespace, name)]["data"].update(data)

    def delete(self, namespace: str, name: str) -> bool:
        self._check("delete")
        self.writes.append(("delete", name))
        return self.secrets.pop((namespace, name), None) is not None

    def data(self, namespace: str, name: str) -> dict[str, str]:
        return self.secrets[(namespace, name)]["data"]


class FakeResourceClient:
    """ElasticsearchUser API with API server finalizer semantics."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.status_writes = 0
        self._uids = itertools.count(1)
        self._versions = itertools.count(1)

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise KubernetesApiError(operation, "Internal Server Error", status=500)

    def _bump(self, body: dict[str, Any]) -> None:
        body["metadata"]["resourceVersion"] = str(next(self._versions))

    def add(
        self,
        name: str,
        username: str,
        secret_ref: str,
        prefixes: list[str] | None = None,
        permissions: str = "Read",
        namespace: str = "default",
        annotations: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a resource as the API server would store it."""
        n = next(self._uids)
        body = {
            "apiVersion": API_GROUP_VERSION,
            "kind": KIND_ELASTICSEARCH_USER,
            "metadata": {
                "name": name,
                "namespace": namespace,
                "uid": f"uid-{n}",
                "generation": 1,
                "creationTimestamp": f"2024-01-01T00:00:{n:02d}Z",
                "annotations": annotations or {},
            },
            "spec": {
                "username": username,
                "secretRef": secret_ref,
                "prefixes": prefixes if prefixes is not None else ["logs"],
                "permissions": permissions,
            },
        }
        self._bump(body)
        self.objects[(namespace, name)] = body
        return copy.deepcopy(body)

    def update_spec(self, name: str, namespace: str = "default", **spec: Any) -> None:
        body = self.objects[(namespace, name)]
        body["spec"].update(spec)
        body["metadata"]["generation"] += 1
        self._bump(body)

    def request_delete(self, name: str, namespace: str = "default") -> None:
        """Delete: immediate without finalizers, otherwise only marked."""
        body = self.objects[(namespace, name)]
        if body["metadata"].get("finalizers"):
            body["metadata"]["deletionTimestamp"] = "2024-01-02T00:00:00Z"
            self._bump(body)
        else:
            del self.objects[(namespace, name)]

    def stored(self, name: str, namespace: str = "default") -> dict[str, Any] | None:
        return self.objects.get((namespace, name))

    def get(self, namespace: str, name: str) -> dict[str, Any] | None:
        self._check("get")
        body = self.objects.get((namespace, name))
        return copy.deepcopy(body) if body is not None else None

    def list_all(self) -> list[dict[str, Any]]:
        self._check("list_all")
        return [copy.deepcopy(body) for body in self.objects.values()]

    def patch_finalizers(
        self,
        namespace: str,
        name: str,
        finalizers: list[str] | None,
        resource_version: str | None = None,
    ) -> dict[str, Any]:
        self._check("patch_finalizers")
        body = self.objects[(namespace, name)]
        body["metadata"]["finalizers"] = list(finalizers or [])
        self._bump(body)
        if body["metadata"].get("deletionTimestamp") and not finalizers:
            del self.objects[(namespace, name)]
        return copy.deepcopy(body)

    def patch_status(self, namespace: str, name: str, status: dict[str, Any]) -> dict[str, Any]:
        self._check("patch_status")
        body = self.objects[(namespace, name)]
        body["status"] = copy.deepcopy(status)
        self.status_writes += 1
        return copy.deepcopy(body)


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture
def fake_secrets() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def fake_resources() -> FakeResourceClient:
    return FakeResourceClient()


@pytest.fixture
def recorder() -> MagicMock:
    return MagicMock()


@pytest.fixture
def loop(fake_resources, fake_es, fake_secrets, recorder) -> ReconcileLoop:
    return ReconcileLoop(
        resources=fake_resources,
        elasticsearch=fake_es,
        secrets=fake_secrets,
        cache=ResourceCache(),
        elasticsearch_url=ES_URL,
        recorder=recorder,
    )
