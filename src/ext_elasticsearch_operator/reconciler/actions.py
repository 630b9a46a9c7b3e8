"""Corrective actions and their execution against the backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Union

from .. import metrics
from ..exceptions import TransientBackendError
from ..services.elasticsearch.base import ElasticsearchAdmin
from ..services.kubernetes.secret_store import SecretStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PutRole:
    name: str
    indices: list[dict[str, Any]] = field(hash=False)


@dataclass(frozen=True)
class PutUser:
    """Create a user with its password."""

    username: str
    roles: tuple[str, ...]
    metadata: dict[str, str] = field(hash=False)
    password: str = field(repr=False, default="")


@dataclass(frozen=True)
class UpdateUser:
    """Correct the roles of an existing user, keeping its password."""

    username: str
    roles: tuple[str, ...]
    metadata: dict[str, str] = field(hash=False)


@dataclass(frozen=True)
class ResetPassword:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class CreateSecret:
    namespace: str
    name: str
    data: dict[str, str] = field(repr=False, hash=False)
    owner_references: list[dict[str, Any]] | None = field(default=None, hash=False)
    labels: dict[str, str] | None = field(default=None, hash=False)


@dataclass(frozen=True)
class PatchSecret:
    """Set some keys of an existing Secret."""

    namespace: str
    name: str
    data: dict[str, str] = field(repr=False, hash=False)


@dataclass(frozen=True)
class DeleteRole:
    name: str


@dataclass(frozen=True)
class DeleteUser:
    username: str


@dataclass(frozen=True)
class DeleteSecret:
    namespace: str
    name: str


Action = Union[
    PutRole,
    PutUser,
    UpdateUser,
    ResetPassword,
    CreateSecret,
    PatchSecret,
    DeleteRole,
    DeleteUser,
    DeleteSecret,
]


def describe(action: Action) -> str:
    """Short human readable description, free of credentials."""
    if isinstance(action, PutRole):
        return f"applied role {action.name}"
    if isinstance(action, PutUser):
        return f"created user {action.username}"
    if isinstance(action, UpdateUser):
        return f"updated roles of user {action.username}"
    if isinstance(action, ResetPassword):
        return f"reset password of user {action.username}"
    if isinstance(action, CreateSecret):
        return f"created secret {action.name}"
    if isinstance(action, PatchSecret):
        return f"patched {', '.join(sorted(action.data))} of secret {action.name}"
    if isinstance(action, DeleteRole):
        return f"deleted role {action.name}"
    if isinstance(action, DeleteUser):
        return f"deleted user {action.username}"
    return f"deleted secret {action.name}"


class ActionExecutor:
    """Applies actions to Elasticsearch and the Secret store."""

    def __init__(self, elasticsearch: ElasticsearchAdmin, secrets: SecretStore) -> None:
        self.elasticsearch = elasticsearch
        self.secrets = secrets
        self._handlers: dict[type, Callable[[Any], bool]] = {
            PutRole: self._put_role,
            PutUser: self._put_user,
            UpdateUser: self._update_user,
            ResetPassword: self._reset_password,
            CreateSecret: self._create_secret,
            PatchSecret: self._patch_secret,
            DeleteRole: self._delete_role,
            DeleteUser: self._delete_user,
            DeleteSecret: self._delete_secret,
        }

    def apply(self, action: Action) -> bool:
        """Apply one action.

        Returns:
            False when a deletion found nothing to delete, True otherwise
        """
        operation = type(action).__name__
        counter = (
            metrics.secret_operations_total
            if isinstance(action, (CreateSecret, PatchSecret, DeleteSecret))
            else metrics.elasticsearch_operations_total
        )
        try:
            changed = self._handlers[type(action)](action)
        except TransientBackendError:
            counter.labels(operation=operation, result="error").inc()
            raise
        counter.labels(operation=operation, result="success" if changed else "absent").inc()
        logger.debug(describe(action))
        return changed

    def apply_all(self, actions: list[Action]) -> list[Action]:
        """Apply actions in order, stopping at the first failure.

        Returns:
            The actions that were applied
        """
        applied = []
        for action in actions:
            self.apply(action)
            applied.append(action)
        return applied

    def _put_role(self, action: PutRole) -> bool:
        self.elasticsearch.put_role(action.name, action.indices)
        return True

    def _put_user(self, action: PutUser) -> bool:
        self.elasticsearch.put_user(
            action.username, list(action.roles), action.metadata, password=action.password
        )
        return True

    def _update_user(self, action: UpdateUser) -> bool:
        self.elasticsearch.put_user(action.username, list(action.roles), action.metadata)
        return True

    def _reset_password(self, action: ResetPassword) -> bool:
        self.elasticsearch.change_password(action.username, action.password)
        return True

    def _create_secret(self, action: CreateSecret) -> bool:
        self.secrets.create(
            action.namespace,
            action.name,
            action.data,
            owner_references=action.owner_references,
            labels=action.labels,
        )
        return True

    def _patch_secret(self, action: PatchSecret) -> bool:
        self.secrets.patch(action.namespace, action.name, action.data)
        return True

    def _delete_role(self, action: DeleteRole) -> bool:
        return self.elasticsearch.delete_role(action.name)

    def _delete_user(self, action: DeleteUser) -> bool:
        return self.elasticsearch.delete_user(action.username)

    def _delete_secret(self, action: DeleteSecret) -> bool:
        return self.secrets.delete(action.namespace, action.name)
