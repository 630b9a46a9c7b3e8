"""Data model for ElasticsearchUser reconciliation."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .constants import SECRET_PASSWORD, SECRET_URL, SECRET_USERNAME
from .exceptions import ConfigurationError


class Permission(enum.IntEnum):
    """Permission level of a user on its index prefixes.

    Ordered: each level's privilege list is a superset of the level below.
    """

    READ = 1
    WRITE = 2
    CREATE = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def privileges(self) -> tuple[str, ...]:
        return PRIVILEGES[self]

    @classmethod
    def parse(cls, value: Any) -> Permission:
        """Parse the CRD spelling ("Read", "Write", "Create").

        Raises:
            ConfigurationError: If the value is not a known permission
        """
        for member in cls:
            if value == member.label:
                return member
        raise ConfigurationError(
            f"unknown permission {value!r}, expected one of Read, Write, Create"
        )


PRIVILEGES: dict[Permission, tuple[str, ...]] = {
    Permission.READ: ("read",),
    Permission.WRITE: ("read", "write"),
    Permission.CREATE: ("read", "write", "create"),
}


class FinalizerState(enum.Enum):
    """Deletion lifecycle of a custom resource."""

    ACTIVE = "Active"
    DELETING = "Deleting"
    FINALIZED = "Finalized"


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Namespace and name of a custom resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class UserSpec:
    """Validated spec of an ElasticsearchUser resource."""

    namespace: str
    username: str
    secret_ref: str
    prefixes: tuple[str, ...]
    permission: Permission
    keep: bool = False


@dataclass(frozen=True)
class IndexPrivileges:
    """Privileges granted on a set of index patterns."""

    names: tuple[str, ...]
    privileges: tuple[str, ...]

    def to_api(self) -> dict[str, list[str]]:
        return {"names": list(self.names), "privileges": list(self.privileges)}


@dataclass(frozen=True)
class RolePolicy:
    """Index privileges of an Elasticsearch role."""

    indices: tuple[IndexPrivileges, ...]

    def to_api(self) -> list[dict[str, list[str]]]:
        return [entry.to_api() for entry in self.indices]

    def normalized(self) -> frozenset[tuple[frozenset[str], frozenset[str]]]:
        """Order-insensitive form used for comparison."""
        return frozenset(
            (frozenset(entry.names), frozenset(entry.privileges)) for entry in self.indices
        )

    def matches(self, other: RolePolicy) -> bool:
        return self.normalized() == other.normalized()

    @classmethod
    def from_api(cls, role: dict[str, Any]) -> RolePolicy:
        """Build a policy from a role returned by the security API."""
        return cls(
            indices=tuple(
                IndexPrivileges(
                    names=tuple(entry.get("names") or ()),
                    privileges=tuple(entry.get("privileges") or ()),
                )
                for entry in role.get("indices") or ()
            )
        )


@dataclass(frozen=True)
class UserDescriptor:
    """Attributes of the Elasticsearch user, excluding its password."""

    username: str
    roles: tuple[str, ...]
    metadata: dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class SecretShape:
    """Target Secret without its credential."""

    namespace: str
    name: str
    url: str
    username: str

    def render(self, password: str) -> dict[str, str]:
        return {
            SECRET_URL: self.url,
            SECRET_USERNAME: self.username,
            SECRET_PASSWORD: password,
        }


@dataclass(frozen=True)
class DesiredState:
    """Target role, user and Secret derived from a UserSpec."""

    spec: UserSpec
    role_name: str
    role_policy: RolePolicy
    user: UserDescriptor
    secret: SecretShape

    @property
    def username(self) -> str:
        return self.user.username


@dataclass
class ObservedState:
    """Current Elasticsearch and Secret state for one resource."""

    role_exists: bool = False
    role_policy_matches: bool = False
    user_exists: bool = False
    user_roles_match: bool = False
    user_enabled: bool = True
    secret_exists: bool = False
    secret_password: str | None = field(default=None, repr=False)
    secret_url: str | None = None
    secret_username: str | None = None
    # None when no probe was made (no user, a disabled user or no stored password)
    login_succeeds: bool | None = None


@dataclass
class CachedResourceRecord:
    """Loop-owned bookkeeping for one tracked resource."""

    uid: str
    key: ResourceKey
    username: str
    secret_ref: str
    generation: int = 0
    resource_version: str | None = None
    finalizer_present: bool = False
    last_reconciled_at: datetime | None = None
    # Last desired state that reconciled successfully
    desired_state: DesiredState | None = None
    # Every username and Secret indexed to this record, previous identities included
    held_usernames: set[str] = field(default_factory=set)
    held_secrets: set[tuple[str, str]] = field(default_factory=set)

    @property
    def secret_key(self) -> tuple[str, str]:
        return (self.key.namespace, self.secret_ref)
