"""Builder for the desired Elasticsearch and Secret state of an ElasticsearchUser."""

from __future__ import annotations

import re
import secrets
import string
from typing import Any

from ..constants import (
    ANNOTATION_KEEP,
    PASSWORD_LENGTH,
    ROLE_PREFIX,
    USER_METADATA,
)
from ..exceptions import ConfigurationError
from ..models import (
    DesiredState,
    IndexPrivileges,
    Permission,
    RolePolicy,
    SecretShape,
    UserDescriptor,
    UserSpec,
)

# Secret names are DNS subdomains
_SECRET_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")

_PASSWORD_CLASSES = (string.ascii_lowercase, string.ascii_uppercase, string.digits)
_PASSWORD_ALPHABET = "".join(_PASSWORD_CLASSES)


def role_name_for(username: str) -> str:
    """Name of the role owned by ``username``."""
    return f"{ROLE_PREFIX}{username}"


def parse_user_spec(body: dict[str, Any]) -> UserSpec:
    """Validate an ElasticsearchUser body and extract its UserSpec.

    Args:
        body: Full custom resource (metadata and spec)

    Returns:
        Validated UserSpec

    Raises:
        ConfigurationError: If a field is missing or invalid
    """
    meta = body.get("metadata") or {}
    spec = body.get("spec") or {}

    username = spec.get("username")
    if not isinstance(username, str) or not username.strip():
        raise ConfigurationError("spec.username must be a non-empty string")

    secret_ref = spec.get("secretRef")
    if not isinstance(secret_ref, str) or not secret_ref:
        raise ConfigurationError("spec.secretRef must be a non-empty string")
    if len(secret_ref) > 253 or not _SECRET_NAME_RE.match(secret_ref):
        raise ConfigurationError(f"spec.secretRef {secret_ref!r} is not a valid Secret name")

    prefixes = spec.get("prefixes")
    if not isinstance(prefixes, list) or not prefixes:
        raise ConfigurationError("spec.prefixes must contain at least one prefix")
    if any(not isinstance(prefix, str) or not prefix for prefix in prefixes):
        raise ConfigurationError("spec.prefixes must not contain empty values")

    permission_value = spec.get("permissions", spec.get("permission"))
    if permission_value is None:
        raise ConfigurationError("spec.permissions is required")
    permission = Permission.parse(permission_value)

    keep = str((meta.get("annotations") or {}).get(ANNOTATION_KEEP, "")).lower() == "true"

    return UserSpec(
        namespace=meta.get("namespace", "default"),
        username=username,
        secret_ref=secret_ref,
        prefixes=tuple(sorted(set(prefixes))),
        permission=permission,
        keep=keep,
    )


def build_desired_state(spec: UserSpec, elasticsearch_url: str) -> DesiredState:
    """Derive the target role, user and Secret for a UserSpec.

    Pure: the same spec and URL always produce an equal DesiredState.
    """
    role_name = role_name_for(spec.username)
    policy = RolePolicy(
        indices=(
            IndexPrivileges(
                names=tuple(f"{prefix}*" for prefix in spec.prefixes),
                privileges=spec.permission.privileges,
            ),
        )
    )
    return DesiredState(
        spec=spec,
        role_name=role_name,
        role_policy=policy,
        user=UserDescriptor(
            username=spec.username,
            roles=(role_name,),
            metadata=dict(USER_METADATA),
        ),
        secret=SecretShape(
            namespace=spec.namespace,
            name=spec.secret_ref,
            url=elasticsearch_url,
            username=spec.username,
        ),
    )


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate a random password with lower case, upper case and digits."""
    while True:
        password = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if all(any(c in chars for c in password) for chars in _PASSWORD_CLASSES):
            return password
