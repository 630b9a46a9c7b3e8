"""Utilities for managing Kubernetes secrets."""

from __future__ import annotations

import base64
import binascii
from typing import Any

from kubernetes import client

from ..constants import FIELD_MANAGER


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    """Base64 encode secret values."""
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def decode_secret_data(data: dict[str, Any] | None) -> dict[str, str]:
    """Decode the ``data`` field of a secret.

    Values that are not valid base64 are returned as-is; bytes are decoded.
    """
    result: dict[str, str] = {}
    for key, value in (data or {}).items():
        if isinstance(value, str):
            try:
                result[key] = base64.b64decode(value, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                result[key] = value
        elif isinstance(value, bytes):
            result[key] = value.decode("utf-8")
    return result


def read_secret_data(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> dict[str, str] | None:
    """Read all data from a Kubernetes secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret

    Returns:
        Dictionary of secret data (decoded), or None if the secret does not exist
    """
    try:
        secret = api.read_namespaced_secret(name=secret_name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return None
        raise
    return decode_secret_data(secret.data)


def create_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    data: dict[str, str],
    owner_references: list[dict[str, Any]] | None = None,
    labels: dict[str, str] | None = None,
) -> None:
    """Create a Kubernetes secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace for the secret
        secret_name: Name of the secret
        data: Secret data (will be base64 encoded)
        owner_references: Owner references for the secret
        labels: Labels for the secret
    """
    secret = client.V1Secret(
        metadata=client.V1ObjectMeta(
            name=secret_name,
            namespace=namespace,
            owner_references=owner_references or [],
            labels=labels or {},
        ),
        type="Opaque",
        data=encode_secret_data(data),
    )

    api.create_namespaced_secret(
        namespace=namespace,
        body=secret,
        field_manager=FIELD_MANAGER,
    )


def patch_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
    data: dict[str, str],
) -> None:
    """Patch keys of a Kubernetes secret, leaving other keys untouched.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret
        data: Secret data to set (will be base64 encoded)
    """
    api.patch_namespaced_secret(
        name=secret_name,
        namespace=namespace,
        body={"data": encode_secret_data(data)},
        field_manager=FIELD_MANAGER,
    )


def delete_secret(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> bool:
    """Delete a Kubernetes secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret

    Returns:
        True if the secret was deleted, False if it was already absent
    """
    try:
        api.delete_namespaced_secret(name=secret_name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return False
        raise
    return True
