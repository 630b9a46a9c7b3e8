"""Watch handlers feeding ElasticsearchUser changes into the reconcile loop.

Handlers never reconcile themselves. They translate watch events into resource
keys and hand them to the serial loop stored on the operator memo.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf

from ..constants import (
    API_GROUP,
    API_VERSION,
    KIND_ELASTICSEARCH_USER,
    LABEL_MANAGED_BY,
    MANAGED_BY_VALUE,
    PLURAL_ELASTICSEARCH_USERS,
)
from ..models import ResourceKey

logger = logging.getLogger(__name__)


def owner_keys(secret: dict[str, Any]) -> list[ResourceKey]:
    """Keys of the ElasticsearchUser resources owning a Secret."""
    meta = secret.get("metadata") or {}
    namespace = meta.get("namespace", "default")
    keys = []
    for ref in meta.get("ownerReferences") or []:
        api_version = ref.get("apiVersion", "")
        if ref.get("kind") == KIND_ELASTICSEARCH_USER and api_version.split("/")[0] == API_GROUP:
            keys.append(ResourceKey(namespace=namespace, name=ref["name"]))
    return keys


def _loop(memo: Any) -> Any:
    loop = getattr(memo, "loop", None)
    if loop is None:
        logger.debug("Reconcile loop not running yet, event dropped")
    return loop


@kopf.on.event(API_GROUP, API_VERSION, PLURAL_ELASTICSEARCH_USERS)
def on_elasticsearch_user_event(
    event: dict[str, Any],
    name: str,
    namespace: str,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Enqueue a resource on every add, change and delete."""
    loop = _loop(memo)
    if loop is None:
        return
    loop.submit(ResourceKey(namespace=namespace, name=name))


@kopf.on.event("", "v1", "secrets", labels={LABEL_MANAGED_BY: MANAGED_BY_VALUE})
def on_managed_secret_event(
    event: dict[str, Any],
    body: kopf.Body,
    memo: kopf.Memo,
    **_: Any,
) -> None:
    """Enqueue the owner of a managed Secret that was edited or deleted."""
    loop = _loop(memo)
    if loop is None:
        return
    for key in owner_keys(dict(body)):
        logger.debug(f"Secret event {event.get('type')} for owner {key}")
        loop.submit(key)
