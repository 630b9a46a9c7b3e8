"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from kubernetes import client

from ..constants import MANAGED_BY_VALUE
from .errors import sanitize_exception

logger = logging.getLogger(__name__)


class EventRecorder:
    """Posts core/v1 Events against custom resources.

    Events are informational, so a failure to post one is logged and dropped.
    """

    def __init__(self, api: client.CoreV1Api, component: str = MANAGED_BY_VALUE) -> None:
        self.api = api
        self.component = component

    def emit(
        self,
        body: dict[str, Any],
        reason: str,
        message: str,
        type_: str = "Normal",
    ) -> None:
        """Emit a Kubernetes event.

        Args:
            body: The involved resource (apiVersion, kind and metadata are used)
            reason: Event reason
            message: Event message
            type_: Event type (Normal or Warning)
        """
        meta = body.get("metadata", {})
        namespace = meta.get("namespace", "default")
        now = datetime.now(timezone.utc)

        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{meta.get('name', 'unknown')}.",
                namespace=namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=body.get("apiVersion"),
                kind=body.get("kind"),
                name=meta.get("name"),
                namespace=namespace,
                uid=meta.get("uid"),
                resource_version=meta.get("resourceVersion"),
            ),
            reason=reason,
            message=message[:1024],
            type=type_,
            count=1,
            first_timestamp=now,
            last_timestamp=now,
            source=client.V1EventSource(component=self.component),
        )

        try:
            self.api.create_namespaced_event(namespace=namespace, body=event)
        except Exception as e:
            logger.warning(f"Failed to post event {reason} for {namespace}/{meta.get('name')}: {sanitize_exception(e)}")

    def warning(self, body: dict[str, Any], reason: str, message: str) -> None:
        """Emit a Warning event."""
        self.emit(body, reason, message, type_="Warning")
