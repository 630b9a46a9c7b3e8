"""Finalizer state machine guarding deletion of ElasticsearchUser resources."""

from __future__ import annotations

import logging
from typing import Any

from ..builders.desired_state import role_name_for
from ..constants import FINALIZER
from ..exceptions import CleanupIncompleteError, TransientBackendError
from ..models import FinalizerState, UserSpec
from ..services.kubernetes.resources import ElasticsearchUserClient
from ..utils.errors import sanitize_exception
from .actions import Action, ActionExecutor, DeleteRole, DeleteSecret, DeleteUser

logger = logging.getLogger(__name__)


class FinalizerManager:
    """Adds the finalizer, runs cleanup on deletion and releases the resource.

    Active: no deletion timestamp. Deleting: deletion timestamp with our
    finalizer still present. Finalized: our finalizer removed.
    """

    def __init__(
        self,
        resources: ElasticsearchUserClient,
        executor: ActionExecutor,
        finalizer: str = FINALIZER,
    ) -> None:
        self.resources = resources
        self.executor = executor
        self.finalizer = finalizer

    def state(self, meta: dict[str, Any]) -> FinalizerState:
        if not meta.get("deletionTimestamp"):
            return FinalizerState.ACTIVE
        if self.has_finalizer(meta):
            return FinalizerState.DELETING
        return FinalizerState.FINALIZED

    def has_finalizer(self, meta: dict[str, Any]) -> bool:
        return self.finalizer in (meta.get("finalizers") or [])

    def ensure_finalizer(self, body: dict[str, Any]) -> dict[str, Any]:
        """Add the finalizer if missing.

        Returns:
            The resource as stored after the patch (unchanged body if nothing was done)
        """
        meta = body.get("metadata", {})
        if self.has_finalizer(meta):
            return body
        finalizers = list(meta.get("finalizers") or [])
        finalizers.append(self.finalizer)
        logger.info(f"Adding finalizer to {meta.get('namespace')}/{meta.get('name')}")
        return self.resources.patch_finalizers(
            meta["namespace"], meta["name"], finalizers, meta.get("resourceVersion")
        )

    def remove_finalizer(self, body: dict[str, Any]) -> None:
        meta = body.get("metadata", {})
        if not self.has_finalizer(meta):
            return
        finalizers = [f for f in meta.get("finalizers") or [] if f != self.finalizer]
        self.resources.patch_finalizers(
            meta["namespace"],
            meta["name"],
            finalizers or None,
            meta.get("resourceVersion"),
        )
        logger.info(f"Removed finalizer from {meta.get('namespace')}/{meta.get('name')}")

    def cleanup_actions(self, spec: UserSpec) -> list[Action]:
        """Deletions releasing everything a resource owns.

        With the keep annotation the Elasticsearch role and user survive.
        """
        actions: list[Action] = []
        if not spec.keep:
            actions.append(DeleteRole(name=role_name_for(spec.username)))
            actions.append(DeleteUser(username=spec.username))
        actions.append(DeleteSecret(namespace=spec.namespace, name=spec.secret_ref))
        return actions

    def cleanup(self, spec: UserSpec) -> None:
        """Run every deletion, collecting failures.

        Already absent objects count as deleted.

        Raises:
            CleanupIncompleteError: If at least one deletion failed
        """
        failures: list[str] = []
        for action in self.cleanup_actions(spec):
            try:
                self.executor.apply(action)
            except TransientBackendError as e:
                failures.append(f"{type(action).__name__}: {sanitize_exception(e)}")
        if failures:
            raise CleanupIncompleteError(failures)

    def finalize(self, body: dict[str, Any], spec: UserSpec | None) -> None:
        """Clean up and remove the finalizer.

        Without a spec (the resource never owned anything) only the finalizer is
        removed. The finalizer stays when cleanup is incomplete.
        """
        if spec is not None:
            self.cleanup(spec)
        self.remove_finalizer(body)
