"""Serial reconcile loop for ElasticsearchUser resources.

All reconciliation happens on one worker thread. Watch handlers and the resync
scheduler only enqueue work; the worker drains the queue one item at a time, so
passes for the same resource never interleave and the cache needs no locking.
"""

from __future__ import annotations

import copy
import enum
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Union

from .. import metrics
from ..builders.desired_state import build_desired_state, parse_user_spec
from ..constants import (
    API_GROUP_VERSION,
    EVENT_REASON_CLEANUP_FAILED,
    EVENT_REASON_CLEANUP_SUCCEEDED,
    EVENT_REASON_DUPLICATE_IDENTITY,
    EVENT_REASON_PASSWORD_RESET,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILED,
    EVENT_REASON_ROLE_APPLIED,
    EVENT_REASON_SECRET_APPLIED,
    EVENT_REASON_USER_APPLIED,
    EVENT_REASON_VALIDATE_FAILED,
    KIND_ELASTICSEARCH_USER,
)
from ..exceptions import (
    CleanupIncompleteError,
    ConfigurationError,
    DuplicateIdentityError,
    TransientBackendError,
)
from ..handlers.base import BaseHandler
from ..models import CachedResourceRecord, DesiredState, FinalizerState, ResourceKey, UserSpec
from ..services.elasticsearch.base import ElasticsearchAdmin
from ..services.kubernetes.resources import ElasticsearchUserClient
from ..services.kubernetes.secret_store import SecretStore
from ..tracing import trace_span
from ..utils.conditions import (
    conditions_equal,
    set_configuration_valid_condition,
    set_ready_condition,
)
from ..utils.context import with_correlation_id
from ..utils.errors import sanitize_exception
from ..utils.events import EventRecorder
from .actions import (
    Action,
    ActionExecutor,
    CreateSecret,
    PatchSecret,
    PutRole,
    PutUser,
    ResetPassword,
    UpdateUser,
    describe,
)
from .cache import ResourceCache
from .diff import diff, stale_identity_actions
from .finalizer import FinalizerManager
from .observed import ObservedStateFetcher


class LoopCommand(enum.Enum):
    """Queue items that are not a single resource."""

    RESYNC = "resync"
    RECYCLE = "recycle"
    STOP = "stop"


WorkItem = Union[ResourceKey, LoopCommand]

_ACTION_REASONS = {
    PutRole: EVENT_REASON_ROLE_APPLIED,
    PutUser: EVENT_REASON_USER_APPLIED,
    UpdateUser: EVENT_REASON_USER_APPLIED,
    ResetPassword: EVENT_REASON_PASSWORD_RESET,
    CreateSecret: EVENT_REASON_SECRET_APPLIED,
    PatchSecret: EVENT_REASON_SECRET_APPLIED,
}


def owner_reference(body: dict[str, Any]) -> dict[str, Any]:
    """Owner reference pointing at a custom resource."""
    meta = body["metadata"]
    return {
        "apiVersion": body.get("apiVersion", API_GROUP_VERSION),
        "kind": body.get("kind", KIND_ELASTICSEARCH_USER),
        "name": meta["name"],
        "uid": meta["uid"],
        "controller": True,
    }


class ReconcileLoop(BaseHandler):
    """Single worker reconciling queued resources one at a time."""

    def __init__(
        self,
        resources: ElasticsearchUserClient,
        elasticsearch: ElasticsearchAdmin,
        secrets: SecretStore,
        cache: ResourceCache,
        elasticsearch_url: str,
        recorder: EventRecorder | None = None,
    ) -> None:
        """Initialize the loop.

        Args:
            resources: Client for the custom resources
            elasticsearch: Security API client
            secrets: Secret store
            cache: Resource cache, owned by this loop from now on
            elasticsearch_url: URL written into generated Secrets
            recorder: Kubernetes event recorder (events are skipped when omitted)
        """
        super().__init__(KIND_ELASTICSEARCH_USER)
        self.resources = resources
        self.cache = cache
        self.elasticsearch_url = elasticsearch_url
        self.recorder = recorder
        self.executor = ActionExecutor(elasticsearch, secrets)
        self.fetcher = ObservedStateFetcher(elasticsearch, secrets)
        self.finalizers = FinalizerManager(resources, self.executor)

        self._queue: queue.Queue[WorkItem] = queue.Queue()
        self._pending: set[WorkItem] = set()
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._cache_built = threading.Event()
        self._thread: threading.Thread | None = None

    # Queue side, safe to call from any thread

    def submit(self, item: WorkItem) -> bool:
        """Enqueue a work item unless it is already waiting.

        Returns:
            True if the item was enqueued
        """
        with self._lock:
            if item in self._pending:
                return False
            self._pending.add(item)
            self._queue.put(item)
            metrics.queue_depth.set(self._queue.qsize())
        return True

    def request_resync(self) -> None:
        self.submit(LoopCommand.RESYNC)

    def request_recycle(self) -> None:
        self.submit(LoopCommand.RECYCLE)

    @property
    def cache_built(self) -> bool:
        return self._cache_built.is_set()

    @property
    def ready(self) -> bool:
        """True once the worker runs and the first cache build completed."""
        running = self._thread is not None and self._thread.is_alive()
        return running and self._cache_built.is_set()

    def start(self) -> None:
        """Start the worker; its first job rebuilds the cache from a full listing."""
        self.request_recycle()
        self._thread = threading.Thread(target=self.run, name="reconcile-loop", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stopping.set()
        self._queue.put(LoopCommand.STOP)
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        """Worker body: process items until stopped."""
        self.logger.info("Reconcile loop started")
        while not self._stopping.is_set():
            item = self._take(block=True)
            if item is LoopCommand.STOP:
                break
            self.process(item)
        self.logger.info("Reconcile loop stopped")

    def drain(self) -> int:
        """Process everything currently queued on the calling thread.

        Returns:
            Number of items processed
        """
        processed = 0
        while True:
            try:
                item = self._take(block=False)
            except queue.Empty:
                return processed
            if item is LoopCommand.STOP:
                return processed
            self.process(item)
            processed += 1

    def _take(self, block: bool) -> WorkItem:
        item = self._queue.get(block=block)
        with self._lock:
            # Released before processing so that a change seen meanwhile is queued again
            self._pending.discard(item)
            metrics.queue_depth.set(self._queue.qsize())
        return item

    # Worker side

    def process(self, item: WorkItem) -> None:
        """Handle one work item. Exceptions never escape."""
        try:
            if item is LoopCommand.RESYNC:
                self._resync()
            elif item is LoopCommand.RECYCLE:
                self._recycle()
            elif isinstance(item, ResourceKey):
                self.reconcile(item)
        except Exception as e:
            self.logger.error(f"Unexpected failure processing {item}: {sanitize_exception(e)}")
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()

    def _resync(self) -> None:
        metrics.resync_total.labels(trigger="resync").inc()
        keys = self.cache.keys()
        self.logger.info(f"Resync: enqueueing {len(keys)} resources")
        for key in keys:
            self.submit(key)

    def _recycle(self) -> None:
        """Discard the cache and rebuild it from a fresh listing.

        Records of resources that are still listed are carried over with the
        identities they hold and the state they last reconciled, so current
        owners keep their usernames and Secrets, and a resource whose spec
        became invalid still owns what it created. The remaining resources
        are admitted oldest first.
        """
        metrics.resync_total.labels(trigger="recycle").inc()
        try:
            items = self.resources.list_all()
        except TransientBackendError as e:
            self.logger.warning(f"Cache recycle skipped, listing failed: {sanitize_exception(e)}")
            return

        items.sort(
            key=lambda body: (
                body["metadata"].get("creationTimestamp") or "",
                body["metadata"].get("namespace", ""),
                body["metadata"].get("name", ""),
            )
        )
        listed = {body["metadata"]["uid"] for body in items}
        carried = [record for record in self.cache if record.uid in listed]

        self.cache.clear()
        for record in carried:
            self.cache.adopt(record)
        for body in items:
            meta = body["metadata"]
            if meta["uid"] in self.cache:
                continue
            try:
                spec = parse_user_spec(body)
                self.cache.reserve(meta["uid"], self._key(body), spec.username, spec.secret_ref)
            except ConfigurationError:
                continue
        for body in items:
            self.submit(self._key(body))

        self._cache_built.set()
        self.logger.info(
            f"Cache rebuilt with {len(self.cache)} of {len(items)} resources, "
            f"{len(carried)} carried over"
        )

    @staticmethod
    def _key(body: dict[str, Any]) -> ResourceKey:
        meta = body["metadata"]
        return ResourceKey(namespace=meta.get("namespace", "default"), name=meta["name"])

    def reconcile(self, key: ResourceKey) -> None:
        """Run one reconciliation pass for a resource."""
        with with_correlation_id(), trace_span(
            "reconcile",
            kind=self.kind,
            attributes={"resource.namespace": key.namespace, "resource.name": key.name},
        ):
            try:
                body = self.resources.get(key.namespace, key.name)
            except TransientBackendError as e:
                self.logger.warning(f"Cannot fetch {key}: {sanitize_exception(e)}")
                metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
                return

            if body is None:
                record = self.cache.find(key)
                if record is not None:
                    self.cache.discard(record.uid)
                    self.logger.info(f"Forgot {key}: resource no longer exists")
                return

            state = self.finalizers.state(body["metadata"])
            if state is FinalizerState.FINALIZED:
                self.cache.discard(body["metadata"]["uid"])
            elif state is FinalizerState.DELETING:
                self._reconcile_deleting(body)
            else:
                self._reconcile_active(body)

    def _reconcile_active(self, body: dict[str, Any]) -> None:
        meta = body["metadata"]
        uid = meta["uid"]
        key = self._key(body)

        # Same name, new object: the old record is stale
        previous = self.cache.find(key)
        if previous is not None and previous.uid != uid:
            self.cache.discard(previous.uid)

        try:
            body = self.finalizers.ensure_finalizer(body)
            meta = body["metadata"]
            spec = parse_user_spec(body)
            record = self.cache.reserve(uid, key, spec.username, spec.secret_ref)
        except ConfigurationError as e:
            self._report_invalid(body, e)
            return
        except TransientBackendError as e:
            self._report_failure(body, e)
            return

        desired = build_desired_state(spec, self.elasticsearch_url)
        try:
            applied = self.reconcile_with_metrics(
                meta, lambda: self._converge(body, record, desired)
            )
        except Exception as e:
            self._report_failure(body, e)
            return

        record.generation = meta.get("generation", 0)
        record.resource_version = meta.get("resourceVersion")
        record.finalizer_present = True
        record.last_reconciled_at = datetime.now(timezone.utc)
        record.desired_state = desired
        # Objects of a previous identity are gone now, so its names may be claimed
        self.cache.release_previous(uid)

        self.record_resource_status(True)
        self._write_status(body, ok=True, error_message=None, config=(True, "Valid", "Spec is valid"))
        if applied:
            for action in applied:
                self._event(body, _ACTION_REASONS.get(type(action), EVENT_REASON_RECONCILED), describe(action))
            self.log_info(
                meta,
                f"Applied {len(applied)} corrective actions",
                event="reconciled",
                reason=EVENT_REASON_RECONCILED,
                actions=[describe(action) for action in applied],
            )
        else:
            self.logger.debug(f"{key} in sync")

    def _converge(
        self,
        body: dict[str, Any],
        record: CachedResourceRecord,
        desired: DesiredState,
    ) -> list[Action]:
        observed = self.fetcher.fetch(desired)
        actions = diff(desired, observed, owner_references=[owner_reference(body)])
        applied = self.executor.apply_all(actions)
        for action in stale_identity_actions(record.desired_state, desired):
            self.executor.apply(action)
            applied.append(action)
        return applied

    def _reconcile_deleting(self, body: dict[str, Any]) -> None:
        meta = body["metadata"]
        spec = self._owned_spec(body)
        try:
            self.reconcile_with_metrics(meta, lambda: self.finalizers.finalize(body, spec))
        except CleanupIncompleteError as e:
            self._event(body, EVENT_REASON_CLEANUP_FAILED, str(e), warning=True)
            return
        except Exception as e:
            self._event(body, EVENT_REASON_CLEANUP_FAILED, sanitize_exception(e), warning=True)
            return

        self.cache.discard(meta["uid"])
        if spec is not None:
            self._event(body, EVENT_REASON_CLEANUP_SUCCEEDED, f"Removed user {spec.username}")
        self.log_info(meta, "Finalized", event="finalized", reason=EVENT_REASON_CLEANUP_SUCCEEDED)

    def _owned_spec(self, body: dict[str, Any]) -> UserSpec | None:
        """Spec whose objects a deleting resource may remove, if it owns any.

        A resource that lost an identity collision owns nothing. A resource
        whose spec became invalid still owns what it last reconciled.
        """
        meta = body["metadata"]
        try:
            spec = parse_user_spec(body)
        except ConfigurationError:
            record = self.cache.get(meta["uid"])
            if record is not None and record.desired_state is not None:
                return record.desired_state.spec
            return None
        try:
            self.cache.reserve(meta["uid"], self._key(body), spec.username, spec.secret_ref)
        except DuplicateIdentityError:
            return None
        return spec

    # Reporting

    def _report_invalid(self, body: dict[str, Any], error: ConfigurationError) -> None:
        meta = body["metadata"]
        message = str(error)
        reason = (
            EVENT_REASON_DUPLICATE_IDENTITY
            if isinstance(error, DuplicateIdentityError)
            else EVENT_REASON_VALIDATE_FAILED
        )
        self.log_warning(meta, message, event="invalid", reason=reason)
        metrics.reconcile_total.labels(kind=self.kind, result="invalid").inc()
        self.record_resource_status(False)
        changed = self._write_status(
            body,
            ok=False,
            error_message=message,
            config=(False, error.reason, message),
        )
        if changed:
            self._event(body, reason, message, warning=True)

    def _report_failure(self, body: dict[str, Any], error: Exception) -> None:
        meta = body["metadata"]
        message = sanitize_exception(error)
        if not isinstance(error, TransientBackendError):
            message = f"Unexpected error: {message}"
        self.log_warning(meta, message, event="failed", reason=EVENT_REASON_RECONCILE_FAILED)
        self.record_resource_status(False)
        changed = self._write_status(body, ok=False, error_message=message)
        if changed:
            self._event(body, EVENT_REASON_RECONCILE_FAILED, message, warning=True)

    def _write_status(
        self,
        body: dict[str, Any],
        ok: bool,
        error_message: str | None,
        config: tuple[bool, str, str] | None = None,
    ) -> bool:
        """Patch the status subresource if it differs from the current one.

        Args:
            body: Resource as last fetched
            ok: Whether the last pass succeeded
            error_message: Message shown when not ok
            config: (valid, reason, message) of the ConfigurationValid condition;
                left untouched when omitted

        Returns:
            True if the status was written
        """
        meta = body["metadata"]
        generation = meta.get("generation", 0)
        current = body.get("status") or {}
        conditions = copy.deepcopy(current.get("conditions") or [])

        if config is not None:
            valid, reason, message = config
            set_configuration_valid_condition(conditions, valid, reason, message, generation)
        set_ready_condition(
            conditions,
            ok,
            "Role, user and secret are in sync" if ok else (error_message or "Not ready"),
            generation,
        )

        status = {
            "ok": ok,
            "errorMessage": error_message,
            "observedGeneration": generation,
            "conditions": conditions,
        }
        if (
            current.get("ok") == ok
            and current.get("errorMessage") == error_message
            and current.get("observedGeneration") == generation
            and conditions_equal(current.get("conditions") or [], conditions)
        ):
            return False

        try:
            self.resources.patch_status(meta["namespace"], meta["name"], status)
        except TransientBackendError as e:
            self.logger.warning(
                f"Cannot update status of {meta['namespace']}/{meta['name']}: {sanitize_exception(e)}"
            )
            return False
        body["status"] = status
        return True

    def _event(self, body: dict[str, Any], reason: str, message: str, warning: bool = False) -> None:
        if self.recorder is None:
            return
        if warning:
            self.recorder.warning(body, reason, message)
        else:
            self.recorder.emit(body, reason, message)
