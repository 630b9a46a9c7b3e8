"""Main entry point for the External Elasticsearch Operator."""

from __future__ import annotations

import logging
import os
from typing import Any

import kopf
from kubernetes import client

from . import health
from . import logging as structured_logging
from . import tracing
from .config import OperatorConfig
from .exceptions import ElasticsearchApiError, KubernetesApiError, NotSuperuserError, SettingsError
from .handlers import elasticsearch_user  # noqa: F401
from .reconciler.cache import ResourceCache
from .reconciler.loop import ReconcileLoop
from .reconciler.resync import ResyncScheduler
from .services.elasticsearch.client import ElasticsearchClient
from .services.kubernetes import (
    ElasticsearchUserClient,
    SecretStore,
    ensure_crd,
    load_kubernetes_config,
)
from .utils.errors import sanitize_exception
from .utils.events import EventRecorder

logger = logging.getLogger(__name__)


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator and start the reconcile loop.

    Any failure here is fatal: the operator stops and is restarted by its supervisor.
    """
    try:
        config = OperatorConfig.from_env()
    except SettingsError as e:
        raise kopf.PermanentError(f"Error loading environment: {e}") from e

    structured_logging.setup_structured_logging(config.log_level)
    if config.unknown_log_level:
        logger.warning(
            f'Loglevel "{config.unknown_log_level}" unknown [trace, debug, info, warn, error]. Fall back to info.'
        )
    tracing.initialize_tracing()
    logger.info("Starting External Elasticsearch Operator.")

    # Only watch events are handled; nothing for kopf to persist or post
    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    load_kubernetes_config()
    if config.install_crd:
        try:
            ensure_crd(client.ApiextensionsV1Api())
        except (client.exceptions.ApiException, KubernetesApiError) as e:
            raise kopf.PermanentError(
                f"Cannot install CustomResourceDefinition: {sanitize_exception(e)}"
            ) from e

    elasticsearch = ElasticsearchClient(
        config.elasticsearch_url,
        config.elasticsearch_username,
        config.elasticsearch_password,
        verify_certs=not config.skip_tls_verify,
        request_timeout=config.request_timeout,
    )
    try:
        elasticsearch.connection_ok()
    except (NotSuperuserError, ElasticsearchApiError) as e:
        raise kopf.PermanentError(
            f"Error while checking Elasticsearch connection: {sanitize_exception(e)}"
        ) from e

    core_api = client.CoreV1Api()
    loop = ReconcileLoop(
        resources=ElasticsearchUserClient(client.CustomObjectsApi(), config.watch_namespace),
        elasticsearch=elasticsearch,
        secrets=SecretStore(core_api),
        cache=ResourceCache(),
        elasticsearch_url=config.elasticsearch_url,
        recorder=EventRecorder(core_api),
    )
    scheduler = ResyncScheduler(loop, config.resync_interval, config.cache_recycle_interval)
    loop.start()
    scheduler.start()

    memo.config = config
    memo.loop = loop
    memo.scheduler = scheduler
    memo.metrics_server = health.start_metrics_server(
        config.metrics_port, readiness=lambda: loop.ready
    )


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Stop the scheduler, the loop and the metrics server."""
    logger.info("Shutting down External Elasticsearch Operator.")
    scheduler = getattr(memo, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()
    loop = getattr(memo, "loop", None)
    if loop is not None:
        loop.stop()
    server = getattr(memo, "metrics_server", None)
    if server is not None:
        server.shutdown()


def run() -> None:
    """Console entry point: run the operator in standalone mode."""
    namespace = os.getenv("WATCH_NAMESPACE")
    kopf.run(
        standalone=True,
        clusterwide=not namespace,
        namespaces=[namespace] if namespace else (),
    )
