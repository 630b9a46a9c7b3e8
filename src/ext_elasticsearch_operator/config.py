"""Operator settings loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .constants import DEFAULT_CACHE_RECYCLE_INTERVAL, DEFAULT_RESYNC_INTERVAL
from .exceptions import SettingsError

LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def as_bool(value: str) -> bool | None:
    """Parse a boolean environment value.

    Returns:
        True or False for recognised spellings, None otherwise
    """
    normalized = value.strip().lower()
    if normalized in {"1", "true", "t", "yes", "y"}:
        return True
    if normalized in {"0", "false", "f", "no", "n"}:
        return False
    return None


def parse_log_level(value: str | None) -> tuple[int, str | None]:
    """Resolve a LOGLEVEL value.

    Returns:
        Tuple of (logging level, unknown value or None)
    """
    if not value:
        return logging.INFO, None
    level = LOG_LEVELS.get(value.strip().lower())
    if level is None:
        return logging.INFO, value
    return level, None


def _required(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise SettingsError(f"{name} undefined")
    return value


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise SettingsError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise SettingsError(f"{name} must be positive, got {raw!r}")
    return value


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = as_bool(raw)
    if value is None:
        raise SettingsError(f"{name} must be undefined, true or false.")
    return value


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime configuration of the operator."""

    elasticsearch_url: str
    elasticsearch_username: str
    elasticsearch_password: str
    skip_tls_verify: bool = False
    request_timeout: float = 5.0
    resync_interval: float = float(DEFAULT_RESYNC_INTERVAL)
    cache_recycle_interval: float = float(DEFAULT_CACHE_RECYCLE_INTERVAL)
    watch_namespace: str | None = None
    log_level: int = logging.INFO
    # LOGLEVEL value that was not recognized, reported once logging is set up
    unknown_log_level: str | None = None
    metrics_port: int = 8080
    install_crd: bool = True

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables.

        Raises:
            SettingsError: If a required variable is missing or a value is invalid
        """
        url = _required("ELASTIC_URL").rstrip("/")
        username = _required("ELASTIC_USERNAME")
        password = _required("ELASTIC_PASSWORD")

        log_level, unknown_log_level = parse_log_level(os.getenv("LOGLEVEL"))

        metrics_port_raw = os.getenv("METRICS_PORT", "8080")
        try:
            metrics_port = int(metrics_port_raw)
        except ValueError as e:
            raise SettingsError(f"METRICS_PORT must be an integer, got {metrics_port_raw!r}") from e

        return cls(
            elasticsearch_url=url,
            elasticsearch_username=username,
            elasticsearch_password=password,
            skip_tls_verify=_bool("ELASTIC_SKIP_VERIFY", False),
            request_timeout=_float("ELASTIC_REQUEST_TIMEOUT_SECONDS", 5.0),
            resync_interval=_float("RESYNC_INTERVAL_SECONDS", float(DEFAULT_RESYNC_INTERVAL)),
            cache_recycle_interval=_float(
                "CACHE_RECYCLE_INTERVAL_SECONDS", float(DEFAULT_CACHE_RECYCLE_INTERVAL)
            ),
            watch_namespace=os.getenv("WATCH_NAMESPACE") or None,
            log_level=log_level,
            unknown_log_level=unknown_log_level,
            metrics_port=metrics_port,
            install_crd=_bool("INSTALL_CRD", True),
        )
