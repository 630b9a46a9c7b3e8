"""Exception hierarchy for the operator.

Configuration errors are reported on the resource and not retried until its spec
changes. Transient backend errors are retried on the next event or resync tick.
Settings and superuser errors are fatal at startup.
"""

from __future__ import annotations


class OperatorError(Exception):
    """Base class for all operator errors."""


class ConfigurationError(OperatorError):
    """The custom resource spec cannot be reconciled as written."""

    reason = "InvalidSpec"


class DuplicateIdentityError(ConfigurationError):
    """Another tracked resource already owns the username or secretRef."""

    reason = "DuplicateIdentity"


class TransientBackendError(OperatorError):
    """A call to Elasticsearch or the Kubernetes API failed and may succeed later."""


class ElasticsearchApiError(TransientBackendError):
    """The Elasticsearch security API returned an error or could not be reached."""

    def __init__(self, operation: str, message: str, status: int | None = None) -> None:
        super().__init__(f"Elasticsearch {operation} failed: {message}")
        self.operation = operation
        self.status = status


class KubernetesApiError(TransientBackendError):
    """The Kubernetes API returned an unexpected error."""

    def __init__(self, operation: str, message: str, status: int | None = None) -> None:
        super().__init__(f"Kubernetes {operation} failed: {message}")
        self.operation = operation
        self.status = status


class CleanupIncompleteError(TransientBackendError):
    """At least one deletion during finalization failed."""

    def __init__(self, failures: list[str]) -> None:
        super().__init__("Cleanup incomplete: " + "; ".join(failures))
        self.failures = failures


class SettingsError(OperatorError):
    """Operator settings from the environment are missing or invalid."""


class NotSuperuserError(OperatorError):
    """The configured Elasticsearch login works but lacks the superuser role."""
