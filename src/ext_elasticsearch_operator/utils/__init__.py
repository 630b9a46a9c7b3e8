"""Utility functions for the External Elasticsearch Operator."""

from .conditions import (
    conditions_equal,
    set_configuration_valid_condition,
    set_ready_condition,
    update_condition,
)
from .context import (
    get_context_dict,
    get_correlation_id,
    propagate_trace_context,
    with_correlation_id,
)
from .errors import sanitize_error_message, sanitize_exception
from .events import EventRecorder
from .rate_limit import call_with_rate_limit_retry

__all__ = [
    "update_condition",
    "set_ready_condition",
    "set_configuration_valid_condition",
    "conditions_equal",
    "EventRecorder",
    "sanitize_error_message",
    "sanitize_exception",
    "call_with_rate_limit_retry",
    "get_correlation_id",
    "with_correlation_id",
    "get_context_dict",
    "propagate_trace_context",
]
