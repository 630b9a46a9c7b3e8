"""Prometheus metrics for the External Elasticsearch Operator."""

from prometheus_client import Counter, Gauge, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "ext_elasticsearch_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "ext_elasticsearch_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

error_total = Counter(
    "ext_elasticsearch_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

resource_status_total = Counter(
    "ext_elasticsearch_operator_resource_status_total",
    "Resource status observations after reconciliation",
    ["kind", "status"],
)

# Backend write metrics
elasticsearch_operations_total = Counter(
    "ext_elasticsearch_operator_elasticsearch_operations_total",
    "Total number of Elasticsearch role and user write operations",
    ["operation", "result"],
)

secret_operations_total = Counter(
    "ext_elasticsearch_operator_secret_operations_total",
    "Total number of Kubernetes Secret write operations",
    ["operation", "result"],
)

# Configuration drift detection metrics
drift_detected_total = Counter(
    "ext_elasticsearch_operator_drift_detected_total",
    "Total number of configuration drift detections",
    ["kind", "resource_type"],
)

# API call metrics
api_call_total = Counter(
    "ext_elasticsearch_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "ext_elasticsearch_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "ext_elasticsearch_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)

# Loop and scheduler metrics
resync_total = Counter(
    "ext_elasticsearch_operator_resync_total",
    "Total number of periodic resync and cache recycle runs",
    ["trigger"],
)

cached_resources = Gauge(
    "ext_elasticsearch_operator_cached_resources",
    "Number of resources tracked in the reconcile cache",
)

queue_depth = Gauge(
    "ext_elasticsearch_operator_queue_depth",
    "Number of work items waiting in the reconcile queue",
)
