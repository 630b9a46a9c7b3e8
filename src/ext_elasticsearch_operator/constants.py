"""Constants for the External Elasticsearch Operator."""

# API Group
API_GROUP = "eeops.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_ELASTICSEARCH_USER = "ElasticsearchUser"
PLURAL_ELASTICSEARCH_USERS = "elasticsearchusers"
SINGULAR_ELASTICSEARCH_USER = "elasticsearchuser"
CRD_NAME = f"{PLURAL_ELASTICSEARCH_USERS}.{API_GROUP}"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"
MANAGED_BY_VALUE = "ext-elasticsearch-operator"

# Annotations
ANNOTATION_KEEP = f"{API_GROUP}/keep"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "ext-elasticsearch-operator"

# Secret keys
SECRET_URL = "ELASTICSEARCH_URL"
SECRET_USERNAME = "ELASTICSEARCH_USERNAME"
SECRET_PASSWORD = "ELASTICSEARCH_PASSWORD"

# Elasticsearch objects
ROLE_PREFIX = "role-"
USER_METADATA = {"created-by": "K8s Operator eeops"}
SUPERUSER_ROLE = "superuser"
PASSWORD_LENGTH = 24

# Scheduling defaults (seconds)
DEFAULT_RESYNC_INTERVAL = 900
DEFAULT_CACHE_RECYCLE_INTERVAL = 1800

# Condition Types
COND_READY = "Ready"
COND_CONFIGURATION_VALID = "ConfigurationValid"

# Event Reasons
EVENT_REASON_RECONCILED = "Reconciled"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_DUPLICATE_IDENTITY = "DuplicateIdentity"
EVENT_REASON_ROLE_APPLIED = "RoleApplied"
EVENT_REASON_USER_APPLIED = "UserApplied"
EVENT_REASON_PASSWORD_RESET = "PasswordReset"
EVENT_REASON_SECRET_APPLIED = "SecretApplied"
EVENT_REASON_CLEANUP_SUCCEEDED = "CleanupSucceeded"
EVENT_REASON_CLEANUP_FAILED = "CleanupFailed"
