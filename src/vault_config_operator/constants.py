"""Constants for the Vault Config Operator."""

# API Group
API_GROUP = "redhatcop.redhat.io"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_DATABASE_STATIC_ROLE = "DatabaseSecretEngineStaticRole"
KIND_DATABASE_ROLE = "DatabaseSecretEngineRole"
KIND_KUBERNETES_AUTH_ROLE = "KubernetesAuthEngineRole"
KIND_SECRET_ENGINE_MOUNT = "SecretEngineMount"

# Plurals
PLURAL_DATABASE_STATIC_ROLE = "databasesecretenginestaticroles"
PLURAL_DATABASE_ROLE = "databasesecretengineroles"
PLURAL_KUBERNETES_AUTH_ROLE = "kubernetesauthengineroles"
PLURAL_SECRET_ENGINE_MOUNT = "secretenginemounts"

# Finalizers
FINALIZER = f"vault-config-operator.{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "vault-config-operator"
CONTROLLER_NAME = "vault-config-operator"

# Authentication defaults
DEFAULT_AUTH_MOUNT = "kubernetes"
DEFAULT_SERVICE_ACCOUNT = "default"

# Condition Types
COND_READY = "Ready"
COND_FAILED = "Failed"
COND_PROGRESSING = "Progressing"
COND_CONFLICT = "Conflict"

# Condition Reasons
REASON_RECONCILED = "ReconcileSucceeded"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_AUTH_FAILURE = "AuthFailure"
REASON_TRANSIENT_ERROR = "TransientError"
REASON_RETRIES_EXHAUSTED = "RetriesExhausted"
REASON_CONFLICT = "RemoteConflict"
REASON_RECOVERED = "Recovered"

# Event Reasons
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_OBJECT_CREATED = "VaultObjectCreated"
EVENT_REASON_OBJECT_UPDATED = "VaultObjectUpdated"
EVENT_REASON_OBJECT_DELETED = "VaultObjectDeleted"
EVENT_REASON_AUTH_FAILED = "AuthFailed"
