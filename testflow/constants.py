"""Well-known names, labels and defaults shared across testflow."""

from __future__ import annotations

# Labels stamped on every step artifact
APP_LABEL = "app"
WORKFLOW_STEP_LABEL = "workflowStep"
INSTANCE_NAME_LABEL = "instanceName"
OPERATOR_NAME_LABEL = "operator"

DEFAULT_OPERATOR_NAME = "test-operator"
DEFAULT_FINALIZER_DOMAIN = "openstack.org"

# Execution lock record
DEFAULT_LOCK_NAME = "test-operator-lock"
DEFAULT_LOCK_OWNER_FIELD = "owner"
DEFAULT_LOCK_RELEASE_RETRIES = 10
DEFAULT_LOCK_RELEASE_BACKOFF = 10.0

# Deterministic names
ARTIFACT_STEP_INFIX = "-s"
ENV_VARS_RECORD_INFIX = "-env-vars-s"
CUSTOM_DATA_RECORD_INFIX = "-custom-data-s"
WORKFLOW_STEP_NAME_INVALID = "no-name"
STORAGE_HASH_LENGTH = 5

# Requeue delays (seconds)
DEFAULT_REQUEUE_AFTER = 60.0
DEFAULT_NETWORK_REQUEUE_AFTER = 10.0

# Supporting storage
DEFAULT_STORAGE_SIZE = "1Gi"
DEFAULT_STORAGE_ACCESS_MODE = "ReadWriteOnce"
DEFAULT_STORAGE_CLASS = "local-storage"

# Generated configuration / image lookup
OPERATOR_CONFIG_RECORD = "test-operator-config"
OPERATOR_BASE_DIR = "/etc/test_operator/"
CA_BUNDLE_SECRET = "combined-ca-bundle"
CLOUDS_CONFIG_RECORD = "test-operator-clouds-config"
DEFAULT_CLOUDS_PASSWORD = "12345678"

# Network attachment annotations
NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
NETWORK_STATUS_ANNOTATION = "k8s.v1.cni.cncf.io/network-status"

# Custom resource coordinates
DEFAULT_GROUP = "test.openstack.org"
DEFAULT_VERSION = "v1beta1"
