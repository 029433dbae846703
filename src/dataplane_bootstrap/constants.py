"""Names, label values and secret keys shared across the data plane bootstrap."""
from __future__ import annotations

FIELD_MANAGER = "codenow.com/cli"

SYSTEM_IMAGE_PULL_SECRET = "cn-system-image-pull-secret"

LABEL_NAMESPACE_TYPE = "codenow.com/namespace-type"
ANNOTATION_POD_NODE_SELECTOR = "scheduler.alpha.kubernetes.io/node-selector"
ANNOTATION_EKS_ROLE_ARN = "eks.amazonaws.com/role-arn"

LABEL_VALUE_MANAGED_BY = "cn-cli"
LABEL_VALUE_PART_OF = "cn-data-plane"
LABEL_VALUE_NAMESPACE_TYPE_SYSTEM = "cn-data-plane-system"
LABEL_VALUE_OPERATOR_NAME = "cn-pulumi-kubernetes-operator"
LABEL_VALUE_STACK_APP = "cn-dp-manager"

DEFAULT_SYSTEM_NAMESPACE = "cn-data-plane"

OPERATOR_NAME_PREFIX = "cn-pulumi-"
WORKSPACE_NAME_PREFIX = "pulumi-"
OPERATOR_DEPLOYMENT_BASE_NAME = "controller-manager"

STACK_NAME = "cn-data-plane"
STACK_API_VERSION = "pulumi.com/v1"
SERVICE_ACCOUNT_NAME = "cn-data-plane"
CONFIG_SECRET_NAME = "cn-data-plane-config"
CUSTOM_CA_SECRET_NAME = "cn-data-plane-custom-ca"
STATE_PVC_NAME = "cn-data-plane-state"
STATE_PVC_SIZE = "1000Mi"

PULUMI_HOME_PATH = "/home/pulumi"
PULUMI_STATE_PATH = "/pulumi-state"

SCM_SYNC_INTERVAL_SECONDS = 60
SCM_DEFAULT_BRANCH = "main"

FLUXCD_SOURCE_CONTROLLER_NAME = "cn-fluxcd-source-controller"
FLUXCD_CRD_CONTROLLER_NAME = "cn-crd-controller"
FLUXCD_GIT_REPOSITORY_NAME = "cn-data-plane"
FLUXCD_GIT_CREDENTIALS_SECRET_NAME = "cn-fluxcd-git-credentials"
FLUXCD_SOURCE_API_VERSION = "source.toolkit.fluxcd.io/v1"

SERVICE_ACCOUNT_VOLUME_NAME = "serviceaccount-token"
SERVICE_ACCOUNT_MOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"
CA_VOLUME_NAME = "ca-certificates"
CA_CERTS_DIR = "/etc/ssl/certs"

# Keys of the data plane configuration secret.
KEY_SCM_AUTH_TOKEN = "cn_scm_system_auth_token"
KEY_SCM_AUTH_PASSWORD = "cn_scm_system_auth_password"
KEY_SCM_AUTH_USERNAME = "cn_scm_system_auth_username"
KEY_PULUMI_PASSPHRASE = "cn_pulumi_passphrase"
KEY_PKI_CUSTOM_CA_CERT = "cn_pki_custom_ca.cert"
KEY_TARGET_NAMESPACE = "cn_target_namespace"
KEY_CNI_NAMESPACE_ENABLED = "cn_cni_dedicated_namespace_enabled"
KEY_CI_PIPELINES_NAMESPACE_ENABLED = "cn_ci_pipelines_dedicated_namespace_enabled"
KEY_CNI_NAMESPACE_NAME = "cn_cni_dedicated_namespace_name"
KEY_CI_PIPELINES_NAMESPACE_NAME = "cn_ci_pipelines_dedicated_namespace_name"
KEY_SYSTEM_NODE_LABEL_KEY = "cn_node_placement_system_node_label_key"
KEY_SYSTEM_NODE_LABEL_VALUE = "cn_node_placement_system_node_label_value"
KEY_APPLICATION_NODE_LABEL_KEY = "cn_node_placement_application_node_label_key"
KEY_APPLICATION_NODE_LABEL_VALUE = "cn_node_placement_application_node_label_value"
KEY_CONTAINER_REGISTRY_USERNAME = "cn_container_registry_system_username"
KEY_CONTAINER_REGISTRY_PASSWORD = "cn_container_registry_system_password"
KEY_HTTP_PROXY_ENABLED = "cn_http_proxy_enabled"
KEY_HTTP_PROXY_HOSTNAME = "cn_http_proxy_hostname"
KEY_HTTP_PROXY_PORT = "cn_http_proxy_port"
KEY_HTTP_PROXY_NO_PROXY = "cn_http_proxy_no_proxy_hostnames"
KEY_S3_ENABLED = "cn_s3_enabled"
KEY_S3_ACCESS_KEY = "cn_s3_storage_access_key"
KEY_S3_SECRET_KEY = "cn_s3_storage_secret_key"
KEY_S3_ACCESS_ROLE = "cn_s3_storage_access_role"
KEY_S3_REGION = "cn_s3_storage_region"
KEY_NODE_PLACEMENT_MODE = "cn_node_placement_mode"
KEY_NPMRC = ".npmrc"
KEY_CONTAINER_REGISTRY_CONFIG_JSON = "config.json"
