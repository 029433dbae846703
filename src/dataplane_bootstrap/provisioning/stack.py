"""Provisioning of the managed Pulumi stack and the access it needs."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..config import OperatorConfig, S3AuthenticationMethod
from ..constants import ANNOTATION_EKS_ROLE_ARN, SERVICE_ACCOUNT_NAME, STATE_PVC_NAME
from ..kube import DataPlaneAPI, WriteOutcome
from ..manifest_editor import Manifest
from ..mutations import apply_labels, bootstrap_labels
from ..templates import OperatorInfo
from .stack_manifest import StackManifestBuilder

_LOG = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"
RBAC_API_VERSION = f"{RBAC_API_GROUP}/v1"
KUBE_SYSTEM_NAMESPACE = "kube-system"

# Cluster-scoped resources the stack installs and therefore has to manage.
CLUSTER_ADMIN_RULES: List[Dict[str, Any]] = [
    {
        "apiGroups": ["admissionregistration.k8s.io"],
        "resources": ["mutatingwebhookconfigurations", "validatingwebhookconfigurations"],
    },
    {"apiGroups": ["apiextensions.k8s.io"], "resources": ["customresourcedefinitions"]},
    {"apiGroups": ["apiregistration.k8s.io"], "resources": ["apiservices"]},
    {
        "apiGroups": [RBAC_API_GROUP],
        "resources": ["clusterroles", "clusterrolebindings", "roles", "rolebindings"],
    },
    {"apiGroups": ["networking.k8s.io"], "resources": ["networkpolicies"]},
    {"apiGroups": ["k8s.cni.cncf.io"], "resources": ["network-attachment-definitions"]},
    {"apiGroups": ["operator.tekton.dev"], "resources": ["*"]},
    {"apiGroups": ["external-secrets.io"], "resources": ["clusterexternalsecrets", "clustersecretstores"]},
    {"apiGroups": ["postgresql.cnpg.io"], "resources": ["clusterimagecatalogs"]},
    {"apiGroups": ["scheduling.k8s.io"], "resources": ["priorityclasses"]},
    {"apiGroups": ["authentication.concierge.pinniped.dev"], "resources": ["jwtauthenticators"]},
    {"apiGroups": ["config.concierge.pinniped.dev"], "resources": ["credentialissuers"]},
]

KUBE_SYSTEM_READ_RESOURCE_NAMES = [
    "pinniped-concierge-kube-system-pod-read",
    "pinniped-concierge-extension-apiserver-authentication-reader",
]


def _role_ref(kind: str, name: str) -> Dict[str, str]:
    return {"apiGroup": RBAC_API_GROUP, "kind": kind, "name": name}


def _service_account_subject(name: str, namespace: str) -> Dict[str, str]:
    return {"kind": "ServiceAccount", "name": name, "namespace": namespace}


def _metadata(name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {"name": name}
    if namespace is not None:
        metadata["namespace"] = namespace
    return metadata


class StackProvisioner:
    """Applies the stack's service account and RBAC, its inputs, and the Stack itself."""

    def __init__(self, api: DataPlaneAPI, config: OperatorConfig, info: OperatorInfo) -> None:
        self.api = api
        self.config = config
        self.builder = StackManifestBuilder(config, info)

    def build_service_account(self, service_account_name: str = SERVICE_ACCOUNT_NAME) -> Manifest:
        account: Manifest = {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": _metadata(service_account_name, self.config.system_namespace),
        }
        s3 = self.config.s3
        if s3.enabled and s3.authentication_method is S3AuthenticationMethod.IAM_ROLE:
            account["metadata"]["annotations"] = {ANNOTATION_EKS_ROLE_ARN: s3.iam_role}
        return account

    def build_rbac_manifests(
        self,
        service_account_name: str = SERVICE_ACCOUNT_NAME,
        target_namespaces: Iterable[str] = (),
    ) -> List[Manifest]:
        """RBAC for the stack's service account, followed by an admin role per target namespace."""

        namespace = self.config.system_namespace
        subject = _service_account_subject(service_account_name, namespace)
        admin_name = f"{service_account_name}-admin"
        reader_name = f"{service_account_name}-reader"
        delegator_name = f"{namespace}:{service_account_name}:system:auth-delegator"

        manifests: List[Manifest] = [
            self.build_service_account(service_account_name),
            {
                "apiVersion": RBAC_API_VERSION,
                "kind": "ClusterRoleBinding",
                "metadata": _metadata(delegator_name),
                "roleRef": _role_ref("ClusterRole", "system:auth-delegator"),
                "subjects": [dict(subject)],
            },
            {
                "apiVersion": RBAC_API_VERSION,
                "kind": "ClusterRole",
                "metadata": _metadata(admin_name),
                "rules": [dict(rule, verbs=["*"]) for rule in CLUSTER_ADMIN_RULES],
            },
            {
                "apiVersion": RBAC_API_VERSION,
                "kind": "ClusterRoleBinding",
                "metadata": _metadata(admin_name),
                "roleRef": _role_ref("ClusterRole", admin_name),
                "subjects": [dict(subject)],
            },
            {
                "apiVersion": RBAC_API_VERSION,
                "kind": "Role",
                "metadata": _metadata(reader_name, KUBE_SYSTEM_NAMESPACE),
                "rules": [
                    {
                        "apiGroups": [RBAC_API_GROUP],
                        "resources": ["roles", "rolebindings"],
                        "resourceNames": list(KUBE_SYSTEM_READ_RESOURCE_NAMES),
                        "verbs": ["get", "list", "watch"],
                    }
                ],
            },
            {
                "apiVersion": RBAC_API_VERSION,
                "kind": "RoleBinding",
                "metadata": _metadata(reader_name, KUBE_SYSTEM_NAMESPACE),
                "roleRef": _role_ref("Role", reader_name),
                "subjects": [dict(subject)],
            },
        ]

        seen = set()
        for target in target_namespaces:
            if not target or target in seen:
                continue
            seen.add(target)
            manifests.append(
                {
                    "apiVersion": RBAC_API_VERSION,
                    "kind": "Role",
                    "metadata": _metadata(admin_name, target),
                    "rules": [{"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]}],
                }
            )
            manifests.append(
                {
                    "apiVersion": RBAC_API_VERSION,
                    "kind": "RoleBinding",
                    "metadata": _metadata(admin_name, target),
                    "roleRef": _role_ref("Role", admin_name),
                    "subjects": [dict(subject)],
                }
            )

        for manifest in manifests:
            apply_labels(manifest, bootstrap_labels())
        return manifests

    def target_namespaces(self) -> List[str]:
        namespaces = self.config.kubernetes.namespaces
        return [namespaces.system.name, namespaces.cni.name, namespaces.ci_pipelines.name]

    def apply_rbac(self, service_account_name: str = SERVICE_ACCOUNT_NAME) -> None:
        _LOG.info("Applying stack RBAC for service account %s", service_account_name)
        for manifest in self.build_rbac_manifests(service_account_name, self.target_namespaces()):
            self.api.upsert(manifest)
            _LOG.info("Applied %s %s", manifest["kind"], manifest["metadata"]["name"])

    def apply_config_secret(self) -> WriteOutcome:
        secret = self.builder.build_config_secret()
        outcome = self.api.upsert(secret)
        _LOG.info("Configuration secret %s %s", secret["metadata"]["name"], outcome.value)
        return outcome

    def apply_state_pvc(self) -> Optional[WriteOutcome]:
        """Ensure the local state claim exists; S3 backed stacks do not use one."""

        if self.config.s3.enabled:
            _LOG.info("S3 backend enabled; skipping PersistentVolumeClaim %s", STATE_PVC_NAME)
            return None
        return self.api.upsert(self.builder.build_state_pvc())

    def apply_stack(self, service_account_name: str = SERVICE_ACCOUNT_NAME) -> None:
        stack = self.builder.build_stack(service_account_name)
        _LOG.info("Applying Stack %s to namespace %s", stack["metadata"]["name"], self.config.system_namespace)
        self.api.upsert(stack)
        _LOG.info("Stack %s applied", stack["metadata"]["name"])
