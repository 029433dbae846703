"""Provisioning of the Pulumi Kubernetes operator from packaged manifests."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from ..config import OperatorConfig
from ..constants import OPERATOR_DEPLOYMENT_BASE_NAME
from ..errors import UnsupportedKindError
from ..kube import DataPlaneAPI
from ..manifest_editor import Manifest, get_path, get_required_string, set_path, try_get_string
from ..mutations import (
    apply_labels,
    apply_service_account_attachments,
    ensure_prefixed,
    normalize_metadata_maps,
    operator_labels,
    prefix_service_account_resource_names,
    resolve_image,
)
from ..readiness import ReadinessWaiter
from ..templates import (
    OPERATOR_CRD_DIR,
    OPERATOR_MANAGER_DIR,
    OPERATOR_RBAC_DIR,
    OperatorInfo,
    TemplateLoader,
    load_operator_info,
)
from .common import apply_system_workload

_LOG = logging.getLogger(__name__)

Mutator = Callable[[Manifest, str], None]


def _set_namespace(tree: Manifest, namespace: str) -> None:
    set_path(tree, "metadata.namespace", namespace)


def _rewrite_binding(tree: Manifest, namespace: str) -> None:
    subjects = get_path(tree, "subjects")
    if isinstance(subjects, list):
        for index in range(len(subjects)):
            subject_name = try_get_string(tree, f"subjects[{index}].name")
            if subject_name is not None:
                set_path(tree, f"subjects[{index}].name", ensure_prefixed(subject_name))
            set_path(tree, f"subjects[{index}].namespace", namespace)
    role_name = try_get_string(tree, "roleRef.name")
    if role_name is not None:
        set_path(tree, "roleRef.name", ensure_prefixed(role_name))


def _mutate_service_account(tree: Manifest, namespace: str) -> None:
    _set_namespace(tree, namespace)


def _mutate_role(tree: Manifest, namespace: str) -> None:
    _set_namespace(tree, namespace)
    prefix_service_account_resource_names(tree)


def _mutate_role_binding(tree: Manifest, namespace: str) -> None:
    _set_namespace(tree, namespace)
    _rewrite_binding(tree, namespace)


def _mutate_cluster_role(tree: Manifest, namespace: str) -> None:
    prefix_service_account_resource_names(tree)


RBAC_MUTATORS: Dict[str, Mutator] = {
    "ServiceAccount": _mutate_service_account,
    "Role": _mutate_role,
    "RoleBinding": _mutate_role_binding,
    "ClusterRole": _mutate_cluster_role,
    "ClusterRoleBinding": _rewrite_binding,
}


class OperatorProvisioner:
    """Applies the operator CRDs, RBAC and manager Deployment/Service."""

    def __init__(
        self,
        api: DataPlaneAPI,
        config: OperatorConfig,
        loader: TemplateLoader,
        waiter: Optional[ReadinessWaiter] = None,
        info: Optional[OperatorInfo] = None,
    ) -> None:
        self.api = api
        self.config = config
        self.loader = loader
        self.waiter = waiter or ReadinessWaiter(api)
        self.info = info or load_operator_info(loader)
        self._manager_mutators: Dict[str, Mutator] = {
            "Deployment": self._mutate_deployment,
            "Service": self._mutate_service,
        }

    @property
    def operator_image(self) -> str:
        return resolve_image(self.config, self.info.operator_image)

    @property
    def deployment_name(self) -> str:
        return ensure_prefixed(OPERATOR_DEPLOYMENT_BASE_NAME)

    def build_crd_manifests(self) -> List[Manifest]:
        manifests = []
        for source, document in self.loader.list_documents(OPERATOR_CRD_DIR):
            kind = get_required_string(document, "kind")
            if kind != "CustomResourceDefinition":
                raise UnsupportedKindError(kind, f"operator CRD template {source}")
            get_required_string(document, "metadata.name")
            normalize_metadata_maps(document)
            manifests.append(document)
        return manifests

    def apply_crds(self) -> None:
        _LOG.info("Applying operator CRDs")
        for manifest in self.build_crd_manifests():
            self.api.upsert(manifest)
            _LOG.info("Applied CRD %s", manifest["metadata"]["name"])

    def build_rbac_manifests(self, namespace: str) -> List[Manifest]:
        manifests = []
        for source, document in self.loader.list_documents(OPERATOR_RBAC_DIR):
            kind = get_required_string(document, "kind")
            mutator = RBAC_MUTATORS.get(kind)
            if mutator is None:
                raise UnsupportedKindError(kind, f"operator RBAC template {source}")
            set_path(document, "metadata.name", ensure_prefixed(get_required_string(document, "metadata.name")))
            normalize_metadata_maps(document)
            apply_labels(document, operator_labels(self.info.operator_version))
            mutator(document, namespace)
            manifests.append(document)
        return manifests

    def apply_rbac(self, namespace: Optional[str] = None) -> None:
        namespace = namespace or self.config.system_namespace
        _LOG.info("Applying operator RBAC to namespace %s", namespace)
        for manifest in self.build_rbac_manifests(namespace):
            self.api.upsert(manifest)
            _LOG.info("Applied RBAC %s %s", manifest["kind"], manifest["metadata"]["name"])

    def _mutate_deployment(self, tree: Manifest, namespace: str) -> None:
        labels = operator_labels(self.info.operator_version)
        apply_labels(tree, labels, "spec.template.metadata")
        set_path(tree, "spec.template.metadata.namespace", namespace)
        service_account = try_get_string(tree, "spec.template.spec.serviceAccountName")
        if service_account is not None:
            set_path(tree, "spec.template.spec.serviceAccountName", ensure_prefixed(service_account))
        apply_system_workload(tree, self.config, self.operator_image)
        set_path(tree, "spec.template.spec.containers[0].securityContext.readOnlyRootFilesystem", True)
        set_path(tree, "spec.template.spec.containers[0].securityContext.seccompProfile.type", "RuntimeDefault")
        apply_service_account_attachments(tree)

    def _mutate_service(self, tree: Manifest, namespace: str) -> None:
        set_path(tree, "metadata.namespace", namespace)

    def build_manager_manifests(self) -> List[Manifest]:
        namespace = self.config.system_namespace
        manifests = []
        for source, document in self.loader.list_documents(OPERATOR_MANAGER_DIR):
            kind = get_required_string(document, "kind")
            if kind == "Namespace":
                _LOG.debug("Skipping Namespace from %s; namespaces are provisioned separately", source)
                continue
            mutator = self._manager_mutators.get(kind)
            if mutator is None:
                raise UnsupportedKindError(kind, f"operator manager template {source}")
            set_path(document, "metadata.name", ensure_prefixed(get_required_string(document, "metadata.name")))
            normalize_metadata_maps(document)
            apply_labels(document, operator_labels(self.info.operator_version))
            mutator(document, namespace)
            manifests.append(document)
        return manifests

    def apply_deployment(self) -> None:
        _LOG.info("Applying operator deployment to namespace %s", self.config.system_namespace)
        for manifest in self.build_manager_manifests():
            self.api.upsert(manifest)
            _LOG.info("Applied operator %s %s", manifest["kind"], manifest["metadata"]["name"])

    def wait_until_ready(self, timeout: float) -> None:
        self.waiter.wait_for_deployment(self.deployment_name, self.config.system_namespace, timeout)
