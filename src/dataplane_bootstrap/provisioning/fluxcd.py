"""Provisioning of the FluxCD source-controller and the data plane GitRepository."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..config import OperatorConfig, ScmAuthenticationMethod
from ..constants import (
    FLUXCD_CRD_CONTROLLER_NAME,
    FLUXCD_GIT_CREDENTIALS_SECRET_NAME,
    FLUXCD_GIT_REPOSITORY_NAME,
    FLUXCD_SOURCE_API_VERSION,
    FLUXCD_SOURCE_CONTROLLER_NAME,
    SCM_DEFAULT_BRANCH,
    SCM_SYNC_INTERVAL_SECONDS,
)
from ..errors import UnsupportedKindError
from ..kube import DataPlaneAPI
from ..manifest_editor import Manifest, get_required_string, set_path
from ..mutations import (
    apply_labels,
    apply_service_account_attachments,
    bootstrap_labels,
    component_labels,
    image_without_tag,
    normalize_metadata_maps,
    resolve_image,
)
from ..readiness import ReadinessWaiter
from ..templates import FLUXCD_RBAC_FILE, FLUXCD_SOURCE_CONTROLLER_FILE, FluxCDInfo, TemplateLoader, load_fluxcd_info
from ..utils import b64encode_text, is_blank
from .common import apply_system_workload, normalized_custom_ca, replace_container_arg

_LOG = logging.getLogger(__name__)

CRD_CONTROLLER_TEMPLATE_NAME = "crd-controller"
STORAGE_ADDRESS_ARG = "--storage-adv-addr="


class FluxCDProvisioner:
    """Installs a single FluxCD source-controller into the system namespace."""

    def __init__(
        self,
        api: DataPlaneAPI,
        config: OperatorConfig,
        loader: TemplateLoader,
        waiter: Optional[ReadinessWaiter] = None,
        info: Optional[FluxCDInfo] = None,
    ) -> None:
        self.api = api
        self.config = config
        self.loader = loader
        self.waiter = waiter or ReadinessWaiter(api)
        self.info = info or load_fluxcd_info(loader)

    @property
    def version(self) -> str:
        override = self.config.fluxcd.images.source_controller_version if self.config.fluxcd else ""
        return override if not is_blank(override) else self.info.source_controller_version

    @property
    def image(self) -> str:
        base = image_without_tag(self.info.source_controller_image)
        return resolve_image(self.config, f"{base}:{self.version}")

    def _labels(self) -> Dict[str, str]:
        return component_labels(FLUXCD_SOURCE_CONTROLLER_NAME, self.version)

    def build_crd_manifests(self) -> List[Manifest]:
        manifests = []
        for document in self.loader.load_documents(FLUXCD_SOURCE_CONTROLLER_FILE):
            if get_required_string(document, "kind") != "CustomResourceDefinition":
                continue
            get_required_string(document, "metadata.name")
            normalize_metadata_maps(document)
            manifests.append(document)
        return manifests

    def apply_crds(self) -> None:
        _LOG.info("Applying FluxCD CRDs")
        for manifest in self.build_crd_manifests():
            self.api.upsert(manifest)
            _LOG.info("Applied CRD %s", manifest["metadata"]["name"])

    def build_rbac_manifests(self) -> List[Manifest]:
        manifests = []
        for document in self.loader.load_documents(FLUXCD_RBAC_FILE):
            if get_required_string(document, "kind") != "ClusterRole":
                continue
            if document.get("metadata", {}).get("name") != CRD_CONTROLLER_TEMPLATE_NAME:
                continue
            set_path(document, "metadata.name", FLUXCD_CRD_CONTROLLER_NAME)
            normalize_metadata_maps(document)
            apply_labels(document, self._labels())
            manifests.append(document)

        binding: Manifest = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": {"name": FLUXCD_CRD_CONTROLLER_NAME},
            "roleRef": {
                "apiGroup": "rbac.authorization.k8s.io",
                "kind": "ClusterRole",
                "name": FLUXCD_CRD_CONTROLLER_NAME,
            },
        }
        set_path(binding, "subjects[0].kind", "ServiceAccount")
        set_path(binding, "subjects[0].name", FLUXCD_SOURCE_CONTROLLER_NAME)
        set_path(binding, "subjects[0].namespace", self.config.system_namespace)
        apply_labels(binding, self._labels())
        manifests.append(binding)
        return manifests

    def _mutate_deployment(self, tree: Manifest) -> None:
        set_path(tree, "spec.selector.matchLabels.app", FLUXCD_SOURCE_CONTROLLER_NAME)
        set_path(tree, "spec.template.metadata.labels.app", FLUXCD_SOURCE_CONTROLLER_NAME)
        apply_labels(tree, self._labels(), "spec.template.metadata")
        set_path(tree, "spec.template.spec.serviceAccountName", FLUXCD_SOURCE_CONTROLLER_NAME)
        apply_system_workload(tree, self.config, self.image, fs_group=True)
        apply_service_account_attachments(tree)
        replace_container_arg(
            tree,
            STORAGE_ADDRESS_ARG,
            f"{STORAGE_ADDRESS_ARG}{FLUXCD_SOURCE_CONTROLLER_NAME}.$(RUNTIME_NAMESPACE).svc.cluster.local.",
        )

    def build_controller_manifests(self) -> List[Manifest]:
        namespace = self.config.system_namespace
        manifests = []
        for document in self.loader.load_documents(FLUXCD_SOURCE_CONTROLLER_FILE):
            kind = get_required_string(document, "kind")
            if kind in ("CustomResourceDefinition", "Namespace"):
                continue
            set_path(document, "metadata.name", FLUXCD_SOURCE_CONTROLLER_NAME)
            normalize_metadata_maps(document)
            apply_labels(document, self._labels())
            if kind == "ServiceAccount":
                set_path(document, "metadata.namespace", namespace)
            elif kind == "Service":
                set_path(document, "metadata.namespace", namespace)
                set_path(document, "spec.selector.app", FLUXCD_SOURCE_CONTROLLER_NAME)
            elif kind == "Deployment":
                self._mutate_deployment(document)
            else:
                raise UnsupportedKindError(kind, f"template {FLUXCD_SOURCE_CONTROLLER_FILE}")
            manifests.append(document)
        return manifests

    def build_credentials_secret(self) -> Optional[Manifest]:
        """Git credentials for the GitRepository, or ``None`` when none are configured."""

        scm = self.config.scm
        data: Dict[str, str] = {}
        if scm.authentication_method is ScmAuthenticationMethod.ACCESS_TOKEN:
            if is_blank(scm.access_token):
                _LOG.warning("SCM access token is empty; skipping FluxCD GitRepository credentials secret")
                return None
            data["bearerToken"] = b64encode_text(scm.access_token)
        else:
            if is_blank(scm.username) and is_blank(scm.password):
                _LOG.warning("SCM username and password are empty; skipping FluxCD GitRepository credentials secret")
                return None
            data["username"] = b64encode_text(scm.username or "")
            data["password"] = b64encode_text(scm.password or "")
        if self.config.security.has_custom_ca:
            data["ca.crt"] = normalized_custom_ca(self.config)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": FLUXCD_GIT_CREDENTIALS_SECRET_NAME,
                "namespace": self.config.system_namespace,
                "labels": bootstrap_labels(),
            },
            "data": data,
        }

    def build_git_repository(self) -> Manifest:
        repository: Manifest = {
            "apiVersion": FLUXCD_SOURCE_API_VERSION,
            "kind": "GitRepository",
            "metadata": {
                "name": FLUXCD_GIT_REPOSITORY_NAME,
                "namespace": self.config.system_namespace,
                "labels": bootstrap_labels(),
            },
            "spec": {
                "interval": f"{SCM_SYNC_INTERVAL_SECONDS}s",
                "url": self.config.scm.url,
                "ref": {"branch": SCM_DEFAULT_BRANCH},
            },
        }
        set_path(repository, "spec.secretRef.name", FLUXCD_GIT_CREDENTIALS_SECRET_NAME)
        set_path(repository, "spec.sparseCheckout[0]", self.config.environment.name)
        return repository

    def apply_source_controller(self) -> None:
        _LOG.info("Applying FluxCD source-controller to namespace %s", self.config.system_namespace)
        for manifest in self.build_rbac_manifests():
            self.api.upsert(manifest)
            _LOG.info("Applied FluxCD %s %s", manifest["kind"], manifest["metadata"]["name"])
        for manifest in self.build_controller_manifests():
            self.api.upsert(manifest)
            _LOG.info("Applied source-controller %s %s", manifest["kind"], manifest["metadata"]["name"])

        secret = self.build_credentials_secret()
        if secret is not None:
            outcome = self.api.upsert(secret)
            _LOG.info("Secret %s %s", FLUXCD_GIT_CREDENTIALS_SECRET_NAME, outcome.value)
        self.api.upsert(self.build_git_repository())
        _LOG.info("Applied FluxCD GitRepository %s", FLUXCD_GIT_REPOSITORY_NAME)

    def wait_until_ready(self, timeout: float) -> None:
        self.waiter.wait_for_deployment(FLUXCD_SOURCE_CONTROLLER_NAME, self.config.system_namespace, timeout)
