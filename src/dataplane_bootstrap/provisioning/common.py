"""Mutations and resources shared by the operator and source-controller provisioners."""
from __future__ import annotations

import logging

from ..config import OperatorConfig
from ..constants import CUSTOM_CA_SECRET_NAME, KEY_PKI_CUSTOM_CA_CERT, SYSTEM_IMAGE_PULL_SECRET
from ..kube import DataPlaneAPI
from ..manifest_editor import Manifest, ensure_first_container, ensure_object_path, get_path, set_path
from ..mutations import apply_custom_ca, apply_node_placement, bootstrap_labels, ensure_proxy_env
from ..utils import canonical_base64

_LOG = logging.getLogger(__name__)


def normalized_custom_ca(config: OperatorConfig) -> str:
    """The configured CA bundle as Secret data; PEM and DER bundles are kept byte for byte."""

    return canonical_base64(config.security.custom_ca_base64)


def build_custom_ca_secret(config: OperatorConfig) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {
            "name": CUSTOM_CA_SECRET_NAME,
            "namespace": config.system_namespace,
            "labels": bootstrap_labels(),
        },
        "data": {KEY_PKI_CUSTOM_CA_CERT: normalized_custom_ca(config)},
    }


def provision_custom_ca_secret(api: DataPlaneAPI, config: OperatorConfig) -> bool:
    """Store the custom CA bundle in the system namespace for workloads to mount."""

    if not config.security.has_custom_ca:
        return False
    outcome = api.upsert(build_custom_ca_secret(config))
    _LOG.info("Custom CA secret %s %s in %s", CUSTOM_CA_SECRET_NAME, outcome.value, config.system_namespace)
    return True


def apply_system_workload(tree: Manifest, config: OperatorConfig, image: str, fs_group: bool = False) -> None:
    """Prepare a system Deployment: pull secret, run-as ids, placement, CA, proxy and image."""

    run_as_id = config.kubernetes.security_context_run_as_id
    namespace = config.system_namespace
    set_path(tree, "metadata.namespace", namespace)
    set_path(tree, "spec.template.spec.imagePullSecrets[0].name", SYSTEM_IMAGE_PULL_SECRET)
    set_path(tree, "spec.template.spec.automountServiceAccountToken", False)
    set_path(tree, "spec.template.spec.securityContext.runAsUser", run_as_id)
    set_path(tree, "spec.template.spec.securityContext.runAsGroup", run_as_id)
    if fs_group:
        set_path(tree, "spec.template.spec.securityContext.fsGroup", run_as_id)

    pod_spec = ensure_object_path(tree, "spec.template.spec")
    apply_node_placement(pod_spec, config, config.kubernetes.node_labels.system)
    if config.security.has_custom_ca:
        apply_custom_ca(tree, CUSTOM_CA_SECRET_NAME, KEY_PKI_CUSTOM_CA_CERT)

    container = ensure_first_container(tree)
    container["image"] = image
    ensure_proxy_env(container, config.http_proxy)


def replace_container_arg(tree: Manifest, prefix: str, replacement: str) -> int:
    """Replace every container argument starting with ``prefix``; return how many changed."""

    containers = get_path(tree, "spec.template.spec.containers")
    if not isinstance(containers, list):
        return 0
    replaced = 0
    for container in containers:
        if not isinstance(container, dict):
            continue
        args = container.get("args")
        if not isinstance(args, list):
            continue
        for index, arg in enumerate(args):
            if isinstance(arg, str) and arg.startswith(prefix):
                args[index] = replacement
                replaced += 1
    return replaced
