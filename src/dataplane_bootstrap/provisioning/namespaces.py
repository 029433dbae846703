"""Namespace and image pull secret provisioning."""
from __future__ import annotations

import json
import logging
from typing import Dict, Optional

from ..config import NamespaceConfig, NodeLabelConfig, OperatorConfig
from ..constants import (
    LABEL_NAMESPACE_TYPE,
    LABEL_VALUE_MANAGED_BY,
    LABEL_VALUE_NAMESPACE_TYPE_SYSTEM,
    LABEL_VALUE_PART_OF,
    SYSTEM_IMAGE_PULL_SECRET,
)
from ..kube import DataPlaneAPI
from ..manifest_editor import Manifest
from ..mutations import LABEL_MANAGED_BY, LABEL_PART_OF, bootstrap_labels, node_selector_annotations
from ..utils import b64encode_text

_LOG = logging.getLogger(__name__)


def build_namespace(name: str, annotations: Optional[Dict[str, str]] = None) -> Manifest:
    if not name or not name.strip():
        raise ValueError("Namespace name cannot be empty.")
    metadata: Dict[str, object] = {
        "name": name,
        "labels": {
            LABEL_NAMESPACE_TYPE: LABEL_VALUE_NAMESPACE_TYPE_SYSTEM,
            LABEL_MANAGED_BY: LABEL_VALUE_MANAGED_BY,
            LABEL_PART_OF: LABEL_VALUE_PART_OF,
        },
    }
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}


def docker_config_json(hostname: str, username: str, password: str) -> str:
    """Render a ``.dockerconfigjson`` document for one registry."""

    auth = b64encode_text(f"{username}:{password}")
    return json.dumps(
        {"auths": {hostname: {"username": username, "password": password, "auth": auth}}},
        separators=(",", ":"),
    )


def build_pull_secret(config: OperatorConfig, namespace: str) -> Manifest:
    registry = config.container_registry
    payload = docker_config_json(registry.hostname, registry.username, registry.password)
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "kubernetes.io/dockerconfigjson",
        "metadata": {
            "name": SYSTEM_IMAGE_PULL_SECRET,
            "namespace": namespace,
            "labels": bootstrap_labels(),
        },
        "data": {".dockerconfigjson": b64encode_text(payload)},
    }


class NamespaceProvisioner:
    """Creates the system, CNI and CI pipeline namespaces with their pull secrets.

    The CNI and CI pipeline namespaces are only provisioned when they are
    dedicated, i.e. named differently from the system namespace.
    """

    def __init__(self, api: DataPlaneAPI, config: OperatorConfig) -> None:
        self.api = api
        self.config = config

    def _provision(self, name: str, label: NodeLabelConfig) -> None:
        _LOG.info("Applying namespace %s", name)
        annotations = node_selector_annotations(self.config, label)
        self.api.upsert(build_namespace(name, annotations))
        outcome = self.api.upsert(build_pull_secret(self.config, name))
        _LOG.info("Image pull secret %s %s in %s", SYSTEM_IMAGE_PULL_SECRET, outcome.value, name)
        _LOG.info("Namespace %s applied", name)

    def _provision_dedicated(self, namespace: NamespaceConfig, role: str) -> bool:
        namespaces = self.config.kubernetes.namespaces
        if not namespace.is_dedicated_relative_to(namespaces.system):
            _LOG.info("%s namespace shares the system namespace %s; skipping", role, namespace.name)
            return False
        self._provision(namespace.name, self.config.kubernetes.node_labels.application)
        return True

    def provision_system(self) -> None:
        self._provision(self.config.system_namespace, self.config.kubernetes.node_labels.system)

    def provision_cni(self) -> bool:
        return self._provision_dedicated(self.config.kubernetes.namespaces.cni, "CNI")

    def provision_ci_pipelines(self) -> bool:
        return self._provision_dedicated(self.config.kubernetes.namespaces.ci_pipelines, "CI pipelines")
