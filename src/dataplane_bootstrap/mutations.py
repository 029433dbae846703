"""Composable mutations applied to manifest templates before they reach the cluster."""
from __future__ import annotations

import copy
import json
from typing import Any, Dict, List, Mapping, Optional

from .config import HttpProxyConfig, NodeLabelConfig, OperatorConfig, PodPlacementMode
from .constants import (
    ANNOTATION_POD_NODE_SELECTOR,
    CA_CERTS_DIR,
    CA_VOLUME_NAME,
    LABEL_VALUE_MANAGED_BY,
    LABEL_VALUE_OPERATOR_NAME,
    LABEL_VALUE_PART_OF,
    LABEL_VALUE_STACK_APP,
    OPERATOR_NAME_PREFIX,
    SERVICE_ACCOUNT_MOUNT_PATH,
    SERVICE_ACCOUNT_VOLUME_NAME,
    WORKSPACE_NAME_PREFIX,
)
from .manifest_editor import (
    Manifest,
    ensure_array,
    ensure_env_var,
    ensure_first_container,
    ensure_named_entry,
    ensure_object_path,
)
from .utils import is_blank

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_PART_OF = "app.kubernetes.io/part-of"
LABEL_VERSION = "app.kubernetes.io/version"

BOOTSTRAP_APP_LABEL_VALUE = LABEL_VALUE_STACK_APP

_SERVICE_ACCOUNT_VOLUME: Dict[str, Any] = {
    "name": SERVICE_ACCOUNT_VOLUME_NAME,
    "projected": {
        # 0444
        "defaultMode": 292,
        "sources": [
            {"serviceAccountToken": {"expirationSeconds": 3607, "path": "token"}},
            {"configMap": {"items": [{"key": "ca.crt", "path": "ca.crt"}], "name": "kube-root-ca.crt"}},
            {
                "downwardAPI": {
                    "items": [
                        {
                            "fieldRef": {"apiVersion": "v1", "fieldPath": "metadata.namespace"},
                            "path": "namespace",
                        }
                    ]
                }
            },
        ],
    },
}


def ensure_prefixed(name: str, prefix: str = OPERATOR_NAME_PREFIX, replaced_prefix: str = WORKSPACE_NAME_PREFIX) -> str:
    """Return ``name`` carrying ``prefix`` exactly once.

    A leading ``replaced_prefix`` is dropped first, so ``pulumi-controller-manager``
    and ``controller-manager`` both become ``cn-pulumi-controller-manager``.
    """

    if name.startswith(prefix):
        return name
    if replaced_prefix and name.startswith(replaced_prefix):
        name = name[len(replaced_prefix):]
    return prefix + name


def bootstrap_labels() -> Dict[str, str]:
    return {
        LABEL_NAME: BOOTSTRAP_APP_LABEL_VALUE,
        LABEL_MANAGED_BY: LABEL_VALUE_MANAGED_BY,
        LABEL_PART_OF: LABEL_VALUE_PART_OF,
    }


def component_labels(name: str, version: Optional[str] = None) -> Dict[str, str]:
    """Standard labels for an installed component such as the operator or source controller."""

    labels = {
        LABEL_NAME: name,
        LABEL_INSTANCE: name,
        LABEL_MANAGED_BY: LABEL_VALUE_MANAGED_BY,
        LABEL_PART_OF: LABEL_VALUE_PART_OF,
    }
    if version:
        labels[LABEL_VERSION] = version
    return labels


def operator_labels(version: str) -> Dict[str, str]:
    return component_labels(LABEL_VALUE_OPERATOR_NAME, version)


def apply_labels(tree: Manifest, labels: Mapping[str, str], metadata_path: str = "metadata") -> None:
    """Merge ``labels`` into ``<metadata_path>.labels``, keeping unrelated keys."""

    target = ensure_object_path(tree, f"{metadata_path}.labels")
    target.update(labels)


def _coerce_to_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, separators=(",", ":"))


def normalize_metadata_maps(tree: Manifest) -> None:
    """Coerce label and annotation values to strings as the API server requires."""

    metadata = tree.get("metadata")
    if not isinstance(metadata, dict):
        return
    for key in ("labels", "annotations"):
        values = metadata.get(key)
        if isinstance(values, dict):
            metadata[key] = {name: _coerce_to_string(value) for name, value in values.items()}


def resolve_image(config: OperatorConfig, image: str) -> str:
    """Prefix ``image`` with the configured private registry hostname, if any."""

    hostname = config.container_registry.hostname
    if is_blank(hostname):
        return image
    return f"{hostname.rstrip('/')}/{image.lstrip('/')}"


def _strip_digest(image: str) -> str:
    at_index = image.rfind("@")
    return image[:at_index] if at_index >= 0 else image


def try_get_image_tag(image: str) -> Optional[str]:
    if is_blank(image):
        return None
    image = _strip_digest(image)
    last_colon = image.rfind(":")
    if last_colon > image.rfind("/") and last_colon + 1 < len(image):
        return image[last_colon + 1:]
    return None


def image_without_tag(image: str) -> str:
    """Drop any digest and tag, keeping a registry port such as ``host:5000/repo``."""

    image = _strip_digest(image)
    last_colon = image.rfind(":")
    if last_colon > image.rfind("/"):
        return image[:last_colon]
    return image


def node_selector_annotations(config: OperatorConfig, label: NodeLabelConfig) -> Dict[str, str]:
    """Namespace annotations for selector-only placement; empty in other modes."""

    if config.kubernetes.pod_placement_mode is not PodPlacementMode.POD_NODE_SELECTOR:
        return {}
    if is_blank(label.key):
        return {}
    return {ANNOTATION_POD_NODE_SELECTOR: label.as_selector()}


def apply_node_placement(pod_spec: Dict[str, Any], config: OperatorConfig, label: Optional[NodeLabelConfig] = None) -> None:
    """Pin a pod spec to labelled nodes with a toleration and required node affinity.

    Only the selector-plus-taint mode touches the pod spec; selector-only mode is
    expressed through the namespace annotation instead.
    """

    if config.kubernetes.pod_placement_mode is not PodPlacementMode.NODE_SELECTOR_AND_TAINTS:
        return
    label = label or config.kubernetes.node_labels.system
    pod_spec["tolerations"] = [
        {"effect": "NoExecute", "key": label.key, "operator": "Equal", "value": label.value}
    ]
    pod_spec["affinity"] = {
        "nodeAffinity": {
            "requiredDuringSchedulingIgnoredDuringExecution": {
                "nodeSelectorTerms": [
                    {"matchExpressions": [{"key": label.key, "operator": "In", "values": [label.value]}]}
                ]
            }
        }
    }


def ensure_proxy_env(container: Dict[str, Any], proxy: HttpProxyConfig) -> None:
    if not proxy.is_configured:
        return
    env = ensure_array(container, "env")
    ensure_env_var(env, "HTTP_PROXY", proxy.address)
    ensure_env_var(env, "HTTPS_PROXY", proxy.address)
    if not is_blank(proxy.no_proxy):
        ensure_env_var(env, "NO_PROXY", proxy.no_proxy)


def ensure_volume(pod_spec: Dict[str, Any], volume: Dict[str, Any]) -> bool:
    return ensure_named_entry(ensure_array(pod_spec, "volumes"), volume)


def ensure_volume_mount(container: Dict[str, Any], mount: Dict[str, Any]) -> bool:
    return ensure_named_entry(ensure_array(container, "volumeMounts"), mount)


def service_account_volume() -> Dict[str, Any]:
    """Projected token volume replacing the automatically mounted service account token."""

    return copy.deepcopy(_SERVICE_ACCOUNT_VOLUME)


def service_account_mount() -> Dict[str, Any]:
    return {"mountPath": SERVICE_ACCOUNT_MOUNT_PATH, "name": SERVICE_ACCOUNT_VOLUME_NAME, "readOnly": True}


def apply_service_account_attachments(tree: Manifest) -> None:
    """Add the projected service account volume to the pod and mount it in the first container."""

    pod_spec = ensure_object_path(tree, "spec.template.spec")
    container = ensure_first_container(tree)
    ensure_volume_mount(container, service_account_mount())
    ensure_volume(pod_spec, service_account_volume())


def ca_volume(secret_name: str, key: str) -> Dict[str, Any]:
    return {
        "name": CA_VOLUME_NAME,
        "secret": {"secretName": secret_name, "items": [{"key": key, "path": key}]},
    }


def ca_mount(key: str) -> Dict[str, Any]:
    return {"name": CA_VOLUME_NAME, "mountPath": f"{CA_CERTS_DIR}/{key}", "subPath": key, "readOnly": True}


def apply_custom_ca(tree: Manifest, secret_name: str, key: str) -> None:
    """Mount a custom CA bundle into the first container's certificate directory."""

    pod_spec = ensure_object_path(tree, "spec.template.spec")
    container = ensure_first_container(tree)
    ensure_volume_mount(container, ca_mount(key))
    ensure_volume(pod_spec, ca_volume(secret_name, key))
    ensure_env_var(ensure_array(container, "env"), "SSL_CERT_DIR", CA_CERTS_DIR)


def _rule_targets_service_accounts(rule: Dict[str, Any]) -> bool:
    resources = rule.get("resources")
    if not isinstance(resources, list):
        return False
    return any(isinstance(item, str) and item.lower().startswith("serviceaccounts") for item in resources)


def prefix_service_account_resource_names(tree: Manifest) -> None:
    """Prefix ``resourceNames`` of RBAC rules that reference service accounts."""

    rules = tree.get("rules")
    if not isinstance(rules, list):
        return
    for rule in rules:
        if not isinstance(rule, dict) or not _rule_targets_service_accounts(rule):
            continue
        names: List[Any] = rule.get("resourceNames")
        if not isinstance(names, list):
            continue
        rule["resourceNames"] = [ensure_prefixed(item) if isinstance(item, str) else item for item in names]
