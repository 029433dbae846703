"""The data plane configuration secret consumed by the stack workspace."""
from __future__ import annotations

import json
from typing import Dict, Optional
from urllib.parse import urlsplit

from .. import constants as c
from ..config import NpmRegistryConfig, OperatorConfig, S3AuthenticationMethod
from ..manifest_editor import Manifest
from ..utils import b64encode_text, canonical_base64, is_blank


def build_npmrc(npm_registry: NpmRegistryConfig) -> str:
    """Render an ``.npmrc`` pointing at the configured registry; empty without URL or token."""

    if is_blank(npm_registry.url) or is_blank(npm_registry.access_token):
        return ""
    registry_url = npm_registry.url.strip()
    if not registry_url.lower().startswith("http"):
        registry_url = f"https://{registry_url.lstrip('/')}"

    auth_host = registry_url
    parts = urlsplit(registry_url)
    if parts.scheme and parts.hostname:
        path = parts.path.rstrip("/")
        registry_url = f"{parts.scheme}://{parts.netloc}{path}"
        auth_host = f"{parts.hostname}{path}"
    return f"registry={registry_url}\n//{auth_host}/:_authToken={npm_registry.access_token}\n"


def registry_config_json(hostname: str, username: str, password: str) -> str:
    auth = b64encode_text(f"{username}:{password}")
    return json.dumps({"auths": {hostname: {"auth": auth}}}, separators=(",", ":"))


def config_values(config: OperatorConfig) -> Dict[str, str]:
    """Plain-text values of the configuration secret keyed by their secret keys.

    Blank settings are left out; the dedication, proxy and S3 flags are always present.
    The custom CA is binary-safe and is added by :func:`build_config_secret` instead.
    """

    namespaces = config.kubernetes.namespaces
    labels = config.kubernetes.node_labels
    registry = config.container_registry
    proxy = config.http_proxy
    s3 = config.s3

    s3_region: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_role: Optional[str] = None
    if s3.enabled:
        s3_region = s3.region
        if s3.authentication_method is S3AuthenticationMethod.ACCESS_KEY_SECRET_KEY:
            s3_access_key, s3_secret_key = s3.access_key, s3.secret_key
        else:
            s3_role = s3.iam_role

    candidates = [
        (c.KEY_SCM_AUTH_TOKEN, config.scm.access_token),
        (c.KEY_SCM_AUTH_PASSWORD, config.scm.password),
        (c.KEY_SCM_AUTH_USERNAME, config.scm.username),
        (c.KEY_PULUMI_PASSPHRASE, config.pulumi.passphrase),
        (c.KEY_TARGET_NAMESPACE, namespaces.system.name),
        (c.KEY_CNI_NAMESPACE_NAME, namespaces.cni.name),
        (c.KEY_CI_PIPELINES_NAMESPACE_NAME, namespaces.ci_pipelines.name),
        (c.KEY_SYSTEM_NODE_LABEL_KEY, labels.system.key),
        (c.KEY_SYSTEM_NODE_LABEL_VALUE, labels.system.value),
        (c.KEY_APPLICATION_NODE_LABEL_KEY, labels.application.key),
        (c.KEY_APPLICATION_NODE_LABEL_VALUE, labels.application.value),
        (c.KEY_CONTAINER_REGISTRY_USERNAME, registry.username),
        (c.KEY_CONTAINER_REGISTRY_PASSWORD, registry.password),
        (c.KEY_HTTP_PROXY_HOSTNAME, proxy.hostname),
        (c.KEY_HTTP_PROXY_PORT, str(proxy.port) if proxy.port is not None else None),
        (c.KEY_HTTP_PROXY_NO_PROXY, proxy.no_proxy),
        (c.KEY_S3_ACCESS_KEY, s3_access_key),
        (c.KEY_S3_SECRET_KEY, s3_secret_key),
        (c.KEY_S3_ACCESS_ROLE, s3_role),
        (c.KEY_S3_REGION, s3_region),
        (c.KEY_NODE_PLACEMENT_MODE, config.kubernetes.pod_placement_mode.to_config_string()),
    ]
    values = {key: value for key, value in candidates if not is_blank(value)}

    values[c.KEY_CNI_NAMESPACE_ENABLED] = _flag(namespaces.cni.is_dedicated_relative_to(namespaces.system))
    values[c.KEY_CI_PIPELINES_NAMESPACE_ENABLED] = _flag(
        namespaces.ci_pipelines.is_dedicated_relative_to(namespaces.system)
    )
    if not (is_blank(registry.hostname) or is_blank(registry.username) or is_blank(registry.password)):
        values[c.KEY_CONTAINER_REGISTRY_CONFIG_JSON] = registry_config_json(
            registry.hostname, registry.username, registry.password
        )
    values[c.KEY_HTTP_PROXY_ENABLED] = _flag(proxy.enabled)
    values[c.KEY_S3_ENABLED] = _flag(s3.enabled)
    values[c.KEY_NPMRC] = build_npmrc(config.npm_registry)
    return values


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_config_secret(config: OperatorConfig) -> Manifest:
    data = {key: b64encode_text(value) for key, value in config_values(config).items()}
    if config.security.has_custom_ca:
        data[c.KEY_PKI_CUSTOM_CA_CERT] = canonical_base64(config.security.custom_ca_base64)
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "type": "Opaque",
        "metadata": {"name": c.CONFIG_SECRET_NAME, "namespace": config.system_namespace},
        "data": data,
    }
