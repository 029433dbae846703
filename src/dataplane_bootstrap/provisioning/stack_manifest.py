"""Builds the Pulumi Stack resource and the resources it depends on."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .. import constants as c
from ..config import OperatorConfig, S3AuthenticationMethod, ScmAuthenticationMethod
from ..manifest_editor import (
    Manifest,
    ensure_array,
    ensure_named_object,
    ensure_object_path,
    set_path,
)
from ..mutations import (
    apply_labels,
    apply_node_placement,
    bootstrap_labels,
    ca_mount,
    ca_volume,
    ensure_proxy_env,
    ensure_volume,
    ensure_volume_mount,
    resolve_image,
    service_account_mount,
    service_account_volume,
)
from ..templates import OperatorInfo
from ..utils import is_blank
from .config_secret import build_config_secret

POD_SPEC_PATH = "spec.workspaceTemplate.spec.podTemplate.spec"

# Keys that are mounted as files or passed explicitly instead of exported as stack config.
_NON_CONFIG_KEYS = frozenset({c.KEY_PULUMI_PASSPHRASE, c.KEY_NPMRC, c.KEY_CONTAINER_REGISTRY_CONFIG_JSON})


def format_config_key(key: str) -> str:
    """Map a secret key to its stack config name: ``cn_s3_enabled`` becomes ``cn:s3.enabled``."""

    formatted = key.replace("_", ".")
    if formatted.startswith("cn."):
        return "cn:" + formatted[len("cn."):]
    return formatted


def secret_ref(key: str, secret_name: str = c.CONFIG_SECRET_NAME) -> Dict[str, Any]:
    return {"type": "Secret", "secret": {"name": secret_name, "key": key}}


def _restricted_security_context() -> Dict[str, Any]:
    return {"readOnlyRootFilesystem": True, "allowPrivilegeEscalation": False}


def _mount(name: str, mount_path: str, sub_path: Optional[str] = None, read_only: bool = False) -> Dict[str, Any]:
    mount: Dict[str, Any] = {"name": name, "mountPath": mount_path}
    if sub_path:
        mount["subPath"] = sub_path
    if read_only:
        mount["readOnly"] = True
    return mount


class StackManifestBuilder:
    """Turns the configuration into the Stack, its configuration Secret and state claim."""

    def __init__(self, config: OperatorConfig, info: OperatorInfo) -> None:
        self.config = config
        self.info = info

    @property
    def operator_image(self) -> str:
        return resolve_image(self.config, self.info.operator_image)

    @property
    def runtime_image(self) -> str:
        version = self.config.pulumi.images.runtime_version
        if is_blank(version):
            version = self.info.runtime_version
        return resolve_image(self.config, f"{self.info.runtime_image}:{version}")

    @property
    def plugins_image(self) -> str:
        version = self.config.pulumi.images.plugins_version
        if is_blank(version):
            version = self.info.plugins_version
        image = self.info.plugins_image
        if not is_blank(version):
            image = f"{image}:{version}"
        return resolve_image(self.config, image)

    @property
    def backend_url(self) -> str:
        if self.config.s3.enabled:
            return self.config.s3.url
        return f"file:///{c.PULUMI_STATE_PATH}"

    def build_config_secret(self) -> Manifest:
        secret = build_config_secret(self.config)
        apply_labels(secret, bootstrap_labels())
        return secret

    def build_state_pvc(self) -> Manifest:
        spec: Dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": c.STATE_PVC_SIZE}},
        }
        if not is_blank(self.config.kubernetes.storage_class):
            spec["storageClassName"] = self.config.kubernetes.storage_class
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {
                "name": c.STATE_PVC_NAME,
                "namespace": self.config.system_namespace,
                "labels": bootstrap_labels(),
            },
            "spec": spec,
        }

    def build_stack(self, service_account_name: str = c.SERVICE_ACCOUNT_NAME) -> Manifest:
        stack: Manifest = {
            "apiVersion": c.STACK_API_VERSION,
            "kind": "Stack",
            "metadata": {"name": c.STACK_NAME, "namespace": self.config.system_namespace},
            "spec": {
                "serviceAccountName": service_account_name,
                "stack": c.STACK_NAME,
                "backend": self.backend_url,
                "envRefs": {
                    "HOME": {"type": "Literal", "literal": {"value": c.PULUMI_HOME_PATH}},
                    "PULUMI_CONFIG_PASSPHRASE": secret_ref(c.KEY_PULUMI_PASSPHRASE),
                },
                "destroyOnFinalize": True,
                "retryOnUpdateConflict": True,
                "workspaceTemplate": self._workspace_template(),
            },
        }
        self._apply_source(stack)
        self._apply_s3_credentials(stack)
        self._apply_config_refs(stack)
        self._configure_pulumi_container(stack)
        self._configure_operator_init_container(stack, "bootstrap")
        self._configure_fetch_container(stack)
        self._configure_install_plugins_container(stack)
        apply_labels(stack, bootstrap_labels())
        apply_labels(stack, bootstrap_labels(), "spec.workspaceTemplate.spec.podTemplate.metadata")
        return stack

    def _workspace_template(self) -> Dict[str, Any]:
        run_as_id = self.config.kubernetes.security_context_run_as_id
        pod_spec: Dict[str, Any] = {
            "automountServiceAccountToken": False,
            "terminationGracePeriodSeconds": 3600,
            "securityContext": {"runAsUser": run_as_id, "runAsGroup": run_as_id, "fsGroup": run_as_id},
            "imagePullSecrets": [{"name": c.SYSTEM_IMAGE_PULL_SECRET}],
            "containers": [{"name": "pulumi", "volumeMounts": [service_account_mount()]}],
            "volumes": [service_account_volume()],
        }
        apply_node_placement(pod_spec, self.config, self.config.kubernetes.node_labels.system)
        return {
            "metadata": {"labels": bootstrap_labels()},
            "spec": {
                "resources": {
                    "requests": {"memory": "500Mi", "cpu": "500m"},
                    "limits": {"memory": "1500Mi", "cpu": "1000m"},
                },
                "image": self.runtime_image,
                "podTemplate": {"spec": pod_spec},
            },
        }

    def _apply_source(self, stack: Manifest) -> None:
        """Point the stack at FluxCD's GitRepository or directly at the SCM repository."""

        if self.config.fluxcd_enabled:
            set_path(stack, "spec.fluxSource.sourceRef.apiVersion", c.FLUXCD_SOURCE_API_VERSION)
            set_path(stack, "spec.fluxSource.sourceRef.kind", "GitRepository")
            set_path(stack, "spec.fluxSource.sourceRef.name", c.FLUXCD_GIT_REPOSITORY_NAME)
            set_path(stack, "spec.fluxSource.dir", self.config.environment.name)
            return

        set_path(stack, "spec.projectRepo", self.config.scm.url)
        set_path(stack, "spec.repoDir", self.config.environment.name)
        set_path(stack, "spec.resyncFrequencySeconds", c.SCM_SYNC_INTERVAL_SECONDS)
        set_path(stack, "spec.branch", f"refs/heads/{c.SCM_DEFAULT_BRANCH}")
        if self.config.scm.authentication_method is ScmAuthenticationMethod.ACCESS_TOKEN:
            set_path(stack, "spec.gitAuth", {"accessToken": secret_ref(c.KEY_SCM_AUTH_TOKEN)})
        else:
            set_path(
                stack,
                "spec.gitAuth",
                {
                    "basicAuth": {
                        "password": secret_ref(c.KEY_SCM_AUTH_PASSWORD),
                        "userName": secret_ref(c.KEY_SCM_AUTH_USERNAME),
                    }
                },
            )

    def _apply_s3_credentials(self, stack: Manifest) -> None:
        s3 = self.config.s3
        if not s3.enabled or s3.authentication_method is not S3AuthenticationMethod.ACCESS_KEY_SECRET_KEY:
            return
        env_refs = ensure_object_path(stack, "spec.envRefs")
        env_refs["AWS_ACCESS_KEY_ID"] = secret_ref(c.KEY_S3_ACCESS_KEY)
        env_refs["AWS_SECRET_ACCESS_KEY"] = secret_ref(c.KEY_S3_SECRET_KEY)

    def _apply_config_refs(self, stack: Manifest) -> None:
        secrets_ref = ensure_object_path(stack, "spec.secretsRef")
        for key in build_config_secret(self.config)["data"]:
            if key in _NON_CONFIG_KEYS:
                continue
            secrets_ref[format_config_key(key)] = secret_ref(key)

    def _pod_spec(self, stack: Manifest) -> Dict[str, Any]:
        return ensure_object_path(stack, POD_SPEC_PATH)

    def _init_container(self, stack: Manifest, name: str) -> Dict[str, Any]:
        return ensure_named_object(ensure_array(self._pod_spec(stack), "initContainers"), name)

    def _ensure_ca_mount(self, container: Dict[str, Any]) -> None:
        if self.config.security.has_custom_ca:
            ensure_volume_mount(container, ca_mount(c.KEY_PKI_CUSTOM_CA_CERT))

    def _configure_pulumi_container(self, stack: Manifest) -> None:
        pod_spec = self._pod_spec(stack)
        container = ensure_named_object(ensure_array(pod_spec, "containers"), "pulumi")
        container["securityContext"] = _restricted_security_context()

        s3_enabled = self.config.s3.enabled
        mounts: List[Dict[str, Any]] = [
            _mount("tmp", "/tmp"),
            _mount("npmrc", f"{c.PULUMI_HOME_PATH}/.npmrc", c.KEY_NPMRC, read_only=True),
            _mount("pulumi", c.PULUMI_HOME_PATH),
        ]
        if not s3_enabled:
            mounts.append(_mount("pulumi-state", c.PULUMI_STATE_PATH))
        mounts.append(
            _mount(
                "docker-auth",
                f"{c.PULUMI_HOME_PATH}/.docker/config.json",
                c.KEY_CONTAINER_REGISTRY_CONFIG_JSON,
                read_only=True,
            )
        )
        for mount in mounts:
            ensure_volume_mount(container, mount)
        self._ensure_ca_mount(container)
        ensure_proxy_env(container, self.config.http_proxy)

        volumes: List[Dict[str, Any]] = [
            {"name": "npmrc", "secret": {"secretName": c.CONFIG_SECRET_NAME}},
            {"name": "pulumi", "emptyDir": {}},
            {"name": "tmp", "emptyDir": {}},
        ]
        if not s3_enabled:
            volumes.append({"name": "pulumi-state", "persistentVolumeClaim": {"claimName": c.STATE_PVC_NAME}})
        volumes.append({"name": "docker-auth", "secret": {"secretName": c.CONFIG_SECRET_NAME}})
        if self.config.security.has_custom_ca:
            volumes.append(ca_volume(c.CONFIG_SECRET_NAME, c.KEY_PKI_CUSTOM_CA_CERT))
        for volume in volumes:
            ensure_volume(pod_spec, volume)

    def _configure_operator_init_container(self, stack: Manifest, name: str) -> Dict[str, Any]:
        container = self._init_container(stack, name)
        container["image"] = self.operator_image
        container["securityContext"] = _restricted_security_context()
        container["resources"] = {"limits": {"memory": "512Mi", "cpu": "500m"}}
        return container

    def _configure_fetch_container(self, stack: Manifest) -> None:
        container = self._configure_operator_init_container(stack, "fetch")
        ensure_volume_mount(container, _mount("tmp", "/tmp"))
        self._ensure_ca_mount(container)
        ensure_proxy_env(container, self.config.http_proxy)

    def _configure_install_plugins_container(self, stack: Manifest) -> None:
        container = self._init_container(stack, "install-plugins")
        container["securityContext"] = _restricted_security_context()
        container["image"] = self.plugins_image
        container["resources"] = {"limits": {"memory": "128Mi", "cpu": "200m"}}
        container["command"] = [
            "sh",
            "-c",
            f"mkdir -p {c.PULUMI_HOME_PATH}/.pulumi/plugins\n"
            f"cp -f -r /data/.pulumi/plugins/. {c.PULUMI_HOME_PATH}/.pulumi/plugins/\n",
        ]
        container["volumeMounts"] = [_mount("pulumi", c.PULUMI_HOME_PATH)]
