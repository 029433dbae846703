"""Configuration models for the data plane bootstrap."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import DEFAULT_SYSTEM_NAMESPACE, FIELD_MANAGER
from .utils import canonical_base64, is_blank


class ConfigModel(BaseModel):
    """Shared base model for configuration records loaded from camelCase documents."""

    model_config = ConfigDict(populate_by_name=True)


class PodPlacementMode(str, Enum):
    POD_NODE_SELECTOR = "PodNodeSelector"
    NODE_SELECTOR_AND_TAINTS = "NodeSelectorAndTaints"

    def to_config_string(self) -> str:
        """Return the value stored in the configuration secret."""

        if self is PodPlacementMode.POD_NODE_SELECTOR:
            return "pod-node-selector"
        return "node-selector-and-taints"


class ScmAuthenticationMethod(str, Enum):
    USERNAME_PASSWORD = "UsernamePassword"
    ACCESS_TOKEN = "AccessToken"


class S3AuthenticationMethod(str, Enum):
    ACCESS_KEY_SECRET_KEY = "AccessKeySecretKey"
    IAM_ROLE = "IAMRole"


class ContainerRegistryConfig(ConfigModel):
    hostname: str = ""
    username: str = ""
    password: str = ""


class NpmRegistryConfig(ConfigModel):
    url: str = ""
    access_token: str = Field(default="", alias="accessToken")


class NamespaceConfig(ConfigModel):
    name: str = ""

    def is_dedicated_relative_to(self, system: "NamespaceConfig") -> bool:
        """A namespace is dedicated when its name differs from the system namespace."""

        return self.name != system.name


class NamespacesConfig(ConfigModel):
    """The three namespaces the data plane uses.

    Blank CNI and CI pipeline names fall back to the system namespace, which
    makes them non-dedicated.
    """

    system: NamespaceConfig = Field(default_factory=NamespaceConfig)
    cni: NamespaceConfig = Field(default_factory=NamespaceConfig)
    ci_pipelines: NamespaceConfig = Field(default_factory=NamespaceConfig, alias="ciPipelines")

    @model_validator(mode="after")
    def _apply_defaults(self) -> "NamespacesConfig":
        if is_blank(self.system.name):
            self.system.name = DEFAULT_SYSTEM_NAMESPACE
        if is_blank(self.cni.name):
            self.cni.name = self.system.name
        if is_blank(self.ci_pipelines.name):
            self.ci_pipelines.name = self.system.name
        return self


class NodeLabelConfig(ConfigModel):
    key: str = ""
    value: str = ""

    def as_selector(self) -> str:
        return f"{self.key}={self.value}"


class NodeLabelsConfig(ConfigModel):
    system: NodeLabelConfig = Field(default_factory=NodeLabelConfig)
    application: NodeLabelConfig = Field(default_factory=NodeLabelConfig)


class KubernetesConfig(ConfigModel):
    namespaces: NamespacesConfig = Field(default_factory=NamespacesConfig)
    node_labels: NodeLabelsConfig = Field(default_factory=NodeLabelsConfig, alias="nodeLabels")
    storage_class: Optional[str] = Field(default=None, alias="storageClass")
    pod_placement_mode: PodPlacementMode = Field(
        default=PodPlacementMode.NODE_SELECTOR_AND_TAINTS, alias="podPlacementMode"
    )
    security_context_run_as_id: int = Field(default=10001, alias="securityContextRunAsId")


class HttpProxyConfig(ConfigModel):
    enabled: bool = False
    hostname: Optional[str] = None
    port: Optional[int] = None
    no_proxy: Optional[str] = Field(default=None, alias="noProxy")

    @property
    def is_configured(self) -> bool:
        """Proxy settings are injected only when enabled with both hostname and port present."""

        return self.enabled and not is_blank(self.hostname) and self.port is not None

    @property
    def address(self) -> str:
        return f"{self.hostname}:{self.port}"


class S3Config(ConfigModel):
    enabled: bool = False
    url: Optional[str] = None
    bucket: Optional[str] = None
    region: Optional[str] = None
    authentication_method: Optional[S3AuthenticationMethod] = Field(
        default=None, alias="authenticationMethod"
    )
    access_key: Optional[str] = Field(default=None, alias="accessKey")
    secret_key: Optional[str] = Field(default=None, alias="secretKey")
    iam_role: Optional[str] = Field(default=None, alias="iamRole")

    @model_validator(mode="after")
    def _check_credentials(self) -> "S3Config":
        if not self.enabled:
            return self
        if is_blank(self.url):
            raise ValueError("s3.url is required when S3 is enabled.")
        if self.authentication_method is S3AuthenticationMethod.ACCESS_KEY_SECRET_KEY:
            if is_blank(self.access_key) or is_blank(self.secret_key):
                raise ValueError("s3.accessKey and s3.secretKey are required for AccessKeySecretKey authentication.")
        elif self.authentication_method is S3AuthenticationMethod.IAM_ROLE:
            if is_blank(self.iam_role):
                raise ValueError("s3.iamRole is required for IAMRole authentication.")
        return self


class ScmConfig(ConfigModel):
    url: str = ""
    authentication_method: ScmAuthenticationMethod = Field(
        default=ScmAuthenticationMethod.USERNAME_PASSWORD, alias="authenticationMethod"
    )
    username: Optional[str] = None
    password: Optional[str] = None
    access_token: Optional[str] = Field(default=None, alias="accessToken")

    @model_validator(mode="after")
    def _check_credentials(self) -> "ScmConfig":
        if is_blank(self.url):
            return self
        if self.authentication_method is ScmAuthenticationMethod.ACCESS_TOKEN:
            if is_blank(self.access_token):
                raise ValueError("scm.accessToken is required for AccessToken authentication.")
        elif is_blank(self.username) or is_blank(self.password):
            raise ValueError("scm.username and scm.password are required for UsernamePassword authentication.")
        return self


class EnvironmentConfig(ConfigModel):
    name: str = ""


class PulumiImagesConfig(ConfigModel):
    runtime_version: str = Field(default="", alias="runtimeVersion")
    plugins_version: str = Field(default="", alias="pluginsVersion")


class PulumiConfig(ConfigModel):
    images: PulumiImagesConfig = Field(default_factory=PulumiImagesConfig)
    install_crds: bool = Field(default=True, alias="installCrds")
    passphrase: str = ""


class FluxCDImagesConfig(ConfigModel):
    source_controller_version: str = Field(default="", alias="sourceControllerVersion")


class FluxCDConfig(ConfigModel):
    enabled: bool = False
    install_crds: bool = Field(default=True, alias="installCrds")
    images: FluxCDImagesConfig = Field(default_factory=FluxCDImagesConfig)


class SecurityConfig(ConfigModel):
    custom_ca_base64: Optional[str] = Field(default=None, alias="customCaBase64")

    @field_validator("custom_ca_base64")
    @classmethod
    def _check_custom_ca(cls, value: Optional[str]) -> Optional[str]:
        if is_blank(value):
            return value
        try:
            canonical_base64(value)
        except ValueError as exc:
            raise ValueError(f"security.customCaBase64 is not valid base64: {exc}") from exc
        return value

    @property
    def has_custom_ca(self) -> bool:
        return not is_blank(self.custom_ca_base64)


class OperatorConfig(ConfigModel):
    """Complete configuration of one data plane installation."""

    schema_: Optional[str] = Field(default=None, alias="$schema")
    container_registry: ContainerRegistryConfig = Field(
        default_factory=ContainerRegistryConfig, alias="containerRegistry"
    )
    npm_registry: NpmRegistryConfig = Field(default_factory=NpmRegistryConfig, alias="npmRegistry")
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    http_proxy: HttpProxyConfig = Field(default_factory=HttpProxyConfig, alias="httpProxy")
    s3: S3Config = Field(default_factory=S3Config)
    scm: ScmConfig = Field(default_factory=ScmConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    pulumi: PulumiConfig = Field(default_factory=PulumiConfig)
    fluxcd: Optional[FluxCDConfig] = None
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @property
    def system_namespace(self) -> str:
        return self.kubernetes.namespaces.system.name

    @property
    def fluxcd_enabled(self) -> bool:
        return self.fluxcd is not None and self.fluxcd.enabled

    @classmethod
    def from_file(cls, path: str | Path) -> "OperatorConfig":
        document_path = Path(path)
        data = yaml.safe_load(document_path.read_text())
        if not isinstance(data, dict):
            raise ValueError("Configuration file must contain a mapping at the top level.")
        return cls.model_validate(data)


class ClusterContext(BaseModel):
    """Connection context used to reach the target cluster."""

    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    verify_ssl: bool = True
    field_manager: str = Field(default=FIELD_MANAGER)
