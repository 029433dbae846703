import base64
from unittest.mock import MagicMock

import pytest

from dataplane_bootstrap.constants import CUSTOM_CA_SECRET_NAME, SYSTEM_IMAGE_PULL_SECRET
from dataplane_bootstrap.errors import UnsupportedKindError
from dataplane_bootstrap.mutations import LABEL_NAME, LABEL_VERSION
from dataplane_bootstrap.provisioning.common import build_custom_ca_secret, provision_custom_ca_secret
from dataplane_bootstrap.provisioning.operator import OperatorProvisioner
from dataplane_bootstrap.templates import TemplateLoader


def _provisioner(config, operator_info, loader=None, waiter=None):
    return OperatorProvisioner(MagicMock(), config, loader or TemplateLoader(), waiter or MagicMock(), operator_info)


def _by_kind(manifests, kind):
    return [manifest for manifest in manifests if manifest["kind"] == kind]


def test_crds_are_cluster_scoped_documents(config, operator_info):
    manifests = _provisioner(config, operator_info).build_crd_manifests()

    names = {manifest["metadata"]["name"] for manifest in manifests}
    assert "stacks.pulumi.com" in names
    assert all("namespace" not in manifest["metadata"] for manifest in manifests)


def test_rbac_is_prefixed_and_namespaced(config, operator_info):
    manifests = _provisioner(config, operator_info).build_rbac_manifests("cn-system")

    (account,) = _by_kind(manifests, "ServiceAccount")
    assert account["metadata"]["name"] == "cn-pulumi-controller-manager"
    assert account["metadata"]["namespace"] == "cn-system"
    assert account["metadata"]["labels"][LABEL_VERSION] == operator_info.operator_version

    (binding,) = _by_kind(manifests, "ClusterRoleBinding")
    assert binding["metadata"]["name"] == "cn-pulumi-manager-rolebinding"
    assert binding["roleRef"]["name"] == "cn-pulumi-manager-role"
    assert binding["subjects"] == [
        {"kind": "ServiceAccount", "name": "cn-pulumi-controller-manager", "namespace": "cn-system"}
    ]

    (cluster_role,) = _by_kind(manifests, "ClusterRole")
    token_rules = [rule for rule in cluster_role["rules"] if "serviceaccounts/token" in rule["resources"]]
    assert token_rules[0]["resourceNames"] == ["cn-pulumi-controller-manager"]

    (role_binding,) = _by_kind(manifests, "RoleBinding")
    assert role_binding["metadata"]["namespace"] == "cn-system"
    assert role_binding["roleRef"]["name"] == "cn-pulumi-leader-election-role"


def test_unknown_rbac_kind_fails_fast(tmp_path, config, operator_info):
    rbac = tmp_path / "operator" / "rbac"
    rbac.mkdir(parents=True)
    (rbac / "extra.yaml").write_text("kind: ConfigMap\nmetadata:\n  name: x\n")
    loader = TemplateLoader(tmp_path, use_package=False)

    with pytest.raises(UnsupportedKindError) as excinfo:
        _provisioner(config, operator_info, loader).build_rbac_manifests("cn-system")
    assert "ConfigMap" in str(excinfo.value)


def test_manager_deployment_is_mutated(make_config, operator_info):
    config = make_config(
        httpProxy={"enabled": True, "hostname": "proxy", "port": 3128},
        security={"customCaBase64": "Y2VydA=="},
    )
    manifests = _provisioner(config, operator_info).build_manager_manifests()

    assert not _by_kind(manifests, "Namespace")
    (deployment,) = _by_kind(manifests, "Deployment")
    (service,) = _by_kind(manifests, "Service")
    assert deployment["metadata"]["name"] == "cn-pulumi-controller-manager"
    assert deployment["metadata"]["namespace"] == "cn-system"
    assert service["metadata"]["namespace"] == "cn-system"

    pod_spec = deployment["spec"]["template"]["spec"]
    assert deployment["spec"]["template"]["metadata"]["labels"][LABEL_NAME] == "cn-pulumi-kubernetes-operator"
    assert pod_spec["serviceAccountName"] == "cn-pulumi-controller-manager"
    assert pod_spec["imagePullSecrets"] == [{"name": SYSTEM_IMAGE_PULL_SECRET}]
    assert pod_spec["automountServiceAccountToken"] is False
    assert pod_spec["securityContext"]["runAsUser"] == 10001
    assert pod_spec["tolerations"][0]["key"] == "node-role"

    container = pod_spec["containers"][0]
    assert container["image"] == "registry.example.com/pulumi/pulumi-kubernetes-operator:v2.0.0"
    assert container["securityContext"]["readOnlyRootFilesystem"] is True
    assert {"name": "HTTP_PROXY", "value": "proxy:3128"} in container["env"]
    volumes = {volume["name"]: volume for volume in pod_spec["volumes"]}
    assert volumes["ca-certificates"]["secret"]["secretName"] == CUSTOM_CA_SECRET_NAME
    assert "serviceaccount-token" in volumes


def test_apply_and_wait_use_the_prefixed_deployment(config, operator_info):
    waiter = MagicMock()
    provisioner = _provisioner(config, operator_info, waiter=waiter)

    provisioner.apply_deployment()
    provisioner.wait_until_ready(120)

    kinds = [call.args[0]["kind"] for call in provisioner.api.upsert.call_args_list]
    assert kinds == ["Deployment", "Service"]
    waiter.wait_for_deployment.assert_called_once_with("cn-pulumi-controller-manager", "cn-system", 120)


def test_custom_ca_secret_is_normalised(make_config):
    api = MagicMock()
    config = make_config(security={"customCaBase64": "  Y2VydA==\n"})

    assert provision_custom_ca_secret(api, config) is True

    (secret,) = [call.args[0] for call in api.upsert.call_args_list]
    assert secret["metadata"]["name"] == CUSTOM_CA_SECRET_NAME
    assert secret["metadata"]["namespace"] == "cn-system"
    assert secret["data"] == {"cn_pki_custom_ca.cert": "Y2VydA=="}


def test_custom_ca_secret_skipped_without_ca(config):
    api = MagicMock()
    assert provision_custom_ca_secret(api, config) is False
    api.upsert.assert_not_called()


def test_binary_custom_ca_secret(make_config):
    der = b"\x30\x82\x03\xff\x80"
    config = make_config(security={"customCaBase64": base64.b64encode(der).decode()})

    secret = build_custom_ca_secret(config)

    assert base64.b64decode(secret["data"]["cn_pki_custom_ca.cert"]) == der
