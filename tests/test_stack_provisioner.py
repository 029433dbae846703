from unittest.mock import MagicMock

from dataplane_bootstrap.constants import ANNOTATION_EKS_ROLE_ARN
from dataplane_bootstrap.kube import WriteOutcome
from dataplane_bootstrap.provisioning.stack import StackProvisioner

IAM_ROLE = {
    "s3": {
        "enabled": True,
        "url": "s3://state-bucket",
        "authenticationMethod": "IAMRole",
        "iamRole": "arn:aws:iam::123456789012:role/data-plane",
    }
}


def _provisioner(config, operator_info):
    api = MagicMock()
    api.upsert.return_value = WriteOutcome.CREATED
    return StackProvisioner(api, config, operator_info)


def _identity(manifest):
    return manifest["kind"], manifest["metadata"]["name"], manifest["metadata"].get("namespace")


def test_rbac_manifests(config, operator_info):
    manifests = _provisioner(config, operator_info).build_rbac_manifests(
        "cn-data-plane", ["cn-system", "cn-cni", "cn-cni", ""]
    )

    assert [_identity(manifest) for manifest in manifests] == [
        ("ServiceAccount", "cn-data-plane", "cn-system"),
        ("ClusterRoleBinding", "cn-system:cn-data-plane:system:auth-delegator", None),
        ("ClusterRole", "cn-data-plane-admin", None),
        ("ClusterRoleBinding", "cn-data-plane-admin", None),
        ("Role", "cn-data-plane-reader", "kube-system"),
        ("RoleBinding", "cn-data-plane-reader", "kube-system"),
        ("Role", "cn-data-plane-admin", "cn-system"),
        ("RoleBinding", "cn-data-plane-admin", "cn-system"),
        ("Role", "cn-data-plane-admin", "cn-cni"),
        ("RoleBinding", "cn-data-plane-admin", "cn-cni"),
    ]
    assert manifests[1]["roleRef"]["name"] == "system:auth-delegator"
    assert all(rule["verbs"] == ["*"] for rule in manifests[2]["rules"])
    assert manifests[4]["rules"][0]["verbs"] == ["get", "list", "watch"]
    assert manifests[9]["subjects"] == [{"kind": "ServiceAccount", "name": "cn-data-plane", "namespace": "cn-system"}]


def test_service_account_annotated_for_iam_role(make_config, operator_info):
    account = _provisioner(make_config(**IAM_ROLE), operator_info).build_service_account()
    assert account["metadata"]["annotations"] == {ANNOTATION_EKS_ROLE_ARN: "arn:aws:iam::123456789012:role/data-plane"}


def test_service_account_without_s3_has_no_annotation(config, operator_info):
    assert "annotations" not in _provisioner(config, operator_info).build_service_account()["metadata"]


def test_state_pvc_skipped_with_s3(make_config, operator_info):
    provisioner = _provisioner(make_config(**IAM_ROLE), operator_info)

    assert provisioner.apply_state_pvc() is None
    provisioner.api.upsert.assert_not_called()


def test_state_pvc_written_without_s3(config, operator_info):
    provisioner = _provisioner(config, operator_info)

    assert provisioner.apply_state_pvc() is WriteOutcome.CREATED

    (claim,) = [call.args[0] for call in provisioner.api.upsert.call_args_list]
    assert claim["kind"] == "PersistentVolumeClaim"
    assert claim["metadata"]["namespace"] == "cn-system"


def test_config_secret_and_rbac_go_through_upsert(config, operator_info):
    provisioner = _provisioner(config, operator_info)

    assert provisioner.apply_config_secret() is WriteOutcome.CREATED
    provisioner.apply_rbac()

    written = [call.args[0] for call in provisioner.api.upsert.call_args_list]
    assert written[0]["metadata"]["name"] == "cn-data-plane-config"
    rbac_namespaces = {manifest["metadata"].get("namespace") for manifest in written if manifest["kind"] == "Role"}
    assert rbac_namespaces == {"kube-system", "cn-system", "cn-cni", "cn-ci"}
