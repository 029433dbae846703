from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException

from dataplane_bootstrap.config import ClusterContext
from dataplane_bootstrap.errors import ManifestError, UnsupportedKindError
from dataplane_bootstrap.kube import MERGE_PATCH, DataPlaneAPI, WriteOutcome
from dataplane_bootstrap.resources.registry import DEFAULT_REGISTRY, ApplyStrategy, KindRegistry, KindSpec
from dataplane_bootstrap.retry import ReadExecutor


def _make_api():
    api = DataPlaneAPI.__new__(DataPlaneAPI)
    api.context = ClusterContext()
    api.dynamic = MagicMock()
    api.reads = ReadExecutor(attempts=1, delay=0)
    api.registry = DEFAULT_REGISTRY
    return api


def _secret():
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {"name": "creds", "namespace": "cn-system"},
        "data": {"token": "dG9rZW4="},
    }


def _pvc(storage: str):
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": "state", "namespace": "cn-system"},
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": "standard",
            "resources": {"requests": {"storage": storage}},
        },
    }


def test_apply_uses_server_side_apply_with_field_manager():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.server_side_apply.return_value = {"kind": "Namespace"}

    result = api.apply({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "cn-system"}})

    assert result == {"kind": "Namespace"}
    kwargs = resource.server_side_apply.call_args.kwargs
    assert kwargs["field_manager"] == "codenow.com/cli"
    assert kwargs["force_conflicts"] is True
    assert kwargs["namespace"] is None


def test_apply_rejects_unknown_kind():
    api = _make_api()
    with pytest.raises(UnsupportedKindError):
        api.apply({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "x", "namespace": "y"}})
    api.dynamic.resources.get.assert_not_called()


def test_namespaced_kind_requires_namespace():
    api = _make_api()
    with pytest.raises(ManifestError):
        api.apply({"apiVersion": "v1", "kind": "ServiceAccount", "metadata": {"name": "sa"}})


def test_create_or_replace_creates_when_missing():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.side_effect = ApiException(status=404, reason="not found")

    outcome = api.create_or_replace(_secret())

    assert outcome is WriteOutcome.CREATED
    resource.create.assert_called_once_with(body=_secret(), namespace="cn-system")
    resource.replace.assert_not_called()


def test_create_or_replace_replaces_with_resource_version():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = {"metadata": {"name": "creds", "resourceVersion": "42"}}

    outcome = api.create_or_replace(_secret())

    assert outcome is WriteOutcome.REPLACED
    resource.create.assert_not_called()
    body = resource.replace.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "42"
    assert body["data"] == _secret()["data"]


def test_create_or_replace_propagates_other_errors():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.side_effect = ApiException(status=403, reason="forbidden")

    with pytest.raises(ApiException):
        api.create_or_replace(_secret())
    resource.create.assert_not_called()


def test_upsert_dispatches_on_registered_strategy():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.side_effect = ApiException(status=404)

    assert api.upsert(_secret()) is WriteOutcome.CREATED
    assert api.upsert({"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "n"}}) is WriteOutcome.APPLIED


def test_pvc_created_when_missing():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.side_effect = ApiException(status=404)

    assert api.ensure_persistent_volume_claim(_pvc("1000Mi")) is WriteOutcome.CREATED
    resource.create.assert_called_once()


def test_pvc_with_equal_storage_is_not_patched():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _pvc("1000Mi")

    assert api.ensure_persistent_volume_claim(_pvc("1000Mi")) is WriteOutcome.UNCHANGED
    resource.patch.assert_not_called()
    resource.replace.assert_not_called()


def test_pvc_equal_in_different_units_is_not_patched():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _pvc("1Gi")

    assert api.ensure_persistent_volume_claim(_pvc("1024Mi")) is WriteOutcome.UNCHANGED
    resource.patch.assert_not_called()


def test_pvc_growth_is_a_single_storage_merge_patch():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _pvc("1000Mi")

    assert api.ensure_persistent_volume_claim(_pvc("2Gi")) is WriteOutcome.PATCHED

    resource.patch.assert_called_once_with(
        body={"spec": {"resources": {"requests": {"storage": "2Gi"}}}},
        name="state",
        namespace="cn-system",
        content_type=MERGE_PATCH,
    )


def test_pvc_shrink_is_ignored():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _pvc("5Gi")

    assert api.ensure_persistent_volume_claim(_pvc("1000Mi")) is WriteOutcome.UNCHANGED
    resource.patch.assert_not_called()


def test_list_pods_returns_items():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = {"items": [{"metadata": {"name": "p"}}]}

    pods = api.list_pods("app=x")

    assert pods == [{"metadata": {"name": "p"}}]
    resource.get.assert_called_once_with(namespace=None, label_selector="app=x")


def test_upsert_resizes_claims_instead_of_replacing():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _pvc("500Mi")

    assert api.upsert(_pvc("1000Mi")) is WriteOutcome.PATCHED
    resource.replace.assert_not_called()


def test_upsert_follows_the_registry_not_the_kind_name():
    api = _make_api()
    api.registry = KindRegistry([KindSpec("Secret", "v1", namespaced=True, strategy=ApplyStrategy.CREATE_OR_RESIZE)])
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.get.return_value = _secret()

    assert api.upsert(_secret()) is WriteOutcome.UNCHANGED
    resource.replace.assert_not_called()
    resource.patch.assert_not_called()


def test_patch_sends_a_merge_patch():
    api = _make_api()
    resource = MagicMock()
    api.dynamic.resources.get.return_value = resource
    resource.patch.return_value = {"spec": {"preview": True}}

    result = api.patch("pulumi.com/v1", "Stack", "cn-data-plane", "cn-system", {"spec": {"preview": True}})

    assert result == {"spec": {"preview": True}}
    api.dynamic.resources.get.assert_called_once_with(api_version="pulumi.com/v1", kind="Stack")
    resource.patch.assert_called_once_with(
        body={"spec": {"preview": True}},
        name="cn-data-plane",
        namespace="cn-system",
        content_type=MERGE_PATCH,
    )
