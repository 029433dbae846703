from dataplane_bootstrap.config import HttpProxyConfig
from dataplane_bootstrap.constants import ANNOTATION_POD_NODE_SELECTOR, CA_VOLUME_NAME
from dataplane_bootstrap.mutations import (
    LABEL_NAME,
    LABEL_VERSION,
    apply_custom_ca,
    apply_labels,
    apply_node_placement,
    apply_service_account_attachments,
    component_labels,
    ensure_prefixed,
    ensure_proxy_env,
    ensure_volume,
    ensure_volume_mount,
    image_without_tag,
    node_selector_annotations,
    normalize_metadata_maps,
    prefix_service_account_resource_names,
    resolve_image,
    service_account_volume,
    try_get_image_tag,
)


def test_ensure_prefixed_handles_existing_prefixes():
    assert ensure_prefixed("controller-manager") == "cn-pulumi-controller-manager"
    assert ensure_prefixed("pulumi-controller-manager") == "cn-pulumi-controller-manager"
    assert ensure_prefixed("cn-pulumi-controller-manager") == "cn-pulumi-controller-manager"


def test_apply_labels_merges_existing_labels():
    tree = {"metadata": {"labels": {"keep": "me"}}}
    apply_labels(tree, component_labels("operator", "v1"))

    labels = tree["metadata"]["labels"]
    assert labels["keep"] == "me"
    assert labels[LABEL_NAME] == "operator"
    assert labels[LABEL_VERSION] == "v1"


def test_normalize_metadata_maps_coerces_values():
    tree = {"metadata": {"labels": {"a": True, "b": 3}, "annotations": {"c": {"x": 1}, "d": None}}}
    normalize_metadata_maps(tree)

    assert tree["metadata"]["labels"] == {"a": "true", "b": "3"}
    assert tree["metadata"]["annotations"] == {"c": '{"x":1}', "d": None}


def test_resolve_image_prefixes_registry(make_config):
    assert resolve_image(make_config(), "pulumi/pulumi:3") == "registry.example.com/pulumi/pulumi:3"
    bare = make_config(containerRegistry={"hostname": ""})
    assert resolve_image(bare, "pulumi/pulumi:3") == "pulumi/pulumi:3"


def test_image_tag_helpers_keep_registry_port():
    assert try_get_image_tag("host:5000/repo/image:v1") == "v1"
    assert try_get_image_tag("host:5000/repo/image") is None
    assert image_without_tag("host:5000/repo/image:v1") == "host:5000/repo/image"
    assert image_without_tag("repo/image@sha256:abc") == "repo/image"


def test_node_selector_annotations_only_for_selector_mode(make_config):
    config = make_config(kubernetes={"podPlacementMode": "PodNodeSelector"})
    label = config.kubernetes.node_labels.system
    assert node_selector_annotations(config, label) == {ANNOTATION_POD_NODE_SELECTOR: "node-role=system"}
    assert node_selector_annotations(make_config(), label) == {}


def test_apply_node_placement_adds_toleration_and_affinity(config):
    pod_spec = {}
    apply_node_placement(pod_spec, config)

    assert pod_spec["tolerations"] == [
        {"effect": "NoExecute", "key": "node-role", "operator": "Equal", "value": "system"}
    ]
    terms = pod_spec["affinity"]["nodeAffinity"]["requiredDuringSchedulingIgnoredDuringExecution"]
    assert terms["nodeSelectorTerms"][0]["matchExpressions"][0]["values"] == ["system"]


def test_apply_node_placement_noop_in_selector_mode(make_config):
    pod_spec = {}
    apply_node_placement(pod_spec, make_config(kubernetes={"podPlacementMode": "PodNodeSelector"}))
    assert pod_spec == {}


def test_ensure_proxy_env_twice_adds_once():
    proxy = HttpProxyConfig(enabled=True, hostname="proxy", port=3128, no_proxy="localhost")
    container = {}
    ensure_proxy_env(container, proxy)
    ensure_proxy_env(container, proxy)

    names = [entry["name"] for entry in container["env"]]
    assert names == ["HTTP_PROXY", "HTTPS_PROXY", "NO_PROXY"]
    assert container["env"][0]["value"] == "proxy:3128"


def test_ensure_proxy_env_skips_disabled_proxy():
    container = {}
    ensure_proxy_env(container, HttpProxyConfig(enabled=False, hostname="proxy", port=3128))
    assert container == {}


def test_volume_and_mount_ensure_are_idempotent():
    pod_spec, container = {}, {}
    for _ in range(2):
        ensure_volume(pod_spec, {"name": "tmp", "emptyDir": {}})
        ensure_volume_mount(container, {"name": "tmp", "mountPath": "/tmp"})

    assert len(pod_spec["volumes"]) == 1
    assert len(container["volumeMounts"]) == 1


def test_service_account_attachments_are_idempotent():
    tree = {"spec": {"template": {"spec": {"containers": [{"name": "manager"}]}}}}
    apply_service_account_attachments(tree)
    apply_service_account_attachments(tree)

    pod_spec = tree["spec"]["template"]["spec"]
    assert len(pod_spec["volumes"]) == 1
    assert len(pod_spec["containers"][0]["volumeMounts"]) == 1
    assert service_account_volume() is not service_account_volume()


def test_apply_custom_ca_mounts_bundle():
    tree = {"spec": {"template": {"spec": {"containers": [{"name": "manager"}]}}}}
    apply_custom_ca(tree, "ca-secret", "ca.cert")

    pod_spec = tree["spec"]["template"]["spec"]
    assert pod_spec["volumes"][0]["name"] == CA_VOLUME_NAME
    assert pod_spec["volumes"][0]["secret"]["secretName"] == "ca-secret"
    mount = pod_spec["containers"][0]["volumeMounts"][0]
    assert mount["mountPath"] == "/etc/ssl/certs/ca.cert"
    assert {"name": "SSL_CERT_DIR", "value": "/etc/ssl/certs"} in pod_spec["containers"][0]["env"]


def test_prefix_service_account_resource_names():
    tree = {
        "rules": [
            {"resources": ["serviceaccounts/token"], "resourceNames": ["controller-manager"]},
            {"resources": ["secrets"], "resourceNames": ["controller-manager"]},
            {"resources": ["serviceaccounts"]},
        ]
    }
    prefix_service_account_resource_names(tree)

    assert tree["rules"][0]["resourceNames"] == ["cn-pulumi-controller-manager"]
    assert tree["rules"][1]["resourceNames"] == ["controller-manager"]
    assert "resourceNames" not in tree["rules"][2]
