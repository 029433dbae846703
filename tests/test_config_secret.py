import base64
import json

from dataplane_bootstrap import constants as c
from dataplane_bootstrap.config import NpmRegistryConfig
from dataplane_bootstrap.provisioning.config_secret import build_config_secret, build_npmrc, config_values

S3_ACCESS_KEYS = {
    "s3": {
        "enabled": True,
        "url": "s3://state-bucket?region=eu-west-1",
        "region": "eu-west-1",
        "authenticationMethod": "AccessKeySecretKey",
        "accessKey": "AKIA",
        "secretKey": "SECRET",
    }
}


def test_npmrc_for_registry_with_path():
    npmrc = build_npmrc(NpmRegistryConfig(url="https://npm.example.com/repo/", access_token="tok"))
    assert npmrc == "registry=https://npm.example.com/repo\n//npm.example.com/repo/:_authToken=tok\n"


def test_npmrc_adds_scheme_and_is_empty_without_token():
    assert build_npmrc(NpmRegistryConfig(url="npm.example.com", access_token="t")).startswith(
        "registry=https://npm.example.com\n"
    )
    assert build_npmrc(NpmRegistryConfig(url="npm.example.com")) == ""


def test_flags_are_always_present(make_config):
    values = config_values(make_config())

    assert values[c.KEY_HTTP_PROXY_ENABLED] == "false"
    assert values[c.KEY_S3_ENABLED] == "false"
    assert values[c.KEY_CNI_NAMESPACE_ENABLED] == "true"
    assert values[c.KEY_CI_PIPELINES_NAMESPACE_ENABLED] == "true"
    assert values[c.KEY_NODE_PLACEMENT_MODE] == "node-selector-and-taints"


def test_blank_values_are_omitted(make_config):
    values = config_values(make_config())

    assert c.KEY_SCM_AUTH_PASSWORD not in values
    assert c.KEY_HTTP_PROXY_HOSTNAME not in values
    assert c.KEY_S3_ACCESS_KEY not in values
    assert c.KEY_PKI_CUSTOM_CA_CERT not in values
    assert values[c.KEY_SCM_AUTH_TOKEN] == "scm-token"
    assert values[c.KEY_TARGET_NAMESPACE] == "cn-system"


def test_s3_access_keys_and_custom_ca(make_config):
    config = make_config(security={"customCaBase64": "Y2VydA=="}, **S3_ACCESS_KEYS)

    values = config_values(config)

    assert values[c.KEY_S3_ENABLED] == "true"
    assert values[c.KEY_S3_ACCESS_KEY] == "AKIA"
    assert values[c.KEY_S3_SECRET_KEY] == "SECRET"
    assert values[c.KEY_S3_REGION] == "eu-west-1"
    assert c.KEY_S3_ACCESS_ROLE not in values
    assert c.KEY_PKI_CUSTOM_CA_CERT not in values
    assert build_config_secret(config)["data"][c.KEY_PKI_CUSTOM_CA_CERT] == "Y2VydA=="


def test_registry_config_json(make_config):
    payload = json.loads(config_values(make_config())[c.KEY_CONTAINER_REGISTRY_CONFIG_JSON])
    auth = payload["auths"]["registry.example.com"]["auth"]
    assert base64.b64decode(auth).decode() == "robot:hunter2"


def test_secret_data_is_base64_encoded(make_config):
    secret = build_config_secret(make_config(**S3_ACCESS_KEYS))

    assert secret["metadata"] == {"name": c.CONFIG_SECRET_NAME, "namespace": "cn-system"}
    assert base64.b64decode(secret["data"][c.KEY_S3_ENABLED]).decode() == "true"
    assert base64.b64decode(secret["data"][c.KEY_PULUMI_PASSPHRASE]).decode() == "passphrase"


def test_binary_custom_ca_is_stored_byte_for_byte(make_config):
    der = b"\x30\x82\x03\xff\x80"
    config = make_config(security={"customCaBase64": base64.b64encode(der).decode()})

    secret = build_config_secret(config)

    assert base64.b64decode(secret["data"][c.KEY_PKI_CUSTOM_CA_CERT]) == der
