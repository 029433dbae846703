import copy
from typing import Any, Dict

import pytest
import yaml

from dataplane_bootstrap.config import OperatorConfig
from dataplane_bootstrap.templates import FluxCDInfo, OperatorInfo


BASE_CONFIG: Dict[str, Any] = {
    "containerRegistry": {"hostname": "registry.example.com", "username": "robot", "password": "hunter2"},
    "npmRegistry": {"url": "https://npm.example.com/repo/", "accessToken": "npm-token"},
    "kubernetes": {
        "namespaces": {
            "system": {"name": "cn-system"},
            "cni": {"name": "cn-cni"},
            "ciPipelines": {"name": "cn-ci"},
        },
        "nodeLabels": {
            "system": {"key": "node-role", "value": "system"},
            "application": {"key": "node-role", "value": "apps"},
        },
        "storageClass": "standard",
    },
    "scm": {
        "url": "https://git.example.com/org/data-plane.git",
        "authenticationMethod": "AccessToken",
        "accessToken": "scm-token",
    },
    "environment": {"name": "production"},
    "pulumi": {"passphrase": "passphrase"},
}


def _merge(target: Dict[str, Any], overrides: Dict[str, Any]):
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = value
    return target


@pytest.fixture
def make_config():
    def factory(**overrides: Any):
        data = _merge(copy.deepcopy(BASE_CONFIG), overrides)
        return OperatorConfig.model_validate(data)

    return factory


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def operator_info():
    return OperatorInfo(
        operator_image="pulumi/pulumi-kubernetes-operator:v2.0.0",
        operator_version="v2.0.0",
        runtime_image="pulumi/pulumi",
        runtime_version="3.147.0-nonroot",
        plugins_image="codenow/cn-data-plane-plugins",
        plugins_version="1.0.0",
    )


@pytest.fixture
def fluxcd_info():
    return FluxCDInfo(
        source_controller_image="ghcr.io/fluxcd/source-controller:v1.4.1",
        source_controller_version="v1.4.1",
    )


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "operator-config.yaml"
    path.write_text(yaml.safe_dump(BASE_CONFIG))
    return path
