"""Loading of packaged manifest templates and image metadata."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ManifestError, TemplateNotFoundError

_LOG = logging.getLogger(__name__)

MANIFESTS_DIR_ENV = "DATAPLANE_MANIFESTS_DIR"

OPERATOR_CRD_DIR = "operator/crd"
OPERATOR_RBAC_DIR = "operator/rbac"
OPERATOR_MANAGER_DIR = "operator/manager"
OPERATOR_INFO_FILE = "operator/operator-info.json"
FLUXCD_SOURCE_CONTROLLER_FILE = "fluxcd/source-controller.yaml"
FLUXCD_RBAC_FILE = "fluxcd/rbac.yaml"
FLUXCD_INFO_FILE = "fluxcd/fluxcd-info.json"


@dataclass(frozen=True)
class OperatorInfo:
    """Operator and workspace images shipped with the manifest bundle."""

    operator_image: str
    operator_version: str
    runtime_image: str
    runtime_version: str
    plugins_image: str
    plugins_version: str


@dataclass(frozen=True)
class FluxCDInfo:
    source_controller_image: str
    source_controller_version: str


class TemplateLoader:
    """Resolves template paths against the packaged bundle, then a directory on disk.

    The on-disk root is taken from ``fallback_root`` or the
    ``DATAPLANE_MANIFESTS_DIR`` environment variable.
    """

    def __init__(self, fallback_root: Optional[str | Path] = None, use_package: bool = True) -> None:
        if fallback_root is None and os.environ.get(MANIFESTS_DIR_ENV):
            fallback_root = os.environ[MANIFESTS_DIR_ENV]
        self.fallback_root = Path(fallback_root) if fallback_root is not None else None
        self.use_package = use_package

    def _package_node(self, relative_path: str):
        node = resources.files("dataplane_bootstrap") / "manifests"
        for part in relative_path.strip("/").split("/"):
            node = node / part
        return node

    def _locations(self, relative_path: str) -> List[Tuple[str, Any]]:
        normalized = relative_path.replace("\\", "/").strip("/")
        locations: List[Tuple[str, Any]] = []
        if self.use_package:
            locations.append((f"package:dataplane_bootstrap/manifests/{normalized}", self._package_node(normalized)))
        if self.fallback_root is not None:
            path = self.fallback_root.joinpath(*normalized.split("/"))
            locations.append((str(path), path))
        return locations

    def read_text(self, relative_path: str) -> str:
        attempted = []
        for label, node in self._locations(relative_path):
            attempted.append(label)
            if node.is_file():
                _LOG.debug("Loading template %s from %s", relative_path, label)
                return node.read_text(encoding="utf-8")
        raise TemplateNotFoundError(relative_path, attempted)

    def load_documents(self, relative_path: str) -> List[Dict[str, Any]]:
        """Parse every non-empty YAML document of a template file."""

        text = self.read_text(relative_path)
        try:
            documents = list(yaml.safe_load_all(text))
        except yaml.YAMLError as exc:
            raise ManifestError(f"Template '{relative_path}' is not valid YAML: {exc}") from exc
        manifests = []
        for document in documents:
            if document is None:
                continue
            if not isinstance(document, dict):
                raise ManifestError(f"Template '{relative_path}' contains a non-mapping document.")
            manifests.append(document)
        return manifests

    def list_documents(self, directory: str) -> List[Tuple[str, Dict[str, Any]]]:
        """Return ``(file name, manifest)`` pairs for every ``*.yaml`` file in ``directory``.

        Files are read in name order so repeated runs apply resources in the
        same sequence.
        """

        attempted = []
        for label, node in self._locations(directory):
            attempted.append(label)
            if not node.is_dir():
                continue
            names = sorted(child.name for child in node.iterdir() if child.name.endswith(".yaml"))
            result = []
            for name in names:
                for manifest in self.load_documents(f"{directory.strip('/')}/{name}"):
                    result.append((name, manifest))
            return result
        raise TemplateNotFoundError(directory, attempted)

    def load_json(self, relative_path: str) -> Dict[str, Any]:
        text = self.read_text(relative_path)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ManifestError(f"Metadata file '{relative_path}' is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ManifestError(f"Metadata file '{relative_path}' must contain an object.")
        return data


def _require(data: Dict[str, Any], source: str, section: str, key: str) -> str:
    block = data.get(section)
    if not isinstance(block, dict):
        raise ManifestError(f"Metadata file '{source}' does not contain '{section}'.")
    value = block.get(key)
    if not isinstance(value, str) or not value:
        raise ManifestError(f"Metadata file '{source}' does not contain '{section}.{key}'.")
    return value


def load_operator_info(loader: TemplateLoader) -> OperatorInfo:
    data = loader.load_json(OPERATOR_INFO_FILE)
    operator_image = _require(data, OPERATOR_INFO_FILE, "operator", "image")
    operator_version = _require(data, OPERATOR_INFO_FILE, "operator", "version")
    return OperatorInfo(
        operator_image=f"{operator_image}:{operator_version}",
        operator_version=operator_version,
        runtime_image=_require(data, OPERATOR_INFO_FILE, "runtime", "image"),
        runtime_version=_require(data, OPERATOR_INFO_FILE, "runtime", "version"),
        plugins_image=_require(data, OPERATOR_INFO_FILE, "plugins", "image"),
        plugins_version=_require(data, OPERATOR_INFO_FILE, "plugins", "version"),
    )


def load_fluxcd_info(loader: TemplateLoader) -> FluxCDInfo:
    data = loader.load_json(FLUXCD_INFO_FILE)
    image = _require(data, FLUXCD_INFO_FILE, "sourceController", "image")
    version = _require(data, FLUXCD_INFO_FILE, "sourceController", "version")
    return FluxCDInfo(source_controller_image=f"{image}:{version}", source_controller_version=version)
