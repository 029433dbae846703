"""Registry of the resource kinds the bootstrap knows how to write."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable

from ..constants import FLUXCD_SOURCE_API_VERSION, STACK_API_VERSION
from ..errors import UnsupportedKindError


class ApplyStrategy(str, Enum):
    SERVER_SIDE_APPLY = "server-side-apply"
    CREATE_OR_REPLACE = "create-or-replace"
    CREATE_OR_RESIZE = "create-or-resize"


@dataclass(frozen=True)
class KindSpec:
    """How a resource kind is addressed and written."""

    kind: str
    api_version: str
    namespaced: bool
    strategy: ApplyStrategy = ApplyStrategy.SERVER_SIDE_APPLY


class KindRegistry:
    def __init__(self, specs: Iterable[KindSpec]) -> None:
        self._specs: Dict[str, KindSpec] = {}
        for spec in specs:
            if spec.kind in self._specs:
                raise ValueError(f"Kind '{spec.kind}' registered twice.")
            self._specs[spec.kind] = spec

    def lookup(self, kind: str, context: str = "") -> KindSpec:
        try:
            return self._specs[kind]
        except KeyError:
            raise UnsupportedKindError(kind, context) from None


DEFAULT_KINDS = (
    KindSpec("Namespace", "v1", namespaced=False),
    KindSpec("ServiceAccount", "v1", namespaced=True),
    KindSpec("Service", "v1", namespaced=True),
    KindSpec("Secret", "v1", namespaced=True, strategy=ApplyStrategy.CREATE_OR_REPLACE),
    KindSpec("PersistentVolumeClaim", "v1", namespaced=True, strategy=ApplyStrategy.CREATE_OR_RESIZE),
    KindSpec("Deployment", "apps/v1", namespaced=True),
    KindSpec("Role", "rbac.authorization.k8s.io/v1", namespaced=True),
    KindSpec("RoleBinding", "rbac.authorization.k8s.io/v1", namespaced=True),
    KindSpec("ClusterRole", "rbac.authorization.k8s.io/v1", namespaced=False),
    KindSpec("ClusterRoleBinding", "rbac.authorization.k8s.io/v1", namespaced=False),
    KindSpec("CustomResourceDefinition", "apiextensions.k8s.io/v1", namespaced=False),
    KindSpec("Stack", STACK_API_VERSION, namespaced=True),
    KindSpec("GitRepository", FLUXCD_SOURCE_API_VERSION, namespaced=True),
)

DEFAULT_REGISTRY = KindRegistry(DEFAULT_KINDS)
