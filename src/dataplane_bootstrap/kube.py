"""Kubernetes client wrapper used by the provisioners."""
from __future__ import annotations

import copy
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from kubernetes import config
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient, ResourceInstance
from kubernetes.utils import parse_quantity

from .config import ClusterContext
from .errors import ManifestError
from .manifest_editor import Manifest, get_path, get_required_string
from .resources.registry import DEFAULT_REGISTRY, ApplyStrategy, KindRegistry, KindSpec
from .retry import ReadExecutor, is_not_found

_LOG = logging.getLogger(__name__)

MERGE_PATCH = "application/merge-patch+json"
STORAGE_PATH = "spec.resources.requests.storage"


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    CREATED = "created"
    REPLACED = "replaced"
    PATCHED = "patched"
    UNCHANGED = "unchanged"


def _to_dict(value: Any) -> Dict[str, Any]:
    return value.to_dict() if isinstance(value, ResourceInstance) else value


class DataPlaneAPI:
    """Cluster access for one bootstrap run.

    Declarative resources go through server-side apply under a single field
    manager. Secrets use an explicit read, then create or replace, and
    PersistentVolumeClaims are created or grown. :meth:`upsert` picks the write
    from the kind registry. Reads are retried through ``reads``; writes are not.
    """

    def __init__(
        self,
        context: ClusterContext,
        reads: Optional[ReadExecutor] = None,
        registry: KindRegistry = DEFAULT_REGISTRY,
    ) -> None:
        self.context = context
        api_client = config.new_client_from_config(
            config_file=context.kubeconfig,
            context=context.context,
        )
        api_client.configuration.verify_ssl = context.verify_ssl
        self.api_client = api_client
        self.dynamic = DynamicClient(api_client)
        self.reads = reads or ReadExecutor()
        self.registry = registry

    def _resource_for(self, body: Manifest) -> tuple[KindSpec, Any, str, Optional[str]]:
        kind = get_required_string(body, "kind")
        spec = self.registry.lookup(kind, context=get_path(body, "metadata.name", ""))
        name = get_required_string(body, "metadata.name")
        namespace = get_path(body, "metadata.namespace") if spec.namespaced else None
        if spec.namespaced and not namespace:
            raise ManifestError(f"Namespace must be provided for {kind} '{name}'.")
        api_version = body.get("apiVersion") or spec.api_version
        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        return spec, resource, name, namespace

    def upsert(self, body: Manifest) -> WriteOutcome:
        """Write ``body`` with the strategy registered for its kind."""

        spec = self.registry.lookup(get_required_string(body, "kind"))
        if spec.strategy is ApplyStrategy.SERVER_SIDE_APPLY:
            self.apply(body)
            return WriteOutcome.APPLIED
        if spec.strategy is ApplyStrategy.CREATE_OR_RESIZE:
            return self.ensure_persistent_volume_claim(body)
        return self.create_or_replace(body)

    def apply(self, body: Manifest) -> Dict[str, Any]:
        """Server-side apply ``body`` as this run's field manager."""

        self.reads.check_cancelled()
        spec, resource, name, namespace = self._resource_for(body)
        _LOG.debug("Applying %s/%s", spec.kind, name)
        applied = resource.server_side_apply(
            body=body,
            name=name,
            namespace=namespace,
            field_manager=self.context.field_manager,
            force_conflicts=True,
        )
        return _to_dict(applied)

    def create_or_replace(self, body: Manifest) -> WriteOutcome:
        """Create ``body`` when missing, otherwise replace it keeping the server's resourceVersion."""

        spec, resource, name, namespace = self._resource_for(body)
        try:
            existing = _to_dict(self.reads.call(resource.get, name=name, namespace=namespace))
        except ApiException as exc:
            if not is_not_found(exc):
                raise
            _LOG.debug("Creating %s/%s", spec.kind, name)
            resource.create(body=body, namespace=namespace)
            return WriteOutcome.CREATED

        replacement = copy.deepcopy(body)
        resource_version = get_path(existing, "metadata.resourceVersion")
        if resource_version:
            replacement.setdefault("metadata", {})["resourceVersion"] = resource_version
        _LOG.debug("Replacing %s/%s", spec.kind, name)
        resource.replace(body=replacement, name=name, namespace=namespace)
        return WriteOutcome.REPLACED

    def ensure_persistent_volume_claim(self, body: Manifest) -> WriteOutcome:
        """Create the claim or grow its requested storage.

        A bound claim's spec is immutable apart from the storage request, so an
        existing claim is only ever merge-patched on ``spec.resources.requests.storage``
        and only when the request grows. Any other difference is logged and left alone.
        """

        _, resource, name, namespace = self._resource_for(body)
        desired = get_path(body, STORAGE_PATH)
        try:
            existing = _to_dict(self.reads.call(resource.get, name=name, namespace=namespace))
        except ApiException as exc:
            if not is_not_found(exc):
                raise
            _LOG.info("Creating PersistentVolumeClaim %s/%s", namespace, name)
            resource.create(body=body, namespace=namespace)
            return WriteOutcome.CREATED

        current = get_path(existing, STORAGE_PATH)
        for field in ("spec.storageClassName", "spec.accessModes"):
            wanted = get_path(body, field)
            if wanted is not None and wanted != get_path(existing, field):
                _LOG.warning(
                    "PersistentVolumeClaim %s/%s differs in immutable field %s; leaving it unchanged",
                    namespace,
                    name,
                    field,
                )

        if desired is None or current is None or parse_quantity(desired) == parse_quantity(current):
            _LOG.info("PersistentVolumeClaim %s/%s storage unchanged; skipping update", namespace, name)
            return WriteOutcome.UNCHANGED
        if parse_quantity(desired) < parse_quantity(current):
            _LOG.warning(
                "PersistentVolumeClaim %s/%s cannot shrink from %s to %s; leaving it unchanged",
                namespace,
                name,
                current,
                desired,
            )
            return WriteOutcome.UNCHANGED

        _LOG.info("Resizing PersistentVolumeClaim %s/%s from %s to %s", namespace, name, current, desired)
        resource.patch(
            body={"spec": {"resources": {"requests": {"storage": desired}}}},
            name=name,
            namespace=namespace,
            content_type=MERGE_PATCH,
        )
        return WriteOutcome.PATCHED

    def patch(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: Optional[str],
        body: Dict[str, Any],
    ) -> Dict[str, Any]:
        """JSON merge-patch one existing resource."""

        self.reads.check_cancelled()
        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        _LOG.debug("Patching %s/%s", kind, name)
        patched = resource.patch(body=body, name=name, namespace=namespace, content_type=MERGE_PATCH)
        return _to_dict(patched)

    def read(self, api_version: str, kind: str, name: str, namespace: Optional[str] = None) -> Dict[str, Any]:
        """Read one resource as a dictionary with a single call; callers choose the retry policy."""

        resource = self.dynamic.resources.get(api_version=api_version, kind=kind)
        return _to_dict(resource.get(name=name, namespace=namespace))

    def read_deployment(self, name: str, namespace: str) -> Dict[str, Any]:
        return self.read("apps/v1", "Deployment", name, namespace)

    def list_pods(self, label_selector: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """List pods matching ``label_selector`` in ``namespace``, or in every namespace when omitted."""

        resource = self.dynamic.resources.get(api_version="v1", kind="Pod")
        result = _to_dict(resource.get(namespace=namespace, label_selector=label_selector))
        return list(result.get("items") or [])
