"""Read-only status of the installed operator and the managed stack."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Dict, List, Optional

from .constants import (
    LABEL_VALUE_OPERATOR_NAME,
    LABEL_VALUE_PART_OF,
    LABEL_VALUE_STACK_APP,
    STACK_API_VERSION,
    STACK_NAME,
)
from .manifest_editor import get_path
from .mutations import LABEL_NAME, LABEL_PART_OF, LABEL_VERSION
from .retry import ReadExecutor, is_not_found

_LOG = logging.getLogger(__name__)

UNKNOWN = "Unknown"

OPERATOR_POD_SELECTOR = f"{LABEL_NAME}={LABEL_VALUE_OPERATOR_NAME},{LABEL_PART_OF}={LABEL_VALUE_PART_OF}"
WORKSPACE_POD_SELECTOR = f"{LABEL_NAME}={LABEL_VALUE_STACK_APP},{LABEL_PART_OF}={LABEL_VALUE_PART_OF}"


@dataclass(frozen=True)
class OperatorStatus:
    namespace: str
    version: str
    status: str

    NOT_FOUND: ClassVar["OperatorStatus"]
    ERROR: ClassVar["OperatorStatus"]


OperatorStatus.NOT_FOUND = OperatorStatus(UNKNOWN, UNKNOWN, UNKNOWN)
OperatorStatus.ERROR = OperatorStatus("Error", "Error", "Error")


@dataclass(frozen=True)
class StackStatus:
    workspace_status: str
    ready: str
    reconciling_reason: str
    dry_run: str

    UNKNOWN: ClassVar["StackStatus"]


StackStatus.UNKNOWN = StackStatus(UNKNOWN, UNKNOWN, UNKNOWN, "Disabled")


def _meaningful(value: Optional[str]) -> Optional[str]:
    if not value or not value.strip() or value.lower() == "unknown":
        return None
    return value


def _init_status_text(pod: Dict[str, Any]) -> Optional[str]:
    statuses = get_path(pod, "status.initContainerStatuses") or []
    if not statuses:
        return None
    total = len(get_path(pod, "spec.initContainers") or statuses)
    completed = 0
    pending_reason: Optional[str] = None
    for status in statuses:
        terminated = get_path(status, "state.terminated")
        waiting_reason = get_path(status, "state.waiting.reason")
        if isinstance(terminated, dict) and terminated.get("exitCode") is not None:
            exit_code = terminated["exitCode"]
            if exit_code == 0:
                completed += 1
                continue
            return f"Init:{_meaningful(terminated.get('reason')) or f'ExitCode:{exit_code}'}"
        if waiting_reason and waiting_reason != "PodInitializing" and pending_reason is None:
            pending_reason = waiting_reason
    if completed < total:
        return f"Init:{pending_reason}" if pending_reason else f"Init:{completed}/{total}"
    return None


def _container_reason(status: Dict[str, Any]) -> Optional[str]:
    for path in (
        "state.waiting.reason",
        "state.terminated.reason",
        "lastState.terminated.reason",
        "state.waiting.message",
        "state.terminated.message",
        "lastState.terminated.message",
    ):
        value = _meaningful(get_path(status, path))
        if value:
            return value
    return None


def pod_status_text(pod: Dict[str, Any]) -> str:
    """Summarise a pod the way ``kubectl get pods`` prints its STATUS column."""

    if get_path(pod, "metadata.deletionTimestamp"):
        return "Terminating"
    init_text = _init_status_text(pod)
    if init_text:
        return init_text
    for status in get_path(pod, "status.containerStatuses") or []:
        reason = _container_reason(status)
        if reason:
            return reason
    phase = get_path(pod, "status.phase") or UNKNOWN
    if phase.lower() == "succeeded":
        return "Completed"
    reason = get_path(pod, "status.reason")
    return f"{phase} ({reason})" if reason else phase


def select_pod(pods: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Prefer a running pod, otherwise the first one listed."""

    if not pods:
        return None
    for pod in pods:
        if get_path(pod, "status.phase") == "Running":
            return pod
    return pods[0]


def _condition(stack: Dict[str, Any], condition_type: str) -> Optional[Dict[str, Any]]:
    for condition in get_path(stack, "status.conditions") or []:
        if isinstance(condition, dict) and str(condition.get("type", "")).lower() == condition_type.lower():
            return condition
    return None


def _preview_enabled(stack: Dict[str, Any]) -> bool:
    preview = get_path(stack, "spec.preview")
    if isinstance(preview, str):
        return preview.strip().lower() == "true"
    return preview is True


class StatusReader:
    """Status queries that never raise for cluster read failures.

    Each query goes through the retry executor and falls back to a constant
    status when the cluster cannot be read.
    """

    def __init__(self, api: Any, reads: Optional[ReadExecutor] = None) -> None:
        self.api = api
        self.reads = reads or ReadExecutor()

    def operator_status(self) -> OperatorStatus:
        pods = self.reads.execute(
            lambda: self.api.list_pods(OPERATOR_POD_SELECTOR),
            "Failed to list operator pods across namespaces",
            fallback=None,
        )
        if pods is None:
            return OperatorStatus.ERROR
        pod = select_pod(pods)
        if pod is None:
            return OperatorStatus.NOT_FOUND
        labels = get_path(pod, "metadata.labels") or {}
        version = labels.get(LABEL_VERSION)
        return OperatorStatus(
            namespace=get_path(pod, "metadata.namespace") or UNKNOWN,
            version=version if version and version.strip() else UNKNOWN,
            status=pod_status_text(pod),
        )

    def workspace_status(self, namespace: str) -> str:
        pods = self.reads.execute(
            lambda: self.api.list_pods(WORKSPACE_POD_SELECTOR, namespace),
            f"Failed to list pods in namespace {namespace}",
            fallback=[],
        )
        pod = select_pod(pods)
        return pod_status_text(pod) if pod is not None else UNKNOWN

    def stack_status(self, namespace: str, name: str = STACK_NAME) -> StackStatus:
        workspace = self.workspace_status(namespace)
        fallback = replace(StackStatus.UNKNOWN, workspace_status=workspace)

        def read_stack() -> StackStatus:
            stack = self.api.read(STACK_API_VERSION, "Stack", name or STACK_NAME, namespace)
            ready = _condition(stack, "Ready")
            reconciling = _condition(stack, "Reconciling")
            return StackStatus(
                workspace_status=workspace,
                ready=(ready or {}).get("status") or UNKNOWN,
                reconciling_reason=(reconciling or {}).get("reason") or UNKNOWN,
                dry_run="Enabled" if _preview_enabled(stack) else "Disabled",
            )

        def on_error(exc: BaseException) -> StackStatus:
            if is_not_found(exc):
                _LOG.debug("Stack %s/%s does not exist", namespace, name)
            return fallback

        return self.reads.execute(read_stack, "Failed to load stack status", fallback_factory=on_error)
