"""Day-two actions on the managed stack."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .constants import STACK_API_VERSION, STACK_NAME
from .status import StackStatus

_LOG = logging.getLogger(__name__)

RECONCILIATION_REQUEST_ANNOTATION = "pulumi.com/reconciliation-request"


def preview_enabled(status: StackStatus) -> bool:
    return status.dry_run.strip().lower() == "enabled"


class StackManager:
    """Merge-patches the Stack resource; the operator picks the change up on its next reconcile."""

    def __init__(self, api: Any) -> None:
        self.api = api

    def request_reconcile(self, namespace: str, name: str = STACK_NAME, now: Optional[datetime] = None) -> str:
        """Stamp the reconciliation-request annotation and return the timestamp written."""

        requested_at = (now or datetime.now(timezone.utc)).isoformat()
        body = {"metadata": {"annotations": {RECONCILIATION_REQUEST_ANNOTATION: requested_at}}}
        self.api.patch(STACK_API_VERSION, "Stack", name, namespace, body)
        _LOG.info("Requested reconciliation of Stack %s/%s at %s", namespace, name, requested_at)
        return requested_at

    def toggle_preview(self, status: StackStatus, namespace: str, name: str = STACK_NAME) -> bool:
        """Flip ``spec.preview`` relative to ``status`` and return the new value."""

        preview = not preview_enabled(status)
        self.api.patch(STACK_API_VERSION, "Stack", name, namespace, {"spec": {"preview": preview}})
        _LOG.info("Preview for Stack %s/%s %s", namespace, name, "enabled" if preview else "disabled")
        return preview
