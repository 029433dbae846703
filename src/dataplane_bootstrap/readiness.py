"""Polling for workload readiness after apply."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional

from kubernetes.client import ApiException
from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)
from urllib3.exceptions import HTTPError

from .errors import OperationCancelled, ReadinessTimeoutError
from .manifest_editor import get_path

_LOG = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0

# Read failures that mean "not ready yet" while a workload rolls out.
TRANSIENT_ERRORS = (ApiException, HTTPError, OSError)


def deployment_replicas(deployment: Dict[str, Any]) -> tuple[int, int]:
    """Return ``(desired, ready)``; a missing desired count means one replica."""

    desired = get_path(deployment, "spec.replicas")
    ready = get_path(deployment, "status.readyReplicas")
    return (1 if desired is None else int(desired)), (0 if ready is None else int(ready))


def is_deployment_ready(deployment: Dict[str, Any]) -> bool:
    desired, ready = deployment_replicas(deployment)
    return ready >= desired and desired > 0


class ReadinessWaiter:
    """Waits until a Deployment reports as many ready replicas as it desires.

    A read failing with an API or transport error counts as not ready yet.
    The poll interval waits on ``cancel_event``; running out of ``timeout``
    raises :class:`ReadinessTimeoutError`.
    """

    def __init__(
        self,
        api: Any,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.api = api
        self.poll_interval = poll_interval
        self.cancel_event = cancel_event or threading.Event()

    def _sleep(self, seconds: float) -> None:
        if self.cancel_event.wait(seconds):
            raise OperationCancelled("Cancelled while waiting for a deployment to become ready.")

    def _retrying(self, timeout: float) -> Retrying:
        return Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda deployment: not is_deployment_ready(deployment))
            | retry_if_exception_type(TRANSIENT_ERRORS),
            sleep=self._sleep,
            before_sleep=before_sleep_log(_LOG, logging.DEBUG),
        )

    def wait_for_deployment(self, name: str, namespace: str, timeout: float) -> None:
        started = time.monotonic()
        _LOG.info("Waiting for deployment %s/%s to become ready", namespace, name)
        try:
            self._retrying(timeout)(self.api.read_deployment, name, namespace)
        except RetryError as exc:
            elapsed = time.monotonic() - started
            raise ReadinessTimeoutError(
                f"Deployment '{name}' in namespace '{namespace}' not ready after {elapsed:.0f}s "
                f"(timeout {timeout:g}s)."
            ) from exc.last_attempt.exception()
        _LOG.info("Deployment %s/%s is ready", namespace, name)
