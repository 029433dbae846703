"""Bounded retries around cluster reads."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, TypeVar

from kubernetes.client import ApiException
from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_fixed

from .errors import OperationCancelled

_LOG = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 2
DEFAULT_DELAY_SECONDS = 0.25


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 404


class ReadExecutor:
    """Runs read calls with a fixed retry budget.

    Not-found errors and cancellation are terminal; everything else is retried
    up to ``attempts`` times with ``delay`` seconds between attempts. The delay
    waits on ``cancel_event`` so a cancelled run stops retrying immediately.
    """

    def __init__(
        self,
        attempts: int = DEFAULT_ATTEMPTS,
        delay: float = DEFAULT_DELAY_SECONDS,
        cancel_event: Optional[threading.Event] = None,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1.")
        self.attempts = attempts
        self.delay = delay
        self.cancel_event = cancel_event or threading.Event()
        self._is_retryable = is_retryable

    def check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelled("Operation cancelled.")

    def _sleep(self, seconds: float) -> None:
        if self.cancel_event.wait(seconds):
            raise OperationCancelled("Operation cancelled while waiting to retry.")

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, OperationCancelled) or is_not_found(exc):
            return False
        if self._is_retryable is not None:
            return self._is_retryable(exc)
        return True

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(self._should_retry),
            sleep=self._sleep,
            before_sleep=before_sleep_log(_LOG, logging.DEBUG),
            reraise=True,
        )

    def call(self, action: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``action`` with retries and re-raise the last error."""

        self.check_cancelled()
        return self._retrying()(action, *args, **kwargs)

    def execute(
        self,
        action: Callable[[], T],
        warning_message: str,
        fallback: Optional[T] = None,
        fallback_factory: Optional[Callable[[BaseException], T]] = None,
    ) -> Optional[T]:
        """Run ``action`` with retries, returning a fallback instead of raising.

        Cancellation still propagates.
        """

        try:
            return self.call(action)
        except OperationCancelled:
            raise
        except Exception as exc:
            _LOG.warning("%s: %s", warning_message, exc, exc_info=_LOG.isEnabledFor(logging.DEBUG))
            if fallback_factory is not None:
                return fallback_factory(exc)
            return fallback
