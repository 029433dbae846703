"""Exception types raised by the data plane bootstrap engine."""
from __future__ import annotations

from typing import Iterable


class DataPlaneError(Exception):
    """Base class for bootstrap failures that should abort a run."""


class ManifestError(DataPlaneError, ValueError):
    """A template or manifest is missing a required value or is malformed."""


class UnsupportedKindError(ManifestError):
    """Raised when a manifest kind has no registered handling."""

    def __init__(self, kind: str, context: str = "") -> None:
        self.kind = kind
        suffix = f" in {context}" if context else ""
        super().__init__(f"Unsupported Kubernetes kind '{kind}'{suffix}.")


class TemplateNotFoundError(ManifestError):
    """Raised when a template cannot be found in any known location."""

    def __init__(self, template: str, attempted: Iterable[str]) -> None:
        self.template = template
        self.attempted = list(attempted)
        locations = ", ".join(f"'{location}'" for location in self.attempted)
        super().__init__(f"Manifest template '{template}' not found; tried {locations}.")


class ReadinessTimeoutError(DataPlaneError, TimeoutError):
    """Raised when a workload does not become ready in time."""


class OperationCancelled(DataPlaneError):
    """Raised when a run was cancelled while waiting on the cluster."""
