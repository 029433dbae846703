"""Utility helpers shared across the data plane bootstrap package."""
from __future__ import annotations

import base64
from typing import Any, Optional


def is_blank(value: Optional[Any]) -> bool:
    """Return ``True`` for ``None`` and whitespace-only strings."""

    return value is None or (isinstance(value, str) and not value.strip())


def b64encode_text(value: str) -> str:
    """Encode ``value`` as UTF-8 and return it base64-encoded, as Secret ``data`` expects."""

    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def canonical_base64(value: str) -> str:
    """Re-encode base64 ``value`` without whitespace; the decoded bytes may be binary.

    Raises :class:`binascii.Error` when ``value`` is not valid base64.
    """

    return base64.b64encode(base64.b64decode("".join(value.split()), validate=True)).decode("ascii")
