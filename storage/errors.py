"""Failures raised by the point stores.

``NotFound`` is not an error: stores return ``None`` for absent keys so the
ledger can create records on demand.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for store failures."""


class Unreachable(StoreError):
    """The remote store could not be contacted (network error or timeout)."""

    def __init__(self, action: str, detail: str = "") -> None:
        self.action = action
        self.detail = detail
        super().__init__(f"{action}: remote store unreachable ({detail or 'no detail'})")


class RemoteError(StoreError):
    """The remote store answered but reported or produced a failure."""

    def __init__(self, action: str, detail: str = "", *, status: int | None = None) -> None:
        self.action = action
        self.detail = detail
        self.status = status
        where = f"HTTP {status}" if status is not None else "remote"
        super().__init__(f"{action}: {where} error ({detail or 'no detail'})")


class LocalIOError(StoreError):
    """The local durable cache could not be written."""


__all__ = ["StoreError", "Unreachable", "RemoteError", "LocalIOError"]
