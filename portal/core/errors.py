"""Exceptions raised by the navigation core."""

from __future__ import annotations

from typing import Optional


class PortalError(RuntimeError):
    """Base class for portal failures."""


class CatalogFetchError(PortalError):
    """A catalog query failed or did not answer within the configured timeout."""

    def __init__(self, message: str, *, level: Optional[str] = None, timed_out: bool = False) -> None:
        super().__init__(message)
        self.level = level
        self.timed_out = timed_out


class InvalidTransitionError(PortalError):
    """A navigation operation was requested from a level that does not allow it."""

    def __init__(self, operation: str, level: str, detail: str = "") -> None:
        message = f"'{operation}' is not allowed at level '{level}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.level = level


class UnknownSelectionError(PortalError, LookupError):
    """The selected entry is not part of the list currently on display."""


__all__ = ["CatalogFetchError", "InvalidTransitionError", "PortalError", "UnknownSelectionError"]
