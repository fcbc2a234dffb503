"""
Error taxonomy for the listing automation.

Everything here is caught at a step or pipeline boundary and turned into a
boolean result plus an event; only the dispatcher's top-level handler ever
sees anything else.
"""

from typing import Optional


class AutomationError(Exception):
    """Base class for expected automation failures."""


class ElementNotFound(AutomationError):
    """An expected DOM element never appeared within its timeout."""

    def __init__(self, what: str, timeout: Optional[float] = None):
        self.what = what
        self.timeout = timeout
        suffix = f" within {timeout:.1f}s" if timeout is not None else ""
        super().__init__(f"{what} not found{suffix}")


class VerificationFailed(AutomationError):
    """An action ran but its observable effect never materialized."""


class StorageMiss(AutomationError):
    """A required handoff key is absent from the durable store."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Required key '{key}' missing from storage")


class DraftIncomplete(AutomationError):
    """A listing draft cannot be dispatched yet (missing SKU or price)."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)
