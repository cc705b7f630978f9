"""Errors raised when entitlement access cannot be determined."""
from __future__ import annotations


class EntitlementResolutionError(RuntimeError):
    """Access could not be determined; distinct from a denial."""

    def __init__(self, workspace_id: str, message: str) -> None:
        super().__init__(message)
        self.workspace_id = workspace_id


class BillingStateUnavailableError(EntitlementResolutionError):
    """The billing state store failed while resolving entitlements."""


class ResolutionCancelledError(EntitlementResolutionError):
    """The caller cancelled resolution before billing state was read."""
