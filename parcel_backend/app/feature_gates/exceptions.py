"""Exceptions raised when a feature gate blocks a request."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status

from ..entitlements import EntitlementResolutionError


@dataclass
class FeatureGateError(Exception):
    """A gate refused access, or could not decide.

    ``remediation`` tells the client what would unblock the request, e.g.
    ``"upgrade_plan"`` or ``"reactivate_billing"``.
    """

    code: str
    message: str
    feature: Optional[str] = None
    remediation: Optional[str] = None
    status_code: int = status.HTTP_403_FORBIDDEN
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.feature:
            body["feature"] = self.feature
        if self.remediation:
            body["remediation"] = self.remediation
        if self.detail:
            body.update(self.detail)
        object.__setattr__(self, "_payload", body)
        super().__init__(self.message)

    @classmethod
    def undetermined(cls, feature: str, error: EntitlementResolutionError) -> "FeatureGateError":
        """Gate failure for infrastructure errors; never reported as a denial."""

        return cls(
            code="entitlement_unavailable",
            message="Access could not be determined. Try again shortly.",
            feature=feature,
            remediation="retry",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"workspace_id": error.workspace_id},
        )

    @property
    def payload(self) -> Mapping[str, Any]:
        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))
