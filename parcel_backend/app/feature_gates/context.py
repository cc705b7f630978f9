"""Convenience wrapper around a batch of resolved entitlements."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from ..entitlements import EntitlementCheckResult, EntitlementService
from .enforcement import require_entitlement
from .exceptions import FeatureGateError


@dataclass(frozen=True)
class WorkspaceEntitlements:
    """Facade exposing gating helpers for one workspace's resolved features."""

    workspace_id: str
    results: Mapping[str, EntitlementCheckResult]

    @classmethod
    def load(
        cls,
        service: EntitlementService,
        workspace_id: str,
        features: List[str],
        actor_id: Optional[str] = None,
    ) -> "WorkspaceEntitlements":
        return cls(workspace_id=workspace_id, results=service.resolve_many(workspace_id, features, actor_id))

    def has(self, feature: str) -> bool:
        result = self.results.get(feature)
        return bool(result and result.enabled)

    def require(self, feature: str) -> EntitlementCheckResult:
        result = self.results.get(feature)
        if result is None:
            raise FeatureGateError(
                code="entitlement_not_loaded",
                message=f"Entitlement '{feature}' was not resolved for this request.",
                feature=feature,
                status_code=500,
            )
        require_entitlement(result)
        return result

    def enabled_features(self) -> List[str]:
        return [feature for feature, result in self.results.items() if result.enabled]

    def to_json(self) -> Dict[str, dict]:
        return {feature: result.to_json() for feature, result in self.results.items()}
