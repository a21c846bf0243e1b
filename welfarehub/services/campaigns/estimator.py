"""Audience size estimators used when a campaign starts.

The default estimator is a static heuristic, not a population count: it
weights each targeted role and shrinks the result for location and activity
narrowing. The exact estimator runs the real audience query instead.
"""

import math
from typing import Protocol

from welfarehub.common.config import settings
from welfarehub.services.audience.service import AudienceService


class AudienceEstimator(Protocol):
    def estimate(self, targeting: dict, channels: list[str]) -> int: ...


class WeightedAudienceEstimator:
    """Sum of per-role weights, floored after each narrowing factor."""

    def __init__(
        self,
        role_weights: dict[str, int],
        location_factor: float,
        activity_factors: dict[str, float],
    ) -> None:
        self.role_weights = role_weights
        self.location_factor = location_factor
        self.activity_factors = activity_factors

    def estimate(self, targeting: dict, channels: list[str]) -> int:
        total = sum(self.role_weights.get(role, 0) for role in targeting.get("roles", []))
        if targeting.get("locations"):
            total = math.floor(total * self.location_factor)
        activity = targeting.get("activityStatus")
        if activity:
            total = math.floor(total * self.activity_factors.get(activity, 1.0))
        return total


class ExactAudienceEstimator:
    """Counts users actually reachable on the campaign's channels."""

    def __init__(self, audience: AudienceService) -> None:
        self.audience = audience

    def estimate(self, targeting: dict, channels: list[str]) -> int:
        criteria = {key: value for key, value in targeting.items() if key not in ("excludeOptedOut", "customSegments")}
        preview = self.audience.preview(criteria, channels, targeting.get("excludeOptedOut", True))
        return preview["effectiveAudience"]


def build_estimator(mode: str, session_factory) -> AudienceEstimator:
    """Pick the estimator configured by `AUDIENCE_ESTIMATE_MODE`."""

    if mode == "exact":
        return ExactAudienceEstimator(AudienceService(session_factory))
    if mode != "heuristic":
        raise ValueError(f"unknown audience estimate mode: {mode}")
    return WeightedAudienceEstimator(
        settings.audience_role_weights,
        settings.audience_location_factor,
        settings.audience_activity_factors,
    )
