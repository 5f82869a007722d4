from __future__ import annotations

from collections.abc import Mapping

from telemetry_hub.core.models import SeverityCounts

# Product-defined weights; informational events do not affect the score.
SEVERITY_WEIGHTS: dict[str, int] = {
    "critical": 10,
    "high": 5,
    "medium": 2,
    "low": 1,
}
MAX_SCORE = 100
MIN_SCORE = 0


def _count(by_severity: SeverityCounts | Mapping[str, int], key: str) -> int:
    if isinstance(by_severity, SeverityCounts):
        value = getattr(by_severity, key)
    else:
        value = by_severity.get(key, 0) or 0
    value = int(value)
    if value < 0:
        raise ValueError(f"severity count '{key}' must be >= 0, got {value}")
    return value


def weighted_severity(by_severity: SeverityCounts | Mapping[str, int]) -> int:
    return sum(_count(by_severity, key) * weight for key, weight in SEVERITY_WEIGHTS.items())


def security_score(by_severity: SeverityCounts | Mapping[str, int]) -> int:
    """
    Composite 0-100 security score.

    Every view that shows a score (dashboard summary, per-source snapshot,
    monthly report) must go through this function.
    """
    return max(MIN_SCORE, min(MAX_SCORE, MAX_SCORE - weighted_severity(by_severity)))
