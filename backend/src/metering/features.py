"""Billable features and the monthly metering period."""
import enum
from datetime import datetime
from typing import Any

# Sentinel limit meaning "no limit"
UNLIMITED = -1


class Feature(str, enum.Enum):
    """Billable capabilities subject to a plan limit."""

    GENERATIONS = "generations"
    DIAGNOSTICS = "diagnostics"
    FUNNEL_ANALYSIS = "funnel_analysis"

    @classmethod
    def parse(cls, value: "str | Feature") -> "Feature | None":
        """Return the matching feature, or None for unknown names."""
        try:
            return cls(value)
        except ValueError:
            return None


def is_unlimited(limit: int) -> bool:
    """True if the limit is the unlimited sentinel."""
    return limit == UNLIMITED


def allows(limit: int, current_usage: int) -> bool:
    """Whether one more unit may be consumed under ``limit``."""
    return is_unlimited(limit) or current_usage < limit


def validate_feature_map(features: dict[str, Any]) -> dict[str, int]:
    """
    Validate a plan feature map.

    Args:
        features: Mapping of feature name to limit

    Returns:
        Normalized mapping keyed by feature value

    Raises:
        ValueError: On unknown keys or limits below -1
    """
    normalized: dict[str, int] = {}
    for key, limit in features.items():
        feature = Feature.parse(key)
        if feature is None:
            raise ValueError(f"Unknown feature '{key}'")
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise ValueError(f"Limit for '{key}' must be an integer")
        if limit < UNLIMITED:
            raise ValueError(f"Limit for '{key}' must be >= -1")
        normalized[feature.value] = limit
    return normalized


def current_period_start(now: datetime | None = None) -> datetime:
    """
    First instant of the calendar month containing ``now`` (UTC, naive).

    Usage resets monthly regardless of the subscription's own billing
    period, since free users have no period to anchor to.
    """
    now = now or datetime.utcnow()
    return datetime(now.year, now.month, 1)


def period_end(period_start: datetime) -> datetime:
    """First instant of the month after ``period_start``."""
    if period_start.month == 12:
        return datetime(period_start.year + 1, 1, 1)
    return datetime(period_start.year, period_start.month + 1, 1)
