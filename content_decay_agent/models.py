from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping


SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2}


def _to_day(raw: object) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    text = str(raw or "").strip()
    # Supabase returns either plain dates or full ISO timestamps.
    return date.fromisoformat(text[:10])


def _to_count(raw: object) -> float:
    try:
        value = float(raw or 0)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _to_position(raw: object) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _round_position(value: float | None) -> float | None:
    if value is None:
        return None
    return round(value, 1)


@dataclass(frozen=True)
class DateWindow:
    name: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class MetricSnapshot:
    day: date
    clicks: float = 0.0
    impressions: float = 0.0
    position: float | None = None

    def __post_init__(self) -> None:
        # None means "not ranked"; zero, negative and non-finite positions are stored as None.
        object.__setattr__(self, "position", _to_position(self.position))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MetricSnapshot":
        raw_day = row.get("date") or row.get("snapshot_date")
        raw_position = row.get("position")
        if raw_position is None:
            raw_position = row.get("avg_position")
        return cls(
            day=_to_day(raw_day),
            clicks=_to_count(row.get("clicks")),
            impressions=_to_count(row.get("impressions")),
            position=_to_position(raw_position),
        )


@dataclass
class PageSeries:
    page_id: str
    url: str = ""
    title: str = ""
    page_type: str = ""
    snapshots: list[MetricSnapshot] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "PageSeries":
        snapshots: list[MetricSnapshot] = []
        for item in row.get("history") or []:
            if not isinstance(item, Mapping):
                continue
            try:
                snapshots.append(MetricSnapshot.from_row(item))
            except ValueError:
                # Rows without a parseable date cannot be placed in a window.
                continue
        return cls(
            page_id=str(row.get("id", "")),
            url=str(row.get("url") or ""),
            title=str(row.get("title") or ""),
            page_type=str(row.get("page_type") or ""),
            snapshots=snapshots,
        )


_THRESHOLD_KEYS = {
    "clicks_drop_percent": "clicksDropPercent",
    "impressions_drop_percent": "impressionsDropPercent",
    "position_drop_threshold": "positionDropThreshold",
    "lookback_days": "lookbackDays",
    "min_previous_clicks": "minPreviousClicks",
}


@dataclass(frozen=True)
class DecayThresholds:
    clicks_drop_percent: float = 30.0
    impressions_drop_percent: float = 25.0
    position_drop_threshold: float = 5.0
    # Not used for windowing; see time_windows.clip_series_to_lookback.
    lookback_days: int = 90
    min_previous_clicks: float = 10.0

    @classmethod
    def from_mapping(
        cls,
        payload: Mapping[str, Any] | None,
        base: "DecayThresholds | None" = None,
    ) -> "DecayThresholds":
        """Build thresholds from an API payload.

        Accepts camelCase or snake_case keys. Missing, empty, zero or
        unparsable values fall back to ``base`` (or the class defaults).
        """
        base = base or cls()
        payload = payload or {}
        values: dict[str, float | int] = {}
        for attr, camel in _THRESHOLD_KEYS.items():
            raw = payload.get(camel, payload.get(attr))
            try:
                parsed = float(raw) if raw not in (None, "") else 0.0
            except (TypeError, ValueError):
                parsed = 0.0
            if not parsed or not math.isfinite(parsed):
                values[attr] = getattr(base, attr)
            elif attr == "lookback_days":
                values[attr] = int(parsed)
            else:
                values[attr] = parsed
        return cls(**values)

    def to_dict(self) -> dict[str, float | int]:
        return {camel: getattr(self, attr) for attr, camel in _THRESHOLD_KEYS.items()}


@dataclass(frozen=True)
class DecayMetrics:
    earlier_clicks: float
    recent_clicks: float
    clicks_change: float
    earlier_impressions: float
    recent_impressions: float
    impressions_change: float
    earlier_position: float | None = None
    recent_position: float | None = None
    position_change: float | None = None

    def to_dict(self) -> dict[str, int | float | None]:
        return {
            "earlierClicks": round_half_up(self.earlier_clicks),
            "recentClicks": round_half_up(self.recent_clicks),
            "clicksChange": round_half_up(self.clicks_change),
            "earlierImpressions": round_half_up(self.earlier_impressions),
            "recentImpressions": round_half_up(self.recent_impressions),
            "impressionsChange": round_half_up(self.impressions_change),
            "earlierPosition": _round_position(self.earlier_position),
            "recentPosition": _round_position(self.recent_position),
            "positionChange": _round_position(self.position_change),
        }


@dataclass(frozen=True)
class DecayResult:
    page_id: str
    url: str
    title: str
    page_type: str
    severity: str
    metrics: DecayMetrics
    decay_factors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageId": self.page_id,
            "url": self.url,
            "title": self.title,
            "pageType": self.page_type,
            "severity": self.severity,
            "metrics": self.metrics.to_dict(),
            "decayFactors": list(self.decay_factors),
        }


@dataclass
class DecaySummary:
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0

    @classmethod
    def from_results(cls, results: list[DecayResult]) -> "DecaySummary":
        return cls(
            total=len(results),
            critical=sum(1 for row in results if row.severity == "critical"),
            high=sum(1 for row in results if row.severity == "high"),
            medium=sum(1 for row in results if row.severity == "medium"),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "critical": self.critical,
            "high": self.high,
            "medium": self.medium,
        }


@dataclass
class RefreshRecommendation:
    page_url: str
    title: str = ""
    severity: str = "medium"
    likely_decay_cause: str = ""
    recommendation: str = ""
    refresh_strategy: str = ""
    estimated_effort: str = ""
    potential_impact: str = ""
    page_id: str | None = None
    metrics: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pageUrl": self.page_url,
            "title": self.title,
            "pageId": self.page_id,
            "severity": self.severity,
            "likelyDecayCause": self.likely_decay_cause,
            "recommendation": self.recommendation,
            "refreshStrategy": self.refresh_strategy,
            "estimatedEffort": self.estimated_effort,
            "potentialImpact": self.potential_impact,
            "metrics": self.metrics,
        }
