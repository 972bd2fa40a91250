from __future__ import annotations

import math
from typing import Iterable

from content_decay_agent.models import (
    SEVERITY_ORDER,
    DecayMetrics,
    DecayResult,
    DecaySummary,
    DecayThresholds,
    MetricSnapshot,
    PageSeries,
)


CRITICAL_CLICKS_CHANGE = -50.0
CRITICAL_POSITION_CHANGE = 10.0
HIGH_CLICKS_CHANGE = -40.0
HIGH_POSITION_CHANGE = 7.0


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def _safe_pct(current: float, baseline: float) -> float:
    if baseline > 0:
        return (current - baseline) / baseline * 100
    return 0.0


def _split_windows(
    snapshots: list[MetricSnapshot],
) -> tuple[list[MetricSnapshot], list[MetricSnapshot]]:
    # Windows are cut by snapshot count, not by elapsed days.
    ordered = sorted(snapshots, key=lambda snapshot: snapshot.day)
    midpoint = len(ordered) // 2
    return ordered[:midpoint], ordered[midpoint:]


def _is_ranked(position: float | None) -> bool:
    return position is not None and math.isfinite(position) and position > 0


def _window_position(window: list[MetricSnapshot]) -> float | None:
    return _mean([snap.position for snap in window if _is_ranked(snap.position)])


def _compute_metrics(
    earlier: list[MetricSnapshot],
    recent: list[MetricSnapshot],
) -> DecayMetrics:
    earlier_clicks = sum(snap.clicks for snap in earlier) / len(earlier)
    recent_clicks = sum(snap.clicks for snap in recent) / len(recent)
    earlier_impressions = sum(snap.impressions for snap in earlier) / len(earlier)
    recent_impressions = sum(snap.impressions for snap in recent) / len(recent)
    earlier_position = _window_position(earlier)
    recent_position = _window_position(recent)

    position_change = None
    if earlier_position is not None and recent_position is not None:
        position_change = recent_position - earlier_position

    return DecayMetrics(
        earlier_clicks=earlier_clicks,
        recent_clicks=recent_clicks,
        clicks_change=_safe_pct(recent_clicks, earlier_clicks),
        earlier_impressions=earlier_impressions,
        recent_impressions=recent_impressions,
        impressions_change=_safe_pct(recent_impressions, earlier_impressions),
        earlier_position=earlier_position,
        recent_position=recent_position,
        position_change=position_change,
    )


def _decay_factors(metrics: DecayMetrics, thresholds: DecayThresholds) -> tuple[str, ...]:
    factors: list[str] = []
    if metrics.clicks_change < -thresholds.clicks_drop_percent:
        factors.append("clicks_drop")
    if metrics.impressions_change < -thresholds.impressions_drop_percent:
        factors.append("impressions_drop")
    if (
        metrics.position_change is not None
        and metrics.position_change > thresholds.position_drop_threshold
    ):
        factors.append("ranking_drop")
    return tuple(factors)


def classify_severity(clicks_change: float, position_change: float | None) -> str:
    """Map decline magnitude to a tier; the first matching tier wins."""
    position = position_change if position_change is not None else 0.0
    if clicks_change < CRITICAL_CLICKS_CHANGE or position > CRITICAL_POSITION_CHANGE:
        return "critical"
    if clicks_change < HIGH_CLICKS_CHANGE or position > HIGH_POSITION_CHANGE:
        return "high"
    return "medium"


def evaluate_page(page: PageSeries, thresholds: DecayThresholds) -> DecayResult | None:
    """Return the verdict for one page, or None when it is not decaying.

    Pages with fewer than two snapshots or with too little earlier traffic
    are treated as "not enough signal" and also return None.
    """
    if len(page.snapshots) < 2:
        return None

    earlier, recent = _split_windows(page.snapshots)
    metrics = _compute_metrics(earlier, recent)
    if metrics.earlier_clicks < thresholds.min_previous_clicks:
        return None

    factors = _decay_factors(metrics, thresholds)
    if not factors:
        return None

    return DecayResult(
        page_id=page.page_id,
        url=page.url,
        title=page.title,
        page_type=page.page_type,
        severity=classify_severity(metrics.clicks_change, metrics.position_change),
        metrics=metrics,
        decay_factors=factors,
    )


def rank_results(results: Iterable[DecayResult]) -> list[DecayResult]:
    return sorted(
        results,
        key=lambda row: (
            SEVERITY_ORDER.get(row.severity, len(SEVERITY_ORDER)),
            -abs(row.metrics.clicks_change),
        ),
    )


def analyze_pages(
    pages: Iterable[PageSeries],
    thresholds: DecayThresholds | None = None,
) -> list[DecayResult]:
    thresholds = thresholds or DecayThresholds()
    results: list[DecayResult] = []
    for page in pages:
        result = evaluate_page(page, thresholds)
        if result is not None:
            results.append(result)
    return rank_results(results)


def summarize_results(results: list[DecayResult]) -> DecaySummary:
    return DecaySummary.from_results(results)


def top_results(results: list[DecayResult], limit: int) -> list[DecayResult]:
    if limit <= 0:
        return []
    return list(results[:limit])
