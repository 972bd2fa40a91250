from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

from content_decay_agent.models import DateWindow, PageSeries


def lookback_window(run_date: date | None = None, lookback_days: int = 90) -> DateWindow:
    """Build the window of the last ``lookback_days`` days ending on ``run_date``.

    ``run_date`` itself is included, so a 90-day lookback spans 90 calendar days.
    """
    run_date = run_date or date.today()
    days = max(1, int(lookback_days))
    start = run_date - timedelta(days=days - 1)
    return DateWindow(f"Lookback {days} days", start, run_date)


def clip_series_to_lookback(pages: list[PageSeries], window: DateWindow) -> list[PageSeries]:
    """Drop snapshots outside ``window``.

    Opt-in pre-filter: the analyzer itself splits by snapshot count and never
    looks at ``lookback_days``.
    """
    clipped: list[PageSeries] = []
    for page in pages:
        kept = [snapshot for snapshot in page.snapshots if window.contains(snapshot.day)]
        clipped.append(replace(page, snapshots=kept))
    return clipped
