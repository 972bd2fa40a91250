from __future__ import annotations

import json
from datetime import date, timedelta
from typing import Any

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from content_decay_agent.config import AgentConfig
from content_decay_agent.workflow import (
    get_decay_analysis,
    run_decay_detection,
    run_decay_workflow,
)


def _history(clicks: list[float], positions: list[float] | None = None) -> list[dict[str, Any]]:
    positions = positions or [5.0] * len(clicks)
    start = date(2026, 1, 5)
    return [
        {
            "date": (start + timedelta(days=7 * idx)).isoformat(),
            "clicks": value,
            "impressions": 1000,
            "position": positions[idx],
        }
        for idx, value in enumerate(clicks)
    ]


def _page_row(page_id: str, clicks: list[float], **kwargs: Any) -> dict[str, Any]:
    return {
        "id": page_id,
        "url": f"https://example.com/{page_id}",
        "title": f"Page {page_id}",
        "page_type": "blog",
        "history": _history(clicks, **kwargs),
    }


class FakeStore:
    def __init__(self, site: dict[str, Any] | None, pages: list[dict[str, Any]]) -> None:
        self.site = site
        self.pages = pages
        self.marked: list[tuple[str, str]] = []
        self.resets: list[list[str]] = []
        self.recommendations: list[Any] = []
        self.runs: list[dict[str, Any]] = []
        self.alerts: list[dict[str, Any]] = []
        self.jobs: list[dict[str, Any]] = []
        self.page_limit: int | None = None

    def fetch_site(self, site_id: str) -> dict[str, Any] | None:
        return self.site

    def fetch_pages_with_history(self, site_id: str, limit: int = 200) -> list[dict[str, Any]]:
        self.page_limit = limit
        return self.pages

    def mark_page_decaying(self, result: Any, detected_at: str | None = None) -> None:
        self.marked.append((result.page_id, result.severity))

    def reset_non_decaying(self, site_id: str, decaying_ids: list[str]) -> None:
        self.resets.append(list(decaying_ids))

    def insert_recommendations(self, site_id: str, recommendations: list[Any], ai_model: str) -> None:
        self.recommendations.extend(recommendations)

    def insert_analysis_run(self, site_id: str, results: dict[str, Any], ai_model: str) -> None:
        self.runs.append(results)

    def insert_alert(self, site_id: str, title: str, message: str, data: dict[str, Any]) -> None:
        self.alerts.append({"title": title, "message": message, "data": data})

    def update_job(self, job_id: str, fields: dict[str, Any]) -> None:
        self.jobs.append(fields)

    def fetch_decaying_pages(self, site_id: str) -> list[dict[str, Any]]:
        return [
            {"id": "a", "decay_severity": "critical"},
            {"id": "b", "decay_severity": "high"},
            {"id": "c", "decay_severity": "critical"},
        ]

    def fetch_pending_recommendations(self, site_id: str) -> list[dict[str, Any]]:
        return [{"id": "r1", "impact_score": 9}]

    def fetch_last_run(self, site_id: str) -> dict[str, Any] | None:
        return None


SITE = {"id": "site-1", "domain": "example.com", "org": {"name": "Acme"}}


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch) -> AgentConfig:
    for key in ("DECAY_PAGE_LIMIT", "DECAY_RECOMMENDATIONS_TOP_N", "DECAY_ALERT_SAMPLE_SIZE"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("DECAY_RECOMMENDATIONS_TOP_N", "1")
    return AgentConfig.from_env()


def _pages() -> list[dict[str, Any]]:
    return [
        _page_row("flat", [80, 80, 80, 80]),
        _page_row("high", [100, 100, 55, 55]),
        _page_row("crit", [100, 100, 20, 20]),
        _page_row("tiny", [500]),
    ]


def test_run_flags_pages_records_run_and_alerts(config: AgentConfig) -> None:
    store = FakeStore(SITE, _pages())

    payload = run_decay_detection(store, "site-1", config)

    assert payload["success"] is True
    assert payload["totalAnalyzed"] == 4
    assert [row["pageId"] for row in payload["decayingPages"]] == ["crit", "high"]
    assert payload["summary"] == {"total": 2, "critical": 1, "high": 1, "medium": 0}
    assert payload["refreshRecommendations"] == []
    assert store.page_limit == 200
    assert store.marked == [("crit", "critical"), ("high", "high")]
    assert store.resets == [["crit", "high"]]
    assert store.runs[0]["totalAnalyzed"] == 4
    assert store.runs[0]["decayingFound"] == 2
    assert store.runs[0]["bySeverity"] == {"critical": 1, "high": 1, "medium": 0}
    assert store.runs[0]["thresholds"]["clicksDropPercent"] == 30
    assert len(store.alerts) == 1
    assert store.alerts[0]["title"] == "1 pages with critical traffic decay"
    assert [row["pageId"] for row in store.alerts[0]["data"]["criticalPages"]] == ["crit"]


def test_run_with_llm_stores_top_n_recommendations(config: AgentConfig) -> None:
    store = FakeStore(SITE, _pages())
    llm = FakeListChatModel(
        responses=[
            json.dumps(
                {
                    "recommendations": [
                        {
                            "pageUrl": "https://example.com/crit",
                            "severity": "critical",
                            "recommendation": "Rewrite",
                        }
                    ]
                }
            )
        ]
    )

    payload = run_decay_detection(store, "site-1", config, llm=llm)

    assert [rec.page_id for rec in store.recommendations] == ["crit"]
    assert payload["refreshRecommendations"][0]["pageId"] == "crit"
    assert payload["refreshRecommendations"][0]["metrics"]["clicksChange"] == -80


def test_no_decay_skips_alert_and_keeps_existing_flags(config: AgentConfig) -> None:
    store = FakeStore(SITE, [_page_row("flat", [80, 80, 80, 80])])
    llm = FakeListChatModel(responses=[])

    payload = run_decay_detection(store, "site-1", config, llm=llm)

    assert payload["decayingPages"] == []
    assert payload["summary"] == {"total": 0, "critical": 0, "high": 0, "medium": 0}
    assert store.marked == []
    assert store.resets == [[]]
    assert store.recommendations == []
    assert store.alerts == []
    assert store.runs[0]["decayingFound"] == 0


def test_job_moves_to_completed_with_payload(config: AgentConfig) -> None:
    store = FakeStore(SITE, _pages())

    run_decay_workflow(store, "site-1", config, job_id="job-1")

    assert [job["status"] for job in store.jobs] == ["running", "completed"]
    assert store.jobs[1]["result"]["summary"]["total"] == 2


def test_missing_site_fails_job_and_raises(config: AgentConfig) -> None:
    store = FakeStore(None, _pages())

    with pytest.raises(RuntimeError, match="Site not found"):
        run_decay_workflow(store, "missing", config, job_id="job-2")

    assert [job["status"] for job in store.jobs] == ["running", "failed"]
    assert store.jobs[1]["error"] == "Site not found"
    assert store.runs == []


def test_site_id_is_required(config: AgentConfig) -> None:
    with pytest.raises(ValueError, match="site_id required"):
        run_decay_detection(FakeStore(SITE, []), "", config)


def test_lookback_clip_is_opt_in(config: AgentConfig) -> None:
    # History ends 2026-01-26; a run date far later leaves nothing inside 90 days.
    store = FakeStore(SITE, _pages())

    clipped = run_decay_detection(
        store, "site-1", config, run_date=date(2026, 12, 31), apply_lookback=True
    )
    unclipped = run_decay_detection(FakeStore(SITE, _pages()), "site-1", config)

    assert clipped["decayingPages"] == []
    assert clipped["totalAnalyzed"] == 4
    assert len(unclipped["decayingPages"]) == 2


def test_get_decay_analysis_counts_stored_severities() -> None:
    analysis = get_decay_analysis(FakeStore(SITE, []), "site-1")

    assert analysis["summary"] == {"totalDecaying": 3, "critical": 2, "high": 1, "medium": 0}
    assert analysis["refreshRecommendations"] == [{"id": "r1", "impact_score": 9}]
    assert analysis["lastAnalysis"] is None


class FlakyJobStore(FakeStore):
    def update_job(self, job_id: str, fields: dict[str, Any]) -> None:
        if fields.get("status") == "failed":
            raise ValueError("jobs table unavailable")
        super().update_job(job_id, fields)


def test_job_update_failure_keeps_original_error(config: AgentConfig) -> None:
    store = FlakyJobStore(None, _pages())

    with pytest.raises(RuntimeError, match="Site not found"):
        run_decay_workflow(store, "missing", config, job_id="job-3")

    assert [job["status"] for job in store.jobs] == ["running"]
