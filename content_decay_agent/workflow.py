from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, TypedDict

from langchain_core.language_models.chat_models import BaseChatModel
from langgraph.graph import END, StateGraph

from content_decay_agent.analysis import analyze_pages, summarize_results, top_results
from content_decay_agent.clients.supabase_client import SupabaseStore
from content_decay_agent.config import AgentConfig
from content_decay_agent.models import (
    DecayResult,
    DecaySummary,
    DecayThresholds,
    PageSeries,
    RefreshRecommendation,
)
from content_decay_agent.recommendations import generate_refresh_recommendations
from content_decay_agent.time_windows import clip_series_to_lookback, lookback_window


logger = logging.getLogger(__name__)


class DecayState(TypedDict, total=False):
    site_id: str
    config: AgentConfig
    store: SupabaseStore
    llm: BaseChatModel | None
    thresholds: DecayThresholds
    run_date: date
    apply_lookback: bool

    site: dict[str, Any]
    pages: list[PageSeries]
    total_analyzed: int
    results: list[DecayResult]
    summary: DecaySummary
    recommendations: list[RefreshRecommendation]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_site_node(state: DecayState) -> DecayState:
    store = state["store"]
    config = state["config"]
    site_id = state["site_id"]

    site = store.fetch_site(site_id)
    if not site:
        raise RuntimeError("Site not found")

    rows = store.fetch_pages_with_history(site_id, limit=config.page_limit)
    pages = [PageSeries.from_row(row) for row in rows]
    if state.get("apply_lookback"):
        window = lookback_window(state.get("run_date"), state["thresholds"].lookback_days)
        pages = clip_series_to_lookback(pages, window)
        logger.info("Clipped history to %s..%s", window.start, window.end)
    return {"site": site, "pages": pages, "total_analyzed": len(rows)}


def analyze_node(state: DecayState) -> DecayState:
    results = analyze_pages(state.get("pages", []), state["thresholds"])
    summary = summarize_results(results)
    logger.info(
        "Found %d decaying pages (critical=%d high=%d medium=%d)",
        summary.total,
        summary.critical,
        summary.high,
        summary.medium,
    )
    return {"results": results, "summary": summary}


def persist_flags_node(state: DecayState) -> DecayState:
    store = state["store"]
    results = state.get("results", [])
    detected_at = _utc_now_iso()
    for result in results:
        store.mark_page_decaying(result, detected_at)
    store.reset_non_decaying(state["site_id"], [result.page_id for result in results])
    return {}


def recommend_node(state: DecayState) -> DecayState:
    config = state["config"]
    top = top_results(state.get("results", []), config.recommendations_top_n)
    recommendations = generate_refresh_recommendations(state["llm"], top, state.get("site"))
    state["store"].insert_recommendations(
        state["site_id"], recommendations, ai_model=config.openai_model
    )
    return {"recommendations": recommendations}


def record_run_node(state: DecayState) -> DecayState:
    store = state["store"]
    config = state["config"]
    site_id = state["site_id"]
    results = state.get("results", [])
    summary = state.get("summary") or summarize_results(results)

    store.insert_analysis_run(
        site_id,
        {
            "totalAnalyzed": state.get("total_analyzed", 0),
            "decayingFound": summary.total,
            "bySeverity": {
                "critical": summary.critical,
                "high": summary.high,
                "medium": summary.medium,
            },
            "thresholds": state["thresholds"].to_dict(),
        },
        ai_model=config.openai_model,
    )

    if summary.critical > 0:
        critical = [row for row in results if row.severity == "critical"]
        store.insert_alert(
            site_id,
            title=f"{summary.critical} pages with critical traffic decay",
            message="Content refresh recommended to recover lost traffic",
            data={
                "criticalPages": [
                    row.to_dict() for row in critical[: max(0, config.alert_sample_size)]
                ]
            },
        )
    return {}


def _route_after_persist(state: DecayState) -> str:
    if not state.get("results"):
        return "record_run"
    if state.get("llm") is None or not state["config"].recommendations_enabled:
        return "record_run"
    return "recommend"


def build_workflow_app():
    workflow = StateGraph(DecayState)
    workflow.add_node("load_site", load_site_node)
    workflow.add_node("analyze", analyze_node)
    workflow.add_node("persist_flags", persist_flags_node)
    workflow.add_node("recommend", recommend_node)
    workflow.add_node("record_run", record_run_node)

    workflow.set_entry_point("load_site")
    workflow.add_edge("load_site", "analyze")
    workflow.add_edge("analyze", "persist_flags")
    workflow.add_conditional_edges(
        "persist_flags",
        _route_after_persist,
        {
            "recommend": "recommend",
            "record_run": "record_run",
        },
    )
    workflow.add_edge("recommend", "record_run")
    workflow.add_edge("record_run", END)

    return workflow.compile()


def build_result_payload(
    total_analyzed: int,
    results: list[DecayResult],
    recommendations: list[RefreshRecommendation] | None = None,
) -> dict[str, Any]:
    return {
        "success": True,
        "totalAnalyzed": total_analyzed,
        "decayingPages": [row.to_dict() for row in results],
        "refreshRecommendations": [rec.to_dict() for rec in recommendations or []],
        "summary": summarize_results(results).to_dict(),
    }


def state_to_payload(state: DecayState) -> dict[str, Any]:
    return build_result_payload(
        int(state.get("total_analyzed", 0)),
        list(state.get("results", [])),
        list(state.get("recommendations", [])),
    )


def run_decay_workflow(
    store: SupabaseStore,
    site_id: str,
    config: AgentConfig,
    *,
    thresholds: DecayThresholds | None = None,
    llm: BaseChatModel | None = None,
    job_id: str = "",
    run_date: date | None = None,
    apply_lookback: bool = False,
) -> DecayState:
    """Detect decaying pages for a site and persist flags, recommendations and the run.

    When ``job_id`` is set, the matching background job row moves through
    ``running`` to ``completed`` (with the result payload) or ``failed``.
    """
    if not site_id:
        raise ValueError("site_id required")

    if job_id:
        store.update_job(job_id, {"status": "running", "started_at": _utc_now_iso()})

    app = build_workflow_app()
    try:
        final_state = app.invoke(
            {
                "site_id": site_id,
                "config": config,
                "store": store,
                "llm": llm,
                "thresholds": thresholds or config.default_thresholds(),
                "run_date": run_date or date.today(),
                "apply_lookback": apply_lookback,
            }
        )
    except Exception as exc:
        if job_id:
            try:
                store.update_job(
                    job_id,
                    {"status": "failed", "completed_at": _utc_now_iso(), "error": str(exc)},
                )
            except Exception as job_exc:
                logger.error("Could not mark job %s as failed: %s", job_id, job_exc)
        raise

    if job_id:
        store.update_job(
            job_id,
            {
                "status": "completed",
                "completed_at": _utc_now_iso(),
                "result": state_to_payload(final_state),
            },
        )
    return final_state


def run_decay_detection(
    store: SupabaseStore,
    site_id: str,
    config: AgentConfig,
    **kwargs: Any,
) -> dict[str, Any]:
    return state_to_payload(run_decay_workflow(store, site_id, config, **kwargs))


def get_decay_analysis(store: SupabaseStore, site_id: str) -> dict[str, Any]:
    if not site_id:
        raise ValueError("site_id required")

    decaying = store.fetch_decaying_pages(site_id)
    severities = [str(row.get("decay_severity") or "") for row in decaying]
    return {
        "decayingPages": decaying,
        "refreshRecommendations": store.fetch_pending_recommendations(site_id),
        "lastAnalysis": store.fetch_last_run(site_id),
        "summary": {
            "totalDecaying": len(decaying),
            "critical": severities.count("critical"),
            "high": severities.count("high"),
            "medium": severities.count("medium"),
        },
    }
