from __future__ import annotations

import json

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from content_decay_agent.models import DecayMetrics, DecayResult
from content_decay_agent.recommendations import (
    _parse_json_object,
    build_decay_prompt_payload,
    generate_refresh_recommendations,
    impact_score_for,
    priority_for,
)


SITE = {"domain": "example.com", "org": {"name": "Acme Outdoor"}}


def _result(page_id: str, severity: str = "critical", position: float | None = 5.0) -> DecayResult:
    return DecayResult(
        page_id=page_id,
        url=f"https://example.com/{page_id}",
        title=f"Page {page_id}",
        page_type="blog",
        severity=severity,
        metrics=DecayMetrics(100.0, 40.0, -60.0, 1000.0, 900.0, -10.0, position, position, 0.0),
        decay_factors=("clicks_drop",),
    )


def test_prompt_payload_lists_pages_and_site_context() -> None:
    payload = build_decay_prompt_payload([_result("p1"), _result("p2", position=None)], SITE)

    assert payload["domain"] == "example.com"
    assert payload["industry"] == "Acme Outdoor"
    assert "1. https://example.com/p1" in payload["pages"]
    assert "Clicks: 100 -> 40 (-60%)" in payload["pages"]
    assert "Position: 5.0 -> 5.0" in payload["pages"]
    assert "Position: N/A -> N/A" in payload["pages"]
    assert "Decay Factors: clicks_drop" in payload["pages"]


def test_prompt_payload_without_site_uses_placeholders() -> None:
    payload = build_decay_prompt_payload([_result("p1")], None)

    assert payload["domain"] == "unknown"
    assert payload["industry"] == "Unknown"


def test_recommendations_take_page_id_and_metrics_from_analysis() -> None:
    response = json.dumps(
        {
            "recommendations": [
                {
                    "pageUrl": "https://example.com/p1",
                    "pageId": "model-made-this-up",
                    "severity": "critical",
                    "likelyDecayCause": "Outdated statistics",
                    "recommendation": "Refresh the 2024 data",
                    "refreshStrategy": "Update tables, add FAQ",
                    "estimatedEffort": "3",
                    "potentialImpact": "+40% clicks",
                },
                {"pageUrl": "https://example.com/unknown", "recommendation": "Rewrite"},
                {"title": "no url"},
                "garbage",
            ]
        }
    )
    llm = FakeListChatModel(responses=[response])

    recs = generate_refresh_recommendations(llm, [_result("p1")], SITE)

    assert len(recs) == 2
    first, second = recs
    assert first.page_id == "p1"
    assert first.title == "Page p1"
    assert first.metrics is not None
    assert first.metrics["clicksChange"] == -60
    assert first.refresh_strategy == "Update tables, add FAQ"
    assert second.page_id is None
    assert second.metrics is None
    assert second.severity == "medium"


def test_recommendations_accept_fenced_json() -> None:
    body = json.dumps({"recommendations": [{"pageUrl": "https://example.com/p1"}]})
    llm = FakeListChatModel(responses=[f"Here is the plan:\n```json\n{body}\n```"])

    recs = generate_refresh_recommendations(llm, [_result("p1", severity="high")], SITE)

    assert [rec.page_url for rec in recs] == ["https://example.com/p1"]
    assert recs[0].severity == "high"


def test_llm_failure_yields_empty_list() -> None:
    def boom(_: object) -> str:
        raise RuntimeError("rate limited")

    recs = generate_refresh_recommendations(RunnableLambda(boom), [_result("p1")], SITE)

    assert recs == []


def test_unparseable_or_malformed_response_yields_empty_list() -> None:
    assert generate_refresh_recommendations(
        FakeListChatModel(responses=["I cannot help with that."]), [_result("p1")], SITE
    ) == []
    assert generate_refresh_recommendations(
        FakeListChatModel(responses=['{"recommendations": "none"}']), [_result("p1")], SITE
    ) == []


def test_no_results_skips_the_llm() -> None:
    llm = FakeListChatModel(responses=[])

    assert generate_refresh_recommendations(llm, [], SITE) == []


def test_parse_json_object_finds_embedded_object() -> None:
    assert _parse_json_object('prefix {"a": 1} suffix') == {"a": 1}
    assert _parse_json_object("[1, 2]") == {}
    assert _parse_json_object("") == {}


def test_priority_and_impact_mapping() -> None:
    assert priority_for("critical") == "critical"
    assert priority_for("High") == "high"
    assert priority_for("medium") == "medium"
    assert priority_for("unknown") == "medium"
    assert impact_score_for("critical") == 9
    assert impact_score_for("high") == 7
    assert impact_score_for("medium") == 5
