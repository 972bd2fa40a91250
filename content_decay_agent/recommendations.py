from __future__ import annotations

import json
import logging
import re
from typing import Any, Mapping

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate

from content_decay_agent.models import DecayResult, RefreshRecommendation


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert content strategist specializing in content refresh and SEO recovery. "
    "Analyze decaying content and provide specific, actionable refresh recommendations."
)

USER_PROMPT = """
Analyze these decaying content pages and provide specific refresh recommendations.

SITE: {domain}
INDUSTRY: {industry}

DECAYING PAGES:
{pages}

For each page, provide a specific refresh strategy:
1. Why is it likely decaying? (content freshness, competition, search intent shift, etc.)
2. What specific updates would help recover rankings?
3. Priority level for refresh

Return as JSON:
{{
  "recommendations": [
    {{
      "pageUrl": "url",
      "title": "page title",
      "pageId": "id",
      "severity": "critical|high|medium",
      "likelyDecayCause": "explanation",
      "recommendation": "detailed recommendation",
      "refreshStrategy": "specific steps to take",
      "estimatedEffort": "hours",
      "potentialImpact": "expected traffic recovery"
    }}
  ]
}}
""".strip()

PRIORITY_BY_SEVERITY = {"critical": "critical", "high": "high"}
IMPACT_SCORE_BY_SEVERITY = {"critical": 9, "high": 7}


def priority_for(severity: str) -> str:
    return PRIORITY_BY_SEVERITY.get(str(severity).strip().lower(), "medium")


def impact_score_for(severity: str) -> int:
    return IMPACT_SCORE_BY_SEVERITY.get(str(severity).strip().lower(), 5)


def _fmt_position(value: float | None) -> str:
    return "N/A" if value is None else f"{value:.1f}"


def build_decay_prompt_payload(
    results: list[DecayResult],
    site: Mapping[str, Any] | None,
) -> dict[str, str]:
    site = site or {}
    org = site.get("org") if isinstance(site.get("org"), Mapping) else {}
    blocks: list[str] = []
    for idx, result in enumerate(results, start=1):
        metrics = result.metrics.to_dict()
        blocks.append(
            "\n".join(
                [
                    f"{idx}. {result.url}",
                    f"   Title: {result.title}",
                    f"   Severity: {result.severity}",
                    f"   Clicks: {metrics['earlierClicks']} -> {metrics['recentClicks']} "
                    f"({metrics['clicksChange']}%)",
                    f"   Position: {_fmt_position(metrics['earlierPosition'])} -> "
                    f"{_fmt_position(metrics['recentPosition'])}",
                    f"   Decay Factors: {', '.join(result.decay_factors)}",
                ]
            )
        )
    return {
        "domain": str(site.get("domain") or "unknown"),
        "industry": str(org.get("name") or "Unknown"),
        "pages": "\n\n".join(blocks),
    }


def _parse_json_object(raw: str) -> dict[str, object]:
    text = (raw or "").strip()
    if not text:
        return {}
    decoder = json.JSONDecoder()
    try:
        parsed = json.loads(text)
        return parsed if isinstance(parsed, dict) else {}
    except json.JSONDecodeError:
        pass

    fenced = re.findall(r"```(?:json)?\s*(\{.*?\})\s*```", text, flags=re.DOTALL | re.IGNORECASE)
    for block in fenced:
        try:
            parsed = json.loads(block)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            continue

    for idx, ch in enumerate(text):
        if ch != "{":
            continue
        try:
            parsed, _ = decoder.raw_decode(text[idx:])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            continue
    return {}


def _to_recommendation(
    row: Mapping[str, Any],
    by_url: dict[str, DecayResult],
) -> RefreshRecommendation | None:
    page_url = str(row.get("pageUrl", "")).strip()
    if not page_url:
        return None
    analyzed = by_url.get(page_url)
    severity = str(row.get("severity", "")).strip().lower()
    if not severity and analyzed is not None:
        severity = analyzed.severity
    return RefreshRecommendation(
        page_url=page_url,
        title=str(row.get("title", "")).strip() or (analyzed.title if analyzed else ""),
        severity=severity or "medium",
        likely_decay_cause=str(row.get("likelyDecayCause", "")).strip(),
        recommendation=str(row.get("recommendation", "")).strip(),
        refresh_strategy=str(row.get("refreshStrategy", "")).strip(),
        estimated_effort=str(row.get("estimatedEffort", "")).strip(),
        potential_impact=str(row.get("potentialImpact", "")).strip(),
        page_id=analyzed.page_id if analyzed else None,
        metrics=analyzed.metrics.to_dict() if analyzed else None,
    )


def generate_refresh_recommendations(
    llm: BaseChatModel,
    results: list[DecayResult],
    site: Mapping[str, Any] | None,
) -> list[RefreshRecommendation]:
    """Ask the LLM for a refresh plan per decaying page.

    Page id and metrics always come from the analyzer output matched by URL,
    never from the model. Any failure is logged and yields an empty list.
    """
    if not results:
        return []

    prompt = ChatPromptTemplate.from_messages(
        [
            ("system", SYSTEM_PROMPT),
            ("user", USER_PROMPT),
        ]
    )
    chain = prompt | llm | StrOutputParser()
    try:
        raw = chain.invoke(build_decay_prompt_payload(results, site))
    except Exception as exc:
        logger.error("Refresh recommendations request failed: %s", exc)
        return []

    parsed = _parse_json_object(raw)
    rows = parsed.get("recommendations", [])
    if not isinstance(rows, list):
        logger.warning("LLM response had no recommendations list")
        return []

    by_url = {result.url: result for result in results}
    recommendations: list[RefreshRecommendation] = []
    for row in rows:
        if not isinstance(row, Mapping):
            continue
        recommendation = _to_recommendation(row, by_url)
        if recommendation is not None:
            recommendations.append(recommendation)
    logger.info("Generated %d refresh recommendations", len(recommendations))
    return recommendations
