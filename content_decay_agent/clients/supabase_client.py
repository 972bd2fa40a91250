from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Iterable

import requests

from content_decay_agent.models import DecayResult, RefreshRecommendation
from content_decay_agent.recommendations import impact_score_for, priority_for


logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """PostgREST wrapper for the SEO tables used by decay detection."""

    HISTORY_COLUMNS = ("snapshot_date", "clicks", "impressions", "avg_position")

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout_sec: int = 30,
        history_columns: Iterable[str] | None = None,
    ) -> None:
        self.url = str(url or "").strip().rstrip("/")
        self.service_key = str(service_key or "").strip()
        if not (self.url and self.service_key):
            raise RuntimeError(
                "Missing Supabase config. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
            )
        self.timeout_sec = max(5, int(timeout_sec))
        self.history_columns = tuple(history_columns or self.HISTORY_COLUMNS)

    def _headers(self, prefer: str = "") -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, str] | None = None,
        payload: object = None,
        prefer: str = "",
    ) -> Any:
        url = f"{self.url}/rest/v1/{table}"
        try:
            response = requests.request(
                method,
                url,
                params=params or {},
                json=payload,
                headers=self._headers(prefer),
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise RuntimeError(f"Supabase {method} {table} failed: {exc}") from exc

        if response.status_code >= 400:
            detail = response.text.strip()
            raise RuntimeError(
                f"Supabase {method} {table} failed ({response.status_code})."
                + (f" Details: {detail}" if detail else "")
            )
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise RuntimeError(f"Supabase returned invalid JSON for {table}.") from exc

    def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        rows = self._request("GET", table, params=params)
        if not isinstance(rows, list):
            return []
        return [row for row in rows if isinstance(row, dict)]

    def _insert(self, table: str, payload: object) -> None:
        self._request("POST", table, payload=payload, prefer="return=minimal")

    def _update(self, table: str, filters: dict[str, str], fields: dict[str, Any]) -> None:
        self._request("PATCH", table, params=filters, payload=fields, prefer="return=minimal")

    def fetch_site(self, site_id: str) -> dict[str, Any] | None:
        rows = self._select(
            "seo_sites",
            {"select": "*,org:organizations(name)", "id": f"eq.{site_id}", "limit": "1"},
        )
        return rows[0] if rows else None

    def fetch_pages_with_history(self, site_id: str, limit: int = 200) -> list[dict[str, Any]]:
        history = ",".join(self.history_columns)
        rows = self._select(
            "seo_pages",
            {
                "select": f"*,history:seo_page_history({history})",
                "site_id": f"eq.{site_id}",
                "order": "clicks_28d.desc.nullslast",
                "limit": str(max(1, int(limit))),
            },
        )
        logger.info("Fetched %d pages for site %s", len(rows), site_id)
        return rows

    def mark_page_decaying(self, result: DecayResult, detected_at: str | None = None) -> None:
        self._update(
            "seo_pages",
            {"id": f"eq.{result.page_id}"},
            {
                "is_decaying": True,
                "decay_severity": result.severity,
                "decay_detected_at": detected_at or _utc_now_iso(),
                "decay_metrics": result.metrics.to_dict(),
            },
        )

    def reset_non_decaying(self, site_id: str, decaying_ids: list[str]) -> None:
        # An empty result set leaves existing flags untouched.
        if not decaying_ids:
            return
        self._update(
            "seo_pages",
            {"site_id": f"eq.{site_id}", "id": f"not.in.({','.join(decaying_ids)})"},
            {"is_decaying": False, "decay_severity": None},
        )

    def insert_recommendations(
        self,
        site_id: str,
        recommendations: list[RefreshRecommendation],
        ai_model: str,
    ) -> None:
        if not recommendations:
            return
        created_at = _utc_now_iso()
        rows = [
            {
                "site_id": site_id,
                "page_id": rec.page_id,
                "category": "content_decay",
                "priority": priority_for(rec.severity),
                "title": f"Refresh: {rec.title}",
                "description": rec.recommendation,
                "current_value": json.dumps(rec.metrics) if rec.metrics else None,
                "suggested_value": rec.refresh_strategy,
                "auto_fixable": False,
                "impact_score": impact_score_for(rec.severity),
                "ai_model": ai_model,
                "status": "pending",
                "created_at": created_at,
            }
            for rec in recommendations
        ]
        self._insert("seo_ai_recommendations", rows)

    def insert_analysis_run(self, site_id: str, results: dict[str, Any], ai_model: str) -> None:
        now = _utc_now_iso()
        self._insert(
            "seo_ai_analysis_runs",
            {
                "site_id": site_id,
                "run_type": "content_decay",
                "status": "completed",
                "results": results,
                "ai_model": ai_model,
                "started_at": now,
                "completed_at": now,
            },
        )

    def insert_alert(self, site_id: str, title: str, message: str, data: dict[str, Any]) -> None:
        self._insert(
            "seo_alerts",
            {
                "site_id": site_id,
                "alert_type": "content_decay",
                "severity": "high",
                "title": title,
                "message": message,
                "data": data,
                "triggered_at": _utc_now_iso(),
                "status": "active",
            },
        )

    def update_job(self, job_id: str, fields: dict[str, Any]) -> None:
        self._update("seo_background_jobs", {"id": f"eq.{job_id}"}, fields)

    def fetch_decaying_pages(self, site_id: str) -> list[dict[str, Any]]:
        return self._select(
            "seo_pages",
            {
                "select": "*",
                "site_id": f"eq.{site_id}",
                "is_decaying": "eq.true",
                "order": "decay_severity.desc",
            },
        )

    def fetch_pending_recommendations(self, site_id: str) -> list[dict[str, Any]]:
        return self._select(
            "seo_ai_recommendations",
            {
                "select": "*",
                "site_id": f"eq.{site_id}",
                "category": "eq.content_decay",
                "status": "eq.pending",
                "order": "impact_score.desc",
            },
        )

    def fetch_last_run(self, site_id: str) -> dict[str, Any] | None:
        rows = self._select(
            "seo_ai_analysis_runs",
            {
                "select": "*",
                "site_id": f"eq.{site_id}",
                "run_type": "eq.content_decay",
                "order": "started_at.desc",
                "limit": "1",
            },
        )
        return rows[0] if rows else None
