from __future__ import annotations

import argparse
import json
import logging
import re
from datetime import date
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv

from content_decay_agent.analysis import analyze_pages
from content_decay_agent.clients.supabase_client import SupabaseStore
from content_decay_agent.config import AgentConfig
from content_decay_agent.llm import build_llm
from content_decay_agent.models import DecayThresholds, PageSeries
from content_decay_agent.reporting import build_markdown_report, write_docx
from content_decay_agent.time_windows import clip_series_to_lookback, lookback_window
from content_decay_agent.workflow import (
    DecayState,
    get_decay_analysis,
    run_decay_workflow,
    state_to_payload,
)


THRESHOLD_ARGS: dict[str, str] = {
    "clicks_drop_percent": "clicksDropPercent",
    "impressions_drop_percent": "impressionsDropPercent",
    "position_drop_threshold": "positionDropThreshold",
    "lookback_days": "lookbackDays",
    "min_previous_clicks": "minPreviousClicks",
}


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Content Decay Agent")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Detect decaying pages.")
    source_group = run_parser.add_mutually_exclusive_group(required=True)
    source_group.add_argument("--site-id", dest="site_id", help="Supabase seo_sites id.")
    source_group.add_argument(
        "--input-json",
        dest="input_json",
        help="Analyze a local JSON export of pages with history (no Supabase writes).",
    )
    run_parser.add_argument(
        "--run-date",
        dest="run_date",
        help="Execution date in YYYY-MM-DD format (default: today)",
    )
    run_parser.add_argument("--job-id", dest="job_id", default="", help="seo_background_jobs id to update.")
    run_parser.add_argument(
        "--no-recommendations",
        dest="recommendations",
        action="store_false",
        help="Skip LLM refresh recommendations for this run.",
    )
    run_parser.add_argument(
        "--apply-lookback",
        action="store_true",
        help="Drop snapshots older than lookbackDays before analysis (off by default).",
    )
    run_parser.add_argument("--clicks-drop-percent", type=float)
    run_parser.add_argument("--impressions-drop-percent", type=float)
    run_parser.add_argument("--position-drop-threshold", type=float)
    run_parser.add_argument("--lookback-days", type=int)
    run_parser.add_argument("--min-previous-clicks", type=float)
    run_parser.add_argument("--output-json", dest="output_json", help="Write the result payload here.")
    run_parser.add_argument("--docx", action="store_true", help="Write a DOCX report to OUTPUT_DIR.")

    show_parser = subparsers.add_parser("show", help="Print the stored decay analysis for a site.")
    show_parser.add_argument("--site-id", dest="site_id", required=True)
    return parser.parse_args(argv)


def _parse_run_date(raw: str | None) -> date:
    if not raw:
        return date.today()
    return date.fromisoformat(raw)


def _thresholds_from_args(args: argparse.Namespace, base: DecayThresholds) -> DecayThresholds:
    overrides = {
        camel: getattr(args, attr)
        for attr, camel in THRESHOLD_ARGS.items()
        if getattr(args, attr, None) is not None
    }
    return DecayThresholds.from_mapping(overrides, base=base)


def _load_pages_json(path_value: str) -> list[PageSeries]:
    path = Path(path_value)
    if not path.exists():
        raise RuntimeError(f"Input file not found: {path_value}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Invalid JSON in input file: {path_value}") from exc
    rows = payload.get("pages", []) if isinstance(payload, dict) else payload
    if not isinstance(rows, list):
        raise RuntimeError("Input JSON must be a list of pages or an object with a 'pages' list.")
    return [PageSeries.from_row(row) for row in rows if isinstance(row, dict)]


def _build_store(config: AgentConfig) -> SupabaseStore:
    if not config.supabase_enabled:
        raise SystemExit(
            "Supabase config missing. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
        )
    return SupabaseStore(
        url=config.supabase_url,
        service_key=config.supabase_service_key,
        timeout_sec=config.supabase_timeout_sec,
    )


def _print_summary(payload: dict[str, Any]) -> None:
    summary = payload.get("summary", {})
    print(
        "Decay analysis: "
        f"analyzed={payload.get('totalAnalyzed', 0)} | "
        f"decaying={summary.get('total', 0)} | "
        f"critical={summary.get('critical', 0)} | "
        f"high={summary.get('high', 0)} | "
        f"medium={summary.get('medium', 0)}"
    )
    for row in payload.get("decayingPages", [])[:10]:
        metrics = row.get("metrics", {})
        print(
            f"- [{row.get('severity')}] {row.get('url')} | "
            f"clicks {metrics.get('clicksChange')}% | "
            f"factors={','.join(row.get('decayFactors', []))}"
        )


def _run_local(
    args: argparse.Namespace,
    thresholds: DecayThresholds,
    run_date: date,
) -> DecayState:
    pages = _load_pages_json(args.input_json)
    if args.apply_lookback:
        pages = clip_series_to_lookback(pages, lookback_window(run_date, thresholds.lookback_days))
    return {
        "site": {"domain": Path(args.input_json).stem},
        "total_analyzed": len(pages),
        "results": analyze_pages(pages, thresholds),
        "recommendations": [],
    }


def _run_remote(
    args: argparse.Namespace,
    config: AgentConfig,
    thresholds: DecayThresholds,
    run_date: date,
) -> DecayState:
    store = _build_store(config)
    llm = None
    if args.recommendations and config.recommendations_enabled:
        if config.llm_enabled:
            llm = build_llm(config)
        else:
            print("Refresh recommendations: skipped (LLM not configured).")
    try:
        return run_decay_workflow(
            store,
            args.site_id,
            config,
            thresholds=thresholds,
            llm=llm,
            job_id=args.job_id,
            run_date=run_date,
            apply_lookback=args.apply_lookback,
        )
    except RuntimeError as exc:
        raise SystemExit(f"Decay detection failed: {exc}") from exc


def _write_outputs(
    args: argparse.Namespace,
    config: AgentConfig,
    state: DecayState,
    payload: dict[str, Any],
    thresholds: DecayThresholds,
    run_date: date,
) -> None:
    if args.output_json:
        output_path = Path(args.output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Result JSON written: {output_path}")

    if args.docx:
        site = state.get("site") or {}
        site_label = str(site.get("domain") or args.site_id or "site")
        markdown = build_markdown_report(
            run_date,
            site,
            int(state.get("total_analyzed", 0)),
            list(state.get("results", [])),
            thresholds,
            list(state.get("recommendations", [])),
        )
        safe_label = re.sub(r"[^A-Za-z0-9._-]+", "_", site_label)
        docx_path = (
            Path(config.output_dir)
            / f"{run_date.strftime('%Y_%m_%d')}_content_decay_{safe_label}.docx"
        )
        write_docx(docx_path, f"Content Decay Report {run_date.isoformat()}", markdown)
        print(f"Report generated: {docx_path}")


def main(argv: list[str] | None = None) -> None:
    load_dotenv(find_dotenv(usecwd=True), override=False)

    args = _parse_args(argv)
    config = AgentConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "show":
        store = _build_store(config)
        try:
            analysis = get_decay_analysis(store, args.site_id)
        except RuntimeError as exc:
            raise SystemExit(f"Could not load decay analysis: {exc}") from exc
        print(json.dumps(analysis, ensure_ascii=False, indent=2, default=str))
        return

    run_date = _parse_run_date(args.run_date)
    thresholds = _thresholds_from_args(args, config.default_thresholds())
    if args.input_json:
        try:
            state = _run_local(args, thresholds, run_date)
        except RuntimeError as exc:
            raise SystemExit(f"Decay detection failed: {exc}") from exc
    else:
        state = _run_remote(args, config, thresholds, run_date)

    payload = state_to_payload(state)
    _print_summary(payload)
    _write_outputs(args, config, state, payload, thresholds, run_date)


if __name__ == "__main__":
    main()
