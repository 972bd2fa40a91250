from __future__ import annotations

import re
from datetime import date
from pathlib import Path
from typing import Any, Mapping

from docx import Document
from docx.shared import Pt, RGBColor

from content_decay_agent.models import DecayResult, DecayThresholds, RefreshRecommendation


BOLD_MARKDOWN_RE = re.compile(r"\*\*(.+?)\*\*")
SIGNED_VALUE_RE = re.compile(r"(?<!\w)([+-]\d[\d.,]*%?)")

DARK_GREEN = RGBColor(0x1B, 0x5E, 0x20)
DARK_RED = RGBColor(0x8B, 0x00, 0x00)

FACTOR_LABELS = {
    "clicks_drop": "Clicks drop",
    "impressions_drop": "Impressions drop",
    "ranking_drop": "Ranking drop",
}


def _fmt_int(value: float | int) -> str:
    try:
        rounded = int(round(float(value)))
    except (TypeError, ValueError):
        return "0"
    return f"{rounded:,}".replace(",", " ")


def _fmt_signed_pct(value: int | float) -> str:
    return f"{value:+d}%" if isinstance(value, int) else f"{value:+.0f}%"


def _fmt_position(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.1f}"


def _fmt_signed_position(value: float | None) -> str:
    return "n/a" if value is None else f"{value:+.1f}"


def _cell(text: str, limit: int = 80) -> str:
    return text.replace("|", "/").replace("\n", " ")[:limit]


def _results_table(results: list[DecayResult]) -> list[str]:
    out = [
        "| # | Page | Severity | Clicks (before -> after) | Clicks delta | Impr. delta | Position (before -> after) | Factors |",
        "|---:|---|---|---:|---:|---:|---:|---|",
    ]
    if not results:
        out.append("| - | (no decaying pages) | - | - | - | - | - | - |")
        return out

    for idx, result in enumerate(results, start=1):
        metrics = result.metrics.to_dict()
        factors = ", ".join(FACTOR_LABELS.get(name, name) for name in result.decay_factors)
        page = _cell(result.title or result.url)
        out.append(
            f"| {idx} | {page} | {result.severity} | "
            f"{_fmt_int(metrics['earlierClicks'])} -> {_fmt_int(metrics['recentClicks'])} | "
            f"{_fmt_signed_pct(metrics['clicksChange'])} | "
            f"{_fmt_signed_pct(metrics['impressionsChange'])} | "
            f"{_fmt_position(metrics['earlierPosition'])} -> {_fmt_position(metrics['recentPosition'])} "
            f"({_fmt_signed_position(metrics['positionChange'])}) | {factors} |"
        )
    return out


def build_markdown_report(
    run_date: date,
    site: Mapping[str, Any] | None,
    total_analyzed: int,
    results: list[DecayResult],
    thresholds: DecayThresholds,
    recommendations: list[RefreshRecommendation] | None = None,
) -> str:
    site = site or {}
    domain = str(site.get("domain") or site.get("id") or "unknown site")
    critical = sum(1 for row in results if row.severity == "critical")
    high = sum(1 for row in results if row.severity == "high")
    medium = sum(1 for row in results if row.severity == "medium")

    lines: list[str] = [
        f"# Content Decay Report ({run_date.isoformat()} | {domain})",
        "",
        "## Summary",
        f"- Pages analyzed: {_fmt_int(total_analyzed)}",
        f"- Decaying pages: **{len(results)}** (critical {critical}, high {high}, medium {medium})",
        (
            "- Thresholds: clicks drop > "
            f"{thresholds.clicks_drop_percent:g}%, impressions drop > "
            f"{thresholds.impressions_drop_percent:g}%, position loss > "
            f"{thresholds.position_drop_threshold:g}, min earlier clicks "
            f"{thresholds.min_previous_clicks:g}"
        ),
        "",
        "## Decaying pages",
    ]
    lines.extend(_results_table(results))

    if recommendations:
        lines.append("")
        lines.append("## Refresh recommendations")
        for rec in recommendations:
            lines.append(f"### {rec.title or rec.page_url} ({rec.severity})")
            if rec.likely_decay_cause:
                lines.append(f"- **Likely cause**: {rec.likely_decay_cause}")
            if rec.recommendation:
                lines.append(f"- **Recommendation**: {rec.recommendation}")
            if rec.refresh_strategy:
                lines.append(f"- **Refresh strategy**: {rec.refresh_strategy}")
            if rec.estimated_effort:
                lines.append(f"- **Estimated effort**: {rec.estimated_effort}")
            if rec.potential_impact:
                lines.append(f"- **Potential impact**: {rec.potential_impact}")
            lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def _split_markdown_row(line: str) -> list[str]:
    return [cell.strip() for cell in line.strip().strip("|").split("|")]


def _is_markdown_separator(line: str) -> bool:
    compact = line.replace("|", "").replace(":", "").replace("-", "").strip()
    return compact == ""


def _add_markdown_runs(paragraph, text: str) -> None:
    def _append_colored_run(value: str, *, bold: bool) -> None:
        last = 0
        for signed in SIGNED_VALUE_RE.finditer(value):
            start, end = signed.span()
            if start > last:
                base = paragraph.add_run(value[last:start])
                base.bold = bold
            token = signed.group(1)
            run = paragraph.add_run(token)
            run.bold = bold
            # A positive delta is good for clicks but bad for position; color by sign only.
            run.font.color.rgb = DARK_GREEN if token.startswith("+") else DARK_RED
            last = end
        if last < len(value):
            tail = paragraph.add_run(value[last:])
            tail.bold = bold

    last = 0
    for match in BOLD_MARKDOWN_RE.finditer(text):
        start, end = match.span()
        if start > last:
            _append_colored_run(text[last:start], bold=False)
        _append_colored_run(match.group(1), bold=True)
        last = end

    if last < len(text):
        _append_colored_run(text[last:], bold=False)


def _set_cell_markdown(cell, text: str) -> None:
    cell.text = ""
    _add_markdown_runs(cell.paragraphs[0], text)


def _resolve_style_name(doc: Document, style_candidates: list[str], fallback: str = "Normal") -> str:
    for name in style_candidates:
        try:
            _ = doc.styles[name]
            return name
        except KeyError:
            continue
    return fallback


def write_docx(path: Path, title: str, content: str) -> None:
    doc = Document()
    doc.core_properties.title = title
    try:
        normal = doc.styles["Normal"]
        normal.font.name = "Calibri"
        normal.font.size = Pt(10.5)
    except KeyError:
        pass

    lines = content.splitlines()
    index = 0
    while index < len(lines):
        raw_line = lines[index].rstrip()

        if not raw_line:
            index += 1
            continue

        if (
            raw_line.startswith("|")
            and index + 1 < len(lines)
            and lines[index + 1].startswith("|")
            and _is_markdown_separator(lines[index + 1])
        ):
            headers = _split_markdown_row(raw_line)
            table = doc.add_table(rows=1, cols=len(headers))
            table.style = "Table Grid"
            for col, header in enumerate(headers):
                _set_cell_markdown(table.rows[0].cells[col], header)

            index += 2
            while index < len(lines) and lines[index].startswith("|"):
                row_cells = _split_markdown_row(lines[index])
                row = table.add_row().cells
                for col in range(len(headers)):
                    _set_cell_markdown(row[col], row_cells[col] if col < len(row_cells) else "")
                index += 1
            continue

        heading_match = re.match(r"^(#{1,6})\s+(.+)$", raw_line)
        if heading_match:
            level = min(len(heading_match.group(1)), 4)
            paragraph = doc.add_heading("", level=level)
            _add_markdown_runs(paragraph, heading_match.group(2))
        elif raw_line.startswith("- "):
            style_name = _resolve_style_name(doc, ["List Bullet"])
            paragraph = doc.add_paragraph("", style=style_name)
            _add_markdown_runs(paragraph, raw_line[2:])
        else:
            paragraph = doc.add_paragraph("")
            _add_markdown_runs(paragraph, raw_line)

        index += 1

    path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(path)
