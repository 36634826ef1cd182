from __future__ import annotations

import logging
import math
import os
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pandas as pd
from jinja2 import Environment, FileSystemLoader, select_autoescape

from fillrate.config import ChartsConfig
from fillrate.io.write import write_report_payload, write_table
from fillrate.paths import build_output_paths
from fillrate.report.contracts import DistributionResult, Report, ReportMode, ResultEntry
from fillrate.report.sorting import SortDirection, sort_results
from fillrate.viz.bars import plot_fill_rate_pages, plot_timeline_chart

LOGGER = logging.getLogger(__name__)

MISSING_VALUE = "—"

SUMMARY_COLUMNS: tuple[tuple[str, str], ...] = (
    ("entity", "Entity"),
    ("field", "Field"),
    ("total_count", "Total records"),
    ("non_null_count", "Non-null records"),
    ("non_null_percentage", "Non-null %"),
    ("status", "Status"),
)
DISTRIBUTION_COLUMNS: tuple[tuple[str, str], ...] = (
    ("entity", "Entity"),
    ("field", "Field"),
    ("record_count", "Records"),
    ("status", "Status"),
)


def _template_env() -> Environment:
    templates_path = Path(__file__).resolve().parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(templates_path)),
        autoescape=select_autoescape(enabled_extensions=("html", "xml", "j2")),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(numeric) else numeric


def format_number(value: Any) -> str:
    numeric = _as_number(value)
    if numeric is None:
        return MISSING_VALUE
    if numeric.is_integer():
        return f"{int(numeric):,}"
    return f"{numeric:,.2f}"


def format_percentage(value: Any) -> str:
    numeric = _as_number(value)
    if numeric is None:
        return MISSING_VALUE
    return f"{numeric * 100:.2f}%"


def format_text(value: Any) -> str:
    if value is None or value == "":
        return MISSING_VALUE
    return str(value)


def columns_for(mode: ReportMode) -> tuple[tuple[str, str], ...]:
    return DISTRIBUTION_COLUMNS if mode == "distribution" else SUMMARY_COLUMNS


def summary_row(result: ResultEntry) -> list[str]:
    return [
        format_text(result.entity_label),
        format_text(result.field_label),
        format_number(result.total_count),
        format_number(result.non_null_count),
        format_percentage(result.non_null_percentage),
        format_text(result.status),
    ]


def distribution_row(result: DistributionResult) -> list[str]:
    return [
        format_text(result.entity_label),
        format_text(result.field_label),
        format_number(result.record_count),
        format_text(result.status),
    ]


def table_rows(results: Sequence[ResultEntry | DistributionResult]) -> list[list[str]]:
    return [
        distribution_row(result) if isinstance(result, DistributionResult) else summary_row(result)
        for result in results
    ]


def results_frame(report: Report) -> pd.DataFrame:
    if report.mode == "summary":
        return pd.DataFrame([result.to_dict() for result in report.results])

    records: list[dict[str, Any]] = []
    for result in report.results:
        base = {
            "entity": result.entity,
            "entity_label": result.entity_label,
            "field": result.field,
            "field_label": result.field_label,
            "record_count": result.record_count,
            "status": result.status,
        }
        if not result.rows:
            records.append({**base, "value": None, "count": None, "percentage": None})
        records.extend({**base, **row.to_dict()} for row in result.rows)
    return pd.DataFrame(records)


def _relative_link(path: Path, start: Path) -> str:
    return Path(os.path.relpath(path, start)).as_posix()


def _distribution_sections(
    results: Sequence[DistributionResult], timeline_figures: dict[int, str]
) -> list[dict[str, Any]]:
    sections = []
    for index, result in enumerate(results):
        sections.append(
            {
                "title": f"{result.entity_label} / {result.field_label}",
                "cells": distribution_row(result),
                "rows": [
                    [
                        format_text(row.value),
                        format_number(row.count),
                        format_percentage(row.percentage),
                    ]
                    for row in result.rows
                ],
                "timeline_figure": timeline_figures.get(index),
            }
        )
    return sections


def render_report(
    report: Report,
    out_dir: Path,
    *,
    sort_key: str | None = None,
    sort_direction: SortDirection = "asc",
    charts: ChartsConfig | None = None,
    tables_format: str = "csv",
    figures_format: str = "png",
    run_summary: str | None = None,
) -> Path:
    """Write the table, charts, payload and HTML page for ``report``.

    Summary reports get paged fill-rate bar charts; distribution reports get
    one log-scale timeline chart per field that carries a timeline instead.
    """
    charts = charts or ChartsConfig()
    paths = build_output_paths(out_dir)
    ordered = sort_results(report.results, sort_key, sort_direction)

    extension = "parquet" if tables_format == "parquet" else "csv"
    write_table(
        results_frame(report),
        paths.tables / f"{report.report_id}.{extension}",
        fmt=tables_format,
    )
    write_report_payload(report, paths.reports / f"{report.report_id}.json")

    bar_figures: list[Path] = []
    timeline_figures: dict[int, str] = {}
    figures_dir = paths.figures / report.report_id
    if report.mode == "summary":
        bar_figures = plot_fill_rate_pages(
            ordered,
            figures_dir,
            page_size=charts.page_size,
            plot_height=charts.plot_height,
            figure_format=figures_format,
        )
    else:
        for index, result in enumerate(ordered):
            figure = plot_timeline_chart(
                result,
                figures_dir / f"timeline_{index + 1:03d}.{figures_format}",
                plot_height=charts.plot_height,
                bar_width=charts.bar_width,
                group_gap=charts.group_gap,
            )
            if figure is not None:
                timeline_figures[index] = _relative_link(figure, paths.reports)
    LOGGER.info(
        "Rendered %s report %s: %d results, %d figures",
        report.mode,
        report.report_id,
        len(ordered),
        len(bar_figures) + len(timeline_figures),
    )

    template = _template_env().get_template("report.html.j2")
    rendered = template.render(
        report_id=report.report_id,
        mode=report.mode,
        generated_at=report.generated_at.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z"),
        run_summary=run_summary,
        columns=columns_for(report.mode),
        sort_key=sort_key,
        sort_direction=sort_direction,
        rows=table_rows(ordered) if report.mode == "summary" else [],
        distribution_sections=(
            _distribution_sections(ordered, timeline_figures)
            if report.mode == "distribution"
            else []
        ),
        bar_figures=[_relative_link(path, paths.reports) for path in bar_figures],
    )
    report_path = paths.reports / f"{report.report_id}.html"
    report_path.write_text(rendered, encoding="utf-8")
    return report_path
