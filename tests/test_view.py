from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from fillrate.errors import ReportNotFoundError
from fillrate.io.report_store import ReportStore
from fillrate.report.contracts import DistributionResult, DistributionRow, Report, ResultEntry
from fillrate.report.view import ReportView, ViewState


def _summary(report_id: str = "report-1-summary") -> Report:
    return Report(
        report_id=report_id,
        generated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        mode="summary",
        results=tuple(
            ResultEntry(
                entity="Account",
                entity_label="Account",
                field=name,
                field_label=name,
                non_null_count=count,
                total_count=10.0,
                non_null_percentage=count / 10.0,
                status="Success",
            )
            for name, count in (("Name", 9.0), ("Phone", 2.0), ("Fax", 5.0))
        ),
    )


def _distribution(report_id: str = "report-1-distribution") -> Report:
    return Report(
        report_id=report_id,
        generated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        mode="distribution",
        results=(
            DistributionResult(
                entity_label="Account",
                field_label="Industry",
                record_count=2.0,
                status="Success",
                rows=(DistributionRow(value="Tech", count=2.0, percentage=1.0),),
            ),
        ),
    )


def test_summary_report_moves_through_states(tmp_path: Path) -> None:
    store = ReportStore()
    store.store(_summary())
    view = ReportView(store)
    assert view.state is ViewState.IDLE

    view.load("report-1-summary")

    assert view.state is ViewState.SUMMARY
    assert view.shows_summary_chart
    view.sort_by("non_null_percentage")
    view.sort_by("non_null_percentage")
    assert [row[1] for row in view.rows()] == ["Name", "Fax", "Phone"]

    path = view.render(tmp_path)

    assert view.state is ViewState.RENDERED
    assert path.exists()
    assert 'data-sort-direction="desc"' in path.read_text(encoding="utf-8")


def test_distribution_report_takes_distribution_branch() -> None:
    store = ReportStore()
    store.store(_distribution())
    view = ReportView(store)

    view.load("report-1-distribution")

    assert view.state is ViewState.DISTRIBUTION
    assert not view.shows_summary_chart
    with pytest.raises(ValueError):
        view.sort_by("non_null_percentage")
    assert view.sort_by("record_count").key == "record_count"


def test_report_id_can_only_be_loaded_once() -> None:
    store = ReportStore()
    store.store(_summary())
    view = ReportView(store)
    view.load("report-1-summary")
    store.store(_summary())

    with pytest.raises(ValueError):
        view.load("report-1-summary")


def test_failed_load_returns_to_idle() -> None:
    view = ReportView(ReportStore())

    with pytest.raises(ReportNotFoundError):
        view.load("report-missing")

    assert view.state is ViewState.IDLE
    assert view.report is None
    with pytest.raises(RuntimeError):
        view.rows()
