from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Any

from fillrate.io.report_store import ReportStore
from fillrate.report.contracts import Report
from fillrate.report.render import render_report, table_rows
from fillrate.report.sorting import SortState, sort_keys_for

LOGGER = logging.getLogger(__name__)


class ViewState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUMMARY = "summary"
    DISTRIBUTION = "distribution"
    RENDERED = "rendered"


class ReportView:
    """Consume one stored report and present it.

    The summary or distribution branch is chosen once, from the report mode.
    Each report id can be loaded at most once.
    """

    def __init__(self, store: ReportStore) -> None:
        self._store = store
        self._seen: set[str] = set()
        self.state = ViewState.IDLE
        self.report: Report | None = None
        self.sort = SortState()

    @property
    def shows_summary_chart(self) -> bool:
        return self.report is not None and self.report.mode == "summary"

    def load(self, report_id: str) -> Report:
        if self.state is ViewState.LOADING:
            raise RuntimeError("A report is already loading.")
        if report_id in self._seen:
            raise ValueError(f"Report {report_id} was already loaded.")

        self.state = ViewState.LOADING
        self._seen.add(report_id)
        try:
            report = self._store.fetch(report_id)
        except Exception:
            self.state = ViewState.IDLE
            raise

        self.report = report
        self.sort = SortState()
        self.state = ViewState.DISTRIBUTION if report.mode == "distribution" else ViewState.SUMMARY
        LOGGER.info("Loaded %s report %s", report.mode, report_id)
        return report

    def _require_report(self) -> Report:
        if self.report is None:
            raise RuntimeError("No report loaded.")
        return self.report

    def sort_by(self, key: str) -> SortState:
        report = self._require_report()
        if key not in sort_keys_for(report.mode):
            raise ValueError(f"Unsupported sort key for {report.mode} reports: {key!r}")
        return self.sort.toggle(key)

    def rows(self) -> list[list[str]]:
        return table_rows(self.sort.apply(self._require_report().results))

    def render(self, out_dir: Path, **kwargs: Any) -> Path:
        report = self._require_report()
        path = render_report(
            report,
            out_dir,
            sort_key=self.sort.key,
            sort_direction=self.sort.direction,
            **kwargs,
        )
        self.state = ViewState.RENDERED
        return path
