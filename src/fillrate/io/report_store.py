from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from fillrate.errors import ReportNotFoundError
from fillrate.report.aggregator import build_report_from_payload
from fillrate.report.contracts import Report


class ReportStore:
    """Hold produced reports until a viewer consumes them.

    ``fetch`` removes the report it returns, so a report id can be read once.
    """

    def __init__(self) -> None:
        self._reports: dict[str, Report] = {}

    def __len__(self) -> int:
        return len(self._reports)

    def store(self, report: Report) -> str:
        self._reports[report.report_id] = report
        return report.report_id

    def fetch(self, report_id: str) -> Report:
        if not report_id:
            raise ReportNotFoundError("<missing>")
        report = self._reports.pop(report_id, None)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report


def load_report_payload(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, list):
        payload = {"results": payload}
    if not isinstance(payload, dict):
        raise ValueError("report payload must be a JSON object or a list of results")
    return payload


def load_report(path: Path) -> Report:
    return build_report_from_payload(load_report_payload(path))
