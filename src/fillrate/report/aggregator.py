from __future__ import annotations

import secrets
import string
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from fillrate.errors import EmptyReportError
from fillrate.report.contracts import (
    DistributionResult,
    DistributionRow,
    Report,
    ReportMode,
    ReportResult,
    ResultEntry,
    TimelinePoint,
    fill_ratio,
)

REPORT_ID_ALPHABET = string.digits + string.ascii_lowercase
NOTHING_TO_REPORT = "No results to display."

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "entity": ("entity", "sobject"),
    "entity_label": ("entity_label", "entityLabel", "sobjectLabel"),
    "field": ("field",),
    "field_label": ("field_label", "fieldLabel"),
    "non_null_count": ("non_null_count", "nonNullCount"),
    "total_count": ("total_count", "totalCount", "sobjectCount"),
    "non_null_percentage": ("non_null_percentage", "nonNullPercentage"),
    "record_count": ("record_count", "recordCount"),
    "status": ("status",),
    "rows": ("rows",),
    "timeline": ("timeline",),
    "report_id": ("report_id", "reportId"),
    "generated_at": ("generated_at", "generatedAt"),
}


def generate_report_id(now_ms: int | None = None) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(REPORT_ID_ALPHABET) for _ in range(6))
    return f"report-{stamp}-{suffix}"


def _pick(raw: Mapping[str, Any], name: str, default: Any = None) -> Any:
    for alias in _FIELD_ALIASES[name]:
        if alias in raw:
            return raw[alias]
    return default


def _optional_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _has_rows(raw: Any) -> bool:
    if isinstance(raw, DistributionResult):
        return True
    return isinstance(raw, Mapping) and isinstance(_pick(raw, "rows"), list)


def infer_mode(results: Sequence[Any]) -> ReportMode:
    """A report is distribution mode when any entry carries a ``rows`` sequence.

    Mixing row-bearing and plain entries is rejected rather than guessed at.
    """
    with_rows = sum(1 for raw in results if _has_rows(raw))
    if with_rows == 0:
        return "summary"
    if with_rows != len(results):
        raise ValueError(
            f"Report mixes distribution and summary entries ({with_rows}/{len(results)} with rows)."
        )
    return "distribution"


def parse_generated_at(value: Any) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"generated_at must be epoch milliseconds or an ISO string, got {value!r}")


def parse_result_entry(raw: Mapping[str, Any]) -> ResultEntry:
    field = str(_pick(raw, "field", "") or "")
    return ResultEntry(
        entity=str(_pick(raw, "entity", "") or ""),
        entity_label=str(_pick(raw, "entity_label") or _pick(raw, "entity", "") or ""),
        field=field,
        field_label=str(_pick(raw, "field_label") or field),
        non_null_count=_optional_number(_pick(raw, "non_null_count")),
        total_count=_optional_number(_pick(raw, "total_count")),
        non_null_percentage=_optional_number(_pick(raw, "non_null_percentage")),
        status=str(_pick(raw, "status") or "Success"),
    )


def distribution_rows(
    raw_rows: Sequence[Mapping[str, Any]], record_count: float | None
) -> list[DistributionRow]:
    rows = []
    for raw in raw_rows:
        if not isinstance(raw, Mapping):
            raise ValueError(f"distribution rows must be objects, got {raw!r}")
        count = _optional_number(raw.get("count")) or 0.0
        percentage = _optional_number(raw.get("percentage"))
        if percentage is None:
            percentage = fill_ratio(count, record_count or 0.0)
        rows.append(DistributionRow(value=raw.get("value"), count=count, percentage=percentage))
    return rows


def _period(raw: Any) -> tuple[int, int]:
    if not isinstance(raw, Mapping):
        raise ValueError(f"timeline points must be objects, got {raw!r}")
    period = []
    for name in ("year", "month"):
        if raw.get(name) is None:
            raise ValueError(f"timeline point is missing '{name}': {dict(raw)!r}")
        try:
            period.append(int(raw[name]))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"timeline point has a non-integer '{name}': {raw[name]!r}") from exc
    return period[0], period[1]


def timeline_points(raw_points: Sequence[Mapping[str, Any]]) -> list[TimelinePoint]:
    period_totals: dict[tuple[int, int], float] = {}
    for raw in raw_points:
        period = _period(raw)
        period_totals[period] = period_totals.get(period, 0.0) + (
            _optional_number(raw.get("count")) or 0.0
        )

    points = []
    for raw in raw_points:
        period = _period(raw)
        count = _optional_number(raw.get("count")) or 0.0
        percentage = _optional_number(raw.get("percentage"))
        if percentage is None:
            percentage = fill_ratio(count, period_totals[period])
        points.append(
            TimelinePoint(
                year=period[0],
                month=period[1],
                value=raw.get("value"),
                count=count,
                percentage=percentage,
            )
        )
    return points


def parse_distribution_result(raw: Mapping[str, Any]) -> DistributionResult:
    record_count = _optional_number(_pick(raw, "record_count"))
    raw_timeline = _pick(raw, "timeline")
    if raw_timeline is not None and not isinstance(raw_timeline, list):
        raise ValueError(f"timeline must be a list, got {raw_timeline!r}")
    field = _pick(raw, "field")
    entity = _pick(raw, "entity")
    return DistributionResult(
        entity_label=str(_pick(raw, "entity_label") or entity or ""),
        field_label=str(_pick(raw, "field_label") or field or ""),
        record_count=record_count,
        status=str(_pick(raw, "status") or "Success"),
        rows=tuple(distribution_rows(_pick(raw, "rows") or [], record_count)),
        timeline=tuple(timeline_points(raw_timeline)) if isinstance(raw_timeline, list) else None,
        entity=str(entity) if entity else None,
        field=str(field) if field else None,
    )


def build_report(
    results: Sequence[ReportResult],
    *,
    report_id: str | None = None,
    generated_at: datetime | None = None,
) -> Report:
    if not results:
        raise EmptyReportError(NOTHING_TO_REPORT)
    return Report(
        report_id=report_id or generate_report_id(),
        generated_at=generated_at or datetime.now(timezone.utc),
        mode=infer_mode(results),
        results=tuple(results),
    )


def build_report_from_payload(payload: Mapping[str, Any]) -> Report:
    raw_results = payload.get("results")
    if not isinstance(raw_results, list) or not raw_results:
        raise EmptyReportError(NOTHING_TO_REPORT)
    if not all(isinstance(raw, Mapping) for raw in raw_results):
        raise ValueError("report results must be objects")

    mode = infer_mode(raw_results)
    parser = parse_distribution_result if mode == "distribution" else parse_result_entry
    results = []
    for index, raw in enumerate(raw_results):
        try:
            results.append(parser(raw))
        except ValueError as exc:
            raise ValueError(f"results[{index}]: {exc}") from exc
    return build_report(
        results,
        report_id=_pick(payload, "report_id"),
        generated_at=parse_generated_at(_pick(payload, "generated_at")),
    )
