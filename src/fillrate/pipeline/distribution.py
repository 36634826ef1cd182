from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from fillrate.pipeline.orchestrator import ProgressCallback, skip_reason
from fillrate.report.aggregator import distribution_rows, timeline_points
from fillrate.report.contracts import (
    ERROR_PREFIX,
    SKIPPED_PREFIX,
    STATUS_SUCCESS,
    BatchDetail,
    DistributionResult,
)

LOGGER = logging.getLogger(__name__)

VALUE_ALIAS = "val"
COUNT_ALIAS = "cnt"
YEAR_ALIAS = "yr"
MONTH_ALIAS = "mon"


class QueryCaller(Protocol):
    async def query(self, soql: str) -> list[dict[str, Any]]: ...


def value_counts_query(entity: str, field: str) -> str:
    return (
        f"SELECT {field} {VALUE_ALIAS}, COUNT(Id) {COUNT_ALIAS} FROM {entity} "
        f"GROUP BY {field} ORDER BY COUNT(Id) DESC"
    )


def monthly_timeline_query(entity: str, field: str, date_field: str = "CreatedDate") -> str:
    year = f"CALENDAR_YEAR({date_field})"
    month = f"CALENDAR_MONTH({date_field})"
    return (
        f"SELECT {year} {YEAR_ALIAS}, {month} {MONTH_ALIAS}, {field} {VALUE_ALIAS}, "
        f"COUNT(Id) {COUNT_ALIAS} FROM {entity} GROUP BY {year}, {month}, {field}"
    )


def _record_value(record: dict[str, Any], alias: str, field: str) -> Any:
    if alias in record:
        return record[alias]
    return record.get(field)


class DistributionCollector:
    """Collect grouped value counts, and optionally a monthly timeline, per field.

    Fields are queried one at a time. A failed query only marks its own
    field as an error; the rest of the run continues.
    """

    def __init__(
        self,
        caller: QueryCaller,
        *,
        include_timeline: bool = True,
        date_field: str = "CreatedDate",
    ) -> None:
        self._caller = caller
        self.include_timeline = include_timeline
        self.date_field = date_field
        self.queries_issued = 0

    async def _query(self, soql: str) -> list[dict[str, Any]]:
        self.queries_issued += 1
        return await self._caller.query(soql)

    async def collect_one(self, detail: BatchDetail) -> DistributionResult:
        records = await self._query(value_counts_query(detail.entity, detail.field))
        raw_rows = [
            {
                "value": _record_value(record, VALUE_ALIAS, detail.field),
                "count": record.get(COUNT_ALIAS),
            }
            for record in records
        ]
        record_count = float(sum(row["count"] or 0 for row in raw_rows))

        timeline = None
        if self.include_timeline:
            timeline_records = await self._query(
                monthly_timeline_query(detail.entity, detail.field, self.date_field)
            )
            timeline = tuple(
                timeline_points(
                    [
                        {
                            "year": record[YEAR_ALIAS],
                            "month": record[MONTH_ALIAS],
                            "value": _record_value(record, VALUE_ALIAS, detail.field),
                            "count": record.get(COUNT_ALIAS),
                        }
                        for record in timeline_records
                        if record.get(YEAR_ALIAS) is not None
                        and record.get(MONTH_ALIAS) is not None
                    ]
                )
            )

        return DistributionResult(
            entity_label=detail.entity_label,
            field_label=detail.field_label,
            record_count=record_count,
            status=STATUS_SUCCESS,
            rows=tuple(distribution_rows(raw_rows, record_count)),
            timeline=timeline,
            entity=detail.entity,
            field=detail.field,
        )

    def _without_rows(self, detail: BatchDetail, status: str) -> DistributionResult:
        return DistributionResult(
            entity_label=detail.entity_label,
            field_label=detail.field_label,
            record_count=None,
            status=status,
            entity=detail.entity,
            field=detail.field,
        )

    async def run(
        self,
        details: Sequence[BatchDetail],
        on_progress: ProgressCallback | None = None,
    ) -> list[DistributionResult]:
        results: list[DistributionResult] = []
        dispatchable: list[BatchDetail] = []
        for detail in details:
            reason = skip_reason(detail)
            if reason is None:
                dispatchable.append(detail)
            else:
                results.append(self._without_rows(detail, f"{SKIPPED_PREFIX}{reason}"))

        total = len(dispatchable)
        for completed, detail in enumerate(dispatchable, start=1):
            try:
                results.append(await self.collect_one(detail))
            except Exception as exc:
                LOGGER.exception("Distribution query failed for %s", detail.key)
                message = str(exc) or exc.__class__.__name__
                results.append(self._without_rows(detail, f"{ERROR_PREFIX}{message}"))

            LOGGER.info("Distributions: %d/%d completed.", completed, total)
            if on_progress is not None:
                on_progress(completed, total)
        return results
