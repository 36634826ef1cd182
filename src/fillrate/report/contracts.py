from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Union

from fillrate.metadata import FieldMetadata

ReportMode = Literal["summary", "distribution"]

ALLOWED_REPORT_MODES = frozenset({"summary", "distribution"})
STATUS_SUCCESS = "Success"
SKIPPED_PREFIX = "Skipped: "
ERROR_PREFIX = "Error: "

SKIP_REASON_NO_METADATA = "field metadata unavailable."
SKIP_REASON_NOT_FILTERABLE = "textarea/address fields cannot be used as filter criteria."


def _ensure_count(name: str, value: float | None) -> None:
    if value is None:
        return
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{name} must be finite and >= 0, got {value!r}.")


def fill_ratio(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return part / whole


@dataclass(slots=True, frozen=True)
class BatchDetail:
    entity: str
    field: str
    key: str
    entity_label: str
    field_label: str
    metadata: FieldMetadata | None = None


@dataclass(slots=True, frozen=True)
class QueryPlan:
    non_null_count: float
    total_count: float
    non_null_percentage: float

    @classmethod
    def from_counts(cls, non_null_count: float, total_count: float) -> QueryPlan:
        return cls(
            non_null_count=non_null_count,
            total_count=total_count,
            non_null_percentage=fill_ratio(non_null_count, total_count),
        )


@dataclass(slots=True, frozen=True)
class QueryPlanOutcome:
    plan: QueryPlan | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if (self.plan is None) == (self.error is None):
            raise ValueError("QueryPlanOutcome needs exactly one of plan or error.")


@dataclass(slots=True, frozen=True)
class ResultEntry:
    entity: str
    entity_label: str
    field: str
    field_label: str
    non_null_count: float | None
    total_count: float | None
    non_null_percentage: float | None
    status: str

    def __post_init__(self) -> None:
        if not self.status.strip():
            raise ValueError("status must be non-empty.")
        _ensure_count("non_null_count", self.non_null_count)
        _ensure_count("total_count", self.total_count)

    @classmethod
    def success(cls, detail: BatchDetail, plan: QueryPlan) -> ResultEntry:
        return cls(
            entity=detail.entity,
            entity_label=detail.entity_label,
            field=detail.field,
            field_label=detail.field_label,
            non_null_count=plan.non_null_count,
            total_count=plan.total_count,
            non_null_percentage=plan.non_null_percentage,
            status=STATUS_SUCCESS,
        )

    @classmethod
    def without_counts(cls, detail: BatchDetail, status: str) -> ResultEntry:
        return cls(
            entity=detail.entity,
            entity_label=detail.entity_label,
            field=detail.field,
            field_label=detail.field_label,
            non_null_count=None,
            total_count=None,
            non_null_percentage=None,
            status=status,
        )

    @classmethod
    def skipped(cls, detail: BatchDetail, reason: str) -> ResultEntry:
        return cls.without_counts(detail, f"{SKIPPED_PREFIX}{reason}")

    @classmethod
    def failed(cls, detail: BatchDetail, message: str) -> ResultEntry:
        return cls.without_counts(detail, f"{ERROR_PREFIX}{message}")

    @property
    def is_success(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_label": self.entity_label,
            "field": self.field,
            "field_label": self.field_label,
            "non_null_count": self.non_null_count,
            "total_count": self.total_count,
            "non_null_percentage": self.non_null_percentage,
            "status": self.status,
        }


@dataclass(slots=True, frozen=True)
class DistributionRow:
    value: Any
    count: float
    percentage: float

    def __post_init__(self) -> None:
        _ensure_count("count", self.count)

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "count": self.count, "percentage": self.percentage}


@dataclass(slots=True, frozen=True)
class TimelinePoint:
    year: int
    month: int
    value: Any
    count: float
    percentage: float

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in [1, 12], got {self.month!r}.")
        _ensure_count("count", self.count)

    @property
    def period(self) -> tuple[int, int]:
        return (self.year, self.month)

    def to_dict(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "value": self.value,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(slots=True, frozen=True)
class DistributionResult:
    entity_label: str
    field_label: str
    record_count: float | None
    status: str
    rows: tuple[DistributionRow, ...] = ()
    timeline: tuple[TimelinePoint, ...] | None = None
    entity: str | None = None
    field: str | None = None

    def __post_init__(self) -> None:
        if not self.status.strip():
            raise ValueError("status must be non-empty.")
        _ensure_count("record_count", self.record_count)
        object.__setattr__(self, "rows", tuple(self.rows))
        if self.timeline is not None:
            object.__setattr__(self, "timeline", tuple(self.timeline))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "entity": self.entity,
            "entity_label": self.entity_label,
            "field": self.field,
            "field_label": self.field_label,
            "record_count": self.record_count,
            "status": self.status,
            "rows": [row.to_dict() for row in self.rows],
        }
        if self.timeline is not None:
            payload["timeline"] = [point.to_dict() for point in self.timeline]
        return payload


ReportResult = Union[ResultEntry, DistributionResult]


@dataclass(slots=True, frozen=True)
class Report:
    report_id: str
    generated_at: datetime
    mode: ReportMode
    results: tuple[ReportResult, ...]

    def __post_init__(self) -> None:
        if not self.report_id.strip():
            raise ValueError("report_id must be non-empty.")
        if self.mode not in ALLOWED_REPORT_MODES:
            raise ValueError(f"Unsupported report mode: {self.mode!r}.")
        if not self.results:
            raise ValueError("results must be non-empty.")
        expected = DistributionResult if self.mode == "distribution" else ResultEntry
        if not all(isinstance(result, expected) for result in self.results):
            raise ValueError(f"{self.mode} reports only hold {expected.__name__} entries.")
        object.__setattr__(self, "results", tuple(self.results))

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "generated_at": self.generated_at.isoformat(),
            "mode": self.mode,
            "results": [result.to_dict() for result in self.results],
        }
