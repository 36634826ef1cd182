from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Literal, TypeVar

from fillrate.report.contracts import DistributionResult, ReportMode, ResultEntry

SortDirection = Literal["asc", "desc"]
R = TypeVar("R", ResultEntry, DistributionResult)

SUMMARY_SORT_KEYS: dict[str, str] = {
    "entity": "entity_label",
    "field": "field_label",
    "total_count": "total_count",
    "non_null_count": "non_null_count",
    "non_null_percentage": "non_null_percentage",
    "status": "status",
}
DISTRIBUTION_SORT_KEYS: dict[str, str] = {
    "entity": "entity_label",
    "field": "field_label",
    "record_count": "record_count",
    "status": "status",
}


def sort_keys_for(mode: ReportMode) -> dict[str, str]:
    return DISTRIBUTION_SORT_KEYS if mode == "distribution" else SUMMARY_SORT_KEYS


def sort_value(result: ResultEntry | DistributionResult, key: str) -> Any:
    attribute = (
        DISTRIBUTION_SORT_KEYS if isinstance(result, DistributionResult) else SUMMARY_SORT_KEYS
    ).get(key)
    if attribute is None:
        return None
    value = getattr(result, attribute, None)
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare_values(left: Any, right: Any) -> int:
    if _is_number(left) and _is_number(right):
        return (left > right) - (left < right)
    left_text = str(left).casefold()
    right_text = str(right).casefold()
    return (left_text > right_text) - (left_text < right_text)


def sort_results(
    results: Sequence[R],
    key: str | None,
    direction: SortDirection = "asc",
) -> list[R]:
    """Return ``results`` ordered by ``key``; missing values always trail.

    The sort is stable, so equal keys keep their previous relative order.
    """
    if not key:
        return list(results)
    present = [result for result in results if sort_value(result, key) is not None]
    missing = [result for result in results if sort_value(result, key) is None]

    def _compare(left: R, right: R) -> int:
        return compare_values(sort_value(left, key), sort_value(right, key))

    ordered = sorted(present, key=cmp_to_key(_compare), reverse=direction == "desc")
    return ordered + missing


@dataclass
class SortState:
    key: str | None = None
    direction: SortDirection = "asc"

    def toggle(self, key: str) -> SortState:
        if self.key == key:
            self.direction = "desc" if self.direction == "asc" else "asc"
        else:
            self.key = key
            self.direction = "asc"
        return self

    def apply(self, results: Sequence[R]) -> list[R]:
        return sort_results(results, self.key, self.direction)
