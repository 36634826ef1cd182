from __future__ import annotations

import pytest

from fillrate.report.contracts import DistributionResult, ResultEntry
from fillrate.report.sorting import SortState, sort_keys_for, sort_results, sort_value


def _entry(field: str, percentage: float | None, status: str = "Success") -> ResultEntry:
    return ResultEntry(
        entity="Account",
        entity_label="Account",
        field=field,
        field_label=field,
        non_null_count=None,
        total_count=None,
        non_null_percentage=percentage,
        status=status,
    )


@pytest.mark.parametrize(
    ("direction", "expected"),
    [("asc", ["low", "high", "missing"]), ("desc", ["high", "low", "missing"])],
)
def test_missing_values_sort_last_in_both_directions(direction: str, expected: list[str]) -> None:
    results = [_entry("low", 0.2), _entry("missing", None), _entry("high", 0.5)]

    ordered = sort_results(results, "non_null_percentage", direction)

    assert [result.field for result in ordered] == expected


def test_text_keys_compare_case_insensitively() -> None:
    results = [_entry("beta", 0.1), _entry("Alpha", 0.1), _entry("gamma", 0.1)]

    ordered = sort_results(results, "field")

    assert [result.field for result in ordered] == ["Alpha", "beta", "gamma"]


def test_sort_is_stable_for_equal_keys() -> None:
    results = [_entry("first", 0.5), _entry("second", 0.5), _entry("third", 0.1)]

    ascending = sort_results(results, "non_null_percentage", "asc")
    descending = sort_results(results, "non_null_percentage", "desc")

    assert [result.field for result in ascending] == ["third", "first", "second"]
    assert [result.field for result in descending] == ["first", "second", "third"]


def test_no_key_keeps_input_order() -> None:
    results = [_entry("b", 0.1), _entry("a", 0.9)]

    assert sort_results(results, None) == results


def test_nan_counts_as_missing() -> None:
    assert sort_value(_entry("x", float("nan")), "non_null_percentage") is None
    assert sort_value(_entry("x", 0.3), "unknown") is None


def test_distribution_results_sort_on_record_count() -> None:
    results = [
        DistributionResult(entity_label="A", field_label="f1", record_count=5.0, status="Success"),
        DistributionResult(
            entity_label="A", field_label="f2", record_count=None, status="Error: x"
        ),
        DistributionResult(entity_label="A", field_label="f3", record_count=50.0, status="Success"),
    ]

    ordered = sort_results(results, "record_count", "desc")

    assert [result.field_label for result in ordered] == ["f3", "f1", "f2"]
    assert "record_count" in sort_keys_for("distribution")
    assert "record_count" not in sort_keys_for("summary")


def test_sort_state_toggle() -> None:
    state = SortState()

    state.toggle("status")
    assert (state.key, state.direction) == ("status", "asc")
    state.toggle("status")
    assert (state.key, state.direction) == ("status", "desc")
    state.toggle("field")
    assert (state.key, state.direction) == ("field", "asc")
