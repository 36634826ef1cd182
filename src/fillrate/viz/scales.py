from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import numpy as np

from fillrate.report.contracts import ResultEntry, TimelinePoint

DEFAULT_PAGE_SIZE = 50
BLANK_CATEGORY_LABEL = "(blank)"
T = TypeVar("T")


def clamp_percentage(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(numeric):
        return None
    return min(max(numeric, 0.0), 1.0)


@dataclass(frozen=True)
class BarPoint:
    label: str
    value: float


def summary_bar_points(results: Iterable[ResultEntry]) -> list[BarPoint]:
    points = []
    for result in results:
        value = clamp_percentage(result.non_null_percentage)
        if value is None:
            continue
        points.append(BarPoint(label=result.field_label or result.field or "Field", value=value))
    return points


@dataclass(frozen=True)
class ChartPage(Generic[T]):
    index: int
    start: int
    items: tuple[T, ...]

    @property
    def caption(self) -> str:
        return f"Fields {self.start + 1}-{self.start + len(self.items)}"


def paginate(items: Sequence[T], page_size: int = DEFAULT_PAGE_SIZE) -> list[ChartPage[T]]:
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size!r}.")
    return [
        ChartPage(index=index, start=start, items=tuple(items[start : start + page_size]))
        for index, start in enumerate(range(0, len(items), page_size))
    ]


def linear_bar_heights(values: Sequence[float], plot_height: float) -> np.ndarray:
    """Scale values against the largest one; an all-zero input stays at zero."""
    heights = np.asarray(values, dtype=float)
    if heights.size == 0:
        return heights
    max_value = max(float(heights.max()), 0.0)
    if max_value == 0.0:
        return np.zeros_like(heights)
    return heights / max_value * plot_height


def log_bar_heights(
    counts: Sequence[float], max_count: float, plot_height: float
) -> np.ndarray:
    """Scale counts by log(count + 1) / log(max_count + 1)."""
    scaled = np.clip(np.asarray(counts, dtype=float), 0.0, None)
    if scaled.size == 0 or max_count <= 0:
        return np.zeros_like(scaled)
    return np.log1p(scaled) / np.log1p(float(max_count)) * plot_height


def period_label(period: tuple[int, int]) -> str:
    year, month = period
    return f"{year:04d}-{month:02d}"


def category_label(value: Any) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        return BLANK_CATEGORY_LABEL
    return str(value)


@dataclass(frozen=True)
class GroupedBar:
    period: tuple[int, int]
    category: str
    x: float
    width: float
    height: float
    count: float


@dataclass(frozen=True)
class GroupedBarLayout:
    periods: tuple[tuple[int, int], ...]
    categories: tuple[str, ...]
    bars: tuple[GroupedBar, ...]
    group_width: float
    group_gap: float
    max_count: float

    @property
    def total_width(self) -> float:
        if not self.periods:
            return 0.0
        return len(self.periods) * self.group_width + (len(self.periods) - 1) * self.group_gap

    def group_center(self, period_index: int) -> float:
        return period_index * (self.group_width + self.group_gap) + self.group_width / 2.0


def grouped_log_layout(
    points: Sequence[TimelinePoint],
    *,
    plot_height: float,
    bar_width: float,
    group_gap: float,
) -> GroupedBarLayout:
    """Lay out one bar per (period, category) on a log scale.

    Periods run chronologically by (year, month). Categories keep a fixed
    slot inside each group, ordered by overall count, largest first.
    """
    counts: dict[tuple[tuple[int, int], str], float] = {}
    category_totals: dict[str, float] = {}
    for point in points:
        category = category_label(point.value)
        slot = (point.period, category)
        counts[slot] = counts.get(slot, 0.0) + float(point.count)
        category_totals[category] = category_totals.get(category, 0.0) + float(point.count)

    periods = tuple(sorted({period for period, _ in counts}))
    categories = tuple(sorted(category_totals, key=lambda name: (-category_totals[name], name)))
    max_count = max(counts.values(), default=0.0)
    group_width = len(categories) * bar_width

    slots = [
        (period_index, category_index, period, category)
        for period_index, period in enumerate(periods)
        for category_index, category in enumerate(categories)
        if (period, category) in counts
    ]
    heights = log_bar_heights(
        [counts[(period, category)] for _, _, period, category in slots],
        max_count,
        plot_height,
    )
    bars = tuple(
        GroupedBar(
            period=period,
            category=category,
            x=period_index * (group_width + group_gap) + category_index * bar_width,
            width=bar_width,
            height=float(height),
            count=counts[(period, category)],
        )
        for (period_index, category_index, period, category), height in zip(slots, heights)
    )
    return GroupedBarLayout(
        periods=periods,
        categories=categories,
        bars=bars,
        group_width=group_width,
        group_gap=group_gap,
        max_count=max_count,
    )
