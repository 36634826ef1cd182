from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np

from fillrate.report.contracts import DistributionResult, ResultEntry
from fillrate.viz.common import (
    AXIS_COLOR,
    BAR_COLOR,
    CATEGORICAL_PALETTE,
    TEXT_COLOR,
    save_figure,
)
from fillrate.viz.scales import (
    DEFAULT_PAGE_SIZE,
    grouped_log_layout,
    linear_bar_heights,
    paginate,
    period_label,
    summary_bar_points,
)

LABEL_CONTRAST_HEIGHT_FRACTION = 0.15


def plot_fill_rate_pages(
    results: Sequence[ResultEntry],
    figures_dir: Path,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    plot_height: float = 180.0,
    figure_format: str = "png",
) -> list[Path]:
    points = summary_bar_points(results)
    if not points:
        return []

    pages = paginate(points, page_size=page_size)
    written: list[Path] = []
    for page in pages:
        values = [point.value for point in page.items]
        heights = linear_bar_heights(values, plot_height)
        x = np.arange(len(page.items), dtype=float)

        fig, ax = plt.subplots(figsize=(max(6.0, 0.32 * len(page.items) + 2.0), 4.5))
        ax.bar(x, heights, width=0.5, color=BAR_COLOR)
        for position, value, height in zip(x, values, heights):
            dark_label = height < plot_height * LABEL_CONTRAST_HEIGHT_FRACTION
            ax.text(
                position,
                height / 2.0 if not dark_label else height + plot_height * 0.02,
                f"{value * 100:.1f}%",
                rotation=90,
                ha="center",
                va="center" if not dark_label else "bottom",
                fontsize=8,
                color=TEXT_COLOR if dark_label else "#ffffff",
            )

        max_value = max(values)
        ax.set_ylim(0.0, plot_height * 1.08)
        ax.set_yticks([0.0, plot_height if max_value > 0 else 0.0])
        ax.set_yticklabels(["0%", f"{max_value * 100:.1f}%"])
        ax.set_xticks(x)
        ax.set_xticklabels([point.label for point in page.items], rotation=45, ha="right")
        for spine in ("top", "right"):
            ax.spines[spine].set_visible(False)
        for spine in ("left", "bottom"):
            ax.spines[spine].set_color(AXIS_COLOR)
        title = "Non-null percentage by field"
        if len(pages) > 1:
            title = f"{title} ({page.caption})"
        ax.set_title(title)
        written.append(save_figure(figures_dir / f"fill_rate_{page.index + 1:02d}.{figure_format}"))
    return written


def _log_ticks(max_count: float, plot_height: float) -> tuple[list[float], list[str]]:
    positions = [0.0]
    labels = ["0"]
    if max_count <= 0:
        return positions, labels
    magnitude = 1
    while magnitude <= max_count:
        positions.append(float(np.log1p(magnitude) / np.log1p(max_count) * plot_height))
        labels.append(f"{magnitude:,}")
        magnitude *= 10
    return positions, labels


def plot_timeline_chart(
    result: DistributionResult,
    output_path: Path,
    *,
    plot_height: float = 180.0,
    bar_width: float = 12.0,
    group_gap: float = 18.0,
) -> Path | None:
    if not result.timeline:
        return None
    layout = grouped_log_layout(
        result.timeline,
        plot_height=plot_height,
        bar_width=bar_width,
        group_gap=group_gap,
    )
    if not layout.bars:
        return None

    fig_width = min(24.0, max(8.0, layout.total_width / 40.0 + 3.0))
    fig, ax = plt.subplots(figsize=(fig_width, 4.8))
    for index, category in enumerate(layout.categories):
        bars = [bar for bar in layout.bars if bar.category == category]
        ax.bar(
            [bar.x for bar in bars],
            [bar.height for bar in bars],
            width=bar_width,
            align="edge",
            color=CATEGORICAL_PALETTE[index % len(CATEGORICAL_PALETTE)],
            label=category,
        )

    tick_positions, tick_labels = _log_ticks(layout.max_count, plot_height)
    ax.set_yticks(tick_positions)
    ax.set_yticklabels(tick_labels)
    ax.set_ylim(0.0, plot_height * 1.05)
    ax.set_xlim(-group_gap / 2.0, layout.total_width + group_gap / 2.0)
    ax.set_xticks([layout.group_center(index) for index in range(len(layout.periods))])
    ax.set_xticklabels([period_label(period) for period in layout.periods], rotation=45, ha="right")
    ax.set_ylabel("Records (log scale)")
    ax.set_title(f"{result.entity_label} / {result.field_label}: monthly values")
    ax.legend(loc="upper left", bbox_to_anchor=(1.0, 1.0), fontsize=8, frameon=False)
    return save_figure(output_path)
