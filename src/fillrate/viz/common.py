from __future__ import annotations

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

CATEGORICAL_PALETTE = (
    "#0072B2",
    "#009E73",
    "#E69F00",
    "#CC79A7",
    "#56B4E9",
    "#D55E00",
    "#8B99A8",
    "#475569",
)
BAR_COLOR = "#4c9ffe"
TEXT_COLOR = "#1f1f1f"
AXIS_COLOR = "#d0d7e5"


def save_figure(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    plt.tight_layout()
    plt.savefig(path)
    plt.close()
    return path
