from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

import matplotlib.pyplot as plt

from .models import WindowResult

logger = logging.getLogger(__name__)


def _midpoints(results: Sequence[WindowResult]) -> List[float]:
    return [0.5 * (r.beg + r.end) for r in results]


def plot_statistic(
    *,
    results: Sequence[WindowResult],
    label: str,
    populations: Sequence[str],
    out_png: str | Path,
    title: str | None = None,
    between: bool = False,
) -> None:
    """Line plot of one statistic along windows, one line per population.

    With ``between`` the lines are population pairs read from ``pair_stats``.
    NA windows are drawn as gaps.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    xs = _midpoints(results)

    plt.figure(figsize=(8, 3.5))
    for pop in populations:
        ys = [(r.pair_stats if between else r.stats).get(pop, {}).get(label) for r in results]
        plt.plot(xs, [float("nan") if y is None else y for y in ys], marker="o", ms=3, label=pop)
    plt.xlabel("Window midpoint (bp)")
    plt.ylabel(label)
    plt.title(title or f"{label} along windows")
    if populations:
        plt.legend(fontsize="small")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_site_counts(
    *,
    results: Sequence[WindowResult],
    out_png: str | Path,
    title: str = "Aligned and segregating sites",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    xs = list(range(len(results)))
    aligned = [r.num_sites for r in results]
    seg = [r.segsites for r in results]

    fig, ax1 = plt.subplots(figsize=(8, 3.5))
    ax1.bar(xs, aligned, color="#cccccc", label="aligned")
    ax1.set_xlabel("Window")
    ax1.set_ylabel("Aligned sites")
    ax2 = ax1.twinx()
    ax2.plot(xs, seg, color="C3", marker="o", ms=3, label="segregating")
    ax2.set_ylabel("Segregating sites")
    ax1.set_title(title)
    fig.tight_layout()
    fig.savefig(out_png, dpi=160)
    plt.close(fig)
