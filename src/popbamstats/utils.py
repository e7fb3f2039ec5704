from __future__ import annotations

import gzip
import json
import logging
from pathlib import Path
from typing import Any, Iterable, TextIO

logger = logging.getLogger(__name__)

U16_MAX = 0xFFFF


def bitcount(x: int) -> int:
    return int(x).bit_count()


def binom2(n: int) -> int:
    """Number of unordered pairs among n items."""
    return n * (n - 1) // 2


def mask_from_indices(indices: Iterable[int]) -> int:
    mask = 0
    for i in indices:
        mask |= 1 << i
    return mask


def format_stat(value: float | None, ndigits: int = 5) -> str:
    # None is the explicit "not computed" marker
    if value is None:
        return "NA"
    return f"{value:.{ndigits}f}"


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)
