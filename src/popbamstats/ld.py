"""Linkage-disequilibrium statistics over a window of site-type bit-vectors.

Each segregating site is a 64-bit integer with bit ``i`` set when sample ``i``
carries the derived allele. Restricting a site to a population is a bitwise AND
with the population mask.

Values are ``None`` (NA) when a population has fewer than two qualifying SNPs.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Set, Tuple

import numpy as np

from .models import Population
from .utils import binom2

logger = logging.getLogger(__name__)


class LDStatistic(enum.Enum):
    ZNS = "zns"
    OMEGA_MAX = "omega_max"
    WALL = "wall"

    @property
    def labels(self) -> Tuple[str, ...]:
        return _LABELS[self]


_LABELS = {
    LDStatistic.ZNS: ("Zns",),
    LDStatistic.OMEGA_MAX: ("omax",),
    LDStatistic.WALL: ("B", "Q"),
}


@dataclass(frozen=True)
class LDResult:
    num_snps: int
    values: Dict[str, Optional[float]]


def derived_matrix(site_types: Sequence[int], pop: Population) -> np.ndarray:
    """0/1 matrix of shape (sites, members): derived allele carriers within ``pop``."""
    types = np.asarray([int(t) for t in site_types], dtype=np.uint64).reshape(-1)
    shifts = np.asarray(pop.samples, dtype=np.uint64)
    return ((types[:, None] >> shifts[None, :]) & np.uint64(1)).astype(np.int64)


def r2_matrix(site_types: Sequence[int], pop: Population, min_freq: int = 1) -> np.ndarray:
    """Pairwise r^2 among sites whose in-population derived count is in [min_freq, n - min_freq].

    Rows/columns follow the genomic order of the qualifying sites. The diagonal
    is left at zero.
    """
    n = pop.nsmpl
    g = derived_matrix(site_types, pop)
    x = g.sum(axis=1)
    keep = (x >= min_freq) & (x <= n - min_freq) & (x > 0) & (x < n)
    g = g[keep]
    x = x[keep].astype(np.float64)

    x11 = (g @ g.T).astype(np.float64)
    num = np.square(np.outer(x, x) - n * x11)
    var = x * (n - x)
    r2 = num / np.outer(var, var)
    np.fill_diagonal(r2, 0.0)
    return r2


def compute_zns(site_types: Sequence[int], pop: Population, min_freq: int = 1) -> LDResult:
    """Kelly's ZnS: mean r^2 over all pairs of qualifying SNPs."""
    r2 = r2_matrix(site_types, pop, min_freq)
    m = r2.shape[0]
    if m < 2:
        return LDResult(num_snps=m, values={"Zns": None})
    upper = r2[np.triu_indices(m, k=1)]
    return LDResult(num_snps=m, values={"Zns": float(upper.sum() / binom2(m))})


def _prefix_sums(a: np.ndarray) -> np.ndarray:
    m = a.shape[0]
    p = np.zeros((m + 1, m + 1), dtype=np.float64)
    p[1:, 1:] = a.cumsum(axis=0).cumsum(axis=1)
    return p


def _block(p: np.ndarray, r0: int, r1: int, c0: int, c1: int) -> float:
    return float(p[r1, c1] - p[r0, c1] - p[r1, c0] + p[r0, c0])


def compute_omega_max(site_types: Sequence[int], pop: Population, min_freq: int = 1) -> LDResult:
    """Kim & Nielsen's omega, maximised over every split of the ordered SNP list.

    For a split after SNP ``i`` the left block holds SNPs ``0..i`` and the right
    block the rest. Splits with no between-block LD do not yield a candidate; if
    none does, omega-max is NA.
    """
    r2 = r2_matrix(site_types, pop, min_freq)
    m = r2.shape[0]
    if m < 2:
        return LDResult(num_snps=m, values={"omax": None})

    p = _prefix_sums(np.triu(r2, k=1))
    best: Optional[float] = None
    for i in range(1, m - 1):
        left = i + 1
        right = m - left
        sum_between = _block(p, 0, left, left, m)
        if sum_between <= 0.0:
            continue
        sum_left = _block(p, 0, left, 0, left)
        sum_right = _block(p, left, m, left, m)
        omega = (sum_left + sum_right) / (binom2(left) + binom2(right))
        omega *= left * right / sum_between
        if best is None or omega > best:
            best = omega

    return LDResult(num_snps=m, values={"omax": best})


def compute_wall(site_types: Sequence[int], pop: Population, min_freq: int = 1) -> LDResult:
    """Wall's B and Q congruence statistics.

    Adjacent polymorphic sites are congruent when their bipartitions of the
    population are identical (up to complement). ``min_freq`` is not applied.
    """
    last_type = 0
    partitions: Set[int] = set()
    num_snps = 0
    congruent = 0
    novel = 0

    for site in site_types:
        t = int(site)
        ptype = t & pop.mask
        complement = ~t & pop.mask
        if ptype == 0 or ptype == pop.mask:
            continue
        if num_snps == 0:
            partitions.add(ptype)
        elif ptype == last_type or complement == last_type:
            congruent += 1
            if ptype not in partitions and complement not in partitions:
                partitions.add(ptype)
                novel += 1
        num_snps += 1
        last_type = ptype

    if num_snps < 2:
        return LDResult(num_snps=num_snps, values={"B": None, "Q": None})
    return LDResult(
        num_snps=num_snps,
        values={
            "B": congruent / (num_snps - 1),
            "Q": (congruent + novel) / num_snps,
        },
    )


LDFunc = Callable[[Sequence[int], Population, int], LDResult]

_DISPATCH: Dict[LDStatistic, LDFunc] = {
    LDStatistic.ZNS: compute_zns,
    LDStatistic.OMEGA_MAX: compute_omega_max,
    LDStatistic.WALL: compute_wall,
}


def compute_ld(
    statistic: LDStatistic,
    site_types: Sequence[int],
    populations: Sequence[Population],
    *,
    min_freq: int = 1,
    min_snps: int = 2,
) -> Dict[str, LDResult]:
    """Run one LD statistic for every population.

    Values are masked to NA when the population has fewer than ``min_snps``
    qualifying SNPs.
    """
    func = _DISPATCH[statistic]
    out: Dict[str, LDResult] = {}
    for pop in populations:
        res = func(site_types, pop, min_freq)
        if res.num_snps < min_snps:
            res = LDResult(num_snps=res.num_snps, values={k: None for k in statistic.labels})
        out[pop.name] = res
        logger.debug("%s[%s]: S=%d %s", statistic.value, pop.name, res.num_snps, res.values)
    return out
