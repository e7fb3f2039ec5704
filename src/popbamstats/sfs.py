"""Site-frequency-spectrum neutrality tests: Tajima's D and Fay & Wu's H.

Coverage varies per site because of missing data, so per-site contributions
are tabulated for every possible local sample size ``m`` (2..n) and derived
count ``i`` (1..m-1) once per run.

* ``dw[m][i]`` is the theta_pi minus theta_W contribution of one site.
* ``hw[m][i]`` is the theta_pi minus theta_L contribution of one site
  (normalised H of Zeng et al. 2006).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np

from .models import Population
from .utils import bitcount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SFSConstants:
    n: int
    a1: np.ndarray
    a2: np.ndarray
    e1: np.ndarray
    e2: np.ndarray
    dw: np.ndarray
    hw: np.ndarray


@dataclass(frozen=True)
class SFSResult:
    num_snps: int
    aligned_sites: int
    mean_depth: Optional[float]
    values: Dict[str, Optional[float]]


def build_sfs_constants(n: int) -> SFSConstants:
    """Precompute harmonic sums, Tajima's variance terms and per-site weights for up to n samples."""
    if n < 1:
        raise ValueError("SFS constants need at least one sample")

    a1 = np.ones(n + 1, dtype=np.float64)
    a2 = np.ones(n + 2, dtype=np.float64)
    for i in range(2, n + 1):
        a1[i] = sum(1.0 / j for j in range(1, i))
    for i in range(2, n + 2):
        a2[i] = sum(1.0 / (j * j) for j in range(1, i))

    e1 = np.ones(n + 1, dtype=np.float64)
    e2 = np.ones(n + 1, dtype=np.float64)
    for i in range(2, n + 1):
        b1 = (i + 1.0) / (3.0 * (i - 1))
        b2 = (2.0 * (i * i + i + 3.0)) / (9.0 * i * (i - 1))
        e1[i] = (b1 - 1.0 / a1[i]) / a1[i]
        e2[i] = (b2 - (i + 2.0) / (a1[i] * i) + a2[i] / (a1[i] ** 2)) / (a1[i] ** 2 + a2[i])

    dw = np.zeros((n + 1, n + 1), dtype=np.float64)
    hw = np.zeros((n + 1, n + 1), dtype=np.float64)
    for m in range(2, n + 1):
        for i in range(1, m):
            pi = 2.0 * i * (m - i) / (m * (m - 1.0))
            dw[m, i] = pi - 1.0 / a1[m]
            hw[m, i] = pi - i / (m - 1.0)

    return SFSConstants(n=n, a1=a1, a2=a2, e1=e1, e2=e2, dw=dw, hw=hw)


def tajima_variance(c: SFSConstants, n: int, s: int) -> float:
    return float(c.e1[n] * s + c.e2[n] * s * (s - 1))


def fay_wu_variance(c: SFSConstants, n: int, s: int) -> float:
    a1 = c.a1[n]
    a2 = c.a2[n]
    theta = s / a1
    theta_sq = s * (s - 1) / (a1 * a1 + a2)
    term = (
        18.0 * n * n * (3.0 * n + 2.0) * c.a2[n + 1] - (88.0 * n**3 + 9.0 * n * n - 13.0 * n + 6.0)
    ) / (9.0 * n * (n - 1) ** 2)
    return float((n - 2) * theta / (6.0 * (n - 1)) + theta_sq * term)


def _normalise(total: float, variance: float) -> Optional[float]:
    if not variance > 0.0 or not math.isfinite(variance):
        return None
    return total / math.sqrt(variance)


def compute_sfs(
    site_types: Sequence[int],
    site_coverage: np.ndarray,
    populations: Sequence[Population],
    aligned_sites: Sequence[int],
    window_length: int,
    constants: SFSConstants,
    *,
    min_sites: float = 0.5,
    outgroup: Optional[int] = None,
    outgroup_pop: Optional[int] = None,
) -> Dict[str, SFSResult]:
    """Tajima's D and Fay & Wu's H for each population over one window.

    Parameters
    ----------
    site_types:
        Segregating-site bit-vectors in genomic order.
    site_coverage:
        ``site_coverage[j, p]`` number of filter-passing samples of population
        ``p`` at segregating site ``j``.
    aligned_sites:
        Covered-site count per population over the whole window.
    window_length:
        ``end - beg`` of the window.
    outgroup, outgroup_pop:
        Sample index of the outgroup and the index of its population. When the
        outgroup is covered and carries the non-reference allele the derived
        count is flipped to ``coverage - count``.
    """
    out: Dict[str, SFSResult] = {}
    threshold = int(window_length * min_sites)

    for p, pop in enumerate(populations):
        ns = int(aligned_sites[p])
        na = SFSResult(num_snps=0, aligned_sites=ns, mean_depth=None, values={"D": None, "H": None})
        if ns == 0 or ns < threshold:
            out[pop.name] = na
            continue

        td = 0.0
        fwh = 0.0
        depth_sum = 0
        num_snps = 0
        for j, site in enumerate(site_types):
            t = int(site)
            cov = int(site_coverage[j, p])
            count = bitcount(t & pop.mask)
            if (
                outgroup is not None
                and outgroup_pop is not None
                and site_coverage[j, outgroup_pop] > 0
                and (t >> outgroup) & 1
            ):
                freq = cov - count
            else:
                freq = count

            if 0 < freq < cov:
                td += float(constants.dw[cov, freq])
                fwh += float(constants.hw[cov, freq])
                depth_sum += cov
                num_snps += 1

        if num_snps == 0:
            out[pop.name] = na
            continue

        nbar = int(depth_sum / num_snps + 0.4999)
        out[pop.name] = SFSResult(
            num_snps=num_snps,
            aligned_sites=ns,
            mean_depth=depth_sum / num_snps,
            values={
                "D": _normalise(td, tajima_variance(constants, nbar, num_snps)),
                "H": _normalise(fwh, fay_wu_variance(constants, nbar, num_snps)),
            },
        )
        logger.debug("sfs[%s]: S=%d n=%d %s", pop.name, num_snps, nbar, out[pop.name].values)

    return out
