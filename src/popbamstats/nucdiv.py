"""Nucleotide diversity: pi within each population and Dxy between population pairs.

Both are per-site averages. Pi sums the pairwise-difference probability of
every segregating site covered in the population and divides by the number of
aligned sites of that population. Dxy sums the probability that two sequences,
one drawn from each population, differ, and divides by the number of sites
aligned in both.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .models import Population
from .utils import bitcount

logger = logging.getLogger(__name__)

EPSILON = 1e-08


@dataclass(frozen=True)
class DiversityResult:
    num_snps: int
    aligned_sites: int
    values: Dict[str, Optional[float]]


def pair_name(a: str, b: str) -> str:
    return f"{a}-{b}"


def _per_site(total: float, sites: int, threshold: int) -> Optional[float]:
    if sites == 0 or sites < threshold:
        return None
    value = total / sites
    # accumulated rounding noise on a monomorphic window
    return 0.0 if abs(value) < EPSILON else value


def compute_nucdiv(
    site_types: Sequence[int],
    site_coverage: np.ndarray,
    covered_pops: Sequence[int],
    populations: Sequence[Population],
    aligned_sites: Sequence[int],
    pair_sites: Sequence[int],
    window_length: int,
    *,
    min_sites: float = 0.5,
) -> Tuple[Dict[str, DiversityResult], Dict[str, DiversityResult]]:
    """Pi per population and Dxy per population pair over one window.

    Parameters
    ----------
    site_types, site_coverage:
        Segregating-site bit-vectors and per-population passing-sample counts.
    covered_pops:
        Covered-population bits of each segregating site; a site contributes to
        a population (pair) only where it is covered.
    aligned_sites, pair_sites:
        Aligned-site counts per population and per pair ``i < j`` (in
        ``itertools.combinations`` order).
    min_sites:
        Values are NA when fewer than ``int(window_length * min_sites)`` sites
        are aligned.

    Returns
    -------
    within, between:
        ``within[pop]`` carries ``{"Pi": ...}``; ``between["A-B"]`` carries
        ``{"Dxy": ...}``.
    """
    threshold = int(window_length * min_sites)
    n_pops = len(populations)
    n_sites = len(site_types)

    freq = np.zeros((n_sites, n_pops), dtype=np.int64)
    for j, site in enumerate(site_types):
        t = int(site)
        for p, pop in enumerate(populations):
            freq[j, p] = bitcount(t & pop.mask)

    within: Dict[str, DiversityResult] = {}
    for p, pop in enumerate(populations):
        total = 0.0
        num_snps = 0
        for j in range(n_sites):
            if not (covered_pops[j] >> p) & 1:
                continue
            n = int(site_coverage[j, p])
            x = int(freq[j, p])
            if n < 2 or not 0 < x < n:
                continue
            total += 2.0 * x * (n - x) / (n * (n - 1.0))
            num_snps += 1
        ns = int(aligned_sites[p])
        within[pop.name] = DiversityResult(
            num_snps=num_snps,
            aligned_sites=ns,
            values={"Pi": _per_site(total, ns, threshold)},
        )

    between: Dict[str, DiversityResult] = {}
    for k, (a, b) in enumerate(itertools.combinations(range(n_pops), 2)):
        both = (1 << a) | (1 << b)
        total = 0.0
        num_snps = 0
        for j in range(n_sites):
            if covered_pops[j] & both != both:
                continue
            na = int(site_coverage[j, a])
            nb = int(site_coverage[j, b])
            xa = int(freq[j, a])
            xb = int(freq[j, b])
            d = (xa * (nb - xb) + xb * (na - xa)) / (na * nb)
            if d > 0.0:
                total += d
                num_snps += 1
        ns = int(pair_sites[k])
        name = pair_name(populations[a].name, populations[b].name)
        between[name] = DiversityResult(
            num_snps=num_snps,
            aligned_sites=ns,
            values={"Dxy": _per_site(total, ns, threshold)},
        )
        logger.debug("nucdiv[%s]: sites=%d %s", name, ns, between[name].values)

    return within, between
