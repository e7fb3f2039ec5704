"""Per-window buffers and the per-position driver shared by the LD and SFS analyses."""

from __future__ import annotations

import itertools
import logging
import time
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .consensus import call_bases, classify_site, clean_heterozygotes, qual_filter, site_type_bitset
from .errmod import ErrorCoefficients, build_coefficients
from .errors import ConfigurationError
from .ld import LDStatistic, compute_ld
from .models import (
    AnalysisParams,
    PileupColumn,
    PopulationSet,
    SegregationResult,
    SiteClass,
    WindowResult,
    base_code,
)
from .nucdiv import compute_nucdiv, pair_name
from .sfs import SFSConstants, build_sfs_constants, compute_sfs
from .utils import bitcount

logger = logging.getLogger(__name__)

ColumnSource = Callable[[str, int, int], Iterable[PileupColumn]]

ANALYSES = ("ld", "sfs", "nucdiv")


class Window:
    """Scratch buffers for one genomic window [beg, end).

    Buffers are sized to the largest window seen so far and reused by
    :meth:`reset`, so a run allocates once per size increase rather than once
    per window.
    """

    def __init__(self, n_pops: int, capacity: int = 0) -> None:
        self.n_pops = n_pops
        self.chrom = ""
        self.beg = 0
        self.end = 0
        self.num_sites = 0
        self.segsites = 0
        self.multiallelic = 0
        self._alloc(capacity)

    def _alloc(self, capacity: int) -> None:
        self.capacity = capacity
        self.site_types = np.zeros(capacity, dtype=np.uint64)
        self.pop_cov = np.zeros(capacity, dtype=np.uint64)
        self.site_coverage = np.zeros((capacity, self.n_pops), dtype=np.int32)
        self.site_pop_cov = np.zeros(capacity, dtype=np.uint64)

    def reset(self, chrom: str, beg: int, end: int) -> None:
        if end < beg:
            raise ValueError(f"Window end {end} precedes start {beg}")
        length = end - beg
        if length > self.capacity:
            self._alloc(length)
        self.chrom = chrom
        self.beg = beg
        self.end = end
        self.num_sites = 0
        self.segsites = 0
        self.multiallelic = 0

    @property
    def length(self) -> int:
        return self.end - self.beg

    def contains(self, pos: int) -> bool:
        return self.beg <= pos < self.end

    def add_aligned(self, pop_bits: int) -> None:
        self.pop_cov[self.num_sites] = pop_bits
        self.num_sites += 1

    def add_segregating(self, site_type: int, coverage: Sequence[int], pop_bits: int) -> None:
        self.site_types[self.segsites] = site_type
        self.site_coverage[self.segsites, :] = coverage
        self.site_pop_cov[self.segsites] = pop_bits
        self.segsites += 1

    def types(self) -> List[int]:
        return [int(t) for t in self.site_types[: self.segsites]]

    def coverage(self) -> np.ndarray:
        return self.site_coverage[: self.segsites]

    def covered_pops(self) -> List[int]:
        """Covered-population bits of each segregating site."""
        return [int(b) for b in self.site_pop_cov[: self.segsites]]

    def pop_sites(self) -> List[int]:
        """Aligned-site count per population."""
        cov = self.pop_cov[: self.num_sites]
        return [int(((cov >> np.uint64(p)) & np.uint64(1)).sum()) for p in range(self.n_pops)]

    def pair_sites(self) -> List[int]:
        """Aligned-site count covered in both populations, for each pair i < j."""
        cov = self.pop_cov[: self.num_sites]
        out = []
        for i, j in itertools.combinations(range(self.n_pops), 2):
            both = np.uint64((1 << i) | (1 << j))
            out.append(int(((cov & both) == both).sum()))
        return out


class ColumnProcessor:
    """Runs error model -> consensus -> filters -> classification for each pileup column."""

    def __init__(
        self,
        populations: PopulationSet,
        params: AnalysisParams,
        coeffs: Optional[ErrorCoefficients] = None,
        *,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.populations = populations
        self.params = params
        self.coeffs = coeffs if coeffs is not None else build_coefficients(params.depcorr)
        self.rng = rng if rng is not None else np.random.default_rng(params.seed)
        # at least one passing member, however small min_pop is
        self.required = [
            max(1, int(params.min_pop * pop.nsmpl + 0.4999)) for pop in populations.populations
        ]

    def process(self, column: PileupColumn, window: Window) -> Optional[SegregationResult]:
        """Fold one column into ``window``; returns None for columns that are skipped."""
        if not window.contains(column.pos):
            return None
        ref = base_code(column.ref_base)
        if ref < 0:
            return None

        p = self.params
        calls = call_bases(
            column,
            self.populations.n_samples,
            self.coeffs,
            min_mapq=p.min_mapq,
            min_baseq=p.min_baseq,
            rng=self.rng,
        )
        covered = qual_filter(calls, p.min_rms, p.min_depth, p.max_depth)
        if not p.heterozygotes:
            clean_heterozygotes(calls, ref, p.min_snpq)
        seg = classify_site(calls, ref, p.min_snpq)

        if seg.site_class is SiteClass.MULTIALLELIC:
            window.multiallelic += 1
            logger.debug("%s:%d multi-allelic; site excluded", column.chrom, column.pos + 1)

        ncov = [bitcount(covered & pop.mask) for pop in self.populations.populations]
        pop_bits = 0
        for i, (c, req) in enumerate(zip(ncov, self.required)):
            if c >= req:
                pop_bits |= 1 << i

        if pop_bits > 0:
            window.add_aligned(pop_bits)
            if seg.is_segregating:
                window.add_segregating(site_type_bitset(calls), ncov, pop_bits)
        return seg


def iter_windows(beg: int, end: int, window_size: Optional[int]) -> Iterator[Tuple[int, int]]:
    """Tile [beg, end) with consecutive windows; the last one is truncated at ``end``."""
    if window_size is None:
        yield beg, end
        return
    if window_size <= 0:
        raise ConfigurationError("window size must be positive")
    for start in range(beg, end, window_size):
        yield start, min(start + window_size, end)


def resolve_outgroup(populations: PopulationSet, name: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    if name is None:
        return None, None
    try:
        idx = populations.sample_index(name)
    except KeyError:
        raise ConfigurationError(f"Specified outgroup {name} not found") from None
    return idx, populations.population_of(idx)


def _result(window: Window, populations: PopulationSet) -> WindowResult:
    names = [pop.name for pop in populations.populations]
    return WindowResult(
        chrom=window.chrom,
        beg=window.beg,
        end=window.end,
        num_sites=window.num_sites,
        segsites=window.segsites,
        multiallelic=window.multiallelic,
        pop_sites=dict(zip(names, window.pop_sites())),
        num_snps={},
        stats={},
    )


def summarize_ld(
    window: Window,
    populations: PopulationSet,
    params: AnalysisParams,
    statistic: LDStatistic,
) -> WindowResult:
    res = _result(window, populations)
    ld = compute_ld(
        statistic,
        window.types(),
        populations.populations,
        min_freq=params.min_freq,
        min_snps=max(2, params.min_snps),
    )
    for name, r in ld.items():
        res.num_snps[name] = r.num_snps
        res.stats[name] = dict(r.values)
    return res


def summarize_sfs(
    window: Window,
    populations: PopulationSet,
    params: AnalysisParams,
    constants: SFSConstants,
    outgroup: Tuple[Optional[int], Optional[int]] = (None, None),
) -> WindowResult:
    res = _result(window, populations)
    sfs = compute_sfs(
        window.types(),
        window.coverage(),
        populations.populations,
        window.pop_sites(),
        window.length,
        constants,
        min_sites=params.min_sites,
        outgroup=outgroup[0],
        outgroup_pop=outgroup[1],
    )
    for name, r in sfs.items():
        res.num_snps[name] = r.num_snps
        res.stats[name] = dict(r.values)
    return res


def summarize_nucdiv(
    window: Window,
    populations: PopulationSet,
    params: AnalysisParams,
) -> WindowResult:
    res = _result(window, populations)
    within, between = compute_nucdiv(
        window.types(),
        window.coverage(),
        window.covered_pops(),
        populations.populations,
        window.pop_sites(),
        window.pair_sites(),
        window.length,
        min_sites=params.min_sites,
    )
    for name, r in within.items():
        res.num_snps[name] = r.num_snps
        res.stats[name] = dict(r.values)
    for name, r in between.items():
        res.pair_sites[name] = r.aligned_sites
        res.pair_stats[name] = dict(r.values)
    return res


def population_pairs(populations: PopulationSet) -> List[str]:
    names = [p.name for p in populations.populations]
    return [pair_name(a, b) for a, b in itertools.combinations(names, 2)]


def analyze_region(
    source: ColumnSource,
    chrom: str,
    beg: int,
    end: int,
    populations: PopulationSet,
    params: AnalysisParams,
    *,
    analysis: str = "ld",
    statistic: LDStatistic = LDStatistic.ZNS,
    coeffs: Optional[ErrorCoefficients] = None,
    progress: bool = False,
) -> Iterator[WindowResult]:
    """Stream windows over [beg, end) and yield one :class:`WindowResult` per window.

    ``source(chrom, wbeg, wend)`` must yield pileup columns in genomic order.
    """
    if analysis not in ANALYSES:
        raise ConfigurationError(f"Unknown analysis: {analysis}")

    processor = ColumnProcessor(populations, params, coeffs)
    constants = build_sfs_constants(populations.n_samples) if analysis == "sfs" else None
    outgroup = resolve_outgroup(populations, params.outgroup) if analysis == "sfs" else (None, None)

    bounds = list(iter_windows(beg, end, params.window_size))
    it: Iterable[Tuple[int, int]] = bounds
    if progress:
        it = tqdm(bounds, unit="window", desc=f"{analysis.upper()} {chrom}")

    window = Window(len(populations.populations), capacity=max((e - b for b, e in bounds), default=0))
    for wbeg, wend in it:
        t0 = time.time()
        window.reset(chrom, wbeg, wend)
        for column in source(chrom, wbeg, wend):
            processor.process(column, window)

        if analysis == "ld":
            res = summarize_ld(window, populations, params, statistic)
        elif analysis == "nucdiv":
            res = summarize_nucdiv(window, populations, params)
        else:
            assert constants is not None
            res = summarize_sfs(window, populations, params, constants, outgroup)

        logger.info(
            "%s:%d-%d aligned=%d segsites=%d multiallelic=%d (%.2fs)",
            chrom,
            wbeg + 1,
            wend,
            res.num_sites,
            res.segsites,
            res.multiallelic,
            time.time() - t0,
        )
        yield res
