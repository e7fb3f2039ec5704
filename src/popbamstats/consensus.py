"""Consensus calling: genotype costs -> per-sample call words -> site classification."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from .errmod import NBASES, ErrorCoefficients, genotype_likelihoods, pack_read
from .models import CallWord, PileupColumn, SegregationResult, SiteClass
from .utils import U16_MAX

logger = logging.getLogger(__name__)


def encode_consensus(likelihoods: np.ndarray, depth: int) -> CallWord:
    """Pick the lowest-cost genotype; its margin over the runner-up is the SNP score.

    Filter and variant flags are left unset. Depth saturates at 65535.
    """
    best = math.inf
    runner_up = math.inf
    best_pair = (0, 0)

    for i in range(NBASES):
        for j in range(i, NBASES):
            cost = float(likelihoods[i, j])
            if cost < best:
                runner_up = best
                best = cost
                best_pair = (i, j)
            elif cost < runner_up:
                runner_up = cost

    snpq = int(min(max(runner_up - best + 0.499, 0.0), U16_MAX))
    return CallWord(
        allele1=best_pair[0],
        allele2=best_pair[1],
        depth=min(max(int(depth), 0), U16_MAX),
        snpq=snpq,
    )


def call_bases(
    column: PileupColumn,
    n_samples: int,
    coeffs: ErrorCoefficients,
    *,
    min_mapq: int = 13,
    min_baseq: int = 13,
    rng: Optional[np.random.Generator] = None,
) -> List[CallWord]:
    """Build one call word per sample from a pileup column.

    Reads below ``min_mapq``/``min_baseq`` or with a non-ACGT base are dropped.
    Each read's effective quality is ``min(baseQ, mapQ)``. The depth field holds
    the number of surviving reads before any downsampling.
    """
    codes: List[List[int]] = [[] for _ in range(n_samples)]
    mapq_sq = [0] * n_samples

    for obs in column.observations:
        if obs.base < 0 or obs.base >= NBASES:
            continue
        if obs.mapq < min_mapq or obs.quality < min_baseq:
            continue
        if not 0 <= obs.sample < n_samples:
            continue
        codes[obs.sample].append(pack_read(obs.base, min(obs.quality, obs.mapq), obs.strand))
        mapq_sq[obs.sample] += obs.mapq * obs.mapq

    calls: List[CallWord] = []
    for s in range(n_samples):
        k = len(codes[s])
        lk = genotype_likelihoods(codes[s], coeffs, rng=rng)
        cw = encode_consensus(lk, k)
        if k > 0:
            cw.rms = min(int(math.sqrt(mapq_sq[s] / k) + 0.4999), U16_MAX)
        calls.append(cw)
    return calls


def qual_filter(calls: Sequence[CallWord], min_rms: int, min_depth: int, max_depth: int) -> int:
    """Set the pass flag on calls meeting RMS/depth thresholds; return the covered-sample mask."""
    coverage = 0
    for i, cw in enumerate(calls):
        if cw.rms >= min_rms and min_depth <= cw.depth <= max_depth:
            cw.passed = True
            coverage |= 1 << i
    return coverage


def clean_heterozygotes(calls: Sequence[CallWord], ref: int, min_snpq: int) -> None:
    """Collapse heterozygous calls to homozygotes in place.

    Confident heterozygotes carrying the reference allele become homozygous for
    the other allele; low-confidence heterozygotes become homozygous reference.
    Confident heterozygotes of two non-reference alleles are left untouched and
    are ignored by :func:`classify_site`.
    """
    for cw in calls:
        if cw.is_homozygous:
            continue
        if cw.snpq >= min_snpq:
            if cw.allele1 == ref:
                cw.allele1 = cw.allele2
            elif cw.allele2 == ref:
                cw.allele2 = cw.allele1
        else:
            cw.allele1 = cw.allele2 = ref


def classify_site(calls: Sequence[CallWord], ref: int, min_snpq: int) -> SegregationResult:
    """Tally confident homozygous non-reference calls and classify the site.

    Low-confidence non-reference homozygotes are reverted to the reference allele.
    More than one distinct derived base violates the infinite-sites model and the
    site is rejected as multi-allelic.
    """
    base_count = [0] * NBASES

    for cw in calls:
        if not cw.is_homozygous or cw.allele1 == ref:
            continue
        if cw.snpq >= min_snpq:
            cw.variant = True
            base_count[cw.allele1] += 1
        else:
            cw.allele1 = cw.allele2 = ref

    derived = [b for b in range(NBASES) if base_count[b] > 0]
    if len(derived) > 1:
        return SegregationResult(SiteClass.MULTIALLELIC)
    if not derived:
        return SegregationResult(SiteClass.MONOMORPHIC)
    return SegregationResult(
        SiteClass.SEGREGATING, derived_count=base_count[derived[0]], derived_base=derived[0]
    )


def site_type_bitset(calls: Sequence[CallWord]) -> int:
    """Bit i set iff sample i is a filter-passing homozygous non-reference call."""
    site_type = 0
    for i, cw in enumerate(calls):
        if cw.passed and cw.variant:
            site_type |= 1 << i
    return site_type
