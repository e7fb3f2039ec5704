"""Empirical error model for per-sample genotype likelihoods.

The model follows the MAQ/samtools "errmod" approach: repeated observations of
the same base on the same strand are assumed to have correlated errors, so the
k-th such observation is down-weighted by ``fk[k]``. Base qualities enter
through ``beta[q][n][k]``, the phred-scaled probability that at least ``k + 1``
of ``n`` reads are erroneous given the ``k`` already seen.

Likelihoods are returned as *costs*: phred-scaled, non-negative, lower is more
likely. A column with no reads carries no information and yields all zeros.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from .models import ReadObservation

logger = logging.getLogger(__name__)

NBASES = 4
ETA = 0.03  # overdispersion floor for the duplicate-read weight
MAX_READS = 255
MAX_QUAL = 63
MIN_QUAL = 4
_TABLE = 256
_PHRED = 10.0 / math.log(10.0)


@dataclass(frozen=True)
class ErrorCoefficients:
    """Read-only coefficient tables, built once per run.

    Attributes
    ----------
    depcorr:
        Error-rate decay per duplicate read.
    fk:
        ``fk[r]`` weight of the r-th repeat of a base on one strand, shape (256,).
    beta:
        ``beta[q, n, k]`` phred log-odds table, shape (64, 256, 256).
    lhet:
        ``lhet[n, k] = log C(n, k) - n log 2``, shape (256, 256).
    """

    depcorr: float
    fk: np.ndarray
    beta: np.ndarray
    lhet: np.ndarray


def _log_binomial_table(size: int = _TABLE) -> np.ndarray:
    lfact = np.array([math.lgamma(i + 1) for i in range(size)], dtype=np.float64)
    n = np.arange(size)[:, None]
    k = np.arange(size)[None, :]
    lc = lfact[n] - lfact[k] - lfact[np.clip(n - k, 0, None)]
    return np.where(k <= n, lc, 0.0)


def build_coefficients(depcorr: float, eta: float = ETA) -> ErrorCoefficients:
    """Precompute the ``fk``, ``beta`` and ``lhet`` tables for one run."""
    if not 0.0 <= depcorr <= 1.0:
        raise ValueError(f"depcorr must be in [0, 1], got {depcorr}")

    t0 = time.time()

    ranks = np.arange(_TABLE, dtype=np.float64)
    fk = np.power(1.0 - depcorr, ranks) * (1.0 - eta) + eta
    fk[0] = 1.0

    lc = _log_binomial_table()

    quals = np.arange(1, MAX_QUAL + 1, dtype=np.float64)
    err = np.power(10.0, -quals / 10.0)
    le = np.log(err)[:, None]
    le1 = np.log1p(-err)[:, None]

    beta = np.zeros((MAX_QUAL + 1, _TABLE, _TABLE), dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        for n in range(1, MAX_READS + 1):
            k = np.arange(n + 1, dtype=np.float64)[None, :]
            log_terms = lc[n, : n + 1][None, :] + k * le + (n - k) * le1
            # tails[:, k] = log sum_{k' >= k} terms
            tails = np.logaddexp.accumulate(log_terms[:, ::-1], axis=1)[:, ::-1]
            nxt = np.concatenate([tails[:, 1:], np.full((MAX_QUAL, 1), -np.inf)], axis=1)
            beta[1:, n, : n + 1] = -_PHRED * (nxt - tails)

    lhet = lc - math.log(2.0) * np.arange(_TABLE, dtype=np.float64)[:, None]

    logger.debug("Built error-model tables (depcorr=%.3f) in %.2fs", depcorr, time.time() - t0)
    return ErrorCoefficients(depcorr=float(depcorr), fk=fk, beta=beta, lhet=lhet)


def pack_read(base: int, quality: int, strand: int) -> int:
    """16-bit ordering key ``quality << 5 | strand << 4 | base``."""
    q = min(max(int(quality), 0), MAX_QUAL)
    return q << 5 | (int(strand) & 0x1) << 4 | (int(base) & 0x3)


def _sample_codes(
    codes: list[int], rng: Optional[np.random.Generator]
) -> list[int]:
    if len(codes) <= MAX_READS:
        return codes
    if rng is None:
        rng = np.random.default_rng()
    idx = rng.choice(len(codes), size=MAX_READS, replace=False)
    return [codes[i] for i in idx]


def genotype_likelihoods(
    reads: Iterable[ReadObservation] | Sequence[int],
    coeffs: ErrorCoefficients,
    *,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Phred-scaled genotype costs for one sample at one column.

    Parameters
    ----------
    reads:
        Read observations (or pre-packed codes from :func:`pack_read`).
    coeffs:
        Tables from :func:`build_coefficients`.
    rng:
        Random generator used to downsample columns deeper than 255 reads.

    Returns
    -------
    numpy.ndarray
        Symmetric 4x4 matrix; entry ``[j, k]`` is the cost of genotype {j, k}.
    """
    q = np.zeros((NBASES, NBASES), dtype=np.float64)

    codes = [
        r if isinstance(r, int) else pack_read(r.base, r.quality, r.strand) for r in reads
    ]
    if not codes:
        return q

    codes = sorted(_sample_codes(codes, rng))
    n = len(codes)

    fk = coeffs.fk
    beta = coeffs.beta
    fsum = [0.0] * NBASES
    bsum = [0.0] * NBASES
    count = [0] * NBASES
    seen = [0] * 32

    # best quality first
    for code in reversed(codes):
        qual = min(max(code >> 5, MIN_QUAL), MAX_QUAL)
        key = code & 0x1F
        b = key & 0x3
        weight = float(fk[seen[key]])
        fsum[b] += weight
        bsum[b] += weight * float(beta[qual, n, count[b]])
        count[b] += 1
        seen[key] += 1

    lhet = coeffs.lhet
    for j in range(NBASES):
        others = [i for i in range(NBASES) if i != j]
        if sum(count[i] for i in others):
            q[j, j] = sum(bsum[i] for i in others)

        for k in range(j + 1, NBASES):
            rest = [i for i in range(NBASES) if i not in (j, k)]
            cjk = count[j] + count[k]
            cost = -_PHRED * float(lhet[cjk, count[k]])
            if sum(count[i] for i in rest):
                cost += sum(bsum[i] for i in rest)
            q[j, k] = q[k, j] = cost

    return np.maximum(q, 0.0)
