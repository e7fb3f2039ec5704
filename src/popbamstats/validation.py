from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Mapping, Tuple

from .errors import ConfigurationError, InputFileError, RegionError
from .models import AnalysisParams

logger = logging.getLogger(__name__)

_COORDS = re.compile(r"^(\d+)(?:-(\d*))?$")


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM has an index; raise InputFileError with fix instructions."""
    bam = Path(bam_path)
    bai1 = bam.with_suffix(bam.suffix + ".bai")
    bai2 = bam.with_suffix(".bai")
    csi = bam.with_suffix(bam.suffix + ".csi")
    if bai1.exists() or bai2.exists() or csi.exists():
        return
    raise InputFileError("BAM is not indexed. Run: samtools index " + str(bam))


def check_fasta_index(fasta_path: str | Path) -> None:
    """Ensure a FASTA has a .fai index; raise InputFileError with fix instructions."""
    fa = Path(fasta_path)
    fai = fa.with_suffix(fa.suffix + ".fai")
    if not fai.exists():
        raise InputFileError("Reference FASTA is not indexed. Run: samtools faidx " + str(fa))


def parse_region(region: str, contigs: Mapping[str, int]) -> Tuple[str, int, int]:
    """Parse ``chrom``, ``chrom:beg`` or ``chrom:beg-end`` (1-based, inclusive).

    Returns a 0-based half-open interval clipped to the contig length. Spaces and
    thousands separators are ignored. A string that is itself a contig name wins
    over coordinate parsing, so names containing ':' still resolve.
    """
    cleaned = region.replace(" ", "").replace(",", "")
    if not cleaned:
        raise RegionError("Empty region string")

    if cleaned in contigs:
        return cleaned, 0, int(contigs[cleaned])

    name, sep, coords = cleaned.rpartition(":")
    if not sep:
        raise RegionError(f"Cannot find sequence name {region} in header")
    if name not in contigs:
        raise RegionError(f"Cannot find sequence name {name} in header")

    m = _COORDS.match(coords)
    if m is None:
        raise RegionError(f"Bad genome coordinates: {region}")

    length = int(contigs[name])
    beg = max(int(m.group(1)) - 1, 0)
    end = int(m.group(2)) if m.group(2) else length
    end = min(end, length)
    if beg >= end:
        raise RegionError(f"Bad genome coordinates: {region}")
    return name, beg, end


def validate_params(params: AnalysisParams) -> None:
    """Raise ConfigurationError for option values that cannot produce a valid run."""
    if params.min_depth < 0 or params.max_depth < params.min_depth:
        raise ConfigurationError(
            f"Depth window is empty: min_depth={params.min_depth}, max_depth={params.max_depth}"
        )
    for name in ("min_rms", "min_snpq", "min_mapq", "min_baseq"):
        if getattr(params, name) < 0:
            raise ConfigurationError(f"{name} must be non-negative")
    if params.min_freq < 1:
        raise ConfigurationError("min_freq must be at least 1")
    if params.min_snps < 0:
        raise ConfigurationError("min_snps must be non-negative")
    if not 0.0 <= params.min_sites <= 1.0:
        raise ConfigurationError("min_sites must be a proportion in [0, 1]")
    if not 0.0 < params.min_pop <= 1.0:
        raise ConfigurationError("min_pop must be a proportion in (0, 1]")
    if params.window_size is not None and params.window_size <= 0:
        raise ConfigurationError("window size must be positive")
    if not 0.0 <= params.depcorr <= 1.0:
        raise ConfigurationError("depcorr must be in [0, 1]")
