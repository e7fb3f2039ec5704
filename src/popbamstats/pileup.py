"""BAM pileup -> :class:`PileupColumn` stream.

Reads are routed to samples through their ``RG`` tag. Filtering by mapping and
base quality is left to :func:`popbamstats.consensus.call_bases`; this module
only drops reads that never contribute (unmapped, QC-fail, duplicates, secondary
and supplementary alignments by default, deletions and reference skips).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, Optional

import pysam

from .errors import RegionError
from .models import PileupColumn, ReadObservation, base_code

logger = logging.getLogger(__name__)

_PILEUP_MAX_DEPTH = 1_000_000


class PileupSource:
    """Callable ``(chrom, beg, end) -> Iterator[PileupColumn]`` over an indexed BAM."""

    def __init__(
        self,
        bam_path: str | Path,
        ref_path: str | Path,
        read_groups: Dict[str, int],
        *,
        skip_duplicates: bool = True,
        include_secondary: bool = False,
        include_supplementary: bool = False,
    ) -> None:
        self.bam = pysam.AlignmentFile(str(bam_path), "rb")
        self.fasta = pysam.FastaFile(str(ref_path))
        self.read_groups = dict(read_groups)
        self.skip_duplicates = skip_duplicates
        self.include_secondary = include_secondary
        self.include_supplementary = include_supplementary
        self._ref_name: Optional[str] = None
        self._ref_seq = ""
        self.counts = {
            "obs_no_read_group": 0,
            "obs_skipped_duplicates": 0,
            "obs_skipped_secondary": 0,
            "obs_skipped_supplementary": 0,
            "obs_skipped_qcfail": 0,
        }

    def __enter__(self) -> "PileupSource":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.bam.close()
        self.fasta.close()

    def contigs(self) -> Dict[str, int]:
        return dict(zip(self.bam.references, self.bam.lengths))

    def reference(self, chrom: str) -> str:
        """Upper-cased reference sequence of ``chrom`` (cached for the current contig)."""
        if chrom != self._ref_name:
            if chrom not in self.fasta.references:
                raise RegionError(f"Sequence {chrom} not found in reference FASTA")
            self._ref_seq = self.fasta.fetch(chrom).upper()
            self._ref_name = chrom
        return self._ref_seq

    def _keep(self, read: pysam.AlignedSegment) -> bool:
        if read.is_unmapped:
            return False
        if read.is_qcfail:
            self.counts["obs_skipped_qcfail"] += 1
            return False
        if read.is_secondary and not self.include_secondary:
            self.counts["obs_skipped_secondary"] += 1
            return False
        if read.is_supplementary and not self.include_supplementary:
            self.counts["obs_skipped_supplementary"] += 1
            return False
        if self.skip_duplicates and read.is_duplicate:
            self.counts["obs_skipped_duplicates"] += 1
            return False
        return True

    def __call__(self, chrom: str, beg: int, end: int) -> Iterator[PileupColumn]:
        ref_seq = self.reference(chrom)
        try:
            columns = self.bam.pileup(
                chrom,
                beg,
                end,
                truncate=True,
                stepper="nofilter",
                min_base_quality=0,
                max_depth=_PILEUP_MAX_DEPTH,
            )
        except ValueError as e:
            raise RegionError(
                f"Failed to retrieve region {chrom}:{beg + 1}-{end} due to corrupted BAM index"
            ) from e

        for col in columns:
            pos = int(col.reference_pos)
            observations = []
            for pr in col.pileups:
                if pr.is_del or pr.is_refskip or pr.query_position is None:
                    continue
                read = pr.alignment
                if not self._keep(read):
                    continue
                rg = read.get_tag("RG") if read.has_tag("RG") else None
                sample = self.read_groups.get(str(rg)) if rg is not None else None
                if sample is None:
                    self.counts["obs_no_read_group"] += 1
                    continue
                qpos = pr.query_position
                seq = read.query_sequence
                if seq is None:
                    continue
                quals = read.query_qualities
                observations.append(
                    ReadObservation(
                        sample=sample,
                        base=base_code(seq[qpos]),
                        quality=int(quals[qpos]) if quals is not None else 0,
                        strand=int(read.is_reverse),
                        mapq=int(read.mapping_quality),
                    )
                )
            ref_base = ref_seq[pos] if pos < len(ref_seq) else "N"
            yield PileupColumn(chrom=chrom, pos=pos, ref_base=ref_base, observations=observations)
