from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .utils import U16_MAX

MAX_SAMPLES = 64

BASES = "ACGT"
_BASE_CODES = {b: i for i, b in enumerate(BASES)}


def base_code(base: str) -> int:
    """Map a nucleotide to its 2-bit code (A=0, C=1, G=2, T=3); -1 for anything else."""
    return _BASE_CODES.get(base.upper(), -1)


@dataclass(frozen=True)
class Sample:
    index: int
    name: str
    population: str


@dataclass(frozen=True)
class Population:
    """A named group of samples.

    Attributes
    ----------
    name:
        Population label (``PO`` tag or metadata file value).
    samples:
        Member sample indices, ascending.
    mask:
        One bit per member sample (``bit i`` set iff sample ``i`` is a member).
    """

    name: str
    samples: Tuple[int, ...]
    mask: int

    @property
    def nsmpl(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class PopulationSet:
    """Sample metadata for one run; read-only once built."""

    samples: Tuple[Sample, ...]
    populations: Tuple[Population, ...]

    def __post_init__(self) -> None:
        if len(self.samples) > MAX_SAMPLES:
            raise ValueError(
                f"{len(self.samples)} samples found; at most {MAX_SAMPLES} are supported per run"
            )

    @property
    def n_samples(self) -> int:
        return len(self.samples)

    def sample_index(self, name: str) -> int:
        for s in self.samples:
            if s.name == name:
                return s.index
        raise KeyError(name)

    def population_of(self, sample_index: int) -> int:
        """Index of the first population containing the sample."""
        bit = 1 << sample_index
        for i, pop in enumerate(self.populations):
            if pop.mask & bit:
                return i
        raise KeyError(sample_index)


@dataclass(frozen=True)
class ReadObservation:
    """One aligned base at a pileup column."""

    sample: int
    base: int  # 2-bit code, see base_code()
    quality: int
    strand: int  # 1 = reverse
    mapq: int = 60


@dataclass
class PileupColumn:
    """All read observations overlapping one reference position (0-based)."""

    chrom: str
    pos: int
    ref_base: str
    observations: List[ReadObservation] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.observations)


_CALLWORD_WIDTHS = {
    "allele1": 2,
    "allele2": 2,
    "depth": 16,
    "snpq": 16,
    "rms": 16,
}


@dataclass
class CallWord:
    """Per-sample consensus call at one site.

    Packs into a 64-bit word as:

    ======== =====================================
    bits     field
    ======== =====================================
    0        passes quality filter
    1        variant (non-reference, high confidence)
    8-9      allele 2
    10-11    allele 1
    16-31    read depth
    32-47    SNP confidence score
    48-63    RMS mapping quality
    ======== =====================================

    The genotype byte is ``allele1 << 2 | allele2``.
    """

    allele1: int = 0
    allele2: int = 0
    depth: int = 0
    snpq: int = 0
    rms: int = 0
    passed: bool = False
    variant: bool = False

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        for name, width in _CALLWORD_WIDTHS.items():
            value = getattr(self, name)
            if not 0 <= value < (1 << width):
                raise ValueError(f"CallWord.{name}={value} does not fit in {width} bits")

    @property
    def genotype(self) -> int:
        return self.allele1 << 2 | self.allele2

    @property
    def is_homozygous(self) -> bool:
        return self.allele1 == self.allele2

    def to_int(self) -> int:
        word = int(self.passed) | int(self.variant) << 1
        word |= self.genotype << 8
        word |= self.depth << 16
        word |= self.snpq << 32
        word |= self.rms << 48
        return word

    @classmethod
    def from_int(cls, word: int) -> "CallWord":
        genotype = (word >> 8) & 0xF
        return cls(
            allele1=(genotype >> 2) & 0x3,
            allele2=genotype & 0x3,
            depth=(word >> 16) & U16_MAX,
            snpq=(word >> 32) & U16_MAX,
            rms=(word >> 48) & U16_MAX,
            passed=bool(word & 0x1),
            variant=bool(word & 0x2),
        )


class SiteClass(enum.Enum):
    MONOMORPHIC = "monomorphic"
    SEGREGATING = "segregating"
    MULTIALLELIC = "multiallelic"


@dataclass(frozen=True)
class SegregationResult:
    site_class: SiteClass
    derived_count: int = 0
    derived_base: Optional[int] = None

    @property
    def is_segregating(self) -> bool:
        return self.site_class is SiteClass.SEGREGATING


@dataclass(frozen=True)
class AnalysisParams:
    """Run parameters shared by the LD and SFS analyses.

    Attributes
    ----------
    min_rms:
        Minimum RMS mapping quality for a sample call to pass filters.
    min_depth, max_depth:
        Inclusive read-depth window for a sample call to pass filters.
    min_snpq:
        Minimum SNP confidence for a non-reference call to count as derived.
    min_mapq, min_baseq:
        Per-read filters applied before genotype likelihoods.
    min_freq:
        Minimum derived (and ancestral) count within a population for a site
        to enter LD calculations; 2 excludes singletons.
    min_snps:
        Minimum number of qualifying SNPs for LD values to be reported.
    min_sites:
        Minimum fraction of the window that must be aligned in a population
        for SFS statistics to be reported.
    min_pop:
        Fraction of a population's samples that must pass filters for the
        population to count as covered at a site.
    heterozygotes:
        Keep heterozygous calls instead of collapsing them to homozygotes.
    outgroup:
        Sample name used to polarise derived alleles (SFS only).
    window_size:
        Sliding window size in bp; None analyses the whole region at once.
    depcorr:
        Error-rate decay per duplicate read in the error model.
    seed:
        Seed for downsampling of deep columns.
    """

    min_rms: int = 25
    min_depth: int = 3
    max_depth: int = 255
    min_snpq: int = 25
    min_mapq: int = 13
    min_baseq: int = 13
    min_freq: int = 1
    min_snps: int = 10
    min_sites: float = 0.5
    min_pop: float = 1.0
    heterozygotes: bool = False
    outgroup: Optional[str] = None
    window_size: Optional[int] = None
    depcorr: float = 0.17
    seed: Optional[int] = None


@dataclass
class WindowResult:
    """Per-window output; statistic values of None mean NA.

    ``pair_sites``/``pair_stats`` hold between-population values keyed ``"A-B"``.
    """

    chrom: str
    beg: int
    end: int
    num_sites: int
    segsites: int
    multiallelic: int
    pop_sites: Dict[str, int]
    num_snps: Dict[str, int]
    stats: Dict[str, Dict[str, Optional[float]]]
    pair_sites: Dict[str, int] = field(default_factory=dict)
    pair_stats: Dict[str, Dict[str, Optional[float]]] = field(default_factory=dict)
