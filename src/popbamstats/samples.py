"""Sample and population metadata.

Samples come from ``@RG`` header lines (``SM`` tag; the read-group ``ID`` is
used when ``SM`` is absent). Populations come from a ``PO`` tag on the same
lines and/or a two-column TSV (``sample<TAB>population``) that takes
precedence. A sample listed under several populations belongs to all of them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pysam

from .errors import ConfigurationError
from .models import MAX_SAMPLES, Population, PopulationSet, Sample
from .utils import mask_from_indices, open_textmaybe_gzip

logger = logging.getLogger(__name__)

DEFAULT_POPULATION = "all"


def parse_read_groups(header_text: str) -> List[Dict[str, str]]:
    """Parse ``@RG`` lines of a SAM header into tag dictionaries."""
    groups: List[Dict[str, str]] = []
    for line in header_text.splitlines():
        if not line.startswith("@RG"):
            continue
        tags: Dict[str, str] = {}
        for field in line.rstrip("\n").split("\t")[1:]:
            if ":" not in field:
                continue
            key, value = field.split(":", 1)
            tags[key] = value
        if "ID" not in tags:
            raise ConfigurationError(f"@RG line without ID: {line}")
        groups.append(tags)
    return groups


def load_population_file(path: str | Path) -> Dict[str, List[str]]:
    """Read ``sample<TAB>population`` lines; '#' starts a comment."""
    assignment: Dict[str, List[str]] = {}
    with open_textmaybe_gzip(path, "rt") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            fields = line.split()
            if len(fields) < 2:
                raise ConfigurationError(f"{path}:{lineno}: expected 'sample population'")
            pops = assignment.setdefault(fields[0], [])
            if fields[1] not in pops:
                pops.append(fields[1])
    return assignment


def build_population_set(
    sample_names: Sequence[str],
    assignment: Mapping[str, Sequence[str]],
) -> PopulationSet:
    """Assemble samples and population masks, keeping population first-seen order."""
    if len(sample_names) == 0:
        raise ConfigurationError("No samples found; add @RG lines with SM tags to the BAM header")
    if len(sample_names) > MAX_SAMPLES:
        raise ConfigurationError(
            f"{len(sample_names)} samples found; at most {MAX_SAMPLES} are supported per run"
        )

    if not any(assignment.get(s) for s in sample_names):
        logger.info("No population assignments found; treating all samples as one population")
        assignment = {s: [DEFAULT_POPULATION] for s in sample_names}

    members: Dict[str, List[int]] = {}
    samples: List[Sample] = []
    for idx, name in enumerate(sample_names):
        pops = list(assignment.get(name, []))
        if not pops:
            logger.warning("Sample %s has no population assignment; excluded from statistics", name)
        for pop in pops:
            members.setdefault(pop, []).append(idx)
        samples.append(Sample(index=idx, name=name, population=pops[0] if pops else ""))

    unknown = set(assignment) - set(sample_names)
    if unknown:
        logger.warning("Ignoring population entries for samples not in BAM: %s", sorted(unknown))

    populations = tuple(
        Population(name=name, samples=tuple(idx), mask=mask_from_indices(idx))
        for name, idx in members.items()
    )
    return PopulationSet(samples=tuple(samples), populations=populations)


def load_samples(
    bam_path: str,
    *,
    population_file: Optional[str | Path] = None,
) -> Tuple[PopulationSet, Dict[str, int]]:
    """Read sample metadata from a BAM header.

    Returns
    -------
    populations:
        The run's :class:`PopulationSet`.
    read_groups:
        Mapping read-group ID -> sample index, used to route reads in the pileup.
    """
    with pysam.AlignmentFile(bam_path, "rb") as bam:
        groups = parse_read_groups(str(bam.header))

    sample_names: List[str] = []
    read_groups: Dict[str, int] = {}
    header_pops: Dict[str, List[str]] = {}
    for rg in groups:
        name = rg.get("SM", rg["ID"])
        if name not in sample_names:
            sample_names.append(name)
        read_groups[rg["ID"]] = sample_names.index(name)
        if "PO" in rg:
            pops = header_pops.setdefault(name, [])
            if rg["PO"] not in pops:
                pops.append(rg["PO"])

    assignment: Dict[str, List[str]] = dict(header_pops)
    if population_file is not None:
        assignment.update(load_population_file(population_file))

    popset = build_population_set(sample_names, assignment)
    logger.info(
        "Loaded %d samples in %d populations: %s",
        popset.n_samples,
        len(popset.populations),
        ", ".join(f"{p.name}({p.nsmpl})" for p in popset.populations),
    )
    return popset, read_groups
