from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json

_READ_LEN = 60
_READ_STEP = 5


def _write_fasta(path: Path, contig: str, seq: str) -> None:
    lines = [f">{contig}"]
    for i in range(0, len(seq), 60):
        lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _mutate_base(base: str, offset: int = 1) -> str:
    alts = [b for b in "ACGT" if b != base]
    return alts[(offset - 1) % len(alts)]


def _make_read(
    name: str,
    start0: int,
    seq: str,
    read_group: str,
    *,
    reverse: bool = False,
    mapq: int = 60,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = 16 if reverse else 0
    a.reference_id = 0
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    a.set_tag("RG", read_group, value_type="Z")
    return a


def _header_text(contig: str, length: int, samples: Sequence[Tuple[str, str]]) -> str:
    lines = ["@HD\tVN:1.6\tSO:coordinate", f"@SQ\tSN:{contig}\tLN:{length}"]
    for i, (name, pop) in enumerate(samples):
        lines.append(f"@RG\tID:rg{i}\tSM:{name}\tPO:{pop}")
    return "\n".join(lines) + "\n"


def make_toy_data(
    *,
    outdir: str | Path,
    n_per_pop: int = 4,
    length: int = 2000,
    n_snps: int = 40,
    seed: int = 7,
) -> Dict[str, str]:
    """Create a tiny reference, multi-sample BAM and population file for demos/tests.

    Two populations (``popA``, ``popB``) of ``n_per_pop`` haploid samples each
    are simulated at ~12x depth. ``n_snps`` biallelic SNPs are planted with
    random carrier sets, plus one multi-allelic site.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - samples.bam (+ .bai), read groups carrying SM and PO tags
    - populations.tsv
    - truth.tsv (planted sites and carriers)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    contig = "chr1"
    ref_seq = "".join(rng.choice("ACGT") for _ in range(length))
    ref_fa = outdir_p / "toy_ref.fa"
    _write_fasta(ref_fa, contig, ref_seq)
    pysam.faidx(str(ref_fa))

    samples: List[Tuple[str, str]] = []
    for pop in ("popA", "popB"):
        for i in range(n_per_pop):
            samples.append((f"{pop}_{i}", pop))
    n = len(samples)

    # planted variants: pos0 -> {sample index: base}
    margin = _READ_LEN
    positions = sorted(rng.sample(range(margin, length - margin), n_snps + 1))
    haplotypes: Dict[int, Dict[int, str]] = {}
    truth_lines = ["pos\tref\talt\tcarriers"]
    for k, pos0 in enumerate(positions[:-1]):
        ref_base = ref_seq[pos0]
        alt = _mutate_base(ref_base)
        n_carriers = rng.randint(1, n - 1)
        carriers = sorted(rng.sample(range(n), n_carriers))
        haplotypes[pos0] = {s: alt for s in carriers}
        truth_lines.append(f"{pos0 + 1}\t{ref_base}\t{alt}\t{','.join(samples[s][0] for s in carriers)}")

    multi = positions[-1]
    ref_base = ref_seq[multi]
    haplotypes[multi] = {0: _mutate_base(ref_base, 1), n - 1: _mutate_base(ref_base, 2)}
    truth_lines.append(f"{multi + 1}\t{ref_base}\tmulti\t{samples[0][0]},{samples[-1][0]}")
    (outdir_p / "truth.tsv").write_text("\n".join(truth_lines) + "\n", encoding="utf-8")

    reads: List[pysam.AlignedSegment] = []
    for s in range(n):
        genome = list(ref_seq)
        for pos0, carriers in haplotypes.items():
            if s in carriers:
                genome[pos0] = carriers[s]
        for j, start0 in enumerate(range(0, length - _READ_LEN + 1, _READ_STEP)):
            seq = "".join(genome[start0 : start0 + _READ_LEN])
            reads.append(_make_read(f"s{s}_r{j}", start0, seq, f"rg{s}", reverse=bool(j % 2)))

    reads.sort(key=lambda r: r.reference_start)

    bam_path = outdir_p / "samples.bam"
    header = pysam.AlignmentHeader.from_text(_header_text(contig, length, samples))
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    pop_tsv = outdir_p / "populations.tsv"
    pop_tsv.write_text("".join(f"{name}\t{pop}\n" for name, pop in samples), encoding="utf-8")

    summary = {
        "ref_fa": str(ref_fa),
        "bam": str(bam_path),
        "populations_tsv": str(pop_tsv),
        "truth_tsv": str(outdir_p / "truth.tsv"),
        "contig": contig,
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
