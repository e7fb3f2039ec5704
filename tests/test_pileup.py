from pathlib import Path

import pysam
import pytest

from popbamstats.errmod import build_coefficients
from popbamstats.errors import RegionError
from popbamstats.models import AnalysisParams
from popbamstats.pileup import PileupSource
from popbamstats.samples import load_samples
from popbamstats.toy_data import make_toy_data
from popbamstats.window import analyze_region


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


def _truth(path: str):
    rows = Path(path).read_text().splitlines()[1:]
    return [line.split("\t") for line in rows]


def test_pileup_columns_route_reads_to_samples(toy) -> None:
    pops, read_groups = load_samples(toy["bam"])
    with PileupSource(toy["bam"], toy["ref_fa"], read_groups) as src:
        assert src.contigs() == {"chr1": 2000}
        cols = list(src("chr1", 100, 110))
        ref = src.reference("chr1")

    assert [c.pos for c in cols] == list(range(100, 110))
    for c in cols:
        assert c.ref_base == ref[c.pos]
        assert c.depth == 12 * pops.n_samples
        assert {o.sample for o in c.observations} == set(range(pops.n_samples))
        assert all(o.quality == 40 and o.mapq == 60 for o in c.observations)


def test_pileup_unknown_contig(toy) -> None:
    _, read_groups = load_samples(toy["bam"])
    with PileupSource(toy["bam"], toy["ref_fa"], read_groups) as src:
        with pytest.raises(RegionError):
            list(src("chrX", 0, 10))


def test_planted_sites_are_recovered(toy) -> None:
    pops, read_groups = load_samples(toy["bam"])
    truth = _truth(toy["truth_tsv"])
    n_biallelic = sum(1 for row in truth if row[2] != "multi")

    params = AnalysisParams(min_snps=2)
    with PileupSource(toy["bam"], toy["ref_fa"], read_groups) as src:
        (res,) = list(
            analyze_region(src, "chr1", 0, 2000, pops, params, coeffs=build_coefficients(params.depcorr))
        )

    assert res.segsites == n_biallelic
    assert res.multiallelic == 1
    # the first and last few bases lack the minimum read depth
    assert 1900 < res.num_sites < 2000
    assert res.stats["popA"]["Zns"] is not None


def test_qcfail_reads_are_skipped_and_counted(toy, tmp_path) -> None:
    _, read_groups = load_samples(toy["bam"])
    flagged = tmp_path / "qcfail.bam"
    with pysam.AlignmentFile(toy["bam"], "rb") as src:
        reads = list(src.fetch())
        ref = pysam.FastaFile(toy["ref_fa"]).fetch("chr1")
        for i in range(3):
            a = pysam.AlignedSegment(src.header)
            a.query_name = f"qcfail{i}"
            a.query_sequence = ref[100:160]
            a.flag = 0x200
            a.reference_id = 0
            a.reference_start = 100
            a.mapping_quality = 60
            a.cigartuples = [(0, 60)]
            a.query_qualities = pysam.qualitystring_to_array("I" * 60)
            a.set_tag("RG", "rg0", value_type="Z")
            reads.append(a)
        reads.sort(key=lambda r: r.reference_start)
        with pysam.AlignmentFile(str(flagged), "wb", header=src.header) as out:
            for r in reads:
                out.write(r)
    pysam.index(str(flagged))

    with PileupSource(str(flagged), toy["ref_fa"], read_groups) as src:
        cols = list(src("chr1", 100, 110))
        assert all(c.depth == 12 * len(read_groups) for c in cols)
        assert src.counts["obs_skipped_qcfail"] == 3 * len(cols)
