import json
import subprocess
import sys
from pathlib import Path

from popbamstats.report import read_windows_tsv
from popbamstats.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "popbamstats"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _inputs(toy: dict) -> list[str]:
    return ["--bam", toy["bam"], "--ref", toy["ref_fa"]]


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "popbamstats ld" in cp.stdout
    assert "popbamstats sfs" in cp.stdout
    assert "popbamstats nucdiv" in cp.stdout


def test_ld_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "ld"
    cp = _run_cli(["ld", *_inputs(toy), "--region", "chr1", "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "popA: popA_0, popA_1, popA_2, popA_3" in cp.stdout
    assert "chr1:1-2000" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_ld(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0
    toy = json.loads(cp.stdout)
    assert Path(toy["bam"]).exists()

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "ld",
            *_inputs(toy),
            "--region",
            "chr1:1-2000",
            "--window-size",
            "1",
            "--min-snps",
            "2",
            "--outdir",
            str(outdir),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "Zns.png").exists()

    rows = read_windows_tsv(outdir / "windows.tsv")
    assert [(r["start"], r["end"]) for r in rows] == [("1", "1000"), ("1001", "2000")]
    assert "Zns[popA]" in rows[0]

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["analysis"] == "ld"
    assert summary["windows"] == 2
    assert summary["multiallelic_sites"] == 1


def test_wall_and_sfs_with_outgroup(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")

    cp = _run_cli(
        ["ld", *_inputs(toy), "--region", "chr1", "--stat", "wall", "--no-plots", "--outdir", str(tmp_path / "wall")]
    )
    assert cp.returncode == 0, cp.stderr
    header = (tmp_path / "wall" / "windows.tsv").read_text().splitlines()[0].split("\t")
    assert "B[popB]" in header and "Q[popB]" in header

    cp = _run_cli(
        [
            "sfs",
            *_inputs(toy),
            "--region",
            "chr1",
            "--populations",
            toy["populations_tsv"],
            "--outgroup",
            "popB_3",
            "--outdir",
            str(tmp_path / "sfs"),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    rows = read_windows_tsv(tmp_path / "sfs" / "windows.tsv")
    assert len(rows) == 1
    assert rows[0]["D[popA]"] != "NA"
    assert (tmp_path / "sfs" / "plots" / "H.png").exists()


def test_bad_region_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["ld", *_inputs(toy), "--region", "chr9:1-100", "--outdir", str(tmp_path / "out")])
    assert cp.returncode == 2
    assert "RegionError" in cp.stderr
    assert "chr9" in cp.stderr


def test_unknown_outgroup_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        ["sfs", *_inputs(toy), "--region", "chr1", "--outgroup", "nobody", "--outdir", str(tmp_path / "out")]
    )
    assert cp.returncode == 2
    assert "Specified outgroup nobody not found" in cp.stderr


def test_invalid_depth_window(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(
        [
            "ld",
            *_inputs(toy),
            "--region",
            "chr1",
            "--min-depth",
            "20",
            "--max-depth",
            "10",
            "--outdir",
            str(tmp_path / "out"),
        ]
    )
    assert cp.returncode == 2
    assert "ConfigurationError" in cp.stderr


def test_nucdiv_writes_pair_columns(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "nucdiv"
    cp = _run_cli(["nucdiv", *_inputs(toy), "--region", "chr1", "--min-sites", "0.5", "--outdir", str(outdir)])
    assert cp.returncode == 0, cp.stderr

    rows = read_windows_tsv(outdir / "windows.tsv")
    assert len(rows) == 1
    assert rows[0]["Pi[popA]"] != "NA"
    assert float(rows[0]["Dxy[popA-popB]"]) > 0.0
    assert int(rows[0]["ns[popA-popB]"]) > 1000
    assert (outdir / "plots" / "Pi.png").exists()
    assert (outdir / "plots" / "Dxy.png").exists()

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["analysis"] == "nucdiv"
    assert summary["read_filters"]["obs_skipped_qcfail"] == 0
