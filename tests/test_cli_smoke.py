import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "popbamstats", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "popbamstats" in cp.stdout.lower()
    for cmd in ("ld", "sfs", "nucdiv", "make-toy-data", "quickstart"):
        assert cmd in cp.stdout


def test_subcommand_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "popbamstats", "ld", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "--stat" in cp.stdout
    assert "--exclude-singletons" in cp.stdout
