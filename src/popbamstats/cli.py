from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .errmod import build_coefficients
from .ld import LDStatistic
from .models import AnalysisParams, PopulationSet
from .pileup import PileupSource
from .plotting import plot_site_counts, plot_statistic
from .report import render_report, write_windows_tsv
from .samples import load_samples
from .toy_data import make_toy_data
from .utils import ensure_outdir, open_textmaybe_gzip, write_json
from .validation import check_bam_index, check_fasta_index, parse_region, validate_params
from .window import analyze_region, population_pairs

_STAT_CHOICES = {s.value: s for s in LDStatistic}

_LABELS = {"sfs": ["D", "H"], "nucdiv": ["Pi"]}
_PAIR_LABELS = {"nucdiv": ["Dxy"]}
_STAT_NAMES = {"sfs": "tajima_d,fay_wu_h", "nucdiv": "pi,dxy"}


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None and log_path.exists():
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--bam", required=True, type=_path_exists, help="Multi-sample BAM (sorted, indexed).")
    p.add_argument("--ref", required=True, type=_path_exists, help="Reference FASTA (faidx indexed).")
    p.add_argument(
        "--region",
        required=True,
        help="Region to analyse: chrom, chrom:beg or chrom:beg-end (1-based, inclusive).",
    )
    p.add_argument("--outdir", required=True, help="Output directory.")
    p.add_argument(
        "--populations",
        type=_path_exists,
        default=None,
        help="TSV of 'sample<TAB>population' (default: PO tags of @RG header lines).",
    )
    p.add_argument(
        "-w",
        "--window-size",
        type=int,
        default=None,
        help="Sliding window size in kb (default: whole region as one window).",
    )

    # Call filters
    p.add_argument("--min-depth", type=int, default=3, help="Minimum read depth per sample.")
    p.add_argument("--max-depth", type=int, default=255, help="Maximum read depth per sample.")
    p.add_argument("--min-rms", type=int, default=25, help="Minimum RMS mapping quality per sample.")
    p.add_argument("--min-snpq", type=int, default=25, help="Minimum SNP quality of a derived call.")
    p.add_argument("--min-mapq", type=int, default=13, help="Minimum read mapping quality.")
    p.add_argument("--min-baseq", type=int, default=13, help="Minimum base quality.")
    p.add_argument(
        "--heterozygotes",
        action="store_true",
        help="Keep heterozygous calls instead of collapsing them to homozygotes.",
    )
    p.add_argument("--seed", type=int, default=None, help="Seed for downsampling of deep columns.")

    # Read filters
    p.add_argument("--keep-duplicates", action="store_true", help="Do not skip duplicate reads.")
    p.add_argument("--include-secondary", action="store_true", help="Include secondary alignments.")
    p.add_argument(
        "--include-supplementary", action="store_true", help="Include supplementary alignments."
    )

    p.add_argument("--no-plots", action="store_true", help="Skip PNG plots and the HTML report.")
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="popbamstats",
        description=(
            "popbamstats: windowed linkage-disequilibrium, site-frequency-spectrum and "
            "nucleotide-diversity statistics computed directly from multi-sample BAMs."
        ),
    )
    p.add_argument("--version", action="version", version=f"popbamstats {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny reference and multi-sample BAM for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--seed", type=int, default=7, help="Random seed.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # ld
    # -----------------
    ld = sub.add_parser(
        "ld",
        help="Linkage disequilibrium per window: Kelly's ZnS, omega-max or Wall's B/Q.",
    )
    _add_common_args(ld)
    ld.add_argument(
        "--stat",
        choices=sorted(_STAT_CHOICES),
        default="zns",
        help="LD statistic (default: zns).",
    )
    ld.add_argument(
        "--exclude-singletons",
        action="store_true",
        help="Exclude singletons from ZnS/omega calculations.",
    )
    ld.add_argument(
        "--min-snps",
        type=int,
        default=10,
        help="Minimum number of SNPs in a population for a window to be reported.",
    )
    ld.add_argument(
        "--min-pop",
        type=float,
        default=1.0,
        help="Minimum proportion of a population covered at a site.",
    )

    # -----------------
    # sfs
    # -----------------
    sfs = sub.add_parser(
        "sfs",
        help="Site frequency spectrum per window: Tajima's D and Fay & Wu's H.",
    )
    _add_common_args(sfs)
    sfs.add_argument(
        "--outgroup",
        default=None,
        help="Sample name of the outgroup (default: reference allele is ancestral).",
    )
    sfs.add_argument(
        "--min-sites",
        type=float,
        default=0.5,
        help="Minimum proportion of aligned sites in a window.",
    )
    sfs.add_argument(
        "--min-pop",
        type=float,
        default=1.0,
        help="Minimum proportion of a population covered at a site.",
    )

    # -----------------
    # nucdiv
    # -----------------
    nd = sub.add_parser(
        "nucdiv",
        help="Nucleotide diversity per window: pi within and Dxy between populations.",
    )
    _add_common_args(nd)
    nd.add_argument(
        "--min-sites",
        type=float,
        default=0.5,
        help="Minimum proportion of aligned sites in a window.",
    )
    nd.add_argument(
        "--min-pop",
        type=float,
        default=1.0,
        help="Minimum proportion of a population covered at a site.",
    )

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "popbamstats quickstart (copy/paste):",
        "",
        "1) Kelly's ZnS in 10 kb windows:",
        "   popbamstats ld \\",
        "     --bam samples.bam \\",
        "     --ref ref.fa \\",
        "     --region chr1:1-1000000 \\",
        "     --window-size 10 \\",
        "     --outdir ld_out/",
        "   Outputs: ld_out/windows.tsv, ld_out/summary.json, ld_out/report.html",
        "",
        "2) Omega-max or Wall's B/Q: add --stat omega_max or --stat wall",
        "",
        "3) Tajima's D and Fay & Wu's H with an outgroup sample:",
        "   popbamstats sfs \\",
        "     --bam samples.bam \\",
        "     --ref ref.fa \\",
        "     --region chr1 \\",
        "     --window-size 10 \\",
        "     --outgroup outgroup_sample \\",
        "     --outdir sfs_out/",
        "",
        "4) Nucleotide diversity (pi) and Dxy between populations:",
        "   popbamstats nucdiv --bam samples.bam --ref ref.fa --region chr1 -w 10 --outdir nd_out/",
        "",
        "Tip: try it on synthetic data first: popbamstats make-toy-data --outdir toy/",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir, seed=int(args.seed))
    print(json.dumps(summary, indent=2))
    return 0


def _params_from_args(args: argparse.Namespace, analysis: str) -> AnalysisParams:
    window_size = None
    if args.window_size is not None:
        window_size = int(args.window_size) * 1000
    if analysis == "ld":
        return AnalysisParams(
            min_rms=int(args.min_rms),
            min_depth=int(args.min_depth),
            max_depth=int(args.max_depth),
            min_snpq=int(args.min_snpq),
            min_mapq=int(args.min_mapq),
            min_baseq=int(args.min_baseq),
            min_freq=2 if args.exclude_singletons else 1,
            min_snps=int(args.min_snps),
            min_pop=float(args.min_pop),
            heterozygotes=bool(args.heterozygotes),
            window_size=window_size,
            seed=args.seed,
        )
    return AnalysisParams(
        min_rms=int(args.min_rms),
        min_depth=int(args.min_depth),
        max_depth=int(args.max_depth),
        min_snpq=int(args.min_snpq),
        min_mapq=int(args.min_mapq),
        min_baseq=int(args.min_baseq),
        min_sites=float(args.min_sites),
        min_pop=float(args.min_pop),
        heterozygotes=bool(args.heterozygotes),
        outgroup=getattr(args, "outgroup", None),
        window_size=window_size,
        seed=args.seed,
    )


def _population_table(populations: PopulationSet) -> List[Dict[str, Any]]:
    return [
        {"name": pop.name, "members": [populations.samples[i].name for i in pop.samples]}
        for pop in populations.populations
    ]


def cmd_analyze(args: argparse.Namespace, analysis: str) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, f"{analysis}.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("popbamstats")
    logger.info("popbamstats %s", __version__)

    try:
        t0 = time.time()
        check_bam_index(args.bam)
        check_fasta_index(args.ref)

        params = _params_from_args(args, analysis)
        validate_params(params)
        statistic = _STAT_CHOICES[args.stat] if analysis == "ld" else None
        labels = list(statistic.labels) if statistic is not None else _LABELS[analysis]
        pair_labels = _PAIR_LABELS.get(analysis, [])

        populations, read_groups = load_samples(args.bam, population_file=args.populations)

        with PileupSource(
            args.bam,
            args.ref,
            read_groups,
            skip_duplicates=not bool(args.keep_duplicates),
            include_secondary=bool(args.include_secondary),
            include_supplementary=bool(args.include_supplementary),
        ) as source:
            chrom, beg, end = parse_region(args.region, source.contigs())

            if args.dry_run:
                print("Dry-run: inputs look OK.")
                print(f"Samples: {populations.n_samples}")
                for pop in _population_table(populations):
                    print(f"  {pop['name']}: {', '.join(pop['members'])}")
                print(f"Region: {chrom}:{beg + 1}-{end}")
                print("Planned outputs:")
                print(f"  windows.tsv -> {outdir / 'windows.tsv'}")
                print(f"  summary.json -> {outdir / 'summary.json'}")
                if not args.no_plots:
                    print(f"  report.html -> {outdir / 'report.html'}")
                return 0

            outdir = ensure_outdir(outdir)
            coeffs = build_coefficients(params.depcorr)
            pop_names = [p.name for p in populations.populations]
            pairs = population_pairs(populations) if pair_labels else []

            windows_tsv = outdir / "windows.tsv"
            with open_textmaybe_gzip(windows_tsv, "wt") as fh:
                results = write_windows_tsv(
                    fh,
                    analyze_region(
                        source,
                        chrom,
                        beg,
                        end,
                        populations,
                        params,
                        analysis=analysis,
                        statistic=statistic or LDStatistic.ZNS,
                        coeffs=coeffs,
                        progress=True,
                    ),
                    pop_names,
                    labels,
                    pairs,
                    pair_labels,
                )
            read_counts = dict(source.counts)

        run: Dict[str, Any] = {
            "analysis": analysis,
            "statistic": statistic.value if statistic is not None else _STAT_NAMES[analysis],
            "bam_path": str(args.bam),
            "ref_path": str(args.ref),
            "region": f"{chrom}:{beg + 1}-{end}",
            "n_samples": populations.n_samples,
            "populations": _population_table(populations),
            "params": asdict(params),
            "windows": len(results),
            "windows_tsv": str(windows_tsv),
            "aligned_sites": sum(r.num_sites for r in results),
            "segregating_sites": sum(r.segsites for r in results),
            "multiallelic_sites": sum(r.multiallelic for r in results),
            "read_filters": read_counts,
            "runtime_seconds": float(time.time() - t0),
        }
        write_json(outdir / "summary.json", run)

        if not args.no_plots:
            plots_dir = outdir / "plots"
            plots_dir.mkdir(parents=True, exist_ok=True)
            plots: Dict[str, str] = {}
            for label in labels:
                png = plots_dir / f"{label}.png"
                plot_statistic(results=results, label=label, populations=pop_names, out_png=png)
                plots[label] = str(Path("plots") / png.name)
            for label in pair_labels:
                png = plots_dir / f"{label}.png"
                plot_statistic(results=results, label=label, populations=pairs, out_png=png, between=True)
                plots[label] = str(Path("plots") / png.name)
            sites_png = plots_dir / "sites.png"
            plot_site_counts(results=results, out_png=sites_png)
            plots["Sites"] = str(Path("plots") / sites_png.name)

            report_path = render_report(
                outdir=outdir,
                version=__version__,
                run=run,
                results=results,
                populations=run["populations"],
                labels=labels,
                plots=plots,
                pairs=pairs,
                pair_labels=pair_labels,
            )
            print(str(report_path))
        else:
            print(str(windows_tsv))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "ld":
        return cmd_analyze(args, "ld")
    if args.cmd == "sfs":
        return cmd_analyze(args, "sfs")
    if args.cmd == "nucdiv":
        return cmd_analyze(args, "nucdiv")

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
