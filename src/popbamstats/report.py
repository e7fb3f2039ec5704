from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, TextIO

from jinja2 import Template

from .models import WindowResult
from .utils import format_stat, open_textmaybe_gzip

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>popbamstats {{ analysis }} report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 6px 8px; }
    th { background: #f2f2f2; text-align: left; }
    td.num { text-align: right; font-family: monospace; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>popbamstats {{ analysis }} report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>BAM</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Reference</th><td><code>{{ ref_path }}</code></td></tr>
      <tr><th>Region</th><td><code>{{ region }}</code></td></tr>
      <tr><th>Samples</th><td>{{ n_samples }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Parameters</h3>
    <table>
      {% for key, value in params.items() %}
      <tr><th>{{ key }}</th><td>{{ value }}</td></tr>
      {% endfor %}
    </table>
  </div>
</div>

<h2>Populations</h2>
<table>
  <tr><th>Population</th><th>Samples</th></tr>
  {% for pop in populations %}
  <tr><td>{{ pop.name }}</td><td>{{ pop.members | join(", ") }}</td></tr>
  {% endfor %}
</table>

<h2>Windows</h2>
<table>
  <tr>
    <th>Window</th><th>Aligned</th><th>Segregating</th><th>Multi-allelic</th>
    {% for pop in populations %}{% for label in labels %}<th>{{ label }}[{{ pop.name }}]</th>{% endfor %}{% endfor %}
    {% for pair in pairs %}{% for label in pair_labels %}<th>{{ label }}[{{ pair }}]</th>{% endfor %}{% endfor %}
  </tr>
  {% for row in rows %}
  <tr>
    <td><code>{{ row.coord }}</code></td>
    <td class="num">{{ row.num_sites }}</td>
    <td class="num">{{ row.segsites }}</td>
    <td class="num">{{ row.multiallelic }}</td>
    {% for value in row['values'] %}<td class="num">{{ value }}</td>{% endfor %}
  </tr>
  {% endfor %}
</table>

<h2>Plots</h2>
<div class="grid">
  {% for name, path in plots.items() %}
  <div class="card">
    <h3>{{ name }}</h3>
    <img src="{{ path }}" alt="{{ name }}">
  </div>
  {% endfor %}
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ windows_tsv }}</code> (per-window statistics)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<h2>Interpretation notes</h2>
<ul>
  <li><code>NA</code> marks a statistic that was not computed (too few SNPs or aligned sites), not a value of zero.</li>
  <li>Sites with more than one derived base violate the infinite-sites model and are excluded.</li>
  {% if not heterozygotes %}
  <li>Heterozygous calls were collapsed to homozygotes (haploid/pooled model).</li>
  {% endif %}
</ul>

<hr>
<p class="small">popbamstats {{ version }}</p>
</body>
</html>"""
)


def window_columns(
    populations: Sequence[str],
    labels: Sequence[str],
    pairs: Sequence[str] = (),
    pair_labels: Sequence[str] = (),
) -> List[str]:
    cols = ["chrom", "start", "end", "aligned_sites", "segsites", "multiallelic"]
    for pop in populations:
        cols += [f"ns[{pop}]", f"S[{pop}]"]
        cols += [f"{label}[{pop}]" for label in labels]
    for pair in pairs:
        cols.append(f"ns[{pair}]")
        cols += [f"{label}[{pair}]" for label in pair_labels]
    return cols


def window_row(
    res: WindowResult,
    populations: Sequence[str],
    labels: Sequence[str],
    pairs: Sequence[str] = (),
    pair_labels: Sequence[str] = (),
) -> List[str]:
    # start is 1-based inclusive, end inclusive
    row = [res.chrom, str(res.beg + 1), str(res.end), str(res.num_sites), str(res.segsites), str(res.multiallelic)]
    for pop in populations:
        row += [str(res.pop_sites.get(pop, 0)), str(res.num_snps.get(pop, 0))]
        values = res.stats.get(pop, {})
        row += [format_stat(values.get(label)) for label in labels]
    for pair in pairs:
        row.append(str(res.pair_sites.get(pair, 0)))
        values = res.pair_stats.get(pair, {})
        row += [format_stat(values.get(label)) for label in pair_labels]
    return row


def write_windows_tsv(
    fh: TextIO,
    results: Iterable[WindowResult],
    populations: Sequence[str],
    labels: Sequence[str],
    pairs: Sequence[str] = (),
    pair_labels: Sequence[str] = (),
) -> List[WindowResult]:
    """Write one row per window (``NA`` for undefined values) and return the results seen."""
    fh.write("\t".join(window_columns(populations, labels, pairs, pair_labels)) + "\n")
    seen: List[WindowResult] = []
    for res in results:
        fh.write("\t".join(window_row(res, populations, labels, pairs, pair_labels)) + "\n")
        seen.append(res)
    return seen


def read_windows_tsv(path: str | Path) -> List[Dict[str, str]]:
    with open_textmaybe_gzip(path, "rt") as fh:
        header = fh.readline().rstrip("\n").split("\t")
        return [dict(zip(header, line.rstrip("\n").split("\t"))) for line in fh if line.strip()]


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    results: Sequence[WindowResult],
    populations: Sequence[Dict[str, Any]],
    labels: Sequence[str],
    plots: Dict[str, str],
    pairs: Sequence[str] = (),
    pair_labels: Sequence[str] = (),
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    pop_names = [p["name"] for p in populations]
    rows = []
    for res in results:
        rows.append(
            {
                "coord": f"{res.chrom}:{res.beg + 1}-{res.end}",
                "num_sites": res.num_sites,
                "segsites": res.segsites,
                "multiallelic": res.multiallelic,
                "values": [
                    format_stat(res.stats.get(pop, {}).get(label))
                    for pop in pop_names
                    for label in labels
                ]
                + [
                    format_stat(res.pair_stats.get(pair, {}).get(label))
                    for pair in pairs
                    for label in pair_labels
                ],
            }
        )

    params = run.get("params", {})
    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        analysis=run.get("analysis", ""),
        bam_path=run.get("bam_path"),
        ref_path=run.get("ref_path"),
        region=run.get("region"),
        n_samples=run.get("n_samples"),
        params=params,
        heterozygotes=bool(params.get("heterozygotes", False)),
        populations=populations,
        labels=labels,
        pairs=pairs,
        pair_labels=pair_labels,
        rows=rows,
        plots=plots,
        windows_tsv=run.get("windows_tsv"),
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
