"""popbamstats: windowed population-genetic statistics straight from multi-sample BAMs.

Public API is intentionally small; most users should use the CLI:

    popbamstats ld --bam ... --ref ... --region chr1 --outdir ...
    popbamstats sfs --bam ... --ref ... --region chr1 --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.4.0"
