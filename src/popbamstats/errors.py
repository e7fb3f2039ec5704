"""Exception types raised by popbamstats.

Data problems at individual sites (e.g. multi-allelic columns) are not errors;
they are reported through :class:`popbamstats.models.SiteClass`.
"""

from __future__ import annotations


class PopbamError(Exception):
    """Base exception for popbamstats errors."""


class ConfigurationError(PopbamError, ValueError):
    """Raised when analysis options are invalid or required inputs are missing."""


class RegionError(PopbamError, ValueError):
    """Raised when a region string cannot be resolved against the BAM header."""


class InputFileError(PopbamError):
    """Raised when an input file is missing or lacks a required index."""
