"""Exceptions raised by landfrag."""

from __future__ import annotations


class InvalidArgument(ValueError):
    """A classifier option is malformed (window size, tie-break policy, ...)."""


class GrassExportError(RuntimeError):
    """Transfer of a layer into the active GRASS session failed."""
