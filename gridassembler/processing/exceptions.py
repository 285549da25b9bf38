#!/usr/bin/env python3

"""
Grid Assembly Error Taxonomy

This module defines the exception hierarchy shared by every stage of the grid assembly pipeline. Errors fall into three groups that the batch driver treats differently: unsupported input that rejects a single record and lets the batch continue, configuration conflicts in the parameter remap table that abort the whole run, and capacity violations raised when an assembled dataset would exceed the configured memory ceiling. Policy rejections and degenerate results (nothing left after filtering) are not represented here since they are reported as rejection counts and empty results rather than exceptions. The specific exception classes also inherit from the matching built-in exception type so callers written against ValueError or RuntimeError keep working.

Classes:
    GridAssemblyError: Base class of all pipeline errors.
    UnsupportedInputError: A record uses a geometry, scanning mode or layout the pipeline cannot handle.
    RemapConflictError: The parameter remap table produces colliding parameter identifiers.
    CapacityExceededError: A dataset allocation would exceed the configured size ceiling.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from typing import Dict, Optional


class GridAssemblyError(Exception):
    """Base class for all grid assembly errors."""


class UnsupportedInputError(GridAssemblyError, ValueError):
    """Raised when a single record cannot be converted (fatal for that record only)."""


class RemapConflictError(GridAssemblyError, RuntimeError):
    """Raised when one parameter id is both a remap target and an unmodified original."""


class CapacityExceededError(GridAssemblyError, MemoryError):
    """
    Raised when the projected size of a dataset exceeds the configured maximum. The itemized axis counts are kept in the sizes attribute so callers can decide which dimension to reduce.
    """

    def __init__(self, message: str, sizes: Optional[Dict[str, int]] = None) -> None:
        self.sizes = dict(sizes or {})
        super().__init__(message)
