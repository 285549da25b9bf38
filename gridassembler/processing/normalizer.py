#!/usr/bin/env python3

"""
Value Field Normalizer

This module converts the raw one-dimensional sample array of a decoded grid record into a two-dimensional Field in the canonical orientation used by the rest of the pipeline, where row 0 is the southernmost row and column 0 is the westernmost column. The scanning mode flags of the record (GRIB flag table 3.4: negative i direction, positive j direction, j-consecutive points and alternating row direction) select the reshaping, transposition and flips applied to the samples, and any other flag bit fails fast instead of silently producing a mis-oriented field. Samples equal to the record's missing-value sentinel, or within a small relative tolerance of it since floating sentinels may carry rounding noise, are replaced by NaN. Reduced grids with a variable number of points per row are rebuilt row by row and each row is linearly resampled to the declared row length. When the geometry resolver applied a dateline fix the left and right halves of the matrix are swapped after orientation fixing so the samples line up with the shifted longitude span.

Classes:
    ValueFieldNormalizer: Turns raw sample arrays into canonically oriented Field matrices.

Functions:
    interpolate_row: Linearly resample one row of samples to a new length.
    swap_halves: Swap the left and right halves of a matrix's columns.
    mask_sentinel: Replace sentinel-valued samples with NaN.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import math
from typing import Optional, Sequence

import numpy as np

from .constants import (
    SCAN_ALTERNATE_ROWS, SCAN_I_NEGATIVE, SCAN_J_CONSECUTIVE, SCAN_J_POSITIVE,
    SCAN_MODE_NOT_IMPLEMENTED_MSG, SENTINEL_RELATIVE_TOLERANCE, SUPPORTED_SCAN_BITS,
)
from .exceptions import UnsupportedInputError
from .geometry import Field
from .records import DecodedRecord
from .resolver import ResolvedGeometry


def interpolate_row(source: Sequence[float], length: int) -> np.ndarray:
    """
    Linearly resample one row of samples to a new length. The ratio (len(source) - 1) / (length - 1) maps each destination index to a fractional source position and the value is interpolated between the two neighbouring source samples; the last destination sample is always the last source sample. Rows of equal length are copied unchanged. A missing neighbour makes the interpolated sample missing.

    Parameters:
        source (Sequence[float]): Samples of the row at native resolution.
        length (int): Number of samples wanted in the resampled row.

    Returns:
        np.ndarray: Resampled row of the requested length.

    Raises:
        UnsupportedInputError: If the source row has no samples.
    """
    src = np.asarray(source, dtype=np.float64)
    if src.size == 0:
        raise UnsupportedInputError("Reduced grid row has zero length")
    if length <= 0:
        raise UnsupportedInputError(f"Invalid destination row length {length}")

    if src.size == length:
        return src.copy()
    if length == 1:
        return src[-1:].copy()
    if src.size == 1:
        return np.full(length, src[0])

    ratio = (src.size - 1) / (length - 1)
    result = np.empty(length, dtype=np.float64)
    for i in range(length - 1):
        position = ratio * i
        lower = int(position)
        fraction = position - math.floor(position)
        if fraction == 0.0:
            result[i] = src[lower]
            continue
        upper = min(lower + 1, src.size - 1)
        result[i] = src[lower] + (src[upper] - src[lower]) * fraction
    result[-1] = src[-1]
    return result


def swap_halves(matrix: np.ndarray) -> np.ndarray:
    """
    Swap column i with column i + nx//2 for every i below nx//2. This rotates a global field by 180 degrees in longitude; for an odd column count the last column stays in place, which keeps the operation its own inverse.

    Parameters:
        matrix (np.ndarray): Two-dimensional (ny, nx) sample matrix.

    Returns:
        np.ndarray: New matrix with the halves swapped.
    """
    result = np.array(matrix, dtype=np.float64, copy=True)
    half = result.shape[1] // 2
    if half == 0:
        return result
    left = result[:, :half].copy()
    result[:, :half] = result[:, half:2 * half]
    result[:, half:2 * half] = left
    return result


def mask_sentinel(values: np.ndarray, sentinel: Optional[float]) -> np.ndarray:
    """
    Replace samples equal to the missing-value sentinel with NaN. Equality is exact or within a relative tolerance of 1e-7, which covers sentinels such as 9.999e20 that arrive with rounding noise.

    Parameters:
        values (np.ndarray): Raw samples.
        sentinel (Optional[float]): Missing-value sentinel of the record, None or NaN to skip masking.

    Returns:
        np.ndarray: Copy of the samples with missing values as NaN.
    """
    result = np.array(values, dtype=np.float64, copy=True)
    if sentinel is None or np.isnan(sentinel):
        return result
    tolerance = abs(sentinel) * SENTINEL_RELATIVE_TOLERANCE
    with np.errstate(invalid='ignore'):
        missing = (result == sentinel) | (np.abs(result - sentinel) <= tolerance)
    result[missing] = np.nan
    return result


class ValueFieldNormalizer:
    """
    Normalize raw record samples into canonically oriented Field matrices. The normalizer is stateless apart from its verbosity flag and can be shared between parallel workers.
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    @staticmethod
    def check_scanning_mode(scanning_mode: int) -> None:
        """Raise UnsupportedInputError when the scanning mode uses flag bits that are not implemented."""
        if scanning_mode < 0 or scanning_mode & ~SUPPORTED_SCAN_BITS:
            raise UnsupportedInputError(SCAN_MODE_NOT_IMPLEMENTED_MSG.format(mode=scanning_mode))

    def orient(self, values: np.ndarray, nx: int, ny: int, scanning_mode: int) -> np.ndarray:
        """
        Reshape a scan-ordered sample array into a (ny, nx) matrix with row 0 south and column 0 west. With j-consecutive scanning the samples run down columns first and the matrix is built transposed; alternating row scanning reverses every odd row (or column) in scan order; negative i scanning flips columns and non-positive j scanning flips rows.

        Parameters:
            values (np.ndarray): Samples in scan order, length nx*ny.
            nx (int): Number of columns.
            ny (int): Number of rows.
            scanning_mode (int): GRIB scanning mode flags.

        Returns:
            np.ndarray: Matrix in canonical orientation.

        Raises:
            UnsupportedInputError: If the scanning mode is not implemented or the sample count does not match.
        """
        self.check_scanning_mode(scanning_mode)
        values = np.asarray(values, dtype=np.float64)
        if values.size != nx * ny:
            raise UnsupportedInputError(f"Sample count {values.size} does not match grid size {nx}x{ny}")

        if scanning_mode & SCAN_J_CONSECUTIVE:
            matrix = values.reshape(nx, ny).T.copy()
            if scanning_mode & SCAN_ALTERNATE_ROWS:
                matrix[:, 1::2] = matrix[::-1, 1::2]
        else:
            matrix = values.reshape(ny, nx).copy()
            if scanning_mode & SCAN_ALTERNATE_ROWS:
                matrix[1::2, :] = matrix[1::2, ::-1]

        if scanning_mode & SCAN_I_NEGATIVE:
            matrix = matrix[:, ::-1]
        if not scanning_mode & SCAN_J_POSITIVE:
            matrix = matrix[::-1, :]
        return np.ascontiguousarray(matrix)

    def rebuild_reduced(self, values: np.ndarray, row_lengths: Sequence[int], nx: int) -> np.ndarray:
        """
        Rebuild a reduced grid into a flat scan-ordered array of regular rows of length nx. Each native row is cut from the sample stream by its own length and linearly resampled to nx.

        Parameters:
            values (np.ndarray): Samples of all rows concatenated in scan order.
            row_lengths (Sequence[int]): Native number of samples of every row.
            nx (int): Declared row length of the regular grid.

        Returns:
            np.ndarray: Flat array of len(row_lengths) * nx samples.

        Raises:
            UnsupportedInputError: If a row is empty or the sample count does not match the row lengths.
        """
        total = int(sum(row_lengths))
        if total != values.size:
            raise UnsupportedInputError(f"Reduced grid expects {total} samples but record has {values.size}")

        rows = []
        offset = 0
        for length in row_lengths:
            rows.append(interpolate_row(values[offset:offset + length], nx))
            offset += length
        return np.concatenate(rows)

    def normalize(self, record: DecodedRecord, resolved: ResolvedGeometry) -> Field:
        """
        Normalize the samples of one record into a Field on its resolved grid. Sentinel masking happens first so interpolation of reduced rows never blends a sentinel into real values, then reduced rows are rebuilt, the matrix is oriented, and finally the dateline half swap is applied when the resolver requested it.

        Parameters:
            record (DecodedRecord): Decoded record providing samples, sentinel and scanning mode.
            resolved (ResolvedGeometry): Grid and normalization hints from the geometry resolver.

        Returns:
            Field: Canonically oriented field with missing samples as NaN.

        Raises:
            UnsupportedInputError: If the scanning mode, reduced layout or sample count is unsupported.
        """
        grid = resolved.grid
        values = mask_sentinel(record.values, record.missing_value)

        if resolved.reduced:
            if record.scanning_mode & SCAN_J_CONSECUTIVE:
                raise UnsupportedInputError(SCAN_MODE_NOT_IMPLEMENTED_MSG.format(mode=record.scanning_mode))
            values = self.rebuild_reduced(values, resolved.row_lengths, grid.nx)

        matrix = self.orient(values, grid.nx, grid.ny, record.scanning_mode)
        if resolved.swap_halves:
            matrix = swap_halves(matrix)

        if self.verbose:
            print(f"Normalized record #{record.index}: {grid.describe()}, "
                  f"{int(np.count_nonzero(np.isnan(matrix)))} missing samples")
        return Field(grid, matrix)
