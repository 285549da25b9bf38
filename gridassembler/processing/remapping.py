#!/usr/bin/env python3

"""
Spatial Transform Engine

This module moves normalized fields between grids. Two modes are supported. Cropping cuts the tightest enclosing integer cell window around a geographic rectangle out of the source grid, keeping the source resolution; the window may reach past the source coverage, in which case the uncovered destination cells stay missing instead of the crop failing. Reprojection resamples a field onto an arbitrary target grid of any supported projection family by looking up, for every target cell, the fractional source coordinates stored in a cached location table and interpolating there with bilinear or nearest-neighbour weights. An interpolation whose stencil touches a missing source sample with non-zero weight yields a missing destination sample, so missing data never bleeds into partial averages. The same point sampling routine is used by the tile stitcher to fill gaps and by the hybrid pressure calculation to sample surface pressure at hybrid-level locations.

Classes:
    SpatialTransformEngine: Crops and reprojects fields using a shared location table cache.

Functions:
    compute_crop_window: Compute the integer cell window enclosing a geographic rectangle.
    interpolate_at: Interpolate a sample matrix at fractional grid coordinates.
    sample_field: Sample a field at arbitrary geographic points.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import math
from typing import Any, Optional, Sequence, Tuple

import numpy as np

from .constants import GRID_INDEX_TOLERANCE
from .data_cache import LocationTableCache, get_global_location_cache
from .geometry import Field, Grid, LonLat

VALID_METHODS = ['bilinear', 'nearest']

_EDGE_TOLERANCE = 1e-6

CropRectangle = Tuple[float, float, float, float]


def compute_crop_window(grid: Grid, bottom_left: LonLat, top_right: LonLat) -> Tuple[int, int, int, int]:
    """
    Compute the tightest integer cell window of a grid that encloses a geographic rectangle. The four corners of the rectangle are mapped into fractional grid coordinates, the smallest column and row are floored and the largest are ceiled. A tolerance of 1e-9 cells keeps rectangles whose corners lie exactly on cell centres from growing by one cell due to rounding noise. The window may start at negative offsets or extend beyond the grid.

    Parameters:
        grid (Grid): Source grid the window is expressed in.
        bottom_left (LonLat): South-west corner of the rectangle as (lon, lat).
        top_right (LonLat): North-east corner of the rectangle as (lon, lat).

    Returns:
        Tuple[int, int, int, int]: Column offset, row offset, column count and row count of the window.

    Raises:
        ValueError: If the rectangle is empty or inverted, or its corners have no finite position on the grid.
    """
    lon1, lat1 = bottom_left
    lon2, lat2 = top_right
    if lat2 < lat1:
        raise ValueError(f"Crop rectangle is inverted: top latitude {lat2} is south of bottom latitude {lat1}")

    lons = np.array([lon1, lon2, lon1, lon2], dtype=np.float64)
    lats = np.array([lat1, lat1, lat2, lat2], dtype=np.float64)
    xs, ys = grid.latlon_to_grid(lons, lats)
    if not (np.all(np.isfinite(xs)) and np.all(np.isfinite(ys))):
        raise ValueError(f"Crop rectangle {bottom_left}-{top_right} cannot be mapped onto {grid.describe()}")

    i0 = int(math.floor(float(np.min(xs)) + GRID_INDEX_TOLERANCE))
    j0 = int(math.floor(float(np.min(ys)) + GRID_INDEX_TOLERANCE))
    i1 = int(math.ceil(float(np.max(xs)) - GRID_INDEX_TOLERANCE))
    j1 = int(math.ceil(float(np.max(ys)) - GRID_INDEX_TOLERANCE))

    nx, ny = i1 - i0 + 1, j1 - j0 + 1
    if nx < 1 or ny < 1:
        raise ValueError(f"Crop rectangle {bottom_left}-{top_right} does not span any grid cell")
    return i0, j0, nx, ny


def interpolate_at(values: np.ndarray, x: Any, y: Any, method: str = 'bilinear') -> np.ndarray:
    """
    Interpolate a (ny, nx) sample matrix at fractional column and row coordinates. Points outside the matrix (beyond a small edge tolerance) are missing. Bilinear interpolation weighs the four surrounding samples and returns missing when any sample with a non-zero weight is missing; nearest interpolation takes the sample at the rounded coordinates.

    Parameters:
        values (np.ndarray): Source sample matrix with NaN for missing samples.
        x (array-like): Fractional column coordinates.
        y (array-like): Fractional row coordinates.
        method (str): 'bilinear' or 'nearest' (default: 'bilinear').

    Returns:
        np.ndarray: Interpolated samples with the shape of x.

    Raises:
        ValueError: If the interpolation method is unknown.
    """
    if method not in VALID_METHODS:
        raise ValueError(f"Invalid method '{method}'. Must be one of: {VALID_METHODS}")

    values = np.asarray(values, dtype=np.float64)
    ny, nx = values.shape
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    inside = ((x >= -_EDGE_TOLERANCE) & (x <= nx - 1 + _EDGE_TOLERANCE)
              & (y >= -_EDGE_TOLERANCE) & (y <= ny - 1 + _EDGE_TOLERANCE))
    xc = np.clip(np.where(inside, x, 0.0), 0.0, nx - 1)
    yc = np.clip(np.where(inside, y, 0.0), 0.0, ny - 1)

    if method == 'nearest':
        result = values[np.rint(yc).astype(np.intp), np.rint(xc).astype(np.intp)]
        return np.where(inside, result, np.nan)

    i0 = np.clip(np.floor(xc).astype(np.intp), 0, max(nx - 2, 0))
    j0 = np.clip(np.floor(yc).astype(np.intp), 0, max(ny - 2, 0))
    i1 = np.minimum(i0 + 1, nx - 1)
    j1 = np.minimum(j0 + 1, ny - 1)
    fx = np.where(i1 > i0, xc - i0, 0.0)
    fy = np.where(j1 > j0, yc - j0, 0.0)

    result = np.zeros(x.shape, dtype=np.float64)
    touched_missing = np.zeros(x.shape, dtype=bool)
    for jj, ii, weight in ((j0, i0, (1.0 - fx) * (1.0 - fy)),
                           (j0, i1, fx * (1.0 - fy)),
                           (j1, i0, (1.0 - fx) * fy),
                           (j1, i1, fx * fy)):
        sample = values[jj, ii]
        used = weight > 0.0
        sample_missing = np.isnan(sample)
        touched_missing |= used & sample_missing
        result += np.where(used & ~sample_missing, sample * weight, 0.0)

    return np.where(inside & ~touched_missing, result, np.nan)


def sample_field(field: Field, lons: Any, lats: Any, method: str = 'bilinear') -> np.ndarray:
    """Sample a field at geographic points, returning NaN where the field does not cover them."""
    x, y = field.grid.latlon_to_grid(lons, lats)
    return interpolate_at(field.values, x, y, method)


class SpatialTransformEngine:
    """
    Crop and reproject fields. The engine holds the interpolation method and the location table cache; when no cache is given the process-wide cache is used so every engine of a run shares the same tables. Instances are safe to use from several threads at once.
    """

    def __init__(self, interpolation: str = 'bilinear', cache: Optional[LocationTableCache] = None,
                 verbose: bool = False) -> None:
        """
        Configure the transform engine with the default interpolation method and the location table cache. Validation of the method name happens here so a misconfigured run fails before any record is processed.

        Parameters:
            interpolation (str): Default interpolation method, 'bilinear' or 'nearest' (default: 'bilinear').
            cache (Optional[LocationTableCache]): Cache of location tables (default: None uses the process-wide cache).
            verbose (bool): Print progress messages (default: False).

        Returns:
            None

        Raises:
            ValueError: If the interpolation method is unknown.
        """
        if interpolation not in VALID_METHODS:
            raise ValueError(f"Invalid method '{interpolation}'. Must be one of: {VALID_METHODS}")
        self.interpolation = interpolation
        self._cache = cache
        self.verbose = verbose

    @property
    def cache(self) -> LocationTableCache:
        if self._cache is None:
            return get_global_location_cache()
        return self._cache

    def crop(self, field: Field, bottom_left: LonLat, top_right: LonLat) -> Field:
        """
        Crop a field to the integer cell window enclosing a geographic rectangle. The destination grid keeps the source resolution and projection; samples of the overlap between the window and the source are copied and every other destination cell is missing.

        Parameters:
            field (Field): Source field.
            bottom_left (LonLat): South-west corner of the crop rectangle as (lon, lat).
            top_right (LonLat): North-east corner of the crop rectangle as (lon, lat).

        Returns:
            Field: Cropped field on the window grid.
        """
        source = field.grid
        i0, j0, nx, ny = compute_crop_window(source, bottom_left, top_right)
        target = source.subgrid(i0, j0, nx, ny)
        result = np.full((ny, nx), np.nan, dtype=np.float64)

        src_i0, src_i1 = max(i0, 0), min(i0 + nx, source.nx)
        src_j0, src_j1 = max(j0, 0), min(j0 + ny, source.ny)
        if src_i0 < src_i1 and src_j0 < src_j1:
            result[src_j0 - j0:src_j1 - j0, src_i0 - i0:src_i1 - i0] = field.values[src_j0:src_j1, src_i0:src_i1]

        if self.verbose:
            print(f"Cropped {source.describe()} to window ({i0},{j0}) {nx}x{ny}")
        return Field(target, result)

    def reproject(self, field: Field, target: Grid, method: Optional[str] = None) -> Field:
        """
        Resample a field onto a target grid. The location table for the (source, target) pair is taken from the cache, built on first use, and the configured interpolation is applied at every target cell. The returned matrix is always freshly allocated.

        Parameters:
            field (Field): Source field.
            target (Grid): Grid to resample onto.
            method (Optional[str]): Interpolation method overriding the engine default (default: None).

        Returns:
            Field: Field on the target grid with exactly target.ny rows and target.nx columns.
        """
        if field.grid == target:
            return field.copy()

        table = self.cache.get_table(field.grid, target)
        values = interpolate_at(field.values, table.x, table.y, method or self.interpolation)

        if self.verbose:
            print(f"Reprojected {field.grid.describe()} onto {target.describe()}")
        return Field(target, values)

    def transform(self, field: Field, crop: Optional[Sequence[float]] = None,
                  target: Optional[Grid] = None, method: Optional[str] = None) -> Field:
        """
        Apply the configured spatial transforms to a field: a crop to a (lon1, lat1, lon2, lat2) rectangle first, then a reprojection onto a target grid. Either step is skipped when not requested.

        Parameters:
            field (Field): Normalized source field.
            crop (Optional[Sequence[float]]): Crop rectangle as lon1, lat1, lon2, lat2 (default: None).
            target (Optional[Grid]): Target grid for reprojection (default: None).
            method (Optional[str]): Interpolation method overriding the engine default (default: None).

        Returns:
            Field: Transformed field, or the input field when no transform applies.
        """
        result = field
        if crop is not None:
            lon1, lat1, lon2, lat2 = crop
            result = self.crop(result, (lon1, lat1), (lon2, lat2))
        if target is not None:
            result = self.reproject(result, target, method)
        return result
