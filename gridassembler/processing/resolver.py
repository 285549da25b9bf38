#!/usr/bin/env python3

"""
Grid Geometry Resolver

This module turns the raw geometry keys of a decoded grid record into a Grid from the geometry model. The resolver dispatches on the record's grid type tag to one handler per projection family and applies the sign and ordering conventions each family uses on the wire. Regular and rotated latitude/longitude grids take their corners directly, with longitude normalization that handles negative i-scanning, corners beyond 180 degrees and grids crossing the antimeridian, plus an optional dateline fix that turns a global 0..360 span into -180..180 (atlantic) or the reverse (pacific) and tells the normalizer to swap the field halves accordingly. Mercator, polar stereographic and Lambert conformal grids start from the first scanned point and the grid spacing in metres and build a world box oriented by the scanning bits; a south pole projection centre is rejected immediately. Missing keys and unknown families raise UnsupportedInputError so the batch driver can count the rejected record and continue. The resolver also owns the optional target grid overrides and picks the one that applies to a record's level type. Resolution is a pure function of the record and the resolver settings.

Classes:
    ResolvedGeometry: Result of resolving one record (grid plus normalization hints).
    GridGeometryResolver: Resolves decoded records into Grid instances.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import (
    DEFAULT_EARTH_RADIUS, FAILED_TO_EXTRACT_MSG, LEVEL_HYBRID, LEVEL_PRESSURE, MISSING_LONG,
    PROJECTION_CENTRE_SOUTH_POLE, PROJECTION_NOT_IMPLEMENTED_MSG, SCAN_I_NEGATIVE, SCAN_J_POSITIVE,
)
from .exceptions import UnsupportedInputError
from .geometry import (
    Grid, LambertConformalProjection, LatLonProjection, MercatorProjection,
    PolarStereographicProjection, RotatedLatLonProjection,
)
from .records import DecodedRecord, MessageFields

DATELINE_FIX_MODES = ('none', 'atlantic', 'pacific')

GRID_TYPE_FAMILIES = {
    'regular_ll': 'latlon',
    'reduced_ll': 'latlon',
    'latlon': 'latlon',
    'rotated_ll': 'rotated_latlon',
    'rotated_latlon': 'rotated_latlon',
    'mercator': 'mercator',
    'polar_stereographic': 'polar_stereographic',
    'lambert': 'lambert',
}


def _check_counts(nx: int, ny: int, family: str) -> None:
    if nx < 1 or ny < 1:
        raise UnsupportedInputError(f"Grid size {nx}x{ny} of '{family}' projection has no samples")


@dataclass(frozen=True)
class ResolvedGeometry:
    """
    Grid of one record plus the hints the field normalizer needs: whether the dateline fix requires a left/right half swap of the samples and, for reduced grids, the native length of every row.
    """
    grid: Grid
    swap_halves: bool = False
    row_lengths: Optional[Tuple[int, ...]] = None

    @property
    def reduced(self) -> bool:
        return self.row_lengths is not None


class GridGeometryResolver:
    """
    Resolve decoded records into Grid instances for every supported projection family. The resolver is configured once per run with the dateline fix mode, the earth radius used for projected families and the optional target grid overrides, and is then applied to each record independently so it can be shared by parallel workers.
    """

    def __init__(self, dateline_fix: str = 'none', earth_radius: float = DEFAULT_EARTH_RADIUS,
                 target_grid: Optional[Grid] = None, hybrid_target_grid: Optional[Grid] = None,
                 pressure_target_grid: Optional[Grid] = None) -> None:
        """
        Initialize the resolver with the dateline fix mode, the earth radius and the optional target grid overrides. The dateline fix mode must be one of 'none', 'atlantic' or 'pacific'. Level-type specific overrides take precedence over the general target grid when a record of that level type is transformed.

        Parameters:
            dateline_fix (str): Dateline fix mode applied to global latitude/longitude grids (default: 'none').
            earth_radius (float): Sphere radius in metres for projected families when the record carries none (default: 6371220).
            target_grid (Optional[Grid]): Target grid applied to every level type (default: None).
            hybrid_target_grid (Optional[Grid]): Target grid for hybrid level records (default: None).
            pressure_target_grid (Optional[Grid]): Target grid for pressure level records (default: None).

        Returns:
            None

        Raises:
            ValueError: If the dateline fix mode is unknown.
        """
        if dateline_fix not in DATELINE_FIX_MODES:
            raise ValueError(f"Unknown dateline fix mode '{dateline_fix}', expected one of {DATELINE_FIX_MODES}")
        self.dateline_fix = dateline_fix
        self.earth_radius = earth_radius
        self.target_grid = target_grid
        self.hybrid_target_grid = hybrid_target_grid
        self.pressure_target_grid = pressure_target_grid

    def target_for(self, level_type: int) -> Optional[Grid]:
        """Return the target grid override that applies to a level type, or None."""
        if level_type == LEVEL_HYBRID and self.hybrid_target_grid is not None:
            return self.hybrid_target_grid
        if level_type == LEVEL_PRESSURE and self.pressure_target_grid is not None:
            return self.pressure_target_grid
        return self.target_grid

    def resolve(self, record: DecodedRecord) -> ResolvedGeometry:
        """
        Resolve the geometry of one decoded record. The record's grid type tag selects the projection family handler; each handler reads the keys it needs through the record's typed lookups and raises UnsupportedInputError for missing keys, unsupported variants or unknown families.

        Parameters:
            record (DecodedRecord): Decoded record whose geometry keys are resolved.

        Returns:
            ResolvedGeometry: Resolved grid with normalization hints.

        Raises:
            UnsupportedInputError: If the projection family is unknown or a required key is missing or unsupported.
        """
        family = GRID_TYPE_FAMILIES.get(record.grid_type)
        if family is None:
            raise UnsupportedInputError(PROJECTION_NOT_IMPLEMENTED_MSG.format(family=record.grid_type))

        if family in ('latlon', 'rotated_latlon'):
            return self._resolve_geographic(record, family)
        if family == 'mercator':
            return self._resolve_mercator(record)
        return self._resolve_conformal(record, family)

    @staticmethod
    def normalize_longitudes(lo1: float, lo2: float, i_negative: bool, nx: int) -> Tuple[float, float]:
        """
        Order the first and last longitudes of a geographic grid from west to east. A grid whose first and last longitudes are both zero is a global wrap-around grid, a negatively i-scanning grid gets its corners swapped, a first longitude at or beyond 180 degrees that exceeds the last one is moved west, a span lying completely beyond 180 degrees is moved west as a whole, and a last longitude still below the first one marks an antimeridian-crossing (Pacific) view that gets 360 degrees added.

        Parameters:
            lo1 (float): Longitude of the first scanned point in degrees.
            lo2 (float): Longitude of the last scanned point in degrees.
            i_negative (bool): True when points scan from east to west.
            nx (int): Number of columns of the grid.

        Returns:
            Tuple[float, float]: Western and eastern longitudes of the grid.
        """
        if lo1 == 0.0 and lo2 == 0.0 and nx > 1:
            lo2 = 360.0
        if i_negative:
            if lo1 > lo2:
                lo1, lo2 = lo2, lo1
        elif lo1 > lo2 and lo1 >= 180.0:
            lo1 -= 360.0
        if lo1 > 180.0 and lo2 > 180.0:
            lo1 -= 360.0
            lo2 -= 360.0
        if lo2 < lo1:
            lo2 += 360.0
        return lo1, lo2

    def apply_dateline_fix(self, lo1: float, lo2: float) -> Tuple[float, float, bool]:
        """
        Apply the configured dateline fix to an ordered longitude span. The atlantic fix moves a global span starting at 0 degrees to start at -180 degrees and the pacific fix moves a global span starting at -180 degrees to start at 0 degrees; in both cases the samples must be swapped half for half, which is reported by the returned flag.

        Parameters:
            lo1 (float): Western longitude in degrees.
            lo2 (float): Eastern longitude in degrees.

        Returns:
            Tuple[float, float, bool]: Possibly shifted western and eastern longitudes and the half swap flag.
        """
        if self.dateline_fix == 'atlantic' and lo1 == 0.0 and lo2 > 358.0:
            return -180.0, lo2 - 180.0, True
        if self.dateline_fix == 'pacific' and lo1 == -180.0 and lo2 > 178.0:
            return 0.0, lo2 + 180.0, True
        return lo1, lo2, False

    def _resolve_geographic(self, record: DecodedRecord, family: str) -> ResolvedGeometry:
        fields = record.geometry
        ny = fields.require_long('Nj', family)
        row_lengths = None
        nx = fields.get_long('Ni')
        if nx == MISSING_LONG or nx < 0:
            if not record.row_lengths:
                raise UnsupportedInputError(FAILED_TO_EXTRACT_MSG.format(key='Ni', family=family))
            row_lengths = tuple(int(n) for n in record.row_lengths)
            nx = max(row_lengths)

        lo1 = fields.require_double('longitudeOfFirstGridPointInDegrees', family)
        la1 = fields.require_double('latitudeOfFirstGridPointInDegrees', family)
        lo2 = fields.require_double('longitudeOfLastGridPointInDegrees', family)
        la2 = fields.require_double('latitudeOfLastGridPointInDegrees', family)

        i_negative = bool(record.scanning_mode & SCAN_I_NEGATIVE)
        lo1, lo2 = self.normalize_longitudes(lo1, lo2, i_negative, nx)
        swap_halves = False
        if family == 'latlon':
            lo1, lo2, swap_halves = self.apply_dateline_fix(lo1, lo2)
        if la1 > la2:
            la1, la2 = la2, la1

        if family == 'latlon':
            projection = LatLonProjection((lo1, la1), (lo2, la2))
        else:
            sp_lat = fields.require_double('latitudeOfSouthernPoleInDegrees', family)
            sp_lon = fields.require_double('longitudeOfSouthernPoleInDegrees', family)
            angle = fields.get_double('angleOfRotationInDegrees', 0.0)
            if angle != 0.0:
                raise UnsupportedInputError(f"Rotation angle {angle} for '{family}' projection is not supported")
            projection = RotatedLatLonProjection((lo1, la1), (lo2, la2), (sp_lon, sp_lat))

        _check_counts(nx, ny, family)
        return ResolvedGeometry(Grid(projection, int(nx), int(ny)), swap_halves, row_lengths)

    def _grid_counts(self, fields: MessageFields, family: str) -> Tuple[int, int]:
        nx = fields.get_long('Ni')
        if nx == MISSING_LONG:
            nx = fields.require_long('Nx', family)
        ny = fields.get_long('Nj')
        if ny == MISSING_LONG:
            ny = fields.require_long('Ny', family)
        _check_counts(nx, ny, family)
        return int(nx), int(ny)

    def _radius(self, fields: MessageFields) -> float:
        return fields.get_double('radius', self.earth_radius)

    @staticmethod
    def _oriented_box(x_first: float, y_first: float, width: float, height: float,
                      scanning_mode: int) -> Tuple[float, float, float, float]:
        x0 = x_first - width if scanning_mode & SCAN_I_NEGATIVE else x_first
        y0 = y_first if scanning_mode & SCAN_J_POSITIVE else y_first - height
        return (x0, y0, x0 + width, y0 + height)

    def _resolve_mercator(self, record: DecodedRecord) -> ResolvedGeometry:
        family = 'mercator'
        fields = record.geometry
        nx, ny = self._grid_counts(fields, family)
        lo1 = fields.require_double('longitudeOfFirstGridPointInDegrees', family)
        la1 = fields.require_double('latitudeOfFirstGridPointInDegrees', family)
        probe = MercatorProjection((0.0, 0.0, 0.0, 0.0), fields.get_double('LaDInDegrees', 0.0), 0.0,
                                   self._radius(fields))

        if fields.has('longitudeOfLastGridPointInDegrees') and fields.has('latitudeOfLastGridPointInDegrees'):
            lo2 = fields.get_double('longitudeOfLastGridPointInDegrees')
            la2 = fields.get_double('latitudeOfLastGridPointInDegrees')
            lo1, lo2 = self.normalize_longitudes(lo1, lo2, bool(record.scanning_mode & SCAN_I_NEGATIVE), nx)
            x0, y0 = probe.to_world(lo1, min(la1, la2))
            x1, y1 = probe.to_world(lo2, max(la1, la2))
            x0, x1 = float(x0), float(x1)
            if x1 <= x0:
                x1 += 2.0 * math.pi * probe.earth_radius
            box = (x0, float(y0), x1, float(y1))
        else:
            dx = fields.require_double('DxInMetres', family)
            dy = fields.require_double('DyInMetres', family)
            x_first, y_first = probe.to_world(lo1, la1)
            box = self._oriented_box(float(x_first), float(y_first), dx * (nx - 1), dy * (ny - 1),
                                     record.scanning_mode)
        return ResolvedGeometry(Grid(probe.with_world_box(box), nx, ny))

    def _resolve_conformal(self, record: DecodedRecord, family: str) -> ResolvedGeometry:
        fields = record.geometry
        centre = fields.get_long('projectionCentreFlag', 0)
        if centre != MISSING_LONG and centre & PROJECTION_CENTRE_SOUTH_POLE:
            raise UnsupportedInputError(f"South pole projection centre is not supported for '{family}' projection")

        nx, ny = self._grid_counts(fields, family)
        lo1 = fields.require_double('longitudeOfFirstGridPointInDegrees', family)
        la1 = fields.require_double('latitudeOfFirstGridPointInDegrees', family)
        dx = fields.require_double('DxInMetres', family)
        dy = fields.require_double('DyInMetres', family)
        radius = self._radius(fields)

        orientation = fields.get_double('LoVInDegrees')
        if math.isnan(orientation):
            orientation = fields.require_double('orientationOfTheGridInDegrees', family)

        empty = (0.0, 0.0, 0.0, 0.0)
        if family == 'polar_stereographic':
            probe = PolarStereographicProjection(empty, orientation, fields.get_double('LaDInDegrees', 60.0), radius)
        else:
            latin1 = fields.require_double('Latin1InDegrees', family)
            latin2 = fields.get_double('Latin2InDegrees', latin1)
            probe = LambertConformalProjection(empty, orientation, latin1, latin2,
                                               fields.get_double('LaDInDegrees', latin1), radius)

        x_first, y_first = probe.to_world(lo1, la1)
        box = self._oriented_box(float(x_first), float(y_first), dx * (nx - 1), dy * (ny - 1),
                                 record.scanning_mode)
        return ResolvedGeometry(Grid(probe.with_world_box(box), nx, ny))
