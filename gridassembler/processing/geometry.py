#!/usr/bin/env python3

"""
Grid Geometry Model

This module provides the value types that describe where the samples of a decoded grid record live on the globe and the matrix that holds them. Every supported projection family is a small frozen dataclass carrying only its own parameters plus the bounding box of the grid in that projection's world coordinates (degrees for the geographic and rotated geographic families, metres for Mercator, polar stereographic and Lambert conformal). A Grid combines one projection with a column and row count and maps between geographic points and fractional grid indices using the convention that column 0 is the westernmost column and row 0 is the southernmost row. Grids are hashable with structural equality so they can be counted, compared for stitching and used as keys of the reprojection location cache. A Field pairs one Grid with a float64 sample matrix in which missing samples are NaN. Projected families delegate the forward and inverse transforms to pyproj while the rotated geographic family uses spherical pole rotation on numpy arrays.

Classes:
    LatLonProjection: Regular geographic grid defined by its bottom-left and top-right corners.
    RotatedLatLonProjection: Geographic grid in a rotated-pole coordinate system.
    MercatorProjection: Mercator grid with a world box in metres.
    PolarStereographicProjection: North polar stereographic grid with a world box in metres.
    LambertConformalProjection: Lambert conformal conic grid with a world box in metres.
    Grid: Projection plus column and row counts with geographic to grid index mapping.
    Field: Grid plus its sample matrix.

Functions:
    rotated_to_geographic: Convert rotated-pole coordinates to geographic coordinates.
    geographic_to_rotated: Convert geographic coordinates to rotated-pole coordinates.
    grid_from_dict: Build a Grid from a configuration dictionary.
    grid_to_dict: Serialize a Grid into a configuration dictionary.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import threading
from functools import lru_cache
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

import numpy as np
import pyproj

from .constants import DEFAULT_EARTH_RADIUS

Box = Tuple[float, float, float, float]
LonLat = Tuple[float, float]

_LON_TOLERANCE = 1e-9
_proj_store = threading.local()


def _get_proj(definition: str) -> pyproj.Proj:
    """
    Return a pyproj.Proj for the definition string, cached per thread since pyproj objects must not be shared between threads.
    """
    cache = getattr(_proj_store, 'projs', None)
    if cache is None:
        cache = {}
        _proj_store.projs = cache
    proj = cache.get(definition)
    if proj is None:
        proj = pyproj.Proj(definition)
        cache[definition] = proj
    return proj


def _clean(value: float) -> float:
    return float(round(float(value), 9))


def _shift_into_span(lon: Any, x_min: float, x_max: float) -> np.ndarray:
    """
    Shift longitudes by a full turn when that brings them inside the span [x_min, x_max]. This lets a grid spanning 0..360 or a Pacific view such as 120..240 accept points expressed in -180..180 and vice versa.
    """
    lon = np.asarray(lon, dtype=np.float64)
    shifted = np.where((lon < x_min - _LON_TOLERANCE) & (lon + 360.0 <= x_max + _LON_TOLERANCE), lon + 360.0, lon)
    shifted = np.where((shifted > x_max + _LON_TOLERANCE) & (shifted - 360.0 >= x_min - _LON_TOLERANCE), shifted - 360.0, shifted)
    return shifted


def rotated_to_geographic(rlon: Any, rlat: Any, south_pole_lon: float,
                          south_pole_lat: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert rotated-pole longitudes and latitudes to geographic coordinates using spherical rotation. The rotated system is defined by the geographic position of its southern pole as in GRIB rotated latitude/longitude grids. The rotation tilts the sphere about the y axis by 90 degrees plus the southern pole latitude and then shifts longitudes by the southern pole longitude, so a southern pole at (0, -90) is the identity transform. Returned longitudes are normalized to [-180, 180).

    Parameters:
        rlon (array-like): Rotated longitudes in degrees.
        rlat (array-like): Rotated latitudes in degrees.
        south_pole_lon (float): Geographic longitude of the rotated southern pole in degrees.
        south_pole_lat (float): Geographic latitude of the rotated southern pole in degrees.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Geographic longitudes and latitudes in degrees.
    """
    rlon_r = np.radians(np.asarray(rlon, dtype=np.float64))
    rlat_r = np.radians(np.asarray(rlat, dtype=np.float64))
    theta = np.radians(90.0 + south_pole_lat)

    x = np.cos(rlat_r) * np.cos(rlon_r)
    y = np.cos(rlat_r) * np.sin(rlon_r)
    z = np.sin(rlat_r)

    x_geo = np.cos(theta) * x - np.sin(theta) * z
    z_geo = np.sin(theta) * x + np.cos(theta) * z

    lat = np.degrees(np.arcsin(np.clip(z_geo, -1.0, 1.0)))
    lon = np.degrees(np.arctan2(y, x_geo)) + south_pole_lon
    lon = ((lon + 180.0) % 360.0) - 180.0
    return lon, lat


def geographic_to_rotated(lon: Any, lat: Any, south_pole_lon: float,
                          south_pole_lat: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Convert geographic longitudes and latitudes to rotated-pole coordinates. This is the exact inverse of rotated_to_geographic for the same southern pole position. Returned rotated longitudes are normalized to [-180, 180).

    Parameters:
        lon (array-like): Geographic longitudes in degrees.
        lat (array-like): Geographic latitudes in degrees.
        south_pole_lon (float): Geographic longitude of the rotated southern pole in degrees.
        south_pole_lat (float): Geographic latitude of the rotated southern pole in degrees.

    Returns:
        Tuple[np.ndarray, np.ndarray]: Rotated longitudes and latitudes in degrees.
    """
    lon_r = np.radians(np.asarray(lon, dtype=np.float64) - south_pole_lon)
    lat_r = np.radians(np.asarray(lat, dtype=np.float64))
    theta = np.radians(90.0 + south_pole_lat)

    x = np.cos(lat_r) * np.cos(lon_r)
    y = np.cos(lat_r) * np.sin(lon_r)
    z = np.sin(lat_r)

    x_rot = np.cos(theta) * x + np.sin(theta) * z
    z_rot = -np.sin(theta) * x + np.cos(theta) * z

    rlat = np.degrees(np.arcsin(np.clip(z_rot, -1.0, 1.0)))
    rlon = np.degrees(np.arctan2(y, x_rot))
    rlon = ((rlon + 180.0) % 360.0) - 180.0
    return rlon, rlat


@dataclass(frozen=True)
class LatLonProjection:
    """
    Regular geographic grid whose world coordinates are longitude and latitude in degrees. The box may extend past 180 degrees east (Pacific view) and points given in either longitude convention are shifted into it.
    """
    bottom_left: LonLat
    top_right: LonLat
    family: ClassVar[str] = 'latlon'

    @property
    def world_box(self) -> Box:
        return (self.bottom_left[0], self.bottom_left[1], self.top_right[0], self.top_right[1])

    def to_world(self, lon: Any, lat: Any) -> Tuple[np.ndarray, np.ndarray]:
        return _shift_into_span(lon, self.bottom_left[0], self.top_right[0]), np.asarray(lat, dtype=np.float64)

    def to_geographic(self, x: Any, y: Any) -> Tuple[np.ndarray, np.ndarray]:
        return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)

    def with_world_box(self, box: Box) -> 'LatLonProjection':
        return LatLonProjection((box[0], box[1]), (box[2], box[3]))

    def is_pacific_view(self) -> bool:
        return self.bottom_left[0] < 180.0 < self.top_right[0]


@dataclass(frozen=True)
class RotatedLatLonProjection:
    """
    Geographic grid expressed in a rotated-pole coordinate system. The corners are rotated longitudes and latitudes and the southern pole is the geographic position of the rotated system's southern pole.
    """
    bottom_left: LonLat
    top_right: LonLat
    south_pole: LonLat
    family: ClassVar[str] = 'rotated_latlon'

    @property
    def world_box(self) -> Box:
        return (self.bottom_left[0], self.bottom_left[1], self.top_right[0], self.top_right[1])

    def to_world(self, lon: Any, lat: Any) -> Tuple[np.ndarray, np.ndarray]:
        rlon, rlat = geographic_to_rotated(lon, lat, self.south_pole[0], self.south_pole[1])
        return _shift_into_span(rlon, self.bottom_left[0], self.top_right[0]), rlat

    def to_geographic(self, x: Any, y: Any) -> Tuple[np.ndarray, np.ndarray]:
        return rotated_to_geographic(x, y, self.south_pole[0], self.south_pole[1])

    def with_world_box(self, box: Box) -> 'RotatedLatLonProjection':
        return RotatedLatLonProjection((box[0], box[1]), (box[2], box[3]), self.south_pole)


class _ProjectedMixin:
    """Forward and inverse transforms shared by the pyproj-backed families."""

    box: Box

    def proj_definition(self) -> str:
        raise NotImplementedError

    @property
    def world_box(self) -> Box:
        return self.box

    def to_world(self, lon: Any, lat: Any) -> Tuple[np.ndarray, np.ndarray]:
        pj = _get_proj(self.proj_definition())
        x, y = pj(np.asarray(lon, dtype=np.float64), np.asarray(lat, dtype=np.float64))
        return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)

    def to_geographic(self, x: Any, y: Any) -> Tuple[np.ndarray, np.ndarray]:
        pj = _get_proj(self.proj_definition())
        lon, lat = pj(np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64), inverse=True)
        return np.asarray(lon, dtype=np.float64), np.asarray(lat, dtype=np.float64)


@dataclass(frozen=True)
class MercatorProjection(_ProjectedMixin):
    """Mercator grid; the box is in projected metres."""
    box: Box
    true_latitude: float = 0.0
    central_longitude: float = 0.0
    earth_radius: float = DEFAULT_EARTH_RADIUS
    family: ClassVar[str] = 'mercator'

    def proj_definition(self) -> str:
        return (f"+proj=merc +lat_ts={self.true_latitude} +lon_0={self.central_longitude} "
                f"+R={self.earth_radius} +units=m +no_defs")

    def with_world_box(self, box: Box) -> 'MercatorProjection':
        return MercatorProjection(box, self.true_latitude, self.central_longitude, self.earth_radius)


@dataclass(frozen=True)
class PolarStereographicProjection(_ProjectedMixin):
    """North polar stereographic grid; the box is in projected metres."""
    box: Box
    orientation: float
    true_latitude: float = 60.0
    earth_radius: float = DEFAULT_EARTH_RADIUS
    family: ClassVar[str] = 'polar_stereographic'

    def proj_definition(self) -> str:
        return (f"+proj=stere +lat_0=90 +lat_ts={self.true_latitude} +lon_0={self.orientation} "
                f"+R={self.earth_radius} +units=m +no_defs")

    def with_world_box(self, box: Box) -> 'PolarStereographicProjection':
        return PolarStereographicProjection(box, self.orientation, self.true_latitude, self.earth_radius)


@dataclass(frozen=True)
class LambertConformalProjection(_ProjectedMixin):
    """Lambert conformal conic grid; the box is in projected metres."""
    box: Box
    orientation: float
    latin1: float
    latin2: float
    reference_latitude: float
    earth_radius: float = DEFAULT_EARTH_RADIUS
    family: ClassVar[str] = 'lambert'

    def proj_definition(self) -> str:
        return (f"+proj=lcc +lat_1={self.latin1} +lat_2={self.latin2} +lat_0={self.reference_latitude} "
                f"+lon_0={self.orientation} +R={self.earth_radius} +units=m +no_defs")

    def with_world_box(self, box: Box) -> 'LambertConformalProjection':
        return LambertConformalProjection(box, self.orientation, self.latin1, self.latin2,
                                          self.reference_latitude, self.earth_radius)


Projection = Union[LatLonProjection, RotatedLatLonProjection, MercatorProjection,
                   PolarStereographicProjection, LambertConformalProjection]

PROJECTION_FAMILIES = {
    LatLonProjection.family: LatLonProjection,
    RotatedLatLonProjection.family: RotatedLatLonProjection,
    MercatorProjection.family: MercatorProjection,
    PolarStereographicProjection.family: PolarStereographicProjection,
    LambertConformalProjection.family: LambertConformalProjection,
}


@dataclass(frozen=True)
class Grid:
    """
    Projected area plus column and row sample counts. A Grid maps geographic points to fractional grid indices and back, with column 0 at the western edge of the world box and row 0 at its southern edge. Two grids are equal when their projections (family, parameters and world box) and counts are equal, which makes them usable as dictionary keys for occurrence counting and for the reprojection location cache.
    """
    projection: Projection
    nx: int
    ny: int

    def __post_init__(self) -> None:
        """
        Validate that the grid has at least one column and one row. This guard runs automatically after dataclass construction and rejects degenerate sizes early so downstream index arithmetic never divides by zero or allocates empty matrices.

        Parameters:
            None

        Returns:
            None

        Raises:
            ValueError: If either count is smaller than one.
        """
        if self.nx < 1 or self.ny < 1:
            raise ValueError(f"Grid size must be positive, got {self.nx}x{self.ny}")

    @property
    def family(self) -> str:
        return self.projection.family

    @property
    def resolution(self) -> Tuple[float, float]:
        x0, y0, x1, y1 = self.projection.world_box
        dx = (x1 - x0) / (self.nx - 1) if self.nx > 1 else 0.0
        dy = (y1 - y0) / (self.ny - 1) if self.ny > 1 else 0.0
        return dx, dy

    @property
    def shape(self) -> Tuple[int, int]:
        return self.ny, self.nx

    def latlon_to_grid(self, lon: Any, lat: Any) -> Tuple[np.ndarray, np.ndarray]:
        """
        Map geographic points to fractional grid indices in this grid. The points are first transformed into the projection's world coordinates and then scaled linearly across the world box so that integer results hit grid cells exactly. Points outside the grid produce indices outside [0, nx-1] or [0, ny-1], which callers treat as missing coverage.

        Parameters:
            lon (array-like): Geographic longitudes in degrees.
            lat (array-like): Geographic latitudes in degrees.

        Returns:
            Tuple[np.ndarray, np.ndarray]: Fractional column and row indices with the shape of the inputs.
        """
        wx, wy = self.projection.to_world(lon, lat)
        x0, y0, _, _ = self.projection.world_box
        dx, dy = self.resolution
        x = (wx - x0) / dx if dx != 0.0 else (wx - x0)
        y = (wy - y0) / dy if dy != 0.0 else (wy - y0)
        return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)

    def grid_to_latlon(self, x: Any, y: Any) -> Tuple[np.ndarray, np.ndarray]:
        """Map fractional column and row indices to geographic longitudes and latitudes."""
        x0, y0, _, _ = self.projection.world_box
        dx, dy = self.resolution
        wx = x0 + np.asarray(x, dtype=np.float64) * dx
        wy = y0 + np.asarray(y, dtype=np.float64) * dy
        return self.projection.to_geographic(wx, wy)

    def cell_latlons(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return 2-D longitude and latitude arrays of shape (ny, nx) for every cell."""
        return _cell_latlons(self)

    def subgrid(self, i0: int, j0: int, nx: int, ny: int) -> 'Grid':
        """
        Build a grid with the same resolution whose cell (0, 0) is cell (i0, j0) of this grid. The window may extend past this grid's extent, which is how crops reaching beyond the source coverage are described.

        Parameters:
            i0 (int): Column offset of the new grid's western column.
            j0 (int): Row offset of the new grid's southern row.
            nx (int): Column count of the new grid.
            ny (int): Row count of the new grid.

        Returns:
            Grid: Grid of the requested window sharing this grid's projection parameters.
        """
        x0, y0, _, _ = self.projection.world_box
        dx, dy = self.resolution
        box = (_clean(x0 + i0 * dx), _clean(y0 + j0 * dy),
               _clean(x0 + (i0 + nx - 1) * dx), _clean(y0 + (j0 + ny - 1) * dy))
        return Grid(self.projection.with_world_box(box), nx, ny)

    def corner_latlons(self) -> Dict[str, LonLat]:
        """Return the geographic positions of the four corner cells keyed by corner name."""
        xs = np.array([0.0, self.nx - 1.0, 0.0, self.nx - 1.0])
        ys = np.array([0.0, 0.0, self.ny - 1.0, self.ny - 1.0])
        lons, lats = self.grid_to_latlon(xs, ys)
        names = ('bottom_left', 'bottom_right', 'top_left', 'top_right')
        return {name: (float(lons[i]), float(lats[i])) for i, name in enumerate(names)}

    def describe(self) -> str:
        x0, y0, x1, y1 = self.projection.world_box
        return f"{self.family} {self.nx}x{self.ny} [{x0:g},{y0:g}]-[{x1:g},{y1:g}]"


@lru_cache(maxsize=64)
def _cell_latlons(grid: Grid) -> Tuple[np.ndarray, np.ndarray]:
    xs, ys = np.meshgrid(np.arange(grid.nx, dtype=np.float64), np.arange(grid.ny, dtype=np.float64))
    lons, lats = grid.grid_to_latlon(xs, ys)
    lons.setflags(write=False)
    lats.setflags(write=False)
    return lons, lats


@dataclass
class Field:
    """
    One sample matrix on one Grid. Values are float64 in row-major (ny, nx) order with row 0 southernmost and column 0 westernmost, and missing samples are NaN.
    """
    grid: Grid
    values: np.ndarray

    def __post_init__(self) -> None:
        self.values = np.asarray(self.values, dtype=np.float64)
        if self.values.shape != self.grid.shape:
            raise ValueError(f"Field shape {self.values.shape} does not match grid shape {self.grid.shape}")

    def copy(self) -> 'Field':
        return Field(self.grid, self.values.copy())

    def has_valid_data(self) -> bool:
        return bool(np.any(~np.isnan(self.values)))

    def missing_count(self) -> int:
        return int(np.count_nonzero(np.isnan(self.values)))


def _projected_box(projection_cls: Any, params: Dict[str, Any], first_point: LonLat,
                   dx: float, dy: float, nx: int, ny: int) -> Box:
    probe = projection_cls(box=(0.0, 0.0, 0.0, 0.0), **params)
    x0, y0 = probe.to_world(first_point[0], first_point[1])
    x0, y0 = float(x0), float(y0)
    return (x0, y0, x0 + dx * (nx - 1), y0 + dy * (ny - 1))


def grid_from_dict(spec: Dict[str, Any]) -> Grid:
    """
    Build a Grid from a configuration dictionary such as a target grid override loaded from YAML. Geographic families take 'bottom_left' and 'top_right' as [lon, lat] pairs (plus 'south_pole' for the rotated family); projected families take the geographic 'bottom_left' corner together with 'dx' and 'dy' in metres and their projection parameters. The 'nx' and 'ny' counts are always required.

    Parameters:
        spec (Dict[str, Any]): Grid description with a 'family' key and family-specific parameters.

    Returns:
        Grid: Grid described by the dictionary.

    Raises:
        ValueError: If the family is unknown or required keys are missing.
    """
    family = spec.get('family', 'latlon')
    if family not in PROJECTION_FAMILIES:
        raise ValueError(f"Unknown grid family '{family}'")
    try:
        nx, ny = int(spec['nx']), int(spec['ny'])
        if family == 'latlon':
            projection: Projection = LatLonProjection(tuple(spec['bottom_left']), tuple(spec['top_right']))
        elif family == 'rotated_latlon':
            projection = RotatedLatLonProjection(tuple(spec['bottom_left']), tuple(spec['top_right']),
                                                 tuple(spec.get('south_pole', (0.0, -90.0))))
        else:
            cls: Any = PROJECTION_FAMILIES[family]
            radius = float(spec.get('earth_radius', DEFAULT_EARTH_RADIUS))
            if family == 'mercator':
                params = {'true_latitude': float(spec.get('true_latitude', 0.0)),
                          'central_longitude': float(spec.get('central_longitude', 0.0)),
                          'earth_radius': radius}
            elif family == 'polar_stereographic':
                params = {'orientation': float(spec['orientation']),
                          'true_latitude': float(spec.get('true_latitude', 60.0)),
                          'earth_radius': radius}
            else:
                params = {'orientation': float(spec['orientation']),
                          'latin1': float(spec['latin1']),
                          'latin2': float(spec.get('latin2', spec['latin1'])),
                          'reference_latitude': float(spec.get('reference_latitude', spec['latin1'])),
                          'earth_radius': radius}
            box = _projected_box(cls, params, tuple(spec['bottom_left']), float(spec['dx']),
                                 float(spec['dy']), nx, ny)
            projection = cls(box=box, **params)
    except KeyError as e:
        raise ValueError(f"Grid description for '{family}' is missing key {e}") from e
    return Grid(projection, nx, ny)


def grid_to_dict(grid: Grid) -> Dict[str, Any]:
    """Serialize a Grid into the dictionary form accepted by grid_from_dict."""
    projection = grid.projection
    spec: Dict[str, Any] = {'family': grid.family, 'nx': grid.nx, 'ny': grid.ny}
    if isinstance(projection, (LatLonProjection, RotatedLatLonProjection)):
        spec['bottom_left'] = list(projection.bottom_left)
        spec['top_right'] = list(projection.top_right)
        if isinstance(projection, RotatedLatLonProjection):
            spec['south_pole'] = list(projection.south_pole)
        return spec

    corners = grid.corner_latlons()
    dx, dy = grid.resolution
    spec.update({'bottom_left': list(corners['bottom_left']), 'dx': dx, 'dy': dy,
                 'earth_radius': projection.earth_radius})
    if isinstance(projection, MercatorProjection):
        spec.update({'true_latitude': projection.true_latitude,
                     'central_longitude': projection.central_longitude})
    elif isinstance(projection, PolarStereographicProjection):
        spec.update({'orientation': projection.orientation, 'true_latitude': projection.true_latitude})
    else:
        spec.update({'orientation': projection.orientation, 'latin1': projection.latin1,
                     'latin2': projection.latin2, 'reference_latitude': projection.reference_latitude})
    return spec


def same_resolution(a: Grid, b: Grid, tolerance: Optional[float] = None) -> bool:
    """Return True when two grids share family and cell spacing (exact unless a tolerance is given)."""
    if a.family != b.family:
        return False
    (adx, ady), (bdx, bdy) = a.resolution, b.resolution
    if tolerance is None:
        return adx == bdx and ady == bdy
    return abs(adx - bdx) <= tolerance and abs(ady - bdy) <= tolerance
