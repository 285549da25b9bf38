#!/usr/bin/env python3
"""
Synthetic Record Builders for the gridassembler Test Suite

This module builds the small synthetic inputs shared by the test modules: eccodes-style key dictionaries accepted by InMemoryDecoder, regular latitude/longitude grids, and GridRecord instances ready for the classification, stitching and assembly stages. Values are plain NumPy arrays so every expected result can be computed by hand.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import numpy as np

from gridassembler.processing.geometry import Field, Grid, LatLonProjection
from gridassembler.processing.records import GridRecord

ORIGIN = datetime(2024, 1, 1, 0, 0)


def latlon_grid(lon1: float, lat1: float, lon2: float, lat2: float, nx: int, ny: int) -> Grid:
    return Grid(LatLonProjection((lon1, lat1), (lon2, lat2)), nx, ny)


def latlon_message(param_id: int, values: Sequence[float], nx: int, ny: int,
                   box: Sequence[float] = (0.0, 0.0, 10.0, 10.0), level_type: str = 'surface',
                   level: float = 0, hour: int = 0, scanning_mode: int = 64,
                   short_name: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """
    Build the key dictionary of one regular lat/lon message. The box is (lon1, lat1, lon2, lat2) of the first and last scanned points and hour is the forecast offset from the shared origin time.
    """
    lon1, lat1, lon2, lat2 = box
    message = {
        'paramId': param_id,
        'shortName': short_name or f"p{param_id}",
        'typeOfLevel': level_type,
        'level': level,
        'dataDate': 20240101,
        'dataTime': 0,
        'validityDate': 20240101,
        'validityTime': hour * 100,
        'gridType': 'regular_ll',
        'Ni': nx,
        'Nj': ny,
        'longitudeOfFirstGridPointInDegrees': lon1,
        'latitudeOfFirstGridPointInDegrees': lat1,
        'longitudeOfLastGridPointInDegrees': lon2,
        'latitudeOfLastGridPointInDegrees': lat2,
        'scanningMode': scanning_mode,
        'missingValue': 9999.0,
        'values': np.asarray(values, dtype=np.float64),
    }
    message.update(extra)
    return message


def grid_record(grid: Grid, values: Any, param_id: int = 11, level_type: int = 1,
                level_value: float = 0.0, hour: int = 0, **changes: Any) -> GridRecord:
    """Build a GridRecord on a grid; a scalar value fills the whole field."""
    data = np.broadcast_to(np.asarray(values, dtype=np.float64), grid.shape).copy()
    kwargs = dict(
        field=Field(grid, data),
        param_id=param_id,
        param_name=f"p{param_id}",
        level_type=level_type,
        level_value=float(level_value),
        origin_time=ORIGIN,
        valid_time=datetime(2024, 1, 1, hour, 0),
    )
    kwargs.update(changes)
    return GridRecord(**kwargs)
