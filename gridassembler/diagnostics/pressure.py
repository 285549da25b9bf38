#!/usr/bin/env python3

"""
Hybrid Level Pressure Diagnostics

This module derives the pressure of model hybrid levels from the vertical coordinate coefficients carried by hybrid-level records and the surface pressure found in a single-level dataset of the same run. The coefficients of a level are taken from the vertical coordinate array 'pv' of the first hybrid record seen at that level, using one of two conventions selected by the array length: an array of exactly two values is the (a, b) pair of the level itself, while a longer array is the shared full-level table of the model whose first half holds the a values and second half the b values of the half levels, and the pair of a full level is the average of the two adjacent half-level entries. Pressure on a level is then (a + b * ps) / 100 in hPa, where surface pressure ps values below 1500 are taken to be in hPa and scaled by 100 to Pa first. The calculation runs location by location and time by time over every hybrid level that has coefficients, sampling the surface pressure at the hybrid grid points so the surface dataset may live on a different grid, and writes only into pressure cells that are still missing; any missing input at a cell leaves the output missing.

Classes:
    VerticalCoefficientTable: Per-level (a, b) hybrid coefficients captured from record side channels.
    HybridPressureDiagnostics: Fills the pressure parameter of an assembled hybrid-level dataset.

Functions:
    hybrid_coefficients: Derive the (a, b) pair of one level from a vertical coordinate array.
    calc_hybrid_pressure: Vectorized hybrid level pressure in hPa.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import threading
from typing import Any, Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd
import xarray as xr

from gridassembler.processing.assembler import dataset_grid, param_index
from gridassembler.processing.constants import (
    HPA, LEVEL_HYBRID, PARAM_PRESSURE, PARAM_PRESSURE_AT_STATION,
)
from gridassembler.processing.geometry import Field
from gridassembler.processing.remapping import sample_field

SURFACE_PRESSURE_HPA_LIMIT = 1500.0


def hybrid_coefficients(level: int, pv: Any) -> Optional[Tuple[float, float]]:
    """
    Derive the (a, b) hybrid coefficients of one model level from a vertical coordinate array. A two-element array is the pair of the level itself. A longer array holds the a values of the half levels in its first half and the b values in its second half; the full-level pair is the mean of the entries at positions level - 1 and level of each half. This averaging convention is kept exactly as the producing models define it. Levels for which the adjacent entries would fall outside the half table have no coefficients.

    Parameters:
        level (int): Hybrid level number, starting from 1.
        pv (array-like): Vertical coordinate values of a record.

    Returns:
        Optional[Tuple[float, float]]: The (a, b) pair, or None when the array cannot provide one.
    """
    pv = np.asarray(pv, dtype=np.float64).ravel()
    if pv.size == 2:
        return float(pv[0]), float(pv[1])

    half = pv.size // 2
    if half < 2 or level < 1 or level >= half:
        return None
    a = (pv[level - 1] + pv[level]) / 2.0
    b = (pv[half + level - 1] + pv[half + level]) / 2.0
    return float(a), float(b)


def calc_hybrid_pressure(a: float, b: float, surface_pressure: Any) -> np.ndarray:
    """Return hybrid level pressure in hPa; surface pressure below 1500 is treated as hPa, NaN stays NaN."""
    ps = np.asarray(surface_pressure, dtype=np.float64)
    scale = np.where(ps < SURFACE_PRESSURE_HPA_LIMIT, 100.0, 1.0)
    return (a + b * ps * scale) / 100.0


class VerticalCoefficientTable:
    """
    Hybrid (a, b) coefficients per integer level, captured from the first record that provides them. Records of one batch may be converted in several threads, so insertion is guarded by a lock; lookups read a plain dictionary.
    """

    def __init__(self) -> None:
        self._pairs: Dict[int, Tuple[float, float]] = {}
        self._lock = threading.Lock()

    def add(self, level: float, pv: Any) -> bool:
        """
        Store the coefficients of a level unless the level already has some.

        Parameters:
            level (float): Hybrid level value of the record.
            pv (array-like): Vertical coordinate array of the record.

        Returns:
            bool: True when a new pair was stored.
        """
        key = int(round(level))
        if key in self._pairs or pv is None:
            return False
        pair = hybrid_coefficients(key, pv)
        if pair is None:
            return False
        with self._lock:
            if key in self._pairs:
                return False
            self._pairs[key] = pair
        return True

    def add_records(self, records: Iterable[Any]) -> int:
        """Capture coefficients from every hybrid-level record carrying a 'coefficients' array."""
        added = 0
        for record in records:
            if record.level_type == LEVEL_HYBRID and record.coefficients is not None:
                added += int(self.add(record.level_value, record.coefficients))
        return added

    def coefficients(self, level: float) -> Optional[Tuple[float, float]]:
        return self._pairs.get(int(round(level)))

    def __contains__(self, level: float) -> bool:
        return int(round(level)) in self._pairs

    def __len__(self) -> int:
        return len(self._pairs)

    def __getstate__(self) -> Dict[str, Any]:
        return {'_pairs': dict(self._pairs)}

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self._pairs = dict(state['_pairs'])
        self._lock = threading.Lock()


class HybridPressureDiagnostics:
    """
    Compute the pressure parameter of hybrid-level datasets from vertical coefficients and surface pressure.
    """

    def __init__(self, pressure_param_id: int = PARAM_PRESSURE,
                 surface_pressure_param_id: int = PARAM_PRESSURE_AT_STATION,
                 verbose: bool = True) -> None:
        """
        Initialize the hybrid pressure diagnostics with the identifiers of the pressure parameter to fill and of the surface pressure helper parameter to read. The helper is looked up in single-level datasets, which in practice means the ground surface dataset of the run.

        Parameters:
            pressure_param_id (int): Parameter id of pressure on hybrid levels (default: 1).
            surface_pressure_param_id (int): Parameter id of surface pressure (default: 472).
            verbose (bool): Enable verbose output messages (default: True).

        Returns:
            None
        """
        self.pressure_param_id = pressure_param_id
        self.surface_pressure_param_id = surface_pressure_param_id
        self.verbose = verbose

    def find_surface_dataset(self, datasets: Iterable[xr.Dataset]) -> Optional[xr.Dataset]:
        """Return the first single-level dataset that carries the surface pressure helper parameter."""
        for dataset in datasets:
            if dataset.sizes['level'] == 1 and param_index(dataset, self.surface_pressure_param_id) is not None:
                return dataset
        return None

    def compute_hybrid_pressure(self, hybrid: xr.Dataset, surface: xr.Dataset,
                                table: VerticalCoefficientTable) -> xr.Dataset:
        """
        Fill the missing pressure cells of a hybrid-level dataset. For every time of the hybrid dataset the surface dataset's field at the same valid time is sampled bilinearly at the hybrid grid locations, and for every hybrid level present in the coefficient table the pressure is computed with calc_hybrid_pressure. Values are written only where the pressure cell is missing; times without matching surface pressure and levels without coefficients are left untouched. The input dataset is not modified.

        Parameters:
            hybrid (xr.Dataset): Assembled hybrid-level dataset containing the pressure parameter.
            surface (xr.Dataset): Single-level dataset containing the surface pressure helper parameter.
            table (VerticalCoefficientTable): Hybrid coefficients captured from the records.

        Returns:
            xr.Dataset: Copy of the hybrid dataset with pressure filled where possible.
        """
        result = hybrid.copy(deep=True)
        p_index = param_index(result, self.pressure_param_id)
        sp_index = param_index(surface, self.surface_pressure_param_id)
        if p_index is None or sp_index is None:
            if self.verbose:
                print("Hybrid pressure skipped: pressure or surface pressure parameter not available")
            return result

        hybrid_grid = dataset_grid(result)
        surface_grid = dataset_grid(surface)
        lons, lats = hybrid_grid.cell_latlons()
        surface_times = {pd.Timestamp(t): i for i, t in enumerate(surface['time'].values)}
        values = result['values'].values
        surface_values = surface['values'].values

        filled = 0
        for t, time in enumerate(result['time'].values):
            s = surface_times.get(pd.Timestamp(time))
            if s is None:
                continue
            sp_field = Field(surface_grid, surface_values[s, 0, sp_index])
            surface_pressure = sample_field(sp_field, lons, lats, 'bilinear')

            for k, level in enumerate(result['level'].values):
                pair = table.coefficients(float(level))
                if pair is None:
                    continue
                pressure = calc_hybrid_pressure(pair[0], pair[1], surface_pressure)
                cell = values[t, k, p_index]
                take = np.isnan(cell) & ~np.isnan(pressure)
                cell[take] = pressure[take]
                filled += int(np.count_nonzero(take))

        result.attrs['pressure_units'] = HPA
        if self.verbose:
            p_values = values[:, :, p_index]
            if np.any(~np.isnan(p_values)):
                print(f"Hybrid pressure range: {np.nanmin(p_values):.2f} to {np.nanmax(p_values):.2f} {HPA}")
            print(f"Hybrid pressure filled {filled} cells")
        return result
