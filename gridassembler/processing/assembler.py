#!/usr/bin/env python3

"""
Dataset Assembler

This module turns the discovered axes of one level type and the filtered records of the batch into the terminal xarray Dataset handed to the persistence sink. The dataset holds a single float64 data variable named 'values' over the dimensions (time, level, param, y, x) so that a cell is addressed by time, level and parameter index and the location is the flattened (y, x) position on the AxisSet grid; two-dimensional lat/lon coordinates and a param_name coordinate make the container self-describing. Before anything is allocated the projected byte size is compared against the configured ceiling and an itemized CapacityExceededError reports the per-axis counts, the total cell count, the byte estimate and the currently available system memory so the caller can tell which dimension to reduce. Records are copied in batch order: a record whose grid, time, level or parameter has no cell on the axes is skipped, a sample lands only where the destination is still missing, and a record flagged as a corrected report overwrites its cell unconditionally. When no parameter or no time received a single non-missing sample the assembler returns None, which callers treat as an empty contribution rather than an error. Helper functions recover the grid of an assembled dataset and locate parameter indices for the derived parameter stage.

Classes:
    DatasetAssembler: Allocates and fills one dataset per AxisSet.

Functions:
    dataset_grid: Rebuild the Grid an assembled dataset was allocated on.
    param_index: Locate a parameter on the param axis of a dataset.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import psutil
import xarray as xr
import yaml

from .classifier import AxisSet
from .constants import DEFAULT_MAX_DATASET_BYTES, LEVEL_TYPE_NAMES
from .exceptions import CapacityExceededError
from .geometry import Grid, grid_from_dict, grid_to_dict
from .records import GridRecord

CELL_BYTES = np.dtype(np.float64).itemsize

_LEVEL_TYPE_LABELS: Dict[int, str] = {}
for _name, _code in LEVEL_TYPE_NAMES.items():
    _LEVEL_TYPE_LABELS.setdefault(_code, _name)


def dataset_grid(dataset: xr.Dataset) -> Grid:
    """Rebuild the Grid stored in the 'grid_definition' attribute of an assembled dataset."""
    return grid_from_dict(yaml.safe_load(dataset.attrs['grid_definition']))


def param_index(dataset: xr.Dataset, param_id: int) -> Optional[int]:
    """Return the position of a parameter id on the param axis, or None when the dataset lacks it."""
    matches = np.flatnonzero(dataset['param'].values == param_id)
    return int(matches[0]) if matches.size else None


class DatasetAssembler:
    """
    Allocate and fill the dataset of one level type. The assembler is stateless between calls apart from its configuration, so one instance serves every level type of a run.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_DATASET_BYTES, producer_id: int = 0,
                 producer_name: str = '', verbose: bool = False) -> None:
        """
        Store the size ceiling and the producer metadata written into every dataset.

        Parameters:
            max_bytes (int): Largest allowed dataset size in bytes (default: 4 GiB).
            producer_id (int): Producer identifier written to the dataset attributes (default: 0).
            producer_name (str): Producer name written to the dataset attributes (default: '').
            verbose (bool): Print progress messages (default: False).

        Returns:
            None
        """
        self.max_bytes = int(max_bytes)
        self.producer_id = producer_id
        self.producer_name = producer_name
        self.verbose = verbose

    @staticmethod
    def estimate_bytes(axis_set: AxisSet) -> int:
        sizes = axis_set.sizes()
        return sizes['times'] * sizes['levels'] * sizes['params'] * sizes['locations'] * CELL_BYTES

    def check_capacity(self, axis_set: AxisSet) -> int:
        """
        Verify that the dataset of an AxisSet fits under the configured ceiling before it is allocated. The error message lists every axis count, the total cell count, the estimated bytes, the ceiling and the available system memory reported by psutil.

        Parameters:
            axis_set (AxisSet): Axes of the dataset to allocate.

        Returns:
            int: Estimated size in bytes.

        Raises:
            CapacityExceededError: If the estimate exceeds the ceiling.
        """
        needed = self.estimate_bytes(axis_set)
        if needed <= self.max_bytes:
            return needed

        sizes = axis_set.sizes()
        cells = sizes['times'] * sizes['levels'] * sizes['params'] * sizes['locations']
        available_gb = psutil.virtual_memory().available / (1024**3)
        message = (
            f"Dataset for level type {axis_set.level_type} is too large: "
            f"times={sizes['times']} levels={sizes['levels']} params={sizes['params']} "
            f"locations={sizes['locations']} ({axis_set.grid.nx}x{axis_set.grid.ny}) "
            f"cells={cells} bytes={needed} exceeds maximum {self.max_bytes} bytes "
            f"(available memory {available_gb:.1f} GB)"
        )
        raise CapacityExceededError(message, dict(sizes, cells=cells, bytes=needed))

    def assemble(self, axis_set: AxisSet, records: Sequence[GridRecord]) -> Optional[xr.Dataset]:
        """
        Allocate the dataset of one AxisSet and copy every matching record into it. A record contributes only when its level type and grid equal the AxisSet's and its valid time, level and parameter all exist on the axes. Within a cell a sample is written only where the destination is still missing, so the first non-missing value wins, except that corrected reports overwrite the whole cell. Generated parameters start out entirely missing and are filled later by the derived parameter stage.

        Parameters:
            axis_set (AxisSet): Axes of the dataset.
            records (Sequence[GridRecord]): Filtered records of the batch.

        Returns:
            Optional[xr.Dataset]: The filled dataset, or None when no parameter or no time received data.

        Raises:
            CapacityExceededError: If the dataset would exceed the size ceiling.
        """
        self.check_capacity(axis_set)

        grid = axis_set.grid
        shape = (len(axis_set.times), len(axis_set.levels), len(axis_set.params), grid.ny, grid.nx)
        data = np.full(shape, np.nan, dtype=np.float64)

        time_index: Dict[pd.Timestamp, int] = {pd.Timestamp(t): i for i, t in enumerate(axis_set.times)}
        level_index = {float(level): k for k, level in enumerate(axis_set.levels)}
        param_positions = {pid: p for p, pid in enumerate(axis_set.param_ids)}

        written = 0
        for record in records:
            if record.level_type != axis_set.level_type or record.grid != grid:
                continue
            t = time_index.get(pd.Timestamp(record.valid_time))
            k = level_index.get(float(record.level_value))
            p = param_positions.get(record.param_id)
            if t is None or k is None or p is None:
                continue

            cell = data[t, k, p]
            if record.corrected:
                cell[...] = record.field.values
            else:
                empty = np.isnan(cell)
                cell[empty] = record.field.values[empty]
            written += 1

        filled = ~np.isnan(data)
        if not filled.any(axis=(0, 1, 3, 4)).any() or not filled.any(axis=(1, 2, 3, 4)).any():
            if self.verbose:
                print(f"No data for level type {axis_set.level_type}, skipping dataset")
            return None

        if self.verbose:
            print(f"Assembled {written} records into {axis_set.describe()}")
        return self._build_dataset(axis_set, data)

    def _build_dataset(self, axis_set: AxisSet, data: np.ndarray) -> xr.Dataset:
        lons, lats = axis_set.grid.cell_latlons()
        attrs = {
            'level_type': int(axis_set.level_type),
            'level_type_name': _LEVEL_TYPE_LABELS.get(axis_set.level_type, str(axis_set.level_type)),
            'grid': axis_set.grid.describe(),
            'grid_family': axis_set.grid.family,
            'grid_definition': yaml.safe_dump(grid_to_dict(axis_set.grid), default_flow_style=True).strip(),
            'origin_time': pd.Timestamp(axis_set.origin_time).isoformat(),
            'producer_id': int(self.producer_id),
            'producer_name': self.producer_name,
            'time_range': axis_set.time_range.describe() if axis_set.time_range is not None else '',
        }
        return xr.Dataset(
            data_vars={'values': (('time', 'level', 'param', 'y', 'x'), data)},
            coords={
                'time': pd.DatetimeIndex([pd.Timestamp(t) for t in axis_set.times]),
                'level': np.asarray(axis_set.levels, dtype=np.float64),
                'param': np.asarray(axis_set.param_ids, dtype=np.int64),
                'param_name': ('param', [p.name for p in axis_set.params]),
                'lon': (('y', 'x'), np.array(lons)),
                'lat': (('y', 'x'), np.array(lats)),
            },
            attrs=attrs,
        )
