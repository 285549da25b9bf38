#!/usr/bin/env python3
"""
Dataset Assembler Unit Tests

This module tests the allocation and filling of per-level-type datasets: the capacity ceiling with its itemized error, cell placement by time, level and parameter, the first-write-wins rule and its corrected report exception, skipping of records on foreign grids, and the metadata attributes that let later stages rebuild the dataset grid.

Tests Performed:
    TestCapacity:
        - test_estimate_bytes: Product of axis sizes times eight bytes
        - test_capacity_exceeded: Error carries the itemized axis sizes

    TestAssemble:
        - test_cells_placed_by_axes: Records land at their time, level and param positions
        - test_first_value_wins: Later duplicates only fill missing samples
        - test_corrected_overwrites: Corrected reports replace the whole cell
        - test_foreign_grid_skipped: Records on other grids are ignored
        - test_empty_returns_none: No data for any param returns None
        - test_attributes_and_grid_roundtrip: Attributes and dataset_grid
        - test_generated_param_starts_missing: Generated params are all NaN

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
import unittest
from datetime import datetime
from pathlib import Path

import numpy as np

package_dir = Path(__file__).parent.parent
sys.path.insert(0, str(package_dir))

from gridassembler.processing.assembler import DatasetAssembler, dataset_grid, param_index
from gridassembler.processing.classifier import AxisSet, ParamInfo
from gridassembler.processing.exceptions import CapacityExceededError
from tests.sample_data import ORIGIN, grid_record, latlon_grid

GRID = latlon_grid(0.0, 0.0, 10.0, 10.0, 3, 3)


def make_axes(level_type=100, levels=(500.0, 850.0), params=((11, 't'), (33, 'u')), hours=(0, 6)):
    return AxisSet(
        level_type=level_type,
        grid=GRID,
        times=[datetime(2024, 1, 1, h) for h in hours],
        levels=list(levels),
        params=[ParamInfo(pid, name) for pid, name in params],
        origin_time=ORIGIN,
    )


class TestCapacity(unittest.TestCase):
    """Tests for DatasetAssembler capacity checks."""

    def test_estimate_bytes(self) -> None:
        self.assertEqual(DatasetAssembler.estimate_bytes(make_axes()), 2 * 2 * 2 * 9 * 8)

    def test_capacity_exceeded(self) -> None:
        """
        Verify that a dataset larger than the ceiling is refused before allocation. The error must carry the axis counts so callers can tell which dimension to reduce, and the message must mention the number of cells.

        Parameters:
            None

        Returns:
            None
        """
        assembler = DatasetAssembler(max_bytes=100)
        with self.assertRaises(CapacityExceededError) as context:
            assembler.assemble(make_axes(), [])
        error = context.exception
        self.assertEqual(error.sizes['times'], 2)
        self.assertEqual(error.sizes['locations'], 9)
        self.assertEqual(error.sizes['cells'], 72)
        self.assertIn('cells=72', str(error))
        self.assertIsInstance(error, MemoryError)


class TestAssemble(unittest.TestCase):
    """
    Tests for DatasetAssembler.assemble.

    Scope:
        Cell placement, overwrite rules and dataset metadata.
    Test data:
        Constant records on a 3x3 lat/lon grid at pressure levels.
    """

    def setUp(self) -> None:
        self.assembler = DatasetAssembler(producer_id=98, producer_name='test')

    def record(self, value, **kwargs):
        kwargs.setdefault('level_type', 100)
        kwargs.setdefault('level_value', 500.0)
        return grid_record(GRID, value, **kwargs)

    def test_cells_placed_by_axes(self) -> None:
        records = [self.record(1.0, param_id=11, hour=0), self.record(2.0, param_id=33, level_value=850.0, hour=6)]
        ds = self.assembler.assemble(make_axes(), records)
        values = ds['values'].values
        self.assertEqual(values.shape, (2, 2, 2, 3, 3))
        np.testing.assert_array_equal(values[0, 0, 0], 1.0)
        np.testing.assert_array_equal(values[1, 1, 1], 2.0)
        self.assertTrue(np.isnan(values[0, 1, 1]).all())

    def test_first_value_wins(self) -> None:
        first = self.record(1.0, param_id=11)
        first.field.values[0, 0] = np.nan
        second = self.record(5.0, param_id=11)
        ds = self.assembler.assemble(make_axes(), [first, second])
        cell = ds['values'].values[0, 0, 0]
        self.assertEqual(cell[0, 0], 5.0)
        self.assertEqual(cell[1, 1], 1.0)

    def test_corrected_overwrites(self) -> None:
        records = [self.record(1.0, param_id=11), self.record(9.0, param_id=11, corrected=True)]
        ds = self.assembler.assemble(make_axes(), records)
        np.testing.assert_array_equal(ds['values'].values[0, 0, 0], 9.0)

    def test_foreign_grid_skipped(self) -> None:
        other = grid_record(latlon_grid(0.0, 0.0, 20.0, 20.0, 3, 3), 4.0, param_id=11,
                            level_type=100, level_value=500.0)
        ds = self.assembler.assemble(make_axes(), [other, self.record(1.0, param_id=33)])
        self.assertTrue(np.isnan(ds['values'].values[:, :, 0]).all())

    def test_empty_returns_none(self) -> None:
        self.assertIsNone(self.assembler.assemble(make_axes(), []))
        unknown_time = self.record(1.0, param_id=11, hour=12)
        self.assertIsNone(self.assembler.assemble(make_axes(), [unknown_time]))

    def test_attributes_and_grid_roundtrip(self) -> None:
        ds = self.assembler.assemble(make_axes(), [self.record(1.0, param_id=11)])
        self.assertEqual(ds.attrs['level_type'], 100)
        self.assertEqual(ds.attrs['level_type_name'], 'isobaricInhPa')
        self.assertEqual(ds.attrs['producer_id'], 98)
        self.assertEqual(ds.attrs['origin_time'], '2024-01-01T00:00:00')
        self.assertEqual(dataset_grid(ds), GRID)
        self.assertEqual(list(ds['param_name'].values), ['t', 'u'])
        self.assertEqual(param_index(ds, 33), 1)
        self.assertIsNone(param_index(ds, 1))
        np.testing.assert_allclose(ds['lon'].values[0], [0.0, 5.0, 10.0])

    def test_generated_param_starts_missing(self) -> None:
        axes = make_axes(params=((11, 't'), (13, 'Humidity')))
        axes.generated_params = [13]
        ds = self.assembler.assemble(axes, [self.record(1.0, param_id=11)])
        self.assertTrue(np.isnan(ds['values'].values[:, :, 1]).all())


if __name__ == '__main__':
    unittest.main()
