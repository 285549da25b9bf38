#!/usr/bin/env python3
"""
Dataset Persistence Unit Tests

This module tests the NetCDF sink that stores assembled datasets: file name construction from the prefix, level type name and origin time, writing into a directory that does not exist yet, reading the written file back with xarray, and the boolean failure report when the destination cannot be written.

Tests Performed:
    TestNetCDFDatasetSink:
        - test_output_path: Prefix, level type name and origin time in the file name
        - test_write_and_read_back: Values, coordinates and attributes survive the file
        - test_write_failure_returns_false: Unwritable destinations give False

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import os
import sys
import tempfile
import unittest
from pathlib import Path

import numpy as np
import xarray as xr

package_dir = Path(__file__).parent.parent
sys.path.insert(0, str(package_dir))

from gridassembler.processing.assembler import DatasetAssembler, dataset_grid
from gridassembler.processing.classifier import AxisSet, ParamInfo
from gridassembler.processing.persistence import NetCDFDatasetSink
from tests.sample_data import ORIGIN, grid_record, latlon_grid

GRID = latlon_grid(0.0, 0.0, 10.0, 10.0, 3, 3)


def pressure_level_dataset() -> xr.Dataset:
    axes = AxisSet(level_type=100, grid=GRID, times=[ORIGIN], levels=[500.0, 850.0],
                   params=[ParamInfo(11, 't'), ParamInfo(33, 'u')], origin_time=ORIGIN)
    records = [grid_record(GRID, np.arange(9.0).reshape(3, 3), param_id=11, level_type=100, level_value=500.0)]
    return DatasetAssembler(producer_id=98, producer_name='test').assemble(axes, records)


class TestNetCDFDatasetSink(unittest.TestCase):
    """
    Tests for NetCDFDatasetSink.

    Scope:
        File naming, writing and reading back through xarray.
    Test data:
        One assembled pressure level dataset on a 3x3 grid.
    """

    def setUp(self) -> None:
        self.dataset = pressure_level_dataset()
        self.sink = NetCDFDatasetSink(verbose=False)

    def test_output_path(self) -> None:
        path = NetCDFDatasetSink.output_path('/data/out', self.dataset, prefix='run')
        self.assertEqual(path, os.path.join('/data/out', 'run_isobaricInhPa_20240101T0000.nc'))

    def test_write_and_read_back(self) -> None:
        """
        Verify that a dataset written into a missing subdirectory can be opened again with the same values, coordinates and grid metadata. Missing cells must still be NaN and the grid must be rebuilt from the stored definition.

        Parameters:
            None

        Returns:
            None
        """
        with tempfile.TemporaryDirectory() as tmpdir:
            path = self.sink.output_path(os.path.join(tmpdir, 'nested'), self.dataset)
            self.assertTrue(self.sink.write(self.dataset, path))
            self.assertTrue(os.path.exists(path))

            with xr.open_dataset(path) as loaded:
                loaded.load()
            np.testing.assert_array_equal(loaded['values'].values, self.dataset['values'].values)
            self.assertEqual(list(loaded['param'].values), [11, 33])
            self.assertEqual(list(loaded['param_name'].values), ['t', 'u'])
            self.assertEqual(loaded.attrs['producer_id'], 98)
            self.assertEqual(dataset_grid(loaded), GRID)

    def test_write_failure_returns_false(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            blocker = os.path.join(tmpdir, 'blocker')
            Path(blocker).write_text('not a directory')
            self.assertFalse(self.sink.write(self.dataset, os.path.join(blocker, 'out.nc')))


if __name__ == '__main__':
    unittest.main()
