#!/usr/bin/env python3
"""
Grid Conversion Pipeline Integration Tests

This module tests complete conversion runs from eccodes-style messages to assembled datasets: per-record conversion with missing value handling, rejection of unsupported input without stopping the run, the whole-batch stage order including derived hybrid pressure and relative humidity, the empty result of a batch whose records are all filtered out, fatal remap conflicts, source ordering across several decoders, and identical output from the serial and thread backends.

Tests Performed:
    TestConvertRecord:
        - test_latlon_record_converted: Field, level and times of one converted message
        - test_unsupported_grid_rejected: Unknown grid types come back as a rejection
        - test_zero_size_grid_rejected: Grids without columns come back as a rejection
        - test_transform_failure_rejected: Crop or reprojection arithmetic errors reject the record

    TestPipelineRun:
        - test_surface_and_hybrid_datasets: One dataset per level type in first-seen order
        - test_missing_value_sentinel: Sentinel samples become NaN cells
        - test_pascal_levels_share_hpa_axis: isobaricInPa levels join the hPa level axis
        - test_derived_pressure_and_humidity: Hybrid pressure and RH computed from the batch
        - test_no_derived_parameters: Switching derivation off adds no generated params
        - test_unsupported_input_counted: Unsupported records are counted, the run continues
        - test_empty_grid_does_not_stop_run: A zero-column message is counted and skipped
        - test_all_records_filtered: Control tiles only give an empty result
        - test_empty_batch: No sources at all give an empty result
        - test_remap_conflict_is_fatal: Remap conflicts propagate out of run
        - test_sources_merged_in_order: Several decoders feed one time axis
        - test_thread_backend_matches_serial: Backends produce identical datasets
        - test_timings_recorded: Stage timings are reported in seconds

Testing Approach:
    unittest test cases driving GridConversionPipeline through InMemoryDecoder with 3x3 latitude/longitude messages whose expected values can be computed by hand.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import Mock

import numpy as np

package_dir = Path(__file__).parent.parent
sys.path.insert(0, str(package_dir))

from gridassembler.diagnostics.humidity import calc_relative_humidity
from gridassembler.processing.classifier import REJECT_CONTROL_TILE
from gridassembler.processing.exceptions import RemapConflictError
from gridassembler.processing.normalizer import ValueFieldNormalizer
from gridassembler.processing.pipeline import (
    REJECT_UNSUPPORTED, GridConversionPipeline, RecordConversionContext, convert_record,
)
from gridassembler.processing.records import InMemoryDecoder
from gridassembler.processing.remapping import SpatialTransformEngine
from gridassembler.processing.resolver import GridGeometryResolver
from gridassembler.processing.utils_config import ConversionConfig
from tests.sample_data import latlon_message


def constant(value: float):
    return [value] * 9


def surface_pressure(hour: int = 0, value: float = 1013.0):
    return latlon_message(472, constant(value), 3, 3, hour=hour, short_name='sp')


def hybrid_messages(hour: int = 0):
    return [
        latlon_message(4, constant(20.0), 3, 3, level_type='hybrid', level=1, hour=hour,
                       short_name='t', pv=[0.0, 1.0]),
        latlon_message(133, constant(0.0073), 3, 3, level_type='hybrid', level=1, hour=hour,
                       short_name='q', pv=[0.0, 1.0]),
    ]


class TestConvertRecord(unittest.TestCase):
    """Tests for the per-record conversion function."""

    def setUp(self) -> None:
        self.context = RecordConversionContext(
            resolver=GridGeometryResolver(),
            normalizer=ValueFieldNormalizer(verbose=False),
            engine=SpatialTransformEngine(),
        )

    def test_latlon_record_converted(self) -> None:
        message = latlon_message(11, list(range(9)), 3, 3, level_type='isobaricInhPa', level=500, hour=6)
        record = next(iter(InMemoryDecoder([message])))
        outcome = convert_record(record, self.context)

        self.assertTrue(outcome.accepted)
        converted = outcome.record
        self.assertEqual((converted.level_type, converted.level_value), (100, 500.0))
        self.assertEqual(converted.valid_time.hour, 6)
        self.assertEqual(converted.grid.shape, (3, 3))
        self.assertIsNone(converted.coefficients)

    def test_unsupported_grid_rejected(self) -> None:
        message = latlon_message(11, constant(1.0), 3, 3, gridType='sh')
        record = next(iter(InMemoryDecoder([message])))
        outcome = convert_record(record, self.context)
        self.assertFalse(outcome.accepted)
        self.assertIn('sh', outcome.reason)

    def test_zero_size_grid_rejected(self) -> None:
        message = latlon_message(11, [], 0, 3)
        outcome = convert_record(next(iter(InMemoryDecoder([message]))), self.context)
        self.assertFalse(outcome.accepted)
        self.assertIn('0x3', outcome.reason)

    def test_transform_failure_rejected(self) -> None:
        engine = Mock()
        engine.transform.side_effect = OverflowError('cannot convert float infinity to integer')
        context = RecordConversionContext(resolver=GridGeometryResolver(),
                                          normalizer=ValueFieldNormalizer(verbose=False), engine=engine,
                                          crop=(0.0, 0.0, 5.0, 90.0))
        record = next(iter(InMemoryDecoder([latlon_message(11, constant(1.0), 3, 3)])))
        outcome = convert_record(record, context)
        self.assertFalse(outcome.accepted)
        self.assertIn('infinity', outcome.reason)


class TestPipelineRun(unittest.TestCase):
    """
    Tests for GridConversionPipeline.run.

    Scope:
        Stage order, derived parameters, rejections and empty results.
    Test data:
        3x3 messages over [0,10]x[0,10] on surface, hybrid and pressure levels.
    """

    def make_pipeline(self, **options) -> GridConversionPipeline:
        options.setdefault('quiet', True)
        return GridConversionPipeline(ConversionConfig(**options))

    def test_surface_and_hybrid_datasets(self) -> None:
        messages = [surface_pressure()] + hybrid_messages()
        result = self.make_pipeline().run([InMemoryDecoder(messages)])

        self.assertEqual(list(result.datasets), [1, 109])
        self.assertEqual(result.record_count, 3)
        self.assertEqual(result.rejected_count, 0)
        hybrid = result.datasets[109]
        self.assertEqual(list(hybrid['param'].values), [4, 133, 1, 13])
        self.assertEqual(hybrid['values'].shape, (1, 1, 4, 3, 3))

    def test_missing_value_sentinel(self) -> None:
        values = constant(280.0)
        values[4] = 9999.0
        message = latlon_message(11, values, 3, 3, level_type='isobaricInhPa', level=850)
        result = self.make_pipeline().run([InMemoryDecoder([message])])
        cell = result.datasets[100]['values'].values[0, 0, 0]
        self.assertTrue(np.isnan(cell[1, 1]))
        self.assertEqual(np.count_nonzero(np.isnan(cell)), 1)

    def test_pascal_levels_share_hpa_axis(self) -> None:
        messages = [
            latlon_message(11, constant(280.0), 3, 3, level_type='isobaricInhPa', level=850),
            latlon_message(11, constant(250.0), 3, 3, level_type='isobaricInPa', level=50000),
        ]
        result = self.make_pipeline().run([InMemoryDecoder(messages)])
        pressure = result.datasets[100]
        self.assertEqual(list(pressure['level'].values), [500.0, 850.0])
        np.testing.assert_allclose(pressure['values'].values[0, 0, 0], 250.0)

    def test_derived_pressure_and_humidity(self) -> None:
        """
        Verify the derived parameter stage on a complete batch. The hybrid records carry the vertical coordinate pair a=0, b=1 for level 1, so the hybrid pressure equals the surface pressure of 1013 hPa. Relative humidity on the hybrid level is then computed from that pressure, the 20 degree temperature and the specific humidity, which requires the pressure pass to run first.

        Parameters:
            None

        Returns:
            None
        """
        messages = [surface_pressure()] + hybrid_messages()
        result = self.make_pipeline().run([InMemoryDecoder(messages)])
        values = result.datasets[109]['values'].values[0, 0]

        np.testing.assert_allclose(values[2], 1013.0)
        expected = float(calc_relative_humidity(1013.0, 20.0, 0.0073))
        np.testing.assert_allclose(values[3], expected)
        self.assertEqual(result.datasets[109].attrs['pressure_units'], 'hPa')

    def test_no_derived_parameters(self) -> None:
        messages = [surface_pressure()] + hybrid_messages()
        pipeline = self.make_pipeline(compute_hybrid_pressure=False, compute_relative_humidity=False)
        result = pipeline.run([InMemoryDecoder(messages)])
        self.assertEqual(list(result.datasets[109]['param'].values), [4, 133])
        self.assertEqual(list(result.datasets[1]['param'].values), [472])

    def test_unsupported_input_counted(self) -> None:
        messages = [latlon_message(11, constant(1.0), 3, 3, gridType='sh'), surface_pressure()]
        result = self.make_pipeline().run([InMemoryDecoder(messages)])
        self.assertEqual(result.rejections[REJECT_UNSUPPORTED], 1)
        self.assertEqual(result.record_count, 1)
        self.assertIn(1, result.datasets)

    def test_empty_grid_does_not_stop_run(self) -> None:
        """
        Verify that a message declaring zero columns is rejected on its own. The record is counted as unsupported input and the surface pressure message of the same source is still converted and assembled.

        Parameters:
            None

        Returns:
            None
        """
        messages = [latlon_message(11, [], 0, 3), surface_pressure()]
        result = self.make_pipeline().run([InMemoryDecoder(messages)])
        self.assertEqual(result.rejections[REJECT_UNSUPPORTED], 1)
        self.assertEqual(list(result.datasets), [1])

    def test_all_records_filtered(self) -> None:
        """
        Verify that a batch with zero surviving records after filtering returns an empty result, not a thrown error. The only message is a 2x2 control tile, which the classifier discards.

        Parameters:
            None

        Returns:
            None
        """
        message = latlon_message(11, [1.0, 2.0, 3.0, 4.0], 2, 2, box=(0.0, 0.0, 1.0, 1.0))
        result = self.make_pipeline().run([InMemoryDecoder([message])])
        self.assertTrue(result.is_empty)
        self.assertEqual(result.axes, {})
        self.assertEqual(result.rejections[REJECT_CONTROL_TILE], 1)

    def test_empty_batch(self) -> None:
        result = self.make_pipeline().run([])
        self.assertTrue(result.is_empty)
        self.assertEqual(result.record_count, 0)
        self.assertEqual(result.rejected_count, 0)

    def test_remap_conflict_is_fatal(self) -> None:
        messages = [latlon_message(11, constant(1.0), 3, 3), latlon_message(4, constant(2.0), 3, 3)]
        pipeline = self.make_pipeline(param_table=["11;4;T"])
        with self.assertRaises(RemapConflictError):
            pipeline.run([InMemoryDecoder(messages)])

    def test_sources_merged_in_order(self) -> None:
        first = InMemoryDecoder([surface_pressure(hour=6, value=1000.0)], name='first')
        second = InMemoryDecoder([surface_pressure(hour=0, value=990.0)], name='second')
        result = self.make_pipeline(compute_relative_humidity=False).run([first, second])

        surface = result.datasets[1]
        self.assertEqual([t.hour for t in surface['time'].to_index()], [0, 6])
        np.testing.assert_allclose(surface['values'].values[0, 0, 0], 990.0)
        np.testing.assert_allclose(surface['values'].values[1, 0, 0], 1000.0)

    def test_thread_backend_matches_serial(self) -> None:
        messages = [surface_pressure()] + hybrid_messages() + hybrid_messages(hour=3)
        serial = self.make_pipeline().run([InMemoryDecoder(messages)])
        threaded = self.make_pipeline(backend='thread', workers=2).run([InMemoryDecoder(messages)])

        self.assertEqual(list(serial.datasets), list(threaded.datasets))
        for level_type, dataset in serial.datasets.items():
            np.testing.assert_array_equal(dataset['values'].values, threaded.datasets[level_type]['values'].values)

    def test_timings_recorded(self) -> None:
        result = self.make_pipeline().run([InMemoryDecoder([surface_pressure()])])
        for stage in ('decode', 'convert', 'classify', 'axes', 'assemble', 'derive'):
            self.assertIn(stage, result.timings)
            self.assertGreaterEqual(result.timings[stage], 0.0)


if __name__ == '__main__':
    unittest.main()
