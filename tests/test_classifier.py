#!/usr/bin/env python3
"""
Record Classifier and Axis Builder Unit Tests

This module tests the whole-batch classification stage: parameter remapping with affine conversion and forced surface level, the conflict check between remapped and unmodified parameters, every record filter with its rejection reason, and the discovery of time, level and parameter axes per level type.

Tests Performed:
    TestParamRemap:
        - test_remap_identity_and_conversion: Id, name and base + value * scale
        - test_level_restricted_rule_moves_to_surface: Level rules move records to level type 1
        - test_conflict_detected: Remapped id colliding with an unmodified id raises
        - test_conflict_message_names_both: Message names changed, original and unchanged params
        - test_no_table_is_identity: Empty tables keep records unchanged

    TestFilters:
        - test_control_tile_rejected: 2x2 grids are discarded
        - test_ignored_levels: Both level syntaxes and wildcards
        - test_accepted_level_types: Only listed level types pass
        - test_crop_unmentioned_params: Params not produced by the table are dropped
        - test_step_range_selection: Positive and negative wanted step ranges
        - test_rejection_counts: Counter keyed by reason

    TestAxisBuilding:
        - test_axes_sorted_and_deduplicated: Times and levels sorted, params first-seen
        - test_most_popular_grid_wins: Params on other grids are excluded
        - test_levels_only_from_chosen_grid: Levels seen only on other grids are excluded
        - test_generated_params_appended: Pressure and humidity added for hybrid levels
        - test_implausible_times_yield_no_axes: Times before 1950 are dropped
        - test_time_range_detected: Evenly spaced times produce a TimeRange

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

from gridassembler.processing.classifier import (
    REJECT_CONTROL_TILE, REJECT_IGNORED_LEVEL, REJECT_LEVEL_TYPE, REJECT_NOT_IN_TABLE,
    REJECT_STEP_RANGE, RecordClassifier,
)
from gridassembler.processing.exceptions import RemapConflictError
from gridassembler.processing.utils_config import ConversionConfig
from tests.sample_data import grid_record, latlon_grid

GRID = latlon_grid(0.0, 0.0, 10.0, 10.0, 3, 3)


class TestParamRemap(unittest.TestCase):
    """
    Tests for RecordClassifier.apply_param_remap and apply_conversion.

    Scope:
        Rule application, conflict detection and affine conversion.
    Test data:
        Inline remap rules and constant-valued records.
    """

    def make_classifier(self, *rules: str) -> RecordClassifier:
        return RecordClassifier(ConversionConfig(param_table=list(rules)))

    def test_remap_identity_and_conversion(self) -> None:
        classifier = self.make_classifier("11;4;T;-273.15;1")
        records = classifier.apply_conversion(classifier.apply_param_remap([grid_record(GRID, 300.0)]))
        record = records[0]
        self.assertEqual((record.param_id, record.param_name), (4, 'T'))
        self.assertEqual((record.original_param_id, record.original_param_name), (11, 'p11'))
        self.assertTrue(record.remapped)
        np.testing.assert_allclose(record.field.values, 26.85)

    def test_level_restricted_rule_moves_to_surface(self) -> None:
        classifier = self.make_classifier("11;58;T2;0;1;105;2")
        at_two = grid_record(GRID, 1.0, level_type=105, level_value=2.0)
        at_ten = grid_record(GRID, 1.0, level_type=105, level_value=10.0, param_id=12)
        records = classifier.apply_param_remap([at_two, at_ten])
        self.assertEqual((records[0].param_id, records[0].level_type, records[0].level_value), (58, 1, 0.0))
        self.assertEqual((records[1].param_id, records[1].level_type), (12, 105))

    def test_conflict_detected(self) -> None:
        """
        Verify that a remap producing an id which another record carries unmodified aborts the run. Parameter 11 is remapped to 4 while another record already has parameter 4 without any rule applied, so the resulting dataset would mix two different quantities under one id.

        Parameters:
            None

        Returns:
            None
        """
        classifier = self.make_classifier("11;4;T")
        records = [grid_record(GRID, 1.0, param_id=11), grid_record(GRID, 1.0, param_id=4)]
        with self.assertRaises(RemapConflictError):
            classifier.apply_param_remap(records)

    def test_conflict_message_names_both(self) -> None:
        classifier = self.make_classifier("11;4;T")
        records = [grid_record(GRID, 1.0, param_id=4), grid_record(GRID, 1.0, param_id=11)]
        with self.assertRaisesRegex(RemapConflictError, r"(?s)id: 4 name: T.*id: 11 name: p11.*id: 4 name: p4"):
            classifier.apply_param_remap(records)

    def test_no_table_is_identity(self) -> None:
        records = [grid_record(GRID, 1.0)]
        self.assertEqual(RecordClassifier().apply_param_remap(records), records)


class TestFilters(unittest.TestCase):
    """Tests for the record filters and their rejection reasons."""

    def test_control_tile_rejected(self) -> None:
        small = grid_record(latlon_grid(0.0, 0.0, 1.0, 1.0, 2, 2), 1.0)
        self.assertEqual(RecordClassifier().rejection_reason(small), REJECT_CONTROL_TILE)
        self.assertIsNone(RecordClassifier().rejection_reason(grid_record(GRID, 1.0)))

    def test_ignored_levels(self) -> None:
        classifier = RecordClassifier(ConversionConfig(ignored_levels=['t105v2', '109,*']))
        self.assertEqual(classifier.rejection_reason(grid_record(GRID, 1.0, level_type=105, level_value=2.0)),
                         REJECT_IGNORED_LEVEL)
        self.assertIsNone(classifier.rejection_reason(grid_record(GRID, 1.0, level_type=105, level_value=10.0)))
        self.assertEqual(classifier.rejection_reason(grid_record(GRID, 1.0, level_type=109, level_value=65.0)),
                         REJECT_IGNORED_LEVEL)

    def test_accepted_level_types(self) -> None:
        classifier = RecordClassifier(ConversionConfig(accepted_level_types=[100, 109]))
        self.assertEqual(classifier.rejection_reason(grid_record(GRID, 1.0, level_type=1)), REJECT_LEVEL_TYPE)
        self.assertIsNone(classifier.rejection_reason(grid_record(GRID, 1.0, level_type=100, level_value=500.0)))

    def test_crop_unmentioned_params(self) -> None:
        classifier = RecordClassifier(ConversionConfig(param_table=["11;4;T"], crop_unmentioned_params=True))
        kept, rejected = classifier.classify([grid_record(GRID, 1.0, param_id=11),
                                              grid_record(GRID, 1.0, param_id=61)])
        self.assertEqual([r.param_id for r in kept], [4])
        self.assertEqual(rejected[REJECT_NOT_IN_TABLE], 1)

    def test_step_range_selection(self) -> None:
        three = grid_record(GRID, 1.0, param_id=61, step_range='3-6')
        six = grid_record(GRID, 1.0, param_id=61, step_range='0-6')
        instant = grid_record(GRID, 1.0, param_id=61, step_range='6')
        keep_three = RecordClassifier(ConversionConfig(wanted_step_range=3, step_range_params=[61]))
        drop_three = RecordClassifier(ConversionConfig(wanted_step_range=-3, step_range_params=[61]))
        self.assertTrue(keep_three.is_step_range_correct(three))
        self.assertFalse(keep_three.is_step_range_correct(six))
        self.assertTrue(keep_three.is_step_range_correct(instant))
        self.assertFalse(drop_three.is_step_range_correct(three))
        self.assertTrue(drop_three.is_step_range_correct(six))
        self.assertEqual(keep_three.rejection_reason(six), REJECT_STEP_RANGE)

    def test_rejection_counts(self) -> None:
        classifier = RecordClassifier(ConversionConfig(accepted_level_types=[1]))
        small = latlon_grid(0.0, 0.0, 1.0, 1.0, 2, 2)
        records = [grid_record(GRID, 1.0), grid_record(small, 1.0), grid_record(GRID, 1.0, level_type=100),
                   grid_record(GRID, 1.0, level_type=105)]
        kept, rejected = classifier.filter_records(records)
        self.assertEqual(len(kept), 1)
        self.assertEqual(rejected[REJECT_CONTROL_TILE], 1)
        self.assertEqual(rejected[REJECT_LEVEL_TYPE], 2)


class TestAxisBuilding(unittest.TestCase):
    """
    Tests for RecordClassifier.build_axes.

    Scope:
        Axis ordering, grid selection and generated parameters.
    Test data:
        Records on one or two grids with several times and levels.
    """

    def setUp(self) -> None:
        self.classifier = RecordClassifier(ConversionConfig(compute_hybrid_pressure=False,
                                                            compute_relative_humidity=False))

    def test_axes_sorted_and_deduplicated(self) -> None:
        records = [
            grid_record(GRID, 1.0, param_id=33, level_type=100, level_value=850.0, hour=6),
            grid_record(GRID, 1.0, param_id=11, level_type=100, level_value=500.0, hour=0),
            grid_record(GRID, 1.0, param_id=33, level_type=100, level_value=500.0, hour=6),
        ]
        axes = self.classifier.build_axes(records)
        axis_set = axes[100]
        self.assertEqual(axis_set.times, [datetime(2024, 1, 1, 0), datetime(2024, 1, 1, 6)])
        self.assertEqual(axis_set.levels, [500.0, 850.0])
        self.assertEqual(axis_set.param_ids, [33, 11])
        self.assertEqual(axis_set.sizes(), {'times': 2, 'levels': 2, 'params': 2, 'locations': 9})

    def test_most_popular_grid_wins(self) -> None:
        other = latlon_grid(0.0, 0.0, 20.0, 20.0, 5, 5)
        records = [grid_record(other, 1.0, param_id=1), grid_record(GRID, 1.0, param_id=11),
                   grid_record(GRID, 1.0, param_id=33)]
        axis_set = self.classifier.build_axes(records)[1]
        self.assertEqual(axis_set.grid, GRID)
        self.assertEqual(axis_set.param_ids, [11, 33])

    def test_levels_only_from_chosen_grid(self) -> None:
        other = latlon_grid(0.0, 0.0, 20.0, 20.0, 5, 5)
        records = [
            grid_record(GRID, 1.0, param_id=11, level_type=100, level_value=850.0),
            grid_record(GRID, 1.0, param_id=33, level_type=100, level_value=850.0),
            grid_record(other, 1.0, param_id=11, level_type=100, level_value=300.0),
        ]
        axis_set = self.classifier.build_axes(records)[100]
        self.assertEqual(axis_set.grid, GRID)
        self.assertEqual(axis_set.levels, [850.0])

    def test_grid_tie_keeps_first_seen(self) -> None:
        other = latlon_grid(0.0, 0.0, 20.0, 20.0, 5, 5)
        records = [grid_record(other, 1.0, param_id=1), grid_record(GRID, 1.0, param_id=11)]
        self.assertEqual(self.classifier.build_axes(records)[1].grid, other)

    def test_generated_params_appended(self) -> None:
        classifier = RecordClassifier(ConversionConfig())
        records = [grid_record(GRID, 1.0, param_id=4, level_type=109, level_value=1.0),
                   grid_record(GRID, 1.0, param_id=13, level_type=109, level_value=1.0)]
        axis_set = classifier.build_axes(records)[109]
        self.assertEqual(axis_set.param_ids, [4, 13, 1])
        self.assertEqual(axis_set.generated_params, [1])

    def test_implausible_times_yield_no_axes(self) -> None:
        old = grid_record(GRID, 1.0, valid_time=datetime(1900, 1, 1))
        self.assertEqual(self.classifier.build_axes([old]), {})

    def test_time_range_detected(self) -> None:
        records = [grid_record(GRID, 1.0, hour=h) for h in (0, 3, 6, 9)]
        axis_set = self.classifier.build_axes(records)[1]
        self.assertIsNotNone(axis_set.time_range)
        self.assertEqual(len(axis_set.time_range), 4)
        self.assertEqual(axis_set.time_range.to_list(), axis_set.times)

    def test_level_types_keep_first_seen_order(self) -> None:
        records = [grid_record(GRID, 1.0, level_type=109, level_value=1.0), grid_record(GRID, 1.0, level_type=1)]
        self.assertEqual(list(self.classifier.build_axes(records)), [109, 1])


if __name__ == '__main__':
    unittest.main()
