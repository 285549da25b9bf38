#!/usr/bin/env python3

"""
Record Classifier and Axis Builder

This module runs the whole-batch classification steps that follow the per-record conversion. Parameter remap rules are applied first: each record takes the first rule matching its original parameter id and level, which rewrites the parameter identity, may move the record to the surface level and may carry an affine base + value * scale conversion that is applied to the already transformed samples. A remap that turns one parameter into an id which other records of the batch carry unmodified is a configuration conflict that would silently merge two unrelated parameters, so it aborts the run. The filters then reject degenerate control tiles, ignored levels, level types outside the accepted list, parameters the remap table does not produce (when that policy is on) and accumulation variants whose step range does not match the wanted window, counting every rejection by reason. Finally the axes of every level type are discovered: plausible valid times in order (with a regular range description when evenly spaced), the sorted distinct levels, the most popular grid, the parameters observed on that grid in first-seen order and the generated parameters the derived parameter stage will add.

Classes:
    ParamInfo: Identifier and name of one dataset parameter.
    AxisSet: Discovered axes of one level type.
    GridUsageCounter: Occurrence counts of the grids of a batch.
    RecordClassifier: Applies remap rules, filters records and builds axes.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from collections import Counter, OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .constants import (
    LEVEL_GROUND_SURFACE, LEVEL_HYBRID, LEVEL_PRESSURE, SURFACE_LEVEL_VALUE,
)
from .exceptions import RemapConflictError
from .geometry import Field, Grid
from .records import GridRecord
from .utils_config import ConversionConfig, IgnoredLevel, ParamRemapTable
from .utils_datetime import GridDateTimeUtils, TimeRange

REJECT_CONTROL_TILE = 'control tile'
REJECT_IGNORED_LEVEL = 'ignored level'
REJECT_LEVEL_TYPE = 'level type not accepted'
REJECT_NOT_IN_TABLE = 'parameter not in remap table'
REJECT_STEP_RANGE = 'step range'

PRESSURE_PARAM_NAME = 'Pressure'
HUMIDITY_PARAM_NAME = 'Humidity'


class ParamInfo(NamedTuple):
    param_id: int
    name: str


@dataclass
class AxisSet:
    """
    Axes of the dataset of one level type. Times are strictly increasing, levels are sorted ascending and params list the observed parameters followed by the generated ones.
    """
    level_type: int
    grid: Grid
    times: List[datetime]
    levels: List[float]
    params: List[ParamInfo]
    origin_time: datetime
    time_range: Optional[TimeRange] = None
    generated_params: List[int] = field(default_factory=list)

    @property
    def param_ids(self) -> List[int]:
        return [p.param_id for p in self.params]

    def sizes(self) -> Dict[str, int]:
        return {
            'times': len(self.times),
            'levels': len(self.levels),
            'params': len(self.params),
            'locations': self.grid.nx * self.grid.ny,
        }

    def describe(self) -> str:
        sizes = self.sizes()
        return (f"level type {self.level_type}: {sizes['times']} times, {sizes['levels']} levels, "
                f"{sizes['params']} params on {self.grid.describe()}")


class GridUsageCounter:
    """Count grid occurrences while remembering first-seen order for tie breaking."""

    def __init__(self, grids: Iterable[Grid] = ()) -> None:
        self._counts: Counter = Counter()
        for grid in grids:
            self.add(grid)

    def add(self, grid: Grid) -> None:
        self._counts[grid] += 1

    def __len__(self) -> int:
        return len(self._counts)

    def counts(self) -> List[Tuple[Grid, int]]:
        """Return (grid, count) pairs, most used first; equal counts keep first-seen order."""
        return self._counts.most_common()

    def most_popular(self) -> Optional[Grid]:
        ranked = self._counts.most_common(1)
        return ranked[0][0] if ranked else None


class RecordClassifier:
    """
    Whole-batch classification of converted grid records. The classifier copies the options it needs from the configuration at construction and never mutates records in place; every step returns new record objects.
    """

    def __init__(self, config: Optional[ConversionConfig] = None,
                 remap_table: Optional[ParamRemapTable] = None, verbose: bool = False) -> None:
        """
        Initialize the classifier from a conversion configuration. The remap table may be passed already parsed; otherwise it is read from the configuration, which may involve reading the table file.

        Parameters:
            config (Optional[ConversionConfig]): Run configuration (default: None uses the defaults).
            remap_table (Optional[ParamRemapTable]): Parsed remap rules (default: None builds them from the configuration).
            verbose (bool): Print progress messages (default: False).

        Returns:
            None
        """
        config = config or ConversionConfig()
        self.remap_table = remap_table if remap_table is not None else config.get_param_remap_table()
        self.ignored_levels: List[IgnoredLevel] = config.get_ignored_levels()
        self.accepted_level_types = list(config.accepted_level_types)
        self.crop_unmentioned_params = config.crop_unmentioned_params
        self.wanted_step_range = config.wanted_step_range
        self.step_range_params = set(config.step_range_params)
        self.compute_hybrid_pressure = config.compute_hybrid_pressure
        self.compute_relative_humidity = config.compute_relative_humidity
        self.pressure_param_id = config.pressure_param_id
        self.humidity_param_id = config.humidity_param_id
        self.verbose = verbose

    def apply_param_remap(self, records: Sequence[GridRecord]) -> List[GridRecord]:
        """
        Apply the first matching remap rule to every record and check the result for conflicts. A rule restricted to a level moves the record to the surface level (type 1, value 0). The affine conversion of the rule is recorded on the record and applied later by apply_conversion.

        Parameters:
            records (Sequence[GridRecord]): Converted records of the batch.

        Returns:
            List[GridRecord]: Records with remapped parameter identities.

        Raises:
            RemapConflictError: If a remapped id collides with an unmodified parameter.
        """
        if not self.remap_table:
            return list(records)

        result = []
        for record in records:
            rule = self.remap_table.find(record.param_id, record.level_type, record.level_value)
            if rule is None:
                result.append(record)
                continue
            changes = {
                'param_id': rule.wanted_id,
                'param_name': rule.wanted_name,
                'original_param_id': record.param_id,
                'original_param_name': record.param_name,
                'remapped': True,
                'conversion_base': rule.base,
                'conversion_scale': rule.scale,
                'interpolation': rule.interpolation,
            }
            if rule.has_level:
                changes['level_type'] = LEVEL_GROUND_SURFACE
                changes['level_value'] = SURFACE_LEVEL_VALUE
            if self.verbose:
                suffix = " level -> sfc" if rule.has_level else ""
                print(f"{record.param_id} changed to {rule.wanted_id} {rule.wanted_name}{suffix}")
            result.append(replace(record, **changes))

        self.check_param_conflicts(result)
        return result

    @staticmethod
    def check_param_conflicts(records: Sequence[GridRecord]) -> None:
        """
        Fail when one parameter id is produced by a remap rule and also carried unmodified by another record. Changed and unchanged identities are tracked in separate maps keyed by the final id and the first collision found raises.

        Parameters:
            records (Sequence[GridRecord]): Records after remapping.

        Returns:
            None

        Raises:
            RemapConflictError: On the first colliding id, naming the changed parameter, its original identity and the unchanged parameter.
        """
        changed: Dict[int, Tuple[str, int, str]] = {}
        unchanged: Dict[int, str] = {}
        for record in records:
            key = record.param_id
            if record.remapped:
                changed.setdefault(key, (record.param_name, record.original_param_id, record.original_param_name))
                if key in unchanged:
                    raise RemapConflictError(_conflict_message(key, changed[key], unchanged[key]))
            else:
                unchanged.setdefault(key, record.param_name)
                if key in changed:
                    raise RemapConflictError(_conflict_message(key, changed[key], unchanged[key]))

    @staticmethod
    def apply_conversion(records: Sequence[GridRecord]) -> List[GridRecord]:
        """
        Apply the affine conversion base + value * scale of remapped records to their non-missing samples. Records without a conversion are returned unchanged.

        Parameters:
            records (Sequence[GridRecord]): Records after remapping and spatial transforms.

        Returns:
            List[GridRecord]: Records with converted samples.
        """
        result = []
        for record in records:
            if not record.remapped or (record.conversion_base == 0.0 and record.conversion_scale == 1.0):
                result.append(record)
                continue
            values = record.field.values * record.conversion_scale + record.conversion_base
            result.append(replace(record, field=Field(record.grid, values)))
        return result

    def is_ignored_level(self, record: GridRecord) -> bool:
        return any(level.matches(record.level_type, record.level_value) for level in self.ignored_levels)

    def is_accepted_level_type(self, record: GridRecord) -> bool:
        return not self.accepted_level_types or record.level_type in self.accepted_level_types

    def is_cropped_param(self, record: GridRecord) -> bool:
        """Return True when the parameter must be dropped because the remap table does not produce it."""
        if not self.crop_unmentioned_params or not self.remap_table:
            return False
        return not self.remap_table.mentions(record.param_id)

    def is_step_range_correct(self, record: GridRecord) -> bool:
        """
        Decide whether a record passes the accumulation window check. The check is disabled when the wanted step range is 0 and only applies to the configured parameter ids whose step range is a valid window. A positive wanted value keeps only that window length; a negative value keeps every window except the one of that length, which selects the complementary variant.

        Parameters:
            record (GridRecord): Record to check.

        Returns:
            bool: True when the record is kept.
        """
        wanted = self.wanted_step_range
        if wanted == 0 or record.param_id not in self.step_range_params:
            return True
        length = GridDateTimeUtils.get_step_range(record.step_range)
        if length <= 0:
            return True
        if wanted < 0:
            return length != -wanted
        return length == wanted

    def rejection_reason(self, record: GridRecord) -> Optional[str]:
        """Return the first filter rejecting the record, or None when it is kept."""
        if record.grid.nx <= 2 and record.grid.ny <= 2:
            return REJECT_CONTROL_TILE
        if self.is_ignored_level(record):
            return REJECT_IGNORED_LEVEL
        if not self.is_accepted_level_type(record):
            return REJECT_LEVEL_TYPE
        if self.is_cropped_param(record):
            return REJECT_NOT_IN_TABLE
        if not self.is_step_range_correct(record):
            return REJECT_STEP_RANGE
        return None

    def filter_records(self, records: Sequence[GridRecord]) -> Tuple[List[GridRecord], Counter]:
        """
        Apply every filter in order and count rejections by reason. Filtering never raises; the counter lets the caller report how many records each policy dropped.

        Parameters:
            records (Sequence[GridRecord]): Remapped records.

        Returns:
            Tuple[List[GridRecord], Counter]: Kept records in input order and rejection counts keyed by reason.
        """
        kept: List[GridRecord] = []
        rejected: Counter = Counter()
        for record in records:
            reason = self.rejection_reason(record)
            if reason is None:
                kept.append(record)
                continue
            rejected[reason] += 1
            if self.verbose:
                print(f"Discarding record #{record.index} ({record.describe()}): {reason}")
        return kept, rejected

    def generated_params(self, level_type: int) -> List[ParamInfo]:
        """Return the parameters the derived parameter stage adds to datasets of a level type."""
        generated = []
        if level_type == LEVEL_HYBRID:
            if self.compute_hybrid_pressure:
                generated.append(ParamInfo(self.pressure_param_id, PRESSURE_PARAM_NAME))
            if self.compute_relative_humidity:
                generated.append(ParamInfo(self.humidity_param_id, HUMIDITY_PARAM_NAME))
        elif level_type in (LEVEL_PRESSURE, LEVEL_GROUND_SURFACE):
            if self.compute_relative_humidity:
                generated.append(ParamInfo(self.humidity_param_id, HUMIDITY_PARAM_NAME))
        return generated

    def build_axes(self, records: Sequence[GridRecord]) -> Dict[int, AxisSet]:
        """
        Discover the axes of every level type present in the batch. Level types keep the order in which they first appear. A level type whose records carry no plausible valid time yields no AxisSet.

        Parameters:
            records (Sequence[GridRecord]): Filtered records, possibly stitched.

        Returns:
            Dict[int, AxisSet]: Axes keyed by level type.
        """
        groups: Dict[int, List[GridRecord]] = OrderedDict()
        for record in records:
            groups.setdefault(record.level_type, []).append(record)

        axes: Dict[int, AxisSet] = OrderedDict()
        for level_type, group in groups.items():
            axis_set = self.build_axis_set(level_type, group)
            if axis_set is not None:
                axes[level_type] = axis_set
                if self.verbose:
                    print(f"Axes for {axis_set.describe()}")
        return axes

    def build_axis_set(self, level_type: int, records: Sequence[GridRecord]) -> Optional[AxisSet]:
        """
        Build the axes of one level type. The grid used by most records is chosen, with the first seen grid winning ties, and only levels and parameters observed on that grid enter the level and parameter axes. Generated parameters are appended when they are not already observed.

        Parameters:
            level_type (int): Level type of the records.
            records (Sequence[GridRecord]): Records of that level type.

        Returns:
            Optional[AxisSet]: Discovered axes, or None when no usable time or record exists.
        """
        if not records:
            return None
        times, time_range = GridDateTimeUtils.build_time_axis(r.valid_time for r in records)
        if not times:
            return None

        grid = GridUsageCounter(r.grid for r in records).most_popular()
        levels = sorted({float(r.level_value) for r in records if r.grid == grid})

        params: Dict[int, ParamInfo] = OrderedDict()
        for record in records:
            if record.grid == grid and record.param_id not in params:
                params[record.param_id] = ParamInfo(record.param_id, record.param_name)
            elif record.grid != grid and self.verbose:
                print(f"Discarding record #{record.index} since its grid differs from the chosen one")

        generated = []
        for info in self.generated_params(level_type):
            if info.param_id not in params:
                params[info.param_id] = info
                generated.append(info.param_id)

        return AxisSet(
            level_type=level_type,
            grid=grid,
            times=times,
            levels=levels,
            params=list(params.values()),
            origin_time=records[0].origin_time,
            time_range=time_range,
            generated_params=generated,
        )

    def classify(self, records: Sequence[GridRecord]) -> Tuple[List[GridRecord], Counter]:
        """
        Run remapping, conversion and filtering in order. Axis discovery is left to the caller because the optional stitching stage runs between filtering and axis discovery.

        Parameters:
            records (Sequence[GridRecord]): Converted records of the batch.

        Returns:
            Tuple[List[GridRecord], Counter]: Kept records and rejection counts keyed by reason.

        Raises:
            RemapConflictError: If the remap table produces colliding parameter ids.
        """
        remapped = self.apply_conversion(self.apply_param_remap(records))
        return self.filter_records(remapped)


def _conflict_message(param_id: int, changed: Tuple[str, int, str], unchanged_name: str) -> str:
    changed_name, original_id, original_name = changed
    return (
        "Error - conflict with changed param and non-changed param.\n"
        f"Changed param:\nid: {param_id} name: {changed_name}\n"
        f"Changed param originally:\nid: {original_id} name: {original_name}\n"
        f"and unchanged param:\nid: {param_id} name: {unchanged_name}\n\n"
        "You must either change the changed param id to some non-conflicting value "
        "or you must also change the non-changed param id to some other value."
    )
