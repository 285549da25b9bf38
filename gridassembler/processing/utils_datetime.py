#!/usr/bin/env python3

"""
Grid Record DateTime and Temporal Utilities

This module provides the temporal helpers used while discovering the axes of an assembled dataset. Valid times of a batch are deduplicated, sorted and screened against a fixed sanity cutoff (anything on or before 1950-01-01 is treated as a decoding artefact and dropped), and a run of more than two evenly spaced times is additionally described as a regular (start, end, step) TimeRange, which the dataset attributes carry as a compact equivalent of the explicit list. Accumulation window lengths are parsed from GRIB step range strings of the form "a-b" so the classifier can choose between time-staggered variants of one cumulative parameter. All conversions go through pandas so numpy datetime64 values, pandas Timestamps and Python datetimes are accepted interchangeably.

Classes:
    TimeRange: Regular (start, end, step) description of an evenly spaced time axis.
    GridDateTimeUtils: Static helpers for time axes, step ranges and time formatting.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

import pandas as pd

from .constants import TIME_SANITY_CUTOFF


@dataclass(frozen=True)
class TimeRange:
    """Evenly spaced times from start to end inclusive."""
    start: datetime
    end: datetime
    step: pd.Timedelta

    def __len__(self) -> int:
        return int((pd.Timestamp(self.end) - pd.Timestamp(self.start)) / self.step) + 1

    def to_index(self) -> pd.DatetimeIndex:
        return pd.date_range(self.start, self.end, freq=self.step)

    def to_list(self) -> List[datetime]:
        return [ts.to_pydatetime() for ts in self.to_index()]

    def describe(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M}/{self.end:%Y-%m-%d %H:%M}/{self.step}"


class GridDateTimeUtils:
    """
    DateTime utilities for building dataset time axes from grid records.
    """

    @staticmethod
    def to_datetime(value: Any) -> datetime:
        """Convert a datetime-like value (datetime, Timestamp, datetime64 or string) to a Python datetime."""
        return pd.Timestamp(value).to_pydatetime()

    @staticmethod
    def is_plausible(value: Any, cutoff: datetime = TIME_SANITY_CUTOFF) -> bool:
        return pd.Timestamp(value) > pd.Timestamp(cutoff)

    @staticmethod
    def build_time_axis(times: Iterable[Any], cutoff: datetime = TIME_SANITY_CUTOFF) -> Tuple[List[datetime], Optional[TimeRange]]:
        """
        Build a sorted, deduplicated time axis from the valid times of a batch. Times on or before the sanity cutoff are discarded. When more than two times remain and they are evenly spaced the axis is also returned as a TimeRange; the explicit list is always returned so callers can index either form.

        Parameters:
            times (Iterable[Any]): Valid times of the records, datetime-like.
            cutoff (datetime): Times on or before this instant are discarded (default: 1950-01-01).

        Returns:
            Tuple[List[datetime], Optional[TimeRange]]: Sorted unique times and the equivalent regular range, or None when the times are not a regular run of more than two.
        """
        cutoff_ts = pd.Timestamp(cutoff)
        index = pd.DatetimeIndex([pd.Timestamp(t) for t in times])
        index = index[index > cutoff_ts].unique().sort_values()
        axis = [ts.to_pydatetime() for ts in index]

        time_range = None
        if len(index) > 2:
            steps = index[1:] - index[:-1]
            if (steps == steps[0]).all() and steps[0] > pd.Timedelta(0):
                time_range = TimeRange(axis[0], axis[-1], steps[0])
        return axis, time_range

    @staticmethod
    def get_step_range(step_range: Optional[str]) -> int:
        """
        Return the accumulation window length of a GRIB step range string. A string of the form "a-b" gives b - a; anything else, including an instantaneous step such as "6", gives -1.

        Parameters:
            step_range (Optional[str]): Step range text of a record.

        Returns:
            int: Window length, or -1 when the record is not an accumulation window.
        """
        if not step_range or '-' not in step_range:
            return -1
        first, _, last = str(step_range).partition('-')
        try:
            return int(last) - int(first)
        except ValueError:
            return -1

    @staticmethod
    def format_time_for_filename(dt: datetime) -> str:
        return dt.strftime('%Y%m%dT%H%M')
