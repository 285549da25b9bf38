#!/usr/bin/env python3

"""
Grid Assembly Stage Timing

This module provides the stage timer of the conversion pipeline. PerformanceMonitor measures named stages through a context manager. Record decoding and conversion run once per input source, so the durations of a stage that runs repeatedly are added up; stages keep the order in which they first ran. The collected timings are returned as plain seconds for the ConversionResult of a run.

Classes:
    PerformanceMonitor: Context manager based timing of named pipeline stages.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import time
from collections import OrderedDict
from contextlib import contextmanager
from typing import Dict


class PerformanceMonitor:
    """
    Accumulate elapsed wall-clock seconds per pipeline stage.
    """

    def __init__(self, verbose: bool = True) -> None:
        self.verbose = verbose
        self.durations: Dict[str, float] = OrderedDict()
        self.calls: Dict[str, int] = {}

    @contextmanager
    def timer(self, stage: str):
        """
        Time the enclosed block as one run of a stage. The duration is recorded even when the block raises.

        Parameters:
            stage (str): Name of the stage being timed.

        Yields:
            None: Control is yielded to the timed block.
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            self.durations[stage] = self.durations.get(stage, 0.0) + elapsed
            self.calls[stage] = self.calls.get(stage, 0) + 1
            if self.verbose:
                print(f"Stage {stage} finished in {elapsed:.2f} seconds")

    @property
    def total_seconds(self) -> float:
        return sum(self.durations.values())

    def get_summary(self) -> Dict[str, float]:
        return dict(self.durations)
