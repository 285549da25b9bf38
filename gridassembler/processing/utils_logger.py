#!/usr/bin/env python3

"""
Grid Assembly Logging Utilities

This module provides the logging wrapper used by the conversion pipeline and the command line interface. GridLogger configures a named logger from Python's standard logging module with a stdout handler when console output is requested and an optional file handler for persistent run logs. Existing handlers of the named logger are closed and removed on construction, so repeated pipeline runs in one interpreter never duplicate messages or leak open log files. Per-record rejections are reported at warning level together with the source name and the record's sequence index, rejection counts per reason at debug level, stage summaries at info level and fatal configuration or capacity conditions at error level.

Classes:
    GridLogger: Logger wrapper with console and file output for conversion runs.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
import logging
from typing import Mapping, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class GridLogger:
    """
    Named logger of a conversion run with console and optional file output.
    """

    def __init__(self, name: str = "gridassembler", level: int = logging.INFO,
                 log_file: Optional[str] = None, verbose: bool = True) -> None:
        """
        Create and configure a named logger. Handlers left over from an earlier run of the same name are closed first. Both handlers share one timestamped formatter and the minimum level given here.

        Parameters:
            name (str): Logger name (default: "gridassembler").
            level (int): Minimum logging level (default: logging.INFO).
            log_file (Optional[str]): Path of a log file, None disables file logging (default: None).
            verbose (bool): Attach the stdout handler (default: True).

        Returns:
            None
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.close()

        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        handlers = []
        if verbose:
            handlers.append(logging.StreamHandler(sys.stdout))
        if log_file:
            handlers.append(logging.FileHandler(log_file))

        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def record_rejected(self, source: str, index: int, reason: str) -> None:
        """Report one record dropped during conversion, identified by its position in the source."""
        self.logger.warning(f"{source}: record #{index} rejected: {reason}")

    def rejection_counts(self, counts: Mapping[str, int]) -> None:
        for reason, count in sorted(counts.items()):
            self.logger.debug(f"Discarded {count} records: {reason}")

    def close(self) -> None:
        """Close and detach every handler of the named logger."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
