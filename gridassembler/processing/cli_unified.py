#!/usr/bin/env python3

"""
Grid Assembly Command-Line Interface

This module implements the gridassembler command. It parses the command line, loads an optional YAML configuration file and applies the command line overrides to it, configures logging with a verbosity derived from the quiet and verbose flags, validates that every input file exists, and then runs the conversion pipeline with one EccodesDecoder per GRIB input. Each assembled dataset is written to the output directory as one NetCDF file per level type through the persistence sink. Failures are mapped to Unix exit codes: 0 when at least one dataset was written, 1 for validation errors, fatal conversion errors, write failures or an empty result, and 130 when the user interrupts the run.

Classes:
    GridAssemblerCLI: Command line driver of the conversion pipeline.

Functions:
    main: Console script entry point.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import os
import sys
import logging
import traceback
from typing import List, Optional

import psutil

from .exceptions import GridAssemblyError
from .persistence import NetCDFDatasetSink
from .pipeline import ConversionResult, GridConversionPipeline
from .records import EccodesDecoder
from .utils_config import ConversionConfig
from .utils_logger import GridLogger
from .utils_parser import ArgumentParser


class GridAssemblerCLI:
    """
    Command line driver: parse, configure, validate, convert and write.
    """

    def __init__(self) -> None:
        self.config: Optional[ConversionConfig] = None
        self.logger: Optional[GridLogger] = None

    def setup_logging(self, config: ConversionConfig) -> GridLogger:
        """
        Create the run logger. Quiet mode logs errors only, verbose mode adds debug messages such as per-reason rejection counts, and the default level is INFO. Console output is disabled in quiet mode; the log file, when configured, always receives the messages.

        Parameters:
            config (ConversionConfig): Configuration holding the quiet, verbose and log_file options.

        Returns:
            GridLogger: Configured logger.
        """
        log_level = logging.INFO
        if config.quiet:
            log_level = logging.ERROR
        elif config.verbose:
            log_level = logging.DEBUG

        self.logger = GridLogger(name="gridassembler", level=log_level,
                                 log_file=config.log_file, verbose=not config.quiet)
        return self.logger

    def validate_inputs(self, inputs: List[str]) -> bool:
        errors = [f"Input file not found: {path}" for path in inputs if not os.path.isfile(path)]
        for error in errors:
            self.logger.error(error)
        return not errors

    def run_conversion(self, inputs: List[str], output_dir: str, prefix: str = 'grid') -> bool:
        """
        Run the pipeline over the input files and write the resulting datasets. Conversion errors of the taxonomy (remap conflicts, capacity overruns, unusable inputs) are logged and reported as failure; an empty result is also a failure since nothing was produced.

        Parameters:
            inputs (List[str]): GRIB input files in processing order.
            output_dir (str): Directory receiving the NetCDF files.
            prefix (str): File name prefix (default: 'grid').

        Returns:
            bool: True if at least one dataset was written and no write failed.
        """
        pipeline = GridConversionPipeline(self.config, logger=self.logger)
        try:
            result = pipeline.run(EccodesDecoder(path) for path in inputs)
        except (GridAssemblyError, RuntimeError, OSError) as e:
            self.logger.error(f"Conversion failed: {e}")
            if self.config.verbose:
                self.logger.error(traceback.format_exc())
            return False

        self._log_result(result)
        if result.is_empty:
            return False

        if not pipeline.manager.is_master:
            return True

        sink = NetCDFDatasetSink(verbose=self.config.verbose and not self.config.quiet)
        success = True
        for dataset in result.datasets.values():
            path = sink.output_path(output_dir, dataset, prefix)
            if sink.write(dataset, path):
                self.logger.info(f"Wrote {path}")
            else:
                self.logger.error(f"Failed to write {path}")
                success = False
        return success

    def _log_result(self, result: ConversionResult) -> None:
        self.logger.info(f"Records converted: {result.record_count}, rejected: {result.rejected_count}")
        for reason, count in sorted(result.rejections.items()):
            self.logger.info(f"  {reason}: {count}")
        for name, seconds in result.timings.items():
            self.logger.debug(f"  stage {name}: {seconds:.2f} seconds")

    def main(self, argv: Optional[List[str]] = None) -> int:
        """
        Entry point of the command: parse arguments, merge configuration, validate inputs and run the conversion.

        Parameters:
            argv (Optional[List[str]]): Arguments without the program name (default: None reads sys.argv).

        Returns:
            int: 0 on success, 1 on failure or empty result, 130 on user interruption.
        """
        try:
            parser = ArgumentParser.create_parser()
            args = parser.parse_args(argv)

            base = ConversionConfig.load_from_file(args.config) if args.config else None
            self.config = ArgumentParser.parse_args_to_config(args, base)
            self.setup_logging(self.config)

            if not self.validate_inputs(args.inputs):
                return 1

            if self.config.verbose:
                self._print_system_info()
                self._print_config_summary()

            return 0 if self.run_conversion(args.inputs, args.output_dir, args.prefix) else 1

        except KeyboardInterrupt:
            print("\nConversion interrupted by user")
            return 130
        except (ValueError, OSError) as e:
            if self.logger:
                self.logger.error(f"Error: {e}")
            else:
                print(f"Error: {e}")
            return 1

    def _print_system_info(self) -> None:
        self.logger.info("=== System Information ===")
        self.logger.info(f"Python version: {sys.version}")
        self.logger.info(f"Platform: {sys.platform}")
        self.logger.info(f"Current working directory: {os.getcwd()}")
        memory_gb = psutil.virtual_memory().available / (1024**3)
        self.logger.info(f"Available memory: {memory_gb:.1f} GB")
        self.logger.info("=" * 30)

    def _print_config_summary(self) -> None:
        self.logger.info("=== Configuration Summary ===")
        for key, value in self.config.to_dict().items():
            if value is not None:
                self.logger.info(f"  {key}: {value}")
        self.logger.info("=" * 30)


def main(argv: Optional[List[str]] = None) -> int:
    """Console script entry point returning the process exit code."""
    cli = GridAssemblerCLI()
    return cli.main(argv)


if __name__ == "__main__":
    sys.exit(main())
