#!/usr/bin/env python3

"""
Grid Assembly Command-Line Argument Parser Utilities

This module provides the argument parser factory of the gridassembler command line tool and the conversion of parsed arguments into a ConversionConfig. Options are organized into input/output, geometry, parameter selection, processing and output control groups. Command line values override the corresponding entries of an optional YAML configuration file: only options the user actually gave are carried over, so a configuration file can set defaults that the command line selectively replaces. The crop rectangle is parsed from a comma-separated 'lon1,lat1,lon2,lat2' string and repeated --ignore-level options accumulate.

Classes:
    ArgumentParser: Factory for the gridassembler argument parser and its configuration converter.

Functions:
    parse_crop: Parse a 'lon1,lat1,lon2,lat2' crop rectangle.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import argparse
from typing import Any, Dict, Optional, Tuple

from .parallel import BACKENDS
from .remapping import VALID_METHODS
from .resolver import DATELINE_FIX_MODES
from .utils_config import ConversionConfig


def parse_crop(text: str) -> Tuple[float, float, float, float]:
    """Parse 'lon1,lat1,lon2,lat2' into a float tuple, raising argparse.ArgumentTypeError on bad input."""
    parts = [p.strip() for p in text.split(',')]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError(f"Crop must be lon1,lat1,lon2,lat2, got '{text}'")
    try:
        lon1, lat1, lon2, lat2 = (float(p) for p in parts)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Crop values must be numbers: '{text}'") from e
    return lon1, lat1, lon2, lat2


class ArgumentParser:
    """
    Factory for the gridassembler command line parser.
    """

    @staticmethod
    def create_parser() -> argparse.ArgumentParser:
        """
        Create the argument parser of the gridassembler command. Input files are positional; the output directory is required. Every option defaults to None (or an empty list) so parse_args_to_config can tell options given on the command line from options left to the configuration file.

        Returns:
            argparse.ArgumentParser: Configured parser.
        """
        parser = argparse.ArgumentParser(
            prog="gridassembler",
            description="Assemble decoded GRIB records into gridded multi-axis datasets",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Convert two GRIB files into one dataset per level type
  gridassembler forecast_0.grib forecast_1.grib -o ./output

  # Remap parameters and crop to a rectangle
  gridassembler data.grib -o ./output --param-table params.txt --crop 0,50,30,70

  # Stitch adjacent tiles using four worker threads
  gridassembler tile_*.grib -o ./output --stitch --backend thread --workers 4

  # Use a configuration file with a command line override
  gridassembler data.grib -o ./output --config convert.yaml --dateline-fix atlantic
            """
        )

        io_group = parser.add_argument_group('Input/Output')
        io_group.add_argument('inputs', nargs='+', metavar='INPUT',
                              help='GRIB input files')
        io_group.add_argument('-o', '--output', '--output-dir', dest='output_dir', type=str, required=True,
                              help='Output directory for the NetCDF datasets')
        io_group.add_argument('--config', type=str,
                              help='Configuration file path (YAML format)')
        io_group.add_argument('--prefix', type=str, default='grid',
                              help='File name prefix of the written datasets (default: grid)')

        geo_group = parser.add_argument_group('Geometry')
        geo_group.add_argument('--crop', type=parse_crop, metavar='LON1,LAT1,LON2,LAT2',
                               help='Crop every field to this rectangle')
        geo_group.add_argument('--dateline-fix', type=str, choices=list(DATELINE_FIX_MODES),
                               help='Longitude span normalization of lat/lon grids')
        geo_group.add_argument('--interpolation', type=str, choices=list(VALID_METHODS),
                               help='Interpolation method of reprojections')
        geo_group.add_argument('--stitch', dest='stitch_tiles', action='store_true', default=None,
                               help='Stitch edge-adjacent lat/lon tiles')

        param_group = parser.add_argument_group('Parameters')
        param_group.add_argument('--param-table', dest='param_table_file', type=str,
                                 help='Parameter remap table file')
        param_group.add_argument('--crop-params', dest='crop_unmentioned_params', action='store_true', default=None,
                                 help='Drop parameters the remap table does not produce')
        param_group.add_argument('--ignore-level', dest='ignored_levels', action='append', default=[],
                                 metavar='SPEC', help="Ignored level such as 't105v2' or '105,*' (repeatable)")
        param_group.add_argument('--level-types', dest='accepted_level_types', type=int, nargs='+',
                                 help='Accepted level types')
        param_group.add_argument('--step-range', dest='wanted_step_range', type=int,
                                 help='Wanted accumulation window length of checked parameters')
        param_group.add_argument('--no-derived', action='store_true',
                                 help='Do not derive hybrid pressure and relative humidity')

        proc_group = parser.add_argument_group('Processing')
        proc_group.add_argument('--backend', type=str, choices=list(BACKENDS),
                                help='Parallel backend of the per-record conversion')
        proc_group.add_argument('--workers', type=int,
                                help='Worker count of the thread and multiprocessing backends')
        proc_group.add_argument('--max-bytes', dest='max_dataset_bytes', type=int,
                                help='Largest allowed dataset size in bytes')

        output_group = parser.add_argument_group('Output Control')
        output_group.add_argument('--verbose', '-v', action='store_true', default=None,
                                  help='Enable verbose output')
        output_group.add_argument('--quiet', '-q', action='store_true', default=None,
                                  help='Suppress output messages')
        output_group.add_argument('--log-file', type=str,
                                  help='Log file path')

        return parser

    @staticmethod
    def parse_args_to_config(args: argparse.Namespace,
                             base: Optional[ConversionConfig] = None) -> ConversionConfig:
        """
        Convert parsed arguments into a ConversionConfig. Options left unset on the command line keep the values of the base configuration, typically the one loaded from --config.

        Parameters:
            args (argparse.Namespace): Parsed command line arguments.
            base (Optional[ConversionConfig]): Configuration to override (default: None uses the defaults).

        Returns:
            ConversionConfig: Configuration with the command line overrides applied.
        """
        base = base or ConversionConfig()
        overrides: Dict[str, Any] = {}

        arg_mapping = {
            'crop': 'crop',
            'dateline_fix': 'dateline_fix',
            'interpolation': 'interpolation',
            'stitch_tiles': 'stitch_tiles',
            'param_table_file': 'param_table_file',
            'crop_unmentioned_params': 'crop_unmentioned_params',
            'accepted_level_types': 'accepted_level_types',
            'wanted_step_range': 'wanted_step_range',
            'backend': 'backend',
            'workers': 'workers',
            'max_dataset_bytes': 'max_dataset_bytes',
            'verbose': 'verbose',
            'quiet': 'quiet',
            'log_file': 'log_file',
        }

        for arg_name, config_attr in arg_mapping.items():
            if getattr(args, arg_name, None) is not None:
                overrides[config_attr] = getattr(args, arg_name)

        if getattr(args, 'ignored_levels', None):
            overrides['ignored_levels'] = list(base.ignored_levels) + list(args.ignored_levels)

        if getattr(args, 'no_derived', False):
            overrides['compute_hybrid_pressure'] = False
            overrides['compute_relative_humidity'] = False

        return base.merged(**overrides)
