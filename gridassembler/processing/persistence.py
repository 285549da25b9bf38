#!/usr/bin/env python3

"""
Dataset Persistence Sink

This module hands finished datasets to storage. The sink writes an assembled xarray Dataset as one NetCDF file through xarray's to_netcdf and reports success as a boolean instead of raising, so a run that assembled several level types can still report which of them were stored. Missing output directories are created on demand. File names are derived from a prefix, the level type name and the origin time of the dataset, which keeps the files of one run side by side and sortable.

Classes:
    NetCDFDatasetSink: Writes assembled datasets to NetCDF files.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import os
from typing import Optional

import xarray as xr

from .utils_datetime import GridDateTimeUtils


class NetCDFDatasetSink:
    """
    Persistence collaborator writing datasets to NetCDF.
    """

    def __init__(self, engine: Optional[str] = None, verbose: bool = True) -> None:
        self.engine = engine
        self.verbose = verbose

    @staticmethod
    def output_path(directory: str, dataset: xr.Dataset, prefix: str = 'grid') -> str:
        """Build '<directory>/<prefix>_<level type name>_<origin time>.nc' for a dataset."""
        level_name = dataset.attrs.get('level_type_name', str(dataset.attrs.get('level_type', 'unknown')))
        origin = GridDateTimeUtils.to_datetime(dataset.attrs['origin_time'])
        filename = f"{prefix}_{level_name}_{GridDateTimeUtils.format_time_for_filename(origin)}.nc"
        return os.path.join(directory, filename)

    def write(self, dataset: xr.Dataset, path: str) -> bool:
        """
        Write one dataset to a NetCDF file. The parent directory is created when missing. Failures of the underlying writer are reported and turned into a False return value.

        Parameters:
            dataset (xr.Dataset): Assembled dataset.
            path (str): Destination file path.

        Returns:
            bool: True if the file was written.
        """
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            dataset.to_netcdf(path, engine=self.engine)
        except (OSError, ValueError, RuntimeError) as e:
            print(f"Error writing dataset to {path}: {e}")
            return False

        if self.verbose:
            print(f"Dataset written to: {path}")
        return True
