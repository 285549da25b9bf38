#!/usr/bin/env python3

"""
gridassembler - Grid Geometry and Dataset Assembly for Decoded GRIB Records

A Python package that turns decoded GRIB-like meteorological records into
multi-axis gridded datasets, with geometry resolution, reprojection, tile
stitching and derived hybrid pressure and relative humidity.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Rubaiat Islam"
__email__ = "mrislam@ucar.edu"
__institution__ = "Mesoscale & Microscale Meteorology Laboratory, NCAR"

__all__ = [
    '__version__',
    '__author__',
    '__email__',
    '__institution__'
]
