#!/usr/bin/env python3

"""
gridassembler Processing Package

This package provides the conversion stages of gridassembler: geometry
resolution, field normalization, spatial transforms, record classification,
tile stitching and dataset assembly, together with configuration, logging,
timing and parallel execution utilities. The pipeline driver lives in
gridassembler.processing.pipeline.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from .exceptions import (
    GridAssemblyError, UnsupportedInputError, RemapConflictError, CapacityExceededError,
)
from .geometry import Grid, Field, grid_from_dict, grid_to_dict
from .records import DecodedRecord, GridRecord, InMemoryDecoder, EccodesDecoder
from .resolver import GridGeometryResolver
from .normalizer import ValueFieldNormalizer
from .remapping import SpatialTransformEngine
from .classifier import RecordClassifier, AxisSet
from .stitching import AreaStitcher
from .assembler import DatasetAssembler
from .persistence import NetCDFDatasetSink
from .utils_config import ConversionConfig, ParamRemapTable
from .utils_datetime import GridDateTimeUtils
from .utils_logger import GridLogger
from .utils_monitor import PerformanceMonitor
from .utils_parser import ArgumentParser
from .parallel import GridParallelManager

__all__ = [
    'GridAssemblyError',
    'UnsupportedInputError',
    'RemapConflictError',
    'CapacityExceededError',
    'Grid',
    'Field',
    'grid_from_dict',
    'grid_to_dict',
    'DecodedRecord',
    'GridRecord',
    'InMemoryDecoder',
    'EccodesDecoder',
    'GridGeometryResolver',
    'ValueFieldNormalizer',
    'SpatialTransformEngine',
    'RecordClassifier',
    'AxisSet',
    'AreaStitcher',
    'DatasetAssembler',
    'NetCDFDatasetSink',
    'ConversionConfig',
    'ParamRemapTable',
    'GridDateTimeUtils',
    'GridLogger',
    'PerformanceMonitor',
    'ArgumentParser',
    'GridParallelManager',
]
