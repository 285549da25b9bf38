#!/usr/bin/env python3

"""
gridassembler Diagnostics Package

This package provides the derived parameter calculations applied to assembled
datasets, namely hybrid level pressure and relative humidity.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from gridassembler.diagnostics.pressure import HybridPressureDiagnostics, VerticalCoefficientTable
from gridassembler.diagnostics.humidity import RelativeHumidityDiagnostics

__all__ = ['HybridPressureDiagnostics', 'VerticalCoefficientTable', 'RelativeHumidityDiagnostics']
