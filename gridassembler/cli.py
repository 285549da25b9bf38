#!/usr/bin/env python3
"""
gridassembler CLI Entry Point

This module provides the main entry point for the gridassembler command-line interface.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys

from gridassembler.processing.cli_unified import main

if __name__ == "__main__":
    sys.exit(main())
