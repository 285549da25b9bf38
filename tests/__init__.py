#!/usr/bin/env python3
"""
GRIB Grid Assembler Test Suite Runner

This module provides the test runner for the gridassembler test collection. Test modules are discovered from this directory when the runner is executed directly, so importing the package during pytest collection does not load any test module twice. The runner checks the core dependencies, executes every discovered test with unittest and prints a summary of passed, failed, errored and skipped tests.

Tests Performed:
    Test Module Discovery and Execution:
        - Every test_*.py module of this directory
        - Dependency verification for numpy, pandas, xarray, pyproj and yaml
        - Optional dependency report for eccodes, mpi4py and netCDF4

Expected Results:
    - Exit code 0 when all tests pass, 1 when failures or errors occur

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import sys
import unittest
from pathlib import Path

package_dir = Path(__file__).parent.parent
sys.path.insert(0, str(package_dir))


def run_all_tests() -> unittest.TestResult:
    """
    Discover and execute every test module of the suite. Modules that fail to import are reported by unittest as errors of the run rather than silently skipped.

    Parameters:
        None

    Returns:
        unittest.TestResult: Results of the complete run.
    """
    loader = unittest.TestLoader()
    suite = loader.discover(str(Path(__file__).parent), pattern='test_*.py', top_level_dir=str(package_dir))
    runner = unittest.TextTestRunner(verbosity=2, buffer=True)
    return runner.run(suite)


def print_test_summary(result: unittest.TestResult) -> None:
    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)

    total_tests = result.testsRun
    failures = len(result.failures)
    errors = len(result.errors)
    skipped = len(result.skipped)
    passed = total_tests - failures - errors - skipped

    print(f"Total tests run: {total_tests}")
    print(f"Passed: {passed}")
    print(f"Failed: {failures}")
    print(f"Errors: {errors}")
    print(f"Skipped: {skipped}")

    if failures > 0:
        print("\nFAILURES:")
        for test, _ in result.failures:
            print(f"  - {test}")

    if errors > 0:
        print("\nERRORS:")
        for test, _ in result.errors:
            print(f"  - {test}")

    if skipped > 0:
        print("\nSKIPPED:")
        for test, reason in result.skipped:
            print(f"  - {test}: {reason}")

    success_rate = (passed / total_tests) * 100 if total_tests > 0 else 0
    print(f"\nSuccess rate: {success_rate:.1f}%")


if __name__ == '__main__':
    print("Running gridassembler Tests")
    print("=" * 50)

    try:
        import numpy
        import pandas
        import pyproj
        import xarray
        import yaml
        print("Core dependencies available")
    except ImportError as e:
        print(f"Missing core dependency: {e}")
        sys.exit(1)

    optional_deps = {
        'eccodes': 'ecCodes for reading GRIB files',
        'mpi4py': 'mpi4py for the MPI backend',
        'netCDF4': 'netCDF4 for writing datasets',
    }

    for dep, description in optional_deps.items():
        try:
            __import__(dep)
            print(f"Found: {description}")
        except ImportError:
            print(f"Missing: {description} (optional, some tests may fail or be skipped)")

    print("\nStarting test execution...\n")

    result = run_all_tests()
    print_test_summary(result)

    sys.exit(0 if result.wasSuccessful() else 1)
