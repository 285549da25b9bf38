#!/usr/bin/env python3

"""
Shared constants for the gridassembler.processing package.

Place commonly reused level types, parameter identifiers, unit strings and
literal messages here to avoid duplication across modules.
"""

from datetime import datetime

# Level types (GRIB1 table 3 numbering used by the output datasets)
LEVEL_GROUND_SURFACE = 1
LEVEL_PRESSURE = 100
LEVEL_MEAN_SEA = 102
LEVEL_ALTITUDE = 103
LEVEL_HEIGHT = 105
LEVEL_HYBRID = 109

SURFACE_LEVEL_VALUE = 0.0

# Default parameter identifiers of generated and helper parameters
PARAM_PRESSURE = 1
PARAM_TEMPERATURE = 4
PARAM_HUMIDITY = 13
PARAM_PRESSURE_AT_STATION = 472
PARAM_SPECIFIC_HUMIDITY = 133

MISSING_LONG = -2147483647
DEFAULT_EARTH_RADIUS = 6371220.0
TIME_SANITY_CUTOFF = datetime(1950, 1, 1)
SENTINEL_RELATIVE_TOLERANCE = 1e-7
GRID_INDEX_TOLERANCE = 1e-9
DEFAULT_MAX_DATASET_BYTES = 4 * 1024 ** 3

SCAN_I_NEGATIVE = 128
SCAN_J_POSITIVE = 64
SCAN_J_CONSECUTIVE = 32
SCAN_ALTERNATE_ROWS = 16
SUPPORTED_SCAN_BITS = SCAN_I_NEGATIVE | SCAN_J_POSITIVE | SCAN_J_CONSECUTIVE | SCAN_ALTERNATE_ROWS

PROJECTION_CENTRE_SOUTH_POLE = 128

HPA = "hPa"
PERCENT = "%"

# eccodes typeOfLevel names mapped to numeric level types
LEVEL_TYPE_NAMES = {
    "surface": LEVEL_GROUND_SURFACE,
    "cloudBase": 2,
    "cloudTop": 3,
    "isothermZero": 4,
    "adiabaticCondensation": 5,
    "maxWind": 6,
    "tropopause": 7,
    "nominalTop": 8,
    "seaBottom": 9,
    "mostUnstableParcel": 17,
    "isothermal": 20,
    "isobaricInhPa": LEVEL_PRESSURE,
    "isobaricInPa": LEVEL_PRESSURE,
    "isobaricLayer": 101,
    "meanSea": LEVEL_MEAN_SEA,
    "heightAboveSea": LEVEL_ALTITUDE,
    "heightAboveSeaLayer": 104,
    "heightAboveGround": LEVEL_HEIGHT,
    "heightAboveGroundLayer": 106,
    "sigma": 107,
    "sigmaLayer": 108,
    "hybrid": LEVEL_HYBRID,
    "hybridLayer": 110,
    "depthBelowLand": 111,
    "depthBelowLandLayer": 112,
}

FAILED_TO_EXTRACT_MSG = "Failed to extract {key} for '{family}' projection"
PROJECTION_NOT_IMPLEMENTED_MSG = "Handling of projection {family} not implemented"
SCAN_MODE_NOT_IMPLEMENTED_MSG = "Scanning mode {mode} not yet implemented"
NO_DATA_MSG = "Unable to create any data"
