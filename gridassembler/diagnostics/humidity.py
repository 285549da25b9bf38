#!/usr/bin/env python3

"""
Relative Humidity Diagnostics

This module fills the relative humidity parameter of assembled datasets from temperature, specific humidity and pressure. Saturation vapour pressure follows the Magnus-type formula used by the producing models, switching from the water constants to the ice constants below -5 °C, and relative humidity is obtained from the vapour pressure implied by the specific humidity through the 0.622 ratio of the molecular masses of water vapour and dry air, clamped to [0, 1] and expressed in percent. The pressure input depends on the vertical coordinate of the dataset: hybrid-level datasets read it from the pressure parameter (which the hybrid pressure stage must therefore fill first), pressure-level datasets use the level value itself and ground surface datasets read it from the ground pressure parameter. Temperature is expected in degrees Celsius, pressure in hPa and specific humidity in kg/kg. The calculation never overwrites a relative humidity sample that is already present, and any missing input at a cell leaves the cell missing.

Classes:
    RelativeHumidityDiagnostics: Fills relative humidity in hybrid, pressure and ground datasets.

Functions:
    calc_saturation_vapor_pressure: Vectorized saturation vapour pressure in hPa.
    calc_relative_humidity: Vectorized relative humidity in percent.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from typing import Any, Optional

import numpy as np
import xarray as xr

from gridassembler.processing.assembler import param_index
from gridassembler.processing.constants import (
    LEVEL_GROUND_SURFACE, LEVEL_HYBRID, LEVEL_PRESSURE, PARAM_HUMIDITY, PARAM_PRESSURE,
    PARAM_PRESSURE_AT_STATION, PARAM_SPECIFIC_HUMIDITY, PARAM_TEMPERATURE, PERCENT,
)

EPSILON = 0.622
ICE_THRESHOLD_CELSIUS = -5.0


def calc_saturation_vapor_pressure(temperature: Any) -> np.ndarray:
    """Saturation vapour pressure in hPa for temperature in °C, over ice below -5 °C."""
    t = np.asarray(temperature, dtype=np.float64)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        water = 6.107 * np.power(10.0, 7.5 * t / (237.0 + t))
        ice = 6.107 * np.power(10.0, 9.5 * t / (265.5 + t))
    return np.where(t >= ICE_THRESHOLD_CELSIUS, water, ice)


def calc_relative_humidity(pressure: Any, temperature: Any, specific_humidity: Any) -> np.ndarray:
    """
    Compute relative humidity in percent from pressure, temperature and specific humidity. The ratio (P * Q / 0.622 / ES) * (P - ES) / (P - Q * P / 0.622) is clamped to [0, 1] before scaling to percent. A missing input, or an undefined ratio such as a zero denominator over a zero numerator, yields NaN.

    Parameters:
        pressure (array-like): Pressure in hPa.
        temperature (array-like): Temperature in °C.
        specific_humidity (array-like): Specific humidity in kg/kg.

    Returns:
        np.ndarray: Relative humidity in percent, within [0, 100] or NaN.
    """
    p = np.asarray(pressure, dtype=np.float64)
    q = np.asarray(specific_humidity, dtype=np.float64)
    es = calc_saturation_vapor_pressure(temperature)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        ratio = (p * q / EPSILON / es) * (p - es) / (p - q * p / EPSILON)
    return np.clip(ratio, 0.0, 1.0) * 100.0


class RelativeHumidityDiagnostics:
    """
    Fill missing relative humidity samples of assembled datasets.
    """

    def __init__(self, humidity_param_id: int = PARAM_HUMIDITY,
                 temperature_param_id: int = PARAM_TEMPERATURE,
                 specific_humidity_param_id: int = PARAM_SPECIFIC_HUMIDITY,
                 pressure_param_id: int = PARAM_PRESSURE,
                 ground_pressure_param_id: int = PARAM_PRESSURE_AT_STATION,
                 verbose: bool = True) -> None:
        """
        Initialize the relative humidity diagnostics with the parameter ids read and written by the calculation. The pressure parameter is used on hybrid levels and the ground pressure parameter on the ground surface; pressure levels need neither.

        Parameters:
            humidity_param_id (int): Relative humidity parameter to fill (default: 13).
            temperature_param_id (int): Temperature parameter in °C (default: 4).
            specific_humidity_param_id (int): Specific humidity parameter in kg/kg (default: 133).
            pressure_param_id (int): Pressure parameter of hybrid levels in hPa (default: 1).
            ground_pressure_param_id (int): Pressure parameter of the ground surface in hPa (default: 472).
            verbose (bool): Enable verbose output messages (default: True).

        Returns:
            None
        """
        self.humidity_param_id = humidity_param_id
        self.temperature_param_id = temperature_param_id
        self.specific_humidity_param_id = specific_humidity_param_id
        self.pressure_param_id = pressure_param_id
        self.ground_pressure_param_id = ground_pressure_param_id
        self.verbose = verbose

    def pressure_source(self, level_type: int) -> Optional[int]:
        """Return the pressure parameter of a level type, -1 for pressure levels, or None when RH is not derived."""
        if level_type == LEVEL_HYBRID:
            return self.pressure_param_id
        if level_type == LEVEL_PRESSURE:
            return -1
        if level_type == LEVEL_GROUND_SURFACE:
            return self.ground_pressure_param_id
        return None

    def compute_relative_humidity(self, dataset: xr.Dataset) -> xr.Dataset:
        """
        Fill the missing relative humidity cells of one assembled dataset. The level type attribute of the dataset selects the pressure input; datasets of other level types, and datasets lacking the humidity, temperature, specific humidity or pressure parameter, are returned unchanged apart from being copied. The input dataset is not modified.

        Parameters:
            dataset (xr.Dataset): Assembled dataset with a 'level_type' attribute.

        Returns:
            xr.Dataset: Copy of the dataset with relative humidity filled where possible.
        """
        result = dataset.copy(deep=True)
        level_type = int(result.attrs.get('level_type', -1))
        source = self.pressure_source(level_type)
        rh_index = param_index(result, self.humidity_param_id)
        t_index = param_index(result, self.temperature_param_id)
        q_index = param_index(result, self.specific_humidity_param_id)
        p_index = param_index(result, source) if source is not None and source >= 0 else None

        if source is None or None in (rh_index, t_index, q_index) or (source >= 0 and p_index is None):
            if self.verbose:
                print(f"Relative humidity skipped for level type {level_type}: required parameters not available")
            return result

        values = result['values'].values
        levels = result['level'].values
        filled = 0
        for k in range(values.shape[1]):
            if p_index is None:
                pressure = np.full(values.shape[:1] + values.shape[3:], float(levels[k]))
            else:
                pressure = values[:, k, p_index]
            rh = calc_relative_humidity(pressure, values[:, k, t_index], values[:, k, q_index])
            cell = values[:, k, rh_index]
            take = np.isnan(cell) & ~np.isnan(rh)
            cell[take] = rh[take]
            filled += int(np.count_nonzero(take))

        result.attrs['humidity_units'] = PERCENT
        if self.verbose:
            rh_values = values[:, :, rh_index]
            if np.any(~np.isnan(rh_values)):
                print(f"Relative humidity range: {np.nanmin(rh_values):.1f} to {np.nanmax(rh_values):.1f} {PERCENT}")
            print(f"Relative humidity filled {filled} cells")
        return result
