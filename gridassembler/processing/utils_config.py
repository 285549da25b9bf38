#!/usr/bin/env python3

"""
Grid Conversion Configuration Management Utilities

This module provides the configuration layer of the grid conversion pipeline: the ConversionConfig dataclass holding every run option with validation on construction, dictionary conversion and YAML file input/output, together with the parsers for the two small text formats the converter accepts. The parameter remap table lists one rule per line in the form origId;wantedId;wantedName[;base][;scale][;levelType;level][;interpolation], where empty optional fields keep their defaults, '#' starts a comment and the first rule matching a record wins; a rule with a level only applies to records on exactly that level and moves them to the surface level. Ignored level specifications name a level type and value either as 't105v3' or as '105,3', with '*' or an empty value standing for every level of the type. The configuration value is created once at the boundary and treated as read-only by every stage, which copy out the pieces they need.

Classes:
    ParamRemapRule: One parsed line of the parameter remap table.
    ParamRemapTable: Ordered collection of remap rules with first-match lookup.
    IgnoredLevel: Level type plus optional value selecting records to drop.
    ConversionConfig: Centralized configuration dataclass with validation and YAML input/output.

Functions:
    parse_param_remap_line: Parse one remap table line into a rule.
    parse_ignored_level: Parse one ignored level specification.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import os
import yaml
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .constants import (
    DEFAULT_EARTH_RADIUS, DEFAULT_MAX_DATASET_BYTES, PARAM_HUMIDITY, PARAM_PRESSURE,
    PARAM_PRESSURE_AT_STATION, PARAM_SPECIFIC_HUMIDITY, PARAM_TEMPERATURE,
)
from .geometry import Grid, grid_from_dict
from .parallel import BACKENDS as PARALLEL_BACKENDS
from .remapping import VALID_METHODS as INTERPOLATION_METHODS
from .resolver import DATELINE_FIX_MODES


# numeric interpolation codes of the remap table
_INTERPOLATION_CODES = {1: 'bilinear', 2: 'nearest'}


@dataclass(frozen=True)
class ParamRemapRule:
    """
    Rewrite of one original parameter id into a wanted id and name, with an optional affine conversion base + value * scale, an optional level restriction and an optional interpolation method for reprojection.
    """
    original_id: int
    wanted_id: int
    wanted_name: str
    base: float = 0.0
    scale: float = 1.0
    level_type: Optional[int] = None
    level_value: Optional[float] = None
    interpolation: Optional[str] = None

    @property
    def has_level(self) -> bool:
        return self.level_type is not None

    @property
    def has_conversion(self) -> bool:
        return self.base != 0.0 or self.scale != 1.0

    def matches(self, param_id: int, level_type: int, level_value: float) -> bool:
        if param_id != self.original_id:
            return False
        if not self.has_level:
            return True
        return level_type == self.level_type and float(level_value) == self.level_value


def _interpolation_from_text(text: str) -> str:
    text = text.strip().lower()
    if text.isdigit():
        code = int(text)
        if code not in _INTERPOLATION_CODES:
            raise ValueError(f"Unknown interpolation code {code}")
        return _INTERPOLATION_CODES[code]
    if text not in INTERPOLATION_METHODS:
        raise ValueError(f"Unknown interpolation method '{text}'")
    return text


def parse_param_remap_line(line: str, source: str = '<string>') -> Optional[ParamRemapRule]:
    """
    Parse one line of the parameter remap table. Text after '#' is a comment and blank lines yield None. The first three fields are required; base and scale may be left empty to keep 0 and 1; the level type and level value must be given together; the last field is an interpolation method name or its numeric code (1 bilinear, 2 nearest).

    Parameters:
        line (str): Raw line of the table.
        source (str): Name of the table used in error messages (default: '<string>').

    Returns:
        Optional[ParamRemapRule]: Parsed rule, or None for blank and comment lines.

    Raises:
        ValueError: If the line has too few fields, malformed numbers or incomplete level information.
    """
    text = line.split('#', 1)[0].strip()
    if not text:
        return None
    parts = [part.strip() for part in text.split(';')]
    if len(parts) <= 1:
        return None
    if len(parts) < 3:
        raise ValueError(f"Remap rule had too few parts on line '{line.strip()}' in {source}")

    try:
        kwargs: Dict[str, Any] = {
            'original_id': int(parts[0]),
            'wanted_id': int(parts[1]),
            'wanted_name': parts[2],
        }
        if len(parts) >= 4 and parts[3]:
            kwargs['base'] = float(parts[3])
        if len(parts) >= 5 and parts[4]:
            kwargs['scale'] = float(parts[4])
        if len(parts) == 6:
            raise ValueError("level information needs both levelType and levelValue")
        if len(parts) >= 7:
            if parts[5] and parts[6]:
                kwargs['level_type'] = int(parts[5])
                kwargs['level_value'] = float(parts[6])
            elif bool(parts[5]) != bool(parts[6]):
                raise ValueError("level information needs both levelType and levelValue")
        if len(parts) >= 8 and parts[7]:
            kwargs['interpolation'] = _interpolation_from_text(parts[7])
    except ValueError as e:
        raise ValueError(f"Invalid remap rule '{line.strip()}' in {source}: {e}") from e

    return ParamRemapRule(**kwargs)


class ParamRemapTable:
    """
    Ordered parameter remap rules. Lookups return the first rule matching a record's original parameter id and level, so more specific rules must precede generic ones in the table.
    """

    def __init__(self, rules: Optional[Iterable[ParamRemapRule]] = None) -> None:
        self.rules: List[ParamRemapRule] = list(rules or [])

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def find(self, param_id: int, level_type: int, level_value: float) -> Optional[ParamRemapRule]:
        for rule in self.rules:
            if rule.matches(param_id, level_type, level_value):
                return rule
        return None

    def mentions(self, param_id: int) -> bool:
        """Return True when param_id is the wanted id of any rule."""
        return any(rule.wanted_id == param_id for rule in self.rules)

    @classmethod
    def from_lines(cls, lines: Iterable[str], source: str = '<string>') -> 'ParamRemapTable':
        rules = []
        for line in lines:
            rule = parse_param_remap_line(line, source)
            if rule is not None:
                rules.append(rule)
        return cls(rules)

    @classmethod
    def from_file(cls, filepath: str) -> 'ParamRemapTable':
        """
        Read a remap table file. A missing or unreadable file is an error because silently running without the table would produce datasets with unconverted parameters.

        Parameters:
            filepath (str): Path to the remap table file.

        Returns:
            ParamRemapTable: Rules of the file in order.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If any line is malformed.
        """
        if not os.path.exists(filepath):
            raise FileNotFoundError(f"Parameter remap table not found: {filepath}")
        with open(filepath, 'r') as f:
            return cls.from_lines(f, source=filepath)


@dataclass(frozen=True)
class IgnoredLevel:
    """Level to drop; a level_value of None drops every level of the type."""
    level_type: int
    level_value: Optional[float] = None

    def matches(self, level_type: int, level_value: float) -> bool:
        if level_type != self.level_type:
            return False
        return self.level_value is None or float(level_value) == self.level_value


def parse_ignored_level(spec: str) -> IgnoredLevel:
    """
    Parse an ignored level specification written as 't105v3' or '105,3'. A value of '*' or an empty value is the wildcard matching every level of the type.

    Parameters:
        spec (str): Level specification text.

    Returns:
        IgnoredLevel: Parsed level selector.

    Raises:
        ValueError: If the text matches neither syntax.
    """
    text = str(spec).strip().lower()
    if text.startswith('t') and 'v' in text:
        type_text, _, value_text = text[1:].partition('v')
    elif ',' in text:
        type_text, _, value_text = text.partition(',')
    else:
        type_text, value_text = text, ''
    try:
        level_type = int(type_text)
        value_text = value_text.strip()
        level_value = None if value_text in ('', '*') else float(value_text)
    except ValueError as e:
        raise ValueError(f"Invalid ignored level '{spec}', expected e.g. t109v3, t105v* or 105,3") from e
    return IgnoredLevel(level_type, level_value)


@dataclass
class ConversionConfig:
    """
    Configuration class for grid conversion runs.

    Centralized, read-only configuration of one conversion run, passed to every stage at
    construction time.

    Attributes:
        Producer Parameters:
            producer_id, producer_name: Producer metadata attached to every dataset.

        Geometry Parameters:
            dateline_fix (str): 'none', 'atlantic' or 'pacific' longitude span remapping.
            crop (Tuple[float, float, float, float]): Crop rectangle lon1, lat1, lon2, lat2.
            target_grid, hybrid_target_grid, pressure_target_grid (Dict): Reprojection targets.
            interpolation (str): 'bilinear' or 'nearest'.
            earth_radius (float): Sphere radius for projected grids in metres.

        Filtering Parameters:
            ignored_levels (List[str]): Ignored level specifications.
            accepted_level_types (List[int]): Only these level types are kept when given.
            param_table_file (str), param_table (List[str]): Parameter remap table source.
            crop_unmentioned_params (bool): Drop parameters the remap table does not produce.
            wanted_step_range (int), step_range_params (List[int]): Accumulation window selection.

        Derived Parameters:
            compute_hybrid_pressure, compute_relative_humidity (bool): Derivation switches.
            *_param_id (int): Identifiers of generated and helper parameters.

        Performance Parameters:
            stitch_tiles (bool), max_dataset_bytes (int), backend (str), workers (int),
            verbose (bool), quiet (bool), log_file (str)
    """
    producer_id: int = 0
    producer_name: str = ""

    dateline_fix: str = "none"
    crop: Optional[Tuple[float, float, float, float]] = None
    target_grid: Optional[Dict[str, Any]] = None
    hybrid_target_grid: Optional[Dict[str, Any]] = None
    pressure_target_grid: Optional[Dict[str, Any]] = None
    interpolation: str = "bilinear"
    earth_radius: float = DEFAULT_EARTH_RADIUS

    ignored_levels: List[str] = field(default_factory=list)
    accepted_level_types: List[int] = field(default_factory=list)
    param_table_file: Optional[str] = None
    param_table: List[str] = field(default_factory=list)
    crop_unmentioned_params: bool = False
    wanted_step_range: int = 0
    step_range_params: List[int] = field(default_factory=list)

    stitch_tiles: bool = False

    compute_hybrid_pressure: bool = True
    compute_relative_humidity: bool = True
    pressure_param_id: int = PARAM_PRESSURE
    humidity_param_id: int = PARAM_HUMIDITY
    temperature_param_id: int = PARAM_TEMPERATURE
    specific_humidity_param_id: int = PARAM_SPECIFIC_HUMIDITY
    surface_pressure_param_id: int = PARAM_PRESSURE_AT_STATION
    ground_pressure_param_id: int = PARAM_PRESSURE_AT_STATION

    max_dataset_bytes: int = DEFAULT_MAX_DATASET_BYTES

    backend: str = "serial"
    workers: Optional[int] = None
    verbose: bool = False
    quiet: bool = False
    log_file: Optional[str] = None

    def __post_init__(self) -> None:
        """
        Validate option values after dataclass construction so an inconsistent configuration is rejected before any record is read. Tuples are normalized so configurations loaded from YAML lists compare equal to ones built in code.

        Parameters:
            None

        Returns:
            None

        Raises:
            ValueError: If any option is out of range or inconsistent.
        """
        if self.dateline_fix not in DATELINE_FIX_MODES:
            raise ValueError(f"Invalid dateline_fix '{self.dateline_fix}'. Must be one of: {list(DATELINE_FIX_MODES)}")
        if self.interpolation not in INTERPOLATION_METHODS:
            raise ValueError(f"Invalid interpolation '{self.interpolation}'. Must be one of: {list(INTERPOLATION_METHODS)}")
        if self.backend not in PARALLEL_BACKENDS:
            raise ValueError(f"Invalid backend '{self.backend}'. Must be one of: {list(PARALLEL_BACKENDS)}")
        if self.workers is not None and self.workers < 1:
            raise ValueError("workers must be a positive integer")
        if self.max_dataset_bytes <= 0:
            raise ValueError("max_dataset_bytes must be positive")

        if self.crop is not None:
            self.crop = tuple(float(v) for v in self.crop)
            if not self._validate_crop():
                raise ValueError(f"Invalid crop rectangle {self.crop}")

        self.accepted_level_types = [int(v) for v in self.accepted_level_types]
        self.step_range_params = [int(v) for v in self.step_range_params]
        for spec in self.ignored_levels:
            parse_ignored_level(spec)

    def _validate_crop(self) -> bool:
        """
        Validate the crop rectangle. It needs four values with latitudes inside [-90, 90] and the northern latitude above the southern one; longitudes are only required to be ordered since Pacific views may run past 180 degrees.

        Parameters:
            None

        Returns:
            bool: True if the crop rectangle is usable.
        """
        if len(self.crop) != 4:
            return False
        lon1, lat1, lon2, lat2 = self.crop
        return (
            -90.0 <= lat1 <= 90.0 and
            -90.0 <= lat2 <= 90.0 and
            lat2 > lat1 and
            lon2 > lon1
        )

    def get_ignored_levels(self) -> List[IgnoredLevel]:
        return [parse_ignored_level(spec) for spec in self.ignored_levels]

    def get_param_remap_table(self) -> ParamRemapTable:
        """
        Build the remap table from the configured file followed by any inline rules. Inline rules come after the file rules so the file keeps precedence under first-match lookup.

        Parameters:
            None

        Returns:
            ParamRemapTable: Combined remap rules, possibly empty.
        """
        rules: List[ParamRemapRule] = []
        if self.param_table_file:
            rules.extend(ParamRemapTable.from_file(self.param_table_file))
        rules.extend(ParamRemapTable.from_lines(self.param_table, source='configuration'))
        return ParamRemapTable(rules)

    def get_target_grids(self) -> Tuple[Optional[Grid], Optional[Grid], Optional[Grid]]:
        """Return the general, hybrid-level and pressure-level target grids built from their descriptions."""
        def build(spec: Optional[Dict[str, Any]]) -> Optional[Grid]:
            return None if spec is None else grid_from_dict(spec)
        return build(self.target_grid), build(self.hybrid_target_grid), build(self.pressure_target_grid)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the configuration to a dictionary for serialization and inspection. Tuples are turned into lists since YAML prefers list representations.

        Parameters:
            None

        Returns:
            Dict[str, Any]: All configuration options with tuple values converted to lists.
        """
        config_dict = asdict(self)
        for key, value in config_dict.items():
            if isinstance(value, tuple):
                config_dict[key] = list(value)
        return config_dict

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'ConversionConfig':
        """
        Construct a configuration from a dictionary of option values. Unknown keys are rejected so a misspelled option in a YAML file does not silently fall back to its default.

        Parameters:
            config_dict (Dict[str, Any]): Option values keyed by attribute name.

        Returns:
            ConversionConfig: Validated configuration.

        Raises:
            ValueError: If the dictionary contains unknown options.
        """
        config_dict = dict(config_dict or {})
        unknown = set(config_dict) - set(cls.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown configuration options: {sorted(unknown)}")
        if isinstance(config_dict.get('crop'), list):
            config_dict['crop'] = tuple(config_dict['crop'])
        return cls(**config_dict)

    def merged(self, **overrides: Any) -> 'ConversionConfig':
        """Return a new configuration with the given options replaced; None values are ignored."""
        values = self.to_dict()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return self.from_dict(values)

    def save_to_file(self, filepath: str) -> None:
        """
        Persist the configuration to a YAML file for reproducibility. The file can be loaded back with load_from_file to repeat a conversion with identical options.

        Parameters:
            filepath (str): Path of the YAML file to write.

        Returns:
            None
        """
        config_dict = self.to_dict()

        with open(filepath, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

        if self.verbose:
            print(f"Configuration saved to: {filepath}")

    @classmethod
    def load_from_file(cls, filepath: str) -> 'ConversionConfig':
        """
        Load a configuration from a YAML file using safe loading and validate it through from_dict. An empty file yields the default configuration.

        Parameters:
            filepath (str): Path of the YAML configuration file.

        Returns:
            ConversionConfig: Loaded and validated configuration.

        Raises:
            ValueError: If the file is not valid YAML or holds unknown options.
        """
        with open(filepath, 'r') as f:
            try:
                config_dict = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid configuration file {filepath}: {e}") from e

        return cls.from_dict(config_dict or {})
