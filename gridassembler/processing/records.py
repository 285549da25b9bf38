#!/usr/bin/env python3

"""
Decoded Grid Records and Decoder Boundary

This module defines the record types that flow through the grid assembly pipeline and the thin boundary to the decoding stage that produces them. A DecodedRecord is the read-only view of one decoded grid message: parameter and level identification, origin and valid times, the missing-value sentinel and scanning mode, the projection family tag with its raw geometry keys, and the raw sample array. Geometry keys keep the eccodes key names (Ni, Nj, latitudeOfFirstGridPointInDegrees, DxInMetres and so on) and are accessed through MessageFields, which offers typed lookups returning documented failure values when a key is absent, mirroring the eccodes get_long/get_double/get_string calls. After geometry resolution and normalization a record becomes a GridRecord that owns a Field and the mutable classification state (parameter remapping, affine conversion, forced surface level). Decoders implement the RecordDecoder interface; an in-memory decoder serves tests and programmatic use, and an eccodes-backed decoder reads GRIB files when the optional eccodes package is installed. The eccodes decoder is not thread-safe and is always iterated sequentially in the calling thread.

Classes:
    MessageFields: Typed key lookups with failure values over a decoded message.
    DecodedRecord: Decoded grid message handed to the pipeline.
    GridRecord: Normalized record owning a Field plus classification state.
    RecordDecoder: Abstract decoder boundary yielding DecodedRecord values.
    InMemoryDecoder: Decoder over already decoded key dictionaries.
    EccodesDecoder: Decoder reading GRIB files through eccodes.

Functions:
    level_type_from_name: Map an eccodes typeOfLevel name to a numeric level type.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .constants import FAILED_TO_EXTRACT_MSG, LEVEL_TYPE_NAMES, MISSING_LONG
from .exceptions import UnsupportedInputError
from .geometry import Field, Grid

try:
    import eccodes
    ECCODES_AVAILABLE = True
except ImportError:
    ECCODES_AVAILABLE = False
    eccodes = None


def level_type_from_name(name: Any) -> int:
    """
    Map an eccodes typeOfLevel name (or a numeric string) to the numeric level type used on the output datasets. Unknown names map to 0 so they can be filtered by the accepted level type list.

    Parameters:
        name (Any): typeOfLevel name such as 'hybrid' or 'isobaricInhPa', or a number.

    Returns:
        int: Numeric level type, 0 when the name is not recognized.
    """
    if isinstance(name, (int, np.integer)):
        return int(name)
    text = str(name).strip()
    if text in LEVEL_TYPE_NAMES:
        return LEVEL_TYPE_NAMES[text]
    try:
        return int(text)
    except ValueError:
        return 0


class MessageFields:
    """
    Typed lookups over the keys of one decoded message. Each getter returns a documented failure value when the key is missing or empty (MISSING_LONG for integers, NaN for reals, None for strings and arrays) and the require_* variants raise UnsupportedInputError naming the key and the projection family being resolved.
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __repr__(self) -> str:
        return f"MessageFields({sorted(self._values)})"

    def has(self, key: str) -> bool:
        value = self._values.get(key)
        if value is None:
            return False
        if isinstance(value, (int, np.integer)) and int(value) == MISSING_LONG:
            return False
        return True

    def get_long(self, key: str, default: int = MISSING_LONG) -> int:
        if not self.has(key):
            return default
        try:
            return int(self._values[key])
        except (TypeError, ValueError):
            return default

    def get_double(self, key: str, default: float = float('nan')) -> float:
        if not self.has(key):
            return default
        try:
            return float(self._values[key])
        except (TypeError, ValueError):
            return default

    def get_string(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if not self.has(key):
            return default
        return str(self._values[key])

    def get_array(self, key: str) -> Optional[np.ndarray]:
        if not self.has(key):
            return None
        return np.asarray(self._values[key], dtype=np.float64)

    def require_long(self, key: str, family: str) -> int:
        value = self.get_long(key)
        if value == MISSING_LONG:
            raise UnsupportedInputError(FAILED_TO_EXTRACT_MSG.format(key=key, family=family))
        return value

    def require_double(self, key: str, family: str) -> float:
        value = self.get_double(key)
        if np.isnan(value):
            raise UnsupportedInputError(FAILED_TO_EXTRACT_MSG.format(key=key, family=family))
        return value

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._values)


@dataclass
class DecodedRecord:
    """
    Decoded grid message as produced by the decoding collaborator. The record is read-only to the pipeline; every later stage builds new objects from it. The geometry keys are wrapped in MessageFields so the resolver can tell a missing key from a legitimate zero.
    """
    param_id: int
    param_name: str
    level_type: int
    level_value: float
    origin_time: datetime
    valid_time: datetime
    values: np.ndarray
    grid_type: str = 'regular_ll'
    geometry: MessageFields = field(default_factory=MessageFields)
    missing_value: float = 9999.0
    scanning_mode: int = 64
    row_lengths: Optional[Sequence[int]] = None
    step_range: Optional[str] = None
    coefficients: Optional[np.ndarray] = None
    corrected: bool = False
    index: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.geometry, MessageFields):
            self.geometry = MessageFields(self.geometry)
        self.values = np.asarray(self.values, dtype=np.float64).ravel()
        if self.coefficients is not None:
            self.coefficients = np.asarray(self.coefficients, dtype=np.float64)

    @classmethod
    def from_fields(cls, fields: MessageFields, values: Any, index: int = 0) -> 'DecodedRecord':
        """
        Build a DecodedRecord from eccodes-style key lookups. Parameter identity prefers 'paramId' over 'indicatorOfParameter', the level comes from 'typeOfLevel' and 'level' with Pa pressure levels stored in hPa, times come from 'dataDate'/'dataTime' and 'validityDate'/'validityTime', and the geometry keys are passed through for the resolver. The vertical coordinate array 'pv' and the reduced grid row lengths 'pl' are picked up when present.

        Parameters:
            fields (MessageFields): Key lookups of one decoded message.
            values (Any): Raw sample array of the message.
            index (int): Sequence index of the message within its source (default: 0).

        Returns:
            DecodedRecord: Record ready for the per-record conversion stage.
        """
        param_id = fields.get_long('paramId')
        if param_id == MISSING_LONG:
            param_id = fields.get_long('indicatorOfParameter', 0)

        level_type_name = fields.get_string('typeOfLevel')
        if level_type_name is not None:
            level_type = level_type_from_name(level_type_name)
        else:
            level_type = fields.get_long('indicatorOfTypeOfLevel', 0)

        origin_time = _grib_datetime(fields.get_long('dataDate', 0), fields.get_long('dataTime', 0))
        if fields.has('validityDate'):
            valid_time = _grib_datetime(fields.get_long('validityDate'), fields.get_long('validityTime', 0))
        else:
            valid_time = origin_time

        level_value = fields.get_double('level', 0.0)
        if level_type_name == 'isobaricInPa':
            level_value /= 100.0

        pl = fields.get_array('pl')
        return cls(
            param_id=int(param_id),
            param_name=fields.get_string('shortName') or fields.get_string('name') or str(param_id),
            level_type=int(level_type),
            level_value=level_value,
            origin_time=origin_time,
            valid_time=valid_time,
            values=values,
            grid_type=fields.get_string('gridType', 'regular_ll'),
            geometry=fields,
            missing_value=fields.get_double('missingValue', 9999.0),
            scanning_mode=fields.get_long('scanningMode', 64),
            row_lengths=None if pl is None else [int(n) for n in pl],
            step_range=fields.get_string('stepRange'),
            coefficients=fields.get_array('pv'),
            index=index,
        )


def _grib_datetime(date: int, time: int) -> datetime:
    if date <= 0:
        return datetime(1900, 1, 1)
    text = f"{int(date):08d}{int(time):04d}"
    return pd.to_datetime(text, format='%Y%m%d%H%M').to_pydatetime()


@dataclass
class GridRecord:
    """
    Normalized record carrying one Field plus the metadata needed by classification, stitching and assembly. The remap state records whether a parameter remap rule rewrote this record and which affine conversion it carries.
    """
    field: Field
    param_id: int
    param_name: str
    level_type: int
    level_value: float
    origin_time: datetime
    valid_time: datetime
    step_range: Optional[str] = None
    coefficients: Optional[np.ndarray] = None
    corrected: bool = False
    index: int = 0
    original_param_id: Optional[int] = None
    original_param_name: Optional[str] = None
    remapped: bool = False
    conversion_base: float = 0.0
    conversion_scale: float = 1.0
    interpolation: Optional[str] = None

    @property
    def grid(self) -> Grid:
        return self.field.grid

    def describe(self) -> str:
        return (f"param {self.param_id} ({self.param_name}) level {self.level_type}/{self.level_value:g} "
                f"valid {self.valid_time:%Y-%m-%d %H:%M}")


class RecordDecoder(ABC):
    """
    Decoder collaborator boundary. Implementations yield DecodedRecord values in source order.
    """

    name: str = 'decoder'

    @abstractmethod
    def records(self) -> Iterator[DecodedRecord]:
        """Yield every decoded record of the source."""

    def __iter__(self) -> Iterator[DecodedRecord]:
        return self.records()


class InMemoryDecoder(RecordDecoder):
    """
    Decoder over messages that are already decoded into key dictionaries or DecodedRecord objects. Dictionaries need a 'values' entry with the raw samples; all other entries are eccodes key names.
    """

    def __init__(self, messages: Iterable[Any], name: str = 'memory') -> None:
        self._messages: List[Any] = list(messages)
        self.name = name

    def records(self) -> Iterator[DecodedRecord]:
        for index, message in enumerate(self._messages):
            if isinstance(message, DecodedRecord):
                yield message
                continue
            keys = dict(message)
            values = keys.pop('values')
            yield DecodedRecord.from_fields(MessageFields(keys), values, index=index)


_ECCODES_KEYS = (
    'paramId', 'indicatorOfParameter', 'shortName', 'name', 'typeOfLevel', 'indicatorOfTypeOfLevel',
    'level', 'dataDate', 'dataTime', 'validityDate', 'validityTime', 'stepRange', 'gridType',
    'missingValue', 'scanningMode', 'Ni', 'Nj', 'Nx', 'Ny',
    'latitudeOfFirstGridPointInDegrees', 'longitudeOfFirstGridPointInDegrees',
    'latitudeOfLastGridPointInDegrees', 'longitudeOfLastGridPointInDegrees',
    'latitudeOfSouthernPoleInDegrees', 'longitudeOfSouthernPoleInDegrees', 'angleOfRotationInDegrees',
    'DxInMetres', 'DyInMetres', 'LaDInDegrees', 'LoVInDegrees', 'orientationOfTheGridInDegrees',
    'Latin1InDegrees', 'Latin2InDegrees', 'projectionCentreFlag',
)


class EccodesDecoder(RecordDecoder):
    """
    Decoder reading every message of a GRIB file through eccodes. Each message handle is released before the next one is read.
    """

    def __init__(self, path: str) -> None:
        if not ECCODES_AVAILABLE:
            raise RuntimeError("eccodes is not installed; install the 'grib' extra to read GRIB files")
        self.path = path
        self.name = path

    def records(self) -> Iterator[DecodedRecord]:
        with open(self.path, 'rb') as f:
            index = 0
            while True:
                gid = eccodes.codes_grib_new_from_file(f)
                if gid is None:
                    break
                try:
                    keys = self._read_keys(gid)
                    values = eccodes.codes_get_values(gid)
                    yield DecodedRecord.from_fields(MessageFields(keys), values, index=index)
                finally:
                    eccodes.codes_release(gid)
                index += 1

    @staticmethod
    def _read_keys(gid: Any) -> Dict[str, Any]:
        keys: Dict[str, Any] = {}
        for key in _ECCODES_KEYS:
            if not eccodes.codes_is_defined(gid, key) or eccodes.codes_is_missing(gid, key):
                continue
            try:
                keys[key] = eccodes.codes_get(gid, key)
            except eccodes.CodesInternalError as e:
                warnings.warn(f"Could not read key '{key}': {e}", UserWarning)
        for array_key in ('pv', 'pl'):
            if eccodes.codes_is_defined(gid, array_key) and eccodes.codes_get_size(gid, array_key) > 0:
                keys[array_key] = eccodes.codes_get_array(gid, array_key)
        return keys
