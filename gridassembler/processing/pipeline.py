#!/usr/bin/env python3

"""
Grid Conversion Pipeline

This module drives a conversion run from decoded records to finished datasets. Each input source is handled by add_source: its records are read sequentially from the decoder in the calling thread (the eccodes decoder is not thread-safe), then every record is converted independently through the parallel manager by convert_record, which resolves the geometry, normalizes the sample array and applies the configured crop or reprojection. A record whose geometry or scanning mode is unsupported does not stop the run; its conversion returns a rejection carrying the reason, which is logged with the record's sequence index and counted. Converted records are appended to a lock-guarded collector and the hybrid vertical coefficients of hybrid-level records are captured, first record per level winning. Once every source has been added, assemble runs the whole-batch steps in a fixed order: parameter remapping with conflict detection and affine conversion, filtering, optional tile stitching, axis discovery, dataset assembly with the size guard, hybrid level pressure and finally relative humidity, which needs the hybrid pressure. Remap conflicts and capacity overruns are fatal and propagate; a batch that yields no records or no axes produces an empty ConversionResult and a warning instead of an error.

Classes:
    RecordConversionContext: Per-run collaborators shared by every record conversion.
    RecordOutcome: Result of converting one record, either a GridRecord or a rejection reason.
    RecordCollector: Lock-guarded accumulation of converted records across sources.
    ConversionResult: Datasets, rejection counts and stage timings of a run.
    GridConversionPipeline: Runs the per-record and whole-batch stages.

Functions:
    convert_record: Convert one decoded record into a GridRecord.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import threading
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import xarray as xr

from gridassembler.diagnostics.humidity import RelativeHumidityDiagnostics
from gridassembler.diagnostics.pressure import HybridPressureDiagnostics, VerticalCoefficientTable

from .assembler import DatasetAssembler
from .classifier import AxisSet, RecordClassifier
from .constants import LEVEL_HYBRID, NO_DATA_MSG
from .normalizer import ValueFieldNormalizer
from .parallel import GridParallelManager
from .records import DecodedRecord, GridRecord, InMemoryDecoder, RecordDecoder
from .remapping import SpatialTransformEngine
from .resolver import GridGeometryResolver
from .stitching import AreaStitcher
from .utils_config import ConversionConfig, ParamRemapTable
from .utils_logger import GridLogger
from .utils_monitor import PerformanceMonitor

REJECT_UNSUPPORTED = 'unsupported input'


@dataclass
class RecordConversionContext:
    """
    Collaborators needed to convert one record. The context is read-only during conversion and picklable, so it can be shipped to multiprocessing and MPI workers; every worker process then builds its own location tables.
    """
    resolver: GridGeometryResolver
    normalizer: ValueFieldNormalizer
    engine: SpatialTransformEngine
    remap_table: ParamRemapTable = field(default_factory=ParamRemapTable)
    crop: Optional[Tuple[float, float, float, float]] = None


@dataclass
class RecordOutcome:
    index: int
    record: Optional[GridRecord] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.record is not None


def convert_record(record: DecodedRecord, context: RecordConversionContext) -> RecordOutcome:
    """
    Convert one decoded record into a GridRecord on its final grid. The geometry is resolved, the samples are normalized into the canonical orientation and then cropped or reprojected onto the target grid of the record's level type. The interpolation method of a matching remap rule, looked up with the record's original parameter and level, overrides the run default for this record. Unsupported input, including geometry whose crop window or reprojection cannot be computed, is reported as a rejection rather than raised.

    Parameters:
        record (DecodedRecord): Decoded record to convert.
        context (RecordConversionContext): Shared conversion collaborators.

    Returns:
        RecordOutcome: The converted record, or the rejection reason.
    """
    rule = context.remap_table.find(record.param_id, record.level_type, record.level_value)
    method = rule.interpolation if rule is not None else None
    target = context.resolver.target_for(record.level_type)
    try:
        resolved = context.resolver.resolve(record)
        field_ = context.normalizer.normalize(record, resolved)
        field_ = context.engine.transform(field_, crop=context.crop, target=target, method=method)
    except (ValueError, ArithmeticError) as e:
        return RecordOutcome(index=record.index, reason=str(e) or type(e).__name__)

    return RecordOutcome(index=record.index, record=GridRecord(
        field=field_,
        param_id=record.param_id,
        param_name=record.param_name,
        level_type=record.level_type,
        level_value=float(record.level_value),
        origin_time=record.origin_time,
        valid_time=record.valid_time,
        step_range=record.step_range,
        coefficients=record.coefficients if record.level_type == LEVEL_HYBRID else None,
        corrected=record.corrected,
        index=record.index,
    ))


class RecordCollector:
    """Accumulate converted records of several sources; appends are serialized by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._batches: List[Tuple[int, List[GridRecord]]] = []

    def extend(self, source_number: int, records: Iterable[GridRecord]) -> None:
        batch = list(records)
        with self._lock:
            self._batches.append((source_number, batch))

    def records(self) -> List[GridRecord]:
        """Return all records, ordered by source number and then by position within the source."""
        with self._lock:
            batches = sorted(self._batches, key=lambda item: item[0])
        return [record for _, batch in batches for record in batch]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(batch) for _, batch in self._batches)


@dataclass
class ConversionResult:
    """
    Outcome of a conversion run. Datasets are keyed by level type in the order the level types were first seen; rejections count discarded records by reason.
    """
    datasets: Dict[int, xr.Dataset] = field(default_factory=OrderedDict)
    axes: Dict[int, AxisSet] = field(default_factory=OrderedDict)
    rejections: Counter = field(default_factory=Counter)
    timings: Dict[str, float] = field(default_factory=dict)
    record_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.datasets

    @property
    def rejected_count(self) -> int:
        return sum(self.rejections.values())


class GridConversionPipeline:
    """
    Run the conversion of one or more decoded sources into one dataset per level type.
    """

    def __init__(self, config: Optional[ConversionConfig] = None, logger: Optional[GridLogger] = None) -> None:
        """
        Build every stage of the pipeline from a conversion configuration. The configuration is only read here; stages copy the options they need, so the same configuration object may be shared by several pipelines.

        Parameters:
            config (Optional[ConversionConfig]): Run configuration (default: None uses the defaults).
            logger (Optional[GridLogger]): Logger for rejections and summaries (default: None creates one from the configuration).

        Returns:
            None
        """
        self.config = config or ConversionConfig()
        config = self.config
        verbose = config.verbose and not config.quiet
        self.logger = logger or GridLogger(log_file=config.log_file, verbose=not config.quiet)

        self.remap_table = config.get_param_remap_table()
        target_grid, hybrid_target, pressure_target = config.get_target_grids()
        self.context = RecordConversionContext(
            resolver=GridGeometryResolver(config.dateline_fix, config.earth_radius,
                                          target_grid, hybrid_target, pressure_target),
            normalizer=ValueFieldNormalizer(verbose=False),
            engine=SpatialTransformEngine(config.interpolation),
            remap_table=self.remap_table,
            crop=config.crop,
        )

        self.manager = GridParallelManager(backend=config.backend, n_workers=config.workers, verbose=verbose)
        self.manager.set_error_policy('abort')
        self.classifier = RecordClassifier(config, remap_table=self.remap_table, verbose=verbose)
        self.stitcher = AreaStitcher(config.interpolation, verbose=verbose)
        self.assembler = DatasetAssembler(config.max_dataset_bytes, config.producer_id,
                                          config.producer_name, verbose=verbose)
        self.hybrid_pressure = HybridPressureDiagnostics(config.pressure_param_id,
                                                         config.surface_pressure_param_id, verbose=verbose)
        self.relative_humidity = RelativeHumidityDiagnostics(
            config.humidity_param_id, config.temperature_param_id, config.specific_humidity_param_id,
            config.pressure_param_id, config.ground_pressure_param_id, verbose=verbose)

        self.monitor = PerformanceMonitor(verbose=verbose)
        self.collector = RecordCollector()
        self.coefficients = VerticalCoefficientTable()
        self.conversion_rejections: Counter = Counter()
        self._source_count = 0
        self._source_lock = threading.Lock()

    def add_source(self, decoder: RecordDecoder) -> int:
        """
        Convert every record of one source and add the results to the batch. Records are read from the decoder in the calling thread and then converted by the parallel manager. Rejected records are logged with their sequence index and counted.

        Parameters:
            decoder (RecordDecoder): Source of decoded records.

        Returns:
            int: Number of records converted successfully.
        """
        with self._source_lock:
            source_number = self._source_count
            self._source_count += 1

        with self.monitor.timer('decode'):
            decoded = list(decoder.records())

        with self.monitor.timer('convert'):
            results = self.manager.parallel_map(convert_record, decoded, self.context)

        converted: List[GridRecord] = []
        for result in results:
            outcome = result.result
            if outcome.accepted:
                converted.append(outcome.record)
            else:
                self.conversion_rejections[REJECT_UNSUPPORTED] += 1
                self.logger.record_rejected(decoder.name, outcome.index, outcome.reason)

        self.coefficients.add_records(converted)
        self.collector.extend(source_number, converted)
        self.logger.info(f"{decoder.name}: converted {len(converted)} of {len(decoded)} records")
        return len(converted)

    def add_records(self, records: Sequence[DecodedRecord], name: str = 'memory') -> int:
        """Convert already decoded records as one source."""
        return self.add_source(InMemoryDecoder(records, name=name))

    def assemble(self) -> ConversionResult:
        """
        Run the whole-batch stages over every collected record and build the datasets. Stage order is remap and conversion, filtering, optional stitching, axis discovery, assembly, hybrid level pressure and relative humidity.

        Parameters:
            None

        Returns:
            ConversionResult: Datasets per level type with rejection counts and stage timings; empty when nothing could be assembled.

        Raises:
            RemapConflictError: If the remap table produces colliding parameter ids.
            CapacityExceededError: If a dataset would exceed the size ceiling.
        """
        records = self.collector.records()
        result = ConversionResult(record_count=len(records))
        result.rejections.update(self.conversion_rejections)

        with self.monitor.timer('classify'):
            kept, rejected = self.classifier.classify(records)
        result.rejections.update(rejected)
        self.logger.rejection_counts(rejected)

        if self.config.stitch_tiles and kept:
            with self.monitor.timer('stitch'):
                kept = self.stitcher.stitch(kept)

        with self.monitor.timer('axes'):
            result.axes = self.classifier.build_axes(kept)

        if not result.axes:
            self.logger.warning(f"{NO_DATA_MSG}: no records left after filtering")
            result.timings = self.monitor.get_summary()
            return result

        with self.monitor.timer('assemble'):
            for level_type, axis_set in result.axes.items():
                dataset = self.assembler.assemble(axis_set, kept)
                if dataset is not None:
                    result.datasets[level_type] = dataset
                    self.logger.info(f"Assembled {axis_set.describe()}")

        with self.monitor.timer('derive'):
            self._derive_parameters(result.datasets)

        if result.is_empty:
            self.logger.warning(NO_DATA_MSG)
        result.timings = self.monitor.get_summary()
        return result

    def _derive_parameters(self, datasets: Dict[int, xr.Dataset]) -> None:
        if self.config.compute_hybrid_pressure and LEVEL_HYBRID in datasets:
            others = [ds for level_type, ds in datasets.items() if level_type != LEVEL_HYBRID]
            surface = self.hybrid_pressure.find_surface_dataset(others)
            if surface is not None and len(self.coefficients):
                datasets[LEVEL_HYBRID] = self.hybrid_pressure.compute_hybrid_pressure(
                    datasets[LEVEL_HYBRID], surface, self.coefficients)
            else:
                self.logger.debug("Hybrid pressure not computed: no surface pressure or no vertical coefficients")

        if self.config.compute_relative_humidity:
            for level_type in list(datasets):
                if self.relative_humidity.pressure_source(level_type) is not None:
                    datasets[level_type] = self.relative_humidity.compute_relative_humidity(datasets[level_type])

    def run(self, decoders: Iterable[RecordDecoder]) -> ConversionResult:
        """Add every source in order and assemble the batch."""
        for decoder in decoders:
            self.add_source(decoder)
        return self.assemble()
