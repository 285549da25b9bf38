#!/usr/bin/env python3

"""
Reprojection Location Cache for Parallel Processing

This module provides the shared cache of reprojection location tables used when records are resampled onto a target grid. A location table stores, for every cell of a target grid, the fractional column and row of that cell's centre in a source grid; building it requires a geographic transform of every target cell and is identical for all records sharing the same source and target grids, so it is computed once per (source, target) pair and reused by every later record. The cache is keyed by the structural Grid values themselves, populates each key at most once under a reentrant lock that also guards the access counts used for eviction. The lock is dropped when the cache is pickled so the cache can travel to multiprocessing workers, and a fresh lock is created when the cache is unpickled. A process-wide singleton is available for callers that do not manage their own cache instance.

Classes:
    LocationTable: Fractional source coordinates of every target cell.
    LocationTableCache: Thread-safe at-most-once cache of location tables.

Functions:
    get_global_location_cache: Retrieve or create the process-wide cache instance.
    clear_global_location_cache: Clear and drop the process-wide cache instance.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

from .geometry import Grid

CacheKey = Tuple[Grid, Grid]


@dataclass
class LocationTable:
    """Container for the fractional source coordinates of every target cell."""
    x: np.ndarray
    y: np.ndarray
    source: Grid
    target: Grid
    timestamp: float = field(default_factory=time.time)

    @property
    def nbytes(self) -> int:
        return int(self.x.nbytes + self.y.nbytes)


def build_location_table(source: Grid, target: Grid) -> LocationTable:
    """
    Compute the location table mapping every target cell to fractional source grid coordinates. Target cell centres are converted to geographic coordinates and then into the source grid's index space, so any pair of supported projection families can be combined.

    Parameters:
        source (Grid): Grid the samples come from.
        target (Grid): Grid the samples are resampled onto.

    Returns:
        LocationTable: Fractional source column and row arrays of shape (target.ny, target.nx).
    """
    lons, lats = target.cell_latlons()
    x, y = source.latlon_to_grid(lons, lats)
    x.setflags(write=False)
    y.setflags(write=False)
    return LocationTable(x=x, y=y, source=source, target=target)


class LocationTableCache:
    """
    Thread-safe cache of reprojection location tables keyed by (source grid, target grid).

    Each key is populated at most once: the first caller to miss builds the table while holding
    the lock, and concurrent callers for the same key wait on the lock and then find the table.

    Usage:
        cache = LocationTableCache()
        table = cache.get_table(source_grid, target_grid)
    """

    def __init__(self, max_tables: int = 32) -> None:
        """
        Initialize the cache with empty storage and its lock. The max_tables limit bounds memory use; when it is reached the least used table is evicted before a new one is stored.

        Parameters:
            max_tables (int): Maximum number of location tables kept simultaneously (default: 32).

        Returns:
            None
        """
        self._lock = threading.RLock()
        self._tables: Dict[CacheKey, LocationTable] = {}
        self._access_count: Dict[CacheKey, int] = {}
        self._builds = 0
        self.max_tables = max_tables

    def __getstate__(self) -> Dict[str, Any]:
        state = self.__dict__.copy()
        state['_lock'] = None
        return state

    def __setstate__(self, state: Dict[str, Any]) -> None:
        self.__dict__.update(state)
        self._lock = threading.RLock()

    def get_table(self, source: Grid, target: Grid,
                  builder: Callable[[Grid, Grid], LocationTable] = build_location_table) -> LocationTable:
        """
        Return the location table for a (source, target) pair, building it on first use. Lookups, builds and access counting all happen under the lock, so concurrent first callers build a key only once.

        Parameters:
            source (Grid): Grid the samples come from.
            target (Grid): Grid the samples are resampled onto.
            builder (Callable): Function computing a table for a key (default: build_location_table).

        Returns:
            LocationTable: Cached or freshly built location table.
        """
        key = (source, target)
        with self._lock:
            table = self._tables.get(key)
            if table is None:
                if len(self._tables) >= self.max_tables:
                    self._evict_least_accessed()
                table = builder(source, target)
                self._tables[key] = table
                self._access_count[key] = 0
                self._builds += 1
            else:
                self._access_count[key] = self._access_count.get(key, 0) + 1
            return table

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    @property
    def builds(self) -> int:
        return self._builds

    def clear(self) -> None:
        """Remove every cached table."""
        with self._lock:
            self._tables.clear()
            self._access_count.clear()

    def get_cache_info(self) -> Dict[str, Any]:
        """
        Get statistics about the current cache state for monitoring and debugging. The dictionary reports the number of cached tables, how many tables were built since creation and the total memory held by the tables.

        Parameters:
            None

        Returns:
            Dict[str, Any]: Cache statistics with keys 'num_tables', 'builds' and 'total_memory_mb'.
        """
        with self._lock:
            total_memory = sum(table.nbytes for table in self._tables.values())
            return {
                'num_tables': len(self._tables),
                'builds': self._builds,
                'total_memory_mb': total_memory / 1024 / 1024,
            }

    def _evict_least_accessed(self) -> None:
        if not self._tables:
            return
        least_accessed = min(self._access_count.items(), key=lambda x: x[1])[0]
        self._tables.pop(least_accessed, None)
        self._access_count.pop(least_accessed, None)


_global_cache: Optional[LocationTableCache] = None
_global_cache_lock = threading.Lock()


def get_global_location_cache() -> LocationTableCache:
    """
    Get or create the process-wide LocationTableCache instance. All transform engines created without an explicit cache share this instance, so every record of a run reuses the same tables.

    Parameters:
        None

    Returns:
        LocationTableCache: Global cache instance of the current process.
    """
    global _global_cache
    with _global_cache_lock:
        if _global_cache is None:
            _global_cache = LocationTableCache()
        return _global_cache


def clear_global_location_cache() -> None:
    """Clear and reset the process-wide cache instance."""
    global _global_cache
    with _global_cache_lock:
        if _global_cache is not None:
            _global_cache.clear()
            _global_cache = None
