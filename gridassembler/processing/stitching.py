#!/usr/bin/env python3

"""
Multi-Tile Area Stitcher

This module merges records that were delivered as separate edge-adjacent latitude/longitude tiles into records on one larger covering grid. Within each level type the distinct tile grids are compared pairwise: two tiles connect when both are regular latitude/longitude grids with exactly the same longitude width, latitude height and resolution, and one tile's right or top edge coincides exactly with the other's left or bottom edge. The connections form an adjacency relation whose connected components are collected by scanning the remaining connections twice, so links discovered late in the first scan still join their component. The covering grid of a component is grown connection by connection from the accumulated bottom-left and top-right corners, adding the tile column or row count minus the shared edge along the joining axis. Member samples are copied into their exact cells of the covering grid and any cell still missing afterwards is resampled from whichever member covers it. Records whose tile is not part of any connection pass through unchanged. The heuristic is validated for 1x2, 2x1 and 2x2 tile layouts; larger irregular tile sets are merged on a best-effort basis only.

Classes:
    ConnectionDirection: Position of the second tile relative to the first.
    TileConnection: One detected edge connection between two tiles.
    AreaStitcher: Detects tile connections and stitches connected records.

Author: Rubaiat Islam
Institution: Mesoscale & Microscale Meteorology Laboratory, NCAR
Email: mrislam@ucar.edu
Date: November 2025
Version: 1.0.0
"""

from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .exceptions import UnsupportedInputError
from .geometry import Field, Grid, LatLonProjection, same_resolution
from .records import GridRecord
from .remapping import sample_field


class ConnectionDirection(Enum):
    """Where the second tile lies relative to the first."""
    RIGHT = 'right'
    LEFT = 'left'
    UP = 'up'
    DOWN = 'down'


@dataclass(frozen=True)
class TileConnection:
    first: int
    second: int
    direction: ConnectionDirection


def _corners(grid: Grid) -> Dict[str, Tuple[float, float]]:
    x0, y0, x1, y1 = grid.projection.world_box
    return {
        'bottom_left': (x0, y0),
        'bottom_right': (x1, y0),
        'top_left': (x0, y1),
        'top_right': (x1, y1),
    }


class AreaStitcher:
    """
    Stitch edge-adjacent latitude/longitude tiles into covering grids. The stitcher keeps no state between calls and runs on the whole batch after filtering.
    """

    def __init__(self, method: str = 'bilinear', verbose: bool = False) -> None:
        self.method = method
        self.verbose = verbose

    @staticmethod
    def try_connect(grid1: Grid, grid2: Grid) -> Optional[ConnectionDirection]:
        """
        Test whether two tile grids share a full edge. Both grids must be regular latitude/longitude grids; equal widths, heights and resolutions are required and corner coordinates are compared exactly.

        Parameters:
            grid1 (Grid): First tile grid.
            grid2 (Grid): Second tile grid.

        Returns:
            Optional[ConnectionDirection]: Position of grid2 relative to grid1, or None when the tiles do not connect.

        Raises:
            UnsupportedInputError: If either grid is not a latitude/longitude grid.
        """
        if not isinstance(grid1.projection, LatLonProjection) or not isinstance(grid2.projection, LatLonProjection):
            raise UnsupportedInputError("Only latlon-area types are supported when combining data areas")

        ax0, ay0, ax1, ay1 = grid1.projection.world_box
        bx0, by0, bx1, by1 = grid2.projection.world_box
        if (ax1 - ax0) != (bx1 - bx0) or (ay1 - ay0) != (by1 - by0):
            return None
        if not same_resolution(grid1, grid2):
            return None

        a, b = _corners(grid1), _corners(grid2)
        if a['bottom_right'] == b['bottom_left'] and a['top_right'] == b['top_left']:
            return ConnectionDirection.RIGHT
        if b['bottom_right'] == a['bottom_left'] and b['top_right'] == a['top_left']:
            return ConnectionDirection.LEFT
        if a['bottom_left'] == b['top_left'] and a['bottom_right'] == b['top_right']:
            return ConnectionDirection.DOWN
        if b['bottom_left'] == a['top_left'] and b['bottom_right'] == a['top_right']:
            return ConnectionDirection.UP
        return None

    def find_connections(self, tiles: Sequence[Grid]) -> List[TileConnection]:
        """Test every tile pair (i < j) and return the connections found, in pair order."""
        connections = []
        for i in range(len(tiles)):
            for j in range(i + 1, len(tiles)):
                try:
                    direction = self.try_connect(tiles[i], tiles[j])
                except UnsupportedInputError:
                    direction = None
                if direction is not None:
                    connections.append(TileConnection(i, j, direction))
        return connections

    @staticmethod
    def find_components(connections: Sequence[TileConnection]) -> List[Tuple[List[int], Set[int]]]:
        """
        Group connections into connected components. Each unused connection seeds a component and the later connections are scanned twice, adding every connection that touches a tile already in the component; the second scan catches links that only become reachable through a connection found later in the first scan.

        Parameters:
            connections (Sequence[TileConnection]): Detected tile connections.

        Returns:
            List[Tuple[List[int], Set[int]]]: For every component, the sorted connection indices and the set of tile indices.
        """
        components: List[Tuple[List[int], Set[int]]] = []
        used: Set[int] = set()
        for i, seed in enumerate(connections):
            if i in used:
                continue
            tiles = {seed.first, seed.second}
            edges = {i}
            for _ in range(2):
                for k in range(i + 1, len(connections)):
                    connection = connections[k]
                    if connection.first in tiles or connection.second in tiles:
                        tiles.update((connection.first, connection.second))
                        edges.add(k)
            used.update(edges)
            components.append((sorted(edges), tiles))
        return components

    @staticmethod
    def combined_grid(tiles: Sequence[Grid], connections: Sequence[TileConnection],
                      edges: Sequence[int]) -> Grid:
        """
        Grow the covering grid of one component connection by connection. The first connection sets the box to the union of its two tiles with the counts of both tiles minus the shared edge along the joining axis; each later connection extends the box on the side where its outer tile reaches beyond the current box.

        Parameters:
            tiles (Sequence[Grid]): Tile grids indexed by the connections.
            connections (Sequence[TileConnection]): All detected connections.
            edges (Sequence[int]): Connection indices of the component in processing order.

        Returns:
            Grid: Latitude/longitude grid covering the component.
        """
        bottom_left: Optional[Tuple[float, float]] = None
        top_right: Optional[Tuple[float, float]] = None
        nx = ny = 0
        for k in edges:
            connection = connections[k]
            grid1, grid2 = tiles[connection.first], tiles[connection.second]
            direction = connection.direction
            horizontal = direction in (ConnectionDirection.RIGHT, ConnectionDirection.LEFT)
            if direction in (ConnectionDirection.RIGHT, ConnectionDirection.UP):
                low, high = grid1, grid2
            else:
                low, high = grid2, grid1
            low_corners, high_corners = _corners(low), _corners(high)

            if bottom_left is None:
                bottom_left = low_corners['bottom_left']
                top_right = high_corners['top_right']
                if horizontal:
                    nx = grid1.nx + grid2.nx - 1
                    ny = max(grid1.ny, grid2.ny)
                else:
                    nx = max(grid1.nx, grid2.nx)
                    ny = grid1.ny + grid2.ny - 1
                continue

            axis = 0 if horizontal else 1
            if bottom_left[axis] > low_corners['bottom_left'][axis]:
                bottom_left = (min(bottom_left[0], low_corners['bottom_left'][0]),
                               min(bottom_left[1], low_corners['bottom_left'][1]))
                if horizontal:
                    nx += low.nx - 1
                else:
                    ny += low.ny - 1
            elif top_right[axis] < high_corners['top_right'][axis]:
                top_right = (max(top_right[0], high_corners['top_right'][0]),
                             max(top_right[1], high_corners['top_right'][1]))
                if horizontal:
                    nx += high.nx - 1
                else:
                    ny += high.ny - 1

        return Grid(LatLonProjection(bottom_left, top_right), nx, ny)

    def fill(self, grid: Grid, members: Sequence[GridRecord]) -> Field:
        """
        Build the field of one stitched record. Member samples are copied into their exact cells first, earlier members winning where tiles overlap on the shared edge; cells still missing are then resampled from each member that covers them, in member order.

        Parameters:
            grid (Grid): Covering grid of the component.
            members (Sequence[GridRecord]): Records of the component sharing parameter, level and time.

        Returns:
            Field: Stitched field on the covering grid.
        """
        values = np.full(grid.shape, np.nan, dtype=np.float64)
        dx, dy = grid.resolution
        x0, y0, _, _ = grid.projection.world_box

        for member in members:
            mx0, my0, _, _ = member.grid.projection.world_box
            i0 = int(round((mx0 - x0) / dx)) if dx else 0
            j0 = int(round((my0 - y0) / dy)) if dy else 0
            i1, j1 = i0 + member.grid.nx, j0 + member.grid.ny
            if i0 < 0 or j0 < 0 or i1 > grid.nx or j1 > grid.ny:
                continue
            window = values[j0:j1, i0:i1]
            empty = np.isnan(window)
            window[empty] = member.field.values[empty]

        missing = np.isnan(values)
        if missing.any():
            lons, lats = grid.cell_latlons()
            for member in members:
                if not missing.any():
                    break
                sampled = sample_field(member.field, lons[missing], lats[missing], self.method)
                target = values[missing]
                take = np.isnan(target) & ~np.isnan(sampled)
                target[take] = sampled[take]
                values[missing] = target
                missing = np.isnan(values)

        return Field(grid, values)

    def stitch(self, records: Sequence[GridRecord]) -> List[GridRecord]:
        """
        Stitch connected tiles of every level type. Records are grouped by level type, tiles are the distinct grids of a group in first-seen order, and for every component the member records sharing parameter, level and valid time are merged into one record on the covering grid. Stitched records come first, followed by the records of unconnected tiles in their original order.

        Parameters:
            records (Sequence[GridRecord]): Filtered records of the batch.

        Returns:
            List[GridRecord]: Stitched records followed by the unchanged records.
        """
        by_level_type: Dict[int, List[GridRecord]] = OrderedDict()
        for record in records:
            by_level_type.setdefault(record.level_type, []).append(record)

        stitched: List[GridRecord] = []
        merged_ids: Set[int] = set()
        for level_type, group in by_level_type.items():
            tiles = list(OrderedDict.fromkeys(r.grid for r in group))
            connections = self.find_connections(tiles)
            if not connections:
                continue

            for edges, tile_indices in self.find_components(connections):
                grid = self.combined_grid(tiles, connections, edges)
                member_grids = {tiles[i] for i in tile_indices}
                if self.verbose:
                    print(f"Stitching {len(member_grids)} tiles of level type {level_type} into {grid.describe()}")

                keyed: Dict[tuple, List[GridRecord]] = OrderedDict()
                for record in group:
                    if record.grid in member_grids:
                        key = (record.param_id, record.level_value, record.valid_time)
                        keyed.setdefault(key, []).append(record)
                        merged_ids.add(id(record))

                for members in keyed.values():
                    field = self.fill(grid, members)
                    stitched.append(replace(members[0], field=field,
                                            corrected=any(m.corrected for m in members)))

        return stitched + [r for r in records if id(r) not in merged_ids]
