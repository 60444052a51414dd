#!/usr/bin/env python3
"""Territory adjacency, range pathfinding and spatial lookup."""
from __future__ import annotations

import logging
import math
from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

Position = Tuple[float, float]
Adjacency = List[List[int]]


def build_distance_matrix(positions: Sequence[Position]) -> List[List[float]]:
    """Symmetric matrix of Euclidean distances, computed once per map."""
    n = len(positions)
    matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        xi, yi = positions[i]
        for j in range(i + 1, n):
            xj, yj = positions[j]
            d = math.hypot(xi - xj, yi - yj)
            matrix[i][j] = d
            matrix[j][i] = d
    return matrix


def build_adjacency_list(jump_range: float, matrix: Sequence[Sequence[float]]) -> Adjacency:
    """For every territory, the ascending ids of all others within ``jump_range``."""
    n = len(matrix)
    adj: Adjacency = []
    for i in range(n):
        row = matrix[i]
        adj.append([j for j in range(n) if j != i and row[j] <= jump_range])
    return adj


def find_path(adjacency: Sequence[Sequence[int]], start: int, target: int) -> Optional[List[int]]:
    """
    Breadth-first search from ``start`` to ``target``.

    Returns the territory ids from start to target inclusive, or None when the
    two are in different components. Among equal-length paths the first one
    discovered in adjacency iteration order wins.
    """
    if start == target:
        return [start]
    n = len(adjacency)
    if not (0 <= start < n and 0 <= target < n):
        return None
    prev: Dict[int, int] = {start: -1}
    q = deque([start])
    while q:
        node = q.popleft()
        for nb in adjacency[node]:
            if nb in prev:
                continue
            prev[nb] = node
            if nb == target:
                path = [nb]
                cur = node
                while cur != -1:
                    path.append(cur)
                    cur = prev[cur]
                path.reverse()
                return path
            q.append(nb)
    return None


def update_range(jump_range: float, matrix: Sequence[Sequence[float]]) -> Adjacency:
    """Rebuild adjacency for a new jump range. O(n^2)."""
    return build_adjacency_list(jump_range, matrix)


class RangeIndex:
    """
    Adjacency lists keyed by jump range.

    Several players share the base range, so adjacency is built once per
    distinct range value and reused; a range change (e.g. a drive discovery)
    costs exactly one rebuild.
    """

    def __init__(self, matrix: List[List[float]]):
        self.matrix = matrix
        self._by_range: Dict[float, Adjacency] = {}
        self.rebuilds = 0

    def adjacency_for(self, jump_range: float) -> Adjacency:
        adj = self._by_range.get(jump_range)
        if adj is None:
            adj = update_range(jump_range, self.matrix)
            self._by_range[jump_range] = adj
            self.rebuilds += 1
            logger.debug("Adjacency rebuilt for range %.1f (%d territories)", jump_range, len(adj))
        return adj

    def path_for(self, jump_range: float, start: int, target: int) -> Optional[List[int]]:
        return find_path(self.adjacency_for(jump_range), start, target)

    def reachable_from(self, jump_range: float, start: int) -> Set[int]:
        adj = self.adjacency_for(jump_range)
        seen = {start}
        q = deque([start])
        while q:
            node = q.popleft()
            for nb in adj[node]:
                if nb not in seen:
                    seen.add(nb)
                    q.append(nb)
        seen.discard(start)
        return seen


def is_valid_chain(adjacency: Sequence[Sequence[int]], path: Sequence[int]) -> bool:
    """True if consecutive ids in ``path`` are all adjacent."""
    if not path:
        return False
    for a, b in zip(path, path[1:]):
        if a >= len(adjacency) or b not in adjacency[a]:
            return False
    return True


class SpatialGrid:
    """Fixed cell bucketing for point and viewport queries."""

    def __init__(self, cell_size: float = 100.0):
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self.cell_size = float(cell_size)
        self._cells: Dict[Tuple[int, int], List[int]] = {}
        self._shapes: Dict[int, Tuple[float, float, float]] = {}

    def _cell(self, x: float, y: float) -> Tuple[int, int]:
        return int(math.floor(x / self.cell_size)), int(math.floor(y / self.cell_size))

    def insert(self, item_id: int, x: float, y: float, radius: float = 0.0) -> None:
        self._shapes[item_id] = (x, y, radius)
        # register in every cell the circle's bounding box touches
        cx0, cy0 = self._cell(x - radius, y - radius)
        cx1, cy1 = self._cell(x + radius, y + radius)
        for cx in range(cx0, cx1 + 1):
            for cy in range(cy0, cy1 + 1):
                self._cells.setdefault((cx, cy), []).append(item_id)

    def territory_at(self, x: float, y: float) -> Optional[int]:
        best: Optional[int] = None
        best_d = None
        for item_id in self._cells.get(self._cell(x, y), ()):
            ix, iy, r = self._shapes[item_id]
            d = math.hypot(x - ix, y - iy)
            if d <= r and (best_d is None or d < best_d):
                best, best_d = item_id, d
        return best

    def query_rect(self, x0: float, y0: float, x1: float, y1: float) -> List[int]:
        """Ids whose centre lies in the rectangle, ascending."""
        if x0 > x1:
            x0, x1 = x1, x0
        if y0 > y1:
            y0, y1 = y1, y0
        cx0, cy0 = self._cell(x0, y0)
        cx1, cy1 = self._cell(x1, y1)
        found: Set[int] = set()
        for cx in range(cx0, cx1 + 1):
            for cy in range(cy0, cy1 + 1):
                for item_id in self._cells.get((cx, cy), ()):
                    ix, iy, _ = self._shapes[item_id]
                    if x0 <= ix <= x1 and y0 <= iy <= y1:
                        found.add(item_id)
        return sorted(found)

    def __len__(self) -> int:
        return len(self._shapes)


def grid_from_positions(positions: Iterable[Tuple[int, float, float, float]], cell_size: float) -> SpatialGrid:
    grid = SpatialGrid(cell_size)
    for item_id, x, y, radius in positions:
        grid.insert(item_id, x, y, radius)
    return grid
