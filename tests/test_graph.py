import random
from collections import deque

import pytest

from graph import (
    RangeIndex,
    SpatialGrid,
    build_adjacency_list,
    build_distance_matrix,
    find_path,
    grid_from_positions,
    is_valid_chain,
    update_range,
)
from helpers import grid_positions


def bfs_hops(adjacency, start):
    dist = {start: 0}
    q = deque([start])
    while q:
        node = q.popleft()
        for nb in adjacency[node]:
            if nb not in dist:
                dist[nb] = dist[node] + 1
                q.append(nb)
    return dist


def random_positions(n, size, seed):
    r = random.Random(seed)
    return [(r.uniform(0, size), r.uniform(0, size)) for _ in range(n)]


class TestDistanceMatrix:
    def test_symmetric_with_zero_diagonal(self):
        m = build_distance_matrix([(0, 0), (3, 4), (6, 8)])
        assert m[0][1] == pytest.approx(5.0)
        assert m[0][2] == pytest.approx(10.0)
        for i in range(3):
            assert m[i][i] == 0.0
            for j in range(3):
                assert m[i][j] == m[j][i]


class TestAdjacency:
    @pytest.mark.parametrize("jump_range", [30.0, 90.0, 250.0])
    def test_symmetric_for_any_range(self, jump_range):
        matrix = build_distance_matrix(random_positions(40, 500, seed=7))
        adj = build_adjacency_list(jump_range, matrix)
        for i, row in enumerate(adj):
            assert i not in row
            for j in row:
                assert i in adj[j]

    def test_grid_neighbors_are_orthogonal_only(self):
        adj = build_adjacency_list(100.0, build_distance_matrix(grid_positions()))
        assert adj[0] == [1, 5]
        assert adj[12] == [7, 11, 13, 17]

    def test_update_range_is_idempotent(self):
        matrix = build_distance_matrix(random_positions(30, 400, seed=3))
        once = update_range(120.0, matrix)
        twice = update_range(120.0, matrix)
        assert once == twice == build_adjacency_list(120.0, matrix)

    def test_range_index_rebuilds_once_per_range(self):
        ranges = RangeIndex(build_distance_matrix(grid_positions()))
        first = ranges.adjacency_for(100.0)
        assert ranges.adjacency_for(100.0) is first
        assert ranges.rebuilds == 1
        ranges.adjacency_for(120.0)
        ranges.adjacency_for(120.0)
        assert ranges.rebuilds == 2


class TestFindPath:
    def test_corner_to_corner_is_eight_hops(self):
        adj = build_adjacency_list(100.0, build_distance_matrix(grid_positions()))
        path = find_path(adj, 0, 24)
        assert path[0] == 0
        assert path[-1] == 24
        assert len(path) - 1 == 8
        assert is_valid_chain(adj, path)

    def test_matches_bfs_hop_count(self):
        adj = build_adjacency_list(110.0, build_distance_matrix(random_positions(60, 600, seed=11)))
        hops = bfs_hops(adj, 0)
        for target in range(len(adj)):
            path = find_path(adj, 0, target)
            if target in hops:
                assert path is not None
                assert len(path) - 1 == hops[target]
                assert is_valid_chain(adj, path)
            else:
                assert path is None

    def test_disconnected_components(self):
        positions = [(0, 0), (50, 0), (1000, 1000), (1050, 1000)]
        adj = build_adjacency_list(60.0, build_distance_matrix(positions))
        assert find_path(adj, 0, 1) == [0, 1]
        assert find_path(adj, 0, 3) is None

    def test_start_equals_target(self):
        adj = build_adjacency_list(100.0, build_distance_matrix(grid_positions()))
        assert find_path(adj, 6, 6) == [6]

    def test_out_of_bounds_target(self):
        adj = build_adjacency_list(100.0, build_distance_matrix(grid_positions()))
        assert find_path(adj, 0, 99) is None

    def test_reachable_from(self):
        positions = [(0, 0), (50, 0), (100, 0), (1000, 1000)]
        ranges = RangeIndex(build_distance_matrix(positions))
        assert ranges.reachable_from(60.0, 0) == {1, 2}
        assert ranges.path_for(60.0, 0, 2) == [0, 1, 2]


class TestSpatialGrid:
    @pytest.fixture
    def grid(self):
        return grid_from_positions(
            ((i, x, y, 25.0) for i, (x, y) in enumerate(grid_positions())), cell_size=100.0
        )

    def test_territory_at_point(self, grid):
        assert grid.territory_at(105, 3) == 1
        assert grid.territory_at(0, 0) == 0
        assert grid.territory_at(50, 50) is None

    def test_query_rect(self, grid):
        assert grid.query_rect(0, 0, 150, 150) == [0, 1, 5, 6]
        assert grid.query_rect(150, 150, 0, 0) == [0, 1, 5, 6]
        assert grid.query_rect(1000, 1000, 1100, 1100) == []

    def test_len(self, grid):
        assert len(grid) == 25

    def test_rejects_bad_cell_size(self):
        with pytest.raises(ValueError):
            SpatialGrid(0)
