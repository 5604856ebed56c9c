"""
Road Network Graph

Directed graph of junctions and road segments used by the route predictor.

Nodes are junction ids carrying ``lat``/``lon``. Edges carry
``length`` (meters), ``speed_limit`` (km/h), ``travel_time`` (seconds at
the speed limit) and ``segment_id``. A two-way
road is stored as two directed edges sharing one segment id, so blocking
a segment closes both directions.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import networkx as nx
import numpy as np
import yaml

from corridor_engine.geo import haversine_meters, destination_point
from corridor_engine.models import RoadSegment

logger = logging.getLogger(__name__)

DEFAULT_ORIGIN = (23.2156, 72.6369)


class RoadNetwork:
    """
    Junction/road graph backed by networkx

    Usage:
        network = RoadNetwork.build_grid(rows=5, spacing_meters=300)
        node, dist = network.nearest_node(23.2160, 72.6380)
        segment = network.segment("J-0", "J-1")
    """

    def __init__(self, graph: Optional[nx.DiGraph] = None):
        self.graph: nx.DiGraph = graph if graph is not None else nx.DiGraph()
        self._segment_edges: Dict[str, List[Tuple[str, str]]] = {}
        self._node_ids: List[str] = []
        self._node_coords: Optional[np.ndarray] = None

        for u, v, data in self.graph.edges(data=True):
            self._segment_edges.setdefault(data['segment_id'], []).append((u, v))

    # ============================================
    # Construction
    # ============================================

    def add_junction(self, junction_id: str, lat: float, lon: float):
        self.graph.add_node(junction_id, lat=float(lat), lon=float(lon))
        self._node_coords = None

    def add_road(
        self,
        segment_id: str,
        start_id: str,
        end_id: str,
        length_meters: Optional[float] = None,
        speed_limit_kmh: float = 50.0,
        oneway: bool = False
    ):
        """
        Add a road between two existing junctions

        Length defaults to the great-circle distance between the junctions.
        """
        if start_id not in self.graph or end_id not in self.graph:
            raise KeyError(f"Unknown junction in road {segment_id}: {start_id} -> {end_id}")

        if length_meters is None or length_meters <= 0:
            a, b = self.position(start_id), self.position(end_id)
            length_meters = haversine_meters(a[0], a[1], b[0], b[1])

        edges = [(start_id, end_id)] if oneway else [(start_id, end_id), (end_id, start_id)]
        for u, v in edges:
            self.graph.add_edge(
                u, v,
                length=float(length_meters),
                speed_limit=float(speed_limit_kmh),
                travel_time=float(length_meters) / (float(speed_limit_kmh) / 3.6),
                segment_id=segment_id,
            )
            self._segment_edges.setdefault(segment_id, []).append((u, v))

    @classmethod
    def build_grid(
        cls,
        rows: int = 5,
        cols: Optional[int] = None,
        spacing_meters: float = 300.0,
        origin: Tuple[float, float] = DEFAULT_ORIGIN,
        speed_limit_kmh: float = 50.0
    ) -> "RoadNetwork":
        """
        Build a rectangular grid of two-way roads

        Junctions are J-0 .. J-(rows*cols-1), row-major, with row 0 at the
        origin and rows extending north, columns extending east.
        """
        cols = cols or rows
        network = cls()

        for row in range(rows):
            row_lat, row_lon = destination_point(origin[0], origin[1], 0.0, row * spacing_meters)
            for col in range(cols):
                lat, lon = destination_point(row_lat, row_lon, 90.0, col * spacing_meters)
                network.add_junction(f"J-{row * cols + col}", lat, lon)

        road_idx = 0
        # horizontal
        for row in range(rows):
            for col in range(cols - 1):
                a = f"J-{row * cols + col}"
                b = f"J-{row * cols + col + 1}"
                network.add_road(f"R-{road_idx}", a, b, spacing_meters, speed_limit_kmh)
                road_idx += 1
        # vertical
        for row in range(rows - 1):
            for col in range(cols):
                a = f"J-{row * cols + col}"
                b = f"J-{(row + 1) * cols + col}"
                network.add_road(f"R-{road_idx}", a, b, spacing_meters, speed_limit_kmh)
                road_idx += 1

        logger.info("[ROUTE] Grid network built: %d junctions, %d roads", rows * cols, road_idx)
        return network

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoadNetwork":
        """
        Load from ``{"junctions": [...], "roads": [...]}``

        Junction: ``{"id", "lat", "lon"}``. Road: ``{"id", "from", "to",
        "lengthMeters"?, "speedLimitKmh"?, "oneway"?}``.
        """
        network = cls()
        for junction in data.get('junctions', []):
            network.add_junction(junction['id'], junction['lat'], junction['lon'])

        for road in data.get('roads', []):
            network.add_road(
                road['id'],
                road.get('from') or road.get('fromJunction'),
                road.get('to') or road.get('toJunction'),
                road.get('lengthMeters'),
                road.get('speedLimitKmh', 50.0),
                road.get('oneway', False),
            )

        logger.info(
            "[ROUTE] Road network loaded: %d junctions, %d directed edges",
            network.graph.number_of_nodes(), network.graph.number_of_edges()
        )
        return network

    @classmethod
    def load(cls, path: str) -> "RoadNetwork":
        """Load a network from a YAML or JSON file"""
        file_path = Path(path)
        with open(file_path, 'r') as f:
            if file_path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RoadNetwork":
        """Network file when configured, otherwise a grid"""
        network_file = config.get('networkFile')
        if network_file:
            return cls.load(network_file)

        grid = config.get('grid', {}) or {}
        origin = grid.get('origin', DEFAULT_ORIGIN)
        return cls.build_grid(
            rows=int(grid.get('rows', 5)),
            cols=grid.get('cols'),
            spacing_meters=float(grid.get('spacingMeters', 300.0)),
            origin=(float(origin[0]), float(origin[1])),
            speed_limit_kmh=float(grid.get('speedLimitKmh', 50.0)),
        )

    # ============================================
    # Queries
    # ============================================

    def position(self, junction_id: str) -> Tuple[float, float]:
        node = self.graph.nodes[junction_id]
        return (node['lat'], node['lon'])

    def nearest_node(self, lat: float, lon: float) -> Tuple[str, float]:
        """
        Closest junction to a point

        Returns:
            (junction_id, distance in meters)
        """
        if self.graph.number_of_nodes() == 0:
            raise ValueError("Road network is empty")

        if self._node_coords is None:
            self._node_ids = list(self.graph.nodes)
            self._node_coords = np.array([self.position(n) for n in self._node_ids], dtype=float)

        # equirectangular distance is enough to rank candidates
        dlat = np.radians(self._node_coords[:, 0] - lat)
        dlon = np.radians(self._node_coords[:, 1] - lon) * np.cos(np.radians(lat))
        idx = int(np.argmin(dlat ** 2 + dlon ** 2))

        node = self._node_ids[idx]
        node_lat, node_lon = self._node_coords[idx]
        return node, haversine_meters(lat, lon, float(node_lat), float(node_lon))

    def segment(self, u: str, v: str) -> RoadSegment:
        """RoadSegment for a directed edge"""
        data = self.graph.edges[u, v]
        a, b = self.position(u), self.position(v)
        return RoadSegment(
            segment_id=data['segment_id'],
            start_latitude=a[0],
            start_longitude=a[1],
            end_latitude=b[0],
            end_longitude=b[1],
            length_meters=data['length'],
            speed_limit_kmh=data['speed_limit'],
        )

    def path_segments(self, nodes: List[str]) -> List[RoadSegment]:
        return [self.segment(u, v) for u, v in zip(nodes, nodes[1:])]

    def edges_for_segments(self, segment_ids: Iterable[str]) -> List[Tuple[str, str]]:
        edges = []
        for segment_id in segment_ids:
            edges.extend(self._segment_edges.get(segment_id, []))
        return edges

    def has_segment(self, segment_id: str) -> bool:
        return segment_id in self._segment_edges

    @property
    def junction_count(self) -> int:
        return self.graph.number_of_nodes()

    @property
    def segment_count(self) -> int:
        return len(self._segment_edges)
