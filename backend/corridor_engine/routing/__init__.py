"""
Routing Package

Road network graph, bounded-latency traffic costing and route prediction.
"""

from .road_network import RoadNetwork
from .traffic import (
    TrafficProvider,
    StaticTrafficProvider,
    HttpTrafficProvider,
    TrafficCostService,
    congestion_from_speeds,
)
from .predictor import (
    RoutePredictor,
    HeuristicRoutePredictor,
    RecalculationPolicy,
)

__all__ = [
    "RoadNetwork",
    "TrafficProvider",
    "StaticTrafficProvider",
    "HttpTrafficProvider",
    "TrafficCostService",
    "congestion_from_speeds",
    "RoutePredictor",
    "HeuristicRoutePredictor",
    "RecalculationPolicy",
]
