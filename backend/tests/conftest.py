"""
Shared fixtures for the corridor engine tests
"""

import pytest

from corridor_engine.integrations import (
    CorridorNotificationService,
    InMemoryArchivalSink,
    RecordingAlertDispatcher,
    StaticAuthenticator,
)
from corridor_engine.orchestration import CorridorRegistry
from corridor_engine.routing import (
    HeuristicRoutePredictor,
    RoadNetwork,
    StaticTrafficProvider,
    TrafficCostService,
)
from corridor_engine.targeting import BufferTargetingEngine, CivilianVehicleIndex
from corridor_engine.telemetry import TelemetryValidator


# Junction J-0 of the test grid
ORIGIN = (23.2156, 72.6369)


@pytest.fixture
def grid_network():
    """5x5 grid of two-way roads, 300 m apart, J-0 at ORIGIN"""
    return RoadNetwork.build_grid(rows=5, spacing_meters=300, origin=ORIGIN)


@pytest.fixture
def traffic_provider():
    return StaticTrafficProvider()


@pytest.fixture
def predictor(grid_network, traffic_provider):
    return HeuristicRoutePredictor(
        grid_network,
        TrafficCostService(traffic_provider, {'retryDelays': [0.0]}),
    )


@pytest.fixture
def targeting():
    return BufferTargetingEngine()


@pytest.fixture
def authenticator():
    return StaticAuthenticator(allowed_prefixes=["AMB-", "FIRE-"])


@pytest.fixture
def dispatcher():
    return RecordingAlertDispatcher()


@pytest.fixture
def archive():
    return InMemoryArchivalSink()


@pytest.fixture
def notifier():
    return CorridorNotificationService()


@pytest.fixture
def registry(predictor, targeting, authenticator, dispatcher, archive, notifier):
    return CorridorRegistry(
        predictor=predictor,
        targeting=targeting,
        validator=TelemetryValidator(),
        authenticator=authenticator,
        dispatcher=dispatcher,
        archive=archive,
        notifier=notifier,
        civilians=CivilianVehicleIndex(),
        config={'authRetryDelays': [0.0, 0.0], 'authTimeoutSeconds': 1.0},
    )
