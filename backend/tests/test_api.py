"""
API Endpoint Tests

Tests the REST surface:
- Root endpoint
- Corridor lifecycle endpoints
- Telemetry, civilian and traffic feeds
- System health and statistics
"""

import time

import pytest
from fastapi.testclient import TestClient

from corridor_engine.geo import destination_point
from corridor_engine.main import app
from corridor_engine.orchestration import get_registry


ORIGIN = (23.2156, 72.6369)


def point(north=0.0, east=0.0):
    lat, lon = destination_point(ORIGIN[0], ORIGIN[1], 0.0, north)
    lat, lon = destination_point(lat, lon, 90.0, east)
    return {"latitude": lat, "longitude": lon}


def activation(vehicle_id="AMB-1", urgency="CRITICAL"):
    return {
        "vehicleId": vehicle_id,
        "destination": point(east=1200),
        "urgency": urgency,
        "origin": point(),
    }


@pytest.fixture
def client(registry):
    """Test client wired to the fixture registry"""
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================
# Root Endpoint
# ============================================

class TestRootEndpoint:
    """Test API information endpoint"""

    def test_root_endpoint(self, client):
        """Test GET /"""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "operational"
        assert "version" in data
        assert data["endpoints"]["corridors"] == "/api/corridors"


# ============================================
# Corridor Endpoints
# ============================================

class TestCorridorEndpoints:
    """Test corridor lifecycle endpoints"""

    def test_activate(self, client):
        """Test POST /api/corridors"""
        response = client.post("/api/corridors", json=activation())

        assert response.status_code == 201
        data = response.json()
        assert data["vehicleId"] == "AMB-1"
        assert data["state"] == "ACTIVE"
        assert data["urgency"] == "CRITICAL"
        assert data["currentPath"]["segmentIds"] == ["R-0", "R-1", "R-2", "R-3"]
        assert data["corridorId"].startswith("COR-")

    def test_activate_twice(self, client):
        """Test a second activation answers 409 ALREADY_ACTIVE"""
        client.post("/api/corridors", json=activation())

        response = client.post("/api/corridors", json=activation())

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ALREADY_ACTIVE"

    def test_activate_unauthenticated(self, client):
        """Test an unknown vehicle answers 403"""
        response = client.post("/api/corridors", json=activation(vehicle_id="CAR-9"))

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["code"] == "VEHICLE_NOT_AUTHENTICATED"
        assert "CAR-9" in detail["reason"]

    def test_activate_without_origin(self, client):
        """Test activation with no known position answers 422 NO_ROUTE_FOUND"""
        body = activation()
        del body["origin"]

        response = client.post("/api/corridors", json=body)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NO_ROUTE_FOUND"

    def test_activate_invalid_body(self, client):
        """Test request validation of coordinates"""
        body = activation()
        body["destination"]["latitude"] = 123.0

        response = client.post("/api/corridors", json=body)

        assert response.status_code == 422

    def test_get_and_list(self, client):
        """Test GET /api/corridors/{id} and GET /api/corridors"""
        corridor_id = client.post("/api/corridors", json=activation()).json()["corridorId"]
        client.post("/api/corridors", json=activation(vehicle_id="FIRE-1", urgency="HIGH"))

        response = client.get(f"/api/corridors/{corridor_id}")
        assert response.status_code == 200
        assert response.json()["corridorId"] == corridor_id

        listing = client.get("/api/corridors").json()
        assert listing["count"] == 2

        critical = client.get("/api/corridors", params={"urgency": "CRITICAL"}).json()
        assert [c["vehicleId"] for c in critical["corridors"]] == ["AMB-1"]

        fire = client.get("/api/corridors", params={"vehiclePrefix": "FIRE-"}).json()
        assert [c["vehicleId"] for c in fire["corridors"]] == ["FIRE-1"]

    def test_deactivate(self, client, archive):
        """Test DELETE /api/corridors/{id}"""
        corridor_id = client.post("/api/corridors", json=activation()).json()["corridorId"]

        response = client.delete(f"/api/corridors/{corridor_id}", params={"reason": "arrived"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["pathVersions"] == 1
        assert archive.get(corridor_id).completion_reason == "arrived"

        assert client.get(f"/api/corridors/{corridor_id}").status_code == 404

    def test_unknown_corridor(self, client):
        """Test unknown ids answer 404 CORRIDOR_NOT_FOUND"""
        response = client.delete("/api/corridors/COR-NOPE")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "CORRIDOR_NOT_FOUND"

    def test_reauthenticate_active_corridor(self, client):
        """Test re-authenticating a corridor that is not FROZEN answers 409"""
        corridor_id = client.post("/api/corridors", json=activation()).json()["corridorId"]

        response = client.post(f"/api/corridors/{corridor_id}/reauthenticate")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "INVALID_TRANSITION"


# ============================================
# Feed Endpoints
# ============================================

class TestFeedEndpoints:
    """Test telemetry, civilian and traffic feeds"""

    def test_telemetry_accepted(self, client):
        """Test POST /api/telemetry with a clean sample"""
        response = client.post("/api/telemetry", json={
            "sample": {
                "vehicle_id": "AMB-1",
                **point(),
                "accuracy_meters": 5.0,
                "timestamp": time.time(),
                "signal_quality": 1.0,
            }
        })

        assert response.status_code == 200
        data = response.json()
        assert data["decision"] == "ACCEPT"
        assert data["smoothedPosition"] is not None
        assert data["flags"] == []

    def test_telemetry_rejected_is_not_an_error(self, client):
        """Test a rejected sample still answers 200"""
        response = client.post("/api/telemetry", json={
            "sample": {
                "vehicle_id": "AMB-1",
                **point(),
                "timestamp": time.time(),
                "signal_quality": 0.2,
            }
        })

        assert response.status_code == 200
        data = response.json()
        assert data["decision"] == "REJECT"
        assert data["smoothedPosition"] is None
        assert "SignalAnomaly" in [f["type"] for f in data["flags"]]

    def test_civilians(self, client, dispatcher):
        """Test POST /api/civilians feeds targeting"""
        civ = point(north=40, east=600)
        response = client.post("/api/civilians", json={
            "vehicles": [{"vehicle_id": "CIV-1", **civ, "heading": 90.0}]
        })
        assert response.status_code == 200
        assert response.json() == {"received": 1, "accepted": 1}

        corridor_id = client.post("/api/corridors", json=activation()).json()["corridorId"]

        assert [m.civilian_vehicle_id for m in dispatcher.for_corridor(corridor_id)] == ["CIV-1"]

    def test_traffic_delta(self, client):
        """Test POST /api/traffic/delta recalculates affected corridors"""
        corridor_id = client.post("/api/corridors", json=activation()).json()["corridorId"]

        response = client.post("/api/traffic/delta", json={"blockedSegments": ["R-2"]})

        assert response.status_code == 200
        assert response.json() == {"recalculated": [corridor_id], "count": 1}
        corridor = client.get(f"/api/corridors/{corridor_id}").json()
        assert corridor["pathVersions"] == 2
        assert "R-2" not in corridor["currentPath"]["segmentIds"]


# ============================================
# System Endpoints
# ============================================

class TestSystemEndpoints:
    """Test health and statistics"""

    def test_health(self, client):
        """Test GET /api/system/health"""
        client.post("/api/corridors", json=activation())

        response = client.get("/api/system/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["activeCorridors"] == 1

    def test_statistics(self, client):
        """Test GET /api/system/statistics"""
        client.post("/api/corridors", json=activation())

        data = client.get("/api/system/statistics").json()

        assert data["activations"] == 1
        assert data["corridorsByState"] == {"ACTIVE": 1}
        assert "validator" in data
