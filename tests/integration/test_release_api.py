"""
Integration tests for the HTTP interface

The app runs in-process with the in-memory store and scripted drivers, so a
whole batch goes through the real orchestrator, state machine and encoder.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import DriverPool
from dmv_release.api import create_app
from dmv_release.exceptions import JobStoreError
from dmv_release.models.progress_event import EventKind
from dmv_release.services.job_store import InMemoryJobRecordStore
from dmv_release.services.stream_encoder import SSEDecoder

pytestmark = pytest.mark.integration


def decode(body: str):
    decoder = SSEDecoder()
    events = decoder.feed(body)
    decoder.close()
    return events


class TestReleaseApi:

    @pytest.fixture(autouse=True)
    def prepare(self, settings, make_vehicle):
        self.store = InMemoryJobRecordStore([
            make_vehicle(id="veh-1"),
            make_vehicle(id="veh-2"),
            make_vehicle(id="veh-3", dmv_status="submitted", dmv_confirmation_number="OLD-1"),
        ])
        self.pool = DriverPool()
        self.settings = settings

    def client(self, **app_options):
        options = {"settings": self.settings, "store": self.store, "driver_factory": self.pool}
        options.update(app_options)
        return TestClient(create_app(**options))

    def test_streaming_batch(self):
        with self.client() as client:
            response = client.post("/dmv-automation",
                                   json={"vehicleIds": ["veh-1", "veh-2", "veh-3"], "realTime": True})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = decode(response.text)
        assert {event.vehicle_id for event in events} == {"veh-1", "veh-2"}

        terminal = [event for event in events if event.is_terminal]
        assert [(event.vehicle_id, event.kind) for event in terminal] == [
            ("veh-1", EventKind.COMPLETE), ("veh-2", EventKind.COMPLETE)
        ]
        assert all(event.confirmation_number == "AB-123" for event in terminal)
        assert all(event.step_index == 12 for event in terminal)

        screenshots = [event for event in events if event.vehicle_id == "veh-1" and event.screenshot]
        assert [event.step_index for event in screenshots] == [3, 7, 10]
        assert screenshots[0].screenshot.startswith("data:image/png;base64,")

        # Sequential by default: veh-2 starts only after veh-1 finished
        first_veh2 = next(i for i, event in enumerate(events) if event.vehicle_id == "veh-2")
        assert events.index(terminal[0]) < first_veh2

    def test_streaming_batch_updates_store(self):
        with self.client() as client:
            client.post("/dmv-automation", json={"vehicleIds": ["veh-1"], "realTime": True})

        row = self.store.record("veh-1")
        assert row["dmv_status"] == "submitted"
        assert row["dmv_confirmation_number"] == "AB-123"
        assert row["dmv_submitted_at"]
        assert self.store.record("veh-3")["dmv_confirmation_number"] == "OLD-1"
        assert self.pool.drivers[0].close_count == 1

    def test_streaming_no_eligible_vehicles(self):
        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-3", "nope"], "realTime": True})

        assert response.status_code == 200
        events = decode(response.text)
        assert len(events) == 1
        assert events[0].kind == EventKind.ERROR
        assert events[0].vehicle_id == "system"
        assert events[0].message == "No eligible vehicles found for DMV submission"
        assert self.pool.drivers == []

    def test_sync_batch(self):
        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-1", "veh-2"]})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "results": [
                {"vehicleId": "veh-1", "success": True, "confirmationNumber": "AB-123"},
                {"vehicleId": "veh-2", "success": True, "confirmationNumber": "AB-123"},
            ],
            "processed": 2,
        }

    def test_sync_batch_reports_failures(self):
        self.pool = DriverPool(page_text="Please correct the following: sale date is required")

        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-1"], "realTime": False})

        body = response.json()
        assert response.status_code == 200
        assert body["processed"] == 1
        assert body["results"][0]["success"] is False
        assert body["results"][0]["error"] == "Submission rejected: Please correct the following"
        assert self.store.record("veh-1")["dmv_status"] == "failed"

    def test_sync_numeric_ids_accepted(self, make_vehicle):
        self.store.add_record(make_vehicle(id="42"))

        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": [42]})

        assert response.json()["results"][0]["vehicleId"] == "42"

    @pytest.mark.parametrize("body", [
        {"vehicleIds": []},
        {"vehicleIds": [], "realTime": True},
        {"vehicleIds": ["", "  "]},
        {},
    ])
    def test_vehicle_ids_required(self, body):
        with self.client() as client:
            response = client.post("/dmv-automation", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Vehicle IDs are required"}

    def test_sync_no_eligible_vehicles(self):
        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-3"]})

        assert response.status_code == 400
        assert response.json() == {"error": "No eligible vehicles found for DMV submission"}

    def test_sync_store_unavailable(self):
        self.store.fetch_records = AsyncMock(side_effect=JobStoreError("read", "connection refused"))

        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-1"]})

        assert response.status_code == 500
        assert response.json() == {"error": "Job store read failed: connection refused"}

    def test_sync_malformed_row_does_not_hide_results(self, make_vehicle):
        self.store.add_record(make_vehicle(id="veh-bad", dmv_status="needs review"))

        with self.client() as client:
            response = client.post("/dmv-automation", json={"vehicleIds": ["veh-1", "veh-bad"]})

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert response.json()["results"][0]["vehicleId"] == "veh-1"

    def test_get_not_allowed(self):
        with self.client() as client:
            response = client.get("/dmv-automation")

        assert response.status_code == 405

    def test_cors_preflight(self):
        with self.client() as client:
            response = client.options("/dmv-automation", headers={
                "Origin": "https://inventory.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "content-type",
            })

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"

    def test_release_jobs(self):
        with self.client() as client:
            response = client.get("/release-jobs", params={"ids": "veh-3,missing,veh-1"})

        jobs = response.json()["jobs"]
        assert [job["id"] for job in jobs] == ["veh-3", "veh-1"]
        assert jobs[0]["dmv_status"] == "submitted"
        assert jobs[0]["dmv_confirmation_number"] == "OLD-1"
        assert jobs[1]["dmv_status"] == "pending"

    def test_release_jobs_requires_ids(self):
        with self.client() as client:
            response = client.get("/release-jobs")

        assert response.status_code == 400

    def test_release_jobs_store_unavailable(self):
        self.store.fetch_records = AsyncMock(side_effect=JobStoreError("read", "timeout"))

        with self.client() as client:
            response = client.get("/release-jobs", params={"ids": "veh-1"})

        assert response.status_code == 500

    def test_health(self):
        with self.client() as client:
            body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["activeBatches"] == 0
        assert body["driverBackend"] == "playwright"
        assert "playwright" in body["availableBackends"]
        assert body["formVersion"]
