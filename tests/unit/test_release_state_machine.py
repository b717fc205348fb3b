"""
Unit tests for the per-vehicle release state machine
"""

import asyncio
import re
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from dmv_release.exceptions import (
    BrowserInitializationError, FormInteractionError, JobStoreError, StepTimeoutError
)
from dmv_release.models.progress_event import EventKind
from dmv_release.models.vehicle_job import VehicleReleaseJob
from dmv_release.services.automation.confirmation import ConfirmationDetector
from dmv_release.services.automation.release_state_machine import ReleaseStateMachine
from dmv_release.settings import ReleaseSettings, SellerIdentity

FIXED_NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


def steps_of(events):
    return [event.step_index for event in events]


def assert_strictly_increasing(values):
    assert all(a < b for a, b in zip(values, values[1:])), values


class TestReleaseStateMachine:
    """Test suite for the twelve-step release sequence"""

    @pytest.fixture(autouse=True)
    def prepare(self, store, settings, driver_pool, make_vehicle):
        self.store = store
        self.settings = settings
        self.driver_pool = driver_pool
        self.record = make_vehicle(id="veh-1")
        self.store.add_record(self.record)
        self.events = []

    def build_machine(self, record=None, settings=None, driver_factory=None, detector=None):
        job = VehicleReleaseJob.from_record(record or self.record)
        return ReleaseStateMachine(
            job=job,
            store=self.store,
            driver_factory=driver_factory or self.driver_pool,
            settings=settings or self.settings,
            publish=self.events.append,
            detector=detector,
            clock=fixed_clock,
        )

    @pytest.mark.asyncio
    async def test_successful_release(self):
        """All steps succeed and the confirmation number is recorded"""
        machine = self.build_machine()

        assert await machine.run() is True

        assert machine.state == "submitted"
        assert steps_of(self.events) == list(range(1, 13))
        assert [e.kind for e in self.events[:-1]].count(EventKind.SCREENSHOT) == 3
        assert {e.step_index for e in self.events if e.kind == EventKind.SCREENSHOT} == {3, 7, 10}

        final = self.events[-1]
        assert final.kind == EventKind.COMPLETE
        assert final.confirmation_number == "AB-123"
        assert final.total_steps == 12
        assert all(e.vehicle_id == "veh-1" for e in self.events)

        row = self.store.record("veh-1")
        assert row["dmv_status"] == "submitted"
        assert row["dmv_confirmation_number"] == "AB-123"
        assert row["dmv_submitted_at"] == FIXED_NOW.isoformat()

    @pytest.mark.asyncio
    async def test_screenshot_is_data_uri(self):
        await self.build_machine().run()

        screenshot = next(e for e in self.events if e.kind == EventKind.SCREENSHOT)
        assert screenshot.screenshot.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_teardown_runs_once_on_success(self):
        await self.build_machine().run()

        driver = self.driver_pool.drivers[0]
        assert driver.close_count == 1
        assert driver.calls[-1] == ("close", "browser")

    @pytest.mark.asyncio
    async def test_form_populated_from_job_and_seller(self):
        await self.build_machine().run()

        driver = self.driver_pool.drivers[0]
        assert driver.url == self.settings.form_url
        assert driver.selected == {"seller is a company": "Y", "buyer is a company": "N"}
        assert driver.filled["seller company name"] == "Americas Auto Towing"
        assert driver.filled["seller zip"] == "90201"
        assert driver.filled["buyer first name"] == self.record["buyer_first_name"]
        assert driver.filled["buyer city"] == self.record["buyer_city"]
        assert driver.filled["VIN"] == self.record["vehicle_id"]
        assert driver.filled["license plate"] == self.record["license_plate"]
        assert driver.filled["sale price"] == self.record["sale_price"]
        assert ("click", "submit button") in driver.calls

    @pytest.mark.asyncio
    async def test_seller_identity_comes_from_settings(self):
        settings = ReleaseSettings(
            _env_file=None,
            store_backend="memory",
            seller=SellerIdentity(company_name="Harbor Tow & Recovery", address="1 Pier Way",
                                  city="Long Beach", state="CA", zip="90802"),
        )
        await self.build_machine(settings=settings).run()

        driver = self.driver_pool.drivers[0]
        assert driver.filled["seller company name"] == "Harbor Tow & Recovery"
        assert driver.filled["seller city"] == "Long Beach"

    @pytest.mark.asyncio
    async def test_missing_optional_values(self, make_vehicle):
        """Absent plate and sale date become empty strings; missing address fields are skipped"""
        record = make_vehicle(id="veh-2", license_plate="", sale_date="", sale_price="",
                              purchase_price="1500", buyer_address="", buyer_zip="")
        self.store.add_record(record)

        await self.build_machine(record=record).run()

        driver = self.driver_pool.drivers[0]
        assert driver.filled["license plate"] == ""
        assert driver.filled["sale date"] == ""
        assert driver.filled["sale price"] == "1600"
        assert "buyer address" not in driver.filled
        assert "buyer zip" not in driver.filled

    @pytest.mark.asyncio
    async def test_placeholder_confirmation_when_not_found(self):
        self.driver_pool.driver_options["page_text"] = "Your request has been received."
        machine = self.build_machine()

        assert await machine.run() is True

        row = self.store.record("veh-1")
        assert row["dmv_status"] == "submitted"
        assert re.fullmatch(r"UNKNOWN-\d+", row["dmv_confirmation_number"])
        assert row["dmv_confirmation_number"] == f"UNKNOWN-{int(FIXED_NOW.timestamp() * 1000)}"
        assert machine.confirmation_is_placeholder is True

        parse_event = next(e for e in self.events if e.step_index == 10)
        assert "manual reconciliation" in parse_event.message

    @pytest.mark.asyncio
    async def test_custom_confirmation_matcher(self):
        detector = ConfirmationDetector(lambda text: "NRL-0042")
        await self.build_machine(detector=detector).run()

        assert self.store.record("veh-1")["dmv_confirmation_number"] == "NRL-0042"

    @pytest.mark.asyncio
    async def test_fill_vehicle_timeout_fails_job(self):
        self.driver_pool.driver_options["fail_on"] = {"VIN": StepTimeoutError("fill VIN", 1.0)}
        machine = self.build_machine()

        assert await machine.run() is False

        assert machine.state == "failed"
        final = self.events[-1]
        assert final.kind == EventKind.ERROR
        assert final.step_index == 6
        assert final.message == "Operation 'fill VIN' timed out after 1 seconds"
        assert_strictly_increasing(steps_of(self.events))
        assert sum(e.is_terminal for e in self.events) == 1

        assert self.store.record("veh-1")["dmv_status"] == "failed"
        assert self.driver_pool.drivers[0].close_count == 1

    @pytest.mark.asyncio
    async def test_step_deadline_exceeded(self):
        settings = self.settings.model_copy(update={"step_timeout_seconds": 0.05})
        self.driver_pool.driver_options["hang_on"] = {"vehicle year"}

        assert await self.build_machine(settings=settings).run() is False

        final = self.events[-1]
        assert final.kind == EventKind.ERROR
        assert final.step_index == 6
        assert "fill-vehicle" in final.message
        assert self.store.record("veh-1")["dmv_status"] == "failed"
        assert self.driver_pool.drivers[0].close_count == 1

    @pytest.mark.asyncio
    async def test_browser_launch_failure(self):
        def broken_factory():
            raise BrowserInitializationError("Failed to initialize browser: no chromium", backend="playwright")

        assert await self.build_machine(driver_factory=broken_factory).run() is False

        assert steps_of(self.events) == [1, 2]
        assert self.events[-1].kind == EventKind.ERROR
        assert self.events[-1].message == "Failed to initialize browser: no chromium"
        assert self.store.record("veh-1")["dmv_status"] == "failed"

    @pytest.mark.asyncio
    async def test_mark_processing_failure_skips_browser(self, make_vehicle):
        """A job whose row cannot be written never launches a browser"""
        record = make_vehicle(id="veh-missing")

        assert await self.build_machine(record=record).run() is False

        assert self.driver_pool.drivers == []
        assert len(self.events) == 1
        assert self.events[0].kind == EventKind.ERROR
        assert self.events[0].step_index == 1

    @pytest.mark.asyncio
    async def test_rejected_submission(self):
        self.driver_pool.driver_options["page_text"] = "Please correct the following: Invalid VIN"

        assert await self.build_machine().run() is False

        final = self.events[-1]
        assert final.kind == EventKind.ERROR
        assert final.step_index == 10
        assert final.message.startswith("Submission rejected")
        assert self.store.record("veh-1")["dmv_status"] == "failed"

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_not_fatal(self):
        self.driver_pool.driver_options["fail_on"] = {
            "screenshot": FormInteractionError("screenshot", "page", {"error": "detached"})
        }

        assert await self.build_machine().run() is True

        assert all(e.kind != EventKind.SCREENSHOT for e in self.events)
        assert steps_of(self.events) == list(range(1, 13))

    @pytest.mark.asyncio
    async def test_teardown_error_does_not_fail_job(self):
        machine = self.build_machine()
        self.driver_pool.driver_options["page_text"] = "Confirmation Number: XY-9"

        async def failing_close():
            raise RuntimeError("browser already gone")

        original_factory = self.driver_pool

        def factory():
            driver = original_factory()
            driver.close = failing_close
            return driver

        machine.driver_factory = factory

        assert await machine.run() is True
        assert self.events[-1].kind == EventKind.COMPLETE

    @pytest.mark.asyncio
    async def test_persist_failure_reports_confirmation(self):
        self.store.mark_submitted = AsyncMock(side_effect=JobStoreError("update", "connection reset", "veh-1"))

        assert await self.build_machine().run() is False

        final = self.events[-1]
        assert final.kind == EventKind.ERROR
        assert final.step_index == 11
        assert "AB-123" in final.message
        assert self.store.record("veh-1")["dmv_status"] == "failed"
        assert self.driver_pool.drivers[0].close_count == 1

    @pytest.mark.asyncio
    async def test_failed_status_write_is_best_effort(self):
        self.driver_pool.driver_options["fail_on"] = {"form": StepTimeoutError("navigate", 1.0)}
        self.store.mark_failed = AsyncMock(side_effect=JobStoreError("update", "store offline", "veh-1"))

        assert await self.build_machine().run() is False

        assert self.events[-1].kind == EventKind.ERROR
        assert self.events[-1].step_index == 3
        self.store.mark_failed.assert_awaited_once_with("veh-1")

    @pytest.mark.asyncio
    async def test_cancelled_release_records_failure(self):
        self.driver_pool.driver_options["hang_on"] = {"form"}
        machine = self.build_machine()

        task = asyncio.create_task(machine.run())
        while not self.driver_pool.drivers or ("navigate", "form") not in self.driver_pool.drivers[0].calls:
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert machine.state == "failed"
        assert self.store.record("veh-1")["dmv_status"] == "failed"
        assert self.driver_pool.drivers[0].close_count == 1

        final = self.events[-1]
        assert final.kind == EventKind.ERROR
        assert final.step_index == 3
        assert final.message == "Release cancelled before completion"
        assert sum(e.is_terminal for e in self.events) == 1

    @pytest.mark.asyncio
    async def test_cancel_during_persist_records_submission(self):
        started = asyncio.Event()
        original = self.store.mark_submitted

        async def hangs_once(*args):
            if not started.is_set():
                started.set()
                await asyncio.sleep(3600)
            await original(*args)

        self.store.mark_submitted = hangs_once
        machine = self.build_machine()

        task = asyncio.create_task(machine.run())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert machine.state == "submitted"
        row = self.store.record("veh-1")
        assert row["dmv_status"] == "submitted"
        assert row["dmv_confirmation_number"] == "AB-123"

        final = self.events[-1]
        assert final.kind == EventKind.COMPLETE
        assert final.step_index == 12
        assert final.confirmation_number == "AB-123"
