"""
Shared fixtures: a scripted automation driver and Faker-built vehicle rows
"""

import asyncio
import uuid

import pytest

from dmv_release.services.automation.base_driver import AutomationDriver
from dmv_release.services.job_store import InMemoryJobRecordStore
from dmv_release.settings import ReleaseSettings

CONFIRMATION_PAGE = "Thank you. Your release has been recorded. Confirmation Number: AB-123"

MAKES = {
    "Honda": ["Civic", "Accord", "CR-V"],
    "Toyota": ["Camry", "Corolla", "Tacoma"],
    "Ford": ["F-150", "Focus", "Escape"],
    "Nissan": ["Altima", "Sentra", "Rogue"],
}


class FakeDriver(AutomationDriver):
    """In-memory driver that records every action

    ``fail_on`` maps a field or method name to the exception raised when it is
    reached; ``hang_on`` names fields or methods that never return.
    """

    def __init__(self, page_text: str = CONFIRMATION_PAGE, fail_on=None, hang_on=None):
        self.page_text = page_text
        self.fail_on = dict(fail_on or {})
        self.hang_on = set(hang_on or ())
        self.calls = []
        self.filled = {}
        self.selected = {}
        self.url = None
        self.close_count = 0

    def get_backend_name(self) -> str:
        return "fake"

    async def _act(self, method: str, field: str):
        self.calls.append((method, field))
        for key in (field, method):
            if key in self.hang_on:
                await asyncio.sleep(3600)
            if key in self.fail_on:
                raise self.fail_on[key]

    async def start(self):
        await self._act("start", "browser")

    async def navigate(self, url, timeout):
        self.url = url
        await self._act("navigate", "form")

    async def fill(self, selectors, value, field, timeout):
        await self._act("fill", field)
        self.filled[field] = value

    async def select(self, selectors, value, field, timeout):
        await self._act("select", field)
        self.selected[field] = value

    async def click(self, selectors, field, timeout):
        await self._act("click", field)

    async def wait_for_settle(self, timeout):
        await self._act("wait_for_settle", "page")

    async def read_text(self, timeout):
        await self._act("read_text", "body")
        return self.page_text

    async def screenshot(self, timeout):
        await self._act("screenshot", "page")
        return b"\x89PNG fake screenshot"

    async def close(self):
        self.close_count += 1
        self.calls.append(("close", "browser"))


class DriverPool:
    """Driver factory handing out a fresh FakeDriver per vehicle job"""

    def __init__(self, **driver_options):
        self.driver_options = driver_options
        self.drivers = []

    def __call__(self, settings=None) -> FakeDriver:
        driver = FakeDriver(**self.driver_options)
        self.drivers.append(driver)
        return driver


@pytest.fixture
def settings():
    return ReleaseSettings(
        _env_file=None,
        store_backend="memory",
        action_timeout_seconds=1.0,
        step_timeout_seconds=2.0,
        settle_timeout_seconds=1.0,
        shutdown_timeout_seconds=5.0,
    )


@pytest.fixture
def make_vehicle(faker):
    """Build an inventory row for a sold vehicle awaiting release"""

    def _make_vehicle(**overrides) -> dict:
        make = faker.random_element(list(MAKES))
        record = {
            "id": str(uuid.uuid4()),
            "year": str(faker.random_int(2005, 2022)),
            "make": make,
            "model": faker.random_element(MAKES[make]),
            "vehicle_id": faker.bothify("1??#####?########", letters="ABCDEFGHJKLMNPRSTUVWXYZ"),
            "license_plate": faker.bothify("#???###", letters="ABCDEFGHJKLMNPRSTUVWXYZ"),
            "buyer_first_name": faker.first_name(),
            "buyer_last_name": faker.last_name(),
            "buyer_address": faker.street_address(),
            "buyer_city": faker.city(),
            "buyer_state": "CA",
            "buyer_zip": faker.postcode(),
            "sale_price": str(faker.random_int(500, 9000)),
            "sale_date": faker.date(),
            "purchase_price": "",
            "status": "sold",
            "dmv_status": "pending",
            "dmv_confirmation_number": "",
            "dmv_submitted_at": "",
        }
        record.update(overrides)
        return record

    return _make_vehicle


@pytest.fixture
def store():
    return InMemoryJobRecordStore()


@pytest.fixture
def driver_pool():
    return DriverPool()
