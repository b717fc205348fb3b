"""
Release orchestration service

Coordinates batch processing: loads eligible jobs, runs one release state
machine per vehicle (sequentially or with a small concurrency bound) and
forwards progress events onto the batch's event bus. The batch runs as a
background task, so a subscriber going away never stops it.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional, Sequence

from .base_driver import AutomationDriver
from .confirmation import ConfirmationDetector, ConfirmationMatcher
from .playwright_driver import PlaywrightDriver
from .release_state_machine import ReleaseStateMachine
from .selenium_driver import SeleniumDriver, SELENIUM_AVAILABLE
from ..event_bus import ProgressEventBus
from ..job_store import JobRecordStore, unique_ids
from ...exceptions import AutomationError, JobStoreError, NoEligibleVehiclesError
from ...models.progress_event import EventKind, ProgressEvent, ReleaseOutcome, SYSTEM_VEHICLE_ID
from ...models.vehicle_job import VehicleReleaseJob
from ...settings import ReleaseSettings

DriverBuilder = Callable[[ReleaseSettings], AutomationDriver]


class DriverFactory:
    """Factory for creating automation drivers"""

    @staticmethod
    def create_driver(settings: ReleaseSettings) -> AutomationDriver:
        """Create a fresh driver instance for one vehicle job"""
        if settings.driver_backend == "playwright":
            return PlaywrightDriver(
                headless=settings.headless,
                screenshot_format=settings.screenshot_format,
            )
        elif settings.driver_backend == "selenium":
            return SeleniumDriver(headless=settings.headless)
        else:
            raise ValueError(f"Unsupported driver backend: {settings.driver_backend}")

    @staticmethod
    def get_available_backends() -> list[str]:
        """Get list of available backends"""
        available = ["playwright"]
        if SELENIUM_AVAILABLE:
            available.append("selenium")
        return available


@dataclass
class BatchRun:
    """Vehicle ids requested together, and their aggregate progress"""
    vehicle_ids: list[str]
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    bus: ProgressEventBus = field(default_factory=ProgressEventBus)
    eligible_ids: list[str] = field(default_factory=list)
    completed: set = field(default_factory=set)
    failed: set = field(default_factory=set)
    error: Optional[AutomationError] = None
    task: Optional[asyncio.Task] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.vehicle_ids)

    @property
    def processed(self) -> int:
        return len(self.completed) + len(self.failed)

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    def has_terminal_event(self, vehicle_id: str) -> bool:
        return vehicle_id in self.completed or vehicle_id in self.failed

    def publish(self, event: ProgressEvent):
        """Forward an event, enforcing at most one terminal event per vehicle"""
        if self.has_terminal_event(event.vehicle_id):
            self.bus.logger.warning(
                f"Dropping {event.kind.value} event for vehicle {event.vehicle_id} after its terminal event"
            )
            return
        if event.vehicle_id != SYSTEM_VEHICLE_ID:
            if event.kind == EventKind.COMPLETE:
                self.completed.add(event.vehicle_id)
            elif event.kind == EventKind.ERROR:
                self.failed.add(event.vehicle_id)
        self.bus.publish(event)

    def abort(self, error: AutomationError):
        """Batch-level failure: one system error event, no per-vehicle work"""
        self.error = error
        self.bus.publish(ProgressEvent.system_error(error.message))

    def close(self):
        self.finished_at = datetime.now(timezone.utc)
        self.bus.close()


class ReleaseOrchestrator:
    """
    Release orchestrator

    Runs batches of release jobs. Store writes happen inside each vehicle's
    state machine; the orchestrator only schedules machines and aggregates
    their events.
    """

    def __init__(self,
                 store: JobRecordStore,
                 settings: ReleaseSettings,
                 driver_factory: Optional[DriverBuilder] = None,
                 matcher: Optional[ConfirmationMatcher] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.store = store
        self.settings = settings
        self.driver_factory = driver_factory or DriverFactory.create_driver
        self.detector = ConfirmationDetector(matcher)
        self.clock = clock
        self._tasks: set[asyncio.Task] = set()

    @property
    def active_batches(self) -> int:
        return len(self._tasks)

    def start(self, vehicle_ids: Sequence[str]) -> BatchRun:
        """
        Start a batch in the background

        Raises:
            ValueError: If no vehicle ids were given
        """
        ids = unique_ids(vehicle_ids)
        if not ids:
            raise ValueError("Vehicle IDs are required")

        batch = BatchRun(ids)
        batch.task = asyncio.create_task(self._run_batch(batch), name=f"release-batch-{batch.batch_id}")
        self._tasks.add(batch.task)
        batch.task.add_done_callback(self._tasks.discard)
        self.logger.info(f"Batch {batch.batch_id} started for {batch.total} vehicle(s)")
        return batch

    async def stream(self, batch: BatchRun) -> AsyncIterator[ProgressEvent]:
        """Events of a running batch; leaving early detaches without stopping the batch"""
        try:
            async for event in batch.bus.subscribe():
                yield event
        finally:
            if not batch.finished:
                batch.bus.detach()

    async def run(self, vehicle_ids: Sequence[str]) -> AsyncIterator[ProgressEvent]:
        batch = self.start(vehicle_ids)
        async for event in self.stream(batch):
            yield event

    async def run_sync(self, vehicle_ids: Sequence[str]) -> list[ReleaseOutcome]:
        """
        Run a batch to completion and return one outcome per processed vehicle

        Raises:
            ValueError: If no vehicle ids were given
            NoEligibleVehiclesError: If nothing in the batch is eligible
            JobStoreError: If the store could not be read
        """
        batch = self.start(vehicle_ids)
        outcomes = []
        async for event in self.stream(batch):
            if event.is_terminal and event.vehicle_id != SYSTEM_VEHICLE_ID:
                outcomes.append(ReleaseOutcome.from_event(event))
        if batch.error is not None:
            raise batch.error
        return outcomes

    async def drain(self, timeout: Optional[float] = None):
        """Wait for in-flight batches; cancel whatever is still running after timeout"""
        if not self._tasks:
            return
        self.logger.info(f"Waiting for {len(self._tasks)} batch(es) to finish")
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            self.logger.warning(f"Cancelled {len(pending)} unfinished batch(es)")
            await asyncio.gather(*pending, return_exceptions=True)

    # =================== Batch processing ===================

    async def _run_batch(self, batch: BatchRun):
        try:
            try:
                jobs = await self.store.load_eligible(batch.vehicle_ids)
            except JobStoreError as e:
                self.logger.error(f"Batch {batch.batch_id}: could not load jobs: {e}")
                batch.abort(e)
                return
            except Exception as e:
                self.logger.exception(f"Batch {batch.batch_id}: unexpected error loading jobs")
                batch.abort(JobStoreError("read", str(e) or e.__class__.__name__))
                return

            if not jobs:
                self.logger.warning(f"Batch {batch.batch_id}: no eligible vehicles in {batch.vehicle_ids}")
                batch.abort(NoEligibleVehiclesError(batch.total))
                return

            batch.eligible_ids = [job.id for job in jobs]
            skipped = batch.total - len(jobs)
            if skipped:
                self.logger.info(f"Batch {batch.batch_id}: skipping {skipped} ineligible vehicle(s)")

            concurrency = min(self.settings.max_concurrency, len(jobs))
            if concurrency == 1:
                for job in jobs:
                    await self._run_job(job, batch)
            else:
                semaphore = asyncio.Semaphore(concurrency)

                async def run_bounded(job: VehicleReleaseJob):
                    async with semaphore:
                        await self._run_job(job, batch)

                await asyncio.gather(*(run_bounded(job) for job in jobs))

            self.logger.info(
                f"Batch {batch.batch_id} finished: {len(batch.completed)} submitted, "
                f"{len(batch.failed)} failed"
            )
        finally:
            batch.close()

    async def _run_job(self, job: VehicleReleaseJob, batch: BatchRun):
        machine = self._create_machine(job, batch)
        try:
            await machine.run()
        except Exception as e:
            # The machine converts step failures itself; this only guards its bookkeeping
            self.logger.exception(f"Vehicle {job.id}: unexpected error outside the release steps")
            if not batch.has_terminal_event(job.id):
                batch.publish(ProgressEvent(EventKind.ERROR, job.id, str(e) or e.__class__.__name__))

    def _create_machine(self, job: VehicleReleaseJob, batch: BatchRun) -> ReleaseStateMachine:
        options = {}
        if self.clock is not None:
            options["clock"] = self.clock
        return ReleaseStateMachine(
            job=job,
            store=self.store,
            driver_factory=lambda: self.driver_factory(self.settings),
            settings=self.settings,
            publish=batch.publish,
            detector=self.detector,
            **options,
        )
