"""
Release state machine using the transitions framework

Drives one vehicle through the Notice of Release of Liability form.

State Flow:
===========

    [pending] → [mark_processing] → [launch_browser] → [navigate]
        → [fill_seller] → [fill_buyer] → [fill_vehicle] → [fill_sale]
        → [submit] → [await_confirmation] → [parse_confirmation]
        → [persist_result] → [teardown] → [submitted]

    Any work state ──── fail ────► [failed]   (teardown still runs)

    A cancelled run still reaches a terminal state: [failed] with an
    ``error`` event, or [submitted] when it was cancelled while recording a
    release the DMV had already confirmed.

Event Protocol:
===============

- One event per successful work step, emitted when the step finishes, so
  ``step`` values are strictly increasing for a vehicle.
- Checkpoint steps report a ``screenshot`` event instead of ``progress``
  when the capture succeeds.
- The terminal ``complete`` event carries step 12 and is emitted after
  teardown; the terminal ``error`` event carries the index of the step that
  failed and is emitted after teardown and the failed-status write.
- Nothing is emitted for a vehicle after its terminal event.

There is no retry. A failed vehicle is resubmitted as a new batch.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from transitions.extensions.asyncio import AsyncMachine

from .base_driver import AutomationDriver
from .confirmation import ConfirmationDetector
from .form_helpers import NrlFormSelectors, YES, NO, to_data_uri
from .steps import RELEASE_STEPS, TEARDOWN_STEP, TOTAL_STEPS, WORK_STEPS, SequenceStep
from ..job_store import JobRecordStore
from ...exceptions import AutomationError, JobStoreError, StepTimeoutError
from ...models.progress_event import EventKind, ProgressEvent
from ...models.vehicle_job import VehicleReleaseJob
from ...settings import ReleaseSettings

DriverFactory = Callable[[], AutomationDriver]
EventSink = Callable[[ProgressEvent], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def error_message(error: BaseException) -> str:
    """Human-readable message for an error event"""
    if isinstance(error, AutomationError):
        return error.message
    return str(error) or error.__class__.__name__


class ReleaseStateMachine:
    """
    Step sequencer for one vehicle release job

    The machine owns the browser session it creates in ``launch_browser``;
    sessions are never shared between vehicles or reused across runs.
    """

    states = (
        ['pending']
        + [step.state for step in RELEASE_STEPS]
        + ['submitted', 'failed']
    )

    def __init__(self,
                 job: VehicleReleaseJob,
                 store: JobRecordStore,
                 driver_factory: DriverFactory,
                 settings: ReleaseSettings,
                 publish: EventSink,
                 detector: Optional[ConfirmationDetector] = None,
                 clock: Callable[[], datetime] = _utcnow):
        self.job = job
        self.store = store
        self.driver_factory = driver_factory
        self.settings = settings
        self.seller = settings.seller
        self.publish = publish
        self.detector = detector or ConfirmationDetector()
        self.clock = clock
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

        self.driver: Optional[AutomationDriver] = None
        self.confirmation_code: Optional[str] = None
        self.confirmation_is_placeholder = False
        self.failed_step: Optional[SequenceStep] = None
        self.error: Optional[BaseException] = None
        self._torn_down = False

        self.machine = AsyncMachine(
            model=self,
            states=ReleaseStateMachine.states,
            initial='pending',
            auto_transitions=False,
            send_event=True,
            after_state_change='_on_state_change',
        )
        self._setup_transitions()

    def _setup_transitions(self):
        order = ['pending'] + [step.state for step in RELEASE_STEPS] + ['submitted']
        for source, dest in zip(order, order[1:]):
            self.machine.add_transition('advance', source, dest)
        self.machine.add_transition('fail', order[:-1], 'failed')

    def _on_state_change(self, event):
        self.logger.debug(f"Vehicle {self.job.id}: {event.transition.source} -> {self.state}")

    def is_terminal(self) -> bool:
        return self.state in ('submitted', 'failed')

    # =================== Driving ===================

    async def run(self) -> bool:
        """
        Run every step until the job is submitted or failed

        Never raises for per-vehicle failures; they are converted into an
        ``error`` event and a failed-status write.

        Returns:
            True if the release was submitted, False otherwise
        """
        self.logger.info(f"Starting release for vehicle {self.job.id} ({self.job.description})")
        step: Optional[SequenceStep] = None

        try:
            for step in WORK_STEPS:
                await self.advance()
                message = await self._execute(step)
                await self._report_step(step, message)
        except asyncio.CancelledError:
            self.logger.warning(f"Vehicle {self.job.id}: release cancelled during {step.name if step else 'start'}")
            await self._handle_cancel(step)
            raise
        except Exception as e:
            await self._handle_failure(step, e)
            return False

        await self.advance()
        await self._teardown()
        await self.advance()

        self._emit_complete()
        self.logger.info(f"Vehicle {self.job.id} submitted with confirmation {self.confirmation_code}")
        return True

    async def _execute(self, step: SequenceStep) -> Optional[str]:
        handler = getattr(self, f"_step_{step.state}")
        self.logger.debug(f"Vehicle {self.job.id}: step {step.index}/{TOTAL_STEPS} {step.name}")
        try:
            return await asyncio.wait_for(handler(), timeout=self.settings.step_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(step.name, self.settings.step_timeout_seconds) from e

    async def _report_step(self, step: SequenceStep, message: Optional[str]):
        message = message or step.message
        if step.screenshot:
            image = await self._capture()
            if image is not None:
                self._emit(EventKind.SCREENSHOT, step.index, message, screenshot=image)
                return
        self._emit(EventKind.PROGRESS, step.index, message)

    async def _capture(self) -> Optional[str]:
        """Screenshot for the audit trail; a failed capture never fails the job"""
        if self.driver is None:
            return None
        try:
            image = await self.driver.screenshot(self.settings.action_timeout_seconds)
        except Exception as e:
            self.logger.warning(f"Vehicle {self.job.id}: screenshot failed: {error_message(e)}")
            return None
        self.logger.debug(f"Vehicle {self.job.id}: captured {len(image)} byte screenshot")
        return to_data_uri(image, self.driver.screenshot_mime)

    async def _handle_failure(self, step: Optional[SequenceStep], error: Exception):
        self.failed_step = step or RELEASE_STEPS[0]
        self.error = error

        if isinstance(error, AutomationError):
            self.logger.error(f"Vehicle {self.job.id} failed at {self.failed_step.name}: {error}")
        else:
            self.logger.error(f"Vehicle {self.job.id} failed at {self.failed_step.name}: {error}", exc_info=error)

        await self.fail()
        await self._teardown()

        message = error_message(error)
        if self.failed_step.name == "persist-result" and self.confirmation_code:
            # The DMV already accepted the release; keep the token for reconciliation
            message = f"Submitted with confirmation {self.confirmation_code} but not recorded: {message}"

        try:
            await self.store.mark_failed(self.job.id)
            self.job.mark_failed()
        except JobStoreError as e:
            self.logger.error(f"Vehicle {self.job.id}: could not record failure: {e}")

        self._emit(EventKind.ERROR, self.failed_step.index, message)

    async def _handle_cancel(self, step: Optional[SequenceStep]):
        """Leave the job in a terminal state when its batch is cancelled mid-run"""
        self.failed_step = step or RELEASE_STEPS[0]
        self.error = asyncio.CancelledError()
        await self._teardown()

        message = "Release cancelled before completion"
        if self.confirmation_code and self.failed_step.name == "persist-result":
            # The DMV already accepted the release; record it instead of failing it
            submitted_at = self.clock()
            write = self.store.mark_submitted(self.job.id, self.confirmation_code, submitted_at)
            if await self._write_bounded(write, "submission"):
                self.job.mark_submitted(self.confirmation_code, submitted_at)
                await self.advance()
                await self.advance()
                self._emit_complete()
                return
            message = f"Release cancelled after submission with confirmation {self.confirmation_code}"

        if not self.is_terminal():
            await self.fail()
        if await self._write_bounded(self.store.mark_failed(self.job.id), "cancellation"):
            self.job.mark_failed()
        self._emit(EventKind.ERROR, self.failed_step.index, message)

    async def _write_bounded(self, write, action: str) -> bool:
        """Finish a store write even though the calling task is being cancelled"""
        try:
            await asyncio.wait_for(asyncio.shield(write), timeout=self.settings.action_timeout_seconds)
        except Exception as e:
            self.logger.error(f"Vehicle {self.job.id}: could not record {action}: {error_message(e)}")
            return False
        return True

    async def _teardown(self):
        """Close the browser session; runs exactly once per job"""
        if self._torn_down:
            return
        self._torn_down = True
        if self.driver is None:
            return
        try:
            await self.driver.close()
        except Exception as e:
            self.logger.warning(f"Vehicle {self.job.id}: error during browser teardown: {e}")

    def _emit_complete(self):
        self._emit(
            EventKind.COMPLETE,
            TEARDOWN_STEP.index,
            f"Release submitted. Confirmation Number: {self.confirmation_code}",
            confirmation_number=self.confirmation_code,
        )

    def _emit(self, kind: EventKind, step_index: int, message: str,
              screenshot: Optional[str] = None, confirmation_number: Optional[str] = None):
        self.publish(ProgressEvent(
            kind=kind,
            vehicle_id=self.job.id,
            message=message,
            step_index=step_index,
            total_steps=TOTAL_STEPS,
            timestamp=self.clock(),
            screenshot=screenshot,
            confirmation_number=confirmation_number,
        ))

    # =================== Step handlers ===================

    @property
    def _timeout(self) -> float:
        return self.settings.action_timeout_seconds

    async def _step_mark_processing(self):
        await self.store.mark_processing(self.job.id)
        self.job.mark_processing()

    async def _step_launch_browser(self):
        self.driver = self.driver_factory()
        await self.driver.start()

    async def _step_navigate(self):
        await self.driver.navigate(self.settings.form_url, self._timeout)

    async def _step_fill_seller(self):
        await self.driver.select(NrlFormSelectors.SELLER_IS_COMPANY, YES, "seller is a company", self._timeout)
        await self._fill(NrlFormSelectors.SELLER_COMPANY_NAME, self.seller.company_name, "seller company name")
        await self._fill(NrlFormSelectors.SELLER_ADDRESS, self.seller.address, "seller address")
        await self._fill(NrlFormSelectors.SELLER_CITY, self.seller.city, "seller city")
        await self._fill(NrlFormSelectors.SELLER_STATE, self.seller.state, "seller state")
        await self._fill(NrlFormSelectors.SELLER_ZIP, self.seller.zip, "seller zip")

    async def _step_fill_buyer(self):
        job = self.job
        await self.driver.select(NrlFormSelectors.BUYER_IS_COMPANY, NO, "buyer is a company", self._timeout)
        await self._fill(NrlFormSelectors.BUYER_FIRST_NAME, job.buyer_first_name, "buyer first name")
        await self._fill(NrlFormSelectors.BUYER_LAST_NAME, job.buyer_last_name, "buyer last name")

        optional_fields = [
            (NrlFormSelectors.BUYER_ADDRESS, job.buyer_address, "buyer address"),
            (NrlFormSelectors.BUYER_CITY, job.buyer_city, "buyer city"),
            (NrlFormSelectors.BUYER_STATE, job.buyer_state, "buyer state"),
            (NrlFormSelectors.BUYER_ZIP, job.buyer_zip, "buyer zip"),
        ]
        for selectors, value, field in optional_fields:
            if value:
                await self._fill(selectors, value, field)

    async def _step_fill_vehicle(self):
        job = self.job
        await self._fill(NrlFormSelectors.VEHICLE_YEAR, job.year, "vehicle year")
        await self._fill(NrlFormSelectors.VEHICLE_MAKE, job.make, "vehicle make")
        await self._fill(NrlFormSelectors.VEHICLE_MODEL, job.model, "vehicle model")
        await self._fill(NrlFormSelectors.VEHICLE_VIN, job.vin, "VIN")
        await self._fill(NrlFormSelectors.LICENSE_PLATE, job.license_plate or "", "license plate")

    async def _step_fill_sale(self):
        await self._fill(NrlFormSelectors.SALE_PRICE, self.job.form_sale_price(), "sale price")
        await self._fill(NrlFormSelectors.SALE_DATE, self.job.sale_date or "", "sale date")

    async def _step_submit(self):
        await self.driver.click(NrlFormSelectors.SUBMIT_BUTTONS, "submit button", self._timeout)

    async def _step_await_confirmation(self):
        await self.driver.wait_for_settle(self.settings.settle_timeout_seconds)

    async def _step_parse_confirmation(self) -> str:
        text = await self.driver.read_text(self._timeout)
        result = self.detector.detect(text, self.clock())
        self.confirmation_code = result.code
        self.confirmation_is_placeholder = result.placeholder

        if result.placeholder:
            self.logger.warning(
                f"Vehicle {self.job.id}: no confirmation number on result page, "
                f"recorded placeholder {result.code} for manual reconciliation"
            )
            return f"Confirmation number not found; recorded {result.code} for manual reconciliation"
        return f"Confirmation Number: {result.code}"

    async def _step_persist_result(self):
        submitted_at = self.clock()
        await self.store.mark_submitted(self.job.id, self.confirmation_code, submitted_at)
        self.job.mark_submitted(self.confirmation_code, submitted_at)

    async def _fill(self, selectors, value: str, field: str):
        await self.driver.fill(selectors, value, field, self._timeout)
