"""
Client for the release service

Opens the streaming endpoint, decodes events as they arrive and keeps the
running tally of completed and failed vehicles. When the server closes the
stream the consumer re-reads the job records, since the store and not the
stream is the source of truth.

Stopping early only stops this client from reading. The server has no
cancellation message and keeps processing the batch to completion.
"""

import base64
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Sequence

import httpx

from ..exceptions import ReleaseServiceError
from ..models.progress_event import EventKind, ProgressEvent, ReleaseOutcome, SYSTEM_VEHICLE_ID
from ..models.vehicle_job import VehicleReleaseJob
from .job_store import unique_ids
from .stream_encoder import SSEDecoder

# Streams stay open for the whole batch; only connecting is bounded
STREAM_TIMEOUT = httpx.Timeout(10.0, read=None)
REQUEST_TIMEOUT = httpx.Timeout(10.0, read=None)


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into its media type and raw bytes"""
    header, sep, data = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URI")
    return header[len("data:"):-len(";base64")], base64.b64decode(data)


class ReleaseStreamConsumer:
    """Tracks one batch submitted to the release service"""

    def __init__(self,
                 base_url: str,
                 client: Optional[httpx.AsyncClient] = None,
                 on_event: Optional[Callable[[ProgressEvent], None]] = None):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.on_event = on_event
        self._reset([])

    def _reset(self, vehicle_ids: Sequence[str]):
        self.vehicle_ids = list(vehicle_ids)
        self.events: list[ProgressEvent] = []
        self.completed: set[str] = set()
        self.failed: set[str] = set()
        self.screenshots: dict[str, list[ProgressEvent]] = {}
        self.system_error: Optional[str] = None
        self.jobs: list[VehicleReleaseJob] = []
        self.finished = False
        self.cancelled = False
        self.status_message = ""

    @property
    def total(self) -> int:
        return len(self.vehicle_ids)

    @property
    def progress(self) -> float:
        """Fraction of the batch that reached a terminal event

        Ineligible ids never produce one, so a finished batch can stay below
        1.0; ``finished`` says whether the stream has ended.
        """
        if not self.total:
            return 0.0
        return (len(self.completed) + len(self.failed)) / self.total

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(base_url=self.base_url) as client:
            yield client

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def submit(self, vehicle_ids: Sequence[str]) -> list[ProgressEvent]:
        """
        Submit a batch in real-time mode and follow it to the end

        Returns:
            Every event received, in arrival order

        Raises:
            ReleaseServiceError: If the service refused the request
        """
        self._reset(unique_ids(vehicle_ids))
        decoder = SSEDecoder()
        payload = {"vehicleIds": self.vehicle_ids, "realTime": True}

        async with self._session() as client:
            async with client.stream("POST", self._url("/dmv-automation"), json=payload,
                                     timeout=STREAM_TIMEOUT) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise ReleaseServiceError(response.status_code, self._error_reason(response))

                async for chunk in response.aiter_text():
                    for event in decoder.feed(chunk):
                        self._record(event)
                    if self.cancelled:
                        break

            decoder.close()
            if self.cancelled:
                return self.events

            self.finished = True
            self.status_message = (
                f"Finished: {len(self.completed)} submitted, {len(self.failed)} failed"
            )
            await self._refresh_with(client, self.vehicle_ids)

        return self.events

    def cancel(self):
        """Stop reading the stream; the server keeps working on the batch"""
        if self.finished:
            return
        self.cancelled = True
        self.status_message = (
            "Stopped watching. The server continues processing this batch; "
            "check job status later."
        )
        self.logger.info(self.status_message)

    async def submit_sync(self, vehicle_ids: Sequence[str]) -> list[ReleaseOutcome]:
        """Submit a batch without streaming and wait for the final results"""
        payload = {"vehicleIds": unique_ids(vehicle_ids), "realTime": False}
        async with self._session() as client:
            response = await client.post(self._url("/dmv-automation"), json=payload, timeout=REQUEST_TIMEOUT)
        if response.status_code >= 400:
            raise ReleaseServiceError(response.status_code, self._error_reason(response))

        return [
            ReleaseOutcome(
                vehicle_id=str(result["vehicleId"]),
                success=bool(result["success"]),
                confirmation_number=result.get("confirmationNumber"),
                error=result.get("error"),
            )
            for result in response.json().get("results", [])
        ]

    async def refresh(self, vehicle_ids: Optional[Sequence[str]] = None) -> list[VehicleReleaseJob]:
        """Re-read the job records for the batch"""
        async with self._session() as client:
            return await self._refresh_with(client, vehicle_ids or self.vehicle_ids)

    async def _refresh_with(self, client: httpx.AsyncClient, vehicle_ids: Sequence[str]) -> list[VehicleReleaseJob]:
        response = await client.get(self._url("/release-jobs"), params={"ids": ",".join(vehicle_ids)})
        if response.status_code >= 400:
            raise ReleaseServiceError(response.status_code, self._error_reason(response))
        self.jobs = [VehicleReleaseJob.from_record(record) for record in response.json().get("jobs", [])]
        return self.jobs

    def _record(self, event: ProgressEvent):
        self.events.append(event)
        if event.vehicle_id == SYSTEM_VEHICLE_ID:
            if event.kind == EventKind.ERROR:
                self.system_error = event.message
                self.status_message = event.message
        elif event.kind == EventKind.COMPLETE:
            self.completed.add(event.vehicle_id)
        elif event.kind == EventKind.ERROR:
            self.failed.add(event.vehicle_id)
        elif event.kind == EventKind.SCREENSHOT and event.screenshot:
            self.screenshots.setdefault(event.vehicle_id, []).append(event)

        if self.on_event:
            self.on_event(event)

    def save_screenshots(self, directory: Path) -> list[Path]:
        """Write every received screenshot to disk"""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        written = []
        for vehicle_id, events in self.screenshots.items():
            for event in events:
                mime, image = decode_data_uri(event.screenshot)
                extension = mime.split("/")[-1].replace("jpeg", "jpg")
                path = directory / f"{vehicle_id}_step{event.step_index:02d}.{extension}"
                path.write_bytes(image)
                written.append(path)
        return written

    @staticmethod
    def _error_reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("error") or body.get("detail") or body)
        return str(body)
