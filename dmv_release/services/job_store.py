"""
Job record store interface

The inventory system owns vehicle rows. Release automation reads sold
vehicles and writes back only ``dmv_status``, ``dmv_confirmation_number``
and ``dmv_submitted_at``.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..exceptions import JobStoreError
from ..models.vehicle_job import VehicleReleaseJob, ReleaseStatus

WRITABLE_COLUMNS = frozenset({"dmv_status", "dmv_confirmation_number", "dmv_submitted_at"})


def unique_ids(vehicle_ids: Iterable[str]) -> list[str]:
    """Drop duplicates and blanks while keeping the caller's order"""
    seen = set()
    ordered = []
    for vehicle_id in vehicle_ids:
        key = str(vehicle_id).strip()
        if key and key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


class JobRecordStore(ABC):
    """Abstract job record store

    Writes for one vehicle id are serialized with a per-id lock so a job
    never has two concurrent writers.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._row_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @abstractmethod
    async def fetch_records(self, vehicle_ids: Sequence[str]) -> list[dict]:
        """Return raw rows for the given ids, in any order; unknown ids are skipped"""

    @abstractmethod
    async def _update_record(self, vehicle_id: str, values: dict) -> None:
        """Apply column updates to one row; raise JobStoreError if it does not exist"""

    async def get_jobs(self, vehicle_ids: Sequence[str]) -> list[VehicleReleaseJob]:
        """Current jobs for the given ids in request order, regardless of status"""
        ids = unique_ids(vehicle_ids)
        by_id = {}
        for record in await self.fetch_records(ids):
            try:
                job = VehicleReleaseJob.from_record(record)
            except ValueError as e:
                # A malformed row is left for an operator; the rest of the batch proceeds
                self.logger.warning(f"Skipping unreadable record {record.get('id')!r}: {e}")
                continue
            by_id[job.id] = job
        return [by_id[vehicle_id] for vehicle_id in ids if vehicle_id in by_id]

    async def load_eligible(self, vehicle_ids: Sequence[str]) -> list[VehicleReleaseJob]:
        """Jobs that may be automated now; ineligible and unknown ids are dropped silently"""
        jobs = await self.get_jobs(vehicle_ids)
        eligible = [job for job in jobs if job.is_eligible()]
        self.logger.debug(f"Loaded {len(eligible)} eligible of {len(vehicle_ids)} requested vehicles")
        return eligible

    async def mark_processing(self, vehicle_id: str):
        await self._write(vehicle_id, {"dmv_status": ReleaseStatus.PROCESSING.value})

    async def mark_submitted(self, vehicle_id: str, confirmation_code: str, submitted_at: datetime):
        await self._write(vehicle_id, {
            "dmv_status": ReleaseStatus.SUBMITTED.value,
            "dmv_confirmation_number": confirmation_code,
            "dmv_submitted_at": submitted_at.isoformat(),
        })

    async def mark_failed(self, vehicle_id: str):
        await self._write(vehicle_id, {"dmv_status": ReleaseStatus.FAILED.value})

    async def _write(self, vehicle_id: str, values: dict):
        illegal = set(values) - WRITABLE_COLUMNS
        if illegal:
            raise JobStoreError("update", f"columns not writable: {sorted(illegal)}", vehicle_id)

        async with self._row_locks[vehicle_id]:
            try:
                await self._update_record(vehicle_id, values)
            except JobStoreError:
                raise
            except Exception as e:
                raise JobStoreError("update", str(e), vehicle_id) from e

        self.logger.debug(f"Vehicle {vehicle_id} updated: {values}")


class InMemoryJobRecordStore(JobRecordStore):
    """Dictionary-backed store for development and tests"""

    def __init__(self, records: Optional[Iterable[dict]] = None):
        super().__init__()
        self._records: dict[str, dict] = {}
        for record in records or []:
            self.add_record(record)

    def add_record(self, record: dict):
        self._records[str(record["id"])] = dict(record)

    def record(self, vehicle_id: str) -> dict:
        return copy.deepcopy(self._records[vehicle_id])

    async def fetch_records(self, vehicle_ids: Sequence[str]) -> list[dict]:
        return [copy.deepcopy(self._records[v]) for v in vehicle_ids if v in self._records]

    async def _update_record(self, vehicle_id: str, values: dict) -> None:
        if vehicle_id not in self._records:
            raise JobStoreError("update", "vehicle not found", vehicle_id)
        self._records[vehicle_id].update(values)
