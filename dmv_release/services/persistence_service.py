"""
CSV-backed job record store

Provides the inventory ``vehicles`` relation as a CSV file with:
- Pandas DataFrame for reading and rewriting rows
- File locking so the API and the CLI can share one file
- Blocking file I/O pushed off the event loop
"""

import asyncio
from pathlib import Path
from typing import Sequence

import pandas as pd
from filelock import FileLock

from ..exceptions import JobStoreError
from ..models.vehicle_job import COLUMN_MAP
from .job_store import InMemoryJobRecordStore, JobRecordStore

VEHICLE_COLUMNS = list(COLUMN_MAP.values())


class CsvJobRecordStore(JobRecordStore):
    """Job record store persisted to a CSV file"""

    def __init__(self, csv_file: str, lock_timeout: float = 10.0):
        super().__init__()
        self.csv_file = Path(csv_file)
        self.lock_file = self.csv_file.with_name(self.csv_file.name + ".lock")
        self.file_lock = FileLock(self.lock_file, timeout=lock_timeout)

    def _read(self) -> pd.DataFrame:
        if not self.csv_file.exists():
            raise JobStoreError("read", f"store file not found: {self.csv_file}")
        df = pd.read_csv(self.csv_file, dtype=str, keep_default_na=False, encoding="utf-8")
        if "id" not in df.columns:
            raise JobStoreError("read", "store file has no id column")
        return df

    def _fetch_sync(self, vehicle_ids: Sequence[str]) -> list[dict]:
        with self.file_lock:
            df = self._read()
        matched = df[df["id"].isin(list(vehicle_ids))]
        return matched.to_dict(orient="records")

    def _update_sync(self, vehicle_id: str, values: dict) -> None:
        with self.file_lock:
            df = self._read()
            mask = df["id"] == vehicle_id
            if not mask.any():
                raise JobStoreError("update", "vehicle not found", vehicle_id)
            for column, value in values.items():
                if column not in df.columns:
                    df[column] = ""
                df.loc[mask, column] = "" if value is None else str(value)
            df.to_csv(self.csv_file, index=False, encoding="utf-8")

    async def fetch_records(self, vehicle_ids: Sequence[str]) -> list[dict]:
        try:
            return await asyncio.to_thread(self._fetch_sync, list(vehicle_ids))
        except JobStoreError:
            raise
        except Exception as e:
            raise JobStoreError("read", str(e)) from e

    async def _update_record(self, vehicle_id: str, values: dict) -> None:
        await asyncio.to_thread(self._update_sync, vehicle_id, values)

    def write_records(self, records: list[dict]):
        """Replace the store contents; used to seed a store from an inventory export"""
        df = pd.DataFrame(records)
        for column in VEHICLE_COLUMNS:
            if column not in df.columns:
                df[column] = ""
        self.csv_file.parent.mkdir(parents=True, exist_ok=True)
        with self.file_lock:
            df.to_csv(self.csv_file, index=False, encoding="utf-8")


def create_store(settings) -> JobRecordStore:
    """Build the job record store selected by settings"""
    if settings.store_backend == "csv":
        return CsvJobRecordStore(settings.store_path)
    elif settings.store_backend == "memory":
        return InMemoryJobRecordStore()
    else:
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
