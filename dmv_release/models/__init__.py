from .vehicle_job import ReleaseStatus, VehicleReleaseJob
from .progress_event import EventKind, ProgressEvent, ReleaseOutcome, SYSTEM_VEHICLE_ID

__all__ = [
    'ReleaseStatus',
    'VehicleReleaseJob',
    'EventKind',
    'ProgressEvent',
    'ReleaseOutcome',
    'SYSTEM_VEHICLE_ID',
]
