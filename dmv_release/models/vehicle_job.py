"""
Vehicle release job data model
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ReleaseStatus(Enum):
    """Release-of-liability submission status (``dmv_status`` column)"""
    PENDING = "pending"
    PROCESSING = "processing"
    SUBMITTED = "submitted"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: Any) -> "ReleaseStatus":
        """Parse a stored status; a missing value means the job was never attempted"""
        if value is None or (isinstance(value, float) and value != value):
            return cls.PENDING
        if isinstance(value, ReleaseStatus):
            return value
        text = str(value).strip().lower()
        return cls(text) if text else cls.PENDING


# Inventory column for each job attribute
COLUMN_MAP = {
    "id": "id",
    "year": "year",
    "make": "make",
    "model": "model",
    "vin": "vehicle_id",
    "license_plate": "license_plate",
    "buyer_first_name": "buyer_first_name",
    "buyer_last_name": "buyer_last_name",
    "buyer_address": "buyer_address",
    "buyer_city": "buyer_city",
    "buyer_state": "buyer_state",
    "buyer_zip": "buyer_zip",
    "sale_price": "sale_price",
    "sale_date": "sale_date",
    "purchase_price": "purchase_price",
    "inventory_status": "status",
    "release_status": "dmv_status",
    "confirmation_code": "dmv_confirmation_number",
    "submitted_at": "dmv_submitted_at",
}

SOLD_STATUS = "sold"


def _clean(value: Any) -> Optional[str]:
    """Normalize a stored cell to a stripped string, or None when empty"""
    if value is None:
        return None
    if isinstance(value, float):
        if value != value:  # NaN from pandas
            return None
        if value.is_integer():
            value = int(value)
    text = str(value).strip()
    return text or None


def _format_amount(amount: float) -> str:
    return str(int(amount)) if amount.is_integer() else f"{amount:.2f}"


@dataclass
class VehicleReleaseJob:
    """One vehicle's release-of-liability job, loaded from the inventory store"""
    id: str
    year: str = ""
    make: str = ""
    model: str = ""
    vin: str = ""
    license_plate: Optional[str] = None
    buyer_first_name: Optional[str] = None
    buyer_last_name: Optional[str] = None
    buyer_address: Optional[str] = None
    buyer_city: Optional[str] = None
    buyer_state: Optional[str] = None
    buyer_zip: Optional[str] = None
    sale_price: Optional[str] = None
    sale_date: Optional[str] = None
    purchase_price: Optional[str] = None
    inventory_status: str = SOLD_STATUS
    release_status: ReleaseStatus = ReleaseStatus.PENDING
    confirmation_code: Optional[str] = None
    submitted_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict) -> "VehicleReleaseJob":
        """Build a job from an inventory row keyed by column name"""
        values = {attr: _clean(record.get(column)) for attr, column in COLUMN_MAP.items()}
        if not values["id"]:
            raise ValueError("Vehicle record has no id")

        submitted_at = record.get("dmv_submitted_at")
        if isinstance(submitted_at, str) and submitted_at.strip():
            submitted_at = datetime.fromisoformat(submitted_at.strip())
        elif not isinstance(submitted_at, datetime):
            submitted_at = None

        return cls(
            id=values["id"],
            year=values["year"] or "",
            make=values["make"] or "",
            model=values["model"] or "",
            vin=values["vin"] or "",
            license_plate=values["license_plate"],
            buyer_first_name=values["buyer_first_name"],
            buyer_last_name=values["buyer_last_name"],
            buyer_address=values["buyer_address"],
            buyer_city=values["buyer_city"],
            buyer_state=values["buyer_state"],
            buyer_zip=values["buyer_zip"],
            sale_price=values["sale_price"],
            sale_date=values["sale_date"],
            purchase_price=values["purchase_price"],
            inventory_status=(values["inventory_status"] or "").lower(),
            release_status=ReleaseStatus.parse(record.get("dmv_status")),
            confirmation_code=values["confirmation_code"],
            submitted_at=submitted_at,
        )

    def to_record(self) -> dict:
        """Render the job back to inventory column names"""
        record = {}
        for attr, column in COLUMN_MAP.items():
            value = getattr(self, attr)
            if isinstance(value, ReleaseStatus):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            record[column] = value
        return record

    @property
    def description(self) -> str:
        return " ".join(part for part in (self.year, self.make, self.model) if part)

    def has_buyer_name(self) -> bool:
        return bool(self.buyer_first_name and self.buyer_last_name)

    def is_eligible(self) -> bool:
        """A job may be automated only when sold, named, and still pending"""
        return (
            self.inventory_status == SOLD_STATUS
            and self.has_buyer_name()
            and self.release_status == ReleaseStatus.PENDING
        )

    def form_sale_price(self) -> str:
        """Sale price for the form; falls back to purchase price plus $100"""
        if self.sale_price:
            return self.sale_price
        if self.purchase_price:
            try:
                return _format_amount(float(self.purchase_price.replace(",", "").lstrip("$")) + 100)
            except ValueError:
                return ""
        return ""

    def mark_processing(self):
        self.release_status = ReleaseStatus.PROCESSING

    def mark_submitted(self, confirmation_code: str, submitted_at: datetime):
        self.release_status = ReleaseStatus.SUBMITTED
        self.confirmation_code = confirmation_code
        self.submitted_at = submitted_at

    def mark_failed(self):
        self.release_status = ReleaseStatus.FAILED
