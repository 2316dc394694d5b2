"""VehicleRecord class - one vehicle's odometer and last-service state."""

from datetime import datetime
from typing import Any, Dict, Optional

from .calculations import coerce_mileage, to_datetime
from .service_definition import ServiceDefinition

DESCRIPTIVE_FIELDS = ("brand", "model", "type", "plate")


class VehicleRecord:
    """
    A vehicle as stored for its owner.

    Keeps the raw stored fields and coerces on read, so missing or
    malformed values never raise.
    """

    def __init__(self, vehicle_id: str, owner_id: str, fields: Optional[Dict[str, Any]] = None):
        self.vehicle_id = vehicle_id
        self.owner_id = owner_id
        self.fields = dict(fields or {})

    @classmethod
    def from_document(cls, owner_id: str, vehicle_id: str, data: Optional[Dict[str, Any]]) -> "VehicleRecord":
        return cls(vehicle_id, owner_id, data)

    @property
    def brand(self) -> Optional[str]:
        return self.fields.get("brand")

    @property
    def model(self) -> Optional[str]:
        return self.fields.get("model")

    @property
    def type(self) -> Optional[str]:
        return self.fields.get("type")

    @property
    def plate(self) -> Optional[str]:
        return self.fields.get("plate")

    @property
    def name(self) -> str:
        """Human-readable vehicle name."""
        name = f"{self.brand or ''} {self.model or ''}".strip()
        return name or "Vehicle"

    @property
    def current_mileage(self) -> int:
        """Current odometer reading, 0 when not recorded."""
        return coerce_mileage(self.fields.get("mileage"))

    def last_service_mileage(self, definition: ServiceDefinition) -> int:
        """Mileage at last service for a mileage category, 0 when never recorded."""
        if definition.mileage_field is None:
            return 0
        return coerce_mileage(self.fields.get(definition.mileage_field))

    def last_service_date(self, definition: ServiceDefinition) -> Optional[datetime]:
        """Date of last service, or None when never recorded or unparseable."""
        if definition.date_field is None:
            return None
        return to_datetime(self.fields.get(definition.date_field))

    def __repr__(self) -> str:
        return f"VehicleRecord({self.vehicle_id!r}, owner={self.owner_id!r})"
