"""Obligation dataclass for evaluated maintenance and document status."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple, Union

from .status import Basis, Classification, Severity


@dataclass
class Obligation:
    """Evaluated status of one category for one vehicle. Never persisted."""

    vehicle_id: str
    category: str
    basis: Basis
    title: str
    next_due: Union[int, datetime]
    current_value: Union[int, datetime]
    remaining: int
    classification: Classification
    severity: Severity
    label: str
    days_estimate: int
    vehicle_name: str = "Vehicle"
    last_value: Optional[Union[int, datetime]] = None
    is_document: bool = False
    reference: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Natural key used to deduplicate reminders."""
        return (self.vehicle_id, self.category)

    @property
    def is_due(self) -> bool:
        return self.classification in (Classification.OVERDUE, Classification.DUE_SOON)

    @property
    def is_overdue(self) -> bool:
        return self.classification == Classification.OVERDUE

    @property
    def message(self) -> str:
        """Short remaining-time text, e.g. '12 days overdue' or 'Due in 3 days'."""
        if self.is_document:
            if self.is_overdue:
                return f"Expired {self.days_estimate} days ago"
            return f"Expires in {self.days_estimate} days"
        if self.is_overdue:
            return f"{self.days_estimate} days overdue"
        return f"Due in {self.days_estimate} days"
