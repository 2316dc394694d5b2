"""ComplianceDocument class for license and insurance records."""

from datetime import datetime
from typing import Any, Dict, Optional

from .calculations import to_datetime

# Field holding the license or policy number in each document type
REFERENCE_FIELDS = {
    "license": "licenseNumber",
    "insurance": "policyNumber",
}


class ComplianceDocument:
    """A license or insurance record attached to a vehicle."""

    def __init__(
            self,
            document_id: str,
            doc_type: str,
            vehicle_id: str,
            expire_date: Any = None,
            reference_number: Optional[str] = None,
            renewed_date: Optional[str] = None,
    ):
        self.document_id = document_id
        self.doc_type = doc_type
        self.vehicle_id = vehicle_id
        self.expire_date = expire_date
        self.reference_number = reference_number
        self.renewed_date = renewed_date

    @classmethod
    def from_document(cls, doc_type: str, document_id: str, data: Dict[str, Any]) -> "ComplianceDocument":
        reference = data.get(REFERENCE_FIELDS.get(doc_type, "policyNumber"))
        return cls(
            document_id,
            doc_type,
            data.get("vehicleId"),
            data.get("expireDate"),
            reference,
            data.get("renewedDate"),
        )

    @property
    def expires_at(self) -> Optional[datetime]:
        """Parsed expiry, or None when missing or malformed."""
        return to_datetime(self.expire_date)

    @property
    def reference_label(self) -> str:
        """Reference line used in reminder bodies."""
        if self.doc_type == "license":
            return f"License No: {self.reference_number or 'N/A'}"
        return f"Policy: {self.reference_number or 'N/A'}"
