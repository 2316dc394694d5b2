"""Exception types raised by the compliance package."""


class ComplianceError(Exception):
    """Base class for all compliance errors."""


class NotAuthenticatedError(ComplianceError):
    """Raised when an operation needs an owner id and none was given."""


class StoreError(ComplianceError):
    """A document store read or write failed."""


class VehicleNotFoundError(StoreError):
    def __init__(self, owner_id: str, vehicle_id: str):
        super().__init__(f"Vehicle '{vehicle_id}' not found for owner '{owner_id}'")
        self.owner_id = owner_id
        self.vehicle_id = vehicle_id


class DocumentNotFoundError(StoreError):
    def __init__(self, owner_id: str, vehicle_id: str, doc_type: str):
        super().__init__(
            f"No {doc_type} document for vehicle '{vehicle_id}' (owner '{owner_id}')"
        )
        self.owner_id = owner_id
        self.vehicle_id = vehicle_id
        self.doc_type = doc_type


class UnknownCategoryError(ComplianceError, ValueError):
    """Category name is not a known service or document type."""


class InvalidMileageError(ComplianceError, ValueError):
    """Mileage update rejected (negative, malformed or not increasing)."""


class NotificationError(ComplianceError):
    """A notification registration or cancellation failed."""


class SettingsError(ComplianceError):
    """Settings file could not be loaded or failed validation."""


def require_owner(owner_id: str) -> str:
    """Return owner_id, or raise NotAuthenticatedError if it is empty."""
    if not owner_id:
        raise NotAuthenticatedError("No authenticated owner")
    return owner_id
