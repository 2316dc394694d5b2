"""ServiceDefinition class for maintenance and document categories."""

from typing import Dict, List, Optional

from .errors import UnknownCategoryError
from .status import Basis


class ServiceDefinition:
    """A category of obligation and the record fields it reads and writes."""

    def __init__(
            self,
            category: str,
            title: str,
            basis: Basis,
            interval_mileage: Optional[int] = None,
            interval_months: Optional[int] = None,
            mileage_field: Optional[str] = None,
            date_field: Optional[str] = None,
            is_document: bool = False,
    ):
        self.category = category
        self.title = title
        self.basis = basis
        self.interval_mileage = interval_mileage
        self.interval_months = interval_months
        self.mileage_field = mileage_field
        self.date_field = date_field
        self.is_document = is_document

    @property
    def interval(self) -> Optional[int]:
        """Interval in the unit of the basis (km or months)."""
        if self.basis == Basis.MILEAGE:
            return self.interval_mileage
        return self.interval_months

    def __repr__(self) -> str:
        return f"ServiceDefinition({self.category!r})"


OIL_SERVICE = ServiceDefinition(
    "oilService", "Oil Service", Basis.MILEAGE,
    interval_mileage=5000,
    mileage_field="oilServiceMileage",
    date_field="lastOilServiceDate",
)
FULL_SERVICE = ServiceDefinition(
    "fullService", "Full Service", Basis.MILEAGE,
    interval_mileage=10000,
    mileage_field="fullServiceMileage",
    date_field="lastFullServiceDate",
)
TYRE_CHANGE = ServiceDefinition(
    "tyreChange", "Tyre Change", Basis.MILEAGE,
    interval_mileage=40000,
    mileage_field="tyreChangeMileage",
    date_field="lastTyreChangeDate",
)
BRAKE_OIL = ServiceDefinition(
    "brakeOil", "Brake Oil", Basis.DATE,
    interval_months=24,
    date_field="brakeOilDate",
)
BATTERY_CHECK = ServiceDefinition(
    "batteryCheck", "Battery Check", Basis.DATE,
    interval_months=6,
    date_field="batteryCheckDate",
)
LICENSE = ServiceDefinition(
    "license", "Vehicle License", Basis.DATE, date_field="expireDate", is_document=True
)
INSURANCE = ServiceDefinition(
    "insurance", "Vehicle Insurance", Basis.DATE, date_field="expireDate", is_document=True
)

# Evaluation order: mileage categories, then date categories, then documents
MILEAGE_SERVICES: List[ServiceDefinition] = [OIL_SERVICE, FULL_SERVICE, TYRE_CHANGE]
DATE_SERVICES: List[ServiceDefinition] = [BRAKE_OIL, BATTERY_CHECK]
MAINTENANCE_SERVICES: List[ServiceDefinition] = MILEAGE_SERVICES + DATE_SERVICES
DOCUMENT_TYPES: List[ServiceDefinition] = [LICENSE, INSURANCE]

ALL_CATEGORIES: Dict[str, ServiceDefinition] = {
    d.category: d for d in MAINTENANCE_SERVICES + DOCUMENT_TYPES
}


def get_definition(category: str) -> ServiceDefinition:
    """Look up a category by name, raising UnknownCategoryError if absent."""
    try:
        return ALL_CATEGORIES[category]
    except KeyError:
        raise UnknownCategoryError(
            f"Unknown category '{category}' "
            f"(expected one of: {', '.join(ALL_CATEGORIES)})"
        ) from None
