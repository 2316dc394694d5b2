"""
Compliance rule evaluation.

Maps a vehicle record, its compliance documents and an as-of time to a list
of Obligations. Pure and synchronous: the same inputs always give the same
output, and missing or malformed optional fields never raise.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .calculations import (
    calc_due_date,
    calc_due_mileage,
    classify_days,
    classify_document,
    classify_mileage,
    days_between,
    days_estimate,
    to_datetime,
)
from .config import DEFAULT_SETTINGS, Settings
from .document import ComplianceDocument
from .obligation import Obligation
from .service_definition import (
    DATE_SERVICES,
    DOCUMENT_TYPES,
    MILEAGE_SERVICES,
    ServiceDefinition,
)
from .status import Basis, Classification, Severity
from .vehicle import VehicleRecord

logger = logging.getLogger(__name__)

MAINTENANCE_LABELS = {
    Classification.DUE_SOON: "DUE SOON",
    Classification.CURRENT: "OK",
}
DOCUMENT_LABELS = {
    Severity.CRITICAL: "EXPIRED",
    Severity.HIGH: "URGENT",
    Severity.MEDIUM: "RENEWAL DUE",
}


def resolve_as_of(as_of: Any = None) -> datetime:
    """Normalize an as-of value to a naive datetime, defaulting to now."""
    if as_of is None:
        return datetime.now()
    resolved = to_datetime(as_of)
    if resolved is None:
        raise ValueError(f"Invalid as-of date: {as_of!r}")
    return resolved


def _maintenance_label(classification: Classification, severity: Severity) -> str:
    if classification == Classification.OVERDUE:
        return "CRITICAL" if severity == Severity.CRITICAL else "OVERDUE"
    return MAINTENANCE_LABELS[classification]


def evaluate_mileage_service(
    vehicle: VehicleRecord,
    definition: ServiceDefinition,
    settings: Settings = DEFAULT_SETTINGS,
) -> Obligation:
    """Evaluate one mileage-based category (always produces an Obligation)."""
    current = vehicle.current_mileage
    last = vehicle.last_service_mileage(definition)
    next_due = calc_due_mileage(last, definition.interval)
    remaining = next_due - current
    classification, severity = classify_mileage(remaining, settings)

    return Obligation(
        vehicle_id=vehicle.vehicle_id,
        category=definition.category,
        basis=Basis.MILEAGE,
        title=definition.title,
        next_due=next_due,
        current_value=current,
        remaining=remaining,
        classification=classification,
        severity=severity,
        label=_maintenance_label(classification, severity),
        days_estimate=days_estimate(remaining, settings.km_per_day),
        vehicle_name=vehicle.name,
        last_value=last,
    )


def evaluate_date_service(
    vehicle: VehicleRecord,
    definition: ServiceDefinition,
    as_of: datetime,
    settings: Settings = DEFAULT_SETTINGS,
) -> Optional[Obligation]:
    """Evaluate one date-based category. None when no last date is recorded."""
    last_date = vehicle.last_service_date(definition)
    if last_date is None:
        if vehicle.fields.get(definition.date_field):
            logger.warning(
                "Skipping %s for vehicle %s: unparseable date %r",
                definition.category,
                vehicle.vehicle_id,
                vehicle.fields.get(definition.date_field),
            )
        return None

    next_due = calc_due_date(last_date, definition.interval)
    remaining = days_between(as_of, next_due)
    classification, severity = classify_days(remaining, settings)

    return Obligation(
        vehicle_id=vehicle.vehicle_id,
        category=definition.category,
        basis=Basis.DATE,
        title=definition.title,
        next_due=next_due,
        current_value=as_of,
        remaining=remaining,
        classification=classification,
        severity=severity,
        label=_maintenance_label(classification, severity),
        days_estimate=abs(remaining),
        vehicle_name=vehicle.name,
        last_value=last_date,
    )


def first_document(
    documents: Iterable[ComplianceDocument], doc_type: str
) -> Optional[ComplianceDocument]:
    """First document of a type in store order, or None."""
    for doc in documents:
        if doc.doc_type == doc_type:
            return doc
    return None


def evaluate_document(
    vehicle: VehicleRecord,
    definition: ServiceDefinition,
    document: Optional[ComplianceDocument],
    as_of: datetime,
    settings: Settings = DEFAULT_SETTINGS,
) -> Optional[Obligation]:
    """
    Evaluate a license or insurance document.

    None when there is no document, no parseable expiry, or the expiry is
    beyond the renewal window.
    """
    if document is None:
        return None
    expires_at = document.expires_at
    if expires_at is None:
        if document.expire_date:
            logger.warning(
                "Skipping %s for vehicle %s: invalid expiry date %r",
                definition.category,
                vehicle.vehicle_id,
                document.expire_date,
            )
        return None

    remaining = days_between(as_of, expires_at)
    result = classify_document(remaining, settings)
    if result is None:
        return None
    classification, severity = result

    return Obligation(
        vehicle_id=vehicle.vehicle_id,
        category=definition.category,
        basis=Basis.DATE,
        title=definition.title,
        next_due=expires_at,
        current_value=as_of,
        remaining=remaining,
        classification=classification,
        severity=severity,
        label=DOCUMENT_LABELS[severity],
        days_estimate=abs(remaining),
        vehicle_name=vehicle.name,
        is_document=True,
        reference=document.reference_number,
    )


def evaluate_vehicle(
    vehicle: VehicleRecord,
    documents: Optional[Sequence[ComplianceDocument]] = None,
    as_of: Any = None,
    include_current: bool = False,
    settings: Settings = DEFAULT_SETTINGS,
) -> List[Obligation]:
    """
    Evaluate every category for one vehicle.

    Order: mileage categories, date categories, then documents. CURRENT
    maintenance items are only included when include_current is set;
    documents outside the renewal window are never included.
    """
    as_of = resolve_as_of(as_of)
    documents = documents or []
    obligations: List[Obligation] = []

    for definition in MILEAGE_SERVICES:
        obligations.append(evaluate_mileage_service(vehicle, definition, settings))

    for definition in DATE_SERVICES:
        obligation = evaluate_date_service(vehicle, definition, as_of, settings)
        if obligation is not None:
            obligations.append(obligation)

    if not include_current:
        obligations = [o for o in obligations if o.is_due]

    for definition in DOCUMENT_TYPES:
        document = first_document(documents, definition.category)
        obligation = evaluate_document(vehicle, definition, document, as_of, settings)
        if obligation is not None:
            obligations.append(obligation)

    return obligations


def evaluate_fleet(
    entries: Iterable[Tuple[VehicleRecord, Sequence[ComplianceDocument]]],
    as_of: Any = None,
    include_current: bool = False,
    settings: Settings = DEFAULT_SETTINGS,
) -> List[Obligation]:
    """Evaluate several vehicles, concatenating results in iteration order."""
    as_of = resolve_as_of(as_of)
    obligations: List[Obligation] = []
    for vehicle, documents in entries:
        obligations.extend(
            evaluate_vehicle(vehicle, documents, as_of, include_current, settings)
        )
    return obligations


def summarize(obligations: Iterable[Obligation]) -> Dict[str, int]:
    """Count obligations by classification."""
    counts = {"overdue": 0, "due_soon": 0, "current": 0}
    for obligation in obligations:
        if obligation.classification == Classification.OVERDUE:
            counts["overdue"] += 1
        elif obligation.classification == Classification.DUE_SOON:
            counts["due_soon"] += 1
        else:
            counts["current"] += 1
    return counts
