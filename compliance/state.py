"""
Compliance state mutations.

Applies "mark as done", service records, mileage updates and document
saves and renewals to the document store, then re-evaluates the vehicle from freshly read state.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .calculations import to_datetime
from .config import DEFAULT_SETTINGS, Settings
from .document import REFERENCE_FIELDS, ComplianceDocument
from .errors import (
    ComplianceError,
    DocumentNotFoundError,
    InvalidMileageError,
    VehicleNotFoundError,
    require_owner,
)
from .evaluator import evaluate_vehicle, first_document
from .obligation import Obligation
from .service_definition import DATE_SERVICES, MILEAGE_SERVICES, get_definition
from .status import Basis
from .store import DocumentStore, load_compliance_documents
from .vehicle import VehicleRecord

logger = logging.getLogger(__name__)


def mark_done_fields(
    vehicle: VehicleRecord, category: str, now: datetime
) -> Dict[str, Any]:
    """
    Fields to merge into a vehicle record when a maintenance item is done.

    Mileage categories reset the last-service mileage to the vehicle's
    current mileage and stamp the date; date categories only stamp the date.
    """
    definition = get_definition(category)
    if definition.is_document:
        raise ValueError(f"'{category}' is a document; renew it instead")

    stamp = now.isoformat()
    fields: Dict[str, Any] = {}
    if definition.basis == Basis.MILEAGE:
        fields[definition.mileage_field] = vehicle.current_mileage
    fields[definition.date_field] = stamp
    fields["lastServiceUpdate"] = stamp
    return fields


def parse_mileage(value: Any) -> int:
    """
    Parse a user-entered mileage into a non-negative whole number of km.

    Fractional values are truncated ("45500.7" -> 45500).
    """
    try:
        number = float(str(value).strip())
    except ValueError:
        raise InvalidMileageError(f"Invalid mileage value: {value!r}") from None
    if not math.isfinite(number):
        raise InvalidMileageError(f"Invalid mileage value: {value!r}")
    if number < 0:
        raise InvalidMileageError("Mileage must be a positive number")
    return int(number)


def service_record_fields(record: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    """
    Fields to merge into a vehicle record from a service-record entry.

    `record` maps last-service fields (oilServiceMileage, brakeOilDate, ...)
    to user-entered values. Empty values are skipped.
    """
    mileage_fields = {d.mileage_field for d in MILEAGE_SERVICES}
    date_fields = {d.date_field for d in DATE_SERVICES}

    fields: Dict[str, Any] = {}
    for name, value in record.items():
        if value is None or str(value).strip() == "":
            continue
        if name in mileage_fields:
            fields[name] = parse_mileage(value)
        elif name in date_fields:
            parsed = to_datetime(value)
            if parsed is None:
                raise ValueError(f"Invalid date for {name}: {value!r}")
            fields[name] = parsed.isoformat()
        else:
            raise ValueError(
                f"Unknown service field '{name}' "
                f"(expected one of: {', '.join(sorted(mileage_fields | date_fields))})"
            )

    if not fields:
        raise ValueError("No service values given")
    fields["lastServiceUpdate"] = now.isoformat()
    return fields


class ComplianceState:
    """
    Read-through access to one store, with evaluation after every change.

    Nothing is cached: every call re-reads the vehicle and its documents.
    """

    def __init__(self, store: DocumentStore, settings: Settings = DEFAULT_SETTINGS):
        self.store = store
        self.settings = settings

    async def _require_vehicle(self, owner_id: str, vehicle_id: str) -> VehicleRecord:
        vehicle = await self.store.get_vehicle(owner_id, vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(owner_id, vehicle_id)
        return vehicle

    async def evaluate(
        self,
        owner_id: str,
        vehicle_id: str,
        as_of: Optional[datetime] = None,
        include_current: bool = False,
    ) -> List[Obligation]:
        """Re-read one vehicle and evaluate it."""
        require_owner(owner_id)
        vehicle = await self._require_vehicle(owner_id, vehicle_id)
        documents = await load_compliance_documents(self.store, owner_id, vehicle_id)
        return evaluate_vehicle(vehicle, documents, as_of, include_current, self.settings)

    async def evaluate_owner(
        self,
        owner_id: str,
        as_of: Optional[datetime] = None,
        include_current: bool = False,
    ) -> Tuple[List[Tuple[VehicleRecord, List[Obligation]]], List[str]]:
        """
        Evaluate every vehicle of an owner.

        Returns (vehicle, obligations) pairs in store order and the ids of
        vehicles whose documents could not be read; those are skipped
        without aborting the others.
        """
        require_owner(owner_id)
        as_of = as_of or datetime.now()
        results: List[Tuple[VehicleRecord, List[Obligation]]] = []
        failed: List[str] = []
        for vehicle in await self.store.list_vehicles(owner_id):
            try:
                documents = await load_compliance_documents(self.store, owner_id, vehicle.vehicle_id)
            except ComplianceError:
                logger.exception("Error loading documents for vehicle %s", vehicle.vehicle_id)
                failed.append(vehicle.vehicle_id)
                continue
            results.append(
                (vehicle, evaluate_vehicle(vehicle, documents, as_of, include_current, self.settings))
            )
        return results, failed

    async def mark_done(
        self,
        owner_id: str,
        vehicle_id: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> List[Obligation]:
        """
        Record a maintenance item as done and return the re-evaluated vehicle.

        Uses the vehicle's mileage at confirmation time, not the mileage the
        obligation was computed at.
        """
        require_owner(owner_id)
        get_definition(category)
        now = now or datetime.now()

        vehicle = await self._require_vehicle(owner_id, vehicle_id)
        fields = mark_done_fields(vehicle, category, now)
        await self.store.update_vehicle(owner_id, vehicle_id, fields)
        logger.info("Marked %s done for vehicle %s", category, vehicle_id)

        return await self.evaluate(owner_id, vehicle_id, now, include_current=True)

    async def record_service(
        self,
        owner_id: str,
        vehicle_id: str,
        record: Dict[str, Any],
        now: Optional[datetime] = None,
    ) -> List[Obligation]:
        """
        Enter last-service values for a vehicle and return it re-evaluated.

        Accepts any subset of the maintenance last-service fields; mileages
        must be non-negative numbers and dates must parse.
        """
        require_owner(owner_id)
        now = now or datetime.now()
        fields = service_record_fields(record, now)

        await self._require_vehicle(owner_id, vehicle_id)
        await self.store.update_vehicle(owner_id, vehicle_id, fields)
        logger.info("Recorded service for vehicle %s: %s", vehicle_id, sorted(fields))
        return await self.evaluate(owner_id, vehicle_id, now, include_current=True)

    async def update_mileage(
        self,
        owner_id: str,
        vehicle_id: str,
        mileage: Any,
        now: Optional[datetime] = None,
    ) -> List[Obligation]:
        """
        Set a vehicle's odometer reading.

        The new value must be a non-negative number greater than the current
        mileage; fractions are truncated.
        """
        require_owner(owner_id)
        value = parse_mileage(mileage)

        now = now or datetime.now()
        vehicle = await self._require_vehicle(owner_id, vehicle_id)
        current = vehicle.current_mileage
        if value <= current:
            raise InvalidMileageError(
                f"New mileage must be greater than current mileage ({current} km)"
            )

        await self.store.update_vehicle(
            owner_id, vehicle_id, {"mileage": value, "lastUpdated": now.isoformat()}
        )
        logger.info("Updated mileage for vehicle %s: %d -> %d", vehicle_id, current, value)
        return await self.evaluate(owner_id, vehicle_id, now, include_current=True)

    async def renew_document(
        self,
        owner_id: str,
        vehicle_id: str,
        doc_type: str,
        now: Optional[datetime] = None,
    ) -> ComplianceDocument:
        """
        Extend the first license or insurance document of a vehicle.

        The new expiry is the current expiry plus document_renewal_years
        (from now when the stored expiry is missing or malformed).
        """
        require_owner(owner_id)
        definition = get_definition(doc_type)
        if not definition.is_document:
            raise ValueError(f"'{doc_type}' is not a document type")
        now = now or datetime.now()

        await self._require_vehicle(owner_id, vehicle_id)
        documents = await self.store.list_documents(owner_id, vehicle_id, doc_type)
        document = first_document(documents, doc_type)
        if document is None:
            raise DocumentNotFoundError(owner_id, vehicle_id, doc_type)

        base = document.expires_at or now
        new_expiry = (base + relativedelta(years=self.settings.document_renewal_years)).date()
        fields = {"expireDate": new_expiry.isoformat(), "renewedDate": now.isoformat()}
        await self.store.update_document(owner_id, doc_type, document.document_id, fields)
        logger.info("Renewed %s for vehicle %s until %s", doc_type, vehicle_id, new_expiry)

        document.expire_date = fields["expireDate"]
        document.renewed_date = fields["renewedDate"]
        return document

    async def save_document(
        self,
        owner_id: str,
        vehicle_id: str,
        doc_type: str,
        expire_date: Any,
        reference: Any,
        start_date: Any = None,
        now: Optional[datetime] = None,
    ) -> ComplianceDocument:
        """
        Create or replace the license or insurance details of a vehicle.

        Updates the vehicle's first document of that type, or creates one
        when it has none. The start date, when given, must precede expiry.
        """
        require_owner(owner_id)
        definition = get_definition(doc_type)
        if not definition.is_document:
            raise ValueError(f"'{doc_type}' is not a document type")
        now = now or datetime.now()

        reference = str(reference or "").strip()
        if not reference:
            raise ValueError(f"A {doc_type} number is required")
        expires = to_datetime(expire_date)
        if expires is None:
            raise ValueError(f"Invalid expiry date: {expire_date!r}")

        fields: Dict[str, Any] = {
            "vehicleId": vehicle_id,
            "expireDate": expires.date().isoformat(),
            REFERENCE_FIELDS[doc_type]: reference,
            "lastUpdated": now.isoformat(),
        }
        if start_date not in (None, ""):
            starts = to_datetime(start_date)
            if starts is None:
                raise ValueError(f"Invalid start date: {start_date!r}")
            if starts.date() >= expires.date():
                raise ValueError("Start date must be before the expiry date")
            fields["startDate"] = starts.date().isoformat()

        await self._require_vehicle(owner_id, vehicle_id)
        documents = await self.store.list_documents(owner_id, vehicle_id, doc_type)
        existing = first_document(documents, doc_type)
        if existing is None:
            document_id = await self.store.add_document(owner_id, doc_type, fields)
            logger.info("Added %s %s for vehicle %s", doc_type, document_id, vehicle_id)
        else:
            document_id = existing.document_id
            await self.store.update_document(owner_id, doc_type, document_id, fields)
            logger.info("Updated %s %s for vehicle %s", doc_type, document_id, vehicle_id)

        for document in await self.store.list_documents(owner_id, vehicle_id, doc_type):
            if document.document_id == document_id:
                return document
        raise DocumentNotFoundError(owner_id, vehicle_id, doc_type)
