"""
Reminder scheduling.

Turns evaluated obligations and document expiries into notification
registrations. Scheduling replaces everything: all of an owner's reminders
are cancelled before new ones are registered.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from .calculations import days_between
from .config import DEFAULT_SETTINGS, Settings
from .document import ComplianceDocument
from .errors import ComplianceError, require_owner
from .evaluator import evaluate_vehicle, first_document
from .notifications import NotificationService
from .obligation import Obligation
from .service_definition import DOCUMENT_TYPES
from .status import ReminderUrgency
from .store import DocumentStore, load_compliance_documents
from .vehicle import VehicleRecord

logger = logging.getLogger(__name__)

DOCUMENT_NAMES = {"license": "License", "insurance": "Insurance"}


def plural_days(days: int) -> str:
    return f"{days} {'day' if days == 1 else 'days'}"


@dataclass
class ScheduleReport:
    """Outcome of one scheduling pass."""

    owner_id: str
    permission: bool = True
    vehicles: int = 0
    reminder_ids: List[str] = field(default_factory=list)
    failed_vehicles: List[str] = field(default_factory=list)
    failed_reminders: int = 0
    obligations: List[Obligation] = field(default_factory=list)

    @property
    def scheduled(self) -> int:
        return len(self.reminder_ids)


class ReminderScheduler:
    """
    Registers reminders for one owner's vehicles.

    Args:
        store: Source of vehicles and compliance documents.
        notifier: Notification service to register reminders with.
        settings: Thresholds and reminder policy.
        clock: Returns the current time when no explicit `now` is given.
    """

    def __init__(
        self,
        store: DocumentStore,
        notifier: NotificationService,
        settings: Settings = DEFAULT_SETTINGS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    async def _register(self, report: ScheduleReport, method: str, *args) -> Optional[str]:
        """Call one notifier scheduling method; failures are logged, not raised."""
        try:
            reminder_id = await getattr(self.notifier, method)(*args)
        except Exception:
            # One failed registration must not abort the batch
            logger.exception("Failed to register reminder '%s'", args[0])
            report.failed_reminders += 1
            return None
        if reminder_id:
            report.reminder_ids.append(reminder_id)
        return reminder_id

    async def _cancel_all(self, owner_id: str) -> None:
        try:
            await self.notifier.cancel_all(owner_id)
        except Exception:
            logger.exception("Failed to cancel existing reminders for %s", owner_id)

    async def reschedule_all(self, owner_id: str, now: Optional[datetime] = None) -> ScheduleReport:
        """
        Cancel the owner's reminders, then schedule fresh ones for every vehicle.

        Each vehicle is evaluated and scheduled inside its own error boundary.
        A failure listing vehicles aborts the pass and propagates StoreError.
        Without notification permission this is a no-op.
        """
        require_owner(owner_id)
        report = ScheduleReport(owner_id)

        if not await self.notifier.permission_granted():
            logger.warning("Notification permission not granted, skipping scheduling")
            report.permission = False
            return report

        now = now or self.clock()
        await self._cancel_all(owner_id)

        vehicles = await self.store.list_vehicles(owner_id)
        report.vehicles = len(vehicles)
        if not vehicles:
            logger.info("No vehicles found for %s", owner_id)
            return report
        logger.info("Scheduling reminders for %d vehicle(s) of %s", len(vehicles), owner_id)

        for vehicle in vehicles:
            try:
                documents = await load_compliance_documents(self.store, owner_id, vehicle.vehicle_id)
            except ComplianceError:
                logger.exception("Error loading documents for vehicle %s", vehicle.vehicle_id)
                report.failed_vehicles.append(vehicle.vehicle_id)
                continue

            obligations = evaluate_vehicle(vehicle, documents, now, settings=self.settings)
            report.obligations.extend(obligations)

            for definition in DOCUMENT_TYPES:
                document = first_document(documents, definition.category)
                if document is None:
                    logger.debug("No %s data for vehicle %s", definition.category, vehicle.vehicle_id)
                    continue
                await self.schedule_document_reminders(owner_id, vehicle, document, now, report)

        overdue = [o for o in report.obligations if o.is_overdue and not o.is_document]
        await self.schedule_overdue_reminders(owner_id, overdue, report)

        logger.info(
            "Scheduled %d reminder(s) for %s (%d failed)",
            report.scheduled,
            owner_id,
            report.failed_reminders,
        )
        return report

    def _document_payload(
        self, owner_id: str, vehicle: VehicleRecord, document: ComplianceDocument,
        expires_at: datetime, days_remaining: int,
    ) -> Dict[str, Any]:
        return {
            "ownerId": owner_id,
            "type": document.doc_type,
            "category": document.doc_type,
            "vehicleId": vehicle.vehicle_id,
            "vehicleName": vehicle.name,
            "vehiclePlate": vehicle.plate or "N/A",
            "documentId": document.document_id,
            "daysRemaining": days_remaining,
            "expireDate": expires_at.isoformat(),
            "action": "open_document",
        }

    async def schedule_document_reminders(
        self,
        owner_id: str,
        vehicle: VehicleRecord,
        document: ComplianceDocument,
        now: datetime,
        report: ScheduleReport,
    ) -> None:
        """
        Schedule look-ahead reminders for one license or insurance document.

        One reminder per configured offset before expiry whose time is still
        in the future, plus an "expired" reminder the day after expiry.
        Documents already expired get nothing.
        """
        expires_at = document.expires_at
        if expires_at is None:
            logger.warning(
                "Invalid expiry date for %s of vehicle %s: %r",
                document.doc_type,
                vehicle.vehicle_id,
                document.expire_date,
            )
            return
        if expires_at <= now:
            logger.debug("%s already expired for vehicle %s", document.doc_type, vehicle.vehicle_id)
            return

        name = DOCUMENT_NAMES[document.doc_type]
        title = f"{name} for {vehicle.brand or 'Vehicle'} {vehicle.model or ''}".strip()
        subtitle = document.reference_label

        for days in self.settings.reminder_days:
            when = expires_at - timedelta(days=days)
            if when <= now:
                logger.debug("Skipping %s %d-day reminder: already past", document.doc_type, days)
                continue
            urgency = ReminderUrgency.for_days(days)
            payload = self._document_payload(owner_id, vehicle, document, expires_at, days)
            payload["urgency"] = urgency.name.lower()
            await self._register(
                report,
                "schedule_at",
                f"{urgency.marker} {title}",
                f"{subtitle} expires in {plural_days(days)}",
                payload,
                when,
            )

        expired_at = expires_at + timedelta(days=1)
        payload = self._document_payload(owner_id, vehicle, document, expires_at, -1)
        payload["urgency"] = ReminderUrgency.IMMEDIATE.name.lower()
        payload["urgent"] = True
        await self._register(
            report,
            "schedule_at",
            f"{ReminderUrgency.IMMEDIATE.marker} {title} EXPIRED",
            f"{subtitle} expired yesterday. Renew immediately!",
            payload,
            expired_at,
        )

    async def schedule_overdue_reminders(
        self, owner_id: str, overdue: Iterable[Obligation], report: ScheduleReport
    ) -> None:
        """
        One immediate summary plus capped daily reminders for overdue services.

        Obligations are deduplicated on (vehicle_id, category).
        """
        unique: List[Obligation] = []
        seen = set()
        for obligation in overdue:
            if obligation.key in seen:
                continue
            seen.add(obligation.key)
            unique.append(obligation)

        if not unique:
            return

        await self._register(
            report,
            "schedule_immediate",
            "Vehicle Service Reminder",
            f"You have {len(unique)} overdue service(s). Check your notifications tab.",
            {
                "ownerId": owner_id,
                "type": "service_reminder",
                "count": len(unique),
                "action": "open_notifications",
            },
        )

        for obligation in unique[: self.settings.max_daily_reminders]:
            next_due = obligation.next_due
            await self._register(
                report,
                "schedule_daily_repeating",
                f"{obligation.title} Overdue",
                f"{obligation.vehicle_name} needs {obligation.title}. "
                f"{obligation.days_estimate} days overdue.",
                {
                    "ownerId": owner_id,
                    "type": "service_overdue",
                    "category": obligation.category,
                    "vehicleId": obligation.vehicle_id,
                    "serviceType": obligation.title,
                    "notificationId": f"{obligation.vehicle_id}_{obligation.category}",
                    "nextDue": next_due.isoformat() if isinstance(next_due, datetime) else next_due,
                    "remaining": obligation.remaining,
                    "daysOverdue": obligation.days_estimate,
                    "action": "open_vehicle",
                },
                self.settings.daily_reminder_time,
            )

    async def check_expiring_soon(self, owner_id: str, now: Optional[datetime] = None) -> ScheduleReport:
        """
        Immediate alerts for documents expiring within the immediate window.

        Does not cancel existing reminders. Expired documents are ignored.
        """
        require_owner(owner_id)
        report = ScheduleReport(owner_id)
        if not await self.notifier.permission_granted():
            report.permission = False
            return report

        now = now or self.clock()
        horizon = now + timedelta(days=self.settings.immediate_window_days)

        vehicles = await self.store.list_vehicles(owner_id)
        report.vehicles = len(vehicles)
        for vehicle in vehicles:
            try:
                documents = await load_compliance_documents(self.store, owner_id, vehicle.vehicle_id)
            except ComplianceError:
                logger.exception("Error checking expiry for vehicle %s", vehicle.vehicle_id)
                report.failed_vehicles.append(vehicle.vehicle_id)
                continue

            for definition in DOCUMENT_TYPES:
                document = first_document(documents, definition.category)
                expires_at = document.expires_at if document else None
                if expires_at is None or not (now < expires_at <= horizon):
                    continue
                days = days_between(now, expires_at)
                name = DOCUMENT_NAMES[document.doc_type]
                await self._register(
                    report,
                    "schedule_immediate",
                    f"{ReminderUrgency.IMMEDIATE.marker} {name} Expiring Soon",
                    f"{vehicle.name} {name.lower()} expires in {plural_days(days)}",
                    {
                        "ownerId": owner_id,
                        "type": document.doc_type,
                        "vehicleId": vehicle.vehicle_id,
                        "action": "open_document",
                        "immediate": True,
                    },
                )
        return report
