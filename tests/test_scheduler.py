#!/usr/bin/env python3
"""Tests for ReminderScheduler."""

from dataclasses import replace
from datetime import datetime, time

import pytest
import yaml

from compliance import (
    DEFAULT_SETTINGS,
    Basis,
    Classification,
    LocalNotificationService,
    NotAuthenticatedError,
    NotificationError,
    Obligation,
    ReminderScheduler,
    ReminderUrgency,
    ScheduleReport,
    Severity,
    StoreError,
    YamlDocumentStore,
)
from compliance.notifications import AT, DAILY, IMMEDIATE

NOW = datetime(2026, 1, 15, 12, 0)

CURRENT_SWIFT = {
    "brand": "Suzuki",
    "model": "Swift",
    "plate": "CAB-1",
    "mileage": 1000,
    "oilServiceMileage": 1000,
    "fullServiceMileage": 1000,
    "tyreChangeMileage": 1000,
}


def clock():
    return NOW


def write_store(path, vehicles, licenses=None, insurance=None, owner="u1"):
    data = {"users": {owner: {
        "vehicles": vehicles,
        "licenses": licenses or {},
        "insurance": insurance or {},
    }}}
    with open(path, "w") as fp:
        yaml.dump(data, fp, sort_keys=False)
    return path


def make_scheduler(store, notifier=None, settings=DEFAULT_SETTINGS):
    notifier = notifier or LocalNotificationService(clock=clock)
    return ReminderScheduler(store, notifier, settings, clock=clock)


class FlakyNotifier(LocalNotificationService):
    """Fails the first schedule_at call."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.calls = 0

    async def schedule_at(self, title, body, payload, when):
        self.calls += 1
        if self.calls == 1:
            raise NotificationError("registration rejected")
        return await super().schedule_at(title, body, payload, when)


class NoCancelNotifier(LocalNotificationService):
    async def cancel_all(self, owner_id):
        raise NotificationError("cancel failed")


class BrokenDocumentsStore(YamlDocumentStore):
    """Fails to load documents for the vehicle named 'bad'."""

    async def list_documents(self, owner_id, vehicle_id, doc_type):
        if vehicle_id == "bad":
            raise StoreError("documents unavailable")
        return await super().list_documents(owner_id, vehicle_id, doc_type)


class TestDocumentReminders:
    """Look-ahead reminders for license and insurance expiry."""

    @pytest.fixture
    def store(self, tmp_path):
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-20", "licenseNumber": "L-1"}},
        )
        return YamlDocumentStore(path)

    @pytest.mark.asyncio
    async def test_expiry_in_five_days(self, store):
        """An expiry five days out gets the 3 and 1 day reminders and the day-after one."""
        scheduler = make_scheduler(store)
        report = await scheduler.reschedule_all("u1", NOW)

        reminders = await scheduler.notifier.list_scheduled("u1")
        assert report.scheduled == 3
        assert [r.kind for r in reminders] == [AT, AT, AT]
        assert [r.when for r in reminders] == [
            datetime(2026, 1, 17),
            datetime(2026, 1, 19),
            datetime(2026, 1, 21),
        ]
        assert [r.title for r in reminders] == [
            f"{ReminderUrgency.HIGH.marker} License for Suzuki Swift",
            "\U0001F6A8 License for Suzuki Swift",
            "\U0001F6A8 License for Suzuki Swift EXPIRED",
        ]
        assert reminders[0].body == "License No: L-1 expires in 3 days"
        assert reminders[1].body == "License No: L-1 expires in 1 day"
        assert reminders[2].body == "License No: L-1 expired yesterday. Renew immediately!"

    @pytest.mark.asyncio
    async def test_payload(self, store):
        """Document reminders carry the routing payload."""
        scheduler = make_scheduler(store)
        await scheduler.reschedule_all("u1", NOW)
        reminders = await scheduler.notifier.list_scheduled("u1")

        payload = reminders[0].payload
        assert payload["ownerId"] == "u1"
        assert payload["type"] == "license"
        assert payload["vehicleId"] == "v1"
        assert payload["vehicleName"] == "Suzuki Swift"
        assert payload["vehiclePlate"] == "CAB-1"
        assert payload["documentId"] == "lic-1"
        assert payload["daysRemaining"] == 3
        assert payload["expireDate"] == "2026-01-20T00:00:00"
        assert payload["action"] == "open_document"
        assert payload["urgency"] == "high"

        expired = reminders[2].payload
        assert expired["daysRemaining"] == -1
        assert expired["urgent"] is True

    @pytest.mark.asyncio
    async def test_report_carries_obligations(self, store):
        """The report includes the evaluated obligations."""
        report = await make_scheduler(store).reschedule_all("u1", NOW)
        assert report.vehicles == 1
        licenses = [ob for ob in report.obligations if ob.category == "license"]
        assert len(licenses) == 1
        assert licenses[0].severity == Severity.HIGH

    @pytest.mark.asyncio
    async def test_far_expiry_schedules_every_offset(self, tmp_path):
        """A distant expiry gets a reminder at every offset."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            insurance={"ins-1": {"vehicleId": "v1", "expireDate": "2026-06-01", "policyNumber": "P-1"}},
        )
        scheduler = make_scheduler(YamlDocumentStore(path))
        report = await scheduler.reschedule_all("u1", NOW)
        reminders = await scheduler.notifier.list_scheduled("u1")
        assert report.scheduled == 6
        assert [r.payload["daysRemaining"] for r in reminders] == [30, 14, 7, 3, 1, -1]
        assert reminders[0].title == "\U0001F4CB Insurance for Suzuki Swift"
        assert reminders[0].body == "Policy: P-1 expires in 30 days"

    @pytest.mark.asyncio
    async def test_expired_document_gets_nothing(self, tmp_path):
        """Already-expired documents get no look-ahead reminders."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-10"}},
        )
        report = await make_scheduler(YamlDocumentStore(path)).reschedule_all("u1", NOW)
        assert report.scheduled == 0

    @pytest.mark.asyncio
    async def test_invalid_expiry_gets_nothing(self, tmp_path):
        """An unparseable expiry is skipped without a failure."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "whenever"}},
        )
        report = await make_scheduler(YamlDocumentStore(path)).reschedule_all("u1", NOW)
        assert report.scheduled == 0
        assert report.failed_reminders == 0


class TestOverdueReminders:
    """Summary and daily reminders for overdue maintenance."""

    @pytest.fixture
    def store(self, tmp_path):
        vehicles = {
            "a": {
                "brand": "Honda", "model": "Civic", "mileage": 50000,
                "oilServiceMileage": 40000, "fullServiceMileage": 40000, "tyreChangeMileage": 40000,
            },
            "b": {
                "brand": "Yamaha", "model": "FZ", "mileage": 20000,
                "oilServiceMileage": 10000, "fullServiceMileage": 10000,
            },
        }
        return YamlDocumentStore(write_store(tmp_path / "garage.yaml", vehicles))

    @pytest.mark.asyncio
    async def test_summary_and_capped_daily(self, store):
        """One summary plus daily reminders capped at three."""
        scheduler = make_scheduler(store)
        report = await scheduler.reschedule_all("u1", NOW)
        reminders = await scheduler.notifier.list_scheduled("u1")

        assert report.scheduled == 4
        summary = reminders[0]
        assert summary.kind == IMMEDIATE
        assert summary.title == "Vehicle Service Reminder"
        assert summary.body == "You have 4 overdue service(s). Check your notifications tab."
        assert summary.payload["count"] == 4
        assert summary.payload["type"] == "service_reminder"

        daily = reminders[1:]
        assert [r.kind for r in daily] == [DAILY, DAILY, DAILY]
        assert [r.time_of_day for r in daily] == [time(9, 0)] * 3
        assert [(r.payload["vehicleId"], r.payload["category"]) for r in daily] == [
            ("a", "oilService"),
            ("a", "fullService"),
            ("b", "oilService"),
        ]
        assert daily[0].title == "Oil Service Overdue"
        assert daily[0].body == "Honda Civic needs Oil Service. 100 days overdue."
        assert daily[0].payload["notificationId"] == "a_oilService"
        assert daily[0].payload["nextDue"] == 45000
        assert daily[0].payload["remaining"] == -5000
        assert daily[0].payload["action"] == "open_vehicle"

    @pytest.mark.asyncio
    async def test_cap_follows_settings(self, store):
        """The cap and time of day come from settings."""
        settings = replace(DEFAULT_SETTINGS, max_daily_reminders=1, daily_reminder_time=time(7, 30))
        scheduler = make_scheduler(store, settings=settings)
        report = await scheduler.reschedule_all("u1", NOW)
        reminders = await scheduler.notifier.list_scheduled("u1")
        assert report.scheduled == 2
        assert reminders[1].time_of_day == time(7, 30)

    @pytest.mark.asyncio
    async def test_duplicates_collapsed(self, store):
        """Repeated obligations are reminded once."""
        obligation = Obligation(
            vehicle_id="a",
            category="oilService",
            basis=Basis.MILEAGE,
            title="Oil Service",
            next_due=45000,
            current_value=50000,
            remaining=-5000,
            classification=Classification.OVERDUE,
            severity=Severity.CRITICAL,
            label="CRITICAL",
            days_estimate=100,
        )
        scheduler = make_scheduler(store)
        report = ScheduleReport("u1")
        await scheduler.schedule_overdue_reminders("u1", [obligation, obligation], report)

        reminders = await scheduler.notifier.list_scheduled("u1")
        assert report.scheduled == 2
        assert reminders[0].payload["count"] == 1

    @pytest.mark.asyncio
    async def test_nothing_overdue_nothing_sent(self, store):
        """No overdue items means no reminders."""
        scheduler = make_scheduler(store)
        report = ScheduleReport("u1")
        await scheduler.schedule_overdue_reminders("u1", [], report)
        assert report.scheduled == 0


class TestRescheduleAll:
    """Permission, replacement and failure isolation."""

    @pytest.fixture
    def store(self, tmp_path):
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-20"}},
        )
        return YamlDocumentStore(path)

    @pytest.mark.asyncio
    async def test_requires_owner(self, store):
        """An empty owner is not authenticated."""
        with pytest.raises(NotAuthenticatedError):
            await make_scheduler(store).reschedule_all("", NOW)

    @pytest.mark.asyncio
    async def test_no_permission_is_noop(self, store):
        """Without permission nothing is cancelled or scheduled."""
        notifier = LocalNotificationService(permission=False, clock=clock)
        await notifier.schedule_immediate("old", "b", {"ownerId": "u1"})
        report = await make_scheduler(store, notifier).reschedule_all("u1", NOW)

        assert report.permission is False
        assert report.scheduled == 0
        assert [r.title for r in await notifier.list_scheduled("u1")] == ["old"]

    @pytest.mark.asyncio
    async def test_replaces_previous_reminders(self, store):
        """Rescheduling replaces only the owner's reminders."""
        scheduler = make_scheduler(store)
        await scheduler.notifier.schedule_immediate("stale", "b", {"ownerId": "u1"})
        await scheduler.notifier.schedule_immediate("theirs", "b", {"ownerId": "u2"})

        await scheduler.reschedule_all("u1", NOW)
        await scheduler.reschedule_all("u1", NOW)

        titles = [r.title for r in await scheduler.notifier.list_scheduled("u1")]
        assert len(titles) == 3
        assert "stale" not in titles
        assert len(await scheduler.notifier.list_scheduled("u2")) == 1

    @pytest.mark.asyncio
    async def test_failed_registration_does_not_abort(self, store):
        """One failed registration is counted and skipped."""
        notifier = FlakyNotifier(clock=clock)
        report = await make_scheduler(store, notifier).reschedule_all("u1", NOW)
        assert report.failed_reminders == 1
        assert report.scheduled == 2

    @pytest.mark.asyncio
    async def test_failed_cancel_does_not_abort(self, store):
        """A failed cancel still lets scheduling run."""
        notifier = NoCancelNotifier(clock=clock)
        report = await make_scheduler(store, notifier).reschedule_all("u1", NOW)
        assert report.scheduled == 3

    @pytest.mark.asyncio
    async def test_failed_vehicle_isolated(self, tmp_path):
        """A vehicle whose documents fail is skipped."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"bad": CURRENT_SWIFT, "v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-20"}},
        )
        scheduler = make_scheduler(BrokenDocumentsStore(path))
        report = await scheduler.reschedule_all("u1", NOW)
        assert report.vehicles == 2
        assert report.failed_vehicles == ["bad"]
        assert report.scheduled == 3

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, tmp_path):
        """An unreadable store is an error."""
        scheduler = make_scheduler(YamlDocumentStore(tmp_path / "missing.yaml"))
        with pytest.raises(StoreError):
            await scheduler.reschedule_all("u1", NOW)

    @pytest.mark.asyncio
    async def test_no_vehicles(self, tmp_path):
        """An empty garage schedules nothing."""
        path = write_store(tmp_path / "garage.yaml", {})
        report = await make_scheduler(YamlDocumentStore(path)).reschedule_all("u1", NOW)
        assert report.vehicles == 0
        assert report.scheduled == 0

    @pytest.mark.asyncio
    async def test_uses_clock_when_now_omitted(self, store):
        """The injected clock supplies now."""
        report = await make_scheduler(store).reschedule_all("u1")
        assert report.scheduled == 3


class TestCheckExpiringSoon:
    """Immediate alerts for documents about to expire."""

    @pytest.mark.asyncio
    async def test_alerts_within_window(self, tmp_path):
        """Documents expiring within three days get an immediate alert."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-17"}},
            insurance={"ins-1": {"vehicleId": "v1", "expireDate": "2026-01-30"}},
        )
        scheduler = make_scheduler(YamlDocumentStore(path))
        await scheduler.notifier.schedule_immediate("existing", "b", {"ownerId": "u1"})

        report = await scheduler.check_expiring_soon("u1", NOW)
        reminders = await scheduler.notifier.list_scheduled("u1")

        assert report.scheduled == 1
        assert reminders[0].title == "existing"
        alert = reminders[1]
        assert alert.kind == IMMEDIATE
        assert alert.title == "\U0001F6A8 License Expiring Soon"
        assert alert.body == "Suzuki Swift license expires in 2 days"
        assert alert.payload["immediate"] is True

    @pytest.mark.asyncio
    async def test_expired_ignored(self, tmp_path):
        """Expired documents get no immediate alert."""
        path = write_store(
            tmp_path / "garage.yaml",
            {"v1": CURRENT_SWIFT},
            licenses={"lic-1": {"vehicleId": "v1", "expireDate": "2026-01-14"}},
        )
        report = await make_scheduler(YamlDocumentStore(path)).check_expiring_soon("u1", NOW)
        assert report.scheduled == 0

    @pytest.mark.asyncio
    async def test_no_permission(self, tmp_path):
        """Without permission nothing is checked."""
        path = write_store(tmp_path / "garage.yaml", {"v1": CURRENT_SWIFT})
        notifier = LocalNotificationService(permission=False, clock=clock)
        report = await make_scheduler(YamlDocumentStore(path), notifier).check_expiring_soon("u1", NOW)
        assert report.permission is False
