#!/usr/bin/env python3
"""
Unified CLI for vehicle compliance tracking.

Commands:
  status          - Show overdue, due-soon and (optionally) current obligations
  done            - Mark a maintenance item as done
  record          - Record last-service mileages and dates
  update-mileage  - Update a vehicle's current mileage
  renew           - Renew a license or insurance document
  save-document   - Add or replace license or insurance details
  schedule        - Cancel and reschedule all reminders
  reminders       - List pending reminders
  check-expiring  - Alert now for documents expiring within a few days
  categories      - List maintenance and document categories
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from tabulate import tabulate
from typing import List, Optional

from compliance import (
    ALL_CATEGORIES,
    Basis,
    Classification,
    ComplianceError,
    ComplianceState,
    LocalNotificationService,
    Obligation,
    ReminderScheduler,
    ScheduledReminder,
    YamlDocumentStore,
    load_settings,
    summarize,
)
from compliance.service_definition import DATE_SERVICES, MILEAGE_SERVICES
from compliance.state import parse_mileage

OWNER_ENV_VAR = "COMPLIANCE_OWNER"
DEFAULT_OUTBOX = Path("reminders.yaml")
STATUS_HEADERS = ["Vehicle", "Item", "Status", "Severity", "Next Due", "Remaining", "Note"]

# =============================================================================
# Formatting helpers
# =============================================================================


def format_km(km: Optional[int]) -> str:
    """Format a distance for display."""
    return f"{km:,} km" if km is not None else "-"


def format_date(value: Optional[datetime]) -> str:
    """Format a date for display."""
    return value.date().isoformat() if value is not None else "-"


def format_days(days: int) -> str:
    """Format a day count for display (e.g., '3mo 15d' or '-2mo 5d')."""
    sign = "-" if days < 0 else ""
    days = abs(days)
    months = days // 30
    remaining_days = days % 30
    if months > 0:
        return f"{sign}{months}mo {remaining_days}d"
    return f"{sign}{days}d"


def format_value(obligation: Obligation, value) -> str:
    """Format a mileage or date value according to the obligation basis."""
    if obligation.basis == Basis.MILEAGE:
        return format_km(value)
    return format_date(value)


def format_remaining(obligation: Obligation) -> str:
    """Format the signed remaining amount (km or days)."""
    if obligation.basis == Basis.MILEAGE:
        if obligation.remaining < 0:
            return f"-{abs(obligation.remaining):,} km"
        return format_km(obligation.remaining)
    return format_days(obligation.remaining)


def make_status_table(obligations: List[Obligation]) -> List[List[str]]:
    """Convert obligations to table rows."""
    rows = []
    for ob in obligations:
        rows.append(
            [
                ob.vehicle_name,
                ob.title,
                ob.label,
                ob.severity.name.lower(),
                format_value(ob, ob.next_due),
                format_remaining(ob),
                ob.message,
            ]
        )
    return rows


def make_reminder_table(reminders: List[ScheduledReminder]) -> List[List[str]]:
    """Convert scheduled reminders to table rows."""
    rows = []
    for reminder in reminders:
        rows.append(
            [
                reminder.trigger,
                reminder.kind,
                reminder.title,
                reminder.body,
                reminder.payload.get("vehicleId", "-"),
            ]
        )
    return rows


def parse_as_of(value: Optional[str]) -> Optional[datetime]:
    """Parse an --as-of YYYY-MM-DD value."""
    if not value:
        return None
    return datetime.fromisoformat(value)


def option_name(category: str) -> str:
    """Command-line option for a category (oilService -> --oil-service)."""
    return "--" + "".join("-" + c.lower() if c.isupper() else c for c in category)


# =============================================================================
# Status command
# =============================================================================


async def cmd_status(args):
    """Show overdue, due-soon and (optionally) current obligations."""
    state = ComplianceState(YamlDocumentStore(args.data_file), args.settings)
    as_of = parse_as_of(args.as_of) or datetime.now()

    if args.vehicle:
        obligations = await state.evaluate(
            args.owner, args.vehicle, as_of, include_current=args.all
        )
        results = [(args.vehicle, obligations)]
        failed = []
    else:
        pairs, failed = await state.evaluate_owner(args.owner, as_of, include_current=args.all)
        results = [(vehicle.vehicle_id, obligations) for vehicle, obligations in pairs]

    all_obligations = [ob for _, obs in results for ob in obs]
    counts = summarize(all_obligations)

    # Header
    print(f"Owner: {args.owner}")
    print(f"As of: {as_of.date().isoformat()}")
    print(f"Vehicles: {len(results)}")
    print(f"Overdue: {counts['overdue']}  Due soon: {counts['due_soon']}")
    print()

    overdue = [ob for ob in all_obligations if ob.classification == Classification.OVERDUE]
    due_soon = [ob for ob in all_obligations if ob.classification == Classification.DUE_SOON]
    current = [ob for ob in all_obligations if ob.classification == Classification.CURRENT]

    if overdue:
        print("OVERDUE:")
        print(tabulate(make_status_table(overdue), headers=STATUS_HEADERS, tablefmt="simple"))
        print()

    if due_soon:
        print("DUE SOON:")
        print(tabulate(make_status_table(due_soon), headers=STATUS_HEADERS, tablefmt="simple"))
        print()

    if current:
        print("CURRENT:")
        print(tabulate(make_status_table(current), headers=STATUS_HEADERS, tablefmt="simple"))
        print()

    if not all_obligations:
        print("Nothing due.")

    for vehicle_id in failed:
        print(f"Warning: could not evaluate vehicle {vehicle_id}")

    return 0


# =============================================================================
# Done command
# =============================================================================


async def cmd_done(args):
    """Mark a maintenance item as done."""
    store = YamlDocumentStore(args.data_file)
    state = ComplianceState(store, args.settings)

    if args.dry_run:
        obligations = await state.evaluate(args.owner, args.vehicle, include_current=True)
        matching = [ob for ob in obligations if ob.category == args.category]
        print(f"Would mark {args.category} done for vehicle {args.vehicle}")
        for ob in matching:
            print(f"  Currently: {ob.label} ({ob.message})")
        print("(dry run - no changes made)")
        return 0

    obligations = await state.mark_done(args.owner, args.vehicle, args.category)
    print(f"Marked {args.category} done for vehicle {args.vehicle}.")
    for ob in obligations:
        if ob.category == args.category:
            print(f"  Next due: {format_value(ob, ob.next_due)} ({ob.message})")

    return 0


# =============================================================================
# Record command
# =============================================================================


async def cmd_record(args):
    """Record last-service mileages and dates."""
    state = ComplianceState(YamlDocumentStore(args.data_file), args.settings)

    record = {}
    for definition in MILEAGE_SERVICES:
        record[definition.mileage_field] = getattr(args, definition.mileage_field)
    for definition in DATE_SERVICES:
        record[definition.date_field] = getattr(args, definition.date_field)
    if all(value is None for value in record.values()):
        print("Error: Nothing to record (see 'record --help')")
        return 1

    obligations = await state.record_service(args.owner, args.vehicle, record)
    recorded = [
        d.category for d in MILEAGE_SERVICES if record[d.mileage_field] is not None
    ] + [d.category for d in DATE_SERVICES if record[d.date_field] is not None]
    print(f"Recorded service for vehicle {args.vehicle}.")

    rows = [ob for ob in obligations if ob.category in recorded]
    if rows:
        print()
        print(tabulate(make_status_table(rows), headers=STATUS_HEADERS, tablefmt="simple"))

    return 0


# =============================================================================
# Update Mileage command
# =============================================================================


async def cmd_update_mileage(args):
    """Update a vehicle's current mileage."""
    store = YamlDocumentStore(args.data_file)
    state = ComplianceState(store, args.settings)

    mileage = parse_mileage(args.mileage)
    vehicle = await store.get_vehicle(args.owner, args.vehicle)
    if vehicle is None:
        print(f"Error: Vehicle not found: {args.vehicle}")
        return 1

    print(f"Vehicle: {vehicle.name}")
    print(f"Current mileage: {vehicle.current_mileage:,}")
    print(f"New mileage:     {mileage:,}")
    print()

    if args.dry_run:
        print("(dry run - no changes made)")
        return 0

    obligations = await state.update_mileage(args.owner, args.vehicle, mileage)
    print("Mileage updated.")
    due = [ob for ob in obligations if ob.is_due]
    if due:
        print()
        print(tabulate(make_status_table(due), headers=STATUS_HEADERS, tablefmt="simple"))

    return 0


# =============================================================================
# Renew command
# =============================================================================


async def cmd_renew(args):
    """Renew a license or insurance document."""
    state = ComplianceState(YamlDocumentStore(args.data_file), args.settings)
    document = await state.renew_document(args.owner, args.vehicle, args.doc_type)
    print(f"Renewed {args.doc_type} for vehicle {args.vehicle} until {document.expire_date}.")
    return 0

async def cmd_save_document(args):
    """Add or replace license or insurance details."""
    state = ComplianceState(YamlDocumentStore(args.data_file), args.settings)
    document = await state.save_document(
        args.owner, args.vehicle, args.doc_type, args.expire_date, args.number, args.start_date
    )
    print(
        f"Saved {args.doc_type} {document.reference_number} for vehicle {args.vehicle} "
        f"(expires {document.expire_date})."
    )
    return 0


# =============================================================================
# Schedule / reminders commands
# =============================================================================


def make_scheduler(args) -> ReminderScheduler:
    notifier = LocalNotificationService(outbox=args.outbox)
    return ReminderScheduler(YamlDocumentStore(args.data_file), notifier, args.settings)


async def cmd_schedule(args):
    """Cancel and reschedule all reminders for the owner."""
    scheduler = make_scheduler(args)
    report = await scheduler.reschedule_all(args.owner)

    if not report.permission:
        print("Notifications are disabled; nothing scheduled.")
        return 0

    print(f"Vehicles: {report.vehicles}")
    print(f"Scheduled: {report.scheduled}")
    if report.failed_reminders:
        print(f"Failed: {report.failed_reminders}")
    for vehicle_id in report.failed_vehicles:
        print(f"Warning: could not schedule reminders for vehicle {vehicle_id}")
    print()

    reminders = await scheduler.notifier.list_scheduled(args.owner)
    if reminders:
        headers = ["When", "Kind", "Title", "Body", "Vehicle"]
        print(tabulate(make_reminder_table(reminders), headers=headers, tablefmt="simple"))

    return 0


async def cmd_reminders(args):
    """List pending reminders."""
    notifier = LocalNotificationService(outbox=args.outbox)
    reminders = await notifier.list_scheduled(args.owner)

    if not reminders:
        print("No reminders scheduled.")
        return 0

    reminders.sort(key=lambda r: (r.when or datetime.max, r.title))
    headers = ["When", "Kind", "Title", "Body", "Vehicle"]
    print(tabulate(make_reminder_table(reminders), headers=headers, tablefmt="simple"))
    return 0


async def cmd_check_expiring(args):
    """Send immediate alerts for documents about to expire."""
    scheduler = make_scheduler(args)
    report = await scheduler.check_expiring_soon(args.owner)
    print(f"Expiry alerts sent: {report.scheduled}")
    return 0


# =============================================================================
# Categories command
# =============================================================================


async def cmd_categories(args):
    """List maintenance and document categories."""
    rows = []
    for definition in ALL_CATEGORIES.values():
        if definition.is_document:
            interval = "expiry date"
        elif definition.basis == Basis.MILEAGE:
            interval = format_km(definition.interval)
        else:
            interval = f"{definition.interval} mo"
        rows.append([definition.category, definition.title, definition.basis.value, interval])

    headers = ["Category", "Title", "Basis", "Interval"]
    print(tabulate(rows, headers=headers, tablefmt="simple"))
    return 0


# =============================================================================
# Main
# =============================================================================

COMMANDS = {
    "status": cmd_status,
    "done": cmd_done,
    "record": cmd_record,
    "update-mileage": cmd_update_mileage,
    "renew": cmd_renew,
    "save-document": cmd_save_document,
    "schedule": cmd_schedule,
    "reminders": cmd_reminders,
    "check-expiring": cmd_check_expiring,
    "categories": cmd_categories,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Vehicle compliance tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/garage.yaml --owner u1 status
  %(prog)s data/garage.yaml --owner u1 status --all --vehicle v1
  %(prog)s data/garage.yaml --owner u1 done v1 oilService
  %(prog)s data/garage.yaml --owner u1 record v1 --oil-service 45000 --brake-oil 2025-11-30
  %(prog)s data/garage.yaml --owner u1 update-mileage v1 48200
  %(prog)s data/garage.yaml --owner u1 renew v1 insurance
  %(prog)s data/garage.yaml --owner u1 save-document v1 license 2027-01-20 WP-LIC-1
  %(prog)s data/garage.yaml --owner u1 schedule --outbox reminders.yaml
""",
    )
    parser.add_argument(
        "data_file",
        type=Path,
        help="Path to the YAML data store",
    )
    parser.add_argument(
        "--owner",
        type=str,
        default=os.environ.get(OWNER_ENV_VAR),
        help=f"Owner (user) id (default: ${OWNER_ENV_VAR})",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        help="YAML settings file overriding thresholds",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Status subcommand
    status_parser = subparsers.add_parser(
        "status", help="Show overdue, due-soon and current obligations"
    )
    status_parser.add_argument(
        "--all",
        action="store_true",
        help="Include current (not yet due) maintenance items",
    )
    status_parser.add_argument("--vehicle", type=str, help="Only this vehicle id")
    status_parser.add_argument(
        "--as-of",
        type=str,
        help="Evaluate as of date (YYYY-MM-DD, default: now)",
    )

    # Done subcommand
    done_parser = subparsers.add_parser("done", help="Mark a maintenance item as done")
    done_parser.add_argument("vehicle", type=str, help="Vehicle id")
    done_parser.add_argument(
        "category",
        type=str,
        help="Category (e.g., oilService, brakeOil; see 'categories')",
    )
    done_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be updated without saving",
    )

    # Record subcommand
    record_parser = subparsers.add_parser(
        "record", help="Record last-service mileages and dates"
    )
    record_parser.add_argument("vehicle", type=str, help="Vehicle id")
    for definition in MILEAGE_SERVICES:
        record_parser.add_argument(
            option_name(definition.category),
            dest=definition.mileage_field,
            metavar="KM",
            help=f"Mileage at last {definition.title.lower()}",
        )
    for definition in DATE_SERVICES:
        record_parser.add_argument(
            option_name(definition.category),
            dest=definition.date_field,
            metavar="DATE",
            help=f"Date of last {definition.title.lower()} (YYYY-MM-DD)",
        )

    # Update Mileage subcommand
    mileage_parser = subparsers.add_parser(
        "update-mileage", help="Update a vehicle's current mileage"
    )
    mileage_parser.add_argument("vehicle", type=str, help="Vehicle id")
    mileage_parser.add_argument("mileage", type=str, help="Current mileage (km)")
    mileage_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be updated without saving",
    )

    # Renew subcommand
    renew_parser = subparsers.add_parser(
        "renew", help="Extend a license or insurance document by one term"
    )
    renew_parser.add_argument("vehicle", type=str, help="Vehicle id")
    renew_parser.add_argument("doc_type", choices=["license", "insurance"])

    # Save Document subcommand
    save_parser = subparsers.add_parser(
        "save-document", help="Add or replace license or insurance details"
    )
    save_parser.add_argument("vehicle", type=str, help="Vehicle id")
    save_parser.add_argument("doc_type", choices=["license", "insurance"])
    save_parser.add_argument("expire_date", type=str, help="Expiry date (YYYY-MM-DD)")
    save_parser.add_argument("number", type=str, help="License or policy number")
    save_parser.add_argument(
        "--start-date",
        type=str,
        help="Start of cover (YYYY-MM-DD, must be before expiry)",
    )

    # Reminder subcommands
    for name, help_text in (
        ("schedule", "Cancel and reschedule all reminders"),
        ("reminders", "List pending reminders"),
        ("check-expiring", "Alert now for documents expiring within a few days"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--outbox",
            type=Path,
            default=DEFAULT_OUTBOX,
            help=f"YAML file holding scheduled reminders (default: {DEFAULT_OUTBOX})",
        )

    # Categories subcommand
    subparsers.add_parser("categories", help="List maintenance and document categories")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Validate data file exists
    if args.command != "categories" and not args.data_file.exists():
        print(f"Error: File not found: {args.data_file}")
        return 1

    try:
        args.settings = load_settings(args.settings)
        if args.command != "categories" and not args.owner:
            print(f"Error: --owner is required (or set {OWNER_ENV_VAR})")
            return 1
        return asyncio.run(COMMANDS[args.command](args))
    except (ComplianceError, ValueError) as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main() or 0)
