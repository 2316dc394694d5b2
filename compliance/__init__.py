"""
Vehicle compliance tracking.

This package evaluates and schedules reminders for vehicle obligations:
- Classification / Severity: how due an obligation is
- ServiceDefinition: maintenance and document categories
- VehicleRecord / ComplianceDocument: stored state
- Obligation: evaluated status of one category for one vehicle
- evaluate_vehicle: the rule evaluator
- ReminderScheduler: notification registration
- ComplianceState: "mark as done" and other mutations
"""

from .status import Basis, Classification, ReminderUrgency, Severity
from .config import DEFAULT_SETTINGS, Settings, load_settings
from .errors import (
    ComplianceError,
    DocumentNotFoundError,
    InvalidMileageError,
    NotAuthenticatedError,
    NotificationError,
    SettingsError,
    StoreError,
    UnknownCategoryError,
    VehicleNotFoundError,
)
from .service_definition import ALL_CATEGORIES, ServiceDefinition, get_definition
from .vehicle import VehicleRecord
from .document import ComplianceDocument
from .obligation import Obligation
from .calculations import calc_due_date, calc_due_mileage, days_between
from .evaluator import evaluate_fleet, evaluate_vehicle, summarize
from .store import DocumentStore, YamlDocumentStore
from .notifications import LocalNotificationService, NotificationService, ScheduledReminder
from .scheduler import ReminderScheduler, ScheduleReport
from .state import ComplianceState

__all__ = [
    "Basis",
    "Classification",
    "ReminderUrgency",
    "Severity",
    "DEFAULT_SETTINGS",
    "Settings",
    "load_settings",
    "ComplianceError",
    "DocumentNotFoundError",
    "InvalidMileageError",
    "NotAuthenticatedError",
    "NotificationError",
    "SettingsError",
    "StoreError",
    "UnknownCategoryError",
    "VehicleNotFoundError",
    "ALL_CATEGORIES",
    "ServiceDefinition",
    "get_definition",
    "VehicleRecord",
    "ComplianceDocument",
    "Obligation",
    "calc_due_date",
    "calc_due_mileage",
    "days_between",
    "evaluate_fleet",
    "evaluate_vehicle",
    "summarize",
    "DocumentStore",
    "YamlDocumentStore",
    "LocalNotificationService",
    "NotificationService",
    "ScheduledReminder",
    "ReminderScheduler",
    "ScheduleReport",
    "ComplianceState",
]
