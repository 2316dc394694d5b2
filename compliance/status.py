"""Classification and severity enums for obligations and reminders."""

from enum import Enum


class Classification(Enum):
    """Obligation classification. Lower value = more urgent."""

    OVERDUE = 1
    DUE_SOON = 2
    CURRENT = 3


class Severity(Enum):
    """Obligation severity. Lower value = more urgent."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class Basis(Enum):
    """What an obligation is measured against."""

    MILEAGE = "mileage"
    DATE = "date"


class ReminderUrgency(Enum):
    """
    Urgency marker for document reminders, keyed by days before expiry.

    Independent of Severity: it only depends on which look-ahead bucket
    a reminder belongs to.
    """

    IMMEDIATE = (1, "\U0001F6A8")
    HIGH = (3, "⚠️")
    ELEVATED = (7, "⏰")
    NOTICE = (14, "\U0001F4C5")
    INFO = (30, "\U0001F4CB")

    def __init__(self, max_days: int, marker: str):
        self.max_days = max_days
        self.marker = marker

    @classmethod
    def for_days(cls, days: int) -> "ReminderUrgency":
        """Pick the urgency bucket for a reminder sent `days` before expiry."""
        for urgency in cls:
            if days <= urgency.max_days:
                return urgency
        return cls.INFO
