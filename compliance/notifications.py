"""
Notification service interface and a local, in-process implementation.

LocalNotificationService keeps scheduled reminders in memory and can mirror
them to a YAML outbox file so pending reminders survive between runs.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import yaml

from .calculations import to_datetime
from .errors import NotificationError

logger = logging.getLogger(__name__)

IMMEDIATE = "immediate"
AT = "at"
DAILY = "daily"


class NotificationService:
    """Async interface to an OS-level notification service."""

    async def permission_granted(self) -> bool:
        raise NotImplementedError

    async def cancel_all(self, owner_id: str) -> None:
        raise NotImplementedError

    async def schedule_immediate(self, title: str, body: str, payload: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    async def schedule_at(self, title: str, body: str, payload: Dict[str, Any], when: datetime) -> Optional[str]:
        """Schedule for a point in time. Returns None if `when` is not in the future."""
        raise NotImplementedError

    async def schedule_daily_repeating(
        self, title: str, body: str, payload: Dict[str, Any], time_of_day: time
    ) -> Optional[str]:
        raise NotImplementedError

    async def list_scheduled(self, owner_id: str) -> List["ScheduledReminder"]:
        raise NotImplementedError


@dataclass
class ScheduledReminder:
    """A registered reminder."""

    reminder_id: str
    owner_id: Optional[str]
    kind: str
    title: str
    body: str
    payload: Dict[str, Any] = field(default_factory=dict)
    when: Optional[datetime] = None
    time_of_day: Optional[time] = None

    @property
    def trigger(self) -> str:
        """Human-readable trigger description."""
        if self.kind == AT and self.when is not None:
            return self.when.isoformat(sep=" ", timespec="minutes")
        if self.kind == DAILY and self.time_of_day is not None:
            return f"daily at {self.time_of_day.strftime('%H:%M')}"
        return "now"

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.reminder_id,
            "ownerId": self.owner_id,
            "kind": self.kind,
            "title": self.title,
            "body": self.body,
            "payload": self.payload,
        }
        if self.when is not None:
            d["when"] = self.when.isoformat()
        if self.time_of_day is not None:
            d["timeOfDay"] = self.time_of_day.strftime("%H:%M")
        return d

    @classmethod
    def from_dict(cls, dct: Dict[str, Any]) -> "ScheduledReminder":
        when = to_datetime(dct.get("when"))
        time_of_day = dct.get("timeOfDay")
        if time_of_day:
            hour, minute = str(time_of_day).split(":")
            time_of_day = time(int(hour), int(minute))
        return cls(
            dct["id"],
            dct.get("ownerId"),
            dct["kind"],
            dct.get("title", ""),
            dct.get("body", ""),
            dct.get("payload") or {},
            when,
            time_of_day or None,
        )


class LocalNotificationService(NotificationService):
    """
    In-process notification service.

    Reminders are grouped by the `ownerId` carried in their payload so that
    cancel_all only touches one owner's reminders.

    Args:
        permission: Whether the user granted notification permission.
        outbox: Optional YAML file mirroring the pending reminders.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        permission: bool = True,
        outbox: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.permission = permission
        self.outbox = Path(outbox) if outbox else None
        self.clock = clock
        self.reminders: List[ScheduledReminder] = self._load_outbox()

    def _load_outbox(self) -> List[ScheduledReminder]:
        if self.outbox is None or not self.outbox.exists():
            return []
        try:
            with open(self.outbox, "r", encoding="utf-8") as fp:
                data = yaml.load(fp, Loader=yaml.SafeLoader) or {}
            return [ScheduledReminder.from_dict(d) for d in data.get("reminders") or []]
        except (OSError, yaml.YAMLError, KeyError, ValueError) as e:
            raise NotificationError(f"Cannot read outbox {self.outbox}: {e}") from e

    def _save_outbox(self) -> None:
        if self.outbox is None:
            return
        try:
            with open(self.outbox, "w", encoding="utf-8") as fp:
                yaml.dump(
                    {"reminders": [r.to_dict() for r in self.reminders]},
                    fp,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                    width=120,
                )
        except (OSError, yaml.YAMLError) as e:
            raise NotificationError(f"Cannot write outbox {self.outbox}: {e}") from e

    def _add(self, reminder: ScheduledReminder) -> str:
        self.reminders.append(reminder)
        self._save_outbox()
        logger.debug("Registered %s reminder %s: %s", reminder.kind, reminder.reminder_id, reminder.title)
        return reminder.reminder_id

    @staticmethod
    def _new(kind: str, title: str, body: str, payload: Dict[str, Any], **kwargs) -> ScheduledReminder:
        return ScheduledReminder(
            reminder_id=uuid.uuid4().hex,
            owner_id=payload.get("ownerId"),
            kind=kind,
            title=title,
            body=body,
            payload=dict(payload),
            **kwargs,
        )

    async def permission_granted(self) -> bool:
        return self.permission

    async def cancel_all(self, owner_id: str) -> None:
        before = len(self.reminders)
        self.reminders = [r for r in self.reminders if r.owner_id != owner_id]
        self._save_outbox()
        logger.debug("Cancelled %d reminder(s) for %s", before - len(self.reminders), owner_id)

    async def schedule_immediate(self, title: str, body: str, payload: Dict[str, Any]) -> Optional[str]:
        return self._add(self._new(IMMEDIATE, title, body, payload, when=self.clock()))

    async def schedule_at(self, title: str, body: str, payload: Dict[str, Any], when: datetime) -> Optional[str]:
        if when <= self.clock():
            logger.debug("Not scheduling '%s': %s is not in the future", title, when)
            return None
        return self._add(self._new(AT, title, body, payload, when=when))

    async def schedule_daily_repeating(
        self, title: str, body: str, payload: Dict[str, Any], time_of_day: time
    ) -> Optional[str]:
        return self._add(self._new(DAILY, title, body, payload, time_of_day=time_of_day))

    async def list_scheduled(self, owner_id: str) -> List[ScheduledReminder]:
        return [r for r in self.reminders if r.owner_id == owner_id]
