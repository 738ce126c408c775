"""
Booking lead-capture flow.

Steps run strictly forward: email -> name -> title -> calendar -> confirm -> done.
Every step after `email` (and before `done`) can go back exactly one step.
Each step only writes its own LeadData field; guards raise BookingError and
leave the flow untouched.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from app.config import BOOKING_WINDOW_DAYS, DEFAULT_TIMEZONE
from app.state import FrozenLead, LeadData

logger = logging.getLogger(__name__)


class BookingStep(str, Enum):
    EMAIL = "email"
    NAME = "name"
    TITLE = "title"
    CALENDAR = "calendar"
    CONFIRM = "confirm"
    DONE = "done"
    CANCELLED = "cancelled"


_FORWARD = [
    BookingStep.EMAIL,
    BookingStep.NAME,
    BookingStep.TITLE,
    BookingStep.CALENDAR,
    BookingStep.CONFIRM,
    BookingStep.DONE,
]
TERMINAL = {BookingStep.DONE, BookingStep.CANCELLED}

# Business-hours grid, half-hour slots
TIME_SLOTS = [
    "9:00 am", "9:30 am", "10:00 am", "10:30 am",
    "11:00 am", "11:30 am", "12:00 pm", "12:30 pm",
    "1:00 pm", "1:30 pm", "2:00 pm", "2:30 pm",
    "3:00 pm", "3:30 pm", "4:00 pm", "4:30 pm",
]

TIMEZONES = [
    {"value": "America/New_York", "label": "Eastern Time"},
    {"value": "America/Chicago", "label": "Central Time"},
    {"value": "America/Denver", "label": "Mountain Time"},
    {"value": "America/Los_Angeles", "label": "Pacific Time"},
    {"value": "Asia/Calcutta", "label": "India Standard Time"},
]
TIMEZONE_VALUES = {tz["value"] for tz in TIMEZONES}

PROMPTS = {
    BookingStep.EMAIL: "We may have just a few questions. First, what's your email address?",
    BookingStep.NAME: "What is your name?",
    BookingStep.TITLE: "Last question, what is your title?",
    BookingStep.CALENDAR: "Pick a date and time for a 15 minute call.",
    BookingStep.CONFIRM: "Please confirm your meeting details.",
    BookingStep.DONE: "Your meeting was scheduled.",
    BookingStep.CANCELLED: "Booking cancelled.",
}


class BookingError(ValueError):
    """A transition was refused; the flow state is unchanged."""


def available_dates(today: Optional[date] = None, window_days: int = BOOKING_WINDOW_DAYS) -> List[date]:
    """The next `window_days` days, excluding today."""
    start = today or date.today()
    return [start + timedelta(days=i) for i in range(1, int(window_days) + 1)]


def _as_date(value: Union[date, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise BookingError(f"invalid date: {value!r}") from e


def describe_slot(lead: Union[LeadData, FrozenLead]) -> str:
    """e.g. '9:30 am Eastern Time, Tuesday, March 4, 2025'."""
    if not (lead.date and lead.time):
        return ""
    d = _as_date(lead.date)
    tz = lead.timezone or DEFAULT_TIMEZONE
    label = next((t["label"] for t in TIMEZONES if t["value"] == tz), tz)
    return f"{lead.time} {label}, {d.strftime('%A')}, {d.strftime('%B')} {d.day}, {d.year}"


class BookingFlow:
    """Single-user booking state machine."""

    def __init__(
        self,
        *,
        on_complete: Optional[Callable[[FrozenLead], Any]] = None,
        clock: Optional[Callable[[], date]] = None,
        window_days: int = BOOKING_WINDOW_DAYS,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.step = BookingStep.EMAIL
        self.lead = LeadData()
        self.submitted: Optional[FrozenLead] = None
        self.on_complete = on_complete
        self._clock = clock or date.today
        self.window_days = int(window_days)
        self.default_timezone = default_timezone

    # ---- helpers ---- #

    @property
    def is_active(self) -> bool:
        return self.step not in TERMINAL

    def prompt(self) -> str:
        return PROMPTS[self.step]

    def dates(self) -> List[date]:
        return available_dates(self._clock(), self.window_days)

    def _expect(self, step: BookingStep) -> None:
        if self.step != step:
            raise BookingError(f"expected step {step.value!r}, flow is at {self.step.value!r}")

    @staticmethod
    def _required(value: Optional[str], field: str) -> str:
        text = (value or "").strip()
        if not text:
            raise BookingError(f"{field} is required")
        return text

    def _advance(self) -> None:
        self.step = _FORWARD[_FORWARD.index(self.step) + 1]
        logger.debug("booking advanced to %s", self.step.value)

    # ---- transitions ---- #

    def submit_email(self, email: str) -> BookingStep:
        self._expect(BookingStep.EMAIL)
        self.lead.email = self._required(email, "email")
        self._advance()
        return self.step

    def submit_name(self, name: str) -> BookingStep:
        self._expect(BookingStep.NAME)
        self.lead.name = self._required(name, "name")
        self._advance()
        return self.step

    def submit_title(self, title: str) -> BookingStep:
        self._expect(BookingStep.TITLE)
        self.lead.title = self._required(title, "title")
        self._advance()
        return self.step

    def select_slot(
        self, day: Union[date, str, None], time: Optional[str], timezone: Optional[str] = None
    ) -> BookingStep:
        self._expect(BookingStep.CALENDAR)
        if not day or not (time or "").strip():
            raise BookingError("both a date and a time slot are required")
        chosen = _as_date(day)
        if chosen not in self.dates():
            raise BookingError(f"{chosen.isoformat()} is outside the booking window")
        slot = time.strip()
        if slot not in TIME_SLOTS:
            raise BookingError(f"unknown time slot: {slot!r}")
        tz = (timezone or "").strip() or self.default_timezone
        if tz not in TIMEZONE_VALUES and tz != self.default_timezone:
            raise BookingError(f"unsupported timezone: {tz!r}")

        self.lead.date = chosen.isoformat()
        self.lead.time = slot
        self.lead.timezone = tz
        self._advance()
        return self.step

    def back(self) -> BookingStep:
        if self.step in TERMINAL or self.step == BookingStep.EMAIL:
            raise BookingError(f"cannot go back from {self.step.value!r}")
        self.step = _FORWARD[_FORWARD.index(self.step) - 1]
        return self.step

    def cancel(self) -> BookingStep:
        if self.step in TERMINAL:
            raise BookingError(f"flow already finished ({self.step.value})")
        self.step = BookingStep.CANCELLED
        return self.step

    def confirm(self, submit: Callable[[FrozenLead], Any]) -> bool:
        """Submit the lead once. True moves to `done`; failures stay at `confirm`."""
        self._expect(BookingStep.CONFIRM)
        frozen = FrozenLead.from_lead(self.lead)
        try:
            result = submit(frozen)
        except Exception as e:
            logger.warning("lead submission failed: %s", e)
            return False
        if result is False:
            logger.warning("lead submission was rejected")
            return False

        self.submitted = frozen
        self._advance()
        if self.on_complete is not None:
            self.on_complete(frozen)
        return True

    def summary(self) -> Dict[str, Any]:
        data = self.lead.to_dict()
        data["step"] = self.step.value
        data["slot"] = describe_slot(self.lead)
        return data
