"""
Centralized intent detection helpers for the booking flow.
"""

from __future__ import annotations

import re

# ---------------------------
# Regex patterns
# ---------------------------

_BOOKING_RX = re.compile(
    r"\b(?:book(?:ing)?|schedul(?:e|ing)|set up|arrange|request)\b.{0,30}\b(?:demo|call|meeting|consultation|appointment|chat)\b"
    r"|\b(?:talk|speak) (?:to|with) (?:sales|someone|a human|an expert|your team)\b"
    r"|\b(?:get|see|want) a demo\b"
    r"|\bcontact (?:sales|me)\b"
    r"|\b(?:meeting|appointment|demo)s?\b",
    re.IGNORECASE,
)

_BACK_RX = re.compile(r"^(?:back|go back|previous|prev)\.?$", re.IGNORECASE)

_CANCEL_RX = re.compile(
    r"^(?:cancel|stop|quit|exit|never ?mind|no thanks?)\.?$",
    re.IGNORECASE,
)

_ACK_RX = re.compile(
    r"^(?:yes(?: please)?|yeah|yep|ok(?:ay)?|sure|confirm|go ahead|sounds good|done)\.?$",
    re.IGNORECASE,
)

# ---------------------------
# Public helpers
# ---------------------------


def is_booking_intent(text: str) -> bool:
    return bool(_BOOKING_RX.search((text or "").strip()))


def _is_back_command(text: str) -> bool:
    return bool(_BACK_RX.match((text or "").strip()))


def _is_cancel_command(text: str) -> bool:
    return bool(_CANCEL_RX.match((text or "").strip()))


def _is_acknowledgement(text: str) -> bool:
    return bool(_ACK_RX.match((text or "").strip()))
