"""Request-scoped records shared by the chat pipeline and the booking flow."""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ChatMessage:
    """Canonical message shape handed to generation."""

    role: str  # user | assistant
    content: str


@dataclass
class Passage:
    """A stored passage as returned by the document store."""

    text: str
    vector: List[float] = field(default_factory=list)
    similarity: Optional[float] = None  # None when the store reports no score
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LeadData:
    """Contact details collected by the booking flow."""

    email: str = ""
    name: str = ""
    title: str = ""
    date: Optional[str] = None  # ISO date, e.g. 2025-03-04
    time: Optional[str] = None  # slot label, e.g. "9:30 am"
    timezone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FrozenLead:
    """Immutable copy of a lead taken at confirmation."""

    email: str
    name: str
    title: str
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None

    @classmethod
    def from_lead(cls, lead: LeadData) -> "FrozenLead":
        return cls(**lead.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
