from __future__ import annotations
from typing import Any, List, Optional
from pydantic import BaseModel


class LeadOut(BaseModel):
    id: str
    email: str
    name: str
    title: str
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: str
    created_at: str
    status: str = "pending"
    source: str = "chatbot"


class LeadResponse(BaseModel):
    success: bool = True
    lead: LeadOut
    duplicate: bool = False
    message: str = "Lead saved successfully. Calendar invite will be sent shortly."


class LeadList(BaseModel):
    leads: List[LeadOut]


class IntentRequest(BaseModel):
    text: str = ""


class IntentResponse(BaseModel):
    booking: bool


class TimezoneOption(BaseModel):
    value: str
    label: str


class SlotsResponse(BaseModel):
    dates: List[str]
    times: List[str]
    timezones: List[TimezoneOption]
    default_timezone: str


class ErrorEnvelope(BaseModel):
    error: str
    details: Optional[Any] = None
