from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from app.booking import TIME_SLOTS, TIMEZONES, available_dates
from app.config import Settings, get_settings
from app.errors import (
    ChatPipelineError,
    InvalidRequestError,
    LeadValidationError,
    ResponseAdapterError,
)
from app.intent_helpers import is_booking_intent
from app.leads import LeadService, LeadStore, open_lead_store
from app.logging import json_logger_middleware
from app.rag_chain import Providers, RAGService, build_providers
from app.streaming import select_emitter

from api.models import (
    ErrorEnvelope,
    IntentRequest,
    IntentResponse,
    LeadList,
    LeadOut,
    LeadResponse,
    SlotsResponse,
    TimezoneOption,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Collaborators live for the whole process and are torn down on shutdown
    settings = get_settings()
    providers = build_providers(settings)
    app.state.providers = providers
    try:
        app.state.lead_store = open_lead_store(settings.LEADS_DB_PATH)
    except (sqlite3.Error, OSError) as e:
        logger.error("opening lead store failed: %s", e)
        app.state.lead_store = None
    try:
        yield
    finally:
        providers.close()
        app.state.providers = None
        app.state.lead_store = None


_settings = get_settings()
app = FastAPI(title=_settings.APP_NAME, version=_settings.APP_VERSION, lifespan=lifespan)

# CORS (wide-open by default; tighten in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(json_logger_middleware())


# ------------ Dependencies ------------


def get_providers(request: Request) -> Providers:
    providers = getattr(request.app.state, "providers", None)
    if providers is None:
        raise ChatPipelineError("Service not initialised")
    return providers


def get_rag_service(
    settings: Settings = Depends(get_settings),
    providers: Providers = Depends(get_providers),
) -> RAGService:
    models = settings.model_priority()
    if not models:
        raise ChatPipelineError("No generation models configured")
    return RAGService.from_settings(settings, providers)


def get_lead_store(request: Request) -> Optional[LeadStore]:
    return getattr(request.app.state, "lead_store", None)


def get_lead_service(
    settings: Settings = Depends(get_settings),
    store: Optional[LeadStore] = Depends(get_lead_store),
) -> LeadService:
    return LeadService(
        store,
        default_timezone=settings.DEFAULT_TIMEZONE,
        list_limit=settings.LEADS_LIST_LIMIT,
    )


async def _json_body(request: Request, error_cls=InvalidRequestError):
    try:
        return await request.json()
    except ValueError as e:
        raise error_cls("Invalid JSON body", details=str(e)) from e


# ------------ Routes ------------


@app.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict:
    return {"ok": True, "service": settings.APP_NAME, "version": settings.APP_VERSION}


@app.post("/api/chat")
async def chat(
    request: Request,
    service: RAGService = Depends(get_rag_service),
    settings: Settings = Depends(get_settings),
):
    payload = await _json_body(request)
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    turn = await run_in_threadpool(service.answer, payload.get("messages"))
    try:
        emitter = select_emitter(turn.stream, settings.stream_protocols())
    except ResponseAdapterError:
        turn.stream.close()
        raise

    for key, value in turn.trace.items():
        setattr(request.state, key, value)
    request.state.emitter = emitter.name
    return emitter.response(turn.stream)


@app.post("/api/leads", response_model=LeadResponse)
async def create_lead(request: Request, leads: LeadService = Depends(get_lead_service)):
    payload = await _json_body(request, LeadValidationError)
    lead, duplicate = await run_in_threadpool(leads.submit, payload)
    return LeadResponse(lead=LeadOut(**lead), duplicate=duplicate)


@app.get("/api/leads", response_model=LeadList)
def list_leads(leads: LeadService = Depends(get_lead_service)):
    return LeadList(leads=[LeadOut(**lead) for lead in leads.list()])


@app.get("/api/booking/slots", response_model=SlotsResponse)
def booking_slots(settings: Settings = Depends(get_settings)):
    days = available_dates(date.today(), settings.BOOKING_WINDOW_DAYS)
    return SlotsResponse(
        dates=[d.isoformat() for d in days],
        times=list(TIME_SLOTS),
        timezones=[TimezoneOption(**tz) for tz in TIMEZONES],
        default_timezone=settings.DEFAULT_TIMEZONE,
    )


@app.post("/api/booking/intent", response_model=IntentResponse)
def booking_intent(payload: IntentRequest):
    return IntentResponse(booking=is_booking_intent(payload.text))


@app.get("/")
def root():
    return {"message": "Chat API. See /health, POST /api/chat, POST/GET /api/leads"}


# ------------ Exception Handlers ------------


def _envelope(error: str, details=None) -> dict:
    return ErrorEnvelope(error=error, details=details).model_dump(exclude_none=True)


@app.exception_handler(ChatPipelineError)
async def pipeline_exception_handler(request: Request, exc: ChatPipelineError):
    log = logger.warning if exc.status_code < 500 else logger.error
    log("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=_envelope(exc.message, exc.details))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(str(exc.detail or "HTTP error")),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [err.get("msg") for err in exc.errors()]
    return JSONResponse(status_code=400, content=_envelope("Invalid request", details))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content=_envelope("Unexpected server error"))
