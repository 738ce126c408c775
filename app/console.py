"""
Terminal chat client.

Runs the chat pipeline in-process and streams answers to stdout. Booking
intent switches the session into the booking flow; chat is suspended until
the booking is done or cancelled.

Usage:
  python -m app.console
  python -m app.console --strict
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Callable, Dict, List, Optional, TextIO

from app.booking import TIME_SLOTS, TIMEZONES, BookingError, BookingFlow, BookingStep
from app.config import Settings, get_settings
from app.errors import ChatPipelineError
from app.intent_helpers import _is_acknowledgement, _is_back_command, _is_cancel_command, is_booking_intent
from app.leads import LeadService, open_lead_store
from app.logging import configure_logging
from app.rag_chain import RAGService, build_providers


def _pick(options: List[str], raw: str) -> Optional[str]:
    """Accept a 1-based index or the option text itself."""
    txt = (raw or "").strip()
    if txt.isdigit():
        idx = int(txt) - 1
        return options[idx] if 0 <= idx < len(options) else None
    return next((o for o in options if o.lower() == txt.lower()), None)


class ConsoleSession:
    """One user at the terminal: chat history plus an optional active booking."""

    def __init__(
        self,
        service: RAGService,
        leads: LeadService,
        *,
        settings: Settings,
        ask: Callable[[str], str] = input,
        out: TextIO = sys.stdout,
    ) -> None:
        self.service = service
        self.leads = leads
        self.settings = settings
        self.ask = ask
        self.out = out
        self.history: List[Dict[str, Any]] = []
        self.booking: Optional[BookingFlow] = None

    def say(self, text: str = "") -> None:
        print(text, file=self.out, flush=True)

    # ---- chat ---- #

    def chat(self, text: str) -> str:
        self.history.append({"role": "user", "content": text})
        try:
            turn = self.service.answer(self.history)
        except ChatPipelineError as e:
            self.history.pop()
            self.say(f"[error] {e.message}")
            return ""
        pieces: List[str] = []
        for token in turn.stream.tokens():
            pieces.append(token)
            print(token, end="", file=self.out, flush=True)
        self.say()
        answer = "".join(pieces)
        self.history.append({"role": "assistant", "content": answer})
        return answer

    # ---- booking ---- #

    def start_booking(self) -> None:
        self.booking = BookingFlow(
            on_complete=lambda lead: self.say(
                f"Your meeting was scheduled. Meeting details have been sent to {lead.email}."
            ),
            window_days=self.settings.BOOKING_WINDOW_DAYS,
            default_timezone=self.settings.DEFAULT_TIMEZONE,
        )
        self.say(self.booking.prompt())

    def _submit_lead(self, lead) -> Dict[str, Any]:
        stored, _duplicate = self.leads.submit(lead.to_dict())
        return stored

    def _calendar(self, flow: BookingFlow) -> None:
        dates = [d.isoformat() for d in flow.dates()]
        for i, d in enumerate(dates, 1):
            self.say(f"  {i}. {d}")
        day = _pick(dates, self.ask("Date: "))
        for i, t in enumerate(TIME_SLOTS, 1):
            self.say(f"  {i}. {t}")
        slot = _pick(TIME_SLOTS, self.ask("Time: "))
        zones = [tz["value"] for tz in TIMEZONES]
        for i, tz in enumerate(TIMEZONES, 1):
            self.say(f"  {i}. {tz['label']}")
        zone = _pick(zones, self.ask(f"Timezone [{flow.default_timezone}]: ")) or None
        flow.select_slot(day, slot, zone)

    def booking_turn(self, text: str) -> None:
        flow = self.booking
        if flow is None:
            return
        try:
            if _is_cancel_command(text):
                flow.cancel()
            elif _is_back_command(text):
                flow.back()
            elif flow.step == BookingStep.EMAIL:
                flow.submit_email(text)
            elif flow.step == BookingStep.NAME:
                flow.submit_name(text)
            elif flow.step == BookingStep.TITLE:
                flow.submit_title(text)
            elif flow.step == BookingStep.CALENDAR:
                self._calendar(flow)
            elif flow.step == BookingStep.CONFIRM and _is_acknowledgement(text):
                if not flow.confirm(self._submit_lead):
                    self.say("Sorry, we couldn't save your booking. Type 'confirm' to try again.")
        except BookingError as e:
            self.say(f"[!] {e}")

        if not flow.is_active:
            if flow.step == BookingStep.CANCELLED:
                self.say(flow.prompt())
            self.booking = None
            return
        if flow.step == BookingStep.CONFIRM:
            info = flow.summary()
            self.say(f"{info['name']} ({info['title']}) <{info['email']}>")
            self.say(info["slot"])
            self.say("Type 'confirm' to book, 'back' to change the time, or 'cancel'.")
        elif flow.step == BookingStep.CALENDAR:
            self.say(flow.prompt() + " Press enter to choose.")
        else:
            self.say(flow.prompt())

    def handle(self, text: str) -> None:
        if self.booking is not None:
            self.booking_turn(text)
        elif is_booking_intent(text):
            self.start_booking()
        else:
            self.chat(text)

    def run(self) -> None:
        self.say("Ask me anything (Ctrl-D to quit).")
        while True:
            try:
                line = self.ask("> ")
            except (EOFError, KeyboardInterrupt):
                self.say()
                return
            if not line.strip() and self.booking is None:
                continue
            self.handle(line)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Chat with the assistant from a terminal")
    parser.add_argument("--strict", action="store_true", help="answer from retrieved context only")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    settings = get_settings()
    if args.strict:
        settings = settings.model_copy(update={"PROMPT_MODE": "strict"})

    providers = build_providers(settings)
    try:
        service = RAGService.from_settings(settings, providers)
        leads = LeadService(
            open_lead_store(settings.LEADS_DB_PATH),
            default_timezone=settings.DEFAULT_TIMEZONE,
            list_limit=settings.LEADS_LIST_LIMIT,
        )
        ConsoleSession(service, leads, settings=settings).run()
    finally:
        providers.close()


if __name__ == "__main__":
    main()
