import io

from app.config import Settings
from app.console import ConsoleSession, _pick
from app.leads import LeadService, LeadStore
from app.rag_chain import RAGService
from app.retriever import Retriever

from conftest import FakeChat, FakeEmbedder, FakeStore, passages


def _session(tmp_path, answers, chat=None, store=True):
    settings = Settings(LEADS_DB_PATH=str(tmp_path / "leads.sqlite3"))
    service = RAGService(
        Retriever(FakeEmbedder(), FakeStore(passages(("RapidClaims cuts denials.", 0.9)))),
        chat or FakeChat({"m1": ["Hi", "!"]}),
        ["m1"],
    )
    lead_store = LeadStore(settings.LEADS_DB_PATH) if store else None
    leads = LeadService(lead_store, default_timezone=settings.DEFAULT_TIMEZONE)
    feed = iter(answers)
    out = io.StringIO()
    session = ConsoleSession(service, leads, settings=settings, ask=lambda _prompt: next(feed), out=out)
    return session, leads, out


def test_pick_accepts_index_or_text():
    opts = ["9:00 am", "9:30 am"]
    assert _pick(opts, "2") == "9:30 am"
    assert _pick(opts, "9:00 AM") == "9:00 am"
    assert _pick(opts, "7") is None


def test_chat_streams_answer_and_records_history(tmp_path):
    session, _, out = _session(tmp_path, [])
    assert session.chat("What is RapidClaims?") == "Hi!"
    assert "Hi!" in out.getvalue()
    assert [m["role"] for m in session.history] == ["user", "assistant"]


def test_chat_error_is_reported_and_history_rolled_back(tmp_path):
    session, _, out = _session(tmp_path, [], chat=FakeChat({"m1": RuntimeError("down")}))
    assert session.chat("hello") == ""
    assert "[error] All models failed" in out.getvalue()
    assert session.history == []


def test_booking_flow_saves_lead(tmp_path):
    # date 1 = tomorrow, time 2 = 9:30 am, blank timezone = default
    session, leads, out = _session(tmp_path, ["1", "2", ""])
    session.handle("Can I book a demo?")
    assert session.booking is not None
    for line in ["ada@example.com", "Ada Lovelace", "CTO", ""]:
        session.handle(line)
    assert "Ada Lovelace (CTO) <ada@example.com>" in out.getvalue()
    assert "9:30 am Eastern Time" in out.getvalue()

    session.handle("confirm")
    assert session.booking is None
    assert "Meeting details have been sent to ada@example.com" in out.getvalue()
    saved = leads.list()
    assert len(saved) == 1
    assert saved[0]["time"] == "9:30 am"
    assert saved[0]["timezone"] == "America/New_York"


def test_booking_confirm_failure_keeps_flow_open(tmp_path):
    session, _, out = _session(tmp_path, ["1", "1", ""], store=False)
    session.handle("I want to schedule a meeting")
    for line in ["ada@example.com", "Ada", "CTO", ""]:
        session.handle(line)
    session.handle("yes")
    assert session.booking is not None
    assert "couldn't save your booking" in out.getvalue()


def test_booking_cancel_returns_to_chat(tmp_path):
    session, _, _ = _session(tmp_path, [])
    session.handle("book a call please")
    session.handle("ada@example.com")
    session.handle("cancel")
    assert session.booking is None
    assert session.chat("hi") == "Hi!"
