import pytest

from app.errors import InvalidRequestError
from app.messages import extract_content, normalize_message, prepare_history


def test_flat_content_field():
    m = normalize_message({"id": "1", "role": "user", "content": "What is RapidClaims?"})
    assert m.role == "user"
    assert m.content == "What is RapidClaims?"


def test_flat_fields_priority_order():
    assert extract_content({"content": "a", "text": "b", "message": "c"}) == "a"
    assert extract_content({"content": "", "text": "b", "message": "c"}) == "b"
    assert extract_content({"message": "c"}) == "c"


def test_parts_first_non_empty_text_fragment():
    raw = {
        "role": "user",
        "parts": [
            {"type": "step-start"},
            {"type": "text", "text": ""},
            {"type": "text", "text": "hello"},
            {"type": "text", "text": "ignored"},
        ],
    }
    assert normalize_message(raw).content == "hello"


def test_parts_without_text_fragment_yield_empty_content():
    """A parts array wins over flat fields even when it carries no text."""
    raw = {"role": "user", "content": "fallback", "parts": [{"type": "image", "url": "x"}]}
    assert extract_content(raw) == ""


def test_missing_role_defaults_to_user():
    assert normalize_message({"content": "hi"}).role == "user"
    assert normalize_message({"role": "assistant", "content": "hi"}).role == "assistant"


def test_non_string_content_is_empty():
    assert extract_content({"content": 42}) == ""
    assert extract_content("not a dict") == ""


@pytest.mark.parametrize("raw", [None, [], {}, "hello"])
def test_prepare_history_rejects_missing_or_empty_list(raw):
    with pytest.raises(InvalidRequestError) as exc:
        prepare_history(raw)
    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid or empty messages array"


def test_prepare_history_rejects_latest_without_text():
    raw = [{"role": "user", "parts": [{"type": "file", "data": "..."}], "id": "m1"}]
    with pytest.raises(InvalidRequestError) as exc:
        prepare_history(raw)
    assert exc.value.message == "No valid message content found"
    assert exc.value.details == {"available_properties": ["id", "parts", "role"]}


def test_prepare_history_rejects_whitespace_latest():
    with pytest.raises(InvalidRequestError):
        prepare_history([{"role": "user", "content": "   "}])


def test_prepare_history_drops_empty_earlier_messages():
    raw = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "parts": []},
        {"role": "assistant", "text": "answer"},
        {"role": "user", "parts": [{"type": "text", "text": "second"}]},
    ]
    history = prepare_history(raw)
    assert [(m.role, m.content) for m in history] == [
        ("user", "first"),
        ("assistant", "answer"),
        ("user", "second"),
    ]
