import json

import pytest

from app.errors import ResponseAdapterError
from app.rag_chain import GenerationStream
from app.streaming import DataStreamEmitter, TextStreamEmitter, select_emitter


def make_stream(tokens, fail_with=None, model_id="m1"):
    def gen():
        for t in tokens[1:]:
            yield t
        if fail_with:
            raise fail_with

    return GenerationStream(model_id, gen(), tokens[0])


class TextOnly:
    def tokens(self):
        return iter(["plain"])


def test_data_emitter_preferred_by_default():
    assert select_emitter(make_stream(["a"]), ["data", "text"]).name == "data"


def test_falls_back_to_text_when_stream_lacks_data_members():
    assert select_emitter(TextOnly(), ["data", "text"]).name == "text"


def test_unknown_protocol_names_are_skipped():
    assert select_emitter(make_stream(["a"]), ["sse", "text"]).name == "text"


def test_no_matching_emitter_lists_members():
    class Opaque:
        model_id = "m"

        def read(self):
            return ""

    with pytest.raises(ResponseAdapterError) as exc:
        select_emitter(Opaque(), ["data", "text"])
    assert exc.value.status_code == 500
    assert exc.value.details["available_members"] == ["model_id", "read"]


def test_data_stream_parts():
    lines = list(DataStreamEmitter().body(make_stream(["Hel", "lo"])))
    assert lines[0].startswith("f:")
    assert lines[1:3] == ['0:"Hel"\n', '0:"lo"\n']
    finish = json.loads(lines[-1][2:])
    assert lines[-1].startswith("d:")
    assert finish["finishReason"] == "stop"
    assert lines[-2].startswith("e:")


def test_data_stream_reports_mid_stream_error():
    lines = list(DataStreamEmitter().body(make_stream(["a", "b"], RuntimeError("reset"))))
    assert '3:"reset"\n' in lines
    assert json.loads(lines[-1][2:])["finishReason"] == "error"


def test_text_stream_concatenates_tokens():
    body = "".join(TextStreamEmitter().body(make_stream(["Hel", "lo", " there"])))
    assert body == "Hello there"


def test_body_closes_stream_when_client_goes_away():
    closed = []

    def gen():
        try:
            yield "a"
            yield "b"
        finally:
            closed.append(True)

    it = gen()
    stream = GenerationStream("m1", it, next(it))
    body = DataStreamEmitter().body(stream)
    next(body)  # start part
    next(body)  # first token
    body.close()
    assert closed == [True]


def test_response_headers():
    resp = DataStreamEmitter().response(make_stream(["a"]))
    assert resp.headers["x-vercel-ai-data-stream"] == "v1"
    assert resp.headers["x-model-id"] == "m1"
    assert TextStreamEmitter().response(make_stream(["a"])).media_type.startswith("text/plain")
