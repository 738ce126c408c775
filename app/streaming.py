"""Response emitters: turn a GenerationStream into the wire format a client expects.

The emitter is chosen once, when the stream opens, by walking the configured
protocol priority list and taking the first emitter whose required members
the stream exposes.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from app.errors import ResponseAdapterError

logger = logging.getLogger(__name__)


class ResponseEmitter:
    name = ""
    media_type = "text/plain; charset=utf-8"
    required_members: Tuple[str, ...] = ("tokens",)

    def supports(self, stream: Any) -> bool:
        return all(hasattr(stream, m) for m in self.required_members) and callable(
            getattr(stream, "tokens", None)
        )

    def headers(self, stream: Any) -> Dict[str, str]:
        h = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
        model_id = getattr(stream, "model_id", None)
        if model_id:
            h["x-model-id"] = str(model_id)
        return h

    def encode(self, stream: Any) -> Iterator[str]:  # pragma: no cover - abstract
        raise NotImplementedError

    def body(self, stream: Any) -> Iterator[str]:
        try:
            yield from self.encode(stream)
        finally:
            # client disconnects land here too
            close = getattr(stream, "close", None)
            if callable(close):
                close()

    def response(self, stream: Any) -> StreamingResponse:
        close = getattr(stream, "close", None)
        return StreamingResponse(
            self.body(stream),
            media_type=self.media_type,
            headers=self.headers(stream),
            background=BackgroundTask(close) if callable(close) else None,
        )


class TextStreamEmitter(ResponseEmitter):
    """Plain text: the token deltas concatenated."""

    name = "text"

    def encode(self, stream: Any) -> Iterator[str]:
        for token in stream.tokens():
            yield token


class DataStreamEmitter(ResponseEmitter):
    """AI SDK data stream protocol (one `<type>:<json>` part per line)."""

    name = "data"
    required_members = ("tokens", "model_id", "status")

    def headers(self, stream: Any) -> Dict[str, str]:
        h = super().headers(stream)
        h["x-vercel-ai-data-stream"] = "v1"
        return h

    @staticmethod
    def _part(code: str, value: Any) -> str:
        return f"{code}:{json.dumps(value, ensure_ascii=False)}\n"

    def encode(self, stream: Any) -> Iterator[str]:
        yield self._part("f", {"messageId": f"msg-{uuid.uuid4().hex}"})
        for token in stream.tokens():
            yield self._part("0", token)

        failed = getattr(stream, "status", "") == "error"
        if failed:
            err = getattr(stream, "error", None)
            yield self._part("3", str(err) if err else "generation failed")
        finish = {
            "finishReason": "error" if failed else "stop",
            "usage": {"promptTokens": 0, "completionTokens": 0},
        }
        yield self._part("e", {**finish, "isContinued": False})
        yield self._part("d", finish)


EMITTERS: Dict[str, ResponseEmitter] = {
    DataStreamEmitter.name: DataStreamEmitter(),
    TextStreamEmitter.name: TextStreamEmitter(),
}


def public_members(obj: Any) -> List[str]:
    return sorted(m for m in dir(obj) if not m.startswith("_"))


def select_emitter(stream: Any, protocols: Optional[Sequence[str]] = None) -> ResponseEmitter:
    order = list(protocols) if protocols else list(EMITTERS)
    for name in order:
        emitter = EMITTERS.get(name)
        if emitter is None:
            logger.debug("unknown stream protocol %r ignored", name)
            continue
        if emitter.supports(stream):
            logger.info("streaming with %s emitter", emitter.name)
            return emitter
    members = public_members(stream)
    logger.error("no response emitter for %s; members=%s", type(stream).__name__, members)
    raise ResponseAdapterError(
        "No supported stream response method",
        details={"tried": order, "available_members": members},
    )
