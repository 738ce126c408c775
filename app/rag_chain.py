"""
RAG chain for the chat endpoint.

Flow per request (strictly sequential):
    normalise messages -> retrieve context -> build system prompt
    -> start a stream on the first model that accepts it

Public entry point:
- RAGService.answer(raw_messages) -> ChatTurn   # holds a live GenerationStream
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

import app.prompts as prompts
from app.config import ModelSpec, Settings
from app.errors import ModelsExhaustedError
from app.messages import prepare_history
from app.retriever import (
    DocumentStore,
    EmbeddingProvider,
    FaissDocumentStore,
    OpenAIEmbeddingProvider,
    RetrievalResult,
    Retriever,
)
from app.state import ChatMessage

logger = logging.getLogger(__name__)


class ChatProvider(Protocol):
    def start_stream(
        self, model_id: str, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> Iterator[Any]: ...


def _openai_kwargs(settings: Settings) -> Dict[str, Any]:
    kw: Dict[str, Any] = {}
    base = os.getenv("OPENAI_BASE_URL", "").strip()
    if base:
        kw["base_url"] = base
    if settings.OPENAI_API_KEY:
        kw["api_key"] = settings.OPENAI_API_KEY
    return kw


def to_langchain_messages(system_prompt: str, messages: Sequence[ChatMessage]) -> List[BaseMessage]:
    out: List[BaseMessage] = [SystemMessage(content=system_prompt)]
    for m in messages:
        if m.role == "assistant":
            out.append(AIMessage(content=m.content))
        else:
            out.append(HumanMessage(content=m.content))
    return out


class OpenAIChatProvider:
    """Streams chat completions through LangChain's ChatOpenAI, one client per model id."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: Dict[str, ChatOpenAI] = {}

    def _llm(self, model_id: str) -> ChatOpenAI:
        llm = self._clients.get(model_id)
        if llm is None:
            llm = ChatOpenAI(
                model=model_id,
                temperature=float(self._settings.LLM_TEMPERATURE),
                max_tokens=int(self._settings.MAX_TOKENS),
                **_openai_kwargs(self._settings),
            )
            self._clients[model_id] = llm
        return llm

    def start_stream(
        self, model_id: str, system_prompt: str, messages: Sequence[ChatMessage]
    ) -> Iterator[Any]:
        return self._llm(model_id).stream(to_langchain_messages(system_prompt, messages))

    def close(self) -> None:
        self._clients.clear()


def _chunk_text(chunk: Any) -> str:
    if chunk is None:
        return ""
    if isinstance(chunk, str):
        return chunk
    content = getattr(chunk, "content", chunk)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        bits = []
        for part in content:
            if isinstance(part, str):
                bits.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                bits.append(str(part.get("text") or ""))
        return "".join(bits)
    return ""


class GenerationStream:
    """A started model stream. Consumable once; close() releases the provider stream."""

    def __init__(
        self,
        model_id: str,
        iterator: Iterator[Any],
        first_chunk: Any,
        attempted: Optional[List[str]] = None,
    ) -> None:
        self.model_id = model_id
        self.attempted = list(attempted or [model_id])
        self.status = "streaming"
        self.error: Optional[BaseException] = None
        self._iterator = iterator
        self._first = first_chunk
        self._consumed = False
        self._closed = False

    def tokens(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("generation stream already consumed")
        self._consumed = True
        return self._iter_tokens()

    def _iter_tokens(self) -> Iterator[str]:
        try:
            text = _chunk_text(self._first)
            self._first = None
            if text:
                yield text
            for chunk in self._iterator:
                text = _chunk_text(chunk)
                if text:
                    yield text
        except Exception as e:
            self.status = "error"
            self.error = e
            logger.error("generation stream from %s failed mid-way: %s", self.model_id, e)
            return
        finally:
            self.close()
        self.status = "success"

    def close(self) -> None:
        if self._closed:
            return
        close = getattr(self._iterator, "close", None)
        if callable(close):
            try:
                close()
            except Exception as e:
                # generator busy in another thread; stays open for a later close()
                logger.debug("closing stream for %s raised: %s", self.model_id, e)
                return
        self._closed = True


def _release(iterator: Optional[Iterator[Any]]) -> None:
    close = getattr(iterator, "close", None)
    if callable(close):
        close()


def start_generation(
    provider: ChatProvider,
    models: Sequence[Union[ModelSpec, str]],
    system_prompt: str,
    messages: Sequence[ChatMessage],
) -> GenerationStream:
    """Try each model in priority order; the first one that yields a chunk wins."""
    attempted: List[str] = []
    last_error: Optional[BaseException] = None
    for spec in models:
        model_id = spec.model_id if isinstance(spec, ModelSpec) else str(spec)
        attempted.append(model_id)
        iterator: Optional[Iterator[Any]] = None
        try:
            iterator = iter(provider.start_stream(model_id, system_prompt, messages))
            first = next(iterator)
        except StopIteration:
            last_error = RuntimeError(f"{model_id} returned an empty stream")
            logger.warning("generation: %s", last_error)
            _release(iterator)
            continue
        except Exception as e:
            last_error = e
            logger.warning("generation: model %s failed to start: %s", model_id, e)
            _release(iterator)
            continue
        logger.info("generation: using model %s (attempted %s)", model_id, attempted)
        return GenerationStream(model_id, iterator, first, attempted)

    logger.error("generation: all models failed (%s)", ", ".join(attempted))
    raise ModelsExhaustedError(attempted, last_error)


@dataclass
class Providers:
    """External collaborators, built once per process."""

    embedder: EmbeddingProvider
    store: DocumentStore
    chat: ChatProvider

    def close(self) -> None:
        for part in (self.chat, self.store):
            close = getattr(part, "close", None)
            if callable(close):
                close()


def build_providers(settings: Settings) -> Providers:
    embedder = OpenAIEmbeddingProvider(settings)
    store = FaissDocumentStore(settings.VECTOR_INDEX_PATH, embedder.embeddings)
    return Providers(embedder=embedder, store=store, chat=OpenAIChatProvider(settings))


@dataclass
class ChatTurn:
    history: List[ChatMessage]
    retrieval: RetrievalResult
    system_prompt: str
    stream: GenerationStream
    trace: Dict[str, Any] = field(default_factory=dict)


class RAGService:
    """High-level service that encapsulates retrieval + prompting + model fallback."""

    def __init__(
        self,
        retriever: Retriever,
        chat: ChatProvider,
        models: Sequence[Union[ModelSpec, str]],
        *,
        strict: bool = False,
        topic: str = "our products",
    ) -> None:
        if not models:
            raise ValueError("at least one generation model must be configured")
        self.retriever = retriever
        self.chat = chat
        self.models = list(models)
        self.strict = strict
        self.topic = topic

    @classmethod
    def from_settings(cls, settings: Settings, providers: Providers) -> "RAGService":
        retriever = Retriever(
            providers.embedder,
            providers.store,
            limit=settings.RETRIEVAL_LIMIT,
            min_similarity=settings.MIN_SIMILARITY,
        )
        return cls(
            retriever,
            providers.chat,
            settings.model_priority(),
            strict=settings.strict_mode,
            topic=settings.ASSISTANT_TOPIC,
        )

    def answer(self, raw_messages: Any) -> ChatTurn:
        history = prepare_history(raw_messages)
        retrieval = self.retriever.retrieve(history[-1].content)
        system_prompt = prompts.build_system_prompt(
            retrieval.context, strict=self.strict, topic=self.topic
        )
        stream = start_generation(self.chat, self.models, system_prompt, history)
        trace = {
            "context_chars": len(retrieval.context),
            "passages_used": len(retrieval.passages),
            "model_id": stream.model_id,
            "attempted_models": stream.attempted,
        }
        return ChatTurn(history, retrieval, system_prompt, stream, trace)
