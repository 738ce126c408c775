"""Embedding provider, document store and the retrieval stage.

The retrieval stage turns the latest user message into a context string:
embed -> nearest-neighbour search -> similarity filter -> join. Embedding
failures are fatal for the request; anything the document store does wrong
degrades to an empty context.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from langchain_community.vectorstores import FAISS
from langchain_core.documents import Document
from langchain_openai import OpenAIEmbeddings

from app.config import Settings
from app.errors import DocumentStoreError, EmbeddingError
from app.state import Passage

logger = logging.getLogger(__name__)

# Field names a stored record may use for its text, in priority order
_TEXT_FIELDS = ("text", "content", "page_content")


class EmbeddingProvider(Protocol):
    def embed(self, text: str) -> List[float]: ...


class DocumentStore(Protocol):
    def search(self, vector: Sequence[float], limit: int) -> List[Passage]: ...

    def insert(self, passage: Passage) -> None: ...


def _emb(settings: Settings) -> OpenAIEmbeddings:
    base = (
        os.getenv("OPENAI_BASE_URL", "")
        or os.getenv("OPENAI_API_BASE", "")
        or "https://api.openai.com/v1"
    ).strip()
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    kw: Dict[str, Any] = {"model": settings.EMBED_MODEL, "base_url": base}
    if settings.OPENAI_API_KEY:
        kw["api_key"] = settings.OPENAI_API_KEY
    return OpenAIEmbeddings(**kw)


class OpenAIEmbeddingProvider:
    """embed(text) over LangChain's OpenAIEmbeddings."""

    def __init__(self, settings: Settings, embeddings: Optional[OpenAIEmbeddings] = None) -> None:
        self.embeddings = embeddings or _emb(settings)

    def embed(self, text: str) -> List[float]:
        return list(self.embeddings.embed_query(text))


class FaissDocumentStore:
    """Document store backed by a persisted FAISS index.

    Vectors are L2-normalised on the way in, so FAISS's squared L2 distance d
    maps to cosine similarity as 1 - d / 2.
    """

    def __init__(self, index_path: str, embeddings: Any) -> None:
        self.index_path = index_path
        self.embeddings = embeddings
        self._db: Optional[FAISS] = None
        if os.path.isdir(index_path):
            self._db = FAISS.load_local(
                index_path,
                embeddings,
                allow_dangerous_deserialization=True,
                normalize_L2=True,
            )
            logger.info("loaded FAISS index from %s", index_path)
        else:
            logger.warning("no FAISS index at %s; starting with an empty store", index_path)

    def search(self, vector: Sequence[float], limit: int) -> List[Passage]:
        if self._db is None:
            return []
        try:
            hits = self._db.similarity_search_with_score_by_vector(list(vector), k=int(limit))
        except Exception as e:
            raise DocumentStoreError(f"FAISS search failed: {e}") from e
        out: List[Passage] = []
        for doc, distance in hits:
            out.append(
                Passage(
                    text=doc.page_content or "",
                    similarity=_distance_to_similarity(distance),
                    metadata=dict(doc.metadata or {}),
                )
            )
        return out

    def insert(self, passage: Passage) -> None:
        if not passage.vector:
            raise DocumentStoreError("passage has no vector")
        pair = [(passage.text, list(passage.vector))]
        metadatas = [dict(passage.metadata)]
        try:
            if self._db is None:
                self._db = FAISS.from_embeddings(
                    pair, self.embeddings, metadatas=metadatas, normalize_L2=True
                )
            else:
                self._db.add_embeddings(pair, metadatas=metadatas)
            self._db.save_local(self.index_path)
        except Exception as e:
            raise DocumentStoreError(f"FAISS insert failed: {e}") from e

    def close(self) -> None:
        self._db = None


def _distance_to_similarity(distance: Any) -> Optional[float]:
    try:
        d = float(distance)
    except (TypeError, ValueError):
        return None
    return max(0.0, min(1.0, 1.0 - d / 2.0))


def passage_text(passage: Any) -> str:
    """Text of a passage, accepting Passage, Document or plain dict records."""
    if isinstance(passage, Passage):
        if passage.text:
            return passage.text
        record: Dict[str, Any] = passage.metadata
    elif isinstance(passage, Document):
        return passage.page_content or ""
    elif isinstance(passage, dict):
        record = passage
    else:
        return ""
    for key in _TEXT_FIELDS:
        val = record.get(key)
        if isinstance(val, str) and val:
            return val
    return ""


def passage_similarity(passage: Any) -> Optional[float]:
    if isinstance(passage, Passage):
        return passage.similarity
    if isinstance(passage, dict):
        val = passage.get("similarity", passage.get("$similarity"))
        return float(val) if isinstance(val, (int, float)) else None
    return None


@dataclass
class RetrievalResult:
    context: str = ""
    passages: List[Any] = field(default_factory=list)
    store_error: Optional[str] = None


class Retriever:
    """Retrieval stage: latest message -> context string."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        store: DocumentStore,
        *,
        limit: int = 10,
        min_similarity: float = 0.5,
    ) -> None:
        self.embedder = embedder
        self.store = store
        self.limit = int(limit)
        self.min_similarity = float(min_similarity)

    def embed(self, text: str) -> List[float]:
        try:
            vector = self.embedder.embed(text)
        except Exception as e:
            logger.error("embedding failed: %s", e)
            raise EmbeddingError("Failed to generate embedding", details=str(e)) from e
        return list(vector or [])

    def retrieve(self, text: str) -> RetrievalResult:
        vector = self.embed(text)
        if not vector:
            logger.warning("empty embedding; continuing without context")
            return RetrievalResult()

        try:
            hits = list(self.store.search(vector, self.limit) or [])
        except Exception as e:
            # Store outages must never fail the request
            logger.warning("document store query failed: %s", e)
            return RetrievalResult(store_error=str(e))

        kept = self.filter_passages(hits[: self.limit])
        texts = [t for t in (passage_text(p) for p in kept) if t.strip()]
        logger.info("retrieval: %d of %d passages kept", len(texts), len(hits))
        return RetrievalResult(context="\n\n".join(texts), passages=kept)

    def filter_passages(self, passages: List[Any]) -> List[Any]:
        """Drop passages scored below the threshold; unscored ones are kept."""
        out = []
        for p in passages:
            score = passage_similarity(p)
            if score is not None and score < self.min_similarity:
                continue
            out.append(p)
        return out
