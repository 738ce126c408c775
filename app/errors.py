"""Error types raised by the chat pipeline and the lead endpoint.

Each error carries the HTTP status it maps to so the API can render a single
`{"error": ..., "details": ...}` envelope.
"""

from __future__ import annotations
from typing import Any, List, Optional


class ChatPipelineError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidRequestError(ChatPipelineError):
    status_code = 400


class EmbeddingError(ChatPipelineError):
    """The embedding provider failed; no context can be formed."""


class ModelsExhaustedError(ChatPipelineError):
    """Every model in the priority list failed to start streaming."""

    def __init__(self, attempted: List[str], last_error: Optional[BaseException]) -> None:
        last = str(last_error) if last_error is not None else "no models configured"
        message = f"All models failed: {', '.join(attempted) or '(none)'}. Last error: {last}"
        super().__init__(message, details={"attempted": list(attempted), "last_error": last})
        self.attempted = list(attempted)
        self.last_error = last_error


class ResponseAdapterError(ChatPipelineError):
    """No response emitter can handle the generation stream."""


class DocumentStoreError(Exception):
    """Raised by store adapters; recovered inside the retrieval stage."""


class LeadValidationError(ChatPipelineError):
    status_code = 400


class LeadStoreUnavailable(ChatPipelineError):
    """Lead store missing or failing."""

