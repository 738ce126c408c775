"""Central configuration for the chat service.

A typed Settings object (Pydantic BaseSettings) is resolved through
`get_settings()` and injected into the API. A few module-level constants
remain for the booking helpers that run without a Settings instance.
"""

from dotenv import load_dotenv, find_dotenv
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables once for the whole app
load_dotenv(find_dotenv())


def _sanitize_openai_base() -> None:
    base = os.getenv("OPENAI_BASE_URL", "").strip()
    api_base = os.getenv("OPENAI_API_BASE", "").strip()
    use = base or api_base
    if not use:
        # Remove empty vars to let SDK default to https://api.openai.com/v1
        os.environ.pop("OPENAI_BASE_URL", None)
        os.environ.pop("OPENAI_API_BASE", None)
        return
    if not (use.startswith("http://") or use.startswith("https://")):
        use = "https://" + use
    os.environ["OPENAI_BASE_URL"] = use
    os.environ["OPENAI_API_BASE"] = use


_sanitize_openai_base()

# Paths
PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))  # repo root
DATA_DIR = os.path.join(PROJECT_ROOT, ".data")

# Booking calendar knobs (shared by the API and the console client)
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
BOOKING_WINDOW_DAYS = int(os.getenv("BOOKING_WINDOW_DAYS", "14"))


@dataclass(frozen=True)
class ModelSpec:
    """One entry of the generation fallback list."""

    model_id: str
    temperature: float = 0.2
    max_tokens: int = 1024


class Settings(BaseSettings):
    """Runtime settings for the API and services.

    Values are loaded from environment variables and optional .env files.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    APP_NAME: str = "RapidClaims Assistant"
    APP_VERSION: str = "1.0.0"
    ENV: str = "dev"

    OPENAI_API_KEY: Optional[str] = None

    # Retrieval
    VECTOR_INDEX_PATH: str = os.path.join(PROJECT_ROOT, ".vectordb", "passages_faiss")
    EMBED_MODEL: str = "text-embedding-3-small"
    RETRIEVAL_LIMIT: int = 10
    MIN_SIMILARITY: float = 0.5

    # Generation
    MODEL_PRIORITY: str = "gpt-4o-mini,gpt-4o,gpt-4.1-mini"
    LLM_TEMPERATURE: float = 0.2
    MAX_TOKENS: int = 1024
    # "strict" answers from context only; "augmented" may fall back to background knowledge
    PROMPT_MODE: str = "augmented"
    ASSISTANT_TOPIC: str = "RapidClaims and the Revenue Cycle Management (RCM) industry"

    # Response emitters, highest priority first
    STREAM_PROTOCOLS: str = "data,text"

    # Leads; an empty path means the store is not configured
    LEADS_DB_PATH: str = os.path.join(DATA_DIR, "leads.sqlite3")
    LEADS_LIST_LIMIT: int = 100

    DEFAULT_TIMEZONE: str = DEFAULT_TIMEZONE
    BOOKING_WINDOW_DAYS: int = BOOKING_WINDOW_DAYS

    CORS_ORIGINS: str = "*"

    def model_priority(self) -> Tuple[ModelSpec, ...]:
        """Parse MODEL_PRIORITY into ordered ModelSpec descriptors."""
        return tuple(
            ModelSpec(
                model_id=m,
                temperature=float(self.LLM_TEMPERATURE),
                max_tokens=int(self.MAX_TOKENS),
            )
            for m in _split_csv(self.MODEL_PRIORITY)
        )

    def stream_protocols(self) -> List[str]:
        return [p.lower() for p in _split_csv(self.STREAM_PROTOCOLS)]

    def cors_origins(self) -> List[str]:
        return _split_csv(self.CORS_ORIGINS) or ["*"]

    @property
    def strict_mode(self) -> bool:
        return self.PROMPT_MODE.strip().lower() == "strict"


def _split_csv(raw: str) -> List[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
