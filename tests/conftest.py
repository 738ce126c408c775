import os
import sys
import warnings

import pytest

# Ensure project root is on sys.path for `import app`, `import api`, etc.
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Constructing OpenAI clients needs a key even though tests never call out
os.environ.setdefault("OPENAI_API_KEY", "sk-fake-for-tests")

# Suppress LangChain deprecation warnings
warnings.filterwarnings("ignore", category=DeprecationWarning, module="langchain.*")

from app.state import Passage  # noqa: E402


class FakeEmbedder:
    def __init__(self, vector=None, error=None):
        self.vector = [0.1] * 8 if vector is None else vector
        self.error = error
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.vector


class FakeStore:
    def __init__(self, passages=None, error=None):
        self.passages = passages or []
        self.error = error
        self.searches = []

    def search(self, vector, limit):
        self.searches.append((list(vector), limit))
        if self.error:
            raise self.error
        return list(self.passages)

    def insert(self, passage):
        self.passages.append(passage)


class FakeChat:
    """Per-model scripted behaviour: a list of tokens, or an exception to raise."""

    def __init__(self, script):
        self.script = script
        self.calls = []

    def start_stream(self, model_id, system_prompt, messages):
        self.calls.append((model_id, system_prompt, list(messages)))
        outcome = self.script.get(model_id, RuntimeError(f"unknown model {model_id}"))
        if isinstance(outcome, Exception):
            raise outcome
        return iter(list(outcome))


def passages(*pairs):
    return [Passage(text=t, similarity=s) for t, s in pairs]


@pytest.fixture
def embedder():
    return FakeEmbedder()
