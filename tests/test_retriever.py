import pytest

from app.errors import EmbeddingError
from app.retriever import FaissDocumentStore, Retriever, _distance_to_similarity, passage_text
from app.state import Passage

from conftest import FakeEmbedder, FakeStore, passages


def test_example_scenario_filters_low_similarity_and_keeps_order(embedder):
    store = FakeStore(passages(("Alpha", 0.8), ("Beta", 0.3), ("Gamma", 0.9)))
    result = Retriever(embedder, store).retrieve("What is RapidClaims?")
    assert result.context == "Alpha\n\nGamma"
    assert embedder.calls == ["What is RapidClaims?"]
    assert store.searches[0][1] == 10


def test_passages_without_scores_are_kept(embedder):
    store = FakeStore(passages(("one", None), ("two", None)))
    result = Retriever(embedder, store).retrieve("q")
    assert result.context == "one\n\ntwo"


def test_threshold_is_inclusive(embedder):
    store = FakeStore(passages(("edge", 0.5), ("below", 0.49)))
    assert Retriever(embedder, store).retrieve("q").context == "edge"


def test_store_outage_degrades_to_empty_context(embedder):
    store = FakeStore(error=ConnectionError("astra down"))
    result = Retriever(embedder, store).retrieve("q")
    assert result.context == ""
    assert result.passages == []
    assert "astra down" in result.store_error


def test_embedding_failure_is_fatal():
    store = FakeStore(passages(("x", 0.9)))
    retriever = Retriever(FakeEmbedder(error=RuntimeError("quota exceeded")), store)
    with pytest.raises(EmbeddingError) as exc:
        retriever.retrieve("q")
    assert exc.value.status_code == 500
    assert exc.value.details == "quota exceeded"
    assert store.searches == []


def test_empty_embedding_skips_search():
    store = FakeStore(passages(("x", 0.9)))
    result = Retriever(FakeEmbedder(vector=[]), store).retrieve("q")
    assert result.context == ""
    assert store.searches == []


def test_result_is_capped_at_limit(embedder):
    store = FakeStore(passages(*[(f"p{i}", 0.9) for i in range(15)]))
    result = Retriever(embedder, store, limit=10).retrieve("q")
    assert len(result.passages) == 10
    assert result.context.split("\n\n")[-1] == "p9"


def test_alternate_text_fields_and_empty_texts(embedder):
    store = FakeStore(
        [
            {"content": "from content", "similarity": 0.7},
            {"text": "", "similarity": 0.9},
            Passage(text="", metadata={"page_content": "from metadata"}),
        ]
    )
    result = Retriever(embedder, store).retrieve("q")
    assert result.context == "from content\n\nfrom metadata"


def test_passage_text_unknown_shape():
    assert passage_text(object()) == ""


def test_distance_to_similarity():
    assert _distance_to_similarity(0.0) == 1.0
    assert _distance_to_similarity(1.0) == 0.5
    assert _distance_to_similarity(4.0) == 0.0
    assert _distance_to_similarity("n/a") is None


def test_faiss_store_without_index_returns_nothing(tmp_path):
    store = FaissDocumentStore(str(tmp_path / "missing"), embeddings=None)
    assert store.search([0.1, 0.2], 10) == []


def test_faiss_store_insert_then_search(tmp_path):
    pytest.importorskip("faiss")

    class _Emb:
        def embed_query(self, text):
            return [1.0, 0.0]

        def embed_documents(self, texts):
            return [[1.0, 0.0] for _ in texts]

    path = tmp_path / "index"
    store = FaissDocumentStore(str(path), embeddings=_Emb())
    store.insert(Passage(text="near", vector=[1.0, 0.0], metadata={"source": "a"}))
    store.insert(Passage(text="far", vector=[0.0, 1.0]))
    hits = store.search([1.0, 0.0], 10)
    assert [h.text for h in hits] == ["near", "far"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(0.0)
    assert hits[0].metadata == {"source": "a"}
    assert path.is_dir()

    reloaded = FaissDocumentStore(str(path), embeddings=_Emb())
    assert [h.text for h in reloaded.search([1.0, 0.0], 1)] == ["near"]
