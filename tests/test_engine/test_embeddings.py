"""Tests for embedding providers and cosine similarity."""

from unittest.mock import patch

import pytest

from ops_insight.engine.embeddings import (
    EmbeddingProvider,
    cosine_similarity,
    load_embedder,
)
from ops_insight.errors import CapabilityUnavailable


class _FakeEmbedder(EmbeddingProvider):
    def __init__(self, vector=None, error=None):
        self.vector = vector
        self.error = error
        self.calls = []

    def _embed_raw(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.vector

    def name(self):
        return "fake"


class TestCosineSimilarity:
    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.5], [-1.0, -0.5]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_vector_is_zero(self):
        assert cosine_similarity([0.3, 0.4], [0.0, 0.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [0.3, 0.4]) == 0.0

    def test_length_mismatch_is_zero(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0

    def test_empty_vectors(self):
        assert cosine_similarity([], []) == 0.0

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)

    def test_always_within_bounds(self):
        pairs = [
            ([1e-300, 1e-300], [1e-300, 1e-300]),
            ([1e150, -1e150], [1e150, 1e150]),
            ([3.0, -7.0, 2.5], [-1.0, 4.0, 9.0]),
            ([0.1] * 50, [0.2] * 50),
        ]
        for a, b in pairs:
            score = cosine_similarity(a, b)
            assert -1.0 <= score <= 1.0


class TestEmbed:
    def test_returns_float_list(self):
        embedder = _FakeEmbedder(vector=(1, 2, 3))
        assert embedder.embed("quarterly report") == [1.0, 2.0, 3.0]

    def test_blank_text_is_not_sent(self):
        embedder = _FakeEmbedder(vector=[1.0])
        assert embedder.embed("   ") is None
        assert embedder.calls == []

    def test_provider_error_returns_none(self):
        embedder = _FakeEmbedder(error=RuntimeError("503 unavailable"))
        assert embedder.embed("audit checklist") is None

    def test_empty_vector_returns_none(self):
        embedder = _FakeEmbedder(vector=[])
        assert embedder.embed("audit checklist") is None

    def test_non_numeric_vector_returns_none(self):
        assert _FakeEmbedder(vector=[1.0, None]).embed("broken doc") is None
        assert _FakeEmbedder(vector=[1.0, "n/a"]).embed("broken doc") is None


class TestLoadEmbedder:
    def test_nothing_configured_raises(self):
        with pytest.raises(CapabilityUnavailable):
            load_embedder()

    @patch("ops_insight.engine.embeddings.GeminiEmbedder")
    def test_auto_detects_gemini_first(self, mock_gemini):
        embedder = load_embedder(gemini_api_key="g-key", openai_api_key="o-key", model="m")
        mock_gemini.assert_called_once_with("g-key", "m")
        assert embedder is mock_gemini.return_value

    @patch("ops_insight.engine.embeddings.OpenAIEmbedder")
    @patch("ops_insight.engine.embeddings.GeminiEmbedder")
    def test_explicit_openai(self, mock_gemini, mock_openai):
        load_embedder(provider="OpenAI", gemini_api_key="g-key", openai_api_key="o-key", model="m")
        mock_openai.assert_called_once_with("o-key", "m")
        mock_gemini.assert_not_called()

    @patch("ops_insight.engine.embeddings.OpenAIEmbedder")
    def test_falls_back_to_openai_key(self, mock_openai):
        load_embedder(openai_api_key="o-key", model="text-embedding-3-small")
        mock_openai.assert_called_once_with("o-key", "text-embedding-3-small")

    @patch("ops_insight.engine.embeddings.GeminiEmbedder", side_effect=RuntimeError("bad key"))
    def test_construction_error_becomes_unavailable(self, mock_gemini):
        with pytest.raises(CapabilityUnavailable, match="bad key"):
            load_embedder(gemini_api_key="g-key")
