"""Text embedding providers and vector similarity.

Supports Gemini and OpenAI embedding models. The provider is resolved once
at the composition root; when neither is configured ``load_embedder``
raises ``CapabilityUnavailable`` and callers run without recommendations.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Sequence

import numpy as np

from ops_insight.errors import CapabilityUnavailable

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Base class for embedding providers. Read-only after construction."""

    @abstractmethod
    def _embed_raw(self, text: str) -> Sequence[float]:
        """Call the remote model. May raise on transport errors."""
        ...

    @abstractmethod
    def name(self) -> str:
        ...

    def embed(self, text: str) -> list[float] | None:
        """Return an embedding vector, or None when this text cannot be embedded."""
        if not text or not text.strip():
            return None
        try:
            vector = self._embed_raw(text)
        except Exception:
            logger.warning("Embedding via %s failed for %r", self.name(), text[:80], exc_info=True)
            return None
        if not vector:
            return None
        try:
            return [float(v) for v in vector]
        except (TypeError, ValueError):
            logger.warning("Embedding via %s returned a non-numeric vector for %r", self.name(), text[:80])
            return None


class GeminiEmbedder(EmbeddingProvider):
    """Google Gemini via google-genai SDK."""

    def __init__(self, api_key: str, model: str) -> None:
        from google import genai

        self._client = genai.Client(api_key=api_key)
        self._model = model

    def _embed_raw(self, text: str) -> Sequence[float]:
        result = self._client.models.embed_content(
            model=self._model,
            contents=text,
        )
        return result.embeddings[0].values

    def name(self) -> str:
        return "gemini"


class OpenAIEmbedder(EmbeddingProvider):
    """OpenAI via openai SDK."""

    def __init__(self, api_key: str, model: str) -> None:
        import openai

        self._client = openai.OpenAI(api_key=api_key)
        self._model = model

    def _embed_raw(self, text: str) -> Sequence[float]:
        response = self._client.embeddings.create(
            model=self._model,
            input=text,
        )
        return response.data[0].embedding

    def name(self) -> str:
        return "openai"


def load_embedder(
    provider: str = "",
    gemini_api_key: str = "",
    openai_api_key: str = "",
    model: str = "gemini-embedding-001",
) -> EmbeddingProvider:
    """Construct the configured provider.

    Resolution order:
    1. Explicit ``provider`` ("gemini" / "openai") when its key is set
    2. Auto-detect from which API key is set (gemini first)

    Raises CapabilityUnavailable when nothing usable is configured or the
    SDK client cannot be built.
    """
    explicit = (provider or "").lower()

    try:
        if explicit == "openai" and openai_api_key:
            embedder: EmbeddingProvider = OpenAIEmbedder(openai_api_key, model)
        elif explicit == "gemini" and gemini_api_key:
            embedder = GeminiEmbedder(gemini_api_key, model)
        elif gemini_api_key:
            embedder = GeminiEmbedder(gemini_api_key, model)
        elif openai_api_key:
            embedder = OpenAIEmbedder(openai_api_key, model)
        else:
            raise CapabilityUnavailable(
                "No embedding provider configured. Set GEMINI_API_KEY or OPENAI_API_KEY."
            )
    except CapabilityUnavailable:
        raise
    except Exception as exc:
        raise CapabilityUnavailable(f"Embedding provider could not be loaded: {exc}") from exc

    logger.info("Embedding provider initialized: %s", embedder.name())
    return embedder


# ---------------------------------------------------------------------------
# Similarity
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors, in [-1, 1].

    Returns 0.0 when the lengths differ or either vector has zero magnitude.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0

    mag_a = float(np.linalg.norm(va))
    mag_b = float(np.linalg.norm(vb))
    if mag_a == 0.0 or mag_b == 0.0 or math.isnan(mag_a) or math.isnan(mag_b):
        return 0.0

    score = float(np.dot(va, vb)) / (mag_a * mag_b)
    return max(-1.0, min(1.0, score))
