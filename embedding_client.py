"""Ollama embeddings client for searchable record text."""

from __future__ import annotations

import logging
import os

import requests

from biblio import EMBEDDING_DIMS

OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
OLLAMA_EMBED_MODEL = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
EMBEDDING_MAX_CHARS = int(os.getenv("EMBEDDING_MAX_CHARS", "8000"))
REQUEST_TIMEOUT_SECONDS = 60

LOGGER = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    pass


def generate_embedding(text: str, base_url: str | None = None, model: str | None = None) -> list[float] | None:
    """Return the embedding vector for ``text``, or None when there is nothing to embed.

    Text longer than EMBEDDING_MAX_CHARS is truncated before the request.
    Raises EmbeddingError on any transport or response problem, including a
    vector whose length differs from EMBEDDING_DIMS.
    """
    if not text:
        return None

    if len(text) > EMBEDDING_MAX_CHARS:
        text = text[:EMBEDDING_MAX_CHARS]

    url = f"{(base_url or OLLAMA_URL).rstrip('/')}/api/embeddings"
    payload = {"model": model or OLLAMA_EMBED_MODEL, "prompt": text}

    try:
        response = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT_SECONDS)
        response.raise_for_status()
        body = response.json()
    except (requests.RequestException, ValueError) as exc:
        raise EmbeddingError(f"Embedding request to {url} failed: {exc}") from exc

    embedding = body.get("embedding") if isinstance(body, dict) else None
    if not isinstance(embedding, list) or not all(isinstance(v, (int, float)) for v in embedding):
        raise EmbeddingError(f"Unexpected embedding response shape: {body}")
    if len(embedding) != EMBEDDING_DIMS:
        raise EmbeddingError(f"Expected {EMBEDDING_DIMS} embedding dimensions, got {len(embedding)}")

    LOGGER.debug("Embedding generated: chars=%s dims=%s", len(text), len(embedding))
    return [float(v) for v in embedding]
