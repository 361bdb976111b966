"""Embedding service with pluggable backends.

Chunks are embedded with a short context preamble (insurer, product, document
type, section and glossary terms found in the chunk) so near-identical clauses
from different products stay distinguishable. Queries are embedded as-is.

Backends, switched via EMBED_BACKEND:
- ollama: Ollama /api/embed (local-first, no heavy python deps)
- openai: OpenAI embeddings
- st: sentence-transformers (pip install .[local_ml])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

import httpx

from polisrag.core.config import settings
from polisrag.core.errors import EmbeddingProviderError
from polisrag.core.glossary import Glossary, get_glossary
from polisrag.core.models import EnrichmentContext

logger = logging.getLogger(__name__)

EmbedFn = Callable[[List[str]], Awaitable[list[list[float]]]]

_st_model = None


async def _embed_with_sentence_transformers(texts: List[str]) -> list[list[float]]:
    global _st_model
    try:
        from sentence_transformers import SentenceTransformer  # optional dependency
    except ImportError as e:
        raise RuntimeError(
            "sentence-transformers is not installed. Install with: pip install .[local_ml]"
        ) from e

    if _st_model is None:
        _st_model = SentenceTransformer(settings.EMBED_MODEL)

    def encode():
        return _st_model.encode(texts, normalize_embeddings=True, batch_size=len(texts)).tolist()

    return await asyncio.to_thread(encode)


async def _embed_with_ollama(texts: List[str]) -> list[list[float]]:
    """Ollama embeddings.

    Newer servers expose POST /api/embed {"model", "input": [...]}; older ones
    only POST /api/embeddings {"model", "prompt"}. Try the batch endpoint first.
    """
    base = settings.OLLAMA_BASE_URL.rstrip("/")
    model = settings.OLLAMA_EMBED_MODEL

    async with httpx.AsyncClient(timeout=settings.EMBED_TIMEOUT_S) as client:
        r = await client.post(f"{base}/api/embed", json={"model": model, "input": texts})
        if r.status_code == 200:
            embs = r.json().get("embeddings")
            if isinstance(embs, list) and len(embs) == len(texts):
                return embs
        elif r.status_code != 404:
            r.raise_for_status()

        out: list[list[float]] = []
        for t in texts:
            r = await client.post(f"{base}/api/embeddings", json={"model": model, "prompt": t})
            r.raise_for_status()
            vec = r.json().get("embedding")
            if not vec:
                raise RuntimeError("Ollama embedding response missing 'embedding'")
            out.append(vec)
        return out


async def _embed_with_openai(texts: List[str]) -> list[list[float]]:
    if not settings.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is not set")
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.EMBED_TIMEOUT_S)
    kwargs = {}
    # only the text-embedding-3 family can shorten its output
    if settings.OPENAI_EMBED_MODEL.startswith("text-embedding-3"):
        kwargs["dimensions"] = settings.EMBED_DIM
    resp = await client.embeddings.create(model=settings.OPENAI_EMBED_MODEL, input=texts, **kwargs)
    return [d.embedding for d in resp.data]


async def embed_texts(texts: List[str]) -> list[list[float]]:
    """Raw provider call for one batch, no enrichment."""
    if not texts:
        return []
    texts = [t if t is not None else "" for t in texts]
    backend = (settings.EMBED_BACKEND or "ollama").lower()
    if backend in {"st", "sentence_transformers", "sentence-transformer"}:
        return await _embed_with_sentence_transformers(texts)
    if backend in {"openai"}:
        return await _embed_with_openai(texts)
    return await _embed_with_ollama(texts)


def enrich_text(text: str, context: EnrichmentContext | None, glossary: Glossary | None = None) -> str:
    glossary = glossary or get_glossary()
    prefix = ""
    if context is not None:
        if context.insurer_name:
            prefix += f"Verzekeraar: {context.insurer_name}. "
        if context.product_name:
            prefix += f"Product: {context.product_name}. "
        if context.document_type:
            prefix += f"Documenttype: {context.document_type}. "
        if context.section_path:
            prefix += f"Sectie: {context.section_path}. "
    terms = glossary.terms_in(text)
    if terms:
        prefix += f"Juridische context: {', '.join(terms)}. "
    return prefix + text


def _batches(items: Sequence, size: int) -> list[list]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def embed_batches(
    texts: Sequence[str],
    *,
    embed_fn: EmbedFn | None = None,
    batch_size: int | None = None,
    concurrency: int | None = None,
    timeout_s: float | None = None,
    expected_dim: int | None = None,
) -> list[list[float]]:
    """Embed texts in fixed-size batches, a few batches in flight at a time.

    The output has the input's length and order regardless of which batch
    finishes first. Any failing batch raises EmbeddingProviderError.
    """
    embed_fn = embed_fn or embed_texts
    batch_size = batch_size or settings.EMBED_BATCH
    concurrency = concurrency or settings.EMBED_CONCURRENCY
    timeout_s = timeout_s or settings.EMBED_TIMEOUT_S
    expected_dim = expected_dim or settings.EMBED_DIM

    batches = _batches(list(texts), batch_size)
    if not batches:
        return []
    gate = asyncio.Semaphore(max(1, concurrency))

    async def run(index: int, batch: list[str]) -> list[list[float]]:
        async with gate:
            logger.debug("embedding batch %d/%d (%d texts)", index + 1, len(batches), len(batch))
            try:
                vecs = await asyncio.wait_for(embed_fn(batch), timeout=timeout_s)
            except asyncio.TimeoutError as e:
                raise EmbeddingProviderError(
                    f"embedding batch {index} timed out after {timeout_s}s", batch_index=index
                ) from e
            except EmbeddingProviderError:
                raise
            except Exception as e:
                raise EmbeddingProviderError(f"embedding batch {index} failed: {e}", batch_index=index) from e
        if len(vecs) != len(batch):
            raise EmbeddingProviderError(
                f"embedding batch {index} returned {len(vecs)} vectors for {len(batch)} texts",
                batch_index=index,
            )
        for v in vecs:
            if len(v) != expected_dim:
                raise EmbeddingProviderError(
                    f"embedding batch {index} returned dim={len(v)}, expected {expected_dim}",
                    batch_index=index,
                )
        return vecs

    results = await asyncio.gather(*(run(i, b) for i, b in enumerate(batches)))
    return [v for batch in results for v in batch]


async def embed(
    texts: Sequence[str],
    contexts: Sequence[EnrichmentContext | None] | EnrichmentContext | None = None,
    *,
    glossary: Glossary | None = None,
    **kwargs,
) -> list[list[float]]:
    """Enrich each text with its context and embed; output order matches input."""
    glossary = glossary or get_glossary()
    if contexts is None or isinstance(contexts, EnrichmentContext):
        contexts = [contexts] * len(texts)
    if len(contexts) != len(texts):
        raise ValueError("texts and contexts must have the same length")
    enriched = [enrich_text(t, c, glossary) for t, c in zip(texts, contexts)]
    return await embed_batches(enriched, **kwargs)


async def embed_query(text: str, *, embed_fn: EmbedFn | None = None) -> list[float]:
    vecs = await embed_batches([text], embed_fn=embed_fn, batch_size=1, concurrency=1)
    return vecs[0]
