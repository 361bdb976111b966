"""Optional reranking service.

Default: disabled (RERANK_BACKEND=none). Backends:
  st: sentence-transformers CrossEncoder (pip install .[local_ml])
  hf: Hugging Face inference endpoint (bge-reranker-v2-m3), needs HF_TOKEN

Reranking only reorders candidates; it never adds or drops any.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

import httpx

from polisrag.core.config import settings
from polisrag.core.errors import RerankError
from polisrag.core.models import SearchCandidate

logger = logging.getLogger(__name__)

# (query, passages) -> one relevance score per passage
Reranker = Callable[[str, List[str]], Awaitable[List[float]]]

HF_BATCH = 32

_cross_encoder = None


def _get_cross_encoder():
    global _cross_encoder
    if _cross_encoder is None:
        try:
            from sentence_transformers import CrossEncoder  # optional
        except ImportError as e:
            raise RuntimeError(
                "sentence-transformers is not installed. Install with: pip install .[local_ml]"
            ) from e
        _cross_encoder = CrossEncoder(settings.RERANK_MODEL)
    return _cross_encoder


async def cross_encoder_scores(query: str, texts: List[str]) -> List[float]:
    model = _get_cross_encoder()
    pairs = [[query, t] for t in texts]
    scores = await asyncio.to_thread(model.predict, pairs)
    return [float(s) for s in scores]


def _parse_hf_scores(data, expected: int) -> List[float]:
    """The endpoint answers with a bare list, a list of {score}, or {scores}."""
    if isinstance(data, dict) and isinstance(data.get("scores"), list):
        scores = data["scores"]
    elif isinstance(data, list) and data and isinstance(data[0], dict):
        scores = [x.get("score") for x in data]
    elif isinstance(data, list):
        scores = data
    else:
        raise RerankError(f"unexpected rerank response: {str(data)[:200]}")
    if len(scores) != expected or any(not isinstance(s, (int, float)) for s in scores):
        raise RerankError(f"rerank response has {len(scores)} scores for {expected} passages")
    return [float(s) for s in scores]


async def hf_scores(query: str, texts: List[str]) -> List[float]:
    if not settings.HF_TOKEN:
        raise RerankError("HF_TOKEN is not set")
    headers = {"Authorization": f"Bearer {settings.HF_TOKEN}"}
    out: list[float] = []
    async with httpx.AsyncClient(timeout=settings.RERANK_TIMEOUT_S) as client:
        for i in range(0, len(texts), HF_BATCH):
            batch = texts[i:i + HF_BATCH]
            r = await client.post(
                settings.HF_RERANK_URL,
                headers=headers,
                json={"inputs": {"query": query, "texts": batch}},
            )
            r.raise_for_status()
            out.extend(_parse_hf_scores(r.json(), len(batch)))
    return out


def get_reranker() -> Reranker | None:
    backend = (settings.RERANK_BACKEND or "none").lower()
    if backend in {"st", "sentence_transformers"}:
        return cross_encoder_scores
    if backend in {"hf", "huggingface"}:
        return hf_scores
    if backend not in {"none", "off", "disabled"}:
        logger.warning("unknown RERANK_BACKEND=%s, reranking disabled", backend)
    return None


async def rerank(
    query: str,
    candidates: Sequence[SearchCandidate],
    reranker: Reranker,
    *,
    timeout_s: float | None = None,
    truncate_chars: int | None = None,
) -> list[SearchCandidate]:
    """Return the candidates sorted by rerank_score (stable on ties).

    Raises RerankError on provider failure or timeout; callers keep their
    current order in that case.
    """
    if not candidates:
        return []
    timeout_s = timeout_s or settings.RERANK_TIMEOUT_S
    truncate_chars = truncate_chars or settings.RERANK_TRUNCATE_CHARS
    texts = [c.text[:truncate_chars] for c in candidates]
    try:
        scores = await asyncio.wait_for(reranker(query, texts), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise RerankError(f"rerank timed out after {timeout_s}s") from e
    except RerankError:
        raise
    except Exception as e:
        raise RerankError(f"rerank failed: {e}") from e
    if len(scores) != len(candidates):
        raise RerankError(f"reranker returned {len(scores)} scores for {len(candidates)} passages")

    scored = [c.model_copy(update={"rerank_score": float(s)}) for c, s in zip(candidates, scores)]
    return sorted(scored, key=lambda c: c.rerank_score, reverse=True)
