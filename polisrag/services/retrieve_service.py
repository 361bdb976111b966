"""Staged retrieval: candidate search -> similarity floor -> MMR -> rerank ->
section stitching -> token-budget truncation.

Candidate search widens in steps: the filtered vector search first, then the
same search without filters, then the BM25 keyword index over every stored
chunk. `search_scope` reports the step that produced the candidates.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from polisrag.adapters.bm25.bm25 import BM25Index
from polisrag.adapters.vector.base import VectorStore
from polisrag.adapters.vector.qdrant import QdrantVectorStore
from polisrag.core.config import settings
from polisrag.core.errors import RerankError
from polisrag.core.models import (
    PipelineStats,
    RankedPassage,
    SearchCandidate,
    SearchRequest,
    SearchResponse,
)
from polisrag.legal.legal_chunker import CHARS_PER_TOKEN, estimate_tokens
from polisrag.services.citation_service import stitched_label
from polisrag.services.embed_service import embed_query
from polisrag.services.mmr_service import mmr_select
from polisrag.services.rerank_service import Reranker, get_reranker, rerank
# NOTE: avoid circular import; import store_service lazily inside functions

logger = logging.getLogger(__name__)

MIN_STITCH_TOKENS = 256

_vector = None
_bm25 = BM25Index()


def get_vector() -> VectorStore:
    global _vector
    if _vector is None:
        _vector = QdrantVectorStore()
    return _vector


def get_keyword_index() -> BM25Index:
    return _bm25


def rebuild_bm25():
    from polisrag.services import store_service
    _bm25.build(store_service.list_chunk_rows())
    logger.debug("keyword index rebuilt with %d chunks", len(_bm25))


_CANDIDATE_KEYS = (
    "doc_id", "text", "page", "chunk_index", "token_count", "section_id", "section_path",
    "section_title", "document_title", "document_type", "product_name", "insurer_name",
    "insurer_id", "line_of_business", "citation_label",
)


def _candidate(fields: dict, *, chunk_id: str, similarity: float, vector, source: str) -> SearchCandidate:
    data = {k: fields[k] for k in _CANDIDATE_KEYS if fields.get(k) is not None}
    data.setdefault("doc_id", "")
    data.setdefault("text", "")
    if not data.get("token_count"):
        data["token_count"] = estimate_tokens(data["text"])
    return SearchCandidate(
        chunk_id=chunk_id, similarity=similarity, vector=vector, match_source=source, **data
    )


def candidate_from_hit(hit: dict) -> SearchCandidate:
    return _candidate(
        hit.get("payload") or {},
        chunk_id=hit["chunk_id"],
        similarity=float(hit.get("score") or 0.0),
        vector=hit.get("vector"),
        source="vector",
    )


def candidate_from_keyword(row: dict) -> SearchCandidate:
    return _candidate(row, chunk_id=row["chunk_id"], similarity=float(row["score"]), vector=None, source="keyword")


async def _vector_hits(vector_store: VectorStore, query_vector, top_n: int, flt: dict | None) -> list[dict]:
    try:
        return await asyncio.to_thread(vector_store.search, query_vector, top_n, flt)
    except Exception as e:
        # degrade to the next widening step instead of failing the query
        logger.warning("stage=candidate_search vector search failed (filter=%s): %s", flt, e)
        return []


async def candidate_search(
    query: str,
    query_vector: list[float],
    payload_filter: dict,
    top_n: int,
    vector_store: VectorStore,
    keyword_index: BM25Index,
    min_similarity: float = 0.0,
) -> tuple[list[SearchCandidate], str, int]:
    """Widen the search until some candidate clears `min_similarity`.

    Returns the surviving candidates, the scope that produced them and the
    raw hit count of that scope. Hits below the floor count as no hits, so a
    weak filtered match never hides a strong unfiltered one.
    """
    steps = []
    if payload_filter:
        steps.append(("filtered", payload_filter))
    steps.append(("unfiltered", None))

    for scope, flt in steps:
        hits = [candidate_from_hit(h) for h in await _vector_hits(vector_store, query_vector, top_n, flt)]
        kept = [c for c in hits if c.similarity >= min_similarity]
        if kept:
            return kept, scope, len(hits)
        logger.info(
            "stage=candidate_search scope=%s: %d hits, none above %.2f; widening",
            scope, len(hits), min_similarity,
        )

    rows = [candidate_from_keyword(r) for r in keyword_index.search(query, top_n)]
    kept = [c for c in rows if c.similarity >= min_similarity]
    if kept:
        logger.info("no vector hits, using %d keyword matches", len(kept))
        return kept, "keyword", len(rows)
    return [], "none", 0


def _passage(rank: int, group: Sequence[SearchCandidate], anchor: SearchCandidate) -> RankedPassage:
    head = group[0]
    stitched = len(group) > 1
    return RankedPassage(
        rank=rank,
        chunk_ids=[c.chunk_id for c in group],
        doc_id=anchor.doc_id,
        text="\n\n".join(c.text for c in group) if stitched else anchor.text,
        token_count=sum(c.token_count for c in group),
        similarity=anchor.similarity,
        rerank_score=anchor.rerank_score,
        citation_label=stitched_label(head.citation_label, len(group)),
        page=head.page,
        section_id=anchor.section_id,
        section_path=anchor.section_path,
        section_title=anchor.section_title,
        document_title=anchor.document_title,
        product_name=anchor.product_name,
        insurer_name=anchor.insurer_name,
        stitched=stitched,
    )


def _reading_order(c: SearchCandidate):
    return (c.page or 0, c.chunk_index)


def stitch(ordered: Sequence[SearchCandidate], token_limit: int, margin: int | None = None) -> list[RankedPassage]:
    """Merge each passage with retrieved siblings from the same section.

    Siblings are taken in reading order (page, chunk index), first to the
    right of the anchor and then to the left, while the group stays within
    max(256, token_limit - margin) tokens. A chunk joins at most one group;
    groups keep the rank of their best-ranked member.
    """
    margin = settings.STITCH_MARGIN_TOKENS if margin is None else margin
    hard_limit = max(MIN_STITCH_TOKENS, token_limit - margin)

    by_section: dict[tuple[str, str], list[SearchCandidate]] = {}
    for c in ordered:
        if c.section_id:
            by_section.setdefault((c.doc_id, c.section_id), []).append(c)
    for siblings in by_section.values():
        siblings.sort(key=_reading_order)

    used: set[str] = set()
    passages: list[RankedPassage] = []
    for anchor in ordered:
        if anchor.chunk_id in used:
            continue
        used.add(anchor.chunk_id)
        group = [anchor]
        tokens = anchor.token_count
        siblings = by_section.get((anchor.doc_id, anchor.section_id)) if anchor.section_id else None
        if siblings and len(siblings) > 1:
            pos = next(i for i, s in enumerate(siblings) if s.chunk_id == anchor.chunk_id)
            right = pos + 1
            while right < len(siblings):
                nxt = siblings[right]
                if nxt.chunk_id in used or tokens + nxt.token_count > hard_limit:
                    break
                group.append(nxt)
                used.add(nxt.chunk_id)
                tokens += nxt.token_count
                right += 1
            left = pos - 1
            while left >= 0:
                prv = siblings[left]
                if prv.chunk_id in used or tokens + prv.token_count > hard_limit:
                    break
                group.insert(0, prv)
                used.add(prv.chunk_id)
                tokens += prv.token_count
                left -= 1
        passages.append(_passage(len(passages) + 1, group, anchor))
    return passages


def truncate(passages: Sequence[RankedPassage], top_k: int, token_limit: int) -> list[RankedPassage]:
    """Keep passages in rank order until top_k or the token budget is reached.

    A first passage that alone exceeds the budget is cut down to fit.
    """
    out: list[RankedPassage] = []
    used = 0
    for p in passages:
        if len(out) >= top_k:
            break
        if used + p.token_count > token_limit:
            if not out:
                text = p.text[: token_limit * CHARS_PER_TOKEN].rstrip()
                out.append(p.model_copy(update={
                    "text": text,
                    "token_count": estimate_tokens(text),
                    "truncated": True,
                }))
            break
        out.append(p)
        used += p.token_count
    return [p.model_copy(update={"rank": i}) for i, p in enumerate(out, start=1)]


async def search(
    request: SearchRequest,
    query_vector: list[float],
    *,
    vector_store: VectorStore | None = None,
    keyword_index: BM25Index | None = None,
    reranker: Reranker | None = None,
) -> SearchResponse:
    vector_store = vector_store or get_vector()
    keyword_index = keyword_index if keyword_index is not None else get_keyword_index()
    top_n = request.top_n or settings.SEARCH_TOP_N
    mmr_k = request.mmr_k or settings.SEARCH_MMR_K
    lambda_ = settings.SEARCH_LAMBDA if request.lambda_ is None else request.lambda_
    top_k = request.top_k or settings.SEARCH_TOP_K
    token_limit = request.token_limit or settings.SEARCH_TOKEN_LIMIT
    stats = PipelineStats()

    # 1-2) candidates above the similarity floor, widening scope as needed
    candidates, scope, stats.initial_search = await candidate_search(
        request.query, query_vector, request.filters.to_payload_filter(), top_n,
        vector_store, keyword_index, min_similarity=settings.SEARCH_MIN_SIMILARITY,
    )
    if not candidates:
        return SearchResponse(status="no_results", pipeline_stats=stats, search_scope=scope)

    # 3) diversity
    selected = mmr_select(candidates, mmr_k, lambda_)
    stats.mmr_results = len(selected)

    # 4) rerank
    if request.use_reranking:
        reranker = reranker or get_reranker()
        if reranker is not None:
            try:
                selected = await rerank(request.query, selected, reranker)
            except RerankError as e:
                logger.warning("stage=rerank failed, keeping MMR order: %s", e)
    stats.reranked_results = len(selected)

    # 5) stitching
    if request.use_stitching:
        passages = stitch(selected, token_limit)
    else:
        passages = [_passage(i, [c], c) for i, c in enumerate(selected, start=1)]

    # 6) budget
    results = truncate(passages, top_k, token_limit)
    stats.final_results = len(results)
    logger.debug(
        "search scope=%s initial=%d mmr=%d reranked=%d final=%d",
        scope, stats.initial_search, stats.mmr_results, stats.reranked_results, stats.final_results,
    )
    # later stages may legitimately come up empty; only stage 1 decides "no_results"
    return SearchResponse(
        status="ok",
        results=results,
        pipeline_stats=stats,
        search_scope=scope,
    )


async def search_text(request: SearchRequest, **kwargs) -> SearchResponse:
    """Embed the query and run the staged search."""
    query_vector = await embed_query(request.query)
    return await search(request, query_vector, **kwargs)
