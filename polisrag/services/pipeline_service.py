"""Document ingestion: extract -> sections -> chunks -> embeddings -> store.

Every run gets a fresh run_id. Vectors for the new run are written first, the
SQLite rows are swapped in one transaction, and only then are points from
earlier runs deleted, so an interrupted run never leaves a document without
its previously committed content.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from polisrag.adapters.vector.base import VectorStore
from polisrag.core.config import settings
from polisrag.core.errors import DocumentNotFoundError, EmbeddingProviderError
from polisrag.core.glossary import Glossary, get_glossary
from polisrag.core.models import Chunk, Document, EnrichmentContext, Section
from polisrag.legal.legal_chunker import chunk_pages
from polisrag.legal.legal_sections import detect_sections
from polisrag.services import embed_service, store_service
from polisrag.services.extract_service import extract
from polisrag.services.retrieve_service import get_vector, rebuild_bm25
from polisrag.services.title_service import best_title

logger = logging.getLogger(__name__)

_doc_locks: dict[str, asyncio.Lock] = {}
_doc_lock_users: dict[str, int] = defaultdict(int)


@asynccontextmanager
async def _document_lock(doc_id: str):
    """Serialise runs of one document; the lock is dropped once nobody holds or awaits it."""
    lock = _doc_locks.setdefault(doc_id, asyncio.Lock())
    _doc_lock_users[doc_id] += 1
    try:
        async with lock:
            yield
    finally:
        _doc_lock_users[doc_id] -= 1
        if not _doc_lock_users[doc_id]:
            del _doc_lock_users[doc_id]
            _doc_locks.pop(doc_id, None)


def upload_path(doc_id: str) -> str:
    return os.path.join(settings.DATA_DIR, "uploads", f"{doc_id}.pdf")


def _save_upload(doc_id: str, data: bytes) -> str:
    path = upload_path(doc_id)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return path


def create_document(
    data: bytes,
    file_name: str,
    *,
    doc_id: str | None = None,
    title: str | None = None,
    insurer_id: str | None = None,
    insurer_name: str | None = None,
    product_name: str | None = None,
    line_of_business: str | None = None,
    document_type: str | None = None,
    glossary: Glossary | None = None,
) -> Document:
    """Register an upload as a pending document and keep its bytes for reprocessing."""
    glossary = glossary or get_glossary()
    doc_id = doc_id or str(uuid.uuid4())
    if not line_of_business:
        lob = glossary.line_of_business_for(file_name)
        line_of_business = lob.key if lob else None
    doc = Document(
        doc_id=doc_id,
        title=title,
        file_name=file_name,
        status="pending",
        insurer_id=insurer_id,
        insurer_name=insurer_name,
        product_name=product_name,
        line_of_business=line_of_business,
        document_type=document_type or glossary.document_type_for(file_name),
        meta={"upload_path": _save_upload(doc_id, data), "size_bytes": len(data)},
    )
    if title:
        doc.meta["title"] = title
    doc.title = best_title(doc)
    store_service.save_document(doc)
    return doc


def _vector_payload(doc: Document, chunk: Chunk, section: Section | None) -> dict:
    return {
        "doc_id": doc.doc_id,
        "run_id": chunk.run_id,
        "text": chunk.text,
        "page": chunk.page,
        "chunk_index": chunk.chunk_index,
        "token_count": chunk.token_count,
        "citation_label": chunk.citation_label,
        "section_id": chunk.section_id,
        "section_path": section.path if section else None,
        "section_title": section.title if section else None,
        "document_title": doc.title,
        "document_type": doc.document_type,
        "product_name": doc.product_name,
        "insurer_name": doc.insurer_name,
        "insurer_id": doc.insurer_id,
        "line_of_business": doc.line_of_business,
        "extraction_method": chunk.meta.extraction_method,
        "low_confidence": chunk.meta.low_confidence,
    }


async def _embed_chunks(chunks: list[Chunk], contexts: list[EnrichmentContext], glossary: Glossary) -> list[list[float]]:
    """Embed with tenacity retries on provider failures."""
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, settings.EMBED_MAX_RETRIES)),
        wait=wait_exponential(multiplier=settings.EMBED_RETRY_WAIT_S, max=30),
        retry=retry_if_exception_type(EmbeddingProviderError),
        before_sleep=lambda rs: logger.warning(
            "stage=embed retrying after %s (attempt %d)", rs.outcome.exception(), rs.attempt_number
        ),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await embed_service.embed([c.text for c in chunks], contexts, glossary=glossary)


def _discard_run(vector_store: VectorStore, doc_id: str, run_id: str) -> None:
    try:
        vector_store.delete_run(doc_id, run_id)
    except Exception as e:
        logger.warning("could not delete vectors of run %s for doc_id=%s: %s", run_id, doc_id, e)


async def process_document(
    doc: Document,
    data: bytes,
    *,
    vector_store: VectorStore | None = None,
    glossary: Glossary | None = None,
) -> dict:
    """Run the full pipeline for one document, superseding earlier runs.

    Runs for the same document are serialised; different documents run in
    parallel. A failure or cancellation before the rows are committed marks
    the document `failed`, drops the run's vectors and propagates. Cleanup
    after the commit is best-effort.
    """
    vector_store = vector_store or get_vector()
    glossary = glossary or get_glossary()

    async with _document_lock(doc.doc_id):
        run_id = uuid.uuid4().hex
        logger.info("ingest start doc_id=%s run_id=%s file=%s", doc.doc_id, run_id, doc.file_name)
        store_service.set_status(doc.doc_id, "processing")
        stage = "extract"
        try:
            extraction = await extract(data, doc.file_name or "document.pdf", doc_id=doc.doc_id, glossary=glossary)
            doc.page_count = extraction.stats.total_pages
            doc.title = best_title(doc, extraction.pages)

            stage = "segment"
            sections = detect_sections(extraction.pages, doc.doc_id, run_id=run_id)
            chunks = chunk_pages(extraction.pages, doc, sections, extraction=extraction, run_id=run_id)
            by_id = {s.section_id: s for s in sections}
            contexts = []
            for c in chunks:
                section = by_id.get(c.section_id)
                ctx = EnrichmentContext(
                    insurer_name=doc.insurer_name,
                    product_name=doc.product_name,
                    document_type=doc.document_type,
                    section_path=section.path if section else None,
                )
                c.meta.legal_terms = glossary.terms_in(c.text)
                c.meta.context_enriched = bool(
                    c.meta.legal_terms or any(ctx.model_dump().values())
                )
                contexts.append(ctx)
            logger.info(
                "doc_id=%s stage=segment sections=%d chunks=%d method=%s",
                doc.doc_id, len(sections), len(chunks), extraction.method,
            )

            stage = "embed"
            vectors = await _embed_chunks(chunks, contexts, glossary)

            stage = "store"
            await asyncio.to_thread(vector_store.ensure_collection, settings.EMBED_DIM)
            await asyncio.to_thread(
                vector_store.upsert,
                [c.chunk_id for c in chunks],
                vectors,
                [_vector_payload(doc, c, by_id.get(c.section_id)) for c in chunks],
            )
            doc.status = "completed"
            doc.meta = {
                **doc.meta,
                "run_id": run_id,
                "extraction_method": extraction.method,
                "low_confidence": extraction.stats.low_confidence,
                "extraction_attempts": [a.model_dump() for a in extraction.stats.attempts],
            }
            doc.meta.pop("error", None)
            store_service.replace_document_content(doc, sections, chunks)
        except asyncio.CancelledError:
            logger.warning("ingest cancelled doc_id=%s stage=%s run_id=%s", doc.doc_id, stage, run_id)
            _discard_run(vector_store, doc.doc_id, run_id)
            store_service.set_status(doc.doc_id, "failed", error=f"cancelled during {stage}")
            raise
        except Exception as e:
            logger.error("ingest failed doc_id=%s stage=%s run_id=%s", doc.doc_id, stage, run_id, exc_info=True)
            _discard_run(vector_store, doc.doc_id, run_id)
            store_service.set_status(doc.doc_id, "failed", error=f"{stage}: {e}")
            raise

        # committed: cleanup failures must not undo the run
        try:
            await asyncio.to_thread(vector_store.delete_stale_runs, doc.doc_id, run_id)
        except Exception as e:
            logger.warning("stale vectors left for doc_id=%s stage=cleanup run_id=%s: %s", doc.doc_id, run_id, e)
        try:
            rebuild_bm25()
        except Exception as e:
            logger.warning("keyword index not rebuilt after doc_id=%s stage=cleanup: %s", doc.doc_id, e)

    logger.info("ingest done doc_id=%s chunks=%d", doc.doc_id, len(chunks))
    return {
        "doc_id": doc.doc_id,
        "status": doc.status,
        "title": doc.title,
        "pages": doc.page_count,
        "sections": len(sections),
        "chunks": len(chunks),
        "extraction_method": extraction.method,
        "low_confidence": extraction.stats.low_confidence,
    }


async def ingest_pdf(data: bytes, file_name: str, *, vector_store: VectorStore | None = None, **labels) -> dict:
    """Register and process an uploaded PDF."""
    doc = create_document(data, file_name, **labels)
    return await process_document(doc, data, vector_store=vector_store)


async def reprocess(doc_id: str, *, vector_store: VectorStore | None = None) -> dict:
    """Re-run the pipeline from the stored upload; the new run supersedes the old one."""
    doc = store_service.get_document(doc_id)
    if doc is None:
        raise DocumentNotFoundError(doc_id)
    path = doc.meta.get("upload_path") or upload_path(doc_id)
    if not os.path.exists(path):
        raise FileNotFoundError(f"stored upload for {doc_id} is missing")
    with open(path, "rb") as f:
        data = f.read()
    return await process_document(doc, data, vector_store=vector_store)


def delete_document(doc_id: str, *, vector_store: VectorStore | None = None) -> None:
    """Delete a document everywhere: vectors, rows, the stored upload."""
    doc = store_service.get_document(doc_id)
    if doc is None:
        raise DocumentNotFoundError(doc_id)
    (vector_store or get_vector()).delete_by_doc_id(doc_id)
    store_service.delete_document(doc_id)
    path = doc.meta.get("upload_path")
    if path and os.path.exists(path):
        os.remove(path)
    rebuild_bm25()
