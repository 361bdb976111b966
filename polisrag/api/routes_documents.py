from typing import Optional

from fastapi import APIRouter, HTTPException

from polisrag.core.errors import DocumentNotFoundError
from polisrag.services import store_service
from polisrag.services.pipeline_service import delete_document

router = APIRouter(prefix="/documents", tags=["documents"])


def _require_document(doc_id: str):
    doc = store_service.get_document(doc_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


@router.get("/")
async def list_docs(
    insurer_id: Optional[str] = None,
    line_of_business: Optional[str] = None,
    status: Optional[str] = None,
):
    wanted = {"insurer_id": insurer_id, "line_of_business": line_of_business, "status": status}
    out = []
    for d in store_service.list_documents():
        payload = d.model_dump()
        if any(v is not None and payload.get(k) != v for k, v in wanted.items()):
            continue
        # `id` mirrors doc_id for frontends that expect it
        payload["id"] = d.doc_id
        out.append(payload)
    return out


@router.get("/chunk/{chunk_id}")
async def get_chunk_api(chunk_id: str):
    chunk = store_service.get_chunk(chunk_id)
    if chunk is None:
        raise HTTPException(status_code=404, detail="Chunk not found")
    return chunk.model_dump()


@router.get("/{doc_id}")
async def get_doc(doc_id: str):
    return _require_document(doc_id).model_dump()


@router.get("/{doc_id}/sections")
async def get_doc_sections(doc_id: str):
    _require_document(doc_id)
    return [s.model_dump() for s in store_service.list_sections(doc_id)]


@router.get("/{doc_id}/chunks")
async def get_doc_chunks(doc_id: str):
    _require_document(doc_id)
    return [c.model_dump() for c in store_service.list_chunks(doc_id)]


@router.delete("/{doc_id}")
async def delete_doc(doc_id: str):
    try:
        delete_document(doc_id)
    except DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"ok": True, "doc_id": doc_id}
