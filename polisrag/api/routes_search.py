from fastapi import APIRouter, HTTPException

from polisrag.core.errors import DimensionMismatchError, EmbeddingProviderError
from polisrag.core.models import SearchRequest, SearchResponse
from polisrag.services.retrieve_service import search_text

router = APIRouter(prefix="/search", tags=["search"])


@router.post("", response_model=SearchResponse)
async def search(req: SearchRequest):
    if not req.query.strip():
        raise HTTPException(status_code=400, detail="Query must not be empty")
    try:
        return await search_text(req)
    except (EmbeddingProviderError, DimensionMismatchError) as e:
        raise HTTPException(
            status_code=503,
            detail={"error": str(e), "hint": "Check the embedding backend (EMBED_BACKEND, EMBED_DIM)."},
        )
