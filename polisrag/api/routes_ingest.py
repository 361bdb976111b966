from pathlib import Path

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from polisrag.core.errors import DimensionMismatchError, DocumentNotFoundError, EmbeddingProviderError
from polisrag.services.pipeline_service import ingest_pdf, reprocess

router = APIRouter(prefix="/ingest", tags=["ingest"])

PROVIDER_HINT = (
    "Common causes:\n"
    "- Ollama embedding model not pulled (OLLAMA_EMBED_MODEL).\n"
    "- Qdrant collection dim mismatch after changing EMBED_DIM/model.\n"
    "Fix:\n"
    "- ollama pull $OLLAMA_EMBED_MODEL\n"
    "- Set VECTOR_RECREATE_ON_DIM_MISMATCH=true or delete the collection."
)


def _provider_error(e: Exception) -> HTTPException:
    return HTTPException(status_code=503, detail={"error": str(e), "hint": PROVIDER_HINT})


@router.post("/upload")
async def ingest_upload(
    file: UploadFile = File(...),
    title: str | None = Form(None),
    insurer_id: str | None = Form(None),
    insurer_name: str | None = Form(None),
    product_name: str | None = Form(None),
    line_of_business: str | None = Form(None),
    document_type: str | None = Form(None),
):
    # keep the original filename for display and filename-based fallbacks
    original_name = Path(file.filename or "upload.pdf").name
    if not original_name.lower().endswith(".pdf"):
        raise HTTPException(status_code=400, detail="Only PDF uploads are supported")
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty upload")

    try:
        return await ingest_pdf(
            content,
            original_name,
            title=title,
            insurer_id=insurer_id,
            insurer_name=insurer_name,
            product_name=product_name,
            line_of_business=line_of_business,
            document_type=document_type,
        )
    except (EmbeddingProviderError, DimensionMismatchError) as e:
        raise _provider_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/reprocess/{doc_id}")
async def ingest_reprocess(doc_id: str):
    try:
        return await reprocess(doc_id)
    except DocumentNotFoundError:
        raise HTTPException(status_code=404, detail="Document not found")
    except FileNotFoundError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (EmbeddingProviderError, DimensionMismatchError) as e:
        raise _provider_error(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
