import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from polisrag.core.config import settings
from polisrag.core.logging import setup_logging
from polisrag.services.store_service import init_db
from polisrag.services.retrieve_service import get_vector, rebuild_bm25

from polisrag.api.routes_ingest import router as ingest_router
from polisrag.api.routes_search import router as search_router
from polisrag.api.routes_documents import router as docs_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # Ensure vector collection exists early (may auto-recreate on dim mismatch)
    try:
        await asyncio.to_thread(get_vector().ensure_collection, settings.EMBED_DIM)
    except Exception as e:
        # Don't block startup; /health will expose dependency state.
        logger.warning("vector store not ready at startup: %s", e)
    # keyword index over the stored chunks
    rebuild_bm25()
    yield


def create_app():
    setup_logging()
    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    origins = [o.strip() for o in (settings.CORS_ORIGINS or "").split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(ingest_router)
    app.include_router(search_router)
    app.include_router(docs_router)

    @app.get("/health")
    async def health():
        checks = {"vector_store": False, "embeddings": False}
        try:
            await asyncio.to_thread(get_vector().client.get_collections)
            checks["vector_store"] = True
        except Exception:
            pass

        backend = (settings.EMBED_BACKEND or "ollama").lower()
        if backend == "ollama":
            try:
                async with httpx.AsyncClient(timeout=3.0) as c:
                    r = await c.get(f"{settings.OLLAMA_BASE_URL.rstrip('/')}/api/tags")
                    checks["embeddings"] = r.status_code == 200
            except httpx.HTTPError:
                pass
        elif backend == "openai":
            checks["embeddings"] = bool(settings.OPENAI_API_KEY)
        else:
            checks["embeddings"] = True

        ok = all(checks.values())
        return {"ok": ok, "app": settings.APP_NAME, "env": settings.ENV, "deps": checks}

    return app


app = create_app()
