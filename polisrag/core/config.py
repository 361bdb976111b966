from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    APP_NAME: str = "PolisRAG"
    ENV: str = "local"
    LOG_LEVEL: str | None = None  # overrides the ENV-derived level when set
    DATA_DIR: str = "./data"
    DB_PATH: str = "./data/polisrag.sqlite3"

    # vector db
    # ":memory:" runs qdrant-client in local in-process mode (tests, quick demos)
    VECTOR_DB_URL: str = "http://localhost:6333"
    VECTOR_COLLECTION: str = "polis_chunks"
    VECTOR_RECREATE_ON_DIM_MISMATCH: bool = False

    # embedding
    # Backends:
    # - ollama: uses Ollama /api/embed (local-first, no heavy python deps)
    # - openai: uses OpenAI embeddings
    # - st: uses sentence-transformers (requires optional deps: pip install .[local_ml])
    EMBED_BACKEND: str = "ollama"  # ollama|openai|st
    EMBED_MODEL: str = "BAAI/bge-m3"  # used for st
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_EMBED_MODEL: str = "nomic-embed-text"
    OPENAI_EMBED_MODEL: str = "text-embedding-3-small"
    EMBED_DIM: int = 768  # must match the chosen embedding model
    EMBED_BATCH: int = 32
    EMBED_CONCURRENCY: int = 3
    EMBED_TIMEOUT_S: float = 60.0
    EMBED_MAX_RETRIES: int = 3
    EMBED_RETRY_WAIT_S: float = 1.0  # exponential backoff multiplier between batch retries

    # Reranking is optional. If disabled or the backend fails, retrieval keeps MMR order.
    RERANK_BACKEND: str = "none"  # none|st|hf
    RERANK_MODEL: str = "BAAI/bge-reranker-v2-m3"
    HF_TOKEN: str | None = None
    HF_RERANK_URL: str = "https://api-inference.huggingface.co/models/BAAI/bge-reranker-v2-m3"
    RERANK_TIMEOUT_S: float = 30.0
    RERANK_TRUNCATE_CHARS: int = 2000

    # vision fallback for unreadable PDFs
    OPENAI_API_KEY: str | None = None
    OPENAI_VISION_MODEL: str = "gpt-4o-mini"
    VISION_MAX_BYTES: int = 10 * 1024 * 1024
    VISION_TIMEOUT_S: float = 90.0

    # extraction quality gate
    EXTRACT_MIN_CHARS: int = 30
    EXTRACT_MIN_WORDS: int = 10
    EXTRACT_MIN_ALNUM_RATIO: float = 0.25
    HEADING_FONT_RATIO: float = 1.2

    # chunking (tokens are estimated as chars / 4)
    CHUNK_MAX_TOKENS: int = 800
    CHUNK_OVERLAP_TOKENS: int = 100

    # retrieval knobs (request defaults)
    SEARCH_TOP_N: int = 100
    SEARCH_MMR_K: int = 24
    SEARCH_LAMBDA: float = 0.7
    SEARCH_TOP_K: int = 8
    SEARCH_TOKEN_LIMIT: int = 2200
    SEARCH_MIN_SIMILARITY: float = 0.3
    STITCH_MARGIN_TOKENS: int = 200

    # CORS (for browser-based UIs)
    # Comma-separated list of allowed origins.
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
