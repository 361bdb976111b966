from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Literal

DocumentStatus = Literal["pending", "processing", "completed", "failed"]
ExtractionMethod = Literal["structured", "binary_pattern", "vision", "filename_fallback"]
SearchScope = Literal["filtered", "unfiltered", "keyword", "none"]


class Document(BaseModel):
    doc_id: str
    title: str | None = None
    file_name: str | None = None
    status: DocumentStatus = "pending"
    page_count: int = 0
    insurer_id: str | None = None
    insurer_name: str | None = None
    product_name: str | None = None
    line_of_business: str | None = None
    document_type: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class PageText(BaseModel):
    page: int
    text: str


class ExtractionAttemptLog(BaseModel):
    strategy: str
    ok: bool
    reason: str | None = None


class ExtractionStats(BaseModel):
    total_pages: int = 0
    text_pages: int = 0
    total_chars: int = 0
    low_confidence: bool = False
    attempts: list[ExtractionAttemptLog] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    pages: list[PageText]
    method: ExtractionMethod
    stats: ExtractionStats = Field(default_factory=ExtractionStats)

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.pages)


class Section(BaseModel):
    section_id: str
    doc_id: str
    path: str
    title: str
    level: int = 1
    start_page: int
    end_page: int
    order: int
    content: str = ""
    run_id: str | None = None


class ChunkMetadata(BaseModel):
    """Typed metadata carried by every chunk. Bump schema_version on shape changes."""
    schema_version: int = 1
    extraction_method: ExtractionMethod | None = None
    extraction_stats: ExtractionStats | None = None
    low_confidence: bool = False
    context_enriched: bool = False
    legal_terms: list[str] = Field(default_factory=list)
    section_path: str | None = None


class Chunk(BaseModel):
    chunk_id: str
    doc_id: str
    section_id: str | None = None
    page: int
    text: str
    token_count: int
    chunk_index: int = 0
    citation_label: str = ""
    meta: ChunkMetadata = Field(default_factory=ChunkMetadata)
    run_id: str | None = None


class Embedding(BaseModel):
    chunk_id: str
    vector: list[float]
    model: str | None = None


class EnrichmentContext(BaseModel):
    """Document/section facts prepended to a chunk before it is embedded."""
    insurer_name: str | None = None
    product_name: str | None = None
    document_type: str | None = None
    section_path: str | None = None


class SearchCandidate(BaseModel):
    chunk_id: str
    doc_id: str
    text: str
    similarity: float
    vector: list[float] | None = None
    page: int | None = None
    chunk_index: int = 0
    token_count: int = 0
    section_id: str | None = None
    section_path: str | None = None
    section_title: str | None = None
    document_title: str | None = None
    document_type: str | None = None
    product_name: str | None = None
    insurer_name: str | None = None
    insurer_id: str | None = None
    line_of_business: str | None = None
    citation_label: str = ""
    match_source: Literal["vector", "keyword"] = "vector"
    rerank_score: float | None = None


class RankedPassage(BaseModel):
    rank: int
    chunk_ids: list[str]
    doc_id: str
    text: str
    token_count: int
    similarity: float
    rerank_score: float | None = None
    citation_label: str
    page: int | None = None
    section_id: str | None = None
    section_path: str | None = None
    section_title: str | None = None
    document_title: str | None = None
    product_name: str | None = None
    insurer_name: str | None = None
    truncated: bool = False
    stitched: bool = False


class SearchFilters(BaseModel):
    line_of_business: str | None = None
    insurer: str | None = None
    document_type: str | None = None

    def to_payload_filter(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.line_of_business:
            out["line_of_business"] = self.line_of_business
        if self.insurer:
            out["insurer_id"] = self.insurer
        if self.document_type:
            out["document_type"] = self.document_type
        return out


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str
    filters: SearchFilters = Field(default_factory=SearchFilters)
    top_n: int | None = Field(default=None, alias="topN", ge=1)
    mmr_k: int | None = Field(default=None, alias="mmrK", ge=1)
    lambda_: float | None = Field(default=None, alias="lambda")
    top_k: int | None = Field(default=None, alias="topK", ge=1)
    token_limit: int | None = Field(default=None, alias="tokenLimit", ge=1)
    use_stitching: bool = Field(default=True, alias="useStitching")
    use_reranking: bool = Field(default=True, alias="useReranking")

    @field_validator("lambda_")
    @classmethod
    def _clamp_lambda(cls, v: float | None) -> float | None:
        if v is None:
            return None
        return min(1.0, max(0.0, float(v)))


class PipelineStats(BaseModel):
    initial_search: int = 0
    mmr_results: int = 0
    reranked_results: int = 0
    final_results: int = 0


class SearchResponse(BaseModel):
    status: Literal["ok", "no_results"]
    results: list[RankedPassage] = Field(default_factory=list)
    pipeline_stats: PipelineStats = Field(default_factory=PipelineStats)
    search_scope: SearchScope = "none"
