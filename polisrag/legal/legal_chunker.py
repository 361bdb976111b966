import math, re, uuid
from polisrag.core.config import settings
from polisrag.core.models import Chunk, ChunkMetadata, Document, ExtractionResult, PageText, Section
from polisrag.legal.legal_sections import strip_heading_markers
from polisrag.services.citation_service import citation_label

CHARS_PER_TOKEN = 4
LEAD_CHARS = 80
MIN_TITLE_CHARS = 4

def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)

def _norm(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip().lower()

def split_page(text: str, max_tokens: int, overlap_tokens: int) -> list[str]:
    """Sliding character windows; one window when the page already fits."""
    if estimate_tokens(text) <= max_tokens:
        return [text] if text.strip() else []
    max_chars = max_tokens * CHARS_PER_TOKEN
    overlap = min(overlap_tokens * CHARS_PER_TOKEN, max_chars - 1)
    parts = []
    i = 0
    while i < len(text):
        j = min(i + max_chars, len(text))
        part = text[i:j].strip()
        if part:
            parts.append(part)
        if j == len(text): break
        i = j - overlap
    return parts

class SectionMatcher:
    """Attributes chunks to sections by text containment.

    A chunk belongs to the first section whose content contains the chunk's
    leading text, else to the first section whose title appears in the chunk.
    Chunks that quote a section title elsewhere can be mis-attributed.
    """

    def __init__(self, sections: list[Section]):
        self.sections = sections
        self._contents = [_norm(strip_heading_markers(s.content)) for s in sections]
        self._titles = [_norm(s.title) for s in sections]

    def match(self, chunk_text: str) -> Section | None:
        if not self.sections:
            return None
        norm = _norm(chunk_text)
        lead = norm[:LEAD_CHARS]
        if lead:
            for section, content in zip(self.sections, self._contents):
                if lead in content:
                    return section
        for section, title in zip(self.sections, self._titles):
            if len(title) >= MIN_TITLE_CHARS and title in norm:
                return section
        return None

def chunk_pages(
    pages: list[PageText],
    doc: Document,
    sections: list[Section],
    *,
    extraction: ExtractionResult | None = None,
    max_tokens: int | None = None,
    overlap_tokens: int | None = None,
    run_id: str | None = None,
) -> list[Chunk]:
    max_tokens = max_tokens or settings.CHUNK_MAX_TOKENS
    overlap_tokens = settings.CHUNK_OVERLAP_TOKENS if overlap_tokens is None else overlap_tokens
    matcher = SectionMatcher(sections)

    chunks: list[Chunk] = []
    for page in pages:
        text = strip_heading_markers(page.text).strip()
        if not text:
            continue
        for idx, part in enumerate(split_page(text, max_tokens, overlap_tokens)):
            section = matcher.match(part)
            chunks.append(Chunk(
                chunk_id=str(uuid.uuid4()),
                doc_id=doc.doc_id,
                section_id=section.section_id if section else None,
                page=page.page,
                text=part,
                token_count=estimate_tokens(part),
                chunk_index=idx,
                citation_label=citation_label(doc, section, page.page),
                meta=ChunkMetadata(
                    extraction_method=extraction.method if extraction else None,
                    extraction_stats=extraction.stats if extraction else None,
                    low_confidence=extraction.stats.low_confidence if extraction else False,
                    section_path=section.path if section else None,
                ),
                run_id=run_id,
            ))
    return chunks
