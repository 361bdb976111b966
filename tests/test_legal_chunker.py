import pytest

from polisrag.core.models import Document, ExtractionResult, ExtractionStats, PageText
from polisrag.legal.legal_chunker import (
    CHARS_PER_TOKEN,
    SectionMatcher,
    chunk_pages,
    estimate_tokens,
    split_page,
)
from polisrag.legal.legal_sections import detect_sections


@pytest.fixture
def doc():
    return Document(doc_id="doc-1", title="Polisvoorwaarden AVB", insurer_name="Delta Verzekeringen")


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_short_page_is_one_chunk():
    assert split_page("Korte pagina.", 800, 100) == ["Korte pagina."]


@pytest.mark.parametrize("max_tokens,overlap", [(50, 10), (64, 0), (30, 29)])
def test_windows_respect_token_ceiling(max_tokens, overlap):
    text = " ".join(f"woord{i}" for i in range(600))
    parts = split_page(text, max_tokens, overlap)
    assert len(parts) > 1
    assert all(estimate_tokens(p) <= max_tokens for p in parts)
    # windows cover the whole page
    assert parts[0].startswith("woord0 ")
    assert parts[-1].endswith("woord599")


def test_windows_overlap():
    text = "x" * 400 + "y" * 400
    parts = split_page(text, max_tokens=100, overlap_tokens=25)
    assert len(parts[0]) == 100 * CHARS_PER_TOKEN
    assert parts[1].startswith(parts[0][-25 * CHARS_PER_TOKEN:])


def test_chunk_pages_attributes_sections_and_labels(doc):
    pages = [
        PageText(page=1, text="## Inleiding\nAlgemene uitleg over deze polis en de verzekerde."),
        PageText(page=2, text="## Artikel 2.1 Dekking\nVerzekerd is de aansprakelijkheid voor schade aan derden."),
        PageText(page=3, text=""),
    ]
    extraction = ExtractionResult(
        pages=pages, method="structured", stats=ExtractionStats(total_pages=3, low_confidence=False)
    )
    sections = detect_sections(pages, doc.doc_id, run_id="r1")
    chunks = chunk_pages(pages, doc, sections, extraction=extraction, run_id="r1")

    assert [c.page for c in chunks] == [1, 2]
    c2 = chunks[1]
    assert not c2.text.startswith("##")
    assert c2.section_id == sections[1].section_id
    assert c2.meta.section_path == "2.1"
    assert c2.meta.extraction_method == "structured"
    assert c2.citation_label == "Delta Verzekeringen, Polisvoorwaarden AVB, §2.1 Dekking, p. 2"
    assert chunks[0].citation_label == "Delta Verzekeringen, Polisvoorwaarden AVB, Inleiding, p. 1"
    assert all(c.run_id == "r1" and c.chunk_index == 0 for c in chunks)


def test_chunk_indices_increase_within_a_page(doc):
    pages = [PageText(page=4, text="schade " * 1000)]
    chunks = chunk_pages(pages, doc, [], max_tokens=200, overlap_tokens=20)
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    assert all(c.token_count <= 200 for c in chunks)
    assert all(c.section_id is None for c in chunks)
    assert chunks[0].citation_label.endswith("p. 4")


def test_section_matcher_falls_back_to_title(doc):
    pages = [PageText(page=1, text="Artikel 9 Premiebetaling\nDe premie wordt jaarlijks vooraf betaald.")]
    sections = detect_sections(pages, doc.doc_id)
    matcher = SectionMatcher(sections)
    assert matcher.match("Zie ook premiebetaling in een andere context") is sections[0]
    assert matcher.match("Iets totaal anders") is None
