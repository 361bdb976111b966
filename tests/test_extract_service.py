"""Tests for the extraction cascade."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from polisrag.adapters.llm.base import LLM
from polisrag.core.errors import ExtractionError
from polisrag.extraction.base import Extracted, ExtractionStrategy, QualityFailure
from polisrag.extraction.binary import BinaryPatternStrategy
from polisrag.extraction.filename import FilenameFallbackStrategy
from polisrag.extraction.structured import HEADING_MARKER, StructuredStrategy
from polisrag.extraction.vision import VisionDescriptionStrategy
from polisrag.core.models import PageText
from polisrag.services.extract_service import extract


class _Raises(ExtractionStrategy):
    name = "structured"

    async def attempt(self, data, file_name):
        raise ValueError("parser exploded")


class _Returns(ExtractionStrategy):
    def __init__(self, name, text, gated=True):
        self.name = name
        self.gated = gated
        self.text = text
        self.calls = 0

    async def attempt(self, data, file_name):
        self.calls += 1
        return Extracted(pages=[PageText(page=1, text=self.text)], method=self.name, total_pages=1)


GOOD_TEXT = (
    "De verzekering dekt schade aan personen en zaken die door de verzekerde "
    "aan derden is toegebracht tijdens de looptijd van de polis."
)


@pytest.mark.asyncio
async def test_structured_three_page_policy(policy_pdf):
    result = await extract(policy_pdf, "polisvoorwaarden-avb.pdf")

    assert result.method == "structured"
    assert [p.page for p in result.pages] == [1, 2, 3]
    assert result.stats.total_pages == 3
    assert result.stats.low_confidence is False
    page2 = result.pages[1].text
    assert f"{HEADING_MARKER}Artikel 2.1 Dekking" in page2.splitlines()
    assert "aansprakelijkheid van de verzekerde" in page2


@pytest.mark.asyncio
async def test_corrupted_pdf_uses_filename_fallback(corrupted_pdf):
    result = await extract(corrupted_pdf, "231-AVB-Aansprakelijkheid.pdf")

    assert result.method == "filename_fallback"
    assert result.stats.low_confidence is True
    assert "aansprakelijkheidsverzekeringspolis" in result.text
    tried = [a.strategy for a in result.stats.attempts]
    assert tried == ["structured", "binary_pattern", "vision", "filename_fallback"]
    assert all(not a.ok for a in result.stats.attempts[:-1])


@pytest.mark.asyncio
@pytest.mark.parametrize("data", [b"", b"not a pdf at all", b"%PDF-1.7\n" + b"\x00" * 64])
async def test_extract_never_raises(data):
    result = await extract(data, "onbekend.pdf")
    assert result.pages
    assert result.text.strip()


@pytest.mark.asyncio
async def test_raising_strategy_is_absorbed():
    nxt = _Returns("binary_pattern", GOOD_TEXT)
    result = await extract(b"x", "a.pdf", strategies=[_Raises(), nxt])

    assert result.method == "binary_pattern"
    assert nxt.calls == 1
    assert result.stats.attempts[0].ok is False
    assert "parser exploded" in result.stats.attempts[0].reason


@pytest.mark.asyncio
async def test_quality_gate_rejects_and_falls_through():
    weak = _Returns("structured", "%%%% ### 12")
    strong = _Returns("binary_pattern", GOOD_TEXT)
    result = await extract(b"x", "a.pdf", strategies=[weak, strong])

    assert result.method == "binary_pattern"
    assert result.stats.attempts[0].reason.startswith("Insufficient content")


@pytest.mark.asyncio
async def test_strategies_after_success_are_not_tried():
    first = _Returns("structured", GOOD_TEXT)
    second = _Returns("binary_pattern", GOOD_TEXT)
    await extract(b"x", "a.pdf", strategies=[first, second])
    assert first.calls == 1
    assert second.calls == 0


@pytest.mark.asyncio
async def test_ungated_strategy_skips_quality_gate():
    short = _Returns("vision", "Korte polis.", gated=False)
    result = await extract(b"x", "a.pdf", strategies=[short])
    assert result.method == "vision"
    assert result.text == "Korte polis."


@pytest.mark.asyncio
async def test_binary_pattern_reads_text_operators():
    content = (
        b"BT /F1 11 Tf 72 700 Td (De verzekerde is aansprakelijk voor schade aan derden.) Tj ET\n"
        b"BT /F1 11 Tf 72 680 Td [(Het eigen risico ) -20 (bedraagt 250 euro per aanspraak.)] TJ ET"
    )
    # unreadable xref, but the content stream is intact
    data = b"%PDF-1.4\n4 0 obj\n<< /Length 1 >>\nstream\n" + content + b"\nendstream\nendobj\ntrailer garbage"
    result = await BinaryPatternStrategy().attempt(data, "x.pdf")

    assert isinstance(result, Extracted)
    text = " ".join(p.text for p in result.pages)
    assert "De verzekerde is aansprakelijk voor schade aan derden." in text
    assert "Het eigen risico bedraagt 250 euro per aanspraak." in text


def test_binary_pattern_readability_filter():
    s = BinaryPatternStrategy()
    assert s.is_readable("Dekking geldt voor schade aan derden")
    assert not s.is_readable("short")
    assert not s.is_readable("<< /Type /Page >> something long enough")
    assert not s.is_readable("12 34 56 78 90 12 34")


@pytest.mark.asyncio
async def test_vision_without_provider_is_quality_failure():
    strategy = VisionDescriptionStrategy(llm_provider=lambda: None)
    result = await strategy.attempt(b"%PDF", "x.pdf")
    assert isinstance(result, QualityFailure)


@pytest.mark.asyncio
async def test_vision_rejects_large_files():
    strategy = VisionDescriptionStrategy(llm_provider=lambda: None, max_bytes=10)
    result = await strategy.attempt(b"x" * 11, "x.pdf")
    assert isinstance(result, QualityFailure)
    assert "too large" in result.reason


def test_filename_fallback_without_known_line_of_business():
    out = FilenameFallbackStrategy().build("scan_0001.pdf")
    assert out.low_confidence is True
    assert "scan 0001" in out.pages[0].text
    assert out.notes["line_of_business"] is None


class _StubLLM(LLM):
    def __init__(self, text="", delay=0.0):
        self.text = text
        self.delay = delay

    async def describe_pdf(self, data, file_name):
        await asyncio.sleep(self.delay)
        return self.text


@pytest.mark.asyncio
async def test_vision_description_is_low_confidence():
    strategy = VisionDescriptionStrategy(llm_provider=lambda: _StubLLM("Artikel 1 Dekking\nSchade is gedekt."))
    result = await strategy.attempt(b"%PDF", "scan.pdf")
    assert result.method == "vision"
    assert result.low_confidence is True
    assert result.pages[0].text == "Artikel 1 Dekking\nSchade is gedekt."


@pytest.mark.asyncio
async def test_vision_timeout_falls_through_to_filename(corrupted_pdf):
    slow = VisionDescriptionStrategy(llm_provider=lambda: _StubLLM("te laat", delay=1.0), timeout_s=0.01)
    result = await extract(corrupted_pdf, "reisverzekering.pdf", strategies=[slow])
    assert result.method == "filename_fallback"
    assert result.stats.attempts[0].strategy == "vision"
    assert result.stats.attempts[0].ok is False
    assert result.stats.attempts[0].reason.startswith("description timed out")


@pytest.mark.asyncio
async def test_openai_describe_sends_pdf_as_file_part(monkeypatch):
    from polisrag.adapters.llm import openai as openai_adapter
    from polisrag.core.config import settings

    monkeypatch.setattr(settings, "OPENAI_API_KEY", "sk-test")
    completion = MagicMock()
    completion.choices = [MagicMock(message=MagicMock(content="Polistekst"))]
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion)

    with patch("openai.AsyncOpenAI", return_value=client):
        text = await openai_adapter.OpenAILLM().describe_pdf(b"%PDF-1.4", "polis.pdf")

    assert text == "Polistekst"
    kwargs = client.chat.completions.create.call_args.kwargs
    part = kwargs["messages"][1]["content"][1]
    assert part["type"] == "file"
    assert part["file"]["file_data"].startswith("data:application/pdf;base64,")


@pytest.mark.asyncio
async def test_structured_raises_extraction_error_on_unreadable_file():
    with pytest.raises(ExtractionError, match="unreadable PDF structure"):
        await StructuredStrategy().attempt(b"", "leeg.pdf")


@pytest.mark.asyncio
async def test_cascade_records_extraction_error_reason():
    result = await extract(b"", "leeg.pdf", strategies=[StructuredStrategy()])
    first = result.stats.attempts[0]
    assert (first.strategy, first.ok) == ("structured", False)
    assert first.reason.startswith("unreadable PDF structure")
    assert result.method == "filename_fallback"
