from __future__ import annotations

import asyncio
import logging
from typing import Callable

from polisrag.adapters.llm.base import LLM
from polisrag.core.config import settings
from polisrag.core.errors import ExtractionError
from polisrag.core.models import PageText
from polisrag.extraction.base import AttemptResult, Extracted, ExtractionStrategy, QualityFailure, clean_text

logger = logging.getLogger(__name__)


def _default_llm() -> LLM | None:
    from polisrag.services.llm_factory import get_llm
    return get_llm()


class VisionDescriptionStrategy(ExtractionStrategy):
    """Ask a vision-capable model to transcribe the PDF. Last content-based resort."""

    name = "vision"
    gated = False

    def __init__(
        self,
        llm_provider: Callable[[], LLM | None] = _default_llm,
        max_bytes: int | None = None,
        timeout_s: float | None = None,
    ):
        self.llm_provider = llm_provider
        self.max_bytes = max_bytes or settings.VISION_MAX_BYTES
        self.timeout_s = timeout_s or settings.VISION_TIMEOUT_S

    async def attempt(self, data: bytes, file_name: str) -> AttemptResult:
        if len(data) > self.max_bytes:
            return QualityFailure(f"file too large for description ({len(data)} > {self.max_bytes} bytes)")
        llm = self.llm_provider()
        if llm is None:
            return QualityFailure("no vision-capable provider configured")

        try:
            text = await asyncio.wait_for(llm.describe_pdf(data, file_name), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"description timed out after {self.timeout_s}s") from e
        text = clean_text(text)
        if not text:
            return QualityFailure("empty description")
        return Extracted(
            pages=[PageText(page=1, text=text)],
            method="vision",
            total_pages=1,
            low_confidence=True,
        )
