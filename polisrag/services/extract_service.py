"""Extraction cascade: structured -> binary pattern -> vision -> filename fallback."""

from __future__ import annotations

import logging
from typing import Sequence

from polisrag.core.errors import ExtractionError
from polisrag.core.glossary import Glossary, get_glossary
from polisrag.core.models import ExtractionAttemptLog, ExtractionResult, ExtractionStats
from polisrag.extraction.base import Extracted, ExtractionStrategy, QualityFailure
from polisrag.extraction.binary import BinaryPatternStrategy
from polisrag.extraction.filename import FilenameFallbackStrategy
from polisrag.extraction.quality import check_quality
from polisrag.extraction.structured import StructuredStrategy
from polisrag.extraction.vision import VisionDescriptionStrategy

logger = logging.getLogger(__name__)


def default_strategies(glossary: Glossary | None = None) -> list[ExtractionStrategy]:
    glossary = glossary or get_glossary()
    return [
        StructuredStrategy(),
        BinaryPatternStrategy(glossary),
        VisionDescriptionStrategy(),
    ]


def _to_result(extracted: Extracted, attempts: list[ExtractionAttemptLog]) -> ExtractionResult:
    pages = [p for p in extracted.pages if p.text.strip()]
    return ExtractionResult(
        pages=pages,
        method=extracted.method,
        stats=ExtractionStats(
            total_pages=extracted.total_pages or len(pages),
            text_pages=len(pages),
            total_chars=sum(len(p.text) for p in pages),
            low_confidence=extracted.low_confidence,
            attempts=attempts,
        ),
    )


async def extract(
    data: bytes,
    file_name: str,
    *,
    doc_id: str | None = None,
    strategies: Sequence[ExtractionStrategy] | None = None,
    glossary: Glossary | None = None,
) -> ExtractionResult:
    """Turn PDF bytes into page texts. Never raises.

    Strategies run strictly in order; the next one is tried only when the
    previous raised, returned a QualityFailure, or (for gated strategies)
    failed the quality gate.
    """
    glossary = glossary or get_glossary()
    strategies = default_strategies(glossary) if strategies is None else list(strategies)
    attempts: list[ExtractionAttemptLog] = []

    for strategy in strategies:
        try:
            outcome = await strategy.attempt(data or b"", file_name)
        except ExtractionError as e:
            logger.info(
                "extraction strategy failed doc_id=%s stage=extract strategy=%s: %s",
                doc_id, strategy.name, e,
            )
            attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=False, reason=str(e)))
            continue
        except Exception as e:
            logger.warning(
                "extraction strategy raised doc_id=%s stage=extract strategy=%s: %r",
                doc_id, strategy.name, e,
            )
            attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=False, reason=repr(e)))
            continue

        if isinstance(outcome, QualityFailure):
            logger.info(
                "extraction strategy yielded nothing doc_id=%s stage=extract strategy=%s: %s",
                doc_id, strategy.name, outcome.reason,
            )
            attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=False, reason=outcome.reason))
            continue

        if not any(p.text.strip() for p in outcome.pages):
            attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=False, reason="empty pages"))
            continue

        if strategy.gated:
            reason = check_quality(" ".join(p.text for p in outcome.pages))
            if reason:
                logger.info(
                    "extraction quality gate rejected doc_id=%s stage=extract strategy=%s: %s",
                    doc_id, strategy.name, reason,
                )
                attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=False, reason=reason))
                continue

        attempts.append(ExtractionAttemptLog(strategy=strategy.name, ok=True))
        result = _to_result(outcome, attempts)
        logger.info(
            "extraction completed doc_id=%s method=%s pages=%d chars=%d",
            doc_id, result.method, len(result.pages), result.stats.total_chars,
        )
        return result

    logger.warning("all extraction strategies failed doc_id=%s file=%s; using filename fallback", doc_id, file_name)
    fallback = FilenameFallbackStrategy(glossary).build(file_name)
    attempts.append(ExtractionAttemptLog(strategy=fallback.method, ok=True))
    return _to_result(fallback, attempts)
