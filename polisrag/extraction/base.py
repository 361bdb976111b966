from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from polisrag.core.models import ExtractionMethod, PageText


@dataclass
class Extracted:
    pages: list[PageText]
    method: ExtractionMethod
    total_pages: int = 0
    low_confidence: bool = False
    notes: dict = field(default_factory=dict)


@dataclass
class QualityFailure:
    reason: str


AttemptResult = Extracted | QualityFailure


class ExtractionStrategy(ABC):
    name: ExtractionMethod
    # whether the cascade applies the quality gate to this strategy's output
    gated: bool = True

    @abstractmethod
    async def attempt(self, data: bytes, file_name: str) -> AttemptResult:
        ...


_CONTROL_RE = re.compile(r"[\x00-\x08\x0B\x0E-\x1F]")


def clean_text(text: str) -> str:
    """Strip PDF artifacts and normalise whitespace per line."""
    text = (text or "").replace("\0", "").replace("\f", "\n\n")
    text = _CONTROL_RE.sub(" ", text)
    lines = [re.sub(r"[ \t]+", " ", ln).strip() for ln in text.splitlines()]
    out = "\n".join(lines)
    out = re.sub(r"\n{3,}", "\n\n", out)
    return out.strip()
