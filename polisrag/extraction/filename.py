from __future__ import annotations

import re
from pathlib import PurePath

from polisrag.core.glossary import Glossary, get_glossary
from polisrag.core.models import PageText
from polisrag.extraction.base import Extracted, ExtractionStrategy


def readable_name(file_name: str) -> str:
    stem = PurePath(file_name or "document").stem
    return re.sub(r"[_\-]+", " ", stem).strip() or "document"


class FilenameFallbackStrategy(ExtractionStrategy):
    """Placeholder text derived from the filename. Cannot fail."""

    name = "filename_fallback"
    gated = False

    def __init__(self, glossary: Glossary | None = None):
        self.glossary = glossary or get_glossary()

    async def attempt(self, data: bytes, file_name: str) -> Extracted:
        return self.build(file_name)

    def build(self, file_name: str) -> Extracted:
        name = PurePath(file_name or "document.pdf").name
        lob = self.glossary.line_of_business_for(name)
        doc_type = self.glossary.document_type_for(name)

        parts = [f"Bestand: {name} ({readable_name(name)})."]
        if doc_type:
            parts.append(f"Documenttype: {doc_type}.")
        if lob:
            parts.append(lob.summary)
        else:
            parts.append(
                "Dit document betreft een verzekeringsdocument. De tekst kon niet automatisch "
                "worden uitgelezen; mogelijk gaat het om een gescande PDF."
            )
        parts.append(
            "Let op: deze tekst is afgeleid van de bestandsnaam en niet van de inhoud van het document."
        )
        return Extracted(
            pages=[PageText(page=1, text=" ".join(parts))],
            method="filename_fallback",
            total_pages=1,
            low_confidence=True,
            notes={"line_of_business": lob.key if lob else None, "document_type": doc_type},
        )
