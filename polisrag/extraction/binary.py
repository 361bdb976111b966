"""Regex recovery of readable text from PDF syntax the parser rejected."""

from __future__ import annotations

import logging
import re
import zlib

from polisrag.core.glossary import Glossary, get_glossary
from polisrag.core.models import PageText
from polisrag.extraction.base import AttemptResult, Extracted, ExtractionStrategy, QualityFailure, clean_text

logger = logging.getLogger(__name__)

STREAM_RE = re.compile(rb"stream\r?\n(.*?)\r?\n?endstream", re.S)

# literal string operand: balanced on escaped parens only
_PDF_STRING = r"\(((?:[^()\\]|\\.)*)\)"
TJ_STRING_RE = re.compile(_PDF_STRING + r"\s*Tj", re.S)
TJ_ARRAY_RE = re.compile(r"\[((?:[^\]\\]|\\.)*)\]\s*TJ", re.S)
ARRAY_PART_RE = re.compile(_PDF_STRING, re.S)
PROSE_RE = re.compile(r"\b[A-Z][a-z]{3,}\s+[a-z]{3,}[A-Za-z\s.,!?;:'\"€\-]{10,}")

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f", "(": "(", ")": ")", "\\": "\\"}
_ESCAPE_RE = re.compile(r"\\([0-7]{1,3}|.)", re.S)


def unescape_pdf_string(raw: str) -> str:
    def repl(m: re.Match) -> str:
        tok = m.group(1)
        if tok[0] in "01234567":
            return chr(int(tok, 8))
        if tok in "\r\n":
            return ""
        return _ESCAPES.get(tok, tok)

    return _ESCAPE_RE.sub(repl, raw)


def _inflate(body: bytes) -> bytes:
    try:
        return zlib.decompress(body)
    except zlib.error:
        pass
    try:
        return zlib.decompressobj().decompress(body)
    except zlib.error:
        return body


class BinaryPatternStrategy(ExtractionStrategy):
    name = "binary_pattern"

    def __init__(self, glossary: Glossary | None = None):
        self.glossary = glossary or get_glossary()
        words = sorted(set(self.glossary.insurance_words), key=len, reverse=True)
        self._insurance_re = re.compile("|".join(re.escape(w) for w in words), re.I)
        self._function_re = re.compile(
            r"\b(?:" + "|".join(re.escape(w) for w in self.glossary.function_words) + r")\b", re.I
        )

    async def attempt(self, data: bytes, file_name: str) -> AttemptResult:
        pages: list[PageText] = []
        bodies = STREAM_RE.findall(data) or [data]
        for body in bodies:
            content = _inflate(body).decode("latin-1", errors="ignore")
            text = " ".join(self.fragments(content))
            text = clean_text(text)
            if text:
                pages.append(PageText(page=len(pages) + 1, text=text))
        if not pages:
            return QualityFailure("no readable fragments in PDF streams")
        return Extracted(pages=pages, method="binary_pattern", total_pages=len(pages))

    def fragments(self, content: str) -> list[str]:
        found: list[str] = []
        for m in TJ_STRING_RE.finditer(content):
            found.append(unescape_pdf_string(m.group(1)))
        for m in TJ_ARRAY_RE.finditer(content):
            parts = [unescape_pdf_string(p) for p in ARRAY_PART_RE.findall(m.group(1))]
            found.append("".join(parts))
        if not found:
            found.extend(m.group(0) for m in PROSE_RE.finditer(content))

        out: list[str] = []
        for raw in found:
            text = re.sub(r"\s+", " ", raw).strip()
            if self.is_readable(text):
                out.append(text)
        return out

    def is_readable(self, text: str) -> bool:
        if not (15 < len(text) < 500):
            return False
        if "<<" in text or ">>" in text:
            return False
        if re.fullmatch(r"[0-9\s.\-]+", text):
            return False
        letters = sum(1 for ch in text if ch.isalpha())
        if letters <= len(text) * 0.5:
            return False
        return bool(
            self._insurance_re.search(text)
            or self._function_re.search(text)
            or len(text.split()) > 5
        )
