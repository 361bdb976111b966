from __future__ import annotations

import re
from typing import Optional

from polisrag.core.models import Document, PageText
from polisrag.extraction.filename import readable_name
from polisrag.extraction.structured import HEADING_MARKER

# Names that say nothing about the policy: upload temp files, scanner output.
_GENERIC_TITLE_RE = re.compile(
    r"^(?:upload_[0-9a-fA-F\-]{8,}|scan[_\- ]?\d*|document\d*|untitled)(?:\.[A-Za-z0-9]{1,8})?$",
    re.IGNORECASE,
)
# Form numbers printed before the name, e.g. "231-AVB-..." or "AVB 2024-01"
_FORM_NUMBER_RE = re.compile(r"^\d+\s+")
# Running headers and footers that are never a title.
_NOISE_RE = re.compile(r"^(?:pagina|page|blz\.?)\s*\d+(?:\s*(?:van|of|/)\s*\d+)?$|^\d+$", re.IGNORECASE)

MAX_TITLE_CHARS = 120


def is_generic_title(title: str | None) -> bool:
    t = (title or "").strip()
    return not t or bool(_GENERIC_TITLE_RE.match(t))


def _tidy(line: str) -> str:
    s = line.strip()
    if s.startswith(HEADING_MARKER):
        s = s[len(HEADING_MARKER):]
    s = re.sub(r"\s+", " ", s).strip(" -|:_.")
    return s


def title_from_pages(pages: list[PageText] | None) -> Optional[str]:
    """Title from the first page: the first marked heading, else the first line that reads like one."""
    if not pages:
        return None
    lines = [ln for ln in (pages[0].text or "").splitlines() if ln.strip()][:40]

    for ln in lines:
        if ln.startswith(HEADING_MARKER):
            cand = _tidy(ln)
            if 4 <= len(cand) <= MAX_TITLE_CHARS and not _NOISE_RE.match(cand):
                return cand

    for ln in lines:
        cand = _tidy(ln)
        if 6 <= len(cand) <= MAX_TITLE_CHARS and not _NOISE_RE.match(cand):
            return cand
    return None


def title_from_filename(file_name: str | None) -> Optional[str]:
    if is_generic_title(file_name):
        return None
    name = _FORM_NUMBER_RE.sub("", readable_name(file_name)).strip()
    return name or None


def best_title(doc: Document, pages: list[PageText] | None = None) -> str:
    """Choose the display title of a policy document.

    Priority: caller-supplied ``meta.title``, a non-generic ``doc.title``,
    the file name without form number, the first heading of page 1, the id.
    """
    explicit = (doc.meta.get("title") or "").strip()
    if explicit:
        return explicit
    if not is_generic_title(doc.title):
        return doc.title.strip()
    return title_from_filename(doc.file_name) or title_from_pages(pages) or doc.doc_id
