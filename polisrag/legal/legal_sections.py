"""Section outline detection for policy documents.

Headings are recognised by an ordered rule table. Each rule pairs a line
pattern with how to read the section path and title from the match, so new
document conventions are added by appending a rule, not by touching
`detect_sections`.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from polisrag.core.models import PageText, Section
from polisrag.extraction.structured import HEADING_MARKER

MAX_TITLE_CHARS = 120

_PATH = r"(?P<path>\d+(?:\.\d+)*)\.?"
_TITLE = r"(?:\s*[:\-–.]\s*|\s+)?(?P<title>.*)$"


def _group(name: str) -> Callable[[re.Match], str]:
    def get(m: re.Match) -> str:
        return (m.group(name) or "").strip()
    return get


@dataclass(frozen=True)
class HeadingRule:
    name: str
    pattern: re.Pattern
    path: Callable[[re.Match], str] = _group("path")
    title: Callable[[re.Match], str] = _group("title")


DEFAULT_HEADING_RULES: tuple[HeadingRule, ...] = (
    HeadingRule("artikel", re.compile(r"^(?:Artikel|Art\.|Article)\s*" + _PATH + _TITLE, re.I)),
    HeadingRule("section_sign", re.compile(r"^§\s*" + _PATH + _TITLE)),
    HeadingRule("paragraaf", re.compile(r"^(?:Paragraaf|Paragraph|Par\.)\s*" + _PATH + _TITLE, re.I)),
    HeadingRule(
        "hoofdstuk",
        re.compile(r"^(?:Hoofdstuk|Chapter)\s+(?P<path>\d+|[IVXLC]+)\.?" + _TITLE, re.I),
    ),
    HeadingRule(
        "numbered",
        re.compile(r"^(?P<path>\d+(?:\.\d+)+)\.?\s+(?P<title>[A-ZÀ-Ý][^\n]{2,100})$"),
    ),
)


@dataclass
class HeadingMatch:
    rule: str
    path: str
    title: str
    line: str


def reads_as_title(title: str) -> bool:
    """False for body sentences that merely start with an article reference."""
    if not title:
        return True
    if len(title) > MAX_TITLE_CHARS or title[0].islower():
        return False
    return not title.endswith((".", ";", ",", "!", "?"))


def match_heading(
    line: str,
    rules: Sequence[HeadingRule] = DEFAULT_HEADING_RULES,
) -> HeadingMatch | None:
    stripped = line.strip()
    marked = stripped.startswith(HEADING_MARKER.strip())
    if marked:
        stripped = stripped[len(HEADING_MARKER.strip()):].strip()
    if not stripped:
        return None
    for rule in rules:
        m = rule.pattern.match(stripped)
        if not m:
            continue
        title = rule.title(m)
        if not marked and not reads_as_title(title):
            continue
        return HeadingMatch(rule=rule.name, path=rule.path(m), title=title, line=stripped)
    if marked:
        return HeadingMatch(rule="marker", path="", title=stripped, line=stripped)
    return None


def strip_heading_markers(text: str) -> str:
    marker = HEADING_MARKER.strip()
    lines = []
    for ln in (text or "").splitlines():
        s = ln.lstrip()
        if s.startswith(marker):
            s = s[len(marker):].lstrip()
            lines.append(s)
        else:
            lines.append(ln)
    return "\n".join(lines)


def section_level(path: str) -> int:
    return path.count(".") + 1


@dataclass
class _OpenSection:
    heading: HeadingMatch
    path: str
    start_page: int
    end_page: int
    body: list[str]


def detect_sections(
    pages: Iterable[PageText],
    doc_id: str,
    *,
    rules: Sequence[HeadingRule] = DEFAULT_HEADING_RULES,
    run_id: str | None = None,
) -> list[Section]:
    sections: list[Section] = []
    current: _OpenSection | None = None
    unnumbered = 0

    def flush():
        if current is None:
            return
        body = "\n".join(current.body).strip()
        if not body:
            return
        h = current.heading
        sections.append(Section(
            section_id=str(uuid.uuid4()),
            doc_id=doc_id,
            path=current.path,
            title=h.title or h.line,
            level=section_level(current.path),
            start_page=current.start_page,
            end_page=current.end_page,
            order=len(sections),
            content=f"{h.line}\n{body}",
            run_id=run_id,
        ))

    for page in pages:
        for line in (page.text or "").splitlines():
            heading = match_heading(line, rules)
            if heading is not None:
                flush()
                path = heading.path
                if not path:
                    unnumbered += 1
                    path = f"h{unnumbered}"
                current = _OpenSection(heading=heading, path=path, start_page=page.page, end_page=page.page, body=[])
                continue
            if current is not None and line.strip():
                current.body.append(line.strip())
                current.end_page = page.page
    flush()
    return sections
