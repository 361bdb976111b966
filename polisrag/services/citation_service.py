from __future__ import annotations

from polisrag.core.models import Document, RankedPassage, Section


def section_label(path: str | None, title: str | None) -> str | None:
    # unnumbered (marker-only) headings carry a synthetic "h<n>" path
    if path and not path.startswith("h"):
        return f"§{path} {title}".strip() if title else f"§{path}"
    return (title or "").strip() or None


def citation_label(doc: Document | None, section: Section | None, page: int) -> str:
    """Human-readable provenance: insurer, document, section, page.

    Missing parts are left out; the page always closes the label.
    """
    parts: list[str] = []
    if doc is not None:
        if doc.insurer_name:
            parts.append(doc.insurer_name.strip())
        doc_name = (doc.title or doc.document_type or "").strip()
        if doc_name:
            parts.append(doc_name)
    if section is not None:
        sec = section_label(section.path, section.title)
        if sec:
            parts.append(sec)
    parts.append(f"p. {page}")
    return ", ".join(parts)


def stitched_label(head_label: str, count: int) -> str:
    if count <= 1:
        return head_label
    return f"{head_label} ({count} fragmenten)"


def build_context(passages: list[RankedPassage]) -> str:
    """Numbered context blocks for the answer-synthesis step."""
    blocks = []
    for p in passages:
        blocks.append(f"[{p.rank}] ({p.citation_label})\n{p.text}")
    return "\n\n".join(blocks)
