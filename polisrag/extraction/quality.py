from __future__ import annotations

from polisrag.core.config import settings


def check_quality(
    text: str,
    *,
    min_chars: int | None = None,
    min_words: int | None = None,
    min_alnum_ratio: float | None = None,
) -> str | None:
    """Return the rejection reason, or None when the text is usable."""
    min_chars = settings.EXTRACT_MIN_CHARS if min_chars is None else min_chars
    min_words = settings.EXTRACT_MIN_WORDS if min_words is None else min_words
    min_alnum_ratio = settings.EXTRACT_MIN_ALNUM_RATIO if min_alnum_ratio is None else min_alnum_ratio

    text = text or ""
    if len(text) < min_chars:
        return f"Insufficient content ({len(text)} chars)"

    words = [w for w in text.split() if len(w) > 1]
    if len(words) < min_words:
        return f"Too few words ({len(words)})"

    alnum = sum(1 for ch in text if ch.isalnum())
    ratio = alnum / len(text)
    if ratio < min_alnum_ratio:
        return f"Low alphanumeric ratio ({ratio * 100:.1f}%)"
    return None
