from polisrag.extraction.base import clean_text
from polisrag.extraction.quality import check_quality


def test_accepts_prose():
    text = "De verzekering dekt schade aan personen en zaken van derden binnen de polis."
    assert check_quality(text) is None


def test_rejects_short_text():
    assert check_quality("Polis").startswith("Insufficient content")


def test_rejects_few_words():
    assert check_quality("a b c d e f g h i j k l m n o p q r s t u v w x y z").startswith("Too few words")


def test_rejects_symbol_soup():
    text = "%% ## && ** ab cd ef gh ij kl mn op ~~ ^^ ++ == ;; :: // \\\\ || ?? !! @@ $$ ((" * 2
    reason = check_quality(text)
    assert reason is not None and reason.startswith("Low alphanumeric ratio")


def test_thresholds_are_overridable():
    assert check_quality("twee woorden", min_chars=1, min_words=2, min_alnum_ratio=0.1) is None


def test_clean_text_strips_control_chars_and_blank_runs():
    raw = "Artikel\x00 1\x07  Dekking\n\n\n\n  De   polis\t dekt "
    assert clean_text(raw) == "Artikel 1 Dekking\n\nDe polis dekt"
