import re

import pytest

from polisrag.core.models import PageText
from polisrag.legal.legal_sections import (
    DEFAULT_HEADING_RULES,
    HeadingRule,
    detect_sections,
    match_heading,
    section_level,
    strip_heading_markers,
)


@pytest.mark.parametrize(
    "line,rule,path,title",
    [
        ("Artikel 2.1 Dekking", "artikel", "2.1", "Dekking"),
        ("Art. 4 - Premie", "artikel", "4", "Premie"),
        ("§ 3.2 Eigen risico", "section_sign", "3.2", "Eigen risico"),
        ("Paragraaf 5 Schaderegeling", "paragraaf", "5", "Schaderegeling"),
        ("Hoofdstuk IV Algemene bepalingen", "hoofdstuk", "IV", "Algemene bepalingen"),
        ("2.3.1 Uitsluitingen bij opzet", "numbered", "2.3.1", "Uitsluitingen bij opzet"),
        ("## Artikel 7 Slotbepalingen", "artikel", "7", "Slotbepalingen"),
    ],
)
def test_match_heading_rules(line, rule, path, title):
    m = match_heading(line)
    assert m is not None
    assert (m.rule, m.path, m.title) == (rule, path, title)


@pytest.mark.parametrize(
    "line",
    [
        "De verzekerde is verplicht schade direct te melden.",
        "2 personen",
        "12.50 euro per maand",
        "",
        "Artikel 7 van de Wet is niet van toepassing op deze overeenkomst.",
        "Art. 3 Zie ook de bijzondere voorwaarden.",
    ],
)
def test_body_lines_are_not_headings(line):
    assert match_heading(line) is None


def test_marker_without_rule_opens_unnumbered_heading():
    m = match_heading("## Begripsomschrijvingen")
    assert m.rule == "marker"
    assert m.path == ""
    assert m.title == "Begripsomschrijvingen"


def test_long_unmarked_article_reference_is_body_text():
    line = "Artikel 3 " + "is van toepassing op alle schade die voortvloeit uit " * 4
    assert match_heading(line) is None


def test_detect_sections_builds_outline():
    pages = [
        PageText(page=1, text="## Polisvoorwaarden\nInleidende tekst over de polis."),
        PageText(page=2, text="Artikel 2.1 Dekking\nVerzekerd is schade aan derden.\nDe dekking loopt door."),
        PageText(page=3, text="Vervolg van de dekking.\nArtikel 2.2 Uitsluitingen\nOpzet is uitgesloten."),
    ]
    sections = detect_sections(pages, "doc-1", run_id="r1")

    assert [s.path for s in sections] == ["h1", "2.1", "2.2"]
    dekking = sections[1]
    assert dekking.title == "Dekking"
    assert dekking.level == 2
    assert (dekking.start_page, dekking.end_page) == (2, 3)
    assert dekking.content.startswith("Artikel 2.1 Dekking\n")
    assert "Vervolg van de dekking." in dekking.content
    assert [s.order for s in sections] == [0, 1, 2]
    assert all(s.run_id == "r1" and s.doc_id == "doc-1" for s in sections)


def test_heading_without_body_is_discarded():
    pages = [PageText(page=1, text="Artikel 1 Begrippen\nArtikel 2 Dekking\nSchade aan derden is verzekerd.")]
    sections = detect_sections(pages, "d")
    assert [s.path for s in sections] == ["2"]


def test_article_reference_in_body_stays_in_section():
    pages = [
        PageText(
            page=1,
            text="Artikel 1 Begrippen\nIn deze voorwaarden wordt verstaan onder verzekerde de verzekeringnemer.\n"
            "Artikel 7 van de Wet is niet van toepassing op deze overeenkomst.",
        )
    ]
    sections = detect_sections(pages, "d")
    assert [(s.path, s.title) for s in sections] == [("1", "Begrippen")]
    assert "Artikel 7 van de Wet" in sections[0].content


def test_text_without_headings_has_no_sections():
    pages = [PageText(page=1, text="Gewone tekst zonder kopjes.\nNog een regel.")]
    assert detect_sections(pages, "d") == []


def test_rules_are_extensible():
    bijlage = HeadingRule("bijlage", re.compile(r"^Bijlage\s+(?P<path>[A-Z])\s*(?P<title>.*)$"))
    pages = [PageText(page=1, text="Bijlage A Clausules\nClausule tekst.")]
    sections = detect_sections(pages, "d", rules=DEFAULT_HEADING_RULES + (bijlage,))
    assert sections[0].path == "A"
    assert sections[0].title == "Clausules"


def test_section_level_and_marker_stripping():
    assert section_level("2") == 1
    assert section_level("2.3.1") == 3
    assert strip_heading_markers("## Artikel 1\nTekst") == "Artikel 1\nTekst"
