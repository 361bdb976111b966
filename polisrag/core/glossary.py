"""Domain vocabulary for Dutch insurance documents.

Loaded once per process and passed to the segmenter, embedder and extraction
strategies. Everything here is immutable.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class LineOfBusiness:
    key: str
    label: str
    # lowercase substrings matched against a filename
    keywords: tuple[str, ...]
    # placeholder body used when nothing could be read from the PDF
    summary: str


@dataclass(frozen=True)
class Glossary:
    legal_terms: tuple[str, ...]
    insurance_words: tuple[str, ...]
    function_words: tuple[str, ...]
    lines_of_business: tuple[LineOfBusiness, ...]
    document_types: tuple[tuple[str, str], ...]

    def terms_in(self, text: str) -> list[str]:
        """Legal terms that occur in `text`, in glossary order."""
        low = (text or "").lower()
        return [t for t in self.legal_terms if t.lower() in low]

    def line_of_business_for(self, file_name: str) -> LineOfBusiness | None:
        low = (file_name or "").lower()
        for lob in self.lines_of_business:
            if any(k in low for k in lob.keywords):
                return lob
        return None

    def document_type_for(self, file_name: str) -> str | None:
        low = (file_name or "").lower()
        for keyword, label in self.document_types:
            if keyword in low:
                return label
        return None


LEGAL_TERMS = (
    "aansprakelijkheid", "dekking", "uitkering", "premie", "polis", "voorwaarden",
    "uitsluitingen", "eigen risico", "verzekeringsmaatschappij", "verzekerde",
    "verzekeringnemer", "schade", "incident", "claimen", "regres", "artikel",
    "lid", "paragraaf", "bepaling", "clausule", "wetgeving", "AVB", "AVV",
)

INSURANCE_WORDS = (
    "verzekering", "dekking", "premie", "polis", "risico", "schade",
    "voorwaarden", "aansprakelijk", "verzekerd", "uitkering", "eigen risico",
)

FUNCTION_WORDS = (
    "van", "voor", "met", "aan", "bij", "onder", "over", "door", "uit",
    "binnen", "buiten", "tegen", "het", "een", "de", "is", "zijn", "wordt",
)

LINES_OF_BUSINESS = (
    LineOfBusiness(
        key="aansprakelijkheid",
        label="Aansprakelijkheidsverzekering",
        keywords=("aansprakelijk", "avb", "avp", "liability"),
        summary=(
            "Dit document betreft een aansprakelijkheidsverzekeringspolis. "
            "De verzekering dekt de aansprakelijkheid van de verzekerde voor schade "
            "aan personen en zaken die aan derden is toegebracht, binnen de grenzen "
            "van het verzekerde bedrag en het eigen risico. Uitsluitingen en "
            "voorwaarden staan in de polisvoorwaarden."
        ),
    ),
    LineOfBusiness(
        key="rechtsbijstand",
        label="Rechtsbijstandverzekering",
        keywords=("rechtsbijstand", "legal-aid"),
        summary=(
            "Dit document betreft een rechtsbijstandverzekeringspolis. "
            "De verzekering geeft recht op juridische hulp bij geschillen binnen "
            "de verzekerde rechtsgebieden, met inachtneming van de wachttijd en "
            "het minimale belang."
        ),
    ),
    LineOfBusiness(
        key="cyber",
        label="Cyberverzekering",
        keywords=("cyber", "datalek"),
        summary=(
            "Dit document betreft een cyberverzekeringspolis. "
            "De verzekering dekt schade door cyberincidenten en datalekken, "
            "waaronder herstelkosten, bedrijfsschade en aansprakelijkheid."
        ),
    ),
    LineOfBusiness(
        key="brand",
        label="Brand- en opstalverzekering",
        keywords=("brand", "opstal", "gebouw"),
        summary=(
            "Dit document betreft een brand- en opstalverzekeringspolis. "
            "De verzekering dekt schade aan het gebouw door brand, storm en andere "
            "in de voorwaarden genoemde gebeurtenissen."
        ),
    ),
    LineOfBusiness(
        key="inventaris",
        label="Inventaris- en goederenverzekering",
        keywords=("inventaris", "goederen", "inboedel"),
        summary=(
            "Dit document betreft een inventaris- of inboedelverzekeringspolis. "
            "De verzekering dekt schade aan roerende zaken binnen het verzekerde "
            "risicoadres."
        ),
    ),
    LineOfBusiness(
        key="motorrijtuigen",
        label="Motorrijtuigverzekering",
        keywords=("motorrijtuig", "auto", "wagenpark", "voertuig"),
        summary=(
            "Dit document betreft een motorrijtuigverzekeringspolis. "
            "De verzekering dekt de wettelijke aansprakelijkheid en, afhankelijk "
            "van de gekozen dekking, schade aan het motorrijtuig zelf."
        ),
    ),
    LineOfBusiness(
        key="car",
        label="Construction All Risks",
        keywords=("car-", "constructie", "all-risks", "bouw"),
        summary=(
            "Dit document betreft een CAR-verzekeringspolis. "
            "De verzekering dekt schade aan het bouwwerk in uitvoering en "
            "aansprakelijkheid tijdens de bouw."
        ),
    ),
    LineOfBusiness(
        key="arbeidsongeschiktheid",
        label="Arbeidsongeschiktheidsverzekering",
        keywords=("arbeidsongeschikt", "aov", "verzuim"),
        summary=(
            "Dit document betreft een arbeidsongeschiktheidsverzekeringspolis. "
            "De verzekering keert uit bij arbeidsongeschiktheid na afloop van de "
            "eigenrisicoperiode."
        ),
    ),
    LineOfBusiness(
        key="transport",
        label="Transportverzekering",
        keywords=("transport", "cargo", "vervoer"),
        summary=(
            "Dit document betreft een transportverzekeringspolis. "
            "De verzekering dekt schade aan goederen tijdens vervoer."
        ),
    ),
    LineOfBusiness(
        key="reis",
        label="Reisverzekering",
        keywords=("reis", "travel"),
        summary=(
            "Dit document betreft een reisverzekeringspolis. "
            "De verzekering dekt kosten en schade tijdens reizen binnen de "
            "verzekerde periode."
        ),
    ),
)

DOCUMENT_TYPES = (
    ("polisblad", "Polisblad"),
    ("clausule", "Clausuleblad"),
    ("bijzondere", "Bijzondere voorwaarden"),
    ("voorwaarden", "Polisvoorwaarden"),
    ("avb", "Algemene voorwaarden"),
    ("ipid", "Productinformatie (IPID)"),
)


@lru_cache
def get_glossary() -> Glossary:
    return Glossary(
        legal_terms=LEGAL_TERMS,
        insurance_words=INSURANCE_WORDS,
        function_words=FUNCTION_WORDS,
        lines_of_business=LINES_OF_BUSINESS,
        document_types=DOCUMENT_TYPES,
    )
