"""
Shared fixtures: isolated settings/SQLite per test, a deterministic hashing
embedder, an in-memory vector store double and a tiny in-process PDF writer.
"""

import hashlib
import math
import re

import numpy as np
import pytest

from polisrag.adapters.vector.base import VectorStore, validate_dims
from polisrag.core.config import settings
from polisrag.services import embed_service, store_service

TEST_DIM = 32


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point storage at a tmp dir and switch off every external provider."""
    monkeypatch.setattr(settings, "DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "DB_PATH", str(tmp_path / "test.sqlite3"))
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "HF_TOKEN", None)
    monkeypatch.setattr(settings, "RERANK_BACKEND", "none")
    monkeypatch.setattr(settings, "EMBED_DIM", TEST_DIM)
    monkeypatch.setattr(settings, "EMBED_MAX_RETRIES", 2)
    monkeypatch.setattr(settings, "EMBED_RETRY_WAIT_S", 0.0)
    store_service.init_db()
    yield settings


def hash_vector(text: str, dim: int = TEST_DIM) -> list[float]:
    """Bag-of-words hashed into `dim` buckets, L2-normalised."""
    vec = [0.0] * dim
    for tok in re.findall(r"\w+", (text or "").lower()):
        h = int(hashlib.md5(tok.encode("utf-8")).hexdigest(), 16)
        vec[h % dim] += 1.0
    norm = math.sqrt(sum(v * v for v in vec)) or 1.0
    return [v / norm for v in vec]


async def fake_embed_texts(texts):
    return [hash_vector(t) for t in texts]


@pytest.fixture
def hash_embedder(monkeypatch):
    """Replace the provider call; enrichment and batching stay real."""
    monkeypatch.setattr(embed_service, "embed_texts", fake_embed_texts)
    return fake_embed_texts


class InMemoryVectorStore(VectorStore):
    def __init__(self, dim: int = TEST_DIM):
        self.dim = dim
        self.points: dict[str, tuple[list[float], dict]] = {}
        self.collections: list[int] = []

    def ensure_collection(self, dim: int):
        self.collections.append(dim)

    def upsert(self, ids, vectors, payloads):
        validate_dims(vectors, self.dim)
        for i, v, p in zip(ids, vectors, payloads):
            self.points[i] = (list(v), {"chunk_id": i, **p})

    def search(self, vector, top_k, filter=None):
        q = np.asarray(vector, dtype=float)
        qn = np.linalg.norm(q) or 1.0
        hits = []
        for pid, (v, payload) in self.points.items():
            if filter and any(payload.get(k) != val for k, val in filter.items()):
                continue
            a = np.asarray(v, dtype=float)
            score = float(a @ q / ((np.linalg.norm(a) or 1.0) * qn))
            hits.append({"chunk_id": pid, "score": score, "payload": payload, "vector": v})
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:top_k]

    def delete_by_doc_id(self, doc_id):
        self.points = {k: v for k, v in self.points.items() if v[1].get("doc_id") != doc_id}

    def delete_run(self, doc_id, run_id):
        self.points = {
            k: v for k, v in self.points.items()
            if not (v[1].get("doc_id") == doc_id and v[1].get("run_id") == run_id)
        }

    def delete_stale_runs(self, doc_id, keep_run_id):
        self.points = {
            k: v for k, v in self.points.items()
            if v[1].get("doc_id") != doc_id or v[1].get("run_id") == keep_run_id
        }


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


def _pdf_escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def make_pdf(pages: list[list[tuple[str, float, bool]]]) -> bytes:
    """Write a minimal PDF; each page is a list of (text, font size, bold) lines."""
    objs: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
        4: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica-Bold /Encoding /WinAnsiEncoding >>",
    }
    kids = []
    next_id = 5
    for lines in pages:
        page_id, content_id = next_id, next_id + 1
        next_id += 2
        kids.append(page_id)
        ops = []
        y = 790.0
        for text, size, bold in lines:
            font = "/F2" if bold else "/F1"
            ops.append(f"BT {font} {size:g} Tf 72 {y:.1f} Td ({_pdf_escape(text)}) Tj ET")
            y -= size * 1.8
        stream = "\n".join(ops).encode("latin-1")
        objs[content_id] = b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream"
        objs[page_id] = (
            "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595 842] "
            "/Resources << /Font << /F1 3 0 R /F2 4 0 R >> >> "
            f"/Contents {content_id} 0 R >>"
        ).encode("latin-1")
    kid_refs = " ".join(f"{k} 0 R" for k in kids)
    objs[2] = f"<< /Type /Pages /Kids [{kid_refs}] /Count {len(kids)} >>".encode("latin-1")

    out = bytearray(b"%PDF-1.4\n")
    offsets = {}
    for i in range(1, next_id):
        offsets[i] = len(out)
        out += f"{i} 0 obj\n".encode("latin-1") + objs[i] + b"\nendobj\n"
    xref = len(out)
    out += f"xref\n0 {next_id}\n".encode("latin-1")
    out += b"0000000000 65535 f \n"
    for i in range(1, next_id):
        out += f"{offsets[i]:010d} 00000 n \n".encode("latin-1")
    out += f"trailer\n<< /Size {next_id} /Root 1 0 R >>\nstartxref\n{xref}\n%%EOF\n".encode("latin-1")
    return bytes(out)


BODY = 11.0
HEADING = 16.0

POLICY_PAGES = [
    [
        ("Polisvoorwaarden Aansprakelijkheid Bedrijven", HEADING, True),
        ("Deze voorwaarden gelden voor de aansprakelijkheidsverzekering van de verzekeringnemer.", BODY, False),
        ("De polis vermeldt de verzekerde bedragen en het eigen risico per aanspraak.", BODY, False),
    ],
    [
        ("Artikel 2.1 Dekking", HEADING, True),
        ("Verzekerd is de aansprakelijkheid van de verzekerde voor schade aan personen en zaken.", BODY, False),
        ("De dekking geldt voor schade die tijdens de looptijd van de verzekering is ontstaan.", BODY, False),
    ],
    [
        ("Artikel 2.2 Uitsluitingen", HEADING, True),
        ("Niet verzekerd is schade die opzettelijk door de verzekerde is veroorzaakt.", BODY, False),
        ("Ook schade aan zaken die de verzekerde onder zich heeft valt buiten de dekking.", BODY, False),
    ],
]


@pytest.fixture
def policy_pdf() -> bytes:
    return make_pdf(POLICY_PAGES)


@pytest.fixture
def corrupted_pdf() -> bytes:
    return (
        b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<< /Length 160 >>\nstream\n"
        + b"\x00\xff\x13\x37\x8a\x01" * 30
        + b"\nendstream\nendobj\n%%EOF"
    )
