import json
import os
import sqlite3
from polisrag.core.config import settings
from polisrag.core.models import Chunk, ChunkMetadata, Document, Section

_DOC_COLS = (
    "doc_id, title, file_name, status, page_count, insurer_id, insurer_name, "
    "product_name, line_of_business, document_type, meta_json"
)


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(settings.DB_PATH)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db():
    db_dir = os.path.dirname(settings.DB_PATH)
    os.makedirs(db_dir or settings.DATA_DIR, exist_ok=True)
    conn = _connect()
    cur = conn.cursor()
    cur.execute("""
    CREATE TABLE IF NOT EXISTS documents(
        doc_id TEXT PRIMARY KEY,
        title TEXT,
        file_name TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        page_count INTEGER DEFAULT 0,
        insurer_id TEXT,
        insurer_name TEXT,
        product_name TEXT,
        line_of_business TEXT,
        document_type TEXT,
        meta_json TEXT,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS sections(
        section_id TEXT PRIMARY KEY,
        doc_id TEXT NOT NULL,
        path TEXT,
        title TEXT,
        level INTEGER,
        start_page INTEGER,
        end_page INTEGER,
        ord INTEGER,
        content TEXT,
        run_id TEXT,
        FOREIGN KEY(doc_id) REFERENCES documents(doc_id) ON DELETE CASCADE
    );
    """)
    cur.execute("""
    CREATE TABLE IF NOT EXISTS chunks(
        chunk_id TEXT PRIMARY KEY,
        doc_id TEXT NOT NULL,
        section_id TEXT,
        page INTEGER,
        chunk_index INTEGER,
        text TEXT,
        token_count INTEGER,
        citation_label TEXT,
        meta_json TEXT,
        run_id TEXT,
        FOREIGN KEY(doc_id) REFERENCES documents(doc_id) ON DELETE CASCADE
    );
    """)
    cur.execute("CREATE INDEX IF NOT EXISTS idx_sections_doc ON sections(doc_id);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_chunks_doc ON chunks(doc_id);")
    conn.commit()
    conn.close()


def _row_to_document(r) -> Document:
    return Document(
        doc_id=r[0], title=r[1], file_name=r[2], status=r[3], page_count=r[4] or 0,
        insurer_id=r[5], insurer_name=r[6], product_name=r[7], line_of_business=r[8],
        document_type=r[9], meta=json.loads(r[10] or "{}"),
    )


def _row_to_section(r) -> Section:
    return Section(
        section_id=r[0], doc_id=r[1], path=r[2], title=r[3], level=r[4],
        start_page=r[5], end_page=r[6], order=r[7], content=r[8] or "", run_id=r[9],
    )


def _row_to_chunk(r) -> Chunk:
    return Chunk(
        chunk_id=r[0], doc_id=r[1], section_id=r[2], page=r[3], chunk_index=r[4],
        text=r[5], token_count=r[6], citation_label=r[7] or "",
        meta=ChunkMetadata.model_validate_json(r[8]) if r[8] else ChunkMetadata(),
        run_id=r[9],
    )


def save_document(doc: Document):
    conn = _connect()
    cur = conn.cursor()
    cur.execute(
        f"INSERT OR REPLACE INTO documents({_DOC_COLS}) VALUES(?,?,?,?,?,?,?,?,?,?,?)",
        (doc.doc_id, doc.title, doc.file_name, doc.status, doc.page_count, doc.insurer_id,
         doc.insurer_name, doc.product_name, doc.line_of_business, doc.document_type,
         json.dumps(doc.meta)),
    )
    conn.commit()
    conn.close()


def set_status(doc_id: str, status: str, error: str | None = None) -> None:
    """Update a document's status without rewriting the whole row."""
    conn = _connect()
    cur = conn.cursor()
    cur.execute("SELECT meta_json FROM documents WHERE doc_id=?", (doc_id,))
    row = cur.fetchone()
    if row is not None:
        meta = json.loads(row[0] or "{}")
        if error:
            meta["error"] = error
        else:
            meta.pop("error", None)
        cur.execute(
            "UPDATE documents SET status=?, meta_json=? WHERE doc_id=?",
            (status, json.dumps(meta), doc_id),
        )
    conn.commit()
    conn.close()


def replace_document_content(doc: Document, sections: list[Section], chunks: list[Chunk]) -> None:
    """Swap a document's sections and chunks for a new run in one transaction."""
    conn = _connect()
    try:
        with conn:
            conn.execute(
                f"INSERT OR REPLACE INTO documents({_DOC_COLS}) VALUES(?,?,?,?,?,?,?,?,?,?,?)",
                (doc.doc_id, doc.title, doc.file_name, doc.status, doc.page_count, doc.insurer_id,
                 doc.insurer_name, doc.product_name, doc.line_of_business, doc.document_type,
                 json.dumps(doc.meta)),
            )
            conn.execute("DELETE FROM chunks WHERE doc_id=?", (doc.doc_id,))
            conn.execute("DELETE FROM sections WHERE doc_id=?", (doc.doc_id,))
            conn.executemany(
                "INSERT INTO sections(section_id, doc_id, path, title, level, start_page, end_page, ord, content, run_id) "
                "VALUES(?,?,?,?,?,?,?,?,?,?)",
                [
                    (s.section_id, s.doc_id, s.path, s.title, s.level, s.start_page, s.end_page,
                     s.order, s.content, s.run_id)
                    for s in sections
                ],
            )
            conn.executemany(
                "INSERT INTO chunks(chunk_id, doc_id, section_id, page, chunk_index, text, token_count, citation_label, meta_json, run_id) "
                "VALUES(?,?,?,?,?,?,?,?,?,?)",
                [
                    (c.chunk_id, c.doc_id, c.section_id, c.page, c.chunk_index, c.text, c.token_count,
                     c.citation_label, c.meta.model_dump_json(), c.run_id)
                    for c in chunks
                ],
            )
    finally:
        conn.close()


def get_document(doc_id: str) -> Document | None:
    conn = _connect()
    cur = conn.cursor()
    cur.execute(f"SELECT {_DOC_COLS} FROM documents WHERE doc_id=?", (doc_id,))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _row_to_document(row)


def list_documents() -> list[Document]:
    conn = _connect()
    cur = conn.cursor()
    cur.execute(f"SELECT {_DOC_COLS} FROM documents ORDER BY rowid DESC")
    rows = cur.fetchall()
    conn.close()
    return [_row_to_document(r) for r in rows]


def list_sections(doc_id: str) -> list[Section]:
    conn = _connect()
    cur = conn.cursor()
    cur.execute(
        "SELECT section_id, doc_id, path, title, level, start_page, end_page, ord, content, run_id "
        "FROM sections WHERE doc_id=? ORDER BY ord",
        (doc_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [_row_to_section(r) for r in rows]


_CHUNK_COLS = "chunk_id, doc_id, section_id, page, chunk_index, text, token_count, citation_label, meta_json, run_id"


def get_chunk(chunk_id: str) -> Chunk | None:
    conn = _connect()
    cur = conn.cursor()
    cur.execute(f"SELECT {_CHUNK_COLS} FROM chunks WHERE chunk_id=?", (chunk_id,))
    row = cur.fetchone()
    conn.close()
    if not row:
        return None
    return _row_to_chunk(row)


def list_chunks(doc_id: str) -> list[Chunk]:
    conn = _connect()
    cur = conn.cursor()
    cur.execute(
        f"SELECT {_CHUNK_COLS} FROM chunks WHERE doc_id=? ORDER BY page, chunk_index",
        (doc_id,),
    )
    rows = cur.fetchall()
    conn.close()
    return [_row_to_chunk(r) for r in rows]


def list_chunk_rows(where_sql: str = "", params: tuple = ()) -> list[dict]:
    """Chunks joined with their document and section labels, as flat dicts.

    Same keys as the vector payloads, so keyword hits and vector hits can be
    turned into candidates the same way.
    """
    conn = _connect()
    cur = conn.cursor()
    sql = (
        "SELECT c.chunk_id, c.doc_id, c.section_id, c.page, c.chunk_index, c.text, c.token_count, "
        "c.citation_label, s.path, s.title, d.title, d.document_type, d.product_name, "
        "d.insurer_name, d.insurer_id, d.line_of_business "
        "FROM chunks c JOIN documents d ON d.doc_id = c.doc_id "
        "LEFT JOIN sections s ON s.section_id = c.section_id"
    )
    if where_sql:
        sql += " WHERE " + where_sql
    cur.execute(sql, params)
    rows = cur.fetchall()
    conn.close()
    out = []
    for r in rows:
        out.append({
            "chunk_id": r[0],
            "doc_id": r[1],
            "section_id": r[2],
            "page": r[3],
            "chunk_index": r[4],
            "text": r[5],
            "token_count": r[6],
            "citation_label": r[7] or "",
            "section_path": r[8],
            "section_title": r[9],
            "document_title": r[10],
            "document_type": r[11],
            "product_name": r[12],
            "insurer_name": r[13],
            "insurer_id": r[14],
            "line_of_business": r[15],
        })
    return out


def delete_document(doc_id: str) -> bool:
    """Delete a document with its sections and chunks. Returns False if unknown."""
    conn = _connect()
    cur = conn.cursor()
    cur.execute("DELETE FROM chunks WHERE doc_id=?", (doc_id,))
    cur.execute("DELETE FROM sections WHERE doc_id=?", (doc_id,))
    cur.execute("DELETE FROM documents WHERE doc_id=?", (doc_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted
