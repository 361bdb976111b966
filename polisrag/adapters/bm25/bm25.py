import re

from rank_bm25 import BM25Okapi

_TOKEN_RE = re.compile(r"[^\w\s-]")


def tokenize(text: str) -> list[str]:
    tokens = _TOKEN_RE.sub(" ", (text or "").lower()).split()
    return [t for t in tokens if len(t) > 2]


class BM25Index:
    """Keyword index over every stored chunk.

    Rows are the dicts produced by store_service.list_chunk_rows; search returns
    them with `bm25_score` and `score` (bm25 divided by the best score, so the
    top hit is 1.0).
    """

    def __init__(self):
        self._bm25 = None
        self._rows = []

    def __len__(self):
        return len(self._rows)

    def build(self, rows: list[dict]):
        rows = [r for r in rows if (r.get("text") or "").strip()]
        corpus = [tokenize(r["text"]) for r in rows]
        # BM25Okapi divides by the average document length
        if not any(corpus):
            self._bm25, self._rows = None, []
            return
        self._rows = rows
        self._bm25 = BM25Okapi(corpus)

    def search(self, query: str, top_k: int = 20) -> list[dict]:
        if not self._bm25:
            return []
        query_tokens = tokenize(query)
        if not query_tokens:
            return []
        scores = self._bm25.get_scores(query_tokens)
        ranked = sorted(range(len(scores)), key=lambda i: scores[i], reverse=True)[:top_k]
        ranked = [i for i in ranked if scores[i] > 0]
        if not ranked:
            return []
        best = float(scores[ranked[0]])
        return [
            {**self._rows[i], "bm25_score": float(scores[i]), "score": float(scores[i]) / best}
            for i in ranked
        ]
