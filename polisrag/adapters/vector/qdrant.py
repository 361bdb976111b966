from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http import models as qm

from polisrag.core.config import settings
from polisrag.adapters.vector.base import VectorStore, validate_dims

logger = logging.getLogger(__name__)

# payload keys searches filter on
INDEXED_KEYS = ("doc_id", "run_id", "line_of_business", "insurer_id", "document_type")


def _meta_filter_to_qdrant_filter(meta_filter: Optional[Dict[str, Any]]) -> Optional[qm.Filter]:
    """Convert simple {key: value} filters into a Qdrant filter."""
    if not meta_filter:
        return None
    must = [
        qm.FieldCondition(key=k, match=qm.MatchValue(value=v))
        for k, v in meta_filter.items()
        if v is not None
    ]
    return qm.Filter(must=must) if must else None


class QdrantVectorStore(VectorStore):
    def __init__(self, url: str | None = None, collection: str | None = None, dim: int | None = None):
        self.collection = collection or settings.VECTOR_COLLECTION
        self.url = (url or settings.VECTOR_DB_URL).rstrip("/")
        self.dim = dim or settings.EMBED_DIM
        if self.url == ":memory:":
            self.client = QdrantClient(location=":memory:")
        else:
            self.client = QdrantClient(url=self.url)

    @staticmethod
    def _normalize_hit(hit: Any) -> Dict[str, Any]:
        """Normalize Qdrant points to a stable dict shape.

        Ingestion uses chunk_id as the point id, so when the payload doesn't
        carry chunk_id it is derived from the point id.
        """
        pid = getattr(hit, "id", None)
        payload = getattr(hit, "payload", None) or {}
        vector = getattr(hit, "vector", None)
        if isinstance(vector, dict):
            vector = next(iter(vector.values()), None)
        return {
            "chunk_id": str(payload.get("chunk_id") or pid),
            "score": float(getattr(hit, "score", 0.0) or 0.0),
            "payload": payload,
            "vector": list(vector) if vector is not None else None,
        }

    def _existing_dim(self) -> Optional[int]:
        if not self.client.collection_exists(self.collection):
            return None
        info = self.client.get_collection(self.collection)
        vectors = info.config.params.vectors
        # named vectors come back as a dict
        if isinstance(vectors, dict):
            vectors = vectors.get("") or next(iter(vectors.values()), None)
        return int(vectors.size) if vectors is not None else None

    def ensure_collection(self, dim: int | None = None):
        """Ensure the collection exists AND has the expected embedding dimension."""
        dim = dim or self.dim
        existing_dim = self._existing_dim()
        if existing_dim is not None:
            if existing_dim == dim:
                return
            if not settings.VECTOR_RECREATE_ON_DIM_MISMATCH:
                raise RuntimeError(
                    f"Qdrant collection '{self.collection}' has dim={existing_dim} but expected dim={dim}. "
                    "Set VECTOR_RECREATE_ON_DIM_MISMATCH=true to auto-recreate."
                )
            logger.warning("recreating collection %s: dim %s -> %s", self.collection, existing_dim, dim)
            self.client.delete_collection(self.collection)

        self.client.create_collection(
            collection_name=self.collection,
            vectors_config=qm.VectorParams(size=dim, distance=qm.Distance.COSINE),
        )
        if self.url != ":memory:":
            for key in INDEXED_KEYS:
                self.client.create_payload_index(
                    collection_name=self.collection,
                    field_name=key,
                    field_schema=qm.PayloadSchemaType.KEYWORD,
                )

    def upsert(self, ids: List[str], vectors: List[List[float]], payloads: List[Dict[str, Any]]):
        validate_dims(vectors, self.dim)
        points = [
            qm.PointStruct(id=i, vector=v, payload={"chunk_id": i, **p})
            for i, v, p in zip(ids, vectors, payloads)
        ]
        if points:
            self.client.upsert(collection_name=self.collection, points=points, wait=True)

    def search(self, vector: List[float], top_k: int, filter: Optional[Dict[str, Any]] = None):
        validate_dims([vector], self.dim)
        res = self.client.query_points(
            collection_name=self.collection,
            query=vector,
            limit=top_k,
            query_filter=_meta_filter_to_qdrant_filter(filter),
            with_payload=True,
            with_vectors=True,
        )
        return [self._normalize_hit(h) for h in res.points]

    def _delete(self, qfilter: qm.Filter) -> None:
        self.client.delete(
            collection_name=self.collection,
            points_selector=qm.FilterSelector(filter=qfilter),
            wait=True,
        )

    def delete_by_doc_id(self, doc_id: str) -> None:
        """Delete all points that belong to a document (by payload field `doc_id`)."""
        self._delete(_meta_filter_to_qdrant_filter({"doc_id": doc_id}))

    def delete_run(self, doc_id: str, run_id: str) -> None:
        self._delete(_meta_filter_to_qdrant_filter({"doc_id": doc_id, "run_id": run_id}))

    def delete_stale_runs(self, doc_id: str, keep_run_id: str) -> None:
        self._delete(qm.Filter(
            must=[qm.FieldCondition(key="doc_id", match=qm.MatchValue(value=doc_id))],
            must_not=[qm.FieldCondition(key="run_id", match=qm.MatchValue(value=keep_run_id))],
        ))
