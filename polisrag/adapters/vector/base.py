from abc import ABC, abstractmethod

from polisrag.core.errors import DimensionMismatchError


def validate_dims(vectors: list[list[float]], expected: int) -> None:
    """Reject the whole write if any vector has the wrong dimension."""
    for v in vectors:
        if len(v) != expected:
            raise DimensionMismatchError(expected=expected, got=len(v))


class VectorStore(ABC):
    """Nearest-neighbour index over chunk vectors.

    Hits are dicts: {"chunk_id", "score", "payload", "vector"}; `payload` carries
    the denormalised document/section/insurer labels written at ingest time.
    """

    @abstractmethod
    def ensure_collection(self, dim: int): ...
    @abstractmethod
    def upsert(self, ids: list[str], vectors: list[list[float]], payloads: list[dict]): ...
    @abstractmethod
    def search(self, vector: list[float], top_k: int, filter: dict | None = None) -> list[dict]: ...
    @abstractmethod
    def delete_by_doc_id(self, doc_id: str) -> None: ...
    @abstractmethod
    def delete_run(self, doc_id: str, run_id: str) -> None: ...
    @abstractmethod
    def delete_stale_runs(self, doc_id: str, keep_run_id: str) -> None: ...
