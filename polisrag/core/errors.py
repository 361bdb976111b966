class PolisRagError(Exception):
    """Base class for pipeline errors."""


class ExtractionError(PolisRagError):
    """A single extraction strategy could not produce text.

    Never escapes the extraction cascade.
    """


class EmbeddingProviderError(PolisRagError):
    """The embedding provider failed for a whole batch."""

    def __init__(self, message: str, *, batch_index: int | None = None):
        super().__init__(message)
        self.batch_index = batch_index


class DimensionMismatchError(PolisRagError):
    def __init__(self, expected: int, got: int):
        super().__init__(f"embedding has dim={got} but the corpus uses dim={expected}")
        self.expected = expected
        self.got = got


class DocumentNotFoundError(PolisRagError):
    def __init__(self, doc_id: str):
        super().__init__(f"Document {doc_id} not found")
        self.doc_id = doc_id


class RerankError(PolisRagError):
    pass
