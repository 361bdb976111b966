from abc import ABC, abstractmethod

class LLM(ABC):
    @abstractmethod
    async def describe_pdf(self, data: bytes, file_name: str) -> str:
        """Return a plain-text rendition of a PDF the text parsers could not read."""
        ...
