from polisrag.core.config import settings
from polisrag.adapters.llm.base import LLM
from polisrag.adapters.llm.openai import OpenAILLM

def get_llm() -> LLM | None:
    """Vision-capable LLM for the description fallback, or None when not configured."""
    if settings.OPENAI_API_KEY:
        return OpenAILLM()
    return None
