import base64

from polisrag.core.config import settings
from polisrag.adapters.llm.base import LLM

DESCRIBE_SYSTEM = (
    "You transcribe Dutch insurance documents. Return the readable text of the document "
    "as plain text, page by page, keeping article and section numbers exactly as printed. "
    "If text is illegible, summarise what the page covers instead. Do not add commentary."
)

class OpenAILLM(LLM):
    async def describe_pdf(self, data: bytes, file_name: str) -> str:
        from openai import AsyncOpenAI
        client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.VISION_TIMEOUT_S)
        encoded = base64.b64encode(data).decode("ascii")
        resp = await client.chat.completions.create(
            model=settings.OPENAI_VISION_MODEL,
            messages=[
                {"role": "system", "content": DESCRIBE_SYSTEM},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": f"Document: {file_name}"},
                        {
                            "type": "file",
                            "file": {
                                "filename": file_name,
                                "file_data": f"data:application/pdf;base64,{encoded}",
                            },
                        },
                    ],
                },
            ],
            temperature=0.0,
        )
        return resp.choices[0].message.content or ""
