# gemini_chat/llm.py
"""
Gemini text generation for bot replies: text in, text out.
"""

from typing import Optional

from google import genai
from google.genai import types

from .config import settings
from .logging_config import get_logger

logger = get_logger(__name__)


class ModelError(RuntimeError):
    """Any failure to obtain usable text from the model"""


class GeminiClient:

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[int] = None
    ):
        self.model = model or settings.GEMINI_LLM_MODEL
        self.timeout_seconds = timeout_seconds or settings.GEMINI_TIMEOUT_SECONDS
        self._client = genai.Client(
            api_key=api_key or settings.GEMINI_API_KEY,
            # google-genai takes the HTTP timeout in milliseconds
            http_options=types.HttpOptions(timeout=self.timeout_seconds * 1000),
        )

    def generate(self, text: str) -> str:
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=text,
            )
        except Exception as e:
            raise ModelError(f"Gemini API error: {e}") from e

        reply = getattr(response, "text", None)
        if not reply or not reply.strip():
            raise ModelError("Gemini returned an empty response")

        if getattr(response, "usage_metadata", None):
            logger.debug(
                "Gemini usage",
                extra={"extra_data": {
                    "model": self.model,
                    "prompt_tokens": response.usage_metadata.prompt_token_count,
                    "candidate_tokens": response.usage_metadata.candidates_token_count,
                }}
            )

        return reply


_model_client: Optional[GeminiClient] = None


def get_model_client() -> GeminiClient:
    """Process-wide client, created on first use inside the worker"""
    global _model_client
    if _model_client is None:
        _model_client = GeminiClient()
    return _model_client
