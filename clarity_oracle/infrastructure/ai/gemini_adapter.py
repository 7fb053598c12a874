"""Google Gemini implementation of the evidence provider interface."""

from typing import Optional

from pydantic import Field

from ...domain.models.errors import MalformedResponseError
from .base_adapter import HTTPEvidenceAdapter, ProviderConfig


class GeminiConfig(ProviderConfig):
    """Configuration for Gemini adapter."""

    model: str = Field(default="gemini-pro", description="Model to use")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="API base URL",
    )


class GeminiAdapter(HTTPEvidenceAdapter):
    """Gemini generateContent API. The key travels as a query parameter."""

    def __init__(self, config: Optional[GeminiConfig] = None, provider_name: str = "Gemini"):
        super().__init__(config or GeminiConfig(api_key=""), provider_name)

    async def complete(self, prompt: str) -> str:
        body = await self._post(
            f"/models/{self._config.model}:generateContent",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": self._config.temperature,
                    "maxOutputTokens": self._config.max_tokens,
                },
            },
            params={"key": self._config.api_key},
        )
        try:
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Invalid Gemini API response structure", provider=self._name) from e
        if not isinstance(text, str):
            raise MalformedResponseError("Invalid Gemini API response structure", provider=self._name)
        return text
