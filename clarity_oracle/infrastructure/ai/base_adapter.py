"""Shared HTTP plumbing for evidence provider adapters."""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from ...domain.models.errors import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from ...domain.models.evidence import EvidenceVerdict
from ...domain.ports.evidence_provider import EvidenceProvider
from ...domain.services.prompts import EVIDENCE_SYSTEM_PROMPT, create_evidence_prompt
from .response_parser import decode_evidence

logger = logging.getLogger(__name__)


class ProviderConfig(BaseModel):
    """Configuration common to all evidence providers."""

    api_key: str = Field(..., description="Provider API key")
    model: str = Field(..., description="Model to query")
    base_url: str = Field(..., description="API base URL")
    temperature: float = Field(default=0.2, description="Temperature for responses")
    max_tokens: int = Field(default=1500, description="Maximum tokens per response")
    timeout: float = Field(default=30.0, description="API timeout in seconds")


class HTTPEvidenceAdapter(EvidenceProvider):
    """Base class for providers reached over HTTP.

    Subclasses implement ``complete``; the evidence request, decoding and
    the mapping of transport failures to typed provider errors live here.
    """

    def __init__(self, config: ProviderConfig, provider_name: str):
        self._config = config
        self._name = provider_name
        self._client: Optional[httpx.AsyncClient] = None

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def initialize(self) -> None:
        """Open the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=self._config.timeout,
                headers=self._headers(),
            )

    async def shutdown(self) -> None:
        """Clean up resources and shut down the provider."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_verdict(self, question: str) -> EvidenceVerdict:
        """Ask for structured evidence and decode it."""
        logger.info(f"📡 Calling {self._name}...")
        content = await self.complete(create_evidence_prompt(question))
        verdict = decode_evidence(content, self._name)
        logger.info(f"📥 {self._name} answered {verdict.verdict.value} with {len(verdict.sources)} sources")
        return verdict

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send a prompt and return the raw text reply."""

    async def _post(self, path: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Any:
        """POST JSON and return the decoded body, raising typed provider errors."""
        if not self._client:
            raise RuntimeError("Provider not initialized")

        try:
            response = await self._client.post(path, json=payload, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"{self._name} API timeout ({self._config.timeout}s)", provider=self._name) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (401, 403):
                raise ProviderAuthError(f"{self._name} rejected credentials ({status})", provider=self._name) from e
            if status == 429:
                retry_after = e.response.headers.get("retry-after")
                raise ProviderRateLimitError(
                    f"{self._name} API rate limit exceeded",
                    provider=self._name,
                    retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
                ) from e
            raise ProviderUnavailableError(f"{self._name} API failed: {status}", provider=self._name) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"{self._name} API failed: {e}", provider=self._name) from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(f"{self._name} returned a non-JSON body", provider=self._name) from e

    @property
    def provider_name(self) -> str:
        """Get the name of the evidence provider."""
        return self._name

    @property
    def is_available(self) -> bool:
        """Check if the provider is available and ready."""
        return self._client is not None


class ChatCompletionsAdapter(HTTPEvidenceAdapter):
    """Provider speaking the OpenAI chat-completions dialect with a bearer key."""

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }

    async def complete(self, prompt: str) -> str:
        body = await self._post(
            "/chat/completions",
            {
                "model": self._config.model,
                "messages": [
                    {"role": "system", "content": EVIDENCE_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": self._config.temperature,
                "max_tokens": self._config.max_tokens,
            },
        )
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"Invalid {self._name} API response structure", provider=self._name) from e
        if not isinstance(content, str):
            raise MalformedResponseError(f"Invalid {self._name} API response structure", provider=self._name)
        return content
