"""Perplexity implementation of the evidence provider interface."""

from typing import Optional

from pydantic import Field

from .base_adapter import ChatCompletionsAdapter, ProviderConfig


class PerplexityConfig(ProviderConfig):
    """Configuration for Perplexity adapter."""

    model: str = Field(default="sonar-pro", description="Search-grounded model")
    base_url: str = Field(default="https://api.perplexity.ai", description="API base URL")


class PerplexityAdapter(ChatCompletionsAdapter):
    """Perplexity answers with live web citations."""

    def __init__(self, config: Optional[PerplexityConfig] = None, provider_name: str = "Perplexity"):
        super().__init__(config or PerplexityConfig(api_key=""), provider_name)
