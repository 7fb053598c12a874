"""OpenAI implementation of the evidence provider interface."""

from typing import Optional

from pydantic import Field

from .base_adapter import ChatCompletionsAdapter, ProviderConfig


class OpenAIConfig(ProviderConfig):
    """Configuration for OpenAI adapter."""

    model: str = Field(default="gpt-4o-mini", description="Model to use")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")


class OpenAIAdapter(ChatCompletionsAdapter):
    """OpenAI chat completions."""

    def __init__(self, config: Optional[OpenAIConfig] = None, provider_name: str = "OpenAI"):
        super().__init__(config or OpenAIConfig(api_key=""), provider_name)
