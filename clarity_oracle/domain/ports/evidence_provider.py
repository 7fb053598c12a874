"""Protocol for evidence providers."""

from typing import Dict, Protocol

from ..models.evidence import EvidenceVerdict


class EvidenceProvider(Protocol):
    """Protocol defining the interface for independent inference services."""

    async def initialize(self) -> None:
        """Open the HTTP client."""
        ...

    async def shutdown(self) -> None:
        """Clean up resources."""
        ...

    async def fetch_verdict(self, question: str) -> EvidenceVerdict:
        """Ask the provider for structured evidence about a question.

        Raises:
            ProviderError: Typed transport or decode failure
        """
        ...

    async def complete(self, prompt: str) -> str:
        """Send a free-form prompt and return the raw text answer."""
        ...

    @property
    def provider_name(self) -> str:
        """Get the provider name."""
        ...

    @property
    def is_available(self) -> bool:
        """Check if the provider is available and ready."""
        ...
