"""Factory for creating and managing evidence providers."""

import logging
from typing import Dict, List, Optional, Tuple, Type

from ...domain.ports.evidence_provider import EvidenceProvider
from .base_adapter import HTTPEvidenceAdapter, ProviderConfig
from .gemini_adapter import GeminiAdapter, GeminiConfig
from .openai_adapter import OpenAIAdapter, OpenAIConfig
from .perplexity_adapter import PerplexityAdapter, PerplexityConfig

logger = logging.getLogger(__name__)

# Query order; earlier providers win confidence ties.
DEFAULT_PROVIDER_ORDER = ("perplexity", "gemini", "openai")


class EvidenceProviderFactory:
    """Factory for creating and managing evidence providers."""

    def __init__(self, api_keys: Optional[Dict[str, str]] = None, timeout: float = 30.0):
        """Initialize the factory.

        Args:
            api_keys: Provider name to API key; providers without a key are skipped
            timeout: Per-request HTTP timeout in seconds
        """
        self._api_keys = dict(api_keys or {})
        self._timeout = timeout
        self._providers: Dict[str, Tuple[Type[HTTPEvidenceAdapter], Type[ProviderConfig]]] = {}
        self._instances: Dict[str, EvidenceProvider] = {}

        # Register default providers
        self.register_provider("perplexity", PerplexityAdapter, PerplexityConfig)
        self.register_provider("gemini", GeminiAdapter, GeminiConfig)
        self.register_provider("openai", OpenAIAdapter, OpenAIConfig)

    def register_provider(
        self,
        name: str,
        provider_class: Type[HTTPEvidenceAdapter],
        config_class: Type[ProviderConfig],
    ) -> None:
        """Register a new evidence provider.

        Args:
            name: Provider name
            provider_class: Adapter class
            config_class: Configuration model the adapter accepts
        """
        self._providers[name] = (provider_class, config_class)

    def has_credentials(self, name: str) -> bool:
        return bool(self._api_keys.get(name))

    async def create_provider(self, name: str, **kwargs) -> EvidenceProvider:
        """Create and initialize a provider instance.

        Args:
            name: Provider name
            **kwargs: Overrides for the provider configuration

        Returns:
            Initialized provider instance

        Raises:
            ValueError: If provider not found or has no API key
        """
        if name not in self._providers:
            raise ValueError(f"Provider '{name}' not found")

        if name not in self._instances:
            api_key = kwargs.pop("api_key", None) or self._api_keys.get(name, "")
            if not api_key:
                raise ValueError(f"Provider '{name}' has no API key configured")
            provider_class, config_class = self._providers[name]
            config = config_class(api_key=api_key, timeout=kwargs.pop("timeout", self._timeout), **kwargs)
            provider = provider_class(config=config)
            await provider.initialize()
            self._instances[name] = provider

        return self._instances[name]

    async def create_configured(self, order: Tuple[str, ...] = DEFAULT_PROVIDER_ORDER) -> List[EvidenceProvider]:
        """Create every registered provider that has credentials, in query order."""
        providers = []
        for name in order:
            if name not in self._providers:
                continue
            if not self.has_credentials(name):
                logger.warning(f"⚠️ {name} API key not configured, provider disabled")
                continue
            providers.append(await self.create_provider(name))
            logger.info(f"✅ {name} provider ready")
        return providers

    def get_provider(self, name: str) -> Optional[EvidenceProvider]:
        """Get an existing provider instance.

        Args:
            name: Provider name

        Returns:
            Provider instance if exists, None otherwise
        """
        return self._instances.get(name)

    @property
    def available_providers(self) -> Dict[str, bool]:
        """Get dictionary of registered providers and their availability."""
        return {
            name: name in self._instances and self._instances[name].is_available
            for name in self._providers
        }

    async def shutdown(self) -> None:
        """Shutdown all provider instances."""
        for provider in self._instances.values():
            await provider.shutdown()
        self._instances.clear()
