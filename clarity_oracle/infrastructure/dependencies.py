"""Dependency injection configuration for hexagonal architecture."""

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence

from ..domain.ports.evidence_provider import EvidenceProvider
from ..domain.services.consensus_service import ConsensusEngine
from ..domain.services.idempotency import IdempotencyLedger
from ..domain.services.orchestrator import Orchestrator
from ..domain.services.self_verification import SelfVerificationChecker
from .ai.factory import EvidenceProviderFactory
from .config import OracleSettings
from .ledger.in_memory_ledger import InMemoryLedger

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Service container for dependency injection.

    Ledger and provider factory are built eagerly; providers, the consensus
    engine and the orchestrator are created on first use because provider
    initialization is asynchronous.
    """

    def __init__(
        self,
        settings: Optional[OracleSettings] = None,
        providers: Optional[Sequence[EvidenceProvider]] = None,
        ledger: Optional[InMemoryLedger] = None,
    ):
        """Initialize service container.

        Args:
            settings: Oracle settings (read from the environment if omitted)
            providers: Evidence providers to use instead of the configured ones
            ledger: Ledger to use instead of a fresh in-memory one
        """
        self.settings = settings or OracleSettings.from_env()
        self._injected_providers = list(providers) if providers is not None else None
        self._services: Dict[str, Any] = {}
        self._setup_services(ledger)

    def _setup_services(self, ledger: Optional[InMemoryLedger]) -> None:
        """Setup all services and their dependencies."""
        logger.info("🔧 Setting up service container...")
        settings = self.settings

        if ledger is None:
            ledger = InMemoryLedger(
                arbitrator=settings.arbitrator_address,
                contract_address=settings.contract_address,
            )
            ledger.fund(settings.relayer_address, settings.relayer_initial_balance)
            logger.info(f"✅ In-memory ledger ready, relayer funded with {settings.relayer_initial_balance}")

        for name, key in settings.api_keys.items():
            if key:
                logger.info(f"✅ {name} API key loaded: {len(key)} chars")

        self._services = {
            "ledger": ledger,
            "provider_factory": EvidenceProviderFactory(settings.api_keys, timeout=settings.provider_timeout),
            "idempotency": IdempotencyLedger(),
            "consensus_engine": None,  # Created on-demand
            "orchestrator": None,  # Created on-demand
        }
        logger.info("✅ Service container setup completed")

    async def _setup_providers(self) -> List[EvidenceProvider]:
        if self._injected_providers is not None:
            for provider in self._injected_providers:
                await provider.initialize()
            return self._injected_providers

        logger.info("🤖 Setting up evidence providers...")
        providers = await self.get_provider_factory().create_configured()
        if not providers:
            logger.warning("⚠️ No evidence providers configured, every question will require manual resolution")
        return providers

    async def _ensure_consensus_engine(self) -> ConsensusEngine:
        if self._services["consensus_engine"] is None:
            providers = await self._setup_providers()
            self._services["consensus_engine"] = ConsensusEngine(
                providers,
                verifier=SelfVerificationChecker(),
                call_timeout=self.settings.provider_timeout,
                cache_ttl=self.settings.consensus_cache_ttl,
            )
            logger.info(f"✅ Consensus engine created with {len(providers)} providers")
        return self._services["consensus_engine"]

    async def _ensure_orchestrator(self) -> Orchestrator:
        if self._services["orchestrator"] is None:
            engine = await self._ensure_consensus_engine()
            self._services["orchestrator"] = Orchestrator(
                ledger=self.get_ledger(),
                consensus_engine=engine,
                identity=self.settings.relayer_address,
                config=self.settings.orchestrator_config(),
                idempotency=self.get("idempotency"),
            )
        return self._services["orchestrator"]

    def get(self, service_name: str) -> Any:
        """Get a service by name.

        Raises:
            KeyError: If service not found
        """
        if service_name not in self._services:
            raise KeyError(f"Service '{service_name}' not found")
        return self._services[service_name]

    def get_ledger(self) -> InMemoryLedger:
        """Get the ledger."""
        return self.get("ledger")

    def get_provider_factory(self) -> EvidenceProviderFactory:
        return self.get("provider_factory")

    async def get_consensus_engine(self) -> ConsensusEngine:
        """Get consensus engine with providers."""
        return await self._ensure_consensus_engine()

    async def get_orchestrator(self) -> Orchestrator:
        """Get orchestrator with its consensus engine."""
        return await self._ensure_orchestrator()

    @property
    def orchestrator(self) -> Optional[Orchestrator]:
        """The orchestrator if it has been created."""
        return self._services["orchestrator"]

    async def start(self) -> None:
        """Create providers and start the orchestrator."""
        orchestrator = await self.get_orchestrator()
        await orchestrator.start()

    async def shutdown(self) -> None:
        """Stop the orchestrator and release provider clients."""
        orchestrator = self._services["orchestrator"]
        if orchestrator is not None:
            await orchestrator.stop()
        if self._injected_providers is not None:
            for provider in self._injected_providers:
                await provider.shutdown()
        await self.get_provider_factory().shutdown()
        logger.info("✅ Service container shut down")


# Global service container instance
@lru_cache()
def get_service_container() -> ServiceContainer:
    """Get global service container instance."""
    return ServiceContainer()
