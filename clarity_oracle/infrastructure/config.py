"""Process-wide settings read from the environment."""

import logging
import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..domain.services.orchestrator import OrchestratorConfig
from .ledger.in_memory_ledger import DEFAULT_CONTRACT_ADDRESS

logger = logging.getLogger(__name__)

DEFAULT_RELAYER_ADDRESS = "0x1111111111111111111111111111111111111111"
DEFAULT_ARBITRATOR_ADDRESS = "0x2222222222222222222222222222222222222222"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value.strip())
    except ValueError:
        logger.warning(f"⚠️ Ignoring invalid {name}={value!r}, using {default}")
        return default


class OracleSettings(BaseModel):
    """Configuration for the oracle service."""

    perplexity_api_key: str = Field(default="", description="Perplexity API key")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    gemini_api_key: str = Field(default="", description="Gemini API key")
    provider_timeout: float = Field(default=30.0, description="Per-call provider timeout in seconds")

    relayer_address: str = Field(default=DEFAULT_RELAYER_ADDRESS, description="Identity that signs proposals")
    arbitrator_address: str = Field(default=DEFAULT_ARBITRATOR_ADDRESS, description="Identity allowed to resolve disputes")
    contract_address: str = Field(default=DEFAULT_CONTRACT_ADDRESS, description="Assertion state machine address")
    relayer_initial_balance: int = Field(default=10**18, description="Balance credited to the relayer at startup")

    check_recent_questions: bool = Field(default=True, description="Periodically re-scan recent blocks")
    recent_blocks_range: int = Field(default=20, description="Blocks covered by each re-scan")
    poll_interval: float = Field(default=15.0, description="Seconds between re-scans")
    submission_max_retries: int = Field(default=3, description="Retries for transient submission failures")
    submission_base_delay: float = Field(default=2.0, description="First submission backoff delay")
    confirmation_timeout: float = Field(default=60.0, description="Seconds to wait for a receipt")
    consensus_cache_ttl: int = Field(default=600, description="Seconds a clear consensus is reused")

    log_level: str = Field(default="INFO", description="Root log level")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "OracleSettings":
        """Build settings from the environment, loading a .env file first if present."""
        if load_dotenv(env_file):
            logger.info("📁 Environment variables loaded from .env file via python-dotenv")

        return cls(
            perplexity_api_key=os.getenv("PERPLEXITY_API_KEY", ""),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
            provider_timeout=_env_number("PROVIDER_TIMEOUT", 30.0, float),
            relayer_address=os.getenv("RELAYER_ADDRESS") or DEFAULT_RELAYER_ADDRESS,
            arbitrator_address=os.getenv("ARBITRATOR_ADDRESS") or DEFAULT_ARBITRATOR_ADDRESS,
            contract_address=os.getenv("CONTRACT_ADDRESS") or DEFAULT_CONTRACT_ADDRESS,
            relayer_initial_balance=_env_number("RELAYER_INITIAL_BALANCE", 10**18, int),
            check_recent_questions=_env_bool("CHECK_RECENT_QUESTIONS", True),
            recent_blocks_range=_env_number("RECENT_BLOCKS_RANGE", 20, int),
            poll_interval=_env_number("POLL_INTERVAL", 15.0, float),
            submission_max_retries=_env_number("SUBMISSION_MAX_RETRIES", 3, int),
            submission_base_delay=_env_number("SUBMISSION_BASE_DELAY", 2.0, float),
            confirmation_timeout=_env_number("CONFIRMATION_TIMEOUT", 60.0, float),
            consensus_cache_ttl=_env_number("CONSENSUS_CACHE_TTL", 600, int),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )

    @property
    def api_keys(self) -> Dict[str, str]:
        return {
            "perplexity": self.perplexity_api_key,
            "gemini": self.gemini_api_key,
            "openai": self.openai_api_key,
        }

    def orchestrator_config(self) -> OrchestratorConfig:
        return OrchestratorConfig(
            contract_address=self.contract_address,
            check_recent_questions=self.check_recent_questions,
            recent_blocks_range=self.recent_blocks_range,
            poll_interval=self.poll_interval,
            confirmation_timeout=self.confirmation_timeout,
            submission_max_retries=self.submission_max_retries,
            submission_base_delay=self.submission_base_delay,
        )
