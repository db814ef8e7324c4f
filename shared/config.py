# shared/config.py
import os
from dataclasses import dataclass
from typing import Optional

from domain.models.policy import PolicyConfig, default_policy
from shared.logging import logger

def _get_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")

def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid numeric setting", name=name, value=raw)
        return default

@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read once at start-up"""
    database_url: str = "postgresql://localhost:5432/sales_planner"
    log_level: str = "INFO"
    json_logs: bool = True
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    ai_proposer_timeout_seconds: float = 20.0
    policy_config_path: Optional[str] = None
    unit_selection: str = "random"
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False

    @property
    def ai_proposer_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables.

        Environment variables:
            DATABASE_URL: asyncpg DSN
            LOG_LEVEL / JSON_LOGS: logging output
            OPENAI_API_KEY: enables the AI task proposer when set
            OPENAI_MODEL: chat model used by the proposer (default: gpt-4o-mini)
            AI_PROPOSER_TIMEOUT_SECONDS: upper bound on one proposer call (default: 20)
            POLICY_CONFIG_PATH: JSON policy file; falls back to the built-in policy
            UNIT_SELECTION: "random" (default) or "first" for deal-page unit picking
            HOST / PORT / RELOAD: uvicorn options
        """
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=_get_bool("JSON_LOGS", True),
            openai_api_key=(os.getenv("OPENAI_API_KEY") or "").strip() or None,
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            ai_proposer_timeout_seconds=_get_float("AI_PROPOSER_TIMEOUT_SECONDS", 20.0),
            policy_config_path=os.getenv("POLICY_CONFIG_PATH") or None,
            unit_selection=(os.getenv("UNIT_SELECTION") or "random").strip().lower(),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(_get_float("PORT", 8000)),
            reload=_get_bool("RELOAD", False),
        )

def load_policy(settings: Settings) -> PolicyConfig:
    """Load the policy once; callers inject the result"""
    if settings.policy_config_path:
        policy = PolicyConfig.from_json_file(settings.policy_config_path)
        logger.info("Policy loaded from file",
                    path=settings.policy_config_path,
                    rules=len(policy.rules))
        return policy
    return default_policy()
