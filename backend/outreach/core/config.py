"""
Configuration Management
Loads settings from YAML files and environment variables
"""
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

from outreach.domain.models.attempt_schedule import AttemptSchedule, ScheduleMode
from outreach.domain.models.cadence_config import CadenceConfig, CallerIdentity, SourceFieldMap

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: str = "development"
    debug: bool = True

    # API Settings
    api_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000"]

    # Supabase (tracking + source records); in-memory stores when unset
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    tracking_table: str = "call_campaigns"

    # Scheduler
    schedule_mode: ScheduleMode = ScheduleMode.TEST
    scheduler_autostart: bool = False
    check_interval_seconds: float = 60.0
    startup_delay_seconds: float = 5.0

    # Leases and retries
    claim_grace_minutes: int = 10
    initiation_retry_minutes: int = 5

    # Call polling
    poll_interval_seconds: float = 10.0
    max_poll_wait_seconds: float = 400.0

    # Email
    email_provider: Literal["webhook", "smtp"] = "webhook"
    email_webhook_url: Optional[str] = None
    email_delay_seconds: float = 15.0
    email_retry_minutes: int = 30
    max_email_attempts: int = 3
    email_partnered_records: bool = False

    # Throughput
    max_concurrent_attempts: Optional[int] = None
    batch_size: int = 100

    default_country_code: str = "44"

    # Providers
    telephony_provider: str = "elevenlabs"
    llm_provider: str = "groq"
    elevenlabs_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.7

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


class ConfigManager:
    """Manages loading and merging configuration from multiple sources"""

    def __init__(self, env: str = "development", config_dir: Optional[Path] = None):
        self.env = env
        self.config_dir = config_dir or Path(__file__).parent.parent.parent / "config"
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration files in order of precedence"""
        default_path = self.config_dir / "default.yaml"
        if default_path.exists():
            self._config = self._load_yaml(default_path)

        # Environment-specific overrides
        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            self._deep_merge(self._config, self._load_yaml(env_path))

        self._substitute_env_vars(self._config)

    def _load_yaml(self, path: Path) -> Dict:
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}

    def _substitute_env_vars(self, config: Any) -> Any:
        """Replace ${VAR_NAME} with environment variable values (unset -> None)"""
        if isinstance(config, dict):
            for key, value in config.items():
                config[key] = self._substitute_env_vars(value)
        elif isinstance(config, list):
            for i, value in enumerate(config):
                config[i] = self._substitute_env_vars(value)
        elif isinstance(config, str) and config.startswith("${") and config.endswith("}"):
            return os.getenv(config[2:-1])
        return config

    def _deep_merge(self, base: Dict, override: Dict) -> None:
        """Recursively merge override into base"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation
        Example: config.get("schedules.test.timezone") -> "Europe/London"
        """
        value = self._config
        for key in key_path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def get_schedule(self, mode: ScheduleMode) -> AttemptSchedule:
        """Build the configured attempt schedule for a mode"""
        data = self.get(f"schedules.{mode.value}")
        if not data:
            raise ValueError(f"No '{mode.value}' schedule configured")
        return AttemptSchedule(mode=mode, **data)

    def get_identities(self) -> List[CallerIdentity]:
        """Caller identities with all required ids present"""
        identities = []
        for item in self.get("identities", []) or []:
            if not item.get("agent_id") or not item.get("phone_number_id"):
                logger.warning(f"Caller identity '{item.get('name')}' is missing agent or number id, skipping")
                continue
            identities.append(CallerIdentity(**item))
        return identities


@lru_cache()
def get_settings() -> Settings:
    return Settings()


@lru_cache()
def get_config_manager() -> ConfigManager:
    return ConfigManager(env=get_settings().environment)


def load_cadence_config(
    settings: Optional[Settings] = None,
    config_manager: Optional[ConfigManager] = None
) -> CadenceConfig:
    """
    Combine environment settings and YAML config into the engine configuration.
    """
    settings = settings or get_settings()
    config_manager = config_manager or get_config_manager()

    schedule = config_manager.get_schedule(settings.schedule_mode)
    identity_by_attempt = {
        int(attempt): name
        for attempt, name in (config_manager.get("identity_by_attempt", {}) or {}).items()
    }

    optional = {
        "partnership_signal_key": config_manager.get("partnership.signal_key"),
        "partnership_keywords": config_manager.get("partnership.keywords"),
        "brand_name": config_manager.get("email.brand_name"),
        "campaign_type": config_manager.get("email.campaign_type"),
        "email_prompt": config_manager.get("email.prompt"),
        "max_cadence_steps": config_manager.get("cadence.max_steps"),
    }

    return CadenceConfig(
        schedule=schedule,
        identities=config_manager.get_identities(),
        identity_by_attempt=identity_by_attempt,
        claim_grace_minutes=settings.claim_grace_minutes,
        initiation_retry_minutes=settings.initiation_retry_minutes,
        email_retry_minutes=settings.email_retry_minutes,
        max_email_attempts=settings.max_email_attempts,
        poll_interval_seconds=settings.poll_interval_seconds,
        max_poll_wait_seconds=settings.max_poll_wait_seconds,
        email_delay_seconds=settings.email_delay_seconds,
        email_partnered_records=settings.email_partnered_records,
        max_concurrent_attempts=settings.max_concurrent_attempts,
        batch_size=settings.batch_size,
        default_country_code=settings.default_country_code,
        source_fields=SourceFieldMap(**(config_manager.get("source_fields", {}) or {})),
        **{key: value for key, value in optional.items() if value is not None}
    )
