"""Configuration loader for the AI engine: YAML sections, defaults and secrets."""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from fisioflow_ai.models.usage import ProviderName, UsageLimits

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60

DEFAULT_LIMITS = {
    ProviderName.CHATGPT_PLUS: UsageLimits(monthly=2000, daily=100, hourly=10),
    ProviderName.GEMINI_PRO: UsageLimits(monthly=3000, daily=150, hourly=15),
    ProviderName.CLAUDE_PRO: UsageLimits(monthly=2500, daily=125, hourly=12),
    ProviderName.PERPLEXITY_PRO: UsageLimits(monthly=1000, daily=50, hourly=5),
    ProviderName.MARS_AI_PRO: UsageLimits(monthly=1500, daily=75, hourly=8),
}

# Environment variable holding each provider's API key
PROVIDER_KEY_ENV = {
    ProviderName.CHATGPT_PLUS: "OPENAI_API_KEY",
    ProviderName.GEMINI_PRO: "GEMINI_API_KEY",
    ProviderName.CLAUDE_PRO: "ANTHROPIC_API_KEY",
    ProviderName.PERPLEXITY_PRO: "PERPLEXITY_API_KEY",
    ProviderName.MARS_AI_PRO: "MARS_AI_API_KEY",
}

DEFAULTS: dict[str, Any] = {
    "system": {
        "data_dir": "./data",
        "default_timeout": 30,
        "max_concurrent_queries": 10,
    },
    "knowledge_base": {
        "enabled": True,
        "min_confidence_threshold": 0.7,
        "max_results": 10,
        "fuzzy_search": True,
        "fuzzy_threshold": 0.8,
        "auto_summary": True,
    },
    "cache": {
        "enabled": True,
        "memory_max_entries": 1000,
        "max_entries": 10000,
        "max_size": 100 * 1024 * 1024,
        "tier1_max_bytes": 5 * 1024 * 1024,
        "small_entry_max_bytes": 50 * 1024,
        "default_ttl": DAY_SECONDS,
        "cleanup_interval": 60 * 60,
    },
    "providers": {
        "chatgpt_plus": {
            "enabled": True,
            "kind": "openai",
            "model": "gpt-4o-mini",
            "base_url": "https://api.openai.com/v1",
        },
        "gemini_pro": {
            "enabled": True,
            "kind": "gemini",
            "model": "gemini-1.5-flash",
            "base_url": "https://generativelanguage.googleapis.com/v1beta",
        },
        "claude_pro": {
            "enabled": True,
            "kind": "claude",
            "model": "claude-3-5-haiku-latest",
            "base_url": "https://api.anthropic.com/v1",
        },
        "perplexity_pro": {
            "enabled": True,
            "kind": "openai",
            "model": "sonar",
            "base_url": "https://api.perplexity.ai",
        },
        "mars_ai_pro": {
            "enabled": False,
            "kind": "openai",
            "model": "mars-chat",
            "base_url": "https://mars.ai/api/v1",
        },
    },
    "load_balancing": {
        "enabled": True,
        "algorithm": "round_robin",
        "weights": {
            "chatgpt_plus": 3,
            "claude_pro": 3,
            "gemini_pro": 2,
            "perplexity_pro": 1,
            "mars_ai_pro": 1,
        },
    },
    "alerts": {
        "usage_warning": 0.8,
        "usage_critical": 0.95,
        "performance_warning": 5000,
        "performance_critical": 10000,
        "quality_warning": 0.6,
        "quality_critical": 0.4,
    },
    "analytics": {
        "enabled": True,
        "retention_days": 90,
        "max_metrics": 100000,
        "rollup_interval": 60 * 60,
    },
    "security": {
        "anonymization": True,
        "common_names": [
            "João",
            "Maria",
            "José",
            "Ana",
            "Carlos",
            "Paulo",
            "Pedro",
            "Francisco",
        ],
        "hash_salt": "fisioflow",
    },
    "logging": {
        "level": "INFO",
        "structured": False,
        "file": None,
    },
}


@dataclass
class KnowledgeBaseSettings:
    enabled: bool
    min_confidence_threshold: float
    max_results: int
    fuzzy_search: bool
    fuzzy_threshold: float
    auto_summary: bool


@dataclass
class CacheSettings:
    enabled: bool
    memory_max_entries: int
    max_entries: int
    max_size: int
    tier1_max_bytes: int
    small_entry_max_bytes: int
    default_ttl: int  # seconds
    cleanup_interval: int  # seconds


@dataclass
class ProviderSettings:
    """Configuration for one premium provider."""

    name: ProviderName
    enabled: bool
    kind: str
    model: str
    base_url: str
    limits: UsageLimits
    api_key: str | None = None
    timeout: float = 30.0


@dataclass
class LoadBalancingSettings:
    enabled: bool
    algorithm: str
    weights: dict[str, float] = field(default_factory=dict)


@dataclass
class AlertSettings:
    usage_warning: float
    usage_critical: float
    performance_warning: float
    performance_critical: float
    quality_warning: float
    quality_critical: float


@dataclass
class AnalyticsSettings:
    enabled: bool
    retention_days: int
    max_metrics: int
    rollup_interval: int


@dataclass
class SecuritySettings:
    anonymization: bool
    common_names: list[str]
    hash_salt: str


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class EngineConfig:
    """Loads and manages engine configuration."""

    def __init__(
        self,
        config_path: str | None = None,
        env_file: str | None = None,
        overrides: dict[str, Any] | None = None,
    ):
        """Initialize configuration.

        Args:
            config_path: Path to engine.yaml (default: config/engine.yaml)
            env_file: Path to .env file (default: ./.env)
            overrides: Values merged on top of the file, mainly for tests
        """
        self.config_path = Path(config_path or os.path.join("config", "engine.yaml"))
        self.env_file = Path(env_file or ".env")

        if self.env_file.exists():
            load_dotenv(self.env_file)
            logger.info(f"Loaded environment from {self.env_file}")

        self.raw = _deep_merge(DEFAULTS, self._load_file())
        if overrides:
            self.raw = _deep_merge(self.raw, overrides)

        data_dir = os.getenv("FISIOFLOW_DATA_DIR")
        if data_dir:
            self.raw["system"]["data_dir"] = data_dir

        self.knowledge_base = KnowledgeBaseSettings(**self.raw["knowledge_base"])
        self.cache = CacheSettings(**self.raw["cache"])
        self.load_balancing = LoadBalancingSettings(**self.raw["load_balancing"])
        self.alerts = AlertSettings(**self.raw["alerts"])
        self.analytics = AnalyticsSettings(**self.raw["analytics"])
        self.security = SecuritySettings(**self.raw["security"])
        self.providers = self._load_providers()

    def _load_file(self) -> dict[str, Any]:
        """Load engine.yaml if present."""
        if not self.config_path.exists():
            logger.warning(f"Engine config not found: {self.config_path}, using defaults")
            return {}

        with open(self.config_path) as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded engine configuration from {self.config_path}")
        return data

    def _load_providers(self) -> dict[ProviderName, ProviderSettings]:
        providers = {}
        for name, data in self.raw["providers"].items():
            try:
                provider = ProviderName(name)
            except ValueError:
                logger.warning(f"Ignoring unknown provider in config: {name}")
                continue

            limits_data = data.get("limits") or {}
            default_limits = DEFAULT_LIMITS[provider]
            limits = UsageLimits(
                hourly=int(limits_data.get("hourly", default_limits.hourly)),
                daily=int(limits_data.get("daily", default_limits.daily)),
                monthly=int(limits_data.get("monthly", default_limits.monthly)),
            )

            providers[provider] = ProviderSettings(
                name=provider,
                enabled=bool(data.get("enabled", False)),
                kind=data.get("kind", "openai"),
                model=data.get("model", ""),
                base_url=data.get("base_url", ""),
                limits=limits,
                api_key=data.get("api_key") or os.getenv(PROVIDER_KEY_ENV[provider]),
                timeout=float(data.get("timeout", self.raw["system"]["default_timeout"])),
            )

        return providers

    @property
    def data_dir(self) -> Path:
        return Path(self.raw["system"]["data_dir"])

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key path (e.g., "cache.default_ttl")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value: Any = self.raw
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def validate(self) -> list[str]:
        """Run startup checks.

        Returns:
            List of failed checks, empty when configuration is usable
        """
        errors = []

        enabled = [p for p in self.providers.values() if p.enabled]
        if not enabled:
            errors.append("at least one premium provider must be enabled")

        for provider in enabled:
            if provider.limits.monthly <= 0:
                errors.append(f"invalid monthly limit for {provider.name.value}")
            if provider.limits.daily <= 0:
                errors.append(f"invalid daily limit for {provider.name.value}")
            if provider.limits.hourly <= 0:
                errors.append(f"invalid hourly limit for {provider.name.value}")

        if self.cache.enabled:
            if self.cache.max_size <= 0:
                errors.append("cache max_size must be greater than zero")
            if self.cache.max_entries <= 0 or self.cache.memory_max_entries <= 0:
                errors.append("cache entry limits must be greater than zero")
            if self.cache.tier1_max_bytes <= 0:
                errors.append("cache tier1_max_bytes must be greater than zero")

        if not 0 < self.alerts.usage_warning < self.alerts.usage_critical <= 1.0:
            errors.append("usage thresholds must satisfy 0 < warning < critical <= 1")

        if not 0.0 <= self.knowledge_base.min_confidence_threshold <= 1.0:
            errors.append("min_confidence_threshold must be within [0, 1]")

        if self.load_balancing.algorithm not in ("round_robin", "least_used", "weighted"):
            errors.append(f"unknown load balancing algorithm: {self.load_balancing.algorithm}")

        if errors:
            logger.error(f"Configuration check failed: {errors}")
        return errors
