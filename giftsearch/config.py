"""Application configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass, field


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


def _get_bool(name: str, default: str) -> bool:
    return _get_env(name, default).lower() in {"1", "true", "yes"}


def _get_list(name: str, default: str) -> tuple[str, ...]:
    raw = _get_env(name, default)
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


DEFAULT_MOCK_TERMS = "headphones,sneakers,shoes,laptop,phone,jacket,shirt,boots,ball"


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    redis_enabled: bool = _get_bool("REDIS_ENABLED", "true")
    upstream_url: str = _get_env("UPSTREAM_URL", "https://api.zinc.io/v1/products/search")
    upstream_api_key: str = _get_env("UPSTREAM_API_KEY", "")
    upstream_timeout_seconds: float = float(_get_env("UPSTREAM_TIMEOUT_SECONDS", "30"))
    cost_per_call: str = _get_env("COST_PER_CALL", "0.01")
    monthly_budget: str = _get_env("MONTHLY_BUDGET", "50.00")
    result_cache_ttl_seconds: int = int(_get_env("RESULT_CACHE_TTL_SECONDS", "3600"))
    result_cache_max_entries: int = int(_get_env("RESULT_CACHE_MAX_ENTRIES", "1000"))
    result_cache_persistent_ttl_seconds: int = int(_get_env("RESULT_CACHE_PERSISTENT_TTL_SECONDS", "14400"))
    fuzzy_threshold: float = float(_get_env("FUZZY_THRESHOLD", "0.8"))
    debounce_seconds: float = float(_get_env("DEBOUNCE_SECONDS", "0.3"))
    cooldown_seconds: float = float(_get_env("COOLDOWN_SECONDS", "5"))
    cooldown_reuse: bool = _get_bool("COOLDOWN_REUSE", "true")
    usage_scope: str = _get_env("USAGE_SCOPE", "global")
    usage_flush_seconds: float = float(_get_env("USAGE_FLUSH_SECONDS", "30"))
    usage_store_path: str = _get_env("USAGE_STORE_PATH", "")
    high_confidence_mock_terms: tuple[str, ...] = field(
        default_factory=lambda: _get_list("HIGH_CONFIDENCE_MOCK_TERMS", DEFAULT_MOCK_TERMS)
    )
    default_max_results: int = int(_get_env("DEFAULT_MAX_RESULTS", "10"))
    log_level: str = _get_env("LOG_LEVEL", "INFO")


settings = Settings()
