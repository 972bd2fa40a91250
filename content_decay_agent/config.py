from __future__ import annotations

import os
from dataclasses import dataclass

from content_decay_agent.models import DecayThresholds


def _env(name: str, default: str = "") -> str:
    raw = os.environ.get(name)
    if raw is None:
        return default.strip()
    value = raw.strip()
    placeholder = f"{name}="
    unquoted = value.strip("'\"").strip()
    if unquoted.lower() == placeholder.lower():
        return default.strip()
    return value if value else default.strip()


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _normalize_supabase_url(raw: str) -> str:
    value = raw.strip().rstrip("/")
    if value and not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    return value


@dataclass(frozen=True)
class AgentConfig:
    supabase_url: str
    supabase_service_key: str
    supabase_timeout_sec: int

    page_limit: int
    recommendations_enabled: bool
    recommendations_top_n: int
    alert_sample_size: int
    output_dir: str
    log_level: str

    clicks_drop_percent: float
    impressions_drop_percent: float
    position_drop_threshold: float
    lookback_days: int
    min_previous_clicks: float

    openai_api_key: str
    openai_model: str
    azure_openai_endpoint: str
    azure_openai_api_version: str
    llm_temperature: float
    llm_max_output_tokens: int
    llm_timeout_sec: int
    llm_max_retries: int

    @classmethod
    def from_env(cls) -> "AgentConfig":
        defaults = DecayThresholds()
        return cls(
            supabase_url=_normalize_supabase_url(_env("SUPABASE_URL")),
            supabase_service_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
            supabase_timeout_sec=_env_int("SUPABASE_TIMEOUT_SEC", 30),
            page_limit=_env_int("DECAY_PAGE_LIMIT", 200),
            recommendations_enabled=_env_bool("DECAY_RECOMMENDATIONS_ENABLED", True),
            recommendations_top_n=_env_int("DECAY_RECOMMENDATIONS_TOP_N", 10),
            alert_sample_size=_env_int("DECAY_ALERT_SAMPLE_SIZE", 5),
            output_dir=_env("OUTPUT_DIR", "Content Decay Reports"),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            clicks_drop_percent=_env_float(
                "DECAY_CLICKS_DROP_PERCENT", defaults.clicks_drop_percent
            ),
            impressions_drop_percent=_env_float(
                "DECAY_IMPRESSIONS_DROP_PERCENT", defaults.impressions_drop_percent
            ),
            position_drop_threshold=_env_float(
                "DECAY_POSITION_DROP_THRESHOLD", defaults.position_drop_threshold
            ),
            lookback_days=_env_int("DECAY_LOOKBACK_DAYS", defaults.lookback_days),
            min_previous_clicks=_env_float(
                "DECAY_MIN_PREVIOUS_CLICKS", defaults.min_previous_clicks
            ),
            openai_api_key=_env("OPENAI_API_KEY"),
            openai_model=_env("OPENAI_MODEL", _env("SEO_AI_MODEL", "gpt-4o")),
            azure_openai_endpoint=_env("AZURE_OPENAI_ENDPOINT"),
            azure_openai_api_version=_env("AZURE_OPENAI_API_VERSION"),
            llm_temperature=_env_float("LLM_TEMPERATURE", 0.4),
            llm_max_output_tokens=_env_int("LLM_MAX_OUTPUT_TOKENS", 2500),
            llm_timeout_sec=_env_int("LLM_TIMEOUT_SEC", 120),
            llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
        )

    def default_thresholds(self) -> DecayThresholds:
        # Routed through from_mapping so zero/empty env values keep the defaults.
        return DecayThresholds.from_mapping(
            {
                "clicks_drop_percent": self.clicks_drop_percent,
                "impressions_drop_percent": self.impressions_drop_percent,
                "position_drop_threshold": self.position_drop_threshold,
                "lookback_days": self.lookback_days,
                "min_previous_clicks": self.min_previous_clicks,
            }
        )

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    @property
    def azure_llm_enabled(self) -> bool:
        return bool(
            self.azure_openai_endpoint
            and self.azure_openai_api_version
            and self.openai_api_key
            and self.openai_model
        )

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key and self.openai_model)
