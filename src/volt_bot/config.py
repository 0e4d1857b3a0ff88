"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from volt_bot.core.types import Metal

ProviderName = Literal["anthropic", "groq"]


class AnthropicConfig(BaseModel):
    api_key: str
    model: str = "claude-sonnet-4-20250514"
    base_url: Optional[str] = None
    max_tokens: int = 4096


class GroqConfig(BaseModel):
    api_key: str
    model: str = "moonshotai/kimi-k2-instruct"
    base_url: str = "https://api.groq.com/openai/v1"
    max_tokens: int = 4096


class LLMConfig(BaseModel):
    # First entry is the primary provider, the rest are fallbacks in order
    providers: list[ProviderName] = Field(default_factory=lambda: ["anthropic", "groq"])
    timeout: float = 45.0
    context_messages: int = 6
    system_prompt: str = ""


class TelegramConfig(BaseModel):
    token: str
    admin_ids: list[str] = Field(default_factory=list)
    alert_chat_ids: list[str] = Field(default_factory=list)
    # Operational failures are forwarded here when set
    error_chat_id: Optional[str] = None
    error_alert_interval: float = 60.0


class PricingConfig(BaseModel):
    table_path: str = "./pricing.yaml"
    quotation_pdf: bool = True
    company_name: str = ""


class MetalPriceConfig(BaseModel):
    urls: dict[Metal, str] = Field(default_factory=dict)
    freshness_minutes: int = 15
    timeout: float = 10.0


class StockConfig(BaseModel):
    base_url: str = ""
    api_key: Optional[str] = None
    timeout: float = 10.0


class ConversationConfig(BaseModel):
    max_messages: int = 10
    expiry_hours: int = 24


class AlertsConfig(BaseModel):
    enabled: bool = True
    timezone: str = "Asia/Kolkata"
    # Cron expressions: minute hour day month day_of_week
    schedules: list[str] = Field(default_factory=lambda: ["50 11 * * mon-fri", "5 15 * * mon-fri"])


class StorageConfig(BaseModel):
    db_path: str = "./data/volt_bot.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    telegram: Optional[TelegramConfig] = None
    llm: LLMConfig = Field(default_factory=LLMConfig)
    anthropic: Optional[AnthropicConfig] = None
    groq: Optional[GroqConfig] = None
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    metal_prices: MetalPriceConfig = Field(default_factory=MetalPriceConfig)
    stock: StockConfig = Field(default_factory=StockConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
