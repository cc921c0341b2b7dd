"""
LLM設定管理

環境変数（.env を含む）と config/settings.yml から設定を読み込む。
優先順位は 環境変数 > settings.yml > DEFAULTS。
環境変数はテストでの monkeypatch に追従するため呼び出しのたびに読む。
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(__file__)
REPO_ROOT = os.path.dirname(PACKAGE_DIR)
DEFAULT_MASTER_PATH = os.path.join(PACKAGE_DIR, "data", "accounting_master.json")

DEFAULTS = {
    "llm": {"default_provider": "openai", "providers": {}},
    "concurrency": {"max_concurrent": 2},
    "master": {"path": None},
    "report": {"sheet_name": "領収書"},
}

# プロバイダー名 → 環境変数プレフィックス
PROVIDER_ENV_PREFIX = {
    "openai": "OPENAI",
    "gemini": "GEMINI",
    "claude": "ANTHROPIC",
}

PROVIDER_DEFAULTS = {
    "openai": {"model": "gpt-4o", "max_tokens": 1500, "temperature": 0.1, "timeout_ms": 30000},
    "gemini": {"model": "gemini-1.5-flash", "max_tokens": 1500, "temperature": 0.1, "timeout_ms": 30000},
    "claude": {"model": "claude-3-5-sonnet-20241022", "max_tokens": 1500, "temperature": 0.1, "timeout_ms": 30000},
}


@dataclass(frozen=True)
class ProviderConfig:
    api_key: Optional[str]
    model: Optional[str]
    max_tokens: int = 1500
    temperature: float = 0.1
    timeout_ms: int = 30000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def validate(self, provider: str) -> None:
        if not self.api_key:
            raise ConfigurationError(
                f"{PROVIDER_ENV_PREFIX.get(provider, provider.upper())}_API_KEY environment variable is required",
                user_message=f"{provider}のAPIキーが設定されていません",
            )
        if not self.model:
            raise ConfigurationError(f"{provider} model is required")


def load_settings(path: Optional[str] = None) -> dict:
    path = path or os.getenv("SETTINGS_PATH") or os.path.join(REPO_ROOT, "config", "settings.yml")
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return DEFAULTS

    # shallow merge defaults
    merged = dict(DEFAULTS)
    for k, v in (cfg or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            mv = dict(merged[k])
            mv.update(v)
            merged[k] = mv
        else:
            merged[k] = v
    return merged


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("%s=%r は整数ではないため既定値 %s を使用します", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("%s=%r は数値ではないため既定値 %s を使用します", name, value, default)
        return default


def get_default_provider(settings: Optional[dict] = None) -> str:
    settings = settings or load_settings()
    return (os.getenv("LLM_PROVIDER") or settings["llm"].get("default_provider") or "openai").lower()


def load_provider_config(provider: str, settings: Optional[dict] = None) -> ProviderConfig:
    """検証なしでプロバイダー設定を組み立てる"""
    provider = provider.lower()
    if provider not in PROVIDER_ENV_PREFIX:
        raise ConfigurationError(f"Unknown LLM provider: {provider}")
    settings = settings or load_settings()

    base = dict(PROVIDER_DEFAULTS[provider])
    base.update((settings["llm"].get("providers") or {}).get(provider) or {})
    prefix = PROVIDER_ENV_PREFIX[provider]

    return ProviderConfig(
        api_key=os.getenv(f"{prefix}_API_KEY"),
        model=os.getenv(f"{prefix}_MODEL") or base.get("model"),
        max_tokens=_env_int(f"{prefix}_MAX_TOKENS", int(base["max_tokens"])),
        temperature=_env_float(f"{prefix}_TEMPERATURE", float(base["temperature"])),
        timeout_ms=_env_int(f"{prefix}_TIMEOUT", int(base["timeout_ms"])),
    )


def validate_config(provider: Optional[str] = None) -> bool:
    provider = provider or get_default_provider()
    load_provider_config(provider).validate(provider)
    return True


def get_provider_config(provider: Optional[str] = None) -> ProviderConfig:
    """検証済みのプロバイダー設定を取得（不備があれば ConfigurationError）"""
    provider = (provider or get_default_provider()).lower()
    config = load_provider_config(provider)
    config.validate(provider)
    return config


def get_available_providers() -> List[str]:
    return list(PROVIDER_ENV_PREFIX)


def is_current_provider_available() -> bool:
    try:
        validate_config()
        return True
    except ConfigurationError as e:
        logger.warning("Current provider not available: %s", e)
        return False


def get_fallback_provider(exclude: Optional[str] = None) -> Optional[str]:
    """設定が有効な最初のプロバイダーを返す"""
    for provider in get_available_providers():
        if provider == exclude:
            continue
        try:
            validate_config(provider)
            return provider
        except ConfigurationError:
            continue
    return None


def get_max_concurrent(settings: Optional[dict] = None) -> int:
    settings = settings or load_settings()
    value = _env_int("LLM_MAX_CONCURRENT", int(settings["concurrency"].get("max_concurrent", 2)))
    if value < 1:
        raise ConfigurationError(f"LLM_MAX_CONCURRENT must be >= 1 (got {value})")
    return value


def get_master_path(settings: Optional[dict] = None) -> str:
    settings = settings or load_settings()
    return os.getenv("ACCOUNTING_MASTER_PATH") or settings["master"].get("path") or DEFAULT_MASTER_PATH


def get_report_sheet_name(settings: Optional[dict] = None) -> str:
    settings = settings or load_settings()
    return settings["report"].get("sheet_name") or DEFAULTS["report"]["sheet_name"]


def get_config_info() -> Dict:
    """設定情報（APIキーはマスク）"""
    info = {
        "current_provider": get_default_provider(),
        "available_providers": get_available_providers(),
        "max_concurrent": get_max_concurrent(),
        "configs": {},
    }
    for provider in info["available_providers"]:
        config = load_provider_config(provider)
        info["configs"][provider] = {
            "model": config.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "timeout_ms": config.timeout_ms,
            "has_api_key": bool(config.api_key),
        }
    return info
