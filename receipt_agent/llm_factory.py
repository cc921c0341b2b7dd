"""
LLMプロバイダーの生成

プロバイダー名 → コンストラクタの登録表から、設定を検証したうえでインスタンスを作成する。
プライマリが使えない場合のフォールバック、全プロバイダーの一括生成、ヘルスチェックも提供する。
"""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from . import config_loader
from .claude_provider import ClaudeProvider
from .config_loader import ProviderConfig
from .errors import ConfigurationError
from .gemini_provider import GeminiProvider
from .llm_base import LLMProvider
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDER_REGISTRY: Dict[str, Callable[..., LLMProvider]] = {
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "claude": ClaudeProvider,
}


def create_llm(provider: str, config: Optional[ProviderConfig] = None, **kwargs) -> LLMProvider:
    """指定プロバイダーのインスタンスを作成

    Raises:
        ConfigurationError: プロバイダー名が不正、または設定が不足している
    """
    if not provider or not isinstance(provider, str):
        raise ConfigurationError("Provider name is required and must be a string")

    name = provider.lower()
    if name not in PROVIDER_REGISTRY:
        available = ", ".join(PROVIDER_REGISTRY)
        raise ConfigurationError(f"Unsupported provider: {provider}. Available providers: {available}")

    try:
        service = PROVIDER_REGISTRY[name](config or config_loader.get_provider_config(name), **kwargs)
    except ConfigurationError as e:
        logger.error("[LLMFactory] Failed to create LLM service for provider: %s (%s)", provider, e)
        raise

    logger.info("[LLMFactory] Created %s service with model: %s",
                service.get_provider_name(), service.get_model_name())
    return service


def create_default_llm(config: Optional[ProviderConfig] = None) -> LLMProvider:
    return create_llm(config_loader.get_default_provider(), config)


def create_llm_with_fallback(primary_provider: str, config: Optional[ProviderConfig] = None) -> LLMProvider:
    """プライマリが作成できなければ、設定済みの別プロバイダーに切り替える"""
    try:
        return create_llm(primary_provider, config)
    except ConfigurationError as e:
        logger.warning("[LLMFactory] Primary provider %s failed, trying fallback: %s", primary_provider, e)
        exclude = primary_provider.lower() if isinstance(primary_provider, str) else None
        fallback = config_loader.get_fallback_provider(exclude=exclude)
        if not fallback:
            raise ConfigurationError(
                f"No available LLM providers. Primary: {primary_provider}, Error: {e}"
            ) from e

        logger.info("[LLMFactory] Using fallback provider: %s", fallback)
        return create_llm(fallback)


def create_all_available_llms() -> Dict[str, LLMProvider]:
    """作成できる全プロバイダーのインスタンス（診断用）"""
    services = {}
    for provider in PROVIDER_REGISTRY:
        try:
            services[provider] = create_llm(provider)
        except ConfigurationError as e:
            logger.warning("[LLMFactory] Failed to create %s service: %s", provider, e)
    return services


def is_provider_available(provider: str) -> bool:
    try:
        create_llm(provider)
        return True
    except ConfigurationError:
        return False


def get_available_providers() -> List[str]:
    return [provider for provider in PROVIDER_REGISTRY if is_provider_available(provider)]


def get_provider_info(provider: str) -> Dict:
    try:
        service = create_llm(provider)
        return {
            "provider": service.get_provider_name(),
            "model": service.get_model_name(),
            "capabilities": service.get_capabilities(),
            "available": True,
        }
    except ConfigurationError as e:
        return {
            "provider": provider,
            "model": None,
            "capabilities": None,
            "available": False,
            "error": str(e),
        }


def get_all_provider_info() -> Dict[str, Dict]:
    return {provider: get_provider_info(provider) for provider in PROVIDER_REGISTRY}


async def health_check(provider: Optional[str] = None) -> Dict:
    """ヘルスチェック（provider 省略時は利用可能な全プロバイダー）"""
    if provider is None:
        results = {}
        for name in get_available_providers():
            results[name] = await health_check(name)
        return results

    try:
        service = create_llm(provider)
    except ConfigurationError as e:
        return {
            "provider": provider,
            "healthy": False,
            "error": str(e),
            "timestamp": datetime.now().isoformat(),
        }
    return {
        "provider": service.get_provider_name(),
        "healthy": await service.health_check(),
        "timestamp": datetime.now().isoformat(),
    }
