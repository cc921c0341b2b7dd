"""
領収書1枚の読み取り

使用中のLLMプロバイダーを保持し、ヘルスチェック付きで切り替えられる。
読み取り中の呼び出しは開始時のプロバイダーで完了する。
"""

import logging
from typing import Callable, Dict, Optional

from . import llm_factory
from .accounting_master import AccountMaster
from .errors import ProviderUnavailableError
from .llm_base import LLMProvider
from .prompts import build_extraction_prompt
from .receipt_models import ReceiptRecord

logger = logging.getLogger(__name__)


class ReceiptExtractor:
    """現在のLLMプロバイダーで領収書画像を読み取る

    プロバイダーは switch_provider() で実行中に差し替えられる。処理中の呼び出しは
    開始時点のプロバイダーを使い続ける。
    """

    def __init__(self, provider: LLMProvider, master: Optional[AccountMaster] = None,
                 prompt: Optional[str] = None,
                 provider_factory: Callable[..., LLMProvider] = llm_factory.create_llm):
        self._provider = provider
        self.master = master
        self.prompt = prompt or build_extraction_prompt(master.prompt_examples() if master else None)
        self._provider_factory = provider_factory

    @classmethod
    def from_config(cls, provider_name: Optional[str] = None,
                    master: Optional[AccountMaster] = None) -> "ReceiptExtractor":
        """設定からプロバイダーを作成（使えなければフォールバック）"""
        if provider_name:
            provider = llm_factory.create_llm_with_fallback(provider_name)
        else:
            provider = llm_factory.create_default_llm()
        return cls(provider, master=master)

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    def provider_info(self) -> Dict:
        return {
            "provider": self._provider.get_provider_name(),
            "model": self._provider.get_model_name(),
            "capabilities": self._provider.get_capabilities(),
        }

    async def extract(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ReceiptRecord:
        provider = self._provider
        logger.info("[OCR] 処理開始 - プロバイダー: %s, モデル: %s",
                    provider.get_provider_name(), provider.get_model_name())
        try:
            record = await provider.process_image(image_bytes, self.prompt, mime_type)
        except Exception as e:
            logger.error("[OCR] 処理エラー: %s", e)
            raise

        for warning in record.data_warnings():
            logger.warning("[OCR] %s (支払先: %s)", warning, record.payee)
        logger.info("[OCR] 処理完了 - プロバイダー: %s", provider.get_provider_name())
        return record

    async def switch_provider(self, name: str) -> LLMProvider:
        """ヘルスチェックに通った場合のみプロバイダーを切り替える

        Raises:
            ConfigurationError: プロバイダー名・設定の不備
            ProviderUnavailableError: ヘルスチェック失敗（現在のプロバイダーを維持）
        """
        candidate = self._provider_factory(name)
        if not await candidate.health_check():
            logger.warning("Provider %s failed health check, keeping %s",
                           name, self._provider.get_provider_name())
            raise ProviderUnavailableError(
                f"Provider {name} is not healthy",
                user_message=f"{name}が利用できないため切り替えませんでした",
            )

        previous = self._provider
        self._provider = candidate
        logger.info("Switched LLM provider: %s -> %s (%s)", previous.get_provider_name(),
                    candidate.get_provider_name(), candidate.get_model_name())
        return candidate
