"""
マルチLLM対応の共通インターフェース

各プロバイダー（OpenAI / Gemini / Claude）は LLMProvider プロトコルを満たすクラスとして実装し、
レスポンスの正規化・エラー分類・HTTP呼び出しはこのモジュールの関数を共有する。
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx

from .errors import ErrorCategory, ExtractionError, ProviderError, ReceiptAgentError
from .receipt_models import ReceiptRecord

logger = logging.getLogger(__name__)

DEFAULT_CAPABILITIES = {
    "image_processing": True,
    "text_processing": True,
    "batch_processing": False,
    "streaming": False,
}

# モデルが読み取りを断った時の定型句
REFUSAL_PHRASES = ("申し訳ありませんが", "申し訳ございません", "I'm sorry", "I cannot", "I can't")

_FENCE_OPEN_JSON = re.compile(r"^```json\s*", re.IGNORECASE)
_FENCE_OPEN = re.compile(r"^```\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


@runtime_checkable
class LLMProvider(Protocol):
    """全プロバイダーが満たすべき機能"""

    async def process_image(self, image_bytes: bytes, prompt: str,
                            mime_type: str = "image/jpeg") -> ReceiptRecord: ...

    async def process_text(self, prompt: str) -> Any: ...

    async def health_check(self) -> bool: ...

    def get_provider_name(self) -> str: ...

    def get_model_name(self) -> str: ...

    def get_capabilities(self) -> Dict[str, bool]: ...

    def normalize_response(self, raw_text: str) -> Any: ...

    def handle_error(self, error: Exception, operation: str = "unknown") -> ReceiptAgentError: ...


def log_event(provider: LLMProvider, level: int, message: str, **data) -> None:
    """[プロバイダー:モデル] 付きでログ出力"""
    logger.log(level, "[%s:%s] %s %s", provider.get_provider_name(), provider.get_model_name(),
               message, data if data else "")


def strip_code_fence(content: str) -> str:
    """```json ... ``` で囲まれた応答からコードブロック記号を除去"""
    content = content.strip()
    if content.lower().startswith("```json"):
        content = _FENCE_OPEN_JSON.sub("", content)
    if content.startswith("```"):
        content = _FENCE_OPEN.sub("", content)
    if content.endswith("```"):
        content = _FENCE_CLOSE.sub("", content)
    return content


def normalize_response(raw_text: Optional[str]) -> Any:
    """モデル応答テキストをJSONとして解釈する

    Raises:
        ExtractionError: JSONとして解釈できない（拒否応答・エラー応答を含む）
    """
    content = strip_code_fence(raw_text or "")
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        logger.error("JSON parse error: %s", content[:500])

    if any(phrase in content for phrase in REFUSAL_PHRASES):
        raise ExtractionError(
            "画像が不鮮明または読み取れませんでした。より鮮明な画像をアップロードしてください。",
            kind="refusal", raw_text=content,
        )
    if "エラー" in content or "error" in content.lower():
        raise ExtractionError(
            "画像処理中にエラーが発生しました: " + content[:100],
            kind="model_error", raw_text=content,
        )
    raise ExtractionError(
        "画像から情報を抽出できませんでした。領収書が鮮明に写っているか確認してください。",
        kind="malformed", raw_text=content,
    )


def _category_from_status(status_code: int) -> Optional[str]:
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code == 408 or status_code >= 500:
        return ErrorCategory.NETWORK
    return None


def _category_from_message(message: str) -> str:
    text = message.lower()
    if "api key" in text or "api_key" in text or "authentication" in text or "unauthorized" in text:
        return ErrorCategory.AUTHENTICATION
    if "quota" in text or "rate limit" in text or "rate_limit" in text:
        return ErrorCategory.RATE_LIMIT
    if "network" in text or "timeout" in text or "timed out" in text:
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


def error_detail(error: Exception) -> str:
    """HTTPエラーの場合はレスポンス本文も含めた説明"""
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}: {error.response.text[:300]}"
    return str(error) or error.__class__.__name__


def classify_error(error: Exception, provider_name: str, operation: str = "unknown") -> ReceiptAgentError:
    """例外を 認証 / 利用制限 / 通信 / その他 に分類し利用者向けメッセージを付与する"""
    if isinstance(error, ReceiptAgentError):
        return error

    detail = error_detail(error)
    status_code = None
    category = None
    if isinstance(error, httpx.TimeoutException):
        category = ErrorCategory.NETWORK
    elif isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        category = _category_from_status(status_code)
    elif isinstance(error, httpx.TransportError):
        category = ErrorCategory.NETWORK
    if category is None:
        category = _category_from_message(detail)

    messages = {
        ErrorCategory.AUTHENTICATION: f"{provider_name}のAPIキーが無効または設定されていません",
        ErrorCategory.RATE_LIMIT: f"{provider_name}の利用制限に達しました。しばらく待ってから再試行してください",
        ErrorCategory.NETWORK: f"{provider_name}への接続に失敗しました。ネットワーク接続を確認してください",
        ErrorCategory.UNKNOWN: f"{provider_name}での{operation}処理中にエラーが発生しました: {detail}",
    }
    wrapped = ProviderError(messages[category], category=category, provider=provider_name,
                            status_code=status_code)
    wrapped.__cause__ = error
    return wrapped


async def post_json(url: str, payload: dict, headers: Optional[dict] = None,
                    params: Optional[dict] = None, timeout: float = 30.0,
                    transport: Optional[httpx.AsyncBaseTransport] = None) -> dict:
    """JSONをPOSTしてJSONレスポンスを返す（HTTPエラーは httpx.HTTPStatusError）"""
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.post(url, json=payload, headers=headers, params=params)
        response.raise_for_status()
        return response.json()
