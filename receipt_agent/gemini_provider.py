"""
Google Gemini API (generateContent) による領収書読み取り

基本のエラー分類に加え、安全性フィルター・クォータ超過・権限不足を
Gemini 固有のメッセージで扱う。
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config_loader import ProviderConfig, get_provider_config
from .errors import ErrorCategory, ExtractionError, ProviderError, ReceiptAgentError
from .llm_base import (DEFAULT_CAPABILITIES, classify_error, error_detail, log_event,
                       normalize_response, post_json)
from .prompts import HEALTH_CHECK_PROMPT, IMAGE_INSTRUCTION
from .receipt_models import ReceiptRecord

SAFETY_MESSAGE = "Geminiの安全性フィルターにより処理がブロックされました。別の画像を試してください。"


class GeminiProvider:
    """Gemini API クライアント"""

    API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"

    def __init__(self, config: Optional[ProviderConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_provider_config("gemini")
        self.config.validate("gemini")
        self.transport = transport
        self.headers = {
            "x-goog-api-key": self.config.api_key,
            "Content-Type": "application/json",
        }
        log_event(self, logging.INFO, "Gemini service initialized",
                  max_tokens=self.config.max_tokens)

    def get_provider_name(self) -> str:
        return "Gemini"

    def get_model_name(self) -> str:
        return self.config.model

    def get_capabilities(self) -> Dict[str, bool]:
        capabilities = dict(DEFAULT_CAPABILITIES)
        capabilities.update(batch_processing=True, vision=True, json_mode=False)
        return capabilities

    async def _generate(self, parts: List[dict], max_tokens: Optional[int] = None) -> str:
        url = f"{self.API_BASE}/{self.config.model}:generateContent"
        data = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "maxOutputTokens": max_tokens or self.config.max_tokens,
                "temperature": self.config.temperature,
            },
        }
        body = await post_json(url, data, headers=self.headers,
                               timeout=self.config.timeout_seconds, transport=self.transport)

        block_reason = (body.get("promptFeedback") or {}).get("blockReason")
        candidates = body.get("candidates") or []
        if block_reason or not candidates:
            if block_reason:
                raise ExtractionError(SAFETY_MESSAGE, kind="safety", raw_text=str(block_reason))
            raise ExtractionError("Geminiから応答が返されませんでした", kind="malformed")

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason == "SAFETY":
            raise ExtractionError(SAFETY_MESSAGE, kind="safety", raw_text=finish_reason)

        content = "".join(part.get("text", "") for part in (candidate.get("content") or {}).get("parts", []))
        log_event(self, logging.INFO, "Gemini response received",
                  response_length=len(content), finish_reason=finish_reason)
        return content

    async def process_image(self, image_bytes: bytes, prompt: str,
                            mime_type: str = "image/jpeg") -> ReceiptRecord:
        try:
            log_event(self, logging.INFO, "Starting image processing", image_size=len(image_bytes))
            parts = [
                {"text": f"{prompt}\n\n{IMAGE_INSTRUCTION}"},
                {"inline_data": {"mime_type": mime_type,
                                 "data": base64.b64encode(image_bytes).decode("utf-8")}},
            ]
            content = await self._generate(parts)
            return ReceiptRecord.from_dict(self.normalize_response(content))
        except Exception as e:
            log_event(self, logging.ERROR, "Image processing failed", error=str(e))
            raise self.handle_error(e, "image processing")

    async def process_text(self, prompt: str) -> Any:
        try:
            log_event(self, logging.INFO, "Starting text processing", prompt_length=len(prompt))
            content = await self._generate([{"text": prompt}])
            return self.normalize_response(content)
        except Exception as e:
            log_event(self, logging.ERROR, "Text processing failed", error=str(e))
            raise self.handle_error(e, "text processing")

    def normalize_response(self, raw_text: str) -> Any:
        return normalize_response(raw_text)

    def handle_error(self, error: Exception, operation: str = "unknown") -> ReceiptAgentError:
        """Gemini固有のエラーを優先して分類する"""
        if isinstance(error, ReceiptAgentError):
            return error

        detail = error_detail(error)
        if "SAFETY" in detail:
            wrapped = ExtractionError(SAFETY_MESSAGE, kind="safety", raw_text=detail)
        elif "QUOTA_EXCEEDED" in detail or "RESOURCE_EXHAUSTED" in detail:
            wrapped = ProviderError(
                "Geminiの利用制限に達しました。しばらく待ってから再試行してください。",
                category=ErrorCategory.RATE_LIMIT, provider=self.get_provider_name(),
            )
        elif "PERMISSION_DENIED" in detail:
            wrapped = ProviderError(
                "Gemini APIへのアクセス権限がありません。APIキーを確認してください。",
                category=ErrorCategory.AUTHENTICATION, provider=self.get_provider_name(),
            )
        else:
            return classify_error(error, self.get_provider_name(), operation)
        wrapped.__cause__ = error
        return wrapped

    async def health_check(self) -> bool:
        try:
            content = await self._generate([{"text": HEALTH_CHECK_PROMPT}], max_tokens=10)
            log_event(self, logging.INFO, "Health check passed")
            return bool(content)
        except Exception as e:
            log_event(self, logging.ERROR, "Health check failed", error=str(e))
            return False
