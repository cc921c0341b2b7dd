"""Anthropic Messages API による領収書読み取り"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config_loader import ProviderConfig, get_provider_config
from .errors import ExtractionError, ReceiptAgentError
from .llm_base import DEFAULT_CAPABILITIES, classify_error, log_event, normalize_response, post_json
from .prompts import HEALTH_CHECK_PROMPT, IMAGE_INSTRUCTION
from .receipt_models import ReceiptRecord


class ClaudeProvider:
    """Claude API クライアント"""

    API_URL = "https://api.anthropic.com/v1/messages"

    def __init__(self, config: Optional[ProviderConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_provider_config("claude")
        self.config.validate("claude")
        self.transport = transport
        self.headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        log_event(self, logging.INFO, "Claude service initialized",
                  max_tokens=self.config.max_tokens)

    def get_provider_name(self) -> str:
        return "Claude"

    def get_model_name(self) -> str:
        return self.config.model

    def get_capabilities(self) -> Dict[str, bool]:
        capabilities = dict(DEFAULT_CAPABILITIES)
        capabilities.update(vision=True, json_mode=False)
        return capabilities

    async def _messages(self, content: List[dict], system: Optional[str] = None,
                        max_tokens: Optional[int] = None) -> str:
        data = {
            "model": self.config.model,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            data["system"] = system
        body = await post_json(self.API_URL, data, headers=self.headers,
                               timeout=self.config.timeout_seconds, transport=self.transport)

        if body.get("stop_reason") == "refusal":
            raise ExtractionError(
                "画像が不鮮明または読み取れませんでした。より鮮明な画像をアップロードしてください。",
                kind="refusal",
            )
        # レスポンスのテキストブロックを連結
        text = "".join(block.get("text", "") for block in body.get("content") or []
                       if block.get("type") == "text")
        log_event(self, logging.INFO, "Claude response received",
                  response_length=len(text), usage=body.get("usage"))
        return text

    async def process_image(self, image_bytes: bytes, prompt: str,
                            mime_type: str = "image/jpeg") -> ReceiptRecord:
        try:
            log_event(self, logging.INFO, "Starting image processing", image_size=len(image_bytes))
            content = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": mime_type,
                        "data": base64.b64encode(image_bytes).decode("utf-8"),
                    },
                },
                {"type": "text", "text": IMAGE_INSTRUCTION},
            ]
            text = await self._messages(content, system=prompt)
            return ReceiptRecord.from_dict(self.normalize_response(text))
        except Exception as e:
            log_event(self, logging.ERROR, "Image processing failed", error=str(e))
            raise self.handle_error(e, "image processing")

    async def process_text(self, prompt: str) -> Any:
        try:
            text = await self._messages([{"type": "text", "text": prompt}])
            return self.normalize_response(text)
        except Exception as e:
            log_event(self, logging.ERROR, "Text processing failed", error=str(e))
            raise self.handle_error(e, "text processing")

    def normalize_response(self, raw_text: str) -> Any:
        return normalize_response(raw_text)

    def handle_error(self, error: Exception, operation: str = "unknown") -> ReceiptAgentError:
        return classify_error(error, self.get_provider_name(), operation)

    async def health_check(self) -> bool:
        try:
            text = await self._messages([{"type": "text", "text": HEALTH_CHECK_PROMPT}], max_tokens=10)
            return bool(text)
        except Exception as e:
            log_event(self, logging.ERROR, "Health check failed", error=str(e))
            return False
