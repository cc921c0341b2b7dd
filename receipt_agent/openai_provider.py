"""
OpenAI Chat Completions API による領収書読み取り
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config_loader import ProviderConfig, get_provider_config
from .errors import ExtractionError, ReceiptAgentError
from .llm_base import DEFAULT_CAPABILITIES, classify_error, log_event, normalize_response, post_json
from .prompts import HEALTH_CHECK_PROMPT, IMAGE_INSTRUCTION
from .receipt_models import ReceiptRecord


class OpenAIProvider:
    """OpenAI API クライアント"""

    API_URL = "https://api.openai.com/v1/chat/completions"

    def __init__(self, config: Optional[ProviderConfig] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_provider_config("openai")
        self.config.validate("openai")
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        log_event(self, logging.INFO, "OpenAI service initialized",
                  max_tokens=self.config.max_tokens)

    def get_provider_name(self) -> str:
        return "OpenAI"

    def get_model_name(self) -> str:
        return self.config.model

    def get_capabilities(self) -> Dict[str, bool]:
        capabilities = dict(DEFAULT_CAPABILITIES)
        capabilities.update(batch_processing=True, vision=True, json_mode=False)
        return capabilities

    async def _chat(self, messages: List[dict], max_tokens: Optional[int] = None) -> str:
        data = {
            "model": self.config.model,
            "messages": messages,
            "max_tokens": max_tokens or self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        body = await post_json(self.API_URL, data, headers=self.headers,
                               timeout=self.config.timeout_seconds, transport=self.transport)

        choices = body.get("choices") or []
        if not choices:
            raise ExtractionError("OpenAIから応答が返されませんでした", kind="malformed")
        message = choices[0].get("message") or {}
        if message.get("refusal"):
            raise ExtractionError(
                "画像が不鮮明または読み取れませんでした。より鮮明な画像をアップロードしてください。",
                kind="refusal", raw_text=message["refusal"],
            )
        content = (message.get("content") or "").strip()
        log_event(self, logging.INFO, "OpenAI response received",
                  response_length=len(content), usage=body.get("usage"))
        return content

    async def process_image(self, image_bytes: bytes, prompt: str,
                            mime_type: str = "image/jpeg") -> ReceiptRecord:
        try:
            log_event(self, logging.INFO, "Starting image processing", image_size=len(image_bytes))
            b64 = base64.b64encode(image_bytes).decode("utf-8")
            messages = [
                {"role": "system", "content": prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": IMAGE_INSTRUCTION},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}},
                    ],
                },
            ]
            content = await self._chat(messages)
            return ReceiptRecord.from_dict(self.normalize_response(content))
        except Exception as e:
            log_event(self, logging.ERROR, "Image processing failed", error=str(e))
            raise self.handle_error(e, "image processing")

    async def process_text(self, prompt: str) -> Any:
        try:
            log_event(self, logging.INFO, "Starting text processing", prompt_length=len(prompt))
            content = await self._chat([{"role": "user", "content": prompt}])
            return self.normalize_response(content)
        except Exception as e:
            log_event(self, logging.ERROR, "Text processing failed", error=str(e))
            raise self.handle_error(e, "text processing")

    def normalize_response(self, raw_text: str) -> Any:
        return normalize_response(raw_text)

    def handle_error(self, error: Exception, operation: str = "unknown") -> ReceiptAgentError:
        return classify_error(error, self.get_provider_name(), operation)

    async def health_check(self) -> bool:
        try:
            content = await self._chat([{"role": "user", "content": HEALTH_CHECK_PROMPT}], max_tokens=10)
            log_event(self, logging.INFO, "Health check passed")
            return bool(content)
        except Exception as e:
            log_event(self, logging.ERROR, "Health check failed", error=str(e))
            return False
