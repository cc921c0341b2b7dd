import pytest

from receipt_agent.llm_base import classify_error, normalize_response
from receipt_agent.receipt_models import ReceiptRecord

LLM_ENV_VARS = [
    "LLM_PROVIDER",
    "LLM_MAX_CONCURRENT",
    "ACCOUNTING_MASTER_PATH",
    "OPENAI_API_KEY", "OPENAI_MODEL", "OPENAI_MAX_TOKENS", "OPENAI_TEMPERATURE", "OPENAI_TIMEOUT",
    "GEMINI_API_KEY", "GEMINI_MODEL", "GEMINI_MAX_TOKENS", "GEMINI_TEMPERATURE", "GEMINI_TIMEOUT",
    "ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "ANTHROPIC_MAX_TOKENS", "ANTHROPIC_TEMPERATURE", "ANTHROPIC_TIMEOUT",
]

DEFAULT_RECEIPT = {"payee": "テスト商店", "date": "2024/05/01", "amount": 1100, "items": []}


@pytest.fixture(autouse=True)
def clean_llm_env(monkeypatch, tmp_path):
    """実環境の APIキーや config/settings.yml に依存しないようにする"""
    for name in LLM_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SETTINGS_PATH", str(tmp_path / "no-settings.yml"))


class FakeProvider:
    """画像バイト列ごとに応答（dict または例外）を決めておけるプロバイダー"""

    def __init__(self, name="Fake", responses=None, healthy=True, gate=None):
        self.name = name
        self.responses = responses or {}
        self.healthy = healthy
        self.gate = gate
        self.calls = []

    async def process_image(self, image_bytes, prompt, mime_type="image/jpeg"):
        self.calls.append(image_bytes)
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(image_bytes, DEFAULT_RECEIPT)
        if isinstance(response, Exception):
            raise response
        return ReceiptRecord.from_dict(response)

    async def process_text(self, prompt):
        return {}

    async def health_check(self):
        return self.healthy

    def get_provider_name(self):
        return self.name

    def get_model_name(self):
        return "fake-model"

    def get_capabilities(self):
        return {"vision": True}

    def normalize_response(self, raw_text):
        return normalize_response(raw_text)

    def handle_error(self, error, operation="unknown"):
        return classify_error(error, self.name, operation)


@pytest.fixture
def fake_provider():
    return FakeProvider
