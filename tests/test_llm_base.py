import json
import unittest

import httpx

from receipt_agent.errors import ErrorCategory, ExtractionError, ProviderError
from receipt_agent.llm_base import classify_error, normalize_response, strip_code_fence


def _status_error(status_code, text=""):
    request = httpx.Request("POST", "https://api.example.com/v1")
    response = httpx.Response(status_code, request=request, text=text)
    return httpx.HTTPStatusError(f"HTTP {status_code}", request=request, response=response)


class TestNormalizeResponse(unittest.TestCase):
    """モデル応答テキストの正規化"""

    def test_plain_json(self):
        self.assertEqual(normalize_response('{"amount": 100}'), {"amount": 100})

    def test_code_fence_removed(self):
        raw = '```json\n{"amount": 100, "payee": "テスト"}\n```'
        self.assertEqual(normalize_response(raw), {"amount": 100, "payee": "テスト"})
        self.assertEqual(normalize_response('```\n{"amount": 1}\n```'), {"amount": 1})

    def test_idempotent(self):
        """正規化結果を再度正規化しても同じ値になる"""
        raw = '```JSON\n{"amount": 1100, "items": [{"name": "牛乳", "amount": 200}]}\n```'
        first = normalize_response(raw)
        self.assertEqual(normalize_response(json.dumps(first, ensure_ascii=False)), first)

    def test_refusal(self):
        with self.assertRaises(ExtractionError) as ctx:
            normalize_response("申し訳ありませんが、この画像は読み取れません。")
        self.assertEqual(ctx.exception.kind, "refusal")

    def test_model_error(self):
        with self.assertRaises(ExtractionError) as ctx:
            normalize_response("エラー: 画像を処理できませんでした")
        self.assertEqual(ctx.exception.kind, "model_error")
        self.assertTrue(ctx.exception.user_message.startswith("画像処理中にエラーが発生しました"))

    def test_malformed(self):
        for raw in ["", None, "hello world", "{broken"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ExtractionError) as ctx:
                    normalize_response(raw)
                self.assertEqual(ctx.exception.kind, "malformed")

    def test_strip_code_fence_leaves_plain_text(self):
        self.assertEqual(strip_code_fence("  {}  "), "{}")


class TestClassifyError(unittest.TestCase):
    """HTTP エラー・例外の分類"""

    def test_status_codes(self):
        cases = {
            401: ErrorCategory.AUTHENTICATION,
            403: ErrorCategory.AUTHENTICATION,
            429: ErrorCategory.RATE_LIMIT,
            408: ErrorCategory.NETWORK,
            503: ErrorCategory.NETWORK,
            400: ErrorCategory.UNKNOWN,
        }
        for status, category in cases.items():
            with self.subTest(status=status):
                error = classify_error(_status_error(status), "OpenAI", "image processing")
                self.assertIsInstance(error, ProviderError)
                self.assertEqual(error.category, category)
                self.assertEqual(error.status_code, status)
                self.assertEqual(error.provider, "OpenAI")

    def test_retryable_only_for_transient_categories(self):
        self.assertTrue(classify_error(_status_error(429), "OpenAI").retryable)
        self.assertTrue(classify_error(_status_error(502), "OpenAI").retryable)
        self.assertFalse(classify_error(_status_error(401), "OpenAI").retryable)

    def test_timeout_is_network(self):
        error = classify_error(httpx.ReadTimeout("timed out"), "Claude")
        self.assertEqual(error.category, ErrorCategory.NETWORK)
        self.assertIn("Claude", error.user_message)

    def test_connect_error_is_network(self):
        error = classify_error(httpx.ConnectError("connection refused"), "Gemini")
        self.assertEqual(error.category, ErrorCategory.NETWORK)

    def test_message_keywords(self):
        self.assertEqual(classify_error(RuntimeError("Invalid API key"), "OpenAI").category,
                         ErrorCategory.AUTHENTICATION)
        self.assertEqual(classify_error(RuntimeError("quota exceeded"), "OpenAI").category,
                         ErrorCategory.RATE_LIMIT)

    def test_unknown_keeps_detail(self):
        original = ValueError("something odd")
        error = classify_error(original, "OpenAI", "text processing")
        self.assertEqual(error.category, ErrorCategory.UNKNOWN)
        self.assertIn("something odd", error.user_message)
        self.assertIs(error.__cause__, original)

    def test_extraction_error_passes_through(self):
        original = ExtractionError("読み取れません", kind="refusal")
        self.assertIs(classify_error(original, "OpenAI"), original)


if __name__ == "__main__":
    unittest.main()
