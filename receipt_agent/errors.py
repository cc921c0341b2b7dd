"""
例外クラス定義

ReceiptAgentError を頂点に、設定エラー・抽出エラー・プロバイダーエラー・
構造エラーの4系統に分かれる。各例外は利用者向けメッセージ(user_message)と
呼び出し側で再試行してよいか(retryable)を持つ。
"""

from typing import List, Optional


class ReceiptAgentError(Exception):
    """全ての例外の基底クラス"""

    retryable = False

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class ConfigurationError(ReceiptAgentError):
    """APIキー・モデル名など設定の不備（起動時に致命的）"""


class ExtractionError(ReceiptAgentError):
    """モデル出力を領収書データに変換できない

    kind: malformed / refusal / model_error / safety / invalid_shape
    """

    def __init__(self, message: str, kind: str = "malformed", raw_text: str = ""):
        super().__init__(message)
        self.kind = kind
        self.raw_text = raw_text


class ErrorCategory:
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    UNKNOWN = "unknown"


# 呼び出し側で再試行を検討してよいカテゴリ
RETRYABLE_CATEGORIES = {ErrorCategory.RATE_LIMIT, ErrorCategory.NETWORK}


class ProviderError(ReceiptAgentError):
    """LLM API呼び出しの失敗（分類済み）"""

    def __init__(self, message: str, category: str = ErrorCategory.UNKNOWN,
                 provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.provider = provider
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES


class ProviderUnavailableError(ReceiptAgentError):
    """切り替え先プロバイダーのヘルスチェック失敗"""


class StructuralError(ReceiptAgentError):
    """処理全体を継続できない入力・データの不備"""


class EmptyBatchError(StructuralError):
    def __init__(self, message: str = "アップロード画像がありません"):
        super().__init__(message)


class NoReceiptsExtractedError(StructuralError):
    """バッチ内の全ファイルで抽出に失敗した"""

    def __init__(self, errors: List[dict]):
        super().__init__("処理可能な領収書が見つかりませんでした")
        self.errors = errors


class MasterDataError(StructuralError):
    """会計マスタファイルが存在しない、または形式不正"""


class UnsupportedFileError(ReceiptAgentError):
    def __init__(self, mime_type: str):
        super().__init__(f"unsupported mime type: {mime_type}",
                         user_message="画像ファイルのみアップロード可能です")
        self.mime_type = mime_type
