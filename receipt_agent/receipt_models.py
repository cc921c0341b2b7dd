"""
領収書データのモデル

LLMが返したJSONを ReceiptRecord / LineItem に正規化し、金額の数値化と税額の整合チェックを行う。
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .errors import ExtractionError

logger = logging.getLogger(__name__)

Number = Union[int, float]

# 品目リスト（LLMに選ばせるカテゴリ）
ITEM_CATEGORIES = [
    "飲食費", "交通費", "宿泊費", "備品費", "通信費",
    "消耗品費", "印刷製本費", "会場費", "雑費", "交際費",
]
FALLBACK_CATEGORY = "雑費"


def to_number(value: Any) -> Optional[Number]:
    """金額表現を数値に変換（"¥1,200" や "1200円" も許容）"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        cleaned = re.sub(r"[¥￥,円\s]", "", value)
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    return None


def _normalize_date(value: Any) -> str:
    text = str(value or "").strip()
    return re.sub(r"[-.]", "/", text)


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


@dataclass(frozen=True)
class ClassificationResult:
    account_code: str
    account_name: str
    sub_account_code: str
    sub_account_name: str

    def as_dict(self) -> Dict[str, str]:
        return {
            "accountCode": self.account_code,
            "accountName": self.account_name,
            "subAccountCode": self.sub_account_code,
            "subAccountName": self.sub_account_name,
        }


@dataclass(frozen=True)
class LineItem:
    name: str
    amount: Number
    category: str = FALLBACK_CATEGORY

    @classmethod
    def from_dict(cls, data: Any) -> "LineItem":
        if not isinstance(data, dict):
            raise ExtractionError(f"item is not an object: {data!r}", kind="invalid_shape")
        category = _text(data.get("category"))
        if category not in ITEM_CATEGORIES:
            if category:
                logger.warning("未知の品目カテゴリ '%s' を%sとして扱います", category, FALLBACK_CATEGORY)
            category = FALLBACK_CATEGORY
        amount = to_number(data.get("amount"))
        return cls(name=_text(data.get("name")), amount=amount if amount is not None else 0, category=category)


@dataclass
class ReceiptRecord:
    payee: str
    date: str
    amount: Number
    items: List[LineItem] = field(default_factory=list)
    subtotal: Optional[Number] = None
    tax: Optional[Number] = None
    reduced_tax: Optional[Number] = None
    invoice_number: str = ""
    payment_method: str = ""
    receipt_name: str = ""
    remarks: str = ""
    item_details: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ReceiptRecord":
        """正規化済みのモデル出力から領収書レコードを作成"""
        if not isinstance(data, dict):
            raise ExtractionError("モデル出力がJSONオブジェクトではありません", kind="invalid_shape")

        amount = to_number(data.get("amount"))
        if amount is None:
            raise ExtractionError("合計金額(amount)を読み取れませんでした", kind="invalid_shape")

        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ExtractionError("items が配列ではありません", kind="invalid_shape")

        return cls(
            payee=_text(data.get("payee")),
            date=_normalize_date(data.get("date")),
            amount=amount,
            items=[LineItem.from_dict(item) for item in raw_items],
            subtotal=to_number(data.get("subtotal")),
            tax=to_number(data.get("tax")),
            reduced_tax=to_number(data.get("reduced_tax")),
            invoice_number=_text(data.get("invoice_number")),
            payment_method=_text(data.get("payment_method")),
            receipt_name=_text(data.get("receipt_name")),
            remarks=_text(data.get("remarks")),
            item_details=_text(data.get("item_details")),
        )

    @property
    def effective_subtotal(self) -> Number:
        # 0 や未記載の小計は合計金額で代替
        return self.subtotal or self.amount

    @property
    def effective_reduced_tax(self) -> Number:
        return self.reduced_tax or 0

    @property
    def standard_tax(self) -> Optional[Number]:
        """標準税率分の消費税（tax - reduced_tax）"""
        if self.tax is None:
            return None
        return self.tax - self.effective_reduced_tax

    def data_warnings(self) -> List[str]:
        warnings = []
        if self.tax is not None and self.effective_reduced_tax > self.tax:
            warnings.append(
                f"軽減税率分({self.effective_reduced_tax})が消費税合計({self.tax})を超えています"
            )
        return warnings


@dataclass(frozen=True)
class ClassifiedItem:
    item: LineItem
    classification: ClassificationResult
    matched_rule: str = ""


@dataclass
class ClassifiedReceipt:
    receipt: ReceiptRecord
    items: List[ClassifiedItem]


@dataclass(frozen=True)
class UploadedFile:
    id: str
    original_name: str
    mime_type: str
    size_bytes: int
    buffer: bytes = field(repr=False)
    uploaded_at: datetime = field(default_factory=datetime.now)
