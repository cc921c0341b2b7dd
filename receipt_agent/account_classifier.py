"""
品目名から勘定科目・補助科目を判定するルール定義

判定は以下の順に行い、最初に一致したものを採用する
  1. 会計マスタ（科目名・補助科目名の部分一致）
  2. 詳細キーワードルール（保育・食材・撮影・運搬）
  3. 従来のキーワードルール（事務用品・郵便・電話・交通・車両・光熱・家賃・手数料）
  4. デフォルト（消耗品費-事務用消耗品代）

キーワードは大文字小文字を区別しない部分一致。
自社の品目に合わせてルールを追加する場合は DETAILED_RULES / GENERIC_RULES を編集する。
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .accounting_master import AccountMaster
from .receipt_models import ClassificationResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordRule:
    name: str
    keywords: Tuple[str, ...]
    result: ClassificationResult

    def matches(self, text: str) -> bool:
        return any(keyword.lower() in text for keyword in self.keywords)


def _result(account_code: str, account_name: str, sub_code: str, sub_name: str) -> ClassificationResult:
    return ClassificationResult(account_code, account_name, sub_code, sub_name)


# 詳細なキーワード判定（領収書でよく出る品目）
DETAILED_RULES = (
    # 絵本・おもちゃ・保育関連
    KeywordRule(
        "childcare",
        ("絵本", "えほん", "おもちゃ", "チョッキ", "あおむし", "ほっとけーき",
         "てんぷら", "もこもこ", "保育", "子供", "児童", "幼児"),
        _result("72640", "原価消耗品費", "0013", "保育材料費"),
    ),
    # 食材・食品関連
    KeywordRule(
        "foodstuffs",
        ("鶏", "豚", "肉", "野菜", "玉ねぎ", "にんじん", "じゃがいも", "牛乳", "食パン",
         "卵", "バナナ", "せんべい", "ゼリー", "プリン", "麦茶", "食材", "食品", "冷凍"),
        _result("72120", "一般商品仕入高", "0007", "食材仕入"),
    ),
    # 写真・ビデオ撮影関連
    KeywordRule(
        "photo_video",
        ("写真", "ビデオ", "撮影", "編集", "フォト", "工房"),
        _result("74510", "広告宣伝費", "0001", "広告宣伝費"),
    ),
    # 機材運搬・移動
    KeywordRule(
        "transport",
        ("交通費", "運搬", "機材", "移動"),
        _result("74530", "旅費交通費", "0004", "出張旅費"),
    ),
)

# 従来のキーワード判定
GENERIC_RULES = (
    KeywordRule(
        "office_supplies",
        # 写真は photo_video が先に一致するため、ここでは実質的に使われない
        ("文房具", "ペン", "ノート", "紙", "クリップ", "ファイル", "名刺", "封筒",
         "コピー", "印刷", "写真", "フィルム", "清掃", "掃除"),
        _result("74610", "消耗品費", "0001", "事務用消耗品代"),
    ),
    KeywordRule(
        "postage",
        ("切手", "はがき", "郵送", "郵便"),
        _result("74620", "通信費", "0001", "切手代"),
    ),
    KeywordRule(
        "telecom",
        ("電話", "ファックス", "携帯", "回線", "電報"),
        _result("74630", "支払電話料", "0001", "電話料"),
    ),
    KeywordRule(
        "commuter_transport",
        ("電車", "バス", "タクシー", "定期", "航空券", "乗車券", "出張", "旅費"),
        _result("74530", "旅費交通費", "0001", "通勤定期代"),
    ),
    KeywordRule(
        "vehicle",
        ("ガソリン", "有料道路", "駐車", "車検", "部品"),
        _result("74540", "車両費", "0001", "ガソリン代"),
    ),
    KeywordRule(
        "utilities",
        ("電気", "水道", "ガス", "光熱", "灯油", "燃料"),
        _result("74340", "水道光熱費", "0002", "電気代"),
    ),
    KeywordRule(
        "rent",
        ("家賃", "賃借", "駐車場", "土地"),
        _result("74310", "地代家賃", "0001", "支店事務所家賃"),
    ),
    KeywordRule(
        "fees",
        ("手数料", "振込", "報酬", "顧問", "監査", "委託"),
        _result("74590", "支払手数料", "0001", "振込手数料"),
    ),
)

DEFAULT_RESULT = _result("74610", "消耗品費", "0001", "事務用消耗品代")

RULE_DESCRIPTIONS = {
    "childcare": "絵本・おもちゃ・保育関連",
    "foodstuffs": "食材・食品関連",
    "photo_video": "写真・ビデオ撮影関連",
    "transport": "機材運搬・移動",
    "office_supplies": "文房具・事務用品",
    "postage": "切手・郵便",
    "telecom": "電話・通信回線",
    "commuter_transport": "電車・バス・タクシー",
    "vehicle": "ガソリン・車両",
    "utilities": "電気・水道・ガス",
    "rent": "家賃・賃借料",
    "fees": "手数料・報酬",
}


class AccountClassifier:
    """品目名 → 勘定科目の判定（例外を送出しない）"""

    def __init__(self, master: Optional[AccountMaster] = None,
                 detailed_rules: Tuple[KeywordRule, ...] = DETAILED_RULES,
                 generic_rules: Tuple[KeywordRule, ...] = GENERIC_RULES,
                 default: ClassificationResult = DEFAULT_RESULT):
        self.master = master
        self.detailed_rules = detailed_rules
        self.generic_rules = generic_rules
        self.default = default

    def classify(self, description: str) -> ClassificationResult:
        return self.classify_with_source(description)[0]

    def classify_with_source(self, description: str) -> Tuple[ClassificationResult, str]:
        """判定結果と一致したルール名を返す

        ルール名は master / detailed:<名前> / generic:<名前> / default のいずれか
        """
        text = str(description).lower() if description else ""
        if not text:
            return self.default, "default"

        # 1. マスタデータ
        if self.master is not None:
            found = self.master.lookup(text)
            if found is not None:
                return found, "master"

        # 2. 詳細キーワード
        for rule in self.detailed_rules:
            if rule.matches(text):
                return rule.result, f"detailed:{rule.name}"

        # 3. 従来キーワード
        for rule in self.generic_rules:
            if rule.matches(text):
                return rule.result, f"generic:{rule.name}"

        logger.debug("キーワード不一致のためデフォルト科目を適用: %s", description)
        return self.default, "default"


def explain_rule(matched_rule: str) -> str:
    """一致したルールの説明を返す"""
    if matched_rule == "master":
        return "会計マスタの科目名・補助科目名に一致"
    if matched_rule == "default":
        return "一致するキーワードがないためデフォルト科目を適用"
    tier, _, name = matched_rule.partition(":")
    label = RULE_DESCRIPTIONS.get(name, name)
    if tier == "detailed":
        return f"詳細キーワードルール '{label}' を適用"
    return f"キーワードルール '{label}' を適用"
