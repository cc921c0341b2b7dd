"""領収書OCR用プロンプト"""

from typing import List, Optional

from .receipt_models import ITEM_CATEGORIES

# 画像と一緒に送るユーザーメッセージ
IMAGE_INSTRUCTION = (
    "この領収書画像から必要な情報を抽出してください。"
    "品目名は具体的に記載し、会計科目判定の指針に従って適切な品目カテゴリを選択してください。"
)

HEALTH_CHECK_PROMPT = "Hello"

_JUDGEMENT_EXAMPLES = """- 絵本・おもちゃ → 原価消耗品費-保育材料費
- 文房具・事務用品 → 消耗品費-事務用消耗品代
- 切手・郵便料 → 通信費-切手代
- 電話料・携帯電話料 → 支払電話料-電話料
- 電車・バス・タクシー料金 → 旅費交通費-通勤定期代
- ガソリン・駐車料金 → 車両費-ガソリン代
- 電気代・水道代・ガス代 → 水道光熱費-電気代
- 家賃・賃借料 → 地代家賃-支店事務所家賃
- 手数料・振込手数料 → 支払手数料-振込手数料
- 食材・食品 → 原価消耗品費-食材仕入
- 清掃用品 → 原価消耗品費-介護業務用消耗品代
- 医療用品 → 原価消耗品費-医事業務用消耗品代"""

_OUTPUT_FORMAT = """{
  "payee": "支払先名",
  "date": "yyyy/mm/dd",
  "subtotal": 小計（数値）,
  "tax": 消費税（数値）,
  "reduced_tax": 軽減税率（数値、ない場合は0）,
  "amount": 合計金額（数値）,
  "items": [
    {
      "name": "商品名・サービス名",
      "amount": 金額（数値）,
      "category": "品目（品目リストから選択）"
    }
  ],
  "invoice_number": "インボイス登録番号（空文字列可）",
  "payment_method": "支払い方法（空文字列可）",
  "receipt_name": "領収書名義（空文字列可）",
  "remarks": "備考（空文字列可）"
}"""


def build_extraction_prompt(account_examples: Optional[List[str]] = None) -> str:
    """抽出用システムプロンプトを組み立てる

    Args:
        account_examples: 「補助科目 → 科目」形式の例（AccountMaster.prompt_examples）
    """
    examples = "\n".join(account_examples or [])
    return f"""あなたは領収書のOCR処理専門AIです。以下の情報を正確に抽出してください：

【抽出対象】
- 支払先（店名・会社名など）
- 日付（yyyy/mm/dd形式に変換）
- 小計（税抜金額、数値のみ）
- 消費税（数値のみ、軽減税率がある場合は標準税率と軽減税率を分けて記載）
- 軽減税率（軽減税率の消費税額、数値のみ、ない場合は0）
- 合計金額（税込金額、数値のみ）
- 品目詳細（具体的な商品名・サービス名と金額のリスト）
- インボイス登録番号（Tの後に13数字からなる番号、見当たらない場合は「未記載」）
- 支払い方法（現金・クレジットカード・電子マネーなど）
- 領収書名義（記載があれば）
- 備考（特記がある場合のみ）

【品目リスト】
{'／'.join(ITEM_CATEGORIES)}

【会計科目判定の指針】
品目名から適切な勘定科目・補助科目を判定してください。以下の例を参考にしてください：

主要な科目・補助科目の例：
{examples}

具体的な判定例：
{_JUDGEMENT_EXAMPLES}

【出力形式】
JSON形式で以下の構造で返してください：
{_OUTPUT_FORMAT}

注意：
- 日付は必ずyyyy/mm/dd形式で、金額は数値のみで返してください。
- 品目は品目リストから最も適切なものを選択してください。
- 軽減税率がある場合は、標準税率と軽減税率を分けて記載してください。
- 品目名は具体的で分かりやすい商品名・サービス名を記載してください。"""
