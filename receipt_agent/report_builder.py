"""
Excel レポート作成

領収書ごとに「品目行 → 小計 → 消費税 → 合計金額（税込）」を並べ、最後に全体合計を付ける。
行の組み立て (build_report_rows) と xlsx への書き出し (write_workbook) は分けている。
"""

import io
import logging
from dataclasses import astuple, dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple, Union

import pandas as pd
from openpyxl.styles import Font, PatternFill

from .account_classifier import AccountClassifier
from .receipt_models import ClassifiedItem, ClassifiedReceipt, Number, ReceiptRecord

logger = logging.getLogger(__name__)

SHEET_NAME = "領収書"
AMOUNT_FORMAT = "¥#,##0"
NOT_STATED = "未記載"

# 列名と列幅
COLUMNS = [
    ("伝票識別ID", 15),
    ("明細番号", 10),
    ("科目コード", 12),
    ("科目名称", 15),
    ("補助科目コード", 15),
    ("補助科目名称", 20),
    ("支払先", 20),
    ("支払日", 12),
    ("品目詳細", 25),
    ("金額", 15),
    ("インボイス登録番号", 20),
]

_HEADER_FILL = PatternFill("solid", fgColor="E0E0E0")
_SUMMARY_FILL = PatternFill("solid", fgColor="E6F3FF")
_TOTAL_FILL = PatternFill("solid", fgColor="CCE5FF")


@dataclass
class ReportRow:
    voucher_id: str = ""
    detail_no: Union[int, str] = ""
    account_code: str = ""
    account_name: str = ""
    sub_account_code: str = ""
    sub_account_name: str = ""
    payee: str = ""
    payment_date: str = ""
    item_details: str = ""
    amount: Union[Number, str] = ""
    invoice_number: str = ""

    # item / subtotal / tax / total / grand_total（Excelには出力しない）
    kind: str = "item"

    def values(self) -> Tuple:
        return astuple(self)[:len(COLUMNS)]


def tax_lines(receipt: ReceiptRecord) -> List[Tuple[str, Number]]:
    """消費税行の (ラベル, 金額)

    軽減税率分があれば標準税率・軽減税率の2行、なければ1行、消費税がなければ空。
    """
    if not receipt.tax or receipt.tax <= 0:
        return []
    reduced = receipt.effective_reduced_tax
    if reduced > 0:
        return [
            ("消費税（標準税率）", receipt.standard_tax),
            ("消費税（軽減税率）", reduced),
        ]
    return [("消費税", receipt.tax)]


def classify_receipts(receipts: Sequence[ReceiptRecord],
                      classifier: AccountClassifier) -> List[ClassifiedReceipt]:
    classified = []
    for receipt in receipts:
        items = []
        for item in receipt.items:
            result, rule = classifier.classify_with_source(item.name)
            items.append(ClassifiedItem(item=item, classification=result, matched_rule=rule))
        classified.append(ClassifiedReceipt(receipt=receipt, items=items))
    return classified


def _summary_rows(receipt: ReceiptRecord) -> List[ReportRow]:
    rows = [ReportRow(item_details="小計", amount=receipt.effective_subtotal, kind="subtotal")]
    for label, amount in tax_lines(receipt):
        rows.append(ReportRow(item_details=label, amount=amount, kind="tax"))
    rows.append(ReportRow(item_details="合計金額（税込）", amount=receipt.amount, kind="total"))
    return rows


def build_report_rows(receipts: Sequence[ReceiptRecord],
                      classifier: AccountClassifier) -> List[ReportRow]:
    rows: List[ReportRow] = []
    detail_no = 1
    total_amount: Number = 0

    for index, classified in enumerate(classify_receipts(receipts, classifier), start=1):
        receipt = classified.receipt
        voucher_id = f"{index:03d}"
        invoice_number = receipt.invoice_number or NOT_STATED

        if classified.items:
            for position, entry in enumerate(classified.items):
                first = position == 0
                result = entry.classification
                rows.append(ReportRow(
                    voucher_id=voucher_id if first else "",
                    detail_no=detail_no,
                    account_code=result.account_code,
                    account_name=result.account_name,
                    sub_account_code=result.sub_account_code,
                    sub_account_name=result.sub_account_name,
                    payee=receipt.payee if first else "",
                    payment_date=receipt.date if first else "",
                    item_details=entry.item.name,
                    amount=entry.item.amount,
                    invoice_number=invoice_number if first else "",
                ))
                detail_no += 1
        else:
            # 品目がない領収書は品目詳細から科目を判定して1行にまとめる（空ならデフォルト科目）
            result = classifier.classify(receipt.item_details)
            rows.append(ReportRow(
                voucher_id=voucher_id,
                detail_no=detail_no,
                account_code=result.account_code,
                account_name=result.account_name,
                sub_account_code=result.sub_account_code,
                sub_account_name=result.sub_account_name,
                payee=receipt.payee,
                payment_date=receipt.date,
                item_details=receipt.item_details,
                amount=receipt.amount,
                invoice_number=invoice_number,
            ))
            detail_no += 1

        rows.extend(_summary_rows(receipt))
        total_amount += receipt.amount

    rows.append(ReportRow(payment_date="全体合計", amount=total_amount, kind="grand_total"))
    return rows


def write_workbook(rows: Sequence[ReportRow], sheet_name: str = SHEET_NAME) -> bytes:
    """レポート行を xlsx のバイト列にする"""
    headers = [name for name, _ in COLUMNS]
    df = pd.DataFrame([row.values() for row in rows], columns=headers, dtype=object)

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
        ws = writer.sheets[sheet_name]

        for cell in ws[1]:
            cell.font = Font(bold=True)
            cell.fill = _HEADER_FILL
        for cell, (_, width) in zip(ws[1], COLUMNS):
            ws.column_dimensions[cell.column_letter].width = width

        amount_col = headers.index("金額") + 1
        for row_idx, row in enumerate(rows, start=2):
            amount_cell = ws.cell(row=row_idx, column=amount_col)
            amount_cell.number_format = AMOUNT_FORMAT
            if row.kind == "item":
                continue
            fill = _SUMMARY_FILL if row.kind in ("subtotal", "tax") else _TOTAL_FILL
            for cell in ws[row_idx]:
                cell.fill = fill
            amount_cell.font = Font(bold=True)

    logger.info("Excelファイル生成完了: %d行", len(rows))
    return buffer.getvalue()


def report_file_name(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{today:%Y%m%d}領収書一括処理.xlsx"
