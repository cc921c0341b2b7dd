"""アップロード済み画像の一括処理（同時処理数の上限付き）とExcelレポート作成"""

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from . import config_loader
from .account_classifier import AccountClassifier
from .concurrency import run_bounded
from .errors import EmptyBatchError, NoReceiptsExtractedError
from .receipt_extractor import ReceiptExtractor
from .receipt_models import Number, ReceiptRecord, UploadedFile
from .report_builder import SHEET_NAME, ReportRow, build_report_rows, report_file_name, write_workbook
from .upload_store import UploadStore

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    receipts: List[ReceiptRecord]
    errors: List[Dict] = field(default_factory=list)
    rows: List[ReportRow] = field(default_factory=list)
    workbook: Optional[bytes] = None
    file_name: str = ""
    total_ms: float = 0.0
    average_ms: float = 0.0
    report_ms: float = 0.0
    concurrency: int = 0

    @property
    def success_count(self) -> int:
        return len(self.receipts)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def total_amount(self) -> Number:
        return sum(receipt.amount for receipt in self.receipts)

    def summary(self) -> Dict:
        return {
            "file_name": self.file_name,
            "processed_count": self.success_count,
            "error_count": self.error_count,
            "total_amount": self.total_amount,
            "errors": self.errors,
            "performance": {
                "total_time": f"{self.total_ms:.0f}ms",
                "average_time": f"{self.average_ms:.1f}ms/件",
                "excel_time": f"{self.report_ms:.0f}ms",
                "concurrent_processing": self.concurrency,
            },
        }


class BatchProcessor:
    """アップロード済み画像を並列に読み取り、Excelレポートを作成する"""

    def __init__(self, extractor: ReceiptExtractor, classifier: AccountClassifier,
                 max_concurrent: Optional[int] = None, sheet_name: str = SHEET_NAME):
        self.extractor = extractor
        self.classifier = classifier
        self.max_concurrent = max_concurrent or config_loader.get_max_concurrent()
        self.sheet_name = sheet_name

    async def _extract_one(self, file_id: str, uploaded: UploadedFile) -> ReceiptRecord:
        logger.info("[並列処理] OCR開始: %s - %s", file_id, uploaded.original_name)
        return await self.extractor.extract(uploaded.buffer, uploaded.mime_type)

    async def process(self, store: UploadStore, today: Optional[date] = None,
                      build_workbook: bool = True) -> BatchReport:
        """ストア内の全画像を処理する

        Raises:
            EmptyBatchError: ストアが空
            NoReceiptsExtractedError: 1件も読み取れなかった
        """
        files = store.snapshot()
        if not files:
            raise EmptyBatchError()

        logger.info("並列バッチ処理開始 - ファイル数: %d, 最大同時処理数: %d",
                    len(files), self.max_concurrent)
        started = time.perf_counter()
        outcomes = await run_bounded(files, self._extract_one, self.max_concurrent)
        total_ms = (time.perf_counter() - started) * 1000

        names = {file_id: uploaded.original_name for file_id, uploaded in files}
        receipts = []
        errors = []
        for outcome in outcomes:
            if outcome.success:
                receipts.append(outcome.value)
            else:
                errors.append({
                    "file_id": outcome.id,
                    "file_name": names.get(outcome.id, "unknown"),
                    "error": outcome.error,
                    "retryable": outcome.retryable,
                })

        average_ms = total_ms / len(outcomes)
        logger.info("並列処理結果: 成功 %d件, エラー %d件, %.0fms (平均 %.1fms/件)",
                    len(receipts), len(errors), total_ms, average_ms)

        if not receipts:
            raise NoReceiptsExtractedError(errors)

        report_started = time.perf_counter()
        rows = build_report_rows(receipts, self.classifier)
        workbook = write_workbook(rows, self.sheet_name) if build_workbook else None
        report_ms = (time.perf_counter() - report_started) * 1000

        return BatchReport(
            receipts=receipts,
            errors=errors,
            rows=rows,
            workbook=workbook,
            file_name=report_file_name(today),
            total_ms=total_ms,
            average_ms=average_ms,
            report_ms=report_ms,
            concurrency=self.max_concurrent,
        )
