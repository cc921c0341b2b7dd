import asyncio
import logging
from datetime import date

import pytest

from receipt_agent.account_classifier import AccountClassifier
from receipt_agent.batch_processor import BatchProcessor
from receipt_agent.errors import (EmptyBatchError, ErrorCategory, ExtractionError,
                                  NoReceiptsExtractedError, ProviderError, ProviderUnavailableError)
from receipt_agent.receipt_extractor import ReceiptExtractor
from receipt_agent.upload_store import UploadStore


def _store(*buffers):
    store = UploadStore()
    for i, buffer in enumerate(buffers):
        store.add(buffer, f"receipt{i}.jpg", "image/jpeg")
    return store


def test_batch_collects_successes_and_failures(fake_provider):
    provider = fake_provider(responses={
        b"ok-1": {"payee": "A商店", "date": "2024/05/01", "amount": 1100, "tax": 100,
                  "items": [{"name": "ボールペン", "amount": 1000, "category": "消耗品費"}]},
        b"limited": ProviderError("利用制限に達しました", category=ErrorCategory.RATE_LIMIT, provider="Fake"),
        b"ok-2": {"payee": "B商店", "date": "2024/05/02", "amount": 500, "items": []},
    })
    processor = BatchProcessor(ReceiptExtractor(provider, prompt="prompt"), AccountClassifier(), max_concurrent=2)

    report = asyncio.run(processor.process(_store(b"ok-1", b"limited", b"ok-2"), today=date(2024, 5, 3)))

    assert report.success_count == 2
    assert report.error_count == 1
    assert [r.payee for r in report.receipts] == ["A商店", "B商店"]
    assert report.errors[0]["file_name"] == "receipt1.jpg"
    assert report.errors[0]["error"] == "利用制限に達しました"
    assert report.errors[0]["retryable"] is True
    assert report.total_amount == 1600
    assert report.file_name == "20240503領収書一括処理.xlsx"
    assert report.workbook.startswith(b"PK")
    assert report.rows[-1].amount == 1600
    assert report.concurrency == 2
    assert report.summary()["processed_count"] == 2
    assert len(provider.calls) == 3


def test_batch_without_workbook(fake_provider):
    processor = BatchProcessor(ReceiptExtractor(fake_provider(), prompt="p"), AccountClassifier(), max_concurrent=1)
    report = asyncio.run(processor.process(_store(b"1"), build_workbook=False))
    assert report.workbook is None
    assert report.rows


def test_empty_store(fake_provider):
    processor = BatchProcessor(ReceiptExtractor(fake_provider(), prompt="p"), AccountClassifier(), max_concurrent=2)
    with pytest.raises(EmptyBatchError):
        asyncio.run(processor.process(UploadStore()))


def test_all_failures(fake_provider):
    provider = fake_provider(responses={
        b"a": ExtractionError("読み取れません", kind="refusal"),
        b"b": ExtractionError("読み取れません", kind="malformed"),
    })
    processor = BatchProcessor(ReceiptExtractor(provider, prompt="p"), AccountClassifier(), max_concurrent=2)

    with pytest.raises(NoReceiptsExtractedError) as exc:
        asyncio.run(processor.process(_store(b"a", b"b")))
    assert len(exc.value.errors) == 2
    assert all(not error["retryable"] for error in exc.value.errors)


def test_max_concurrent_from_config(monkeypatch, fake_provider):
    monkeypatch.setenv("LLM_MAX_CONCURRENT", "3")
    processor = BatchProcessor(ReceiptExtractor(fake_provider(), prompt="p"), AccountClassifier())
    assert processor.max_concurrent == 3


def test_extract_logs_data_warnings(fake_provider, caplog):
    provider = fake_provider(responses={b"x": {"amount": 1100, "tax": 30, "reduced_tax": 50}})
    extractor = ReceiptExtractor(provider, prompt="p")

    with caplog.at_level(logging.WARNING, logger="receipt_agent.receipt_extractor"):
        record = asyncio.run(extractor.extract(b"x"))

    assert record.reduced_tax == 50
    assert "軽減税率分" in caplog.text


def test_default_prompt_includes_master_examples(fake_provider):
    from receipt_agent.accounting_master import AccountMaster
    from receipt_agent.config_loader import DEFAULT_MASTER_PATH

    extractor = ReceiptExtractor(fake_provider(), master=AccountMaster.load(DEFAULT_MASTER_PATH))
    assert "本社小口現金 → 現金" in extractor.prompt
    assert "飲食費／交通費" in extractor.prompt


def test_switch_provider_when_healthy(fake_provider):
    current = fake_provider("Current")
    extractor = ReceiptExtractor(current, prompt="p",
                                 provider_factory=lambda name: fake_provider(name, healthy=True))

    switched = asyncio.run(extractor.switch_provider("Next"))
    assert extractor.provider is switched
    assert extractor.provider_info()["provider"] == "Next"


def test_switch_provider_keeps_current_when_unhealthy(fake_provider):
    current = fake_provider("Current")
    extractor = ReceiptExtractor(current, prompt="p",
                                 provider_factory=lambda name: fake_provider(name, healthy=False))

    with pytest.raises(ProviderUnavailableError):
        asyncio.run(extractor.switch_provider("Next"))
    assert extractor.provider is current


def test_in_flight_call_keeps_its_provider(fake_provider):
    """切り替え前に開始した読み取りは元のプロバイダーで完了する"""
    async def scenario():
        gate = asyncio.Event()
        old = fake_provider("Old", gate=gate)
        new = fake_provider("New")
        extractor = ReceiptExtractor(old, prompt="p", provider_factory=lambda name: new)

        task = asyncio.create_task(extractor.extract(b"img"))
        await asyncio.sleep(0)
        await extractor.switch_provider("new")
        gate.set()
        await task
        await extractor.extract(b"img")
        return old, new

    old, new = asyncio.run(scenario())
    assert old.calls == [b"img"]
    assert new.calls == [b"img"]
