"""
領収書自動入力エージェント コマンドライン

  receipt-agent process <フォルダ> [-o 出力.xlsx] [--provider NAME] [--concurrency N]
  receipt-agent classify <品目名>...
  receipt-agent providers
  receipt-agent health [--provider NAME]
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

from . import config_loader, llm_factory
from .account_classifier import AccountClassifier, explain_rule
from .accounting_master import AccountMaster
from .batch_processor import BatchProcessor
from .errors import (ConfigurationError, EmptyBatchError, MasterDataError,
                     NoReceiptsExtractedError, ReceiptAgentError)
from .receipt_extractor import ReceiptExtractor
from .upload_store import UploadStore

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}


def find_images(folder: str) -> List[str]:
    """フォルダ直下の画像ファイル（ファイル名順）"""
    paths = []
    for name in sorted(os.listdir(folder)):
        path = os.path.join(folder, name)
        if os.path.isfile(path) and os.path.splitext(name)[1].lower() in IMAGE_MIME_TYPES:
            paths.append(path)
    return paths


def load_store(paths: List[str]) -> UploadStore:
    store = UploadStore()
    for path in paths:
        with open(path, "rb") as f:
            store.add(f.read(), os.path.basename(path), IMAGE_MIME_TYPES[os.path.splitext(path)[1].lower()])
    return store


def cmd_process(args) -> int:
    if not os.path.isdir(args.folder):
        print(f"❌ フォルダが見つかりません: {args.folder}")
        return 1

    paths = find_images(args.folder)
    print(f"📁 画像ファイル: {len(paths)}件 ({args.folder})")
    if not paths:
        print("❌ 処理対象の画像がありません")
        return 1

    try:
        master = AccountMaster.load()
        extractor = ReceiptExtractor.from_config(args.provider, master=master)
        processor = BatchProcessor(extractor, AccountClassifier(master), max_concurrent=args.concurrency,
                                   sheet_name=config_loader.get_report_sheet_name())
    except (ConfigurationError, MasterDataError) as e:
        print(f"❌ 初期化エラー: {e.user_message}")
        return 1

    info = extractor.provider_info()
    print(f"🤖 プロバイダー: {info['provider']} ({info['model']}) / 最大同時処理数: {processor.max_concurrent}")
    print(f"🚀 処理開始: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    try:
        report = asyncio.run(processor.process(load_store(paths)))
    except NoReceiptsExtractedError as e:
        print(f"❌ {e.user_message}")
        for error in e.errors:
            print(f"   - {error['file_name']}: {error['error']}")
        return 1
    except EmptyBatchError as e:
        print(f"❌ {e.user_message}")
        return 1

    output = args.output or os.path.join(os.getcwd(), report.file_name)
    with open(output, "wb") as f:
        f.write(report.workbook)

    print(f"✅ 処理完了: {report.success_count}件成功 / {report.error_count}件エラー")
    print(f"💰 合計金額: ¥{report.total_amount:,}")
    print(f"⏱️ 処理時間: {report.total_ms:.0f}ms (平均 {report.average_ms:.1f}ms/件, Excel {report.report_ms:.0f}ms)")
    for error in report.errors:
        retry = " (再試行可)" if error["retryable"] else ""
        print(f"⚠️ {error['file_name']}: {error['error']}{retry}")
    print(f"📊 出力ファイル: {output}")
    return 0


def cmd_classify(args) -> int:
    try:
        master = AccountMaster.load()
    except MasterDataError as e:
        print(f"⚠️ 会計マスタを使用せずに判定します: {e}")
        master = None

    classifier = AccountClassifier(master)
    for text in args.texts:
        result, rule = classifier.classify_with_source(text)
        print(f"{text}: {result.account_code} {result.account_name} / "
              f"{result.sub_account_code} {result.sub_account_name}")
        print(f"   └ {explain_rule(rule)}")
    return 0


def cmd_providers(args) -> int:
    try:
        info = config_loader.get_config_info()
    except ReceiptAgentError as e:
        print(f"❌ 設定エラー: {e.user_message}")
        return 1
    info["providers"] = llm_factory.get_all_provider_info()
    print(json.dumps(info, ensure_ascii=False, indent=2))
    return 0


def cmd_health(args) -> int:
    result = asyncio.run(llm_factory.health_check(args.provider))
    checks = [result] if args.provider else list(result.values())
    if not checks:
        print("❌ 利用可能なプロバイダーがありません")
        return 1

    for check in checks:
        mark = "✅" if check["healthy"] else "❌"
        detail = f" ({check['error']})" if check.get("error") else ""
        print(f"{mark} {check['provider']}{detail}")
    return 0 if all(check["healthy"] for check in checks) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="receipt-agent", description="領収書画像を読み取り会計用Excelを作成します")
    parser.add_argument("-v", "--verbose", action="store_true", help="詳細ログを表示")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="フォルダ内の領収書画像を一括処理")
    p.add_argument("folder", help="画像フォルダ")
    p.add_argument("-o", "--output", help="出力するxlsxファイルのパス")
    p.add_argument("--provider", help="使用するLLMプロバイダー (openai / gemini / claude)")
    p.add_argument("--concurrency", type=int, help="最大同時処理数")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("classify", help="品目名から勘定科目を判定")
    p.add_argument("texts", nargs="+", help="品目名")
    p.set_defaults(func=cmd_classify)

    p = sub.add_parser("providers", help="プロバイダー設定を表示")
    p.set_defaults(func=cmd_providers)

    p = sub.add_parser("health", help="プロバイダーのヘルスチェック")
    p.add_argument("--provider", help="対象プロバイダー（省略時は利用可能な全て）")
    p.set_defaults(func=cmd_health)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if getattr(args, "concurrency", None) is not None and args.concurrency < 1:
        print("❌ --concurrency は1以上を指定してください")
        return 1
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
