import json
import os

from openpyxl import load_workbook

from receipt_agent import cli, llm_factory
from receipt_agent.errors import ExtractionError
from receipt_agent.receipt_extractor import ReceiptExtractor


def test_classify_command(capsys):
    assert cli.main(["classify", "絵本", "謎の品物"]) == 0
    out = capsys.readouterr().out
    assert "72640 原価消耗品費 / 0013 保育材料費" in out
    assert "74610 消耗品費 / 0001 事務用消耗品代" in out
    assert "デフォルト" in out


def test_process_missing_folder(tmp_path, capsys):
    assert cli.main(["process", str(tmp_path / "missing")]) == 1
    assert "フォルダが見つかりません" in capsys.readouterr().out


def test_process_folder_without_images(tmp_path, capsys):
    (tmp_path / "memo.txt").write_text("not an image", encoding="utf-8")
    assert cli.main(["process", str(tmp_path)]) == 1
    assert "処理対象の画像がありません" in capsys.readouterr().out


def test_process_without_api_key(tmp_path, capsys):
    (tmp_path / "a.jpg").write_bytes(b"jpg")
    assert cli.main(["process", str(tmp_path)]) == 1
    assert "初期化エラー" in capsys.readouterr().out


def test_find_images_filters_and_sorts(tmp_path):
    for name in ["b.PNG", "a.jpg", "c.webp", "notes.txt"]:
        (tmp_path / name).write_bytes(b"x")
    names = [os.path.basename(p) for p in cli.find_images(str(tmp_path))]
    assert names == ["a.jpg", "b.PNG", "c.webp"]


def test_process_writes_workbook(tmp_path, monkeypatch, capsys, fake_provider):
    images = tmp_path / "images"
    images.mkdir()
    (images / "1.jpg").write_bytes(b"ok")
    (images / "2.png").write_bytes(b"broken")
    provider = fake_provider(responses={
        b"ok": {"payee": "テスト商店", "date": "2024/05/01", "amount": 1100,
                "items": [{"name": "切手", "amount": 1100, "category": "通信費"}]},
        b"broken": ExtractionError("画像から情報を抽出できませんでした", kind="malformed"),
    })
    monkeypatch.setattr(cli.ReceiptExtractor, "from_config",
                        lambda provider_name=None, master=None: ReceiptExtractor(provider, master=master))
    output = tmp_path / "out.xlsx"

    assert cli.main(["process", str(images), "-o", str(output), "--concurrency", "1"]) == 0

    out = capsys.readouterr().out
    assert "1件成功 / 1件エラー" in out
    assert "2.png: 画像から情報を抽出できませんでした" in out
    ws = load_workbook(output)["領収書"]
    assert ws["G2"].value == "テスト商店"
    assert ws["C2"].value == "74620"


def test_process_all_failed(tmp_path, monkeypatch, capsys, fake_provider):
    (tmp_path / "1.jpg").write_bytes(b"bad")
    provider = fake_provider(responses={b"bad": ExtractionError("読み取れません", kind="refusal")})
    monkeypatch.setattr(cli.ReceiptExtractor, "from_config",
                        lambda provider_name=None, master=None: ReceiptExtractor(provider, prompt="p"))

    assert cli.main(["process", str(tmp_path)]) == 1
    out = capsys.readouterr().out
    assert "処理可能な領収書が見つかりませんでした" in out
    assert "1.jpg: 読み取れません" in out


def test_invalid_concurrency(tmp_path, capsys):
    assert cli.main(["process", str(tmp_path), "--concurrency", "0"]) == 1


def test_providers_command(monkeypatch, capsys):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret-value")
    assert cli.main(["providers"]) == 0
    out = capsys.readouterr().out
    info = json.loads(out)
    assert info["current_provider"] == "openai"
    assert info["providers"]["openai"]["available"] is True
    assert "sk-secret-value" not in out


def test_health_command(monkeypatch, capsys):
    async def fake_health_check(provider=None):
        return {"provider": "OpenAI", "healthy": True, "timestamp": "2024-05-01T00:00:00"}

    monkeypatch.setattr(llm_factory, "health_check", fake_health_check)
    assert cli.main(["health", "--provider", "openai"]) == 0
    assert "✅ OpenAI" in capsys.readouterr().out


def test_health_command_without_providers(capsys):
    assert cli.main(["health"]) == 1
    assert "利用可能なプロバイダーがありません" in capsys.readouterr().out
