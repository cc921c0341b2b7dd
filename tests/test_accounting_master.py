import json

import pytest

from receipt_agent.accounting_master import AccountMaster
from receipt_agent.errors import MasterDataError


@pytest.fixture
def master():
    return AccountMaster.load()


def _as_tuple(result):
    return (result.account_code, result.account_name, result.sub_account_code, result.sub_account_name)


def test_bundled_master_loads(master):
    assert len(master) > 20
    assert {a.section for a in master.iter_accounts()} == {"資産の部", "損益の部"}


def test_lookup_sub_account_match(master):
    assert _as_tuple(master.lookup("電気代 8月分")) == ("74340", "水道光熱費", "0002", "電気代")


def test_lookup_account_name_returns_first_sub_account(master):
    assert _as_tuple(master.lookup("会議費 お茶")) == ("74560", "会議費", "0001", "会議用茶菓代")


def test_lookup_account_without_sub_accounts(master):
    assert _as_tuple(master.lookup("仮払金")) == ("11610", "仮払金", "", "")


def test_code_falls_back_to_account_key(master):
    # 勘定科目コードが無い科目はキーの "_" より前をコードとする
    assert _as_tuple(master.lookup("新聞図書費")) == ("74570", "新聞図書費", "", "")


def test_lookup_is_case_insensitive(master):
    assert _as_tuple(master.lookup("WI-FI利用料 月額")) == ("74620", "通信費", "0003", "Wi-Fi利用料")


def test_first_match_in_master_order(master):
    # 携帯電話料 は先に並ぶ補助科目 電話料 に一致する
    assert _as_tuple(master.lookup("携帯電話料")) == ("74630", "支払電話料", "0001", "電話料")


def test_liabilities_are_not_searched(master):
    assert master.lookup("コピー用紙 A4") is None


def test_lookup_empty_text(master):
    assert master.lookup("") is None
    assert master.lookup(None) is None


def test_prompt_examples(master):
    examples = master.prompt_examples(limit=5)
    assert len(examples) == 5
    assert examples[0] == "本社小口現金 → 現金"


def test_missing_file_raises(tmp_path):
    with pytest.raises(MasterDataError):
        AccountMaster.load(str(tmp_path / "missing.json"))


def test_invalid_json_raises(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(MasterDataError):
        AccountMaster.load(str(path))


def test_wrong_shape_raises(tmp_path):
    path = tmp_path / "shape.json"
    path.write_text(json.dumps({"勘定科目_補助科目_統合システム": []}), encoding="utf-8")
    with pytest.raises(MasterDataError):
        AccountMaster.load(str(path))


def test_master_path_from_env(tmp_path, monkeypatch):
    data = {
        "勘定科目_補助科目_統合システム": {
            "損益の部": {"販管費": {"経費": {
                "99999_テスト費": {"勘定科目名": "テスト費", "補助科目": [{"code": "0001", "name": "検証用"}]},
            }}},
        }
    }
    path = tmp_path / "master.json"
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    monkeypatch.setenv("ACCOUNTING_MASTER_PATH", str(path))

    master = AccountMaster.load()
    assert len(master) == 1
    assert _as_tuple(master.lookup("検証用サンプル")) == ("99999", "テスト費", "0001", "検証用")


def test_asset_section_is_searched_first_whatever_the_file_order(tmp_path):
    data = {
        "勘定科目_補助科目_統合システム": {
            "損益の部": {"販管費": {"経費": {
                "74610_消耗品費": {"勘定科目名": "消耗品費", "補助科目": [{"code": "0002", "name": "パソコン"}]},
            }}},
            "資産の部": {"固定資産": {"有形固定資産": {
                "12150_工具器具備品": {"勘定科目名": "工具器具備品", "補助科目": [{"code": "0001", "name": "パソコン"}]},
            }}},
        }
    }
    path = tmp_path / "reversed.json"
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")

    master = AccountMaster.load(str(path))
    assert _as_tuple(master.lookup("ノートパソコン")) == ("12150", "工具器具備品", "0001", "パソコン")
    assert master.prompt_examples() == ["パソコン → 工具器具備品", "パソコン → 消耗品費"]
