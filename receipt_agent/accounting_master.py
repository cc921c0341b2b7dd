"""
会計マスタ（勘定科目・補助科目）の読み込みとキーワード検索

マスタJSONの構造:
    勘定科目_補助科目_統合システム
      └ 部（資産の部 / 負債の部 / 損益の部 ...）
          └ 区分 └ 科目グループ └ "<コード>_<科目名>": {勘定科目コード, 勘定科目名, 補助科目: [{code, name}]}

検索対象は資産の部と損益の部のみ。部は資産の部→損益の部の固定順、
部の中は JSON の記載順で走査し、最初に一致した科目を返す（スコアリングや曖昧一致は行わない）。
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .config_loader import get_master_path
from .errors import MasterDataError
from .receipt_models import ClassificationResult

logger = logging.getLogger(__name__)

ROOT_KEY = "勘定科目_補助科目_統合システム"
SEARCH_SECTIONS = ("資産の部", "損益の部")


@dataclass(frozen=True)
class SubAccount:
    code: str
    name: str


@dataclass(frozen=True)
class Account:
    key: str
    code: str
    name: str
    sub_accounts: Tuple[SubAccount, ...]
    section: str
    group: str
    main: str

    def result(self, sub: Optional[SubAccount] = None) -> ClassificationResult:
        return ClassificationResult(
            account_code=self.code,
            account_name=self.name,
            sub_account_code=sub.code if sub else "",
            sub_account_name=sub.name if sub else "",
        )


def _require_mapping(value, where: str) -> dict:
    if not isinstance(value, dict):
        raise MasterDataError(f"会計マスタの形式が不正です: {where} がオブジェクトではありません")
    return value


def _parse_account(key: str, raw, section: str, group: str, main: str) -> Account:
    raw = _require_mapping(raw, f"{section}/{group}/{main}/{key}")
    subs = []
    for i, sub in enumerate(raw.get("補助科目") or []):
        if not isinstance(sub, dict) or not isinstance(sub.get("name"), str):
            raise MasterDataError(f"会計マスタの形式が不正です: {key} の補助科目[{i}]")
        subs.append(SubAccount(code=str(sub.get("code", "")), name=sub["name"]))
    return Account(
        key=key,
        code=str(raw.get("勘定科目コード") or key.split("_")[0]),
        name=str(raw.get("勘定科目名") or ""),
        sub_accounts=tuple(subs),
        section=section,
        group=group,
        main=main,
    )


class AccountMaster:
    """読み込み後は変更しない会計マスタ"""

    def __init__(self, data: dict):
        root = _require_mapping(_require_mapping(data, "root").get(ROOT_KEY), ROOT_KEY)
        accounts: List[Account] = []
        for section_key, section in root.items():
            for group_key, group in _require_mapping(section, section_key).items():
                for main_key, main in _require_mapping(group, group_key).items():
                    for account_key, raw in _require_mapping(main, main_key).items():
                        accounts.append(_parse_account(account_key, raw, section_key, group_key, main_key))
        self._accounts = tuple(accounts)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "AccountMaster":
        path = path or get_master_path()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise MasterDataError(f"会計マスタファイルが見つかりません: {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise MasterDataError(f"会計マスタファイルを読み込めません: {path} ({e})") from e

        master = cls(data)
        logger.info("会計マスタ読み込み完了: %s (%d科目)", path, len(master))
        return master

    def __len__(self) -> int:
        return len(self._accounts)

    def iter_accounts(self, sections: Tuple[str, ...] = SEARCH_SECTIONS) -> Iterator[Account]:
        for section in sections:
            for account in self._accounts:
                if account.section == section:
                    yield account

    def lookup(self, description: str) -> Optional[ClassificationResult]:
        """品目名に科目名→補助科目名の順で部分一致する最初の科目を返す。なければ None"""
        text = (description or "").lower()
        if not text:
            return None

        for account in self.iter_accounts():
            if account.name and account.name.lower() in text:
                # 補助科目があれば最初を返す
                return account.result(account.sub_accounts[0] if account.sub_accounts else None)
            for sub in account.sub_accounts:
                if sub.name and sub.name.lower() in text:
                    return account.result(sub)
        return None

    def prompt_examples(self, limit: int = 20, per_account: int = 3) -> List[str]:
        """プロンプト用の「補助科目 → 科目」例"""
        examples = []
        for account in self.iter_accounts():
            for sub in account.sub_accounts[:per_account]:
                examples.append(f"{sub.name} → {account.name}")
        return examples[:limit]
