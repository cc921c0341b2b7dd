"""
アップロード画像のメモリ内ストア

バッチ処理の入力となる画像をID付きで保持する。グローバルには置かず、
呼び出し側で生成して BatchProcessor などに渡す。
"""

import logging
import random
import string
import time
from typing import Dict, List, Optional, Tuple

from .errors import UnsupportedFileError
from .receipt_models import UploadedFile

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _new_file_id() -> str:
    """<エポックミリ秒>-<base36 9文字> 形式のID"""
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def repair_file_name(name: str) -> str:
    """latin1 として誤デコードされた UTF-8 のファイル名を復元する"""
    try:
        return name.encode("latin1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        # 既に正しくデコードされている
        return name


class UploadStore:
    def __init__(self):
        self._files: Dict[str, UploadedFile] = {}

    def add(self, buffer: bytes, original_name: str, mime_type: str) -> UploadedFile:
        """画像を追加して UploadedFile を返す

        Raises:
            UnsupportedFileError: image/* 以外の MIME タイプ
        """
        if not mime_type or not mime_type.startswith("image/"):
            raise UnsupportedFileError(mime_type)

        file_id = _new_file_id()
        while file_id in self._files:
            file_id = _new_file_id()

        name = repair_file_name(original_name)
        uploaded = UploadedFile(id=file_id, original_name=name, mime_type=mime_type,
                                size_bytes=len(buffer), buffer=bytes(buffer))
        self._files[file_id] = uploaded
        logger.info("ファイル保存完了: %s - %s (%d bytes) 現在のファイル数: %d",
                    file_id, name, uploaded.size_bytes, len(self._files))
        return uploaded

    def get(self, file_id: str) -> Optional[UploadedFile]:
        return self._files.get(file_id)

    def remove(self, file_id: str) -> bool:
        """削除できれば True、存在しなければ False"""
        return self._files.pop(file_id, None) is not None

    def clear(self) -> int:
        count = len(self._files)
        self._files.clear()
        return count

    def list_files(self) -> List[Dict]:
        return [
            {"id": f.id, "name": f.original_name, "size": f.size_bytes, "date": f.uploaded_at}
            for f in self._files.values()
        ]

    def snapshot(self) -> List[Tuple[str, UploadedFile]]:
        """現時点の (ID, ファイル) の一覧（以後の追加・削除の影響を受けない）"""
        return list(self._files.items())

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, file_id: str) -> bool:
        return file_id in self._files
