"""
並列処理制御

AdmissionGate は同時実行数の上限を持つ入場ゲート。上限に達している間の acquire() は
FIFO の待ち行列に入り、release() で空いた枠は次の待機者へ直接引き渡される。
run_bounded() は全アイテムをゲート経由で実行し、成功・失敗を1件ずつ記録して返す。
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Iterable, List, Optional, Tuple, Union

from .errors import EmptyBatchError, ProviderError, ReceiptAgentError

logger = logging.getLogger(__name__)

# レート制限を考慮して2に制限
MAX_CONCURRENT = 2


class AdmissionGate:
    """同時実行数を limit 件に制限するゲート"""

    def __init__(self, limit: int = MAX_CONCURRENT):
        if limit < 1:
            raise ValueError(f"limit must be >= 1 (got {limit})")
        self.limit = limit
        self._in_flight = 0
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if self._in_flight < self.limit and not self._waiters:
            self._in_flight += 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # 枠を受け取った直後にキャンセルされたので次へ回す
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        if self._in_flight <= 0:
            raise RuntimeError("release() called more times than acquire()")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # 実行中件数は変えずに枠を引き渡す
                waiter.set_result(None)
                return
        self._in_flight -= 1

    async def __aenter__(self) -> "AdmissionGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


@dataclass
class ItemOutcome:
    id: str
    success: bool
    value: Any = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    retryable: bool = False
    elapsed_ms: float = 0.0
    exception: Optional[BaseException] = field(default=None, repr=False)

    @classmethod
    def failure(cls, item_id: str, error: Exception, elapsed_ms: float = 0.0) -> "ItemOutcome":
        if isinstance(error, ReceiptAgentError):
            message = error.user_message
            retryable = error.retryable
        else:
            message = str(error) or error.__class__.__name__
            retryable = False
        category = error.category if isinstance(error, ProviderError) else None
        return cls(id=item_id, success=False, error=message, error_category=category,
                   retryable=retryable, elapsed_ms=elapsed_ms, exception=error)


Worker = Callable[[str, Any], Union[Awaitable[Any], Any]]


async def run_bounded(items: Iterable[Tuple[str, Any]], worker: Worker,
                      limit: int = MAX_CONCURRENT) -> List[ItemOutcome]:
    """全アイテムを同時実行数 limit 以下で処理する

    1件の失敗は他に影響せず、入力と同じ順序・同じ件数の ItemOutcome を返す。

    Raises:
        EmptyBatchError: items が空
    """
    items = list(items)
    if not items:
        raise EmptyBatchError()

    gate = AdmissionGate(limit)

    async def _run(item_id: str, value: Any) -> ItemOutcome:
        async with gate:
            started = time.perf_counter()
            try:
                result = worker(item_id, value)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                elapsed = (time.perf_counter() - started) * 1000
                logger.error("[並列処理] エラー (%s): %s", item_id, e)
                return ItemOutcome.failure(item_id, e, elapsed)
            elapsed = (time.perf_counter() - started) * 1000
            logger.info("[並列処理] 完了: %s (%.0fms)", item_id, elapsed)
            return ItemOutcome(id=item_id, success=True, value=result, elapsed_ms=elapsed)

    logger.info("[並列処理] 開始: %d件 (最大同時処理数 %d)", len(items), limit)
    return list(await asyncio.gather(*(_run(item_id, value) for item_id, value in items)))
