"""
副作用キュー
主処理の完了後に通知作成・イベント発行をバックグラウンドで実行する
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Set, Tuple

from .logger import ProjectLogger, LogCategory


class DeferredActions:
    """
    1操作分の後続処理リスト

    通知は add_notification()、イベントは add_event() で登録し、
    実行時は通知→イベントの順に処理する。
    """

    def __init__(self, operation: str):
        self.operation = operation
        self._notifications: List[Tuple[str, Callable[[], object]]] = []
        self._events: List[Tuple[str, Callable[[], object]]] = []

    def add_notification(self, label: str, action: Callable[[], object]) -> None:
        self._notifications.append((label, action))

    def add_event(self, label: str, action: Callable[[], object]) -> None:
        self._events.append((label, action))

    @property
    def actions(self) -> List[Tuple[str, Callable[[], object]]]:
        return self._notifications + self._events

    def __len__(self) -> int:
        return len(self._notifications) + len(self._events)


class SideEffectQueue:
    """
    後続処理の実行キュー

    1操作につき1ジョブとして ThreadPoolExecutor に投入する。ジョブ内の各処理は
    失敗してもログに記録して次へ進み、呼び出し側には伝播しない。
    """

    def __init__(self, logger: ProjectLogger, max_workers: int = 1):
        """
        Args:
            logger: ログ管理
            max_workers: ワーカースレッド数（1 の場合は投入順に実行）
        """
        self.logger = logger
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='side-effects')
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()
        self._closed = False
        self.stats = {'submitted': 0, 'succeeded': 0, 'failed': 0}

    def submit(self, deferred: DeferredActions) -> Optional[Future]:
        """
        後続処理を投入（待機しない）

        Returns:
            ジョブのFuture（処理が空、または停止済みの場合はNone）
        """
        if not len(deferred):
            return None

        with self._lock:
            if self._closed:
                self.logger.warning(
                    LogCategory.SYSTEM,
                    f"副作用キューは停止済みのため破棄します: {deferred.operation}",
                    module=__name__
                )
                return None
            future = self._executor.submit(self._run, deferred)
            self._pending.add(future)
            self.stats['submitted'] += 1

        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _run(self, deferred: DeferredActions) -> None:
        for label, action in deferred.actions:
            try:
                action()
                self.stats['succeeded'] += 1
            except Exception as e:
                self.stats['failed'] += 1
                self.logger.error(
                    LogCategory.ERROR,
                    f"後続処理に失敗しました: {deferred.operation} / {label}",
                    module=__name__,
                    exception=e
                )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        投入済みのジョブの完了を待機

        Returns:
            全て完了した場合 True
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """新規投入を止め、残りのジョブを処理してから停止"""
        with self._lock:
            self._closed = True
        self.flush(timeout)
        self._executor.shutdown(wait=True)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
