"""
イベントバス
トピック・パーティション・コンシューマーグループを持つ発行／購読インターフェースと
プロセス内実装
"""

import queue
import threading
import time
import zlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from ..core.logger import ProjectLogger, LogCategory


class BusUnavailableError(Exception):
    """バスに接続されていない状態での送信"""
    pass


@dataclass
class BusMessage:
    """バス上のメッセージ"""

    topic: str
    partition: int
    offset: int
    key: str
    value: bytes
    timestamp: datetime = field(default_factory=datetime.now)


MessageHandler = Callable[[BusMessage], None]


class EventBus(Protocol):
    """イベントバスのインターフェース"""

    @property
    def is_connected(self) -> bool: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def publish(self, topic: str, key: str, value: bytes) -> BusMessage: ...

    def subscribe(self, topic: str, group_id: str, handler: MessageHandler) -> None: ...


class _Subscription:
    """(トピック, グループ) ごとの購読とパーティション別の配信キュー"""

    def __init__(self, topic: str, group_id: str, handler: MessageHandler, partitions: int):
        self.topic = topic
        self.group_id = group_id
        self.handler = handler
        self.queues: List[queue.Queue] = [queue.Queue() for _ in range(partitions)]
        self.threads: List[threading.Thread] = []

    @property
    def backlog(self) -> int:
        return sum(q.unfinished_tasks for q in self.queues)


class InMemoryEventBus:
    """
    プロセス内イベントバス

    メッセージキーのハッシュでパーティションを決め、同一キーのメッセージは
    同じパーティションで順序を保って配信される。配信は購読×パーティションごとの
    スレッドで行い、ハンドラーの例外はログに記録して次のメッセージへ進む。
    購読前に送信されたメッセージはそのグループには配信しない。
    """

    POLL_INTERVAL = 0.05

    def __init__(self, partitions: int = 3, logger: Optional[ProjectLogger] = None,
                 client_id: str = "taskpro"):
        """
        Args:
            partitions: トピックあたりのパーティション数
            logger: ログ管理
            client_id: クライアント識別子（ログ用）
        """
        if partitions < 1:
            raise ValueError("partitions は1以上である必要があります")

        self.partitions = partitions
        self.logger = logger or ProjectLogger()
        self.client_id = client_id

        self._subscriptions: Dict[Tuple[str, str], _Subscription] = {}
        self._offsets: Dict[Tuple[str, int], int] = {}
        self._lock = threading.RLock()
        self._connected = False
        self.stop_event = threading.Event()

        self.stats = {'published': 0, 'delivered': 0, 'handler_errors': 0}

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        """接続して購読済みの配信スレッドを開始"""
        with self._lock:
            if self._connected:
                return
            self._connected = True
            self.stop_event.clear()
            for subscription in self._subscriptions.values():
                self._start_threads(subscription)

        self.logger.info(
            LogCategory.EVENT,
            "イベントバス接続",
            module=__name__,
            client_id=self.client_id,
            partitions=self.partitions
        )

    def disconnect(self, timeout: float = 5.0) -> None:
        """配信スレッドを停止して切断（未配信のメッセージは保持）"""
        with self._lock:
            if not self._connected:
                return
            self._connected = False
            self.stop_event.set()
            threads = [t for s in self._subscriptions.values() for t in s.threads]
            for subscription in self._subscriptions.values():
                subscription.threads = []

        for thread in threads:
            if thread.is_alive():
                thread.join(timeout=timeout)

        self.logger.info(LogCategory.EVENT, "イベントバス切断", module=__name__, client_id=self.client_id)

    def partition_for(self, key: str) -> int:
        """キーからパーティション番号を算出"""
        return zlib.crc32((key or '').encode('utf-8')) % self.partitions

    def publish(self, topic: str, key: str, value: bytes) -> BusMessage:
        """
        メッセージを送信

        Raises:
            BusUnavailableError: 接続されていない場合
        """
        with self._lock:
            if not self._connected:
                raise BusUnavailableError("イベントバスに接続されていません")

            partition = self.partition_for(key)
            offset = self._offsets.get((topic, partition), 0)
            self._offsets[(topic, partition)] = offset + 1
            message = BusMessage(topic, partition, offset, key, value)

            for subscription in self._subscriptions.values():
                if subscription.topic == topic:
                    subscription.queues[partition].put(message)

            self.stats['published'] += 1
        return message

    def subscribe(self, topic: str, group_id: str, handler: MessageHandler) -> None:
        """
        トピックをグループとして購読

        Raises:
            ValueError: 同じグループで既に購読している場合
        """
        with self._lock:
            if (topic, group_id) in self._subscriptions:
                raise ValueError(f"既に購読しています: {topic} / {group_id}")
            subscription = _Subscription(topic, group_id, handler, self.partitions)
            self._subscriptions[(topic, group_id)] = subscription
            if self._connected:
                self._start_threads(subscription)

        self.logger.info(
            LogCategory.EVENT,
            f"トピック購読: {topic}",
            module=__name__,
            group_id=group_id
        )

    def unsubscribe(self, topic: str, group_id: str) -> bool:
        """購読を解除（配信中のスレッドは停止を待たずに切り離す）"""
        with self._lock:
            subscription = self._subscriptions.pop((topic, group_id), None)
        if subscription is None:
            return False
        for q in subscription.queues:
            q.put(None)
        return True

    def _start_threads(self, subscription: _Subscription) -> None:
        subscription.threads = []
        for partition in range(self.partitions):
            thread = threading.Thread(
                target=self._delivery_loop,
                args=(subscription, partition, self.stop_event),
                name=f"EventBus-{subscription.group_id}-{subscription.topic}-{partition}",
                daemon=True
            )
            subscription.threads.append(thread)
            thread.start()

    def _delivery_loop(self, subscription: _Subscription, partition: int, stop_event: threading.Event) -> None:
        """パーティション単位の配信ループ"""
        partition_queue = subscription.queues[partition]

        while not stop_event.is_set():
            try:
                message = partition_queue.get(timeout=self.POLL_INTERVAL)
            except queue.Empty:
                continue

            if message is None:
                partition_queue.task_done()
                break

            try:
                subscription.handler(message)
                self.stats['delivered'] += 1
            except Exception as e:
                self.stats['handler_errors'] += 1
                self.logger.error(
                    LogCategory.EVENT,
                    f"メッセージ処理エラー: {subscription.topic}",
                    module=__name__,
                    exception=e,
                    group_id=subscription.group_id,
                    partition=partition,
                    offset=message.offset
                )
            finally:
                partition_queue.task_done()

    def backlog(self) -> int:
        """未処理メッセージ数"""
        with self._lock:
            return sum(s.backlog for s in self._subscriptions.values())

    def wait_idle(self, timeout: float = 5.0) -> bool:
        """
        全ての購読で未処理メッセージがなくなるまで待機

        Returns:
            期限内に処理し終えた場合 True
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.backlog() == 0:
                return True
            time.sleep(0.01)
        return self.backlog() == 0

    def __str__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"InMemoryEventBus({state}, subscriptions={len(self._subscriptions)})"
