"""
通知イベントコンシューマー
task-events を購読し、イベントから通知を作成する（任意機能・既定で無効）

通知は各操作から直接も作成されるため、有効にすると同じ出来事に対して
通知が重複しうる。ステータス変更・サブタスク追加のイベントは宛先が
操作者本人しか分からないため、通知を作らずに無視する。
"""

from typing import Any, Callable, Dict

from ..core.event_publisher import EventTopic, EventType, decode_event
from ..core.logger import ProjectLogger, LogCategory
from ..core.notification_manager import NotificationDispatcher
from ..models import NotificationType
from .bus import BusMessage, EventBus

DEFAULT_GROUP_ID = "notification-service"


class NotificationEventConsumer:
    """task-events から通知を作成するコンシューマー"""

    def __init__(self,
                 bus: EventBus,
                 dispatcher: NotificationDispatcher,
                 logger: ProjectLogger,
                 topic: str = EventTopic.TASK_EVENTS,
                 group_id: str = DEFAULT_GROUP_ID):
        self.bus = bus
        self.dispatcher = dispatcher
        self.logger = logger
        self.topic = topic
        self.group_id = group_id
        self.is_running = False

        self._handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            EventType.TASK_ASSIGNED: self._on_task_assigned,
            EventType.DEADLINE_APPROACHING: self._on_deadline_approaching,
        }
        # 操作者本人にしか宛先を決められない種別
        self._ignored_types = frozenset({EventType.TASK_STATUS_CHANGED, EventType.SUBTASK_ADDED})
        self.stats = {'received': 0, 'handled': 0, 'ignored': 0, 'unknown': 0, 'errors': 0}

    def start(self) -> bool:
        """
        購読を開始

        Returns:
            開始した場合 True（実行中の場合 False）
        """
        if self.is_running:
            self.logger.warning(LogCategory.EVENT, "コンシューマーは既に実行中です", module=__name__)
            return False

        self.bus.subscribe(self.topic, self.group_id, self.handle_message)
        self.is_running = True
        self.logger.info(
            LogCategory.EVENT,
            f"通知コンシューマー開始: {self.topic}",
            module=__name__,
            group_id=self.group_id
        )
        return True

    def stop(self) -> bool:
        """購読を解除"""
        if not self.is_running:
            return False

        unsubscribe = getattr(self.bus, 'unsubscribe', None)
        if unsubscribe is not None:
            unsubscribe(self.topic, self.group_id)
        self.is_running = False
        self.logger.info(LogCategory.EVENT, "通知コンシューマー停止", module=__name__)
        return True

    def handle_message(self, message: BusMessage) -> None:
        """1件のメッセージを処理（例外はログに記録して次へ進む）"""
        self.stats['received'] += 1
        try:
            event = decode_event(message.value)
            if event['type'] in self._ignored_types:
                self.stats['ignored'] += 1
                self.logger.debug(LogCategory.EVENT, f"通知対象外のイベント: {event['type']}", module=__name__)
                return

            handler = self._handlers.get(event['type'])
            if handler is None:
                self.stats['unknown'] += 1
                self.logger.warning(
                    LogCategory.EVENT,
                    f"不明なイベント種別です: {event['type']}",
                    module=__name__
                )
                return

            self.logger.debug(LogCategory.EVENT, f"イベント受信: {event['type']}", module=__name__)
            handler(event['data'])
            self.stats['handled'] += 1
        except Exception as e:
            self.stats['errors'] += 1
            self.logger.error(
                LogCategory.EVENT,
                "イベント処理エラー",
                module=__name__,
                exception=e,
                topic=message.topic,
                offset=message.offset
            )

    def _on_task_assigned(self, data: Dict[str, Any]) -> None:
        self.dispatcher.notify(
            NotificationType.TASK_ASSIGNED,
            data.get('assigneeId'),
            "New Task Assigned",
            f'You have been assigned to task: "{data.get("taskTitle")}" by {data.get("assignerName")}',
            {'taskId': data.get('taskId'), 'assignerId': data.get('assignerId')},
            actor_id=data.get('assignerId')
        )

    def _on_deadline_approaching(self, data: Dict[str, Any]) -> None:
        self.dispatcher.notify(
            NotificationType.DEADLINE_APPROACHING,
            data.get('assigneeId'),
            "Deadline Approaching",
            f'Task "{data.get("taskTitle")}" is due on {data.get("dueDate")}',
            {'taskId': data.get('taskId'), 'dueDate': data.get('dueDate')}
        )
