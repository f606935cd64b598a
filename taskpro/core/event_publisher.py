"""
ドメインイベント発行
イベントバスへのベストエフォート送信（失敗はログのみ）
"""

import json
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..models import Task, Subtask, User
from .logger import ProjectLogger, LogCategory


class EventTopic:
    """トピック名"""
    TASK_EVENTS = "task-events"
    NOTIFICATION_EVENTS = "notification-events"


class EventType:
    """task-events 上のイベント種別"""
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"
    SUBTASK_ADDED = "SUBTASK_ADDED"
    DEADLINE_APPROACHING = "DEADLINE_APPROACHING"

    @classmethod
    def get_all_values(cls) -> list:
        return [cls.TASK_ASSIGNED, cls.TASK_STATUS_CHANGED, cls.SUBTASK_ADDED, cls.DEADLINE_APPROACHING]


def encode_event(event_type: str, data: Dict[str, Any], timestamp: datetime) -> bytes:
    """イベントを {type, data, timestamp} 形式のUTF-8 JSONに変換"""
    envelope = {
        'type': event_type,
        'data': data,
        'timestamp': format_utc_timestamp(timestamp),
    }
    return json.dumps(envelope, ensure_ascii=False, default=_json_default).encode('utf-8')


def format_utc_timestamp(value: datetime) -> str:
    """日時をUTCのISO形式（ミリ秒・末尾Z）に変換（naiveな値はローカル時刻とみなす）"""
    utc = value.astimezone(timezone.utc)
    return utc.strftime('%Y-%m-%dT%H:%M:%S.') + f"{utc.microsecond // 1000:03d}Z"


def decode_event(value: bytes) -> Dict[str, Any]:
    """
    受信したイベントを復元

    Raises:
        ValueError: JSONとして解釈できない、または type を持たない場合
    """
    envelope = json.loads(value.decode('utf-8'))
    if not isinstance(envelope, dict) or 'type' not in envelope:
        raise ValueError("イベントの形式が不正です")
    envelope.setdefault('data', {})
    return envelope


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class EventPublisher:
    """
    イベント発行クラス

    バス未接続時はイベントをログに残して破棄する。送信失敗も同様にログのみで、
    同期的な再送は行わない。
    """

    def __init__(self,
                 bus: Optional[Any],
                 logger: ProjectLogger,
                 task_topic: str = EventTopic.TASK_EVENTS,
                 notification_topic: str = EventTopic.NOTIFICATION_EVENTS,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            bus: イベントバス（None の場合は常にログのみ）
            logger: ログ管理
            task_topic: タスクイベントのトピック名
            notification_topic: 通知イベントのトピック名（予約）
            clock: 現在時刻の取得関数
        """
        self.bus = bus
        self.logger = logger
        self.task_topic = task_topic
        self.notification_topic = notification_topic
        self.clock = clock
        self.stats = {'published': 0, 'dropped': 0, 'failed': 0}

    def publish(self, topic: str, event_type: str, data: Dict[str, Any]) -> bool:
        """
        イベントを送信

        Args:
            topic: トピック名
            event_type: イベント種別（メッセージキーにも使用）
            data: ペイロード

        Returns:
            送信できた場合 True
        """
        if self.bus is None or not self.bus.is_connected:
            self.stats['dropped'] += 1
            preview = json.dumps(data, ensure_ascii=False, default=_json_default)[:100]
            self.logger.info(
                LogCategory.EVENT,
                f"イベントバス未接続のためイベントを破棄: {event_type}",
                module=__name__,
                preview=preview
            )
            return False

        try:
            self.bus.publish(topic, event_type, encode_event(event_type, data, self.clock()))
        except Exception as e:
            self.stats['failed'] += 1
            self.logger.error(
                LogCategory.EVENT,
                f"イベント送信に失敗しました: {event_type}",
                module=__name__,
                exception=e,
                topic=topic
            )
            return False

        self.stats['published'] += 1
        self.logger.debug(LogCategory.EVENT, f"イベント送信: {event_type}", module=__name__, topic=topic)
        return True

    # ==================== 種別ごとの送信 ====================

    def task_assigned(self, task: Task, assignee: User, assigner: Any) -> bool:
        return self.publish(self.task_topic, EventType.TASK_ASSIGNED, {
            'taskId': task.id,
            'taskTitle': task.title,
            'assigneeId': assignee.id,
            'assigneeName': assignee.name,
            'assignerId': assigner.id,
            'assignerName': assigner.name,
        })

    def task_status_changed(self, task: Task, previous_status: str, new_status: str, changed_by: Any) -> bool:
        return self.publish(self.task_topic, EventType.TASK_STATUS_CHANGED, {
            'taskId': task.id,
            'taskTitle': task.title,
            'previousStatus': previous_status,
            'newStatus': new_status,
            'changedById': changed_by.id,
            'changedByName': changed_by.name,
        })

    def subtask_added(self, subtask: Subtask, task: Task, created_by: Any) -> bool:
        return self.publish(self.task_topic, EventType.SUBTASK_ADDED, {
            'subtaskId': subtask.id,
            'subtaskTitle': subtask.title,
            'taskId': task.id,
            'taskTitle': task.title,
            'createdById': created_by.id,
            'createdByName': created_by.name,
        })

    def deadline_approaching(self, task: Task) -> bool:
        return self.publish(self.task_topic, EventType.DEADLINE_APPROACHING, {
            'taskId': task.id,
            'taskTitle': task.title,
            'dueDate': task.due_date.isoformat() if task.due_date else None,
            'assigneeId': task.assignee_id,
        })
