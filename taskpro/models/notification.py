"""
通知モデル
利用者向けのアプリ内通知
"""

from datetime import datetime
from typing import Dict, Any, Optional
from .base import BaseEntity, StatusEnum, parse_datetime, format_datetime


class NotificationType(StatusEnum):
    """通知種別定義"""
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    SUBTASK_ADDED = "subtask_added"
    DEADLINE_APPROACHING = "deadline_approaching"
    PROJECT_UPDATE = "project_update"
    TEAM_UPDATE = "team_update"
    MENTION = "mention"


class Notification(BaseEntity):
    """
    通知クラス
    受信者（user_id）本人のみが既読化・削除できる
    """

    def __init__(self,
                 notification_type: str,
                 user_id: str,
                 title: str,
                 message: str,
                 metadata: Optional[Dict[str, Any]] = None):
        """
        通知の初期化

        Args:
            notification_type: 通知種別
            user_id: 受信者ユーザーID
            title: 通知タイトル
            message: 通知メッセージ
            metadata: 付加情報（taskId など、内容は解釈しない）
        """
        super().__init__()
        self.type: str = notification_type
        self.user_id: str = user_id
        self.title: str = title
        self.message: str = message
        self.is_read: bool = False
        self.read_at: Optional[datetime] = None
        self.metadata: Dict[str, Any] = dict(metadata or {})

    def mark_as_read(self) -> None:
        """通知を既読にマーク"""
        if not self.is_read:
            self.is_read = True
            self.read_at = datetime.now()

    def get_age_days(self, now: Optional[datetime] = None) -> float:
        """通知の経過時間（日数）"""
        delta = (now or datetime.now()) - self.created_at
        return delta.total_seconds() / 86400

    def get_metadata(self, key: str, default: Any = None) -> Any:
        """メタデータを取得"""
        return self.metadata.get(key, default)

    def _to_dict_additional(self) -> Dict[str, Any]:
        """通知固有属性を辞書に変換"""
        return {
            'type': self.type,
            'user_id': self.user_id,
            'title': self.title,
            'message': self.message,
            'is_read': self.is_read,
            'read_at': format_datetime(self.read_at),
            'metadata': dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        """辞書から通知を復元"""
        notification = cls(
            data['type'],
            data['user_id'],
            data.get('title', ''),
            data.get('message', ''),
            data.get('metadata')
        )
        notification._restore_base(data)
        notification.is_read = bool(data.get('is_read', False))
        notification.read_at = parse_datetime(data.get('read_at'))
        return notification

    def _validate_additional(self) -> bool:
        """通知固有の妥当性検証"""
        if not NotificationType.is_valid(self.type):
            return False
        return bool(self.user_id) and bool(self.title)

    def __str__(self) -> str:
        """文字列表現"""
        status = "既読" if self.is_read else "未読"
        return f"Notification({self.type}, {self.title}, {status})"
