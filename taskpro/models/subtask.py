"""
サブタスクモデル
"""

from datetime import datetime
from typing import Dict, Any, Optional
from .base import BaseEntity, CompletionTrackingMixin, SubtaskStatus, parse_datetime, format_datetime


class Subtask(CompletionTrackingMixin, BaseEntity):
    """タスク配下の作業項目（完了日時の規則はタスクと同じ）"""

    def __init__(self, title: str, task_id: str, created_by_id: str, description: str = ""):
        super().__init__()
        self.title: str = title
        self.description: str = description
        self.status: str = SubtaskStatus.TODO
        self.task_id: str = task_id
        self.created_by_id: str = created_by_id
        self.completed_at: Optional[datetime] = None

    def _to_dict_additional(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'description': self.description,
            'status': self.status,
            'task_id': self.task_id,
            'created_by_id': self.created_by_id,
            'completed_at': format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Subtask':
        subtask = cls(data['title'], data['task_id'], data['created_by_id'], data.get('description', ''))
        subtask._restore_base(data)
        subtask.status = data.get('status', SubtaskStatus.TODO)
        subtask.completed_at = parse_datetime(data.get('completed_at'))
        return subtask

    def _validate_additional(self) -> bool:
        if not self.title or not self.title.strip():
            return False
        return bool(self.task_id) and bool(self.created_by_id) and SubtaskStatus.is_valid(self.status)

    def __str__(self) -> str:
        return f"Subtask(title='{self.title}', status='{self.status}')"
