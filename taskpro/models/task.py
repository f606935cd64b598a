"""
タスクモデル
タスク管理システムの作業単位（チームタスク・個人タスク）
"""

from datetime import datetime
from typing import Dict, Any, Optional, List, Iterable
from .base import (
    BaseEntity, CompletionTrackingMixin, TaskStatus, TaskPriority,
    parse_datetime, format_datetime,
)


class Task(CompletionTrackingMixin, BaseEntity):
    """
    タスククラス

    個人タスクは常にプロジェクトに属さず、作成者自身が担当者となる。
    """

    def __init__(self, title: str, created_by_id: str, description: str = ""):
        """
        タスクの初期化

        Args:
            title: タスク名
            created_by_id: 作成者ユーザーID
            description: タスク説明
        """
        super().__init__()
        self.title: str = title
        self.description: str = description
        self.priority: str = TaskPriority.MEDIUM
        self.status: str = TaskStatus.TODO
        self.due_date: Optional[datetime] = None
        self.project_id: Optional[str] = None
        self.assignee_id: Optional[str] = None
        self.created_by_id: str = created_by_id
        self.is_personal: bool = False
        self.completed_at: Optional[datetime] = None
        self.estimated_hours: Optional[float] = None
        self.actual_hours: Optional[float] = None
        self.tags: List[str] = []

    def set_tags(self, tags: Optional[Iterable[str]]) -> None:
        """タグを設定（重複除去、順序は保持しない前提）"""
        self.tags = sorted({str(tag) for tag in (tags or [])})

    def make_personal(self) -> None:
        """個人タスクの不変条件を適用（プロジェクトなし・担当者は作成者）"""
        self.is_personal = True
        self.project_id = None
        self.assignee_id = self.created_by_id

    def satisfies_personal_invariant(self) -> bool:
        """個人タスクの不変条件を満たしているか"""
        if not self.is_personal:
            return True
        return self.project_id is None and self.assignee_id == self.created_by_id

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """期限超過かどうか"""
        if not self.due_date or self.is_completed:
            return False
        return self.due_date < (now or datetime.now())

    def _to_dict_additional(self) -> Dict[str, Any]:
        """タスク固有属性を辞書に変換"""
        return {
            'title': self.title,
            'description': self.description,
            'priority': self.priority,
            'status': self.status,
            'due_date': format_datetime(self.due_date),
            'project_id': self.project_id,
            'assignee_id': self.assignee_id,
            'created_by_id': self.created_by_id,
            'is_personal': self.is_personal,
            'completed_at': format_datetime(self.completed_at),
            'estimated_hours': self.estimated_hours,
            'actual_hours': self.actual_hours,
            'tags': list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Task':
        """辞書からタスクを復元"""
        task = cls(data['title'], data['created_by_id'], data.get('description', ''))
        task._restore_base(data)
        task.priority = data.get('priority', TaskPriority.MEDIUM)
        task.status = data.get('status', TaskStatus.TODO)
        task.due_date = parse_datetime(data.get('due_date'))
        task.project_id = data.get('project_id')
        task.assignee_id = data.get('assignee_id')
        task.is_personal = bool(data.get('is_personal', False))
        task.completed_at = parse_datetime(data.get('completed_at'))
        task.estimated_hours = data.get('estimated_hours')
        task.actual_hours = data.get('actual_hours')
        task.set_tags(data.get('tags'))
        return task

    def _validate_additional(self) -> bool:
        """タスク固有の妥当性検証"""
        if not self.title or not self.title.strip():
            return False

        if not self.created_by_id:
            return False

        if not TaskStatus.is_valid(self.status):
            return False

        if not TaskPriority.is_valid(self.priority):
            return False

        for hours in (self.estimated_hours, self.actual_hours):
            if hours is not None and hours < 0:
                return False

        return self.satisfies_personal_invariant()

    def __str__(self) -> str:
        """文字列表現"""
        return f"Task(title='{self.title}', status='{self.status}', priority='{self.priority}')"
