"""
プロジェクトモデル
チームに属し、チームタスクをまとめる単位
"""

from datetime import date
from typing import Dict, Any, Optional
from .base import BaseEntity, ProjectStatus, ProjectPriority


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class Project(BaseEntity):
    """
    プロジェクトクラス
    削除時は配下の全タスク（とそのサブタスク）を先に削除する
    """

    def __init__(self, name: str, team_id: str, created_by_id: str, description: str = ""):
        """
        プロジェクトの初期化

        Args:
            name: プロジェクト名
            team_id: 所属チームID
            created_by_id: 作成者ユーザーID
            description: プロジェクト説明
        """
        super().__init__()
        self.name: str = name
        self.description: str = description
        self.status: str = ProjectStatus.PLANNING
        self.priority: str = ProjectPriority.MEDIUM
        self.start_date: Optional[date] = None
        self.end_date: Optional[date] = None
        self.color: Optional[str] = None
        self.team_id: str = team_id
        self.created_by_id: str = created_by_id

    def set_dates(self, start_date: Any, end_date: Any) -> bool:
        """
        期間を設定

        Args:
            start_date: 開始日
            end_date: 終了日

        Returns:
            設定成功の可否
        """
        start = _parse_date(start_date)
        end = _parse_date(end_date)
        # 日付の妥当性チェック
        if start and end and start > end:
            return False

        self.start_date = start
        self.end_date = end
        return True

    def is_overdue(self) -> bool:
        """期限超過かどうか"""
        if self.end_date and self.status not in (ProjectStatus.COMPLETED, ProjectStatus.CANCELLED):
            return date.today() > self.end_date
        return False

    def get_remaining_days(self) -> Optional[int]:
        """残り日数を取得（期限未設定の場合はNone）"""
        if self.end_date:
            return (self.end_date - date.today()).days
        return None

    def _to_dict_additional(self) -> Dict[str, Any]:
        """プロジェクト固有属性を辞書に変換"""
        return {
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'priority': self.priority,
            'start_date': self.start_date.isoformat() if self.start_date else None,
            'end_date': self.end_date.isoformat() if self.end_date else None,
            'color': self.color,
            'team_id': self.team_id,
            'created_by_id': self.created_by_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Project':
        """辞書からプロジェクトを復元"""
        project = cls(data['name'], data['team_id'], data['created_by_id'], data.get('description', ''))
        project._restore_base(data)
        project.status = data.get('status', ProjectStatus.PLANNING)
        project.priority = data.get('priority', ProjectPriority.MEDIUM)
        project.start_date = _parse_date(data.get('start_date'))
        project.end_date = _parse_date(data.get('end_date'))
        project.color = data.get('color')
        return project

    def _validate_additional(self) -> bool:
        """プロジェクト固有の妥当性検証"""
        if not self.name or not self.name.strip():
            return False

        if not self.team_id or not self.created_by_id:
            return False

        # ステータス・優先度の妥当性
        if not ProjectStatus.is_valid(self.status):
            return False

        if not ProjectPriority.is_valid(self.priority):
            return False

        # 日付の妥当性
        if self.start_date and self.end_date and self.start_date > self.end_date:
            return False

        return True

    def __str__(self) -> str:
        """文字列表現"""
        return f"Project(name='{self.name}', status='{self.status}')"
