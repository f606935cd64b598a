"""
チームモデル
"""

from typing import Dict, Any, Optional
from .base import BaseEntity

DEFAULT_TEAM_COLOR = "#6366f1"


class Team(BaseEntity):
    """
    チームクラス
    メンバーは User.team_id で、プロジェクトは Project.team_id で紐づく
    """

    def __init__(self, name: str, manager_id: Optional[str] = None, description: str = ""):
        super().__init__()
        self.name: str = name
        self.description: str = description
        self.color: str = DEFAULT_TEAM_COLOR
        self.manager_id: Optional[str] = manager_id

    def _to_dict_additional(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'description': self.description,
            'color': self.color,
            'manager_id': self.manager_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Team':
        team = cls(data['name'], data.get('manager_id'), data.get('description', ''))
        team._restore_base(data)
        team.color = data.get('color') or DEFAULT_TEAM_COLOR
        return team

    def _validate_additional(self) -> bool:
        return bool(self.name and self.name.strip())

    def __str__(self) -> str:
        return f"Team(name='{self.name}')"
