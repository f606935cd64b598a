"""
部分更新（パッチ）定義

各フィールドは「未指定（UNSET）」と「値の指定」を区別する。
明示的な None は null 許容フィールドのクリアを意味する。
"""

from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, FrozenSet, Mapping


class _Unset:
    """未指定を表す番兵"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class Patch:
    """部分更新の基底クラス"""

    NULLABLE: ClassVar[FrozenSet[str]] = frozenset()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'Patch':
        """
        辞書からパッチを生成

        Args:
            data: 更新フィールドの辞書（キーが存在するものだけを指定扱いにする）

        Returns:
            パッチ

        Raises:
            ValueError: 未知のフィールドが含まれる場合
        """
        names = {f.name for f in fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ValueError(f"未知のフィールドです: {', '.join(sorted(unknown))}")
        return cls(**dict(data))

    def provided(self) -> Dict[str, Any]:
        """指定されたフィールドのみを辞書で取得"""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_set(self, name: str) -> bool:
        """フィールドが指定されているか"""
        return getattr(self, name, UNSET) is not UNSET

    def value_or(self, name: str, current: Any) -> Any:
        """指定値、未指定なら現在値を返す"""
        value = getattr(self, name, UNSET)
        return current if value is UNSET else value

    def is_empty(self) -> bool:
        """何も指定されていないか"""
        return not self.provided()

    def check_nullability(self) -> None:
        """
        null 非許容フィールドへの None 指定を検出

        Raises:
            ValueError: null 非許容フィールドに None が指定された場合
        """
        for name, value in self.provided().items():
            if value is None and name not in self.NULLABLE:
                raise ValueError(f"{name} は null にできません")


@dataclass(frozen=True)
class TaskPatch(Patch):
    """タスクの部分更新"""

    NULLABLE = frozenset({
        'description', 'due_date', 'project_id', 'assignee_id',
        'estimated_hours', 'actual_hours', 'tags',
    })

    title: Any = UNSET
    description: Any = UNSET
    priority: Any = UNSET
    status: Any = UNSET
    due_date: Any = UNSET
    project_id: Any = UNSET
    assignee_id: Any = UNSET
    is_personal: Any = UNSET
    estimated_hours: Any = UNSET
    actual_hours: Any = UNSET
    tags: Any = UNSET


@dataclass(frozen=True)
class SubtaskPatch(Patch):
    """サブタスクの部分更新"""

    NULLABLE = frozenset({'description'})

    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET


@dataclass(frozen=True)
class ProjectPatch(Patch):
    """プロジェクトの部分更新"""

    NULLABLE = frozenset({'description', 'start_date', 'end_date', 'color'})

    name: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    priority: Any = UNSET
    start_date: Any = UNSET
    end_date: Any = UNSET
    color: Any = UNSET
    team_id: Any = UNSET


@dataclass(frozen=True)
class TeamPatch(Patch):
    """チームの部分更新"""

    NULLABLE = frozenset({'description', 'manager_id'})

    name: Any = UNSET
    description: Any = UNSET
    color: Any = UNSET
    manager_id: Any = UNSET


@dataclass(frozen=True)
class UserPatch(Patch):
    """ユーザーの部分更新（role / team_id / is_active はマネージャーのみ）"""

    NULLABLE = frozenset({'team_id', 'avatar'})
    PRIVILEGED: ClassVar[FrozenSet[str]] = frozenset({'role', 'team_id', 'is_active'})

    name: Any = UNSET
    role: Any = UNSET
    team_id: Any = UNSET
    is_active: Any = UNSET
    avatar: Any = UNSET

    def touches_privileged(self) -> bool:
        """マネージャー権限が必要なフィールドを含むか"""
        return any(self.is_set(name) for name in self.PRIVILEGED)
