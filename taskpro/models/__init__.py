# ====================
# models/__init__.py
# ====================
"""
データモデルパッケージ
タスク管理システムのエンティティクラス
"""

from .base import (
    BaseEntity, StatusEnum, CompletionTrackingMixin, generate_id,
    UserRole, ProjectStatus, ProjectPriority, TaskStatus, TaskPriority, SubtaskStatus
)
from .user import User, RefreshToken, normalize_email
from .team import Team, DEFAULT_TEAM_COLOR
from .project import Project
from .task import Task
from .subtask import Subtask
from .notification import Notification, NotificationType
from .patch import (
    UNSET, Patch, TaskPatch, SubtaskPatch, ProjectPatch, TeamPatch, UserPatch
)

__version__ = "1.0.0"

__all__ = [
    # 基底クラス
    'BaseEntity',
    'StatusEnum',
    'CompletionTrackingMixin',
    'generate_id',

    # 列挙定数
    'UserRole',
    'ProjectStatus',
    'ProjectPriority',
    'TaskStatus',
    'TaskPriority',
    'SubtaskStatus',
    'NotificationType',

    # エンティティクラス
    'User',
    'RefreshToken',
    'Team',
    'Project',
    'Task',
    'Subtask',
    'Notification',

    # 部分更新
    'UNSET',
    'Patch',
    'TaskPatch',
    'SubtaskPatch',
    'ProjectPatch',
    'TeamPatch',
    'UserPatch',

    # 定数・ユーティリティ
    'DEFAULT_TEAM_COLOR',
    'normalize_email'
]
