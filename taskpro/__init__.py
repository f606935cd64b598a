"""
taskpro - ロールベースのタスク管理システム
マネージャーと従業員によるチーム・プロジェクト・タスク・サブタスクの管理
"""

from .core.manager import TaskManagementSystem
from .config.settings import SystemSettings, get_settings

__version__ = "1.0.0"

__all__ = [
    'TaskManagementSystem',
    'SystemSettings',
    'get_settings'
]
