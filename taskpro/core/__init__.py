# ====================
# core/__init__.py
# ====================
"""
コア機能パッケージ
ビジネスロジック・認可・通知・イベント・ログ・エラーハンドリング
"""

from .manager import TaskManagementSystem, TeamDetail, ProjectDetail
from .task_lifecycle import TaskLifecycleManager, TaskDetail, SubtaskProgress
from .notification_manager import NotificationDispatcher, NotificationList
from .event_publisher import EventPublisher, EventTopic, EventType
from .access_policy import AccessPolicy, Action, Decision, SubtaskContext, UserUpdateContext
from .identity import Principal, IdentityProvider, AuthService, AuthResult
from .side_effects import DeferredActions, SideEffectQueue
from .logger import (
    ProjectLogger, LogLevel, LogCategory, AuditAction,
    LogEntry, AuditEntry, LogStatistics, setup_logging
)
from .error_handler import (
    TaskProError, NotFoundError, ForbiddenError, ValidationError,
    ConflictError, UnauthenticatedError, InternalError,
    ErrorHandler, ErrorKind, ErrorSeverity,
    handle_errors, get_error_handler
)

__version__ = "1.0.0"

__all__ = [
    # 主要システムクラス
    'TaskManagementSystem',
    'TeamDetail',
    'ProjectDetail',
    'TaskLifecycleManager',
    'TaskDetail',
    'SubtaskProgress',
    'NotificationDispatcher',
    'NotificationList',
    'EventPublisher',
    'EventTopic',
    'EventType',
    'SideEffectQueue',
    'DeferredActions',

    # 認証・認可
    'AccessPolicy',
    'Action',
    'Decision',
    'SubtaskContext',
    'UserUpdateContext',
    'Principal',
    'IdentityProvider',
    'AuthService',
    'AuthResult',

    # ログ関連
    'ProjectLogger',
    'LogLevel',
    'LogCategory',
    'AuditAction',
    'LogEntry',
    'AuditEntry',
    'LogStatistics',
    'setup_logging',

    # エラーハンドリング関連
    'TaskProError',
    'NotFoundError',
    'ForbiddenError',
    'ValidationError',
    'ConflictError',
    'UnauthenticatedError',
    'InternalError',
    'ErrorHandler',
    'ErrorKind',
    'ErrorSeverity',

    # デコレータ・ユーティリティ
    'handle_errors',
    'get_error_handler'
]
