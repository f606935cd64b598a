"""
エラーハンドリングシステム
エラー種別の定義とデコレータによる一元的エラー管理
"""

import functools
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .logger import ProjectLogger, LogCategory
from ..storage.data_store import DuplicateKeyError


class ErrorKind:
    """エラー種別定義（呼び出し側が区別するための安定した識別子）"""
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    VALIDATION_FAILED = "validation_failed"
    CONFLICT = "conflict"
    UNAUTHENTICATED = "unauthenticated"
    INTERNAL = "internal"


class ErrorSeverity:
    """エラー重要度定義"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TaskProError(Exception):
    """タスク管理システム基底例外クラス"""

    kind = ErrorKind.INTERNAL
    severity = ErrorSeverity.MEDIUM

    def __init__(self,
                 message: str,
                 details: Dict[str, Any] = None,
                 original_exception: Exception = None):
        """
        例外の初期化

        Args:
            message: エラーメッセージ
            details: 詳細情報
            original_exception: 元の例外
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now()
        self.error_id = f"{self.timestamp.strftime('%Y%m%d_%H%M%S')}_{id(self)}"

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換"""
        return {
            'error_id': self.error_id,
            'timestamp': self.timestamp.isoformat(),
            'kind': self.kind,
            'message': self.message,
            'severity': self.severity,
            'details': self.details.copy(),
            'original_exception': {
                'type': type(self.original_exception).__name__ if self.original_exception else None,
                'message': str(self.original_exception) if self.original_exception else None
            }
        }


class NotFoundError(TaskProError):
    """対象エンティティが存在しない"""

    kind = ErrorKind.NOT_FOUND
    severity = ErrorSeverity.LOW

    def __init__(self, entity_type: str, entity_id: Optional[str] = None, message: str = None, **kwargs):
        super().__init__(message or f"{entity_type} が見つかりません", **kwargs)
        self.details['entity_type'] = entity_type
        if entity_id:
            self.details['entity_id'] = entity_id


class ForbiddenError(TaskProError):
    """権限不足"""

    kind = ErrorKind.FORBIDDEN
    severity = ErrorSeverity.MEDIUM

    def __init__(self, reason: str, **kwargs):
        super().__init__(reason, **kwargs)
        self.reason = reason


class ValidationError(TaskProError):
    """入力値の検証エラー"""

    kind = ErrorKind.VALIDATION_FAILED
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class ConflictError(TaskProError):
    """一意性・状態の競合"""

    kind = ErrorKind.CONFLICT
    severity = ErrorSeverity.LOW

    def __init__(self, message: str, field: str = None, **kwargs):
        super().__init__(message, **kwargs)
        if field:
            self.details['field'] = field


class UnauthenticatedError(TaskProError):
    """認証失敗"""

    kind = ErrorKind.UNAUTHENTICATED
    severity = ErrorSeverity.MEDIUM


class InternalError(TaskProError):
    """想定外の内部エラー（詳細は呼び出し側に出さない）"""

    kind = ErrorKind.INTERNAL
    severity = ErrorSeverity.HIGH


class ErrorHandler:
    """エラーハンドリング管理クラス"""

    def __init__(self, logger: ProjectLogger = None, max_history_size: int = 1000):
        self.logger = logger or ProjectLogger()
        self.error_history: List[Dict[str, Any]] = []
        self.kind_counts: Dict[str, int] = {}
        self.error_counts: Dict[str, int] = {}
        self.max_history_size = max_history_size
        self._lock = threading.RLock()

    def handle_error(self, error: Exception, context: Dict[str, Any] = None) -> TaskProError:
        """
        エラーを処理

        想定内のエラー（TaskProError）はそのまま記録し、それ以外は
        詳細をログに残したうえで InternalError に変換する。

        Args:
            error: 発生した例外
            context: コンテキスト情報

        Returns:
            呼び出し側に送出すべき例外
        """
        expected = isinstance(error, TaskProError)
        if not expected:
            error = self._wrap_exception(error)
            expected = not isinstance(error, InternalError)

        with self._lock:
            self._add_to_history(self._create_error_record(error, context))

        self._log_error(error, context, expected)
        return error

    def _wrap_exception(self, error: Exception) -> TaskProError:
        """標準例外をTaskProErrorにラップ"""
        if isinstance(error, DuplicateKeyError):
            return ConflictError(
                f"{error.field} は既に使用されています",
                field=error.field,
                original_exception=error
            )

        return InternalError("内部エラーが発生しました", original_exception=error)

    def _create_error_record(self, error: TaskProError, context: Dict[str, Any] = None) -> Dict[str, Any]:
        """エラー記録を作成"""
        record = error.to_dict()
        record['context'] = context or {}
        record['thread_id'] = threading.get_ident()
        return record

    def _add_to_history(self, error_record: Dict[str, Any]) -> None:
        """エラー履歴に追加"""
        self.error_history.append(error_record)

        # カウント更新
        kind = error_record['kind']
        self.kind_counts[kind] = self.kind_counts.get(kind, 0) + 1
        error_key = f"{kind}:{error_record['message']}"
        self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1

        # 履歴サイズ制限
        if len(self.error_history) > self.max_history_size:
            self.error_history = self.error_history[-self.max_history_size // 2:]

    def _log_error(self, error: TaskProError, context: Dict[str, Any], expected: bool) -> None:
        """エラーをログに記録"""
        module = (context or {}).get('module', 'error_handler')
        operation = (context or {}).get('function')

        if not expected:
            self.logger.error(
                LogCategory.ERROR,
                f"想定外のエラー: {operation}",
                module=module,
                exception=error.original_exception,
                error_id=error.error_id,
                context=context
            )
            return

        category = LogCategory.SECURITY if error.kind in (
            ErrorKind.FORBIDDEN, ErrorKind.UNAUTHENTICATED) else LogCategory.USER
        self.logger.warning(
            category,
            f"{operation}: {error.message}",
            module=module,
            kind=error.kind,
            error_id=error.error_id
        )

    def get_error_statistics(self) -> Dict[str, Any]:
        """エラー統計を取得"""
        with self._lock:
            total_errors = len(self.error_history)

            if total_errors == 0:
                return {'total_errors': 0, 'kind_counts': {}}

            recent_errors = 0
            for record in self.error_history[-100:]:
                error_time = datetime.fromisoformat(record['timestamp'])
                if (datetime.now() - error_time).total_seconds() < 3600:
                    recent_errors += 1

            return {
                'total_errors': total_errors,
                'kind_counts': self.kind_counts.copy(),
                'recent_errors_count': recent_errors,
                'top_errors': dict(sorted(self.error_counts.items(), key=lambda x: x[1], reverse=True)[:10])
            }

    def clear_history(self) -> int:
        """エラー履歴をクリア"""
        with self._lock:
            count = len(self.error_history)
            self.error_history.clear()
            self.kind_counts.clear()
            self.error_counts.clear()
            return count


# グローバルエラーハンドラーインスタンス
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """グローバルエラーハンドラーを取得"""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def handle_errors(func: Callable) -> Callable:
    """
    エラーハンドリングデコレータ

    想定内のエラーはそのまま送出し、想定外の例外は記録したうえで
    InternalError として送出する。第1引数が error_handler 属性を持てばそれを使う。
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            handler = getattr(args[0], 'error_handler', None) if args else None
            context = {
                'function': func.__name__,
                'module': func.__module__,
            }
            result = (handler or get_error_handler()).handle_error(e, context)
            if result is e:
                raise
            raise result from e

    return wrapper
