"""
ログ管理システム
カテゴリ別ログ・監査証跡・統計情報を提供
"""

import json
import logging
import logging.handlers
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List
from pathlib import Path
import threading
import uuid
import traceback


class LogLevel:
    """ログレベル定義"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogCategory:
    """ログカテゴリ定義"""
    SYSTEM = "SYSTEM"
    DATA = "DATA"
    USER = "USER"
    SECURITY = "SECURITY"
    EVENT = "EVENT"
    AUDIT = "AUDIT"
    ERROR = "ERROR"


class AuditAction:
    """監査アクション定義"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ASSIGN = "ASSIGN"
    STATUS_CHANGE = "STATUS_CHANGE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"


_LEVEL_MAP = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}

_logging_configured = False
_setup_lock = threading.Lock()


def setup_logging(level: str = LogLevel.INFO,
                  log_dir: Optional[str] = None,
                  max_file_size_mb: int = 10,
                  backup_count: int = 5,
                  console: bool = True) -> None:
    """
    Python標準ログの設定（プロセスで1回だけ有効）

    Args:
        level: ルートロガーのレベル
        log_dir: ログディレクトリ（None の場合はファイル出力なし）
        max_file_size_mb: ローテーションするファイルサイズ
        backup_count: 保持する世代数
        console: コンソール出力の有無
    """
    global _logging_configured

    with _setup_lock:
        if _logging_configured:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(_LEVEL_MAP.get(level, logging.INFO))
        app_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        if log_dir:
            path = Path(log_dir)
            path.mkdir(parents=True, exist_ok=True)

            # アプリケーションログ
            app_handler = logging.handlers.RotatingFileHandler(
                path / "application.log",
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding='utf-8'
            )
            app_handler.setFormatter(app_formatter)
            root_logger.addHandler(app_handler)

            # エラーログ
            error_handler = logging.handlers.RotatingFileHandler(
                path / "error.log",
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding='utf-8'
            )
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(app_formatter)
            root_logger.addHandler(error_handler)

        if console:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(logging.Formatter('%(levelname)s - %(message)s'))
            root_logger.addHandler(console_handler)

        _logging_configured = True


class LogEntry:
    """ログエントリクラス"""

    def __init__(self,
                 level: str,
                 category: str,
                 message: str,
                 module: str = None):
        """
        ログエントリの初期化

        Args:
            level: ログレベル
            category: ログカテゴリ
            message: ログメッセージ
            module: モジュール名
        """
        self.id = str(uuid.uuid4())
        self.timestamp = datetime.now()
        self.level = level
        self.category = category
        self.message = message
        self.module = module or "unknown"
        self.metadata: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換"""
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'level': self.level,
            'category': self.category,
            'message': self.message,
            'module': self.module,
            'metadata': self.metadata.copy()
        }


class AuditEntry:
    """監査エントリクラス"""

    def __init__(self,
                 action: str,
                 entity_type: str,
                 entity_id: str,
                 entity_name: str,
                 user: str,
                 details: str = ""):
        """
        監査エントリの初期化

        Args:
            action: 実行されたアクション
            entity_type: 対象エンティティタイプ
            entity_id: 対象エンティティID
            entity_name: 対象エンティティ名
            user: 実行ユーザーID
            details: 詳細情報
        """
        self.id = str(uuid.uuid4())
        self.timestamp = datetime.now()
        self.action = action
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.entity_name = entity_name
        self.user = user
        self.details = details
        self.before_data: Optional[Dict[str, Any]] = None
        self.after_data: Optional[Dict[str, Any]] = None
        self.metadata: Dict[str, Any] = {}

    def set_data_change(self, before: Optional[Dict[str, Any]], after: Optional[Dict[str, Any]]) -> None:
        """変更前後のデータを設定"""
        self.before_data = before.copy() if before else None
        self.after_data = after.copy() if after else None

    def to_dict(self) -> Dict[str, Any]:
        """辞書形式に変換"""
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'action': self.action,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'entity_name': self.entity_name,
            'user': self.user,
            'details': self.details,
            'before_data': self.before_data,
            'after_data': self.after_data,
            'metadata': self.metadata.copy()
        }


class LogStatistics:
    """ログ統計クラス"""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """統計をリセット"""
        self.start_time = datetime.now()
        self.level_counts = {level: 0 for level in _LEVEL_MAP}
        self.category_counts = {category: 0 for category in [
            LogCategory.SYSTEM, LogCategory.DATA, LogCategory.USER,
            LogCategory.SECURITY, LogCategory.EVENT,
            LogCategory.AUDIT, LogCategory.ERROR
        ]}
        self.module_counts: Dict[str, int] = {}
        self.total_entries = 0
        self.error_count = 0
        self.last_error: Optional[datetime] = None

    def update(self, entry: LogEntry) -> None:
        """統計を更新"""
        self.total_entries += 1
        self.level_counts[entry.level] = self.level_counts.get(entry.level, 0) + 1
        self.category_counts[entry.category] = self.category_counts.get(entry.category, 0) + 1
        self.module_counts[entry.module] = self.module_counts.get(entry.module, 0) + 1

        # エラー統計
        if entry.level in [LogLevel.ERROR, LogLevel.CRITICAL]:
            self.error_count += 1
            self.last_error = entry.timestamp

    def get_summary(self) -> Dict[str, Any]:
        """統計サマリーを取得"""
        uptime = datetime.now() - self.start_time

        return {
            'start_time': self.start_time.isoformat(),
            'uptime_seconds': uptime.total_seconds(),
            'total_entries': self.total_entries,
            'error_count': self.error_count,
            'error_rate': (self.error_count / self.total_entries) * 100 if self.total_entries > 0 else 0,
            'last_error': self.last_error.isoformat() if self.last_error else None,
            'level_counts': self.level_counts.copy(),
            'category_counts': self.category_counts.copy(),
            'top_modules': dict(sorted(self.module_counts.items(), key=lambda x: x[1], reverse=True)[:10])
        }


class ProjectLogger:
    """
    タスク管理システム専用ログ管理クラス

    ハンドラーの設定は setup_logging() が行い、このクラスはカテゴリ付きの
    エントリ・監査証跡・統計をメモリ上に保持して標準ログへ転送する。
    """

    def __init__(self, max_entries_in_memory: int = 10000, enable_audit: bool = True):
        """
        ログ管理の初期化

        Args:
            max_entries_in_memory: メモリに保持する最大エントリ数
            enable_audit: 監査証跡を記録するか
        """
        self.log_entries: List[LogEntry] = []
        self.audit_entries: List[AuditEntry] = []
        self.statistics = LogStatistics()
        self.max_entries_in_memory = max_entries_in_memory
        self.enable_audit = enable_audit

        # スレッドセーフティ
        self._lock_entries = threading.RLock()

    def _log(self, level: str, category: str, message: str,
             module: str = None, **metadata) -> None:
        """内部ログ処理"""
        with self._lock_entries:
            entry = LogEntry(level, category, message, module)
            entry.metadata.update(metadata)

            # メモリ内保存
            self.log_entries.append(entry)

            # メモリ制限チェック
            if len(self.log_entries) > self.max_entries_in_memory:
                self.log_entries = self.log_entries[-self.max_entries_in_memory // 2:]

            self.statistics.update(entry)

        # Python標準ログに出力
        logger = logging.getLogger(module or 'taskpro')
        log_message = f"[{category}] {message}"

        if metadata:
            log_message += f" | {json.dumps(metadata, ensure_ascii=False, default=str)}"

        logger.log(_LEVEL_MAP.get(level, logging.INFO), log_message)

    # 公開ログメソッド
    def debug(self, category: str, message: str, module: str = None, **metadata) -> None:
        """デバッグログ"""
        self._log(LogLevel.DEBUG, category, message, module, **metadata)

    def info(self, category: str, message: str, module: str = None, **metadata) -> None:
        """情報ログ"""
        self._log(LogLevel.INFO, category, message, module, **metadata)

    def warning(self, category: str, message: str, module: str = None, **metadata) -> None:
        """警告ログ"""
        self._log(LogLevel.WARNING, category, message, module, **metadata)

    def error(self, category: str, message: str, module: str = None,
              exception: BaseException = None, **metadata) -> None:
        """エラーログ"""
        if exception:
            metadata['exception_type'] = type(exception).__name__
            metadata['exception_message'] = str(exception)
            metadata['traceback'] = ''.join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        self._log(LogLevel.ERROR, category, message, module, **metadata)

    def critical(self, category: str, message: str, module: str = None,
                 exception: BaseException = None, **metadata) -> None:
        """クリティカルログ"""
        if exception:
            metadata['exception_type'] = type(exception).__name__
            metadata['exception_message'] = str(exception)

        self._log(LogLevel.CRITICAL, category, message, module, **metadata)

    # 監査ログ
    def audit(self, action: str, entity_type: str, entity_id: str,
              entity_name: str, user: str = "system", details: str = "",
              before_data: Dict[str, Any] = None,
              after_data: Dict[str, Any] = None, **metadata) -> None:
        """監査ログ"""
        if not self.enable_audit:
            return

        entry = AuditEntry(action, entity_type, entity_id, entity_name, user, details)
        if before_data or after_data:
            entry.set_data_change(before_data, after_data)
        entry.metadata.update(metadata)

        with self._lock_entries:
            self.audit_entries.append(entry)
            if len(self.audit_entries) > self.max_entries_in_memory:
                self.audit_entries = self.audit_entries[-self.max_entries_in_memory // 2:]

        # 監査ログに出力
        logging.getLogger('taskpro.audit').info(
            json.dumps(entry.to_dict(), ensure_ascii=False, default=str)
        )

    # 検索・フィルタリング
    def get_logs(self, level: str = None, category: str = None,
                 module: str = None, start_time: datetime = None,
                 limit: int = 1000) -> List[LogEntry]:
        """ログエントリを検索（新しい順）"""
        with self._lock_entries:
            filtered_logs = []

            for entry in reversed(self.log_entries):
                if level and entry.level != level:
                    continue
                if category and entry.category != category:
                    continue
                if module and entry.module != module:
                    continue
                if start_time and entry.timestamp < start_time:
                    continue

                filtered_logs.append(entry)

                if limit and len(filtered_logs) >= limit:
                    break

            return filtered_logs

    def get_audit_logs(self, action: str = None, entity_type: str = None,
                       user: str = None, entity_id: str = None,
                       limit: int = 1000) -> List[AuditEntry]:
        """監査ログを検索（新しい順）"""
        with self._lock_entries:
            filtered_audits = []

            for entry in reversed(self.audit_entries):
                if action and entry.action != action:
                    continue
                if entity_type and entry.entity_type != entity_type:
                    continue
                if user and entry.user != user:
                    continue
                if entity_id and entry.entity_id != entity_id:
                    continue

                filtered_audits.append(entry)

                if limit and len(filtered_audits) >= limit:
                    break

            return filtered_audits

    # 統計・レポート
    def get_statistics(self) -> Dict[str, Any]:
        """ログ統計を取得"""
        with self._lock_entries:
            return self.statistics.get_summary()

    def get_error_summary(self, hours: int = 24) -> Dict[str, Any]:
        """エラーサマリーを取得"""
        cutoff_time = datetime.now() - timedelta(hours=hours)

        with self._lock_entries:
            recent_errors = [
                entry for entry in self.log_entries
                if entry.level in [LogLevel.ERROR, LogLevel.CRITICAL]
                and entry.timestamp >= cutoff_time
            ]

        error_counts = {}
        module_errors = {}

        for entry in recent_errors:
            error_counts[entry.message] = error_counts.get(entry.message, 0) + 1
            module_errors[entry.module] = module_errors.get(entry.module, 0) + 1

        return {
            'period_hours': hours,
            'total_errors': len(recent_errors),
            'unique_errors': len(error_counts),
            'top_errors': dict(sorted(error_counts.items(), key=lambda x: x[1], reverse=True)[:10]),
            'errors_by_module': dict(sorted(module_errors.items(), key=lambda x: x[1], reverse=True))
        }

    def __str__(self) -> str:
        """文字列表現"""
        return f"ProjectLogger(entries={len(self.log_entries)}, audits={len(self.audit_entries)})"
