"""
システム設定管理
データ・ログ・通知・イベントバス・認証設定の一元管理
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, Any, Optional, List, Mapping
from datetime import datetime, timedelta
from dataclasses import dataclass, asdict, field, fields
from enum import Enum

logger = logging.getLogger(__name__)

ENV_PREFIX = "TASKPRO"


class LogLevel(Enum):
    """ログレベル定義"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_DURATION_PATTERN = re.compile(r'^\s*(\d+)\s*([smhd])\s*$')
_DURATION_UNITS = {
    's': timedelta(seconds=1),
    'm': timedelta(minutes=1),
    'h': timedelta(hours=1),
    'd': timedelta(days=1),
}


def parse_duration(value: str, default: timedelta = timedelta(days=7)) -> timedelta:
    """
    "15m" / "2h" / "7d" 形式の期間を変換

    Args:
        value: 期間文字列
        default: 解釈できない場合の値

    Returns:
        期間
    """
    match = _DURATION_PATTERN.match(value or '')
    if not match:
        return default
    amount, unit = match.groups()
    return _DURATION_UNITS[unit] * int(amount)


@dataclass
class DatabaseSettings:
    """データ保存設定"""
    data_directory: str = "data"
    persist_to_disk: bool = True
    cleanup_orphans_on_startup: bool = True


@dataclass
class LoggingSettings:
    """ログ設定"""
    level: str = LogLevel.INFO.value
    log_directory: str = "logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    max_memory_entries: int = 10000
    enable_console_output: bool = True
    enable_file_output: bool = True
    enable_audit_log: bool = True


@dataclass
class NotificationSettings:
    """通知設定"""
    enabled: bool = True
    upcoming_window_days: int = 7
    upcoming_limit: int = 10
    retention_days: int = 90


@dataclass
class EventBusSettings:
    """イベントバス設定"""
    enabled: bool = True
    client_id: str = "task-management-api"
    brokers: List[str] = field(default_factory=lambda: ["localhost:9092"])
    partitions: int = 3
    task_topic: str = "task-events"
    notification_topic: str = "notification-events"
    consumer_group: str = "notification-service"
    consumer_enabled: bool = False


@dataclass
class SecuritySettings:
    """認証設定"""
    token_secret: str = ""
    access_token_ttl: str = "15m"
    refresh_token_ttl: str = "7d"
    password_min_length: int = 6
    password_hash_iterations: int = 120000

    @property
    def access_token_lifetime(self) -> timedelta:
        return parse_duration(self.access_token_ttl, timedelta(minutes=15))

    @property
    def refresh_token_lifetime(self) -> timedelta:
        return parse_duration(self.refresh_token_ttl, timedelta(days=7))


@dataclass
class PerformanceSettings:
    """パフォーマンス設定"""
    side_effect_workers: int = 1
    default_page_size: int = 10
    max_page_size: int = 100
    shutdown_timeout_seconds: float = 5.0


SECTIONS = {
    'database': DatabaseSettings,
    'logging': LoggingSettings,
    'notifications': NotificationSettings,
    'event_bus': EventBusSettings,
    'security': SecuritySettings,
    'performance': PerformanceSettings,
}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_list(env: Mapping[str, str], name: str, default: List[str]) -> List[str]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _k(suffix: str) -> str:
    """接頭辞付きの環境変数名"""
    return f"{ENV_PREFIX}_{suffix}"


class SystemSettings:
    """
    システム設定統合管理クラス

    優先順位: 環境変数 > 設定ファイル > 既定値
    """

    def __init__(self, config_file: Optional[str] = None, env: Optional[Mapping[str, str]] = None):
        """
        設定管理の初期化

        Args:
            config_file: 設定ファイルパス（None の場合はファイルを使用しない）
            env: 環境変数（省略時は os.environ）
        """
        self.config_file = Path(config_file) if config_file else None
        self._env = os.environ if env is None else env

        # デフォルト設定
        self._reset_sections()

        # システム情報
        self.system_info = {
            'version': '1.0.0',
            'created_at': datetime.now().isoformat(),
            'last_modified': datetime.now().isoformat(),
            'config_file': str(self.config_file) if self.config_file else None
        }

        # 設定読み込み
        self.load_settings()
        self.apply_environment()

    def _reset_sections(self) -> None:
        self.database = DatabaseSettings()
        self.logging = LoggingSettings()
        self.notifications = NotificationSettings()
        self.event_bus = EventBusSettings()
        self.security = SecuritySettings()
        self.performance = PerformanceSettings()

    def load_settings(self) -> bool:
        """
        設定ファイルから設定を読み込み

        Returns:
            読み込み成功の可否
        """
        if self.config_file is None:
            return True

        try:
            if not self.config_file.exists():
                # 設定ファイルが存在しない場合はデフォルト設定を保存
                return self.save_settings()

            with open(self.config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            # 各セクションの設定を読み込み（未知のキーは無視）
            for section, section_cls in SECTIONS.items():
                if section in data:
                    known = {f.name for f in fields(section_cls)}
                    values = {k: v for k, v in data[section].items() if k in known}
                    setattr(self, section, section_cls(**values))

            if 'system_info' in data:
                self.system_info.update(data['system_info'])

            return True

        except (json.JSONDecodeError, OSError, TypeError, AttributeError) as e:
            # 読み込みエラーの場合はデフォルト設定を使用
            logger.warning(f"設定読み込みエラー（デフォルト設定を使用）: {e}")
            self._reset_sections()
            return False

    def apply_environment(self) -> None:
        """TASKPRO_ 接頭辞の環境変数で設定を上書き"""
        env = self._env
        self.database.data_directory = _env_str(env, _k("DATA_DIR"), self.database.data_directory)
        self.logging.level = _env_str(env, _k("LOG_LEVEL"), self.logging.level).upper()
        self.event_bus.brokers = _env_list(env, _k("KAFKA_BROKERS"), self.event_bus.brokers)
        self.event_bus.enabled = _env_bool(env, _k("EVENT_BUS_ENABLED"), self.event_bus.enabled)
        self.event_bus.consumer_enabled = _env_bool(env, _k("CONSUMER_ENABLED"), self.event_bus.consumer_enabled)
        self.security.access_token_ttl = _env_str(env, _k("ACCESS_TOKEN_TTL"), self.security.access_token_ttl)
        self.security.refresh_token_ttl = _env_str(env, _k("REFRESH_TOKEN_TTL"), self.security.refresh_token_ttl)
        self.security.token_secret = _env_str(env, _k("TOKEN_SECRET"), self.security.token_secret)

    def save_settings(self) -> bool:
        """
        設定をファイルに保存

        Returns:
            保存成功の可否
        """
        if self.config_file is None:
            return False

        temp_file = self.config_file.with_suffix('.tmp')
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            # システム情報を更新
            self.system_info['last_modified'] = datetime.now().isoformat()

            # 一時ファイルに書き込み後、アトミックに移動
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(self.get_all_settings(), f, ensure_ascii=False, indent=2)

            os.replace(temp_file, self.config_file)
            return True

        except OSError as e:
            logger.error(f"設定保存エラー: {e}")
            if temp_file.exists():
                temp_file.unlink()
            return False

    def reset_to_defaults(self) -> bool:
        """
        設定をデフォルトにリセット

        Returns:
            リセット成功の可否（ファイルを使用しない場合は常に True）
        """
        self._reset_sections()
        self.system_info['last_modified'] = datetime.now().isoformat()
        return self.save_settings() if self.config_file else True

    def update_setting(self, section: str, key: str, value: Any) -> bool:
        """
        個別設定を更新

        Args:
            section: 設定セクション（database, logging, event_bus等）
            key: 設定キー
            value: 設定値

        Returns:
            更新成功の可否
        """
        if section not in SECTIONS:
            return False

        section_obj = getattr(self, section)
        if not hasattr(section_obj, key):
            return False

        setattr(section_obj, key, value)
        return self.save_settings() if self.config_file else True

    def get_setting(self, section: str, key: str, default: Any = None) -> Any:
        """
        個別設定を取得

        Args:
            section: 設定セクション
            key: 設定キー
            default: デフォルト値

        Returns:
            設定値
        """
        if section not in SECTIONS:
            return default
        return getattr(getattr(self, section), key, default)

    def validate_settings(self) -> Dict[str, List[str]]:
        """
        設定の妥当性を検証

        Returns:
            検証結果（セクション→エラーメッセージのリスト）
        """
        errors = {}

        # ログ設定の検証
        log_errors = []
        valid_levels = [level.value for level in LogLevel]
        if self.logging.level not in valid_levels:
            log_errors.append(f"無効なログレベル: {self.logging.level}")
        if self.logging.max_file_size_mb < 1:
            log_errors.append("ログファイルサイズは1MB以上である必要があります")
        if self.logging.backup_count < 1:
            log_errors.append("バックアップ数は1以上である必要があります")
        if log_errors:
            errors['logging'] = log_errors

        # 通知設定の検証
        notif_errors = []
        if self.notifications.upcoming_window_days < 1:
            notif_errors.append("期限接近の対象日数は1日以上である必要があります")
        if self.notifications.upcoming_limit < 1:
            notif_errors.append("期限接近タスクの取得件数は1以上である必要があります")
        if self.notifications.retention_days < 1:
            notif_errors.append("通知保持期間は1日以上である必要があります")
        if notif_errors:
            errors['notifications'] = notif_errors

        # イベントバス設定の検証
        bus_errors = []
        if self.event_bus.enabled and not self.event_bus.brokers:
            bus_errors.append("ブローカーが指定されていません")
        if self.event_bus.partitions < 1:
            bus_errors.append("パーティション数は1以上である必要があります")
        if bus_errors:
            errors['event_bus'] = bus_errors

        # 認証設定の検証
        sec_errors = []
        for name in ('access_token_ttl', 'refresh_token_ttl'):
            if not _DURATION_PATTERN.match(getattr(self.security, name) or ''):
                sec_errors.append(f"{name} の形式が不正です（例: 15m, 2h, 7d）")
        if self.security.password_min_length < 4:
            sec_errors.append("パスワード最小長は4文字以上である必要があります")
        if sec_errors:
            errors['security'] = sec_errors

        # パフォーマンス設定の検証
        perf_errors = []
        if self.performance.side_effect_workers < 1:
            perf_errors.append("副作用ワーカー数は1以上である必要があります")
        if not (1 <= self.performance.default_page_size <= self.performance.max_page_size):
            perf_errors.append("既定ページサイズは1以上かつ最大ページサイズ以下である必要があります")
        if perf_errors:
            errors['performance'] = perf_errors

        return errors

    def get_all_settings(self) -> Dict[str, Any]:
        """全設定を辞書として取得"""
        data = {section: asdict(getattr(self, section)) for section in SECTIONS}
        data['system_info'] = self.system_info
        return data

    def __str__(self) -> str:
        """文字列表現"""
        return f"SystemSettings(config_file='{self.config_file}')"

    def __repr__(self) -> str:
        """詳細文字列表現"""
        return f"SystemSettings(config_file='{self.config_file}', " \
               f"version='{self.system_info.get('version', '1.0.0')}')"


# グローバル設定インスタンス
_global_settings: Optional[SystemSettings] = None


def get_settings(config_file: str = None) -> SystemSettings:
    """
    グローバル設定インスタンスを取得

    Args:
        config_file: 設定ファイルパス（初回のみ使用）

    Returns:
        設定インスタンス
    """
    global _global_settings

    if _global_settings is None:
        _global_settings = SystemSettings(config_file)

    return _global_settings


def reset_global_settings() -> None:
    """グローバル設定インスタンスをリセット"""
    global _global_settings
    _global_settings = None
