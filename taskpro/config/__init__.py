# ====================
# config/__init__.py
# ====================
"""
設定管理パッケージ
システム設定・環境設定
"""

from .settings import (
    SystemSettings, DatabaseSettings, LoggingSettings,
    NotificationSettings, EventBusSettings, SecuritySettings,
    PerformanceSettings, LogLevel, parse_duration,
    get_settings, reset_global_settings
)

__version__ = "1.0.0"

__all__ = [
    # メイン設定クラス
    'SystemSettings',

    # 設定データクラス
    'DatabaseSettings',
    'LoggingSettings',
    'NotificationSettings',
    'EventBusSettings',
    'SecuritySettings',
    'PerformanceSettings',

    # 列挙型
    'LogLevel',

    # ユーティリティ関数
    'parse_duration',
    'get_settings',
    'reset_global_settings'
]
