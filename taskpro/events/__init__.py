# ====================
# events/__init__.py
# ====================
"""
イベントバスパッケージ
発行／購読のインターフェース・プロセス内実装・通知コンシューマー
"""

from .bus import EventBus, InMemoryEventBus, BusMessage, BusUnavailableError
from .consumer import NotificationEventConsumer, DEFAULT_GROUP_ID

__all__ = [
    'EventBus',
    'InMemoryEventBus',
    'BusMessage',
    'BusUnavailableError',
    'NotificationEventConsumer',
    'DEFAULT_GROUP_ID'
]
