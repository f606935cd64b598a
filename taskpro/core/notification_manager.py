"""
通知管理システム
アプリ内通知の作成・配信ハンドラー・受信者向け操作
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from ..models import Notification, NotificationType
from ..storage.data_store import DataStore
from ..storage.query import PageRequest, Pagination, Before
from .access_policy import AccessPolicy, Action
from .error_handler import NotFoundError, ValidationError
from .identity import Principal
from .logger import ProjectLogger, LogCategory


@dataclass
class NotificationList:
    """受信者の通知一覧（ページング・未読件数付き）"""

    items: List[Notification]
    pagination: Pagination
    unread_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'notifications': [n.to_dict() for n in self.items],
            'pagination': self.pagination.to_dict(),
            'unread_count': self.unread_count,
        }


class NotificationDispatcher:
    """
    通知ディスパッチャー

    notify() は1回の呼び出しで通知を1件だけ作成する（重複排除なし）。
    受信者が未指定、または操作者本人の場合は何もしない。
    """

    def __init__(self, store: DataStore, logger: ProjectLogger,
                 policy: Optional[AccessPolicy] = None, enabled: bool = True):
        """
        Args:
            store: データストア
            logger: ログ管理
            policy: アクセスポリシー（受信者本人の確認に使用）
            enabled: False の場合は通知を作成しない
        """
        self.store = store
        self.logger = logger
        self.policy = policy or AccessPolicy()
        self.enabled = enabled

        # 配信先コールバック
        self.notification_handlers: List[Callable[[Notification], None]] = []

        # 統計情報
        self._stats_lock = threading.Lock()
        self.stats = {
            'total_generated': 0,
            'total_delivered': 0,
            'skipped_self': 0,
            'last_cleanup_time': None,
            'errors': 0
        }

    # ==================== 通知ハンドラー管理 ====================

    def add_notification_handler(self, handler: Callable[[Notification], None]) -> None:
        """
        通知配信ハンドラーを追加（作成済み通知のプッシュ配信などに使用）

        Args:
            handler: 通知を受け取るコールバック関数
        """
        self.notification_handlers.append(handler)

    def remove_notification_handler(self, handler: Callable[[Notification], None]) -> bool:
        """通知配信ハンドラーを削除"""
        try:
            self.notification_handlers.remove(handler)
            return True
        except ValueError:
            return False

    def _deliver_notification(self, notification: Notification) -> None:
        """通知を配信（全ハンドラーに送信、失敗はログのみ）"""
        delivered_count = 0

        for handler in list(self.notification_handlers):
            try:
                handler(notification)
                delivered_count += 1
            except Exception as e:
                self.logger.error(
                    LogCategory.ERROR,
                    f"通知配信エラー: {getattr(handler, '__name__', handler)}",
                    module=__name__,
                    exception=e,
                    notification_id=notification.id
                )
                with self._stats_lock:
                    self.stats['errors'] += 1

        if delivered_count:
            with self._stats_lock:
                self.stats['total_delivered'] += delivered_count

    # ==================== 通知作成 ====================

    def notify(self,
               notification_type: str,
               recipient_id: Optional[str],
               title: str,
               message: str,
               metadata: Optional[Dict[str, Any]] = None,
               actor_id: Optional[str] = None) -> Optional[Notification]:
        """
        通知を作成

        Args:
            notification_type: 通知種別
            recipient_id: 受信者ユーザーID
            title: タイトル
            message: メッセージ
            metadata: 付加情報
            actor_id: 通知のきっかけとなった操作者

        Returns:
            作成された通知（作成しなかった場合はNone）

        Raises:
            ValidationError: 通知種別が不正な場合
        """
        if not NotificationType.is_valid(notification_type):
            raise ValidationError(f"不正な通知種別です: {notification_type}", field='type')

        if not self.enabled or not recipient_id:
            return None

        if recipient_id == actor_id:
            with self._stats_lock:
                self.stats['skipped_self'] += 1
            return None

        notification = Notification(notification_type, recipient_id, title, message, metadata)
        self.store.notifications.create(notification)

        with self._stats_lock:
            self.stats['total_generated'] += 1

        self.logger.debug(
            LogCategory.USER,
            f"通知作成: {notification_type}",
            module=__name__,
            notification_id=notification.id,
            recipient_id=recipient_id
        )

        self._deliver_notification(notification)
        return notification

    # ==================== 受信者向け操作 ====================

    def list_notifications(self, principal: Principal, is_read: Optional[bool] = None,
                           page: Optional[PageRequest] = None) -> NotificationList:
        """受信者本人の通知を新しい順に取得"""
        page = page or PageRequest()
        query: Dict[str, Any] = {'user_id': principal.id}
        if is_read is not None:
            query['is_read'] = is_read

        items, total = self.store.notifications.find_all(
            query, sort=[('created_at', 'desc'), ('id', 'desc')], page=page)
        unread = self.store.notifications.count({'user_id': principal.id, 'is_read': False})
        return NotificationList(items, Pagination.build(total, page), unread)

    def unread_count(self, principal: Principal) -> int:
        """未読件数を取得"""
        return self.store.notifications.count({'user_id': principal.id, 'is_read': False})

    def _load_own(self, principal: Principal, notification_id: str) -> Notification:
        notification = self.store.notifications.find_by_id(notification_id)
        if not notification:
            raise NotFoundError('Notification', notification_id, "通知が見つかりません")
        self.policy.authorize(principal, Action.MANAGE_NOTIFICATION, notification).enforce()
        return notification

    def mark_as_read(self, principal: Principal, notification_id: str) -> Notification:
        """
        通知を既読にする

        Raises:
            NotFoundError: 通知が存在しない場合
            ForbiddenError: 受信者本人でない場合
        """
        notification = self._load_own(principal, notification_id)
        if not notification.is_read:
            notification.mark_as_read()
            self.store.notifications.update(notification)
        return notification

    def mark_all_as_read(self, principal: Principal) -> int:
        """受信者本人の未読通知を全て既読にし、件数を返す"""
        unread, _ = self.store.notifications.find_all({'user_id': principal.id, 'is_read': False})
        for notification in unread:
            notification.mark_as_read()
            self.store.notifications.update(notification)
        return len(unread)

    def delete_notification(self, principal: Principal, notification_id: str) -> None:
        """
        通知を削除

        Raises:
            NotFoundError: 通知が存在しない場合
            ForbiddenError: 受信者本人でない場合
        """
        notification = self._load_own(principal, notification_id)
        self.store.notifications.delete(notification.id)

    def clear_all(self, principal: Principal) -> int:
        """受信者本人の通知を全て削除し、件数を返す"""
        return self.store.notifications.delete_where({'user_id': principal.id})

    # ==================== クリーンアップ ====================

    def purge_read_notifications(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """保持期間を過ぎた既読通知を削除"""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        deleted = self.store.notifications.delete_where({'is_read': True, 'created_at': Before(cutoff)})

        with self._stats_lock:
            self.stats['last_cleanup_time'] = datetime.now()

        if deleted:
            self.logger.info(
                LogCategory.DATA,
                f"通知クリーンアップ完了: {deleted}件削除",
                module=__name__,
                deleted_count=deleted
            )
        return deleted

    def get_statistics(self) -> Dict[str, Any]:
        """統計情報を取得"""
        with self._stats_lock:
            stats = dict(self.stats)
        if stats['last_cleanup_time']:
            stats['last_cleanup_time'] = stats['last_cleanup_time'].isoformat()
        stats['handlers'] = len(self.notification_handlers)
        return stats
