"""
基底エンティティクラス
タスク管理システムの全エンティティの基底クラスと列挙定数
"""

import os
import time
import uuid
from datetime import date, datetime
from typing import Dict, Any, Optional
from abc import ABC, abstractmethod


def generate_id() -> str:
    """
    時系列順に並ぶ一意IDを生成（UUIDv7レイアウト）

    先頭48ビットがミリ秒タイムスタンプのため、文字列比較でも生成順に並ぶ。

    Returns:
        正規表現のUUID文字列
    """
    timestamp_ms = time.time_ns() // 1_000_000
    value = (timestamp_ms & 0xFFFFFFFFFFFF) << 80
    value |= int.from_bytes(os.urandom(10), 'big') & ((1 << 80) - 1)
    # version 7 / RFC 4122 variant
    value &= ~(0xF << 76)
    value |= 0x7 << 76
    value &= ~(0x3 << 62)
    value |= 0x2 << 62
    return str(uuid.UUID(int=value))


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    ISO形式の文字列を日時に変換（None・日時はそのまま）

    タイムゾーン付きの値はローカル時刻のnaiveな日時に揃える。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value)
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """日時をISO形式の文字列に変換"""
    return value.isoformat() if value else None


class BaseEntity(ABC):
    """
    全エンティティの基底クラス
    共通属性（ID・作成日時・更新日時）と基本操作を提供
    """

    def __init__(self):
        """基底エンティティの初期化"""
        self.id: str = generate_id()
        self.created_at: datetime = datetime.now()
        self.updated_at: datetime = self.created_at

    def update_timestamp(self) -> None:
        """更新時刻を現在時刻に更新"""
        self.updated_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """
        エンティティを辞書形式に変換

        Returns:
            エンティティの辞書表現
        """
        base_dict = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat()
        }

        # サブクラスの追加属性を取得
        base_dict.update(self._to_dict_additional())

        return base_dict

    @abstractmethod
    def _to_dict_additional(self) -> Dict[str, Any]:
        """
        サブクラス固有の属性を辞書に変換
        サブクラスで実装必須

        Returns:
            サブクラス固有属性の辞書
        """

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaseEntity':
        """
        辞書からエンティティを復元

        Args:
            data: エンティティの辞書表現

        Returns:
            復元されたエンティティ
        """
        # 基底クラスでは実装せず、サブクラスで実装
        raise NotImplementedError("サブクラスで実装してください")

    def _restore_base(self, data: Dict[str, Any]) -> None:
        """ID・タイムスタンプを辞書から復元"""
        self.id = data.get('id') or self.id
        self.created_at = parse_datetime(data.get('created_at')) or self.created_at
        self.updated_at = parse_datetime(data.get('updated_at')) or self.updated_at

    def validate(self) -> bool:
        """
        エンティティの妥当性検証

        Returns:
            妥当性チェック結果
        """
        if not self.id:
            return False

        # サブクラス固有の検証
        return self._validate_additional()

    @abstractmethod
    def _validate_additional(self) -> bool:
        """
        サブクラス固有の妥当性検証
        サブクラスで実装必須

        Returns:
            妥当性チェック結果
        """

    def __str__(self) -> str:
        """文字列表現"""
        return f"{self.__class__.__name__}(id={self.id[:8]})"

    def __repr__(self) -> str:
        """詳細文字列表現"""
        return f"{self.__class__.__name__}(id='{self.id}', created_at='{self.created_at}')"

    def __eq__(self, other) -> bool:
        """等価性比較（IDベース）"""
        if not isinstance(other, BaseEntity):
            return False
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        """ハッシュ値（IDベース）"""
        return hash(self.id)


class StatusEnum:
    """ステータス管理用の基底クラス"""

    @classmethod
    def get_all_values(cls) -> list[str]:
        """全ステータス値を取得（定義順）"""
        values = []
        for klass in reversed(cls.__mro__):
            for key, value in vars(klass).items():
                if key.startswith('_') or not isinstance(value, str):
                    continue
                values.append(value)
        return values

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """ステータス値の妥当性チェック"""
        return value in cls.get_all_values()

    @classmethod
    def rank(cls, value: str) -> int:
        """定義順での位置（並び替え用、不明な値は-1）"""
        values = cls.get_all_values()
        return values.index(value) if value in values else -1


class UserRole(StatusEnum):
    """ユーザーロール定義"""
    MANAGER = "manager"
    EMPLOYEE = "employee"


class ProjectStatus(StatusEnum):
    """プロジェクトステータス定義"""
    PLANNING = "planning"
    ACTIVE = "active"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProjectPriority(StatusEnum):
    """プロジェクト優先度定義"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(StatusEnum):
    """タスクステータス定義"""
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"


class TaskPriority(StatusEnum):
    """タスク優先度定義（定義順が重要度順）"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SubtaskStatus(StatusEnum):
    """サブタスクステータス定義（レビュー段階なし）"""
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class CompletionTrackingMixin:
    """
    完了日時の追跡を行うMixin

    完了ステータスへの遷移で completed_at を設定し、完了以外のステータスでは
    同一ステータスの再設定であっても completed_at をクリアする。
    """

    COMPLETED_STATUS = "completed"

    status: str
    completed_at: Optional[datetime]

    def apply_status(self, new_status: str, now: Optional[datetime] = None) -> str:
        """
        ステータスを適用して完了日時を更新

        Args:
            new_status: 新しいステータス
            now: 現在時刻（省略時は datetime.now()）

        Returns:
            変更前のステータス
        """
        previous_status = self.status
        self.status = new_status
        if new_status == self.COMPLETED_STATUS:
            self.completed_at = now or datetime.now()
        else:
            self.completed_at = None
        return previous_status

    @property
    def is_completed(self) -> bool:
        """完了状態かどうか"""
        return self.status == self.COMPLETED_STATUS
