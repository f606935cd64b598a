"""
ユーザーモデル
ユーザーとリフレッシュトークン
"""

from datetime import datetime
from typing import Dict, Any, Optional
from .base import BaseEntity, UserRole, parse_datetime, format_datetime


class User(BaseEntity):
    """
    ユーザークラス

    パスワードはハッシュ値のみ保持する。外部に返す表現は to_public_dict() を使用し、
    ハッシュ値を含めない。
    """

    def __init__(self, name: str, email: str, password_hash: str, role: str = UserRole.EMPLOYEE):
        """
        ユーザーの初期化

        Args:
            name: 表示名
            email: メールアドレス（大文字小文字を区別せず一意）
            password_hash: パスワードハッシュ
            role: ロール（manager / employee）
        """
        super().__init__()
        self.name: str = name
        self.email: str = normalize_email(email)
        self.password_hash: str = password_hash
        self.role: str = role
        self.team_id: Optional[str] = None
        self.is_active: bool = True
        self.avatar: Optional[str] = None

    @property
    def is_manager(self) -> bool:
        """マネージャーかどうか"""
        return self.role == UserRole.MANAGER

    def to_public_dict(self) -> Dict[str, Any]:
        """パスワードハッシュを除いた辞書表現"""
        data = self.to_dict()
        data.pop('password_hash', None)
        return data

    def _to_dict_additional(self) -> Dict[str, Any]:
        """ユーザー固有属性を辞書に変換"""
        return {
            'name': self.name,
            'email': self.email,
            'password_hash': self.password_hash,
            'role': self.role,
            'team_id': self.team_id,
            'is_active': self.is_active,
            'avatar': self.avatar,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        """辞書からユーザーを復元"""
        user = cls(
            data['name'],
            data['email'],
            data.get('password_hash', ''),
            data.get('role', UserRole.EMPLOYEE)
        )
        user._restore_base(data)
        user.team_id = data.get('team_id')
        user.is_active = bool(data.get('is_active', True))
        user.avatar = data.get('avatar')
        return user

    def _validate_additional(self) -> bool:
        """ユーザー固有の妥当性検証"""
        if not self.name or not self.name.strip():
            return False

        if not self.email or '@' not in self.email:
            return False

        return UserRole.is_valid(self.role)

    def __str__(self) -> str:
        """文字列表現"""
        return f"User(name='{self.name}', role='{self.role}')"


class RefreshToken(BaseEntity):
    """リフレッシュトークン（不透明な文字列と有効期限）"""

    def __init__(self, token: str, user_id: str, expires_at: datetime):
        super().__init__()
        self.token: str = token
        self.user_id: str = user_id
        self.expires_at: datetime = expires_at
        self.is_revoked: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """有効期限切れかどうか"""
        return self.expires_at < (now or datetime.now())

    def _to_dict_additional(self) -> Dict[str, Any]:
        return {
            'token': self.token,
            'user_id': self.user_id,
            'expires_at': format_datetime(self.expires_at),
            'is_revoked': self.is_revoked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RefreshToken':
        token = cls(data['token'], data['user_id'], parse_datetime(data['expires_at']))
        token._restore_base(data)
        token.is_revoked = bool(data.get('is_revoked', False))
        return token

    def _validate_additional(self) -> bool:
        return bool(self.token) and bool(self.user_id) and self.expires_at is not None


def normalize_email(email: str) -> str:
    """比較・保存用にメールアドレスを正規化"""
    return (email or '').strip().lower()
