"""
認証・実行主体の解決
パスワードハッシュ、アクセストークン／リフレッシュトークンの発行と検証
"""

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..models import User, RefreshToken, UserRole, generate_id, normalize_email
from ..storage.data_store import DataStore
from .error_handler import ValidationError, ConflictError, UnauthenticatedError
from .logger import ProjectLogger, LogCategory, AuditAction


@dataclass(frozen=True)
class Principal:
    """操作を実行する主体（ユーザーID・ロール・所属チーム）"""

    id: str
    role: str
    team_id: Optional[str] = None
    name: str = ""
    email: str = ""

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @classmethod
    def from_user(cls, user: User) -> 'Principal':
        return cls(id=user.id, role=user.role, team_id=user.team_id, name=user.name, email=user.email)


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b'=').decode('ascii')


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + '=' * (-len(text) % 4))


class IdentityProvider:
    """
    資格情報とトークンの管理

    アクセストークンは HMAC-SHA256 で署名したクレーム（id / email / role /
    team_id / exp）。リフレッシュトークンは時系列順の不透明なIDで、保存は
    呼び出し側（AuthService）が行う。
    """

    HASH_ALGORITHM = "pbkdf2_sha256"

    def __init__(self,
                 secret: Optional[str] = None,
                 access_token_ttl: timedelta = timedelta(minutes=15),
                 refresh_token_ttl: timedelta = timedelta(days=7),
                 hash_iterations: int = 120000,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            secret: 署名鍵（省略時はプロセスごとに生成）
            access_token_ttl: アクセストークンの有効期間
            refresh_token_ttl: リフレッシュトークンの有効期間
            hash_iterations: PBKDF2 の反復回数
            clock: 現在時刻の取得関数
        """
        self._secret = (secret or secrets.token_hex(32)).encode('utf-8')
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.hash_iterations = hash_iterations
        self._clock = clock

    # パスワード
    def hash_password(self, password: str) -> str:
        """パスワードをハッシュ化（algorithm$iterations$salt$hash 形式）"""
        salt = secrets.token_hex(16)
        digest = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('ascii'), self.hash_iterations)
        return f"{self.HASH_ALGORITHM}${self.hash_iterations}${salt}${digest.hex()}"

    def verify_password(self, password: str, password_hash: str) -> bool:
        """パスワードをハッシュと照合"""
        try:
            algorithm, iterations, salt, stored = password_hash.split('$')
        except (AttributeError, ValueError):
            return False
        if algorithm != self.HASH_ALGORITHM:
            return False
        digest = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('ascii'), int(iterations))
        return hmac.compare_digest(digest.hex(), stored)

    # アクセストークン
    def issue_access_token(self, user: User) -> str:
        """短期間有効のアクセストークンを発行"""
        now = self._clock()
        claims = {
            'id': user.id,
            'email': user.email,
            'role': user.role,
            'team_id': user.team_id,
            'iat': int(now.timestamp()),
            'exp': int((now + self.access_token_ttl).timestamp()),
        }
        payload = _b64encode(json.dumps(claims, separators=(',', ':')).encode('utf-8'))
        return f"{payload}.{self._sign(payload)}"

    def verify_access_token(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """
        アクセストークンを検証

        Returns:
            クレーム（署名不正・形式不正・期限切れの場合はNone）
        """
        if not token or token.count('.') != 1:
            return None
        payload, signature = token.split('.')
        if not hmac.compare_digest(self._sign(payload).encode('ascii'), signature.encode('utf-8')):
            return None
        try:
            claims = json.loads(_b64decode(payload))
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(claims, dict) or claims.get('exp', 0) <= self._clock().timestamp():
            return None
        return claims

    def _sign(self, payload: str) -> str:
        return _b64encode(hmac.new(self._secret, payload.encode('utf-8'), hashlib.sha256).digest())

    # リフレッシュトークン
    def issue_refresh_token(self) -> str:
        """不透明なリフレッシュトークンを発行"""
        return generate_id()

    def refresh_token_expiry(self) -> datetime:
        """リフレッシュトークンの有効期限"""
        return self._clock() + self.refresh_token_ttl

    def now(self) -> datetime:
        return self._clock()


@dataclass
class AuthResult:
    """認証結果（ユーザーとトークン）"""

    user: User
    access_token: str
    refresh_token: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'user': self.user.to_public_dict(),
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
        }


class AuthService:
    """ユーザー登録・ログイン・トークン更新・ログアウト"""

    def __init__(self,
                 store: DataStore,
                 provider: IdentityProvider,
                 logger: ProjectLogger,
                 password_min_length: int = 6):
        self.store = store
        self.provider = provider
        self.logger = logger
        self.password_min_length = password_min_length

    def register(self, name: str, email: str, password: str, role: Optional[str] = None) -> AuthResult:
        """
        ユーザーを登録してトークンを発行

        Args:
            name: 表示名（2〜100文字）
            email: メールアドレス
            password: パスワード
            role: ロール（省略時は employee）

        Raises:
            ValidationError: 入力値が不正な場合
            ConflictError: メールアドレスが登録済みの場合
        """
        name = (name or '').strip()
        email = normalize_email(email)
        role = role or UserRole.EMPLOYEE

        if not (2 <= len(name) <= 100):
            raise ValidationError("名前は2〜100文字で入力してください", field='name')
        if '@' not in email or email.startswith('@') or email.endswith('@'):
            raise ValidationError("メールアドレスの形式が不正です", field='email', value=email)
        if not password or len(password) < self.password_min_length:
            raise ValidationError(
                f"パスワードは{self.password_min_length}文字以上で入力してください", field='password')
        if not UserRole.is_valid(role):
            raise ValidationError("ロールは manager または employee を指定してください", field='role', value=role)

        if self.store.users.find_one({'email': email}):
            raise ConflictError("このメールアドレスは既に登録されています", field='email')

        user = User(name, email, self.provider.hash_password(password), role)
        self.store.users.create(user)

        self.logger.audit(AuditAction.REGISTER, 'User', user.id, user.name, user=user.id, role=user.role)
        return self._issue_tokens(user)

    def login(self, email: str, password: str) -> AuthResult:
        """
        ログインしてトークンを発行

        Raises:
            UnauthenticatedError: 資格情報が不正、または無効化されたユーザーの場合
        """
        user = self.store.users.find_one({'email': normalize_email(email)})
        if not user or not self.provider.verify_password(password or '', user.password_hash):
            self.logger.warning(LogCategory.SECURITY, "ログインに失敗しました", module=__name__)
            raise UnauthenticatedError("メールアドレスまたはパスワードが正しくありません")
        if not user.is_active:
            raise UnauthenticatedError("このユーザーは無効化されています")

        self.logger.audit(AuditAction.LOGIN, 'User', user.id, user.name, user=user.id)
        return self._issue_tokens(user)

    def refresh(self, refresh_token: str) -> str:
        """
        リフレッシュトークンから新しいアクセストークンを発行

        期限切れのトークンは削除してから拒否する。

        Raises:
            ValidationError: トークンが指定されていない場合
            UnauthenticatedError: 不明・失効・期限切れ、またはユーザーが存在しない場合
        """
        if not refresh_token:
            raise ValidationError("リフレッシュトークンが必要です", field='refresh_token')

        stored = self.store.refresh_tokens.find_one({'token': refresh_token})
        if not stored or stored.is_revoked:
            raise UnauthenticatedError("リフレッシュトークンが無効または失効しています")

        if stored.is_expired(self.provider.now()):
            self.store.refresh_tokens.delete(stored.id)
            raise UnauthenticatedError("リフレッシュトークンの有効期限が切れています")

        user = self.store.users.find_by_id(stored.user_id)
        if not user:
            raise UnauthenticatedError("ユーザーが見つかりません")

        return self.provider.issue_access_token(user)

    def logout(self, refresh_token: Optional[str], user_id: str = "system") -> int:
        """リフレッシュトークンを削除（削除件数を返す）"""
        if not refresh_token:
            return 0
        deleted = self.store.refresh_tokens.delete_where({'token': refresh_token})
        self.logger.audit(AuditAction.LOGOUT, 'RefreshToken', '-', '-', user=user_id, deleted=deleted)
        return deleted

    def resolve_principal(self, access_token: str) -> Principal:
        """
        アクセストークンから実行主体を解決（最新のユーザー情報を使用）

        Raises:
            UnauthenticatedError: トークン不正、またはユーザーが存在しない・無効な場合
        """
        claims = self.provider.verify_access_token(access_token)
        if not claims:
            raise UnauthenticatedError("アクセストークンが無効または期限切れです")

        user = self.store.users.find_by_id(claims.get('id'))
        if not user or not user.is_active:
            raise UnauthenticatedError("ユーザーが見つからないか無効化されています")

        return Principal.from_user(user)

    def _issue_tokens(self, user: User) -> AuthResult:
        token = RefreshToken(
            self.provider.issue_refresh_token(),
            user.id,
            self.provider.refresh_token_expiry()
        )
        self.store.refresh_tokens.create(token)
        return AuthResult(user, self.provider.issue_access_token(user), token.token)
