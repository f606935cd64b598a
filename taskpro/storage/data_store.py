"""
データ永続化基盤
コレクション単位のリポジトリとJSON形式のファイル永続化
"""

import json
import os
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Type, Mapping, Sequence, Generic, TypeVar

from ..models import (
    BaseEntity, User, RefreshToken, Team, Project, Task, Subtask, Notification,
    TaskPriority, ProjectPriority,
)
from .query import FilterSpec, SortSpec, PageRequest, matches, sort_entities


class DataStoreError(Exception):
    """データストア例外クラス"""
    pass


class RecordNotFoundError(DataStoreError):
    """更新対象のレコードが存在しない"""
    pass


class DuplicateKeyError(DataStoreError):
    """一意制約違反"""

    def __init__(self, collection: str, field: str, value: Any):
        super().__init__(f"{collection}.{field} が重複しています: {value}")
        self.collection = collection
        self.field = field
        self.value = value


class InvalidEntityError(DataStoreError):
    """妥当性検証に失敗したエンティティの保存"""
    pass


E = TypeVar('E', bound=BaseEntity)


class EntityRepository(Generic[E]):
    """
    エンティティ1種類分のリポジトリ

    レコードは辞書として保持し、読み出しのたびにエンティティを復元する。
    呼び出し側が返却値を変更しても update() するまでストアには反映されない。
    """

    def __init__(self,
                 store: 'DataStore',
                 collection: str,
                 entity_cls: Type[E],
                 unique_fields: Sequence[str] = (),
                 orderings: Optional[Mapping[str, Type]] = None):
        """
        リポジトリの初期化

        Args:
            store: 所属するデータストア
            collection: コレクション名（ファイル名にも使用）
            entity_cls: エンティティクラス
            unique_fields: 大文字小文字を区別せず一意であるべきフィールド
            orderings: 列挙フィールドの並び順定義
        """
        self._store = store
        self.collection = collection
        self.entity_cls = entity_cls
        self.unique_fields = tuple(unique_fields)
        self.orderings = dict(orderings or {})

    @property
    def _records(self) -> Dict[str, Dict[str, Any]]:
        return self._store._collections[self.collection]

    @property
    def _lock(self) -> threading.RLock:
        return self._store._locks[self.collection]

    def _restore(self, data: Dict[str, Any]) -> E:
        return self.entity_cls.from_dict(data)

    def find_by_id(self, entity_id: Optional[str]) -> Optional[E]:
        """IDでエンティティを取得（存在しない場合はNone）"""
        if not entity_id:
            return None
        with self._lock:
            data = self._records.get(entity_id)
            return self._restore(data) if data is not None else None

    def exists(self, entity_id: Optional[str]) -> bool:
        """エンティティが存在するか"""
        with self._lock:
            return bool(entity_id) and entity_id in self._records

    def find_all(self,
                 filter: FilterSpec = None,
                 sort: Optional[SortSpec] = None,
                 page: Optional[PageRequest] = None) -> Tuple[List[E], int]:
        """
        条件に一致するエンティティを取得

        Args:
            filter: 検索条件
            sort: 並び順（省略時は作成順）
            page: ページ指定（省略時は全件）

        Returns:
            (該当ページのエンティティ, 総件数)
        """
        with self._lock:
            entities = [self._restore(data) for data in self._records.values()]

        selected = [entity for entity in entities if matches(entity, filter)]
        selected = sort_entities(selected, sort or [('created_at', 'asc'), ('id', 'asc')], self.orderings)
        total = len(selected)

        if page is not None:
            selected = selected[page.offset:page.offset + page.limit]
        return selected, total

    def find_one(self, filter: FilterSpec) -> Optional[E]:
        """条件に一致する最初のエンティティを取得"""
        items, _ = self.find_all(filter)
        return items[0] if items else None

    def count(self, filter: FilterSpec = None) -> int:
        """条件に一致するエンティティ数を取得"""
        if filter is None:
            with self._lock:
                return len(self._records)
        _, total = self.find_all(filter)
        return total

    def create(self, entity: E) -> E:
        """
        エンティティを新規保存

        Raises:
            InvalidEntityError: 妥当性検証に失敗した場合
            DuplicateKeyError: IDまたは一意フィールドが重複する場合
        """
        if not entity.validate():
            raise InvalidEntityError(f"{self.collection} の妥当性検証に失敗しました: {entity}")

        with self._lock:
            if entity.id in self._records:
                raise DuplicateKeyError(self.collection, 'id', entity.id)
            self._check_unique(entity)
            self._records[entity.id] = entity.to_dict()
            self._store._persist(self.collection)
        return entity

    def update(self, entity: E) -> E:
        """
        既存エンティティを上書き保存

        Raises:
            RecordNotFoundError: 対象が存在しない場合
        """
        if not entity.validate():
            raise InvalidEntityError(f"{self.collection} の妥当性検証に失敗しました: {entity}")

        with self._lock:
            if entity.id not in self._records:
                raise RecordNotFoundError(f"{self.collection} に {entity.id} は存在しません")
            self._check_unique(entity)
            entity.update_timestamp()
            self._records[entity.id] = entity.to_dict()
            self._store._persist(self.collection)
        return entity

    def delete(self, entity_id: str) -> bool:
        """エンティティを削除"""
        with self._lock:
            if entity_id not in self._records:
                return False
            del self._records[entity_id]
            self._store._persist(self.collection)
            return True

    def delete_where(self, filter: FilterSpec) -> int:
        """条件に一致するエンティティを一括削除し、削除件数を返す"""
        with self._lock:
            targets = [
                entity_id for entity_id, data in self._records.items()
                if matches(self._restore(data), filter)
            ]
            for entity_id in targets:
                del self._records[entity_id]
            if targets:
                self._store._persist(self.collection)
            return len(targets)

    def _check_unique(self, entity: E) -> None:
        for field in self.unique_fields:
            value = getattr(entity, field, None)
            if value is None:
                continue
            normalized = str(value).lower()
            for entity_id, data in self._records.items():
                if entity_id != entity.id and str(data.get(field, '')).lower() == normalized:
                    raise DuplicateKeyError(self.collection, field, value)


class DataStore:
    """
    データストアクラス

    data_dir を指定した場合はコレクションごとに JSON ファイルへ永続化する
    （一時ファイル経由のアトミック書き込みと .backup ファイルによる復旧）。
    指定しない場合はメモリ上のみで動作する。
    """

    COLLECTIONS = (
        'users', 'refresh_tokens', 'teams', 'projects', 'tasks', 'subtasks', 'notifications'
    )

    def __init__(self, data_dir: Optional[str] = None):
        """
        データストアの初期化

        Args:
            data_dir: データディレクトリパス（None でメモリのみ）
        """
        self.data_dir: Optional[Path] = Path(data_dir) if data_dir else None
        if self.data_dir:
            self.data_dir.mkdir(parents=True, exist_ok=True)

        # ロック機構
        self._locks: Dict[str, threading.RLock] = {
            name: threading.RLock() for name in self.COLLECTIONS + ('metadata',)
        }

        # メタデータ管理
        self.metadata = self._load_metadata()

        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {
            name: self._load_json_file(name) for name in self.COLLECTIONS
        }

        self.users: EntityRepository[User] = EntityRepository(
            self, 'users', User, unique_fields=('email',))
        self.refresh_tokens: EntityRepository[RefreshToken] = EntityRepository(
            self, 'refresh_tokens', RefreshToken, unique_fields=('token',))
        self.teams: EntityRepository[Team] = EntityRepository(self, 'teams', Team)
        self.projects: EntityRepository[Project] = EntityRepository(
            self, 'projects', Project, orderings={'priority': ProjectPriority})
        self.tasks: EntityRepository[Task] = EntityRepository(
            self, 'tasks', Task, orderings={'priority': TaskPriority})
        self.subtasks: EntityRepository[Subtask] = EntityRepository(self, 'subtasks', Subtask)
        self.notifications: EntityRepository[Notification] = EntityRepository(
            self, 'notifications', Notification)

    @property
    def is_persistent(self) -> bool:
        """ファイル永続化が有効か"""
        return self.data_dir is not None

    def _file_path(self, name: str) -> Path:
        return self.data_dir / f"{name}.json"

    def _load_metadata(self) -> Dict[str, Any]:
        """メタデータを読み込み"""
        if self.data_dir and self._file_path('metadata').exists():
            try:
                with open(self._file_path('metadata'), 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError):
                # メタデータ読み込み失敗時はデフォルト値を使用
                pass

        default_metadata = {
            'created_at': datetime.now().isoformat(),
            'last_modified': datetime.now().isoformat(),
            'version': '1.0.0',
            'file_versions': {name: 1 for name in self.COLLECTIONS},
        }

        self._save_metadata(default_metadata)
        return default_metadata

    def _save_metadata(self, metadata: Dict[str, Any]) -> None:
        """メタデータを保存"""
        metadata['last_modified'] = datetime.now().isoformat()
        if not self.data_dir:
            return

        try:
            with open(self._file_path('metadata'), 'w', encoding='utf-8') as f:
                json.dump(metadata, f, ensure_ascii=False, indent=2)
        except IOError as e:
            raise DataStoreError(f"メタデータ保存エラー: {e}")

    def _load_json_file(self, name: str) -> Dict[str, Any]:
        """
        JSONファイルを安全に読み込み

        Args:
            name: コレクション名

        Returns:
            読み込まれたデータ
        """
        if not self.data_dir:
            return {}

        file_path = self._file_path(name)
        with self._locks[name]:
            if not file_path.exists():
                return {}

            try:
                with open(file_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                    return data if isinstance(data, dict) else {}
            except (json.JSONDecodeError, IOError) as e:
                # バックアップファイルから復旧を試行
                backup_path = self._get_backup_path(file_path)
                if backup_path.exists():
                    try:
                        with open(backup_path, 'r', encoding='utf-8') as f:
                            return json.load(f)
                    except (json.JSONDecodeError, IOError):
                        pass

                raise DataStoreError(f"ファイル読み込みエラー {file_path}: {e}")

    def _persist(self, name: str) -> None:
        """コレクションをファイルへ書き出し（メモリのみの場合は何もしない）"""
        if not self.data_dir:
            return
        self._save_json_file(self._file_path(name), self._collections[name], name)

    def _save_json_file(self, file_path: Path, data: Dict[str, Any], name: str) -> None:
        """
        JSONファイルを安全に保存

        Args:
            file_path: ファイルパス
            data: 保存するデータ
            name: コレクション名（ロック用）
        """
        with self._locks[name]:
            # バックアップを作成
            if file_path.exists():
                shutil.copy2(file_path, self._get_backup_path(file_path))

            # 一時ファイルに書き込み後、アトミックに移動
            temp_file = None
            try:
                with tempfile.NamedTemporaryFile(
                    mode='w',
                    encoding='utf-8',
                    dir=file_path.parent,
                    delete=False,
                    suffix='.tmp'
                ) as f:
                    temp_file = Path(f.name)
                    json.dump(data, f, ensure_ascii=False, indent=2)

                os.replace(temp_file, file_path)

                # メタデータを更新
                with self._locks['metadata']:
                    versions = self.metadata.setdefault('file_versions', {})
                    versions[name] = versions.get(name, 1) + 1
                    self._save_metadata(self.metadata)

            except (IOError, OSError) as e:
                # 一時ファイルのクリーンアップ
                if temp_file and temp_file.exists():
                    temp_file.unlink()
                raise DataStoreError(f"ファイル保存エラー {file_path}: {e}")

    def _get_backup_path(self, file_path: Path) -> Path:
        """バックアップファイルパスを取得"""
        return file_path.with_suffix(f'{file_path.suffix}.backup')

    # データ整合性チェック
    def validate_data_integrity(self) -> Dict[str, Any]:
        """
        参照整合性をチェック

        Returns:
            整合性チェック結果
        """
        result = {
            'valid': True,
            'errors': [],
            'warnings': [],
            'statistics': self.get_counts()
        }

        users = self._collections['users']
        teams = self._collections['teams']
        projects = self._collections['projects']
        tasks = self._collections['tasks']

        for project_id, project in projects.items():
            if project.get('team_id') not in teams:
                result['errors'].append(f"プロジェクト {project_id} が存在しないチーム {project.get('team_id')} を参照")

        for task_id, task in tasks.items():
            project_id = task.get('project_id')
            if project_id and project_id not in projects:
                result['errors'].append(f"タスク {task_id} が存在しないプロジェクト {project_id} を参照")
            if task.get('is_personal') and (project_id or task.get('assignee_id') != task.get('created_by_id')):
                result['errors'].append(f"個人タスク {task_id} の不変条件が崩れています")
            assignee_id = task.get('assignee_id')
            if assignee_id and assignee_id not in users:
                result['warnings'].append(f"タスク {task_id} の担当者 {assignee_id} が存在しません")

        for subtask_id, subtask in self._collections['subtasks'].items():
            if subtask.get('task_id') not in tasks:
                result['errors'].append(f"サブタスク {subtask_id} が存在しないタスク {subtask.get('task_id')} を参照")

        for user_id, user in users.items():
            team_id = user.get('team_id')
            if team_id and team_id not in teams:
                result['warnings'].append(f"ユーザー {user_id} が存在しないチーム {team_id} に所属しています")

        for notification_id, notification in self._collections['notifications'].items():
            if notification.get('user_id') not in users:
                result['warnings'].append(f"通知 {notification_id} の受信者が存在しません")

        if result['errors']:
            result['valid'] = False

        return result

    def cleanup_orphaned_data(self) -> Dict[str, int]:
        """
        孤立データをクリーンアップ

        親タスクのないサブタスク、存在しないプロジェクトを参照するタスク、
        受信者のいない通知、ユーザーのいないリフレッシュトークンを削除する。
        """
        with self._locks['tasks']:
            orphaned_tasks = [
                task_id for task_id, task in self._collections['tasks'].items()
                if task.get('project_id') and task['project_id'] not in self._collections['projects']
            ]
        for task_id in orphaned_tasks:
            self.subtasks.delete_where({'task_id': task_id})
            self.tasks.delete(task_id)

        tasks = set(self._collections['tasks'])
        users = set(self._collections['users'])

        result = {
            'deleted_tasks': len(orphaned_tasks),
            'deleted_subtasks': self._delete_orphans('subtasks', 'task_id', tasks),
            'deleted_notifications': self._delete_orphans('notifications', 'user_id', users),
            'deleted_refresh_tokens': self._delete_orphans('refresh_tokens', 'user_id', users),
        }
        return result

    def _delete_orphans(self, name: str, field: str, valid_ids: set) -> int:
        with self._locks[name]:
            records = self._collections[name]
            orphaned = [key for key, data in records.items() if data.get(field) not in valid_ids]
            for key in orphaned:
                del records[key]
            if orphaned:
                self._persist(name)
            return len(orphaned)

    # ユーティリティメソッド
    def get_counts(self) -> Dict[str, int]:
        """コレクションごとの件数"""
        counts = {}
        for name in self.COLLECTIONS:
            with self._locks[name]:
                counts[name] = len(self._collections[name])
        return counts

    def get_data_statistics(self) -> Dict[str, Any]:
        """データ統計情報を取得"""
        file_sizes = {}
        if self.data_dir:
            for name in self.COLLECTIONS:
                file_path = self._file_path(name)
                file_sizes[name] = file_path.stat().st_size if file_path.exists() else 0

        return {
            'counts': self.get_counts(),
            'file_sizes': file_sizes,
            'total_size': sum(file_sizes.values()),
            'metadata': dict(self.metadata),
            'data_dir': str(self.data_dir) if self.data_dir else None
        }

    def __str__(self) -> str:
        """文字列表現"""
        return f"DataStore(data_dir='{self.data_dir}')"

    def __repr__(self) -> str:
        """詳細文字列表現"""
        return f"DataStore(data_dir='{self.data_dir}', counts={self.get_counts()})"
