"""
タスク管理統合機能
認証・ユーザー・チーム・プロジェクト・タスク・通知の統合管理
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..config.settings import SystemSettings, get_settings
from ..models import (
    User, Team, Project, Task, Subtask, UserRole, ProjectStatus, ProjectPriority, TaskStatus,
    TaskPatch, SubtaskPatch, ProjectPatch, TeamPatch, UserPatch
)
from ..storage.data_store import DataStore
from ..storage.query import AnyOf, Contains, PageRequest, PageResult
from ..events.bus import EventBus, InMemoryEventBus
from ..events.consumer import NotificationEventConsumer
from .access_policy import AccessPolicy, Action, UserUpdateContext
from .error_handler import (
    ErrorHandler, NotFoundError, ValidationError, ConflictError, handle_errors
)
from .event_publisher import EventPublisher
from .identity import AuthResult, AuthService, IdentityProvider, Principal
from .logger import ProjectLogger, LogCategory, AuditAction
from .notification_manager import NotificationDispatcher, NotificationList
from .side_effects import SideEffectQueue
from .task_lifecycle import TaskDetail, TaskLifecycleManager, as_patch


@dataclass
class TeamDetail:
    """チーム詳細（メンバー・プロジェクト付き）"""

    team: Team
    members: List[User] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.team.to_dict()
        data['members'] = [m.to_public_dict() for m in self.members]
        data['projects'] = [p.to_dict() for p in self.projects]
        return data


@dataclass
class ProjectDetail:
    """プロジェクト詳細（タスクと進捗付き）"""

    project: Project
    tasks: List[Task] = field(default_factory=list)

    @property
    def completed_tasks(self) -> int:
        return sum(1 for t in self.tasks if t.is_completed)

    @property
    def progress(self) -> int:
        if not self.tasks:
            return 0
        return int(self.completed_tasks / len(self.tasks) * 100 + 0.5)

    def task_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in TaskStatus.get_all_values()}
        for task in self.tasks:
            counts[task.status] = counts.get(task.status, 0) + 1
        counts['total'] = len(self.tasks)
        return counts

    def to_dict(self, include_tasks: bool = True) -> Dict[str, Any]:
        data = self.project.to_dict()
        if include_tasks:
            data['tasks'] = [t.to_dict() for t in self.tasks]
        data['task_counts'] = self.task_counts()
        data['progress'] = self.progress
        data['total_tasks'] = len(self.tasks)
        data['completed_tasks'] = self.completed_tasks
        return data


class TaskManagementSystem:
    """
    タスク管理システム統合クラス

    各コンポーネントを組み立て、サービス境界の操作を提供する。全ての公開操作は
    handle_errors で保護され、想定内のエラーはそのまま、想定外の例外は
    InternalError として呼び出し側に届く。
    """

    def __init__(self,
                 settings: Optional[SystemSettings] = None,
                 data_store: Optional[DataStore] = None,
                 logger: Optional[ProjectLogger] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], datetime] = datetime.now):
        """
        システムの初期化

        Args:
            settings: システム設定（省略時はグローバル設定）
            data_store: データストア（省略時は設定から生成）
            logger: ログ管理
            event_bus: イベントバス（省略時は設定が有効ならプロセス内バス）
            clock: 現在時刻の取得関数
        """
        self.settings = settings or get_settings()
        self.clock = clock

        self.logger = logger or ProjectLogger(
            max_entries_in_memory=self.settings.logging.max_memory_entries,
            enable_audit=self.settings.logging.enable_audit_log
        )
        self.error_handler = ErrorHandler(self.logger)

        if data_store is None:
            database = self.settings.database
            data_store = DataStore(database.data_directory if database.persist_to_disk else None)
        self.data_store = data_store

        security = self.settings.security
        self.identity = IdentityProvider(
            secret=security.token_secret or None,
            access_token_ttl=security.access_token_lifetime,
            refresh_token_ttl=security.refresh_token_lifetime,
            hash_iterations=security.password_hash_iterations,
            clock=clock
        )
        self.auth = AuthService(self.data_store, self.identity, self.logger, security.password_min_length)
        self.policy = AccessPolicy()

        bus_settings = self.settings.event_bus
        if event_bus is None and bus_settings.enabled:
            event_bus = InMemoryEventBus(bus_settings.partitions, self.logger, bus_settings.client_id)
        self.event_bus = event_bus

        self.notifications = NotificationDispatcher(
            self.data_store, self.logger, self.policy, enabled=self.settings.notifications.enabled)
        self.publisher = EventPublisher(
            self.event_bus, self.logger,
            task_topic=bus_settings.task_topic,
            notification_topic=bus_settings.notification_topic,
            clock=clock
        )
        self.side_effects = SideEffectQueue(self.logger, self.settings.performance.side_effect_workers)
        self.tasks = TaskLifecycleManager(
            self.data_store, self.policy, self.notifications, self.publisher,
            self.side_effects, self.logger,
            upcoming_window_days=self.settings.notifications.upcoming_window_days,
            upcoming_limit=self.settings.notifications.upcoming_limit,
            clock=clock
        )

        self.consumer: Optional[NotificationEventConsumer] = None
        if self.event_bus is not None and bus_settings.consumer_enabled:
            self.consumer = NotificationEventConsumer(
                self.event_bus, self.notifications, self.logger,
                topic=bus_settings.task_topic, group_id=bus_settings.consumer_group)

        self.is_running = False

        self.logger.info(
            LogCategory.SYSTEM,
            "タスク管理システム初期化完了",
            module=__name__,
            persistent=self.data_store.is_persistent,
            event_bus=str(self.event_bus)
        )

    # ==================== ライフサイクル ====================

    def start(self) -> None:
        """イベントバスに接続し、有効ならコンシューマーを開始"""
        if self.is_running:
            return
        if self.event_bus is not None:
            self.event_bus.connect()
        if self.consumer is not None:
            self.consumer.start()
        self.is_running = True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """投入済みの後続処理の完了を待機"""
        return self.side_effects.flush(timeout)

    def stop(self) -> None:
        """後続処理を完了させてからイベントバスを切断"""
        timeout = self.settings.performance.shutdown_timeout_seconds
        self.side_effects.shutdown(timeout)
        if self.consumer is not None:
            self.consumer.stop()
        if self.event_bus is not None:
            self.event_bus.disconnect()
        self.is_running = False
        self.logger.info(LogCategory.SYSTEM, "タスク管理システム停止", module=__name__)

    # ==================== 共通 ====================

    def _page(self, page: int = 1, limit: Optional[int] = None) -> PageRequest:
        performance = self.settings.performance
        limit = performance.default_page_size if limit is None else limit
        try:
            return PageRequest(page, min(limit, performance.max_page_size))
        except (TypeError, ValueError) as e:
            raise ValidationError(str(e))

    @staticmethod
    def _check_name(value: Any, field_name: str = 'name', min_length: int = 1) -> str:
        name = value.strip() if isinstance(value, str) else ''
        if not (min_length <= len(name) <= 100):
            raise ValidationError(f"{field_name} は{min_length}〜100文字で入力してください", field=field_name)
        return name

    def _load_user(self, user_id: str) -> User:
        user = self.data_store.users.find_by_id(user_id)
        if not user:
            raise NotFoundError('User', user_id, "ユーザーが見つかりません")
        return user

    def _load_team(self, team_id: str) -> Team:
        team = self.data_store.teams.find_by_id(team_id)
        if not team:
            raise NotFoundError('Team', team_id, "チームが見つかりません")
        return team

    def _load_project(self, project_id: str) -> Project:
        project = self.data_store.projects.find_by_id(project_id)
        if not project:
            raise NotFoundError('Project', project_id, "プロジェクトが見つかりません")
        return project

    # ==================== 認証 ====================

    @handle_errors
    def register(self, name: str, email: str, password: str, role: Optional[str] = None) -> AuthResult:
        """ユーザー登録"""
        return self.auth.register(name, email, password, role)

    @handle_errors
    def login(self, email: str, password: str) -> AuthResult:
        """ログイン"""
        return self.auth.login(email, password)

    @handle_errors
    def refresh_token(self, refresh_token: str) -> str:
        """アクセストークンの再発行"""
        return self.auth.refresh(refresh_token)

    @handle_errors
    def logout(self, refresh_token: Optional[str], principal: Optional[Principal] = None) -> int:
        """ログアウト（リフレッシュトークンを削除）"""
        return self.auth.logout(refresh_token, principal.id if principal else "system")

    @handle_errors
    def authenticate(self, access_token: str) -> Principal:
        """アクセストークンから実行主体を解決"""
        return self.auth.resolve_principal(access_token)

    @handle_errors
    def get_profile(self, principal: Principal) -> User:
        """自分のユーザー情報を取得"""
        return self._load_user(principal.id)

    # ==================== ユーザー ====================

    @handle_errors
    def list_users(self, principal: Principal, role: Optional[str] = None, team_id: Optional[str] = None,
                   search: Optional[str] = None, page: int = 1, limit: Optional[int] = None) -> PageResult:
        """ユーザー一覧（作成日時の降順）"""
        request = self._page(page, limit)
        query: Dict[str, Any] = {}
        if role:
            query['role'] = role
        if team_id:
            query['team_id'] = team_id
        filter_spec: Any = query
        if search:
            filter_spec = AnyOf(
                dict(query, name=Contains(search)),
                dict(query, email=Contains(search)),
            )
        items, total = self.data_store.users.find_all(
            filter_spec, sort=[('created_at', 'desc'), ('id', 'desc')], page=request)
        return PageResult.build(items, total, request)

    @handle_errors
    def get_user(self, principal: Principal, user_id: str) -> User:
        """ユーザーを取得"""
        return self._load_user(user_id)

    @handle_errors
    def list_employees(self, principal: Principal, team_id: Optional[str] = None) -> List[User]:
        """有効な従業員を名前順で取得"""
        query: Dict[str, Any] = {'role': UserRole.EMPLOYEE, 'is_active': True}
        if team_id:
            query['team_id'] = team_id
        items, _ = self.data_store.users.find_all(query, sort=[('name', 'asc'), ('id', 'asc')])
        return items

    @handle_errors
    def update_user(self, principal: Principal, user_id: str,
                    patch: Union[UserPatch, Mapping[str, Any]]) -> User:
        """
        ユーザーを更新

        従業員は自分の名前・アバターのみ変更できる。

        Raises:
            NotFoundError: ユーザー・チームが存在しない場合
            ForbiddenError: 権限がない場合
            ValidationError: 入力値が不正な場合
        """
        patch = as_patch(UserPatch, patch)
        user = self._load_user(user_id)
        self.policy.authorize(principal, Action.UPDATE_USER, UserUpdateContext(user, patch)).enforce()

        values = patch.provided()
        if 'name' in values:
            values['name'] = self._check_name(values['name'], min_length=2)
        if 'role' in values and not UserRole.is_valid(values['role']):
            raise ValidationError("ロールは manager または employee を指定してください", field='role')
        if 'is_active' in values and not isinstance(values['is_active'], bool):
            raise ValidationError("is_active は真偽値で指定してください", field='is_active')
        if values.get('team_id'):
            self._load_team(values['team_id'])

        before = user.to_public_dict()
        for name, value in values.items():
            setattr(user, name, value)
        self.data_store.users.update(user)

        self.logger.audit(
            AuditAction.UPDATE, 'User', user.id, user.name,
            user=principal.id,
            before_data=before,
            after_data=user.to_public_dict()
        )
        return user

    @handle_errors
    def delete_user(self, principal: Principal, user_id: str) -> None:
        """
        ユーザーを削除（マネージャーのみ・自分自身は不可）

        担当タスクは未割り当てに戻し、個人タスク・通知・リフレッシュトークンは削除する。

        Raises:
            NotFoundError: ユーザーが存在しない場合
            ForbiddenError: 従業員の場合
            ValidationError: 自分自身を削除しようとした場合
        """
        user = self._load_user(user_id)
        self.policy.authorize(principal, Action.MANAGE_USER, user).enforce()
        if user.id == principal.id:
            raise ValidationError("自分自身のアカウントは削除できません")

        personal, _ = self.data_store.tasks.find_all({'is_personal': True, 'created_by_id': user.id})
        for task in personal:
            self.tasks.purge_task(task, principal.id)

        assigned, _ = self.data_store.tasks.find_all({'assignee_id': user.id})
        for task in assigned:
            task.assignee_id = None
            self.data_store.tasks.update(task)

        managed, _ = self.data_store.teams.find_all({'manager_id': user.id})
        for team in managed:
            team.manager_id = None
            self.data_store.teams.update(team)

        self.data_store.notifications.delete_where({'user_id': user.id})
        self.data_store.refresh_tokens.delete_where({'user_id': user.id})
        self.data_store.users.delete(user.id)

        self.logger.audit(
            AuditAction.DELETE, 'User', user.id, user.name,
            user=principal.id,
            before_data=user.to_public_dict()
        )

    # ==================== チーム ====================

    @handle_errors
    def list_teams(self, principal: Principal, page: int = 1, limit: Optional[int] = None) -> PageResult:
        """チーム一覧（従業員は所属チームのみ）"""
        request = self._page(page, limit)
        query: Dict[str, Any] = {}
        if not principal.is_manager:
            if not principal.team_id:
                return PageResult.build([], 0, request)
            query['id'] = principal.team_id
        items, total = self.data_store.teams.find_all(
            query, sort=[('created_at', 'desc'), ('id', 'desc')], page=request)
        return PageResult.build(items, total, request)

    @handle_errors
    def get_team(self, principal: Principal, team_id: str) -> TeamDetail:
        """チーム詳細を取得"""
        team = self._load_team(team_id)
        members, _ = self.data_store.users.find_all({'team_id': team.id}, sort=[('name', 'asc')])
        projects, _ = self.data_store.projects.find_all({'team_id': team.id})
        return TeamDetail(team, members, projects)

    @handle_errors
    def create_team(self, principal: Principal, name: str, description: str = "",
                    color: Optional[str] = None) -> Team:
        """チームを作成（作成者がマネージャー）"""
        self.policy.authorize(principal, Action.MANAGE_TEAM).enforce()

        team = Team(self._check_name(name), principal.id, description or "")
        if color:
            team.color = color
        self.data_store.teams.create(team)

        self.logger.audit(AuditAction.CREATE, 'Team', team.id, team.name, user=principal.id)
        return team

    @handle_errors
    def update_team(self, principal: Principal, team_id: str,
                    patch: Union[TeamPatch, Mapping[str, Any]]) -> Team:
        """チームを部分更新"""
        patch = as_patch(TeamPatch, patch)
        self.policy.authorize(principal, Action.MANAGE_TEAM).enforce()
        team = self._load_team(team_id)

        values = patch.provided()
        if 'name' in values:
            values['name'] = self._check_name(values['name'])
        if values.get('manager_id'):
            self._load_user(values['manager_id'])

        before = team.to_dict()
        for name, value in values.items():
            if name == 'description':
                value = value or ""
            setattr(team, name, value)
        self.data_store.teams.update(team)

        self.logger.audit(
            AuditAction.UPDATE, 'Team', team.id, team.name,
            user=principal.id, before_data=before, after_data=team.to_dict()
        )
        return team

    @handle_errors
    def delete_team(self, principal: Principal, team_id: str) -> None:
        """
        チームを削除（所属メンバーはチーム未所属に戻す）

        Raises:
            ConflictError: プロジェクトが残っている場合
        """
        self.policy.authorize(principal, Action.MANAGE_TEAM).enforce()
        team = self._load_team(team_id)

        if self.data_store.projects.count({'team_id': team.id}):
            raise ConflictError("プロジェクトが存在するチームは削除できません")

        members, _ = self.data_store.users.find_all({'team_id': team.id})
        for member in members:
            member.team_id = None
            self.data_store.users.update(member)
        self.data_store.teams.delete(team.id)

        self.logger.audit(
            AuditAction.DELETE, 'Team', team.id, team.name,
            user=principal.id, details=f"メンバー{len(members)}名の所属を解除"
        )

    @handle_errors
    def add_member(self, principal: Principal, team_id: str, user_id: str) -> User:
        """チームにメンバーを追加"""
        self.policy.authorize(principal, Action.MANAGE_TEAM).enforce()
        team = self._load_team(team_id)
        user = self._load_user(user_id)

        user.team_id = team.id
        self.data_store.users.update(user)
        self.logger.audit(AuditAction.UPDATE, 'Team', team.id, team.name,
                          user=principal.id, details=f"メンバー追加: {user.name}")
        return user

    @handle_errors
    def remove_member(self, principal: Principal, team_id: str, user_id: str) -> User:
        """
        チームからメンバーを外す

        Raises:
            ValidationError: ユーザーがチームのメンバーでない場合
        """
        self.policy.authorize(principal, Action.MANAGE_TEAM).enforce()
        team = self._load_team(team_id)
        user = self._load_user(user_id)
        if user.team_id != team.id:
            raise ValidationError("ユーザーはこのチームのメンバーではありません")

        user.team_id = None
        self.data_store.users.update(user)
        self.logger.audit(AuditAction.UPDATE, 'Team', team.id, team.name,
                          user=principal.id, details=f"メンバー削除: {user.name}")
        return user

    # ==================== プロジェクト ====================

    def _apply_project_values(self, project: Project, values: Dict[str, Any]) -> None:
        if 'name' in values:
            project.name = self._check_name(values['name'])
        if 'description' in values:
            project.description = values['description'] or ""
        if 'status' in values:
            if not ProjectStatus.is_valid(values['status']):
                raise ValidationError("不正なプロジェクトステータスです", field='status', value=values['status'])
            project.status = values['status']
        if 'priority' in values:
            if not ProjectPriority.is_valid(values['priority']):
                raise ValidationError("不正なプロジェクト優先度です", field='priority', value=values['priority'])
            project.priority = values['priority']
        if 'color' in values:
            project.color = values['color']
        if 'team_id' in values:
            project.team_id = self._load_team(values['team_id']).id
        if 'start_date' in values or 'end_date' in values:
            try:
                valid = project.set_dates(values.get('start_date', project.start_date),
                                          values.get('end_date', project.end_date))
            except (TypeError, ValueError):
                raise ValidationError("日付の形式が不正です")
            if not valid:
                raise ValidationError("開始日は終了日以前である必要があります", field='start_date')

    @handle_errors
    def list_projects(self, principal: Principal, status: Optional[str] = None,
                      team_id: Optional[str] = None, priority: Optional[str] = None,
                      search: Optional[str] = None, page: int = 1,
                      limit: Optional[int] = None) -> PageResult:
        """
        プロジェクト一覧（タスク件数付き、作成日時の降順）

        チームに所属する従業員は自チームのプロジェクトのみ。
        """
        request = self._page(page, limit)
        query: Dict[str, Any] = {}
        if status:
            query['status'] = status
        if team_id:
            query['team_id'] = team_id
        if priority:
            query['priority'] = priority
        if not principal.is_manager and principal.team_id:
            query['team_id'] = principal.team_id

        filter_spec: Any = query
        if search:
            filter_spec = AnyOf(
                dict(query, name=Contains(search)),
                dict(query, description=Contains(search)),
            )
        projects, total = self.data_store.projects.find_all(
            filter_spec, sort=[('created_at', 'desc'), ('id', 'desc')], page=request)

        summaries = []
        for project in projects:
            tasks, _ = self.data_store.tasks.find_all({'project_id': project.id})
            summaries.append(ProjectDetail(project, tasks))
        return PageResult.build(summaries, total, request)

    @handle_errors
    def get_project(self, principal: Principal, project_id: str) -> ProjectDetail:
        """プロジェクト詳細を進捗付きで取得"""
        project = self._load_project(project_id)
        tasks, _ = self.data_store.tasks.find_all({'project_id': project.id})
        return ProjectDetail(project, tasks)

    @handle_errors
    def create_project(self, principal: Principal, fields: Mapping[str, Any]) -> Project:
        """
        プロジェクトを作成

        Raises:
            ForbiddenError: 従業員の場合
            NotFoundError: チームが存在しない場合
            ValidationError: 入力値が不正な場合
        """
        self.policy.authorize(principal, Action.MANAGE_PROJECT).enforce()
        values = dict(as_patch(ProjectPatch, fields).provided())
        if not values.get('team_id'):
            raise ValidationError("チームを指定してください", field='team_id')
        team = self._load_team(values['team_id'])

        project = Project(self._check_name(values.get('name')), team.id, principal.id)
        self._apply_project_values(project, values)
        self.data_store.projects.create(project)

        self.logger.audit(
            AuditAction.CREATE, 'Project', project.id, project.name,
            user=principal.id, details=f"チーム「{team.name}」にプロジェクト作成"
        )
        return project

    @handle_errors
    def update_project(self, principal: Principal, project_id: str,
                       patch: Union[ProjectPatch, Mapping[str, Any]]) -> Project:
        """プロジェクトを部分更新（チーム変更時は存在を確認）"""
        patch = as_patch(ProjectPatch, patch)
        self.policy.authorize(principal, Action.MANAGE_PROJECT).enforce()
        project = self._load_project(project_id)

        before = project.to_dict()
        self._apply_project_values(project, patch.provided())
        self.data_store.projects.update(project)

        self.logger.audit(
            AuditAction.UPDATE, 'Project', project.id, project.name,
            user=principal.id, before_data=before, after_data=project.to_dict()
        )
        return project

    @handle_errors
    def delete_project(self, principal: Principal, project_id: str) -> int:
        """
        プロジェクトを削除（配下のタスクとサブタスクを先に削除）

        Returns:
            削除したタスク数
        """
        self.policy.authorize(principal, Action.MANAGE_PROJECT).enforce()
        project = self._load_project(project_id)

        removed = self.tasks.delete_tasks_of_project(project.id, principal.id)
        self.data_store.projects.delete(project.id)

        self.logger.audit(
            AuditAction.DELETE, 'Project', project.id, project.name,
            user=principal.id, details=f"タスク{removed}件を含めて削除"
        )
        return removed

    # ==================== タスク ====================

    @handle_errors
    def create_task(self, principal: Principal, fields: Mapping[str, Any]) -> Task:
        return self.tasks.create_task(principal, fields)

    @handle_errors
    def update_task(self, principal: Principal, task_id: str,
                    patch: Union[TaskPatch, Mapping[str, Any]]) -> Task:
        return self.tasks.update_task(principal, task_id, patch)

    @handle_errors
    def update_task_status(self, principal: Principal, task_id: str, status: str) -> Task:
        return self.tasks.update_task_status(principal, task_id, status)

    @handle_errors
    def assign_task(self, principal: Principal, task_id: str, assignee_id: str) -> Task:
        return self.tasks.assign_task(principal, task_id, assignee_id)

    @handle_errors
    def delete_task(self, principal: Principal, task_id: str) -> int:
        return self.tasks.delete_task(principal, task_id)

    @handle_errors
    def get_task(self, principal: Principal, task_id: str) -> TaskDetail:
        return self.tasks.get_task(principal, task_id)

    @handle_errors
    def list_tasks(self, principal: Principal, status: Optional[str] = None,
                   priority: Optional[str] = None, project_id: Optional[str] = None,
                   assignee_id: Optional[str] = None, is_personal: Optional[bool] = None,
                   search: Optional[str] = None, page: int = 1,
                   limit: Optional[int] = None) -> PageResult:
        return self.tasks.list_tasks(
            principal, status=status, priority=priority, project_id=project_id,
            assignee_id=assignee_id, is_personal=is_personal, search=search,
            page=self._page(page, limit))

    @handle_errors
    def list_personal_tasks(self, principal: Principal, status: Optional[str] = None,
                            priority: Optional[str] = None, page: int = 1,
                            limit: Optional[int] = None) -> PageResult:
        return self.tasks.list_personal_tasks(principal, status, priority, self._page(page, limit))

    @handle_errors
    def list_upcoming_tasks(self, principal: Principal) -> List[Task]:
        return self.tasks.list_upcoming_tasks(principal)

    @handle_errors
    def announce_deadline(self, task_id: str) -> None:
        """期限接近イベントを送信（外部のスケジューラーから呼び出す）"""
        task = self.data_store.tasks.find_by_id(task_id)
        if not task:
            raise NotFoundError('Task', task_id, "タスクが見つかりません")
        self.tasks.announce_deadline(task)

    # ==================== サブタスク ====================

    @handle_errors
    def list_subtasks(self, principal: Principal, task_id: str) -> List[Subtask]:
        return self.tasks.list_subtasks(principal, task_id)

    @handle_errors
    def create_subtask(self, principal: Principal, task_id: str, fields: Mapping[str, Any]) -> Subtask:
        return self.tasks.create_subtask(principal, task_id, fields)

    @handle_errors
    def update_subtask(self, principal: Principal, subtask_id: str,
                       patch: Union[SubtaskPatch, Mapping[str, Any]]) -> Subtask:
        return self.tasks.update_subtask(principal, subtask_id, patch)

    @handle_errors
    def update_subtask_status(self, principal: Principal, subtask_id: str, status: str) -> Subtask:
        return self.tasks.update_subtask_status(principal, subtask_id, status)

    @handle_errors
    def delete_subtask(self, principal: Principal, subtask_id: str) -> None:
        self.tasks.delete_subtask(principal, subtask_id)

    # ==================== 通知 ====================

    @handle_errors
    def list_notifications(self, principal: Principal, is_read: Optional[bool] = None,
                           page: int = 1, limit: Optional[int] = None) -> NotificationList:
        return self.notifications.list_notifications(principal, is_read, self._page(page, limit))

    @handle_errors
    def mark_notification_read(self, principal: Principal, notification_id: str):
        return self.notifications.mark_as_read(principal, notification_id)

    @handle_errors
    def mark_all_notifications_read(self, principal: Principal) -> int:
        return self.notifications.mark_all_as_read(principal)

    @handle_errors
    def delete_notification(self, principal: Principal, notification_id: str) -> None:
        self.notifications.delete_notification(principal, notification_id)

    @handle_errors
    def clear_notifications(self, principal: Principal) -> int:
        return self.notifications.clear_all(principal)

    # ==================== 保守 ====================

    @handle_errors
    def get_system_statistics(self, principal: Principal) -> Dict[str, Any]:
        """システム統計情報を取得（マネージャーのみ）"""
        self.policy.authorize(principal, Action.VIEW_ANALYTICS).enforce()
        return {
            'counts': self.data_store.get_counts(),
            'notifications': self.notifications.get_statistics(),
            'events': dict(self.publisher.stats),
            'side_effects': dict(self.side_effects.stats),
            'errors': self.error_handler.get_error_statistics(),
            'logs': self.logger.get_statistics(),
        }

    def run_maintenance(self) -> Dict[str, int]:
        """孤立データと保持期間を過ぎた既読通知を削除"""
        result = dict(self.data_store.cleanup_orphaned_data())
        result['purged_notifications'] = self.notifications.purge_read_notifications(
            self.settings.notifications.retention_days, self.clock())
        return result

    def __str__(self) -> str:
        return f"TaskManagementSystem(store={self.data_store}, running={self.is_running})"
