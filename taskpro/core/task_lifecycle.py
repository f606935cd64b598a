"""
タスクライフサイクル管理
タスク・サブタスクの作成・更新・ステータス遷移・割り当て・削除と後続処理の決定
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..models import (
    Task, Subtask, User, TaskPatch, SubtaskPatch, NotificationType,
    TaskStatus, TaskPriority, SubtaskStatus
)
from ..models.base import parse_datetime
from ..storage.data_store import DataStore
from ..storage.query import AnyOf, AllOf, Between, Contains, Not, PageRequest, PageResult
from .access_policy import AccessPolicy, Action, SubtaskContext
from .error_handler import NotFoundError, ValidationError, ForbiddenError
from .event_publisher import EventPublisher
from .identity import Principal
from .logger import ProjectLogger, LogCategory, AuditAction
from .notification_manager import NotificationDispatcher
from .side_effects import DeferredActions, SideEffectQueue

TASK_CREATE_FIELDS = frozenset({
    'title', 'description', 'priority', 'status', 'due_date', 'project_id',
    'assignee_id', 'is_personal', 'estimated_hours', 'actual_hours', 'tags',
})
SUBTASK_CREATE_FIELDS = frozenset({'title', 'description'})

TASK_LIST_SORT = [('due_date', 'asc'), ('priority', 'desc'), ('created_at', 'desc')]
PERSONAL_TASK_SORT = [('due_date', 'asc'), ('created_at', 'desc')]


@dataclass(frozen=True)
class SubtaskProgress:
    """サブタスクの進捗（割合は四捨五入した整数）"""

    total: int
    completed: int

    @property
    def percentage(self) -> int:
        if not self.total:
            return 0
        return int(self.completed / self.total * 100 + 0.5)

    @classmethod
    def of(cls, subtasks: List[Subtask]) -> 'SubtaskProgress':
        return cls(len(subtasks), sum(1 for s in subtasks if s.is_completed))


@dataclass
class TaskDetail:
    """タスク詳細（サブタスクと進捗を含む）"""

    task: Task
    subtasks: List[Subtask] = field(default_factory=list)

    @property
    def progress(self) -> SubtaskProgress:
        return SubtaskProgress.of(self.subtasks)

    def to_dict(self) -> Dict[str, Any]:
        data = self.task.to_dict()
        progress = self.progress
        data['subtasks'] = [s.to_dict() for s in self.subtasks]
        data['subtask_progress'] = progress.percentage
        data['total_subtasks'] = progress.total
        data['completed_subtasks'] = progress.completed
        return data


def _visible_to(principal: Principal) -> Optional[AnyOf]:
    """従業員が閲覧できるタスクの条件（マネージャーは制限なし）"""
    if principal.is_manager:
        return None
    return AnyOf(
        {'assignee_id': principal.id},
        {'is_personal': True, 'created_by_id': principal.id},
    )


def as_patch(patch_cls: type, patch: Union[Mapping[str, Any], Any]):
    """
    辞書またはパッチを検証済みのパッチに変換

    Raises:
        ValidationError: 未知のフィールド、または null 非許容フィールドに None がある場合
    """
    try:
        if not isinstance(patch, patch_cls):
            patch = patch_cls.from_mapping(patch)
        patch.check_nullability()
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e))
    return patch


def _combine(query: Dict[str, Any], *extra: Optional[Any]) -> Any:
    parts = [p for p in extra if p is not None]
    if not parts:
        return query
    return AllOf(query, *parts)


class TaskLifecycleManager:
    """
    タスクライフサイクル管理クラス

    各操作は「対象の読み込み → 認可 → 検証 → 変更の保存 → 後続処理の投入」の順に行う。
    通知・イベントは保存後に1操作1ジョブとして副作用キューへ投入し、その成否は
    操作の結果に影響しない。
    """

    def __init__(self,
                 store: DataStore,
                 policy: AccessPolicy,
                 dispatcher: NotificationDispatcher,
                 publisher: EventPublisher,
                 side_effects: SideEffectQueue,
                 logger: ProjectLogger,
                 upcoming_window_days: int = 7,
                 upcoming_limit: int = 10,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Args:
            store: データストア
            policy: アクセスポリシー
            dispatcher: 通知ディスパッチャー
            publisher: イベント発行
            side_effects: 副作用キュー
            logger: ログ管理
            upcoming_window_days: 期限間近とみなす日数
            upcoming_limit: 期限間近タスクの最大件数
            clock: 現在時刻の取得関数
        """
        self.store = store
        self.policy = policy
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.side_effects = side_effects
        self.logger = logger
        self.upcoming_window_days = upcoming_window_days
        self.upcoming_limit = upcoming_limit
        self.clock = clock

    # ==================== 読み込み ====================

    def _load_task(self, task_id: str) -> Task:
        task = self.store.tasks.find_by_id(task_id)
        if not task:
            raise NotFoundError('Task', task_id, "タスクが見つかりません")
        return task

    def _load_subtask(self, subtask_id: str) -> SubtaskContext:
        subtask = self.store.subtasks.find_by_id(subtask_id)
        if not subtask:
            raise NotFoundError('Subtask', subtask_id, "サブタスクが見つかりません")
        return SubtaskContext(subtask, self._load_task(subtask.task_id))

    def _load_assignee(self, assignee_id: str) -> User:
        user = self.store.users.find_by_id(assignee_id)
        if not user:
            raise NotFoundError('User', assignee_id, "担当者が見つかりません")
        return user

    def _require_project(self, project_id: str) -> None:
        if not self.store.projects.exists(project_id):
            raise NotFoundError('Project', project_id, "プロジェクトが見つかりません")

    # ==================== 入力検証 ====================

    @staticmethod
    def _check_title(title: Any) -> str:
        if not isinstance(title, str) or not title.strip():
            raise ValidationError("タイトルを入力してください", field='title')
        return title.strip()

    @staticmethod
    def _check_choice(enum_cls: type, name: str, value: Any) -> str:
        if not enum_cls.is_valid(value):
            allowed = ', '.join(enum_cls.get_all_values())
            raise ValidationError(f"{name} は {allowed} のいずれかを指定してください", field=name, value=value)
        return value

    @staticmethod
    def _check_hours(name: str, value: Any) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValidationError(f"{name} は0以上の数値で指定してください", field=name, value=value)
        return value

    @staticmethod
    def _check_due_date(value: Any) -> Optional[datetime]:
        try:
            return parse_datetime(value)
        except (TypeError, ValueError):
            raise ValidationError("期限日の形式が不正です", field='due_date', value=value)

    @staticmethod
    def _check_tags(value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple, set, frozenset)) or not all(isinstance(tag, str) for tag in value):
            raise ValidationError("タグは文字列のリストで指定してください", field='tags')
        return list(value)

    # ==================== 後続処理 ====================

    def _submit(self, deferred: DeferredActions) -> Optional[Future]:
        return self.side_effects.submit(deferred)

    def _add_assignment_effects(self, deferred: DeferredActions, task: Task, assignee: User,
                                principal: Principal, title: str) -> None:
        task_id, task_title = task.id, task.title
        deferred.add_notification('task_assigned', lambda: self.dispatcher.notify(
            NotificationType.TASK_ASSIGNED,
            assignee.id,
            title,
            f"You have been assigned to task: {task_title}",
            {'taskId': task_id},
            actor_id=principal.id
        ))
        deferred.add_event('TASK_ASSIGNED', lambda: self.publisher.task_assigned(task, assignee, principal))

    # ==================== タスク操作 ====================

    def create_task(self, principal: Principal, fields: Mapping[str, Any]) -> Task:
        """
        タスクを作成

        個人タスクはプロジェクトなし・担当者は作成者本人に強制する。
        作成者以外の担当者が設定された場合は通知とイベントを投入する。

        Args:
            principal: 実行主体
            fields: タスクの属性（title 必須）

        Returns:
            作成したタスク

        Raises:
            ForbiddenError: 従業員が個人タスク以外を作成しようとした場合
            NotFoundError: 指定したプロジェクト・担当者が存在しない場合
            ValidationError: 入力値が不正な場合
        """
        unknown = set(fields) - TASK_CREATE_FIELDS
        if unknown:
            raise ValidationError(f"未知のフィールドです: {', '.join(sorted(unknown))}")

        self.policy.authorize(principal, Action.CREATE_TASK, fields).enforce()

        title = self._check_title(fields.get('title'))
        priority = self._check_choice(TaskPriority, 'priority', fields.get('priority') or TaskPriority.MEDIUM)
        status = self._check_choice(TaskStatus, 'status', fields.get('status') or TaskStatus.TODO)
        is_personal = fields.get('is_personal') is True

        project_id = fields.get('project_id')
        if project_id:
            self._require_project(project_id)

        assignee_id = fields.get('assignee_id')
        assignee = self._load_assignee(assignee_id) if assignee_id else None

        task = Task(title, principal.id, fields.get('description') or "")
        task.priority = priority
        task.due_date = self._check_due_date(fields.get('due_date'))
        task.project_id = project_id or None
        task.assignee_id = assignee_id or None
        task.estimated_hours = self._check_hours('estimated_hours', fields.get('estimated_hours'))
        task.actual_hours = self._check_hours('actual_hours', fields.get('actual_hours'))
        task.set_tags(self._check_tags(fields.get('tags')))
        task.apply_status(status, self.clock())
        if is_personal:
            task.make_personal()

        self.store.tasks.create(task)

        self.logger.audit(
            AuditAction.CREATE, 'Task', task.id, task.title,
            user=principal.id,
            details="個人タスク作成" if task.is_personal else "タスク作成",
            after_data=task.to_dict()
        )

        if task.assignee_id and task.assignee_id != principal.id:
            if assignee is None or assignee.id != task.assignee_id:
                assignee = self._load_assignee(task.assignee_id)
            deferred = DeferredActions('create_task')
            self._add_assignment_effects(deferred, task, assignee, principal, "New Task Assigned")
            self._submit(deferred)

        return task

    def update_task(self, principal: Principal, task_id: str,
                    patch: Union[TaskPatch, Mapping[str, Any]]) -> Task:
        """
        タスクを部分更新

        未指定のフィールドは変更せず、明示的な None は null 許容フィールドをクリアする。
        担当者が操作者・変更前の担当者以外に変わった場合は通知とイベントを投入する。

        Raises:
            NotFoundError: タスク・参照先が存在しない場合
            ForbiddenError: 編集権限がない場合
            ValidationError: 入力値が不正、または個人タスクの不変条件に反する場合
        """
        patch = as_patch(TaskPatch, patch)
        task = self._load_task(task_id)
        self.policy.authorize(principal, Action.EDIT_TASK, task).enforce()

        values = patch.provided()
        for name in ('project_id', 'assignee_id'):
            if name in values:
                values[name] = values[name] or None
        if 'title' in values:
            values['title'] = self._check_title(values['title'])
        if 'priority' in values:
            self._check_choice(TaskPriority, 'priority', values['priority'])
        if 'status' in values:
            self._check_choice(TaskStatus, 'status', values['status'])
        if 'due_date' in values:
            values['due_date'] = self._check_due_date(values['due_date'])
        for name in ('estimated_hours', 'actual_hours'):
            if name in values:
                self._check_hours(name, values[name])
        if 'tags' in values:
            values['tags'] = self._check_tags(values['tags'])
        if 'is_personal' in values:
            if not isinstance(values['is_personal'], bool):
                raise ValidationError("is_personal は真偽値で指定してください", field='is_personal')
            if task.is_personal and not values['is_personal'] and not principal.is_manager:
                raise ForbiddenError("個人タスクを共有タスクに変更できるのはマネージャーのみです")
        if values.get('project_id'):
            self._require_project(values['project_id'])
        assignee = self._load_assignee(values['assignee_id']) if values.get('assignee_id') else None

        before = task.to_dict()
        previous_assignee = task.assignee_id
        becoming_personal = values.get('is_personal') is True and not task.is_personal

        for name, value in values.items():
            if name == 'status':
                task.apply_status(value, self.clock())
            elif name == 'tags':
                task.set_tags(value)
            elif name == 'description':
                task.description = value or ""
            else:
                setattr(task, name, value)

        if becoming_personal:
            if values.get('project_id') or values.get('assignee_id') not in (None, task.created_by_id):
                raise ValidationError("個人タスクにはプロジェクトや他の担当者を設定できません")
            task.make_personal()
        elif not task.satisfies_personal_invariant():
            raise ValidationError("個人タスクにはプロジェクトや他の担当者を設定できません")

        self.store.tasks.update(task)

        self.logger.audit(
            AuditAction.UPDATE, 'Task', task.id, task.title,
            user=principal.id,
            details=f"更新項目: {', '.join(sorted(values))}",
            before_data=before,
            after_data=task.to_dict()
        )

        new_assignee = task.assignee_id
        if (patch.is_set('assignee_id') and new_assignee
                and new_assignee != previous_assignee and new_assignee != principal.id):
            deferred = DeferredActions('update_task')
            self._add_assignment_effects(deferred, task, assignee or self._load_assignee(new_assignee),
                                         principal, "Task Assigned to You")
            self._submit(deferred)

        return task

    def update_task_status(self, principal: Principal, task_id: str, status: str) -> Task:
        """
        タスクのステータスを変更

        作成者が操作者以外なら作成者へ通知し、イベントは常に送信する。

        Raises:
            NotFoundError: タスクが存在しない場合
            ForbiddenError: 担当者・個人タスクの作成者以外の従業員の場合
            ValidationError: 不正なステータスの場合
        """
        task = self._load_task(task_id)
        self.policy.authorize(principal, Action.UPDATE_TASK_STATUS, task).enforce()
        self._check_choice(TaskStatus, 'status', status)

        previous_status = task.apply_status(status, self.clock())
        self.store.tasks.update(task)

        self.logger.audit(
            AuditAction.STATUS_CHANGE, 'Task', task.id, task.title,
            user=principal.id,
            details=f"ステータス変更: {previous_status} → {status}",
            before_data={'status': previous_status},
            after_data={'status': status}
        )

        deferred = DeferredActions('update_task_status')
        creator_id, task_id, task_title = task.created_by_id, task.id, task.title
        if creator_id != principal.id:
            deferred.add_notification('task_status_changed', lambda: self.dispatcher.notify(
                NotificationType.TASK_STATUS_CHANGED,
                creator_id,
                "Task Status Updated",
                f'Task "{task_title}" status changed from {previous_status} to {status}',
                {'taskId': task_id, 'previousStatus': previous_status, 'newStatus': status},
                actor_id=principal.id
            ))
        deferred.add_event('TASK_STATUS_CHANGED',
                           lambda: self.publisher.task_status_changed(task, previous_status, status, principal))
        self._submit(deferred)

        return task

    def assign_task(self, principal: Principal, task_id: str, assignee_id: str) -> Task:
        """
        タスクを割り当て（マネージャーのみ）

        担当者が変わらない場合は通知・イベントを投入しない。

        Raises:
            NotFoundError: タスク・担当者が存在しない場合
            ForbiddenError: 従業員の場合
            ValidationError: 担当者未指定、または個人タスクを他者に割り当てる場合
        """
        task = self._load_task(task_id)
        self.policy.authorize(principal, Action.ASSIGN_TASK, task).enforce()

        if not assignee_id:
            raise ValidationError("担当者を指定してください", field='assignee_id')
        assignee = self._load_assignee(assignee_id)
        if task.is_personal and assignee.id != task.created_by_id:
            raise ValidationError("個人タスクは作成者以外に割り当てられません", field='assignee_id')

        previous_assignee = task.assignee_id
        task.assignee_id = assignee.id
        self.store.tasks.update(task)

        self.logger.audit(
            AuditAction.ASSIGN, 'Task', task.id, task.title,
            user=principal.id,
            details=f"担当者変更: {previous_assignee} → {assignee.id}",
            before_data={'assignee_id': previous_assignee},
            after_data={'assignee_id': assignee.id}
        )

        if assignee.id != principal.id and assignee.id != previous_assignee:
            deferred = DeferredActions('assign_task')
            self._add_assignment_effects(deferred, task, assignee, principal, "Task Assigned to You")
            self._submit(deferred)

        return task

    def delete_task(self, principal: Principal, task_id: str) -> int:
        """
        タスクを削除（サブタスクを先に削除）

        Returns:
            削除したサブタスク数

        Raises:
            NotFoundError: タスクが存在しない場合
            ForbiddenError: 削除権限がない場合
        """
        task = self._load_task(task_id)
        self.policy.authorize(principal, Action.DELETE_TASK, task).enforce()
        return self.purge_task(task, principal.id)

    def purge_task(self, task: Task, user_id: str) -> int:
        removed = self.store.subtasks.delete_where({'task_id': task.id})
        self.store.tasks.delete(task.id)

        self.logger.audit(
            AuditAction.DELETE, 'Task', task.id, task.title,
            user=user_id,
            details=f"サブタスク{removed}件を含めて削除",
            before_data=task.to_dict()
        )
        return removed

    def delete_tasks_of_project(self, project_id: str, user_id: str) -> int:
        """プロジェクト配下のタスクを全て削除（削除したタスク数を返す）"""
        tasks, _ = self.store.tasks.find_all({'project_id': project_id})
        for task in tasks:
            self.purge_task(task, user_id)
        return len(tasks)

    # ==================== サブタスク操作 ====================

    def create_subtask(self, principal: Principal, task_id: str, fields: Mapping[str, Any]) -> Subtask:
        """
        サブタスクを作成

        親タスクの作成者（操作者本人なら担当者）へ通知し、イベントは常に送信する。

        Raises:
            NotFoundError: 親タスクが存在しない場合
            ForbiddenError: 親タスクの担当者・個人タスクの作成者以外の従業員の場合
            ValidationError: 入力値が不正な場合
        """
        task = self._load_task(task_id)
        self.policy.authorize(principal, Action.CREATE_SUBTASK, task).enforce()

        unknown = set(fields) - SUBTASK_CREATE_FIELDS
        if unknown:
            raise ValidationError(f"未知のフィールドです: {', '.join(sorted(unknown))}")

        subtask = Subtask(self._check_title(fields.get('title')), task.id, principal.id,
                          fields.get('description') or "")
        self.store.subtasks.create(subtask)

        self.logger.audit(
            AuditAction.CREATE, 'Subtask', subtask.id, subtask.title,
            user=principal.id,
            details=f"タスク「{task.title}」にサブタスク追加"
        )

        deferred = DeferredActions('create_subtask')
        recipient_id = task.created_by_id if task.created_by_id != principal.id else task.assignee_id
        if recipient_id and recipient_id != principal.id:
            subtask_id, subtask_title, parent_id, parent_title = subtask.id, subtask.title, task.id, task.title
            deferred.add_notification('subtask_added', lambda: self.dispatcher.notify(
                NotificationType.SUBTASK_ADDED,
                recipient_id,
                "New Subtask Added",
                f'Subtask "{subtask_title}" was added to task "{parent_title}"',
                {'taskId': parent_id, 'subtaskId': subtask_id},
                actor_id=principal.id
            ))
        deferred.add_event('SUBTASK_ADDED', lambda: self.publisher.subtask_added(subtask, task, principal))
        self._submit(deferred)

        return subtask

    def update_subtask(self, principal: Principal, subtask_id: str,
                       patch: Union[SubtaskPatch, Mapping[str, Any]]) -> Subtask:
        """
        サブタスクを部分更新

        Raises:
            NotFoundError: サブタスク・親タスクが存在しない場合
            ForbiddenError: 編集権限がない場合
            ValidationError: 入力値が不正な場合
        """
        patch = as_patch(SubtaskPatch, patch)
        context = self._load_subtask(subtask_id)
        self.policy.authorize(principal, Action.EDIT_SUBTASK, context).enforce()

        subtask = context.subtask
        before = subtask.to_dict()
        values = patch.provided()
        if 'title' in values:
            subtask.title = self._check_title(values['title'])
        if 'description' in values:
            subtask.description = values['description'] or ""
        if 'status' in values:
            subtask.apply_status(self._check_choice(SubtaskStatus, 'status', values['status']), self.clock())

        self.store.subtasks.update(subtask)

        self.logger.audit(
            AuditAction.UPDATE, 'Subtask', subtask.id, subtask.title,
            user=principal.id,
            before_data=before,
            after_data=subtask.to_dict()
        )
        return subtask

    def update_subtask_status(self, principal: Principal, subtask_id: str, status: str) -> Subtask:
        """
        サブタスクのステータスを変更（判定は親タスクの条件のみ）

        Raises:
            NotFoundError: サブタスク・親タスクが存在しない場合
            ForbiddenError: 親タスクの担当者・個人タスクの作成者以外の従業員の場合
            ValidationError: 不正なステータスの場合
        """
        context = self._load_subtask(subtask_id)
        self.policy.authorize(principal, Action.UPDATE_SUBTASK_STATUS, context).enforce()
        self._check_choice(SubtaskStatus, 'status', status)

        subtask = context.subtask
        previous_status = subtask.apply_status(status, self.clock())
        self.store.subtasks.update(subtask)

        self.logger.audit(
            AuditAction.STATUS_CHANGE, 'Subtask', subtask.id, subtask.title,
            user=principal.id,
            details=f"ステータス変更: {previous_status} → {status}"
        )
        return subtask

    def delete_subtask(self, principal: Principal, subtask_id: str) -> None:
        """
        サブタスクを削除

        Raises:
            NotFoundError: サブタスク・親タスクが存在しない場合
            ForbiddenError: 削除権限がない場合
        """
        context = self._load_subtask(subtask_id)
        self.policy.authorize(principal, Action.DELETE_SUBTASK, context).enforce()

        self.store.subtasks.delete(context.subtask.id)
        self.logger.audit(
            AuditAction.DELETE, 'Subtask', context.subtask.id, context.subtask.title,
            user=principal.id
        )

    # ==================== 参照 ====================

    def get_task(self, principal: Principal, task_id: str) -> TaskDetail:
        """タスク詳細をサブタスクの進捗付きで取得"""
        task = self._load_task(task_id)
        subtasks, _ = self.store.subtasks.find_all({'task_id': task.id}, sort=[('created_at', 'asc'), ('id', 'asc')])
        return TaskDetail(task, subtasks)

    def list_tasks(self,
                   principal: Principal,
                   status: Optional[str] = None,
                   priority: Optional[str] = None,
                   project_id: Optional[str] = None,
                   assignee_id: Optional[str] = None,
                   is_personal: Optional[bool] = None,
                   search: Optional[str] = None,
                   page: Optional[PageRequest] = None) -> PageResult:
        """
        タスク一覧を取得

        従業員は自分に割り当てられたタスクと自分の個人タスクのみ。
        期限日の昇順・優先度の降順・作成日時の降順で並べる。

        Args:
            principal: 実行主体
            status: ステータスで絞り込み
            priority: 優先度で絞り込み
            project_id: プロジェクトで絞り込み
            assignee_id: 担当者で絞り込み
            is_personal: 個人タスクかどうかで絞り込み
            search: タイトル・説明の部分一致
            page: ページ指定

        Returns:
            ページング済みの検索結果
        """
        page = page or PageRequest()
        query: Dict[str, Any] = {}
        if status:
            query['status'] = self._check_choice(TaskStatus, 'status', status)
        if priority:
            query['priority'] = self._check_choice(TaskPriority, 'priority', priority)
        if project_id:
            query['project_id'] = project_id
        if assignee_id:
            query['assignee_id'] = assignee_id
        if is_personal is not None:
            query['is_personal'] = is_personal

        text = AnyOf({'title': Contains(search)}, {'description': Contains(search)}) if search else None
        items, total = self.store.tasks.find_all(
            _combine(query, text, _visible_to(principal)), sort=TASK_LIST_SORT, page=page)
        return PageResult.build(items, total, page)

    def list_personal_tasks(self, principal: Principal, status: Optional[str] = None,
                            priority: Optional[str] = None,
                            page: Optional[PageRequest] = None) -> PageResult:
        """自分の個人タスク一覧を取得"""
        page = page or PageRequest()
        query: Dict[str, Any] = {'is_personal': True, 'created_by_id': principal.id}
        if status:
            query['status'] = self._check_choice(TaskStatus, 'status', status)
        if priority:
            query['priority'] = self._check_choice(TaskPriority, 'priority', priority)

        items, total = self.store.tasks.find_all(query, sort=PERSONAL_TASK_SORT, page=page)
        return PageResult.build(items, total, page)

    def list_upcoming_tasks(self, principal: Principal) -> List[Task]:
        """期限が近い未完了タスクを期限日の昇順で取得"""
        now = self.clock()
        query = {
            'due_date': Between(now, now + timedelta(days=self.upcoming_window_days)),
            'status': Not(TaskStatus.COMPLETED),
        }
        items, _ = self.store.tasks.find_all(
            _combine(query, _visible_to(principal)),
            sort=[('due_date', 'asc')],
            page=PageRequest(1, self.upcoming_limit)
        )
        return items

    def list_subtasks(self, principal: Principal, task_id: str) -> List[Subtask]:
        """サブタスク一覧を作成順で取得"""
        task = self._load_task(task_id)
        subtasks, _ = self.store.subtasks.find_all({'task_id': task.id}, sort=[('created_at', 'asc'), ('id', 'asc')])
        return subtasks

    # ==================== 期限通知 ====================

    def announce_deadline(self, task: Task) -> Optional[Future]:
        """期限接近イベントを投入（起動契機は外部のスケジューラー）"""
        self.logger.info(
            LogCategory.EVENT,
            f"期限接近: {task.title}",
            module=__name__,
            task_id=task.id,
            due_date=task.due_date
        )
        deferred = DeferredActions('announce_deadline')
        deferred.add_event('DEADLINE_APPROACHING', lambda: self.publisher.deadline_approaching(task))
        return self._submit(deferred)
