"""
アクセス制御（ロールベース）
実行主体・操作・対象の状態から許可／拒否を判定する
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..models import Task, Subtask, User, UserPatch
from .error_handler import ForbiddenError
from .identity import Principal


class Action:
    """判定対象の操作"""
    CREATE_TASK = "task:create"
    EDIT_TASK = "task:edit"
    DELETE_TASK = "task:delete"
    UPDATE_TASK_STATUS = "task:update_status"
    ASSIGN_TASK = "task:assign"
    CREATE_SUBTASK = "subtask:create"
    EDIT_SUBTASK = "subtask:edit"
    DELETE_SUBTASK = "subtask:delete"
    UPDATE_SUBTASK_STATUS = "subtask:update_status"
    MANAGE_TEAM = "team:manage"
    MANAGE_PROJECT = "project:manage"
    VIEW_ANALYTICS = "analytics:view"
    MANAGE_USER = "user:manage"
    UPDATE_USER = "user:update"
    MANAGE_NOTIFICATION = "notification:manage"


@dataclass(frozen=True)
class Decision:
    """判定結果（Allow / Deny(reason)）"""

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> 'Decision':
        return cls(True)

    @classmethod
    def deny(cls, reason: str) -> 'Decision':
        return cls(False, reason)

    def enforce(self) -> None:
        """
        拒否の場合は例外を送出

        Raises:
            ForbiddenError: 拒否された場合
        """
        if not self.allowed:
            raise ForbiddenError(self.reason)

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class SubtaskContext:
    """サブタスク判定用の対象（サブタスクと親タスク）"""

    subtask: Subtask
    task: Task


@dataclass(frozen=True)
class UserUpdateContext:
    """ユーザー更新判定用の対象"""

    user: User
    patch: UserPatch


def _field(resource: Any, name: str) -> Any:
    if isinstance(resource, dict):
        return resource.get(name)
    return getattr(resource, name, None)


def works_on_task(principal: Principal, task: Task) -> bool:
    """担当者本人、または本人が作成した個人タスクか"""
    return task.assignee_id == principal.id or (
        task.is_personal and task.created_by_id == principal.id
    )


class AccessPolicy:
    """
    アクセスポリシー

    状態を持たず入出力も行わない。マネージャーは通知の操作を除き常に許可。
    対象が存在しない場合の判定は呼び出し側が先に NotFound として扱う。
    """

    MANAGER_ONLY = {
        Action.ASSIGN_TASK: "タスクの割り当てはマネージャーのみ可能です",
        Action.MANAGE_TEAM: "チームの管理はマネージャーのみ可能です",
        Action.MANAGE_PROJECT: "プロジェクトの管理はマネージャーのみ可能です",
        Action.VIEW_ANALYTICS: "分析情報の閲覧はマネージャーのみ可能です",
        Action.MANAGE_USER: "ユーザーの管理はマネージャーのみ可能です",
    }

    def __init__(self):
        self._rules: Dict[str, Callable[[Principal, Any], Decision]] = {
            Action.CREATE_TASK: self._can_create_task,
            Action.EDIT_TASK: self._can_edit_task,
            Action.DELETE_TASK: self._can_edit_task,
            Action.UPDATE_TASK_STATUS: self._can_update_task_status,
            Action.CREATE_SUBTASK: self._can_create_subtask,
            Action.EDIT_SUBTASK: self._can_modify_subtask,
            Action.DELETE_SUBTASK: self._can_modify_subtask,
            Action.UPDATE_SUBTASK_STATUS: self._can_update_subtask_status,
            Action.UPDATE_USER: self._can_update_user,
        }

    def authorize(self, principal: Principal, action: str, resource: Optional[Any] = None) -> Decision:
        """
        操作の可否を判定

        Args:
            principal: 実行主体
            action: 操作（Action の定数）
            resource: 判定に必要な対象の状態

        Returns:
            判定結果
        """
        if action == Action.MANAGE_NOTIFICATION:
            return self._can_manage_notification(principal, resource)

        if principal.is_manager:
            return Decision.allow()

        if action in self.MANAGER_ONLY:
            return Decision.deny(self.MANAGER_ONLY[action])

        rule = self._rules.get(action)
        if rule is None:
            return Decision.deny(f"未定義の操作です: {action}")
        return rule(principal, resource)

    def can(self, principal: Principal, action: str, resource: Optional[Any] = None) -> bool:
        """判定結果を真偽値で取得"""
        return self.authorize(principal, action, resource).allowed

    def _can_create_task(self, principal: Principal, resource: Any) -> Decision:
        if _field(resource, 'is_personal') is True:
            return Decision.allow()
        return Decision.deny("従業員は個人タスクのみ作成できます")

    def _can_edit_task(self, principal: Principal, task: Task) -> Decision:
        if task.is_personal and task.created_by_id == principal.id:
            return Decision.allow()
        return Decision.deny("編集・削除できるのは自分の個人タスクのみです")

    def _can_update_task_status(self, principal: Principal, task: Task) -> Decision:
        if works_on_task(principal, task):
            return Decision.allow()
        return Decision.deny("ステータスを更新できるのは自分に割り当てられたタスクのみです")

    def _can_create_subtask(self, principal: Principal, task: Task) -> Decision:
        if works_on_task(principal, task):
            return Decision.allow()
        return Decision.deny("サブタスクを作成できるのは自分に割り当てられたタスクのみです")

    def _can_modify_subtask(self, principal: Principal, context: SubtaskContext) -> Decision:
        if context.subtask.created_by_id == principal.id and works_on_task(principal, context.task):
            return Decision.allow()
        return Decision.deny("変更できるのは自分が担当するタスク上で自分が作成したサブタスクのみです")

    def _can_update_subtask_status(self, principal: Principal, context: SubtaskContext) -> Decision:
        # 作成者の条件は問わず親タスクの条件のみで判定する
        if works_on_task(principal, context.task):
            return Decision.allow()
        return Decision.deny("ステータスを更新できるのは自分に割り当てられたタスクのサブタスクのみです")

    def _can_update_user(self, principal: Principal, context: UserUpdateContext) -> Decision:
        if context.user.id != principal.id:
            return Decision.deny("他のユーザーの更新はマネージャーのみ可能です")
        if context.patch.touches_privileged():
            return Decision.deny("ロール・所属チーム・有効状態の変更はマネージャーのみ可能です")
        return Decision.allow()

    def _can_manage_notification(self, principal: Principal, notification: Any) -> Decision:
        if _field(notification, 'user_id') == principal.id:
            return Decision.allow()
        return Decision.deny("この通知を操作する権限がありません")
