from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from dealdesk.domain.models import UnifiedTask
from dealdesk.domain.stages import NotificationKind, TaskSource
from dealdesk.services.tasks import TaskTriage

UNKNOWN_CLIENT = "Client"


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    deal_id: str
    client_name: str
    message: str

    @property
    def notification_id(self) -> str:
        return f"{self.kind.value}-{self.deal_id}"


def generate_notifications(
    triage: TaskTriage, client_names: Mapping[str, str] | None = None
) -> list[Notification]:
    """Alerts for deals whose follow-up is overdue or due today.

    Reminders never notify. The result is rebuilt from scratch on every call.
    """
    names = client_names or {}
    notifications = [
        _notification(task, NotificationKind.OVERDUE, names)
        for task in triage.overdue
        if task.source_kind is TaskSource.FOLLOW_UP
    ]
    notifications.extend(
        _notification(task, NotificationKind.TODAY, names)
        for task in triage.today
        if task.source_kind is TaskSource.FOLLOW_UP
    )
    return notifications


def _notification(
    task: UnifiedTask, kind: NotificationKind, names: Mapping[str, str]
) -> Notification:
    if kind is NotificationKind.OVERDUE:
        message = f"Follow-up overdue for {task.title}"
    else:
        message = f"Follow-up due today for {task.title}"
    return Notification(
        kind=kind,
        deal_id=task.source_id,
        client_name=names.get(task.client_id or "", UNKNOWN_CLIENT),
        message=message,
    )
