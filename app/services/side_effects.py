from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import BackgroundTasks

from app.services.audit_logger import AuditEvent, record_audit_event

logger = logging.getLogger(__name__)


def _guarded(name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("side_effect_failed task=%s", name)


class SideEffects:
    """
    Dispatcher for fire-and-forget work (emails, audit entries).

    Tasks are queued on the request's BackgroundTasks and run after the
    response is sent. Without BackgroundTasks (jobs, plain service calls)
    they run inline. Either way a failing task is logged and swallowed.
    """

    def __init__(self, background_tasks: BackgroundTasks | None = None):
        self.background_tasks = background_tasks

    def dispatch(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        if self.background_tasks is not None:
            self.background_tasks.add_task(_guarded, name, func, *args, **kwargs)
        else:
            _guarded(name, func, *args, **kwargs)

    def audit(
        self,
        event_type: AuditEvent,
        event_description: str,
        user_id=None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.dispatch(
            f"audit:{event_type.value}",
            record_audit_event,
            event_type,
            event_description,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )


def get_side_effects(background_tasks: BackgroundTasks) -> SideEffects:
    return SideEffects(background_tasks)
