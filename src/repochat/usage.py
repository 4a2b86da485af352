"""Per-user daily usage ledger.

Counters live in the ``user_usage`` table and reset 24 hours after the last
reset. Limits and the admin bypass list come from configuration
(``limits:``), never from code.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum

from repochat.config import LimitsCfg
from repochat.db.models import UsageRow
from repochat.db.repository import Repository
from repochat.errors import UsageLimitExceeded

logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


class ActionKind(str, Enum):
    CHAT = "chat"
    PR = "pr"
    PROJECT_CREATE = "project_create"


_COLUMNS: dict[ActionKind, str] = {
    ActionKind.CHAT: "chat_count",
    ActionKind.PR: "pr_count",
    ActionKind.PROJECT_CREATE: "project_create_count",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UsageLedger:
    """Check and count user actions against the configured daily limits.

    Args:
        repo: Open Repository instance.
        limits: Limits and admin bypass list.
        clock: Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        repo: Repository,
        limits: LimitsCfg,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repo = repo
        self._limits = limits
        self._clock = clock

    def is_admin(self, user_id: str) -> bool:
        return user_id in self._limits.admin_user_ids

    def check_and_reserve(self, user_id: str, kind: ActionKind | str) -> None:
        """Allow the action or raise.

        Creates the user's counter row on first use and applies the daily
        reset before checking.

        Raises:
            UsageLimitExceeded: If *user_id* is over the limit for *kind*.
        """
        kind = ActionKind(kind)
        if self.is_admin(user_id):
            logger.debug("Usage limit bypass for admin %s", user_id)
            return

        usage = self._current_usage(user_id)
        last_reset = datetime.fromisoformat(usage.last_reset_at)
        reset_at = (last_reset + _ONE_DAY).isoformat()

        if kind is ActionKind.CHAT and usage.chat_count >= self._limits.chats_per_day:
            raise UsageLimitExceeded(
                f"Daily chat limit reached ({self._limits.chats_per_day}/day).",
                kind.value,
                reset_at,
            )
        if kind is ActionKind.PR and usage.pr_count >= self._limits.prs_per_day:
            raise UsageLimitExceeded(
                f"Daily PR limit reached ({self._limits.prs_per_day}/day).",
                kind.value,
                reset_at,
            )
        if kind is ActionKind.PROJECT_CREATE:
            if usage.project_create_count >= self._limits.project_creates_per_day:
                raise UsageLimitExceeded(
                    f"You can only create {self._limits.project_creates_per_day} projects per day.",
                    kind.value,
                    reset_at,
                )
            if self._repo.count_projects(user_id) >= self._limits.max_active_projects:
                raise UsageLimitExceeded(
                    f"Max project limit reached ({self._limits.max_active_projects}). "
                    "Delete one to create new.",
                    kind.value,
                )

    def increment(self, user_id: str, kind: ActionKind | str) -> None:
        """Count one successful *kind* action for *user_id*."""
        kind = ActionKind(kind)
        if self.is_admin(user_id):
            return
        self._current_usage(user_id)
        self._repo.increment_usage(user_id, _COLUMNS[kind])

    def _current_usage(self, user_id: str) -> UsageRow:
        now = self._clock()
        usage = self._repo.get_usage(user_id)
        if usage is None:
            logger.info("Creating usage row for user %s", user_id)
            return self._repo.create_usage(user_id, now.isoformat())

        last_reset = datetime.fromisoformat(usage.last_reset_at)
        if now - last_reset > _ONE_DAY:
            self._repo.reset_usage(user_id, now.isoformat())
            return self._repo.get_usage(user_id)  # type: ignore[return-value]
        return usage
