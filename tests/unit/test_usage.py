"""Tests for the per-user usage ledger."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from repochat.config import LimitsCfg
from repochat.db.models import Project
from repochat.db.repository import Repository
from repochat.errors import UsageLimitExceeded
from repochat.usage import ActionKind, UsageLedger

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def clock():
    return _Clock(T0)


def _ledger(repo, clock, **limits):
    return UsageLedger(repo, LimitsCfg(**limits), clock=clock)


def test_first_use_creates_row(repo, clock):
    ledger = _ledger(repo, clock)
    ledger.check_and_reserve("u1", ActionKind.CHAT)
    row = repo.get_usage("u1")
    assert row is not None
    assert row.chat_count == 0
    assert row.last_reset_at == T0.isoformat()


def test_chat_limit_enforced(repo, clock):
    ledger = _ledger(repo, clock, chats_per_day=2)
    for _ in range(2):
        ledger.check_and_reserve("u1", "chat")
        ledger.increment("u1", "chat")

    with pytest.raises(UsageLimitExceeded) as exc_info:
        ledger.check_and_reserve("u1", ActionKind.CHAT)
    assert exc_info.value.kind == "chat"
    assert exc_info.value.reset_at == (T0 + timedelta(days=1)).isoformat()


def test_counters_reset_after_a_day(repo, clock):
    ledger = _ledger(repo, clock, chats_per_day=1)
    ledger.check_and_reserve("u1", "chat")
    ledger.increment("u1", "chat")

    clock.now = T0 + timedelta(days=1, seconds=1)
    ledger.check_and_reserve("u1", "chat")  # no raise
    assert repo.get_usage("u1").chat_count == 0


def test_no_reset_within_a_day(repo, clock):
    ledger = _ledger(repo, clock, chats_per_day=1)
    ledger.check_and_reserve("u1", "chat")
    ledger.increment("u1", "chat")

    clock.now = T0 + timedelta(hours=23)
    with pytest.raises(UsageLimitExceeded):
        ledger.check_and_reserve("u1", "chat")


def test_pr_limit(repo, clock):
    ledger = _ledger(repo, clock, prs_per_day=1)
    ledger.check_and_reserve("u1", ActionKind.PR)
    ledger.increment("u1", ActionKind.PR)
    with pytest.raises(UsageLimitExceeded, match="PR limit"):
        ledger.check_and_reserve("u1", ActionKind.PR)


def test_project_create_daily_limit(repo, clock):
    ledger = _ledger(repo, clock, project_creates_per_day=1)
    ledger.check_and_reserve("u1", ActionKind.PROJECT_CREATE)
    ledger.increment("u1", ActionKind.PROJECT_CREATE)
    with pytest.raises(UsageLimitExceeded, match="projects per day"):
        ledger.check_and_reserve("u1", ActionKind.PROJECT_CREATE)


def test_max_active_projects(repo, clock):
    for i in range(2):
        repo.add_project(Project(id=f"p{i}", user_id="u1", name="n", url="u"))
    ledger = _ledger(repo, clock, max_active_projects=2, project_creates_per_day=10)

    with pytest.raises(UsageLimitExceeded) as exc_info:
        ledger.check_and_reserve("u1", ActionKind.PROJECT_CREATE)
    assert exc_info.value.reset_at is None


def test_admin_bypasses_limits(repo, clock):
    ledger = _ledger(repo, clock, chats_per_day=0, admin_user_ids=["boss"])
    ledger.check_and_reserve("boss", ActionKind.CHAT)
    ledger.increment("boss", ActionKind.CHAT)
    assert ledger.is_admin("boss")
    assert repo.get_usage("boss") is None


def test_non_admin_with_zero_limit_denied(repo, clock):
    ledger = _ledger(repo, clock, chats_per_day=0, admin_user_ids=["boss"])
    with pytest.raises(UsageLimitExceeded):
        ledger.check_and_reserve("u1", ActionKind.CHAT)


def test_unknown_kind_rejected(repo, clock):
    with pytest.raises(ValueError):
        _ledger(repo, clock).check_and_reserve("u1", "teleport")
