"""
tests/test_close_race.py — Concurrent Close and Presence
=========================================================
Threads race a threshold-crossing join against a manual close, and two
deliveries of the same join against each other.  Runs on a file-backed
SQLite database so every thread gets its own connection.
"""

from __future__ import annotations

import threading

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from seedkeeper.database.models import AuditLog, Base, RewardGrant
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.errors import InvalidStateError
from seedkeeper.services.session_service import close_session, create_session, observe_presence

ROUNDS = 10

REWARDS = {
    "switch": {"value": 1, "unit": "days"},
    "completion": {"value": 6, "unit": "hours"},
}


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


def _join(steam: str, server: str, minute: int) -> PresenceEvent:
    return PresenceEvent(steam, server, PresenceKind.JOIN, minute)


def _run_together(*targets) -> list[Exception]:
    """Start every callable behind one barrier; collect what they raise."""
    barrier = threading.Barrier(len(targets))
    errors: list[Exception] = []

    def _wrap(fn):
        barrier.wait()
        try:
            fn()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_wrap, args=(fn,)) for fn in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    assert not any(t.is_alive() for t in threads)
    return errors


def _completion_grants_per_participant(engine, session_id: int) -> list[int]:
    with Session(engine) as db:
        return list(db.scalars(
            select(func.count(RewardGrant.id))
            .where(RewardGrant.session_id == session_id, RewardGrant.track == "completion")
            .group_by(RewardGrant.participant_id)
        ).all())


class TestCloseRace:
    def test_threshold_join_and_manual_close(self, file_engine, cfg, whitelist):
        for n in range(ROUNDS):
            row = create_session(
                file_engine, cfg,
                target_server_id="s1", player_threshold=2, rewards=REWARDS,
                actor_id="1001", test_mode=True, source_server_ids=["s2"],
            )
            observe_presence(file_engine, whitelist, _join(f"A{n}", "s2", 0))
            observe_presence(file_engine, whitelist, _join(f"A{n}", "s1", 1))

            errors = _run_together(
                lambda: observe_presence(file_engine, whitelist, _join(f"S{n}", "s1", 2)),
                lambda: close_session(file_engine, whitelist, row.id, actor_id="1001"),
            )
            # Losing the race to the auto-close is the only acceptable failure
            assert all(isinstance(e, InvalidStateError) for e in errors), errors

            with Session(file_engine) as db:
                closed_logs = db.scalar(
                    select(func.count(AuditLog.id)).where(
                        AuditLog.action_type == "seeding_session_closed",
                        AuditLog.target_id == str(row.id),
                    )
                )
            assert closed_logs == 1
            assert all(c <= 1 for c in _completion_grants_per_participant(file_engine, row.id))

    def test_duplicate_target_join_grants_switch_once(self, file_engine, cfg, whitelist):
        row = create_session(
            file_engine, cfg,
            target_server_id="s1", player_threshold=50, rewards=REWARDS, actor_id="1001",
        )
        observe_presence(file_engine, whitelist, _join("A", "s2", 0))

        errors = _run_together(
            *(lambda: observe_presence(file_engine, whitelist, _join("A", "s1", 5))
              for _ in range(4))
        )
        assert errors == []

        with Session(file_engine) as db:
            switch_grants = db.scalar(
                select(func.count(RewardGrant.id)).where(
                    RewardGrant.session_id == row.id, RewardGrant.track == "switch"
                )
            )
        assert switch_grants == 1
