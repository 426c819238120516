"""
tests/test_participant_state.py — Participant State Machine
============================================================
Pure tests: participants are plain ORM instances, never persisted.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from seedkeeper.database.models import ParticipantStatus, ParticipantType, RewardTrigger
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.engine.rewards import RewardsConfig
from seedkeeper.engine.state import (
    apply_presence,
    completion_candidates,
    completion_reward_due,
    derive_status,
    earned_triggers,
    mark_completed,
    new_participant,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)
TARGET = "s1"
SOURCE = "s2"

REWARDS = RewardsConfig.from_dict({
    "switch": {"value": 1, "unit": "days"},
    "playtime": {"value": 12, "unit": "hours", "threshold_minutes": 30},
    "completion": {"value": 6, "unit": "hours"},
})


def _ev(server: str, kind: str, minute: int, steam: str = "765") -> PresenceEvent:
    return PresenceEvent(steam, server, PresenceKind(kind), minute)


def _feed(p, *events, rewards=REWARDS, seeders_earn_playtime=False):
    status = None
    for e in events:
        status = apply_presence(
            p, e,
            target_server_id=TARGET,
            rewards=rewards,
            now=NOW,
            seeders_earn_playtime=seeders_earn_playtime,
        )
    return status


@pytest.fixture
def switcher():
    return new_participant(1, TARGET, _ev(SOURCE, "join", 0))


@pytest.fixture
def seeder():
    return new_participant(1, TARGET, _ev(TARGET, "join", 0))


class TestFirstObservation:
    def test_source_first_is_switcher(self, switcher):
        assert switcher.participant_type == ParticipantType.SWITCHER
        assert switcher.status == ParticipantStatus.ON_SOURCE

    def test_target_first_is_seeder(self, seeder):
        assert seeder.participant_type == ParticipantType.SEEDER
        assert seeder.status == ParticipantStatus.SEEDER


class TestSwitcherProgression:
    def test_switch_on_target_join(self, switcher):
        status = _feed(switcher, _ev(SOURCE, "join", 0), _ev(TARGET, "join", 5))
        assert status == ParticipantStatus.SWITCHED
        assert switcher.switched_at == NOW
        assert switcher.is_on_target
        assert earned_triggers(switcher) == [RewardTrigger.SWITCH]

    def test_playtime_met_after_threshold(self, switcher):
        status = _feed(
            switcher,
            _ev(SOURCE, "join", 0),
            _ev(TARGET, "join", 5),
            _ev(TARGET, "heartbeat", 20),
            _ev(TARGET, "heartbeat", 40),
        )
        assert switcher.target_playtime_minutes == 35
        assert status == ParticipantStatus.PLAYTIME_MET
        assert earned_triggers(switcher) == [RewardTrigger.SWITCH, RewardTrigger.PLAYTIME]

    def test_no_playtime_track_stays_switched(self, switcher):
        rewards = RewardsConfig.from_dict({"switch": {"value": 1, "unit": "days"}})
        status = _feed(
            switcher, _ev(TARGET, "join", 0), _ev(TARGET, "heartbeat", 500), rewards=rewards,
        )
        assert status == ParticipantStatus.SWITCHED
        assert switcher.playtime_met_at is None

    def test_leaving_target_never_regresses(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 5), _ev(TARGET, "leave", 10))
        assert not switcher.is_on_target
        assert derive_status(switcher) == ParticipantStatus.SWITCHED
        _feed(switcher, _ev(SOURCE, "join", 11))
        assert derive_status(switcher) == ParticipantStatus.SWITCHED


class TestPlaytimeAccrual:
    def test_absence_does_not_count(self, switcher):
        _feed(
            switcher,
            _ev(TARGET, "join", 0),
            _ev(TARGET, "leave", 10),
            _ev(TARGET, "join", 100),
            _ev(TARGET, "heartbeat", 105),
        )
        assert switcher.target_playtime_minutes == 15

    def test_replayed_heartbeats_are_harmless(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 0), _ev(TARGET, "heartbeat", 10))
        _feed(switcher, _ev(TARGET, "heartbeat", 10), _ev(TARGET, "heartbeat", 10))
        assert switcher.target_playtime_minutes == 10

    def test_out_of_order_heartbeat_ignored(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 0), _ev(TARGET, "heartbeat", 20))
        _feed(switcher, _ev(TARGET, "heartbeat", 12))
        assert switcher.target_playtime_minutes == 20

    def test_duplicate_join_acts_as_heartbeat(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 0), _ev(TARGET, "join", 8))
        assert switcher.target_playtime_minutes == 8
        assert switcher.target_join_minute == 0

    def test_stale_leave_ignored(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 10), _ev(TARGET, "leave", 5))
        assert switcher.is_on_target

    def test_stale_join_after_leave_ignored(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 10), _ev(TARGET, "leave", 20))
        _feed(switcher, _ev(TARGET, "join", 15))
        assert not switcher.is_on_target
        assert switcher.target_playtime_minutes == 10

    def test_late_join_after_second_leave_ignored(self, switcher):
        _feed(
            switcher,
            _ev(TARGET, "join", 0),
            _ev(TARGET, "leave", 5),
            _ev(TARGET, "leave", 20),
            _ev(TARGET, "join", 10),
        )
        assert not switcher.is_on_target
        assert switcher.target_leave_minute == 20
        assert not completion_reward_due(switcher, REWARDS)

    def test_leave_before_any_join_blocks_earlier_join(self, seeder):
        _feed(seeder, _ev(TARGET, "leave", 20), _ev(TARGET, "join", 10))
        assert not seeder.is_on_target
        assert seeder.target_leave_minute == 20
        assert not completion_reward_due(seeder, REWARDS)

    def test_join_after_recorded_leave_enters(self, seeder):
        _feed(seeder, _ev(TARGET, "leave", 20), _ev(TARGET, "join", 21))
        assert seeder.is_on_target
        assert seeder.target_leave_minute is None

    def test_heartbeat_for_absent_player_counts_as_join(self, switcher):
        _feed(switcher, _ev(TARGET, "heartbeat", 3))
        assert switcher.is_on_target
        assert switcher.switched_at == NOW


class TestSeeders:
    def test_seeder_ignores_playtime_by_default(self, seeder):
        status = _feed(seeder, _ev(TARGET, "join", 0), _ev(TARGET, "heartbeat", 60))
        assert status == ParticipantStatus.SEEDER
        assert seeder.playtime_met_at is None

    def test_seeder_playtime_with_policy_flag(self, seeder):
        status = _feed(
            seeder,
            _ev(TARGET, "join", 0),
            _ev(TARGET, "heartbeat", 60),
            seeders_earn_playtime=True,
        )
        assert status == ParticipantStatus.PLAYTIME_MET
        assert earned_triggers(seeder) == [RewardTrigger.PLAYTIME]

    def test_seeder_never_earns_switch(self, seeder):
        _feed(seeder, _ev(SOURCE, "join", 1), _ev(TARGET, "join", 2))
        assert seeder.switched_at is None
        assert RewardTrigger.SWITCH not in earned_triggers(seeder)


class TestCompletion:
    def test_due_when_on_target(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 0))
        assert completion_reward_due(switcher, REWARDS)

    def test_not_due_when_absent(self, switcher):
        _feed(switcher, _ev(TARGET, "join", 0), _ev(TARGET, "leave", 5))
        assert not completion_reward_due(switcher, REWARDS)
        assert not mark_completed(switcher, NOW)
        assert derive_status(switcher) == ParticipantStatus.SWITCHED

    def test_not_due_on_source(self, switcher):
        _feed(switcher, _ev(SOURCE, "join", 0))
        assert not completion_reward_due(switcher, REWARDS)

    def test_not_due_without_completion_track(self, seeder):
        rewards = RewardsConfig.from_dict({"switch": {"value": 1, "unit": "days"}})
        _feed(seeder, _ev(TARGET, "join", 0), rewards=rewards)
        assert not completion_reward_due(seeder, rewards)
        # Still completes, just unpaid
        assert mark_completed(seeder, NOW)
        assert seeder.status == ParticipantStatus.COMPLETED

    def test_mark_completed_sets_fact(self, seeder):
        _feed(seeder, _ev(TARGET, "join", 0))
        assert mark_completed(seeder, NOW)
        assert seeder.completed_at == NOW
        assert RewardTrigger.COMPLETION in earned_triggers(seeder)

    def test_candidates_filters(self, switcher, seeder):
        _feed(seeder, _ev(TARGET, "join", 0))
        _feed(switcher, _ev(SOURCE, "join", 0))
        assert completion_candidates([switcher, seeder], REWARDS) == [seeder]
