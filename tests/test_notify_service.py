"""
tests/test_notify_service.py — Broadcasts & Player Messages
============================================================
Message text, the HTTP game bridge against httpx.MockTransport, the Discord
mirror on a background event loop, and what the session lifecycle sends.
"""

from __future__ import annotations

import asyncio
import json
import threading
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import TEST_CONFIG_RAW, RecordingNotifier
from seedkeeper.bot.announcer import DiscordNotifier
from seedkeeper.config import parse_config
from seedkeeper.engine.events import PresenceEvent, PresenceKind
from seedkeeper.services.notify_service import (
    FanoutNotifier,
    HttpNotifier,
    LogNotifier,
    Notice,
    build_notifier,
    deliver,
)
from seedkeeper.services.session_service import (
    cancel_session,
    close_session,
    create_session,
    observe_presence,
    remind_active_sessions,
)

FULL_REWARDS = {
    "switch": {"value": 1, "unit": "days"},
    "playtime": {"value": 12, "unit": "hours", "threshold_minutes": 30},
    "completion": {"value": 6, "unit": "hours"},
}

CALL = "[SEEDING] Server #1 needs players! Switch now for up to 1.8d whitelist reward!"


def _start(engine, cfg, notifier=None, **overrides):
    kwargs = {
        "target_server_id": "s1",
        "player_threshold": 50,
        "rewards": FULL_REWARDS,
        "actor_id": "1001",
    }
    kwargs.update(overrides)
    return create_session(engine, cfg, notifier=notifier, **kwargs)


def _ev(steam: str, server: str, kind: str, minute: int) -> PresenceEvent:
    return PresenceEvent(steam, server, PresenceKind(kind), minute)


class _Exploding:
    def broadcast(self, server_ids, message):
        raise RuntimeError("bridge down")

    def message_player(self, server_id, steam_id, message):
        raise RuntimeError("bridge down")


# ---------------------------------------------------------------------------
# Lifecycle → notices
# ---------------------------------------------------------------------------
class TestSessionNotices:
    def test_create_broadcasts_call_to_sources(self, db_engine, cfg, notifier):
        _start(db_engine, cfg, notifier)
        assert notifier.broadcasts == [(("s2", "s3"), CALL)]

    def test_test_mode_call_is_prefixed(self, db_engine, cfg, notifier):
        _start(
            db_engine, cfg, notifier,
            player_threshold=1, test_mode=True, source_server_ids=["s3"],
        )
        [(servers, message)] = notifier.broadcasts
        assert servers == ("s3",)
        assert message.startswith("[TEST] [SEEDING] Server #1 needs players!")

    def test_switch_confirmation(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg)
        observe_presence(db_engine, whitelist, _ev("A", "s2", "join", 0), notifier=notifier)
        assert notifier.messages == []

        observe_presence(db_engine, whitelist, _ev("A", "s1", "join", 1), notifier=notifier)
        observe_presence(db_engine, whitelist, _ev("A", "s1", "heartbeat", 5), notifier=notifier)
        assert notifier.messages == [(
            "s1", "A",
            "[SEEDING] +1d whitelist unlocked! Stay 30min for +12h whitelist. "
            "Be here at 50 players for +6h more!",
        )]

    def test_switch_without_switch_track_still_confirms(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg, rewards={"completion": {"value": 6, "unit": "hours"}})
        observe_presence(db_engine, whitelist, _ev("A", "s2", "join", 0), notifier=notifier)
        observe_presence(db_engine, whitelist, _ev("A", "s1", "join", 1), notifier=notifier)
        [(_, _, message)] = notifier.messages
        assert message.startswith("[SEEDING] You've been counted!")

    def test_seeder_enrollment(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg)
        observe_presence(db_engine, whitelist, _ev("S", "s1", "join", 0), notifier=notifier)
        [(server, steam, message)] = notifier.messages
        assert (server, steam) == ("s1", "S")
        assert message.startswith("[SEEDING] Seeding session started!")

    def test_leave_first_seeder_gets_no_enrollment(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg)
        observe_presence(db_engine, whitelist, _ev("S", "s1", "leave", 20), notifier=notifier)
        assert notifier.messages == []

    def test_playtime_reward_message(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg)
        observe_presence(db_engine, whitelist, _ev("A", "s2", "join", 0))
        observe_presence(db_engine, whitelist, _ev("A", "s1", "join", 0))
        observe_presence(db_engine, whitelist, _ev("A", "s1", "heartbeat", 30), notifier=notifier)
        assert notifier.messages == [(
            "s1", "A",
            "[SEEDING] Playtime bonus unlocked! +12h whitelist added. Total earned: 1.5d",
        )]

    def test_auto_close_notices(self, db_engine, cfg, whitelist, notifier):
        _start(db_engine, cfg, player_threshold=2, test_mode=True, source_server_ids=["s2"])
        observe_presence(db_engine, whitelist, _ev("A", "s2", "join", 0))
        observe_presence(db_engine, whitelist, _ev("A", "s1", "join", 1))
        observe_presence(db_engine, whitelist, _ev("S", "s1", "join", 2), notifier=notifier)

        assert notifier.broadcasts == [
            (("s2",), "[SEEDING] Thanks! Server #1 seeding complete. Session closed."),
        ]
        enrollment, to_a, to_s = notifier.messages
        assert enrollment[1] == "S"
        assert to_a[:2] == ("s1", "A")
        assert to_a[2].startswith("[SEEDING] Seeding complete! +6h completion bonus!")
        assert to_s == (
            "s1", "S",
            "[SEEDING] Seeding complete! +6h completion bonus! Your total reward: 6h whitelist",
        )

    def test_manual_close_notices(self, db_engine, cfg, whitelist, notifier):
        row = _start(db_engine, cfg)
        observe_presence(db_engine, whitelist, _ev("S", "s1", "join", 0))
        observe_presence(db_engine, whitelist, _ev("B", "s2", "join", 0))
        close_session(db_engine, whitelist, row.id, actor_id="1001", notifier=notifier)

        assert notifier.broadcasts[0][0] == ("s2", "s3")
        assert "seeding complete" in notifier.broadcasts[0][1]
        assert [m[1] for m in notifier.messages] == ["S"]

    def test_cancel_notice(self, db_engine, cfg, notifier):
        row = _start(db_engine, cfg)
        cancel_session(db_engine, row.id, actor_id="1001", reason="wrong", notifier=notifier)
        assert notifier.broadcasts == [
            (("s2", "s3"), "[SEEDING] Server #1 seeding session has been cancelled."),
        ]
        assert notifier.messages == []

    def test_reminders_cover_active_sessions(self, db_engine, cfg, notifier):
        _start(db_engine, cfg)
        second = _start(db_engine, cfg, target_server_id="s2")
        cancel_session(db_engine, second.id, actor_id="1001", reason="dup")

        assert remind_active_sessions(db_engine, notifier) == 1
        assert notifier.broadcasts == [(("s2", "s3"), CALL)]

    def test_delivery_failure_keeps_committed_state(self, db_engine, cfg, whitelist):
        row = _start(db_engine, cfg, notifier=_Exploding())
        observe_presence(db_engine, whitelist, _ev("A", "s2", "join", 0), notifier=_Exploding())
        [outcome] = observe_presence(
            db_engine, whitelist, _ev("A", "s1", "join", 1), notifier=_Exploding(),
        )
        assert outcome.granted == ["switch"]
        assert outcome.session_id == row.id


# ---------------------------------------------------------------------------
# deliver / fanout
# ---------------------------------------------------------------------------
class TestDeliver:
    def test_routes_by_recipient(self, notifier):
        deliver(notifier, [
            Notice(("s2", "s3"), "all"),
            Notice(("s1",), "you", steam_id="A"),
        ])
        assert notifier.broadcasts == [(("s2", "s3"), "all")]
        assert notifier.messages == [("s1", "A", "you")]

    def test_none_notifier_is_noop(self):
        deliver(None, [Notice(("s1",), "x")])

    def test_failure_logged_and_rest_still_sent(self, caplog):
        second = RecordingNotifier()
        deliver(FanoutNotifier(second, _Exploding()), [
            Notice(("s1",), "one"),
            Notice(("s1",), "two", steam_id="A"),
        ])
        assert second.broadcasts == [(("s1",), "one")]
        assert second.messages == [("s1", "A", "two")]
        assert "Failed to deliver notice" in caplog.text

    def test_log_notifier(self, caplog):
        caplog.set_level("INFO", logger="seedkeeper.services.notify_service")
        LogNotifier().broadcast(["s2"], "hello")
        assert "Broadcast to s2: hello" in caplog.text


# ---------------------------------------------------------------------------
# HTTP game bridge
# ---------------------------------------------------------------------------
class TestHttpNotifier:
    def test_broadcast_posts_per_server(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        bridge = HttpNotifier(
            "http://bridge.test/api/", token="t0k", transport=httpx.MockTransport(handler),
        )
        bridge.broadcast(["s2", "s3"], "[SEEDING] go")

        assert [r.url.path for r in seen] == ["/api/servers/s2/broadcast", "/api/servers/s3/broadcast"]
        assert json.loads(seen[0].content) == {"message": "[SEEDING] go"}
        assert seen[0].headers["Authorization"] == "Bearer t0k"

    def test_player_message_path(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200)

        bridge = HttpNotifier("http://bridge.test", transport=httpx.MockTransport(handler))
        bridge.message_player("s1", "7656", "hi")
        assert seen == ["/servers/s1/players/7656/warn"]

    def test_error_status_is_logged_not_raised(self, caplog):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(502)

        bridge = HttpNotifier("http://bridge.test", transport=httpx.MockTransport(handler))
        bridge.broadcast(["s2", "s3"], "x")
        assert len(calls) == 2
        assert "returned 502" in caplog.text

    def test_unreachable_is_logged_not_raised(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        bridge = HttpNotifier("http://bridge.test", transport=httpx.MockTransport(handler))
        bridge.message_player("s1", "A", "x")
        assert "unreachable" in caplog.text


class TestBuildNotifier:
    def test_default_is_log(self):
        assert isinstance(build_notifier(parse_config(TEST_CONFIG_RAW)), LogNotifier)

    def test_http(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_API_TOKEN", "abc")
        cfg = parse_config(
            TEST_CONFIG_RAW | {"notifications": {"backend": "http", "base_url": "http://b"}}
        )
        notifier = build_notifier(cfg)
        assert isinstance(notifier, HttpNotifier)
        notifier.close()


# ---------------------------------------------------------------------------
# Discord mirror
# ---------------------------------------------------------------------------
@pytest.fixture
def running_loop():
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield loop
    loop.call_soon_threadsafe(loop.stop)
    thread.join(timeout=5)
    loop.close()


def _bot(loop, closed=False) -> MagicMock:
    bot = MagicMock()
    bot.loop = loop
    bot.is_closed.return_value = closed
    bot.announce = AsyncMock()
    return bot


class TestDiscordNotifier:
    def test_broadcast_posts_embed_on_bot_loop(self, running_loop):
        bot = _bot(running_loop)
        DiscordNotifier(bot).broadcast(["s2"], "[SEEDING] hello")
        # Drain the loop once so the scheduled announce has run
        asyncio.run_coroutine_threadsafe(asyncio.sleep(0), running_loop).result(timeout=5)

        bot.announce.assert_awaited_once()
        assert bot.announce.await_args.args[0].description == "[SEEDING] hello"

    def test_closed_bot_posts_nothing(self, running_loop):
        bot = _bot(running_loop, closed=True)
        DiscordNotifier(bot).broadcast(["s2"], "x")
        asyncio.run_coroutine_threadsafe(asyncio.sleep(0), running_loop).result(timeout=5)
        bot.announce.assert_not_called()

    def test_player_messages_stay_in_game(self, running_loop):
        bot = _bot(running_loop)
        DiscordNotifier(bot).message_player("s1", "A", "x")
        bot.announce.assert_not_called()
