"""
tests/test_config.py — YAML Configuration Loader
=================================================
"""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import TEST_CONFIG_RAW
from seedkeeper.config import load_config, parse_config

REPO_ROOT = Path(__file__).resolve().parent.parent


class TestLoadConfig:
    def test_missing_file_hints_at_example(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "config.yaml")

    def test_example_file_parses(self):
        cfg = load_config(REPO_ROOT / "config.yaml.example")
        assert cfg.server_ids == ("server1", "server2")
        assert cfg.whitelist.backend == "ledger"
        assert cfg.seeders_earn_playtime is False
        assert cfg.announce_channel_id is None
        assert cfg.notifications.backend == "log"
        assert cfg.notifications.reminder_minutes == 5

    def test_reads_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "community_name: Test\n"
            "bot_prefix: '!'\n"
            "guild_id: 5\n"
            "dashboard_port: 8080\n"
            "admin_role_id: 7\n"
            "announce_channel_id: 99\n"
            "servers:\n"
            "  - id: 1\n"
            "    name: Alpha\n"
            "  - id: bravo\n"
            "seeding:\n"
            "  seeders_earn_playtime: true\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.server_ids == ("1", "bravo")
        assert cfg.get_server("bravo").name == "bravo"
        assert cfg.announce_channel_id == 99
        assert cfg.seeders_earn_playtime is True


class TestParseConfig:
    def test_defaults(self):
        cfg = parse_config(TEST_CONFIG_RAW)
        assert cfg.whitelist.timeout_seconds == 10.0
        assert cfg.get_server("s2").name == "Server #2"
        assert cfg.get_server("nope") is None

    def test_unknown_backend(self):
        raw = TEST_CONFIG_RAW | {"whitelist": {"backend": "ftp"}}
        with pytest.raises(ValueError, match="Unknown whitelist backend"):
            parse_config(raw)

    def test_http_requires_base_url(self):
        raw = TEST_CONFIG_RAW | {"whitelist": {"backend": "http"}}
        with pytest.raises(ValueError, match="base_url"):
            parse_config(raw)

    def test_missing_required_key(self):
        raw = {k: v for k, v in TEST_CONFIG_RAW.items() if k != "guild_id"}
        with pytest.raises(KeyError):
            parse_config(raw)

    def test_notification_defaults(self):
        notifications = parse_config(TEST_CONFIG_RAW).notifications
        assert notifications.backend == "log"
        assert notifications.timeout_seconds == 5.0
        assert notifications.discord is True

    def test_notifications_http(self):
        raw = TEST_CONFIG_RAW | {"notifications": {
            "backend": "http", "base_url": "http://bridge", "reminder_minutes": 0,
        }}
        notifications = parse_config(raw).notifications
        assert notifications.base_url == "http://bridge"
        assert notifications.reminder_minutes == 0

    @pytest.mark.parametrize("section, match", [
        ({"backend": "rcon"}, "Unknown notifications backend"),
        ({"backend": "http"}, "notifications.base_url"),
        ({"reminder_minutes": -1}, "cannot be negative"),
    ])
    def test_bad_notifications(self, section, match):
        with pytest.raises(ValueError, match=match):
            parse_config(TEST_CONFIG_RAW | {"notifications": section})
