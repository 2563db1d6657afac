from __future__ import annotations

import json

from tfsp.auth import Role
from tfsp.config import ServerConfig
from tfsp.run_node import build_config, parse_args


def test_defaults():
    cfg = ServerConfig.from_env({})
    assert cfg.port == 9000
    assert cfg.max_active_connections == 6
    assert cfg.inactivity_ms == 120000
    assert cfg.users["admin"].role is Role.ADMIN
    assert sorted(cfg.users) == ["admin", "user1", "user2", "user3"]


def test_env_overrides(tmp_path):
    users = tmp_path / "users.json"
    users.write_text(json.dumps({"ops": {"password": "pw", "role": "admin"}}))
    cfg = ServerConfig.from_env({
        "TFSP_PORT": "9100",
        "TFSP_MAX_CONNECTIONS": "2",
        "TFSP_INACTIVITY_MS": "500",
        "TFSP_STATS_LOG": "",
        "TFSP_USERS_FILE": str(users),
    })
    assert cfg.port == 9100
    assert cfg.max_active_connections == 2
    assert cfg.inactivity_s == 0.5
    assert cfg.stats_log_file is None
    assert list(cfg.users) == ["ops"]


def test_cli_flags_override_env(monkeypatch):
    monkeypatch.setenv("TFSP_PORT", "9100")
    args = parse_args(["--mode", "server", "--port", "9200", "--max-connections", "3"])
    cfg = build_config(args)
    assert cfg.port == 9200
    assert cfg.max_active_connections == 3


def test_cli_subcommand_parsing():
    args = parse_args(["--mode", "cli", "--user", "u", "--password", "p", "read", "a.txt"])
    assert args.command == "read"
    assert args.target == "a.txt"
    args = parse_args(["--mode", "cli", "--user", "u", "--password", "p", "list"])
    assert args.target is None
