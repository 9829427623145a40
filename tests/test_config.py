import logging
from pathlib import Path

import pytest

from peerlink.config import load_config, read_profiles
from peerlink.main import parse_args
from peerlink.utils.logging import resolve_level


def test_default_profile_matches_bundled_file() -> None:
    config = load_config(environ={})

    assert config.profile == "default"
    assert config.store_url == "http://127.0.0.1:8080"
    assert config.ice.candidate_pool_size == 10
    assert "stun:stun1.l.google.com:19302" in config.ice.iter_urls()
    assert {"default", "lan"} <= set(read_profiles())


def test_environment_overrides(tmp_path: Path) -> None:
    profiles = tmp_path / "profiles.yaml"
    profiles.write_text(
        "office:\n"
        "  store_url: http://signal.internal:9000\n"
        "  poll_interval: 0.5\n"
        "  ice:\n"
        "    servers:\n"
        "      - urls: turn:turn.internal\n"
        "        username: alice\n"
        "        credential: secret\n"
    )

    config = load_config(
        path=profiles,
        environ={"PEERLINK_PROFILE": "office", "PEERLINK_STORE_URL": "http://override:1"},
    )

    assert config.profile == "office"
    assert config.store_url == "http://override:1"
    assert config.poll_interval == 0.5
    assert config.ice.servers[0].username == "alice"


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(KeyError):
        load_config("missing", path=tmp_path / "absent.yaml", environ={})

    # A missing file still yields the built-in default profile.
    assert load_config(path=tmp_path / "absent.yaml", environ={}).profile == "default"


def test_cli_arguments_and_log_levels() -> None:
    args = parse_args(["--profile", "lan", "--port", "9000", "--log-level", "debug"])

    assert args.profile == "lan"
    assert args.port == 9000
    assert resolve_level(args.log_level) == logging.DEBUG
    assert resolve_level("nonsense") == logging.INFO
    assert resolve_level(logging.WARNING) == logging.WARNING
