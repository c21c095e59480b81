"""Tests for the admission-reset command."""

from unittest.mock import patch

import fakeredis
import fakeredis.aioredis
import pytest

from admission.app import cli
from admission.app.services.counter_store import CounterStore


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def seeded(server):
    """Sync client on the same fake server, used to seed and inspect keys."""
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    client.set("ratelimit:api:fixed_window:{203.0.113.7}:0", 5)
    client.set("ratelimit:login:atomic_window:{203.0.113.7}:0", 2)
    client.set("ratelimit:api:fixed_window:{203.0.113.8}:0", 1)
    return client


@pytest.fixture
def patched_store(server):
    def from_settings(config=None):
        client = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
        return CounterStore(client, key_prefix="ratelimit")

    with patch.object(CounterStore, "from_settings", side_effect=from_settings), \
            patch.object(cli, "setup_logging"):
        yield


def test_reset_all_presets(seeded, patched_store, capsys):
    assert cli.main(["203.0.113.7"]) == 0

    assert "Deleted 2 keys for 203.0.113.7" in capsys.readouterr().out
    assert seeded.exists("ratelimit:api:fixed_window:{203.0.113.8}:0") == 1


def test_reset_one_scope(seeded, patched_store, capsys):
    assert cli.main(["203.0.113.7", "--scope", "login"]) == 0

    assert "Deleted 1 keys for 203.0.113.7 (scope: login)" in capsys.readouterr().out
    assert seeded.exists("ratelimit:api:fixed_window:{203.0.113.7}:0") == 1
    assert seeded.exists("ratelimit:login:atomic_window:{203.0.113.7}:0") == 0


def test_unknown_scope_fails(seeded, patched_store, capsys):
    assert cli.main(["203.0.113.7", "--scope", "missing"]) == 1

    assert "Unknown rate limit preset" in capsys.readouterr().err
    assert seeded.exists("ratelimit:api:fixed_window:{203.0.113.7}:0") == 1
