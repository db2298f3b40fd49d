"""Tests for the peer readiness gate."""

import os
import sqlite3
from unittest.mock import MagicMock

import pytest

from common.protocol import required_peer_columns
from replicator.database import Store
from replicator.exceptions import ReadinessTimeout
from replicator.replication.readiness_gate import ReadinessGate


def partial_peer(tmp_path) -> Store:
    path = tmp_path / "partial.db"
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE users (id TEXT PRIMARY KEY, name TEXT)")
    conn.commit()
    conn.close()
    return Store("metamcp", path, create=False)


class TestProbe:

    def test_complete_schema(self, peer_store):
        gate = ReadinessGate(peer_store, required_peer_columns(), max_attempts=1, delay_seconds=0)
        assert gate.probe() == []

    def test_missing_database(self, missing_peer_store):
        gate = ReadinessGate(missing_peer_store, required_peer_columns(), max_attempts=1, delay_seconds=0)
        assert gate.probe() == ["<unreachable>"]

    def test_missing_database_is_not_created(self, missing_peer_store):
        gate = ReadinessGate(missing_peer_store, required_peer_columns(), max_attempts=1, delay_seconds=0)
        gate.probe()
        assert not os.path.exists(missing_peer_store.path)

    def test_missing_tables_and_columns(self, tmp_path):
        gate = ReadinessGate(
            partial_peer(tmp_path),
            {"users": ["id", "name", "email"], "sessions": ["id"]},
            max_attempts=1,
            delay_seconds=0
        )
        assert gate.probe() == ["users.email", "sessions"]

    def test_required_columns_cover_forward_contract(self):
        required = required_peer_columns()
        assert set(required) == {"users", "sessions", "accounts", "mcp_servers", "oauth_sessions"}
        assert "bearer_token" in required["mcp_servers"]
        assert "tokens" in required["oauth_sessions"]


class TestWait:

    @pytest.mark.asyncio
    async def test_ready_on_first_attempt(self, peer_store):
        gate = ReadinessGate(peer_store, required_peer_columns(), max_attempts=3, delay_seconds=0)
        gate.probe = MagicMock(wraps=gate.probe)

        assert await gate.wait_until_ready() is True
        assert gate.probe.call_count == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, missing_peer_store):
        gate = ReadinessGate(missing_peer_store, required_peer_columns(), max_attempts=3, delay_seconds=0)
        gate.probe = MagicMock(wraps=gate.probe)

        assert await gate.wait_until_ready() is False
        assert gate.probe.call_count == 3

    @pytest.mark.asyncio
    async def test_becomes_ready_between_attempts(self, peer_store):
        gate = ReadinessGate(peer_store, required_peer_columns(), max_attempts=3, delay_seconds=0)
        gate.probe = MagicMock(side_effect=[["users"], []])

        assert await gate.wait_until_ready() is True
        assert gate.probe.call_count == 2

    @pytest.mark.asyncio
    async def test_ensure_ready_raises(self, tmp_path):
        gate = ReadinessGate(partial_peer(tmp_path), {"users": ["email"]}, max_attempts=2, delay_seconds=0)

        with pytest.raises(ReadinessTimeout) as exc_info:
            await gate.ensure_ready()

        assert exc_info.value.attempts == 2
        assert exc_info.value.missing == ["users.email"]


def test_rejects_zero_attempts(peer_store):
    with pytest.raises(ValueError):
        ReadinessGate(peer_store, {}, max_attempts=0, delay_seconds=0)
