"""Tests for the Remote Applier against real SQLite stores."""

import os
import sqlite3
from unittest.mock import MagicMock

import pytest

from common.constants import (
    DEFAULT_LOCAL_IDENTITY,
    DEFAULT_PEER_IDENTITY,
    DIRECTION_FORWARD,
    DIRECTION_REVERSE,
    ENTITY_MCP_SERVER,
    ENTITY_USER,
)
from common.types import ApplyAction, ApplyTask, ChangeKind
from replicator.replication import remote_applier
from replicator.replication.remote_applier import RemoteApplier
from replicator.replication.translation import mcp_server_from_peer, mcp_server_to_peer, user_to_peer

from conftest import make_local_server, make_peer_server, make_user


@pytest.fixture
def forward_applier(peer_store):
    return RemoteApplier(DIRECTION_FORWARD, peer_store, DEFAULT_LOCAL_IDENTITY, timeout=2.0)


@pytest.fixture
def reverse_applier(local_store):
    return RemoteApplier(DIRECTION_REVERSE, local_store, DEFAULT_PEER_IDENTITY, timeout=2.0)


@pytest.fixture
def mock_logger(monkeypatch):
    logger = MagicMock()
    monkeypatch.setattr(remote_applier, "logger", logger)
    return logger


def user_task(action=ApplyAction.UPSERT, **overrides):
    row = user_to_peer(make_user(**overrides))
    return ApplyTask(DIRECTION_FORWARD, ENTITY_USER, action, row["id"], row)


class TestUpsert:

    def test_insert_then_replay_is_idempotent(self, forward_applier, peer_repos):
        task = user_task()

        first = forward_applier.apply(task)
        state_after_first = peer_repos[ENTITY_USER].get("u1")
        second = forward_applier.apply(task)
        third = forward_applier.apply(task)

        assert first.ok and first.changed == 1
        assert second.ok and second.changed == 0
        assert third.ok and third.changed == 0
        assert peer_repos[ENTITY_USER].get("u1") == state_after_first
        assert peer_repos[ENTITY_USER].count() == 1

    def test_changed_field_updates_row(self, forward_applier, peer_repos):
        forward_applier.apply(user_task())
        result = forward_applier.apply(user_task(name="Renamed"))

        assert result.ok and result.changed == 1
        assert peer_repos[ENTITY_USER].get("u1")["name"] == "Renamed"

    def test_json_columns_replay_unchanged(self, forward_applier, peer_repos, entity_config):
        row = mcp_server_to_peer(make_local_server(), entity_config)
        task = ApplyTask(DIRECTION_FORWARD, ENTITY_MCP_SERVER, ApplyAction.UPSERT, "s1", row)

        assert forward_applier.apply(task).changed == 1
        assert forward_applier.apply(task).changed == 0
        assert peer_repos[ENTITY_MCP_SERVER].get("s1")["args"] == row["args"]

    def test_touch_column_alone_does_not_count_as_change(self, reverse_applier, local_repos, entity_config):
        first = mcp_server_from_peer(make_peer_server(), entity_config, now="2025-01-01T00:00:00")
        second = mcp_server_from_peer(make_peer_server(), entity_config, now="2025-06-01T00:00:00")

        assert reverse_applier.apply(ApplyTask(DIRECTION_REVERSE, ENTITY_MCP_SERVER, ApplyAction.UPSERT, "p1", first)).changed == 1
        assert reverse_applier.apply(ApplyTask(DIRECTION_REVERSE, ENTITY_MCP_SERVER, ApplyAction.UPSERT, "p1", second)).changed == 0
        assert local_repos[ENTITY_MCP_SERVER].get("p1")["updated_at"] == "2025-01-01T00:00:00"

    def test_reverse_upsert_keeps_local_enabled_flag(self, reverse_applier, local_repos, entity_config):
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server("p1", enabled=0))

        row = mcp_server_from_peer(make_peer_server(name="from-peer"), entity_config)
        result = reverse_applier.apply(ApplyTask(DIRECTION_REVERSE, ENTITY_MCP_SERVER, ApplyAction.UPSERT, "p1", row))

        stored = local_repos[ENTITY_MCP_SERVER].get("p1")
        assert result.changed == 1
        assert stored["name"] == "from-peer"
        assert stored["enabled"] == 0


class TestInsertIfMissingAndDelete:

    def test_insert_if_missing_leaves_existing_row(self, reverse_applier, local_repos, entity_config):
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server("p1", name="local-name"))

        row = mcp_server_from_peer(make_peer_server(name="peer-name"), entity_config)
        result = reverse_applier.apply(
            ApplyTask(DIRECTION_REVERSE, ENTITY_MCP_SERVER, ApplyAction.INSERT_IF_MISSING, "p1", row)
        )

        assert result.ok and result.changed == 0
        assert local_repos[ENTITY_MCP_SERVER].get("p1")["name"] == "local-name"

    def test_insert_if_missing_inserts_new_row(self, reverse_applier, local_repos, entity_config):
        row = mcp_server_from_peer(make_peer_server(), entity_config)
        result = reverse_applier.apply(
            ApplyTask(DIRECTION_REVERSE, ENTITY_MCP_SERVER, ApplyAction.INSERT_IF_MISSING, "p1", row)
        )

        assert result.changed == 1
        assert local_repos[ENTITY_MCP_SERVER].get("p1")["enabled"] == 1

    def test_delete(self, forward_applier, peer_repos):
        forward_applier.apply(user_task())

        removed = forward_applier.apply(ApplyTask(DIRECTION_FORWARD, ENTITY_USER, ApplyAction.DELETE, "u1"))
        again = forward_applier.apply(ApplyTask(DIRECTION_FORWARD, ENTITY_USER, ApplyAction.DELETE, "u1"))

        assert removed.ok and removed.changed == 1
        assert again.ok and again.changed == 0
        assert peer_repos[ENTITY_USER].get("u1") is None


class TestNotification:

    def test_changed_write_is_announced_with_identity(self, forward_applier, peer_store):
        events = []
        peer_store.add_listener(events.append)

        forward_applier.apply(user_task())
        forward_applier.apply(user_task())

        assert len(events) == 1
        assert events[0].origin == DEFAULT_LOCAL_IDENTITY
        assert events[0].key == "u1"
        assert events[0].new["email"] == "a@x.com"

    def test_delete_is_announced(self, forward_applier, peer_store):
        forward_applier.apply(user_task())
        events = []
        peer_store.add_listener(events.append)

        forward_applier.apply(ApplyTask(DIRECTION_FORWARD, ENTITY_USER, ApplyAction.DELETE, "u1"))

        assert [e.kind for e in events] == [ChangeKind.DELETE]


class TestFailures:

    def test_unreachable_store_returns_failure(self, missing_peer_store, mock_logger):
        applier = RemoteApplier(DIRECTION_FORWARD, missing_peer_store, DEFAULT_LOCAL_IDENTITY, timeout=1.0)

        result = applier.apply(user_task())

        assert not result.ok
        assert result.error
        mock_logger.warning.assert_called_once()
        message = mock_logger.warning.call_args[0][0]
        assert "entity=user" in message and "key=u1" in message and DIRECTION_FORWARD in message

    def test_constraint_violation_returns_failure(self, forward_applier, mock_logger):
        forward_applier.apply(user_task())

        result = forward_applier.apply(user_task(user_id="u2"))

        assert not result.ok
        assert "UNIQUE" in result.error
        mock_logger.warning.assert_called_once()

    def test_locked_store_times_out(self, peer_store, mock_logger):
        applier = RemoteApplier(DIRECTION_FORWARD, peer_store, DEFAULT_LOCAL_IDENTITY, timeout=0.2)
        blocker = sqlite3.connect(peer_store.path)
        try:
            blocker.execute("BEGIN IMMEDIATE")
            result = applier.apply(user_task())
        finally:
            blocker.rollback()
            blocker.close()

        assert not result.ok
        mock_logger.warning.assert_called_once()

    def test_unknown_entity_returns_failure(self, forward_applier, mock_logger):
        result = forward_applier.apply(ApplyTask(DIRECTION_FORWARD, "widget", ApplyAction.UPSERT, "w1", {"id": "w1"}))

        assert not result.ok
        mock_logger.warning.assert_called_once()

    def test_missing_row_returns_failure(self, forward_applier, mock_logger):
        result = forward_applier.apply(ApplyTask(DIRECTION_FORWARD, ENTITY_USER, ApplyAction.UPSERT, "u1"))

        assert not result.ok
        assert result.error == "missing row for write"

    def test_removed_database_file(self, forward_applier, peer_store, mock_logger):
        os.remove(peer_store.path)

        result = forward_applier.apply(user_task())

        assert not result.ok


@pytest.mark.asyncio
async def test_apply_async(forward_applier, peer_repos):
    result = await forward_applier.apply_async(user_task())

    assert result.ok and result.changed == 1
    assert peer_repos[ENTITY_USER].get("u1")["email"] == "a@x.com"
