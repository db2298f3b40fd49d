"""Integration tests for the tracked table repositories."""

import pytest

from common.constants import ENTITY_MCP_SERVER, ENTITY_USER
from common.types import ChangeKind

from conftest import make_local_server, make_user


@pytest.fixture
def events(local_store):
    received = []
    local_store.add_listener(received.append)
    return received


class TestWrites:

    def test_insert_emits_event_after_commit(self, local_store, local_repos, events):
        seen_in_store = []
        local_store.add_listener(lambda e: seen_in_store.append(local_repos[ENTITY_USER].get(e.key)))

        stored = local_repos[ENTITY_USER].insert(make_user())

        assert stored["email"] == "a@x.com"
        assert len(events) == 1
        assert events[0].kind == ChangeKind.INSERT
        assert events[0].origin is None
        assert events[0].new == stored
        assert seen_in_store[0] is not None

    def test_insert_carries_origin(self, local_repos, events):
        local_repos[ENTITY_USER].insert(make_user(), origin="metamcp_sync")
        assert events[0].origin == "metamcp_sync"

    def test_update_emits_old_and_new(self, local_repos, events):
        local_repos[ENTITY_USER].insert(make_user())

        updated = local_repos[ENTITY_USER].update("u1", {"name": "New Name"})

        assert updated["name"] == "New Name"
        assert events[1].kind == ChangeKind.UPDATE
        assert events[1].old["name"] == "User u1"
        assert events[1].new["name"] == "New Name"

    def test_update_missing_row(self, local_repos, events):
        assert local_repos[ENTITY_USER].update("nope", {"name": "x"}) is None
        assert events == []

    def test_update_rejects_key_change(self, local_repos):
        local_repos[ENTITY_USER].insert(make_user())
        with pytest.raises(ValueError):
            local_repos[ENTITY_USER].update("u1", {"id": "u2"})

    def test_unknown_column_rejected(self, local_repos):
        with pytest.raises(ValueError):
            local_repos[ENTITY_USER].insert({**make_user(), "nickname": "x"})

    def test_delete(self, local_repos, events):
        local_repos[ENTITY_USER].insert(make_user())

        assert local_repos[ENTITY_USER].delete("u1") is True
        assert local_repos[ENTITY_USER].delete("u1") is False
        assert events[-1].kind == ChangeKind.DELETE
        assert events[-1].old["id"] == "u1"
        assert len(events) == 2

    def test_json_columns_round_trip(self, local_repos):
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server())

        stored = local_repos[ENTITY_MCP_SERVER].get("s1")

        assert stored["args"] == ["-y", "@modelcontextprotocol/server-everything"]
        assert stored["environment"] == {"DEBUG": "1"}

    def test_failing_listener_does_not_affect_writer(self, local_store, local_repos):
        def broken(event):
            raise RuntimeError("listener down")

        local_store.add_listener(broken)

        stored = local_repos[ENTITY_USER].insert(make_user())

        assert stored is not None
        assert local_repos[ENTITY_USER].count() == 1


class TestScan:

    def test_keyset_pages(self, local_repos):
        for n in range(5):
            local_repos[ENTITY_USER].insert(make_user(f"u{n}", f"user{n}@x.com"))

        first = local_repos[ENTITY_USER].scan(limit=2)
        second = local_repos[ENTITY_USER].scan(after_key=first[-1]["id"], limit=2)
        third = local_repos[ENTITY_USER].scan(after_key=second[-1]["id"], limit=2)

        assert [r["id"] for r in first + second + third] == ["u0", "u1", "u2", "u3", "u4"]

    def test_filters(self, local_repos):
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server("s1"))
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server("s2", enabled=0))
        local_repos[ENTITY_MCP_SERVER].insert(make_local_server("s3", description=None))

        enabled = local_repos[ENTITY_MCP_SERVER].scan(equals={"enabled": 1})
        described = local_repos[ENTITY_MCP_SERVER].scan(equals={"enabled": 1}, not_null=["description"])

        assert [r["id"] for r in enabled] == ["s1", "s3"]
        assert [r["id"] for r in described] == ["s1"]
