"""Shared pytest fixtures for all tests."""

import pytest

from common.constants import DEFAULT_LOCAL_IDENTITY, DEFAULT_PEER_IDENTITY
from replicator.database import Store, init_local_schema, init_peer_schema
from replicator.entity_config import default_entity_config
from replicator.replication.sync_engine import SyncEngine
from replicator.repositories import local_repositories, peer_repositories

TIMESTAMP = "2025-01-01T00:00:00"


@pytest.fixture
def local_store(tmp_path):
    """
    Create a temporary local (agentpod) store with its schema.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Store backed by a fresh SQLite file
    """
    store = Store("agentpod", tmp_path / "agentpod.db")
    init_local_schema(store)
    return store


@pytest.fixture
def peer_store(tmp_path):
    """
    Create a temporary peer (metamcp) store with its schema.

    The store is opened without create, like the real peer connection.
    """
    store = Store("metamcp", tmp_path / "metamcp.db", create=False)
    init_peer_schema(store)
    return store


@pytest.fixture
def missing_peer_store(tmp_path):
    """Peer store whose database file does not exist."""
    return Store("metamcp", tmp_path / "absent" / "metamcp.db", create=False)


@pytest.fixture
def local_repos(local_store):
    return local_repositories(local_store)


@pytest.fixture
def peer_repos(peer_store):
    return peer_repositories(peer_store)


@pytest.fixture
def entity_config():
    return default_entity_config()


@pytest.fixture
def make_engine(local_store, peer_store):
    """
    Factory for a SyncEngine wired to the temporary stores with fast test settings.
    """
    def factory(peer=None, **overrides):
        settings = dict(
            readiness_attempts=2,
            readiness_delay=0,
            apply_timeout=2.0,
            workers=2,
            queue_size=100,
            batch_size=2,
        )
        settings.update(overrides)
        return SyncEngine(
            local_store,
            peer or peer_store,
            DEFAULT_LOCAL_IDENTITY,
            DEFAULT_PEER_IDENTITY,
            **settings
        )
    return factory


def make_user(user_id="u1", email="a@x.com", **overrides):
    row = {
        "id": user_id,
        "name": f"User {user_id}",
        "email": email,
        "email_verified": 0,
        "image": None,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    }
    row.update(overrides)
    return row


def make_local_server(server_id="s1", **overrides):
    row = {
        "id": server_id,
        "user_id": "u1",
        "name": f"server-{server_id}",
        "description": "test server",
        "type": "STDIO",
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-everything"],
        "url": None,
        "auth_type": "none",
        "auth_config": {},
        "environment": {"DEBUG": "1"},
        "enabled": 1,
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    }
    row.update(overrides)
    return row


def make_peer_server(server_id="p1", **overrides):
    row = {
        "uuid": server_id,
        "name": f"peer-{server_id}",
        "description": None,
        "type": "SSE",
        "command": None,
        "args": [],
        "url": "https://mcp.example.com/sse",
        "env": {},
        "bearer_token": None,
        "headers": {},
        "user_id": "u1",
        "created_at": TIMESTAMP,
    }
    row.update(overrides)
    return row


def make_oauth_session(session_id="o1", server_id="s1", **overrides):
    row = {
        "id": session_id,
        "mcp_server_id": server_id,
        "client_id": "client-1",
        "client_secret": "shh",
        "access_token": None,
        "refresh_token": None,
        "token_type": None,
        "expires_at": None,
        "scope": None,
        "code_verifier": "verifier",
        "status": "pending",
        "created_at": TIMESTAMP,
        "updated_at": TIMESTAMP,
    }
    row.update(overrides)
    return row
