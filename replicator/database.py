"""Store handles, schema creation and change notification for both SQLite databases."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Generator, List

from common.constants import DEFAULT_APPLY_TIMEOUT_SECONDS
from common.logging_config import get_logger
from common.types import ChangeEvent

logger = get_logger(__name__)

ChangeListener = Callable[[ChangeEvent], object]


LOCAL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS "user" (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        email_verified INTEGER NOT NULL DEFAULT 0,
        image TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS session (
        id TEXT PRIMARY KEY,
        expires_at TEXT NOT NULL,
        token TEXT UNIQUE NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        ip_address TEXT,
        user_agent TEXT,
        user_id TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        provider_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        access_token TEXT,
        refresh_token TEXT,
        id_token TEXT,
        access_token_expires_at TEXT,
        refresh_token_expires_at TEXT,
        scope TEXT,
        password TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mcp_servers (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL,
        command TEXT,
        args TEXT DEFAULT '[]',
        url TEXT,
        auth_type TEXT NOT NULL DEFAULT 'none',
        auth_config TEXT DEFAULT '{}',
        environment TEXT DEFAULT '{}',
        enabled INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mcp_oauth_sessions (
        id TEXT PRIMARY KEY,
        mcp_server_id TEXT NOT NULL,
        client_id TEXT,
        client_secret TEXT,
        access_token TEXT,
        refresh_token TEXT,
        token_type TEXT,
        expires_at TEXT,
        scope TEXT,
        code_verifier TEXT,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_mcp_servers_enabled ON mcp_servers(enabled)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_oauth_sessions_status ON mcp_oauth_sessions(status)
    """,
]

PEER_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        email_verified INTEGER NOT NULL DEFAULT 0,
        image TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        expires_at TEXT NOT NULL,
        token TEXT UNIQUE NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        ip_address TEXT,
        user_agent TEXT,
        user_id TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        provider_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        access_token TEXT,
        refresh_token TEXT,
        id_token TEXT,
        access_token_expires_at TEXT,
        refresh_token_expires_at TEXT,
        scope TEXT,
        password TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mcp_servers (
        uuid TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        type TEXT NOT NULL DEFAULT 'STDIO',
        command TEXT,
        args TEXT NOT NULL DEFAULT '[]',
        url TEXT,
        env TEXT NOT NULL DEFAULT '{}',
        bearer_token TEXT,
        headers TEXT NOT NULL DEFAULT '{}',
        user_id TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS oauth_sessions (
        uuid TEXT PRIMARY KEY,
        mcp_server_uuid TEXT UNIQUE NOT NULL,
        client_information TEXT NOT NULL DEFAULT '{}',
        tokens TEXT,
        code_verifier TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
]


class Store:
    """
    Handle on one SQLite database plus the listeners notified of its committed writes.

    A store opened with ``create=False`` refuses to create a missing database
    file, so an absent peer shows up as a connection error.
    """

    def __init__(self, name: str, path: str, create: bool = True):
        self.name = name
        self.path = str(path)
        self.create = create
        self._listeners: List[ChangeListener] = []

    def __repr__(self) -> str:
        return f"Store(name={self.name!r}, path={self.path!r})"

    def _uri(self) -> str:
        mode = "rwc" if self.create else "rw"
        return f"{Path(self.path).resolve().as_uri()}?mode={mode}"

    @contextmanager
    def connect(self, timeout: float = DEFAULT_APPLY_TIMEOUT_SECONDS) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Args:
            timeout: Seconds to wait on a locked database before failing
        """
        conn = sqlite3.connect(self._uri(), uri=True, timeout=timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def add_listener(self, listener: ChangeListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: ChangeEvent) -> None:
        """
        Notify listeners of a committed write.

        A failing listener is logged and never affects the writer.
        """
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Change listener failed on {self.name} "
                    f"[entity={event.entity}, key={event.key}, kind={event.kind.value}]: {e}",
                    exc_info=True
                )


def _apply_schema(store: Store, statements: List[str]) -> None:
    # Schema setup always may create the file, whatever the store's mode.
    Path(store.path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(store.path)
    try:
        cursor = conn.cursor()
        for statement in statements:
            cursor.execute(statement)
        conn.commit()
    finally:
        conn.close()


def init_local_schema(store: Store) -> None:
    """
    Create the local (agentpod) tables if they don't exist.
    """
    _apply_schema(store, LOCAL_SCHEMA)
    logger.info(f"Local schema initialized [store={store.name}]")


def init_peer_schema(store: Store) -> None:
    """
    Create the peer (metamcp) tables if they don't exist.
    """
    _apply_schema(store, PEER_SCHEMA)
    logger.info(f"Peer schema initialized [store={store.name}]")
