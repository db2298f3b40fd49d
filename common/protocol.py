"""
Table definitions for both stores and the versioned peer write contract.

The contract is the fixed set of upsert/delete statements the replicator
issues against the other store. Both stores are deployed independently, so
any change to a ``TableContract`` below must bump PEER_CONTRACT_VERSION and
ship together with the matching schema migration on the peer side.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from common.constants import (
    DIRECTION_FORWARD,
    DIRECTION_REVERSE,
    ENTITY_ACCOUNT,
    ENTITY_MCP_SERVER,
    ENTITY_OAUTH_SESSION,
    ENTITY_SESSION,
    ENTITY_USER,
)

PEER_CONTRACT_VERSION = 1


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def encode_json(value: Any) -> str:
    """Serialize a container column deterministically so equal values compare equal in SQL."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class TableSchema:
    """
    Physical layout of one tracked table.

    Attributes:
        table: Table name
        key_column: Column holding the shared key
        columns: All columns, key included
        json_columns: Columns stored as JSON text
    """
    table: str
    key_column: str
    columns: Tuple[str, ...]
    json_columns: Tuple[str, ...] = ()

    def encode_value(self, column: str, value: Any) -> Any:
        if column in self.json_columns and value is not None and not isinstance(value, str):
            return encode_json(value)
        return value

    def decode_row(self, row) -> Dict[str, Any]:
        """Convert a sqlite3.Row into a dict, decoding JSON columns where they parse."""
        data = {key: row[key] for key in row.keys()}
        for column in self.json_columns:
            value = data.get(column)
            if isinstance(value, str):
                try:
                    data[column] = json.loads(value)
                except ValueError:
                    pass
        return data

    def check_columns(self, columns: Iterable[str]) -> None:
        unknown = [c for c in columns if c not in self.columns]
        if unknown:
            raise ValueError(f"Unknown columns for table {self.table}: {unknown}")


@dataclass(frozen=True)
class TableContract:
    """
    Statements the Remote Applier may run against one target table.

    Attributes:
        schema: Target table layout
        insert_columns: Columns written on insert (key first)
        update_columns: Columns overwritten when the key already exists
        touch_columns: Update columns that are written but never compared,
            so a replay that only differs in them changes nothing
    """
    schema: TableSchema
    insert_columns: Tuple[str, ...]
    update_columns: Tuple[str, ...]
    touch_columns: Tuple[str, ...] = ()

    @property
    def table(self) -> str:
        return self.schema.table

    @property
    def key_column(self) -> str:
        return self.schema.key_column

    def _insert_prefix(self) -> str:
        columns = ", ".join(quote_identifier(c) for c in self.insert_columns)
        placeholders = ", ".join("?" for _ in self.insert_columns)
        return (
            f"INSERT INTO {quote_identifier(self.table)} ({columns}) "
            f"VALUES ({placeholders}) "
            f"ON CONFLICT({quote_identifier(self.key_column)})"
        )

    def upsert_statement(self) -> str:
        table = quote_identifier(self.table)
        assignments = ", ".join(
            f"{quote_identifier(c)} = excluded.{quote_identifier(c)}"
            for c in self.update_columns
        )
        compared = [c for c in self.update_columns if c not in self.touch_columns]
        changed = " OR ".join(
            f"{table}.{quote_identifier(c)} IS NOT excluded.{quote_identifier(c)}"
            for c in compared
        )
        return f"{self._insert_prefix()} DO UPDATE SET {assignments} WHERE {changed}"

    def insert_if_missing_statement(self) -> str:
        return f"{self._insert_prefix()} DO NOTHING"

    def delete_statement(self) -> str:
        return (
            f"DELETE FROM {quote_identifier(self.table)} "
            f"WHERE {quote_identifier(self.key_column)} = ?"
        )

    def bind(self, row: Dict[str, Any]) -> Tuple[Any, ...]:
        """Order and encode a translated row for the insert statements."""
        return tuple(
            self.schema.encode_value(column, row.get(column))
            for column in self.insert_columns
        )


LOCAL_TABLES: Dict[str, TableSchema] = {
    ENTITY_USER: TableSchema(
        table="user",
        key_column="id",
        columns=("id", "name", "email", "email_verified", "image", "created_at", "updated_at"),
    ),
    ENTITY_SESSION: TableSchema(
        table="session",
        key_column="id",
        columns=(
            "id", "expires_at", "token", "created_at", "updated_at",
            "ip_address", "user_agent", "user_id",
        ),
    ),
    ENTITY_ACCOUNT: TableSchema(
        table="account",
        key_column="id",
        columns=(
            "id", "account_id", "provider_id", "user_id", "access_token",
            "refresh_token", "id_token", "access_token_expires_at",
            "refresh_token_expires_at", "scope", "password", "created_at", "updated_at",
        ),
    ),
    ENTITY_MCP_SERVER: TableSchema(
        table="mcp_servers",
        key_column="id",
        columns=(
            "id", "user_id", "name", "description", "type", "command", "args",
            "url", "auth_type", "auth_config", "environment", "enabled",
            "created_at", "updated_at",
        ),
        json_columns=("args", "auth_config", "environment"),
    ),
    ENTITY_OAUTH_SESSION: TableSchema(
        table="mcp_oauth_sessions",
        key_column="id",
        columns=(
            "id", "mcp_server_id", "client_id", "client_secret", "access_token",
            "refresh_token", "token_type", "expires_at", "scope", "code_verifier",
            "status", "created_at", "updated_at",
        ),
    ),
}

PEER_TABLES: Dict[str, TableSchema] = {
    ENTITY_USER: TableSchema(
        table="users",
        key_column="id",
        columns=("id", "name", "email", "email_verified", "image", "created_at", "updated_at"),
    ),
    ENTITY_SESSION: TableSchema(
        table="sessions",
        key_column="id",
        columns=(
            "id", "expires_at", "token", "created_at", "updated_at",
            "ip_address", "user_agent", "user_id",
        ),
    ),
    ENTITY_ACCOUNT: TableSchema(
        table="accounts",
        key_column="id",
        columns=(
            "id", "account_id", "provider_id", "user_id", "access_token",
            "refresh_token", "id_token", "access_token_expires_at",
            "refresh_token_expires_at", "scope", "password", "created_at", "updated_at",
        ),
    ),
    ENTITY_MCP_SERVER: TableSchema(
        table="mcp_servers",
        key_column="uuid",
        columns=(
            "uuid", "name", "description", "type", "command", "args", "url",
            "env", "bearer_token", "headers", "user_id", "created_at",
        ),
        json_columns=("args", "env", "headers"),
    ),
    ENTITY_OAUTH_SESSION: TableSchema(
        table="oauth_sessions",
        key_column="uuid",
        columns=(
            "uuid", "mcp_server_uuid", "client_information", "tokens",
            "code_verifier", "created_at", "updated_at",
        ),
        json_columns=("client_information", "tokens"),
    ),
}


CONTRACTS: Dict[Tuple[str, str], TableContract] = {
    (DIRECTION_FORWARD, ENTITY_USER): TableContract(
        schema=PEER_TABLES[ENTITY_USER],
        insert_columns=PEER_TABLES[ENTITY_USER].columns,
        update_columns=("name", "email", "email_verified", "image", "updated_at"),
    ),
    (DIRECTION_FORWARD, ENTITY_SESSION): TableContract(
        schema=PEER_TABLES[ENTITY_SESSION],
        insert_columns=PEER_TABLES[ENTITY_SESSION].columns,
        update_columns=("expires_at", "token", "updated_at", "ip_address", "user_agent"),
    ),
    (DIRECTION_FORWARD, ENTITY_ACCOUNT): TableContract(
        schema=PEER_TABLES[ENTITY_ACCOUNT],
        insert_columns=PEER_TABLES[ENTITY_ACCOUNT].columns,
        update_columns=(
            "access_token", "refresh_token", "id_token", "access_token_expires_at",
            "refresh_token_expires_at", "scope", "password", "updated_at",
        ),
    ),
    (DIRECTION_FORWARD, ENTITY_MCP_SERVER): TableContract(
        schema=PEER_TABLES[ENTITY_MCP_SERVER],
        insert_columns=PEER_TABLES[ENTITY_MCP_SERVER].columns,
        update_columns=(
            "name", "description", "type", "command", "args", "url",
            "env", "bearer_token", "headers",
        ),
    ),
    (DIRECTION_FORWARD, ENTITY_OAUTH_SESSION): TableContract(
        schema=PEER_TABLES[ENTITY_OAUTH_SESSION],
        insert_columns=PEER_TABLES[ENTITY_OAUTH_SESSION].columns,
        update_columns=("client_information", "tokens", "code_verifier", "updated_at"),
    ),
    (DIRECTION_REVERSE, ENTITY_MCP_SERVER): TableContract(
        schema=LOCAL_TABLES[ENTITY_MCP_SERVER],
        insert_columns=LOCAL_TABLES[ENTITY_MCP_SERVER].columns,
        update_columns=(
            "name", "description", "type", "command", "args", "url",
            "environment", "auth_config", "auth_type", "updated_at",
        ),
        touch_columns=("updated_at",),
    ),
}

SOURCE_TABLES: Dict[Tuple[str, str], TableSchema] = {
    (DIRECTION_FORWARD, entity): schema for entity, schema in LOCAL_TABLES.items()
}
SOURCE_TABLES[(DIRECTION_REVERSE, ENTITY_MCP_SERVER)] = PEER_TABLES[ENTITY_MCP_SERVER]


def get_contract(direction: str, entity: str) -> TableContract:
    try:
        return CONTRACTS[(direction, entity)]
    except KeyError:
        raise KeyError(f"No peer contract for entity '{entity}' in direction {direction}")


def required_peer_columns() -> Dict[str, List[str]]:
    """
    Tables and columns the forward contract writes to, for the readiness check.
    """
    required: Dict[str, List[str]] = {}
    for (direction, _entity), contract in CONTRACTS.items():
        if direction != DIRECTION_FORWARD:
            continue
        required[contract.table] = list(contract.insert_columns)
    return required
