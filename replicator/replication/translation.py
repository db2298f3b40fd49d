"""
Translation between the local and peer representations of each entity.

Pure functions: no database access, no clock reads except where the peer
row needs a fresh updated_at (callers may pass ``now``). A field that can't
be translated falls back to its documented default and logs a warning;
translators never raise to their caller.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from common.constants import (
    AUTH_TYPE_BEARER,
    AUTH_TYPE_NONE,
    DEFAULT_TOKEN_TYPE,
    DIRECTION_FORWARD,
    DIRECTION_REVERSE,
    ENTITY_ACCOUNT,
    ENTITY_MCP_SERVER,
    ENTITY_OAUTH_SESSION,
    ENTITY_SESSION,
    ENTITY_USER,
)
from common.logging_config import get_logger
from replicator.entity_config import EnumMapping, SyncEntityConfig, default_entity_config
from replicator.exceptions import TranslationError
from replicator.utils import get_current_timestamp

logger = get_logger(__name__)

Row = Dict[str, Any]
Translator = Callable[..., Row]


def _fallback(entity: str, key: Any, field: str, convert: Callable[[], Any], default: Any) -> Any:
    try:
        return convert()
    except TranslationError as e:
        logger.warning(
            f"Translation fallback [entity={entity}, key={key}, field={field}, default={default!r}]: {e}"
        )
        return default


def decode_json(value: Any) -> Any:
    """Parse a JSON text column; non-string values pass through unchanged."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as e:
            raise TranslationError(f"invalid JSON: {e}")
    return value


def remap_enum(value: Any, mapping: EnumMapping) -> str:
    """
    Map a value through an allow-list.

    Raises:
        TranslationError: If the value is neither allowed nor an alias
    """
    if value in mapping.allowed:
        return value
    if value in mapping.aliases:
        return mapping.aliases[value]
    raise TranslationError(f"unknown enum value {value!r}")


def to_string_list(value: Any) -> List[str]:
    value = decode_json(value)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TranslationError(f"expected a list, got {type(value).__name__}")
    return [item if isinstance(item, str) else json.dumps(item) for item in value]


def to_string_map(value: Any) -> Dict[str, Any]:
    value = decode_json(value)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TranslationError(f"expected an object, got {type(value).__name__}")
    return dict(value)


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes")
    return bool(value)


def to_epoch_seconds(value: Any) -> Optional[int]:
    """
    Convert an ISO-8601 timestamp (naive means UTC) or datetime to epoch seconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise TranslationError(f"invalid timestamp {value!r}: {e}")
    if not isinstance(value, datetime):
        raise TranslationError(f"expected a timestamp, got {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def user_to_peer(row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "email": row.get("email"),
        "email_verified": to_bool(row.get("email_verified")),
        "image": row.get("image"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }


def session_to_peer(row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    return {
        "id": row["id"],
        "expires_at": row.get("expires_at"),
        "token": row.get("token"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
        "ip_address": row.get("ip_address"),
        "user_agent": row.get("user_agent"),
        "user_id": row.get("user_id"),
    }


def account_to_peer(row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    fields = (
        "account_id", "provider_id", "user_id", "access_token", "refresh_token",
        "id_token", "access_token_expires_at", "refresh_token_expires_at", "scope",
        "password", "created_at", "updated_at",
    )
    translated = {"id": row["id"]}
    translated.update({field: row.get(field) for field in fields})
    return translated


def mcp_server_to_peer(row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    """
    Local mcp_servers row -> peer mcp_servers row.

    type: allow-listed, unknown -> STDIO; args: JSON array -> list of strings;
    environment -> env; auth_config.bearer_token / .headers -> bearer_token / headers.
    """
    config = config or default_entity_config()
    key = row["id"]
    entity = ENTITY_MCP_SERVER

    auth_config = _fallback(entity, key, "auth_config", lambda: to_string_map(row.get("auth_config")), {})
    headers = _fallback(entity, key, "auth_config.headers", lambda: to_string_map(auth_config.get("headers")), {})

    return {
        "uuid": key,
        "name": row.get("name"),
        "description": row.get("description"),
        "type": _fallback(
            entity, key, "type", lambda: remap_enum(row.get("type"), config.transport), config.transport.default
        ),
        "command": row.get("command"),
        "args": _fallback(entity, key, "args", lambda: to_string_list(row.get("args")), []),
        "url": row.get("url"),
        "env": _fallback(entity, key, "environment", lambda: to_string_map(row.get("environment")), {}),
        "bearer_token": auth_config.get("bearer_token") or None,
        "headers": headers,
        "user_id": row.get("user_id"),
        "created_at": row.get("created_at"),
    }


def mcp_server_from_peer(
    row: Row,
    config: Optional[SyncEntityConfig] = None,
    now: Optional[str] = None
) -> Row:
    """
    Peer mcp_servers row -> local mcp_servers row.

    auth_type is derived from the bearer token; enabled is only written on
    insert, so a mirror never re-enables a server disabled locally.
    """
    config = config or default_entity_config()
    key = row["uuid"]
    entity = ENTITY_MCP_SERVER
    now = now or get_current_timestamp()

    bearer_token = row.get("bearer_token")
    headers = _fallback(entity, key, "headers", lambda: to_string_map(row.get("headers")), {})

    return {
        "id": key,
        "user_id": row.get("user_id"),
        "name": row.get("name"),
        "description": row.get("description"),
        "type": _fallback(
            entity, key, "type", lambda: remap_enum(row.get("type"), config.transport), config.transport.default
        ),
        "command": row.get("command"),
        "args": _fallback(entity, key, "args", lambda: to_string_list(row.get("args")), []),
        "url": row.get("url"),
        "environment": _fallback(entity, key, "env", lambda: to_string_map(row.get("env")), {}),
        "auth_config": {"bearer_token": bearer_token or "", "headers": headers},
        "auth_type": AUTH_TYPE_BEARER if bearer_token else AUTH_TYPE_NONE,
        "enabled": True,
        "created_at": row.get("created_at") or now,
        "updated_at": now,
    }


def oauth_session_to_peer(row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    """
    Local mcp_oauth_sessions row -> peer oauth_sessions row.

    Flat client and token columns are folded into the client_information and
    tokens objects; expires_at becomes epoch seconds.
    """
    key = row["id"]
    expires_at = _fallback(
        ENTITY_OAUTH_SESSION, key, "expires_at", lambda: to_epoch_seconds(row.get("expires_at")), None
    )

    return {
        "uuid": key,
        "mcp_server_uuid": row.get("mcp_server_id"),
        "client_information": {
            "client_id": row.get("client_id") or "",
            "client_secret": row.get("client_secret") or "",
        },
        "tokens": {
            "access_token": row.get("access_token"),
            "refresh_token": row.get("refresh_token") or "",
            "token_type": row.get("token_type") or DEFAULT_TOKEN_TYPE,
            "expires_at": expires_at,
            "scope": row.get("scope") or "",
        },
        "code_verifier": row.get("code_verifier"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }


TRANSLATORS: Dict[Tuple[str, str], Translator] = {
    (DIRECTION_FORWARD, ENTITY_USER): user_to_peer,
    (DIRECTION_FORWARD, ENTITY_SESSION): session_to_peer,
    (DIRECTION_FORWARD, ENTITY_ACCOUNT): account_to_peer,
    (DIRECTION_FORWARD, ENTITY_MCP_SERVER): mcp_server_to_peer,
    (DIRECTION_FORWARD, ENTITY_OAUTH_SESSION): oauth_session_to_peer,
    (DIRECTION_REVERSE, ENTITY_MCP_SERVER): mcp_server_from_peer,
}


def translate(direction: str, entity: str, row: Row, config: Optional[SyncEntityConfig] = None) -> Row:
    """
    Translate a source row for the target store of ``direction``.

    Raises:
        KeyError: If the entity has no translator in this direction
    """
    try:
        translator = TRANSLATORS[(direction, entity)]
    except KeyError:
        raise KeyError(f"No translator for entity '{entity}' in direction {direction}")
    return translator(row, config)
