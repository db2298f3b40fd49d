"""
Per-entity synchronization settings.

Which columns count as sync-relevant, which rows the bootstrap pass covers
and how enums are remapped all live here rather than in the capture code,
so they can be reviewed together with schema migrations. Defaults below can
be overridden by a JSON file (see load_entity_config).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from common.constants import (
    DIRECTION_FORWARD,
    DIRECTION_REVERSE,
    ENTITY_ACCOUNT,
    ENTITY_MCP_SERVER,
    ENTITY_OAUTH_SESSION,
    ENTITY_SESSION,
    ENTITY_USER,
    OAUTH_STATUS_AUTHORIZED,
    OAUTH_STATUS_ERROR,
    OAUTH_STATUSES,
    TRANSPORT_KINDS,
    TRANSPORT_STDIO,
)
from common.logging_config import get_logger

logger = get_logger(__name__)


class BootstrapFilter(BaseModel):
    """Row predicate applied by the bootstrap pass: column equality plus NOT NULL checks."""
    equals: Dict[str, Any] = Field(default_factory=dict)
    not_null: List[str] = Field(default_factory=list)


class EntitySyncConfig(BaseModel):
    enabled: bool = True
    relevant_fields: List[str]
    bootstrap_filter: BootstrapFilter = Field(default_factory=BootstrapFilter)
    # also skip captured inserts that don't match bootstrap_filter
    filter_captured_inserts: bool = False
    # delete target rows whose source row is gone during reconciliation
    prune_orphans: bool = False

    def matches_filter(self, row: Dict[str, Any]) -> bool:
        flt = self.bootstrap_filter
        if any(row.get(column) != value for column, value in flt.equals.items()):
            return False
        return all(row.get(column) is not None for column in flt.not_null)


class EnumMapping(BaseModel):
    """Allow-list for an enum column, optional aliases, and the fallback for anything else."""
    allowed: List[str]
    default: str
    aliases: Dict[str, str] = Field(default_factory=dict)


class SyncEntityConfig(BaseModel):
    directions: Dict[str, Dict[str, EntitySyncConfig]]
    transport: EnumMapping = Field(
        default_factory=lambda: EnumMapping(allowed=list(TRANSPORT_KINDS), default=TRANSPORT_STDIO)
    )
    oauth_status: EnumMapping = Field(
        default_factory=lambda: EnumMapping(allowed=list(OAUTH_STATUSES), default=OAUTH_STATUS_ERROR)
    )
    authorized_status: str = OAUTH_STATUS_AUTHORIZED

    def entity(self, direction: str, entity: str) -> Optional[EntitySyncConfig]:
        """Config for a tracked entity, or None if the entity is not synced in this direction."""
        settings = self.directions.get(direction, {}).get(entity)
        if settings is None or not settings.enabled:
            return None
        return settings

    def tracked_entities(self, direction: str) -> List[str]:
        return [
            name for name, settings in self.directions.get(direction, {}).items()
            if settings.enabled
        ]


MCP_SERVER_RELEVANT_FIELDS = [
    "name", "description", "type", "command", "args", "url", "environment", "auth_config",
]

PEER_MCP_SERVER_RELEVANT_FIELDS = [
    "name", "description", "type", "command", "args", "url", "env", "bearer_token", "headers",
]


def default_entity_config() -> SyncEntityConfig:
    return SyncEntityConfig(directions={
        DIRECTION_FORWARD: {
            ENTITY_USER: EntitySyncConfig(
                relevant_fields=["name", "email", "email_verified", "image"],
                prune_orphans=True,
            ),
            ENTITY_SESSION: EntitySyncConfig(
                relevant_fields=["expires_at", "token", "ip_address", "user_agent"],
                prune_orphans=True,
            ),
            ENTITY_ACCOUNT: EntitySyncConfig(
                relevant_fields=[
                    "access_token", "refresh_token", "id_token", "access_token_expires_at",
                    "refresh_token_expires_at", "scope", "password",
                ],
                prune_orphans=True,
            ),
            ENTITY_MCP_SERVER: EntitySyncConfig(
                relevant_fields=list(MCP_SERVER_RELEVANT_FIELDS),
                bootstrap_filter=BootstrapFilter(equals={"enabled": 1}),
            ),
            ENTITY_OAUTH_SESSION: EntitySyncConfig(
                relevant_fields=[
                    "client_id", "client_secret", "access_token", "refresh_token",
                    "token_type", "expires_at", "scope", "code_verifier",
                ],
                bootstrap_filter=BootstrapFilter(
                    equals={"status": OAUTH_STATUS_AUTHORIZED},
                    not_null=["access_token"],
                ),
                prune_orphans=True,
            ),
        },
        DIRECTION_REVERSE: {
            ENTITY_MCP_SERVER: EntitySyncConfig(
                relevant_fields=list(PEER_MCP_SERVER_RELEVANT_FIELDS),
            ),
        },
    })


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_entity_config(path: Optional[str] = None) -> SyncEntityConfig:
    """
    Load entity settings, deep-merging a JSON override file onto the defaults.

    Args:
        path: Path to a JSON file; None returns the defaults

    Returns:
        Validated SyncEntityConfig

    Raises:
        pydantic.ValidationError: If the merged settings are invalid
        OSError, ValueError: If the file can't be read or parsed
    """
    config = default_entity_config()
    if not path:
        return config

    override = json.loads(Path(path).read_text())
    merged = _merge(config.model_dump(), override)
    config = SyncEntityConfig.model_validate(merged)

    logger.info(f"Loaded entity sync config overrides from {path}")
    return config
