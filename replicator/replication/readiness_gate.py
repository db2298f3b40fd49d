"""
Readiness Gate: waits for the peer schema before live sync is armed.
"""

import asyncio
import sqlite3
from typing import Dict, List

from common.logging_config import get_logger
from common.protocol import quote_identifier
from replicator.database import Store
from replicator.exceptions import ReadinessTimeout

logger = get_logger(__name__)


class ReadinessGate:
    """
    Polls the peer store until every required table and column exists.

    Args:
        store: Peer store to probe
        required: Table name -> columns that must exist
        max_attempts: Number of probes before giving up
        delay_seconds: Fixed pause between probes
    """

    def __init__(self, store: Store, required: Dict[str, List[str]], max_attempts: int, delay_seconds: float):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.required = required
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.last_missing: List[str] = []

    def probe(self) -> List[str]:
        """
        Check the peer schema once.

        Returns:
            Missing items as "table" or "table.column"; ["<unreachable>"] if
            the store can't be opened
        """
        missing: List[str] = []
        try:
            with self.store.connect() as conn:
                cursor = conn.cursor()
                for table, columns in self.required.items():
                    cursor.execute(
                        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                        (table,)
                    )
                    if cursor.fetchone() is None:
                        missing.append(table)
                        continue

                    cursor.execute(f"PRAGMA table_info({quote_identifier(table)})")
                    present = {row["name"] for row in cursor.fetchall()}
                    missing.extend(f"{table}.{column}" for column in columns if column not in present)
        except sqlite3.Error as e:
            logger.debug(f"Readiness probe could not reach {self.store.name}: {e}")
            return ["<unreachable>"]

        return missing

    async def wait_until_ready(self) -> bool:
        """
        Probe up to max_attempts times with a fixed delay in between.

        Returns:
            True as soon as a probe finds nothing missing, False otherwise
        """
        for attempt in range(1, self.max_attempts + 1):
            self.last_missing = await asyncio.to_thread(self.probe)
            if not self.last_missing:
                logger.info(f"Peer schema ready [store={self.store.name}, attempt={attempt}]")
                return True

            logger.info(
                f"Peer schema not ready [store={self.store.name}, attempt={attempt}/{self.max_attempts}, "
                f"missing={', '.join(self.last_missing)}]"
            )
            if attempt < self.max_attempts:
                await asyncio.sleep(self.delay_seconds)

        return False

    async def ensure_ready(self) -> None:
        """
        Raises:
            ReadinessTimeout: If the schema is still incomplete after max_attempts probes
        """
        if not await self.wait_until_ready():
            raise ReadinessTimeout(self.max_attempts, self.last_missing)
