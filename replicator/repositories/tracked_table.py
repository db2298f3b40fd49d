"""Write path for tracked tables that reports every committed mutation to the store's listeners."""

from typing import Any, Dict, List, Optional

from common.logging_config import get_logger
from common.protocol import TableSchema, quote_identifier
from common.types import ChangeEvent, ChangeKind
from replicator.database import Store

logger = get_logger(__name__)


class TrackedTableRepository:
    """
    Row-level CRUD for one tracked table.

    Every write commits first and then emits a ChangeEvent carrying the
    caller-supplied ``origin``. Writes made by collaborators leave ``origin``
    as None.
    """

    def __init__(self, store: Store, schema: TableSchema, entity: str):
        self.store = store
        self.schema = schema
        self.entity = entity

    @property
    def _table(self) -> str:
        return quote_identifier(self.schema.table)

    @property
    def _key(self) -> str:
        return quote_identifier(self.schema.key_column)

    def _select_one(self, cursor, key: str) -> Optional[Dict[str, Any]]:
        cursor.execute(f"SELECT * FROM {self._table} WHERE {self._key} = ?", (key,))
        row = cursor.fetchone()
        return self.schema.decode_row(row) if row is not None else None

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self.store.connect() as conn:
            return self._select_one(conn.cursor(), key)

    def count(self) -> int:
        with self.store.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM {self._table}")
            return cursor.fetchone()[0]

    def insert(self, row: Dict[str, Any], origin: Optional[str] = None) -> Dict[str, Any]:
        """
        Insert a row and emit an INSERT event.

        Args:
            row: Column values, must include the key column
            origin: Replicator identity when the write is a mirror, else None

        Returns:
            The stored row
        """
        self.schema.check_columns(row.keys())
        key = row[self.schema.key_column]
        columns = list(row.keys())

        with self.store.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"INSERT INTO {self._table} ({', '.join(quote_identifier(c) for c in columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                tuple(self.schema.encode_value(c, row[c]) for c in columns)
            )
            conn.commit()
            stored = self._select_one(cursor, key)

        logger.debug(f"Inserted {self.entity} [key={key}, store={self.store.name}]")
        self.store.emit(ChangeEvent(
            entity=self.entity,
            kind=ChangeKind.INSERT,
            key=key,
            new=stored,
            origin=origin
        ))
        return stored

    def update(self, key: str, changes: Dict[str, Any], origin: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Update columns of an existing row and emit an UPDATE event with old and new images.

        Returns:
            The updated row, or None if the key does not exist
        """
        self.schema.check_columns(changes.keys())
        if self.schema.key_column in changes:
            raise ValueError(f"Shared key column {self.schema.key_column} cannot be updated")
        if not changes:
            return self.get(key)

        columns = list(changes.keys())

        with self.store.connect() as conn:
            cursor = conn.cursor()
            old = self._select_one(cursor, key)
            if old is None:
                logger.debug(f"Update skipped, {self.entity} not found [key={key}]")
                return None

            cursor.execute(
                f"UPDATE {self._table} SET {', '.join(f'{quote_identifier(c)} = ?' for c in columns)} "
                f"WHERE {self._key} = ?",
                tuple(self.schema.encode_value(c, changes[c]) for c in columns) + (key,)
            )
            conn.commit()
            new = self._select_one(cursor, key)

        logger.debug(f"Updated {self.entity} [key={key}, columns={columns}]")
        self.store.emit(ChangeEvent(
            entity=self.entity,
            kind=ChangeKind.UPDATE,
            key=key,
            old=old,
            new=new,
            origin=origin
        ))
        return new

    def delete(self, key: str, origin: Optional[str] = None) -> bool:
        with self.store.connect() as conn:
            cursor = conn.cursor()
            old = self._select_one(cursor, key)
            if old is None:
                return False
            cursor.execute(f"DELETE FROM {self._table} WHERE {self._key} = ?", (key,))
            conn.commit()

        logger.debug(f"Deleted {self.entity} [key={key}, store={self.store.name}]")
        self.store.emit(ChangeEvent(
            entity=self.entity,
            kind=ChangeKind.DELETE,
            key=key,
            old=old,
            origin=origin
        ))
        return True

    def scan(
        self,
        after_key: Optional[str] = None,
        limit: int = 200,
        equals: Optional[Dict[str, Any]] = None,
        not_null: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """
        Keyset-paginated scan ordered by the shared key.

        Args:
            after_key: Return rows with a key strictly greater than this one
            limit: Maximum rows to return
            equals: Column/value pairs every row must match
            not_null: Columns that must not be NULL

        Returns:
            Decoded rows
        """
        equals = equals or {}
        not_null = not_null or []
        self.schema.check_columns(list(equals.keys()) + list(not_null))

        clauses = []
        params: List[Any] = []
        if after_key is not None:
            clauses.append(f"{self._key} > ?")
            params.append(after_key)
        for column, value in equals.items():
            clauses.append(f"{quote_identifier(column)} = ?")
            params.append(value)
        for column in not_null:
            clauses.append(f"{quote_identifier(column)} IS NOT NULL")

        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self.store.connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT * FROM {self._table}{where} ORDER BY {self._key} LIMIT ?",
                tuple(params)
            )
            return [self.schema.decode_row(row) for row in cursor.fetchall()]
