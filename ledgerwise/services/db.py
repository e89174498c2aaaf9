"""SQLite helper for the pattern repository: one short-lived connection per call."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, List, Sequence, Tuple


class DB:
    def __init__(self, sqlite_path: str = "ledgerwise.sqlite3", timeout: float = 5.0) -> None:
        self.sqlite_path = sqlite_path
        self.timeout = timeout

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.sqlite_path, timeout=self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Commit on success, roll back and re-raise on any sqlite error."""
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                yield cur
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise

    def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> None:
        with self.transaction() as cur:
            cur.execute(sql, params)

    def replace_all(
        self,
        delete_sql: str,
        insert_sql: str,
        rows: Sequence[Sequence[Any]],
        delete_params: Tuple[Any, ...] = (),
    ) -> None:
        """Delete then insert in one transaction; readers never see half a save."""
        with self.transaction() as cur:
            cur.execute(delete_sql, delete_params)
            cur.executemany(insert_sql, rows)

    def fetchall(self, sql: str, params: Tuple[Any, ...] = ()) -> List[Tuple]:
        with self.connect() as conn:
            return conn.execute(sql, params).fetchall()
