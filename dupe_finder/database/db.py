"""
Database connection management.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional

from ..exceptions import StoreError
from .schema import init_schema, drop_schema

class DBManager:
    def __init__(self, db_path: Path, reset: bool = False):
        self.db_path = db_path
        self.reset = reset
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database and configures performance pragmas.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            # The store serializes access itself; the traversal thread reads
            # through the same connection the writer commits on.
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)

            # Performance Tuning (Safe for single-writer, multi-reader)
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA temp_store=MEMORY;")

            if self.reset:
                drop_schema(self._conn)
            init_schema(self._conn)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open database {self.db_path}: {e}") from e

        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
