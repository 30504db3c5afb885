"""
Catalog connection lifecycle.

One connection per process, used from the thread that opened it. Scanner
worker threads never touch it; they only read files.
"""
import sqlite3
import logging
from pathlib import Path
from typing import Optional, Union

from .. import config
from ..exceptions import DatabaseError
from .schema import init_schema

MEMORY = ":memory:"

# Applied to file-backed catalogs only; WAL is meaningless in memory
_FILE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
)


class DBManager:
    def __init__(self, db_path: Union[str, Path], busy_timeout: float = config.DB_BUSY_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY

    def connect(self) -> sqlite3.Connection:
        """Opens (once) and migrates the catalog."""
        if self._conn is not None:
            return self._conn

        try:
            if not self.in_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout)
            if not self.in_memory:
                for pragma in _FILE_PRAGMAS:
                    conn.execute(pragma)
            conn.execute("PRAGMA foreign_keys=ON;")
            init_schema(conn)
        except (sqlite3.Error, OSError) as e:
            raise DatabaseError(f"Cannot open catalog {self.db_path}: {e}") from e

        self._conn = conn
        logging.info(f"Opened catalog {self.db_path} (schema v{self.schema_version()})")
        return conn

    def schema_version(self) -> int:
        row = self.connect().execute("SELECT MAX(version) FROM schema_version").fetchone()
        return row[0] or 0

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
