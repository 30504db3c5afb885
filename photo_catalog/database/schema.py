"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Owners
        # login doubles as the owner's folder name under the storage root
        conn.execute("""
        CREATE TABLE IF NOT EXISTS owners (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            login           TEXT NOT NULL UNIQUE,
            display_name    TEXT NOT NULL DEFAULT ''
        );
        """)

        # 3. Catalog Records
        # folder is '' for files directly under the owner root so the
        # UNIQUE constraint also covers them (NULLs never collide in SQLite)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS records (
            id              INTEGER PRIMARY KEY,
            owner_id        INTEGER NOT NULL,
            name            TEXT NOT NULL,
            folder          TEXT NOT NULL DEFAULT '',
            created_ms      INTEGER NOT NULL CHECK (created_ms > 0),
            size_bytes      INTEGER NOT NULL DEFAULT 0,
            UNIQUE (owner_id, folder, name),
            FOREIGN KEY(owner_id) REFERENCES owners(id) ON DELETE CASCADE
        );
        """)

        # 4. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_records_owner ON records(owner_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_records_name ON records(name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_records_created ON records(created_ms);")

    logging.debug("Database schema initialized.")
