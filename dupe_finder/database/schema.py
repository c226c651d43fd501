"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 2

def init_schema(conn: sqlite3.Connection):
    """
    Applies the fingerprint schema to the database.
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

        # 2. Store bookkeeping (scan generation counter)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS store_meta (
                key     TEXT PRIMARY KEY,
                value   INTEGER NOT NULL
            );
        """)
        conn.execute("INSERT OR IGNORE INTO store_meta (key, value) VALUES ('generation', 0)")

        # 3. Fingerprints, one row per path
        conn.execute("""
        CREATE TABLE IF NOT EXISTS fingerprints (
            path                TEXT PRIMARY KEY,
            size_bytes          INTEGER NOT NULL,
            mtime               REAL NOT NULL,
            digest              TEXT NOT NULL,       -- BLAKE2b-256 hex
            perceptual          BLOB,                -- frame_count * 64 histogram bytes
            frame_count         INTEGER,
            sample_interval     REAL,                -- seconds between sampled frames
            perceptual_status   TEXT,                -- NULL (not attempted) / ok / failed
            generation          INTEGER NOT NULL
        );
        """)

        # v1 catalogs predate per-fingerprint sampling intervals
        columns = {row[1] for row in conn.execute("PRAGMA table_info(fingerprints)")}
        if "sample_interval" not in columns:
            conn.execute("ALTER TABLE fingerprints ADD COLUMN sample_interval REAL")
        conn.execute("UPDATE schema_version SET version = ?", (CURRENT_SCHEMA_VERSION,))

        # 4. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_fingerprints_digest ON fingerprints(digest);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_fingerprints_generation ON fingerprints(generation);")

    logging.debug("Database schema initialized.")


def drop_schema(conn: sqlite3.Connection):
    """Discards every persisted fingerprint (reset_database)."""
    with conn:
        conn.execute("DROP TABLE IF EXISTS fingerprints")
        conn.execute("DROP TABLE IF EXISTS store_meta")
        conn.execute("DROP TABLE IF EXISTS schema_version")
    logging.info("Database reset: all fingerprints discarded.")
