import os
import sqlite3
import logging
import threading
import time
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .. import config
from ..exceptions import StoreError
from ..models import FileRecord, FingerprintEntry, PerceptualFingerprint

_COLUMNS = "path, size_bytes, mtime, digest, perceptual, frame_count, sample_interval, perceptual_status, generation"


def _row_to_entry(row) -> FingerprintEntry:
    path, size_bytes, mtime, digest, perceptual, _frame_count, interval, status, generation = row
    return FingerprintEntry(
        record=FileRecord(Path(path), int(size_bytes), float(mtime)),
        digest=digest,
        generation=int(generation),
        perceptual=(
            PerceptualFingerprint.from_bytes(perceptual, interval or config.SAMPLE_INTERVAL)
            if perceptual is not None else None
        ),
        perceptual_status=status,
    )


def _entry_to_row(entry: FingerprintEntry) -> tuple:
    perceptual = entry.perceptual
    return (
        str(entry.record.path),
        entry.record.size,
        entry.record.mtime,
        entry.digest,
        perceptual.to_bytes() if perceptual is not None else None,
        len(perceptual) if perceptual is not None else None,
        perceptual.interval if perceptual is not None else None,
        entry.perceptual_status,
        entry.generation,
    )


class FingerprintStore:
    """
    Durable path -> FingerprintEntry mapping.

    Workers never touch the connection: results are appended to an in-memory
    buffer (buffer()) and committed in batches of commit_batchsize by whoever
    owns the store, or explicitly through flush(). A crash loses at most the
    unflushed batch; the next scan sees those entries missing or stale and
    re-hashes them.
    """

    def __init__(self, conn: sqlite3.Connection, commit_batchsize: int = config.DEFAULT_COMMIT_BATCHSIZE):
        self.conn = conn
        self.commit_batchsize = commit_batchsize
        # Serializes every use of the connection
        self._lock = threading.RLock()
        self._pending: List[FingerprintEntry] = []
        self._pending_lock = threading.Lock()
        self._last_flush = time.monotonic()

    # --- Reads ---

    def get(self, path: Path) -> Optional[FingerprintEntry]:
        row = self._fetchone(f"SELECT {_COLUMNS} FROM fingerprints WHERE path = ?", (str(path),))
        return _row_to_entry(row) if row else None

    def get_file_record(self, path: Path) -> Optional[FileRecord]:
        entry = self.get(path)
        return entry.record if entry else None

    def iterate_all(self, page_size: int = 1000) -> Iterator[FingerprintEntry]:
        """
        Lazily pages through every entry in path order. Each call starts a
        fresh pass, so the sequence can be iterated again.
        """
        last_path = ""
        while True:
            rows = self._fetchall(
                f"SELECT {_COLUMNS} FROM fingerprints WHERE path > ? ORDER BY path LIMIT ?",
                (last_path, page_size),
            )
            if not rows:
                return
            for row in rows:
                yield _row_to_entry(row)
            last_path = rows[-1][0]

    def count(self) -> int:
        return int(self._fetchone("SELECT COUNT(*) FROM fingerprints", ())[0])

    def current_generation(self) -> int:
        return int(self._fetchone("SELECT value FROM store_meta WHERE key = 'generation'", ())[0])

    def stale_paths(self, root: Path, generation: int) -> List[Path]:
        """Entries under root that were not refreshed in the given generation."""
        root_str = str(root)
        prefix = root_str.rstrip(os.sep) + os.sep
        rows = self._fetchall("SELECT path FROM fingerprints WHERE generation < ? ORDER BY path", (generation,))
        return [Path(p) for (p,) in rows if p == root_str or p.startswith(prefix)]

    # --- Writes ---

    def begin_generation(self) -> int:
        """Bumps and returns the scan generation counter."""
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("UPDATE store_meta SET value = value + 1 WHERE key = 'generation'")
            except sqlite3.Error as e:
                raise StoreError(f"Failed to start scan generation: {e}") from e
        generation = self.current_generation()
        logging.debug(f"Starting scan generation {generation}")
        return generation

    def put_batch(self, entries: Iterable[FingerprintEntry]) -> int:
        """Upserts entries in a single transaction (last write wins per path)."""
        rows = [_entry_to_row(e) for e in entries]
        if not rows:
            return 0
        with self._lock:
            try:
                with self.conn:
                    self.conn.executemany(f"""
                        INSERT INTO fingerprints ({_COLUMNS})
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(path) DO UPDATE SET
                            size_bytes = excluded.size_bytes,
                            mtime = excluded.mtime,
                            digest = excluded.digest,
                            perceptual = excluded.perceptual,
                            frame_count = excluded.frame_count,
                            sample_interval = excluded.sample_interval,
                            perceptual_status = excluded.perceptual_status,
                            generation = excluded.generation
                    """, rows)
            except sqlite3.Error as e:
                raise StoreError(f"Failed to commit batch of {len(rows)} fingerprints: {e}") from e
        return len(rows)

    def prune(self, paths: Iterable[Path]) -> int:
        rows = [(str(p),) for p in paths]
        if not rows:
            return 0
        with self._lock:
            try:
                with self.conn:
                    cur = self.conn.executemany("DELETE FROM fingerprints WHERE path = ?", rows)
                    return cur.rowcount
            except sqlite3.Error as e:
                raise StoreError(f"Failed to prune {len(rows)} entries: {e}") from e

    def mark_seen(self, paths: Iterable[Path], generation: int) -> int:
        """Refreshes the generation of entries observed on disk but not re-hashed."""
        rows = [(generation, str(p), generation) for p in paths]
        if not rows:
            return 0
        with self._lock:
            try:
                with self.conn:
                    cur = self.conn.executemany(
                        "UPDATE fingerprints SET generation = ? WHERE path = ? AND generation < ?", rows
                    )
                    return cur.rowcount
            except sqlite3.Error as e:
                raise StoreError(f"Failed to refresh generation for {len(rows)} entries: {e}") from e

    def delete(self, path: Path) -> bool:
        return self.prune([path]) > 0

    def rename(self, path: Path, new_path: Path) -> bool:
        """Re-keys an entry. Any entry already stored under new_path is replaced."""
        with self._lock:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM fingerprints WHERE path = ?", (str(new_path),))
                    cur = self.conn.execute(
                        "UPDATE fingerprints SET path = ? WHERE path = ?", (str(new_path), str(path))
                    )
                    return cur.rowcount > 0
            except sqlite3.Error as e:
                raise StoreError(f"Failed to rename {path} -> {new_path}: {e}") from e

    # --- Write buffer ---

    def buffer(self, entry: FingerprintEntry) -> bool:
        """
        Queues an entry for the next commit. Returns True when this call
        filled the batch and triggered a flush.
        """
        with self._pending_lock:
            self._pending.append(entry)
            full = len(self._pending) >= self.commit_batchsize
        if full:
            self.flush()
        return full

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def flush(self) -> int:
        """Commits everything buffered so far, in arrival order."""
        with self._pending_lock:
            batch, self._pending = self._pending, []
        if not batch:
            return 0

        written = self.put_batch(batch)

        now = time.monotonic()
        dt = max(now - self._last_flush, 1e-6)
        self._last_flush = now
        total_mb = sum(e.record.size for e in batch) / (1024 * 1024)
        logging.debug(
            f"Committed {written} fingerprints ({total_mb / dt:.2f} MiB/s, {written / dt:.2f} files/s)"
        )
        return written

    def discard_pending(self) -> int:
        with self._pending_lock:
            dropped = len(self._pending)
            self._pending = []
        return dropped

    # --- Internal ---

    def _fetchone(self, sql: str, params: tuple):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"Database read failed: {e}") from e

    def _fetchall(self, sql: str, params: tuple):
        with self._lock:
            try:
                return self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Database read failed: {e}") from e
