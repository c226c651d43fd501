import os
import logging
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from . import config
from .config import ScanSettings
from .database.db import DBManager
from .database.store import FingerprintStore
from .exceptions import ConfigurationError, FileOperationError, ScanCancelled, StoreError
from .grouping.grouper import DuplicateGrouper
from .models import DuplicateGroup, FileRecord, ScanSummary
from .scanning.walker import ScanCoordinator
from .scanning.workers import WorkerPool


class DupeFinderApp:
    """
    The duplicate-finding engine: owns the fingerprint store and exposes
    scanning, the query interface and the delete/rename mutations used by a
    review front end.
    """

    def __init__(self,
                 db_path: Path,
                 reset: bool = False,
                 commit_batchsize: int = config.DEFAULT_COMMIT_BATCHSIZE,
                 similarity_threshold: float = config.SIMILARITY_THRESHOLD,
                 progress: bool = False):
        self.db_manager = DBManager(db_path, reset=reset)
        self.store = FingerprintStore(self.db_manager.connect(), commit_batchsize)
        self.similarity_threshold = similarity_threshold
        self.progress = progress
        self._pool: Optional[WorkerPool] = None

    @classmethod
    def from_settings(cls, settings: ScanSettings, progress: bool = False) -> "DupeFinderApp":
        settings.validate()
        return cls(
            settings.db_path,
            reset=settings.reset_database,
            commit_batchsize=settings.commit_batchsize,
            similarity_threshold=settings.similarity_threshold,
            progress=progress,
        )

    def close(self):
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Scanning ---

    def scan(self, settings: ScanSettings) -> ScanSummary:
        """
        One scan generation over settings.path:
        1. Walk & Classify (new / changed / unchanged)
        2. Hash in the worker pool, commit in batches
        3. Refresh unchanged entries, optionally prune unfound ones
        """
        settings.validate()
        if settings.path is None:
            raise ConfigurationError("scan() needs a scan path")
        root = Path(settings.path).absolute()
        self.similarity_threshold = settings.similarity_threshold

        # The batch size applies to this scan only
        store = self.store
        previous_batchsize = store.commit_batchsize
        store.commit_batchsize = settings.commit_batchsize
        try:
            return self._scan(settings, root)
        finally:
            store.commit_batchsize = previous_batchsize

    def _scan(self, settings: ScanSettings, root: Path) -> ScanSummary:
        store = self.store
        generation = store.begin_generation()
        summary = ScanSummary(generation=generation)
        coordinator = ScanCoordinator(store, videohash=settings.videohash)
        pool = WorkerPool(
            threads=settings.threads,
            videohash=settings.videohash,
            sample_interval=settings.sample_interval,
            max_sample_frames=settings.max_sample_frames,
        )
        self._pool = pool

        logging.info(
            f"Scanning {root} (generation {generation}, threads={settings.threads}, "
            f"videohash={settings.videohash})..."
        )
        results = pool.run(coordinator.plan(root, generation))
        try:
            for result in tqdm(results, desc="Hashing", unit="file", disable=not self.progress):
                path = result.item.record.path
                if not result.ok:
                    summary.failed += 1
                    summary.record_error(path, result.error or "unknown error")
                    continue
                store.buffer(result.entry)
                summary.hashed += 1
                if result.decode_error:
                    summary.decode_failures += 1
                    summary.record_error(path, result.decode_error)
        except StoreError:
            dropped = store.discard_pending()
            logging.error(f"Store commit failed, dropped {dropped} buffered fingerprints")
            raise
        except (ScanCancelled, KeyboardInterrupt):
            logging.warning(f"Scan cancelled, committing {store.pending} buffered fingerprints")
            store.flush()
            raise
        finally:
            results.close()
            self._pool = None

        store.flush()

        summary.unchanged = coordinator.unchanged
        summary.traversal_errors = len(coordinator.traversal_errors)
        summary.errors.extend(coordinator.traversal_errors)

        store.mark_seen(coordinator.seen, generation)
        if settings.clean_unfound:
            # Files under unreadable directories were not seen but may still exist
            stale = [p for p in store.stale_paths(root, generation) if not coordinator.was_skipped(p)]
            for path in stale:
                logging.info(f"Removing {path}")
            summary.pruned = store.prune(stale)

        logging.info(f"Scan complete: {summary}")
        return summary

    def cancel(self):
        """Abandons a running scan; buffered fingerprints are committed best-effort."""
        pool = self._pool
        if pool is not None:
            pool.cancel()

    # --- Query interface ---

    def list_duplicate_groups(self, near_duplicates: bool = False) -> List[DuplicateGroup]:
        grouper = DuplicateGrouper(self.similarity_threshold)
        logging.info(f"Looking for duplicates between {self.store.count()} files")
        return grouper.group(self.store.iterate_all(), near_duplicates=near_duplicates)

    def get_file_record(self, path: Path) -> Optional[FileRecord]:
        return self.store.get_file_record(Path(path))

    # --- Mutation interface ---

    def delete(self, path: Path) -> str:
        """
        Removes the file from disk (if still there) and its store entry.
        Returns "success" or "does-not-exist".
        """
        path = Path(path)
        status = "does-not-exist"
        if path.is_file() or path.is_symlink():
            try:
                os.remove(path)
            except OSError as e:
                raise FileOperationError(f"Cannot delete {path}: {e}") from e
            status = "success"
        self.store.delete(path)
        logging.info(f"Deleted {path} ({status})")
        return status

    def rename(self, path: Path, new_path: Path) -> str:
        """
        Renames the file on disk (if still there) and re-keys its store entry.
        A relative new_path is taken relative to the file's directory.
        Returns "success" or "does-not-exist".
        """
        path = Path(path)
        new_path = Path(new_path)
        if not new_path.is_absolute():
            new_path = path.parent / new_path
        if new_path.exists():
            raise FileOperationError(f"Refusing to overwrite {new_path}")

        status = "does-not-exist"
        if path.exists():
            try:
                os.rename(path, new_path)
            except OSError as e:
                raise FileOperationError(f"Cannot rename {path} -> {new_path}: {e}") from e
            status = "success"
        self.store.rename(path, new_path)
        logging.info(f"Renamed {path} -> {new_path} ({status})")
        return status
