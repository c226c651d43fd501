import os
import logging
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple

from ..database.store import FingerprintStore
from ..exceptions import TraversalError
from ..fingerprint.video import is_video
from ..models import FileRecord, WorkItem


class ScanCoordinator:
    """
    Walks a root directory and decides which files need (re)hashing.

    plan() is a generator; after it is exhausted, `seen` holds every regular
    file observed on disk and `traversal_errors` every path that could not be
    listed or stat'ed.
    """

    def __init__(self, store: FingerprintStore, videohash: bool = False):
        self.store = store
        self.videohash = videohash
        self.seen: Set[Path] = set()
        self.unchanged = 0
        self.traversal_errors: List[Tuple[Path, str]] = []

    def plan(self, root: Path, generation: int) -> Iterator[WorkItem]:
        for record in self.iter_records(root):
            self.seen.add(record.path)
            item = self._classify(record, generation)
            if item is None:
                self.unchanged += 1
            else:
                yield item

    def _classify(self, record: FileRecord, generation: int) -> Optional[WorkItem]:
        entry = self.store.get(record.path)
        if entry is None:
            return WorkItem(record, generation, "new")
        if not entry.record.matches(record):
            return WorkItem(record, generation, "changed")
        if self.videohash and entry.perceptual_status is None and is_video(record.path):
            # Content is known, only the video fingerprint is missing
            return WorkItem(record, generation, "perceptual", known_digest=entry.digest)
        return None

    def iter_records(self, root: Path) -> Iterator[FileRecord]:
        """Depth-first walker using os.scandir. Symlinks are never followed."""
        stack = [Path(root).absolute()]
        while stack:
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                self._record_error(current, e)
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name)

            dirs = []
            for e in entries:
                try:
                    if e.is_dir(follow_symlinks=False):
                        dirs.append(Path(e.path))
                    elif e.is_file(follow_symlinks=False):
                        st = e.stat(follow_symlinks=False)
                        yield FileRecord(Path(e.path), st.st_size, st.st_mtime)
                except OSError as err:
                    self._record_error(Path(e.path), err)

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

    def _record_error(self, path: Path, err: Exception):
        error = TraversalError(f"{path}: {err}")
        logging.warning(f"Skipping {error}")
        self.traversal_errors.append((path, str(err)))

    def was_skipped(self, path: Path) -> bool:
        """True if path is, or lies under, a path that could not be listed or stat'ed."""
        path = Path(path)
        return any(path == skipped or skipped in path.parents for skipped, _ in self.traversal_errors)
