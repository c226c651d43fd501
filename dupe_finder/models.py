from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import numpy as np

from . import config


@dataclass(frozen=True)
class FileRecord:
    """
    Identity of a scanned file. Size + mtime is the change-detection key.
    """
    path: Path
    size: int
    mtime: float

    def matches(self, other: "FileRecord") -> bool:
        """True if other looks like the same, unchanged file."""
        return self.size == other.size and self.mtime == other.mtime

    def sort_key(self) -> Tuple[float, str]:
        # Keeper policy: earliest mtime wins, then smallest path
        return (self.mtime, str(self.path))


@dataclass(frozen=True)
class PerceptualFingerprint:
    """
    Ordered per-frame color histogram digests, one fixed-width
    HISTOGRAM_BINS byte vector per sampled frame, taken `interval` seconds
    apart.
    """
    frames: Tuple[bytes, ...]
    interval: float = config.SAMPLE_INTERVAL

    def __post_init__(self):
        for frame in self.frames:
            if len(frame) != config.HISTOGRAM_BINS:
                raise ValueError(f"Frame digest must be {config.HISTOGRAM_BINS} bytes, got {len(frame)}")
        if self.interval <= 0:
            raise ValueError(f"Sampling interval must be positive, got {self.interval}")

    def __len__(self) -> int:
        return len(self.frames)

    def to_bytes(self) -> bytes:
        return b"".join(self.frames)

    @classmethod
    def from_bytes(cls, blob: bytes, interval: float = config.SAMPLE_INTERVAL) -> "PerceptualFingerprint":
        n = config.HISTOGRAM_BINS
        if len(blob) % n:
            raise ValueError(f"Fingerprint blob length {len(blob)} is not a multiple of {n}")
        return cls(tuple(bytes(blob[i:i + n]) for i in range(0, len(blob), n)), interval)

    @classmethod
    def from_array(cls, arr: np.ndarray, interval: float = config.SAMPLE_INTERVAL) -> "PerceptualFingerprint":
        arr = np.asarray(arr, dtype=np.uint8).reshape(-1, config.HISTOGRAM_BINS)
        return cls(tuple(row.tobytes() for row in arr), interval)

    def as_array(self) -> np.ndarray:
        """(frames, bins) uint8 matrix."""
        if not self.frames:
            return np.zeros((0, config.HISTOGRAM_BINS), dtype=np.uint8)
        return np.frombuffer(self.to_bytes(), dtype=np.uint8).reshape(len(self.frames), config.HISTOGRAM_BINS)

    def is_blank(self) -> bool:
        """All-zero digests carry no information (e.g. decoder produced nothing)."""
        return not any(any(frame) for frame in self.frames)


# perceptual_status values
PERCEPTUAL_OK = "ok"
PERCEPTUAL_FAILED = "failed"


@dataclass(frozen=True)
class FingerprintEntry:
    record: FileRecord
    digest: str                 # hex ContentFingerprint
    generation: int
    perceptual: Optional[PerceptualFingerprint] = None
    perceptual_status: Optional[str] = None  # None = not attempted

    @property
    def path(self) -> Path:
        return self.record.path


@dataclass(frozen=True)
class WorkItem:
    """One file that needs (re)hashing in the current scan generation."""
    record: FileRecord
    generation: int
    reason: str                          # new / changed / perceptual
    known_digest: Optional[str] = None   # reuse when only the perceptual part is missing


@dataclass
class WorkResult:
    item: WorkItem
    entry: Optional[FingerprintEntry] = None
    error: Optional[str] = None
    decode_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.entry is not None


@dataclass
class DuplicateGroup:
    """
    Transient: recomputed from the store on demand, never persisted.
    Members are ordered keeper-first.
    """
    kind: str                   # exact / near
    members: List[FileRecord]
    fingerprint: Union[str, PerceptualFingerprint]

    @property
    def keeper(self) -> FileRecord:
        return self.members[0]

    @property
    def reclaimable_bytes(self) -> int:
        return sum(m.size for m in self.members[1:])

    @property
    def paths(self) -> List[Path]:
        return [m.path for m in self.members]


@dataclass
class ScanSummary:
    generation: int = 0
    hashed: int = 0
    unchanged: int = 0
    failed: int = 0
    pruned: int = 0
    decode_failures: int = 0
    traversal_errors: int = 0
    errors: List[Tuple[Path, str]] = field(default_factory=list)

    def record_error(self, path: Path, message: str):
        self.errors.append((path, message))

    def __str__(self) -> str:
        return (
            f"generation {self.generation}: {self.hashed} hashed, {self.unchanged} unchanged, "
            f"{self.failed} failed, {self.pruned} pruned "
            f"({self.decode_failures} decode failures, {self.traversal_errors} traversal errors)"
        )
