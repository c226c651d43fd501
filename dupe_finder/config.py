"""
Configuration constants and scan settings for the duplicate finder.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError

# --- Defaults for recognized options ---
DEFAULT_THREADS = 4
DEFAULT_COMMIT_BATCHSIZE = 1024
DEFAULT_DB_NAME = "digests.sqlite"

# --- Content Hashing ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB blocks through the incremental hash state
CONTENT_DIGEST_SIZE = 32     # 256-bit BLAKE2b

# --- Perceptual Hashing ---
VIDEO_EXTS = {'.mp4', '.avi', '.mkv', '.wmv', '.flv', '.mov', '.m4v', '.webm', '.mpg', '.mpeg', '.ts'}

# Frames are scaled down before histogramming, resolution must not matter
FRAME_SIZE = 128

# 8 bit channel >> 6 = 4 buckets per channel, 64 bins per frame
HISTOGRAM_SHIFT = 6
HISTOGRAM_BUCKETS = 256 >> HISTOGRAM_SHIFT
HISTOGRAM_BINS = HISTOGRAM_BUCKETS ** 3

# Frames are taken every SAMPLE_INTERVAL seconds so a clip and its source share
# the same spacing. Videos longer than MAX_SAMPLE_FRAMES slots get the interval
# doubled until they fit.
SAMPLE_INTERVAL = 5.0
MAX_SAMPLE_FRAMES = 256

# Mean normalized L1 distance (0 = identical, 1 = disjoint histograms).
# Re-encodes of the same video typically land below 0.05.
SIMILARITY_THRESHOLD = 0.15

FFMPEG_TIMEOUT = 60  # seconds per extracted frame

# --- Worker Pool ---
# Work and result queues hold this many items per worker before blocking
QUEUE_FACTOR = 4


@dataclass
class ScanSettings:
    """
    Options recognized by the engine. Parsing them is the front end's job,
    validate() is called before anything touches the disk or the store.
    """
    path: Optional[Path] = None
    threads: int = DEFAULT_THREADS
    commit_batchsize: int = DEFAULT_COMMIT_BATCHSIZE
    videohash: bool = False
    reset_database: bool = False
    clean_unfound: bool = False
    sample_interval: float = SAMPLE_INTERVAL
    max_sample_frames: int = MAX_SAMPLE_FRAMES
    similarity_threshold: float = SIMILARITY_THRESHOLD
    db_path: Path = field(default_factory=lambda: Path(DEFAULT_DB_NAME))

    def validate(self) -> "ScanSettings":
        if self.threads < 1:
            raise ConfigurationError(f"threads must be >= 1 (got {self.threads})")
        if self.commit_batchsize < 1:
            raise ConfigurationError(f"commit_batchsize must be >= 1 (got {self.commit_batchsize})")
        if self.sample_interval <= 0:
            raise ConfigurationError(f"sample_interval must be > 0 (got {self.sample_interval})")
        if self.max_sample_frames < 1:
            raise ConfigurationError(f"max_sample_frames must be >= 1 (got {self.max_sample_frames})")
        if not 0.0 < self.similarity_threshold <= 1.0:
            raise ConfigurationError(
                f"similarity_threshold must be in (0, 1] (got {self.similarity_threshold})"
            )
        if self.path is not None and not Path(self.path).is_dir():
            raise ConfigurationError(f"Scan root {self.path} is not a directory")
        if self.clean_unfound and self.path is None:
            raise ConfigurationError("clean_unfound requires a scan path")
        return self
