import sqlite3

import numpy as np
import pytest

from dupe_finder import config
from dupe_finder.core import DupeFinderApp
from dupe_finder.database.schema import init_schema
from dupe_finder.database.store import FingerprintStore
from dupe_finder.fingerprint import video
from dupe_finder.fingerprint.video import frame_histogram
from dupe_finder.models import PerceptualFingerprint


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:", check_same_thread=False)
    init_schema(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def store(conn):
    """Returns a FingerprintStore attached to the in-memory DB."""
    return FingerprintStore(conn, commit_batchsize=2)


@pytest.fixture
def app(tmp_path):
    """Returns an engine backed by a throwaway database file."""
    a = DupeFinderApp(tmp_path / "digests.sqlite")
    try:
        yield a
    finally:
        a.close()


def color_frame(rng, size=16):
    """A frame made of four flat quadrants, colors at bucket centers."""
    centers = rng.integers(0, config.HISTOGRAM_BUCKETS, size=(4, 3)) * 64 + 32
    frame = np.empty((size, size, 3), dtype=np.uint8)
    h = size // 2
    frame[:h, :h] = centers[0]
    frame[:h, h:] = centers[1]
    frame[h:, :h] = centers[2]
    frame[h:, h:] = centers[3]
    return frame


def make_video_fingerprint(seed, frames=20):
    """Deterministic synthetic video fingerprint."""
    rng = np.random.default_rng(seed)
    return PerceptualFingerprint.from_array(
        np.stack([frame_histogram(color_frame(rng)) for _ in range(frames)])
    )


@pytest.fixture
def video_fingerprint():
    return make_video_fingerprint


class SceneTimeline:
    """
    Stands in for the ffmpeg/mediainfo side of perceptual hashing. Every
    registered video shows a stretch of one shared timeline whose picture
    changes every scene_length seconds, so a clip is literally a time range
    of its source.
    """

    def __init__(self, seed=0, scenes=256, scene_length=10.0):
        rng = np.random.default_rng(seed)
        self.scenes = [color_frame(rng) for _ in range(scenes)]
        self.scene_length = scene_length
        self.videos = {}

    def add(self, path, start, duration):
        self.videos[str(path)] = (start, duration)

    def duration(self, path):
        start, duration = self.videos.get(str(path), (0.0, None))
        return duration

    def frame(self, path, ts, size=config.FRAME_SIZE):
        start, duration = self.videos[str(path)]
        if ts >= duration:
            return None
        return self.scenes[int((start + ts) // self.scene_length) % len(self.scenes)]


@pytest.fixture
def scene_timeline(monkeypatch):
    """Routes video.probe_duration / video.extract_frame to a SceneTimeline."""
    timeline = SceneTimeline()
    monkeypatch.setattr(video, "probe_duration", timeline.duration)
    monkeypatch.setattr(video, "extract_frame", timeline.frame)
    return timeline
