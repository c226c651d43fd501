"""
Perceptual video fingerprints.

A fingerprint is a short sequence of color histograms, one per frame sampled
at a fixed interval from the start of the video. Frames are decoded by the
``ffmpeg`` binary (must be on PATH) and scaled to FRAME_SIZE x FRAME_SIZE RGB
first, so resolution, codec and container do not change the result beyond
compression noise.
"""
import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import DecodeError
from ..models import PerceptualFingerprint


def is_video(path: Path) -> bool:
    return path.suffix.lower() in config.VIDEO_EXTS


def probe_duration(path: Path) -> Optional[float]:
    """
    Duration in seconds.

    Strategies:
      1. pymediainfo (fast, reads the container header).
      2. ffprobe (slower, but knows every container ffmpeg can decode).
    """
    try:
        mi = MediaInfo.parse(str(path))
        for track in mi.tracks:
            if track.track_type in ("General", "Video") and getattr(track, "duration", None):
                # MediaInfo duration is in milliseconds
                return float(track.duration) / 1000.0
    except Exception as e:
        logging.debug(f"MediaInfo failed for {path}: {e}")

    cmd = [
        "ffprobe", "-v", "error",
        "-show_entries", "format=duration",
        "-of", "json", str(path),
    ]
    try:
        out = subprocess.run(cmd, capture_output=True, text=True, timeout=config.FFMPEG_TIMEOUT)
        data = json.loads(out.stdout or "{}")
        duration = data.get("format", {}).get("duration")
        return float(duration) if duration else None
    except (OSError, subprocess.TimeoutExpired, ValueError) as e:
        logging.debug(f"ffprobe failed for {path}: {e}")
        return None


def sample_timestamps(duration: float,
                      interval: float = config.SAMPLE_INTERVAL,
                      max_frames: int = config.MAX_SAMPLE_FRAMES) -> Tuple[float, List[float]]:
    """
    Timestamps at the middle of consecutive `interval`-second slots counted
    from the start of the video, so any two videos sampled at the same
    interval share the same frame spacing.

    Videos needing more than max_frames slots get the interval doubled until
    they fit. Returns (interval used, timestamps); a video shorter than one
    slot gets a single frame at its midpoint.
    """
    if duration <= 0 or interval <= 0 or max_frames < 1:
        return interval, []
    while duration // interval > max_frames:
        interval *= 2
    count = int(duration // interval)
    if count == 0:
        return interval, [duration / 2]
    return interval, [interval * (i + 0.5) for i in range(count)]


def extract_frame(path: Path, timestamp: float, size: int = config.FRAME_SIZE) -> Optional[np.ndarray]:
    """Decodes one frame at timestamp as a (size, size, 3) uint8 RGB array, or None."""
    cmd = [
        "ffmpeg", "-v", "error", "-nostdin",
        "-ss", f"{timestamp:.3f}", "-i", str(path),
        "-frames:v", "1",
        "-vf", f"scale={size}:{size}:flags=fast_bilinear",
        "-f", "rawvideo", "-pix_fmt", "rgb24", "pipe:1",
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, timeout=config.FFMPEG_TIMEOUT)
    except FileNotFoundError as e:
        raise DecodeError("ffmpeg executable not found on PATH") from e
    except subprocess.TimeoutExpired:
        logging.debug(f"ffmpeg timed out at {timestamp:.1f}s in {path}")
        return None

    expected = size * size * 3
    if len(proc.stdout) < expected:
        logging.debug(f"No frame at {timestamp:.1f}s in {path}: {proc.stderr.decode(errors='replace').strip()}")
        return None
    return np.frombuffer(proc.stdout[:expected], dtype=np.uint8).reshape(size, size, 3)


def frame_histogram(frame: np.ndarray) -> np.ndarray:
    """
    64-bin RGB histogram of one frame (4 buckets per channel), each bin
    quantized to a byte as 255 * count / pixels.
    """
    buckets = config.HISTOGRAM_BUCKETS
    q = (np.asarray(frame, dtype=np.uint8) >> config.HISTOGRAM_SHIFT).reshape(-1, 3).astype(np.intp)
    idx = (q[:, 0] * buckets + q[:, 1]) * buckets + q[:, 2]
    counts = np.bincount(idx, minlength=config.HISTOGRAM_BINS)
    n = max(len(idx), 1)
    return (counts * 255 // n).astype(np.uint8)


def perceptual_hash(path: Path,
                    sample_interval: float = config.SAMPLE_INTERVAL,
                    max_frames: int = config.MAX_SAMPLE_FRAMES) -> PerceptualFingerprint:
    """
    Samples one frame per sample_interval seconds (widened for long videos,
    see sample_timestamps) and histograms each one.

    Raises DecodeError if the duration is unknown or no frame decodes. Frames
    that fail individually are skipped.
    """
    duration = probe_duration(path)
    if not duration:
        raise DecodeError(f"Cannot determine duration of {path}")

    interval, timestamps = sample_timestamps(duration, sample_interval, max_frames)
    histograms = []
    for ts in timestamps:
        frame = extract_frame(path, ts)
        if frame is not None:
            histograms.append(frame_histogram(frame))

    if not histograms:
        raise DecodeError(f"No decodable frames in {path}")

    logging.debug(f"Perceptual hash for {path}: {len(histograms)}/{len(timestamps)} frames every {interval:g}s")
    return PerceptualFingerprint.from_array(np.stack(histograms), interval=interval)
