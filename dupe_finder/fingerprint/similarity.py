"""
Distance between perceptual fingerprints.

Frame distance is the L1 distance of two quantized histograms scaled to
[0, 1]. Sequence distance slides the shorter fingerprint over every
contiguous window of the longer one and keeps the smallest mean frame
distance, so an excerpt matches the video it was cut from.

Fingerprints sampled at different intervals (long videos get a widened
interval) are first brought to the coarser one by keeping every k-th frame
of the finer one, trying each of the k phases.
"""
import math
from typing import List, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .. import config
from ..models import PerceptualFingerprint

# Each quantized histogram sums to at most 255, so L1 is at most 2 * 255
_MAX_L1 = 2 * 255


def frame_distance(a: np.ndarray, b: np.ndarray) -> float:
    diff = np.abs(np.asarray(a, dtype=np.int32) - np.asarray(b, dtype=np.int32))
    return float(diff.sum()) / _MAX_L1


def _at_common_interval(a: PerceptualFingerprint,
                        b: PerceptualFingerprint) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Candidate (a, b) frame matrix pairs sampled at the same interval."""
    fa = a.as_array().astype(np.int32)
    fb = b.as_array().astype(np.int32)
    if math.isclose(a.interval, b.interval):
        return [(fa, fb)]
    if a.interval > b.interval:
        return [(x, y) for y, x in _at_common_interval(b, a)]
    step = max(1, round(b.interval / a.interval))
    return [(fa[phase::step], fb) for phase in range(min(step, len(fa)))]


def _min_window_l1(a: np.ndarray, b: np.ndarray) -> float:
    short, long_ = (a, b) if len(a) <= len(b) else (b, a)
    # (windows, 1, m, bins) -> per-window mean of per-frame L1
    windows = sliding_window_view(long_, short.shape)
    per_frame = np.abs(windows - short).sum(axis=-1)
    per_window = per_frame.reshape(per_frame.shape[0], -1).mean(axis=1)
    return float(per_window.min())


def windowed_distance(a: PerceptualFingerprint, b: PerceptualFingerprint) -> float:
    """
    Minimum over all alignments of the mean per-frame distance.
    Returns inf when either side is empty or blank.
    """
    if not len(a) or not len(b) or a.is_blank() or b.is_blank():
        return math.inf

    best = math.inf
    for fa, fb in _at_common_interval(a, b):
        if len(fa) and len(fb):
            best = min(best, _min_window_l1(fa, fb) / _MAX_L1)
    return best


def is_near_duplicate(a: PerceptualFingerprint,
                      b: PerceptualFingerprint,
                      threshold: float = config.SIMILARITY_THRESHOLD) -> bool:
    return windowed_distance(a, b) < threshold
