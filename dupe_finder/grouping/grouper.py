"""
Duplicate grouping.

Exact groups partition entries by content digest. Near-duplicate groups avoid
all-pairs comparison with a coarse bucket index: every sampled frame is
keyed by its dominant histogram bin, and the full windowed distance is only
computed between entries that share a bin or hold adjacent bins in the RGB
cube. Pairs whose dominant colors drift further than one bucket between
encodes are never compared, so near-duplicate grouping can miss matches; it
does not claim to be exhaustive.
"""
import logging
from collections import defaultdict
from itertools import product
from typing import Dict, Iterable, List, Sequence, Set

import numpy as np

from .. import config
from ..fingerprint.similarity import windowed_distance
from ..models import DuplicateGroup, FingerprintEntry, PerceptualFingerprint

EXACT = "exact"
NEAR = "near"


def _build_neighbor_table() -> List[tuple]:
    b = config.HISTOGRAM_BUCKETS
    table = []
    for idx in range(config.HISTOGRAM_BINS):
        r, g, bl = idx // (b * b), (idx // b) % b, idx % b
        near = []
        for dr, dg, db in product((-1, 0, 1), repeat=3):
            nr, ng, nb = r + dr, g + dg, bl + db
            if 0 <= nr < b and 0 <= ng < b and 0 <= nb < b:
                near.append((nr * b + ng) * b + nb)
        table.append(tuple(near))
    return table


# bin -> the bin itself plus every bin one bucket away on each channel
_NEIGHBORS = _build_neighbor_table()


def bucket_keys(fingerprint: PerceptualFingerprint) -> Set[int]:
    """Dominant bin of every sampled frame."""
    arr = fingerprint.as_array()
    if not len(arr):
        return set()
    return set(int(k) for k in np.argmax(arr, axis=1))


class _UnionFind:
    def __init__(self, n: int):
        self.parent = list(range(n))

    def find(self, x: int) -> int:
        while self.parent[x] != x:
            self.parent[x] = self.parent[self.parent[x]]
            x = self.parent[x]
        return x

    def union(self, x: int, y: int):
        rx, ry = self.find(x), self.find(y)
        if rx != ry:
            # Smaller index becomes the root so results don't depend on pair order
            if ry < rx:
                rx, ry = ry, rx
            self.parent[ry] = rx


class DuplicateGrouper:
    def __init__(self, threshold: float = config.SIMILARITY_THRESHOLD):
        self.threshold = threshold

    def group(self, entries: Iterable[FingerprintEntry], near_duplicates: bool = False) -> List[DuplicateGroup]:
        entries = list(entries)
        groups = self.exact_groups(entries)
        if near_duplicates:
            groups.extend(self.near_duplicate_groups(entries))
        return self._sorted(groups)

    def exact_groups(self, entries: Iterable[FingerprintEntry]) -> List[DuplicateGroup]:
        by_digest: Dict[str, List[FingerprintEntry]] = defaultdict(list)
        for entry in entries:
            by_digest[entry.digest].append(entry)

        groups = []
        for digest, bag in by_digest.items():
            if len(bag) < 2:
                continue
            members = sorted((e.record for e in bag), key=lambda r: r.sort_key())
            groups.append(DuplicateGroup(EXACT, members, digest))
        logging.info(f"Found {len(groups)} exact duplicate groups among {len(by_digest)} distinct digests")
        return self._sorted(groups)

    def near_duplicate_groups(self, entries: Iterable[FingerprintEntry]) -> List[DuplicateGroup]:
        candidates = self._representatives(entries)
        if len(candidates) < 2:
            return []

        # Coarse index: dominant bin -> candidate indices
        keys = [bucket_keys(e.perceptual) for e in candidates]
        buckets: Dict[int, List[int]] = defaultdict(list)
        for i, ks in enumerate(keys):
            for k in ks:
                buckets[k].append(i)

        uf = _UnionFind(len(candidates))
        compared = 0
        for i, ks in enumerate(keys):
            partners: Set[int] = set()
            for k in ks:
                for nk in _NEIGHBORS[k]:
                    partners.update(j for j in buckets.get(nk, ()) if j > i)
            for j in sorted(partners):
                compared += 1
                dist = windowed_distance(candidates[i].perceptual, candidates[j].perceptual)
                if dist < self.threshold:
                    logging.debug(f"Near duplicate ({dist:.3f}): {candidates[i].path} ~ {candidates[j].path}")
                    uf.union(i, j)

        n = len(candidates)
        logging.info(f"Compared {compared} candidate pairs out of {n * (n - 1) // 2} possible")

        clusters: Dict[int, List[FingerprintEntry]] = defaultdict(list)
        for i, entry in enumerate(candidates):
            clusters[uf.find(i)].append(entry)

        groups = []
        for bag in clusters.values():
            if len(bag) < 2:
                continue
            bag.sort(key=lambda e: e.record.sort_key())
            groups.append(DuplicateGroup(NEAR, [e.record for e in bag], bag[0].perceptual))
        logging.info(f"Found {len(groups)} near-duplicate groups")
        return self._sorted(groups)

    def _representatives(self, entries: Iterable[FingerprintEntry]) -> List[FingerprintEntry]:
        """
        Entries with a usable video fingerprint, one per content digest.
        Byte-identical copies are already covered by the exact groups, only
        their keeper takes part in near-duplicate matching.
        """
        best: Dict[str, FingerprintEntry] = {}
        for entry in entries:
            if entry.perceptual is None or entry.perceptual.is_blank():
                continue
            current = best.get(entry.digest)
            if current is None or entry.record.sort_key() < current.record.sort_key():
                best[entry.digest] = entry
        return sorted(best.values(), key=lambda e: str(e.path))

    @staticmethod
    def _sorted(groups: Sequence[DuplicateGroup]) -> List[DuplicateGroup]:
        # Biggest files first, like the reclaimable-space listing
        return sorted(groups, key=lambda g: (-max(m.size for m in g.members), g.kind, str(g.keeper.path)))
