import os
from pathlib import Path

import pytest

from dupe_finder.config import ScanSettings
from dupe_finder.core import DupeFinderApp
from dupe_finder.exceptions import ConfigurationError, DecodeError, FileHashError, FileOperationError, StoreError
from dupe_finder.grouping.grouper import EXACT, NEAR
from dupe_finder.models import PerceptualFingerprint
from dupe_finder.scanning import walker, workers


def settings(root, **kw):
    kw.setdefault("threads", 2)
    return ScanSettings(path=root, **kw)


@pytest.fixture
def media(tmp_path):
    """A and B byte-identical, C differs from A by one byte."""
    root = tmp_path / "media"
    (root / "sub").mkdir(parents=True)
    (root / "A.mp4").write_bytes(b"0123456789" * 100)
    (root / "sub" / "B.mp4").write_bytes(b"0123456789" * 100)
    (root / "C.mp4").write_bytes(b"0123456789" * 99 + b"012345678X")
    return root


def test_exact_group_end_to_end(app, media):
    summary = app.scan(settings(media))
    assert summary.hashed == 3
    assert summary.failed == 0

    groups = app.list_duplicate_groups()
    assert len(groups) == 1
    assert groups[0].kind == EXACT
    assert {p.name for p in groups[0].paths} == {"A.mp4", "B.mp4"}


def test_batch_boundary_mid_scan_keeps_all_entries(app, media):
    summary = app.scan(settings(media, threads=1, commit_batchsize=2))
    assert summary.hashed == 3
    assert app.store.count() == 3
    assert app.store.pending == 0


def test_rescan_of_unchanged_tree_does_no_work(app, media):
    app.scan(settings(media))
    summary = app.scan(settings(media))
    assert summary.hashed == 0
    assert summary.unchanged == 3
    assert summary.generation == 2


def test_changed_file_is_rehashed(app, media):
    app.scan(settings(media))
    c = media / "C.mp4"
    c.write_bytes(b"0123456789" * 100)
    # Same size as before, so only the mtime tells them apart
    st = c.stat()
    os.utime(c, (st.st_atime, st.st_mtime + 60))
    summary = app.scan(settings(media))
    assert summary.hashed == 1
    assert len(app.list_duplicate_groups()[0].members) == 3


def test_clean_unfound_prunes_deleted_files(app, media):
    app.scan(settings(media))
    (media / "C.mp4").unlink()

    kept = app.scan(settings(media))
    assert kept.pruned == 0
    assert app.get_file_record(media / "C.mp4") is not None

    pruned = app.scan(settings(media, clean_unfound=True))
    assert pruned.pruned == 1
    assert app.get_file_record(media / "C.mp4") is None
    assert app.get_file_record(media / "A.mp4") is not None


def test_clean_unfound_leaves_other_roots_alone(app, media, tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    (other / "x.bin").write_bytes(b"x")
    app.scan(settings(other))
    app.scan(settings(media, clean_unfound=True))
    assert app.get_file_record(other / "x.bin") is not None


@pytest.mark.parametrize("threads", [1, 4, 16])
def test_store_contents_independent_of_thread_count(tmp_path, media, threads):
    for i in range(20):
        (media / f"extra{i:02d}.bin").write_bytes(bytes([i % 7]) * (i + 1))

    def contents(n):
        with DupeFinderApp(tmp_path / f"db{n}.sqlite") as a:
            a.scan(settings(media, threads=n, commit_batchsize=3))
            return set(a.store.iterate_all())

    assert contents(threads) == contents(1)


def test_clean_unfound_keeps_entries_under_unreadable_directory(app, media, monkeypatch):
    locked = media / "locked"
    locked.mkdir()
    (locked / "keep.bin").write_bytes(b"still here")
    app.scan(settings(media))

    real_scandir = os.scandir

    def scandir(path):
        if Path(path) == locked:
            raise PermissionError(13, "Permission denied")
        return real_scandir(path)

    monkeypatch.setattr(walker.os, "scandir", scandir)
    (media / "C.mp4").unlink()
    summary = app.scan(settings(media, clean_unfound=True))

    assert summary.traversal_errors == 1
    assert summary.pruned == 1
    assert app.get_file_record(locked / "keep.bin") is not None
    assert app.get_file_record(media / "C.mp4") is None


def test_failed_file_keeps_last_known_good_entry(app, media, monkeypatch):
    app.scan(settings(media))
    before = app.store.get(media / "C.mp4")
    (media / "C.mp4").write_bytes(b"changed")

    real_hash = workers.content_hash

    def flaky(path):
        if path.name == "C.mp4":
            raise FileHashError(f"Cannot read {path}: I/O error")
        return real_hash(path)

    monkeypatch.setattr(workers, "content_hash", flaky)
    summary = app.scan(settings(media, clean_unfound=True))

    assert summary.failed == 1
    assert summary.pruned == 0
    assert [p for p, _ in summary.errors] == [media / "C.mp4"]
    assert app.store.get(media / "C.mp4").digest == before.digest


def test_videohash_finds_near_duplicates(app, tmp_path, monkeypatch, video_fingerprint):
    root = tmp_path / "videos"
    root.mkdir()
    (root / "movie.mkv").write_bytes(b"full length encode")
    (root / "trailer.mp4").write_bytes(b"clip, different codec")
    (root / "holiday.mp4").write_bytes(b"unrelated")

    full = video_fingerprint(5)
    fingerprints = {
        "movie.mkv": full,
        "trailer.mp4": PerceptualFingerprint(full.frames[3:9]),
        "holiday.mp4": video_fingerprint(6),
    }
    monkeypatch.setattr(workers, "perceptual_hash", lambda path, interval, max_frames: fingerprints[path.name])

    app.scan(settings(root, videohash=True))
    assert app.list_duplicate_groups(near_duplicates=False) == []

    groups = app.list_duplicate_groups(near_duplicates=True)
    assert len(groups) == 1
    assert groups[0].kind == NEAR
    assert {p.name for p in groups[0].paths} == {"movie.mkv", "trailer.mp4"}


def test_videohash_matches_time_range_clip(app, tmp_path, scene_timeline):
    root = tmp_path / "videos"
    root.mkdir()
    for name, start, duration in [("movie.mkv", 0.0, 160.0), ("trailer.mp4", 42.0, 40.0), ("holiday.mp4", 1200.0, 30.0)]:
        (root / name).write_bytes(name.encode())
        scene_timeline.add(root / name, start, duration)

    app.scan(settings(root, videohash=True))

    groups = app.list_duplicate_groups(near_duplicates=True)
    assert len(groups) == 1
    assert groups[0].kind == NEAR
    assert {p.name for p in groups[0].paths} == {"movie.mkv", "trailer.mp4"}


def test_decode_failure_is_not_retried(app, tmp_path, monkeypatch):
    root = tmp_path / "videos"
    root.mkdir()
    (root / "corrupt.mp4").write_bytes(b"garbage")
    calls = []

    def undecodable(path, interval, max_frames):
        calls.append(path)
        raise DecodeError("Invalid data found when processing input")

    monkeypatch.setattr(workers, "perceptual_hash", undecodable)

    first = app.scan(settings(root, videohash=True))
    assert first.hashed == 1
    assert first.decode_failures == 1
    assert app.store.get(root / "corrupt.mp4").perceptual is None

    second = app.scan(settings(root, videohash=True))
    assert second.hashed == 0
    assert len(calls) == 1


def test_enabling_videohash_later_fills_in_fingerprints(app, tmp_path, monkeypatch, video_fingerprint):
    root = tmp_path / "videos"
    root.mkdir()
    (root / "a.mp4").write_bytes(b"a")
    app.scan(settings(root))

    monkeypatch.setattr(workers, "perceptual_hash", lambda path, interval, max_frames: video_fingerprint(1))
    summary = app.scan(settings(root, videohash=True))
    assert summary.hashed == 1
    assert app.store.get(root / "a.mp4").perceptual is not None


def test_store_failure_stops_scan(app, media, monkeypatch):
    def broken(entries):
        raise StoreError("disk I/O error")

    monkeypatch.setattr(app.store, "put_batch", broken)
    with pytest.raises(StoreError):
        app.scan(settings(media, commit_batchsize=1))


def test_invalid_configuration_is_rejected(app, media, tmp_path):
    with pytest.raises(ConfigurationError):
        app.scan(settings(media, threads=0))
    with pytest.raises(ConfigurationError):
        app.scan(settings(tmp_path / "missing"))
    with pytest.raises(ConfigurationError):
        ScanSettings(path=media, similarity_threshold=0).validate()
    with pytest.raises(ConfigurationError):
        ScanSettings(path=media, sample_interval=0).validate()


def test_delete_updates_store_and_groups(app, media):
    app.scan(settings(media))
    assert app.delete(media / "sub" / "B.mp4") == "success"
    assert not (media / "sub" / "B.mp4").exists()
    assert app.get_file_record(media / "sub" / "B.mp4") is None
    assert app.list_duplicate_groups() == []


def test_delete_of_vanished_file_still_drops_entry(app, media):
    app.scan(settings(media))
    os.remove(media / "C.mp4")
    assert app.delete(media / "C.mp4") == "does-not-exist"
    assert app.get_file_record(media / "C.mp4") is None


def test_rename_rekeys_entry(app, media):
    app.scan(settings(media))
    assert app.rename(media / "sub" / "B.mp4", "B-copy.mp4") == "success"

    new_path = media / "sub" / "B-copy.mp4"
    assert new_path.exists()
    assert app.get_file_record(media / "sub" / "B.mp4") is None
    assert app.get_file_record(new_path) is not None
    assert new_path in app.list_duplicate_groups()[0].paths

    # Renamed file is recognized as unchanged on the next scan
    assert app.scan(settings(media)).hashed == 0


def test_rename_refuses_to_overwrite(app, media):
    app.scan(settings(media))
    with pytest.raises(FileOperationError):
        app.rename(media / "A.mp4", media / "C.mp4")
    assert (media / "A.mp4").exists()


def test_reset_database_discards_fingerprints(tmp_path, media):
    db = tmp_path / "digests.sqlite"
    with DupeFinderApp(db) as a:
        a.scan(settings(media))
    with DupeFinderApp.from_settings(ScanSettings(path=media, reset_database=True, db_path=db)) as a:
        assert a.store.count() == 0


def test_scan_batch_size_does_not_outlive_the_scan(tmp_path, media):
    with DupeFinderApp(tmp_path / "db.sqlite", commit_batchsize=64) as a:
        a.scan(settings(media, commit_batchsize=2))
        assert a.store.commit_batchsize == 64
