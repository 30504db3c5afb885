import threading
from datetime import timezone

from photo_catalog.models import Owner
from photo_catalog.scanning.scanner import DirectoryScanner
from photo_catalog.metadata.timestamps import TimestampResolver
from conftest import FIXED_MS

ALICE = Owner(id=1, login="alice")


def by_full_name(candidates):
    return {c.full_name: c for c in candidates}

def test_scan_depth_and_folders(scanner, make_file):
    make_file("alice/a.jpg", data=b"12345")
    make_file("alice/trip/b.jpg")
    make_file("alice/trip/deeper/c.jpg")
    make_file("bob/other.jpg")

    found = by_full_name(scanner.scan(ALICE))

    assert set(found) == {"a.jpg", "trip/b.jpg"}
    assert found["a.jpg"].folder is None
    assert found["a.jpg"].size_bytes == 5
    assert found["trip/b.jpg"].folder == "trip"
    assert all(c.owner_id == 1 for c in found.values())
    assert all(c.created_ms == FIXED_MS for c in found.values())

def test_scan_skips_sidecars(scanner, make_file):
    make_file("alice/a.jpg")
    make_file("alice/a.jpg.json", data=b'{"photoTakenTime": {"timestamp": "1500000000"}}')
    make_file("alice/trip/ALBUM.JSON", data=b"{}")

    found = by_full_name(scanner.scan(ALICE))

    assert set(found) == {"a.jpg"}
    assert found["a.jpg"].created_ms == 1500000000000

def test_scan_creates_missing_owner_folder(scanner, store):
    assert scanner.scan(ALICE) == []
    assert (store.root / "alice").is_dir()

def test_scan_empty_folder(scanner, store):
    store.make_dirs("alice")
    assert scanner.scan(ALICE) == []

def test_unresolved_files_use_fallback(store, make_file):
    make_file("alice/holiday.jpg", mtime_ms=1000)
    resolver = TimestampResolver(lookup=lambda name: 777, clock=lambda: 1.0)
    scanner = DirectoryScanner(store, resolver, max_workers=1, timeout=5.0, poll_interval=0.05)

    [candidate] = scanner.scan(ALICE)
    assert candidate.created_ms == 777

def test_slow_file_times_out_without_blocking_others(store, make_file, monkeypatch):
    make_file("alice/fast1.jpg")
    make_file("alice/fast2.jpg")
    make_file("alice/slow.jpg")

    release = threading.Event()
    resolver = TimestampResolver(clock=lambda: 1700000000.0)
    original = resolver.infer

    def infer(path):
        if path.name == "slow.jpg":
            release.wait(5)
        return original(path)

    monkeypatch.setattr(resolver, "infer", infer)
    scanner = DirectoryScanner(store, resolver, max_workers=2, timeout=0.2, poll_interval=0.05)

    try:
        found = by_full_name(scanner.scan(ALICE))
    finally:
        release.set()

    assert set(found) == {"fast1.jpg", "fast2.jpg", "slow.jpg"}
    assert found["fast1.jpg"].created_ms == FIXED_MS
    assert found["fast2.jpg"].created_ms == FIXED_MS
    # Timed-out file is stamped by the fallback on the calling thread
    assert found["slow.jpg"].created_ms == 1700000000000

def test_hung_worker_does_not_spoil_queued_files(store, make_file, monkeypatch):
    make_file("alice/a_hang.jpg")
    make_file("alice/b_20210615_143000.jpg")
    make_file("alice/c_20210615_143000.jpg")

    release = threading.Event()
    resolver = TimestampResolver(tz=timezone.utc, clock=lambda: 1700000000.0)
    original = resolver.infer

    def infer(path):
        if path.name == "a_hang.jpg":
            release.wait(5)
        return original(path)

    monkeypatch.setattr(resolver, "infer", infer)
    scanner = DirectoryScanner(store, resolver, max_workers=1, timeout=0.1, poll_interval=0.05)

    try:
        found = by_full_name(scanner.scan(ALICE))
    finally:
        release.set()

    assert found["a_hang.jpg"].created_ms == 1700000000000
    # Queued behind the hung file, still resolved from their names
    assert found["b_20210615_143000.jpg"].created_ms == 1623767400000
    assert found["c_20210615_143000.jpg"].created_ms == 1623767400000

def test_queued_files_skipped_once_hung_threads_hit_the_bound(store, make_file, monkeypatch):
    for name in ("a.jpg", "b.jpg", "c.jpg"):
        make_file(f"alice/{name}")

    release = threading.Event()
    started = []
    resolver = TimestampResolver(clock=lambda: 1700000000.0)

    def infer(path):
        started.append(path.name)
        release.wait(5)
        return FIXED_MS

    monkeypatch.setattr(resolver, "infer", infer)
    scanner = DirectoryScanner(store, resolver, max_workers=1, timeout=0.1,
                               poll_interval=0.05, max_abandoned=2)

    try:
        found = scanner.scan(ALICE)
    finally:
        release.set()

    assert sorted(started) == ["a.jpg", "b.jpg"]
    assert len(found) == 3
    assert all(c.created_ms == 1700000000000 for c in found)

def test_iter_media_files_reports_folder(scanner, make_file):
    make_file("alice/x.png")
    make_file("alice/2020/y.mp4")

    pairs = sorted((p.name, folder) for p, folder in scanner.iter_media_files(ALICE))
    assert pairs == [("x.png", None), ("y.mp4", "2020")]
