import json
import logging
from datetime import datetime, timezone

import pytest

from photo_catalog.metadata.timestamps import TimestampResolver
from conftest import FIXED_MS


def write_sidecar(path, creation=None, taken=None):
    data = {"title": path.name}
    if creation is not None:
        data["creationTime"] = {"timestamp": creation, "formatted": "ignored"}
    if taken is not None:
        data["photoTakenTime"] = {"timestamp": taken}
    path.write_text(json.dumps(data), encoding="utf-8")


def test_sidecar_uses_earliest_timestamp(tmp_path, resolver):
    img = tmp_path / "photo.jpg"
    img.write_bytes(b"x")
    write_sidecar(tmp_path / "photo.jpg.json", creation="1600000000", taken="1500000000")

    assert resolver.explain(img) == ("sidecar", 1500000000000)

def test_sidecar_accepts_numeric_values(tmp_path, resolver):
    img = tmp_path / "photo.jpg"
    img.write_bytes(b"x")
    write_sidecar(tmp_path / "photo.jpg.json", taken=1500000000)

    assert resolver.sidecar_timestamp(img) == 1500000000000

def test_sidecar_found_for_edited_duplicate(tmp_path, resolver):
    img = tmp_path / "IMG_1-editat(1).jpg"
    img.write_bytes(b"x")
    write_sidecar(tmp_path / "IMG_1.jpg.json", creation="1400000000")

    assert resolver.resolve(img) == 1400000000000

def test_sidecar_candidate_order(tmp_path, resolver):
    names = [p.name for p in resolver.sidecar_candidates(tmp_path / "IMG_1-editat(1).jpg")]
    assert names == [
        "IMG_1-editat(1).jpg.json",
        "IMG_1-editat.jpg.json",
        "IMG_1.jpg.json",
        "IMG_1-editat(1).json",
    ]

def test_sidecar_stem_fallback(tmp_path, resolver):
    img = tmp_path / "clip.mp4"
    img.write_bytes(b"x")
    write_sidecar(tmp_path / "clip.json", creation="1300000000")

    assert resolver.sidecar_timestamp(img) == 1300000000000

def test_malformed_sidecar_falls_through(tmp_path, resolver, make_file, caplog):
    img = make_file("alice/photo.jpg")
    (img.parent / "photo.jpg.json").write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        assert resolver.explain(img) == ("filesystem", FIXED_MS)
    assert "Failed to parse sidecar" in caplog.text

def test_zero_sidecar_timestamp_is_ignored(tmp_path, resolver, make_file):
    img = make_file("alice/photo.jpg")
    write_sidecar(img.parent / "photo.jpg.json", creation="0")

    assert resolver.explain(img) == ("filesystem", FIXED_MS)

def test_filename_date_and_hour(resolver):
    expected = round(datetime(2021, 6, 15, 14, 30).timestamp() * 1000)
    assert resolver.filename_timestamp("20210615_143000_holiday.jpg") == expected

def test_filename_date_uses_configured_zone():
    utc = TimestampResolver(tz=timezone.utc)
    assert utc.filename_timestamp("VID_20210615_143000.mp4") == 1623767400000

def test_filename_epoch_millis(resolver):
    assert resolver.filename_timestamp("1623766200123_img.jpg") == 1623766200123

def test_filename_date_only():
    utc = TimestampResolver(tz=timezone.utc)
    assert utc.filename_timestamp("Screenshot 20190301.png") == 1551398400000

def test_filename_date_out_of_range_is_ignored(resolver, make_file):
    img = make_file("alice/20990101.jpg")
    assert resolver.filename_timestamp(img) is None
    # Falls through to the filesystem
    assert resolver.explain(img) == ("filesystem", FIXED_MS)

def test_filename_invalid_calendar_date(resolver):
    assert resolver.filename_timestamp("IMG_20211340_999999.jpg") is None

def test_filesystem_ignores_implausible_times(resolver, make_file):
    img = make_file("alice/holiday.jpg", mtime_ms=1000)
    assert resolver.filesystem_timestamp(img) is None
    assert resolver.infer(img) is None

def test_infer_never_raises(tmp_path, resolver):
    assert resolver.infer(tmp_path / "missing.jpg") is None

def test_fallback_prefers_catalog_lookup(make_file):
    img = make_file("alice/holiday.jpg", mtime_ms=1000)
    r = TimestampResolver(lookup=lambda name: 42 if name == "holiday.jpg" else None,
                          clock=lambda: 1700000000.0)
    assert r.explain(img) == ("catalog", 42)

def test_fallback_uses_wall_clock(resolver, make_file, caplog):
    img = make_file("alice/holiday.jpg", mtime_ms=1000)

    with caplog.at_level(logging.WARNING):
        assert resolver.explain(img) == ("wall_clock", 1700000000000)
    assert "using current time" in caplog.text

def test_failing_lookup_falls_back_to_clock(make_file):
    def broken(name):
        raise RuntimeError("db gone")

    img = make_file("alice/holiday.jpg", mtime_ms=1000)
    r = TimestampResolver(lookup=broken, clock=lambda: 2.5)
    assert r.resolve(img) == 2500


# --- Embedded metadata ---

class MockTrack:
    def __init__(self, **kwargs):
        self.track_type = "General"
        for k, v in kwargs.items():
            setattr(self, k, v)

class MockMediaInfo:
    def __init__(self, tracks):
        self.tracks = tracks

    @classmethod
    def parse(cls, path):
        return cls([MockTrack(recorded_date=None, encoded_date="UTC 2023-01-01 12:00:00")])

def test_embedded_video_date(monkeypatch, make_file):
    import photo_catalog.metadata.extract as extract_module
    monkeypatch.setattr(extract_module, "MediaInfo", MockMediaInfo)

    clip = make_file("alice/clip.mp4")
    r = TimestampResolver(tz=timezone.utc, use_embedded_metadata=True)
    assert r.explain(clip) == ("embedded", 1672574400000)

def test_embedded_exif_date_beats_filename(monkeypatch, make_file):
    import photo_catalog.metadata.extract as extract_module
    monkeypatch.setattr(extract_module.exifread, "process_file",
                        lambda f, details=False: {"EXIF DateTimeOriginal": "2020:05:01 10:00:00"})

    img = make_file("alice/20210615_143000.jpg")
    r = TimestampResolver(tz=timezone.utc, use_embedded_metadata=True)
    assert r.explain(img) == ("embedded", 1588327200000)

def test_embedded_disabled_by_default(monkeypatch, make_file, resolver):
    import photo_catalog.metadata.extract as extract_module

    def boom(*args, **kwargs):
        pytest.fail("embedded metadata should not be read")

    monkeypatch.setattr(extract_module.exifread, "process_file", boom)
    img = make_file("alice/photo.jpg")
    assert resolver.explain(img) == ("filesystem", FIXED_MS)

def test_embedded_failure_falls_through(monkeypatch, make_file):
    import photo_catalog.metadata.extract as extract_module
    from photo_catalog.exceptions import MetadataExtractionError

    class BrokenMediaInfo:
        @classmethod
        def parse(cls, path):
            raise OSError("libmediainfo not found")

    monkeypatch.setattr(extract_module, "MediaInfo", BrokenMediaInfo)
    clip = make_file("alice/VID_20210615_143000.mp4")

    with pytest.raises(MetadataExtractionError):
        extract_module.EmbeddedMetadataReader().capture_datetime(clip)

    r = TimestampResolver(tz=timezone.utc, use_embedded_metadata=True)
    assert r.explain(clip) == ("filename", 1623767400000)

@pytest.fixture
def new_york(monkeypatch):
    """Runs the test with the process local time zone set to New York."""
    import time
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()

def test_utc_video_date_ignores_local_zone(monkeypatch, make_file, new_york):
    import photo_catalog.metadata.extract as extract_module

    class UtcMediaInfo(MockMediaInfo):
        @classmethod
        def parse(cls, path):
            return cls([MockTrack(recorded_date=None, encoded_date="UTC 2021-06-15 14:30:00")])

    monkeypatch.setattr(extract_module, "MediaInfo", UtcMediaInfo)
    clip = make_file("alice/clip.mp4")

    r = TimestampResolver(use_embedded_metadata=True)
    assert r.explain(clip) == ("embedded", 1623767400000)

def test_utc_marker_makes_aware_datetime():
    from photo_catalog.metadata.extract import EmbeddedMetadataReader
    reader = EmbeddedMetadataReader()

    assert reader._parse_flexible_date("UTC 2021-06-15 14:30:00").tzinfo is not None
    assert reader._parse_flexible_date("2021-06-15 14:30:00").tzinfo is None
    assert reader._parse_flexible_date("not a date") is None
