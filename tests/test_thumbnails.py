import pytest
from PIL import Image

from photo_catalog.models import Record
from photo_catalog.storage import FileStore
from photo_catalog.thumbnails import PreviewCache, fill_dimensions


def record(rid=1, name="photo.jpg"):
    return Record(id=rid, owner_id=1, name=name, created_ms=1000, size_bytes=0)

def save_jpeg(path, size, orientation=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    with Image.new("RGB", size, color="red") as im:
        if orientation is None:
            im.save(path, "JPEG")
        else:
            exif = Image.Exif()
            exif[0x0112] = orientation
            im.save(path, "JPEG", exif=exif)
    return path

@pytest.fixture
def cache(tmp_path):
    return PreviewCache(FileStore(tmp_path / "previews"))

@pytest.mark.parametrize("size, expected", [
    ((1000, 800), (625, 500)),
    ((800, 1000), (500, 625)),
    ((500, 500), (500, 500)),
    ((300, 200), (300, 200)),
])
def test_fill_dimensions(size, expected):
    assert fill_dimensions(*size, 500) == expected

def test_preview_shorter_side_is_target(tmp_path, cache):
    src = save_jpeg(tmp_path / "src/photo.jpg", (1000, 800))

    relative = cache.ensure(record(), src)

    assert relative == "1.jpg"
    with Image.open(cache.store.resolve(relative)) as im:
        assert im.format == "JPEG"
        assert im.size == (625, 500)

def test_preview_respects_orientation(tmp_path, cache):
    # Orientation 6: stored landscape, displayed rotated 90 degrees
    src = save_jpeg(tmp_path / "src/photo.jpg", (1000, 800), orientation=6)

    relative = cache.ensure(record(), src)

    with Image.open(cache.store.resolve(relative)) as im:
        assert im.size == (500, 625)

def test_small_image_not_enlarged(tmp_path, cache):
    src = save_jpeg(tmp_path / "src/small.jpg", (120, 80))
    relative = cache.ensure(record(), src)
    with Image.open(cache.store.resolve(relative)) as im:
        assert im.size == (120, 80)

def test_preview_rendered_once(tmp_path, cache, monkeypatch):
    src = save_jpeg(tmp_path / "src/photo.jpg", (1000, 800))
    assert cache.ensure(record(), src) == "1.jpg"

    def no_render(*args):
        pytest.fail("preview rendered twice")

    monkeypatch.setattr(cache, "render", no_render)
    assert cache.ensure(record(), src) == "1.jpg"

def test_no_preview_for_video_or_garbage(tmp_path, cache):
    clip = tmp_path / "src/clip.mp4"
    clip.parent.mkdir(parents=True)
    clip.write_bytes(b"not a video")
    broken = tmp_path / "src/broken.jpg"
    broken.write_bytes(b"not a jpeg")

    assert cache.ensure(record(1, "clip.mp4"), clip) is None
    assert cache.ensure(record(2, "broken.jpg"), broken) is None
    assert not any(cache.store.root.glob("*"))

def test_discard(tmp_path, cache):
    src = save_jpeg(tmp_path / "src/photo.jpg", (1000, 800))
    cache.ensure(record(), src)

    assert cache.discard(record()) is True
    assert cache.discard(record()) is False
