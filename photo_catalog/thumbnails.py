"""
Cached JPEG previews.

Previews are keyed by record id, so relocating a record keeps its preview.
Only still images are rendered; anything Pillow cannot open gets no preview
and callers serve the original instead.
"""
import logging
import os
import threading
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from . import config
from .models import Record
from .storage import FileStore


def fill_dimensions(width: int, height: int, target: int) -> Tuple[int, int]:
    """Scales so the shorter side is target. Never enlarges."""
    ratio = min(1.0, max(target / width, target / height))
    return max(1, round(width * ratio)), max(1, round(height * ratio))


class PreviewCache:
    def __init__(self,
                 store: FileStore,
                 size: int = config.PREVIEW_TARGET_SIZE,
                 quality: int = config.PREVIEW_JPEG_QUALITY):
        self.store = store
        self.size = size
        self.quality = quality
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def preview_path(self, record: Record) -> str:
        return f"{record.id}.jpg"

    def ensure(self, record: Record, source: Path) -> Optional[str]:
        """
        Returns the preview's path relative to the preview store, rendering
        it first if needed. None when the source cannot be previewed.
        """
        relative = self.preview_path(record)
        if self.store.exists(relative):
            return relative

        # One render per record at a time; latecomers reuse the result
        with self._lock_for(record.id):
            if self.store.exists(relative):
                return relative
            if not self.render(source, self.store.resolve(relative)):
                return None
        return relative

    def render(self, source: Path, target: Path) -> bool:
        if source.suffix.lower() not in config.IMAGE_EXTS:
            logging.debug(f"No preview for non-image {source}")
            return False

        tmp = target.with_name(f".{target.name}.tmp")
        try:
            with Image.open(source) as im:
                # Applies the EXIF Orientation tag so the preview is upright
                im = ImageOps.exif_transpose(im)
                im = im.convert("RGB")
                im = im.resize(fill_dimensions(im.width, im.height, self.size), Image.Resampling.LANCZOS)
                target.parent.mkdir(parents=True, exist_ok=True)
                im.save(tmp, "JPEG", quality=self.quality)
            os.replace(tmp, target)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logging.warning(f"Preview generation failed for {source}: {e}")
            tmp.unlink(missing_ok=True)
            return False

        logging.info(f"Generated preview for {source}")
        return True

    def discard(self, record: Record) -> bool:
        return self.store.delete(self.preview_path(record))

    def _lock_for(self, record_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(record_id, threading.Lock())
