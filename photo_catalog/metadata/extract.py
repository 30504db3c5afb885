import logging
from pathlib import Path
from datetime import datetime, UTC
from typing import Dict, Optional

import exifread
from pymediainfo import MediaInfo

from .. import config
from ..exceptions import MetadataExtractionError


class EmbeddedMetadataReader:
    """
    Reads capture dates stored inside the media file itself.

    Strategies:
      - Images: 'exifread' (fast, Python-native).
      - Video: 'pymediainfo' (needs the MediaInfo library on the system).
    """

    def capture_datetime(self, path: Path) -> Optional[datetime]:
        ext = path.suffix.lower()
        if ext in config.IMAGE_EXTS:
            return self.get_image_datetime(path)
        if ext in config.VIDEO_EXTS:
            return self.get_video_datetime(path)
        return None

    def get_image_datetime(self, path: Path) -> Optional[datetime]:
        with path.open('rb') as f:
            # details=False speeds up processing significantly
            tags = exifread.process_file(f, details=False)
        if not tags:
            logging.debug(f"No EXIF tags found for {path}")
            return None
        return self._parse_exif_date(tags)

    def exif_fields(self, path: Path) -> Dict[str, str]:
        """All readable EXIF tags as display strings, e.g. {"Image Model": "X100V"}."""
        try:
            with path.open('rb') as f:
                tags = exifread.process_file(f, details=False)
        except OSError as e:
            raise MetadataExtractionError(f"Cannot read EXIF from {path}: {e}") from e
        return {k: str(v) for k, v in tags.items() if k not in config.EXIF_SKIP_KEYS}

    def get_video_datetime(self, path: Path) -> Optional[datetime]:
        try:
            mi = MediaInfo.parse(str(path))
        except (OSError, RuntimeError) as e:
            # RuntimeError when the MediaInfo shared library is missing
            raise MetadataExtractionError(f"MediaInfo failed for {path}: {e}") from e
        for track in mi.tracks:
            if track.track_type != "General":
                continue
            # Different cameras write to different fields
            for field in config.VIDEO_DATE_FIELDS:
                val = getattr(track, field, None)
                if val:
                    dt = self._parse_flexible_date(val)
                    if dt:
                        return dt
        return None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles ISO and EXIF-style dates, with or without a UTC marker.
        A UTC marker yields an aware datetime; otherwise the result is naive
        (or carries the offset the string itself states).
        """
        if not dt_str:
            return None

        text = str(dt_str)
        is_utc = "UTC" in text
        clean = text.replace("UTC", "").strip()

        dt = None
        try:
            dt = datetime.fromisoformat(clean)
        except ValueError:
            try:
                clean_exif = clean.replace(":", "-", 2)
                # strptime rejects sub-second precision
                if "." in clean_exif:
                    clean_exif = clean_exif.split(".")[0]
                dt = datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None

        if is_utc and dt.tzinfo is None:
            dt = dt.replace(tzinfo=UTC)
        return dt
