"""
Creation-time inference for media files.

Sources are tried in a fixed order and the first plausible value wins:

  1. sidecar     - Google Takeout style "<name>.json" next to the file
  2. embedded    - EXIF / MediaInfo dates (opt-in)
  3. filename    - dates or epoch millis embedded in the file name
  4. filesystem  - OS birth time / modified time
  5. catalog     - creation time of a cataloged file with the same name (optional)
  6. wall_clock  - now, logged as a data quality warning

Strategies 1-4 only look at the file and its neighbours, so they are safe to
run on worker threads (see TimestampResolver.infer). Strategies 5-6 are the
fallback applied on the caller's thread.
"""
import json
import logging
import re
import time
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from .. import config
from .extract import EmbeddedMetadataReader

DATE_HOUR_PATTERN = re.compile(r'(\d{8})\D*(\d{6})')   # 20160922_160430
MILLIS_PATTERN = re.compile(r'(\d{13})')               # 1474560270000
DATE_PATTERN = re.compile(r'(\d{8})')                  # 20160922

NameLookup = Callable[[str], Optional[int]]


def _timestamp_field(data: dict, key: str) -> Optional[int]:
    """Reads data[key]["timestamp"]; Takeout writes it as a numeric string."""
    block = data.get(key)
    if not isinstance(block, dict):
        return None
    raw = block.get("timestamp")
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


class TimestampResolver:
    def __init__(self,
                 tz: Optional[tzinfo] = None,
                 sidecar_suffixes: Sequence[str] = config.SIDECAR_STRIP_SUFFIXES,
                 lookup: Optional[NameLookup] = None,
                 use_embedded_metadata: bool = False,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            tz: Zone for naive dates parsed from file names (None = local time).
            lookup: name -> created_ms of an already cataloged file, or None.
            use_embedded_metadata: Also read EXIF/MediaInfo dates (slower).
            clock: Source of "now" in epoch seconds for the last-resort fallback.
        """
        self.tz = tz
        self.sidecar_suffixes = tuple(sidecar_suffixes)
        self.lookup = lookup
        self.clock = clock
        self.metadata = EmbeddedMetadataReader() if use_embedded_metadata else None

        self._strategies: List[Tuple[str, Callable[[Path], Optional[int]]]] = [
            ("sidecar", self.sidecar_timestamp),
        ]
        if self.metadata is not None:
            self._strategies.append(("embedded", self.embedded_timestamp))
        self._strategies += [
            ("filename", self.filename_timestamp),
            ("filesystem", self.filesystem_timestamp),
        ]

    # --- Public API ---

    def infer(self, path: Path) -> Optional[int]:
        """File-local inference. Never raises; None when nothing matched."""
        return self._infer(path)[1]

    def fallback(self, path: Path) -> int:
        return self._fallback(path)[1]

    def resolve(self, path: Path) -> int:
        """Always returns a positive creation time in millis."""
        return self.explain(path)[1]

    def explain(self, path: Path) -> Tuple[str, int]:
        """Returns (strategy name, millis) for reporting."""
        strategy, value = self._infer(path)
        if strategy is not None and value is not None:
            return strategy, value
        return self._fallback(path)

    # --- Strategies ---

    def sidecar_candidates(self, path: Path) -> List[Path]:
        """
        "<name>.json" first, then the stem with edit/duplicate markers stripped,
        then "<stem>.json".
        """
        ext = path.suffix
        names = [f"{path.name}{config.SIDECAR_EXT}"]

        stem = path.stem
        changed = True
        while changed:
            changed = False
            for suffix in self.sidecar_suffixes:
                if stem.endswith(suffix) and len(stem) > len(suffix):
                    stem = stem[:-len(suffix)].rstrip()
                    names.append(f"{stem}{ext}{config.SIDECAR_EXT}")
                    changed = True

        names.append(f"{path.stem}{config.SIDECAR_EXT}")

        seen = set()
        ordered = []
        for n in names:
            if n not in seen:
                seen.add(n)
                ordered.append(path.parent / n)
        return ordered

    def sidecar_timestamp(self, path: Path) -> Optional[int]:
        for candidate in self.sidecar_candidates(path):
            if candidate.is_file():
                value = self.read_sidecar(candidate)
                if value is not None:
                    return value
        return None

    def read_sidecar(self, sidecar: Path) -> Optional[int]:
        """
        Earliest of creationTime.timestamp / photoTakenTime.timestamp in millis.
        Malformed files are logged and ignored.
        """
        try:
            with sidecar.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to parse sidecar {sidecar}: {e}")
            return None

        if not isinstance(data, dict):
            logging.warning(f"Unexpected sidecar layout in {sidecar}")
            return None

        found = [v for v in (_timestamp_field(data, "creationTime"),
                             _timestamp_field(data, "photoTakenTime")) if v is not None]
        if not found:
            return None
        return min(found) * config.SIDECAR_TIMESTAMP_UNIT_MS

    def embedded_timestamp(self, path: Path) -> Optional[int]:
        if self.metadata is None:
            return None
        dt = self.metadata.capture_datetime(path)
        return self._to_millis(dt) if dt else None

    def filename_timestamp(self, path: Path) -> Optional[int]:
        name = Path(path).stem

        for m in DATE_HOUR_PATTERN.finditer(name):
            try:
                dt = datetime.strptime(f"{m.group(1)} {m.group(2)}", "%Y%m%d %H%M%S")
            except ValueError:
                continue
            return self._to_millis(dt)

        m = MILLIS_PATTERN.search(name)
        if m:
            return int(m.group(1))

        low, high = config.DATE_ONLY_YEAR_RANGE
        for m in DATE_PATTERN.finditer(name):
            try:
                dt = datetime.strptime(m.group(1), "%Y%m%d")
            except ValueError:
                continue
            if low <= dt.year <= high:
                return self._to_millis(dt)
        return None

    def filesystem_timestamp(self, path: Path) -> Optional[int]:
        st = path.stat()
        values = [st.st_mtime_ns // 1_000_000]
        birth = getattr(st, 'st_birthtime', None)
        if birth is not None:
            values.append(int(birth * 1000))
        plausible = [v for v in values if v >= config.MIN_PLAUSIBLE_MILLIS]
        return min(plausible) if plausible else None

    # --- Internals ---

    def _infer(self, path: Path) -> Tuple[Optional[str], Optional[int]]:
        for name, strategy in self._strategies:
            try:
                value = strategy(path)
            except Exception as e:
                logging.debug(f"Timestamp strategy '{name}' failed for {path}: {e}")
                continue
            if value is not None and value > 0:
                return name, value
        return None, None

    def _fallback(self, path: Path) -> Tuple[str, int]:
        if self.lookup is not None:
            try:
                value = self.lookup(path.name)
            except Exception as e:
                logging.warning(f"Catalog lookup failed for {path.name}: {e}")
                value = None
            if value is not None and value > 0:
                logging.info(f"Reusing cataloged creation time for {path}")
                return "catalog", value

        logging.warning(f"No timestamp for {path}; using current time")
        return "wall_clock", int(self.clock() * 1000)

    def _to_millis(self, dt: datetime) -> int:
        if dt.tzinfo is None and self.tz is not None:
            dt = dt.replace(tzinfo=self.tz)
        return round(dt.timestamp() * 1000)
