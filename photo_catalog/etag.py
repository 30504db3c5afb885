"""
Content-validated downloads.

A record's backing bytes never change after creation, so its SHA-256 is
computed once and memoized for the life of the process. The digest is a pure
function of the bytes, which keeps validators stable across restarts; the
memo is only there to skip re-reading large files.
"""
import hashlib
import logging
import mimetypes
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from . import config
from .models import Record
from .storage import FileStore, RelPath

NOT_MODIFIED = 304
OK = 200


@dataclass
class DownloadResponse:
    """Framework-neutral response: status, headers and a lazily read body."""
    status: int
    headers: Dict[str, str]
    body: Iterator[bytes] = field(default_factory=lambda: iter(()))

    def read_all(self) -> bytes:
        return b"".join(self.body)


def parse_if_none_match(header: Optional[str]) -> list:
    """Splits an If-None-Match header into its entity tags."""
    if not header:
        return []
    return [tag.strip() for tag in header.split(",") if tag.strip()]


class ETagCache:
    def __init__(self, store: FileStore, chunk_size: int = config.HASH_CHUNK_SIZE):
        self.store = store
        self.chunk_size = chunk_size
        # record id -> quoted etag. Plain dict: a racing duplicate computation
        # yields the same value, so setdefault is enough.
        self._etags: Dict[int, str] = {}

    def etag_for(self, record: Record, relative: RelPath) -> str:
        etag = self._etags.get(record.id)
        if etag is None:
            etag = self._etags.setdefault(record.id, self.compute_etag(relative))
        return etag

    def compute_etag(self, relative: RelPath) -> str:
        """Quoted SHA-256 of the file. Reads the whole file."""
        h = hashlib.sha256()
        with self.store.open(relative) as f:
            while chunk := f.read(self.chunk_size):
                h.update(chunk)
        return f'"{h.hexdigest()}"'

    def cached(self, record_id: int) -> Optional[str]:
        return self._etags.get(record_id)

    def forget(self, record_id: int):
        self._etags.pop(record_id, None)

    def __len__(self) -> int:
        return len(self._etags)

    def respond(self, record: Record, relative: RelPath,
                if_none_match: Optional[str] = None,
                filename: Optional[str] = None) -> DownloadResponse:
        """
        304 with an empty body when the client already holds this content,
        otherwise 200 streaming the file. filename overrides the record name
        for Content-Type and Content-Disposition.
        """
        filename = filename or record.name
        etag = self.etag_for(record, relative)
        headers = {
            "ETag": etag,
            "Cache-Control": config.CACHE_CONTROL,
        }

        tags = parse_if_none_match(if_none_match)
        if etag in tags or "*" in tags:
            logging.debug(f"Record {record.id} not modified")
            return DownloadResponse(NOT_MODIFIED, headers)

        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        headers.update({
            "Content-Type": content_type,
            "Content-Length": str(self.store.size(relative)),
            "Content-Disposition": f'attachment; filename="{filename}"',
        })
        logging.info(f"Record {record.id} requested")
        return DownloadResponse(OK, headers, self._stream(relative))

    def _stream(self, relative: RelPath) -> Iterator[bytes]:
        with self.store.open(relative) as f:
            while chunk := f.read(self.chunk_size):
                yield chunk
