import logging
import os
from datetime import tzinfo
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Union

from . import config
from .database.db import DBManager
from .database.ops import CatalogOperations, OwnerDirectory
from .etag import DownloadResponse, ETagCache
from .exceptions import DatabaseError, FileOperationError, RecordNotFoundError
from .ids import RandomIdGenerator
from .metadata.extract import EmbeddedMetadataReader
from .metadata.timestamps import TimestampResolver
from .models import Owner, ReconcileResult, Record, join_full_name
from .reconcile import CatalogReconciler
from .reporting import TimestampReport
from .scanning.scanner import DirectoryScanner
from .storage import FileStore
from .thumbnails import PreviewCache

# Marks "keep the current folder" in relocate(); None means the owner root
KEEP_FOLDER = object()


def _clean_file_name(filename: str) -> str:
    name = filename.replace('\\', '/').rsplit('/', 1)[-1].strip()
    if not name or name in ('.', '..'):
        raise ValueError(f"Invalid file name: {filename!r}")
    return name


def _clean_folder(folder: Optional[str]) -> Optional[str]:
    if folder is None or folder == '':
        return None
    # Only one level of folders below an owner root is cataloged
    if folder in ('.', '..') or any(c in folder for c in ('/', '\\', '\0')):
        raise ValueError(f"Invalid folder name: {folder!r}")
    return folder


def _upload_names(name: str, created_ms: int) -> Iterator[str]:
    """name, then name-<created_ms>, then name-<created_ms>-1, -2, ..."""
    yield name
    stem, ext = os.path.splitext(name)
    yield f"{stem}-{created_ms}{ext}"
    for n in range(1, config.UPLOAD_MAX_RENAMES):
        yield f"{stem}-{created_ms}-{n}{ext}"


class PhotoCatalogApp:
    def __init__(self,
                 db_path: Path,
                 storage_root: Path,
                 max_workers: int = config.SCAN_WORKERS,
                 timeout: float = config.RESOLVE_TIMEOUT_SECONDS,
                 id_generator=None,
                 tz: Optional[tzinfo] = None,
                 use_embedded_metadata: bool = False,
                 show_progress: bool = False):
        self.db_manager = DBManager(db_path)
        self.store = FileStore(storage_root)
        self.ids = id_generator or RandomIdGenerator()
        self.etags = ETagCache(self.store)
        preview_store = FileStore(Path(storage_root) / config.PREVIEW_DIR_NAME)
        self.previews = PreviewCache(preview_store)
        self.preview_etags = ETagCache(preview_store)
        self.metadata = EmbeddedMetadataReader()
        self._options = dict(max_workers=max_workers, timeout=timeout, tz=tz,
                             use_embedded_metadata=use_embedded_metadata,
                             show_progress=show_progress)
        self.catalog: Optional[CatalogOperations] = None

    # --- Lifecycle ---

    def open(self) -> "PhotoCatalogApp":
        conn = self.db_manager.connect()
        opts = self._options
        self.catalog = CatalogOperations(conn)
        self.owners = OwnerDirectory(conn)
        self.resolver = TimestampResolver(
            tz=opts["tz"],
            lookup=self.catalog.first_time_created_by_name,
            use_embedded_metadata=opts["use_embedded_metadata"],
        )
        self.scanner = DirectoryScanner(
            self.store, self.resolver,
            max_workers=opts["max_workers"],
            timeout=opts["timeout"],
            show_progress=opts["show_progress"],
        )
        self.reconciler = CatalogReconciler(self.catalog, self.owners, self.scanner, self.store, self.ids)
        return self

    def close(self):
        self.db_manager.close()
        self.catalog = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Owners ---

    def add_owner(self, login: str, display_name: str = "") -> Owner:
        owner = self.owners.add_owner(login, display_name)
        self.store.make_dirs(owner.login)
        return owner

    # --- Catalog Maintenance ---

    def startup_scan(self) -> List[ReconcileResult]:
        """Reconciles every owner's catalog with the storage folder."""
        results = self.reconciler.reconcile_all()
        for r in results:
            logging.info(f"{r.owner_login}: scanned={r.scanned} inserted={r.inserted} deleted={r.deleted}")
        return results

    def records(self, login: str) -> List[Record]:
        owner = self.owners.get_by_login(login)
        return self.catalog.records_for_owner(owner.id)

    def timestamp_report(self, login: str, output_csv: Path) -> int:
        owner = self.owners.get_by_login(login)
        return TimestampReport(self.catalog, self.scanner, self.resolver).generate(owner, output_csv)

    # --- Request Handling ---

    def upload(self,
               login: str,
               filename: str,
               data: Union[bytes, BinaryIO],
               created_ms: int,
               folder: Optional[str] = None) -> Record:
        """
        Stores an uploaded file and catalogs it with the client supplied
        creation time. A name already taken in the catalog or on disk gets
        the creation time (then a counter) appended to the stem; existing
        files are never overwritten.
        """
        if created_ms is None or created_ms <= 0:
            raise ValueError("Invalid photo creation timestamp")

        owner = self.owners.get_by_login(login)
        folder = _clean_folder(folder)

        for name in _upload_names(_clean_file_name(filename), created_ms):
            if self.catalog.full_name_exists(owner.id, folder, name):
                continue
            record = Record(id=self.ids.next_id(), owner_id=owner.id, name=name,
                            created_ms=created_ms, size_bytes=0, folder=folder)
            relative = record.store_path(owner)
            try:
                record.size_bytes = self.store.store(data, relative, overwrite=False)
            except FileExistsError:
                logging.debug(f"{relative} exists on disk, trying another name")
                continue
            break
        else:
            raise FileOperationError(f"No free name for {filename} in {owner.login}")

        logging.info(f"Uploaded file to {relative}")
        try:
            self.store.set_timestamps(relative, created_ms)
            self.catalog.insert_record(record)
        except (DatabaseError, FileOperationError):
            # The file was created by this upload, so it is safe to remove
            self.store.delete(relative)
            raise
        return record

    def download(self, login: str, record_id: int,
                 if_none_match: Optional[str] = None) -> DownloadResponse:
        owner, record = self._owned_record(login, record_id)
        relative = record.store_path(owner)
        if not self.store.exists(relative):
            raise RecordNotFoundError(f"There is no such file on disk for record {record_id}")
        return self.etags.respond(record, relative, if_none_match)

    def delete(self, login: str, record_id: int) -> bool:
        """
        Removes the file and then the record. Returns False if the file was
        already gone; a failed delete on disk leaves the record in place.
        """
        owner, record = self._owned_record(login, record_id)
        removed = self.store.delete(record.store_path(owner))
        if not removed:
            logging.warning(f"File for record {record_id} was already missing")
        self.catalog.delete_records([record.id])
        self.previews.discard(record)
        self.etags.forget(record.id)
        self.preview_etags.forget(record.id)
        return removed

    def relocate(self, login: str, record_id: int,
                 new_login: Optional[str] = None,
                 folder=KEEP_FOLDER) -> Record:
        """
        Moves a record to another owner and/or folder, file first. If the
        move fails nothing changes; if the catalog update fails the file is
        moved back.
        """
        owner, record = self._owned_record(login, record_id)
        target = self.owners.get_by_login(new_login) if new_login else owner
        new_folder = record.folder if folder is KEEP_FOLDER else _clean_folder(folder)

        if target.id == owner.id and new_folder == record.folder:
            return record
        if self.catalog.full_name_exists(target.id, new_folder, record.name):
            raise FileOperationError(
                f"{target.login} already has {join_full_name(new_folder, record.name)}")

        src = record.store_path(owner)
        dst = f"{target.login}/{join_full_name(new_folder, record.name)}"
        self.store.move(src, dst)
        try:
            updated = self.catalog.relocate_record(record.id, target.id, new_folder)
        except DatabaseError:
            logging.error(f"Catalog update failed, moving {dst} back to {src}")
            self.store.move(dst, src)
            raise
        logging.info(f"Moved record {record.id} from {src} to {dst}")
        return updated

    def preview(self, login: str, record_id: int,
                if_none_match: Optional[str] = None) -> DownloadResponse:
        """
        Serves a cached JPEG preview, rendering it on first request. Records
        that cannot be previewed are served in full.
        """
        owner, record = self._owned_record(login, record_id)
        relative = record.store_path(owner)
        if not self.store.exists(relative):
            raise RecordNotFoundError(f"There is no such file on disk for record {record_id}")

        preview = self.previews.ensure(record, self.store.resolve(relative))
        if preview is None:
            return self.etags.respond(record, relative, if_none_match)
        stem = os.path.splitext(record.name)[0]
        return self.preview_etags.respond(record, preview, if_none_match, filename=f"{stem}.jpg")

    def exif(self, login: str, record_id: int) -> Dict[str, str]:
        """EXIF tags of a record's file; empty when it carries none."""
        owner, record = self._owned_record(login, record_id)
        relative = record.store_path(owner)
        if not self.store.exists(relative):
            raise RecordNotFoundError(f"There is no such file on disk for record {record_id}")
        return self.metadata.exif_fields(self.store.resolve(relative))

    def _owned_record(self, login: str, record_id: int):
        owner = self.owners.get_by_login(login)
        record = self.catalog.get_record(record_id)
        if record is None or record.owner_id != owner.id:
            raise RecordNotFoundError(f"There is no record with id {record_id}")
        return owner, record
