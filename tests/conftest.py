import os
import pytest
import sqlite3
from photo_catalog.database.schema import init_schema
from photo_catalog.database.ops import CatalogOperations, OwnerDirectory
from photo_catalog.ids import SequentialIdGenerator
from photo_catalog.metadata.timestamps import TimestampResolver
from photo_catalog.scanning.scanner import DirectoryScanner
from photo_catalog.storage import FileStore

# 2021-06-15 14:30:00 UTC
FIXED_MS = 1623767400000


@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    c.execute("PRAGMA foreign_keys=ON;")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def catalog(conn):
    """Returns a CatalogOperations instance attached to the in-memory DB."""
    return CatalogOperations(conn)

@pytest.fixture
def owners(conn):
    return OwnerDirectory(conn)

@pytest.fixture
def store(tmp_path):
    return FileStore(tmp_path / "storage")

@pytest.fixture
def resolver():
    return TimestampResolver(clock=lambda: 1700000000.0)

@pytest.fixture
def scanner(store, resolver):
    return DirectoryScanner(store, resolver, max_workers=2, timeout=5.0, poll_interval=0.05)

@pytest.fixture
def ids():
    return SequentialIdGenerator()

@pytest.fixture
def make_file(store):
    """Writes a file under the storage root and pins its mtime to FIXED_MS."""
    def _make(relative, data=b"data", mtime_ms=FIXED_MS):
        path = store.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        ns = mtime_ms * 1_000_000
        os.utime(path, ns=(ns, ns))
        return path
    return _make
