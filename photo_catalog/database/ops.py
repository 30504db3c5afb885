import re
import sqlite3
import logging
from typing import Iterable, List, Optional

from ..exceptions import DatabaseError, OwnerNotFoundError
from ..models import Owner, Record

_RECORD_COLUMNS = "id, owner_id, name, folder, created_ms, size_bytes"

# A login is also a folder name: one path segment, no traversal, no separators
_LOGIN_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


def _row_to_record(row) -> Record:
    rid, owner_id, name, folder, created_ms, size_bytes = row
    return Record(
        id=rid,
        owner_id=owner_id,
        name=name,
        created_ms=created_ms,
        size_bytes=size_bytes,
        folder=folder or None,
    )


def _record_params(rec: Record):
    return (rec.id, rec.owner_id, rec.name, rec.folder or '', rec.created_ms, rec.size_bytes)


class CatalogOperations:
    """
    Record store for catalog entries.
    Every write runs in its own transaction so a failed batch leaves nothing behind.
    """
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def records_for_owner(self, owner_id: int) -> List[Record]:
        """All records of one owner, newest first."""
        cur = self.conn.cursor()
        cur.execute(
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE owner_id = ? ORDER BY created_ms DESC",
            (owner_id,),
        )
        return [_row_to_record(r) for r in cur.fetchall()]

    def get_record(self, record_id: int) -> Optional[Record]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,))
        row = cur.fetchone()
        return _row_to_record(row) if row else None

    def find_by_name(self, name: str) -> List[Record]:
        """Name-only lookup across every owner and folder."""
        cur = self.conn.cursor()
        cur.execute(f"SELECT {_RECORD_COLUMNS} FROM records WHERE name = ? ORDER BY id", (name,))
        return [_row_to_record(r) for r in cur.fetchall()]

    def first_time_created_by_name(self, name: str) -> Optional[int]:
        """Creation time of the first record sharing this file name, if any."""
        matches = self.find_by_name(name)
        return matches[0].created_ms if matches else None

    def full_name_exists(self, owner_id: int, folder: Optional[str], name: str) -> bool:
        cur = self.conn.cursor()
        cur.execute(
            "SELECT 1 FROM records WHERE owner_id = ? AND folder = ? AND name = ?",
            (owner_id, folder or '', name),
        )
        return cur.fetchone() is not None

    def insert_record(self, rec: Record) -> Record:
        self.insert_records([rec])
        return rec

    def insert_records(self, records: Iterable[Record]) -> int:
        """Bulk insert. All-or-nothing for the given batch."""
        params = [_record_params(r) for r in records]
        if not params:
            return 0
        try:
            with self.conn:
                self.conn.executemany(
                    f"INSERT INTO records ({_RECORD_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                    params,
                )
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to insert {len(params)} records: {e}") from e
        return len(params)

    def delete_records(self, record_ids: Iterable[int]) -> int:
        """Bulk delete by id. All-or-nothing for the given batch."""
        ids = [(rid,) for rid in record_ids]
        if not ids:
            return 0
        try:
            with self.conn:
                cur = self.conn.executemany("DELETE FROM records WHERE id = ?", ids)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete {len(ids)} records: {e}") from e
        return cur.rowcount

    def relocate_record(self, record_id: int, owner_id: int, folder: Optional[str]) -> Record:
        """
        Changes owner and/or folder of a record. The only sanctioned metadata
        mutation; callers must move the backing file alongside it.
        """
        try:
            with self.conn:
                cur = self.conn.execute(
                    "UPDATE records SET owner_id = ?, folder = ? WHERE id = ?",
                    (owner_id, folder or '', record_id),
                )
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to relocate record {record_id}: {e}") from e
        if cur.rowcount == 0:
            raise DatabaseError(f"Record {record_id} vanished during relocation")
        rec = self.get_record(record_id)
        if rec is None:
            raise DatabaseError(f"Record {record_id} vanished after relocation")
        return rec

    def count_records(self, owner_id: Optional[int] = None) -> int:
        cur = self.conn.cursor()
        if owner_id is None:
            cur.execute("SELECT COUNT(*) FROM records")
        else:
            cur.execute("SELECT COUNT(*) FROM records WHERE owner_id = ?", (owner_id,))
        return cur.fetchone()[0]


class OwnerDirectory:
    """Maps login names to owner ids and back."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    @staticmethod
    def validate_login(login: str) -> str:
        if not login or login in ('.', '..') or not _LOGIN_PATTERN.match(login):
            raise ValueError(f"Invalid login name: {login!r}")
        return login

    def add_owner(self, login: str, display_name: str = "") -> Owner:
        self.validate_login(login)
        try:
            with self.conn:
                cur = self.conn.execute(
                    "INSERT INTO owners (login, display_name) VALUES (?, ?)",
                    (login, display_name or login),
                )
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Owner {login} already exists") from e
        logging.info(f"Added owner {login}")
        return Owner(id=cur.lastrowid, login=login, display_name=display_name or login)

    def get_by_login(self, login: str) -> Owner:
        cur = self.conn.cursor()
        cur.execute("SELECT id, login, display_name FROM owners WHERE login = ?", (login,))
        row = cur.fetchone()
        if row is None:
            raise OwnerNotFoundError(f"No owner with login {login}")
        return Owner(*row)

    def get_by_id(self, owner_id: int) -> Owner:
        cur = self.conn.cursor()
        cur.execute("SELECT id, login, display_name FROM owners WHERE id = ?", (owner_id,))
        row = cur.fetchone()
        if row is None:
            raise OwnerNotFoundError(f"No owner with id {owner_id}")
        return Owner(*row)

    def all_owners(self) -> List[Owner]:
        cur = self.conn.cursor()
        cur.execute("SELECT id, login, display_name FROM owners ORDER BY id")
        return [Owner(*row) for row in cur.fetchall()]
