from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


def join_full_name(folder: Optional[str], name: str) -> str:
    return f"{folder}/{name}" if folder else name


@dataclass(frozen=True)
class Owner:
    """
    A principal whose media lives under <storage root>/<login>.
    """
    id: int
    login: str
    display_name: str = ""


@dataclass
class Record:
    """
    One persisted catalog entry.
    Identity within an owner's catalog is the full name (folder + name).
    """
    id: int
    owner_id: int
    name: str
    created_ms: int         # millis since epoch, always > 0
    size_bytes: int
    folder: Optional[str] = None

    @property
    def full_name(self) -> str:
        return join_full_name(self.folder, self.name)

    def store_path(self, owner: Owner) -> str:
        """Path of the backing file relative to the storage root."""
        if owner.id != self.owner_id:
            raise ValueError(f"Owner {owner.login} does not own record {self.id}")
        return f"{owner.login}/{self.full_name}"


@dataclass
class ScanCandidate:
    """
    A file found during a scan pass. Never persisted as-is.
    """
    owner_id: int
    name: str
    created_ms: int
    size_bytes: int
    folder: Optional[str] = None

    @property
    def full_name(self) -> str:
        return join_full_name(self.folder, self.name)

    def to_record(self, record_id: int) -> Record:
        return Record(
            id=record_id,
            owner_id=self.owner_id,
            name=self.name,
            created_ms=self.created_ms,
            size_bytes=self.size_bytes,
            folder=self.folder,
        )


class Resolution(Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    TIMED_OUT = "timed_out"


@dataclass
class ResolutionOutcome:
    """Tagged result of one file's timestamp inference task."""
    path: Path
    status: Resolution
    value: Optional[int] = None


@dataclass
class ReconcileResult:
    owner_login: str
    scanned: int = 0
    inserted: int = 0
    deleted: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
