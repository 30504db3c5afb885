"""
Path-safe filesystem primitives.

Every path handed to FileStore is relative to a single storage root. Paths
with parent-traversal segments (or absolute paths) are rejected before any
filesystem call is made.
"""
import os
import re
import shutil
import logging
from pathlib import Path, PurePath
from typing import BinaryIO, Iterator, Tuple, Union

from .exceptions import FileOperationError, PathTraversalError

RelPath = Union[str, PurePath]

_SEPARATORS = re.compile(r'[\\/]')


class FileStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        if self.root.exists() and not self.root.is_dir():
            raise FileOperationError(f"Storage root {self.root} is not a directory")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError(f"Could not create storage root {self.root}: {e}") from e

    # --- Path Handling ---

    def resolve(self, relative: RelPath) -> Path:
        """Maps a relative path onto the root. Pure: touches nothing on disk."""
        text = str(relative)
        if not text:
            raise PathTraversalError("Empty path")
        if PurePath(text).is_absolute() or text.startswith(('/', '\\')):
            raise PathTraversalError(f"Absolute path not allowed: {text}")
        # Check both separator styles so "..\\x" is caught on POSIX too
        if any(part == '..' for part in _SEPARATORS.split(text)):
            raise PathTraversalError(f"Path contains invalid path sequence: {text}")
        return self.root / text

    # --- Queries ---

    def exists(self, relative: RelPath) -> bool:
        return self.resolve(relative).exists()

    def size(self, relative: RelPath) -> int:
        return self.resolve(relative).stat().st_size

    def open(self, relative: RelPath) -> BinaryIO:
        return self.resolve(relative).open('rb')

    # --- Mutations ---

    def make_dirs(self, relative: RelPath) -> Path:
        path = self.resolve(relative)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def store(self, data: Union[bytes, BinaryIO], relative: RelPath, overwrite: bool = True) -> int:
        """
        Writes data to relative, creating parent folders. Returns the number
        of bytes written. With overwrite=False an existing file is left
        untouched and FileExistsError is raised.
        """
        target = self.resolve(relative)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            f = target.open('wb' if overwrite else 'xb')
        except FileExistsError:
            raise
        except OSError as e:
            raise FileOperationError(f"Could not store file {relative}: {e}") from e

        try:
            with f:
                if isinstance(data, (bytes, bytearray, memoryview)):
                    f.write(data)
                else:
                    shutil.copyfileobj(data, f)
        except OSError as e:
            # Only reached once the file is ours, so a partial write is removed
            if not overwrite:
                target.unlink(missing_ok=True)
            raise FileOperationError(f"Could not store file {relative}: {e}") from e
        return target.stat().st_size

    def move(self, src: RelPath, dst: RelPath):
        """
        Renames src to dst. Never overwrites and never copies: either the
        file is at dst afterwards or an exception is raised and it stays at src.
        """
        source = self.resolve(src)
        target = self.resolve(dst)
        if not source.is_file():
            raise FileOperationError(f"Move failed, no such file: {src}")
        if target.exists():
            raise FileOperationError(f"Move failed, destination already exists: {dst}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.rename(source, target)
        except OSError as e:
            raise FileOperationError(f"Failed to move {src} -> {dst}: {e}") from e
        logging.debug(f"Moved {src} -> {dst}")

    def delete(self, relative: RelPath) -> bool:
        """
        Returns False when there was nothing to delete, True when the file
        was removed. Any other failure raises.
        """
        target = self.resolve(relative)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FileOperationError(f"Failed to delete {relative}: {e}") from e
        return True

    def set_timestamps(self, relative: RelPath, millis: int):
        """
        Stamps access and modified times with a logical creation time.

        Birth time cannot be set through os.utime. macOS pulls it back to
        the new mtime when that is earlier; Linux and Windows keep the write
        time. Timestamp inference takes the earlier of birth time and mtime,
        so a stamped file reads back as millis either way.
        """
        target = self.resolve(relative)
        ns = int(millis) * 1_000_000
        try:
            os.utime(target, ns=(ns, ns))
        except OSError as e:
            raise FileOperationError(f"Failed to set timestamps on {relative}: {e}") from e

    # --- Walking ---

    def enumerate(self, folder: RelPath, max_depth: int) -> Iterator[Tuple[Path, int]]:
        """
        Depth-bounded walker using os.scandir for speed.
        Yields (path, depth) for regular files; depth 1 = directly inside folder.
        """
        start = self.resolve(folder)
        stack = [(start, 1)]
        while stack:
            current, depth = stack.pop()
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError:
                logging.warning(f"Cannot read directory: {current}")
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                if e.is_dir(follow_symlinks=False):
                    if depth < max_depth:
                        dirs.append(Path(e.path))
                elif e.is_file(follow_symlinks=False):
                    yield Path(e.path), depth

            # Push dirs reversed so we process A before Z
            for d in reversed(dirs):
                stack.append((d, depth + 1))
