"""Filesystem operations behind the dispatcher.

Paths handed to FileOperations are already canonical and allow-listed; this
module never validates. Blocking calls run in a worker thread so a slow disk
only suspends the one request that is waiting on it.
"""

import asyncio
import base64
import binascii
import os
import re
import shutil
import stat
from datetime import datetime, timezone

from xfiles.protocol.entries import DirectoryEntry
from xfiles.protocol.requests import DEFAULT_ENCODING, DEFAULT_MAX_RESULTS
from xfiles.protocol.results import (
    CopyResult,
    CreateDirectoryResult,
    DeleteResult,
    ExistsResult,
    ReadFileResult,
    RenameResult,
    WriteFileResult,
)
from xfiles.shared.exceptions import FileSystemError, TooLargeError
from xfiles.shared.paths import is_within

BINARY_ENCODINGS = frozenset({"base64", "hex"})

# Node-style encoding names that Python spells differently.
ENCODING_ALIASES = {
    "utf16le": "utf-16-le",
    "utf-16le": "utf-16-le",
    "ucs2": "utf-16-le",
    "ucs-2": "utf-16-le",
    "binary": "latin-1",
}


def normalize_encoding(encoding: str | None) -> str:
    name = (encoding or DEFAULT_ENCODING).strip().lower()
    return ENCODING_ALIASES.get(name, name)


def decode_content(raw: bytes, encoding: str | None) -> str:
    """Render file bytes as the text sent over the wire.

    Raises:
        LookupError: For unknown encodings.
        UnicodeDecodeError: If the bytes aren't valid in ``encoding``.
    """
    name = normalize_encoding(encoding)
    if name == "base64":
        return base64.b64encode(raw).decode("ascii")
    if name == "hex":
        return raw.hex()
    return raw.decode(name)


def encode_content(content: str, encoding: str | None) -> bytes:
    """Turn wire text back into the bytes that land on disk.

    Raises:
        LookupError: For unknown encodings.
        ValueError: If base64/hex content is malformed.
    """
    name = normalize_encoding(encoding)
    if name == "base64":
        try:
            return base64.b64decode(content, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 content: {e}") from e
    if name == "hex":
        return bytes.fromhex(content)
    return content.encode(name)


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def build_entry(name: str, path: str, st: os.stat_result) -> DirectoryEntry:
    created = getattr(st, "st_birthtime", st.st_ctime)
    return DirectoryEntry(
        name=name,
        path=path,
        is_directory=stat.S_ISDIR(st.st_mode),
        is_file=stat.S_ISREG(st.st_mode),
        size=st.st_size,
        modified_at=_timestamp(st.st_mtime),
        created_at=_timestamp(created),
        permissions=format(stat.S_IMODE(st.st_mode) & 0o777, "o"),
    )


class FileOperations:
    """Executes the nine file operations on canonical paths."""

    def __init__(self, max_file_size: int):
        self.max_file_size = max_file_size

    # ================================
    # Read-only operations
    # ================================

    async def list_directory(self, path: str) -> list[DirectoryEntry]:
        """Immediate children, directories first then by name.

        Children that can't be stat'ed are left out.
        """
        return await asyncio.to_thread(self._list_directory, path)

    def _list_directory(self, path: str) -> list[DirectoryEntry]:
        entries: list[DirectoryEntry] = []
        with os.scandir(path) as iterator:
            children = list(iterator)

        for child in children:
            try:
                st = os.stat(child.path)
            except OSError:
                continue
            entries.append(build_entry(child.name, child.path, st))

        entries.sort(key=lambda entry: (not entry.is_directory, entry.name))
        return entries

    async def get_stats(self, path: str) -> DirectoryEntry:
        st = await asyncio.to_thread(os.stat, path)
        return build_entry(os.path.basename(path), path, st)

    async def read_file(
        self, path: str, encoding: str = DEFAULT_ENCODING
    ) -> ReadFileResult:
        return await asyncio.to_thread(self._read_file, path, encoding)

    def _read_file(self, path: str, encoding: str) -> ReadFileResult:
        size = os.stat(path).st_size
        if size > self.max_file_size:
            raise TooLargeError(
                f"File too large: {size} bytes (max: {self.max_file_size})"
            )

        with open(path, "rb") as f:
            raw = f.read()
        return ReadFileResult(content=decode_content(raw, encoding), size=size)

    async def exists(self, path: str) -> ExistsResult:
        """Report presence without failing on a missing path.

        Errors other than "not found" still propagate.
        """
        try:
            st = await asyncio.to_thread(os.stat, path)
        except FileNotFoundError:
            return ExistsResult(exists=False)
        return ExistsResult(
            exists=True,
            is_directory=stat.S_ISDIR(st.st_mode),
            is_file=stat.S_ISREG(st.st_mode),
        )

    async def search_files(
        self,
        path: str,
        pattern: str,
        recursive: bool = True,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[DirectoryEntry]:
        """Entries whose name matches ``pattern``, case-insensitively.

        Stops as soon as ``max_results`` entries were found. Directories that
        can't be read are skipped rather than failing the whole search.

        Raises:
            re.error: If ``pattern`` isn't a valid regular expression.
        """
        regex = re.compile(pattern, re.IGNORECASE)
        results: list[DirectoryEntry] = []
        await asyncio.to_thread(
            self._search_directory, path, regex, results, recursive, max_results
        )
        return results

    def _search_directory(
        self,
        path: str,
        regex: re.Pattern[str],
        results: list[DirectoryEntry],
        recursive: bool,
        max_results: int,
    ) -> None:
        if len(results) >= max_results:
            return

        try:
            with os.scandir(path) as iterator:
                children = sorted(iterator, key=lambda child: child.name)
        except OSError:
            return

        for child in children:
            if len(results) >= max_results:
                return

            if regex.search(child.name):
                try:
                    results.append(
                        build_entry(child.name, child.path, os.stat(child.path))
                    )
                except OSError:
                    pass

            if recursive and _is_real_directory(child):
                self._search_directory(
                    child.path, regex, results, recursive, max_results
                )

    # ================================
    # Mutating operations
    # ================================

    async def write_file(
        self, path: str, content: str, encoding: str = DEFAULT_ENCODING
    ) -> WriteFileResult:
        """Create or overwrite a file.

        The size check happens on the encoded bytes, before anything is
        written.
        """
        raw = encode_content(content, encoding)
        if len(raw) > self.max_file_size:
            raise TooLargeError(
                f"Content too large: {len(raw)} bytes (max: {self.max_file_size})"
            )
        size = await asyncio.to_thread(self._write_file, path, raw)
        return WriteFileResult(path=path, size=size)

    def _write_file(self, path: str, raw: bytes) -> int:
        with open(path, "wb") as f:
            f.write(raw)
        return os.stat(path).st_size

    async def create_directory(self, path: str) -> CreateDirectoryResult:
        """Create ``path`` and any missing ancestors. Idempotent."""
        await asyncio.to_thread(os.makedirs, path, exist_ok=True)
        return CreateDirectoryResult(path=path)

    async def delete_item(self, path: str) -> DeleteResult:
        """Remove a file, or a directory with everything below it.

        Symlinks are unlinked, never followed.
        """
        await asyncio.to_thread(self._delete_item, path)
        return DeleteResult(deleted=path)

    def _delete_item(self, path: str) -> None:
        st = os.lstat(path)
        if stat.S_ISDIR(st.st_mode):
            shutil.rmtree(path)
        else:
            os.unlink(path)

    async def rename_item(self, old_path: str, new_path: str) -> RenameResult:
        await asyncio.to_thread(os.rename, old_path, new_path)
        return RenameResult(old_path=old_path, new_path=new_path)

    async def copy_item(self, source: str, destination: str) -> CopyResult:
        """Copy one file, or a whole directory tree into ``destination``."""
        await asyncio.to_thread(self._copy_item, source, destination)
        return CopyResult(source=source, destination=destination)

    def _copy_item(self, source: str, destination: str) -> None:
        st = os.stat(source)
        if not stat.S_ISDIR(st.st_mode):
            shutil.copyfile(source, destination)
            return

        if is_within(destination, source):
            raise FileSystemError(
                f"Cannot copy a directory into itself: {source} -> {destination}"
            )
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)


def _is_real_directory(entry: os.DirEntry[str]) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False
