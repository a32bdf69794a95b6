#!/usr/bin/env python3
"""
PAK - Quake .pak archives, or a directory tree treated as one

A path ending in ".pak" is read as a packed container:
    header   char id[4] = "PACK", int32 dirofs, int32 dirlen
    entry    char name[56], int32 filepos, int32 filelen   (dirlen / 64 entries)
Any other path must be a directory; its files become the entries.

Entry paths always use '/' separators, relative to the archive root.

Reference:
    https://quakewiki.org/wiki/.pak
"""

import io
import os
import posixpath
import struct
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Optional

from md2_errors import PakError


@dataclass(frozen=True)
class PakEntry:
    name: str
    path: str
    filepos: int
    filelen: int


def _normalize(path: str) -> str:
    path = path.replace("\\", "/").strip("/")
    return posixpath.normpath(path) if path else ""


def _escapes_root(path: str) -> bool:
    return path == ".." or path.startswith("../")


class PAK:
    """Archive collaborator: opens model/skin streams and answers file queries."""

    PAK_MAGIC = b"PACK"
    HEADER_FMT = "<4sii"
    HEADER_SIZE = struct.calcsize(HEADER_FMT)
    ENTRY_FMT = "<56sii"
    ENTRY_SIZE = struct.calcsize(ENTRY_FMT)

    def __init__(self, fpath: str, verbose: bool = False):
        self.fpath = os.fspath(fpath)
        self.verbose = verbose
        self.entries: Dict[str, PakEntry] = {}

        if self.is_directory():
            self._init_from_directory()
        else:
            self._init_from_file()

    def is_directory(self) -> bool:
        return os.path.splitext(self.fpath)[1].lower() != ".pak"

    # =========================================================================
    # INDEXING
    # =========================================================================

    def _init_from_directory(self):
        if not os.path.isdir(self.fpath):
            raise PakError(f"not a directory: {self.fpath}")

        for dirpath, _dirnames, filenames in os.walk(self.fpath):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                path = _normalize(os.path.relpath(full, self.fpath))
                self.entries[path] = PakEntry(filename, path, 0, os.path.getsize(full))

        if self.verbose:
            print(f"✅ Directory archive: {self.fpath} ({len(self.entries)} files)")

    def _init_from_file(self):
        if not os.path.isfile(self.fpath):
            raise PakError(f"pak file not found: {self.fpath}")

        with open(self.fpath, "rb") as f:
            data = f.read(self.HEADER_SIZE)
            if len(data) != self.HEADER_SIZE:
                raise PakError(f"truncated pak header: {self.fpath}")
            magic, dirofs, dirlen = struct.unpack(self.HEADER_FMT, data)
            if magic != self.PAK_MAGIC:
                raise PakError(f"not a valid pak file: {self.fpath}")
            if dirofs < 0 or dirlen < 0:
                raise PakError(f"bad pak directory {dirofs}/{dirlen}: {self.fpath}")

            f.seek(dirofs)
            directory = f.read(dirlen)
            if len(directory) != dirlen:
                raise PakError(f"truncated pak directory: {self.fpath}")

        num_entries = dirlen // self.ENTRY_SIZE
        for raw_name, filepos, filelen in struct.iter_unpack(self.ENTRY_FMT, directory[:num_entries * self.ENTRY_SIZE]):
            end = raw_name.find(b"\x00")
            path = _normalize(raw_name[:end if end != -1 else None].decode("ascii", errors="ignore"))
            if not path:
                continue
            self.entries[path] = PakEntry(posixpath.basename(path), path, filepos, filelen)

        if self.verbose:
            print(f"✅ Pak file: {self.fpath} ({len(self.entries)} entries)")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def _full_path(self, path: str) -> Optional[str]:
        """Filesystem path for `path`, or None if it leaves the archive root."""
        rel = _normalize(path)
        if _escapes_root(rel):
            return None
        return os.path.join(self.fpath, *rel.split("/"))

    def exists(self, path: str) -> bool:
        if self.is_directory():
            full = self._full_path(path)
            return full is not None and os.path.isfile(full)
        return _normalize(path) in self.entries

    def list_dir(self, path: str) -> List[str]:
        """Archive paths of the files directly inside `path`, sorted."""
        root = _normalize(path)
        if root == ".":
            root = ""
        if self.is_directory():
            full = self._full_path(root) if root else self.fpath
            if full is None or not os.path.isdir(full):
                return []
            return sorted(
                posixpath.join(root, name) if root else name
                for name in os.listdir(full)
                if os.path.isfile(os.path.join(full, name))
            )
        return sorted(p for p in self.entries if posixpath.dirname(p) == root)

    def open(self, path: str) -> BinaryIO:
        """Binary stream over one file. Raises FileNotFoundError if absent."""
        if self.is_directory():
            full = self._full_path(path)
            if full is None or not os.path.isfile(full):
                raise FileNotFoundError(f"{path} not found in {self.fpath}")
            return open(full, "rb")

        entry = self.entries.get(_normalize(path))
        if entry is None:
            raise FileNotFoundError(f"{path} not found in {self.fpath}")
        with open(self.fpath, "rb") as f:
            f.seek(entry.filepos)
            data = f.read(entry.filelen)
        if len(data) != entry.filelen:
            raise PakError(f"{path}: expected {entry.filelen} bytes, got {len(data)}")
        return io.BytesIO(data)

    def models(self) -> List[str]:
        return sorted(p for p in self.entries if p.lower().endswith(".md2"))

    def has_models(self) -> bool:
        return bool(self.models())
