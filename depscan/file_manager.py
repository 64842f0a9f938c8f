#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# ****************************************************************************************************************************************************
# * BSD 3-Clause License
# *
# * Copyright (c) 2025, Mana Battery
# * All rights reserved.
# *
# * Redistribution and use in source and binary forms, with or without modification, are permitted provided that the following conditions are met:
# *
# * 1. Redistributions of source code must retain the above copyright notice, this list of conditions and the following disclaimer.
# * 2. Redistributions in binary form must reproduce the above copyright notice, this list of conditions and the following disclaimer in the
# *    documentation and/or other materials provided with the distribution.
# * 3. Neither the name of the copyright holder nor the names of its contributors may be used to endorse or promote products derived from this
# *    software without specific prior written permission.
# *
# * THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO,
# * THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR
# * CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
# * PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF
# * LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE,
# * EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
# ****************************************************************************************************************************************************
"""Front-end view of files: cached lookups, buffers and source file identities."""

import stat
import logging
import itertools
from dataclasses import dataclass
from typing import Dict, Optional

from depscan.constants import FileAccessError
from depscan.include_tree import HeaderCharacteristic
from depscan.object_store import ContentRef
from depscan.tracking_fs import TrackingFileSystem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """A file found on disk.

    Attributes:
        name: Path as it was looked up (may be relative to the working directory)
        real_path: Fully resolved path with symlinks removed
        size: Size in bytes at lookup time
    """

    name: str
    real_path: str
    size: int

    @property
    def uid(self) -> str:
        """Stable identity shared by every alias of the same file."""
        return self.real_path


@dataclass(frozen=True)
class SourceFile:
    """One entry of the preprocessor into a file or an in-memory buffer.

    Each time a file is entered it gets a new file_id, so two inclusions of
    the same header are distinct SourceFiles sharing one FileEntry.

    Attributes:
        file_id: Unique id of this entry within a preprocessing run
        name: File or buffer name
        characteristic: How the file was found during header search
        entry: On-disk file, or None for in-memory buffers
        buffer: Content of an in-memory buffer
        dir_index: Index of the search directory the file was found in
    """

    file_id: int
    name: str
    characteristic: HeaderCharacteristic
    entry: Optional[FileEntry] = None
    buffer: Optional[bytes] = None
    dir_index: Optional[int] = None

    @property
    def is_buffer(self) -> bool:
        return self.entry is None


class FileManager:
    """Looks up files through a tracking filesystem and caches the results.

    Args:
        fs: Filesystem used for every stat and read
    """

    def __init__(self, fs: TrackingFileSystem):
        self.fs = fs
        self._entries: Dict[str, Optional[FileEntry]] = {}
        self._file_ids = itertools.count(1)

    def make_absolute_path(self, path: str) -> str:
        """Return the absolute form of a path with '.' and '..' removed."""
        return self.fs.make_absolute(path)

    def get_file(self, path: str) -> Optional[FileEntry]:
        """Return the entry of a regular file, or None when there is none."""
        if path in self._entries:
            return self._entries[path]
        result = self.fs.status(path)
        entry = None
        if result is not None and stat.S_ISREG(result.st_mode):
            entry = FileEntry(name=path, real_path=self.fs.real_path(path), size=result.st_size)
        self._entries[path] = entry
        return entry

    def get_directory(self, path: str) -> bool:
        return self.fs.is_dir(path)

    def get_buffer(self, entry: FileEntry) -> bytes:
        """Return a file's content.

        Raises:
            FileAccessError: If the file cannot be read
        """
        return self.fs.read_bytes(entry.name)

    def get_object_ref_for_file_content(self, path: str) -> ContentRef:
        """Return the object store reference of a file's content.

        Raises:
            FileAccessError: If the file cannot be read
        """
        return self.fs.content_ref_for(path)

    def new_file_id(self) -> int:
        return next(self._file_ids)

    def require_file(self, path: str) -> FileEntry:
        """Like get_file(), but raise when the file does not exist.

        Raises:
            FileAccessError: If the path is not an existing regular file
        """
        entry = self.get_file(path)
        if entry is None:
            raise FileAccessError(f"No such file: '{path}'", path)
        return entry
