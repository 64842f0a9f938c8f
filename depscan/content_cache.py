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
"""File content cache mapping on-disk paths to object store references.

Entries are keyed by real path, so symlink aliases of one file share a single
cached reference, and validated against the file's modification time and size
before reuse.
"""

import os
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from depscan.constants import FileAccessError
from depscan.object_store import ContentRef, ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentMetadata:
    """Metadata for cache validation.

    Attributes:
        mtime_ns: Modification time of the file when it was stored
        size: Size of the file in bytes when it was stored
    """

    mtime_ns: int
    size: int


@dataclass(frozen=True)
class CachedContent:
    """Container for a cached content reference with its metadata."""

    metadata: ContentMetadata
    ref: ContentRef


def is_content_valid(metadata: ContentMetadata, stat_result: os.stat_result) -> bool:
    """Check if a cached entry still describes the file on disk.

    Args:
        metadata: Metadata recorded when the content was stored
        stat_result: Current stat of the file

    Returns:
        True if modification time and size are unchanged
    """
    if stat_result.st_mtime_ns != metadata.mtime_ns:
        logger.debug("Content cache invalid: mtime changed")
        return False
    if stat_result.st_size != metadata.size:
        logger.debug("Content cache invalid: size changed")
        return False
    return True


class FileContentCache:
    """Thread-safe path -> ContentRef cache backed by an object store.

    Args:
        store: Object store that receives file contents
    """

    def __init__(self, store: ObjectStore):
        self.store = store
        self._entries: Dict[str, CachedContent] = {}
        self._lock = threading.Lock()

    def content_ref_for(self, path: str) -> ContentRef:
        """Return the content reference for a file, storing it if needed.

        Args:
            path: Absolute or cwd-relative file path (symlinks are resolved)

        Returns:
            Reference of the file's bytes in the object store

        Raises:
            FileAccessError: If the file cannot be read
        """
        real_path = os.path.realpath(path)
        try:
            stat_result = os.stat(real_path)
        except OSError as e:
            raise FileAccessError(f"Cannot stat '{path}': {e.strerror}", path) from e

        with self._lock:
            cached = self._entries.get(real_path)
        if cached is not None and is_content_valid(cached.metadata, stat_result):
            return cached.ref

        try:
            with open(real_path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise FileAccessError(f"Cannot read '{path}': {e.strerror}", path) from e

        ref = self.store.store(data)
        metadata = ContentMetadata(mtime_ns=stat_result.st_mtime_ns, size=len(data))
        with self._lock:
            self._entries[real_path] = CachedContent(metadata=metadata, ref=ref)
        logger.debug("Cached content of %s as %s", real_path, ref)
        return ref

    def lookup_cached(self, path: str) -> Optional[ContentRef]:
        """Return the cached reference for a path without reading or storing the file."""
        with self._lock:
            cached = self._entries.get(os.path.realpath(path))
        return cached.ref if cached is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
