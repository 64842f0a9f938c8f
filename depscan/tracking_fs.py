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
"""Filesystem view that records which paths a scan touched.

A scan calls track_new_accesses() before preprocessing and
create_tree_from_new_accesses() afterwards to get a content-addressed snapshot
of exactly the files and directories it used (including directories that were
only probed during header search, and the working directory itself).

Tracking state is thread-local, so one TrackingFileSystem can serve several
concurrent scans running on different threads.
"""

import os
import stat
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Union

from depscan.constants import FileAccessError
from depscan.content_cache import FileContentCache
from depscan.object_store import ContentRef, decode_object, encode_canonical, ObjectStore

logger = logging.getLogger(__name__)

TREE_KIND = "tree"

RemapPathFn = Callable[[str], str]


@dataclass
class _TrackingState:
    tracking: bool = False
    accesses: Set[str] = field(default_factory=set)
    cwd: Optional[str] = None


class TrackingFileSystem:
    """Read-only filesystem wrapper with per-thread access tracking.

    Args:
        content_cache: Shared content cache; file reads go through it so each
                       file is hashed into the object store at most once
    """

    def __init__(self, content_cache: FileContentCache):
        self.content_cache = content_cache
        self.store: ObjectStore = content_cache.store
        self._local = threading.local()

    def _state(self) -> _TrackingState:
        state = getattr(self._local, "state", None)
        if state is None:
            state = _TrackingState()
            self._local.state = state
        return state

    def track_new_accesses(self) -> None:
        """Start a fresh access log for the calling thread."""
        state = self._state()
        state.tracking = True
        state.accesses = set()

    def set_current_working_directory(self, path: str) -> None:
        """Set the directory relative paths are resolved against (and record it)."""
        state = self._state()
        state.cwd = os.path.normpath(os.path.abspath(path))
        self._record(state.cwd)

    def get_current_working_directory(self) -> str:
        cwd = self._state().cwd
        return cwd if cwd is not None else os.getcwd()

    def make_absolute(self, path: str) -> str:
        """Return an absolute path with '.' and '..' components removed."""
        if not os.path.isabs(path):
            path = os.path.join(self.get_current_working_directory(), path)
        return os.path.normpath(path)

    def _record(self, abs_path: str) -> None:
        state = self._state()
        if state.tracking:
            state.accesses.add(abs_path)

    def status(self, path: str) -> Optional[os.stat_result]:
        """Return stat() of a path, or None if it does not exist.

        Only existing paths are recorded; failed header-search probes leave no
        trace in the access log.
        """
        abs_path = self.make_absolute(path)
        try:
            result = os.stat(abs_path)
        except OSError:
            return None
        self._record(abs_path)
        return result

    def is_file(self, path: str) -> bool:
        result = self.status(path)
        return result is not None and stat.S_ISREG(result.st_mode)

    def is_dir(self, path: str) -> bool:
        result = self.status(path)
        return result is not None and stat.S_ISDIR(result.st_mode)

    def real_path(self, path: str) -> str:
        return os.path.realpath(self.make_absolute(path))

    def content_ref_for(self, path: str) -> ContentRef:
        """Return the object store reference of a file's content.

        Raises:
            FileAccessError: If the file cannot be read
        """
        abs_path = self.make_absolute(path)
        ref = self.content_cache.content_ref_for(abs_path)
        self._record(abs_path)
        return ref

    def read_bytes(self, path: str) -> bytes:
        """Read a file through the content cache.

        Raises:
            FileAccessError: If the file cannot be read
        """
        return self.store.lookup(self.content_ref_for(path))

    def new_accesses(self) -> List[str]:
        """Return the paths recorded since track_new_accesses(), sorted."""
        return sorted(self._state().accesses)

    def create_tree_from_new_accesses(self, remap_path: Optional[RemapPathFn] = None) -> ContentRef:
        """Store a directory tree containing exactly the newly accessed paths.

        Args:
            remap_path: Optional function rewriting each absolute path before it
                        is placed in the tree (e.g. to strip a build prefix)

        Returns:
            Reference of the root tree node

        Raises:
            FileAccessError: If a recorded file can no longer be read
        """
        root = _DirectoryNode()
        for abs_path in self.new_accesses():
            tree_path = remap_path(abs_path) if remap_path is not None else abs_path
            if os.path.islink(abs_path):
                entry: Optional[Dict[str, str]] = {"kind": "symlink", "target": os.readlink(abs_path)}
                real_path = os.path.realpath(abs_path)
                if os.path.isfile(real_path):
                    target_path = remap_path(real_path) if remap_path is not None else real_path
                    root.insert(target_path, {"kind": "file", "ref": str(self.content_cache.content_ref_for(real_path))})
            elif os.path.isdir(abs_path):
                entry = None
            else:
                entry = {"kind": "file", "ref": str(self.content_cache.content_ref_for(abs_path))}
            root.insert(tree_path, entry)

        ref = self._store_directory(root)
        logger.debug("Created tree %s from %s accessed paths", ref, len(self._state().accesses))
        return ref

    def _store_directory(self, node: "_DirectoryNode") -> ContentRef:
        entries = []
        for name in sorted(node.children):
            child = node.children[name]
            if isinstance(child, _DirectoryNode):
                entries.append({"name": name, "kind": "directory", "ref": str(self._store_directory(child))})
            else:
                entries.append({"name": name, **child})
        return self.store.store(encode_canonical({"kind": TREE_KIND, "entries": entries}))


class _DirectoryNode:
    def __init__(self) -> None:
        self.children: Dict[str, Union["_DirectoryNode", Dict[str, str]]] = {}

    def insert(self, path: str, entry: Optional[Dict[str, str]]) -> None:
        """Insert a file/symlink entry, or a directory when entry is None."""
        parts = [part for part in path.replace(os.sep, "/").split("/") if part]
        if not parts:
            return
        node = self
        for part in parts[:-1]:
            child = node.children.get(part)
            if not isinstance(child, _DirectoryNode):
                # A directory needed here wins over a recorded file
                child = _DirectoryNode()
                node.children[part] = child
            node = child
        leaf = parts[-1]
        if entry is None:
            if not isinstance(node.children.get(leaf), _DirectoryNode):
                node.children[leaf] = _DirectoryNode()
        elif leaf not in node.children:
            node.children[leaf] = entry


def list_tree_paths(store: ObjectStore, ref: ContentRef, prefix: str = "") -> Dict[str, str]:
    """Flatten a stored tree into {path: kind} (kind is file, directory or symlink).

    Raises:
        ObjectStoreError: If a node is missing or malformed
    """
    result: Dict[str, str] = {}
    node = decode_object(store.lookup(ref), TREE_KIND)
    for entry in node["entries"]:
        path = f"{prefix}/{entry['name']}"
        result[path] = entry["kind"]
        if entry["kind"] == "directory":
            result.update(list_tree_paths(store, ContentRef.parse(entry["ref"]), path))
    return result


def read_tree_file(store: ObjectStore, ref: ContentRef, path: str) -> bytes:
    """Return the content of one file inside a stored tree.

    Raises:
        FileAccessError: If the path is not a file in the tree
    """
    parts = [part for part in path.replace(os.sep, "/").split("/") if part]
    node = decode_object(store.lookup(ref), TREE_KIND)
    for index, part in enumerate(parts):
        entry = next((e for e in node["entries"] if e["name"] == part), None)
        if entry is None:
            break
        if index == len(parts) - 1:
            if entry["kind"] == "file":
                return store.lookup(ContentRef.parse(entry["ref"]))
            break
        if entry["kind"] != "directory":
            break
        node = decode_object(store.lookup(ContentRef.parse(entry["ref"])), TREE_KIND)
    raise FileAccessError(f"No file '{path}' in tree {ref}", path)
