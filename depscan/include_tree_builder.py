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
"""Builds the content-addressed include tree of one translation unit.

IncludeTreeBuilder listens to the preprocessor's include actions. Each entered
file pushes a frame; each exit turns the top frame into an IncludeTree node
and attaches it to its parent at the offset of the inclusion directive.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from depscan.constants import (
    DepScanError,
    FileAccessError,
    PREDEFINES_BUFFER_NAME,
    SDK_SETTINGS_FILE,
    ScanProtocolError,
)
from depscan.consumers import PPIncludeActionsConsumer
from depscan.file_manager import FileEntry, FileManager, SourceFile
from depscan.include_tree import (
    HeaderCharacteristic,
    IncludeFileList,
    IncludeTree,
    IncludeTreeRoot,
    create_include_file,
    store_node,
)
from depscan.object_store import ContentRef, ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class FilePPState:
    """Open frame of a file that is being preprocessed."""

    characteristic: HeaderCharacteristic
    file: ContentRef
    includes: List[Tuple[ContentRef, int]] = field(default_factory=list)
    has_include_checks: List[bool] = field(default_factory=list)


class IncludeTreeBuilder(PPIncludeActionsConsumer):
    """Include actions consumer producing an IncludeTreeRoot.

    The first failure is recorded and every later event is ignored; the
    failure is raised from get_include_tree(). Event sequences that violate
    the preprocessor's contract raise ScanProtocolError immediately.

    Args:
        store: Object store that receives the tree nodes
        file_manager: File manager of the run the builder observes
    """

    def __init__(self, store: ObjectStore, file_manager: FileManager):
        self.store = store
        self.fm = file_manager
        self._stack: List[FilePPState] = []
        self._object_for_file: Dict[str, ContentRef] = {}
        self._object_for_buffer: Dict[str, ContentRef] = {}
        self._seen_files: Set[str] = set()
        self._included_files: List[Tuple[ContentRef, int]] = []
        self._predefines_ref: Optional[ContentRef] = None
        self._pch_ref: Optional[ContentRef] = None
        self._error: Optional[DepScanError] = None

    def has_error_occurred(self) -> bool:
        return self._error is not None

    def _record_error(self, error: DepScanError) -> None:
        if self._error is None:
            logger.debug("Include tree builder failed: %s", error)
            self._error = error

    # -------------------------------------------------------------------------
    # Include actions
    # -------------------------------------------------------------------------

    def entered_include(self, source_file: SourceFile) -> None:
        if self.has_error_occurred():
            return
        try:
            file_ref = self._get_object_for_file(source_file)
        except DepScanError as e:
            self._record_error(e)
            return
        self._stack.append(FilePPState(characteristic=source_file.characteristic, file=file_ref))

    def exited_include(self, included_by: SourceFile, include: SourceFile, exit_offset: int) -> None:
        if self.has_error_occurred():
            return
        if not self._stack or self._get_object_for_file(include) != self._stack[-1].file:
            raise ScanProtocolError(f"Exited '{include.name}' which is not the innermost open file")
        try:
            tree_ref = self._store_tree(self._stack.pop())
        except DepScanError as e:
            self._record_error(e)
            return
        if not self._stack or self._get_object_for_file(included_by) != self._stack[-1].file:
            raise ScanProtocolError(f"'{included_by.name}' is not the file that included '{include.name}'")
        self._stack[-1].includes.append((tree_ref, exit_offset))

    def handle_has_include_check(self, result: bool) -> None:
        if self.has_error_occurred():
            return
        if not self._stack:
            raise ScanProtocolError("__has_include check outside of any file")
        self._stack[-1].has_include_checks.append(result)

    def finalize(self, compiler_instance) -> None:
        """Add files needed for replay that were never entered textually."""
        if self.has_error_occurred():
            return
        options = compiler_instance.options
        try:
            for path in options.no_sanitize_files:
                self._add_file(path)
            if options.sysroot:
                self._add_file(os.path.join(options.sysroot, SDK_SETTINGS_FILE), ignore_missing=True)
            if not options.include_pch:
                return

            # Files that only came from the PCH are still needed when replaying
            not_seen = [
                entry
                for entry in compiler_instance.get_preprocessor().get_included_files()
                if entry.uid not in self._seen_files
            ]
            for entry in sorted(not_seen, key=lambda e: e.uid):
                self._add_to_file_list(entry)
            self._pch_ref = self._content_ref(options.include_pch)
        except DepScanError as e:
            self._record_error(e)

    # -------------------------------------------------------------------------
    # Result
    # -------------------------------------------------------------------------

    def get_include_tree(self) -> ContentRef:
        """Store the main tree, the file list and the root node.

        Returns:
            Reference of the IncludeTreeRoot

        Raises:
            DepScanError: The first failure recorded while building
            ScanProtocolError: If files are still open
        """
        if self._error is not None:
            raise self._error
        if len(self._stack) != 1:
            raise ScanProtocolError(f"Expected only the main file to be open, found {len(self._stack)} frames")
        main_ref = self._store_tree(self._stack.pop())
        file_list_ref = store_node(self.store, IncludeFileList(files=tuple(self._included_files)))
        root_ref = store_node(self.store, IncludeTreeRoot(main=main_ref, file_list=file_list_ref, pch=self._pch_ref))
        logger.debug("Stored include tree root %s with %s manifest entries", root_ref, len(self._included_files))
        return root_ref

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def _store_tree(self, state: FilePPState) -> ContentRef:
        tree = IncludeTree(
            characteristic=state.characteristic,
            file=state.file,
            includes=tuple(state.includes),
            has_include_checks=tuple(state.has_include_checks),
        )
        return store_node(self.store, tree)

    def _get_object_for_file(self, source_file: SourceFile) -> ContentRef:
        if source_file.entry is None:
            if source_file.name == PREDEFINES_BUFFER_NAME:
                if self._predefines_ref is None:
                    self._predefines_ref = self._get_object_for_buffer(source_file)
                return self._predefines_ref
            ref = self._object_for_buffer.get(source_file.name)
            if ref is None:
                ref = self._get_object_for_buffer(source_file)
                self._object_for_buffer[source_file.name] = ref
            return ref

        entry = source_file.entry
        ref = self._object_for_file.get(entry.name)
        if ref is None:
            self._seen_files.add(entry.uid)
            ref = self._add_to_file_list(entry)
            self._object_for_file[entry.name] = ref
        return ref

    def _get_object_for_buffer(self, source_file: SourceFile) -> ContentRef:
        contents = self.store.store(source_file.buffer or b"")
        return create_include_file(self.store, source_file.name, contents)

    def _content_ref(self, path: str) -> ContentRef:
        ref = self.fm.get_object_ref_for_file_content(path)
        content_store = self.fm.fs.store
        if content_store is not self.store and not self.store.contains(ref):
            self.store.store(content_store.lookup(ref))
        return ref

    def _add_file(self, path: str, ignore_missing: bool = False) -> None:
        entry = self.fm.get_file(path)
        if entry is None:
            if ignore_missing:
                return
            raise FileAccessError(f"No such file: '{path}'", path)
        self._add_to_file_list(entry)

    def _add_to_file_list(self, entry: FileEntry) -> ContentRef:
        contents = self._content_ref(entry.name)

        def add(filename: str) -> ContentRef:
            file_ref = create_include_file(self.store, filename, contents)
            self._included_files.append((file_ref, entry.size))
            return file_ref

        # A symlinked file is also recorded under its resolved path
        if entry.real_path != self.fm.make_absolute_path(entry.name):
            add(entry.real_path)
        return add(entry.name)
