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
"""Dependency scanning service, worker and the tool facade.

A DependencyScanningService owns the state shared by every scan: the object
store, the file content cache and the tracking filesystem. A
DependencyScanningWorker runs one preprocessing pass against a consumer. The
DependencyScanningTool turns a pass into one of the four outputs: make
dependency text, a filesystem tree snapshot, an include tree or a full
dependency record.
"""

import os
import logging
import dataclasses
from dataclasses import dataclass
from typing import List, Optional, Set

from depscan.command_line import parse_compiler_options
from depscan.constants import MODULE_IMPORT_BUFFER_NAME, ScanProtocolError
from depscan.consumers import (
    DependencyConsumer,
    FullDependenciesResult,
    LookupModuleOutputFn,
    ModuleDeps,
    ModuleID,
    ModuleOutputKind,
    PPIncludeActionsConsumer,
    PrebuiltModuleDep,
)
from depscan.content_cache import FileContentCache
from depscan.dependency_file import DependencyFileGenerator, DependencyOutputOptions
from depscan.file_manager import FileManager
from depscan.full_dependencies import FullDependencyConsumer
from depscan.include_tree_builder import IncludeTreeBuilder
from depscan.object_store import ContentRef, InMemoryObjectStore, ObjectStore, OnDiskObjectStore
from depscan.preprocessor import CompilerInstance, Preprocessor
from depscan.tracking_fs import RemapPathFn, TrackingFileSystem

logger = logging.getLogger(__name__)


@dataclass
class ScanningServiceConfig:
    """Settings shared by every scan of a service.

    Attributes:
        use_cas: Attach a filesystem tree id to full dependency records
        cas_path: Directory of an on-disk object store (in-memory when None)
        module_files_dir: Where module files are expected by default
    """

    use_cas: bool = False
    cas_path: Optional[str] = None
    module_files_dir: str = "modules"


class DependencyScanningService:
    """Shared, thread-safe scanning state.

    Args:
        config: Service settings
        store: Object store to use instead of the one config describes
    """

    def __init__(self, config: Optional[ScanningServiceConfig] = None, store: Optional[ObjectStore] = None):
        self.config = config if config is not None else ScanningServiceConfig()
        if store is None:
            store = OnDiskObjectStore(self.config.cas_path) if self.config.cas_path else InMemoryObjectStore()
        self.store = store
        self.content_cache = FileContentCache(store)
        self.fs = TrackingFileSystem(self.content_cache)

    @property
    def use_cas(self) -> bool:
        return self.config.use_cas

    def lookup_module_output(self, module_id: ModuleID, kind: ModuleOutputKind) -> str:
        """Default module file location: <module_files_dir>/<context hash>/<name>.pcm."""
        if kind != ModuleOutputKind.MODULE_FILE:
            raise ValueError(f"Unsupported module output kind: {kind}")
        return os.path.join(self.config.module_files_dir, module_id.context_hash, module_id.module_name + ".pcm")


class DependencyScanningWorker:
    """Runs preprocessing passes over the service's filesystem.

    A worker is used by one thread at a time.
    """

    def __init__(self, service: DependencyScanningService):
        self.service = service
        self.fs = service.fs

    def create_file_manager(self) -> FileManager:
        return FileManager(self.fs)

    def compute_dependencies(
        self,
        cwd: str,
        command_line: List[str],
        consumer: DependencyConsumer,
        module_name: Optional[str] = None,
        file_manager: Optional[FileManager] = None,
    ) -> None:
        """Preprocess one command line and report to the consumer.

        Args:
            cwd: Working directory of the compilation
            command_line: Full command line, compiler first
            consumer: Receives the dependencies (and include actions, when it
                      is a PPIncludeActionsConsumer)
            module_name: Scan the import of this module instead of the input file
            file_manager: File manager to use; a fresh one by default

        Raises:
            DepScanError: If the scan fails
        """
        self.fs.set_current_working_directory(cwd)
        options = parse_compiler_options(command_line)
        main_buffer = None
        if module_name is not None:
            options = dataclasses.replace(options, input_files=[], modules=True)
            main_buffer = (MODULE_IMPORT_BUFFER_NAME, f"@import {module_name};\n".encode("utf-8"))

        fm = file_manager if file_manager is not None else self.create_file_manager()
        ci = CompilerInstance(options, fm)
        # Scanned dependencies always include system headers
        ci.dependency_output_options.include_system_headers = True

        include_actions = consumer if isinstance(consumer, PPIncludeActionsConsumer) else None
        logger.debug("Scanning %s in %s", module_name or options.input_files, cwd)
        Preprocessor(ci, dependency_consumer=consumer, include_actions=include_actions, main_buffer=main_buffer).run()


class MakeDependencyPrinterConsumer(DependencyConsumer):
    """Collects file dependencies and prints them in make format."""

    def __init__(self) -> None:
        self.opts: Optional[DependencyOutputOptions] = None
        self.dependencies: List[str] = []

    def handle_dependency_output_opts(self, opts: DependencyOutputOptions) -> None:
        self.opts = dataclasses.replace(opts, targets=list(opts.targets))

    def handle_file_dependency(self, filename: str) -> None:
        self.dependencies.append(filename)

    def handle_prebuilt_module_dependency(self, pmd: PrebuiltModuleDep) -> None:
        pass

    def handle_module_dependency(self, md: ModuleDeps) -> None:
        pass

    def handle_context_hash(self, context_hash: str) -> None:
        pass

    def lookup_module_output(self, module_id: ModuleID, kind: ModuleOutputKind) -> str:
        raise ScanProtocolError("Unexpected module output lookup while printing make dependencies")

    def print_dependencies(self) -> str:
        if self.opts is None:
            raise ScanProtocolError("Dependency output options were never handled")
        generator = DependencyFileGenerator(self.opts)
        for dep in self.dependencies:
            generator.add_dependency(dep)
        return generator.output_dependency_file()


class MakeDependencyTree(DependencyConsumer):
    """Ignores every event; the tracking filesystem records what the scan touched."""

    def handle_dependency_output_opts(self, opts: DependencyOutputOptions) -> None:
        pass

    def handle_file_dependency(self, filename: str) -> None:
        pass

    def handle_prebuilt_module_dependency(self, pmd: PrebuiltModuleDep) -> None:
        pass

    def handle_module_dependency(self, md: ModuleDeps) -> None:
        pass

    def handle_context_hash(self, context_hash: str) -> None:
        pass

    def lookup_module_output(self, module_id: ModuleID, kind: ModuleOutputKind) -> str:
        raise ScanProtocolError("Unexpected module output lookup while building a dependency tree")


class DependencyScanningTool:
    """Facade producing scan artifacts for command lines.

    Every method performs one complete preprocessing run. Use one tool per
    thread; tools may share a service.

    Args:
        service: Shared scanning state
    """

    def __init__(self, service: DependencyScanningService):
        self.service = service
        self.worker = DependencyScanningWorker(service)

    def get_dependency_file(self, command_line: List[str], cwd: str, module_name: Optional[str] = None) -> str:
        """Return make-format dependency text for the command line."""
        consumer = MakeDependencyPrinterConsumer()
        self.worker.compute_dependencies(cwd, command_line, consumer, module_name)
        return consumer.print_dependencies()

    def get_dependency_tree(self, command_line: List[str], cwd: str, remap_path: Optional[RemapPathFn] = None) -> ContentRef:
        """Return the filesystem tree of every path the scan accessed."""
        fs = self.worker.fs
        fs.track_new_accesses()
        self.worker.compute_dependencies(cwd, command_line, MakeDependencyTree())
        # The consumer's file list misses directories, so the tree comes from
        # the recorded filesystem accesses
        return fs.create_tree_from_new_accesses(remap_path)

    def get_include_tree(self, command_line: List[str], cwd: str, store: Optional[ObjectStore] = None) -> ContentRef:
        """Return the reference of the include tree root of the command line.

        Args:
            store: Object store receiving the tree (the service's by default)
        """
        fm = self.worker.create_file_manager()
        builder = IncludeTreeBuilder(store if store is not None else self.service.store, fm)
        self.worker.compute_dependencies(cwd, command_line, builder, file_manager=fm)
        return builder.get_include_tree()

    def get_full_dependencies(
        self,
        command_line: List[str],
        cwd: str,
        already_seen: Set[ModuleID],
        lookup_module_output: Optional[LookupModuleOutputFn] = None,
        module_name: Optional[str] = None,
    ) -> FullDependenciesResult:
        """Return the translation unit record and the modules not in already_seen."""
        if lookup_module_output is None:
            lookup_module_output = self.service.lookup_module_output
        consumer = FullDependencyConsumer(already_seen, lookup_module_output)
        fs = self.worker.fs if self.service.use_cas else None
        if fs is not None:
            fs.track_new_accesses()
            fs.set_current_working_directory(cwd)
        self.worker.compute_dependencies(cwd, command_line, consumer, module_name)

        root_id = fs.create_tree_from_new_accesses() if fs is not None else None
        return consumer.get_full_dependencies(command_line, root_id)
