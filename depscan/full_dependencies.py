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
"""Aggregates a scan's events into a translation unit record for explicit module builds."""

import logging
from typing import Dict, List, Optional, Set

from depscan.command_line import make_tu_command_line_without_paths
from depscan.constants import MODULE_FILE_FLAG, ScanProtocolError
from depscan.consumers import (
    DependencyConsumer,
    FullDependencies,
    FullDependenciesResult,
    LookupModuleOutputFn,
    ModuleDeps,
    ModuleID,
    ModuleOutputKind,
    PrebuiltModuleDep,
    TranslationUnitID,
)
from depscan.object_store import ContentRef

logger = logging.getLogger(__name__)


class FullDependencyConsumer(DependencyConsumer):
    """Collects file, module and prebuilt module dependencies of one scan.

    Args:
        already_seen: Modules the caller has already been told about; they are
                      left out of the discovered modules of this result
        lookup_module_output: Tells where the module file of a module will be
    """

    def __init__(self, already_seen: Set[ModuleID], lookup_module_output: LookupModuleOutputFn):
        self.already_seen = already_seen
        self._lookup_module_output = lookup_module_output
        self.dependencies: List[str] = []
        self.prebuilt_module_deps: List[PrebuiltModuleDep] = []
        self.clang_module_deps: Dict[ModuleID, ModuleDeps] = {}
        self.context_hash: Optional[str] = None

    def handle_dependency_output_opts(self, opts) -> None:
        pass

    def handle_file_dependency(self, filename: str) -> None:
        self.dependencies.append(filename)

    def handle_prebuilt_module_dependency(self, pmd: PrebuiltModuleDep) -> None:
        self.prebuilt_module_deps.append(pmd)

    def handle_module_dependency(self, md: ModuleDeps) -> None:
        self.clang_module_deps[md.id] = md

    def handle_context_hash(self, context_hash: str) -> None:
        self.context_hash = context_hash

    def lookup_module_output(self, module_id: ModuleID, kind: ModuleOutputKind) -> str:
        return self._lookup_module_output(module_id, kind)

    def get_full_dependencies(
        self, original_command_line: List[str], cas_file_system_root_id: Optional[ContentRef] = None
    ) -> FullDependenciesResult:
        """Build the translation unit record.

        Args:
            original_command_line: The scanned command line, program name first
            cas_file_system_root_id: Filesystem tree of the scan, if tracked

        Raises:
            ScanProtocolError: If the scan never reported its context hash
        """
        if self.context_hash is None:
            raise ScanProtocolError("Full dependencies requested before the scan reported a context hash")

        command_line = make_tu_command_line_without_paths(original_command_line[1:])
        for pmd in self.prebuilt_module_deps:
            command_line.append(MODULE_FILE_FLAG + pmd.pcm_file)

        direct_modules = []
        for md in self.clang_module_deps.values():
            if not md.imported_by_main_file:
                continue
            direct_modules.append(md.id)
            command_line.append(MODULE_FILE_FLAG + self.lookup_module_output(md.id, ModuleOutputKind.MODULE_FILE))

        full_deps = FullDependencies(
            id=TranslationUnitID(self.context_hash),
            command_line=command_line,
            file_deps=list(self.dependencies),
            clang_module_deps=direct_modules,
            prebuilt_module_deps=list(self.prebuilt_module_deps),
            cas_file_system_root_id=cas_file_system_root_id,
        )
        discovered = [md for module_id, md in self.clang_module_deps.items() if module_id not in self.already_seen]
        logger.debug(
            "Full dependencies: %s files, %s direct modules, %s newly discovered modules",
            len(full_deps.file_deps),
            len(direct_modules),
            len(discovered),
        )
        return FullDependenciesResult(full_deps=full_deps, discovered_modules=discovered)
