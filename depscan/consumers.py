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
"""Consumer interfaces driven by the preprocessor, and the records they exchange."""

import abc
import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from depscan.constants import ScanProtocolError
from depscan.object_store import ContentRef


class ModuleOutputKind(enum.Enum):
    """Kinds of per-module outputs a caller may be asked to place."""

    MODULE_FILE = "module-file"


@dataclass(frozen=True, order=True)
class ModuleID:
    """Identity of a module across a whole scanning session.

    Attributes:
        module_name: Top-level module name
        context_hash: Hash of the options the module is built with
    """

    module_name: str
    context_hash: str

    def to_json(self) -> Dict[str, str]:
        return {"module-name": self.module_name, "context-hash": self.context_hash}


@dataclass
class ModuleDeps:
    """Everything needed to build one module explicitly.

    Attributes:
        id: Module identity
        imported_by_main_file: True if the translation unit imports it directly
        is_system: True if the module comes from a system module map
        clang_module_map_file: Module map that declares the module
        file_deps: Files the module is built from, module map first
        clang_module_deps: Modules this module imports
    """

    id: ModuleID
    imported_by_main_file: bool = False
    is_system: bool = False
    clang_module_map_file: str = ""
    file_deps: List[str] = field(default_factory=list)
    clang_module_deps: List[ModuleID] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.id.module_name,
            "context-hash": self.id.context_hash,
            "clang-modulemap-file": self.clang_module_map_file,
            "file-deps": list(self.file_deps),
            "clang-module-deps": [dep.to_json() for dep in self.clang_module_deps],
            "is-system": self.is_system,
        }


@dataclass(frozen=True)
class PrebuiltModuleDep:
    """A module used from an already compiled module file."""

    module_name: str
    pcm_file: str

    def to_json(self) -> Dict[str, str]:
        return {"module-name": self.module_name, "pcm-file": self.pcm_file}


@dataclass(frozen=True)
class TranslationUnitID:
    context_hash: str


@dataclass
class FullDependencies:
    """Dependency record of one translation unit.

    Attributes:
        id: Translation unit identity (its context hash)
        command_line: Arguments for an explicit-modules compile (no program name)
        file_deps: Files the translation unit reads
        clang_module_deps: Modules imported directly by the translation unit
        prebuilt_module_deps: Modules used from existing module files
        cas_file_system_root_id: Tree of every accessed path, when tracking is enabled
    """

    id: TranslationUnitID
    command_line: List[str] = field(default_factory=list)
    file_deps: List[str] = field(default_factory=list)
    clang_module_deps: List[ModuleID] = field(default_factory=list)
    prebuilt_module_deps: List[PrebuiltModuleDep] = field(default_factory=list)
    cas_file_system_root_id: Optional[ContentRef] = None

    def to_json(self, input_file: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if input_file is not None:
            data["input-file"] = input_file
        data["context-hash"] = self.id.context_hash
        data["file-deps"] = list(self.file_deps)
        data["clang-module-deps"] = [dep.to_json() for dep in self.clang_module_deps]
        data["command-line"] = list(self.command_line)
        if self.prebuilt_module_deps:
            data["prebuilt-module-deps"] = [dep.to_json() for dep in self.prebuilt_module_deps]
        if self.cas_file_system_root_id is not None:
            data["casfs-root-id"] = str(self.cas_file_system_root_id)
        return data


@dataclass
class FullDependenciesResult:
    """A translation unit's record plus the modules the caller has not seen yet."""

    full_deps: FullDependencies
    discovered_modules: List[ModuleDeps] = field(default_factory=list)

    def to_json(self, input_file: Optional[str] = None) -> Dict[str, Any]:
        return {
            "modules": [module.to_json() for module in self.discovered_modules],
            "translation-units": [self.full_deps.to_json(input_file)],
        }


LookupModuleOutputFn = Callable[[ModuleID, ModuleOutputKind], str]


class DependencyConsumer(abc.ABC):
    """Receives the dependencies the preprocessor discovered for one run.

    Events arrive after the main file has been processed: output options
    first, then file dependencies, prebuilt modules, modules (dependencies
    before dependants) and finally the context hash.
    """

    @abc.abstractmethod
    def handle_dependency_output_opts(self, opts: Any) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def handle_file_dependency(self, filename: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def handle_prebuilt_module_dependency(self, pmd: PrebuiltModuleDep) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def handle_module_dependency(self, md: ModuleDeps) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def handle_context_hash(self, context_hash: str) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def lookup_module_output(self, module_id: ModuleID, kind: ModuleOutputKind) -> str:
        raise NotImplementedError


class PPIncludeActionsConsumer(DependencyConsumer):
    """Consumer that also observes file entry and exit while preprocessing.

    Dependency events are ignored by default; subclasses implement the
    include actions.
    """

    def handle_dependency_output_opts(self, opts: Any) -> None:
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
        raise ScanProtocolError(f"Unexpected module output lookup for {module_id.module_name}")

    @abc.abstractmethod
    def entered_include(self, source_file: Any) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def exited_include(self, included_by: Any, include: Any, exit_offset: int) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def handle_has_include_check(self, result: bool) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def finalize(self, compiler_instance: Any) -> None:
        raise NotImplementedError
