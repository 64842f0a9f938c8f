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
"""Directive-level preprocessor front end used to drive dependency scans.

The preprocessor follows exactly what decides which files a translation unit
reads: conditional directives, macro definitions, #include / #import /
#include_next, #pragma once, include guards, __has_include probes,
precompiled headers and module imports. Ordinary source lines are never
interpreted.

Consumers observe the run through two channels:

* a DependencyConsumer gets the discovered file and module dependencies
  once the main file has been processed;
* a PPIncludeActionsConsumer additionally sees every file entry and exit, the
  result of every __has_include probe and a final finalize() call.

Offsets reported with exited_include() are byte offsets of the '#' that
starts the inclusion directive in the including file. Files are decoded as
latin-1, so string indices equal byte offsets.
"""

import os
import re
import json
import logging
import dataclasses
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from depscan.command_line import CompilerOptions, compute_context_hash, make_dependency_output_options
from depscan.constants import (
    ArgumentError,
    FileAccessError,
    MAX_INCLUDE_DEPTH,
    MissingModuleError,
    PCH_FORMAT,
    PREDEFINES_BUFFER_NAME,
    PreprocessorError,
    ScanProtocolError,
)
from depscan.consumers import DependencyConsumer, ModuleDeps, ModuleID, PPIncludeActionsConsumer, PrebuiltModuleDep
from depscan.file_manager import FileEntry, FileManager, SourceFile
from depscan.include_tree import HeaderCharacteristic
from depscan.module_map import Module, ModuleMap

logger = logging.getLogger(__name__)

_COMMENT_OR_LITERAL_RE = re.compile(r'//[^\n]*|/\*.*?\*/|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'', re.S)
_DIRECTIVE_RE = re.compile(r"#\s*([A-Za-z_]\w*)?\s*(.*)", re.S)
_HEADER_NAME_RE = re.compile(r'\s*(?:"([^"]*)"|<([^>]*)>)')
_MODULE_IMPORT_RE = re.compile(r"\s*(?:@import|(?:export\s+)?import)\s+([A-Za-z_][\w.]*)\s*;")
_PRAGMA_IMPORT_RE = re.compile(r"clang\s+module\s+import\s+([A-Za-z_][\w.]*)")
_MACRO_DEFINITION_RE = re.compile(r"([A-Za-z_]\w*)(\([^)]*\))?\s*(.*)", re.S)
_HAS_INCLUDE_RE = re.compile(r'\b(__has_include_next|__has_include)\s*\(\s*("[^"]*"|<[^>]*>|[A-Za-z_]\w*)\s*\)')
_HAS_BUILTIN_CHECK_RE = re.compile(r"\b__has_\w+\s*\([^()]*\)")
_DEFINED_RE = re.compile(r"\bdefined\s*(?:\(\s*([A-Za-z_]\w*)\s*\)|([A-Za-z_]\w*))")
_IDENTIFIER_RE = re.compile(r"\b[A-Za-z_]\w*\b")
_FUNCTION_CALL_RE = re.compile(r"\b([A-Za-z_]\w*)\s*\([^()]*\)")
_EXPR_TOKEN_RE = re.compile(
    r"\s*(?:(?P<number>0[xX][0-9a-fA-F]+|\d+)[uUlL]*|(?P<char>'(?:\\.|[^'\\])')|(?P<op>&&|\|\||==|!=|<=|>=|<<|>>|[-+*/%<>!~&|^()]))"
)

CONDITIONAL_DIRECTIVES = ("if", "ifdef", "ifndef", "elif", "elifdef", "elifndef", "else", "endif")
INCLUDE_DIRECTIVES = ("include", "import", "include_next")

# Names that 'defined' reports as present although they are not macros
BUILTIN_FEATURE_MACROS = frozenset(
    ["__has_include", "__has_include_next", "__has_feature", "__has_extension", "__has_attribute", "__has_builtin", "__has_cpp_attribute"]
)

CPLUSPLUS_VERSIONS = {"98": "199711L", "03": "199711L", "11": "201103L", "14": "201402L", "17": "201703L", "20": "202002L", "23": "202302L"}
C_VERSIONS = {"99": "199901L", "11": "201112L", "17": "201710L", "18": "201710L", "23": "202311L"}

_CHAR_ESCAPES = {"n": 10, "t": 9, "r": 13, "0": 0, "\\": 92, "'": 39, '"': 34, "a": 7, "b": 8, "f": 12, "v": 11}


# =============================================================================
# Text helpers
# =============================================================================


def strip_comments(text: str) -> str:
    """Blank out comments, keeping every other character (and newline) in place."""

    def blank(match: "re.Match[str]") -> str:
        token = match.group(0)
        if token.startswith("/"):
            return re.sub(r"[^\n]", " ", token)
        return token

    return _COMMENT_OR_LITERAL_RE.sub(blank, text)


def logical_lines(text: str) -> Iterator[Tuple[int, str]]:
    """Yield (offset, line) with backslash continuations joined."""
    lines = text.split("\n")
    offset = 0
    i = 0
    while i < len(lines):
        start = offset
        line = lines[i].rstrip("\r")
        offset += len(lines[i]) + 1
        while line.endswith("\\") and i + 1 < len(lines):
            i += 1
            line = line[:-1] + lines[i].rstrip("\r")
            offset += len(lines[i]) + 1
        i += 1
        yield start, line


def detect_include_guard(text: str) -> Optional[str]:
    """Return the guard macro if the whole file is wrapped in '#ifndef X / #define X ... #endif'."""
    lines = [line.strip() for _, line in logical_lines(strip_comments(text)) if line.strip()]
    if len(lines) < 3:
        return None
    match = re.match(r"#\s*(?:ifndef\s+(\w+)|if\s+!\s*defined\s*\(?\s*(\w+)\s*\)?)\s*$", lines[0])
    if not match:
        return None
    guard = match.group(1) or match.group(2)
    if not re.match(rf"#\s*define\s+{re.escape(guard)}\b", lines[1]):
        return None

    depth = 0
    for index, line in enumerate(lines):
        directive = re.match(r"#\s*(\w+)", line)
        if not directive:
            continue
        name = directive.group(1)
        if name in ("if", "ifdef", "ifndef"):
            depth += 1
        elif name == "endif":
            depth -= 1
            if depth == 0:
                return guard if index == len(lines) - 1 else None
    return None


def header_file_name(name: str) -> str:
    """Map a header name taken from latin-1 decoded source back to a filesystem name.

    Source bytes are decoded one byte per character, so a UTF-8 name such as
    "café.h" arrives as "cafÃ©.h"; re-encoding recovers the original bytes.
    """
    try:
        return os.fsdecode(name.encode("latin-1"))
    except UnicodeEncodeError:
        return name


def _parse_number(text: str) -> int:
    if text[:2].lower() == "0x":
        return int(text, 16)
    if len(text) > 1 and text.startswith("0"):
        return int(text, 8)
    return int(text)


def _parse_char(literal: str) -> int:
    body = literal[1:-1]
    if body.startswith("\\"):
        if body[1] not in _CHAR_ESCAPES:
            raise ValueError(f"unsupported character escape {literal}")
        return _CHAR_ESCAPES[body[1]]
    return ord(body)


def evaluate_expression(expr: str) -> int:
    """Evaluate a fully macro-expanded #if expression.

    C operators are translated token by token into Python and evaluated with
    no builtins available, so only integer arithmetic can run.

    Raises:
        ValueError: If the expression is empty, contains unsupported tokens
                    or does not evaluate
    """
    parts: List[str] = []
    pos = 0
    while pos < len(expr):
        match = _EXPR_TOKEN_RE.match(expr, pos)
        if match is None or match.end() == pos:
            if expr[pos:].strip():
                raise ValueError(f"unexpected '{expr[pos:].strip()}'")
            break
        pos = match.end()
        if match.group("number") is not None:
            parts.append(str(_parse_number(match.group("number"))))
        elif match.group("char") is not None:
            parts.append(str(_parse_char(match.group("char"))))
        else:
            op = match.group("op")
            parts.append({"&&": " and ", "||": " or ", "!": " not ", "/": "//"}.get(op, op))

    if not parts:
        raise ValueError("empty expression")
    try:
        result = eval("".join(parts), {"__builtins__": {}}, {})
    except (SyntaxError, ArithmeticError, TypeError) as e:
        raise ValueError(str(e)) from e
    return int(result)


# =============================================================================
# Precompiled headers
# =============================================================================


@dataclass
class PrecompiledHeader:
    """Content of a precompiled header artifact.

    Attributes:
        path: Artifact path
        included_files: Absolute paths of every file the header pulled in
        macros: Macro table at the end of the header
    """

    path: str
    included_files: List[str] = field(default_factory=list)
    macros: Dict[str, str] = field(default_factory=dict)


def write_precompiled_header(path: str, included_files: List[str], macros: Dict[str, str]) -> None:
    """Write a precompiled header artifact.

    Raises:
        FileAccessError: If the artifact cannot be written
    """
    data = {"format": PCH_FORMAT, "included_files": list(included_files), "macros": dict(sorted(macros.items()))}
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
    except OSError as e:
        raise FileAccessError(f"Failed to write precompiled header {path}: {e}", path) from e
    logger.debug("Wrote precompiled header %s with %s files", path, len(included_files))


def read_precompiled_header(file_manager: FileManager, path: str) -> PrecompiledHeader:
    """Load a precompiled header artifact through the file manager.

    Raises:
        FileAccessError: If the artifact does not exist
        PreprocessorError: If the file is not a precompiled header
    """
    entry = file_manager.require_file(path)
    try:
        data = json.loads(file_manager.get_buffer(entry).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PreprocessorError(f"'{path}' is not a precompiled header: {e}") from e
    if not isinstance(data, dict) or data.get("format") != PCH_FORMAT:
        raise PreprocessorError(f"'{path}' is not a precompiled header")
    return PrecompiledHeader(path=path, included_files=list(data.get("included_files", [])), macros=dict(data.get("macros", {})))


# =============================================================================
# Header search
# =============================================================================


@dataclass(frozen=True)
class SearchDirectory:
    path: str
    characteristic: HeaderCharacteristic


class HeaderSearch:
    """Resolves #include names against the search path.

    Quote includes look in the includer's directory, then -iquote, -I,
    -isystem, -internal-externc-isystem and -idirafter directories. Angled
    includes skip the first two.
    """

    def __init__(self, options: CompilerOptions, file_manager: FileManager):
        self.fm = file_manager
        user = HeaderCharacteristic.USER
        system = HeaderCharacteristic.SYSTEM
        self.search_dirs: List[SearchDirectory] = [SearchDirectory(path, user) for path in options.quote_dirs]
        self.angled_start = len(self.search_dirs)
        self.search_dirs += [SearchDirectory(path, user) for path in options.user_dirs]
        self.search_dirs += [SearchDirectory(path, system) for path in options.system_dirs]
        self.search_dirs += [SearchDirectory(path, HeaderCharacteristic.EXTERNAL) for path in options.externc_system_dirs]
        self.search_dirs += [SearchDirectory(path, system) for path in options.after_dirs]
        self._exists = [self.fm.get_directory(directory.path) for directory in self.search_dirs]
        missing = [directory.path for directory, exists in zip(self.search_dirs, self._exists) if not exists]
        if missing:
            logger.debug("Ignoring nonexistent include directories: %s", missing)

    def existing_dirs(self) -> List[SearchDirectory]:
        return [directory for directory, exists in zip(self.search_dirs, self._exists) if exists]

    def lookup(
        self, filename: str, is_angled: bool, includer: Optional[SourceFile], start_index: Optional[int] = None
    ) -> Optional[Tuple[FileEntry, HeaderCharacteristic, Optional[int]]]:
        """Find a header.

        Args:
            filename: Name between the quotes or angle brackets
            is_angled: True for <name>
            includer: File containing the directive
            start_index: First search directory to try (#include_next)

        Returns:
            (entry, characteristic, index of the search directory or None), or
            None if the header does not exist
        """
        if os.path.isabs(filename):
            entry = self.fm.get_file(filename)
            return (entry, HeaderCharacteristic.USER, None) if entry is not None else None

        if start_index is None and not is_angled and includer is not None:
            base = os.path.dirname(includer.entry.name) if includer.entry is not None else ""
            entry = self.fm.get_file(os.path.join(base, filename) if base else filename)
            if entry is not None:
                return entry, includer.characteristic, None

        first = start_index if start_index is not None else (self.angled_start if is_angled else 0)
        for index in range(first, len(self.search_dirs)):
            if not self._exists[index]:
                continue
            directory = self.search_dirs[index]
            entry = self.fm.get_file(os.path.join(directory.path, filename))
            if entry is not None:
                return entry, directory.characteristic, index
        return None


# =============================================================================
# Compiler instance
# =============================================================================


class CompilerInstance:
    """Options, file manager and search state shared by one preprocessing run.

    Args:
        options: Parsed command line
        file_manager: File manager of the run
        module_map: Module map to share with a parent run, if any
    """

    def __init__(self, options: CompilerOptions, file_manager: FileManager, module_map: Optional[ModuleMap] = None):
        self.options = options
        self.file_manager = file_manager
        self.header_search = HeaderSearch(options, file_manager)
        self.module_map = module_map if module_map is not None else ModuleMap(file_manager)
        self.dependency_output_options = make_dependency_output_options(options)
        self.preprocessor: Optional["Preprocessor"] = None

    def get_preprocessor(self) -> "Preprocessor":
        if self.preprocessor is None:
            raise ScanProtocolError("The compiler instance has not been preprocessed")
        return self.preprocessor


# =============================================================================
# Modules
# =============================================================================


@dataclass
class _ScannedModule:
    module: Module
    file_deps: List[str]


class ModuleDepCollector:
    """Resolves module imports and scans source modules in isolated runs.

    One collector is shared by a translation unit's run and all of the module
    runs it triggers, so each module is scanned once.
    """

    def __init__(self, compiler_instance: CompilerInstance, context_hash: str):
        self.ci = compiler_instance
        self.context_hash = context_hash
        self._direct_imports: List[str] = []
        self._module_imports: Dict[str, List[str]] = {}
        self._scanned: Dict[str, _ScannedModule] = {}
        self._in_progress: List[str] = []
        self._prebuilt: Dict[str, PrebuiltModuleDep] = {}

    def find_prebuilt(self, name: str) -> Optional[PrebuiltModuleDep]:
        options = self.ci.options
        if name in options.module_files:
            return PrebuiltModuleDep(module_name=name, pcm_file=options.module_files[name])
        for directory in options.prebuilt_module_paths:
            candidate = os.path.join(directory, name + ".pcm")
            if self.ci.file_manager.get_file(candidate) is not None:
                return PrebuiltModuleDep(module_name=name, pcm_file=candidate)
        return None

    def import_module(self, name: str, importer: Optional[str]) -> Optional[PrebuiltModuleDep]:
        """Record an import of a module by the translation unit (importer None) or by a module.

        Returns:
            The prebuilt module used, if the import was satisfied by one

        Raises:
            MissingModuleError: If the module is neither prebuilt nor in a module map
            PreprocessorError: If module imports form a cycle
        """
        top_name = name.split(".")[0]
        prebuilt = self.find_prebuilt(top_name)
        if prebuilt is not None:
            if importer is None:
                self._prebuilt.setdefault(top_name, prebuilt)
            return prebuilt

        module = self.ci.module_map.find_module(name)
        if module is None:
            raise MissingModuleError(f"Module '{name}' not found")
        top = module.top_level
        imports = self._direct_imports if importer is None else self._module_imports.setdefault(importer, [])
        if top.name not in imports:
            imports.append(top.name)
        self._scan(top)
        return None

    def _scan(self, module: Module) -> None:
        if module.name in self._scanned:
            return
        if module.name in self._in_progress:
            chain = " -> ".join(self._in_progress[self._in_progress.index(module.name):] + [module.name])
            raise PreprocessorError(f"Cyclic dependency in module '{module.name}': {chain}")

        logger.debug("Scanning module %s from %s", module.name, module.module_map_file)
        if module.umbrella_dir is not None:
            logger.warning("Umbrella directory of module '%s' is not expanded: %s", module.name, module.umbrella_dir)
        self._in_progress.append(module.name)
        try:
            options = dataclasses.replace(
                self.ci.options, module_name=module.name, input_files=[], forced_includes=[], include_pch=None, modules=True
            )
            sub_instance = CompilerInstance(options, self.ci.file_manager, self.ci.module_map)
            buffer = "".join(f'#include "{header}"\n' for header in module.all_headers())
            sub_run = Preprocessor(
                sub_instance,
                module_collector=self,
                main_buffer=(f"<module-{module.name}>", os.fsencode(buffer)),
                module_scope=module.name,
            )
            sub_run.run()
        finally:
            self._in_progress.pop()

        module_map_path = self.ci.file_manager.make_absolute_path(module.module_map_file)
        file_deps = [module_map_path] + [path for path in sub_run.file_dependencies() if path != module_map_path]
        self._scanned[module.name] = _ScannedModule(module=module, file_deps=file_deps)

    def prebuilt_module_deps(self) -> List[PrebuiltModuleDep]:
        return list(self._prebuilt.values())

    def module_deps(self) -> List[ModuleDeps]:
        """Return every scanned module, dependencies before dependants."""
        ordered: List[str] = []
        visited: Set[str] = set()

        def visit(name: str) -> None:
            if name in visited:
                return
            visited.add(name)
            for dep in self._module_imports.get(name, []):
                visit(dep)
            ordered.append(name)

        for name in self._direct_imports:
            visit(name)
        for name in self._scanned:
            visit(name)

        result = []
        for name in ordered:
            scanned = self._scanned[name]
            result.append(
                ModuleDeps(
                    id=ModuleID(name, self.context_hash),
                    imported_by_main_file=name in self._direct_imports,
                    is_system=scanned.module.is_system,
                    clang_module_map_file=self.ci.file_manager.make_absolute_path(scanned.module.module_map_file),
                    file_deps=list(scanned.file_deps),
                    clang_module_deps=[ModuleID(dep, self.context_hash) for dep in self._module_imports.get(name, [])],
                )
            )
        return result


# =============================================================================
# Preprocessor
# =============================================================================


@dataclass
class _Conditional:
    active: bool
    taken: bool
    seen_else: bool = False


class Preprocessor:
    """Runs one translation unit (or one module) through the directive interpreter.

    Args:
        compiler_instance: Options and file access for the run
        dependency_consumer: Receives dependencies when the run completes
        include_actions: Receives file entry/exit events and probe results
        module_collector: Collector shared with a parent run
        main_buffer: (name, content) of an in-memory main file, used instead
                     of the command line's input
        module_scope: Name of the module being built by this run, if any
    """

    def __init__(
        self,
        compiler_instance: CompilerInstance,
        dependency_consumer: Optional[DependencyConsumer] = None,
        include_actions: Optional[PPIncludeActionsConsumer] = None,
        module_collector: Optional[ModuleDepCollector] = None,
        main_buffer: Optional[Tuple[str, bytes]] = None,
        module_scope: Optional[str] = None,
    ):
        self.ci = compiler_instance
        self.options = compiler_instance.options
        self.fm = compiler_instance.file_manager
        self.header_search = compiler_instance.header_search
        self.dependency_consumer = dependency_consumer
        self.include_actions = include_actions
        self.main_buffer = main_buffer
        self.module_scope = module_scope
        self.context_hash = compute_context_hash(self.options)
        self.collector = module_collector if module_collector is not None else ModuleDepCollector(compiler_instance, self.context_hash)

        self.macros: Dict[str, str] = {}
        self._function_macros: Set[str] = set()
        self._stack: List[SourceFile] = []
        self._include_counts: Dict[str, int] = {}
        self._once_files: Set[str] = set()
        self._import_files: Set[str] = set()
        self._pch_files: Set[str] = set()
        self._guards: Dict[str, Optional[str]] = {}
        self._included: Dict[str, FileEntry] = {}
        self._file_deps: List[str] = []
        self._file_dep_set: Set[str] = set()
        compiler_instance.preprocessor = self

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(self) -> None:
        """Preprocess the main file and report to the consumers.

        Raises:
            ArgumentError: If the command line does not name exactly one input
            FileAccessError: If a file cannot be read
            PreprocessorError: On missing headers, #error or unbalanced conditionals
            MissingModuleError: If an imported module cannot be found
        """
        if self.options.modules:
            self._load_module_maps()

        main = self._create_main_file()
        main_text = self._read(main)
        self._add_file_dependency(main)
        if self.options.include_pch:
            self._load_precompiled_header(self.options.include_pch)

        if self.include_actions is not None:
            self.include_actions.entered_include(main)
        self._stack.append(main)

        predefines = self._create_predefines_buffer()
        if self.include_actions is not None:
            self.include_actions.entered_include(predefines)
        self._stack.append(predefines)
        self._process(predefines, self._read(predefines))
        self._stack.pop()
        if self.include_actions is not None:
            self.include_actions.exited_include(main, predefines, 0)

        self._process(main, main_text)
        self._stack.pop()
        logger.debug("Preprocessed %s: %s files, %s dependencies", main.name, len(self._included), len(self._file_deps))
        self._finish()

    def get_included_files(self) -> List[FileEntry]:
        """Return every file the run included, including files from a precompiled header."""
        return list(self._included.values())

    def file_dependencies(self) -> List[str]:
        """Return absolute, dot-free dependency paths in first-seen order."""
        return list(self._file_deps)

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def _load_module_maps(self) -> None:
        module_map = self.ci.module_map
        for path in self.options.module_map_files:
            if not module_map.load_module_map_file(path):
                raise FileAccessError(f"Module map file '{path}' not found", path)
        for directory in self.header_search.existing_dirs():
            module_map.load_directory(directory.path, directory.characteristic != HeaderCharacteristic.USER)

    def _new_source_file(self, name: str, characteristic: HeaderCharacteristic, **kwargs) -> SourceFile:
        return SourceFile(file_id=self.fm.new_file_id(), name=name, characteristic=characteristic, **kwargs)

    def _create_main_file(self) -> SourceFile:
        if self.main_buffer is not None:
            name, content = self.main_buffer
            return self._new_source_file(name, HeaderCharacteristic.USER, buffer=content)
        inputs = self.options.input_files
        if not inputs:
            raise ArgumentError("No input file on the command line")
        if len(inputs) > 1:
            raise ArgumentError(f"Expected exactly one input file, got {len(inputs)}: {inputs}")
        if inputs[0] == "-":
            raise ArgumentError("Reading the input from stdin is not supported")
        entry = self.fm.require_file(inputs[0])
        self._record_included(entry)
        return self._new_source_file(entry.name, HeaderCharacteristic.USER, entry=entry)

    def _builtin_macros(self) -> List[Tuple[str, str]]:
        macros = [("__STDC__", "1"), ("__clang__", "1")]
        language = self.options.effective_language()
        std = (self.options.std or "").lower()
        version = re.sub(r"^(gnu|c)\+?\+?", "", std).replace("2a", "20").replace("2b", "23").replace("2x", "23")
        if self.options.is_cplusplus:
            macros.append(("__cplusplus", CPLUSPLUS_VERSIONS.get(version, CPLUSPLUS_VERSIONS["17"])))
        else:
            macros.append(("__STDC_VERSION__", C_VERSIONS.get(version, C_VERSIONS["17"])))
        if language.startswith("objective-c"):
            macros.append(("__OBJC__", "1"))
        if self.options.modules:
            macros.append(("__clang_modules__", "1"))
        return macros

    def _create_predefines_buffer(self) -> SourceFile:
        lines = [f"#define {name} {value}" for name, value in self._builtin_macros()]
        for action, value in self.options.macro_actions:
            if action == "define":
                name, sep, definition = value.partition("=")
                lines.append(f"#define {name} {definition if sep else '1'}")
            else:
                lines.append(f"#undef {value}")
        for path in self.options.forced_includes:
            lines.append(f'#include "{path}"')
        content = os.fsencode("\n".join(lines) + "\n")
        return self._new_source_file(PREDEFINES_BUFFER_NAME, HeaderCharacteristic.USER, buffer=content)

    def _load_precompiled_header(self, path: str) -> None:
        pch = read_precompiled_header(self.fm, path)
        self._add_file_dependency_path(path)
        for included in pch.included_files:
            entry = self.fm.get_file(included)
            if entry is None:
                raise FileAccessError(f"File '{included}' from precompiled header '{path}' not found", included)
            self._record_included(entry)
            self._pch_files.add(entry.uid)
            self._add_file_dependency_path(entry.name)
        self.macros.update(pch.macros)
        logger.debug("Loaded precompiled header %s (%s files)", path, len(pch.included_files))

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def _read(self, source: SourceFile) -> str:
        if source.entry is None:
            return (source.buffer or b"").decode("latin-1")
        text = self.fm.get_buffer(source.entry).decode("latin-1")
        if source.entry.uid not in self._guards:
            self._guards[source.entry.uid] = detect_include_guard(text)
        return text

    def _record_included(self, entry: FileEntry) -> None:
        self._included.setdefault(entry.uid, entry)

    def _add_file_dependency(self, source: SourceFile) -> None:
        if source.entry is None:
            return
        if source.characteristic != HeaderCharacteristic.USER and not self.ci.dependency_output_options.include_system_headers:
            return
        self._add_file_dependency_path(source.entry.name)

    def _add_file_dependency_path(self, path: str) -> None:
        absolute = self.fm.make_absolute_path(path)
        if absolute not in self._file_dep_set:
            self._file_dep_set.add(absolute)
            self._file_deps.append(absolute)

    def _finish(self) -> None:
        consumer = self.dependency_consumer
        if consumer is not None:
            consumer.handle_dependency_output_opts(self.ci.dependency_output_options)
            for path in self._file_deps:
                consumer.handle_file_dependency(path)
            for pmd in self.collector.prebuilt_module_deps():
                consumer.handle_prebuilt_module_dependency(pmd)
            for md in self.collector.module_deps():
                consumer.handle_module_dependency(md)
            consumer.handle_context_hash(self.context_hash)
        if self.include_actions is not None:
            self.include_actions.finalize(self.ci)

    # -------------------------------------------------------------------------
    # Directive processing
    # -------------------------------------------------------------------------

    def _error(self, source: SourceFile, text: str, offset: int, message: str) -> PreprocessorError:
        line = text.count("\n", 0, offset) + 1
        return PreprocessorError(f"{source.name}:{line}: {message}")

    def _process(self, source: SourceFile, text: str) -> None:
        conditions = [_Conditional(active=True, taken=True)]
        for offset, line in logical_lines(strip_comments(text)):
            stripped = line.lstrip()
            if not stripped.startswith("#"):
                if conditions[-1].active and self.options.modules:
                    match = _MODULE_IMPORT_RE.match(stripped)
                    if match:
                        self._import_module(match.group(1))
                continue

            hash_offset = offset + len(line) - len(stripped)
            match = _DIRECTIVE_RE.match(stripped)
            name = match.group(1) if match else None
            args = match.group(2).strip() if match else ""
            if name in CONDITIONAL_DIRECTIVES:
                self._handle_conditional(source, text, hash_offset, name, args, conditions)
            elif not conditions[-1].active or name is None:
                continue
            elif name in INCLUDE_DIRECTIVES:
                self._handle_include(source, text, hash_offset, name, args)
            elif name == "define":
                self._handle_define(args)
            elif name == "undef":
                self.macros.pop(args.split()[0] if args else "", None)
            elif name == "pragma":
                self._handle_pragma(source, args)
            elif name == "error":
                raise self._error(source, text, hash_offset, f"#error {args}")
            elif name == "warning":
                logger.warning("%s: #warning %s", source.name, args)
            else:
                logger.debug("%s: ignoring #%s", source.name, name)

        if len(conditions) > 1:
            raise PreprocessorError(f"{source.name}: unterminated conditional directive")

    def _handle_conditional(self, source: SourceFile, text: str, offset: int, name: str, args: str, conditions: List[_Conditional]) -> None:
        if name in ("if", "ifdef", "ifndef"):
            parent_active = conditions[-1].active
            if not parent_active:
                # Nothing inside an inactive region is evaluated
                conditions.append(_Conditional(active=False, taken=True))
                return
            result = self._evaluate_branch(source, text, offset, name, args)
            conditions.append(_Conditional(active=result, taken=result))
            return

        if len(conditions) == 1:
            raise self._error(source, text, offset, f"#{name} without #if")
        top = conditions[-1]
        if name == "endif":
            conditions.pop()
            return
        if top.seen_else:
            raise self._error(source, text, offset, f"#{name} after #else")
        if name == "else":
            top.active = not top.taken
            top.taken = True
            top.seen_else = True
            return
        # elif / elifdef / elifndef
        if top.taken:
            top.active = False
            return
        result = self._evaluate_branch(source, text, offset, name[2:], args)
        top.active = result
        top.taken = result

    def _evaluate_branch(self, source: SourceFile, text: str, offset: int, kind: str, args: str) -> bool:
        if kind in ("ifdef", "ifndef", "def", "ndef"):
            if not args:
                raise self._error(source, text, offset, f"macro name missing after #{kind}")
            defined = self._is_defined(args.split()[0])
            return defined if kind in ("ifdef", "def") else not defined
        return self._evaluate_condition(source, args)

    def _evaluate_condition(self, source: SourceFile, expr: str) -> bool:
        original = expr
        expr = _HAS_INCLUDE_RE.sub(lambda match: self._has_include(source, match.group(1), match.group(2)), expr)
        expr = _DEFINED_RE.sub(lambda match: "1" if self._is_defined(match.group(1) or match.group(2)) else "0", expr)
        expr = _HAS_BUILTIN_CHECK_RE.sub("0", expr)
        expr = self._expand_macros(expr)
        try:
            return evaluate_expression(expr) != 0
        except ValueError as e:
            logger.warning("%s: cannot evaluate '#if %s' (%s), treating it as false", source.name, original, e)
            return False

    def _is_defined(self, name: str) -> bool:
        return name in self.macros or name in BUILTIN_FEATURE_MACROS

    def _has_include(self, source: SourceFile, probe: str, argument: str) -> str:
        if not argument.startswith(('"', "<")):
            argument = self._expand_macros(argument).strip()
        match = _HEADER_NAME_RE.match(argument)
        found = False
        if match:
            filename = header_file_name(match.group(1) if match.group(1) is not None else match.group(2))
            start_index = self._include_next_start(source) if probe == "__has_include_next" else None
            found = self.header_search.lookup(filename, match.group(2) is not None, source, start_index) is not None
        if self.include_actions is not None:
            self.include_actions.handle_has_include_check(found)
        return "1" if found else "0"

    def _expand_macros(self, expr: str) -> str:
        for _ in range(32):
            expanded = _FUNCTION_CALL_RE.sub(lambda m: "0" if m.group(1) in self._function_macros else m.group(0), expr)
            expanded = _IDENTIFIER_RE.sub(self._replace_identifier, expanded)
            if expanded == expr:
                break
            expr = expanded
        return _IDENTIFIER_RE.sub(lambda m: "1" if m.group(0) == "true" else "0", expr)

    def _replace_identifier(self, match: "re.Match[str]") -> str:
        name = match.group(0)
        if name in self.macros and name not in self._function_macros:
            return f"({self.macros[name]})" if self.macros[name] else ""
        return name

    def _handle_define(self, args: str) -> None:
        match = _MACRO_DEFINITION_RE.match(args)
        if not match:
            return
        name, params, value = match.groups()
        self.macros[name] = value.strip()
        if params is not None:
            self._function_macros.add(name)
        else:
            self._function_macros.discard(name)

    def _handle_pragma(self, source: SourceFile, args: str) -> None:
        if args == "once":
            if source.entry is not None:
                self._once_files.add(source.entry.uid)
            return
        match = _PRAGMA_IMPORT_RE.match(args)
        if match and self.options.modules:
            self._import_module(match.group(1))

    # -------------------------------------------------------------------------
    # Inclusion
    # -------------------------------------------------------------------------

    def _include_next_start(self, source: SourceFile) -> Optional[int]:
        if source.dir_index is None:
            return None
        return source.dir_index + 1

    def _handle_include(self, source: SourceFile, text: str, offset: int, kind: str, args: str) -> None:
        spec = args if args.startswith(('"', "<")) else self._expand_text_macros(args)
        match = _HEADER_NAME_RE.match(spec)
        if not match:
            raise self._error(source, text, offset, f"#{kind} expects \"FILENAME\" or <FILENAME>")
        filename = match.group(1) if match.group(1) is not None else match.group(2)
        is_angled = match.group(2) is not None
        if not filename:
            raise self._error(source, text, offset, "empty filename")
        filename = header_file_name(filename)

        start_index = self._include_next_start(source) if kind == "include_next" else None
        found = self.header_search.lookup(filename, is_angled, source, start_index)
        if found is None:
            raise self._error(source, text, offset, f"'{filename}' file not found")
        entry, characteristic, dir_index = found

        if self.options.modules and self._include_as_module_import(entry, characteristic):
            return

        child = self._new_source_file(entry.name, characteristic, entry=entry, dir_index=dir_index)
        if not self._should_enter_file(entry, kind == "import"):
            self._add_file_dependency(child)
            return
        self._enter_file(child, source, offset)

    def _expand_text_macros(self, text: str) -> str:
        for _ in range(32):
            expanded = _IDENTIFIER_RE.sub(lambda m: self.macros.get(m.group(0), m.group(0)), text).strip()
            if expanded == text:
                break
            text = expanded
        return text

    def _should_enter_file(self, entry: FileEntry, is_import: bool) -> bool:
        uid = entry.uid
        already_included = self._include_counts.get(uid, 0) > 0
        if is_import:
            self._import_files.add(uid)
            if already_included:
                return False
        elif uid in self._import_files and already_included:
            return False
        if uid in self._once_files or uid in self._pch_files:
            return False
        guard = self._guards.get(uid)
        if guard is not None and guard in self.macros:
            logger.debug("Skipping %s: guard %s is defined", entry.name, guard)
            return False
        return True

    def _enter_file(self, child: SourceFile, parent: SourceFile, offset: int) -> None:
        if len(self._stack) >= MAX_INCLUDE_DEPTH:
            raise PreprocessorError(f"{parent.name}: #include nested too deeply ({child.name})")
        text = self._read(child)
        self._add_file_dependency(child)
        self._record_included(child.entry)
        self._include_counts[child.entry.uid] = self._include_counts.get(child.entry.uid, 0) + 1

        if self.include_actions is not None:
            self.include_actions.entered_include(child)
        self._stack.append(child)
        self._process(child, text)
        self._stack.pop()
        if self.include_actions is not None:
            self.include_actions.exited_include(parent, child, offset)

    # -------------------------------------------------------------------------
    # Modules
    # -------------------------------------------------------------------------

    def _include_as_module_import(self, entry: FileEntry, characteristic: HeaderCharacteristic) -> bool:
        module_map = self.ci.module_map
        module_map.load_directory(os.path.dirname(entry.name) or ".", characteristic != HeaderCharacteristic.USER)
        module = module_map.find_module_for_header(entry)
        if module is None:
            return False
        if module.top_level.name == self.options.module_name:
            return False
        self._import_module(module.name)
        return True

    def _import_module(self, name: str) -> None:
        prebuilt = self.collector.import_module(name, self.module_scope)
        if prebuilt is not None and self.module_scope is None:
            if self.fm.get_file(prebuilt.pcm_file) is not None:
                self._add_file_dependency_path(prebuilt.pcm_file)


def build_precompiled_header(compiler_instance: CompilerInstance, output_path: str) -> PrecompiledHeader:
    """Preprocess a header and write the precompiled header artifact for it.

    Returns:
        The written artifact
    """
    preprocessor = Preprocessor(compiler_instance)
    preprocessor.run()
    fm = compiler_instance.file_manager
    included = [fm.make_absolute_path(entry.name) for entry in preprocessor.get_included_files()]
    write_precompiled_header(output_path, included, preprocessor.macros)
    return PrecompiledHeader(path=output_path, included_files=included, macros=dict(preprocessor.macros))
