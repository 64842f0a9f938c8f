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
"""Reader for clang module map files (module.modulemap).

Only the declarations that decide which headers belong to which module are
interpreted. Everything else a module map may contain (config_macros,
conflict, link, inferred submodules) is parsed and skipped.
"""

import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from depscan.constants import MODULE_MAP_FILE, PreprocessorError
from depscan.file_manager import FileEntry, FileManager

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r'\s+|//[^\n]*|/\*.*?\*/|"(?:\\.|[^"\\])*"|[A-Za-z_][A-Za-z0-9_]*|\d+|[{}\[\].,*!]|.', re.S)

HEADER_NORMAL = "normal"
HEADER_TEXTUAL = "textual"
HEADER_EXCLUDED = "excluded"


@dataclass
class Module:
    """A module or submodule declared in a module map.

    Attributes:
        name: Full dotted name (e.g. 'Foo.Bar' for a submodule)
        module_map_file: Module map file that declares the module
        directory: Directory header paths are relative to
        is_system: Declared with [system] or found in a system directory
    """

    name: str
    module_map_file: str
    directory: str
    is_system: bool = False
    is_framework: bool = False
    is_explicit: bool = False
    parent: Optional["Module"] = None
    headers: List[str] = field(default_factory=list)
    textual_headers: List[str] = field(default_factory=list)
    excluded_headers: List[str] = field(default_factory=list)
    umbrella_header: Optional[str] = None
    umbrella_dir: Optional[str] = None
    submodules: List["Module"] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    uses: List[str] = field(default_factory=list)
    requires: List[str] = field(default_factory=list)

    @property
    def top_level(self) -> "Module":
        module = self
        while module.parent is not None:
            module = module.parent
        return module

    def find_submodule(self, name: str) -> Optional["Module"]:
        return next((sub for sub in self.submodules if sub.name.rsplit(".", 1)[-1] == name), None)

    def iter_modules(self) -> Iterator["Module"]:
        """Yield this module and all of its submodules, parents first."""
        yield self
        for sub in self.submodules:
            yield from sub.iter_modules()

    def all_headers(self) -> List[str]:
        """Return the umbrella and normal headers of the module tree in declaration order."""
        headers: List[str] = []
        for module in self.iter_modules():
            if module.umbrella_header is not None:
                headers.append(module.umbrella_header)
            headers.extend(module.headers)
        return headers


class _Parser:
    """Recursive descent parser over module map tokens."""

    def __init__(self, text: str, path: str, directory: str, is_system: bool):
        self.path = path
        self.directory = directory
        self.is_system = is_system
        self.tokens: List[Tuple[str, int]] = []
        line = 1
        for match in _TOKEN_RE.finditer(text):
            token = match.group(0)
            if not token.isspace() and not token.startswith("//") and not token.startswith("/*"):
                self.tokens.append((token, line))
            line += token.count("\n")
        self.pos = 0
        self.extern_maps: List[str] = []

    def error(self, message: str) -> PreprocessorError:
        line = self.tokens[self.pos][1] if self.pos < len(self.tokens) else (self.tokens[-1][1] if self.tokens else 1)
        return PreprocessorError(f"{self.path}:{line}: {message}")

    def peek(self, ahead: int = 0) -> Optional[str]:
        index = self.pos + ahead
        return self.tokens[index][0] if index < len(self.tokens) else None

    def next(self) -> str:
        token = self.peek()
        if token is None:
            raise self.error("unexpected end of module map")
        self.pos += 1
        return token

    def expect(self, expected: str) -> None:
        token = self.next()
        if token != expected:
            self.pos -= 1
            raise self.error(f"expected '{expected}', found '{token}'")

    def string(self) -> str:
        token = self.next()
        if not token.startswith('"'):
            self.pos -= 1
            raise self.error(f"expected string literal, found '{token}'")
        return token[1:-1].replace('\\"', '"').replace("\\\\", "\\")

    def identifier(self) -> str:
        token = self.next()
        if not re.match(r"[A-Za-z_]\w*$", token):
            self.pos -= 1
            raise self.error(f"expected identifier, found '{token}'")
        return token

    def module_id(self) -> str:
        parts = [self.identifier()]
        while self.peek() == ".":
            self.next()
            parts.append(self.identifier())
        return ".".join(parts)

    def parse(self) -> List[Module]:
        modules = []
        while self.peek() is not None:
            if self.peek() == "extern":
                self.next()
                self.expect("module")
                self.module_id()
                self.extern_maps.append(os.path.join(self.directory, self.string()))
                continue
            modules.append(self.module_declaration(None))
        return modules

    def attributes(self, module: Module) -> None:
        while self.peek() == "[":
            self.next()
            attribute = self.identifier()
            self.expect("]")
            if attribute == "system":
                module.is_system = True

    def module_declaration(self, parent: Optional[Module]) -> Module:
        is_explicit = is_framework = False
        while self.peek() in ("explicit", "framework"):
            if self.next() == "explicit":
                is_explicit = True
            else:
                is_framework = True
        self.expect("module")

        if self.peek() == "*":
            # Inferred submodules: 'module * { export * }'
            self.next()
            self.skip_block()
            return Module(name="*", module_map_file=self.path, directory=self.directory, parent=parent)

        local_name = self.module_id()
        name = f"{parent.name}.{local_name}" if parent is not None else local_name
        module = Module(
            name=name,
            module_map_file=self.path,
            directory=self.directory,
            is_system=self.is_system or (parent is not None and parent.is_system),
            is_framework=is_framework,
            is_explicit=is_explicit,
            parent=parent,
        )
        self.attributes(module)
        self.expect("{")
        while self.peek() != "}":
            if self.peek() is None:
                raise self.error(f"expected '}}' to close module '{name}'")
            self.member(module)
        self.expect("}")
        return module

    def member(self, module: Module) -> None:
        token = self.peek()
        if token in ("explicit", "framework", "module"):
            submodule = self.module_declaration(module)
            if submodule.name != "*":
                module.submodules.append(submodule)
        elif token == "requires":
            self.next()
            module.requires.append(self.feature())
            while self.peek() == ",":
                self.next()
                module.requires.append(self.feature())
        elif token in ("private", "textual", "header", "exclude"):
            self.header_declaration(module)
        elif token == "umbrella":
            self.next()
            if self.peek() == "header":
                self.next()
                module.umbrella_header = os.path.join(self.directory, self.string())
            else:
                module.umbrella_dir = os.path.join(self.directory, self.string())
        elif token == "export":
            self.next()
            module.exports.append(self.wildcard_module_id())
        elif token == "export_as":
            self.next()
            self.identifier()
        elif token == "use":
            self.next()
            module.uses.append(self.module_id())
        elif token == "link":
            self.next()
            if self.peek() == "framework":
                self.next()
            self.string()
        elif token == "config_macros":
            self.next()
            self.attributes(module)
            if self.peek() not in (None, "}") and re.match(r"[A-Za-z_]", self.peek() or ""):
                self.identifier()
                while self.peek() == ",":
                    self.next()
                    self.identifier()
        elif token == "conflict":
            self.next()
            self.module_id()
            self.expect(",")
            self.string()
        else:
            raise self.error(f"unexpected '{token}' in module '{module.name}'")

    def feature(self) -> str:
        negated = ""
        if self.peek() == "!":
            self.next()
            negated = "!"
        return negated + self.identifier()

    def wildcard_module_id(self) -> str:
        if self.peek() == "*":
            self.next()
            return "*"
        parts = [self.identifier()]
        while self.peek() == ".":
            self.next()
            if self.peek() == "*":
                self.next()
                parts.append("*")
                break
            parts.append(self.identifier())
        return ".".join(parts)

    def header_declaration(self, module: Module) -> None:
        kind = HEADER_NORMAL
        while self.peek() in ("private", "textual", "exclude"):
            modifier = self.next()
            if modifier == "textual":
                kind = HEADER_TEXTUAL
            elif modifier == "exclude":
                kind = HEADER_EXCLUDED
        self.expect("header")
        path = os.path.join(self.directory, self.string())
        if self.peek() == "{":
            # Header attributes such as { size 42 mtime 1234 }
            self.skip_block()
        if kind == HEADER_TEXTUAL:
            module.textual_headers.append(path)
        elif kind == HEADER_EXCLUDED:
            module.excluded_headers.append(path)
        else:
            module.headers.append(path)

    def skip_block(self) -> None:
        self.expect("{")
        depth = 1
        while depth:
            token = self.next()
            if token == "{":
                depth += 1
            elif token == "}":
                depth -= 1


def parse_module_map(text: str, path: str, is_system: bool = False) -> Tuple[List[Module], List[str]]:
    """Parse module map text.

    Returns:
        (top-level modules, paths of module maps named by 'extern module')

    Raises:
        PreprocessorError: On syntax errors
    """
    parser = _Parser(text, path, os.path.dirname(path), is_system)
    return parser.parse(), parser.extern_maps


class ModuleMap:
    """All modules known to one preprocessing run.

    Module map files are read through the file manager, so they are recorded
    as accessed files like any header.

    Args:
        file_manager: File manager of the run
    """

    def __init__(self, file_manager: FileManager):
        self.fm = file_manager
        self._modules: Dict[str, Module] = {}
        self._loaded: Set[str] = set()
        self._probed_dirs: Set[str] = set()
        self._header_owners: Dict[str, Tuple[Module, str]] = {}

    def load_module_map_file(self, path: str, is_system: bool = False) -> bool:
        """Parse a module map file once.

        Returns:
            True if the file exists

        Raises:
            PreprocessorError: If the module map is malformed
        """
        entry = self.fm.get_file(path)
        if entry is None:
            return False
        if entry.uid in self._loaded:
            return True
        self._loaded.add(entry.uid)

        text = os.fsdecode(self.fm.get_buffer(entry))
        modules, extern_maps = parse_module_map(text, path, is_system)
        for module in modules:
            existing = self._modules.get(module.name)
            if existing is not None:
                logger.warning("Ignoring redefinition of module '%s' in %s (first defined in %s)", module.name, path, existing.module_map_file)
                continue
            self._modules[module.name] = module
            self._index_headers(module)
        for extern_path in extern_maps:
            self.load_module_map_file(extern_path, is_system)
        logger.debug("Loaded module map %s: %s", path, [module.name for module in modules])
        return True

    def load_directory(self, directory: str, is_system: bool = False) -> bool:
        """Load <directory>/module.modulemap if present."""
        key = self.fm.make_absolute_path(directory)
        if key in self._probed_dirs:
            return False
        self._probed_dirs.add(key)
        return self.load_module_map_file(os.path.join(directory, MODULE_MAP_FILE), is_system)

    def _index_headers(self, module: Module) -> None:
        for sub in module.iter_modules():
            declared = [(path, HEADER_NORMAL) for path in ([sub.umbrella_header] if sub.umbrella_header else []) + sub.headers]
            declared += [(path, HEADER_TEXTUAL) for path in sub.textual_headers]
            declared += [(path, HEADER_EXCLUDED) for path in sub.excluded_headers]
            for path, kind in declared:
                entry = self.fm.get_file(path)
                if entry is None:
                    if kind != HEADER_EXCLUDED:
                        logger.warning("Header '%s' of module '%s' not found", path, sub.name)
                    continue
                self._header_owners.setdefault(entry.uid, (sub, kind))

    def find_module(self, name: str) -> Optional[Module]:
        """Look up a module by (possibly dotted) name."""
        top, _, rest = name.partition(".")
        module = self._modules.get(top)
        for part in rest.split(".") if rest else []:
            if module is None:
                return None
            module = module.find_submodule(part)
        return module

    def find_module_for_header(self, entry: FileEntry) -> Optional[Module]:
        """Return the module that owns a header, unless it is textual or excluded."""
        owner = self._header_owners.get(entry.uid)
        if owner is None or owner[1] != HEADER_NORMAL:
            return None
        return owner[0]

    def modules(self) -> List[Module]:
        return list(self._modules.values())
