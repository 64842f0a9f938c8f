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
"""Make-style dependency file generation.

Output matches what clang and gcc write for -MD: the targets, a colon and the
prerequisites in first-seen order, wrapped with backslash continuations so no
line grows past DEPFILE_MAX_COLUMNS where it can be avoided.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from depscan.constants import DEPFILE_MAX_COLUMNS, STDIN_DEPENDENCY

logger = logging.getLogger(__name__)

# Characters that force quoting of a path in NMake output
NMAKE_SPECIAL_CHARS = " #${}^!"


@dataclass
class DependencyOutputOptions:
    """How the dependency file should be written.

    Attributes:
        targets: Make targets, already quoted as needed
        output_file: Path given with -MF, if any
        include_system_headers: Whether system headers are listed as prerequisites
        use_phony_targets: Emit an empty rule per prerequisite (-MP)
        nmake_format: Quote paths for NMake instead of escaping them (-MV)
    """

    targets: List[str] = field(default_factory=list)
    output_file: Optional[str] = None
    include_system_headers: bool = True
    use_phony_targets: bool = False
    nmake_format: bool = False


def quote_target(target: str) -> str:
    """Escape a target name for make (-MQ)."""
    result = []
    for i, ch in enumerate(target):
        if ch in (" ", "\t"):
            j = i - 1
            while j >= 0 and target[j] == "\\":
                result.append("\\")
                j -= 1
            result.append("\\")
        elif ch == "$":
            result.append("$")
        elif ch == "#":
            result.append("\\")
        result.append(ch)
    return "".join(result)


def format_filename(filename: str, nmake_format: bool = False) -> str:
    """Escape a prerequisite path the way make (or NMake) expects."""
    native = filename.replace("/", os.sep)
    if nmake_format:
        if any(ch in native for ch in NMAKE_SPECIAL_CHARS):
            return f'"{native}"'
        return native

    result = []
    for i, ch in enumerate(native):
        if ch == "#":
            result.append("\\")
        elif ch == " ":
            result.append("\\")
            j = i
            while j > 0 and native[j - 1] == "\\":
                result.append("\\")
                j -= 1
        elif ch == "$":
            result.append("$")
        result.append(ch)
    return "".join(result)


class DependencyFileGenerator:
    """Collects prerequisites and renders a dependency file.

    Args:
        options: Targets and formatting switches
    """

    def __init__(self, options: DependencyOutputOptions):
        self.options = options
        self._dependencies: List[str] = []
        self._seen: Set[str] = set()
        # Index of the main input among the dependencies; it gets no phony rule
        self.input_file_index = 0

    def add_dependency(self, filename: str) -> bool:
        """Add a prerequisite; returns False if it was already present."""
        if filename in self._seen:
            return False
        self._seen.add(filename)
        self._dependencies.append(filename)
        return True

    def get_dependencies(self) -> List[str]:
        return list(self._dependencies)

    def output_dependency_file(self) -> str:
        """Render the dependency file text."""
        out: List[str] = []
        columns = 0

        for target in self.options.targets:
            n = len(target)
            if columns == 0:
                columns += n
            elif columns + n + 2 > DEPFILE_MAX_COLUMNS:
                columns = n + 2
                out.append(" \\\n  ")
            else:
                columns += n + 1
                out.append(" ")
            out.append(target)

        out.append(":")
        columns += 1

        files = self._dependencies
        for filename in files:
            if filename == STDIN_DEPENDENCY:
                continue
            # Leave room for a trailing " \" in case the next file wraps
            n = len(filename)
            if columns + (n + 1) + 2 > DEPFILE_MAX_COLUMNS:
                out.append(" \\\n ")
                columns = 2
            out.append(" ")
            out.append(format_filename(filename, self.options.nmake_format))
            columns += n + 1
        out.append("\n")

        if self.options.use_phony_targets and files:
            for index, filename in enumerate(files):
                if index == self.input_file_index:
                    continue
                out.append("\n")
                out.append(format_filename(filename, self.options.nmake_format))
                out.append(":\n")

        logger.debug("Rendered dependency file for %s with %s prerequisites", self.options.targets, len(files))
        return "".join(out)
