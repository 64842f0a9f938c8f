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
"""Compiler command line handling for dependency scanning.

Parses the preprocessing-relevant subset of a clang/gcc command line into
CompilerOptions, reads compile_commands.json, computes the context hash and
rewrites translation unit command lines for explicit module builds.
"""

import os
import json
import shlex
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from depscan.constants import (
    ArgumentError,
    BUILD_SESSION_FILE_FLAG,
    CompilationDatabaseError,
    CONTEXT_HASH_LENGTH,
    DEFAULT_DEP_TARGET,
    HASH_NAME,
    IMPLICIT_MODULE_CACHE_OPTIONS,
    NO_IMPLICIT_MODULE_FLAGS,
    VALIDATE_ONCE_PER_BUILD_SESSION,
)
from depscan.dependency_file import DependencyOutputOptions, quote_target

logger = logging.getLogger(__name__)

__all__ = [
    "CompileCommand",
    "CompilerOptions",
    "compute_context_hash",
    "deduce_dep_target",
    "load_compilation_database",
    "make_dependency_output_options",
    "make_tu_command_line_without_paths",
    "parse_compiler_options",
    "tokenize_command",
]

# Flags whose value may be joined ("-Idir") or separate ("-I dir")
JOINABLE_FLAGS = ("-I", "-D", "-U", "-o", "-x", "-F")

# Flags that always take the next argument
SEPARATE_ARGUMENT_FLAGS = (
    "-iquote",
    "-isystem",
    "-idirafter",
    "-internal-externc-isystem",
    "-include",
    "-include-pch",
    "-isysroot",
    "--sysroot",
    "-target",
    "-MT",
    "-MQ",
    "-MF",
)

# Flags with a separate argument that does not matter for preprocessing
IGNORED_ARGUMENT_FLAGS = ("-Xclang", "-Xpreprocessor", "-Xassembler", "-Xlinker", "-arch", "-MJ", "-iprefix", "-iwithprefix", "-L", "-framework")

# Dependency generation flags without arguments
DEPENDENCY_FLAGS = ("-M", "-MM", "-MD", "-MMD", "-MP", "-MG", "-MV")

# Language selected by input file extension when there is no -x
LANGUAGE_BY_EXTENSION = {
    ".c": "c",
    ".h": "c-header",
    ".i": "c",
    ".m": "objective-c",
    ".mm": "objective-c++",
    ".cc": "c++",
    ".cp": "c++",
    ".cpp": "c++",
    ".cxx": "c++",
    ".c++": "c++",
    ".C": "c++",
    ".hh": "c++-header",
    ".hpp": "c++-header",
    ".hxx": "c++-header",
}


@dataclass
class CompileCommand:
    """One entry of a compilation database.

    Attributes:
        directory: Working directory of the compilation
        file: Main source file as written in the database
        arguments: Full command line, compiler first
        output: Output file if the database records one
    """

    directory: str
    file: str
    arguments: List[str]
    output: Optional[str] = None

    @property
    def source_path(self) -> str:
        if os.path.isabs(self.file):
            return self.file
        return os.path.normpath(os.path.join(self.directory, self.file))


@dataclass
class CompilerOptions:
    """Preprocessing-relevant options extracted from a command line."""

    program: str
    input_files: List[str] = field(default_factory=list)
    output_file: Optional[str] = None
    language: Optional[str] = None
    std: Optional[str] = None
    target: Optional[str] = None
    sysroot: Optional[str] = None
    # ("define", "X=1") and ("undef", "X") in command line order
    macro_actions: List[Tuple[str, str]] = field(default_factory=list)
    forced_includes: List[str] = field(default_factory=list)
    include_pch: Optional[str] = None
    quote_dirs: List[str] = field(default_factory=list)
    user_dirs: List[str] = field(default_factory=list)
    system_dirs: List[str] = field(default_factory=list)
    after_dirs: List[str] = field(default_factory=list)
    externc_system_dirs: List[str] = field(default_factory=list)
    no_sanitize_files: List[str] = field(default_factory=list)
    modules: bool = False
    module_map_files: List[str] = field(default_factory=list)
    module_files: Dict[str, str] = field(default_factory=dict)
    prebuilt_module_paths: List[str] = field(default_factory=list)
    module_name: Optional[str] = None
    dep_targets: List[str] = field(default_factory=list)
    dependency_file: Optional[str] = None
    phony_targets: bool = False
    system_header_deps: bool = True
    nmake_deps: bool = False

    @property
    def is_cplusplus(self) -> bool:
        return "c++" in self.effective_language()

    def effective_language(self) -> str:
        """Return -x, or the language implied by the first input's extension."""
        if self.language:
            return self.language
        if self.input_files:
            ext = os.path.splitext(self.input_files[0])[1]
            return LANGUAGE_BY_EXTENSION.get(ext, LANGUAGE_BY_EXTENSION.get(ext.lower(), "c"))
        return "c"


def tokenize_command(command: str) -> List[str]:
    """Split a shell-quoted command string into arguments.

    Raises:
        ArgumentError: If the command is empty or has unbalanced quotes
    """
    if not command or not command.strip():
        raise ArgumentError("Empty or whitespace-only compile command")
    try:
        return shlex.split(command)
    except ValueError as e:
        raise ArgumentError(f"Failed to parse compile command: {e}") from e


def parse_compiler_options(command_line: List[str]) -> CompilerOptions:
    """Extract CompilerOptions from a full command line (compiler first).

    Unknown flags are ignored; anything that is not a flag or a flag's
    argument is an input file.

    Raises:
        ArgumentError: If the command line is empty or a flag lacks its argument
    """
    if not command_line:
        raise ArgumentError("Empty command line")

    options = CompilerOptions(program=command_line[0])
    args = command_line[1:]
    i = 0
    while i < len(args):
        arg = args[i]

        def take_value() -> str:
            if i + 1 >= len(args):
                raise ArgumentError(f"Missing argument for '{arg}'")
            return args[i + 1]

        if arg in SEPARATE_ARGUMENT_FLAGS or arg in JOINABLE_FLAGS:
            _apply_flag(options, arg, take_value())
            i += 2
            continue
        if arg in IGNORED_ARGUMENT_FLAGS:
            take_value()
            i += 2
            continue

        joined = next((flag for flag in JOINABLE_FLAGS if arg.startswith(flag) and len(arg) > len(flag)), None)
        if joined is not None:
            _apply_flag(options, joined, arg[len(joined):])
        elif arg == "-":
            options.input_files.append(arg)
        elif arg.startswith("-"):
            _apply_option(options, arg)
        elif arg.startswith("@"):
            logger.warning("Ignoring response file argument: %s", arg)
        else:
            options.input_files.append(arg)
        i += 1

    logger.debug("Parsed %s arguments, inputs: %s", len(args), options.input_files)
    return options


def _apply_flag(options: CompilerOptions, flag: str, value: str) -> None:
    if flag == "-I":
        options.user_dirs.append(value)
    elif flag == "-iquote":
        options.quote_dirs.append(value)
    elif flag == "-isystem":
        options.system_dirs.append(value)
    elif flag == "-idirafter":
        options.after_dirs.append(value)
    elif flag == "-internal-externc-isystem":
        options.externc_system_dirs.append(value)
    elif flag == "-F":
        logger.debug("Framework search paths are not searched: %s", value)
    elif flag == "-D":
        options.macro_actions.append(("define", value))
    elif flag == "-U":
        options.macro_actions.append(("undef", value))
    elif flag == "-include":
        options.forced_includes.append(value)
    elif flag == "-include-pch":
        options.include_pch = value
    elif flag in ("-isysroot", "--sysroot"):
        options.sysroot = value
    elif flag == "-target":
        options.target = value
    elif flag == "-o":
        options.output_file = value
    elif flag == "-x":
        options.language = value
    elif flag == "-MT":
        options.dep_targets.append(value)
    elif flag == "-MQ":
        options.dep_targets.append(quote_target(value))
    elif flag == "-MF":
        options.dependency_file = value


def _apply_option(options: CompilerOptions, arg: str) -> None:
    name, sep, value = arg.partition("=")
    if sep:
        if name == "--sysroot":
            options.sysroot = value
        elif name == "--target":
            options.target = value
        elif name == "-std":
            options.std = value
        elif name == "-fmodule-map-file":
            options.module_map_files.append(value)
        elif name == "-fmodule-file":
            module_name, has_name, path = value.partition("=")
            if has_name:
                options.module_files[module_name] = path
            else:
                options.module_files[os.path.splitext(os.path.basename(value))[0]] = value
        elif name == "-fprebuilt-module-path":
            options.prebuilt_module_paths.append(value)
        elif name == "-fmodule-name":
            options.module_name = value
        elif name in ("-fsanitize-ignorelist", "-fsanitize-blacklist"):
            options.no_sanitize_files.append(value)
        return

    if arg in ("-fmodules", "-fcxx-modules"):
        options.modules = True
    elif arg == "-fno-modules":
        options.modules = False
    elif arg in DEPENDENCY_FLAGS:
        if arg in ("-MM", "-MMD"):
            options.system_header_deps = False
        elif arg == "-MP":
            options.phony_targets = True
        elif arg == "-MV":
            options.nmake_deps = True


def deduce_dep_target(output_file: Optional[str], input_files: List[str]) -> str:
    """Pick the make target used when the command line names none.

    The -o output wins; otherwise the first input with its extension replaced
    by '.o'; otherwise a fixed placeholder.
    """
    if output_file and output_file != "-":
        return output_file
    if not input_files or input_files[0] == "-":
        return DEFAULT_DEP_TARGET
    return os.path.splitext(input_files[0])[0] + ".o"


def make_dependency_output_options(options: CompilerOptions) -> DependencyOutputOptions:
    targets = list(options.dep_targets) or [deduce_dep_target(options.output_file, options.input_files)]
    return DependencyOutputOptions(
        targets=targets,
        output_file=options.dependency_file,
        include_system_headers=options.system_header_deps,
        use_phony_targets=options.phony_targets,
        nmake_format=options.nmake_deps,
    )


def compute_context_hash(options: CompilerOptions) -> str:
    """Hash the options that change how headers and modules are interpreted.

    Returns:
        Upper-case hex string of CONTEXT_HASH_LENGTH digits
    """
    relevant = {
        "language": options.effective_language(),
        "std": options.std,
        "target": options.target,
        "sysroot": options.sysroot,
        "macros": options.macro_actions,
        "quote_dirs": options.quote_dirs,
        "user_dirs": options.user_dirs,
        "system_dirs": options.system_dirs,
        "after_dirs": options.after_dirs,
        "externc_system_dirs": options.externc_system_dirs,
        "modules": options.modules,
    }
    digest = hashlib.new(HASH_NAME, json.dumps(relevant, sort_keys=True).encode("utf-8")).hexdigest()
    return digest[:CONTEXT_HASH_LENGTH].upper()


def _is_implicit_module_only_flag(arg: str) -> bool:
    if arg.startswith("-fmodules-"):
        rest = arg[len("-fmodules-"):]
        return rest.startswith(IMPLICIT_MODULE_CACHE_OPTIONS) or rest == VALIDATE_ONCE_PER_BUILD_SESSION
    return arg.startswith(BUILD_SESSION_FILE_FLAG)


def make_tu_command_line_without_paths(original_args: List[str]) -> List[str]:
    """Rewrite translation unit arguments for an explicit module build.

    Args:
        original_args: Command line arguments without the program name

    Returns:
        A new list: the arguments with implicit module discovery disabled and
        the implicit module cache options removed
    """
    args = list(original_args)
    args.extend(NO_IMPLICIT_MODULE_FLAGS)
    return [arg for arg in args if not _is_implicit_module_only_flag(arg)]


def load_compilation_database(path: str) -> List[CompileCommand]:
    """Load compile_commands.json.

    Entries may use either "arguments" or a shell-quoted "command".

    Raises:
        CompilationDatabaseError: If the file is missing or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)
    except FileNotFoundError as e:
        raise CompilationDatabaseError(f"Compilation database not found: {path}") from e
    except (json.JSONDecodeError, OSError) as e:
        raise CompilationDatabaseError(f"Failed to read compilation database {path}: {e}") from e

    if not isinstance(entries, list):
        raise CompilationDatabaseError(f"Compilation database {path} is not a JSON array")

    commands = []
    for index, entry in enumerate(entries):
        try:
            directory = entry["directory"]
            file = entry["file"]
            if "arguments" in entry:
                arguments = list(entry["arguments"])
            else:
                arguments = tokenize_command(entry["command"])
        except (KeyError, TypeError, ArgumentError) as e:
            raise CompilationDatabaseError(f"Invalid entry {index} in {path}: {e}") from e
        commands.append(CompileCommand(directory=directory, file=file, arguments=arguments, output=entry.get("output")))

    logger.info("Loaded %s compile commands from %s", len(commands), path)
    return commands
