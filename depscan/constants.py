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
"""Shared constants for the depscan tools.

This module provides centralized constants used across the scanner, the object
store and the command line tool, together with the exception hierarchy every
depscan module raises.
"""

# =============================================================================
# Exit Codes
# =============================================================================

EXIT_SUCCESS = 0
EXIT_INVALID_ARGS = 1
EXIT_RUNTIME_ERROR = 2
EXIT_SCAN_FAILED = 3
EXIT_KEYBOARD_INTERRUPT = 130

# =============================================================================
# Content Addressing
# =============================================================================

HASH_NAME = "sha256"  # Hash algorithm used for every content reference
OBJECTS_DIR = "objects"  # Object directory inside an on-disk store
CONTEXT_HASH_LENGTH = 16  # Hex digits kept from the context hash digest

# =============================================================================
# Cache Constants
# =============================================================================

CACHE_DIR = ".depscan_cache"  # Default on-disk object store location (relative to cwd)

# =============================================================================
# Preprocessor Constants
# =============================================================================

PREDEFINES_BUFFER_NAME = "<built-in>"  # Name of the synthetic predefines buffer
MODULE_IMPORT_BUFFER_NAME = "<module-import>"  # Main buffer used when scanning a named module
MODULE_MAP_FILE = "module.modulemap"  # Module map filename searched next to include dirs
PCH_FORMAT = "depscan-pch"  # Format tag of precompiled header artifacts
SDK_SETTINGS_FILE = "SDKSettings.json"  # Recorded from the sysroot when present
MAX_INCLUDE_DEPTH = 200  # Same default nesting limit as clang

# =============================================================================
# Dependency File Constants
# =============================================================================

DEPFILE_MAX_COLUMNS = 75  # Line width used when wrapping dependency files
STDIN_DEPENDENCY = "<stdin>"  # Never printed as a prerequisite
DEFAULT_DEP_TARGET = "clang-scan-deps\\ dependency"  # Target used when there is no input

# =============================================================================
# Command Line Constants
# =============================================================================

NO_IMPLICIT_MODULE_FLAGS = ("-fno-implicit-modules", "-fno-implicit-module-maps")
MODULE_FILE_FLAG = "-fmodule-file="

# Implicit module cache options that are meaningless for explicit builds
# (spelled without the "-fmodules-" prefix)
IMPLICIT_MODULE_CACHE_OPTIONS = ("cache-path=", "prune-interval=", "prune-after=")
VALIDATE_ONCE_PER_BUILD_SESSION = "validate-once-per-build-session"
BUILD_SESSION_FILE_FLAG = "-fbuild-session-file="

# =============================================================================
# Performance Constants
# =============================================================================

DEFAULT_MAX_WORKERS = None  # None = use all CPU cores

# =============================================================================
# Graph Export Constants
# =============================================================================

SUPPORTED_GRAPH_FORMATS = [".graphml", ".dot", ".gexf", ".json"]
DEFAULT_GRAPH_FORMAT = "graphml"

# =============================================================================
# Exception Classes
# =============================================================================


class DepScanError(Exception):
    """Base exception for all depscan errors.

    All depscan exceptions carry an exit_code attribute that indicates
    what exit code the program should use when this error is caught at the
    main entry point.
    """

    def __init__(self, message: str, exit_code: int = EXIT_RUNTIME_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


# Validation errors (EXIT_INVALID_ARGS)
class ValidationError(DepScanError):
    """Raised when input validation fails (arguments, paths, etc)."""

    def __init__(self, message: str):
        super().__init__(message, EXIT_INVALID_ARGS)


class ArgumentError(ValidationError):
    """Raised when command-line arguments are invalid."""


class CompilationDatabaseError(ValidationError):
    """Raised when compile_commands.json is missing or malformed."""


# Scan errors (EXIT_SCAN_FAILED)
class ScanFailedError(DepScanError):
    """Raised when scanning a translation unit fails."""

    def __init__(self, message: str):
        super().__init__(message, EXIT_SCAN_FAILED)


class FileAccessError(ScanFailedError):
    """Raised when file content cannot be read during a scan."""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


class PreprocessorError(ScanFailedError):
    """Raised for fatal preprocessor conditions (missing header, #error, bad nesting)."""


class MissingModuleError(ScanFailedError):
    """Raised when an imported module cannot be resolved."""


# Storage errors (EXIT_RUNTIME_ERROR)
class ObjectStoreError(DepScanError):
    """Raised when the content-addressed object store fails."""


class ObjectNotFoundError(ObjectStoreError):
    """Raised when a content reference is not present in the store."""


class IncludeTreeError(ObjectStoreError):
    """Raised when a stored include tree node is malformed or inconsistent."""


class ModuleGraphError(DepScanError):
    """Raised when discovered module dependencies form a cycle."""


# Contract violations
class ScanProtocolError(AssertionError):
    """Raised when the front end and a consumer desynchronize.

    Signals a programming error in the event sequence, such as a mismatched
    exit or finalizing with frames still open. It is not a DepScanError.
    """
