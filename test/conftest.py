#!/usr/bin/env python3
#****************************************************************************************************************************************************
#* BSD 3-Clause License
#*
#* Copyright (c) 2025, Mana Battery
#* All rights reserved.
#*
#* Redistribution and use in source and binary forms, with or without modification, are permitted provided that the following conditions are met:
#*
#* 1. Redistributions of source code must retain the above copyright notice, this list of conditions and the following disclaimer.
#* 2. Redistributions in binary form must reproduce the above copyright notice, this list of conditions and the following disclaimer in the
#*    documentation and/or other materials provided with the distribution.
#* 3. Neither the name of the copyright holder nor the names of its contributors may be used to endorse or promote products derived from this
#*    software without specific prior written permission.
#*
#* THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO,
#* THE IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR
#* CONTRIBUTORS BE LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO,
#* PROCUREMENT OF SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF
#* LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE,
#* EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
#****************************************************************************************************************************************************
"""Pytest configuration and shared fixtures for depscan tests.

Fixtures build real source trees in temporary directories; scans run against
the real filesystem rather than mocks.

Fixture Scopes:
- function: Default, recreated for each test
"""

import os
import sys
import tempfile
import shutil
from pathlib import Path
from typing import Callable, Dict, Generator

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.object_store import InMemoryObjectStore
from depscan.scanning_tool import DependencyScanningService, DependencyScanningTool, ScanningServiceConfig

SourceTreeFactory = Callable[[Dict[str, str]], str]


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for tests.

    Scope: function (default)
    Use for: File I/O operations that need isolation

    The path is fully resolved so real paths and logical paths only differ
    where a test creates a symlink.
    """
    tmpdir = os.path.realpath(tempfile.mkdtemp(prefix="depscan_test_"))
    yield tmpdir
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def source_tree(temp_dir: str) -> SourceTreeFactory:
    """Return a function writing {relative path: content} below temp_dir.

    Returns the root directory, so a test can write several batches.
    """

    def make(files: Dict[str, str]) -> str:
        for rel_path, content in files.items():
            path = os.path.join(temp_dir, rel_path)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        return temp_dir

    return make


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def service(object_store: InMemoryObjectStore) -> DependencyScanningService:
    """Scanning service backed by the in-memory object_store."""
    return DependencyScanningService(ScanningServiceConfig(), store=object_store)


@pytest.fixture
def cas_service(object_store: InMemoryObjectStore) -> DependencyScanningService:
    """Scanning service that attaches filesystem trees to full dependencies."""
    return DependencyScanningService(ScanningServiceConfig(use_cas=True), store=object_store)


@pytest.fixture
def tool(service: DependencyScanningService) -> DependencyScanningTool:
    return DependencyScanningTool(service)


@pytest.fixture
def simple_project(source_tree: SourceTreeFactory) -> str:
    """main.c including a guarded user header and a system header.

    Layout:
        main.c            includes "util.h" and <sys.h>
        util.h            include guard, includes "config.h" twice
        config.h          #pragma once
        sysroot/inc/sys.h system header
    """
    return source_tree(
        {
            "main.c": '#include "util.h"\n#include <sys.h>\nint main(void) { return UTIL_VALUE; }\n',
            "util.h": '#ifndef UTIL_H\n#define UTIL_H\n#include "config.h"\n#include "config.h"\n#define UTIL_VALUE CONFIG_VALUE\n#endif\n',
            "config.h": "#pragma once\n#define CONFIG_VALUE 0\n",
            "sysroot/inc/sys.h": "#define SYS 1\n",
        }
    )

