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
"""Parallel scanning of a whole compilation database.

Each entry is scanned on a worker thread with its own DependencyScanningTool;
all tools share one DependencyScanningService, so file contents are hashed
once per build. Failures are recorded per translation unit and the remaining
entries are still scanned.
"""

import time
import logging
import threading
import multiprocessing as mp
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from depscan.command_line import CompileCommand
from depscan.constants import ArgumentError, DepScanError
from depscan.consumers import FullDependenciesResult, LookupModuleOutputFn, ModuleDeps, ModuleID
from depscan.scanning_tool import DependencyScanningService, DependencyScanningTool

logger = logging.getLogger(__name__)

FORMAT_MAKE = "make"
FORMAT_TREE = "tree"
FORMAT_INCLUDE_TREE = "include-tree"
FORMAT_FULL = "full"
SCAN_FORMATS = [FORMAT_MAKE, FORMAT_TREE, FORMAT_INCLUDE_TREE, FORMAT_FULL]


@dataclass
class TUScanResult:
    """Outcome of scanning one compilation database entry.

    Attributes:
        command: The scanned entry
        output: Make text, a ContentRef or a FullDependenciesResult, by format
        error: The failure, when the scan did not produce an output
    """

    command: CompileCommand
    output: Any = None
    error: Optional[DepScanError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class ScanReport:
    """Results of a whole compilation database scan, in database order."""

    format: str
    results: List[TUScanResult] = field(default_factory=list)
    modules: Dict[ModuleID, ModuleDeps] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def failures(self) -> List[TUScanResult]:
        return [result for result in self.results if not result.succeeded]


class _ModuleRegistry:
    """Modules reported so far, shared between worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.modules: Dict[ModuleID, ModuleDeps] = {}

    def snapshot(self) -> Set[ModuleID]:
        with self._lock:
            return set(self.modules)

    def add(self, discovered: List[ModuleDeps]) -> None:
        with self._lock:
            for md in discovered:
                # Two threads may discover the same module concurrently
                self.modules.setdefault(md.id, md)


def scan_compilation_database(
    commands: List[CompileCommand],
    service: DependencyScanningService,
    output_format: str = FORMAT_MAKE,
    max_workers: Optional[int] = None,
    module_name: Optional[str] = None,
    lookup_module_output: Optional[LookupModuleOutputFn] = None,
) -> ScanReport:
    """Scan every entry of a compilation database.

    Args:
        commands: Entries to scan
        service: Shared scanning state
        output_format: One of SCAN_FORMATS
        max_workers: Thread count (all CPU cores when None)
        module_name: Scan this module's import instead of each entry's input
        lookup_module_output: Module file locations for the full format

    Returns:
        A ScanReport with one result per entry

    Raises:
        ArgumentError: If the format is unknown
    """
    if output_format not in SCAN_FORMATS:
        raise ArgumentError(f"Unknown output format '{output_format}', expected one of {SCAN_FORMATS}")
    if max_workers is None:
        max_workers = mp.cpu_count()

    registry = _ModuleRegistry()
    local = threading.local()

    def get_tool() -> DependencyScanningTool:
        tool = getattr(local, "tool", None)
        if tool is None:
            tool = DependencyScanningTool(service)
            local.tool = tool
        return tool

    def scan_one(command: CompileCommand) -> TUScanResult:
        tool = get_tool()
        try:
            if output_format == FORMAT_MAKE:
                output: Any = tool.get_dependency_file(command.arguments, command.directory, module_name)
            elif output_format == FORMAT_TREE:
                output = tool.get_dependency_tree(command.arguments, command.directory)
            elif output_format == FORMAT_INCLUDE_TREE:
                output = tool.get_include_tree(command.arguments, command.directory)
            else:
                result: FullDependenciesResult = tool.get_full_dependencies(
                    command.arguments, command.directory, registry.snapshot(), lookup_module_output, module_name
                )
                registry.add(result.discovered_modules)
                output = result
        except DepScanError as e:
            logger.debug("Scan of %s failed: %s", command.file, e)
            return TUScanResult(command=command, error=e)
        return TUScanResult(command=command, output=output)

    logger.info("Scanning %s translation units using %s workers (format: %s)", len(commands), max_workers, output_format)
    start_time = time.time()
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        results = list(executor.map(scan_one, commands))
    elapsed = time.time() - start_time

    report = ScanReport(format=output_format, results=results, modules=registry.modules, elapsed=elapsed)
    logger.info("Scanned %s translation units in %.2fs (%s failed)", len(results), elapsed, len(report.failures))
    return report
