#!/usr/bin/env python3
"""Tests for depscan.scanning_tool module.

Covers the four scan outputs of DependencyScanningTool: make text, the
filesystem tree, the include tree and (briefly) full dependencies.
"""

import os
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.constants import ArgumentError, PreprocessorError, ScanProtocolError
from depscan.include_tree import IncludeFile, IncludeTree, build_replay_file_map, load_include_tree_root, load_node
from depscan.object_store import InMemoryObjectStore
from depscan.scanning_tool import (
    DependencyScanningService,
    DependencyScanningTool,
    MakeDependencyPrinterConsumer,
    ScanningServiceConfig,
)
from depscan.consumers import ModuleID, ModuleOutputKind
from depscan.tracking_fs import list_tree_paths

SIMPLE_COMMAND = ["clang", "-isystem", "sysroot/inc", "-c", "main.c", "-o", "main.o"]


class TestDependencyFile:
    """Test make-format output."""

    def test_make_output(self, simple_project: str, tool: DependencyScanningTool) -> None:
        text = tool.get_dependency_file(SIMPLE_COMMAND, simple_project)
        expected_deps = [os.path.join(simple_project, name) for name in ("main.c", "util.h", "config.h", "sysroot/inc/sys.h")]
        assert text.startswith("main.o:")
        assert text.replace(" \\\n ", "").split() == ["main.o:"] + expected_deps

    def test_system_headers_listed_even_with_mmd(self, simple_project: str, tool: DependencyScanningTool) -> None:
        text = tool.get_dependency_file(["clang", "-MMD"] + SIMPLE_COMMAND[1:], simple_project)
        assert os.path.join(simple_project, "sysroot", "inc", "sys.h") in text

    def test_explicit_target_and_phony_rules(self, simple_project: str, tool: DependencyScanningTool) -> None:
        text = tool.get_dependency_file(SIMPLE_COMMAND + ["-MT", "custom", "-MP"], simple_project)
        assert text.startswith("custom:")
        assert text.endswith(os.path.join(simple_project, "sysroot", "inc", "sys.h") + ":\n")
        assert "\n" + os.path.join(simple_project, "main.c") + ":\n" not in text

    def test_module_inputs_are_not_listed(self, source_tree, tool: DependencyScanningTool) -> None:
        """Module events do not add prerequisites; only textually included files do."""
        root = source_tree(
            {
                "main.c": "@import A;\n",
                "include/module.modulemap": 'module A { header "a.h" }\n',
                "include/a.h": "int a;\n",
            }
        )
        text = tool.get_dependency_file(["clang", "-fmodules", "-Iinclude", "-c", "main.c"], root)
        assert os.path.join(root, "include", "a.h") not in text
        assert os.path.join(root, "include", "module.modulemap") not in text
        assert text.replace(" \\\n ", "").split() == ["main.o:", os.path.join(root, "main.c")]

    def test_module_name_scan_uses_placeholder_target(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree({"include/module.modulemap": 'module A { header "a.h" }\n', "include/a.h": ""})
        text = tool.get_dependency_file(["clang", "-Iinclude", "-c", "unused.c"], root, module_name="A")
        assert text.startswith("clang-scan-deps\\ dependency:")
        assert os.path.join(root, "include", "a.h") in text

    def test_missing_header_raises(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree({"main.c": '#include "gone.h"\n'})
        with pytest.raises(PreprocessorError):
            tool.get_dependency_file(["clang", "-c", "main.c"], root)

    def test_bad_command_line_raises(self, temp_dir: str, tool: DependencyScanningTool) -> None:
        with pytest.raises(ArgumentError):
            tool.get_dependency_file(["clang", "-c"], temp_dir)

    def test_printing_before_scan_raises(self) -> None:
        with pytest.raises(ScanProtocolError):
            MakeDependencyPrinterConsumer().print_dependencies()


class TestDependencyTree:
    """Test filesystem tree snapshots."""

    def test_tree_contains_every_accessed_file(self, simple_project: str, tool: DependencyScanningTool, object_store) -> None:
        ref = tool.get_dependency_tree(SIMPLE_COMMAND, simple_project)
        paths = list_tree_paths(object_store, ref)
        for name in ("main.c", "util.h", "config.h", "sysroot/inc/sys.h"):
            assert paths[os.path.join(simple_project, name)] == "file"
        assert paths[os.path.join(simple_project, "sysroot", "inc")] == "directory"

    def test_tree_is_deterministic(self, simple_project: str, tool: DependencyScanningTool) -> None:
        assert tool.get_dependency_tree(SIMPLE_COMMAND, simple_project) == tool.get_dependency_tree(SIMPLE_COMMAND, simple_project)

    def test_remap_path(self, simple_project: str, tool: DependencyScanningTool, object_store) -> None:
        ref = tool.get_dependency_tree(SIMPLE_COMMAND, simple_project, lambda path: path.replace(simple_project, "/^src", 1))
        paths = list_tree_paths(object_store, ref)
        assert paths["/^src/main.c"] == "file"
        assert not any(path.startswith(simple_project) for path in paths)

    def test_trees_from_threads_do_not_mix(self, source_tree, service: DependencyScanningService) -> None:
        root = source_tree({"one.c": '#include "one.h"\n', "one.h": "", "two.c": '#include "two.h"\n', "two.h": ""})
        results = {}

        def scan(name: str) -> None:
            tool = DependencyScanningTool(service)
            results[name] = list_tree_paths(service.store, tool.get_dependency_tree(["clang", "-c", f"{name}.c"], root))

        threads = [threading.Thread(target=scan, args=(name,)) for name in ("one", "two")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert os.path.join(root, "one.h") in results["one"]
        assert os.path.join(root, "two.h") not in results["one"]
        assert os.path.join(root, "two.h") in results["two"]
        assert os.path.join(root, "one.h") not in results["two"]


class TestIncludeTree:
    """Test include tree scans through the tool."""

    def test_include_tree_replays_scanned_files(self, simple_project: str, tool: DependencyScanningTool, object_store) -> None:
        root_ref = tool.get_include_tree(SIMPLE_COMMAND, simple_project)
        files = build_replay_file_map(object_store, root_ref)
        assert set(files) == {"main.c", "util.h", "config.h", "sysroot/inc/sys.h"}
        with open(os.path.join(simple_project, "util.h"), "rb") as f:
            assert files["util.h"] == f.read()

    def test_main_file_node(self, simple_project: str, tool: DependencyScanningTool, object_store) -> None:
        root = load_include_tree_root(object_store, tool.get_include_tree(SIMPLE_COMMAND, simple_project))
        main = load_node(object_store, root.main, IncludeTree)
        assert load_node(object_store, main.file, IncludeFile).filename == "main.c"
        assert root.pch is None

    def test_separate_target_store(self, simple_project: str, tool: DependencyScanningTool) -> None:
        target = InMemoryObjectStore()
        root_ref = tool.get_include_tree(SIMPLE_COMMAND, simple_project, store=target)
        assert target.contains(root_ref)
        assert "util.h" in build_replay_file_map(target, root_ref)


class TestScanningService:
    """Test service configuration."""

    def test_default_module_output_location(self) -> None:
        service = DependencyScanningService(ScanningServiceConfig(module_files_dir="pcms"))
        assert service.lookup_module_output(ModuleID("A", "ABC"), ModuleOutputKind.MODULE_FILE) == os.path.join("pcms", "ABC", "A.pcm")

    def test_on_disk_store_from_config(self, temp_dir: str, simple_project: str) -> None:
        cas_path = os.path.join(temp_dir, "cas")
        service = DependencyScanningService(ScanningServiceConfig(cas_path=cas_path))
        root_ref = DependencyScanningTool(service).get_include_tree(SIMPLE_COMMAND, simple_project)
        assert os.path.isdir(os.path.join(cas_path, "objects"))
        assert service.store.contains(root_ref)

    def test_file_contents_shared_between_tools(self, simple_project: str, service: DependencyScanningService) -> None:
        DependencyScanningTool(service).get_dependency_file(SIMPLE_COMMAND, simple_project)
        cached = len(service.content_cache)
        DependencyScanningTool(service).get_dependency_file(SIMPLE_COMMAND, simple_project)
        assert len(service.content_cache) == cached
