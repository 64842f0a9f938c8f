#!/usr/bin/env python3
"""Tests for depscan.full_dependencies module and full dependency scans."""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.constants import ScanProtocolError
from depscan.consumers import DependencyConsumer, ModuleDeps, ModuleID, ModuleOutputKind, PPIncludeActionsConsumer, PrebuiltModuleDep
from depscan.full_dependencies import FullDependencyConsumer
from depscan.scanning_tool import DependencyScanningTool
from depscan.tracking_fs import list_tree_paths

MODULE_PROJECT = {
    "main.c": "@import A;\nint main(void) { return 0; }\n",
    "include/module.modulemap": 'module A {\n  header "a.h"\n  export *\n}\nmodule B {\n  header "b.h"\n}\n',
    "include/a.h": '#include "b.h"\nint a(void);\n',
    "include/b.h": "int b(void);\n",
}

MODULE_COMMAND = ["clang", "-fmodules", "-Iinclude", "-c", "main.c", "-o", "main.o"]


def output_in(directory: str):
    def lookup(module_id: ModuleID, kind: ModuleOutputKind) -> str:
        return f"{directory}/{module_id.module_name}.pcm"

    return lookup


class TestFullDependencyConsumer:
    """Test aggregation of scan events."""

    def make_consumer(self, already_seen=None) -> FullDependencyConsumer:
        consumer = FullDependencyConsumer(already_seen or set(), output_in("out"))
        consumer.handle_dependency_output_opts(None)
        consumer.handle_file_dependency("/src/a.c")
        consumer.handle_file_dependency("/src/a.h")
        consumer.handle_prebuilt_module_dependency(PrebuiltModuleDep("P", "p/P.pcm"))
        consumer.handle_module_dependency(ModuleDeps(id=ModuleID("B", "H"), imported_by_main_file=False))
        consumer.handle_module_dependency(
            ModuleDeps(id=ModuleID("A", "H"), imported_by_main_file=True, clang_module_deps=[ModuleID("B", "H")])
        )
        consumer.handle_context_hash("H")
        return consumer

    def test_command_line_rewrite_and_module_files(self) -> None:
        result = self.make_consumer().get_full_dependencies(["clang", "-fmodules-cache-path=/x", "-fbuild-session-file=/y", "-c", "a.c"])
        assert result.full_deps.command_line == [
            "-c",
            "a.c",
            "-fno-implicit-modules",
            "-fno-implicit-module-maps",
            "-fmodule-file=p/P.pcm",
            "-fmodule-file=out/A.pcm",
        ]

    def test_record_contents(self) -> None:
        result = self.make_consumer().get_full_dependencies(["clang", "-c", "a.c"])
        full_deps = result.full_deps
        assert full_deps.id.context_hash == "H"
        assert full_deps.file_deps == ["/src/a.c", "/src/a.h"]
        assert full_deps.clang_module_deps == [ModuleID("A", "H")]
        assert full_deps.prebuilt_module_deps == [PrebuiltModuleDep("P", "p/P.pcm")]
        assert full_deps.cas_file_system_root_id is None
        assert [md.id.module_name for md in result.discovered_modules] == ["B", "A"]

    def test_already_seen_modules_are_not_rediscovered(self) -> None:
        result = self.make_consumer({ModuleID("B", "H")}).get_full_dependencies(["clang", "-c", "a.c"])
        assert [md.id.module_name for md in result.discovered_modules] == ["A"]
        assert result.full_deps.clang_module_deps == [ModuleID("A", "H")]

    def test_json_shape(self) -> None:
        data = self.make_consumer().get_full_dependencies(["clang", "-c", "a.c"]).to_json("a.c")
        assert [module["name"] for module in data["modules"]] == ["B", "A"]
        tu = data["translation-units"][0]
        assert tu["input-file"] == "a.c"
        assert tu["clang-module-deps"] == [{"module-name": "A", "context-hash": "H"}]
        assert tu["prebuilt-module-deps"] == [{"module-name": "P", "pcm-file": "p/P.pcm"}]
        assert "casfs-root-id" not in tu

    def test_missing_context_hash_raises(self) -> None:
        consumer = FullDependencyConsumer(set(), output_in("out"))
        consumer.handle_file_dependency("/src/a.c")
        with pytest.raises(ScanProtocolError):
            consumer.get_full_dependencies(["clang", "a.c"])

    def test_consumer_interfaces_are_abstract(self) -> None:
        with pytest.raises(TypeError):
            DependencyConsumer()
        with pytest.raises(TypeError):
            PPIncludeActionsConsumer()


class TestFullDependencyScan:
    """Test full dependency scans of a module-using translation unit."""

    def test_modules_reported_dependencies_first(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree(MODULE_PROJECT)
        result = tool.get_full_dependencies(MODULE_COMMAND, root, set())

        modules = result.discovered_modules
        assert [md.id.module_name for md in modules] == ["B", "A"]
        b_module, a_module = modules
        assert a_module.imported_by_main_file
        assert not b_module.imported_by_main_file
        assert a_module.clang_module_deps == [b_module.id]
        assert b_module.clang_module_deps == []
        assert a_module.clang_module_map_file == os.path.join(root, "include", "module.modulemap")
        assert a_module.file_deps == [os.path.join(root, "include", "module.modulemap"), os.path.join(root, "include", "a.h")]
        assert b_module.file_deps == [os.path.join(root, "include", "module.modulemap"), os.path.join(root, "include", "b.h")]

        full_deps = result.full_deps
        assert full_deps.file_deps == [os.path.join(root, "main.c")]
        assert full_deps.clang_module_deps == [a_module.id]
        context_hash = full_deps.id.context_hash
        assert a_module.id.context_hash == context_hash
        assert full_deps.command_line[-1] == "-fmodule-file=" + os.path.join("modules", context_hash, "A.pcm")
        assert "-fno-implicit-modules" in full_deps.command_line

    def test_second_scan_with_seen_modules_discovers_nothing(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree(MODULE_PROJECT)
        first = tool.get_full_dependencies(MODULE_COMMAND, root, set())
        seen = {md.id for md in first.discovered_modules}

        second = tool.get_full_dependencies(MODULE_COMMAND, root, seen)
        assert second.discovered_modules == []
        assert second.full_deps.clang_module_deps == first.full_deps.clang_module_deps

    def test_custom_module_output_lookup(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree(MODULE_PROJECT)
        result = tool.get_full_dependencies(MODULE_COMMAND, root, set(), output_in("/cache"))
        assert result.full_deps.command_line[-1] == "-fmodule-file=/cache/A.pcm"

    def test_prebuilt_module_file(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree({"main.c": "@import P;\n", "pcm/P.pcm": "prebuilt"})
        result = tool.get_full_dependencies(["clang", "-fmodules", "-fmodule-file=P=pcm/P.pcm", "main.c"], root, set())
        assert result.discovered_modules == []
        assert result.full_deps.prebuilt_module_deps == [PrebuiltModuleDep("P", "pcm/P.pcm")]
        assert result.full_deps.command_line.count("-fmodule-file=pcm/P.pcm") == 1

    def test_named_module_scan(self, source_tree, tool: DependencyScanningTool) -> None:
        root = source_tree(MODULE_PROJECT)
        result = tool.get_full_dependencies(["clang", "-Iinclude", "-c", "main.c"], root, set(), module_name="A")
        assert [md.id.module_name for md in result.discovered_modules] == ["B", "A"]
        assert [module_id.module_name for module_id in result.full_deps.clang_module_deps] == ["A"]
        assert result.full_deps.file_deps == []

    def test_context_hash_matches_without_modules(self, simple_project: str, tool: DependencyScanningTool) -> None:
        result = tool.get_full_dependencies(["clang", "-isystem", "sysroot/inc", "-c", "main.c"], simple_project, set())
        assert result.discovered_modules == []
        assert len(result.full_deps.id.context_hash) == 16
        assert result.full_deps.file_deps[-1] == os.path.join(simple_project, "sysroot", "inc", "sys.h")

    def test_cas_root_id_lists_accessed_files(self, simple_project: str, cas_service) -> None:
        tool = DependencyScanningTool(cas_service)
        result = tool.get_full_dependencies(["clang", "-isystem", "sysroot/inc", "-c", "main.c"], simple_project, set())
        root_id = result.full_deps.cas_file_system_root_id
        assert root_id is not None
        paths = list_tree_paths(cas_service.store, root_id)
        for name in ("main.c", "util.h", "config.h", "sysroot/inc/sys.h"):
            assert paths[os.path.join(simple_project, name)] == "file"
        assert result.to_json()["translation-units"][0]["casfs-root-id"] == str(root_id)
