#!/usr/bin/env python3
"""Tests for depscan.preprocessor module.

Each test writes a small source tree and preprocesses it for real.
"""

import os
import sys
from pathlib import Path
from typing import List

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.command_line import parse_compiler_options
from depscan.constants import ArgumentError, FileAccessError, MissingModuleError, PreprocessorError
from depscan.content_cache import FileContentCache
from depscan.file_manager import FileManager
from depscan.object_store import InMemoryObjectStore
from depscan.preprocessor import (
    CompilerInstance,
    Preprocessor,
    build_precompiled_header,
    detect_include_guard,
    evaluate_expression,
    header_file_name,
    logical_lines,
    read_precompiled_header,
    strip_comments,
)
from depscan.tracking_fs import TrackingFileSystem


def make_file_manager(root: str) -> FileManager:
    fs = TrackingFileSystem(FileContentCache(InMemoryObjectStore()))
    fs.set_current_working_directory(root)
    return FileManager(fs)


def preprocess(root: str, args: List[str]) -> Preprocessor:
    ci = CompilerInstance(parse_compiler_options(["clang"] + args), make_file_manager(root))
    preprocessor = Preprocessor(ci)
    preprocessor.run()
    return preprocessor


def deps(root: str, args: List[str]) -> List[str]:
    return [os.path.relpath(path, root) for path in preprocess(root, args).file_dependencies()]


class TestTextHelpers:
    """Test comment stripping, line joining and guard detection."""

    def test_strip_comments_keeps_offsets(self) -> None:
        text = 'a /* x\ny */ b // c\n"// kept"\n'
        stripped = strip_comments(text)
        assert len(stripped) == len(text)
        assert stripped.count("\n") == text.count("\n")
        assert "// kept" in stripped
        assert "x" not in stripped.split("\n")[0]

    def test_logical_lines_join_continuations(self) -> None:
        assert list(logical_lines("#define A \\\n  1\nnext\n")) == [(0, "#define A   1"), (16, "next"), (21, "")]

    def test_include_guard_detected(self) -> None:
        assert detect_include_guard("// header\n#ifndef G\n#define G\n#if X\n#endif\nint a;\n#endif\n") == "G"
        assert detect_include_guard("#if !defined(G)\n#define G\n#endif\n") == "G"

    def test_code_after_endif_is_not_a_guard(self) -> None:
        assert detect_include_guard("#ifndef G\n#define G\n#endif\nint a;\n") is None
        assert detect_include_guard("#ifndef G\n#define H\n#endif\n") is None


class TestEvaluateExpression:
    """Test #if arithmetic."""

    @pytest.mark.parametrize(
        "expr, expected",
        [
            ("1 + 2 * 3", 7),
            ("0x10 == 16", 1),
            ("010", 8),
            ("7 / 2", 3),
            ("!0 && (1 || 0)", 1),
            ("1 != 1", 0),
            ("'A' == 65", 1),
            ("'\\n'", 10),
            ("1 << 4", 16),
            ("201703L >= 201103L", 1),
        ],
    )
    def test_values(self, expr: str, expected: int) -> None:
        assert evaluate_expression(expr) == expected

    @pytest.mark.parametrize("expr", ["", "1 +", "1 / 0", "a", "1 ? 2 : 3"])
    def test_invalid_expressions_raise(self, expr: str) -> None:
        with pytest.raises(ValueError):
            evaluate_expression(expr)


class TestConditionals:
    """Test that only active branches include files."""

    def test_ifdef_else(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": '#ifdef USE_A\n#include "a.h"\n#else\n#include "b.h"\n#endif\n',
                "a.h": "",
                "b.h": "",
            }
        )
        assert deps(root, ["main.c"]) == ["main.c", "b.h"]
        assert deps(root, ["-DUSE_A", "main.c"]) == ["main.c", "a.h"]

    def test_elif_chain_takes_first_true_branch(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": '#if LEVEL > 2\n#include "high.h"\n#elif LEVEL > 0\n#include "mid.h"\n#elif 1\n#include "low.h"\n#endif\n',
                "high.h": "",
                "mid.h": "",
                "low.h": "",
            }
        )
        assert deps(root, ["-DLEVEL=1", "main.c"]) == ["main.c", "mid.h"]
        assert deps(root, ["-DLEVEL=5", "main.c"]) == ["main.c", "high.h"]
        assert deps(root, ["main.c"]) == ["main.c", "low.h"]

    def test_nested_inactive_regions_are_skipped(self, source_tree) -> None:
        root = source_tree({"main.c": '#if 0\n#if 1\n#include "missing.h"\n#endif\n#error not here\n#endif\n'})
        assert deps(root, ["main.c"]) == ["main.c"]

    def test_undef_from_command_line(self, source_tree) -> None:
        root = source_tree({"main.c": '#ifdef X\n#include "x.h"\n#endif\n', "x.h": ""})
        assert deps(root, ["-DX", "-UX", "main.c"]) == ["main.c"]

    def test_language_macros(self, source_tree) -> None:
        root = source_tree({"main.cpp": '#if __cplusplus >= 201703L\n#include "cxx17.h"\n#endif\n', "cxx17.h": ""})
        assert deps(root, ["-std=c++17", "main.cpp"]) == ["main.cpp", "cxx17.h"]
        assert deps(root, ["-std=c++11", "main.cpp"]) == ["main.cpp"]

    def test_unevaluable_condition_is_false(self, source_tree) -> None:
        root = source_tree({"main.c": '#if 1 ? 1 : 0\n#include "a.h"\n#endif\n', "a.h": ""})
        assert deps(root, ["main.c"]) == ["main.c"]

    def test_unterminated_conditional_raises(self, source_tree) -> None:
        root = source_tree({"main.c": "#if 1\n"})
        with pytest.raises(PreprocessorError, match="unterminated"):
            preprocess(root, ["main.c"])

    def test_else_without_if_raises(self, source_tree) -> None:
        root = source_tree({"main.c": "#else\n"})
        with pytest.raises(PreprocessorError, match="without #if"):
            preprocess(root, ["main.c"])

    def test_error_directive_raises(self, source_tree) -> None:
        root = source_tree({"main.c": "\n#error unsupported platform\n"})
        with pytest.raises(PreprocessorError, match=r"main.c:2: #error unsupported platform"):
            preprocess(root, ["main.c"])


class TestInclusion:
    """Test header search and multiple-inclusion handling."""

    def test_guarded_and_pragma_once_headers_enter_once(self, simple_project: str) -> None:
        preprocessor = preprocess(simple_project, ["-isystem", "sysroot/inc", "main.c"])
        rel = [os.path.relpath(path, simple_project) for path in preprocessor.file_dependencies()]
        assert rel == ["main.c", "util.h", "config.h", "sysroot/inc/sys.h"]
        assert preprocessor.macros["UTIL_VALUE"] == "CONFIG_VALUE"

    def test_system_headers_dropped_with_mmd(self, simple_project: str) -> None:
        assert deps(simple_project, ["-MMD", "-isystem", "sysroot/inc", "main.c"]) == ["main.c", "util.h", "config.h"]

    def test_quote_include_prefers_includer_directory(self, source_tree) -> None:
        root = source_tree(
            {
                "src/main.c": '#include "local.h"\n',
                "src/local.h": "",
                "inc/local.h": "",
            }
        )
        assert deps(root, ["-Iinc", "src/main.c"]) == ["src/main.c", "src/local.h"]

    def test_angled_include_skips_quote_dirs(self, source_tree) -> None:
        root = source_tree({"main.c": "#include <h.h>\n", "quote/h.h": "", "angled/h.h": ""})
        assert deps(root, ["-iquote", "quote", "-Iangled", "main.c"]) == ["main.c", "angled/h.h"]

    def test_include_next_continues_search(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": "#include <wrap.h>\n",
                "first/wrap.h": "#include_next <wrap.h>\n",
                "second/wrap.h": "",
            }
        )
        assert deps(root, ["-Ifirst", "-Isecond", "main.c"]) == ["main.c", "first/wrap.h", "second/wrap.h"]

    def test_import_enters_once(self, source_tree) -> None:
        root = source_tree({"main.m": '#import "a.h"\n#import "a.h"\n#include "a.h"\n', "a.h": "#define COUNT_A 1\n"})
        preprocessor = preprocess(root, ["main.m"])
        assert [os.path.basename(entry.name) for entry in preprocessor.get_included_files()] == ["main.m", "a.h"]

    def test_macro_include_name(self, source_tree) -> None:
        root = source_tree({"main.c": "#define HEADER <cfg.h>\n#include HEADER\n", "inc/cfg.h": ""})
        assert deps(root, ["-Iinc", "main.c"]) == ["main.c", "inc/cfg.h"]

    def test_forced_include(self, source_tree) -> None:
        root = source_tree({"main.c": "", "pre.h": ""})
        assert deps(root, ["-include", "pre.h", "main.c"]) == ["main.c", "pre.h"]

    def test_has_include(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": '#if __has_include("opt.h")\n#include "opt.h"\n#endif\n#if __has_include(<none.h>)\n#include <none.h>\n#endif\n',
                "opt.h": "",
            }
        )
        assert deps(root, ["main.c"]) == ["main.c", "opt.h"]

    def test_non_ascii_header_names(self, source_tree) -> None:
        """UTF-8 header names are found by #include and __has_include."""
        root = source_tree(
            {
                "main.c": '#include "café.h"\n#if __has_include("日本.h")\n#include "日本.h"\n#endif\n',
                "café.h": "",
                "日本.h": "",
            }
        )
        assert deps(root, ["main.c"]) == ["main.c", "café.h", "日本.h"]

    def test_header_file_name_recovers_utf8_bytes(self) -> None:
        assert header_file_name("café.h".encode("utf-8").decode("latin-1")) == "café.h"
        assert header_file_name("plain.h") == "plain.h"

    def test_ifdef_has_include_is_defined(self, source_tree) -> None:
        root = source_tree({"main.c": '#ifdef __has_include\n#include "a.h"\n#endif\n', "a.h": ""})
        assert deps(root, ["main.c"]) == ["main.c", "a.h"]

    def test_missing_header_raises(self, source_tree) -> None:
        root = source_tree({"main.c": '#include "nope.h"\n'})
        with pytest.raises(PreprocessorError, match="'nope.h' file not found"):
            preprocess(root, ["main.c"])

    def test_recursive_include_hits_depth_limit(self, source_tree) -> None:
        root = source_tree({"main.c": '#include "loop.h"\n', "loop.h": '#include "loop.h"\n'})
        with pytest.raises(PreprocessorError, match="nested too deeply"):
            preprocess(root, ["main.c"])


class TestInputs:
    """Test main file selection errors."""

    def test_missing_main_file(self, temp_dir: str) -> None:
        with pytest.raises(FileAccessError):
            preprocess(temp_dir, ["missing.c"])

    def test_two_inputs(self, source_tree) -> None:
        root = source_tree({"a.c": "", "b.c": ""})
        with pytest.raises(ArgumentError):
            preprocess(root, ["a.c", "b.c"])

    def test_stdin_input(self, temp_dir: str) -> None:
        with pytest.raises(ArgumentError):
            preprocess(temp_dir, ["-"])


class TestPrecompiledHeaders:
    """Test building and using precompiled headers."""

    def test_build_and_use(self, source_tree) -> None:
        root = source_tree(
            {
                "pch.h": '#include "big.h"\n#define FROM_PCH 1\n',
                "big.h": "#define BIG 1\n",
                "main.c": '#include "big.h"\n#if FROM_PCH\n#include "extra.h"\n#endif\n',
                "extra.h": "",
            }
        )
        pch_path = os.path.join(root, "pch.h.pch")
        build_ci = CompilerInstance(parse_compiler_options(["clang", "-x", "c-header", "pch.h"]), make_file_manager(root))
        pch = build_precompiled_header(build_ci, pch_path)
        assert pch.included_files == [os.path.join(root, "pch.h"), os.path.join(root, "big.h")]
        assert pch.macros["FROM_PCH"] == "1"

        loaded = read_precompiled_header(make_file_manager(root), pch_path)
        assert loaded.included_files == pch.included_files

        preprocessor = preprocess(root, ["-include-pch", "pch.h.pch", "main.c"])
        rel = [os.path.relpath(path, root) for path in preprocessor.file_dependencies()]
        assert rel == ["main.c", "pch.h.pch", "pch.h", "big.h", "extra.h"]

    def test_non_pch_file_raises(self, source_tree) -> None:
        root = source_tree({"main.c": "", "fake.pch": "not json"})
        with pytest.raises(PreprocessorError):
            preprocess(root, ["-include-pch", "fake.pch", "main.c"])


class TestModules:
    """Test module imports during a preprocessing run."""

    def test_unknown_module_raises(self, source_tree) -> None:
        root = source_tree({"main.m": "@import Missing;\n"})
        with pytest.raises(MissingModuleError):
            preprocess(root, ["-fmodules", "main.m"])

    def test_import_ignored_without_modules(self, source_tree) -> None:
        root = source_tree({"main.m": "@import Missing;\n"})
        assert deps(root, ["main.m"]) == ["main.m"]

    def test_header_in_module_becomes_import(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": '#include "a.h"\n',
                "include/module.modulemap": 'module A { header "a.h" }\n',
                "include/a.h": "",
            }
        )
        preprocessor = preprocess(root, ["-fmodules", "-Iinclude", "main.c"])
        assert [os.path.relpath(path, root) for path in preprocessor.file_dependencies()] == ["main.c"]
        modules = preprocessor.collector.module_deps()
        assert [md.id.module_name for md in modules] == ["A"]
        assert modules[0].imported_by_main_file
        assert [os.path.relpath(path, root) for path in modules[0].file_deps] == ["include/module.modulemap", "include/a.h"]

    def test_non_ascii_module_header(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": '#include "größe.h"\n',
                "include/module.modulemap": 'module Size { header "größe.h" }\n',
                "include/größe.h": "",
            }
        )
        modules = preprocess(root, ["-fmodules", "-Iinclude", "main.c"]).collector.module_deps()
        assert [md.id.module_name for md in modules] == ["Size"]
        assert [os.path.relpath(path, root) for path in modules[0].file_deps] == ["include/module.modulemap", "include/größe.h"]

    def test_module_cycle_raises(self, source_tree) -> None:
        root = source_tree(
            {
                "main.c": "@import A;\n",
                "include/module.modulemap": 'module A { header "a.h" }\nmodule B { header "b.h" }\n',
                "include/a.h": '#include "b.h"\n',
                "include/b.h": '#include "a.h"\n',
            }
        )
        with pytest.raises(PreprocessorError, match="Cyclic dependency"):
            preprocess(root, ["-fmodules", "-Iinclude", "main.c"])

    def test_prebuilt_module_file(self, source_tree) -> None:
        root = source_tree({"main.c": "@import P;\n", "pcm/P.pcm": "binary"})
        preprocessor = preprocess(root, ["-fmodules", "-fmodule-file=P=pcm/P.pcm", "main.c"])
        assert [pmd.pcm_file for pmd in preprocessor.collector.prebuilt_module_deps()] == ["pcm/P.pcm"]
        assert [os.path.relpath(path, root) for path in preprocessor.file_dependencies()] == ["main.c", "pcm/P.pcm"]
        assert preprocessor.collector.module_deps() == []
