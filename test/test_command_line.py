#!/usr/bin/env python3
"""Tests for depscan.command_line module."""

import os
import sys
import json
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.command_line import (
    compute_context_hash,
    deduce_dep_target,
    load_compilation_database,
    make_dependency_output_options,
    make_tu_command_line_without_paths,
    parse_compiler_options,
    tokenize_command,
)
from depscan.constants import ArgumentError, CompilationDatabaseError, DEFAULT_DEP_TARGET


class TestParseCompilerOptions:
    """Test extraction of preprocessing options."""

    def test_search_directories_by_kind(self) -> None:
        options = parse_compiler_options(
            ["clang", "-Iinc", "-I", "inc2", "-iquote", "q", "-isystem", "sys", "-idirafter", "after", "-internal-externc-isystem", "ext", "a.c"]
        )
        assert options.user_dirs == ["inc", "inc2"]
        assert options.quote_dirs == ["q"]
        assert options.system_dirs == ["sys"]
        assert options.after_dirs == ["after"]
        assert options.externc_system_dirs == ["ext"]
        assert options.input_files == ["a.c"]

    def test_macros_keep_command_line_order(self) -> None:
        options = parse_compiler_options(["clang", "-DA=1", "-U", "A", "-D", "B", "a.c"])
        assert options.macro_actions == [("define", "A=1"), ("undef", "A"), ("define", "B")]

    def test_output_and_dependency_flags(self) -> None:
        options = parse_compiler_options(["clang", "-c", "a.c", "-o", "a.o", "-MD", "-MF", "a.d", "-MT", "obj", "-MP"])
        assert options.output_file == "a.o"
        assert options.dependency_file == "a.d"
        assert options.dep_targets == ["obj"]
        assert options.phony_targets
        assert options.system_header_deps

    def test_mmd_drops_system_headers(self) -> None:
        assert not parse_compiler_options(["clang", "-MMD", "a.c"]).system_header_deps

    def test_mq_quotes_target(self) -> None:
        assert parse_compiler_options(["clang", "-MQ", "$(OBJ) x", "a.c"]).dep_targets == ["$$(OBJ)\\ x"]

    def test_module_options(self) -> None:
        options = parse_compiler_options(
            [
                "clang",
                "-fmodules",
                "-fmodule-map-file=m/module.modulemap",
                "-fmodule-file=A=a.pcm",
                "-fmodule-file=prebuilt/B.pcm",
                "-fprebuilt-module-path=pcms",
                "-fmodule-name=Self",
                "a.m",
            ]
        )
        assert options.modules
        assert options.module_map_files == ["m/module.modulemap"]
        assert options.module_files == {"A": "a.pcm", "B": "prebuilt/B.pcm"}
        assert options.prebuilt_module_paths == ["pcms"]
        assert options.module_name == "Self"

    def test_language_from_extension_and_x(self) -> None:
        assert parse_compiler_options(["clang", "a.cpp"]).is_cplusplus
        assert not parse_compiler_options(["clang", "a.c"]).is_cplusplus
        assert parse_compiler_options(["clang", "-x", "c++", "a.c"]).is_cplusplus
        assert parse_compiler_options(["clang", "a.mm"]).effective_language() == "objective-c++"

    def test_sysroot_pch_and_ignorelist(self) -> None:
        options = parse_compiler_options(["clang", "--sysroot=/sdk", "-include-pch", "p.pch", "-fsanitize-ignorelist=ign.txt", "a.c"])
        assert options.sysroot == "/sdk"
        assert options.include_pch == "p.pch"
        assert options.no_sanitize_files == ["ign.txt"]

    def test_missing_flag_argument_raises(self) -> None:
        with pytest.raises(ArgumentError):
            parse_compiler_options(["clang", "a.c", "-I"])

    def test_empty_command_line_raises(self) -> None:
        with pytest.raises(ArgumentError):
            parse_compiler_options([])


class TestTokenizeCommand:
    """Test shell-quoted command splitting."""

    def test_quoted_arguments(self) -> None:
        assert tokenize_command('clang -DNAME="a b" -c x.c') == ["clang", "-DNAME=a b", "-c", "x.c"]

    def test_unbalanced_quotes_raise(self) -> None:
        with pytest.raises(ArgumentError):
            tokenize_command('clang "-c x.c')

    def test_blank_command_raises(self) -> None:
        with pytest.raises(ArgumentError):
            tokenize_command("   ")


class TestDependencyTargets:
    """Test make target deduction."""

    def test_output_file_wins(self) -> None:
        assert deduce_dep_target("out/a.o", ["a.c"]) == "out/a.o"

    def test_input_with_object_extension(self) -> None:
        assert deduce_dep_target(None, ["src/a.c"]) == "src/a.o"

    def test_placeholder_without_inputs(self) -> None:
        assert deduce_dep_target(None, []) == DEFAULT_DEP_TARGET

    def test_explicit_targets_take_precedence(self) -> None:
        options = parse_compiler_options(["clang", "-MT", "t1", "-MT", "t2", "-o", "a.o", "a.c"])
        assert make_dependency_output_options(options).targets == ["t1", "t2"]


class TestCommandLineRewrite:
    """Test the rewrite of translation unit command lines for explicit module builds."""

    def test_implicit_module_options_are_removed(self) -> None:
        original = ["clang", "-fmodules-cache-path=/x", "-fbuild-session-file=/y", "-c", "a.c"]
        assert make_tu_command_line_without_paths(original[1:]) == ["-c", "a.c", "-fno-implicit-modules", "-fno-implicit-module-maps"]

    def test_prune_and_validate_options_are_removed(self) -> None:
        args = ["-fmodules-prune-interval=10", "-fmodules-prune-after=20", "-fmodules-validate-once-per-build-session", "-fmodules", "a.c"]
        assert make_tu_command_line_without_paths(args) == ["-fmodules", "a.c", "-fno-implicit-modules", "-fno-implicit-module-maps"]

    def test_input_list_is_not_modified(self) -> None:
        args = ["-fmodules-cache-path=/x", "a.c"]
        make_tu_command_line_without_paths(args)
        assert args == ["-fmodules-cache-path=/x", "a.c"]


class TestContextHash:
    """Test the hash of module-relevant options."""

    def test_hash_format(self) -> None:
        context_hash = compute_context_hash(parse_compiler_options(["clang", "a.c"]))
        assert len(context_hash) == 16
        assert context_hash == context_hash.upper()

    def test_defines_change_the_hash(self) -> None:
        assert compute_context_hash(parse_compiler_options(["clang", "a.c"])) != compute_context_hash(parse_compiler_options(["clang", "-DX", "a.c"]))

    def test_output_file_does_not_change_the_hash(self) -> None:
        first = compute_context_hash(parse_compiler_options(["clang", "-o", "a.o", "a.c"]))
        second = compute_context_hash(parse_compiler_options(["clang", "-o", "b.o", "a.c"]))
        assert first == second


class TestLoadCompilationDatabase:
    """Test compile_commands.json loading with real files."""

    def test_arguments_and_command_entries(self, temp_dir: str) -> None:
        path = os.path.join(temp_dir, "compile_commands.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                [
                    {"directory": temp_dir, "file": "a.c", "arguments": ["clang", "-c", "a.c"]},
                    {"directory": temp_dir, "file": "b.c", "command": "clang -DX='1 2' -c b.c", "output": "b.o"},
                ],
                f,
            )
        commands = load_compilation_database(path)
        assert [command.arguments for command in commands] == [["clang", "-c", "a.c"], ["clang", "-DX=1 2", "-c", "b.c"]]
        assert commands[1].output == "b.o"
        assert commands[0].source_path == os.path.join(temp_dir, "a.c")

    def test_missing_database_raises(self, temp_dir: str) -> None:
        with pytest.raises(CompilationDatabaseError):
            load_compilation_database(os.path.join(temp_dir, "missing.json"))

    def test_entry_without_file_raises(self, temp_dir: str) -> None:
        path = os.path.join(temp_dir, "compile_commands.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump([{"directory": temp_dir, "arguments": ["clang"]}], f)
        with pytest.raises(CompilationDatabaseError):
            load_compilation_database(path)

    def test_non_array_raises(self, temp_dir: str) -> None:
        path = os.path.join(temp_dir, "compile_commands.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"directory": temp_dir}, f)
        with pytest.raises(CompilationDatabaseError):
            load_compilation_database(path)
