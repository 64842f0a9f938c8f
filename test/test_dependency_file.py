#!/usr/bin/env python3
"""Tests for depscan.dependency_file module."""

import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from depscan.constants import DEPFILE_MAX_COLUMNS
from depscan.dependency_file import DependencyFileGenerator, DependencyOutputOptions, format_filename, quote_target


def render(targets, deps, **kwargs) -> str:
    generator = DependencyFileGenerator(DependencyOutputOptions(targets=list(targets), **kwargs))
    for dep in deps:
        generator.add_dependency(dep)
    return generator.output_dependency_file()


class TestOutputDependencyFile:
    """Test make-format rendering."""

    def test_single_target_two_dependencies(self) -> None:
        assert render(["t"], ["a.h", "b.h"]) == "t: a.h b.h\n"

    def test_duplicates_are_dropped(self) -> None:
        generator = DependencyFileGenerator(DependencyOutputOptions(targets=["t"]))
        assert generator.add_dependency("a.h")
        assert not generator.add_dependency("a.h")
        assert generator.get_dependencies() == ["a.h"]

    def test_long_lists_wrap_with_continuations(self) -> None:
        deps = [f"dir/header_{i:02d}.h" for i in range(10)]
        text = render(["obj.o"], deps)
        lines = text.splitlines()
        assert len(lines) > 1
        for line in lines[:-1]:
            assert line.endswith(" \\")
            assert len(line) <= DEPFILE_MAX_COLUMNS + 2
        for line in lines[1:]:
            assert line.startswith("  ")
        joined = text.replace(" \\\n ", "")
        assert joined == "obj.o: " + " ".join(deps) + "\n"

    def test_multiple_targets_wrap(self) -> None:
        targets = ["target_" + "x" * 30, "target_" + "y" * 30, "target_" + "z" * 30]
        text = render(targets, ["a.h"])
        assert text.startswith(targets[0] + " \\\n  " + targets[1])

    def test_stdin_is_never_listed(self) -> None:
        assert render(["t"], ["<stdin>", "a.h"]) == "t: a.h\n"

    def test_phony_targets_skip_main_input(self) -> None:
        assert render(["t"], ["a.c", "a.h", "b.h"], use_phony_targets=True) == "t: a.c a.h b.h\n\na.h:\n\nb.h:\n"

    def test_no_dependencies(self) -> None:
        assert render(["t"], []) == "t:\n"


class TestFilenameQuoting:
    """Test escaping of make prerequisites."""

    def test_space_is_escaped(self) -> None:
        assert format_filename("my file.h") == "my\\ file.h"

    def test_hash_and_dollar(self) -> None:
        assert format_filename("a#b$c.h") == "a\\#b$$c.h"

    def test_backslashes_before_space_are_doubled(self) -> None:
        if os.sep == "/":
            assert format_filename("a\\ b.h") == "a\\\\\\ b.h"

    def test_nmake_quotes_special_paths(self) -> None:
        assert format_filename("my file.h", nmake_format=True) == '"my file.h"'
        assert format_filename("plain.h", nmake_format=True) == "plain.h"

    def test_quote_target(self) -> None:
        assert quote_target("a b") == "a\\ b"
        assert quote_target("$(X)") == "$$(X)"
        assert quote_target("a#b") == "a\\#b"
