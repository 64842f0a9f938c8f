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
"""Scan C/C++/Objective-C translation units for their dependencies.

Runs the depscan preprocessor over a compilation database (or a single
compiler command) and prints one of four outputs per translation unit:
make-style dependency text, a content-addressed filesystem tree snapshot,
an include tree, or full dependencies for explicit module builds.

Requirements:
    - Python 3.8+
    - networkx, colorama, packaging
    - pydot (optional, for --export-graph with .dot files)

Usage:
    scanDeps.py --compilation-database build/compile_commands.json
    scanDeps.py --format full -j 8 --compilation-database compile_commands.json
    scanDeps.py --format include-tree --print-include-tree -- clang -c main.c -Iinclude

Exit Codes:
    0: Success
    1: Invalid arguments or compilation database
    2: Runtime error
    3: One or more translation units failed to scan
    130: Interrupted by user
"""

import os
import sys
import json
import signal
import logging
import argparse
from typing import Any, Dict, List, Optional

__version__ = "1.0.0"

from depscan.color_utils import Colors, print_error, print_info, print_scan_failure, print_success, should_use_color
from depscan.command_line import CompileCommand, load_compilation_database, parse_compiler_options
from depscan.constants import (
    CACHE_DIR,
    DepScanError,
    EXIT_INVALID_ARGS,
    EXIT_KEYBOARD_INTERRUPT,
    EXIT_RUNTIME_ERROR,
    EXIT_SCAN_FAILED,
    EXIT_SUCCESS,
    ValidationError,
)
from depscan.include_tree import format_include_tree
from depscan.package_verification import check_all_packages, require_package
from depscan.scanning_service import (
    FORMAT_FULL,
    FORMAT_INCLUDE_TREE,
    FORMAT_MAKE,
    FORMAT_TREE,
    SCAN_FORMATS,
    ScanReport,
    scan_compilation_database,
)
from depscan.scanning_tool import DependencyScanningService, ScanningServiceConfig

# Export for tests
__all__ = ["EXIT_SUCCESS", "main", "cli_main", "render_report"]

logger = logging.getLogger(__name__)


def signal_handler(signum: int, frame: Any) -> None:
    """Handle interrupt signals gracefully."""
    print("\nInterrupted by user. Exiting...", file=sys.stderr)
    sys.exit(EXIT_KEYBOARD_INTERRUPT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scan translation units for their file and module dependencies.",
        epilog=f"Version {__version__}\n\nExamples:\n"
        f"  %(prog)s --compilation-database build/compile_commands.json\n"
        f"  %(prog)s --format full -j 8 --compilation-database build/compile_commands.json\n"
        f"  %(prog)s --format include-tree --print-include-tree -- clang -c main.c -Iinclude\n",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--format", choices=SCAN_FORMATS, default=FORMAT_MAKE, help="Output format (default: make)")
    parser.add_argument("-j", "--jobs", type=int, default=None, metavar="N", help="Number of worker threads (default: all CPU cores)")
    parser.add_argument(
        "--cas-path",
        metavar="DIR",
        nargs="?",
        const=CACHE_DIR,
        help=f"Store objects on disk in DIR (default when given without DIR: {CACHE_DIR}) and attach filesystem trees to full output",
    )
    parser.add_argument("--module-name", metavar="NAME", help="Scan the import of module NAME instead of each input file")
    parser.add_argument("--module-files-dir", metavar="DIR", default="modules", help="Directory module files are expected in (default: modules)")
    parser.add_argument("--print-include-tree", action="store_true", help="Print include trees as indented text (include-tree format)")
    parser.add_argument(
        "--export-graph",
        metavar="FILE",
        help="Export the include graph (include-tree format) or module graph (full format); .graphml, .gexf, .json or .dot",
    )
    parser.add_argument("-o", "--output", metavar="OUT", help="Write the output to OUT instead of stdout")
    parser.add_argument("--compilation-database", metavar="PATH", help="Path to compile_commands.json")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--check-packages", action="store_true", help="Show the status of required Python packages and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Compiler command to scan (after --)")
    return parser


def command_from_arguments(arguments: List[str], directory: str) -> CompileCommand:
    """Build a compilation database entry for a command given on the command line.

    Raises:
        ValidationError: If the command names no input file
    """
    options = parse_compiler_options(arguments)
    if not options.input_files:
        raise ValidationError(f"No input file in command: {' '.join(arguments)}")
    return CompileCommand(directory=directory, file=options.input_files[0], arguments=list(arguments), output=options.output_file)


def render_report(report: ScanReport, service: DependencyScanningService, print_include_tree: bool = False) -> str:
    """Render successful results of a scan in the report's format."""
    out: List[str] = []
    succeeded = [result for result in report.results if result.succeeded]
    if report.format == FORMAT_MAKE:
        out.extend(result.output for result in succeeded)
    elif report.format == FORMAT_TREE:
        out.extend(f"{result.command.source_path} {result.output}\n" for result in succeeded)
    elif report.format == FORMAT_INCLUDE_TREE:
        for result in succeeded:
            if print_include_tree:
                out.append(f"{result.command.source_path}:\n")
                out.append(format_include_tree(service.store, result.output))
            else:
                out.append(f"{result.command.source_path} {result.output}\n")
    else:
        from depscan.module_graph import topological_module_order

        modules = topological_module_order(report.modules.values())
        data: Dict[str, Any] = {
            "modules": [md.to_json() for md in modules],
            "translation-units": [result.output.full_deps.to_json(result.command.source_path) for result in succeeded],
        }
        out.append(json.dumps(data, indent=2) + "\n")
    return "".join(out)


def export_report_graph(report: ScanReport, service: DependencyScanningService, filename: str) -> bool:
    """Export the include graph of the first translation unit, or the module graph."""
    from depscan.export_utils import build_include_graph, build_module_export_graph, export_graph

    if report.format == FORMAT_FULL:
        return export_graph(filename, build_module_export_graph(report.modules.values()))
    if report.format != FORMAT_INCLUDE_TREE:
        print_error("--export-graph needs --format include-tree or --format full")
        return False
    succeeded = [result for result in report.results if result.succeeded]
    if not succeeded:
        print_error("No include tree to export")
        return False
    if len(succeeded) > 1:
        logger.warning("Exporting the include graph of %s only", succeeded[0].command.source_path)
    return export_graph(filename, build_include_graph(service.store, succeeded[0].output))


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the script.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s: %(message)s")
    if not should_use_color(no_color=args.no_color):
        Colors.disable()

    if args.check_packages:
        return EXIT_SUCCESS if check_all_packages() else EXIT_RUNTIME_ERROR

    require_package("networkx", "module graph ordering")
    require_package("colorama", "colored output")

    command = args.command[1:] if args.command[:1] == ["--"] else args.command
    if bool(command) == bool(args.compilation_database):
        print_error("Give either --compilation-database PATH or a compiler command after --")
        return EXIT_INVALID_ARGS
    if args.jobs is not None and args.jobs < 1:
        print_error(f"-j must be at least 1, got {args.jobs}")
        return EXIT_INVALID_ARGS

    try:
        if args.compilation_database:
            commands = load_compilation_database(args.compilation_database)
        else:
            commands = [command_from_arguments(command, os.getcwd())]
    except ValidationError as e:
        print_error(str(e))
        return EXIT_INVALID_ARGS

    config = ScanningServiceConfig(use_cas=args.cas_path is not None, cas_path=args.cas_path, module_files_dir=args.module_files_dir)
    service = DependencyScanningService(config)
    if args.verbose:
        print_info(f"Scanning {len(commands)} translation unit(s), format: {args.format}")

    report = scan_compilation_database(commands, service, args.format, max_workers=args.jobs, module_name=args.module_name)
    for failure in report.failures:
        print_scan_failure(failure.command.source_path, failure.error)

    text = render_report(report, service, args.print_include_tree)
    if args.output:
        try:
            with open(args.output, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            print_error(f"Cannot write to file '{args.output}': {e}")
            return EXIT_RUNTIME_ERROR
        print_success(f"Wrote {args.format} output to {args.output}", prefix=False)
    else:
        try:
            sys.stdout.write(text)
        except BrokenPipeError:
            # Handle broken pipe gracefully (e.g., when piping to head)
            devnull = os.open(os.devnull, os.O_WRONLY)
            os.dup2(devnull, sys.stdout.fileno())
            return EXIT_SUCCESS

    if args.export_graph and not export_report_graph(report, service, args.export_graph):
        return EXIT_RUNTIME_ERROR

    if report.failures:
        print_error(f"{len(report.failures)} of {len(report.results)} translation unit(s) failed to scan")
        return EXIT_SCAN_FAILED
    if args.verbose:
        print_success(f"Scanned {len(report.results)} translation unit(s) in {report.elapsed:.2f}s", prefix=False)
    return EXIT_SUCCESS


def cli_main() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        sys.exit(EXIT_KEYBOARD_INTERRUPT)
    except DepScanError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(EXIT_RUNTIME_ERROR)


if __name__ == "__main__":
    cli_main()
