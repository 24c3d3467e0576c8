#!/usr/bin/env python3
"""
Static IR Builder

Turns the JIT output of a program into standalone LLVM IR files that link
without the host runtime.

Usage:
    python staticirc.py <snapshot> [--dir build] [--policy warn|strict|strip|strip_all]

Examples:
    python staticirc.py app.snapshot                     # Write IR to ./build
    python staticirc.py app.snapshot --dir out           # Write IR to ./out
    python staticirc.py app.snapshot --policy strip_all  # Remove GC scaffolding and pool allocations
    python staticirc.py app.snapshot --policy strict     # Abort on any runtime dependency
    python staticirc.py app.snapshot --debug             # Also write raw IR as *.orig.ll
    python staticirc.py app.snapshot --config build.toml # Read options from [staticir]

Exit codes:
    0  success
    1  build failed (fatal pipeline error)
    2  internal error
    3  files written, but diagnostics were reported
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from binding_collector import GlobalBinding, collect_bindings, collect_call_graph
from host_runtime import FunctionHandle, HostRuntime, Namespace
from ir_emitter import dump_module
from ir_errors import DiagnosticReport, StaticIRError
from module_assembler import AssemblyContext, CompiledFunction, NamespaceModule, assemble
from pipeline_config import PipelineConfig, Policy, load_config
from snapshot_loader import SnapshotRuntime


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERNAL = 2
EXIT_DIAGNOSTICS = 3


@dataclass
class BuildResult:
    """Outcome of one pipeline run."""
    modules: Dict[Namespace, NamespaceModule]
    functions: List[CompiledFunction]
    bindings: Dict[int, GlobalBinding]
    files_written: int
    report: DiagnosticReport = field(default_factory=DiagnosticReport)


def _print_first(items, n: int):
    for item in list(items)[:n]:
        print(f"  {item}")


def build(runtime: HostRuntime, entry: FunctionHandle, root: Namespace,
          config: Optional[PipelineConfig] = None) -> BuildResult:
    """
    Run the whole pipeline for the program rooted at entry.

    Args:
        runtime: Host runtime (live or snapshot)
        entry: Entry point function; emitted as `main`
        root: Namespace whose bindings are collected
        config: Pipeline options (defaults apply when None)

    Raises:
        StaticIRError: on any fatal pipeline condition
    """
    config = config or PipelineConfig()
    report = DiagnosticReport()

    start = time.time()
    print(f"Collecting global bindings in {root}...")
    known: Dict[int, GlobalBinding] = {}
    for address, binding in collect_bindings(runtime, root, config.skip_unsupported):
        known.setdefault(address, binding)
    print(f"  {len(known)} binding(s) in {time.time() - start:.3f}s")
    _print_first(known.values(), config.first_n)

    start = time.time()
    print(f"Walking call graph from {entry}...")
    name_map = collect_call_graph(runtime, entry)
    functions = [
        CompiledFunction.from_handle(handle, mangled, is_entry=(handle == entry))
        for handle, mangled in name_map.items()
    ]
    print(f"  {len(functions)} function(s) in {time.time() - start:.3f}s")
    _print_first(functions, config.first_n)

    start = time.time()
    print(f"Assembling modules (policy: {config.policy.value})...")
    context = AssemblyContext(runtime, config, report)
    modules = assemble(functions, known, context)
    print(f"  {len(modules)} module(s) in {time.time() - start:.3f}s")

    start = time.time()
    print(f"Writing IR to {config.output_dir}...")
    written = 0
    for ns in sorted(modules):
        written += dump_module(modules[ns], config.output_dir, debug=config.debug,
                               verify=config.verify, report=report)
    print(f"  {written} file(s) written in {time.time() - start:.3f}s")

    return BuildResult(modules, functions, known, written, report)


def main():
    parser = argparse.ArgumentParser(
        description="Static IR Builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s app.snapshot                     Write IR to ./build
  %(prog)s app.snapshot --dir out           Write IR to ./out
  %(prog)s app.snapshot --policy strip_all  Remove GC scaffolding and pool allocations
  %(prog)s app.snapshot --debug             Also write raw IR as *.orig.ll
        """
    )

    parser.add_argument("snapshot", help="Runtime snapshot (directory or .zip)")
    parser.add_argument("-o", "--dir", dest="output_dir",
                        help="Output directory (default: build)")
    parser.add_argument("--policy", choices=[p.value for p in Policy],
                        help="Handling of functions that still depend on the runtime")
    parser.add_argument("--config", help="TOML file with a [staticir] table")
    parser.add_argument("--debug", action="store_true", default=None,
                        help="Also write unmodified IR of every function")
    parser.add_argument("--verify", action="store_true", default=None,
                        help="Verify every written file with LLVM")
    parser.add_argument("--skip-unsupported", action="store_true", default=None,
                        help="Skip bindings whose values have no IR encoding")
    parser.add_argument("--firstN", dest="first_n", type=int,
                        help="Number of bindings/functions listed in progress output")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config) if args.config else PipelineConfig()
        config = config.merged(
            output_dir=args.output_dir,
            policy=args.policy,
            debug=args.debug,
            verify=args.verify,
            skip_unsupported=args.skip_unsupported,
            first_n=args.first_n,
        )

        runtime = SnapshotRuntime.load(args.snapshot)
        result = build(runtime, runtime.entry, runtime.root, config)
    except StaticIRError as e:
        print(f"Build failed: {e}", file=sys.stderr)
        sys.exit(EXIT_FAILED)
    except Exception as e:
        print(f"Internal error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(EXIT_INTERNAL)

    if result.report.has_failures:
        print(result.report.summary(), file=sys.stderr)
        sys.exit(EXIT_DIAGNOSTICS)

    print(f"Successfully built {len(result.functions)} function(s) into {config.output_dir}")
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
