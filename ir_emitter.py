"""
IR Emission

Writes assembled namespace modules to disk:
  <output_dir>/<mangled namespace name>.ll   binding definitions
  <output_dir>/<mangled function name>.ll    rendered function IR
  <output_dir>/<mangled function name>.orig.ll   raw IR (debug only)

Files are only rewritten when their content changes, so a repeated run over
an unchanged program leaves every timestamp alone.
"""

import logging
import os
from typing import Optional

from llvmlite import binding

from ir_errors import DiagnosticReport, INVALID_MODULE_IR
from module_assembler import NamespaceModule


_LOGGER = logging.getLogger("staticir.emitter")

IR_SUFFIX = ".ll"
ORIGINAL_IR_SUFFIX = ".orig.ll"

_llvm_initialized = False


def _initialize_llvm():
    global _llvm_initialized
    if _llvm_initialized:
        return
    # Newer llvmlite versions initialize automatically and raise here
    try:
        binding.initialize()
    except RuntimeError:
        pass
    _llvm_initialized = True


def write_if_changed(path: str, content: str) -> int:
    """
    Write content to path unless the file already holds exactly that.

    Returns:
        1 if the file was written, 0 if skipped (unchanged or empty content)
    """
    if not content:
        return 0
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            if f.read() == content:
                return 0
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return 1


def verify_ir(ir_text: str) -> Optional[str]:
    """Parse and verify ir_text with LLVM; return the error message or None."""
    _initialize_llvm()
    try:
        mod = binding.parse_assembly(ir_text)
        mod.verify()
    except RuntimeError as e:
        return str(e).strip()
    return None


def _check(path: str, content: str, report: Optional[DiagnosticReport]):
    if report is None or not content:
        return
    error = verify_ir(content)
    if error is not None:
        report.add(INVALID_MODULE_IR, os.path.basename(path), error)


def dump_module(module: NamespaceModule, output_dir: str, debug: bool = False,
                verify: bool = False, report: Optional[DiagnosticReport] = None) -> int:
    """
    Write one namespace module and all of its functions.

    Args:
        module: Assembled module
        output_dir: Directory to write into (created if missing)
        debug: Also write each function's raw IR as <name>.orig.ll
        verify: Verify every written file with LLVM, reporting failures
            as InvalidModuleIR diagnostics
        report: Diagnostics sink (required for verify)

    Returns:
        Number of files written
    """
    os.makedirs(output_dir, exist_ok=True)
    check_report = report if verify else None
    written = 0

    ns_path = os.path.join(output_dir, module.mangled_namespace_name + IR_SUFFIX)
    ns_ir = module.bindings_ir()
    written += write_if_changed(ns_path, ns_ir)
    _check(ns_path, ns_ir, check_report)

    for fn in module.functions:
        path = os.path.join(output_dir, fn.mangled_name + IR_SUFFIX)
        written += write_if_changed(path, fn.ir_text)
        _check(path, fn.ir_text, check_report)

        if debug and fn.extracted_ir is not None:
            orig = os.path.join(output_dir, fn.mangled_name + ORIGINAL_IR_SUFFIX)
            written += write_if_changed(orig, fn.extracted_ir.raw_ir)

    _LOGGER.debug("%s: %d file(s) written", module.namespace, written)
    return written
