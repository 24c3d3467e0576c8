"""
Tests for IR emission: change-only writes, module dumping and verification.
"""

import os

import pytest

from conftest import ADD_IR, MYMOD, handle
from ir_emitter import dump_module, verify_ir, write_if_changed
from ir_errors import DiagnosticReport, INVALID_MODULE_IR
from ir_extractor import extract
from ir_values import RuntimeValue
from binding_collector import make_binding
from module_assembler import CompiledFunction, NamespaceModule


VALID_IR = "define i64 @main() {\nentry:\n  ret i64 0\n}\n"


def sample_module(fake_runtime, ir_text=VALID_IR):
    runtime = fake_runtime()
    module = NamespaceModule(MYMOD, "_ZN5MyMod7__MOD__E")
    module.add_binding(make_binding(runtime, "B", MYMOD, RuntimeValue("int64", 2)))
    module.add_binding(make_binding(runtime, "A", MYMOD, RuntimeValue("int64", 1)))
    fn = CompiledFunction.from_handle(handle("add"), "_ZN5MyMod3addE", is_entry=True)
    fn.extracted_ir = extract("_ZN5MyMod3addE", ADD_IR, True)
    fn.ir_text = ir_text
    module.functions.append(fn)
    return module


class TestWriteIfChanged:
    """Tests for write_if_changed"""

    def test_new_file(self, tmp_path):
        path = tmp_path / "a.ll"
        assert write_if_changed(str(path), "x") == 1
        assert path.read_text() == "x"

    def test_unchanged_content_not_rewritten(self, tmp_path):
        path = str(tmp_path / "a.ll")
        write_if_changed(path, "same")
        mtime = os.stat(path).st_mtime_ns
        assert write_if_changed(path, "same") == 0
        assert os.stat(path).st_mtime_ns == mtime

    def test_changed_content(self, tmp_path):
        path = tmp_path / "a.ll"
        write_if_changed(str(path), "old")
        assert write_if_changed(str(path), "new") == 1
        assert path.read_text() == "new"

    def test_empty_content_never_written(self, tmp_path):
        path = tmp_path / "a.ll"
        assert write_if_changed(str(path), "") == 0
        assert not path.exists()


class TestDumpModule:
    """Tests for dump_module"""

    def test_files_written(self, tmp_path, fake_runtime):
        written = dump_module(sample_module(fake_runtime), str(tmp_path / "out"))
        assert written == 2
        assert sorted(os.listdir(tmp_path / "out")) == ["_ZN5MyMod3addE.ll", "_ZN5MyMod7__MOD__E.ll"]

    def test_bindings_in_identifier_order(self, tmp_path, fake_runtime):
        dump_module(sample_module(fake_runtime), str(tmp_path))
        content = (tmp_path / "_ZN5MyMod7__MOD__E.ll").read_text()
        assert content == (
            "@_ZN5MyMod1AE = global i64 1, align 8\n"
            "@_ZN5MyMod1BE = global i64 2, align 8\n"
        )

    def test_second_run_writes_nothing(self, tmp_path, fake_runtime):
        module = sample_module(fake_runtime)
        dump_module(module, str(tmp_path))
        assert dump_module(module, str(tmp_path)) == 0

    def test_debug_writes_original(self, tmp_path, fake_runtime):
        dump_module(sample_module(fake_runtime), str(tmp_path), debug=True)
        assert (tmp_path / "_ZN5MyMod3addE.orig.ll").read_text(encoding="utf-8") == ADD_IR

    def test_empty_namespace_module_skipped(self, tmp_path):
        module = NamespaceModule(MYMOD, "_ZN5MyMod7__MOD__E")
        assert dump_module(module, str(tmp_path)) == 0
        assert os.listdir(tmp_path) == []


class TestVerify:
    """LLVM verification of emitted IR"""

    def test_valid_ir(self):
        assert verify_ir(VALID_IR) is None

    def test_invalid_ir(self):
        assert verify_ir("this is not IR") is not None

    def test_invalid_file_reported(self, tmp_path, fake_runtime):
        report = DiagnosticReport()
        module = sample_module(fake_runtime, ir_text="define i64 @main( {\n")
        dump_module(module, str(tmp_path), verify=True, report=report)
        assert [d.subject for d in report.of_kind(INVALID_MODULE_IR)] == ["_ZN5MyMod3addE.ll"]
