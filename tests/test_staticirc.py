"""
Tests for the pipeline driver, in-process and through the command line.
"""

import os

import pytest

from conftest import (
    ADD_IR, GC_ALLOC_IR, GLOBAL_ADDRESS, MAIN_GLOBAL_ALIAS, MAIN_IR, MYMOD, handle,
)
from host_runtime import HostEntry
from ir_errors import DuplicateSymbol
from ir_values import RuntimeValue
from pipeline_config import PipelineConfig
from staticirc import build


EXPECTED_FILES = ["_ZN5MyMod3addE.ll", "_ZN5MyMod6_main_E.ll", "_ZN5MyMod7__MOD__E.ll"]


def program(fake_runtime):
    main = handle("_main_", MYMOD, "Int64")
    add = handle("add", MYMOD, "Int64", "Int64")
    runtime = fake_runtime(
        entries={MYMOD: [
            HostEntry("COUNTER", "ref", address=GLOBAL_ADDRESS, value=RuntimeValue("int64", 41)),
        ]},
        callees={main: [add]},
        ir={main: MAIN_GLOBAL_ALIAS.format(address=GLOBAL_ADDRESS) + MAIN_IR, add: ADD_IR},
    )
    return runtime, main


class TestBuild:
    """In-process pipeline runs"""

    def test_outputs(self, fake_runtime, tmp_path):
        runtime, main = program(fake_runtime)
        result = build(runtime, main, MYMOD, PipelineConfig(output_dir=str(tmp_path)))

        assert result.files_written == 3
        assert sorted(os.listdir(tmp_path)) == EXPECTED_FILES
        assert len(result.report) == 0

    def test_entry_becomes_main(self, fake_runtime, tmp_path):
        runtime, main = program(fake_runtime)
        build(runtime, main, MYMOD, PipelineConfig(output_dir=str(tmp_path)))

        ir = (tmp_path / "_ZN5MyMod6_main_E.ll").read_text()
        assert ir.startswith("@_ZN5MyMod7COUNTERE = external global i64\n")
        assert 'define i64 @main(i64 signext %"x::Int64") #0 {' in ir
        assert 'call i64 @_ZN5MyMod3addE(i64 %"x::Int64", i64 1)' in ir
        assert "declare i64 @_ZN5MyMod3addE(i64, i64)\n" in ir

    def test_binding_module(self, fake_runtime, tmp_path):
        runtime, main = program(fake_runtime)
        build(runtime, main, MYMOD, PipelineConfig(output_dir=str(tmp_path)))
        assert (tmp_path / "_ZN5MyMod7__MOD__E.ll").read_text() == (
            "@_ZN5MyMod7COUNTERE = global i64 41, align 8\n"
        )

    def test_rebuild_is_noop(self, fake_runtime, tmp_path):
        config = PipelineConfig(output_dir=str(tmp_path))
        runtime, main = program(fake_runtime)
        build(runtime, main, MYMOD, config)
        runtime, main = program(fake_runtime)
        assert build(runtime, main, MYMOD, config).files_written == 0

    def test_overloads_abort_before_writing(self, fake_runtime, tmp_path):
        main = handle("_main_", MYMOD, "Int64")
        f_int, f_float = handle("f", MYMOD, "Int64"), handle("f", MYMOD, "Float64")
        runtime = fake_runtime(callees={main: [f_int, f_float]})
        out = tmp_path / "out"
        with pytest.raises(DuplicateSymbol):
            build(runtime, main, MYMOD, PipelineConfig(output_dir=str(out)))
        assert not out.exists()

    def test_progress_output(self, fake_runtime, tmp_path, capsys):
        runtime, main = program(fake_runtime)
        build(runtime, main, MYMOD, PipelineConfig(output_dir=str(tmp_path), first_n=1))
        out = capsys.readouterr().out
        assert "Collecting global bindings in MyMod..." in out
        assert "  1 binding(s)" in out
        assert "  Binding: `COUNTER` from MyMod" in out
        assert "  2 function(s)" in out


class TestCommandLine:
    """Driver runs through staticirc.py"""

    def test_clean_build(self, snapshot_dir, run_staticirc):
        result = run_staticirc(snapshot_dir())
        assert result.returncode == 0, result.stderr
        assert result.files == EXPECTED_FILES
        assert "Successfully built 2 function(s)" in result.stdout

    def test_second_run_writes_nothing(self, snapshot_dir, run_staticirc):
        path = snapshot_dir()
        run_staticirc(path)
        result = run_staticirc(path)
        assert result.returncode == 0
        assert "  0 file(s) written" in result.stdout

    def test_missing_binding_exit_code(self, snapshot_dir, run_staticirc):
        result = run_staticirc(snapshot_dir(global_address=1))
        assert result.returncode == 3
        assert "MissingBindingForAddress" in result.stderr
        assert "_ZN5MyMod6_main_E.ll" in result.files

    def test_strict_policy_aborts(self, snapshot_dir, run_staticirc):
        path = snapshot_dir(main_ir=GC_ALLOC_IR, main_name="make")
        result = run_staticirc(path, "--policy", "strict")
        assert result.returncode == 1
        assert "Build failed" in result.stderr
        assert result.files == []

    def test_warn_policy_reports(self, snapshot_dir, run_staticirc):
        path = snapshot_dir(main_ir=GC_ALLOC_IR, main_name="make")
        result = run_staticirc(path)
        assert result.returncode == 3
        assert "NonSelfContainedCode" in result.stderr
        assert "_ZN5MyMod4makeE.ll" in result.files

    def test_strip_all_policy(self, snapshot_dir, run_staticirc):
        path = snapshot_dir(main_ir=GC_ALLOC_IR, main_name="make")
        result = run_staticirc(path, "--policy", "strip_all")
        assert result.returncode == 0, result.stderr
        ir = (result.output_dir / "_ZN5MyMod4makeE.ll").read_text()
        assert "@malloc(i64 16)" in ir

    def test_debug_writes_original_ir(self, snapshot_dir, run_staticirc):
        result = run_staticirc(snapshot_dir(), "--debug")
        assert result.returncode == 0, result.stderr
        assert "_ZN5MyMod3addE.orig.ll" in result.files
        assert "_ZN5MyMod6_main_E.orig.ll" in result.files

    def test_config_file(self, snapshot_dir, run_staticirc, tmp_path):
        config = tmp_path / "build.toml"
        config.write_text('[staticir]\npolicy = "strict"\n')
        path = snapshot_dir(main_ir=GC_ALLOC_IR, main_name="make")
        result = run_staticirc(path, "--config", str(config))
        assert result.returncode == 1

    def test_command_line_overrides_config(self, snapshot_dir, run_staticirc, tmp_path):
        config = tmp_path / "build.toml"
        config.write_text('[staticir]\npolicy = "strict"\n')
        path = snapshot_dir(main_ir=GC_ALLOC_IR, main_name="make")
        result = run_staticirc(path, "--config", str(config), "--policy", "strip_all")
        assert result.returncode == 0, result.stderr

    def test_malformed_memory_segment(self, snapshot_dir, run_staticirc):
        path = snapshot_dir(extra_manifest='\n[[memory]]\nhex = "00"\n')
        result = run_staticirc(path)
        assert result.returncode == 1
        assert "memory entry missing 'address'" in result.stderr

    def test_bad_snapshot(self, run_staticirc, tmp_path):
        result = run_staticirc(str(tmp_path / "nothing"))
        assert result.returncode == 1
        assert "Snapshot not found" in result.stderr
