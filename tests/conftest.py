"""
Pytest configuration and fixtures for the static IR pipeline tests.

Provides reusable fixtures for:
- Sample raw IR dumps as the JIT emits them
- An in-memory HostRuntime with canned introspection
- Building snapshot directories on disk
- Running the staticirc driver as a subprocess
"""

import os
import struct
import subprocess
import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from host_runtime import (
    ContainerLayout, FunctionHandle, HostRuntime,
    MemoryImageIntrospection, Namespace,
)
from ir_errors import IntrospectionError


MYMOD = Namespace(("MyMod",))

# A plain function with no runtime dependencies
ADD_IR = '''; Function Signature: add(Int64, Int64)
;  @ REPL[1]:1 within `add`
define i64 @julia__ZN5MyMod3addE_1234(i64 signext %"x::Int64", i64 signext %"y::Int64") #0 {
top:
; ┌ @ int.jl:87 within `+`
   %0 = add i64 %"y::Int64", %"x::Int64"
   ret i64 %0
; └
}

attributes #0 = { "frame-pointer"="all" "probe-stack"="inline-asm" }
'''

# An inlined helper listed before the function itself
HELPER_FIRST_IR = '''define i64 @julia_helper_77(i64 %x) #0 {
top:
  %0 = mul i64 %x, 2
  ret i64 %0
}

define { i64, ptr } @julia__ZN5MyMod4pairE_5(i64 %x) #0 {
top:
  %0 = call i64 @j_helper_78(i64 %x)
  %1 = insertvalue { i64, ptr } undef, i64 %0, 0
  ret { i64, ptr } %1
}

declare i64 @helper(i64)

attributes #0 = { "frame-pointer"="all" }
'''

# Reads a global binding and a private string constant
GLOBAL_REF_IR = '''@"jl_global#12.jit" = private unnamed_addr constant ptr inttoptr (i64 140000000 to ptr), align 8
@"_j_const#1" = private unnamed_addr constant [5 x i8] c"hello", align 1
@"+Main.Base.Foo#33.jit" = private unnamed_addr constant ptr inttoptr (i64 4400000500 to ptr), align 8

define i64 @julia__ZN5MyMod4readE_55() #0 {
top:
  %0 = load i64, ptr @"jl_global#12.jit", align 8
  %1 = getelementptr i8, ptr @"_j_const#1", i64 0
  ret i64 %0
}

declare void @ijl_throw(ptr)
declare ptr @ijl_gc_pool_alloc_instrumented(ptr, i32, i32, i64)
declare ptr @julia.get_pgcstack()

attributes #0 = { "frame-pointer"="all" }
'''

# Allocates one boxed object through the runtime's pool allocator
GC_ALLOC_IR = '''define nonnull ptr @julia__ZN5MyMod4makeE_90(i64 signext %"x::Int64") #0 {
top:
  %pgcstack = call ptr @julia.get_pgcstack()
  %ptls_field = getelementptr inbounds ptr, ptr %pgcstack, i64 2
  %ptls_load = load ptr, ptr %ptls_field, align 8
  %"new::Point" = call noalias nonnull align 8 dereferenceable(16) ptr @ijl_gc_pool_alloc_instrumented(ptr %ptls_load, i32 752, i32 16, i64 4400001000) #5
  %"new::Point.tag_addr" = getelementptr inbounds i64, ptr %"new::Point", i64 -1
  store atomic i64 4400001000, ptr %"new::Point.tag_addr" unordered, align 8
  store i64 %"x::Int64", ptr %"new::Point", align 8
  ret ptr %"new::Point"
}

declare ptr @julia.get_pgcstack()
declare noalias nonnull ptr @ijl_gc_pool_alloc_instrumented(ptr, i32, i32, i64)

attributes #0 = { "frame-pointer"="all" }
'''

# Dereferences the empty instance of a container type
EMPTY_CONTAINER_IR = '''@"+Core.GenericMemory#4401.jit" = private unnamed_addr constant ptr inttoptr (i64 4401000 to ptr), align 8

define i64 @julia__ZN5MyMod5emptyE_31() #0 {
top:
  %memory_data = load atomic ptr, ptr getelementptr inbounds (ptr, ptr @"+Core.GenericMemory#4401.jit", i64 4) unordered, align 16
  %.not = icmp eq ptr %memory_data, null
  br i1 %.not, label %fail, label %pass
fail:
  call void @ijl_throw(ptr null)
  unreachable
pass:
  %len = load i64, ptr %memory_data, align 8
  ret i64 %len
other:
  ret i64 0
}

declare void @ijl_throw(ptr)

attributes #0 = { "frame-pointer"="all" }
'''

# Allocates a container of %n elements
CONTAINER_ALLOC_IR = '''@"+Core.GenericMemory#4402.jit" = private unnamed_addr constant ptr inttoptr (i64 4402000 to ptr), align 8

define nonnull ptr @julia__ZN5MyMod5zerosE_40(i64 signext %n) #0 {
top:
  %mem = call ptr @jl_alloc_genericmemory(ptr nonnull @"+Core.GenericMemory#4402.jit", i64 %n)
  call void @memoryref(ptr %mem)
  ret ptr %mem
}

declare ptr @jl_alloc_genericmemory(ptr, i64)
declare void @memoryref(ptr)

attributes #0 = { "frame-pointer"="all" }
'''

CONTAINER_TYPE_ADDRESS = 4402000
EMPTY_CONTAINER_TYPE_ADDRESS = 4401000
GLOBAL_ADDRESS = 140000000
STRING_TAG = 0x9000


def word(value: int) -> bytes:
    return struct.pack("<Q", value)


def string_object(address: int, text, tag: int = STRING_TAG):
    """Memory segment holding a runtime string at address (tag word included)."""
    payload = text if isinstance(text, bytes) else text.encode("utf-8")
    return address - 8, word(tag | 0x3) + word(len(payload)) + payload


class CannedIntrospection(MemoryImageIntrospection):
    """Memory image with container layouts served from a table."""

    def __init__(self, layouts=None, segments=(), string_type_tag=STRING_TAG):
        super().__init__(segments, string_type_tag)
        self.layouts = dict(layouts or {})
        self.layout_reads = []

    def read_layout(self, type_address: int) -> ContainerLayout:
        self.layout_reads.append(type_address)
        if type_address not in self.layouts:
            raise IntrospectionError(f"no layout for {type_address}")
        return self.layouts[type_address]


class FakeRuntime(HostRuntime):
    """In-memory HostRuntime recording compile requests."""

    def __init__(self, entries=None, callees=None, ir=None, introspection=None):
        self.entries = entries or {}
        self.callee_map = callees or {}
        self.ir = ir or {}
        self.introspection = introspection or CannedIntrospection()
        self.compiled = []

    def namespace_entries(self, namespace):
        return list(self.entries.get(namespace, []))

    def callees(self, handle):
        return list(self.callee_map.get(handle, []))

    def ensure_compiled(self, handle):
        self.compiled.append(handle)

    def compile_and_emit_ir(self, handle):
        return self.ir[handle]


def handle(name: str, namespace: Namespace = MYMOD, *arg_types) -> FunctionHandle:
    return FunctionHandle(f"{namespace}.{name}({','.join(arg_types)})", name,
                          namespace, tuple(arg_types))


@pytest.fixture
def package_root():
    """Path to the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_runtime():
    """Factory for FakeRuntime instances."""
    def _make(**kwargs) -> FakeRuntime:
        return FakeRuntime(**kwargs)
    return _make


@pytest.fixture
def container_layouts():
    """Canned introspection giving both sample container types 8-byte elements."""
    return CannedIntrospection(layouts={
        CONTAINER_TYPE_ADDRESS: ContainerLayout(False, 8),
        EMPTY_CONTAINER_TYPE_ADDRESS: ContainerLayout(False, 8),
    })


MAIN_IR = '''define i64 @julia__ZN5MyMod6_main_E_1(i64 signext %"x::Int64") #0 {
top:
  %0 = call i64 @j__ZN5MyMod3addE_1234(i64 %"x::Int64", i64 1)
  %1 = load i64, ptr @"jl_global#12.jit", align 8
  %2 = add i64 %0, %1
  ret i64 %2
}

declare i64 @j__ZN5MyMod3addE_1234(i64, i64)

attributes #0 = { "frame-pointer"="all" }
'''

MAIN_GLOBAL_ALIAS = (
    '@"jl_global#12.jit" = private unnamed_addr constant ptr '
    'inttoptr (i64 {address} to ptr), align 8\n'
)


@pytest.fixture
def snapshot_dir(tmp_path):
    """
    Fixture that writes a snapshot directory and returns its path.

    Usage:
        path = snapshot_dir()                          # _main_ -> add, COUNTER binding
        path = snapshot_dir(global_address=1)          # unresolvable global reference
        path = snapshot_dir(main_ir=GC_ALLOC_IR, ...)  # custom entry IR
    """
    def _build(global_address: int = GLOBAL_ADDRESS, main_ir: str = None,
               main_name: str = "_main_", extra_manifest: str = "") -> str:
        root = tmp_path / "app.snapshot"
        (root / "ir").mkdir(parents=True)

        if main_ir is None:
            main_ir = MAIN_GLOBAL_ALIAS.format(address=global_address) + MAIN_IR
        (root / "ir" / "main.ll").write_text(main_ir, encoding="utf-8")
        (root / "ir" / "add.ll").write_text(ADD_IR, encoding="utf-8")

        (root / "manifest.toml").write_text(f'''
[snapshot]
root = "MyMod"
entry = "MyMod.{main_name}(Int64)"

[[namespace]]
path = "MyMod"

[[binding]]
namespace = "MyMod"
name = "COUNTER"
kind = "ref"
address = {GLOBAL_ADDRESS}
value = {{ type = "int64", data = 41 }}

[[function]]
id = "MyMod.{main_name}(Int64)"
namespace = "MyMod"
name = "{main_name}"
arg_types = ["Int64"]
ir = "ir/main.ll"
callees = ["MyMod.add(Int64,Int64)"]

[[function]]
id = "MyMod.add(Int64,Int64)"
namespace = "MyMod"
name = "add"
arg_types = ["Int64", "Int64"]
ir = "ir/add.ll"
{extra_manifest}
''', encoding="utf-8")
        return str(root)

    return _build


class DriverResult:
    """Result of one staticirc run."""

    def __init__(self, returncode: int, stdout: str, stderr: str, output_dir: Path):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.output_dir = output_dir

    @property
    def files(self):
        if not self.output_dir.exists():
            return []
        return sorted(p.name for p in self.output_dir.iterdir())


@pytest.fixture
def run_staticirc(package_root, tmp_path):
    """
    Fixture that runs the driver on a snapshot.

    Usage:
        result = run_staticirc(snapshot_path, "--policy", "strict")
        assert result.returncode == 0
    """
    def _run(snapshot: str, *args) -> DriverResult:
        output_dir = tmp_path / "out"
        cmd = [sys.executable, os.path.join(package_root, "staticirc.py"),
               snapshot, "--dir", str(output_dir)] + list(args)
        result = subprocess.run(cmd, capture_output=True, text=True, cwd=package_root)
        return DriverResult(result.returncode, result.stdout, result.stderr, output_dir)

    return _run
