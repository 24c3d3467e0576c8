"""
Runtime Naming Constants

Symbol fragments, denylists and fixed offsets describing how the host JIT
names things in the IR it emits. Every pass matches against these values
instead of spelling the patterns inline.
"""

import re

# Compiled function definitions: define ... @julia_<name>_<n>(...
COMPILED_FUNCTION_PREFIX = "julia_"
COMPILED_DEFINE_RE = re.compile(
    r'^define\s+.*?@julia_([A-Za-z0-9_]+)_([A-Za-z0-9]+)\(.*$', re.MULTILINE
)

# Internal call stubs: @j_<name>_<n> -> @<name>
INTERNAL_CALL_RE = re.compile(r'@j_([A-Za-z0-9_]+)_\d+')

# Top-level alias assignments: @<name> = <value>
ALIAS_LINE_RE = re.compile(r'^@([^\s]+)\s*=\s(.+)$', re.MULTILINE)

# Raw numeric address cast to a pointer inside an alias value
ADDRESS_CAST_RE = re.compile(r'inttoptr \(i64 (\d+) to ptr\)')

# Address buckets, matched in order against the alias name
GLOBAL_REFS = "global_refs"
CONTAINER_TYPE_REFS = "container_type_refs"
OTHER_REFS = "other_refs"
ADDRESS_BUCKETS = [
    ("jl_global#", GLOBAL_REFS),
    ("Core.GenericMemory#", CONTAINER_TYPE_REFS),
    ("", OTHER_REFS),
]

# Per-compilation constant pool entries, e.g. @"_j_const#3"
CONST_POOL_NAME_RE = re.compile(r'^"_j_const#\d+"$')

# External declarations of runtime helpers that must not leak into the output
DECLARATION_RE = re.compile(r'^declare\s+.*?@("[^"]+"|[^\s(]+)\(.*$', re.MULTILINE)
RUNTIME_DECL_DENYLIST = re.compile(
    r'^(?:ijl_gc_|ijl_box_|julia\.gc_alloc_|julia\.pointer_from_objref|julia\.\w*_gc_frame)'
)

# Attribute groups: attributes #0 = { ... }
ATTRIBUTE_LINE_RE = re.compile(r'^attributes\s+#\d+\s+=\s+\{.*\}\s*$', re.MULTILINE)

# Self-containment markers
RUNTIME_CALL_RE = re.compile(r'@("?(?:ijl_|jl_|julia\.)[^\s(),]*)')
ADDRESS_LITERAL_CAST_RE = re.compile(r'inttoptr\s*\(?\s*i\d+\s+(\d+)\s+to\b')
SHADOW_STACK_RE = re.compile(r'%(?:pgcstack|gcframe)\d*\b|@julia\.(?:get_pgcstack|push_gc_frame)\b')

# GC bookkeeping pseudo-variables removed by the scaffolding pass
GC_SCAFFOLD_PATTERNS = [
    r' %pgcstack\d*( = |,)',
    r' %ptls_field\d*( = |,)',
    r'%ptls_load\d* = ',
    r'%gcframe\d*( = |,)',
    r'%jlcallframe\d*( = |,)',
    r'%task\.gcstack\d*( = |,)',
    r'%frame\.prev\d*( = |,)',
    r'%gc_slot_addr_\d*( = |,)',
]
TAG_ADDRESS_RE = re.compile(r'%"([^"]+)\.tag_addr" =')
POOL_ALLOC_CALL = "@ijl_gc_pool_alloc_instrumented("
DEREFERENCEABLE_RE = re.compile(r'dereferenceable\((\d+)\)')

# Dynamically-sized container protocol
CONTAINER_SYMBOL_RE = r'@"\+Core\.GenericMemory#(\d+)\.jit"'
CONTAINER_INSTANCE_LOAD_RE = re.compile(
    r'\(ptr,\s*ptr\s+' + CONTAINER_SYMBOL_RE + r',\s*i64\s+4\)'
)
CONTAINER_ALLOC_RE = re.compile(
    r'%("[^"]+"|[^\s=]+)\s*=\s*call ptr @jl_alloc_genericmemory\(ptr nonnull '
    + CONTAINER_SYMBOL_RE + r',\s*i64\s*(%"[^"]+"|%[^\s)]+|\d+)\)'
)
CONTAINER_ALLOC_CALL = "@jl_alloc_genericmemory("
MEMORYREF_CALL_RE = re.compile(r'^.*call void @memoryref\(.*\)\s*$')
CONDITIONAL_BRANCH_RE = re.compile(
    r'br\s+i1\s+%([\w.]+),\s+label\s+%(fail\d*),\s+label\s+%([\w.]+)'
)

DEFAULT_INSTANCE_NAME = "__DefaultMemoryInstance__"
DEFAULT_INSTANCE_IR = "common global { i64, ptr } zeroinitializer, align 16"
CONTAINER_HEADER_SIZE = 16
CONTAINER_DATA_FIELD_OFFSET = 8
POINTER_SLOT_SIZE = 8
ELEMENT_SIZE_WARNING = 256

MALLOC_DECLARATION = "declare noalias nonnull ptr @malloc(i64)"
CALLOC_DECLARATION = "declare noalias ptr @calloc(i64, i64)"

# Functions never pulled into the call graph
CALL_GRAPH_SKIP_LIST = frozenset({
    "throw_boundserror",
    "throw_inexacterror",
    "throw_overflowerr_binaryop",
    "throw_checksize_error",
    "ijl_bounds_error_int",
})

# Layout walk over type descriptors (word indices, 0-based)
WORD_SIZE = 8
DESCRIPTOR_PARAMETERS_WORD = 2
PARAMETERS_ELEMENT_TYPE_WORD = 2
DATATYPE_NAME_WORD = 0
DATATYPE_LAYOUT_WORD = 5
TYPENAME_FLAGS_OFFSET = 12 * 8 + 4
TYPENAME_MUTABLE_OR_ABSTRACT_MASK = 0x3

# Heap object tags
TAG_OFFSET = -8
TAG_GC_BITS = 0xF
PLAUSIBLE_POINTER_MIN = 4096

# Names hidden from namespace traversal
COMPILER_INTERNAL_PREFIX = "#"
