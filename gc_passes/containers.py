"""
Dynamically-Sized Container Rewrite

The runtime's built-in memory block type is allocated and dereferenced
through two idioms that only work inside the runtime:

1. Allocation: `call ptr @jl_alloc_genericmemory(<type>, i64 <count>)`.
   Rewritten to a 16-byte header from malloc holding {length, data}, with
   the payload from malloc (fixed-layout elements) or calloc
   (mutable/abstract elements, zero-filled pointer slots).

2. Empty-instance dereference: an atomic load of the type's shared empty
   instance followed by a null check and a branch to a `fail` block.
   Rewritten to a cast of a zeroed module-level singleton and an
   unconditional branch; the fail block is dropped.

Leftover `@memoryref` bookkeeping calls are deleted.

Element layouts are read through RuntimeIntrospection, never from the IR
text, and are recorded in a per-module LayoutRegistry.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List

import runtime_names as names
from host_runtime import ContainerLayout, RuntimeIntrospection
from ir_errors import InconsistentContainerLayout, MalformedConstructPattern
from ir_extractor import ExtractedIR
from ir_text import BasicBlock, join_blocks, split_blocks


_LOGGER = logging.getLogger("staticir.containers")


def container_symbol(type_id: str) -> str:
    """Alias name (quoted, without '@') of a container type descriptor."""
    return f'"+Core.GenericMemory#{type_id}.jit"'


class LayoutRegistry:
    """
    Container layouts seen within one namespace module.

    A symbol read twice must give the same layout both times.
    """

    def __init__(self):
        self._layouts: Dict[str, ContainerLayout] = {}

    def register(self, symbol: str, layout: ContainerLayout):
        seen = self._layouts.get(symbol)
        if seen is not None and seen != layout:
            raise InconsistentContainerLayout(
                f"{symbol} read as {seen} and as {layout}"
            )
        self._layouts[symbol] = layout

    def get(self, symbol: str):
        return self._layouts.get(symbol)

    def __contains__(self, symbol: str) -> bool:
        return symbol in self._layouts

    def __len__(self):
        return len(self._layouts)


@dataclass
class ContainerRewriteResult:
    """What the rewrite changed in one function."""
    dereferences: int = 0
    allocations: int = 0
    memoryrefs: int = 0
    uses_malloc: bool = False
    uses_calloc: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.dereferences or self.allocations or self.memoryrefs)


def read_layouts(extracted: ExtractedIR, introspection: RuntimeIntrospection,
                 registry: LayoutRegistry) -> Dict[str, ContainerLayout]:
    """Read the layout of every container type the function references."""
    layouts: Dict[str, ContainerLayout] = {}
    for address, symbol in extracted.container_type_refs.items():
        layout = introspection.read_layout(address)
        if layout.element_size > names.ELEMENT_SIZE_WARNING:
            _LOGGER.warning(
                "%s: container type %s has element size %d bytes",
                extracted.renamed, symbol, layout.element_size,
            )
        registry.register(symbol, layout)
        layouts[symbol] = layout
    return layouts


def patch_instance_load(block: BasicBlock, blocks: Dict[str, BasicBlock]) -> bool:
    """
    Rewrite one empty-instance dereference in block.

    Expected shape, starting at the load:

        %v = load atomic ptr, ptr getelementptr inbounds (ptr, ptr @<type>, i64 4) ...
        %c = icmp eq ptr %v, null
        br i1 %c, label %failN, label %ok

    Returns:
        True if a dereference was rewritten

    Raises:
        MalformedConstructPattern: if the load is found without that shape
    """
    idx = block.find_line(names.CONTAINER_INSTANCE_LOAD_RE)
    if idx is None:
        return False

    load = block.lines[idx]
    eq = load.find("=")
    if eq < 0:
        raise MalformedConstructPattern(f"Container instance load without assignment: {load.strip()}")
    if idx + 2 >= len(block.lines):
        raise MalformedConstructPattern(f"No branch after container instance load: {load.strip()}")

    branch_line = block.lines[idx + 2]
    branch = names.CONDITIONAL_BRANCH_RE.search(branch_line)
    if branch is None:
        raise MalformedConstructPattern(
            f"Expected `br i1 %c, label %fail, label %ok` after load, got: {branch_line.strip()}"
        )
    cond, fail_label, ok_label = branch.groups()
    if f"%{cond} =" not in block.lines[idx + 1]:
        raise MalformedConstructPattern(
            f"Branch condition %{cond} is not computed right after the load"
        )
    if fail_label not in blocks:
        raise MalformedConstructPattern(f"Branch target %{fail_label} has no block")

    indent = branch_line[:len(branch_line) - len(branch_line.lstrip())]
    block.lines[idx] = f"{load[:eq + 1]} bitcast ptr @{names.DEFAULT_INSTANCE_NAME} to ptr"
    block.lines[idx + 2] = f"{indent}br label %{ok_label}"
    del block.lines[idx + 1]
    blocks[fail_label].clear()
    return True


def _allocation_lines(indent: str, var: str, count: str,
                      layout: ContainerLayout) -> List[str]:
    base = var.strip('"')
    size, data, field_ptr = (f'%"{base}.size"', f'%"{base}.data"', f'%"{base}.data_field"')

    if layout.is_mutable_or_abstract:
        elsize = names.POINTER_SLOT_SIZE
        payload = f"call ptr @calloc(i64 1, i64 {size})"
    else:
        elsize = layout.element_size
        payload = f"call ptr @malloc(i64 {size})"

    return [
        f"{indent}{size} = mul i64 {count}, {elsize}",
        f"{indent}%{var} = call ptr @malloc(i64 {names.CONTAINER_HEADER_SIZE})",
        f"{indent}store i64 {count}, ptr %{var}, align 8",
        f"{indent}{data} = {payload}",
        f"{indent}{field_ptr} = getelementptr i8, ptr %{var}, i64 {names.CONTAINER_DATA_FIELD_OFFSET}",
        f"{indent}store ptr {data}, ptr {field_ptr}, align 8",
    ]


def patch_container_alloc(block: BasicBlock, layouts: Dict[str, ContainerLayout]) -> str:
    """
    Rewrite one container allocation in block.

    Returns:
        "malloc" or "calloc" for the payload allocator used, or "" if the
        block holds no allocation

    Raises:
        MalformedConstructPattern: if an allocation call does not have the
            expected operands, or names a type whose layout was not read
    """
    for i, line in enumerate(block.lines):
        if names.CONTAINER_ALLOC_CALL not in line:
            continue
        m = names.CONTAINER_ALLOC_RE.search(line)
        if m is None:
            raise MalformedConstructPattern(f"Unrecognized container allocation: {line.strip()}")
        var, type_id, count = m.groups()
        symbol = container_symbol(type_id)
        layout = layouts.get(symbol)
        if layout is None:
            raise MalformedConstructPattern(f"No layout known for container type {symbol}")

        indent = line[:len(line) - len(line.lstrip())]
        block.lines[i:i + 1] = _allocation_lines(indent, var, count, layout)
        return "calloc" if layout.is_mutable_or_abstract else "malloc"
    return ""


def remove_memoryref_calls(block: BasicBlock) -> int:
    before = len(block.lines)
    block.lines = [l for l in block.lines if not names.MEMORYREF_CALL_RE.match(l)]
    return before - len(block.lines)


def rewrite_blocks(blocks: List[BasicBlock],
                   layouts: Dict[str, ContainerLayout]) -> ContainerRewriteResult:
    """Run all three rewrites over the blocks of one function body."""
    result = ContainerRewriteResult()
    by_label = {b.label: b for b in blocks}

    for block in blocks:
        while patch_instance_load(block, by_label):
            result.dereferences += 1

        allocator = patch_container_alloc(block, layouts)
        while allocator:
            result.allocations += 1
            result.uses_malloc = True
            result.uses_calloc = result.uses_calloc or allocator == "calloc"
            allocator = patch_container_alloc(block, layouts)

        result.memoryrefs += remove_memoryref_calls(block)
    return result


def rewrite_containers(extracted: ExtractedIR, introspection: RuntimeIntrospection,
                       registry: LayoutRegistry) -> ContainerRewriteResult:
    """
    Rewrite container idioms in every body of a function, in place.

    Adds the empty-instance singleton and allocator declarations the
    rewritten bodies need.
    """
    layouts = read_layouts(extracted, introspection, registry)
    total = ContainerRewriteResult()

    bodies = []
    for body in extracted.function_bodies:
        blocks = split_blocks(body)
        result = rewrite_blocks(blocks, layouts)
        if result.changed:
            body = join_blocks(blocks)
            if not body.endswith("\n"):
                body += "\n"
        bodies.append(body)

        total.dereferences += result.dereferences
        total.allocations += result.allocations
        total.memoryrefs += result.memoryrefs
        total.uses_malloc = total.uses_malloc or result.uses_malloc
        total.uses_calloc = total.uses_calloc or result.uses_calloc
    extracted.function_bodies = bodies

    if total.dereferences:
        extracted.alias_table[names.DEFAULT_INSTANCE_NAME] = names.DEFAULT_INSTANCE_IR
    if total.uses_malloc:
        extracted.declare("malloc", names.MALLOC_DECLARATION)
    if total.uses_calloc:
        extracted.declare("calloc", names.CALLOC_DECLARATION)

    if total.changed:
        _LOGGER.debug(
            "%s: %d dereference(s), %d allocation(s), %d memoryref call(s) rewritten",
            extracted.renamed, total.dereferences, total.allocations, total.memoryrefs,
        )
    return total
