"""
Binding Collector

Discovers what a standalone build needs from the host runtime:
- Global bindings: mutable single-value cells wrapping plain data, which
  become static globals in the output
- The call graph: every function transitively reachable from the entry
  point, each compiled and given a namespaced symbol name
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import runtime_names as names
from host_runtime import FunctionHandle, HostEntry, HostRuntime, Namespace
from ir_errors import DuplicateSymbol, UnsupportedValueType
from ir_values import encode_scalar_or_aggregate


_LOGGER = logging.getLogger("staticir.collector")


@dataclass(frozen=True)
class GlobalBinding:
    """An externally visible storage location seeded from a runtime value.

    Unique within a namespace by identifier.
    """
    identifier: str
    namespace: Namespace
    mangled_name: str = field(compare=False)
    ir_definition: str = field(compare=False, repr=False)
    ir_declaration: str = field(compare=False, repr=False)
    address: Optional[int] = field(default=None, compare=False)

    def __str__(self):
        return f"Binding: `{self.identifier}` from {self.namespace}"


def make_binding(runtime: HostRuntime, identifier: str, namespace: Namespace,
                 value, address: Optional[int] = None) -> GlobalBinding:
    """Mangle a name and encode a value into a GlobalBinding."""
    mangled = runtime.mangle(identifier, namespace)
    definition, declaration = encode_scalar_or_aggregate(mangled, value)
    return GlobalBinding(identifier, namespace, mangled, definition, declaration, address)


def _is_candidate(entry: HostEntry) -> bool:
    if entry.kind != "ref" or entry.value is None:
        return False
    return not entry.value.is_opaque and not entry.value.is_string


def collect_bindings(runtime: HostRuntime, root: Namespace,
                     skip_unsupported: bool = False) -> List[Tuple[int, GlobalBinding]]:
    """
    Collect (address, GlobalBinding) pairs from root and nested namespaces.

    Args:
        runtime: Host runtime to traverse
        root: Namespace to start from
        skip_unsupported: Log and skip values without an encoding instead
            of raising

    Raises:
        UnsupportedValueType: when a qualifying value cannot be encoded and
            skip_unsupported is False
    """
    found: List[Tuple[int, GlobalBinding]] = []
    visited: Set[Namespace] = set()
    _collect(runtime, root, visited, found, skip_unsupported)
    return found


def _collect(runtime: HostRuntime, ns: Namespace, visited: Set[Namespace],
             found: List[Tuple[int, GlobalBinding]], skip_unsupported: bool):
    if ns in visited:
        return
    visited.add(ns)

    for entry in runtime.namespace_entries(ns):
        # Re-exports and compiler-generated names are owned elsewhere
        if entry.imported or entry.is_compiler_internal:
            continue

        if entry.kind == "namespace":
            if entry.target is not None and entry.target != ns:
                _collect(runtime, entry.target, visited, found, skip_unsupported)
            continue

        if not _is_candidate(entry):
            continue
        if entry.address is None:
            _LOGGER.debug("binding %s.%s has no address; skipped", ns, entry.name)
            continue

        try:
            binding = make_binding(runtime, entry.name, ns, entry.value, entry.address)
        except UnsupportedValueType as e:
            if not skip_unsupported:
                raise
            _LOGGER.warning("skipping binding %s.%s: %s", ns, entry.name, e)
            continue
        found.append((entry.address, binding))


def collect_call_graph(runtime: HostRuntime,
                       entry: FunctionHandle) -> Dict[FunctionHandle, str]:
    """
    Walk the call graph from entry in depth-first discovery order.

    Each reachable function is compiled, mangled and recorded once, keyed by
    handle identity, so recursion and shared callees terminate. Functions on
    the runtime skip-list are never visited.

    Returns:
        Ordered mapping handle -> assigned symbol name

    Raises:
        DuplicateSymbol: when two distinct functions mangle to one symbol
    """
    name_map: Dict[FunctionHandle, str] = {}
    owners: Dict[str, FunctionHandle] = {}
    stack = [entry]

    while stack:
        handle = stack.pop()
        if handle in name_map or handle.name in names.CALL_GRAPH_SKIP_LIST:
            continue

        runtime.ensure_compiled(handle)
        mangled = runtime.mangle(handle.name, handle.namespace)
        # Output files are named by symbol
        if mangled in owners:
            raise DuplicateSymbol(
                f"{handle} and {owners[mangled]} are both named {mangled}"
            )
        owners[mangled] = handle
        name_map[handle] = mangled
        _LOGGER.debug("load: %s -> %s", handle, mangled)

        # Reverse so callees are visited in their listed order
        for callee in reversed(runtime.callees(handle)):
            if callee not in name_map:
                stack.append(callee)

    return name_map
