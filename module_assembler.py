"""
Module Assembler

Groups compiled functions and the global bindings they reference into one
NamespaceModule per namespace, resolving every baked-in binding address in
a function's IR to the mangled name of a static global.

Per function:
1. Extract the IR and run the GC and container passes (prepare_function)
2. Resolve global binding addresses; unknown addresses are reconstructed
   from runtime memory into synthesized `_global_<n>` bindings
3. Apply all alias renames to the function's bodies in one pass
4. Render the final IR and check it against the policy
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from binding_collector import GlobalBinding, make_binding
from gc_passes.containers import LayoutRegistry, rewrite_containers
from gc_passes.gc_strip import eliminate_gc, enforce_policy
from host_runtime import FunctionHandle, HostRuntime, Namespace, reconstruct
from ir_errors import DiagnosticReport, MISSING_BINDING
from ir_extractor import ExtractedIR, extract
from ir_text import referenced_symbols, rename_symbols
from pipeline_config import PipelineConfig, Policy


_LOGGER = logging.getLogger("staticir.assembler")

NAMESPACE_MODULE_NAME = "__MOD__"
SYNTHETIC_BINDING_PREFIX = "_global_"


@dataclass
class CompiledFunction:
    """One distinct function signature reachable from the entry point."""
    handle: FunctionHandle
    friendly_name: str
    mangled_name: str
    namespace: Namespace
    argument_types: Tuple[str, ...] = ()
    is_entry: bool = False
    extracted_ir: Optional[ExtractedIR] = None
    ir_text: str = ""

    @classmethod
    def from_handle(cls, handle: FunctionHandle, mangled_name: str,
                    is_entry: bool = False) -> "CompiledFunction":
        return cls(
            handle=handle,
            friendly_name=handle.name,
            mangled_name=mangled_name,
            namespace=handle.namespace,
            argument_types=handle.arg_types,
            is_entry=is_entry,
        )

    def __str__(self):
        return f"{self.namespace}.{self.friendly_name}({', '.join(self.argument_types)})"


@dataclass
class NamespaceModule:
    """Functions and bindings owned by one namespace."""
    namespace: Namespace
    mangled_namespace_name: str
    global_bindings: Dict[str, GlobalBinding] = field(default_factory=dict)
    functions: List[CompiledFunction] = field(default_factory=list)
    container_layouts: LayoutRegistry = field(default_factory=LayoutRegistry)

    def add_binding(self, binding: GlobalBinding):
        self.global_bindings.setdefault(binding.identifier, binding)

    def bindings_ir(self) -> str:
        """Binding definitions in identifier order."""
        return "".join(
            self.global_bindings[name].ir_definition
            for name in sorted(self.global_bindings)
        )


class AssemblyContext:
    """
    State shared by one assembly run.

    Holds the runtime, configuration and diagnostics, the namespace modules
    created so far and the per-namespace counters for synthesized binding
    names.
    """

    def __init__(self, runtime: HostRuntime, config: Optional[PipelineConfig] = None,
                 report: Optional[DiagnosticReport] = None):
        self.runtime = runtime
        self.config = config or PipelineConfig()
        self.report = report if report is not None else DiagnosticReport()
        self.modules: Dict[Namespace, NamespaceModule] = {}
        self._counters: Dict[Namespace, int] = {}

    @property
    def policy(self) -> Policy:
        return self.config.policy

    def module_for(self, namespace: Namespace) -> NamespaceModule:
        module = self.modules.get(namespace)
        if module is None:
            module = NamespaceModule(
                namespace, self.runtime.mangle(NAMESPACE_MODULE_NAME, namespace)
            )
            self.modules[namespace] = module
        return module

    def next_binding_name(self, namespace: Namespace) -> str:
        n = self._counters.get(namespace, 0) + 1
        self._counters[namespace] = n
        return f"{SYNTHETIC_BINDING_PREFIX}{n}"


def prepare_function(fn: CompiledFunction, context: AssemblyContext) -> ExtractedIR:
    """Extract a function's IR and run the GC and container passes once."""
    if fn.extracted_ir is not None:
        return fn.extracted_ir

    raw_ir = context.runtime.compile_and_emit_ir(fn.handle)
    extracted = extract(fn.mangled_name, raw_ir, fn.is_entry, fn.friendly_name)
    eliminate_gc(extracted, context.policy)
    registry = context.module_for(fn.namespace).container_layouts
    rewrite_containers(extracted, context.runtime.introspection, registry)
    fn.extracted_ir = extracted
    return extracted


def _resolve_binding(address: int, alias: str, fn: CompiledFunction,
                     known_bindings: Dict[int, GlobalBinding],
                     context: AssemblyContext) -> Optional[GlobalBinding]:
    binding = known_bindings.get(address)
    if binding is not None:
        return binding

    value = reconstruct(context.runtime.introspection, address)
    if value is None:
        context.report.add(
            MISSING_BINDING, str(fn),
            f"cannot reconstruct value for @{alias} at address {address}",
        )
        return None

    name = context.next_binding_name(fn.namespace)
    binding = make_binding(context.runtime, name, fn.namespace, value, address)
    known_bindings[address] = binding
    _LOGGER.debug("synthesized %s for address %d", binding, address)
    return binding


def render_function_ir(extracted: ExtractedIR, binding_declarations: List[str]) -> str:
    """
    Render the final IR of one function.

    Order: binding declarations, aliases, definitions (self first), external
    declarations still referenced by the code, attribute groups.
    """
    code = []
    for name, value in extracted.alias_table.items():
        code.append(f"@{name} = {value}\n")
    for header, body in zip(extracted.function_headers, extracted.function_bodies):
        if not body.endswith("\n"):
            body += "\n"
        code.append(f"{header}\n{body}}}\n")
    code_text = "".join(code)

    used = referenced_symbols(code_text)
    declarations = [
        decl + "\n" for name, decl in extracted.declaration_table.items() if name in used
    ]

    parts = list(dict.fromkeys(binding_declarations))
    parts.append(code_text)
    parts.extend(declarations)
    parts.extend(attr + "\n" for attr in extracted.attribute_set)
    return "".join(parts)


def _unresolved_addresses(extracted: ExtractedIR) -> List[str]:
    used = referenced_symbols("".join(extracted.function_bodies))
    unresolved = [
        f"unrewritten container type @{alias}"
        for alias in extracted.container_type_refs.values() if alias in used
    ]
    unresolved.extend(
        f"unresolved runtime address @{alias}"
        for alias in extracted.other_refs.values() if alias in used
    )
    return unresolved


def assemble_function(fn: CompiledFunction, known_bindings: Dict[int, GlobalBinding],
                      context: AssemblyContext) -> str:
    """Resolve, rename, render and policy-check one function."""
    extracted = prepare_function(fn, context)
    context.module_for(fn.namespace).functions.append(fn)

    renames: Dict[str, str] = {}
    declarations: List[str] = []
    used = referenced_symbols("".join(extracted.function_bodies))
    for address, alias in extracted.global_refs.items():
        # Only referenced from code the passes removed
        if alias not in used:
            continue
        binding = _resolve_binding(address, alias, fn, known_bindings, context)
        if binding is None:
            continue
        context.module_for(binding.namespace).add_binding(binding)
        renames[alias] = binding.mangled_name
        declarations.append(binding.ir_declaration)

    extracted.map_bodies(lambda body: rename_symbols(body, renames))

    fn.ir_text = render_function_ir(extracted, declarations)
    enforce_policy(str(fn), fn.ir_text, context.policy, context.report,
                   extra=_unresolved_addresses(extracted))
    return fn.ir_text


def assemble(functions: List[CompiledFunction], known_bindings: Dict[int, GlobalBinding],
             context: AssemblyContext) -> Dict[Namespace, NamespaceModule]:
    """
    Build the namespace modules for a set of compiled functions.

    known_bindings is extended with every binding synthesized along the way.

    Returns:
        Mapping namespace -> NamespaceModule, for every namespace that owns
        a function or a referenced binding
    """
    for fn in functions:
        assemble_function(fn, known_bindings, context)
    return context.modules
