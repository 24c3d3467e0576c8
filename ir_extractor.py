"""
IR Extractor

Isolates one compiled function from the IR dump the JIT produced for it and
splits the rest of the dump into the tables later passes work on:

- function definitions (the function itself first, inlined helpers after)
- textual aliases (constants that can be copied as-is)
- address aliases (baked-in runtime addresses, bucketed by what they point to)
- external declarations (minus runtime GC/allocation helpers)
- attribute groups
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import runtime_names as names
from ir_errors import FunctionNotFound, MalformedConstructPattern
from ir_text import find_body_region, rename_symbols, strip_comments


def _empty_address_table() -> Dict[str, Dict[int, str]]:
    return {bucket: {} for _, bucket in names.ADDRESS_BUCKETS}


@dataclass
class ExtractedIR:
    """Structured IR of one compiled function.

    function_headers and function_bodies are parallel; index 0 is always the
    function's own definition. Passes edit the bodies in place.
    """
    name: str
    renamed: str
    function_headers: List[str] = field(default_factory=list)
    function_bodies: List[str] = field(default_factory=list)
    alias_table: Dict[str, str] = field(default_factory=dict)
    address_table: Dict[str, Dict[int, str]] = field(default_factory=_empty_address_table)
    declaration_table: Dict[str, str] = field(default_factory=dict)
    attribute_set: List[str] = field(default_factory=list)
    raw_ir: str = ""

    @property
    def global_refs(self) -> Dict[int, str]:
        return self.address_table[names.GLOBAL_REFS]

    @property
    def container_type_refs(self) -> Dict[int, str]:
        return self.address_table[names.CONTAINER_TYPE_REFS]

    @property
    def other_refs(self) -> Dict[int, str]:
        return self.address_table[names.OTHER_REFS]

    def map_bodies(self, fn):
        """Replace every body with fn(body)."""
        self.function_bodies = [fn(body) for body in self.function_bodies]

    def declare(self, name: str, declaration: str):
        """Add an external declaration unless one already exists."""
        self.declaration_table.setdefault(name, declaration)


def _classify_address(alias: str) -> str:
    for fragment, bucket in names.ADDRESS_BUCKETS:
        if fragment in alias:
            return bucket
    return names.OTHER_REFS


def extract(function_name: str, raw_ir: str, is_entry_point: bool = False,
            friendly_name: Optional[str] = None) -> ExtractedIR:
    """
    Extract the definition of function_name from a raw IR dump.

    Args:
        function_name: Symbol name the function was compiled under; its
            definition appears as @julia_<function_name>_<n>
        raw_ir: Complete IR text emitted for the function
        is_entry_point: Rename the function to `main` instead of
            function_name
        friendly_name: Prefix for renamed constant pool entries (defaults to
            function_name)

    Raises:
        FunctionNotFound: if no matching definition is present
        MalformedConstructPattern: if a definition has no balanced body
    """
    ir = strip_comments(raw_ir)
    ir = names.INTERNAL_CALL_RE.sub(r'@\1', ir)

    renamed = "main" if is_entry_point else function_name
    result = ExtractedIR(name=function_name, renamed=renamed, raw_ir=raw_ir)

    self_symbol = None
    self_index = 0
    for m in names.COMPILED_DEFINE_RE.finditer(ir):
        region = find_body_region(ir, m.start(), m.end())
        if region is None:
            raise MalformedConstructPattern(
                f"Function body for `{m.group(0).strip()}` not found"
            )
        header = m.group(0)
        body = region.slice(ir)
        base, suffix = m.group(1), m.group(2)
        if base == function_name and suffix.isdigit() and self_symbol is None:
            self_symbol = f"{names.COMPILED_FUNCTION_PREFIX}{base}_{suffix}"
            result.function_headers.insert(self_index, header)
            result.function_bodies.insert(self_index, body)
        else:
            result.function_headers.append(header)
            result.function_bodies.append(body)

    if self_symbol is None:
        raise FunctionNotFound(f"Function {function_name} not found in IR:\n{ir}")

    rename = {self_symbol: renamed}
    result.function_headers = [rename_symbols(h, rename) for h in result.function_headers]
    result.map_bodies(lambda body: rename_symbols(body, rename))

    _collect_aliases(result, ir, friendly_name or function_name)

    # External declarations, minus the runtime helpers the passes replace
    for m in names.DECLARATION_RE.finditer(ir):
        symbol = m.group(1)
        if names.RUNTIME_DECL_DENYLIST.match(symbol.strip('"')):
            continue
        result.declaration_table[symbol] = m.group(0)

    result.attribute_set = [m.group(0).rstrip() for m in names.ATTRIBUTE_LINE_RE.finditer(ir)]
    return result


def _collect_aliases(result: ExtractedIR, ir: str, const_prefix: str):
    const_renames: Dict[str, str] = {}
    for m in names.ALIAS_LINE_RE.finditer(ir):
        alias, value = m.group(1), m.group(2)

        if names.CONST_POOL_NAME_RE.match(alias):
            new_name = f'"_{const_prefix}_const#{len(const_renames) + 1}"'
            const_renames[alias] = new_name
            result.alias_table[new_name] = value
            continue

        addr = names.ADDRESS_CAST_RE.search(value)
        if addr is None:
            result.alias_table[alias] = value
        else:
            bucket = _classify_address(alias)
            result.address_table[bucket][int(addr.group(1))] = alias

    if const_renames:
        result.map_bodies(lambda body: rename_symbols(body, const_renames))
        for alias, value in list(result.alias_table.items()):
            result.alias_table[alias] = rename_symbols(value, const_renames)
