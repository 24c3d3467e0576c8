"""
Runtime Value Encoding

Turns runtime constants into IR global definitions and external
declarations. Types and initializers are produced with llvmlite.ir so that
escaping and floating point formatting follow LLVM's textual syntax.

Supported kinds:
- int8 .. int128, uint8 .. uint128
- float32, float64
- bool (stored as i8)
- ptr (always emitted as null; a live address has no meaning statically)
- string ({i64 length, [n x i8] bytes, i8 0})
- bytes (opaque fixed-size layout of a structured value)
"""

from dataclasses import dataclass
from typing import Any, Tuple

from llvmlite import ir

from ir_errors import UnsupportedValueType


INT_WIDTHS = {
    "int8": 8, "int16": 16, "int32": 32, "int64": 64, "int128": 128,
    "uint8": 8, "uint16": 16, "uint32": 32, "uint64": 64, "uint128": 128,
}
FLOAT_KINDS = {"float32", "float64"}
SCALAR_KINDS = set(INT_WIDTHS) | FLOAT_KINDS | {"bool", "ptr"}
AGGREGATE_KINDS = {"string", "bytes"}
OPAQUE_KINDS = {"function", "type", "namespace"}


@dataclass(frozen=True)
class RuntimeValue:
    """A constant read from the host runtime."""
    kind: str
    data: Any = None

    @property
    def is_string(self) -> bool:
        return self.kind == "string"

    @property
    def is_opaque(self) -> bool:
        return self.kind in OPAQUE_KINDS

    def string_bytes(self) -> bytes:
        """Contents of a string value; text is stored as UTF-8, raw bytes as-is."""
        if isinstance(self.data, (bytes, bytearray)):
            return bytes(self.data)
        return self.data.encode("utf-8")

    def byte_size(self) -> int:
        if self.kind in INT_WIDTHS:
            return INT_WIDTHS[self.kind] // 8
        if self.kind == "float32":
            return 4
        if self.kind in ("float64", "ptr"):
            return 8
        if self.kind == "bool":
            return 1
        if self.kind == "string":
            return len(self.string_bytes())
        if self.kind == "bytes":
            return len(self.data)
        raise UnsupportedValueType(f"No size for value of kind '{self.kind}'")


def _alignment(size: int) -> int:
    for align in (16, 8, 4, 2):
        if size >= align and size % align == 0:
            return align
    return 1


def _signed(value: int, width: int) -> int:
    value &= (1 << width) - 1
    if value >= 1 << (width - 1):
        value -= 1 << width
    return value


def _scalar_constant(value: RuntimeValue) -> Tuple[ir.Type, ir.Constant, int]:
    kind = value.kind
    if kind in INT_WIDTHS:
        width = INT_WIDTHS[kind]
        typ = ir.IntType(width)
        return typ, ir.Constant(typ, _signed(int(value.data), width)), width // 8
    if kind == "float64":
        typ = ir.DoubleType()
        return typ, ir.Constant(typ, float(value.data)), 8
    if kind == "float32":
        typ = ir.FloatType()
        return typ, ir.Constant(typ, float(value.data)), 4
    if kind == "bool":
        typ = ir.IntType(8)
        return typ, ir.Constant(typ, 1 if value.data else 0), 1
    raise UnsupportedValueType(f"Unsupported scalar kind: {kind}")


def _aggregate_constant(value: RuntimeValue) -> Tuple[ir.Type, ir.Constant, int]:
    i8 = ir.IntType(8)
    if value.kind == "string":
        payload = bytearray(value.string_bytes())
        n = len(payload)
        array_t = ir.ArrayType(i8, n)
        typ = ir.LiteralStructType([ir.IntType(64), array_t, i8])
        const = ir.Constant(typ, [
            ir.Constant(ir.IntType(64), n),
            ir.Constant(array_t, payload),
            ir.Constant(i8, 0),
        ])
        return typ, const, 8
    if value.kind == "bytes":
        payload = bytearray(value.data)
        typ = ir.ArrayType(i8, len(payload))
        return typ, ir.Constant(typ, payload), _alignment(len(payload))
    raise UnsupportedValueType(f"Unsupported aggregate kind: {value.kind}")


def encode_scalar_or_aggregate(name: str, value: RuntimeValue,
                               constant: bool = False) -> Tuple[str, str]:
    """
    Encode a runtime value as an IR global.

    Args:
        name: Global symbol name without the leading '@'
        value: The value to encode
        constant: Emit `constant` instead of `global`

    Returns:
        (definition, declaration) lines, each terminated by a newline

    Raises:
        UnsupportedValueType: for functions, types and unknown kinds
    """
    storage = "constant" if constant else "global"

    if value.kind == "ptr":
        return (f"@{name} = {storage} ptr null, align 8\n",
                f"@{name} = external {storage} ptr\n")

    if value.kind in SCALAR_KINDS:
        typ, const, align = _scalar_constant(value)
    elif value.kind in AGGREGATE_KINDS:
        typ, const, align = _aggregate_constant(value)
    else:
        raise UnsupportedValueType(
            f"Cannot encode value of kind '{value.kind}' for @{name}"
        )

    definition = f"@{name} = {storage} {const}, align {align}\n"
    declaration = f"@{name} = external {storage} {typ}\n"
    return definition, declaration
