"""
Host Runtime Boundary

Everything the pipeline needs from the managed runtime goes through the
interfaces in this module:

- HostRuntime: namespace traversal, call graph metadata, JIT compilation
  and IR emission, symbol mangling
- RuntimeIntrospection: raw reads of runtime memory (object tags, container
  type layouts, heap values)

The transformation logic never reads memory directly. A co-resident
implementation can talk to a live runtime; SnapshotRuntime serves the same
calls from an on-disk snapshot and tests use canned doubles.
"""

import re
import struct
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import runtime_names as names
from ir_errors import IntrospectionError
from ir_values import RuntimeValue


@dataclass(frozen=True)
class Namespace:
    """A hierarchical grouping that owns functions and bindings."""
    path: Tuple[str, ...]

    @classmethod
    def parse(cls, dotted: str) -> "Namespace":
        return cls(tuple(p for p in dotted.split(".") if p))

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ""

    @property
    def parent(self) -> Optional["Namespace"]:
        if len(self.path) <= 1:
            return None
        return Namespace(self.path[:-1])

    def child(self, name: str) -> "Namespace":
        return Namespace(self.path + (name,))

    def __str__(self):
        return ".".join(self.path)

    def __lt__(self, other: "Namespace"):
        return self.path < other.path


@dataclass(frozen=True)
class FunctionHandle:
    """Stable identity of one compiled function signature.

    Equality and hashing use the interned uid only, never the display name.
    """
    uid: str
    name: str = field(compare=False)
    namespace: Namespace = field(compare=False)
    arg_types: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        object.__setattr__(self, "uid", sys.intern(self.uid))

    def __str__(self):
        return f"{self.namespace}.{self.name}({', '.join(self.arg_types)})"


ENTRY_KINDS = {"namespace", "function", "type", "ref", "value"}


@dataclass(frozen=True)
class HostEntry:
    """One name bound in a namespace."""
    name: str
    kind: str
    imported: bool = False
    address: Optional[int] = None
    value: Optional[RuntimeValue] = None
    target: Optional[Namespace] = None

    @property
    def is_compiler_internal(self) -> bool:
        return self.name.startswith(names.COMPILER_INTERNAL_PREFIX)


@dataclass(frozen=True)
class ContainerLayout:
    """Element layout of a dynamically-sized container type.

    element_size is 0 when the element type is mutable or abstract.
    """
    is_mutable_or_abstract: bool
    element_size: int


def mangle(name: str, namespace: Namespace) -> str:
    """Itanium-style nested name for a symbol inside a namespace."""
    parts = list(namespace.path) + [name]
    encoded = "".join(
        f"{len(p)}{p}" for p in (re.sub(r'[^A-Za-z0-9_]', "_", part) for part in parts)
    )
    return f"_ZN{encoded}E"


class RuntimeIntrospection(ABC):
    """Narrow read-only view of runtime memory."""

    string_type_tag: Optional[int] = None

    @abstractmethod
    def read_tag(self, address: int) -> Optional[int]:
        """Type tag word of the object at address, GC bits masked, or None."""
        pass

    @abstractmethod
    def read_layout(self, type_address: int) -> ContainerLayout:
        """Element layout of the container type descriptor at type_address."""
        pass

    @abstractmethod
    def read_bytes(self, address: int, size: int) -> Optional[bytes]:
        """size raw bytes at address, or None when unmapped."""
        pass

    def read_type_size(self, type_address: int) -> Optional[int]:
        """Instance size of a fixed-layout type, or None."""
        return None


class MemoryImageIntrospection(RuntimeIntrospection):
    """
    Introspection over a sparse little-endian memory image.

    The layout walk follows fixed word offsets inside the runtime's type
    descriptors (see runtime_names): container descriptor -> parameter
    vector -> element type -> {type name flags, layout element size}.
    """

    def __init__(self, segments: Iterable[Tuple[int, bytes]] = (),
                 string_type_tag: Optional[int] = None):
        self.segments: List[Tuple[int, bytes]] = sorted(
            (addr, bytes(data)) for addr, data in segments
        )
        self.string_type_tag = string_type_tag

    def map(self, address: int, data: bytes):
        self.segments.append((address, bytes(data)))
        self.segments.sort()

    def read_bytes(self, address: int, size: int) -> Optional[bytes]:
        for base, data in self.segments:
            if base <= address and address + size <= base + len(data):
                offset = address - base
                return data[offset:offset + size]
        return None

    def _require(self, address: int, size: int) -> bytes:
        data = self.read_bytes(address, size)
        if data is None:
            raise IntrospectionError(f"Unmapped read of {size} bytes at {address:#x}")
        return data

    def read_word(self, address: int) -> int:
        return struct.unpack("<Q", self._require(address, names.WORD_SIZE))[0]

    def read_u32(self, address: int) -> int:
        return struct.unpack("<I", self._require(address, 4))[0]

    def read_u8(self, address: int) -> int:
        return self._require(address, 1)[0]

    def read_tag(self, address: int) -> Optional[int]:
        data = self.read_bytes(address + names.TAG_OFFSET, names.WORD_SIZE)
        if data is None:
            return None
        return struct.unpack("<Q", data)[0] & ~names.TAG_GC_BITS

    def _word_at(self, base: int, index: int) -> int:
        return self.read_word(base + index * names.WORD_SIZE)

    def read_layout(self, type_address: int) -> ContainerLayout:
        params = self._word_at(type_address, names.DESCRIPTOR_PARAMETERS_WORD)
        elem_type = self._word_at(params, names.PARAMETERS_ELEMENT_TYPE_WORD)
        typename = self._word_at(elem_type, names.DATATYPE_NAME_WORD)
        flags = self.read_u8(typename + names.TYPENAME_FLAGS_OFFSET)
        if flags & names.TYPENAME_MUTABLE_OR_ABSTRACT_MASK:
            return ContainerLayout(True, 0)
        layout = self._word_at(elem_type, names.DATATYPE_LAYOUT_WORD)
        return ContainerLayout(False, self.read_u32(layout))

    def read_type_size(self, type_address: int) -> Optional[int]:
        try:
            layout = self._word_at(type_address, names.DATATYPE_LAYOUT_WORD)
            return self.read_u32(layout)
        except IntrospectionError:
            return None


class HostRuntime(ABC):
    """The managed runtime as seen by the pipeline.

    Implementations set `introspection` to their RuntimeIntrospection.
    """

    introspection: RuntimeIntrospection

    @abstractmethod
    def namespace_entries(self, namespace: Namespace) -> List[HostEntry]:
        """Bindings visible in namespace, in declaration order."""
        pass

    @abstractmethod
    def callees(self, handle: FunctionHandle) -> List[FunctionHandle]:
        """Function instances embedded in the compiled function's constant pool."""
        pass

    @abstractmethod
    def ensure_compiled(self, handle: FunctionHandle) -> None:
        pass

    @abstractmethod
    def compile_and_emit_ir(self, handle: FunctionHandle) -> str:
        pass

    def mangle(self, name: str, namespace: Namespace) -> str:
        return mangle(name, namespace)


def reconstruct(introspection: RuntimeIntrospection, address: int) -> Optional[RuntimeValue]:
    """
    Best-effort recovery of a heap value from its address.

    Reads the tag word preceding the object. A string tag yields the
    string's contents; a tag that looks like a live type descriptor yields
    the raw bytes of the described fixed-layout value. Anything else, and
    any unmapped read, gives None.
    """
    tag = introspection.read_tag(address)
    if tag is None:
        return None

    if introspection.string_type_tag is not None and tag == introspection.string_type_tag:
        header = introspection.read_bytes(address, names.WORD_SIZE)
        if header is None:
            return None
        length = struct.unpack("<Q", header)[0]
        payload = introspection.read_bytes(address + names.WORD_SIZE, length)
        if payload is None:
            return None
        return RuntimeValue("string", payload)

    if tag > names.PLAUSIBLE_POINTER_MIN:
        size = introspection.read_type_size(tag)
        if not size:
            return None
        payload = introspection.read_bytes(address, size)
        if payload is None:
            return None
        return RuntimeValue("bytes", payload)

    return None
