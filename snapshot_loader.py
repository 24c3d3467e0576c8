"""
Runtime Snapshot Loader

Serves the HostRuntime interface from a snapshot of a runtime session
taken ahead of time, so the pipeline can run outside the process that owns
the live heap.

A snapshot is a directory or ZIP archive containing:
  - manifest.toml: namespaces, bindings, functions, memory segments
  - IR files referenced by the [[function]] entries

manifest.toml layout:

    [snapshot]
    root = "MyMod"
    entry = "MyMod._main_(Int64)"
    string_type_tag = 4400000000      # optional

    [[namespace]]
    path = "MyMod"

    [[binding]]
    namespace = "MyMod"
    name = "MY_REF"
    kind = "ref"                       # namespace|function|type|ref|value
    address = 140000000
    value = { type = "int64", data = 123 }

    [[function]]
    id = "MyMod.add(Int64)"
    namespace = "MyMod"
    name = "add"
    arg_types = ["Int64"]
    ir = "ir/add.ll"
    callees = ["MyMod.helper(Int64)"]

    [[memory]]
    address = 5000
    hex = "0102030405060708"
"""

import logging
import os
import zipfile
from typing import Dict, List, Optional

# TOML parsing - use stdlib tomllib in 3.11+, fallback to tomli
try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None

from host_runtime import (
    FunctionHandle, HostEntry, HostRuntime, MemoryImageIntrospection,
    Namespace, ENTRY_KINDS,
)
from ir_errors import SnapshotError
from ir_values import RuntimeValue


_LOGGER = logging.getLogger("staticir.snapshot")

MANIFEST_NAME = "manifest.toml"


def parse_value(data: Optional[dict]) -> Optional[RuntimeValue]:
    """Build a RuntimeValue from a manifest `value = {...}` table."""
    if data is None:
        return None
    if "type" not in data:
        raise SnapshotError(f"Value table missing 'type': {data}")
    kind = data["type"]
    if "hex" in data:
        try:
            return RuntimeValue(kind, bytes.fromhex(data["hex"]))
        except ValueError as e:
            raise SnapshotError(f"Bad hex payload for {kind} value: {e}")
    return RuntimeValue(kind, data.get("data"))


class SnapshotRuntime(HostRuntime):
    """
    HostRuntime backed by a loaded snapshot.

    Handles:
    - Directory and ZIP snapshot sources
    - Manifest parsing and validation
    - Namespace traversal and call graph metadata
    - Memory image for introspection
    """

    def __init__(self, manifest: dict, read_file, source: str = "<memory>"):
        self.source = source
        self._read_file = read_file
        self.compiled: List[FunctionHandle] = []

        snap = manifest.get("snapshot")
        if snap is None:
            raise SnapshotError(f"{source}: manifest missing [snapshot] section")
        for key in ("root", "entry"):
            if key not in snap:
                raise SnapshotError(f"{source}: manifest missing snapshot.{key}")
        self.root = Namespace.parse(snap["root"])
        self._entry_uid = snap["entry"]

        self.introspection = MemoryImageIntrospection(
            string_type_tag=snap.get("string_type_tag")
        )
        for seg in manifest.get("memory", []):
            self._add_segment(seg)

        self._entries: Dict[Namespace, List[HostEntry]] = {}
        for ns in manifest.get("namespace", []):
            self._entries.setdefault(Namespace.parse(ns["path"]), [])

        self._functions: Dict[str, FunctionHandle] = {}
        self._ir_paths: Dict[FunctionHandle, str] = {}
        self._callee_ids: Dict[FunctionHandle, List[str]] = {}
        for fn in manifest.get("function", []):
            self._add_function(fn)

        for b in manifest.get("binding", []):
            self._add_binding(b)

    @classmethod
    def load(cls, path: str) -> "SnapshotRuntime":
        """Load a snapshot from a directory or a ZIP archive."""
        if tomllib is None:
            raise SnapshotError(
                "TOML parsing not available.\n"
                "Install with: pip install tomli"
            )

        if os.path.isdir(path):
            def read_file(rel: str) -> str:
                with open(os.path.join(path, rel), "r", encoding="utf-8") as f:
                    return f.read()
        elif zipfile.is_zipfile(path):
            with zipfile.ZipFile(path, "r") as zf:
                contents = {
                    info.filename: zf.read(info.filename)
                    for info in zf.infolist() if not info.is_dir()
                }

            def read_file(rel: str) -> str:
                return contents[rel].decode("utf-8")
        else:
            raise SnapshotError(f"Snapshot not found or not a ZIP archive: {path}")

        try:
            manifest = tomllib.loads(read_file(MANIFEST_NAME))
        except (OSError, KeyError) as e:
            raise SnapshotError(f"No {MANIFEST_NAME} in {path}: {e}")
        except tomllib.TOMLDecodeError as e:
            raise SnapshotError(f"Failed to parse {MANIFEST_NAME}: {e}")

        return cls(manifest, read_file, source=path)

    def _add_segment(self, seg: dict):
        for key in ("address", "hex"):
            if key not in seg:
                raise SnapshotError(f"{self.source}: memory entry missing '{key}': {seg}")
        try:
            data = bytes.fromhex(seg["hex"])
        except (TypeError, ValueError) as e:
            raise SnapshotError(
                f"{self.source}: bad hex payload for memory at {seg['address']}: {e}"
            )
        self.introspection.map(seg["address"], data)

    def _add_function(self, fn: dict):
        for key in ("id", "namespace", "name", "ir"):
            if key not in fn:
                raise SnapshotError(f"{self.source}: function entry missing '{key}': {fn}")
        ns = Namespace.parse(fn["namespace"])
        handle = FunctionHandle(
            fn["id"], fn["name"], ns, tuple(fn.get("arg_types", []))
        )
        self._functions[handle.uid] = handle
        self._ir_paths[handle] = fn["ir"]
        self._callee_ids[handle] = list(fn.get("callees", []))
        self._entries.setdefault(ns, []).append(HostEntry(fn["name"], "function"))

    def _add_binding(self, b: dict):
        for key in ("namespace", "name", "kind"):
            if key not in b:
                raise SnapshotError(f"{self.source}: binding entry missing '{key}': {b}")
        if b["kind"] not in ENTRY_KINDS:
            raise SnapshotError(f"{self.source}: unknown binding kind '{b['kind']}'")
        ns = Namespace.parse(b["namespace"])
        target = Namespace.parse(b["target"]) if "target" in b else None
        entry = HostEntry(
            name=b["name"],
            kind=b["kind"],
            imported=b.get("imported", False),
            address=b.get("address"),
            value=parse_value(b.get("value")),
            target=target,
        )
        self._entries.setdefault(ns, []).append(entry)

    @property
    def entry(self) -> FunctionHandle:
        return self.function(self._entry_uid)

    def function(self, uid: str) -> FunctionHandle:
        if uid not in self._functions:
            raise SnapshotError(f"{self.source}: unknown function '{uid}'")
        return self._functions[uid]

    def namespace_entries(self, namespace: Namespace) -> List[HostEntry]:
        return list(self._entries.get(namespace, []))

    def callees(self, handle: FunctionHandle) -> List[FunctionHandle]:
        return [self.function(uid) for uid in self._callee_ids.get(handle, [])]

    def ensure_compiled(self, handle: FunctionHandle) -> None:
        # Snapshot IR is emitted ahead of time; record the request only.
        if handle not in self.compiled:
            self.compiled.append(handle)
            _LOGGER.debug("compiled %s", handle)

    def compile_and_emit_ir(self, handle: FunctionHandle) -> str:
        try:
            return self._read_file(self._ir_paths[handle])
        except (OSError, KeyError) as e:
            raise SnapshotError(f"{self.source}: cannot read IR for {handle}: {e}")
