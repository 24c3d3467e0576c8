"""
Error Taxonomy and Diagnostics

Fatal conditions are raised as StaticIRError subclasses and abort the run.
Soft conditions are collected in a DiagnosticReport; files are still written
but the driver exits non-zero when any were reported.
"""

import logging
from dataclasses import dataclass, field
from typing import List


_LOGGER = logging.getLogger("staticir.diagnostics")


class StaticIRError(Exception):
    """Base exception for pipeline errors"""
    pass


class UnsupportedValueType(StaticIRError):
    """A binding value has no IR encoding"""
    pass


class FunctionNotFound(StaticIRError):
    """Extraction could not locate the expected definition in an IR dump"""
    pass


class MalformedConstructPattern(StaticIRError):
    """A recognized GC or container idiom does not have the expected shape"""
    pass


class DuplicateSymbol(StaticIRError):
    """Two distinct functions were assigned the same output symbol"""
    pass


class InconsistentContainerLayout(StaticIRError):
    """One container type symbol was read with two different layouts"""
    pass


class IntrospectionError(StaticIRError):
    """A read of runtime memory hit an unmapped address"""
    pass


class NonSelfContainedCode(StaticIRError):
    """Raised under the strict policy when a function still depends on the runtime"""
    pass


class ConfigError(StaticIRError):
    """Invalid pipeline configuration"""
    pass


class SnapshotError(StaticIRError):
    """Malformed runtime snapshot"""
    pass


# Soft diagnostic kinds
MISSING_BINDING = "MissingBindingForAddress"
NON_SELF_CONTAINED = "NonSelfContainedCode"
INVALID_MODULE_IR = "InvalidModuleIR"


@dataclass
class Diagnostic:
    """A soft condition reported during a run."""
    kind: str
    subject: str
    message: str

    def __str__(self):
        return f"[{self.kind}] {self.subject}: {self.message}"


@dataclass
class DiagnosticReport:
    """Accumulates soft diagnostics across the whole pipeline run."""
    entries: List[Diagnostic] = field(default_factory=list)

    def add(self, kind: str, subject: str, message: str) -> Diagnostic:
        diag = Diagnostic(kind, subject, message)
        self.entries.append(diag)
        _LOGGER.warning("%s", diag)
        return diag

    def of_kind(self, kind: str) -> List[Diagnostic]:
        return [d for d in self.entries if d.kind == kind]

    @property
    def has_failures(self) -> bool:
        return bool(self.entries)

    def __len__(self):
        return len(self.entries)

    def summary(self) -> str:
        if not self.entries:
            return "no diagnostics"
        lines = [f"{len(self.entries)} diagnostic(s):"]
        lines.extend(f"  {d}" for d in self.entries)
        return "\n".join(lines)
