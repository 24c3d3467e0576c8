"""
GC Scaffolding Removal and Policy Engine

The host JIT threads a shadow stack through every function that touches the
heap and allocates objects from a per-thread pool. None of that exists in a
standalone binary. This module:

- Detects IR that still depends on the runtime (is_self_contained)
- Removes shadow-stack and tag bookkeeping lines (strip_gc_scaffolding)
- Turns pool allocations of tagged temporaries into malloc calls
  (substitute_allocations)
- Applies the configured Policy per function (eliminate_gc, enforce_policy)
"""

import logging
import re
from typing import Iterable, List, Optional, Tuple

import runtime_names as names
from ir_errors import (
    DiagnosticReport, MalformedConstructPattern, NonSelfContainedCode,
    NON_SELF_CONTAINED,
)
from ir_extractor import ExtractedIR
from pipeline_config import Policy


_LOGGER = logging.getLogger("staticir.gc")

_SCAFFOLD_RE = re.compile("|".join(names.GC_SCAFFOLD_PATTERNS))


def find_violations(ir_text: str) -> List[str]:
    """Describe every runtime dependency left in ir_text, in order of first appearance."""
    found: List[str] = []

    def note(message: str):
        if message not in found:
            found.append(message)

    for m in names.RUNTIME_CALL_RE.finditer(ir_text):
        note(f"runtime symbol @{m.group(1)}")
    for m in names.ADDRESS_LITERAL_CAST_RE.finditer(ir_text):
        if int(m.group(1)) != 0:
            note(f"baked-in address {m.group(1)}")
    for m in names.SHADOW_STACK_RE.finditer(ir_text):
        note(f"shadow-stack frame {m.group(0)}")
    return found


def is_self_contained(ir_text: str) -> bool:
    """True iff ir_text references no runtime internals.

    Necessary, not sufficient, for the output to link without the runtime.
    """
    return not find_violations(ir_text)


def strip_gc_scaffolding(body: str) -> Tuple[str, List[str]]:
    """
    Delete GC bookkeeping lines from one function body.

    Returns:
        (new body, names of the tagged temporaries whose tag address
        computations were removed)
    """
    tags = names.TAG_ADDRESS_RE.findall(body)
    pattern = _SCAFFOLD_RE
    if tags:
        tag_refs = "|".join(re.escape(f'%"{t}.tag_addr"') for t in tags)
        pattern = re.compile(f"{_SCAFFOLD_RE.pattern}|{tag_refs}")

    kept = [line for line in body.split("\n") if not pattern.search(line)]
    return "\n".join(kept), tags


def _allocation_size(line: str, call_idx: int) -> Optional[int]:
    deref = names.DEREFERENCEABLE_RE.search(line, 0, call_idx)
    if deref:
        return int(deref.group(1))

    args_start = call_idx + len(names.POOL_ALLOC_CALL)
    args_end = line.find(")", args_start)
    if args_end < 0:
        return None
    args = [a.strip() for a in line[args_start:args_end].split(",")]
    if len(args) < 3:
        return None
    size = args[2].split()[-1] if args[2] else ""
    return int(size) if size.isdigit() else None


def substitute_allocations(body: str, tags: Iterable[str]) -> Tuple[str, int]:
    """
    Rewrite pool allocations of tagged temporaries to malloc.

    The requested size is taken from the call's dereferenceable(N)
    attribute, falling back to the size argument of the call.

    Returns:
        (new body, number of calls rewritten)

    Raises:
        MalformedConstructPattern: if the size of a call cannot be recovered
    """
    tag_vars = [f'%"{t}"' for t in tags]
    if not tag_vars:
        return body, 0

    lines = body.split("\n")
    count = 0
    for i, line in enumerate(lines):
        call_idx = line.find(names.POOL_ALLOC_CALL)
        if call_idx < 0 or not any(v in line for v in tag_vars):
            continue
        size = _allocation_size(line, call_idx)
        if size is None:
            raise MalformedConstructPattern(
                f"Cannot determine allocation size of: {line.strip()}"
            )
        lines[i] = f"{line[:call_idx]}@malloc(i64 {size})"
        count += 1
    return "\n".join(lines), count


def eliminate_gc(extracted: ExtractedIR, policy: Policy) -> int:
    """
    Apply the stripping half of a policy to every body of a function.

    Scaffolding removal runs first, then allocator substitution on the same
    text. A malloc declaration is added when any call was rewritten.

    Returns:
        Number of allocations substituted
    """
    if not policy.strips_scaffolding:
        return 0

    total = 0
    bodies = []
    for body in extracted.function_bodies:
        body, tags = strip_gc_scaffolding(body)
        if policy.substitutes_allocations:
            body, count = substitute_allocations(body, tags)
            total += count
        bodies.append(body)
    extracted.function_bodies = bodies

    if total:
        extracted.declare("malloc", names.MALLOC_DECLARATION)
        _LOGGER.debug("%s: %d pool allocation(s) -> malloc", extracted.renamed, total)
    return total


def enforce_policy(subject: str, ir_text: str, policy: Policy,
                   report: DiagnosticReport,
                   extra: Iterable[str] = ()) -> bool:
    """
    Check a rendered function against the policy.

    Args:
        subject: Name reported with any diagnostic
        ir_text: Rendered IR of the function
        policy: Configured policy
        report: Receives a NonSelfContainedCode diagnostic on failure
        extra: Additional violations found by the caller

    Returns:
        True if the function is self-contained

    Raises:
        NonSelfContainedCode: under Policy.STRICT when a violation remains
    """
    violations = list(extra) + find_violations(ir_text)
    if not violations:
        return True

    message = "; ".join(violations)
    if policy is Policy.STRICT:
        raise NonSelfContainedCode(f"{subject}: {message}")
    report.add(NON_SELF_CONTAINED, subject, message)
    return False
