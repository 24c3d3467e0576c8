"""
GC Elimination Passes

This package removes the host runtime's garbage collector from extracted IR
so the result can be linked without the runtime.

Pass Design:
- Self-containment check over rendered IR
- Policy engine choosing between reporting, aborting and stripping
- Shadow-stack scaffolding removal
- Pool allocator -> malloc substitution
- Dynamically-sized container rewrite (allocation, empty-instance
  dereference, bookkeeping call removal)

Package Structure:
    gc_passes/
    ├── __init__.py     # Package exports (this file)
    ├── gc_strip.py     # Self-containment check, policy engine, scaffolding removal
    └── containers.py   # Container rewrite and layout table (LayoutRegistry)
"""

from gc_passes.gc_strip import (
    find_violations,
    is_self_contained,
    strip_gc_scaffolding,
    substitute_allocations,
    eliminate_gc,
    enforce_policy,
)
from gc_passes.containers import (
    LayoutRegistry,
    rewrite_containers,
    rewrite_blocks,
)

__all__ = [
    'find_violations',
    'is_self_contained',
    'strip_gc_scaffolding',
    'substitute_allocations',
    'eliminate_gc',
    'enforce_policy',
    'LayoutRegistry',
    'rewrite_containers',
    'rewrite_blocks',
]
