"""
IR Text Utilities

Structural helpers shared by the extractor and the rewrite passes:
- Brace matching over IR text (function body regions)
- Basic block splitting with labels as first-class values
- Comment stripping
- Single-pass symbol renaming

Blocks keep their lines as a list so that several passes can edit the same
function body without recomputing string offsets.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional


LABEL_RE = re.compile(r'^([A-Za-z$._0-9-]+|"[^"]+"):')


@dataclass(frozen=True)
class Region:
    """Half-open character span [start, end) inside a text."""
    start: int
    end: int

    def slice(self, text: str) -> str:
        return text[self.start:self.end]


@dataclass
class BasicBlock:
    """One labeled basic block of a function body."""
    label: str
    index: int
    lines: List[str] = field(default_factory=list)

    @property
    def ir_text(self) -> str:
        return "\n".join(self.lines)

    def clear(self):
        """Drop the whole block, label included."""
        self.lines = []

    def find_line(self, pattern: "re.Pattern") -> Optional[int]:
        """Index of the first line matching pattern, or None."""
        for i, line in enumerate(self.lines):
            if pattern.search(line):
                return i
        return None


def find_matching_brace(text: str, start: int = 0) -> int:
    """
    Find the '}' matching the first '{' at or after start.

    Returns the index of the closing brace, or -1 when there is no opening
    brace or the braces are unbalanced.
    """
    open_idx = text.find("{", start)
    if open_idx < 0:
        return -1

    depth = 0
    for i in range(open_idx, len(text)):
        c = text[i]
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def find_body_region(text: str, header_start: int, header_end: int) -> Optional[Region]:
    """Region of a function body whose header spans [header_start, header_end).

    The search starts at the '{' closing the header line so that aggregate
    return types like `define { i64, ptr } @f(...)` are skipped. The region
    excludes both braces.
    """
    open_idx = text.rfind("{", header_start, header_end)
    if open_idx < 0:
        return None
    close_idx = find_matching_brace(text, open_idx)
    if close_idx < 0:
        return None
    body_start = header_end + 1 if header_end < len(text) else header_end
    return Region(body_start, close_idx)


def strip_comments(ir: str) -> str:
    """Remove ';' comments and trailing whitespace, dropping blank lines.

    Semicolons inside double-quoted strings are kept.
    """
    cleaned = []
    for line in ir.split("\n"):
        code = _cut_comment(line).rstrip()
        if code.strip():
            cleaned.append(code)
    return "\n".join(cleaned)


def _cut_comment(line: str) -> str:
    in_string = False
    for i, c in enumerate(line):
        if c == '"':
            in_string = not in_string
        elif c == ";" and not in_string:
            return line[:i]
    return line


def split_blocks(body: str) -> List[BasicBlock]:
    """Split a function body into basic blocks at `label:` lines.

    Lines before the first label form a block with an empty label.
    """
    blocks: List[BasicBlock] = []
    current: Optional[BasicBlock] = None
    for line in body.split("\n"):
        m = LABEL_RE.match(line)
        if m:
            current = BasicBlock(m.group(1), len(blocks), [line])
            blocks.append(current)
            continue
        if current is None:
            if not line.strip():
                continue
            current = BasicBlock("", len(blocks), [])
            blocks.append(current)
        current.lines.append(line)
    return blocks


def join_blocks(blocks: Iterable[BasicBlock]) -> str:
    """Inverse of split_blocks; cleared blocks contribute nothing."""
    return "\n".join(b.ir_text for b in blocks if b.lines)


def rename_symbols(text: str, renames: Dict[str, str]) -> str:
    """Rename global symbols in one pass.

    Keys and values are symbol names without the leading '@' (quoted names
    keep their quotes). Applying all renames in a single substitution keeps
    one rename from feeding into another.
    """
    if not renames:
        return text
    alternation = "|".join(
        re.escape(name) for name in sorted(renames, key=len, reverse=True)
    )
    pattern = re.compile(r'@(' + alternation + r')(?![A-Za-z0-9_.$])')
    return pattern.sub(lambda m: "@" + renames[m.group(1)], text)


def replace_quoted(text: str, renames: Dict[str, str]) -> str:
    """Replace exact occurrences of each key with its value, in one pass."""
    if not renames:
        return text
    alternation = "|".join(
        re.escape(name) for name in sorted(renames, key=len, reverse=True)
    )
    return re.sub(alternation, lambda m: renames[m.group(0)], text)


def referenced_symbols(text: str) -> set:
    """All global symbol names referenced in text (without '@')."""
    return set(re.findall(r'@("[^"]+"|[A-Za-z0-9_.$-]+)', text))
