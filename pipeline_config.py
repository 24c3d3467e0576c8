"""
Pipeline Configuration

Options recognized by the transformation pipeline, settable from a TOML file
(`[staticir]` table) or from the command line:

    [staticir]
    output_dir = "build"
    policy = "strip_all"      # warn | strict | strip | strip_all
    debug = false
    verify = false
    skip_unsupported = false
    first_n = 5
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict

# TOML parsing - use stdlib tomllib in 3.11+, fallback to tomli
try:
    import tomllib
except ImportError:
    try:
        import tomli as tomllib
    except ImportError:
        tomllib = None

from ir_errors import ConfigError


CONFIG_TABLE = "staticir"


class Policy(Enum):
    """What to do with functions that still depend on the runtime."""
    WARN = "warn"
    STRICT = "strict"
    STRIP = "strip"
    STRIP_ALL = "strip_all"

    @property
    def strips_scaffolding(self) -> bool:
        return self in (Policy.STRIP, Policy.STRIP_ALL)

    @property
    def substitutes_allocations(self) -> bool:
        return self is Policy.STRIP_ALL

    @classmethod
    def parse(cls, value) -> "Policy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            choices = ", ".join(p.value for p in cls)
            raise ConfigError(f"Unknown policy '{value}' (expected one of: {choices})")


@dataclass
class PipelineConfig:
    output_dir: str = "build"
    policy: Policy = Policy.WARN
    debug: bool = False
    verify: bool = False
    skip_unsupported: bool = False
    first_n: int = 0

    def __post_init__(self):
        self.policy = Policy.parse(self.policy)
        if self.first_n < 0:
            raise ConfigError(f"first_n must be non-negative, got {self.first_n}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Validating constructor; unknown keys and mistyped values raise ConfigError."""
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")

        for key in ("debug", "verify", "skip_unsupported"):
            if key in data and not isinstance(data[key], bool):
                raise ConfigError(f"'{key}' must be a boolean, got {data[key]!r}")
        if "first_n" in data and (
            isinstance(data["first_n"], bool) or not isinstance(data["first_n"], int)
        ):
            raise ConfigError(f"'first_n' must be an integer, got {data['first_n']!r}")
        if "output_dir" in data and not isinstance(data["output_dir"], str):
            raise ConfigError(f"'output_dir' must be a string, got {data['output_dir']!r}")

        return cls(**data)

    def merged(self, **overrides) -> "PipelineConfig":
        """Copy with the non-None overrides applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return PipelineConfig.from_dict(values)


def load_config(path: str) -> PipelineConfig:
    """Read a PipelineConfig from the [staticir] table of a TOML file."""
    if tomllib is None:
        raise ConfigError(
            "TOML parsing not available.\n"
            "Install with: pip install tomli"
        )
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    table = data.get(CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{CONFIG_TABLE}] in {path} must be a table")
    return PipelineConfig.from_dict(table)
