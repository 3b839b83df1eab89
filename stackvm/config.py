"""
Engine configuration and named profiles.

A profile is a preset bundle of EngineConfig fields, picked by name
(CLI ``--profile``) and then overridden field by field.
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Optional

from .regs import REGISTER_COUNT

__all__ = ['EngineConfig', 'PROFILES', 'get_profile']


@dataclass(frozen=True)
class EngineConfig:
    register_count: int = REGISTER_COUNT  # general registers r0..rN-1
    max_steps: Optional[int] = None       # None = run until HALT or a fault
    strict_float_division: bool = False   # float x/0 faults instead of ±inf/NaN
    dump_on_fault: bool = True            # snapshot the engine when a fault halts it
    trace: bool = False                   # record one line per executed instruction
    port: int = 0                         # source port stamped on outgoing messages

    def __post_init__(self):
        if self.register_count < 1:
            raise ValueError(f"register_count must be >= 1, got {self.register_count}")
        if self.max_steps is not None and self.max_steps < 1:
            raise ValueError(f"max_steps must be >= 1 or None, got {self.max_steps}")

    def with_overrides(self, **overrides) -> EngineConfig:
        """Copy with the given fields replaced. ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


PROFILES = {
    "default": {
        "description": "Unbounded run, IEEE float division",
    },
    "strict": {
        "strict_float_division": True,
        "max_steps": 1_000_000,
        "description": "Float division by zero faults, 1M step ceiling",
    },
    "sandbox": {
        "max_steps": 10_000,
        "trace": True,
        "description": "Short step ceiling with instruction trace, for untrusted programs",
    },
}


def get_profile(name: str = "default", **overrides) -> EngineConfig:
    """Build an EngineConfig from a named profile plus field overrides."""
    profile = PROFILES.get(name)
    if profile is None:
        raise ValueError(f"unknown profile '{name}' (choose from: {', '.join(PROFILES)})")
    known = {f.name for f in fields(EngineConfig)}
    base = EngineConfig(**{k: v for k, v in profile.items() if k in known})
    return base.with_overrides(**overrides)
