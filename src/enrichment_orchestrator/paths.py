from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, order=True)
class FieldPath:
    """A dot-path into a structured result, stored as explicit segments."""

    segments: tuple[str, ...]

    def __post_init__(self) -> None:
        if not self.segments or any(not s for s in self.segments):
            raise ValueError(f"Invalid field path: {self.segments!r}")

    @classmethod
    def parse(cls, dotted: "str | FieldPath") -> "FieldPath":
        if isinstance(dotted, FieldPath):
            return dotted
        return cls(tuple(dotted.strip().split(".")))

    def __str__(self) -> str:
        return ".".join(self.segments)

    @property
    def leaf(self) -> str:
        return self.segments[-1]

    def resolve(self, data: Any) -> Any:
        current = data
        for segment in self.segments:
            if not isinstance(current, dict) or segment not in current:
                return None
            current = current[segment]
        return current

    def as_patch(self, value: Any) -> dict[str, Any]:
        patch: Any = value
        for segment in reversed(self.segments):
            patch = {segment: patch}
        return patch


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge `patch` into a copy of `base`: dicts merge key-wise, anything else overwrites."""
    merged = copy.deepcopy(base)
    for key, value in patch.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = deep_merge(existing, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
