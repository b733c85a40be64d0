"""Feature set queries offered to code templates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class FeatureSetMacros:
    """Wraps a feature set with shorthand queries; other attributes delegate to it."""

    features: Any

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_") or name == "features":
            raise AttributeError(name)
        return getattr(self.features, name)

    def has_op(self, instruction: str) -> bool:
        return self.features.opcode(instruction) is not None

    def get_op(self, instruction: str) -> int:
        opcode = self.features.opcode(instruction)
        return 0 if opcode is None else opcode

    def stereo(self, unit_type: str) -> bool:
        return self.features.supports_param_value(unit_type, "stereo", 1)

    def mono(self, unit_type: str) -> bool:
        return self.features.supports_param_value(unit_type, "stereo", 0)

    def stereo_and_mono(self, unit_type: str) -> bool:
        return self.stereo(unit_type) and self.mono(unit_type)