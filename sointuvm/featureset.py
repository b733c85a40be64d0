"""Feature sets: which opcodes and parameter values a compiled VM supports."""

from __future__ import annotations

from dataclasses import dataclass, field

from .units import (
    INSTRUCTION_NUMBERS,
    INSTRUCTIONS,
    PORTS,
    TRANSFORM_COUNTS,
    UNIT_TYPES,
    Patch,
)


def _input_numbers() -> dict[tuple[str, str], int]:
    inputs: dict[tuple[str, str], int] = {}
    for unit_type, params in UNIT_TYPES.items():
        modulatable = (p for p in params if p.can_modulate)
        for number, param in enumerate(modulatable):
            inputs[(unit_type, param.name)] = number
    return inputs


_ALL_INPUTS = _input_numbers()
_ALL_OPCODES = {name: number * 2 for name, number in INSTRUCTION_NUMBERS.items()}
_ALL_TRANSFORM_COUNTS = dict(zip(INSTRUCTIONS, TRANSFORM_COUNTS))


def _check_key(unit_type: str, param_name: str) -> tuple[str, str]:
    if not isinstance(unit_type, str) or not isinstance(param_name, str):
        raise TypeError("unit type and parameter name must be strings")
    return unit_type, param_name


def _check_value(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError("parameter value must be an integer")
    return value


@dataclass(frozen=True)
class AllFeatures:
    """A feature set that supports every unit type and parameter value."""

    def opcode(self, unit_type: str) -> int | None:
        """Opcode of the unit type, or None if it is unknown."""
        return _ALL_OPCODES.get(unit_type)

    def transform_count(self, unit_type: str) -> int:
        return _ALL_TRANSFORM_COUNTS.get(unit_type, 0)

    def instructions(self) -> list[str]:
        return list(INSTRUCTIONS)

    def input_number(self, unit_type: str, param_name: str) -> int:
        return _ALL_INPUTS.get((unit_type, param_name), 0)

    def supports_param_value(self, unit_type: str, param_name: str, value: int) -> bool:
        """Every value of every parameter is supported."""
        _check_key(unit_type, param_name)
        _check_value(value)
        return True

    def supports_param_value_other_than(
        self, unit_type: str, param_name: str, value: int
    ) -> bool:
        """Every value of every parameter is supported."""
        _check_key(unit_type, param_name)
        _check_value(value)
        return True

    def supports_modulation(self, unit_type: str, param_name: str) -> bool:
        """Every parameter can be modulated."""
        _check_key(unit_type, param_name)
        return True

    def supports_polyphony(self) -> bool:
        return True

    def supports_global_send(self) -> bool:
        return True


@dataclass
class NecessaryFeatures:
    """A feature set holding only what a particular patch needs."""

    _opcodes: dict[str, int] = field(default_factory=dict)
    _instructions: list[str] = field(default_factory=list)
    _param_values: dict[tuple[str, str], set[int]] = field(default_factory=dict)
    _modulated: set[tuple[str, str]] = field(default_factory=set)
    _global_send: bool = False
    _polyphony: bool = False

    def opcode(self, unit_type: str) -> int | None:
        """Opcode of the unit type, or None if the patch does not use it."""
        return self._opcodes.get(unit_type)

    def transform_count(self, unit_type: str) -> int:
        return _ALL_TRANSFORM_COUNTS.get(unit_type, 0)

    def instructions(self) -> list[str]:
        return list(self._instructions)

    def input_number(self, unit_type: str, param_name: str) -> int:
        return _ALL_INPUTS.get((unit_type, param_name), 0)

    def supports_param_value(self, unit_type: str, param_name: str, value: int) -> bool:
        return value in self._param_values.get((unit_type, param_name), ())

    def supports_param_value_other_than(
        self, unit_type: str, param_name: str, value: int
    ) -> bool:
        values = self._param_values.get((unit_type, param_name), ())
        return any(v != value for v in values)

    def supports_modulation(self, unit_type: str, param_name: str) -> bool:
        return (unit_type, param_name) in self._modulated

    def supports_polyphony(self) -> bool:
        return self._polyphony

    def supports_global_send(self) -> bool:
        return self._global_send


def necessary_features_for(patch) -> NecessaryFeatures:
    """Collect the features that the patch actually uses."""
    if not isinstance(patch, Patch):
        patch = Patch(patch)
    features = NecessaryFeatures()
    for instr_index, instrument in enumerate(patch):
        for unit in instrument.units:
            if not unit.type or unit.disabled:
                continue
            if unit.type not in features._opcodes:
                features._instructions.append(unit.type)
                # opcode 0 is reserved for advancing to the next instrument
                features._opcodes[unit.type] = len(features._instructions) * 2
            for param in UNIT_TYPES.get(unit.type, ()):
                value = unit.parameters.get(param.name, 0)
                features._param_values.setdefault((unit.type, param.name), set()).add(
                    value
                )
            if unit.type == "send":
                try:
                    target_instr, target_unit = patch.find_unit(
                        unit.parameters.get("target", 0)
                    )
                except LookupError:
                    continue
                target = patch[target_instr].units[target_unit]
                ports = PORTS.get(target.type, ())
                port_index = unit.parameters.get("port", 0)
                if not 0 <= port_index < len(ports):
                    continue
                if target_instr != instr_index or unit.parameters.get("voice", 0) > 0:
                    features._global_send = True
                features._modulated.add((target.type, ports[port_index]))
        if instrument.num_voices > 1:
            features._polyphony = True
    return features