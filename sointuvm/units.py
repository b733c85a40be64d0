"""Patch data model and the table of unit types understood by the VM."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import IntEnum


class OscillatorType(IntEnum):
    """Waveform selected by the ``type`` parameter of an oscillator unit."""

    SINE = 0
    TRISAW = 1
    PULSE = 2
    GATE = 3
    SAMPLE = 4


@dataclass(frozen=True)
class UnitParameter:
    """A parameter of a unit type.

    ``can_set`` parameters are stored in the patch; ``can_modulate`` parameters
    are ports that send units can target.
    """

    name: str
    can_set: bool = True
    can_modulate: bool = False


def _setting(name: str) -> UnitParameter:
    return UnitParameter(name, can_set=True, can_modulate=False)


def _knob(name: str) -> UnitParameter:
    return UnitParameter(name, can_set=True, can_modulate=True)


def _port(name: str) -> UnitParameter:
    return UnitParameter(name, can_set=False, can_modulate=True)


_STEREO = _setting("stereo")

UNIT_TYPES: dict[str, tuple[UnitParameter, ...]] = {
    "add": (_STEREO,),
    "addp": (_STEREO,),
    "pop": (_STEREO,),
    "loadnote": (_STEREO,),
    "mul": (_STEREO,),
    "mulp": (_STEREO,),
    "push": (_STEREO,),
    "xch": (_STEREO,),
    "distort": (_STEREO, _knob("drive")),
    "hold": (_STEREO, _knob("holdfreq")),
    "crush": (_STEREO, _knob("resolution")),
    "gain": (_STEREO, _knob("gain")),
    "invgain": (_STEREO, _knob("invgain")),
    "dbgain": (_STEREO, _knob("decibels")),
    "filter": (
        _STEREO,
        _knob("frequency"),
        _knob("resonance"),
        _setting("lowpass"),
        _setting("bandpass"),
        _setting("highpass"),
        _setting("negbandpass"),
        _setting("neghighpass"),
    ),
    "clip": (_STEREO,),
    "pan": (_STEREO, _knob("panning")),
    "delay": (
        _STEREO,
        _knob("pregain"),
        _knob("dry"),
        _knob("feedback"),
        _knob("damp"),
        _setting("notetracking"),
        _port("delaytime"),
    ),
    "compressor": (
        _STEREO,
        _knob("attack"),
        _knob("release"),
        _knob("invgain"),
        _knob("threshold"),
        _knob("ratio"),
    ),
    "speed": (),
    "out": (_STEREO, _knob("gain")),
    "outaux": (_STEREO, _knob("outgain"), _knob("auxgain")),
    "aux": (_STEREO, _knob("gain"), _setting("channel")),
    "send": (
        _STEREO,
        _knob("amount"),
        _setting("voice"),
        _setting("target"),
        _setting("port"),
        _setting("sendpop"),
    ),
    "envelope": (
        _STEREO,
        _knob("attack"),
        _knob("decay"),
        _knob("sustain"),
        _knob("release"),
        _knob("gain"),
    ),
    "noise": (_STEREO, _knob("shape"), _knob("gain")),
    "oscillator": (
        _STEREO,
        _knob("transpose"),
        _knob("detune"),
        _knob("phase"),
        _knob("color"),
        _knob("shape"),
        _knob("gain"),
        _port("frequency"),
        _setting("type"),
        _setting("lfo"),
        _setting("unison"),
        _setting("samplestart"),
        _setting("loopstart"),
        _setting("looplength"),
    ),
    "loadval": (_STEREO, _knob("value")),
    "receive": (_STEREO, _port("left"), _port("right")),
    "in": (_STEREO, _setting("channel")),
    "sync": (),
}

# Names of the modulatable inputs of every unit type, in port order.
PORTS: dict[str, tuple[str, ...]] = {
    unit_type: tuple(p.name for p in params if p.can_modulate)
    for unit_type, params in UNIT_TYPES.items()
}

# Instructions in a stable order; instruction number 0 is the instrument end.
INSTRUCTIONS: tuple[str, ...] = tuple(sorted(UNIT_TYPES))
INSTRUCTION_NUMBERS: dict[str, int] = {
    name: number for number, name in enumerate(INSTRUCTIONS, start=1)
}
# Number of operands read for the set-and-modulatable parameters of each
# instruction, indexed by instruction number - 1.
TRANSFORM_COUNTS: tuple[int, ...] = tuple(
    sum(1 for p in UNIT_TYPES[name] if p.can_set and p.can_modulate)
    for name in INSTRUCTIONS
)


@dataclass
class Unit:
    """One unit (opcode) of an instrument."""

    type: str = ""
    id: int = 0
    parameters: dict[str, int] = field(default_factory=dict)
    var_args: list[int] = field(default_factory=list)
    disabled: bool = False
    comment: str = ""

    def copy(self) -> Unit:
        """Return a copy that shares no mutable state with this unit."""
        return replace(
            self, parameters=dict(self.parameters), var_args=list(self.var_args)
        )


@dataclass
class Instrument:
    """A named chain of units, played by one or more voices."""

    name: str = ""
    comment: str = ""
    num_voices: int = 1
    units: list[Unit] = field(default_factory=list)


class Patch(list):
    """A list of instruments."""

    def num_voices(self) -> int:
        """Total number of voices used by all instruments."""
        return sum(instr.num_voices for instr in self)

    def num_delay_lines(self) -> int:
        """Number of delay lines needed by all delay units and voices."""
        return sum(
            len(unit.var_args) * instr.num_voices
            for instr in self
            for unit in instr.units
            if unit.type == "delay"
        )

    def find_unit(self, unit_id: int) -> tuple[int, int]:
        """Return (instrument index, unit index) of the unit with the given id."""
        if unit_id == 0:
            raise LookupError("IDs should be nonzero")
        for instr_index, instr in enumerate(self):
            for unit_index, unit in enumerate(instr.units):
                if unit.id == unit_id:
                    return instr_index, unit_index
        raise LookupError(f"could not find a unit with id {unit_id}")