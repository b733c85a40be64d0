"""Compilation of a patch into the bytecode executed by the synthesizer."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from .delaytable import construct_delay_time_table
from .units import UNIT_TYPES, Instrument, OscillatorType, Patch, Unit

MAX_VOICES = 32
MAX_UNITS = 63
_MAX_SAMPLES = 256

_OSCILLATOR_FLAGS = {
    OscillatorType.SINE: 0x40,
    OscillatorType.TRISAW: 0x20,
    OscillatorType.PULSE: 0x10,
    OscillatorType.GATE: 0x04,
    OscillatorType.SAMPLE: 0x80,
}

_FILTER_FLAGS = (
    ("lowpass", 0x40),
    ("bandpass", 0x20),
    ("highpass", 0x10),
    ("negbandpass", 0x08),
    ("neghighpass", 0x04),
)


class BytecodeError(ValueError):
    """Raised when a patch cannot be compiled into bytecode."""


@dataclass(frozen=True)
class SampleOffset:
    """Where a sample is found in the sample data, in 16-bit words."""

    start: int
    loop_start: int
    loop_length: int


@dataclass(frozen=True)
class Bytecode:
    """Opcodes, operands and lookup tables of a compiled patch.

    ``opcodes`` holds one byte per unit; 0 ends an instrument. Bit
    ``MAX_VOICES - n - 1`` of ``polyphony_bitmask`` tells whether voice n + 1
    plays the same instrument as voice n.
    """

    opcodes: bytes = b""
    operands: bytes = b""
    delay_times: tuple[int, ...] = ()
    sample_offsets: tuple[SampleOffset, ...] = ()
    polyphony_bitmask: int = 0
    num_voices: int = 0


def _polyphony_bitmask(patch: Patch) -> int:
    mask = 0
    for instr in patch:
        for _ in range(instr.num_voices - 1):
            mask = ((mask << 1) + 1) & 0xFFFFFFFF
        mask = (mask << 1) & 0xFFFFFFFF  # a zero bit: next voice changes instrument
    return mask


@dataclass
class _Builder:
    delay_indices: list[list[int]]
    opcodes: bytearray = field(default_factory=bytearray)
    operands: bytearray = field(default_factory=bytearray)
    sample_offsets: list[SampleOffset] = field(default_factory=list)
    sample_index: dict[SampleOffset, int] = field(default_factory=dict)
    global_addrs: dict[int, int] = field(default_factory=dict)
    global_fixups: defaultdict[int, list[int]] = field(
        default_factory=lambda: defaultdict(list)
    )
    local_addrs: dict[int, int] = field(default_factory=dict)
    local_fixups: defaultdict[int, list[int]] = field(
        default_factory=lambda: defaultdict(list)
    )
    voice_no: int = 0
    unit_no: int = 0

    def op(self, opcode: int) -> None:
        self.opcodes.append(opcode & 0xFF)
        self.unit_no += 1

    def finish_instrument(self, instr: Instrument) -> None:
        self.opcodes.append(0)
        self.unit_no = 0
        self.voice_no += instr.num_voices
        # local labels do not outlive the instrument
        self.local_addrs = {}
        self.local_fixups = defaultdict(list)

    def operand(self, *values: int) -> None:
        self.operands.extend(v & 0xFF for v in values)

    def def_operands(self, unit: Unit) -> None:
        self.operand(
            *(
                unit.parameters.get(p.name, 0)
                for p in UNIT_TYPES.get(unit.type, ())
                if p.can_modulate and p.can_set
            )
        )

    def _address(self, addr: int) -> None:
        self.operand(addr & 0xFF, addr >> 8)

    def local_ref(self, unit_id: int, addr: int) -> None:
        if unit_id in self.local_addrs:
            addr += self.local_addrs[unit_id]
        else:
            self.local_fixups[unit_id].append(len(self.operands))
        self._address(addr)

    def global_ref(self, unit_id: int, addr: int) -> None:
        if unit_id in self.global_addrs:
            addr += self.global_addrs[unit_id]
        else:
            self.global_fixups[unit_id].append(len(self.operands))
        self._address(addr)

    def label(self, unit_id: int) -> None:
        local_addr = ((self.unit_no + 1) << 4) & 0xFFFF
        self._fix_up(self.local_fixups.pop(unit_id, []), local_addr)
        self.local_addrs[unit_id] = local_addr
        global_addr = (local_addr + 16 + self.voice_no * 1024) & 0xFFFF
        self._fix_up(self.global_fixups.pop(unit_id, []), global_addr)
        self.global_addrs[unit_id] = global_addr

    def _fix_up(self, positions: list[int], delta: int) -> None:
        for pos in positions:
            orig = (self.operands[pos + 1] << 8) + self.operands[pos]
            new = (orig + delta) & 0xFFFF
            self.operands[pos] = new & 0xFF
            self.operands[pos + 1] = new >> 8

    def sample(self, unit: Unit) -> int:
        params = unit.parameters
        offset = SampleOffset(
            start=params.get("samplestart", 0) & 0xFFFFFFFF,
            loop_start=params.get("loopstart", 0) & 0xFFFF,
            # a loop length of 0 would divide by zero when playing
            loop_length=(params.get("looplength", 0) & 0xFFFF) or 1,
        )
        if offset not in self.sample_index:
            self.sample_index[offset] = len(self.sample_offsets)
            self.sample_offsets.append(offset)
        return self.sample_index[offset]


def _encode_oscillator(b: _Builder, unit: Unit, opcode: int) -> None:
    p = unit.parameters
    color = p.get("color", 0)
    if p.get("type", 0) == OscillatorType.SAMPLE:
        color = b.sample(unit)
        if color >= _MAX_SAMPLES:
            raise BytecodeError("Patch uses over 256 samples")
    flags = _OSCILLATOR_FLAGS.get(p.get("type", 0), 0)
    if p.get("lfo", 0) == 1:
        flags += 0x08
    flags += p.get("unison", 0)
    b.op(opcode + p.get("stereo", 0))
    b.operand(
        p.get("transpose", 0),
        p.get("detune", 0),
        p.get("phase", 0),
        color,
        p.get("shape", 0),
        p.get("gain", 0),
        flags,
    )


def _encode_send(
    b: _Builder, patch: Patch, instr_index: int, unit: Unit, opcode: int
) -> None:
    p = unit.parameters
    target_id = p.get("target", 0)
    target_voice = p.get("voice", 0)
    pop = p.get("sendpop", 0) == 1
    stereo = p.get("stereo", 0)
    addr = p.get("port", 0) & 7
    try:
        target_instr, _ = patch.find_unit(target_id)
    except LookupError:
        # with no target, the send lands on the last port of the last voice
        addr = 0xFFF7
        if pop:
            addr |= 0x8
        b.op(opcode + stereo)
        b.def_operands(unit)
        b.operand(addr & 0xFF, addr >> 8)
        return
    if target_instr == instr_index and target_voice == 0:
        if pop:
            addr += 0x8
        b.op(opcode + stereo)
        b.def_operands(unit)
        b.local_ref(target_id, addr)
        return
    addr += 0x8000
    voice_start, voice_end = 0, patch[target_instr].num_voices
    if target_voice > 0:
        voice_start, voice_end = target_voice - 1, target_voice
    addr += voice_start * 0x400
    for voice in range(voice_start, voice_end):
        b.op(opcode + stereo)
        b.def_operands(unit)
        if voice == voice_end - 1 and pop:
            addr += 0x8  # only the last send of the group pops
        b.global_ref(target_id, addr)
        addr += 0x400


def new_bytecode(patch, feature_set, bpm: int) -> Bytecode:
    """Compile the patch into bytecode using the opcodes of the feature set."""
    if not isinstance(patch, Patch):
        patch = Patch(patch)
    if patch.num_voices() > MAX_VOICES:
        raise BytecodeError(
            "Sointu does not support more than 32 concurrent voices; "
            f"patch uses {patch.num_voices()}"
        )
    delay_times, delay_indices = construct_delay_time_table(patch, bpm)
    b = _Builder(delay_indices=delay_indices)
    for instr_index, instr in enumerate(patch):
        if instr.num_voices < 1:
            raise BytecodeError("Each instrument must have at least 1 voice")
        for unit_index, unit in enumerate(instr.units):
            if not unit.type or unit.disabled:
                continue
            opcode = feature_set.opcode(unit.type)
            if opcode is None:
                raise BytecodeError(
                    f'VM is not configured to support unit type "{unit.type}"'
                )
            if unit.id != 0:
                b.label(unit.id)
            p = unit.parameters
            stereo = p.get("stereo", 0)
            if unit.type == "oscillator":
                _encode_oscillator(b, unit, opcode)
            elif unit.type == "delay":
                count = len(unit.var_args)
                if stereo == 1:
                    count //= 2
                if count == 0:
                    continue  # delays without delay lines are not encoded
                count_track = count * 2 - 1 + (p.get("notetracking", 0) & 1)
                b.op(opcode + stereo)
                b.def_operands(unit)
                b.operand(b.delay_indices[instr_index][unit_index], count_track)
            elif unit.type in ("aux", "in"):
                b.op(opcode + stereo)
                b.def_operands(unit)
                b.operand(p.get("channel", 0))
            elif unit.type == "filter":
                flags = sum(bit for name, bit in _FILTER_FLAGS if p.get(name, 0) == 1)
                b.op(opcode + stereo)
                b.def_operands(unit)
                b.operand(flags)
            elif unit.type == "send":
                _encode_send(b, patch, instr_index, unit, opcode)
            else:
                b.op(opcode + stereo)
                b.def_operands(unit)
            if b.unit_no > MAX_UNITS:
                raise BytecodeError(f"Instrument {instr_index} has over 63 units")
        b.finish_instrument(instr)
    return Bytecode(
        opcodes=bytes(b.opcodes),
        operands=bytes(b.operands),
        delay_times=tuple(d & 0xFFFF for d in delay_times),
        sample_offsets=tuple(b.sample_offsets),
        polyphony_bitmask=_polyphony_bitmask(patch),
        num_voices=patch.num_voices(),
    )