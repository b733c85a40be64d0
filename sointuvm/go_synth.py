"""Bytecode interpreter that renders audio from a compiled patch."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import MutableSequence

from .bytecode import MAX_UNITS, MAX_VOICES, Bytecode, BytecodeError, new_bytecode
from .featureset import AllFeatures
from .units import INSTRUCTIONS, TRANSFORM_COUNTS, Patch

SAMPLE_TABLE_SIZE = 3440660
_DELAY_LINE_LENGTH = 65536
_STACK_BASE = 4

_ENV_ATTACK, _ENV_DECAY, _ENV_SUSTAIN, _ENV_RELEASE = range(4)

# Instructions that read nothing from the signal stack.
_NO_INPUT = frozenset(
    {"loadval", "in", "envelope", "noise", "receive", "loadnote", "oscillator", "sync"}
)
# Instructions that read two signals per channel.
_BINARY = frozenset({"add", "addp", "mul", "mulp", "xch"})
# Instructions that only mark a position and leave the VM state alone.
_MARKERS = frozenset({"sync"})


class RenderError(RuntimeError):
    """Raised when rendering fails; carries how far the rendering got."""

    def __init__(self, message: str, samples: int = 0, time: int = 0) -> None:
        super().__init__(message)
        self.samples = samples
        self.time = time


class _VMError(Exception):
    pass


def load_sample_table(path) -> bytes:
    """Read a sample bank (gm.dls) into a table of the size the VM expects."""
    with open(path, "rb") as fh:
        data = fh.read(SAMPLE_TABLE_SIZE)
    return data.ljust(SAMPLE_TABLE_SIZE, b"\0")


def _sample_table_candidates() -> list[str]:
    root = os.environ.get("SystemRoot", "")
    return [
        "gm.dls",
        os.path.join(root, "system32", "drivers", "gm.dls"),
        os.path.join(root, "SysWOW64", "drivers", "gm.dls"),
    ]


@lru_cache(maxsize=1)
def _default_sample_table() -> bytes:
    for candidate in _sample_table_candidates():
        try:
            return load_sample_table(candidate)
        except OSError:
            continue
    return bytes(SAMPLE_TABLE_SIZE)


def _exp2(x: float) -> float:
    try:
        return 2.0**x
    except OverflowError:
        return math.inf


def _pow(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except ValueError:
        return math.inf if base == 0 else math.nan
    except OverflowError:
        return math.inf


def _fdiv(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _nonlinear_map(value: float) -> float:
    return _exp2(-24 * value)


def _clip(value: float) -> float:
    return max(-1.0, min(1.0, value))


def _round_half_away(x: float) -> float:
    if not math.isfinite(x):
        return x
    return math.copysign(math.floor(abs(x) + 0.5), x)


def _crush(value: float, amount: float) -> float:
    n = _nonlinear_map(amount)
    return _round_half_away(_fdiv(value, n)) * n


def _waveshape(value: float, amount: float) -> float:
    return _fdiv(value * amount, 1 - amount + (2 * amount - 1) * abs(value))


def _sin(x: float) -> float:
    return math.sin(x) if math.isfinite(x) else math.nan


def _stack_need(name: str, channels: int) -> int:
    if name in _NO_INPUT:
        return 0
    if name == "speed":
        return 1
    if name in _BINARY:
        return 2 * channels
    return channels


@dataclass
class _UnitState:
    state: list[float] = field(default_factory=lambda: [0.0] * 8)
    ports: list[float] = field(default_factory=lambda: [0.0] * 8)


def _fresh_units() -> list[_UnitState]:
    return [_UnitState() for _ in range(MAX_UNITS)]


@dataclass
class _Voice:
    note: int = 0
    sustain: bool = False
    units: list[_UnitState] = field(default_factory=_fresh_units)


@dataclass
class _SynthState:
    outputs: list[float] = field(default_factory=lambda: [0.0] * 8)
    rand_seed: int = 1
    global_time: int = 0
    voices: list[_Voice] = field(
        default_factory=lambda: [_Voice() for _ in range(MAX_VOICES)]
    )

    def rand(self) -> float:
        self.rand_seed = (self.rand_seed * 16007) & 0xFFFFFFFF
        signed = self.rand_seed - (1 << 32) if self.rand_seed >= 1 << 31 else self.rand_seed
        return signed / -2147483648.0


@dataclass
class _DelayLine:
    buffer: list[float] = field(default_factory=lambda: [0.0] * _DELAY_LINE_LENGTH)
    damp_state: float = 0.0
    dc_in: float = 0.0
    dc_filt_state: float = 0.0


@dataclass
class _Frame:
    """Registers of the interpreter while rendering."""

    stack: list[float]
    params: list[float] = field(default_factory=lambda: [0.0] * 8)
    time: int = 0
    operands: bytes = b""
    pos: int = 0
    transform_pos: int = 0
    delay_pos: int = 0
    stereo: bool = False
    channels: int = 1
    voice: _Voice = field(default_factory=_Voice)
    unit: _UnitState = field(default_factory=_UnitState)

    def read(self) -> int:
        value = self.operands[self.pos]
        self.pos += 1
        return value

    def drop(self, count: int) -> list[float]:
        """Remove the top count signals from the stack and return them."""
        split = len(self.stack) - count
        dropped = self.stack[split:]
        del self.stack[split:]
        return dropped


def _as_patch(patch) -> Patch:
    return patch if isinstance(patch, Patch) else Patch(patch)


def _compile(patch: Patch, bpm: int) -> Bytecode:
    try:
        return new_bytecode(patch, AllFeatures(), bpm)
    except BytecodeError as exc:
        raise BytecodeError(f"error compiling {exc}") from exc


class GoSynth:
    """Interpreter of bytecode compiled with all features enabled.

    The signal stack is unbounded, so patches that work here may still
    overflow the stack of more constrained implementations.
    """

    def __init__(
        self, bytecode: Bytecode, delay_lines: int = 0, sample_table: bytes | None = None
    ) -> None:
        self._bytecode = bytecode
        self._state = _SynthState()
        self._delay_lines = [_DelayLine() for _ in range(delay_lines)]
        self._samples = (
            sample_table if sample_table is not None else _default_sample_table()
        )
        self._ops = {
            name: getattr(self, "_op_" + name)
            for name in INSTRUCTIONS
            if name not in _MARKERS
        }

    def trigger(self, voice_index: int, note: int) -> None:
        """Start a note on a voice, resetting all its units."""
        if not 0 <= voice_index < MAX_VOICES:
            raise IndexError(f"voice index {voice_index} out of range")
        self._state.voices[voice_index] = _Voice(note=note & 0xFF, sustain=True)

    def release(self, voice_index: int) -> None:
        """Release the note playing on a voice."""
        if not 0 <= voice_index < MAX_VOICES:
            raise IndexError(f"voice index {voice_index} out of range")
        self._state.voices[voice_index].sustain = False

    def update(self, patch, bpm: int) -> None:
        """Recompile the patch; unit states are reset if the opcodes changed."""
        patch = _as_patch(patch)
        bytecode = _compile(patch, bpm)
        needs_refresh = bytecode.opcodes != self._bytecode.opcodes
        self._bytecode = bytecode
        while len(self._delay_lines) < patch.num_delay_lines():
            self._delay_lines.append(_DelayLine())
        if needs_refresh:
            for voice in self._state.voices:
                voice.units = _fresh_units()

    def render(self, buffer: MutableSequence, maxtime: int) -> tuple[int, int]:
        """Render stereo frames into buffer until it is full or maxtime is reached.

        Returns (samples written, time advanced). Time may advance faster or
        slower than samples when the patch uses a speed unit.
        """
        frame = _Frame(stack=[0.0] * _STACK_BASE)
        outputs = self._state.outputs
        samples = 0
        try:
            while frame.time < maxtime and samples < len(buffer):
                self._render_sample(frame)
                if len(frame.stack) < _STACK_BASE:
                    raise _VMError("stack underflow")
                if len(frame.stack) > _STACK_BASE:
                    raise _VMError("stack not empty")
                buffer[samples] = (outputs[0], outputs[1])
                outputs[0] = outputs[1] = 0.0
                samples += 1
                frame.time += 1
                self._state.global_time = (self._state.global_time + 1) & 0xFFFFFFFF
        except _VMError as exc:
            raise RenderError(str(exc), samples, frame.time) from None
        except (IndexError, KeyError, ValueError, OverflowError, ZeroDivisionError) as exc:
            raise RenderError(f"render panicked: {exc}", samples, frame.time) from exc
        return samples, frame.time

    def _render_sample(self, f: _Frame) -> None:
        bc = self._bytecode
        opcodes = bc.opcodes
        f.operands = bc.operands
        f.pos = 0
        f.delay_pos = 0
        op_pos = instr_op = instr_operand = 0
        voices = self._state.voices
        remaining = bc.num_voices
        voice_idx = unit_idx = 0
        params = f.params
        while remaining > 0:
            op = opcodes[op_pos]
            op_pos += 1
            number = op >> 1
            if number == 0:
                remaining -= 1
                if remaining > 0:
                    voice_idx += 1
                    unit_idx = 0
                mask = 1 << remaining
                if bc.polyphony_bitmask & mask == mask:
                    op_pos, f.pos = instr_op, instr_operand
                else:
                    instr_op, instr_operand = op_pos, f.pos
                continue
            if number > len(INSTRUCTIONS):
                raise _VMError("invalid / unimplemented opcode")
            name = INSTRUCTIONS[number - 1]
            tcount = TRANSFORM_COUNTS[number - 1]
            if len(f.operands) - f.pos < tcount:
                raise _VMError("operand stream ended prematurely")
            voice = voices[voice_idx]
            unit = voice.units[unit_idx]
            f.voice, f.unit = voice, unit
            f.transform_pos = f.pos
            for i in range(tcount):
                params[i] = f.operands[f.pos + i] / 128.0 + unit.ports[i]
                unit.ports[i] = 0.0
            f.pos += tcount
            f.stereo = bool(op & 1)
            f.channels = 2 if f.stereo else 1
            if len(f.stack) < _stack_need(name, f.channels):
                raise _VMError("render panicked: stack index out of range")
            handler = self._ops.get(name)
            if handler is not None:
                handler(f)
            unit_idx += 1

    # arithmetic and stack manipulation

    def _op_add(self, f: _Frame) -> None:
        s = f.stack
        if f.stereo:
            s[-1] += s[-3]
            s[-2] += s[-4]
        else:
            s[-1] += s[-2]

    def _op_addp(self, f: _Frame) -> None:
        s = f.stack
        if f.stereo:
            s[-3] += s[-1]
            s[-4] += s[-2]
        else:
            s[-2] += s[-1]
        f.drop(f.channels)

    def _op_mul(self, f: _Frame) -> None:
        s = f.stack
        if f.stereo:
            s[-1] *= s[-3]
            s[-2] *= s[-4]
        else:
            s[-1] *= s[-2]

    def _op_mulp(self, f: _Frame) -> None:
        s = f.stack
        if f.stereo:
            s[-3] *= s[-1]
            s[-4] *= s[-2]
        else:
            s[-2] *= s[-1]
        f.drop(f.channels)

    def _op_xch(self, f: _Frame) -> None:
        s = f.stack
        if f.stereo:
            s[-3], s[-1] = s[-1], s[-3]
            s[-4], s[-2] = s[-2], s[-4]
        else:
            s[-2], s[-1] = s[-1], s[-2]

    def _op_push(self, f: _Frame) -> None:
        s = f.stack
        top = s[-1]
        if f.stereo:
            s.append(s[-2])
        s.append(top)

    def _op_pop(self, f: _Frame) -> None:
        f.drop(f.channels)

    def _op_loadval(self, f: _Frame) -> None:
        value = f.params[0] * 2 - 1
        f.stack.extend([value] * f.channels)

    def _op_loadnote(self, f: _Frame) -> None:
        value = f.voice.note / 64 - 1
        f.stack.extend([value] * f.channels)

    def _op_receive(self, f: _Frame) -> None:
        ports = f.unit.ports
        if f.stereo:
            f.stack.append(ports[1])
            ports[1] = 0.0
        f.stack.append(ports[0])
        ports[0] = 0.0

    # per-channel effects

    def _map_channels(self, f: _Frame, func) -> None:
        s = f.stack
        if f.stereo:
            s[-2] = func(s[-2])
        s[-1] = func(s[-1])

    def _op_distort(self, f: _Frame) -> None:
        amount = f.params[0]
        self._map_channels(f, lambda v: _waveshape(v, amount))

    def _op_gain(self, f: _Frame) -> None:
        gain = f.params[0]
        self._map_channels(f, lambda v: v * gain)

    def _op_invgain(self, f: _Frame) -> None:
        divisor = f.params[0]
        self._map_channels(f, lambda v: _fdiv(v, divisor))

    def _op_dbgain(self, f: _Frame) -> None:
        gain = _exp2((f.params[0] * 2 - 1) * 6.643856189774724)
        self._map_channels(f, lambda v: v * gain)

    def _op_clip(self, f: _Frame) -> None:
        self._map_channels(f, _clip)

    def _op_crush(self, f: _Frame) -> None:
        amount = f.params[0]
        self._map_channels(f, lambda v: _crush(v, amount))

    def _op_pan(self, f: _Frame) -> None:
        s = f.stack
        if not f.stereo:
            s.append(s[-1])
        s[-2] *= f.params[0]
        s[-1] *= 1 - f.params[0]

    def _op_hold(self, f: _Frame) -> None:
        freq2 = f.params[0] * f.params[0]
        state = f.unit.state
        s = f.stack
        for i in range(f.channels):
            phase = state[i] - freq2
            if phase <= 0:
                state[2 + i] = s[-1 - i]
                phase += 1.0
            s[-1 - i] = state[2 + i]
            state[i] = phase

    # outputs and auxiliary channels

    def _op_out(self, f: _Frame) -> None:
        outputs, s, gain = self._state.outputs, f.stack, f.params[0]
        outputs[0] += gain * s[-1]
        if f.stereo:
            outputs[1] += gain * s[-2]
        f.drop(f.channels)

    def _op_outaux(self, f: _Frame) -> None:
        outputs, s, p = self._state.outputs, f.stack, f.params
        outputs[0] += p[0] * s[-1]
        if f.stereo:
            outputs[1] += p[0] * s[-2]
        outputs[2] += p[1] * s[-1]
        if f.stereo:
            outputs[3] += p[1] * s[-2]
        f.drop(f.channels)

    def _op_aux(self, f: _Frame) -> None:
        channel = f.read()
        outputs, s, gain = self._state.outputs, f.stack, f.params[0]
        if f.stereo:
            outputs[channel + 1] += gain * s[-2]
        outputs[channel] += gain * s[-1]
        f.drop(f.channels)

    def _op_in(self, f: _Frame) -> None:
        channel = f.read()
        outputs = self._state.outputs
        if f.stereo:
            f.stack.append(outputs[channel + 1])
            outputs[channel + 1] = 0.0
        f.stack.append(outputs[channel])
        outputs[channel] = 0.0

    def _op_speed(self, f: _Frame) -> None:
        state = f.unit.state
        r = state[0] + _exp2(f.stack[-1] * 2.206896551724138) - 1
        advance = int(r + 1.5) - 1
        state[0] = r - advance
        f.time += advance
        f.drop(1)

    # generators

    def _op_envelope(self, f: _Frame) -> None:
        state, p = f.unit.state, f.params
        if not f.voice.sustain:
            state[0] = _ENV_RELEASE
        stage, level = state[0], state[1]
        if stage == _ENV_ATTACK:
            level += _nonlinear_map(p[0])
            if level >= 1:
                level = 1.0
                stage = _ENV_DECAY
        elif stage == _ENV_DECAY:
            level -= _nonlinear_map(p[1])
            if level <= p[2]:
                level = p[2]
        elif stage == _ENV_RELEASE:
            level -= _nonlinear_map(p[3])
            if level <= 0:
                level = 0.0
        state[0], state[1] = stage, level
        f.stack.extend([level * p[4]] * f.channels)

    def _op_noise(self, f: _Frame) -> None:
        for _ in range(f.channels):
            value = _waveshape(self._state.rand(), f.params[0]) * f.params[1]
            f.stack.append(value)

    def _sample_amplitude(self, f: _Frame, phase: float) -> float:
        sample_no = f.operands[f.transform_pos + 3]  # color holds the sample number
        offset = self._bytecode.sample_offsets[sample_no]
        index = int(phase * 84.28074964676522 + 0.5)
        if index >= offset.loop_start:
            index = (index - offset.loop_start) % offset.loop_length + offset.loop_start
        index = (index + offset.start) * 2
        if index < 0 or index + 2 > len(self._samples):
            raise IndexError("sample index out of range")
        raw = int.from_bytes(self._samples[index : index + 2], "little", signed=True)
        return raw / 32767.0

    def _op_oscillator(self, f: _Frame) -> None:
        flags = f.read()
        unit, p = f.unit, f.params
        state = unit.state
        detune_stereo = p[1] * 2 - 1
        unison = flags & 3
        lfo = flags & 0x8 == 0x8
        for i in range(f.channels):
            detune = detune_stereo
            output = 0.0
            for j in range(unison + 1):
                sv = i + j * 2
                pitch = 64 * (p[0] * 2 - 1) + detune
                if not lfo:
                    pitch += f.voice.note
                omega = _exp2(pitch * 0.083333333333)
                omega *= 0.000038 if lfo else 0.000092696138
                omega += unit.ports[6]
                state[sv] += omega
                amplitude = 0.0
                if flags & 0x80:
                    amplitude = self._sample_amplitude(f, state[sv] + p[2])
                else:
                    state[sv] -= float(int(state[sv] + 1) - 1)
                    phase = state[sv] + p[2]
                    phase -= float(int(phase))
                    color = p[3]
                    if flags & 0x40:
                        if phase < color:
                            amplitude = _sin(2 * math.pi * _fdiv(phase, color))
                    elif flags & 0x20:
                        if phase >= color:
                            phase = 1 - phase
                            color = 1 - color
                        amplitude = _fdiv(phase, color) * 2 - 1
                    elif flags & 0x10:
                        amplitude = -1.0 if phase >= color else 1.0
                    elif flags & 0x4:
                        mask_low = f.operands[f.transform_pos + 3]
                        mask_high = f.operands[f.transform_pos + 4]
                        gate_bits = (mask_high << 8) + mask_low
                        amplitude = float((gate_bits >> (int(phase * 16 + 0.5) & 15)) & 1)
                        amplitude += 0.99609375 * (state[4 + i] - amplitude)
                        state[4 + i] = amplitude
                if flags & 0x4 == 0:
                    output += _waveshape(amplitude, p[4]) * p[5]
                else:
                    output += amplitude * p[5]
                if j < unison:
                    p[2] += 0.08333333  # keep unison voices out of phase
                detune = -detune * 0.5
            f.stack.append(output)
            detune_stereo = -detune_stereo
        unit.ports[6] = 0.0

    # filters and feedback

    def _op_filter(self, f: _Frame) -> None:
        freq2 = f.params[0] * f.params[0]
        res = f.params[1]
        flags = f.read()
        state, s = f.unit.state, f.stack
        for i in range(f.channels):
            low, band = state[i], state[2 + i]
            low += freq2 * band
            high = s[-1 - i] - low - res * band
            band += freq2 * high
            state[i], state[2 + i] = low, band
            output = 0.0
            if flags & 0x40:
                output += low
            if flags & 0x20:
                output += band
            if flags & 0x10:
                output += high
            if flags & 0x08:
                output -= band
            if flags & 0x04:
                output -= high
            s[-1 - i] = output

    def _op_delay(self, f: _Frame) -> None:
        p = f.params
        pregain2, dry, feedback, damp = p[0] * p[0], p[1], p[2], p[3]
        index = f.read()
        count = f.read()
        t = self._state.global_time & 0xFFFF
        unit, s = f.unit, f.stack
        stack_index = len(s) - f.channels
        for _ in range(f.channels):
            line = None
            signal = s[stack_index]
            output = dry * signal
            for _ in range(0, count, 2):
                line = self._delay_lines[f.delay_pos]
                f.delay_pos += 1
                delay = self._bytecode.delay_times[index] + unit.ports[4] * 32767
                if count & 1 == 0:
                    delay /= _exp2(f.voice.note * 0.083333333333)
                delayed = line.buffer[(t - int(delay + 0.5)) & 0xFFFF]
                output += delayed
                line.damp_state = damp * line.damp_state + (1 - damp) * delayed
                line.buffer[t] = feedback * line.damp_state + pregain2 * signal
                index = (index + 1) & 0xFF
            if line is None:
                raise _VMError("render panicked: delay without delay lines")
            line.dc_filt_state = output + (0.99609375 * line.dc_filt_state - line.dc_in)
            line.dc_in = output
            s[stack_index] = line.dc_filt_state
            stack_index += 1
        unit.ports[4] = 0.0

    def _op_compressor(self, f: _Frame) -> None:
        s, p, state = f.stack, f.params, f.unit.state
        signal_level = s[-1] * s[-1]
        if f.stereo:
            signal_level += s[-2] * s[-2]
        current = state[0]
        alpha = _nonlinear_map(p[1] if signal_level < current else p[0])
        current += (signal_level - current) * alpha
        state[0] = current
        gain = 1.0
        threshold2 = p[3] * p[3]
        if current > threshold2:
            gain = _pow(threshold2 / current, p[4] / 2)
        gain = _fdiv(gain, p[2])
        f.stack.extend([gain] * f.channels)

    def _op_send(self, f: _Frame) -> None:
        low = f.read()
        high = f.read()
        addr = (high << 8) + low
        target = f.voice
        if addr & 0x8000:
            addr = (addr - 0x8010) & 0xFFFF
            target = self._state.voices[addr >> 10]
        unit_index = (((addr & 0x01F0) >> 4) - 1) & 0xFFFF
        port = addr & 7
        amount = f.params[0] * 2 - 1
        ports = target.units[unit_index].ports
        for i in range(f.channels):
            ports[port + i] += f.stack[-1 - i] * amount
        if addr & 0x8:
            f.drop(f.channels)


@dataclass(frozen=True)
class GoSynther:
    """Creates GoSynth instances from patches.

    Without a sample table, gm.dls is looked up in the current directory and
    in the system sound bank locations; if none is found, samples are silent.
    """

    sample_table: bytes | None = None

    def synth(self, patch, bpm: int) -> GoSynth:
        """Compile the patch and return a synth ready to render it."""
        patch = _as_patch(patch)
        bytecode = _compile(patch, bpm)
        return GoSynth(bytecode, patch.num_delay_lines(), self.sample_table)