import pytest

from sointuvm.featureset import AllFeatures, necessary_features_for
from sointuvm.units import (
    INSTRUCTION_NUMBERS,
    INSTRUCTIONS,
    TRANSFORM_COUNTS,
    Instrument,
    OscillatorType,
    Patch,
    Unit,
)

DEFAULT_UNITS = {
    "envelope": Unit(type="envelope", parameters={"stereo": 0, "attack": 64, "decay": 64, "sustain": 64, "release": 64, "gain": 64}),
    "oscillator": Unit(type="oscillator", parameters={"stereo": 0, "transpose": 64, "detune": 64, "phase": 0, "color": 64, "shape": 64, "gain": 64, "type": OscillatorType.SINE}),
    "noise": Unit(type="noise", parameters={"stereo": 0, "shape": 64, "gain": 64}),
    "mulp": Unit(type="mulp", parameters={"stereo": 0}),
    "mul": Unit(type="mul", parameters={"stereo": 0}),
    "add": Unit(type="add", parameters={"stereo": 0}),
    "addp": Unit(type="addp", parameters={"stereo": 0}),
    "push": Unit(type="push", parameters={"stereo": 0}),
    "pop": Unit(type="pop", parameters={"stereo": 0}),
    "xch": Unit(type="xch", parameters={"stereo": 0}),
    "receive": Unit(type="receive", parameters={"stereo": 0}),
    "loadnote": Unit(type="loadnote", parameters={"stereo": 0}),
    "loadval": Unit(type="loadval", parameters={"stereo": 0, "value": 64}),
    "pan": Unit(type="pan", parameters={"stereo": 0, "panning": 64}),
    "gain": Unit(type="gain", parameters={"stereo": 0, "gain": 64}),
    "invgain": Unit(type="invgain", parameters={"stereo": 0, "invgain": 64}),
    "dbgain": Unit(type="dbgain", parameters={"stereo": 0, "decibels": 64}),
    "crush": Unit(type="crush", parameters={"stereo": 0, "resolution": 64}),
    "clip": Unit(type="clip", parameters={"stereo": 0}),
    "hold": Unit(type="hold", parameters={"stereo": 0, "holdfreq": 64}),
    "distort": Unit(type="distort", parameters={"stereo": 0, "drive": 64}),
    "filter": Unit(type="filter", parameters={"stereo": 0, "frequency": 64, "resonance": 64, "lowpass": 1, "bandpass": 0, "highpass": 0, "negbandpass": 0, "neghighpass": 0}),
    "out": Unit(type="out", parameters={"stereo": 1, "gain": 64}),
    "outaux": Unit(type="outaux", parameters={"stereo": 1, "outgain": 64, "auxgain": 64}),
    "aux": Unit(type="aux", parameters={"stereo": 1, "gain": 64, "channel": 2}),
    "delay": Unit(type="delay", parameters={"damp": 0, "dry": 128, "feedback": 96, "notetracking": 2, "pregain": 40, "stereo": 0}, var_args=[48]),
    "in": Unit(type="in", parameters={"stereo": 1, "channel": 2}),
    "speed": Unit(type="speed", parameters={}),
    "compressor": Unit(type="compressor", parameters={"stereo": 0, "attack": 64, "release": 64, "invgain": 64, "threshold": 64, "ratio": 64}),
    "send": Unit(type="send", parameters={"stereo": 0, "amount": 128, "voice": 0, "unit": 0, "port": 0, "sendpop": 1}),
    "sync": Unit(type="sync", parameters={}),
}


def _default_instrument_units():
    return [DEFAULT_UNITS[name].copy() for name in ("envelope", "oscillator", "mulp", "pan", "outaux")]


def test_all_features_opcodes_are_even_instruction_numbers():
    features = AllFeatures()
    for name in INSTRUCTIONS:
        assert features.opcode(name) == 2 * INSTRUCTION_NUMBERS[name]
    assert features.opcode("nosuchunit") is None


def test_all_features_instructions_and_counts():
    features = AllFeatures()
    assert features.instructions() == list(INSTRUCTIONS)
    assert [features.transform_count(n) for n in INSTRUCTIONS] == list(TRANSFORM_COUNTS)
    assert features.transform_count("oscillator") == 6


def test_input_numbers():
    features = AllFeatures()
    assert features.input_number("delay", "delaytime") == 4
    assert features.input_number("oscillator", "frequency") == 6
    assert features.input_number("oscillator", "transpose") == 0
    assert features.input_number("nosuchunit", "x") == 0


def test_all_features_supports_everything():
    features = AllFeatures()
    assert features.supports_param_value("add", "stereo", 7)
    assert features.supports_param_value_other_than("add", "stereo", 0)
    assert features.supports_modulation("add", "anything")
    assert features.supports_polyphony()
    assert features.supports_global_send()


def test_necessary_features_opcodes_in_order_of_use():
    patch = Patch([Instrument(units=_default_instrument_units())])
    features = necessary_features_for(patch)
    assert features.instructions() == ["envelope", "oscillator", "mulp", "pan", "outaux"]
    assert [features.opcode(n) for n in features.instructions()] == [2, 4, 6, 8, 10]
    assert features.opcode("delay") is None
    assert not features.supports_polyphony()
    assert not features.supports_global_send()


def test_necessary_features_param_values():
    units = _default_instrument_units()
    stereo_pan = DEFAULT_UNITS["pan"].copy()
    stereo_pan.parameters["stereo"] = 1
    units.append(stereo_pan)
    features = necessary_features_for(Patch([Instrument(units=units)]))
    assert features.supports_param_value("pan", "stereo", 0)
    assert features.supports_param_value("pan", "stereo", 1)
    assert features.supports_param_value_other_than("pan", "stereo", 0)
    assert not features.supports_param_value_other_than("envelope", "stereo", 0)
    assert not features.supports_param_value("delay", "stereo", 0)


def test_necessary_features_polyphony():
    patch = Patch([Instrument(num_voices=2, units=_default_instrument_units())])
    assert necessary_features_for(patch).supports_polyphony()


def test_global_send_to_other_instrument():
    send = DEFAULT_UNITS["send"].copy()
    send.parameters["target"] = 5
    target = DEFAULT_UNITS["oscillator"].copy()
    target.id = 5
    patch = Patch([Instrument(units=[send]), Instrument(units=[target])])
    features = necessary_features_for(patch)
    assert features.supports_global_send()
    assert features.supports_modulation("oscillator", "transpose")
    assert not features.supports_modulation("oscillator", "detune")


def test_local_send_is_not_global():
    target = DEFAULT_UNITS["oscillator"].copy()
    target.id = 5
    send = DEFAULT_UNITS["send"].copy()
    send.parameters["target"] = 5
    send.parameters["port"] = 6
    features = necessary_features_for(Patch([Instrument(units=[target, send])]))
    assert not features.supports_global_send()
    assert features.supports_modulation("oscillator", "frequency")


def test_send_without_target_records_nothing():
    send = DEFAULT_UNITS["send"].copy()
    send.parameters["target"] = 77
    features = necessary_features_for(Patch([Instrument(units=[send])]))
    assert not features.supports_global_send()
    assert features.instructions() == ["send"]


@pytest.mark.parametrize("unit_type", sorted(DEFAULT_UNITS))
def test_disabled_units_do_not_change_features(unit_type):
    base = necessary_features_for(Patch([Instrument(name="Instr", units=_default_instrument_units())]))
    first = DEFAULT_UNITS[unit_type].copy()
    first.disabled = True
    first.id = 1000
    last = DEFAULT_UNITS[unit_type].copy()
    last.disabled = True
    last.id = 1001
    units = [first, *_default_instrument_units(), last]
    assert necessary_features_for(Patch([Instrument(name="Instr", units=units)])) == base


@pytest.mark.parametrize("unit_type", sorted(DEFAULT_UNITS))
def test_disabled_units_alone_add_nothing(unit_type):
    base = necessary_features_for(Patch([Instrument(name="Instr", units=[])]))
    first = DEFAULT_UNITS[unit_type].copy()
    first.disabled = True
    first.id = 1000
    last = DEFAULT_UNITS[unit_type].copy()
    last.disabled = True
    last.id = 1001
    features = necessary_features_for(Patch([Instrument(name="Instr", units=[first, last])]))
    assert features == base
    assert features.instructions() == []