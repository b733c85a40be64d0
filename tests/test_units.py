import pytest

from sointuvm.units import (
    PORTS,
    UNIT_TYPES,
    Instrument,
    OscillatorType,
    Patch,
    Unit,
)


def test_ports_follow_modulatable_parameters():
    assert PORTS["oscillator"][6] == "frequency"
    assert PORTS["delay"][4] == "delaytime"
    assert PORTS["receive"] == ("left", "right")
    for unit_type, params in UNIT_TYPES.items():
        assert len(PORTS[unit_type]) == sum(p.can_modulate for p in params)


def test_oscillator_sample_type():
    assert OscillatorType.SAMPLE == 4
    assert OscillatorType(0) is OscillatorType.SINE


def test_unit_copy_is_independent():
    unit = Unit(type="delay", id=3, parameters={"dry": 128}, var_args=[48])
    clone = unit.copy()
    assert clone == unit
    clone.parameters["dry"] = 0
    clone.var_args.append(7)
    assert unit.parameters == {"dry": 128}
    assert unit.var_args == [48]


def _patch():
    return Patch(
        [
            Instrument(
                name="a",
                num_voices=2,
                units=[
                    Unit(type="delay", id=1, var_args=[10, 20]),
                    Unit(type="out", id=2),
                ],
            ),
            Instrument(
                name="b",
                num_voices=3,
                units=[Unit(type="envelope"), Unit(type="delay", id=9, var_args=[5])],
            ),
        ]
    )


def test_num_voices():
    assert _patch().num_voices() == 5


def test_num_delay_lines_scales_with_voices():
    patch = _patch()
    expected = sum(
        len(u.var_args) * instr.num_voices
        for instr in patch
        for u in instr.units
        if u.type == "delay"
    )
    assert patch.num_delay_lines() == expected
    assert Patch().num_delay_lines() == 0


def test_find_unit():
    patch = _patch()
    assert patch.find_unit(2) == (0, 1)
    assert patch.find_unit(9) == (1, 1)


def test_find_unit_missing_raises():
    with pytest.raises(LookupError):
        _patch().find_unit(12345)


def test_find_unit_zero_id_raises():
    with pytest.raises(LookupError):
        _patch().find_unit(0)