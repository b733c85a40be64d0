import pytest

from sointuvm.delaytable import construct_delay_time_table, find_super_int_array
from sointuvm.units import Instrument, Patch, Unit


def _contains_all(table, arrays, indices):
    return all(table[s : s + len(a)] == a for a, s in zip(arrays, indices))


def test_documented_example():
    table, indices = find_super_int_array([[4, 5, 6], [1, 2, 3], [3, 4]])
    assert table == [1, 2, 3, 4, 5, 6]
    assert indices == [3, 0, 2]


def test_all_empty_arrays():
    assert find_super_int_array([[], []]) == ([], [0, 0])
    assert find_super_int_array([]) == ([], [])


def test_empty_arrays_start_at_zero():
    arrays = [[], [7, 8], []]
    table, indices = find_super_int_array(arrays)
    assert table == [7, 8]
    assert indices == [0, 0, 0]


def test_identical_arrays_are_stored_once():
    arrays = [[10, 20, 30], [10, 20, 30]]
    table, indices = find_super_int_array(arrays)
    assert table == [10, 20, 30]
    assert indices == [0, 0]


@pytest.mark.parametrize(
    "arrays",
    [
        [[1, 2, 3], [2, 3]],
        [[5], [6], [7]],
        [[1, 1, 1], [1, 1], [2, 1, 1]],
        [[9, 8, 7, 6], [7, 6, 5], [5, 4], [1], [4, 3, 9]],
        [[3, 3], [3], [], [3, 4, 3]],
    ],
)
def test_every_array_is_found_in_table(arrays):
    original = [list(a) for a in arrays]
    table, indices = find_super_int_array(arrays)
    assert _contains_all(table, original, indices)
    assert len(table) <= sum(len(a) for a in original)
    assert arrays == original


def _delay(var_args, notetracking=0, disabled=False):
    return Unit(
        type="delay",
        parameters={"notetracking": notetracking},
        var_args=var_args,
        disabled=disabled,
    )


def test_delay_table_shares_identical_delays():
    patch = Patch(
        [
            Instrument(units=[Unit(type="envelope"), _delay([100, 200])]),
            Instrument(units=[_delay([100, 200]), Unit(type="out")]),
        ]
    )
    table, indices = construct_delay_time_table(patch, 120)
    assert table == [100, 200]
    assert indices == [[0, 0], [0, 0]]


def test_delay_table_indices_point_to_delay_times():
    patch = Patch(
        [Instrument(units=[_delay([1, 2]), Unit(type="out"), _delay([7, 8, 9])])]
    )
    table, indices = construct_delay_time_table(patch, 120)
    assert table[indices[0][0] : indices[0][0] + 2] == [1, 2]
    assert table[indices[0][2] : indices[0][2] + 3] == [7, 8, 9]
    assert indices[0][1] == 0


def test_note_tracking_converts_beats_to_samples():
    patch = Patch([Instrument(units=[_delay([48], notetracking=2)])])
    table, _ = construct_delay_time_table(patch, 120)
    assert table == [22050]


def test_note_tracking_delay_is_capped():
    patch = Patch([Instrument(units=[_delay([100000], notetracking=2)])])
    table, _ = construct_delay_time_table(patch, 120)
    assert table == [65535]


def test_disabled_delays_are_left_out():
    patch = Patch(
        [Instrument(units=[_delay([11], disabled=True), _delay([22])])]
    )
    table, indices = construct_delay_time_table(patch, 120)
    assert table == [22]
    assert indices == [[0, 0]]