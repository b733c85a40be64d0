"""Construction of a compact table of delay times shared by delay units."""

from __future__ import annotations

from .units import Patch

# Above this many arrays, pairs are merged without searching for the best
# overlap, which would otherwise take too long.
_MAX_MERGES = 1000
_MAX_DELAY = 65535


def _overlap(a: list[int], b: list[int]) -> tuple[int, int]:
    """Return (overlap length, shift) for placing b after a as early as possible."""
    shift = next(
        (s for s in range(len(a)) if a[s : s + len(b)] == b[: len(a) - s]),
        len(a),
    )
    return min(len(a) - shift, len(b)), shift


def find_super_int_array(arrays: list[list[int]]) -> tuple[list[int], list[int]]:
    """Find a short array containing every given array as a contiguous run.

    Returns the super array and the start index of each input array in it. A
    greedy search is used, so the result is not necessarily the shortest.
    """
    slice_numbers: list[int] = []
    start_indices = [0] * len(arrays)
    processed: list[list[int]] = []
    for array in arrays:
        if array:
            slice_numbers.append(len(processed))
            processed.append(list(array))
        else:
            # empty arrays start at index 0 and need no processing
            slice_numbers.append(-1)
    if not processed:
        return [], start_indices

    while len(processed) > 1:
        if len(processed) < _MAX_MERGES:
            best_overlap, best_i, best_j, best_shift = -1, -1, -1, -1
            for i, first in enumerate(processed):
                for j, second in enumerate(processed):
                    if i == j:
                        continue
                    overlap, shift = _overlap(first, second)
                    if overlap > best_overlap:
                        best_overlap, best_i, best_j, best_shift = overlap, i, j, shift
        else:
            best_overlap, best_shift = _overlap(processed[0], processed[1])
            best_i, best_j = 0, 1

        for k, number in enumerate(slice_numbers):
            if number == best_j:
                number = best_i
                start_indices[k] += best_shift
            if number > best_j:
                number -= 1
            slice_numbers[k] = number

        merged = processed[best_j]
        if best_overlap < len(merged):
            processed[best_i].extend(merged[best_overlap:])
        del processed[best_j]

    return processed[0], start_indices


def _trunc_div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return quotient if (a >= 0) == (b > 0) else -quotient


def _converted_delay_times(unit, bpm: int) -> list[int]:
    times = list(unit.var_args)
    if unit.parameters.get("notetracking", 0) == 2:
        times = [
            min(_trunc_div(_trunc_div(44100 * 60 * t, 48), bpm), _MAX_DELAY)
            for t in times
        ]
    return times


def construct_delay_time_table(patch: Patch, bpm: int) -> tuple[list[int], list[list[int]]]:
    """Build the delay time table for all enabled delay units of the patch.

    Returns the table and, for every instrument i and unit u, the index where
    that delay unit's times start; the index is 0 for other units.
    """
    subarrays: list[list[int]] = []
    positions: dict[tuple[int, int], int] = {}
    for i, instr in enumerate(patch):
        for j, unit in enumerate(instr.units):
            if unit.type == "delay" and not unit.disabled:
                positions[(i, j)] = len(subarrays)
                subarrays.append(_converted_delay_times(unit, bpm))

    table, indices = find_super_int_array(subarrays)
    unit_indices = [
        [
            indices[positions[(i, j)]] if (i, j) in positions else 0
            for j in range(len(instr.units))
        ]
        for i, instr in enumerate(patch)
    ]
    return table, unit_indices