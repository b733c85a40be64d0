"""Song data model and the encoding of a score into patterns and sequences."""

from __future__ import annotations

from dataclasses import dataclass, field

from .units import Patch

_DONT_CARE = -1
_HOLD = 1
_RELEASE = 0


class PatternError(ValueError):
    """Raised when a score cannot be encoded into byte patterns."""


@dataclass
class Track:
    """A track: a list of patterns and the order in which they are played."""

    patterns: list[list[int]] = field(default_factory=list)
    order: list[int] = field(default_factory=list)
    num_voices: int = 1
    effect: bool = False

    def note(self, order_row: int, pattern_row: int) -> int:
        """Note at the given position; 1 (hold) where nothing is defined."""
        if not 0 <= order_row < len(self.order):
            return _HOLD
        pattern_index = self.order[order_row]
        if not 0 <= pattern_index < len(self.patterns):
            return _HOLD
        pattern = self.patterns[pattern_index]
        if not 0 <= pattern_row < len(pattern):
            return _HOLD
        return pattern[pattern_row]


@dataclass
class Score:
    """The tracks of a song, with its length in patterns."""

    length: int = 0
    rows_per_pattern: int = 16
    tracks: list[Track] = field(default_factory=list)

    def length_in_rows(self) -> int:
        """Total number of rows in the song."""
        return self.length * self.rows_per_pattern


@dataclass
class Song:
    """A score together with the patch playing it."""

    bpm: int = 100
    rows_per_beat: int = 4
    score: Score = field(default_factory=Score)
    patch: Patch = field(default_factory=Patch)


def _flatten(track: Track, song_length: int, rows_per_pattern: int) -> list[int]:
    notes = [
        track.note(order_row, pattern_row)
        for order_row in range(song_length)
        for pattern_row in range(rows_per_pattern)
    ]
    # a hold at the very start means nothing is playing: treat it as a release
    if notes and notes[0] == _HOLD:
        notes[0] = _RELEASE
    return notes


def _mark_dont_cares(notes: list[int]) -> list[int]:
    """Mark holds and releases after a release as don't cares (-1)."""
    marked = []
    dont_care = False
    for note in notes:
        if dont_care and note <= _HOLD:
            marked.append(_DONT_CARE)
        else:
            marked.append(note)
            dont_care = note == _RELEASE
    return marked


def _split(sequence: list[int], pattern_length: int) -> list[list[int]]:
    chunks = []
    for start in range(0, len(sequence), pattern_length):
        chunk = sequence[start : start + pattern_length]
        chunk.extend([_DONT_CARE] * (pattern_length - len(chunk)))
        chunks.append(chunk)
    return chunks


def _compatible(existing: list[int], new: list[int]) -> bool:
    for n, m in zip(existing, new):
        if n > _DONT_CARE and m > _DONT_CARE and n != m:
            return False
        if n == _DONT_CARE and m > _HOLD:
            return False
        if n > _HOLD and m == _DONT_CARE:
            return False
    return True


def _add_patterns(
    patterns: list[list[int]], table: list[list[int]]
) -> list[int]:
    """Add patterns to the table, reusing compatible ones; return their indices."""
    sequence = []
    for pattern in patterns:
        for index, existing in enumerate(table):
            if _compatible(existing, pattern):
                table[index] = [
                    n if n != _DONT_CARE else e
                    for e, n in zip(existing, pattern)
                ] + existing[len(pattern) :]
                sequence.append(index)
                break
        else:
            sequence.append(len(table))
            table.append(list(pattern))
    return sequence


def _to_bytes(values: list[int]) -> bytearray:
    for value in values:
        if not 0 <= value <= 255:
            raise ValueError(
                f"all values should be 0 .. 255 (was: {value})"
            )
    return bytearray(values)


def construct_patterns(song: Song) -> tuple[list[bytes], list[bytes]]:
    """Encode the score as a table of unique patterns and one sequence per track.

    A pattern full of zeros, if any, is moved to index 0.
    """
    score = song.score
    if score.rows_per_pattern < 1:
        raise PatternError("rows per pattern should be at least 1")
    table: list[list[int]] = []
    sequences: list[bytearray] = []
    for track in score.tracks:
        flat = _flatten(track, score.length, score.rows_per_pattern)
        chunks = _split(_mark_dont_cares(flat), score.rows_per_pattern)
        sequence = _add_patterns(chunks, table)
        try:
            sequences.append(_to_bytes(sequence))
        except ValueError:
            raise PatternError(
                "the constructed pattern table would result in > 256 unique "
                "patterns; only 256 unique patterns are supported"
            ) from None

    table = [
        [_RELEASE if n == _DONT_CARE else n for n in pattern] for pattern in table
    ]
    try:
        byte_patterns = [bytes(_to_bytes(pattern)) for pattern in table]
    except ValueError as exc:
        raise PatternError(
            f"invalid note in pattern, notes should be 0 .. 255: {exc}"
        ) from None

    zero_index = next(
        (i for i, pattern in enumerate(table) if all(n == 0 for n in pattern)), -1
    )
    if zero_index > -1:
        # the silent pattern is likely the most common one, so it gets index 0
        byte_patterns[0], byte_patterns[zero_index] = (
            byte_patterns[zero_index],
            byte_patterns[0],
        )
        for sequence in sequences:
            for j, n in enumerate(sequence):
                if n == 0:
                    sequence[j] = zero_index
                elif n == zero_index:
                    sequence[j] = 0
    return byte_patterns, [bytes(s) for s in sequences]