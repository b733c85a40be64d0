# sointuvm

A pure-Python toolkit for a small modular synthesizer aimed at size-limited
productions. It compiles a patch (instruments built from units such as
envelopes, oscillators, filters and delays) into compact VM bytecode, runs
that bytecode in a software synthesizer, packs a score into deduplicated
patterns, and offers the helper objects used when generating x86 and
WebAssembly players from templates.

The package has no dependencies outside the standard library.

## Installation

```
pip install sointuvm
```

To run the tests:

```
pip install "sointuvm[test]"
pytest
```

## Modules

- `sointuvm.units`: the patch model. `Patch` is a list of `Instrument`s with
  `num_voices()`, `num_delay_lines()` and `find_unit(unit_id)` (which raises
  `LookupError` for id 0 or an unknown id). An `Instrument` holds `units`, a
  list of `Unit`s; `Unit.copy()` returns an independent copy.
  `OscillatorType` names the oscillator waveforms (`SINE`, `TRISAW`, `PULSE`,
  `GATE`, `SAMPLE`), and `UnitParameter` describes a parameter of a unit type.
- `sointuvm.featureset`: `AllFeatures` supports every unit type and parameter;
  `necessary_features_for(patch)` returns a `NecessaryFeatures` that supports
  only the opcodes, parameter values, modulations, polyphony and global sends
  the patch actually uses. `opcode(unit_type)` returns `None` for an
  unsupported type.
- `sointuvm.delaytable`: `construct_delay_time_table(patch, bpm)` builds one
  shared table of delay times, and `find_super_int_array(arrays)` greedily
  packs arrays into a short super array, returning the start index of each.
- `sointuvm.bytecode`: `new_bytecode(patch, feature_set, bpm)` compiles a patch
  into a frozen `Bytecode` (`opcodes`, `operands`, `delay_times`,
  `sample_offsets` of `SampleOffset`, `polyphony_bitmask`, `num_voices`).
  Patches it cannot encode (more than 32 voices, an instrument without voices
  or with over 63 units, an unsupported unit type, over 256 samples) raise
  `BytecodeError`.
- `sointuvm.go_synth`: `GoSynther().synth(patch, bpm)` returns a `GoSynth`.
  `trigger(voice_index, note)` starts a note, `release(voice_index)` releases
  it (both raise `IndexError` for a voice outside 0..31), `update(patch, bpm)`
  recompiles the patch and resets unit states when the opcodes changed, and
  `render(buffer, maxtime)` writes `(left, right)` frames into `buffer` and
  returns `(samples, time)`. A failure while rendering, such as an unbalanced
  stack, raises `RenderError`, whose `samples` and `time` tell how far it got.
  Sample oscillators read a General MIDI sound bank: pass
  `GoSynther(sample_table=load_sample_table(path))`, or let the synthesizer
  look for `gm.dls` in the current directory and the system sound bank
  locations; without one, samples are silent.
- `sointuvm.patterns`: `Song`, `Score` and `Track`, and
  `construct_patterns(song)`, which returns the table of unique byte patterns
  and one byte sequence per track, merging patterns that differ only after a
  note has been released and moving an all-zero pattern to index 0. Scores it
  cannot encode raise `PatternError`.
- `sointuvm.featureset_macros`: `FeatureSetMacros` wraps a feature set with
  `has_op`, `get_op`, `stereo`, `mono` and `stereo_and_mono`.
- `sointuvm.x86_macros`: `X86Macros` gives register names, section
  directives, named stack bookkeeping (`push`, `pop`, `push_regs`, `pop_regs`,
  `stack`, `func`, `call`, ...), exports and constant labels for 386 and
  amd64 assembly; `name_for_float` and `name_for_int` produce constant
  labels. Invalid macro calls raise `MacroError`.
- `sointuvm.wasm_macros`: `WasmMacros` lays out initialized data and memory
  blocks and records labels for WebAssembly text.
- `sointuvm.version`: `short_hash(revision, modified)` and
  `version_or_hash(version, revision_hash)`.

## Example

```python
from sointuvm.go_synth import GoSynther
from sointuvm.units import Instrument, OscillatorType, Patch, Unit

patch = Patch([
    Instrument(num_voices=1, units=[
        Unit(type="envelope", parameters={"attack": 32, "decay": 32, "sustain": 64,
                                          "release": 64, "gain": 128}),
        Unit(type="oscillator", parameters={"transpose": 64, "detune": 64, "phase": 0,
                                            "color": 96, "shape": 64, "gain": 128,
                                            "type": OscillatorType.SINE}),
        Unit(type="mulp"),
        Unit(type="pan", parameters={"panning": 64}),
        Unit(type="out", parameters={"stereo": 1, "gain": 128}),
    ]),
])

synth = GoSynther().synth(patch, 120)
synth.trigger(0, 64)
buffer = [(0.0, 0.0)] * 4410
samples, time = synth.render(buffer, 4410)
```

## What it does not do

There is no command-line tool, no audio device output, and no reading or
writing of song or patch files: songs and patches are built in Python. The
synthesizer renders what is triggered on it; it does not step through a
`Song` by itself. The template helpers are provided, but the package ships no
assembly or WebAssembly templates and does not produce a player.