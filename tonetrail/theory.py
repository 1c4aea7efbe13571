"""Musical context for raw MIDI pitches.

Turns a MIDI note number plus the current key and mode into the context
:meth:`~tonetrail.service.PatternService.record_note` expects: note name with
octave, octave, frequency, scale degree, solfege index and a solfege descriptor.

Module-level helpers:
- `key_name_to_pc(key_name)`: validate a key name and return its pitch class.
- `scale_pitch_classes(key_pc, mode)`: pitch classes of a key and mode, tonic first.
- `nearest_scale_index(pitch, key_pc, mode)`: scale position of a pitch, snapping
  chromatic notes to the nearest scale tone (upward on ties).
- `describe_pitch(pitch, key, mode)`: the full ``record_note`` context.
"""

import typing


NOTE_NAME_TO_PC: typing.Dict[str, int] = {
	"C": 0,
	"C#": 1,
	"Db": 1,
	"D": 2,
	"D#": 3,
	"Eb": 3,
	"E": 4,
	"F": 5,
	"F#": 6,
	"Gb": 6,
	"G": 7,
	"G#": 8,
	"Ab": 8,
	"A": 9,
	"A#": 10,
	"Bb": 10,
	"B": 11,
}

PC_TO_NOTE_NAME: typing.List[str] = [
	"C",
	"C#",
	"D",
	"D#",
	"E",
	"F",
	"F#",
	"G",
	"G#",
	"A",
	"A#",
	"B",
]


MODE_INTERVALS: typing.Dict[str, typing.List[int]] = {
	"major":          [0, 2, 4, 5, 7, 9, 11],
	"ionian":         [0, 2, 4, 5, 7, 9, 11],
	"dorian":         [0, 2, 3, 5, 7, 9, 10],
	"phrygian":       [0, 1, 3, 5, 7, 8, 10],
	"lydian":         [0, 2, 4, 6, 7, 9, 11],
	"mixolydian":     [0, 2, 4, 5, 7, 9, 10],
	"minor":          [0, 2, 3, 5, 7, 8, 10],
	"aeolian":        [0, 2, 3, 5, 7, 8, 10],
	"locrian":        [0, 1, 3, 5, 6, 8, 10],
	"harmonic_minor": [0, 2, 3, 5, 7, 8, 11],
	"melodic_minor":  [0, 2, 3, 5, 7, 9, 11],
}


# Movable-do syllables, one per scale degree.
SOLFEGE_NAMES: typing.List[str] = ["Do", "Re", "Mi", "Fa", "Sol", "La", "Ti"]


A4_PITCH = 69
A4_FREQUENCY = 440.0


def key_name_to_pc (key_name: str) -> int:

	"""Validate a key name and return its pitch class (0-11).

	Raises:
		ValueError: If the key name is not recognised.

	Example:
		```python
		key_name_to_pc("F#")  # → 6
		```
	"""

	if key_name not in NOTE_NAME_TO_PC:
		raise ValueError(
			f"Unknown key name: {key_name!r}. Expected e.g. 'C', 'F#', 'Bb'."
		)

	return NOTE_NAME_TO_PC[key_name]


def scale_pitch_classes (key_pc: int, mode: str = "major") -> typing.List[int]:

	"""
	Return the pitch classes of a key and mode, starting from the tonic.

	Example:
		```python
		scale_pitch_classes(9, "minor")  # → [9, 11, 0, 2, 4, 5, 7]
		```
	"""

	if mode not in MODE_INTERVALS:
		raise ValueError(f"Unknown mode '{mode}'. Available: {sorted(MODE_INTERVALS)}")

	return [(key_pc + i) % 12 for i in MODE_INTERVALS[mode]]


def nearest_scale_index (pitch: int, key_pc: int, mode: str = "major") -> int:

	"""
	Return the 0-based scale position of ``pitch``.

	Chromatic pitches snap to the nearest scale tone, searching outward one
	semitone at a time and preferring the upper neighbour on ties.
	"""

	scale = scale_pitch_classes(key_pc, mode)
	pc = pitch % 12

	for offset in range(0, 7):

		if (pc + offset) % 12 in scale:
			return scale.index((pc + offset) % 12)

		if (pc - offset) % 12 in scale:
			return scale.index((pc - offset) % 12)

	return 0


def note_name (pitch: int) -> str:

	"""Return the scientific note name, e.g. ``"C4"`` for 60."""

	return f"{PC_TO_NOTE_NAME[pitch % 12]}{pitch // 12 - 1}"


def pitch_frequency (pitch: int) -> float:

	"""Return the equal-tempered frequency of a MIDI pitch in Hz."""

	return A4_FREQUENCY * 2.0 ** ((pitch - A4_PITCH) / 12.0)


def describe_pitch (pitch: int, key: str = "C", mode: str = "major") -> typing.Dict[str, typing.Any]:

	"""
	Build the ``record_note`` musical context for a MIDI pitch.

	Returns a dict with ``note``, ``key``, ``mode``, ``scale_degree`` (1-7),
	``solfege`` (``{"name", "degree", "chromatic"}``), ``solfege_index``,
	``octave`` and ``frequency``.
	"""

	key_pc = key_name_to_pc(key)
	index = nearest_scale_index(pitch, key_pc, mode)

	return {
		"note": note_name(pitch),
		"key": key,
		"mode": mode,
		"scale_degree": index + 1,
		"solfege": {
			"name": SOLFEGE_NAMES[index],
			"degree": index + 1,
			"chromatic": pitch % 12 not in scale_pitch_classes(key_pc, mode),
		},
		"solfege_index": index,
		"octave": pitch // 12 - 1,
		"frequency": pitch_frequency(pitch),
	}
