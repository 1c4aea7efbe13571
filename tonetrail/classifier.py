"""Statistics and classification for a group of history notes.

Every function here is pure: the same group and config always give the same
result.  The constants are heuristics kept exactly as tuned; downstream
classification depends on them:

- durations are bucketed to the nearest 100 ms before counting rhythm variety;
- a group whose presses span less than 1000 ms is chord-like;
- complexity above 0.7 is ``mixed``;
- confidence is complexity plus 0.3, capped at 1.0.
"""

import collections
import math
import typing

import tonetrail.config
import tonetrail.history
import tonetrail.pattern


DURATION_BUCKET_MS: float = 100.0
CHORD_WINDOW_MS: float = 1000.0
ARPEGGIO_MIN_JUMP: int = 2
MIXED_COMPLEXITY_THRESHOLD: float = 0.7
CONFIDENCE_OFFSET: float = 0.3


Notes = typing.Sequence[tonetrail.history.HistoryNote]


def _durations (notes: Notes) -> typing.List[float]:

	return [n.duration for n in notes if n.duration is not None]


def total_duration (notes: Notes) -> float:

	"""Return the span from the first press to the last note's release (or press)."""

	return notes[-1].end_time - notes[0].press_time


def average_note_duration (notes: Notes) -> typing.Optional[float]:

	"""Return the mean of known durations, or None when no note has been released."""

	durations = _durations(notes)

	if not durations:
		return None

	return sum(durations) / len(durations)


def dominant_scale_degree (notes: Notes) -> int:

	"""Return the most frequent scale degree; ties go to the degree seen first."""

	counts = collections.Counter(n.scale_degree for n in notes)

	# Counter preserves first-seen order and max() keeps the first maximum.
	return max(counts, key=lambda degree: counts[degree])


def _bucket (duration: float) -> int:

	# Round half up, not to even.
	return math.floor(duration / DURATION_BUCKET_MS + 0.5)


def complexity_score (notes: Notes) -> float:

	"""
	Blend pitch and rhythm variety into a 0-1 score.

	Pitch variety is distinct note names over note count.  Rhythm variety is
	distinct 100 ms duration buckets over the number of released notes, or 0
	when nothing has been released yet.
	"""

	pitch_variety = len({n.note for n in notes}) / len(notes)

	durations = _durations(notes)

	if durations:
		rhythm_variety = len({_bucket(d) for d in durations}) / len(durations)
	else:
		rhythm_variety = 0.0

	return (pitch_variety + rhythm_variety) / 2


def is_scale_like (notes: Notes) -> bool:

	"""All pitches distinct and scale degree never falls."""

	if len({n.note for n in notes}) != len(notes):
		return False

	return all(b.scale_degree >= a.scale_degree for a, b in zip(notes, notes[1:]))


def is_arpeggio_like (notes: Notes) -> bool:

	"""At least one consecutive scale-degree jump larger than a third."""

	return any(abs(b.scale_degree - a.scale_degree) > ARPEGGIO_MIN_JUMP for a, b in zip(notes, notes[1:]))


def is_chord_like (notes: Notes) -> bool:

	"""All presses fall within the chord window."""

	return notes[-1].press_time - notes[0].press_time < CHORD_WINDOW_MS


def classify (notes: Notes, complexity: float) -> str:

	"""Return the pattern type; the first matching rule wins."""

	if len(notes) == 1:
		return tonetrail.pattern.PATTERN_RHYTHM

	if is_scale_like(notes):
		return tonetrail.pattern.PATTERN_SCALE

	if is_arpeggio_like(notes):
		return tonetrail.pattern.PATTERN_ARPEGGIO

	if is_chord_like(notes):
		return tonetrail.pattern.PATTERN_CHORD

	if complexity > MIXED_COMPLEXITY_THRESHOLD:
		return tonetrail.pattern.PATTERN_MIXED

	return tonetrail.pattern.PATTERN_MELODY


def detection_confidence (complexity: float) -> float:

	"""Rough prioritisation signal, not a probability."""

	return min(complexity + CONFIDENCE_OFFSET, 1.0)


def should_auto_save (complexity: float, config: tonetrail.config.PatternDetectionConfig) -> bool:

	"""Return True when auto-save is enabled and ``complexity`` reaches its threshold."""

	return config.auto_save_interesting_patterns and complexity >= config.auto_save_complexity_threshold


def build_pattern (
	notes: Notes,
	created_at: float,
	pattern_id: typing.Optional[str] = None
) -> tonetrail.pattern.Pattern:

	"""
	Build a classified :class:`~tonetrail.pattern.Pattern` from a group.

	The pattern holds snapshot copies of the notes, so the history buffer can
	be trimmed independently.

	Raises:
		ValueError: If ``notes`` is empty.
	"""

	if not notes:
		raise ValueError("Cannot build a pattern from an empty group")

	first = notes[0]
	complexity = complexity_score(notes)

	return tonetrail.pattern.Pattern(
		id = pattern_id or tonetrail.history.generate_id(created_at),
		notes = [n.copy() for n in notes],
		note_count = len(notes),
		total_duration = total_duration(notes),
		key = first.key,
		mode = first.mode,
		instrument = first.instrument,
		created_at = created_at,
		last_played_at = created_at,
		pattern_type = classify(notes, complexity),
		average_note_duration = average_note_duration(notes),
		dominant_scale_degree = dominant_scale_degree(notes),
		complexity_score = complexity,
		detection_confidence = detection_confidence(complexity),
		session_id = first.session_id,
	)
