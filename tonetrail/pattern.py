import dataclasses
import typing

import tonetrail.history


PATTERN_MELODY = "melody"
PATTERN_RHYTHM = "rhythm"
PATTERN_CHORD = "chord"
PATTERN_SCALE = "scale"
PATTERN_ARPEGGIO = "arpeggio"
PATTERN_MIXED = "mixed"

PATTERN_TYPES: typing.Tuple[str, ...] = (
	PATTERN_MELODY,
	PATTERN_RHYTHM,
	PATTERN_CHORD,
	PATTERN_SCALE,
	PATTERN_ARPEGGIO,
	PATTERN_MIXED,
)


@dataclasses.dataclass
class Pattern:

	"""
	A finalized, classified group of consecutive history notes.

	Key, mode and instrument come from the first note; a group never spans a
	context change while ``detect_on_context_change`` is enabled.  Times are
	milliseconds.
	"""

	id: str
	notes: typing.List[tonetrail.history.HistoryNote]
	note_count: int
	total_duration: float
	key: str
	mode: str
	instrument: str
	created_at: float
	last_played_at: float
	pattern_type: str
	is_saved: bool = False
	play_count: int = 0
	name: typing.Optional[str] = None
	tags: typing.Optional[typing.List[str]] = None
	average_note_duration: typing.Optional[float] = None
	dominant_scale_degree: typing.Optional[int] = None
	complexity_score: typing.Optional[float] = None
	detection_confidence: typing.Optional[float] = None
	session_id: typing.Optional[str] = None

	@property
	def note_ids (self) -> typing.List[str]:

		"""Return the ids of the notes in this pattern, in order."""

		return [n.id for n in self.notes]


	def to_dict (self) -> typing.Dict[str, typing.Any]:

		"""Return a JSON-compatible dict."""

		return dataclasses.asdict(self)


	@classmethod
	def from_dict (cls, data: typing.Mapping[str, typing.Any]) -> "Pattern":

		"""
		Build a pattern from a dict produced by :meth:`to_dict`.

		Raises ``KeyError``, ``TypeError`` or ``ValueError`` for malformed input.
		"""

		raw_notes = data.get("notes")

		if not isinstance(raw_notes, list):
			raise TypeError(f"pattern notes must be a list, got {type(raw_notes).__name__}")

		if not raw_notes:
			raise ValueError("pattern has no notes")

		notes = [tonetrail.history.HistoryNote.from_dict(n) for n in raw_notes]

		note_count = int(data.get("note_count", len(notes)))

		if note_count != len(notes):
			raise ValueError(f"note_count {note_count} does not match {len(notes)} notes")

		tags = data.get("tags")

		def optional_float (name: str) -> typing.Optional[float]:
			return None if data.get(name) is None else float(data[name])

		created_at = float(data["created_at"])

		return cls(
			id = str(data["id"]),
			notes = notes,
			note_count = note_count,
			total_duration = float(data.get("total_duration", 0.0)),
			key = str(data["key"]),
			mode = str(data["mode"]),
			instrument = str(data["instrument"]),
			created_at = created_at,
			last_played_at = float(data.get("last_played_at", created_at)),
			pattern_type = str(data.get("pattern_type", PATTERN_MELODY)),
			is_saved = bool(data.get("is_saved", False)),
			play_count = int(data.get("play_count", 0)),
			name = None if data.get("name") is None else str(data["name"]),
			tags = None if tags is None else [str(t) for t in tags],
			average_note_duration = optional_float("average_note_duration"),
			dominant_scale_degree = None if data.get("dominant_scale_degree") is None else int(data["dominant_scale_degree"]),
			complexity_score = optional_float("complexity_score"),
			detection_confidence = optional_float("detection_confidence"),
			session_id = None if data.get("session_id") is None else str(data["session_id"]),
		)
