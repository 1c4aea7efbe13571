"""Note history: one record per key press, annotated on release.

:class:`HistoryRecorder` owns the live history buffer.  Notes are appended in
press order, receive their release fields at most once, and leave the buffer
only through FIFO trimming when it grows past ``max_history_size``.  A note
trimmed before segmentation never becomes part of a pattern; that loss is an
accepted property of the bounded buffer.
"""

import collections.abc
import dataclasses
import logging
import time
import typing
import uuid

import tonetrail.config


logger = logging.getLogger(__name__)


def now_ms () -> float:

	"""Return wall-clock time in milliseconds."""

	return time.time() * 1000.0


def generate_id (timestamp: typing.Optional[float] = None) -> str:

	"""Return a unique id of the form ``<ms timestamp>_<random suffix>``."""

	stamp = int(now_ms() if timestamp is None else timestamp)
	return f"{stamp}_{uuid.uuid4().hex[:9]}"


@dataclasses.dataclass
class HistoryNote:

	"""
	One physical key-down/key-up interaction with its musical context.

	``press_time``, ``release_time`` and ``duration`` are milliseconds.
	``duration`` is only ever set together with ``release_time``.
	"""

	id: str
	note: str							# note name with octave, e.g. "F#5"
	key: str
	mode: str
	scale_degree: int					# 1-7
	solfege: typing.Dict[str, typing.Any]
	solfege_index: int
	octave: int
	frequency: float
	instrument: str
	press_time: float
	session_id: str
	velocity: typing.Optional[float] = None
	audio_note_id: typing.Optional[str] = None
	release_time: typing.Optional[float] = None
	duration: typing.Optional[float] = None

	@property
	def released (self) -> bool:

		"""Return True once a release has been recorded."""

		return self.release_time is not None

	@property
	def end_time (self) -> float:

		"""Return the release time, or the press time while still sustaining."""

		return self.release_time if self.release_time is not None else self.press_time


	def release (self, release_time: float) -> None:

		"""Set the release time and derived duration."""

		self.release_time = release_time
		self.duration = release_time - self.press_time


	def copy (self) -> "HistoryNote":

		"""Return a snapshot copy (the solfege descriptor is shallow-copied)."""

		return dataclasses.replace(self, solfege=dict(self.solfege))


	def to_dict (self) -> typing.Dict[str, typing.Any]:

		"""Return a JSON-compatible dict."""

		return dataclasses.asdict(self)


	@classmethod
	def from_dict (cls, data: typing.Mapping[str, typing.Any]) -> "HistoryNote":

		"""
		Build a note from a dict produced by :meth:`to_dict`.

		Raises ``KeyError`` for a missing required field and ``TypeError`` or
		``ValueError`` for values that cannot be converted.
		"""

		if not isinstance(data, collections.abc.Mapping):
			raise TypeError(f"expected a mapping, got {type(data).__name__}")

		release_time = data.get("release_time")
		duration = data.get("duration")

		note = cls(
			id = str(data["id"]),
			note = str(data["note"]),
			key = str(data["key"]),
			mode = str(data["mode"]),
			scale_degree = int(data["scale_degree"]),
			solfege = dict(data.get("solfege") or {}),
			solfege_index = int(data.get("solfege_index", int(data["scale_degree"]) - 1)),
			octave = int(data["octave"]),
			frequency = float(data["frequency"]),
			instrument = str(data["instrument"]),
			press_time = float(data["press_time"]),
			session_id = str(data.get("session_id", "")),
			velocity = None if data.get("velocity") is None else float(data["velocity"]),
			audio_note_id = None if data.get("audio_note_id") is None else str(data["audio_note_id"]),
		)

		# duration is only meaningful alongside release_time.
		if release_time is not None:
			note.release_time = float(release_time)
			note.duration = float(duration) if duration is not None else note.release_time - note.press_time

		return note


class HistoryRecorder:

	"""Append-only, FIFO-trimmed buffer of :class:`HistoryNote` records."""

	def __init__ (self, config: tonetrail.config.PatternDetectionConfig) -> None:

		"""Create an empty buffer capped by ``config.max_history_size``."""

		self.config = config
		self._notes: typing.List[HistoryNote] = []


	def __len__ (self) -> int:

		return len(self._notes)


	def __iter__ (self) -> typing.Iterator[HistoryNote]:

		return iter(self._notes)


	@property
	def notes (self) -> typing.Tuple[HistoryNote, ...]:

		"""Return a read-only view of the buffer in press order."""

		return tuple(self._notes)


	def record (
		self,
		session_id: str,
		press_time: float,
		note: str,
		key: str,
		mode: str,
		scale_degree: int,
		solfege: typing.Optional[typing.Mapping[str, typing.Any]],
		solfege_index: int,
		octave: int,
		frequency: float,
		instrument: str,
		velocity: typing.Optional[float] = None,
		audio_note_id: typing.Optional[str] = None,
	) -> HistoryNote:

		"""Create a note pressed at ``press_time``, append it, and trim the buffer."""

		history_note = HistoryNote(
			id = generate_id(press_time),
			note = note,
			key = key,
			mode = mode,
			scale_degree = scale_degree,
			solfege = dict(solfege or {}),
			solfege_index = solfege_index,
			octave = octave,
			frequency = frequency,
			instrument = instrument,
			press_time = press_time,
			session_id = session_id,
			velocity = velocity,
			audio_note_id = audio_note_id,
		)

		self._notes.append(history_note)
		self.trim(self.config.max_history_size)

		logger.debug(f"Recorded {note} (degree {scale_degree}) in {key} {mode} on {instrument}")

		return history_note


	def find_for_release (self, note_id: str) -> typing.Optional[HistoryNote]:

		"""
		Find the note a release event refers to.

		The newest unreleased note whose ``audio_note_id`` matches wins, so an id
		reused by the audio layer releases its most recent press.  Otherwise the
		note with that primary id is returned, released or not.
		"""

		for candidate in reversed(self._notes):
			if candidate.audio_note_id == note_id and not candidate.released:
				return candidate

		for candidate in self._notes:
			if candidate.id == note_id:
				return candidate

		return None


	def update_release (self, note_id: str, release_time: float) -> typing.Optional[HistoryNote]:

		"""
		Record the release of a note; a no-op when unknown or already released.

		Releases for notes that scrolled out of the buffer are expected.
		"""

		history_note = self.find_for_release(note_id)

		if history_note is None:
			logger.debug(f"Release for unknown note {note_id!r} ignored")
			return None

		if history_note.released:
			logger.debug(f"Note {history_note.note} already released, ignoring second release")
			return None

		history_note.release(release_time)

		logger.debug(f"Released {history_note.note} after {history_note.duration:.0f}ms")

		return history_note


	def trim (self, max_size: int) -> int:

		"""Drop the oldest notes until at most ``max_size`` remain; return how many went."""

		excess = len(self._notes) - max(0, max_size)

		if excess <= 0:
			return 0

		del self._notes[:excess]

		logger.debug(f"Trimmed {excess} old history notes (max: {max_size})")

		return excess


	def index_of (self, note_id: str) -> typing.Optional[int]:

		"""Return the buffer position of the note with ``note_id``, if still retained."""

		for i, candidate in enumerate(self._notes):
			if candidate.id == note_id:
				return i

		return None


	def replace (self, notes: typing.Iterable[HistoryNote]) -> None:

		"""Replace the buffer (snapshot import), keeping press order and the size cap."""

		self._notes = sorted(notes, key=lambda n: n.press_time)
		self.trim(self.config.max_history_size)


	def clear (self) -> None:

		self._notes = []


	def to_list (self) -> typing.List[typing.Dict[str, typing.Any]]:

		"""Serialize the buffer."""

		return [n.to_dict() for n in self._notes]
