import dataclasses
import logging
import typing

import tonetrail.history


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class PatternSession:

	"""
	A logical playing session that groups related note interactions.

	The initial context is taken from the explicit session context when one is
	given, otherwise from the first note recorded in the session.
	"""

	id: str
	start_time: float
	end_time: typing.Optional[float] = None
	initial_key: typing.Optional[str] = None
	initial_mode: typing.Optional[str] = None
	initial_instrument: typing.Optional[str] = None
	note_count: int = 0
	pattern_ids: typing.List[str] = dataclasses.field(default_factory=list)

	@property
	def active (self) -> bool:

		return self.end_time is None


	def to_dict (self) -> typing.Dict[str, typing.Any]:

		return dataclasses.asdict(self)


class SessionManager:

	"""Issues session ids and keeps per-session bookkeeping."""

	def __init__ (self, now: float) -> None:

		"""Open a first session starting at ``now``."""

		self._sessions: typing.Dict[str, PatternSession] = {}
		self._current = self._open(now)


	@property
	def current_id (self) -> str:

		return self._current.id


	@property
	def current (self) -> PatternSession:

		return self._current


	def _open (
		self,
		now: float,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None,
		session_id: typing.Optional[str] = None
	) -> PatternSession:

		session = PatternSession(
			id = session_id or tonetrail.history.generate_id(now),
			start_time = now,
			initial_key = key,
			initial_mode = mode,
			initial_instrument = instrument,
		)

		self._sessions[session.id] = session

		return session


	def start (
		self,
		now: float,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> str:

		"""End the current session and open a new one; return the new id."""

		previous = self._current
		previous.end_time = now

		self._current = self._open(now, key, mode, instrument)

		logger.info(f"New session started: {self._current.id} (previous: {previous.id})")

		if key or mode or instrument:
			logger.info(f"Session context: {key} {mode} with {instrument}")

		return self._current.id


	def resume (self, session_id: str, now: float) -> None:

		"""Continue with ``session_id`` (snapshot import) instead of the current session."""

		if session_id == self._current.id:
			return

		session = self._sessions.get(session_id)

		if session is None:
			session = self._open(now, session_id=session_id)

		session.end_time = None
		self._current.end_time = now
		self._current = session


	def note_recorded (self, note: tonetrail.history.HistoryNote) -> None:

		"""Count a note against the current session and fill missing initial context."""

		session = self._current
		session.note_count += 1

		if session.initial_key is None:
			session.initial_key = note.key

		if session.initial_mode is None:
			session.initial_mode = note.mode

		if session.initial_instrument is None:
			session.initial_instrument = note.instrument


	def pattern_added (self, session_id: typing.Optional[str], pattern_id: str) -> None:

		"""Attach a pattern to the session its notes were played in, if known."""

		session = self._sessions.get(session_id) if session_id else None

		if session is not None and pattern_id not in session.pattern_ids:
			session.pattern_ids.append(pattern_id)


	def get (self, session_id: str) -> typing.Optional[PatternSession]:

		return self._sessions.get(session_id)


	def sessions (self) -> typing.List[PatternSession]:

		"""Return every known session, oldest first."""

		return list(self._sessions.values())


	def reset (self, now: float) -> str:

		"""Forget every session and open a fresh one; return its id."""

		self._sessions = {}
		self._current = self._open(now)

		return self._current.id
