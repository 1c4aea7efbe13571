"""The pattern service: one owner object for history, patterns and sessions.

:class:`PatternService` wires the recorder, segmenter, classifier, repository,
retention manager, session manager and silence timer together.  Create one
per application (or per test) and pass it to whoever needs it; there is no
module-level instance.

All public methods run synchronously to completion and there is no internal
locking.  Hosts with several threads must funnel calls through one thread,
which is what :class:`~tonetrail.midi_input.MidiNoteRecorder` does for the
``mido`` callback thread.

Pattern detection runs when:

- the silence timer fires after ``silence_threshold`` of inactivity,
- :meth:`PatternService.detect_patterns` is called explicitly,
- a new session starts (the ending session is segmented first).

The trailing group is emitted as a *provisional* pattern so the phrase being
played is visible at once.  Later detections refresh that same pattern in
place until a boundary closes it, so no note ever ends up in two patterns.
"""

import collections.abc
import dataclasses
import logging
import typing

import tonetrail.classifier
import tonetrail.config
import tonetrail.history
import tonetrail.pattern
import tonetrail.repository
import tonetrail.retention
import tonetrail.segmenter
import tonetrail.session
import tonetrail.silence_timer


logger = logging.getLogger(__name__)


SNAPSHOT_VERSION = 1


DetectionListener = typing.Callable[[typing.List[tonetrail.pattern.Pattern]], typing.Any]


@dataclasses.dataclass
class _OpenGroup:

	"""The trailing group currently represented by a provisional pattern."""

	first_note_id: str
	last_note_id: str
	pattern_id: str


class PatternService:

	"""Records notes, detects and classifies patterns, and manages their lifecycle."""

	def __init__ (
		self,
		config: typing.Union[tonetrail.config.PatternDetectionConfig, typing.Mapping[str, typing.Any], None] = None,
		clock: typing.Optional[typing.Callable[[], float]] = None,
		loop: typing.Any = None,
		on_patterns_detected: typing.Optional[DetectionListener] = None
	) -> None:

		"""
		Parameters:
			config: A config object (used as-is, so later updates are shared) or a
				partial mapping merged over the defaults.
			clock: Returns the current time in milliseconds.  Defaults to wall-clock.
			loop: asyncio loop for the silence timer.  Defaults to the running loop
				at the time each note is recorded.
			on_patterns_detected: Called with every non-empty list of new or
				refreshed patterns, whatever triggered the detection.
		"""

		if isinstance(config, tonetrail.config.PatternDetectionConfig):
			self.config = config
		else:
			self.config = tonetrail.config.PatternDetectionConfig.from_dict(config)

		self.clock: typing.Callable[[], float] = clock or tonetrail.history.now_ms
		self.on_patterns_detected = on_patterns_detected

		self.recorder = tonetrail.history.HistoryRecorder(self.config)
		self.repository = tonetrail.repository.PatternRepository()
		self.segmenter = tonetrail.segmenter.Segmenter(self.config)
		self.retention = tonetrail.retention.RetentionManager(self.config, self.repository, self.recorder)
		self.sessions = tonetrail.session.SessionManager(self.clock())
		self.silence_timer = tonetrail.silence_timer.SilenceTimer(self._on_silence, loop)

		self._open: typing.Optional[_OpenGroup] = None

		logger.info(f"Pattern service initialized with config: {self.config}")


	@property
	def history (self) -> typing.Tuple[tonetrail.history.HistoryNote, ...]:

		"""Return the retained history notes in press order."""

		return self.recorder.notes


	@property
	def session_id (self) -> str:

		return self.sessions.current_id


	# ------------------------------------------------------------------
	# Recording
	# ------------------------------------------------------------------

	def record_note (
		self,
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
		audio_note_id: typing.Optional[str] = None
	) -> tonetrail.history.HistoryNote:

		"""
		Record a note press now and re-arm the silence timer.

		Always succeeds.  The history buffer never exceeds ``max_history_size``.
		"""

		now = self.clock()

		history_note = self.recorder.record(
			session_id = self.sessions.current_id,
			press_time = now,
			note = note,
			key = key,
			mode = mode,
			scale_degree = scale_degree,
			solfege = solfege,
			solfege_index = solfege_index,
			octave = octave,
			frequency = frequency,
			instrument = instrument,
			velocity = velocity,
			audio_note_id = audio_note_id,
		)

		self.sessions.note_recorded(history_note)
		self.silence_timer.arm(self.config.silence_threshold, now)

		return history_note


	def update_note_release (self, note_id: str, release_time: typing.Optional[float] = None) -> typing.Optional[tonetrail.history.HistoryNote]:

		"""
		Record the release of a note, matched by audio note id first, then by id.

		Unknown or already-released notes are ignored.  Returns the updated note.
		"""

		return self.recorder.update_release(note_id, self.clock() if release_time is None else release_time)


	# ------------------------------------------------------------------
	# Detection
	# ------------------------------------------------------------------

	def detect_patterns (self) -> typing.List[tonetrail.pattern.Pattern]:

		"""
		Segment pending history and store the resulting patterns.

		Returns the patterns created or refreshed by this run.
		"""

		history = self.recorder.notes

		if len(history) < self.config.min_pattern_length:
			logger.debug(f"History too short for pattern detection ({len(history)} < {self.config.min_pattern_length})")
			return []

		self._reconcile_open_group(history)

		result = self.segmenter.run(history)
		now = self.clock()

		changed: typing.List[tonetrail.pattern.Pattern] = []
		open_group: typing.Optional[_OpenGroup] = None

		for group in result.groups:

			pattern, updated = self._store_group(group, now)

			if group is result.open_group and pattern is not None:
				open_group = _OpenGroup(group[0].id, group[-1].id, pattern.id)

			if pattern is not None and updated:
				changed.append(pattern)

		if result.open_group is not None and open_group is None and self._open is not None:
			# The trailing group belongs to a provisional pattern the user removed.
			open_group = dataclasses.replace(self._open, last_note_id=result.open_group[-1].id)

		self._open = open_group

		if changed:
			logger.info(f"Pattern detection completed: {len(changed)} new or updated patterns")

			if self.on_patterns_detected is not None:
				self.on_patterns_detected(changed)

		return changed


	def _reconcile_open_group (self, history: typing.Sequence[tonetrail.history.HistoryNote]) -> None:

		"""Finalize the provisional pattern if its first note has been trimmed away."""

		if self._open is None:
			return

		if self.recorder.index_of(self._open.first_note_id) is not None:
			return

		logger.debug(f"Provisional pattern {self._open.pattern_id} lost its first note to trimming; finalizing")

		self.segmenter.consume_through(self._open.last_note_id)
		self._open = None


	def _store_group (
		self,
		group: typing.List[tonetrail.history.HistoryNote],
		now: float
	) -> typing.Tuple[typing.Optional[tonetrail.pattern.Pattern], bool]:

		"""Create a pattern for ``group`` or refresh the provisional one it extends.

		Returns the pattern (None if the group was dismissed) and whether it changed.
		"""

		if self._open is not None and group[0].id == self._open.first_note_id:

			existing = self.repository.get(self._open.pattern_id)

			if existing is None:
				logger.debug(f"Provisional pattern {self._open.pattern_id} was removed; not recreating it")
				return None, False

			if [n.to_dict() for n in existing.notes] == [n.to_dict() for n in group]:
				return existing, False

			refreshed = tonetrail.classifier.build_pattern(group, existing.created_at, existing.id)
			refreshed.is_saved = existing.is_saved
			refreshed.play_count = existing.play_count
			refreshed.last_played_at = existing.last_played_at
			refreshed.name = existing.name
			refreshed.tags = existing.tags

			if not refreshed.is_saved and tonetrail.classifier.should_auto_save(refreshed.complexity_score or 0.0, self.config):
				refreshed.is_saved = True
				logger.info(f"Auto-saved interesting pattern {refreshed.id} (complexity {refreshed.complexity_score:.2f})")

			self.repository.save(refreshed)

			logger.debug(f"Pattern {refreshed.id} extended to {refreshed.note_count} notes ({refreshed.pattern_type})")

			return refreshed, True

		pattern = tonetrail.classifier.build_pattern(group, now)

		if tonetrail.classifier.should_auto_save(pattern.complexity_score or 0.0, self.config):
			pattern.is_saved = True
			logger.info(f"Auto-saved interesting pattern {pattern.id} (complexity {pattern.complexity_score:.2f})")

		self.repository.save(pattern)
		self.sessions.pattern_added(pattern.session_id, pattern.id)

		logger.info(
			f"New pattern detected: {pattern.id} - {pattern.note_count} notes, "
			f"{pattern.total_duration / 1000:.1f}s, {pattern.key} {pattern.mode}, "
			f"{pattern.instrument}, {pattern.pattern_type}"
		)

		return pattern, True


	def _on_silence (self) -> None:

		# The timer may fire after clear_all_data().
		if len(self.recorder) == 0:
			return

		logger.debug(f"Silence detected ({self.config.silence_threshold:.0f}ms) - detecting patterns")
		self.detect_patterns()


	# ------------------------------------------------------------------
	# Sessions
	# ------------------------------------------------------------------

	def start_new_session (
		self,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> str:

		"""
		Segment the ending session, close its trailing group, and open a new session.

		Returns the new session id, stamped on every note recorded from now on.
		"""

		if len(self.recorder) >= self.config.min_pattern_length:
			self.detect_patterns()

		self.segmenter.consume_all(self.recorder.notes)
		self._open = None

		return self.sessions.start(self.clock(), key, mode, instrument)


	# ------------------------------------------------------------------
	# Pattern access
	# ------------------------------------------------------------------

	def save_pattern (self, pattern_id: str, name: typing.Optional[str] = None, tags: typing.Optional[typing.Sequence[str]] = None) -> bool:

		"""Mark a pattern saved (never auto-purged); False when it does not exist."""

		return self.repository.mark_saved(pattern_id, self.clock(), name, tags)


	def record_play (self, pattern_id: str) -> bool:

		"""Count a playback of a pattern; False when it does not exist."""

		return self.repository.record_play(pattern_id, self.clock())


	def delete_pattern (self, pattern_id: str) -> bool:

		return self.repository.delete(pattern_id)


	def delete_patterns (self, pattern_ids: typing.Iterable[str]) -> typing.Tuple[int, int]:

		"""Delete several patterns; return ``(deleted, failed)``."""

		return self.repository.delete_many(pattern_ids)


	def get_pattern (self, pattern_id: str) -> typing.Optional[tonetrail.pattern.Pattern]:

		return self.repository.get(pattern_id)


	def get_patterns (self, options: typing.Optional[tonetrail.repository.SearchOptions] = None, **filters: typing.Any) -> typing.List[tonetrail.pattern.Pattern]:

		"""Return patterns filtered, sorted and limited by ``options`` or keyword filters."""

		return self.repository.list(options, **filters)


	def get_storage_stats (self) -> tonetrail.repository.StorageStats:

		return self.repository.stats(self.recorder.notes)


	# ------------------------------------------------------------------
	# Retention and configuration
	# ------------------------------------------------------------------

	def purge_old_patterns (self, now: typing.Optional[float] = None) -> int:

		"""Remove unsaved patterns older than ``auto_purge_age``; return the count."""

		return self.retention.purge(self.clock() if now is None else now)


	def update_config (self, partial: typing.Optional[typing.Mapping[str, typing.Any]] = None, **changes: typing.Any) -> typing.Dict[str, typing.Any]:

		"""
		Merge a partial config update; affects subsequent detection and purges only.

		Returns the applied changes.
		"""

		applied = self.config.update(partial, **changes)

		if applied:
			logger.info(f"Pattern config updated: {applied}")

		if "max_history_size" in applied:
			self.retention.enforce_history_limit()

		return applied


	# ------------------------------------------------------------------
	# Snapshots
	# ------------------------------------------------------------------

	def export_data (self) -> typing.Dict[str, typing.Any]:

		"""Return a JSON-compatible snapshot of history, patterns, config and session id."""

		return {
			"version": SNAPSHOT_VERSION,
			"exported_at": self.clock(),
			"history": self.recorder.to_list(),
			"patterns": self.repository.to_list(),
			"config": self.config.to_dict(),
			"session_id": self.sessions.current_id,
		}


	def load_data (self, data: typing.Any) -> None:

		"""
		Replace state with a snapshot, field by field, then purge.

		Missing ``history`` or ``patterns`` load as empty, a missing ``config``
		keeps the current config, and malformed entries are skipped with a
		warning.  Nothing here raises for bad input.
		"""

		if not isinstance(data, collections.abc.Mapping):
			logger.warning(f"Ignoring snapshot: expected a mapping, got {type(data).__name__}")
			return

		now = self.clock()

		self.silence_timer.cancel()

		config = data.get("config")

		if isinstance(config, collections.abc.Mapping):
			self.config.update(config)
			logger.info("Loaded pattern config")

		elif config is not None:
			logger.warning("Ignoring snapshot config: expected a mapping")

		notes = _load_items(data.get("history"), tonetrail.history.HistoryNote.from_dict, "history note")
		self.recorder.replace(notes)

		patterns = _load_items(data.get("patterns"), tonetrail.pattern.Pattern.from_dict, "pattern")
		self.repository.replace(patterns)

		logger.info(f"Loaded {len(self.recorder)} history notes and {len(self.repository)} patterns")

		session_id = data.get("session_id", data.get("currentSessionId"))

		if isinstance(session_id, str) and session_id:
			self.sessions.resume(session_id, now)

		for pattern in patterns:
			self.sessions.pattern_added(pattern.session_id, pattern.id)

		self._restore_cursor(patterns)
		self.retention.purge(now)


	def _restore_cursor (self, patterns: typing.Sequence[tonetrail.pattern.Pattern]) -> None:

		"""Treat history up to the newest note already inside a pattern as consumed."""

		self.segmenter.reset()
		self._open = None

		in_patterns = {note_id for p in patterns for note_id in p.note_ids}

		for note in reversed(self.recorder.notes):
			if note.id in in_patterns:
				self.segmenter.consume_through(note.id)
				break


	def clear_all_data (self) -> None:

		"""Drop history, patterns and sessions, and cancel the silence timer."""

		self.silence_timer.cancel()
		self.recorder.clear()
		self.repository.clear()
		self.segmenter.reset()
		self._open = None
		self.sessions.reset(self.clock())

		logger.info("All pattern data cleared")


def _load_items (raw: typing.Any, parse: typing.Callable[[typing.Any], typing.Any], label: str) -> typing.List[typing.Any]:

	"""Parse a snapshot list, skipping entries that fail to parse."""

	if raw is None:
		return []

	if not isinstance(raw, list):
		logger.warning(f"Ignoring snapshot {label}s: expected a list")
		return []

	items = []

	for i, entry in enumerate(raw):

		if not isinstance(entry, collections.abc.Mapping):
			logger.warning(f"Skipping {label} {i}: expected a mapping")
			continue

		try:
			items.append(parse(entry))
		except (KeyError, TypeError, ValueError) as e:
			logger.warning(f"Skipping malformed {label} {i}: {e!r}")

	return items
