"""Reactive, persistence-aware wrapper around :class:`~tonetrail.service.PatternService`.

:class:`PatternStore` adds what a user interface needs on top of the service
without reimplementing any detection logic:

- a documented one-time :meth:`PatternStore.initialize` step,
- change notifications through an :class:`~tonetrail.event_emitter.EventEmitter`,
- JSON snapshot files,
- ready-made views (saved, recent, by key, by instrument) and insights.

Events (listeners receive the arguments shown):

- ``note_recorded(note)``, ``note_released(note)``
- ``patterns_detected(patterns)``: new or refreshed patterns, from any trigger
- ``pattern_saved(pattern)``, ``pattern_played(pattern)``, ``pattern_deleted(pattern_id)``
- ``patterns_purged(count)``, ``session_started(session_id)``
- ``config_updated(changes)``, ``data_imported()``, ``data_cleared()``

Unsaved patterns expire after ``auto_purge_age``; saved patterns are kept
until deleted.  Both expiry and history trimming are permanent.
"""

import dataclasses
import json
import logging
import pathlib
import typing

import tonetrail.config
import tonetrail.event_emitter
import tonetrail.history
import tonetrail.pattern
import tonetrail.repository
import tonetrail.service


logger = logging.getLogger(__name__)


RECENT_WINDOW_MS: float = 24 * 60 * 60 * 1000.0


class StoreNotInitializedError (RuntimeError):

	"""Raised when a :class:`PatternStore` is used before :meth:`PatternStore.initialize`."""


@dataclasses.dataclass
class PatternInsights:

	"""Aggregate observations about the pattern corpus."""

	total_sessions: int
	average_patterns_per_session: float
	most_active_key: str
	most_used_instrument: str
	longest_pattern: typing.Optional[tonetrail.pattern.Pattern] = None
	most_complex_pattern: typing.Optional[tonetrail.pattern.Pattern] = None


class PatternStore:

	"""UI-facing adapter: initialization, events, snapshots and derived views."""

	def __init__ (
		self,
		service: typing.Optional[tonetrail.service.PatternService] = None,
		config: typing.Optional[typing.Mapping[str, typing.Any]] = None,
		snapshot_path: typing.Union[str, pathlib.Path, None] = None
	) -> None:

		"""
		Parameters:
			service: The service to wrap.  A new one is created when omitted.
			config: Partial config merged into the service on :meth:`initialize`.
			snapshot_path: JSON file used by :meth:`persist` and :meth:`restore`.
		"""

		self.service = service or tonetrail.service.PatternService()
		self.events = tonetrail.event_emitter.EventEmitter()
		self.snapshot_path = pathlib.Path(snapshot_path) if snapshot_path is not None else None
		self.initialized = False
		self.session_start_time: typing.Optional[float] = None
		self.last_pattern_detection: float = 0.0

		self._pending_config: typing.Dict[str, typing.Any] = dict(config or {})
		self._downstream_listener = self.service.on_patterns_detected
		self.service.on_patterns_detected = self._on_patterns_detected


	def initialize (
		self,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> None:

		"""
		Prepare the store for use; must be called once before anything else.

		Applies the store config, restores the snapshot file when configured,
		purges expired patterns and opens a fresh session with the given
		musical context.  Repeated calls do nothing.
		"""

		if self.initialized:
			return

		if self._pending_config:
			self.service.update_config(self._pending_config)

		if self.snapshot_path is not None:
			self._restore()

		purged = self.service.purge_old_patterns()

		if purged > 0:
			logger.info(f"Auto-purged {purged} old patterns on initialization")

		self.service.start_new_session(key, mode, instrument)
		self.session_start_time = self.service.clock()
		self.initialized = True

		logger.info("Pattern store initialized")


	def _require_initialized (self) -> None:

		if not self.initialized:
			raise StoreNotInitializedError("PatternStore.initialize() must be called before use")


	def _on_patterns_detected (self, patterns: typing.List[tonetrail.pattern.Pattern]) -> None:

		self.last_pattern_detection = self.service.clock()

		if self._downstream_listener is not None:
			self._downstream_listener(patterns)

		self.events.emit("patterns_detected", patterns)


	# ------------------------------------------------------------------
	# Actions
	# ------------------------------------------------------------------

	def record_note (self, **note_data: typing.Any) -> tonetrail.history.HistoryNote:

		"""Record a note press (see :meth:`PatternService.record_note`)."""

		self._require_initialized()

		history_note = self.service.record_note(**note_data)
		self.events.emit("note_recorded", history_note)

		return history_note


	def update_note_release (self, note_id: str, release_time: typing.Optional[float] = None) -> typing.Optional[tonetrail.history.HistoryNote]:

		self._require_initialized()

		history_note = self.service.update_note_release(note_id, release_time)

		if history_note is not None:
			self.events.emit("note_released", history_note)

		return history_note


	def detect_patterns (self) -> typing.List[tonetrail.pattern.Pattern]:

		"""Run detection now; listeners hear about results through ``patterns_detected``."""

		self._require_initialized()

		return self.service.detect_patterns()


	def save_pattern (self, pattern_id: str, name: typing.Optional[str] = None, tags: typing.Optional[typing.Sequence[str]] = None) -> bool:

		self._require_initialized()

		if not self.service.save_pattern(pattern_id, name, tags):
			return False

		self.events.emit("pattern_saved", self.service.get_pattern(pattern_id))

		return True


	def record_play (self, pattern_id: str) -> bool:

		self._require_initialized()

		if not self.service.record_play(pattern_id):
			return False

		self.events.emit("pattern_played", self.service.get_pattern(pattern_id))

		return True


	def delete_pattern (self, pattern_id: str) -> bool:

		self._require_initialized()

		if not self.service.delete_pattern(pattern_id):
			return False

		self.events.emit("pattern_deleted", pattern_id)

		return True


	def delete_patterns (self, pattern_ids: typing.Iterable[str]) -> typing.Tuple[int, int]:

		"""Delete several patterns; return ``(deleted, failed)``."""

		deleted = 0
		failed = 0

		for pattern_id in pattern_ids:
			if self.delete_pattern(pattern_id):
				deleted += 1
			else:
				failed += 1

		return deleted, failed


	def purge_old_patterns (self) -> int:

		self._require_initialized()

		purged = self.service.purge_old_patterns()

		if purged:
			self.events.emit("patterns_purged", purged)

		return purged


	def start_new_session (
		self,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> str:

		self._require_initialized()

		session_id = self.service.start_new_session(key, mode, instrument)
		self.session_start_time = self.service.clock()
		self.events.emit("session_started", session_id)

		return session_id


	def update_config (self, partial: typing.Optional[typing.Mapping[str, typing.Any]] = None, **changes: typing.Any) -> typing.Dict[str, typing.Any]:

		self._require_initialized()

		applied = self.service.update_config(partial, **changes)

		if applied:
			self.events.emit("config_updated", applied)

		return applied


	def clear_all_data (self) -> None:

		self._require_initialized()

		self.service.clear_all_data()
		self.session_start_time = self.service.clock()
		self.last_pattern_detection = 0.0
		self.events.emit("data_cleared")


	# ------------------------------------------------------------------
	# Queries
	# ------------------------------------------------------------------

	@property
	def config (self) -> tonetrail.config.PatternDetectionConfig:

		return self.service.config


	@property
	def history_size (self) -> int:

		return len(self.service.recorder)


	def get_pattern (self, pattern_id: str) -> typing.Optional[tonetrail.pattern.Pattern]:

		self._require_initialized()

		return self.service.get_pattern(pattern_id)


	def search_patterns (self, options: typing.Optional[tonetrail.repository.SearchOptions] = None, **filters: typing.Any) -> typing.List[tonetrail.pattern.Pattern]:

		self._require_initialized()

		return self.service.get_patterns(options, **filters)


	def storage_stats (self) -> tonetrail.repository.StorageStats:

		self._require_initialized()

		return self.service.get_storage_stats()


	def saved_patterns (self) -> typing.List[tonetrail.pattern.Pattern]:

		"""Saved patterns, most recently played first."""

		return self.search_patterns(is_saved=True, sort_by="last_played_at", sort_direction="desc")


	def recent_patterns (self, limit: int = 10) -> typing.List[tonetrail.pattern.Pattern]:

		"""Patterns created in the last 24 hours, newest first."""

		now = self.service.clock()

		return self.search_patterns(
			date_range = (now - RECENT_WINDOW_MS, now),
			sort_by = "created_at",
			sort_direction = "desc",
			limit = limit,
		)


	def patterns_for_key (self, key: str, mode: str) -> typing.List[tonetrail.pattern.Pattern]:

		return self.search_patterns(key=key, mode=mode, sort_by="last_played_at", sort_direction="desc")


	def patterns_for_instrument (self, instrument: str) -> typing.List[tonetrail.pattern.Pattern]:

		return self.search_patterns(instrument=instrument, sort_by="last_played_at", sort_direction="desc")


	def patterns_by_key (self) -> typing.Dict[str, typing.List[tonetrail.pattern.Pattern]]:

		"""Group every pattern under ``"<key> <mode>"``."""

		grouped: typing.Dict[str, typing.List[tonetrail.pattern.Pattern]] = {}

		for pattern in self.search_patterns():
			grouped.setdefault(f"{pattern.key} {pattern.mode}", []).append(pattern)

		return grouped


	def patterns_by_instrument (self) -> typing.Dict[str, typing.List[tonetrail.pattern.Pattern]]:

		grouped: typing.Dict[str, typing.List[tonetrail.pattern.Pattern]] = {}

		for pattern in self.search_patterns():
			grouped.setdefault(pattern.instrument, []).append(pattern)

		return grouped


	def insights (self) -> PatternInsights:

		"""
		Summarise the corpus.

		Sessions are counted from the session ids present in history.  Ties for
		most active key or instrument go to the one seen first.
		"""

		patterns = self.search_patterns()
		total_sessions = len({n.session_id for n in self.service.history})

		by_key = self.patterns_by_key()
		by_instrument = self.patterns_by_instrument()

		def largest (grouped: typing.Dict[str, typing.List[tonetrail.pattern.Pattern]]) -> str:
			if not grouped:
				return "Unknown"
			return max(grouped, key=lambda name: len(grouped[name]))

		longest: typing.Optional[tonetrail.pattern.Pattern] = None
		most_complex: typing.Optional[tonetrail.pattern.Pattern] = None

		for pattern in patterns:

			if pattern.note_count > (longest.note_count if longest else 0):
				longest = pattern

			if (pattern.complexity_score or 0.0) > ((most_complex.complexity_score or 0.0) if most_complex else 0.0):
				most_complex = pattern

		return PatternInsights(
			total_sessions = total_sessions,
			average_patterns_per_session = len(patterns) / total_sessions if total_sessions else 0.0,
			most_active_key = largest(by_key),
			most_used_instrument = largest(by_instrument),
			longest_pattern = longest,
			most_complex_pattern = most_complex,
		)


	# ------------------------------------------------------------------
	# Snapshots
	# ------------------------------------------------------------------

	def export_data (self) -> typing.Dict[str, typing.Any]:

		self._require_initialized()

		return self.service.export_data()


	def import_data (self, data: typing.Any) -> None:

		"""Load a snapshot (field by field, purging afterwards)."""

		self._require_initialized()

		self.service.load_data(data)
		self.events.emit("data_imported")


	def persist (self) -> bool:

		"""
		Write the current snapshot to ``snapshot_path``.

		Returns False when no path is configured or the write fails (logged).
		"""

		self._require_initialized()

		if self.snapshot_path is None:
			return False

		data = self.service.export_data()

		try:
			self.snapshot_path.parent.mkdir(parents=True, exist_ok=True)

			with open(self.snapshot_path, "w") as f:
				json.dump(data, f, default=str)

		except OSError as e:
			logger.error(f"Failed to persist pattern data to {self.snapshot_path}: {e}")
			return False

		logger.debug(f"Persisted {len(data['patterns'])} patterns to {self.snapshot_path}")

		return True


	def restore (self) -> bool:

		"""
		Load the snapshot at ``snapshot_path``.

		A missing file is not an error.  Returns True when a snapshot was loaded.
		"""

		self._require_initialized()

		loaded = self._restore()

		if loaded:
			self.events.emit("data_imported")

		return loaded


	def _restore (self) -> bool:

		if self.snapshot_path is None or not self.snapshot_path.exists():
			return False

		try:
			with open(self.snapshot_path) as f:
				data = json.load(f)

		except (OSError, ValueError) as e:
			logger.error(f"Failed to read pattern snapshot {self.snapshot_path}: {e}")
			return False

		self.service.load_data(data)

		logger.info(f"Restored pattern data from {self.snapshot_path}")

		return True
