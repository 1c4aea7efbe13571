"""In-memory keyed store of finalized patterns with search and usage statistics.

Not-found is a normal outcome here: a pattern may have been purged between a
UI listing and a user action, so lookups return None and mutators return False
instead of raising.
"""

import dataclasses
import json
import logging
import typing

import tonetrail.history
import tonetrail.pattern


logger = logging.getLogger(__name__)


SORT_FIELDS: typing.Tuple[str, ...] = (
	"created_at",
	"last_played_at",
	"play_count",
	"note_count",
	"complexity_score",
)


@dataclasses.dataclass
class SearchOptions:

	"""
	Filters, ordering and limit for :meth:`PatternRepository.list`.

	Every filter left as None is ignored.  ``date_range`` is an inclusive
	``(start, end)`` pair over ``created_at``.  ``search_text`` matches name or
	tags case-insensitively; patterns with neither never match.  ``limit`` is
	applied after filtering and sorting; None or 0 means no limit.
	"""

	key: typing.Optional[str] = None
	mode: typing.Optional[str] = None
	instrument: typing.Optional[str] = None
	pattern_type: typing.Optional[str] = None
	is_saved: typing.Optional[bool] = None
	min_play_count: typing.Optional[int] = None
	date_range: typing.Optional[typing.Tuple[float, float]] = None
	search_text: typing.Optional[str] = None
	session_id: typing.Optional[str] = None
	sort_by: typing.Optional[str] = None
	sort_direction: str = "desc"
	limit: typing.Optional[int] = None


	def matches (self, pattern: tonetrail.pattern.Pattern) -> bool:

		"""Return True when ``pattern`` passes every filter."""

		if self.key is not None and pattern.key != self.key:
			return False

		if self.mode is not None and pattern.mode != self.mode:
			return False

		if self.instrument is not None and pattern.instrument != self.instrument:
			return False

		if self.pattern_type is not None and pattern.pattern_type != self.pattern_type:
			return False

		if self.is_saved is not None and pattern.is_saved != self.is_saved:
			return False

		if self.min_play_count is not None and pattern.play_count < self.min_play_count:
			return False

		if self.date_range is not None:
			start, end = self.date_range
			if not start <= pattern.created_at <= end:
				return False

		if self.session_id is not None and pattern.session_id != self.session_id:
			return False

		if self.search_text:
			needle = self.search_text.lower()
			in_name = pattern.name is not None and needle in pattern.name.lower()
			in_tags = any(needle in tag.lower() for tag in pattern.tags or [])
			if not (in_name or in_tags):
				return False

		return True


@dataclasses.dataclass
class StorageStats:

	"""Usage summary of the repository and history buffer."""

	total_patterns: int
	saved_patterns: int
	history_size: int
	storage_usage: int							# bytes, estimated as UTF-16 JSON
	average_pattern_length: float
	oldest_pattern: typing.Optional[float] = None
	newest_pattern: typing.Optional[float] = None
	most_played_pattern: typing.Optional[tonetrail.pattern.Pattern] = None


class PatternRepository:

	"""Owns every finalized :class:`~tonetrail.pattern.Pattern`, keyed by id."""

	def __init__ (self) -> None:

		self._patterns: typing.Dict[str, tonetrail.pattern.Pattern] = {}


	def __len__ (self) -> int:

		return len(self._patterns)


	def __contains__ (self, pattern_id: object) -> bool:

		return pattern_id in self._patterns


	def __iter__ (self) -> typing.Iterator[tonetrail.pattern.Pattern]:

		return iter(list(self._patterns.values()))


	def save (self, pattern: tonetrail.pattern.Pattern) -> None:

		"""Store ``pattern``, replacing any pattern with the same id."""

		self._patterns[pattern.id] = pattern


	def get (self, pattern_id: str) -> typing.Optional[tonetrail.pattern.Pattern]:

		return self._patterns.get(pattern_id)


	def delete (self, pattern_id: str) -> bool:

		"""Remove a pattern; return False if it did not exist."""

		if self._patterns.pop(pattern_id, None) is None:
			logger.warning(f"Pattern not found for deletion: {pattern_id}")
			return False

		logger.info(f"Pattern deleted: {pattern_id}")
		return True


	def delete_many (self, pattern_ids: typing.Iterable[str]) -> typing.Tuple[int, int]:

		"""Delete several patterns; return ``(deleted, failed)`` counts."""

		deleted = 0
		failed = 0

		for pattern_id in pattern_ids:
			if self.delete(pattern_id):
				deleted += 1
			else:
				failed += 1

		logger.info(f"Bulk delete complete: {deleted} deleted, {failed} failed")

		return deleted, failed


	def remove_where (self, predicate: typing.Callable[[tonetrail.pattern.Pattern], bool]) -> int:

		"""Remove every pattern matching ``predicate``; return how many went."""

		doomed = [pattern_id for pattern_id, pattern in self._patterns.items() if predicate(pattern)]

		for pattern_id in doomed:
			del self._patterns[pattern_id]

		return len(doomed)


	def mark_saved (
		self,
		pattern_id: str,
		now: float,
		name: typing.Optional[str] = None,
		tags: typing.Optional[typing.Sequence[str]] = None
	) -> bool:

		"""
		Save a pattern so retention never purges it.

		Also bumps ``last_played_at`` and, when given, sets the name and tags.
		Returns False when the pattern does not exist.
		"""

		pattern = self._patterns.get(pattern_id)

		if pattern is None:
			logger.warning(f"Pattern not found: {pattern_id}")
			return False

		pattern.is_saved = True
		pattern.last_played_at = now

		if name:
			pattern.name = name

		if tags:
			pattern.tags = list(tags)

		logger.info(f"Pattern saved: {pattern_id}" + (f" {name!r}" if name else ""))

		return True


	def record_play (self, pattern_id: str, now: float) -> bool:

		"""Count one playback of a pattern; return False when it does not exist."""

		pattern = self._patterns.get(pattern_id)

		if pattern is None:
			return False

		pattern.play_count += 1
		pattern.last_played_at = now

		return True


	def list (self, options: typing.Optional[SearchOptions] = None, **filters: typing.Any) -> typing.List[tonetrail.pattern.Pattern]:

		"""
		Return patterns matching ``options`` (or equivalent keyword filters).

		Without options every pattern is returned in insertion order.  Sorting
		treats a missing ``complexity_score`` as 0 and is stable.
		"""

		if options is None:
			options = SearchOptions(**filters)

		elif filters:
			options = dataclasses.replace(options, **filters)

		patterns = [p for p in self._patterns.values() if options.matches(p)]

		if options.sort_by is not None:

			if options.sort_by not in SORT_FIELDS:
				logger.warning(f"Cannot sort by {options.sort_by!r}; expected one of {SORT_FIELDS}")

			else:
				field = options.sort_by
				patterns.sort(
					key = lambda p: getattr(p, field) or 0,
					reverse = options.sort_direction != "asc"
				)

		if options.limit:
			patterns = patterns[:options.limit]

		return patterns


	def replace (self, patterns: typing.Iterable[tonetrail.pattern.Pattern]) -> None:

		"""Replace the whole store (snapshot import)."""

		self._patterns = {p.id: p for p in patterns}


	def clear (self) -> None:

		self._patterns.clear()


	def to_list (self) -> typing.List[typing.Dict[str, typing.Any]]:

		"""Serialize every pattern."""

		return [p.to_dict() for p in self._patterns.values()]


	def stats (self, history: typing.Sequence[tonetrail.history.HistoryNote]) -> StorageStats:

		"""Summarise pattern counts, timestamps and estimated storage footprint."""

		patterns = list(self._patterns.values())

		serialized = json.dumps({
			"history": [n.to_dict() for n in history],
			"patterns": [p.to_dict() for p in patterns],
		}, default=str)

		most_played: typing.Optional[tonetrail.pattern.Pattern] = None

		for pattern in patterns:
			if pattern.play_count > (most_played.play_count if most_played else 0):
				most_played = pattern

		created = [p.created_at for p in patterns]

		return StorageStats(
			total_patterns = len(patterns),
			saved_patterns = sum(1 for p in patterns if p.is_saved),
			history_size = len(history),
			storage_usage = len(serialized) * 2,
			average_pattern_length = sum(p.note_count for p in patterns) / len(patterns) if patterns else 0.0,
			oldest_pattern = min(created) if created else None,
			newest_pattern = max(created) if created else None,
			most_played_pattern = most_played,
		)
