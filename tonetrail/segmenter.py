"""Split the note history into pattern candidate groups.

A boundary falls between two consecutive notes when:

- the silence between them (``cur.press_time`` minus ``prev`` release, or
  ``prev`` press while it is still held) exceeds ``silence_threshold``;
- key, mode or instrument changed and ``detect_on_context_change`` is set;
- the current group already holds ``max_pattern_length`` notes.

The final in-progress group is emitted too, so the phrase being played is
visible without waiting for the next boundary.

:func:`split_into_groups` and :func:`segment` are pure.  :class:`Segmenter`
adds a cursor so that repeated runs over a growing history only look at notes
that have not yet been consumed by a closed group.
"""

import dataclasses
import logging
import typing

import tonetrail.config
import tonetrail.history


logger = logging.getLogger(__name__)


Group = typing.List[tonetrail.history.HistoryNote]


def gap_between (prev: tonetrail.history.HistoryNote, cur: tonetrail.history.HistoryNote) -> float:

	"""Return the silence in milliseconds between ``prev`` ending and ``cur`` starting."""

	return cur.press_time - prev.end_time


def context_changed (prev: tonetrail.history.HistoryNote, cur: tonetrail.history.HistoryNote) -> bool:

	"""Return True when key, mode or instrument differ between two notes."""

	return prev.key != cur.key or prev.mode != cur.mode or prev.instrument != cur.instrument


def boundary_reason (
	prev: tonetrail.history.HistoryNote,
	cur: tonetrail.history.HistoryNote,
	config: tonetrail.config.PatternDetectionConfig,
	group_length: int = 0
) -> typing.Optional[str]:

	"""
	Return why a boundary falls between ``prev`` and ``cur``, or None.

	``group_length`` is the size of the group ``prev`` belongs to and only
	matters for the maximum-length split.
	"""

	if gap_between(prev, cur) > config.silence_threshold:
		return "silence"

	if config.detect_on_context_change and context_changed(prev, cur):
		return "context change"

	if 0 < config.max_pattern_length <= group_length:
		return "max length"

	return None


def split_into_groups (
	notes: typing.Sequence[tonetrail.history.HistoryNote],
	config: tonetrail.config.PatternDetectionConfig
) -> typing.List[Group]:

	"""Partition ``notes`` into contiguous groups, including groups below the minimum length."""

	groups: typing.List[Group] = []
	current: Group = []

	for note in notes:

		if current:

			reason = boundary_reason(current[-1], note, config, len(current))

			if reason is not None:
				logger.debug(f"Pattern boundary: {reason} ({gap_between(current[-1], note):.0f}ms gap)")
				groups.append(current)
				current = []

		current.append(note)

	if current:
		groups.append(current)

	return groups


def segment (
	notes: typing.Sequence[tonetrail.history.HistoryNote],
	config: tonetrail.config.PatternDetectionConfig
) -> typing.List[Group]:

	"""Return the groups of ``notes`` that meet ``min_pattern_length``."""

	return [g for g in split_into_groups(notes, config) if len(g) >= config.min_pattern_length]


@dataclasses.dataclass
class SegmentationResult:

	"""
	Groups found among the pending notes.

	Attributes:
		closed: Groups followed by a boundary, already filtered by minimum length.
		open_group: The trailing group, when it meets the minimum length.
	"""

	closed: typing.List[Group] = dataclasses.field(default_factory=list)
	open_group: typing.Optional[Group] = None

	@property
	def groups (self) -> typing.List[Group]:

		"""Return every emitted group, the open one last."""

		if self.open_group is None:
			return list(self.closed)

		return self.closed + [self.open_group]


class Segmenter:

	"""
	Stateful wrapper over :func:`split_into_groups` that remembers consumed notes.

	The cursor is the id of the last note of the last closed group.  History is
	trimmed only from the front, so a cursor note that has scrolled out of the
	buffer means every retained note is still pending.
	"""

	def __init__ (self, config: tonetrail.config.PatternDetectionConfig) -> None:

		self.config = config
		self.cursor: typing.Optional[str] = None


	def pending (self, history: typing.Sequence[tonetrail.history.HistoryNote]) -> typing.List[tonetrail.history.HistoryNote]:

		"""Return the notes after the cursor."""

		if self.cursor is None:
			return list(history)

		for i, note in enumerate(history):
			if note.id == self.cursor:
				return list(history[i + 1:])

		return list(history)


	def run (self, history: typing.Sequence[tonetrail.history.HistoryNote]) -> SegmentationResult:

		"""Segment the pending notes and advance the cursor past every closed group."""

		pending = self.pending(history)

		if not pending:
			return SegmentationResult()

		groups = split_into_groups(pending, self.config)
		minimum = self.config.min_pattern_length

		closed = groups[:-1]
		trailing = groups[-1]

		if closed:
			self.cursor = closed[-1][-1].id

		return SegmentationResult(
			closed = [g for g in closed if len(g) >= minimum],
			open_group = trailing if len(trailing) >= minimum else None,
		)


	def consume_all (self, history: typing.Sequence[tonetrail.history.HistoryNote]) -> None:

		"""Mark every note in ``history`` as consumed, closing the trailing group."""

		if history:
			self.cursor = history[-1].id


	def consume_through (self, note_id: str) -> None:

		"""Move the cursor to ``note_id``."""

		self.cursor = note_id


	def reset (self) -> None:

		self.cursor = None
