"""Retention policy: purge stale unsaved patterns and bound the history buffer.

Both operations are permanent.  Unsaved patterns expire after
``auto_purge_age``; saved patterns only leave through explicit deletion.
History notes beyond ``max_history_size`` are dropped oldest first, whether or
not they were ever segmented.
"""

import asyncio
import logging
import typing

import tonetrail.config
import tonetrail.history
import tonetrail.repository


logger = logging.getLogger(__name__)


class RetentionManager:

	"""Applies the purge and history-cap rules of a :class:`~tonetrail.config.PatternDetectionConfig`."""

	def __init__ (
		self,
		config: tonetrail.config.PatternDetectionConfig,
		repository: tonetrail.repository.PatternRepository,
		recorder: tonetrail.history.HistoryRecorder
	) -> None:

		self.config = config
		self.repository = repository
		self.recorder = recorder


	def is_expired (self, created_at: float, now: float) -> bool:

		"""Return True when something created at ``created_at`` is past the purge age."""

		return now - created_at > self.config.auto_purge_age


	def purge (self, now: float) -> int:

		"""Remove unsaved patterns older than ``auto_purge_age``; return how many went."""

		purged = self.repository.remove_where(
			lambda p: not p.is_saved and self.is_expired(p.created_at, now)
		)

		if purged > 0:
			logger.info(f"Purged {purged} old patterns (older than {self.config.auto_purge_age / (60 * 60 * 1000):.1f} hours)")

		return purged


	def enforce_history_limit (self) -> int:

		"""Trim the history buffer to ``max_history_size``; return how many notes went."""

		trimmed = self.recorder.trim(self.config.max_history_size)

		if trimmed > 0:
			logger.info(f"Trimmed {trimmed} old history notes (max: {self.config.max_history_size})")

		return trimmed


	async def run_periodic (self, interval_seconds: float, clock: typing.Callable[[], float]) -> None:

		"""
		Purge every ``interval_seconds`` until cancelled.

		Intended to run as an asyncio task owned by the host.
		"""

		if interval_seconds <= 0:
			raise ValueError("Purge interval must be positive")

		while True:
			await asyncio.sleep(interval_seconds)
			self.purge(clock())
			self.enforce_history_limit()
