"""Debounced silence detection on the asyncio event loop.

Each :meth:`SilenceTimer.arm` cancels the pending fire and schedules a new one,
so the callback runs once after a stretch of inactivity rather than once per
note.  Without a running event loop (plain synchronous use, tests) nothing is
scheduled and the host is expected to trigger detection itself.
"""

import asyncio
import logging
import typing


logger = logging.getLogger(__name__)


class SilenceTimer:

	"""A last-activity timestamp paired with one cancellable timer handle."""

	def __init__ (
		self,
		callback: typing.Callable[[], typing.Any],
		loop: typing.Optional[asyncio.AbstractEventLoop] = None
	) -> None:

		"""
		Parameters:
			callback: Called on the loop thread once the silence has elapsed.
			loop: Loop to schedule on.  Defaults to the loop running when
				:meth:`arm` is called.
		"""

		self.callback = callback
		self.loop = loop
		self.last_activity: typing.Optional[float] = None
		self._handle: typing.Optional[asyncio.TimerHandle] = None


	@property
	def armed (self) -> bool:

		"""Return True while a fire is pending."""

		return self._handle is not None and not self._handle.cancelled()


	def _resolve_loop (self) -> typing.Optional[asyncio.AbstractEventLoop]:

		if self.loop is not None and not self.loop.is_closed():
			return self.loop

		try:
			return asyncio.get_running_loop()
		except RuntimeError:
			return None


	def arm (self, delay_ms: float, now: float) -> bool:

		"""
		Record activity at ``now`` and (re)schedule the callback ``delay_ms`` later.

		Returns False when no event loop is available to schedule on.
		"""

		self.last_activity = now
		self.cancel()

		loop = self._resolve_loop()

		if loop is None:
			logger.debug("No running event loop - silence detection must be triggered manually")
			return False

		self._handle = loop.call_later(max(0.0, delay_ms) / 1000.0, self._fire)

		return True


	def cancel (self) -> None:

		"""Cancel any pending fire."""

		if self._handle is not None:
			self._handle.cancel()
			self._handle = None


	def _fire (self) -> None:

		self._handle = None
		logger.debug("Silence detected")
		self.callback()
