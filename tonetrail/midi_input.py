"""Feed a MIDI keyboard into the pattern service.

:class:`MidiNoteRecorder` opens a ``mido`` input port and turns note messages
into :meth:`record_note` / :meth:`update_note_release` calls, adding musical
context from :func:`tonetrail.theory.describe_pitch`.  Presses and releases are
correlated with an ``audio_note_id`` of ``"<channel>:<note>"``.

``mido`` delivers messages on its own callback thread.  When an event loop is
available they are handed to it with ``call_soon_threadsafe`` so the service is
only ever touched from the loop thread.
"""

import asyncio
import logging
import typing

import mido

import tonetrail.theory


logger = logging.getLogger(__name__)


@typing.runtime_checkable
class NoteSink (typing.Protocol):

	"""
	Anything that accepts note events: a service or a store.
	"""

	def record_note (self, **note_data: typing.Any) -> typing.Any:
		...

	def update_note_release (self, note_id: str, release_time: typing.Optional[float] = None) -> typing.Any:
		...

	def start_new_session (
		self,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> str:
		...


def select_input_device (device_name: typing.Optional[str] = None, callback: typing.Optional[typing.Callable] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:

	"""
	Select and open a MIDI input device.

	When ``device_name`` is None the only available input is used, or the first
	one when several exist.  A requested name that is not found falls back to
	the first available input with a warning.

	Returns:
		A tuple of (device_name, midi_in_object) or (None, None) on failure.
	"""

	try:
		inputs = mido.get_input_names()
		logger.info(f"Available MIDI inputs: {inputs}")

		if not inputs:
			logger.error("No MIDI input devices found.")
			return None, None

		target = device_name if device_name is not None else inputs[0]

		if target not in inputs:
			logger.warning(f"MIDI input device '{target}' not found.")
			target = inputs[0]
			logger.warning(f"Fallback to: {target}")

		midi_in = mido.open_input(target, callback=callback)
		logger.info(f"Opened MIDI input: {target}")
		return target, midi_in

	except Exception as e:
		logger.error(f"Failed to open MIDI input: {e}")
		return None, None


def audio_note_id (channel: int, note: int) -> str:

	"""Return the id that pairs a note-on with its note-off."""

	return f"{channel}:{note}"


class MidiNoteRecorder:

	"""Bridges a ``mido`` input port to a :class:`NoteSink`."""

	def __init__ (
		self,
		sink: NoteSink,
		input_device_name: typing.Optional[str] = None,
		key: str = "C",
		mode: str = "major",
		instrument: str = "piano",
		loop: typing.Optional[asyncio.AbstractEventLoop] = None
	) -> None:

		"""
		Parameters:
			sink: Receives note events (usually a ``PatternStore``).
			input_device_name: MIDI input to open; defaults to the first one found.
			key: Key used for scale degrees, e.g. ``"C"`` or ``"F#"``.
			mode: Mode used for scale degrees (``"major"``, ``"minor"``, ``"dorian"``...).
			instrument: Instrument identifier stamped on every note.
			loop: Loop to marshal messages onto.  Defaults to the loop running
				when :meth:`open` is called.

		Raises:
			ValueError: For an unknown key or mode.
		"""

		tonetrail.theory.scale_pitch_classes(tonetrail.theory.key_name_to_pc(key), mode)

		self.sink = sink
		self.input_device_name = input_device_name
		self.key = key
		self.mode = mode
		self.instrument = instrument
		self.loop = loop
		self.midi_in: typing.Any = None


	@property
	def is_open (self) -> bool:

		return self.midi_in is not None


	def open (self) -> bool:

		"""Open the input port; returns False (logged) when no device could be opened."""

		if self.midi_in is not None:
			return True

		if self.loop is None:
			try:
				self.loop = asyncio.get_running_loop()
			except RuntimeError:
				logger.debug("No running event loop - MIDI messages will be handled on the mido thread")

		device_name, midi_in = select_input_device(self.input_device_name, self._on_midi_input)

		if device_name is None:
			return False

		self.input_device_name = device_name
		self.midi_in = midi_in

		return True


	def close (self) -> None:

		if self.midi_in is not None:
			self.midi_in.close()
			self.midi_in = None


	def _on_midi_input (self, message: typing.Any) -> None:

		"""Handle a message on mido's callback thread."""

		if self.loop is not None and not self.loop.is_closed():
			self.loop.call_soon_threadsafe(self.handle_message, message)
			return

		self.handle_message(message)


	def handle_message (self, message: typing.Any) -> None:

		"""Translate one MIDI message into note events."""

		if message.type == "note_on" and message.velocity > 0:

			context = tonetrail.theory.describe_pitch(message.note, self.key, self.mode)

			self.sink.record_note(
				instrument = self.instrument,
				velocity = message.velocity / 127.0,
				audio_note_id = audio_note_id(message.channel, message.note),
				**context
			)

		elif message.type == "note_off" or message.type == "note_on":
			self.sink.update_note_release(audio_note_id(message.channel, message.note))

		elif message.type == "program_change":
			self.set_context(instrument=f"program_{message.program}")


	def set_context (
		self,
		key: typing.Optional[str] = None,
		mode: typing.Optional[str] = None,
		instrument: typing.Optional[str] = None
	) -> typing.Optional[str]:

		"""
		Change the musical context; starts a new session when anything changed.

		Returns the new session id, or None when the context is unchanged.
		"""

		new_key = key if key is not None else self.key
		new_mode = mode if mode is not None else self.mode
		new_instrument = instrument if instrument is not None else self.instrument

		if (new_key, new_mode, new_instrument) == (self.key, self.mode, self.instrument):
			return None

		tonetrail.theory.scale_pitch_classes(tonetrail.theory.key_name_to_pc(new_key), new_mode)

		logger.info(f"Musical context changed to {new_key} {new_mode} with {new_instrument}")

		self.key = new_key
		self.mode = new_mode
		self.instrument = new_instrument

		return self.sink.start_new_session(new_key, new_mode, new_instrument)
