import typing

import mido
import pytest

import tonetrail.classifier
import tonetrail.history
import tonetrail.pattern
import tonetrail.service
import tonetrail.theory


START_TIME = 1_700_000_000_000.0


class FakeClock:

	"""Millisecond clock that only moves when told to."""

	def __init__ (self, now: float = START_TIME) -> None:

		self.now = now

	def __call__ (self) -> float:

		return self.now

	def advance (self, ms: float) -> float:

		"""Move time forward and return the new time."""

		self.now += ms
		return self.now


class FakeMidiIn:

	"""Minimal MIDI input stub for tests."""

	def __init__ (self, callback: typing.Optional[typing.Callable] = None) -> None:

		"""Store the callback for injecting test messages."""

		self.callback = callback
		self.closed = False

	def close (self) -> None:

		self.closed = True

	def inject (self, message: mido.Message) -> None:

		"""Simulate receiving a MIDI message by calling the stored callback."""

		if self.callback is not None:
			self.callback(message)


def _fake_get_input_names () -> list[str]:

	"""Return a fixed list of MIDI input names for tests."""

	return ["Dummy MIDI"]


def _fake_open_input (name: str, callback: typing.Optional[typing.Callable] = None) -> FakeMidiIn:

	"""Return a fake MIDI input regardless of the name."""

	return FakeMidiIn(callback=callback)


@pytest.fixture
def patch_midi (monkeypatch: pytest.MonkeyPatch) -> None:

	"""Patch mido to use a fake MIDI input for all tests that need it."""

	monkeypatch.setattr(mido, "get_input_names", _fake_get_input_names)
	monkeypatch.setattr(mido, "open_input", _fake_open_input)


@pytest.fixture
def clock () -> FakeClock:

	return FakeClock()


@pytest.fixture
def service (clock: FakeClock) -> tonetrail.service.PatternService:

	"""A service with default config on a fake clock."""

	return tonetrail.service.PatternService(clock=clock)


def note_data (
	pitch: int = 60,
	key: str = "C",
	mode: str = "major",
	instrument: str = "piano",
	**extra: typing.Any
) -> typing.Dict[str, typing.Any]:

	"""Return ``record_note`` keyword arguments for a MIDI pitch."""

	data = tonetrail.theory.describe_pitch(pitch, key, mode)
	data["instrument"] = instrument
	data.update(extra)

	return data


def play (
	service: tonetrail.service.PatternService,
	clock: FakeClock,
	pitches: typing.Sequence[int],
	gap: float = 100.0,
	hold: typing.Optional[float] = None,
	**context: typing.Any
) -> typing.List[tonetrail.history.HistoryNote]:

	"""
	Record ``pitches`` one after another, ``gap`` ms apart (press to press).

	With ``hold`` each note is released ``hold`` ms after its press.
	"""

	notes = []

	for i, pitch in enumerate(pitches):

		if i > 0:
			clock.advance(gap)

		history_note = service.record_note(**note_data(pitch, **context))

		if hold is not None:
			service.update_note_release(history_note.id, clock() + hold)

		notes.append(history_note)

	return notes


def make_note (
	press_time: float,
	scale_degree: int = 1,
	note: typing.Optional[str] = None,
	release_time: typing.Optional[float] = None,
	key: str = "C",
	mode: str = "major",
	instrument: str = "piano",
	session_id: str = "session-1",
	note_id: typing.Optional[str] = None
) -> tonetrail.history.HistoryNote:

	"""Build a history note directly, without a recorder."""

	index = (scale_degree - 1) % 7

	history_note = tonetrail.history.HistoryNote(
		id = note_id or f"n{int(press_time)}",
		note = note or f"{tonetrail.theory.PC_TO_NOTE_NAME[tonetrail.theory.MODE_INTERVALS['major'][index]]}4",
		key = key,
		mode = mode,
		scale_degree = scale_degree,
		solfege = {"name": tonetrail.theory.SOLFEGE_NAMES[index], "degree": scale_degree},
		solfege_index = index,
		octave = 4,
		frequency = 440.0,
		instrument = instrument,
		press_time = press_time,
		session_id = session_id,
	)

	if release_time is not None:
		history_note.release(release_time)

	return history_note


def make_pattern (
	created_at: float = START_TIME,
	degrees: typing.Sequence[int] = (1, 2),
	**attributes: typing.Any
) -> tonetrail.pattern.Pattern:

	"""Build a classified pattern from close-together notes and override attributes."""

	notes = [make_note(created_at + i * 100.0, degree, note_id=f"{int(created_at)}-{i}") for i, degree in enumerate(degrees)]

	pattern = tonetrail.classifier.build_pattern(notes, created_at)

	for name, value in attributes.items():
		setattr(pattern, name, value)

	return pattern
