import pytest

import tonetrail.config
import tonetrail.history

import conftest


def _record (recorder: tonetrail.history.HistoryRecorder, press_time: float, pitch: int = 60, **extra) -> tonetrail.history.HistoryNote:

	return recorder.record(session_id="s1", press_time=press_time, **conftest.note_data(pitch, **extra))


@pytest.fixture
def recorder () -> tonetrail.history.HistoryRecorder:

	return tonetrail.history.HistoryRecorder(tonetrail.config.PatternDetectionConfig())


def test_generate_id_format () -> None:

	"""Ids are the millisecond timestamp plus a random suffix."""

	first = tonetrail.history.generate_id(1234.9)
	second = tonetrail.history.generate_id(1234.9)

	assert first.startswith("1234_")
	assert len(first.split("_")[1]) == 9
	assert first != second


def test_record_appends_with_context (recorder: tonetrail.history.HistoryRecorder) -> None:

	history_note = _record(recorder, 1000.0, 64, velocity=0.5)

	assert len(recorder) == 1
	assert recorder.notes[0] is history_note
	assert history_note.note == "E4"
	assert history_note.scale_degree == 3
	assert history_note.session_id == "s1"
	assert history_note.press_time == 1000.0
	assert history_note.velocity == 0.5
	assert history_note.release_time is None
	assert history_note.duration is None


def test_history_is_bounded () -> None:

	"""The buffer never exceeds max_history_size; the oldest notes go first."""

	config = tonetrail.config.PatternDetectionConfig(max_history_size=3)
	recorder = tonetrail.history.HistoryRecorder(config)

	for i in range(5):
		_record(recorder, 1000.0 * i)

	assert len(recorder) == 3
	assert [n.press_time for n in recorder] == [2000.0, 3000.0, 4000.0]


def test_release_by_primary_id (recorder: tonetrail.history.HistoryRecorder) -> None:

	history_note = _record(recorder, 1000.0)

	released = recorder.update_release(history_note.id, 1250.0)

	assert released is history_note
	assert history_note.release_time == 1250.0
	assert history_note.duration == 250.0


def test_release_by_audio_note_id_prefers_newest_unreleased (recorder: tonetrail.history.HistoryRecorder) -> None:

	"""A reused audio id releases its most recent press, then the older one."""

	older = _record(recorder, 1000.0, audio_note_id="0:60")
	newer = _record(recorder, 2000.0, audio_note_id="0:60")

	recorder.update_release("0:60", 2100.0)

	assert newer.release_time == 2100.0
	assert older.release_time is None

	recorder.update_release("0:60", 2200.0)

	assert older.release_time == 2200.0
	assert older.duration == 1200.0


def test_second_release_is_ignored (recorder: tonetrail.history.HistoryRecorder) -> None:

	history_note = _record(recorder, 1000.0)

	recorder.update_release(history_note.id, 1100.0)

	assert recorder.update_release(history_note.id, 1900.0) is None
	assert history_note.release_time == 1100.0
	assert history_note.duration == 100.0


def test_unknown_release_is_ignored (recorder: tonetrail.history.HistoryRecorder) -> None:

	_record(recorder, 1000.0)

	assert recorder.update_release("nope", 1100.0) is None
	assert recorder.notes[0].release_time is None


def test_end_time_falls_back_to_press () -> None:

	history_note = conftest.make_note(500.0)

	assert history_note.end_time == 500.0

	history_note.release(800.0)

	assert history_note.end_time == 800.0


def test_from_dict_ignores_duration_without_release () -> None:

	"""A duration is only restored together with its release time."""

	data = conftest.make_note(500.0).to_dict()
	data["duration"] = 300.0

	history_note = tonetrail.history.HistoryNote.from_dict(data)

	assert history_note.duration is None
	assert history_note.release_time is None


def test_from_dict_missing_field_raises () -> None:

	data = conftest.make_note(500.0).to_dict()
	del data["press_time"]

	with pytest.raises(KeyError):
		tonetrail.history.HistoryNote.from_dict(data)


def test_from_dict_rejects_non_mapping () -> None:

	with pytest.raises(TypeError):
		tonetrail.history.HistoryNote.from_dict("junk")


def test_replace_sorts_by_press_time (recorder: tonetrail.history.HistoryRecorder) -> None:

	recorder.replace([conftest.make_note(300.0), conftest.make_note(100.0), conftest.make_note(200.0)])

	assert [n.press_time for n in recorder] == [100.0, 200.0, 300.0]
	assert recorder.index_of("n200") == 1
	assert recorder.index_of("missing") is None


def test_copy_does_not_share_solfege () -> None:

	history_note = conftest.make_note(100.0)
	copied = history_note.copy()

	copied.solfege["name"] = "changed"

	assert history_note.solfege["name"] == "Do"
