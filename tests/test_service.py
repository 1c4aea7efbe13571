import pytest

import tonetrail.pattern
import tonetrail.repository
import tonetrail.service

import conftest


C4, D4, E4, F4, G4 = 60, 62, 64, 65, 67


def _service (clock: conftest.FakeClock, **config) -> tonetrail.service.PatternService:

	return tonetrail.service.PatternService(config=config, clock=clock)


# --- Everyday use ---


def test_three_quick_notes_make_one_chord (clock: conftest.FakeClock) -> None:

	"""Three notes 100 ms apart form a single chord pattern."""

	service = _service(clock, min_pattern_length=3)

	conftest.play(service, clock, [C4, E4, C4], gap=100)

	patterns = service.detect_patterns()

	assert len(patterns) == 1
	assert patterns[0].note_count == 3
	assert patterns[0].pattern_type == tonetrail.pattern.PATTERN_CHORD


def test_long_silence_leaves_two_short_groups (clock: conftest.FakeClock) -> None:

	"""Two notes 5 s apart are split and both fall below the minimum length."""

	service = _service(clock, min_pattern_length=2)

	conftest.play(service, clock, [C4, D4], gap=5000)

	assert service.detect_patterns() == []
	assert service.get_patterns() == []


def test_rising_degrees_make_a_scale (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4, E4, F4, G4], gap=400)

	(pattern,) = service.detect_patterns()

	assert pattern.pattern_type == tonetrail.pattern.PATTERN_SCALE
	assert [n.scale_degree for n in pattern.notes] == [1, 2, 3, 4, 5]


def test_saved_pattern_survives_purge_until_deleted (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	(pattern,) = service.detect_patterns()

	assert service.save_pattern(pattern.id) is True

	clock.advance(service.config.auto_purge_age + 1)

	assert service.purge_old_patterns() == 0
	assert service.get_pattern(pattern.id) is pattern

	assert service.delete_pattern(pattern.id) is True
	assert service.get_pattern(pattern.id) is None


def test_snapshot_without_patterns_loads_empty (service: tonetrail.service.PatternService) -> None:

	service.load_data({"history": [], "config": {"silence_threshold": 2000}})

	assert service.get_patterns() == []
	assert service.config.silence_threshold == 2000.0


# --- Detection ---


def test_detection_does_not_duplicate (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	"""Running detection again over the same history creates nothing new."""

	conftest.play(service, clock, [C4, D4])

	first = service.detect_patterns()

	assert len(first) == 1
	assert service.detect_patterns() == []
	assert len(service.get_patterns()) == 1


def test_trailing_pattern_grows_in_place (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	"""The phrase being played keeps its pattern id as notes are added."""

	conftest.play(service, clock, [C4, D4])
	(provisional,) = service.detect_patterns()

	clock.advance(100)
	service.record_note(**conftest.note_data(E4))

	(refreshed,) = service.detect_patterns()

	assert refreshed.id == provisional.id
	assert refreshed.note_count == 3
	assert refreshed.created_at == provisional.created_at
	assert len(service.get_patterns()) == 1


def test_refresh_keeps_user_changes (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	(pattern,) = service.detect_patterns()

	service.save_pattern(pattern.id, name="Intro", tags=["warmup"])
	service.record_play(pattern.id)

	clock.advance(100)
	service.record_note(**conftest.note_data(E4))
	service.detect_patterns()

	refreshed = service.get_pattern(pattern.id)

	assert refreshed.note_count == 3
	assert refreshed.is_saved is True
	assert refreshed.name == "Intro"
	assert refreshed.tags == ["warmup"]
	assert refreshed.play_count == 1


def test_silence_closes_the_trailing_pattern (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4, E4])
	(first,) = service.detect_patterns()

	clock.advance(5000)
	conftest.play(service, clock, [G4, C4])

	(second,) = service.detect_patterns()

	assert second.id != first.id
	assert service.get_pattern(first.id).note_count == 3
	assert second.note_count == 2
	assert not set(first.note_ids) & set(second.note_ids)


def test_deleted_trailing_pattern_is_not_recreated (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	(pattern,) = service.detect_patterns()

	service.delete_pattern(pattern.id)

	clock.advance(100)
	service.record_note(**conftest.note_data(E4))

	assert service.detect_patterns() == []
	assert service.get_patterns() == []


def test_context_change_splits_patterns (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	clock.advance(100)
	conftest.play(service, clock, [C4, D4], instrument="guitar")

	patterns = service.detect_patterns()

	assert [p.instrument for p in patterns] == ["piano", "guitar"]


def test_max_pattern_length_splits (clock: conftest.FakeClock) -> None:

	service = _service(clock, max_pattern_length=3)

	conftest.play(service, clock, [C4, D4, E4, F4, G4, C4])

	assert [p.note_count for p in service.detect_patterns()] == [3, 3]


def test_new_session_closes_the_trailing_pattern (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	"""Notes after a session change never join a pattern from the previous session."""

	conftest.play(service, clock, [C4, D4])
	old_session = service.session_id

	new_session = service.start_new_session("C", "major", "piano")

	(first,) = service.get_patterns()

	clock.advance(100)
	conftest.play(service, clock, [E4, F4])

	(second,) = service.detect_patterns()

	assert new_session != old_session
	assert first.session_id == old_session
	assert second.session_id == new_session
	assert first.note_count == 2
	assert len(service.get_patterns()) == 2


def test_trimmed_trailing_pattern_is_finalized (clock: conftest.FakeClock) -> None:

	"""When history trimming eats the start of the open phrase, the old pattern is kept as is."""

	service = _service(clock, max_history_size=3)

	conftest.play(service, clock, [C4, D4])
	(first,) = service.detect_patterns()

	clock.advance(100)
	conftest.play(service, clock, [E4, F4])

	(second,) = service.detect_patterns()

	assert second.id != first.id
	assert first.note_count == 2
	assert [n.note for n in second.notes] == ["E4", "F4"]


def test_auto_save_of_interesting_patterns (clock: conftest.FakeClock) -> None:

	service = _service(clock, auto_save_interesting_patterns=True, auto_save_complexity_threshold=0.5)

	conftest.play(service, clock, [C4, E4])

	(pattern,) = service.detect_patterns()

	assert pattern.complexity_score == pytest.approx(0.5)
	assert pattern.is_saved is True


def test_growing_pattern_is_auto_saved_once_interesting (clock: conftest.FakeClock) -> None:

	"""A trailing pattern that crosses the threshold while being refreshed is saved."""

	service = _service(clock, auto_save_interesting_patterns=True, auto_save_complexity_threshold=0.9)

	first, second = conftest.play(service, clock, [C4, E4])

	(provisional,) = service.detect_patterns()

	assert provisional.complexity_score == pytest.approx(0.5)
	assert provisional.is_saved is False

	service.update_note_release(first.id, first.press_time + 100)
	service.update_note_release(second.id, second.press_time + 300)

	(refreshed,) = service.detect_patterns()

	assert refreshed.id == provisional.id
	assert refreshed.complexity_score == pytest.approx(1.0)
	assert refreshed.is_saved is True


def test_detection_listener_receives_patterns (clock: conftest.FakeClock) -> None:

	received = []
	service = tonetrail.service.PatternService(clock=clock, on_patterns_detected=received.append)

	conftest.play(service, clock, [C4, D4])
	service.detect_patterns()
	service.detect_patterns()

	assert len(received) == 1
	assert received[0][0].note_count == 2


def test_short_history_skips_detection (clock: conftest.FakeClock) -> None:

	service = _service(clock, min_pattern_length=3)

	conftest.play(service, clock, [C4, D4])

	assert service.detect_patterns() == []


# --- Recording ---


def test_release_by_audio_note_id (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	history_note = service.record_note(**conftest.note_data(C4, audio_note_id="0:60", velocity=0.8))

	clock.advance(350)
	service.update_note_release("0:60")

	assert history_note.release_time == clock()
	assert history_note.duration == 350.0
	assert service.update_note_release("0:60") is None


def test_notes_are_stamped_with_session (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	(history_note,) = conftest.play(service, clock, [C4])

	assert history_note.session_id == service.session_id
	assert service.sessions.current.note_count == 1


def test_history_never_exceeds_limit (clock: conftest.FakeClock) -> None:

	service = _service(clock, max_history_size=5)

	conftest.play(service, clock, [C4] * 8)

	assert len(service.history) == 5


# --- Configuration ---


def test_update_config_affects_later_detection (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	assert service.update_config({"minPatternLength": 3}) == {"min_pattern_length": 3}

	conftest.play(service, clock, [C4, D4])

	assert service.detect_patterns() == []


def test_lowering_history_limit_trims_now (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4, E4, F4])

	service.update_config(max_history_size=2)

	assert [n.note for n in service.history] == ["E4", "F4"]


def test_bad_config_values_are_ignored (service: tonetrail.service.PatternService) -> None:

	assert service.update_config(silence_threshold="fast", unknown=1) == {}
	assert service.config.silence_threshold == 3000.0


# --- Snapshots and storage ---


def test_export_then_load_restores_state (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	"""A loaded snapshot continues where the exported one stopped, without duplicates."""

	conftest.play(service, clock, [C4, D4], hold=50)
	(pattern,) = service.detect_patterns()
	service.save_pattern(pattern.id, name="Saved")

	data = service.export_data()

	assert set(data) >= {"history", "patterns", "config", "session_id"}

	restored = tonetrail.service.PatternService(clock=clock)
	restored.load_data(data)

	assert restored.session_id == service.session_id
	assert len(restored.history) == 2
	assert restored.get_pattern(pattern.id).name == "Saved"
	assert restored.history[0].duration == 50.0

	assert restored.detect_patterns() == []
	assert len(restored.get_patterns()) == 1


def test_load_accepts_camel_case_session_key (service: tonetrail.service.PatternService) -> None:

	service.load_data({"currentSessionId": "legacy", "config": {"maxHistorySize": 42}})

	assert service.session_id == "legacy"
	assert service.config.max_history_size == 42


def test_load_skips_malformed_entries (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	good = conftest.make_pattern(clock())

	service.load_data({
		"history": [conftest.make_note(clock()).to_dict(), {"note": "C4"}, "junk"],
		"patterns": [{"bogus": True}, good.to_dict()],
	})

	assert len(service.history) == 1
	assert [p.id for p in service.get_patterns()] == [good.id]


def test_load_skips_patterns_with_bad_notes (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	"""Pattern entries whose notes cannot be rebuilt are skipped, not raised."""

	good = conftest.make_pattern(clock())

	def variant (pattern_id: str, **fields) -> dict:
		data = conftest.make_pattern(clock(), id=pattern_id).to_dict()
		data.update(fields)
		return data

	service.load_data({
		"patterns": [
			variant("string-notes", notes=["junk"]),
			variant("dict-notes", notes={"a": 1}),
			variant("no-notes", notes=[], note_count=0),
			variant("missing-notes", notes=None),
			variant("wrong-count", note_count=5),
			good.to_dict(),
		],
	})

	assert [p.id for p in service.get_patterns()] == [good.id]


def test_load_purges_expired_patterns (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	expired = conftest.make_pattern(clock() - service.config.auto_purge_age - 1)
	kept = conftest.make_pattern(clock() - service.config.auto_purge_age - 1, is_saved=True)

	service.load_data({"patterns": [expired.to_dict(), kept.to_dict()]})

	assert [p.id for p in service.get_patterns()] == [kept.id]


def test_load_ignores_non_mapping (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4])

	service.load_data(["not", "a", "snapshot"])

	assert len(service.history) == 1


def test_clear_all_data (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	service.detect_patterns()
	old_session = service.session_id

	service.clear_all_data()

	assert service.history == ()
	assert service.get_patterns() == []
	assert service.session_id != old_session


def test_storage_stats (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4, E4])
	service.detect_patterns()

	stats = service.get_storage_stats()

	assert isinstance(stats, tonetrail.repository.StorageStats)
	assert stats.total_patterns == 1
	assert stats.history_size == 3
	assert stats.average_pattern_length == 3.0
	assert stats.storage_usage > 0


def test_delete_patterns_counts (service: tonetrail.service.PatternService, clock: conftest.FakeClock) -> None:

	conftest.play(service, clock, [C4, D4])
	(pattern,) = service.detect_patterns()

	assert service.delete_patterns([pattern.id, "missing"]) == (1, 1)
