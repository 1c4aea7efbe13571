import asyncio
import logging
import typing

import tonetrail.config
import tonetrail.midi_input
import tonetrail.store


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


DEFAULT_SNAPSHOT_PATH = "tonetrail.json"
DEFAULT_PERSIST_INTERVAL = 30.0
DEFAULT_PURGE_INTERVAL = 300.0


def _section (config: typing.Dict[str, typing.Any], name: str) -> typing.Dict[str, typing.Any]:

	section = config.get(name) or {}
	return section if isinstance(section, dict) else {}


async def persist_periodically (store: tonetrail.store.PatternStore, interval_seconds: float) -> None:

	"""
	Write the store snapshot every ``interval_seconds`` until cancelled.
	"""

	while True:
		await asyncio.sleep(interval_seconds)
		store.persist()


async def run (config: typing.Dict[str, typing.Any]) -> None:

	"""
	Listen to the configured MIDI input and record patterns until cancelled.
	"""

	midi = _section(config, 'midi')
	music = _section(config, 'music')
	storage = _section(config, 'storage')
	retention = _section(config, 'retention')

	detection_config = tonetrail.config.detection_config_from_settings(config)

	store = tonetrail.store.PatternStore(
		config = detection_config.to_dict(),
		snapshot_path = storage.get('snapshot_path', DEFAULT_SNAPSHOT_PATH)
	)

	key = music.get('key', 'C')
	mode = music.get('mode', 'major')
	instrument = music.get('instrument', 'piano')

	store.initialize(key, mode, instrument)

	recorder = tonetrail.midi_input.MidiNoteRecorder(
		store,
		input_device_name = midi.get('device_name'),
		key = key,
		mode = mode,
		instrument = instrument,
		loop = asyncio.get_running_loop()
	)

	if not recorder.open():
		logger.error("No MIDI input available - nothing to record.")
		return

	store.events.on("patterns_detected", lambda patterns: logger.info(f"{len(patterns)} pattern(s): {', '.join(p.pattern_type for p in patterns)}"))

	tasks = [
		asyncio.create_task(store.service.retention.run_periodic(float(retention.get('purge_interval', DEFAULT_PURGE_INTERVAL)), store.service.clock)),
		asyncio.create_task(persist_periodically(store, float(storage.get('persist_interval', DEFAULT_PERSIST_INTERVAL)))),
	]

	logger.info(f"Listening on {recorder.input_device_name} ({key} {mode}, {instrument})")

	try:
		await asyncio.gather(*tasks)
	finally:
		for task in tasks:
			task.cancel()
		recorder.close()
		store.persist()


def main () -> None:

	"""
	Main entry point for the tonetrail recorder.
	"""

	logger.info("Tonetrail starting...")

	config = tonetrail.config.load_config()

	try:
		asyncio.run(run(config))
	except KeyboardInterrupt:
		logger.info("Stopping...")


if __name__ == "__main__":
	main()
