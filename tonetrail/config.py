"""Pattern detection configuration.

Defines :class:`PatternDetectionConfig`, the single process-wide set of
thresholds read by the segmenter, classifier and retention manager, plus
:func:`load_config` for reading a YAML settings file.

The config object is mutated in place by :meth:`PatternDetectionConfig.update`
so every component holding a reference sees new values on its next call.
Already-finalized patterns are never re-evaluated against a changed config.
"""

import dataclasses
import logging
import os
import typing

import yaml


logger = logging.getLogger(__name__)


DEFAULT_SILENCE_THRESHOLD: float = 3000.0
DEFAULT_AUTO_PURGE_AGE: float = 24 * 60 * 60 * 1000.0
DEFAULT_MAX_HISTORY_SIZE: int = 10000
DEFAULT_MIN_PATTERN_LENGTH: int = 2
DEFAULT_MAX_PATTERN_LENGTH: int = 50
DEFAULT_AUTO_SAVE_COMPLEXITY_THRESHOLD: float = 0.6


# camelCase names used by older snapshots and front-end callers.
_CAMEL_CASE_ALIASES: typing.Dict[str, str] = {
	"silenceThreshold": "silence_threshold",
	"autoPurgeAge": "auto_purge_age",
	"maxHistorySize": "max_history_size",
	"minPatternLength": "min_pattern_length",
	"maxPatternLength": "max_pattern_length",
	"detectOnContextChange": "detect_on_context_change",
	"autoSaveInterestingPatterns": "auto_save_interesting_patterns",
	"autoSaveComplexityThreshold": "auto_save_complexity_threshold",
}


@dataclasses.dataclass
class PatternDetectionConfig:

	"""
	Thresholds and switches for pattern detection and retention.

	Attributes:
		silence_threshold: Inter-note gap in milliseconds that forces a pattern
			boundary. Also the inactivity delay of the silence timer.
		auto_purge_age: Age in milliseconds after which unsaved patterns are purged.
		max_history_size: Cap on retained history notes (oldest dropped first).
		min_pattern_length: Groups shorter than this are silently discarded.
		max_pattern_length: A group is split once it holds this many notes
			(``<= 0`` disables splitting).
		detect_on_context_change: When True, a key, mode or instrument change
			between consecutive notes forces a boundary.
		auto_save_interesting_patterns: When True, new patterns whose complexity
			reaches ``auto_save_complexity_threshold`` are created already saved.
		auto_save_complexity_threshold: 0.0-1.0 complexity needed for auto-save.
	"""

	silence_threshold: float = DEFAULT_SILENCE_THRESHOLD
	auto_purge_age: float = DEFAULT_AUTO_PURGE_AGE
	max_history_size: int = DEFAULT_MAX_HISTORY_SIZE
	min_pattern_length: int = DEFAULT_MIN_PATTERN_LENGTH
	max_pattern_length: int = DEFAULT_MAX_PATTERN_LENGTH
	detect_on_context_change: bool = True
	auto_save_interesting_patterns: bool = False
	auto_save_complexity_threshold: float = DEFAULT_AUTO_SAVE_COMPLEXITY_THRESHOLD


	def update (self, partial: typing.Optional[typing.Mapping[str, typing.Any]] = None, **changes: typing.Any) -> typing.Dict[str, typing.Any]:

		"""
		Merge a partial update into this config in place.

		Keys may be snake_case field names or their camelCase equivalents.
		Values are checked for type only: numbers for numeric fields, bools for
		flags. Unknown keys and wrongly typed values are logged and skipped, so
		out-of-range numbers (negative thresholds, zero caps) are accepted.

		Returns:
			The changes that were actually applied, keyed by field name.
		"""

		merged: typing.Dict[str, typing.Any] = dict(partial or {})
		merged.update(changes)

		field_types = {field.name: field.type for field in dataclasses.fields(self)}
		applied: typing.Dict[str, typing.Any] = {}

		for raw_name, value in merged.items():

			name = _CAMEL_CASE_ALIASES.get(raw_name, raw_name)

			if name not in field_types:
				logger.warning(f"Ignoring unknown config key {raw_name!r}")
				continue

			coerced = _coerce(field_types[name], value)

			if coerced is None:
				logger.warning(f"Ignoring config {raw_name!r}: expected {_type_name(field_types[name])}, got {type(value).__name__}")
				continue

			setattr(self, name, coerced)
			applied[name] = coerced

		return applied


	def copy (self) -> "PatternDetectionConfig":

		"""Return an independent copy of this config."""

		return dataclasses.replace(self)


	def to_dict (self) -> typing.Dict[str, typing.Any]:

		"""Return the config as a plain, JSON-compatible dict."""

		return dataclasses.asdict(self)


	@classmethod
	def from_dict (cls, data: typing.Optional[typing.Mapping[str, typing.Any]]) -> "PatternDetectionConfig":

		"""Build a config from defaults overlaid with ``data`` (bad entries skipped)."""

		config = cls()
		config.update(data or {})
		return config


def _type_name (field_type: typing.Any) -> str:

	return field_type if isinstance(field_type, str) else getattr(field_type, "__name__", str(field_type))


def _coerce (field_type: typing.Any, value: typing.Any) -> typing.Any:

	"""Return ``value`` converted to the field's type, or None when the type is wrong."""

	type_name = _type_name(field_type)

	if type_name == "bool":
		return value if isinstance(value, bool) else None

	# bool is an int subclass but never a sensible threshold.
	if isinstance(value, bool) or not isinstance(value, (int, float)):
		return None

	if type_name == "int":
		return int(value)

	return float(value)


def load_config (config_path: str = "tonetrail.yaml") -> typing.Dict[str, typing.Any]:

	"""
	Load application settings from a YAML file.

	Returns an empty dict (and logs a warning) when the file does not exist, so
	callers fall back to defaults. The ``detection`` section, when present, is
	suitable for :meth:`PatternDetectionConfig.from_dict`.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return {}

	with open(config_path, "r") as f:
		data = yaml.safe_load(f)

	if not isinstance(data, dict):
		logger.warning(f"Config file {config_path} does not contain a mapping. Using defaults.")
		return {}

	return data


def detection_config_from_settings (settings: typing.Mapping[str, typing.Any]) -> PatternDetectionConfig:

	"""Build a :class:`PatternDetectionConfig` from the ``detection`` section of loaded settings."""

	section = settings.get("detection") or {}

	if not isinstance(section, dict):
		logger.warning("Ignoring 'detection' settings: expected a mapping")
		section = {}

	return PatternDetectionConfig.from_dict(section)
