"""
Tonetrail - pattern detection and practice history for musical note streams.

Tonetrail listens to the notes a student plays and turns the raw stream into
named, searchable musical patterns.  Notes are recorded with their musical
context (key, mode, scale degree, solfege, instrument), grouped into phrases
at silences and context changes, classified, and kept in a small
in-memory library with retention rules.

What it does:

- **Records history.** Every press and release is kept in a bounded buffer,
  stamped with the current session id.
- **Finds phrases.** Silence gaps, key/mode/instrument changes and a
  maximum phrase length split the history into patterns.
- **Classifies them.** Each pattern gets a type (``scale``, ``arpeggio``,
  ``chord``, ``melody``, ``rhythm`` or ``mixed``), a complexity score, a
  detection confidence and summary statistics.
- **Manages a library.** Save, name, tag, replay-count, search, sort and
  delete patterns.  Unsaved patterns expire after a configurable age.
- **Snapshots.** Export and import everything as JSON-compatible data.
- **Listens to MIDI.** :class:`~tonetrail.midi_input.MidiNoteRecorder`
  feeds a ``mido`` input port straight into the service.

Package-level exports:

- :class:`PatternService` - the owner object for history, patterns and sessions.
- :class:`PatternStore` - initialization, events, snapshot files and views.
- :class:`PatternDetectionConfig`, :func:`load_config` - configuration.
- :class:`SearchOptions`, :class:`Pattern`, :class:`HistoryNote` - data types.
- :func:`describe_pitch` - musical context for a MIDI pitch.
"""

import tonetrail.config
import tonetrail.history
import tonetrail.pattern
import tonetrail.repository
import tonetrail.service
import tonetrail.store
import tonetrail.theory

from tonetrail.config import PatternDetectionConfig, load_config
from tonetrail.history import HistoryNote
from tonetrail.pattern import Pattern
from tonetrail.repository import SearchOptions
from tonetrail.service import PatternService
from tonetrail.store import PatternStore
from tonetrail.theory import describe_pitch


__all__ = [
	"HistoryNote",
	"Pattern",
	"PatternDetectionConfig",
	"PatternService",
	"PatternStore",
	"SearchOptions",
	"describe_pitch",
	"load_config",
]
