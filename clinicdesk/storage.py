"""
This module provides the record store that every other ClinicDesk component runs on.

A store is a set of named collections, each an ordered list of JSON-serializable
records, persisted through a small key-value backend:

- `MemoryBackend` keeps serialized values in a dictionary (tests, scratch sessions).
- `JsonFileBackend` writes one UTF-8 JSON file per key under a data directory,
  optionally encrypted with Fernet (see `clinicdesk.encryption`).

`RecordStore` never lets a corrupt value crash its callers: anything that fails to
decode, or decodes to the wrong shape, is logged and treated as an empty collection.
It also owns the per-collection ID sequences, so record IDs never depend on the clock.
"""
# clinicdesk/storage.py

import json
import logging
import os
import tempfile
from pathlib import Path

from cryptography.fernet import InvalidToken

from clinicdesk import config
from clinicdesk.encryption import get_encryptor
from clinicdesk.errors import StorageCorruptError

logger = logging.getLogger(__name__)

# Store keys. Each names one persisted collection or value.
PATIENTS = "patient_management_data"
OPERATORS = "operators"
TREATMENTS = "treatments"
APPOINTMENTS = "appointments"
INVOICES = "invoices"
CUSTOM_EXAMINATIONS = "custom_examinations"
ACTIVITY_LOGS = "activity_logs"
LOGS_LAST_SEEN = "logs_last_seen"
ID_SEQUENCES = "id_sequences"
RECEIPT_CONFIG = "receipt_config"


class MemoryBackend:
    """Keeps serialized values in memory. Values are stored as JSON text so that
    loads always hand out fresh copies."""

    def __init__(self):
        self._items = {}

    def load(self, key):
        text = self._items.get(key)
        if text is None:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise StorageCorruptError(key, str(e)) from e

    def save(self, key, value):
        self._items[key] = json.dumps(value)

    def save_raw(self, key, text: str):
        """Stores `text` verbatim, bypassing serialization."""
        self._items[key] = text


class JsonFileBackend:
    """Persists each key as `<data_dir>/<key>.json`.

    Writes go to a temporary file in the same directory and are moved into place
    with `os.replace`, so a crash mid-write never leaves a half-written collection.
    """

    def __init__(self, data_dir, encryptor=None):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.encryptor = encryptor
        logger.info("JsonFileBackend initialized: %s (encrypted=%s)", self.data_dir, encryptor is not None)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def load(self, key):
        path = self._path(key)
        if not path.exists():
            return None
        try:
            raw = path.read_bytes()
            if not raw.strip():
                return None
            if self.encryptor is not None:
                raw = self.encryptor.decrypt(raw)
            return json.loads(raw.decode("utf-8"))
        except (InvalidToken, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageCorruptError(key, str(e) or type(e).__name__) from e

    def save(self, key, value):
        data = json.dumps(value, indent=2, ensure_ascii=False).encode("utf-8")
        if self.encryptor is not None:
            data = self.encryptor.encrypt(data)
        fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class RecordStore:
    """Loads and saves named collections through a backend."""

    def __init__(self, backend):
        self.backend = backend

    def load(self, collection: str) -> list:
        """Returns the records of `collection`, or an empty list if absent or malformed."""
        try:
            value = self.backend.load(collection)
        except StorageCorruptError as e:
            logger.warning("Could not load collection (%s). Treating it as empty.", e)
            return []
        if value is None:
            return []
        if not isinstance(value, list):
            logger.warning("Collection '%s' is not a list (%s). Treating it as empty.", collection, type(value).__name__)
            return []
        records = [record for record in value if isinstance(record, dict)]
        if len(records) != len(value):
            logger.warning("Collection '%s' holds %d non-record item(s). Skipping them.", collection, len(value) - len(records))
        return records

    def save(self, collection: str, records: list):
        """Replaces `collection` wholesale with `records`."""
        self.backend.save(collection, list(records))

    def load_value(self, key: str, default=None):
        try:
            value = self.backend.load(key)
        except StorageCorruptError as e:
            logger.warning("Could not load value (%s). Using default.", e)
            return default
        return default if value is None else value

    def save_value(self, key: str, value):
        self.backend.save(key, value)

    def _sequences(self) -> dict:
        sequences = self.load_value(ID_SEQUENCES, {})
        if not isinstance(sequences, dict):
            logger.warning("ID sequences are malformed; rebuilding from stored records")
            return {}
        return sequences

    def next_sequence(self, name: str, floor: int = 0) -> int:
        """Advances the persisted counter `name` and returns its new value.

        The result is never lower than `floor + 1`, so a counter that was lost or
        reset cannot hand out a value already in use.
        """
        sequences = self._sequences()
        current = sequences.get(name, 0)
        if not isinstance(current, int) or isinstance(current, bool) or current < 0:
            logger.warning("Sequence '%s' holds %r; resetting", name, current)
            current = 0
        value = max(current, floor) + 1
        sequences[name] = value
        self.save_value(ID_SEQUENCES, sequences)
        return value

    def next_id(self, collection: str) -> int:
        """Returns a fresh ID for a record of `collection`."""
        ids = [r.get("id") for r in self.load(collection)]
        highest = max((i for i in ids if isinstance(i, int) and not isinstance(i, bool)), default=0)
        return self.next_sequence(collection, floor=highest)


def open_store(data_dir=None, encrypt=None) -> RecordStore:
    """Builds a file-backed store from `clinicdesk.config`, with optional overrides."""
    data_dir = data_dir or config.DATA_DIR
    encrypt = config.ENCRYPT_AT_REST if encrypt is None else encrypt
    encryptor = get_encryptor(config.KEY_FILE) if encrypt else None
    return RecordStore(JsonFileBackend(data_dir, encryptor=encryptor))
