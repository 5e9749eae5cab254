"""
This module provides the operator activity log.

`ActivityLog` is an explicitly constructed service (one per store) that:
- recovers its next entry ID from the stored log on start-up, so no counter has to
  be persisted;
- prepends new entries (the stored list is always newest first) and truncates the
  collection to `config.LOG_RETENTION` entries;
- tracks unread entries against a persisted "last seen" watermark;
- notifies subscribers on every append, and offers `poll()` for front ends that can
  only refresh on a timer.
"""
# clinicdesk/activity.py

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from clinicdesk import config
from clinicdesk.errors import ValidationError
from clinicdesk.models import LogEntry, format_timestamp
from clinicdesk.storage import ACTIVITY_LOGS, LOGS_LAST_SEEN

logger = logging.getLogger(__name__)

# event name -> (target type, action template)
EVENT_TEMPLATES = {
    "patient_created": ("patient", "created a new patient record"),
    "patient_updated": ("patient", "updated patient information"),
    "patient_deleted": ("patient", "deleted patient record"),
    "appointment_created": ("appointment", "created a new appointment for {patient_name}"),
    "appointment_updated": ("appointment", "updated appointment for {patient_name}"),
    "appointment_deleted": ("appointment", "deleted appointment of {patient_name}"),
    "invoice_created": ("invoice", "created an invoice from appointment of {patient_name}"),
    "invoice_updated": ("invoice", "updated invoice for {patient_name}"),
    "invoice_deleted": ("invoice", "deleted invoice of {patient_name}"),
    "invoice_paid": ("invoice", "marked invoice as paid for {patient_name}"),
    "invoice_status": ("invoice", "updated invoice status to {status} for {patient_name}"),
}


def _as_int(value, default=0) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ActivityLog:
    """Append-only audit trail of operator actions."""

    def __init__(self, store, operator_name: str = None, retention: int = None, clock: Callable[[], datetime] = None):
        """Initializes the log and recovers the next entry ID from storage.

        Args:
            store: The `RecordStore` holding the `activity_logs` collection.
            operator_name: Default operator label stamped on entries.
            retention: Maximum number of entries kept; defaults to `config.LOG_RETENTION`.
            clock: Returns the current time; defaults to `datetime.now(timezone.utc)`.
        """
        self._store = store
        self.operator_name = operator_name or config.OPERATOR_NAME
        self.retention = retention or config.LOG_RETENTION
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._subscribers: List[Callable[[Dict], None]] = []
        self._next_id = self._recover_next_id()

    def _recover_next_id(self) -> int:
        ids = [_as_int(entry.get("id")) for entry in self.entries()]
        return max(ids, default=0) + 1

    @property
    def next_id(self) -> int:
        return self._next_id

    def entries(self) -> List[Dict]:
        """Returns all stored entries, newest first."""
        return [entry for entry in self._store.load(ACTIVITY_LOGS) if isinstance(entry, dict)]

    def append(
        self,
        action: str,
        target_type: str,
        target_id: Optional[int] = None,
        target_name: Optional[str] = None,
        patient_id: Optional[int] = None,
        patient_name: Optional[str] = None,
        operator_name: Optional[str] = None,
        details: Optional[str] = None,
    ) -> Dict:
        """Adds an entry to the front of the log and applies the retention cap.

        Returns:
            The stored entry dictionary.
        """
        entry = LogEntry(
            id=self._next_id,
            action=action,
            operator_name=operator_name or self.operator_name,
            target_type=target_type,
            timestamp=format_timestamp(self._clock()),
            target_id=target_id,
            target_name=target_name,
            patient_id=patient_id,
            patient_name=patient_name,
            details=details,
        ).to_record()
        self._next_id += 1

        logs = self.entries()
        logs.insert(0, entry)
        del logs[self.retention:]
        self._store.save(ACTIVITY_LOGS, logs)
        logger.info("Activity #%s: %s %s", entry["id"], entry["operatorName"], action)

        for callback in list(self._subscribers):
            try:
                callback(entry)
            except Exception:
                logger.exception("Activity log subscriber %r failed", callback)
        return entry

    def record(self, event: str, target_id=None, patient_id=None, patient_name=None, target_name=None, operator_name=None, **fields) -> Dict:
        """Appends an entry for a known event, building the action sentence from its template.

        Raises:
            ValidationError: If `event` has no template.
        """
        if event not in EVENT_TEMPLATES:
            raise ValidationError(f"Unknown activity event: {event}", field="event")
        target_type, template = EVENT_TEMPLATES[event]
        action = template.format(patient_name=patient_name or "", **fields)
        return self.append(
            action,
            target_type,
            target_id=target_id,
            target_name=target_name,
            patient_id=patient_id,
            patient_name=patient_name,
            operator_name=operator_name,
        )

    def latest_id(self) -> int:
        return max((_as_int(entry.get("id")) for entry in self.entries()), default=0)

    def last_seen_id(self) -> int:
        return _as_int(self._store.load_value(LOGS_LAST_SEEN, 0))

    def unread_count(self) -> int:
        """Number of entries newer than the "last seen" watermark."""
        last_seen = self.last_seen_id()
        return sum(1 for entry in self.entries() if _as_int(entry.get("id")) > last_seen)

    def mark_as_read(self) -> int:
        """Moves the watermark to the newest entry and returns it."""
        latest = self.latest_id()
        if latest:
            self._store.save_value(LOGS_LAST_SEEN, latest)
        return latest

    def clear_old_logs(self, keep: int = None) -> int:
        """Keeps only the `keep` most recent entries (default `config.LOG_CLEANUP_KEEP`).

        Returns:
            The number of entries removed.
        """
        keep = config.LOG_CLEANUP_KEEP if keep is None else keep
        logs = self.entries()
        if len(logs) <= keep:
            return 0
        self._store.save(ACTIVITY_LOGS, logs[:keep])
        removed = len(logs) - keep
        logger.info("Cleared %d old activity log entries", removed)
        return removed

    def subscribe(self, callback: Callable[[Dict], None]) -> Callable[[], None]:
        """Registers `callback` to receive each new entry. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def poll(self) -> int:
        """Re-reads the stored log and returns the unread count.

        Safe to call on a fixed interval (`config.POLL_INTERVAL_SECONDS`), to skip, or
        to call repeatedly: it never mutates the store.
        """
        return self.unread_count()
