"""
Exception types raised by the ClinicDesk core.

`NotFoundError` and `ValidationError` are surfaced to callers. `StorageCorruptError`
is raised by storage backends and recovered inside `RecordStore`, which treats the
affected collection as empty.
"""
# clinicdesk/errors.py


class ClinicDeskError(Exception):
    """Base exception for all ClinicDesk errors."""
    pass


class NotFoundError(ClinicDeskError):
    """Raised when an operation references an ID absent from its collection."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ValidationError(ClinicDeskError):
    """Raised when a record or request fails validation."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class StorageCorruptError(ClinicDeskError):
    """Raised by a backend when a stored value cannot be decoded."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Stored value for '{key}' is unreadable: {reason}")
