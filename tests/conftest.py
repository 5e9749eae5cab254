"""
Pytest configuration file for the ClinicDesk test suite.

This file defines shared fixtures used across the test files:
- A pinned clock, so that record numbers, invoice numbers and monthly buckets are
  deterministic.
- Isolated record stores, either in memory or as JSON files under pytest's
  `tmp_path`, so tests never touch the production data directory.
- `ClinicService` instances with and without a small seeded catalogue.
"""
from datetime import datetime, timezone

import pytest

from clinicdesk.clinic import ClinicService
from clinicdesk.models import Operator, Patient, Treatment
from clinicdesk.storage import JsonFileBackend, MemoryBackend, RecordStore

NOW = datetime(2025, 3, 15, 10, 30, tzinfo=timezone.utc)


class FixedClock:
    """A clock that returns a settable instant."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def store(memory_backend):
    return RecordStore(memory_backend)


@pytest.fixture
def file_store(tmp_path):
    """A store persisting JSON files under a temporary data directory."""
    return RecordStore(JsonFileBackend(tmp_path / "data"))


@pytest.fixture
def service(store, clock):
    return ClinicService(store=store, operator_name="Front Desk", clock=clock)


@pytest.fixture
def seeded_service(service):
    """
    Provides a service with one patient, two operators and two treatments.

    Yields:
        tuple: The `ClinicService` and a dict of the created records keyed by role.
    """
    records = {
        "patient": service.create_patient(Patient("Jane Smith", 34, "0812-555-0101", address="Jl. Melati 4")),
        "operator": service.create_operator(Operator("Dr. Sari", "Physiotherapist")),
        "other_operator": service.create_operator(Operator("Budi", "Assistant")),
        "massage": service.create_treatment(Treatment("Massage", "Deep tissue massage", 150000)),
        "exercise": service.create_treatment(Treatment("Exercise therapy", "Guided exercise session", 75000)),
    }
    return service, records
