"""
Runtime configuration for ClinicDesk.

Values are read once from the environment at import time. Tests override them
with `monkeypatch.setattr` on this module, the same way the data file location is
patched in the service fixtures.
"""
# clinicdesk/config.py

import os

DATA_DIR = os.environ.get("CLINICDESK_DATA_DIR", "clinic_data")
KEY_FILE = os.environ.get("CLINICDESK_KEY_FILE", "secret.key")
ENCRYPT_AT_REST = os.environ.get("CLINICDESK_ENCRYPT", "").lower() in ("1", "true", "yes")
OPERATOR_NAME = os.environ.get("CLINICDESK_OPERATOR", "Admin")
LOG_LEVEL = os.environ.get("CLINICDESK_LOG_LEVEL", "INFO")

# Activity log: hard cap applied on every append, and the smaller cap used by
# the manual "clear old logs" maintenance action.
LOG_RETENTION = 500
LOG_CLEANUP_KEEP = 100

PAGE_SIZE = 10
POLL_INTERVAL_SECONDS = 5
TREND_MONTHS = 6
