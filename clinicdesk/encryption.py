"""
This module handles optional encryption of the collection files at rest.

It uses the `cryptography` library (Fernet symmetric encryption). When encryption is
enabled in `clinicdesk.config`, `JsonFileBackend` passes every serialized collection
through the encryptor returned by `get_encryptor` before writing it to disk.

Security Note: the key file is critical. Keep it out of version control and back it
up together with the data directory, otherwise encrypted collections cannot be read.
"""
# clinicdesk/encryption.py

import logging
from pathlib import Path

from cryptography.fernet import Fernet

logger = logging.getLogger(__name__)


def write_key(path) -> bytes:
    """Generates a new Fernet key and saves it to `path`.

    Returns:
        bytes: The generated key.
    """
    key = Fernet.generate_key()
    with open(path, "wb") as key_file:
        key_file.write(key)
    return key


def load_key(path) -> bytes:
    """Loads the Fernet key from `path`.

    Raises:
        FileNotFoundError: If the key file does not exist.
    """
    with open(path, "rb") as key_file:
        return key_file.read().strip()


def get_encryptor(path) -> Fernet:
    """Returns a Fernet instance for the key at `path`, generating the key on first use."""
    key_path = Path(path)
    try:
        key = load_key(key_path)
    except FileNotFoundError:
        logger.warning("Encryption key not found at %s, generating a new one", key_path)
        key = write_key(key_path)
    return Fernet(key)
