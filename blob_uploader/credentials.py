from __future__ import annotations
"""Keychain-backed secret for the local presigning authority."""
import logging

import keyring
from keyring.errors import KeyringError

from .settings import SettingsStorage, UploaderSettings

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "pyblobup"


class KeychainStore:
    """Stores S3 secret keys in the OS keychain, keyed by access key."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self._service_name = service_name

    def get_secret(self, access_key: str) -> str:
        if not access_key:
            return ""
        try:
            return keyring.get_password(self._service_name, access_key) or ""
        except KeyringError as exc:
            LOGGER.warning("Keychain lookup failed for '%s': %s", access_key, exc)
            return ""

    def set_secret(self, access_key: str, secret_key: str) -> bool:
        """Store ``secret_key``; returns True only when the keychain accepted it."""
        if not access_key:
            return False
        if not secret_key:
            self.delete_secret(access_key)
            return False
        try:
            keyring.set_password(self._service_name, access_key, secret_key)
        except KeyringError as exc:
            LOGGER.warning("Could not store secret for '%s': %s", access_key, exc)
            return False
        return True

    def delete_secret(self, access_key: str) -> None:
        if not access_key:
            return
        try:
            keyring.delete_password(self._service_name, access_key)
        except KeyringError:
            LOGGER.debug("No stored secret to delete for '%s'", access_key)


def resolve_s3_secret(
    settings: UploaderSettings,
    storage: SettingsStorage,
    keychain: KeychainStore | None = None,
) -> str:
    """Return the secret for ``settings.s3_access_key``.

    A plaintext ``s3_secret_key`` found in the settings file is moved into the
    keychain and the file is rewritten without it. The file is left alone when
    the keychain did not take the secret, so it is never lost.
    """
    keychain = keychain or KeychainStore()
    plaintext = storage.load_raw_secret()
    if not plaintext:
        return keychain.get_secret(settings.s3_access_key)
    if not settings.s3_access_key:
        LOGGER.warning("Keeping plaintext S3 secret in %s until an access key is configured", storage.path)
        return plaintext
    if not keychain.set_secret(settings.s3_access_key, plaintext):
        LOGGER.warning("Keeping plaintext S3 secret in %s; keychain unavailable", storage.path)
        return plaintext
    storage.save(storage.load())
    LOGGER.info("Moved plaintext S3 secret from %s into the keychain", storage.path)
    return plaintext
