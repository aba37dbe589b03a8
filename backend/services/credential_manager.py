"""Keyring-backed credential storage for upstream provider secrets.

Provides a thin wrapper around the ``keyring`` library to store and
retrieve the Plaid API credentials in the system keychain (or any other
backend supported by keyring).
"""

import logging

import keyring

logger = logging.getLogger(__name__)

SERVICE_NAME = "clerk"

CREDENTIAL_KEYS: frozenset[str] = frozenset(
    {
        "PLAID_CLIENT_ID",
        "PLAID_SECRET",
    }
)


def get_credential(key: str) -> str | None:
    """Retrieve a credential from the keychain.

    Args:
        key: The credential name (e.g. ``"PLAID_SECRET"``).

    Returns:
        The credential value, or ``None`` if not found or no keyring
        backend is available.
    """
    try:
        return keyring.get_password(SERVICE_NAME, key)
    except Exception:
        logger.debug("keyring lookup failed for %s", key, exc_info=True)
        return None


def set_credential(key: str, value: str) -> bool:
    """Store a credential in the keychain.

    Only keys listed in :data:`CREDENTIAL_KEYS` are accepted.

    Args:
        key: The credential name (must be in ``CREDENTIAL_KEYS``).
        value: The credential value (must be non-empty).

    Returns:
        ``True`` if stored successfully, ``False`` otherwise.
    """
    if key not in CREDENTIAL_KEYS:
        logger.warning("Attempted to store non-credential key: %s", key)
        return False
    if not value or not value.strip():
        logger.warning("Attempted to store empty value for %s", key)
        return False

    try:
        keyring.set_password(SERVICE_NAME, key, value.strip())
        logger.info("Stored %s in keychain", key)
        return True
    except Exception:
        logger.warning("Failed to store %s in keychain", key, exc_info=True)
        return False


def store_plaid_credentials(client_id: str, secret: str) -> list[str]:
    """Store the Plaid client id and secret; return the keys that failed."""
    values = {"PLAID_CLIENT_ID": client_id, "PLAID_SECRET": secret}
    return [key for key, value in values.items() if not set_credential(key, value)]
