"""bcrypt password hashing.

Passwords are only ever stored as bcrypt hashes.
"""

import logging

import bcrypt as bcrypt_lib

log = logging.getLogger(__name__)


def hash_password(password: str, cost_factor: int | None = None) -> str:
    """Hash a password using bcrypt.

    Args:
        password: The raw password to hash
        cost_factor: bcrypt cost factor (default: ACCRED_BCRYPT_COST)

    Returns:
        The bcrypt hash string
    """
    if cost_factor is None:
        from accredchain import config

        cost_factor = config.BCRYPT_COST
    salt = bcrypt_lib.gensalt(rounds=cost_factor)
    return bcrypt_lib.hashpw(password.encode(), salt).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Constant-time check of ``password`` against a stored bcrypt hash."""
    if not password_hash:
        return False
    try:
        return bcrypt_lib.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        log.warning("Stored password hash is malformed")
        return False
