"""Storage backends for AccredChain.

``get_storage()`` returns the process-wide ``Storage`` bundle selected by
``ACCRED_STORE_BACKEND``.
"""

import logging

from accredchain import config
from accredchain.store.base import (
    CredentialStore,
    IdentityStore,
    Storage,
    VerificationLogStore,
)

log = logging.getLogger(__name__)

_storage: Storage | None = None


def create_storage(backend: str | None = None) -> Storage:
    """Build a storage bundle for ``backend`` ("sql" or "json")."""
    backend = (backend or config.STORE_BACKEND).lower()

    if backend == "json":
        from accredchain.store.jsonfile import create_json_storage

        log.info(f"Using JSON file storage at {config.DATA_DIR}")
        return create_json_storage(config.DATA_DIR)

    if backend == "sql":
        from accredchain.db.session import get_session_factory, init_database
        from accredchain.store.sql import create_sql_storage

        init_database()
        return create_sql_storage(get_session_factory())

    raise ValueError(f"Unknown store backend: {backend!r}")


def get_storage() -> Storage:
    """Get the global storage bundle, creating it on first use."""
    global _storage

    if _storage is None:
        _storage = create_storage()
        log.info(f"Initialized {_storage.backend} storage")

    return _storage


def reset_storage() -> None:
    """Reset the global storage (for testing)."""
    global _storage
    _storage = None


__all__ = [
    "CredentialStore",
    "IdentityStore",
    "Storage",
    "VerificationLogStore",
    "create_storage",
    "get_storage",
    "reset_storage",
]
