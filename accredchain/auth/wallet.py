"""Wallet challenge messages and signer recovery.

The client signs the challenge with ``personal_sign`` (EIP-191). The
message must match byte-for-byte for recovery to yield the signer.
"""

import logging
import secrets

from eth_account import Account
from eth_account.messages import encode_defunct

from accredchain.exceptions import Unauthorized

log = logging.getLogger(__name__)

NONCE_DIGITS = 12


def generate_nonce() -> str:
    """Fresh random numeric nonce."""
    return f"{secrets.randbelow(10 ** NONCE_DIGITS):0{NONCE_DIGITS}d}"


def challenge_message(nonce: str, app_name: str | None = None) -> str:
    if app_name is None:
        from accredchain import config

        app_name = config.APP_NAME
    return f"Sign this message to authenticate with {app_name}.\n\nNonce: {nonce}"


def recover_signer(message: str, signature: str) -> str:
    """Recover the lower-cased address that signed ``message``.

    Raises:
        Unauthorized: Signature is malformed or unrecoverable.
    """
    try:
        address = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        # eth-account raises assorted ValueError/BadSignature types on bad input
        log.info(f"Signature recovery failed: {type(e).__name__}")
        raise Unauthorized("Invalid signature") from e
    return address.lower()
