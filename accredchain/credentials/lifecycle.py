"""Credential status state machine.

Legal stored transitions::

    draft   -> pending | issued
    pending -> issued
    issued  -> revoked

``revoked`` is terminal. Nothing returns to ``draft`` or ``pending`` once
issued. ``expired`` is a read-time overlay and never appears here.

Both store backends call ``apply_issue``/``apply_revoke`` inside their own
atomic section so the legality check and the write cannot interleave with
another writer.
"""

from dataclasses import replace

from accredchain.exceptions import Conflict, ValidationError
from accredchain.models import Credential, CredentialStatus, utcnow

TRANSITIONS: dict[CredentialStatus, frozenset[CredentialStatus]] = {
    CredentialStatus.DRAFT: frozenset({CredentialStatus.PENDING, CredentialStatus.ISSUED}),
    CredentialStatus.PENDING: frozenset({CredentialStatus.ISSUED}),
    CredentialStatus.ISSUED: frozenset({CredentialStatus.REVOKED}),
    CredentialStatus.REVOKED: frozenset(),
}


def can_transition(current: CredentialStatus, target: CredentialStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def check_issue_args(token_id: int | None, tx_hash: str | None) -> None:
    """Validate the chain confirmation facts supplied with an issuance."""
    if token_id is not None and (
        isinstance(token_id, bool) or not isinstance(token_id, int) or token_id <= 0
    ):
        raise ValidationError.for_field("tokenId", "Token ID must be a positive integer")
    if not tx_hash or not str(tx_hash).strip():
        raise ValidationError.for_field("transactionHash", "Transaction hash is required")


def apply_issue(
    credential: Credential,
    token_id: int | None,
    tx_hash: str,
    block_number: int | None = None,
) -> Credential:
    """Return ``credential`` moved to ``issued``.

    A credential that already holds a reserved token id keeps it; the caller
    may omit ``token_id`` or must repeat the reserved value.

    Raises:
        Conflict: Already issued/revoked, or token id differs from reservation.
        ValidationError: Missing token id or transaction hash.
    """
    if credential.status == CredentialStatus.ISSUED:
        raise Conflict("Credential is already issued")
    if not can_transition(credential.status, CredentialStatus.ISSUED):
        raise Conflict(f"Cannot issue a {credential.status.value} credential")

    check_issue_args(token_id, tx_hash)
    if credential.token_id is not None:
        if token_id is not None and token_id != credential.token_id:
            raise Conflict(
                f"Credential already holds token ID {credential.token_id}"
            )
        token_id = credential.token_id
    elif token_id is None:
        raise ValidationError.for_field("tokenId", "Token ID is required")

    now = utcnow()
    return replace(
        credential,
        status=CredentialStatus.ISSUED,
        token_id=token_id,
        transaction_hash=tx_hash.strip(),
        block_number=block_number,
        updated_at=now,
    )


def apply_revoke(credential: Credential, reason: str) -> Credential:
    """Return ``credential`` moved to ``revoked``.

    Raises:
        Conflict: Already revoked, or not yet issued.
        ValidationError: Empty reason.
    """
    if not reason or not reason.strip():
        raise ValidationError.for_field("reason", "Revocation reason is required")
    if credential.status == CredentialStatus.REVOKED:
        raise Conflict("Credential is already revoked")
    if not can_transition(credential.status, CredentialStatus.REVOKED):
        raise Conflict(f"Cannot revoke a {credential.status.value} credential")

    now = utcnow()
    return replace(
        credential,
        status=CredentialStatus.REVOKED,
        revoked_at=now,
        revocation_reason=reason.strip(),
        updated_at=now,
    )
