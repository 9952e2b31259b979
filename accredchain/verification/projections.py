"""Public JSON projections of verification results.

These are the only shapes the public verification endpoints expose:
no student wallet, no student email, no verifier IP addresses.
"""

from typing import Any

from accredchain.models import Credential, Institution, VerificationLogEntry
from accredchain.verification.engine import BatchItem, StatsOverview, VerificationResult


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def credential_projection(credential: Credential) -> dict[str, Any]:
    return {
        "tokenId": credential.token_id,
        "credentialType": credential.credential_type.value,
        "courseName": credential.course_name,
        "studentName": credential.student_name,
        "studentId": credential.student_id,
        "grade": credential.grade,
        "issueDate": _iso(credential.issue_date),
        "expiryDate": _iso(credential.expiry_date),
        "status": credential.effective_status.value,
        "documentHash": credential.document_hash,
        "transactionHash": credential.transaction_hash,
    }


def institution_projection(institution: Institution | None) -> dict[str, Any] | None:
    if institution is None:
        return None
    return {
        "name": institution.name,
        "logo": institution.logo,
        "isVerified": institution.is_verified,
        "registrationNumber": institution.registration_number,
        "walletAddress": institution.wallet_address,
    }


def result_envelope(result: VerificationResult) -> dict[str, Any]:
    """``{success, verified, result, data}`` for a single verification."""
    if result.credential is None:
        return {
            "success": False,
            "verified": False,
            "result": result.outcome.value,
            "message": "Credential not found",
            "data": None,
        }
    return {
        "success": True,
        "verified": result.verified,
        "result": result.outcome.value,
        "data": {
            "credential": credential_projection(result.credential),
            "institution": institution_projection(result.institution),
            "verification": {
                "verifiedAt": _iso(result.verified_at),
                "verificationCount": result.verification_count,
            },
        },
    }


def batch_item_projection(item: BatchItem) -> dict[str, Any]:
    body = {
        "identifier": item.identifier,
        "verified": item.verified,
        "result": item.outcome.value,
    }
    if item.credential is not None:
        body.update(
            tokenId=item.credential.token_id,
            studentName=item.credential.student_name,
            courseName=item.credential.course_name,
            institutionName=item.institution_name,
        )
    return body


def log_entry_projection(entry: VerificationLogEntry) -> dict[str, Any]:
    """History entry with the requester IP removed."""
    return {
        "id": entry.id,
        "credentialId": entry.credential_id,
        "tokenId": entry.token_id,
        "result": entry.result.value,
        "verifierWallet": entry.verifier_wallet,
        "verifierInfo": {
            "organization": entry.verifier_organization,
            "purpose": entry.purpose,
        },
        "userAgent": entry.user_agent,
        "timestamp": _iso(entry.timestamp),
    }


def stats_projection(stats: StatsOverview) -> dict[str, Any]:
    return {
        "totalVerifications": stats.total,
        "todayVerifications": stats.today,
        "weeklyStats": [
            {"date": d.day.isoformat(), "count": d.count, "validCount": d.valid_count}
            for d in stats.weekly
        ],
    }
