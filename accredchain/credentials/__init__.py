"""Credential lifecycle: state machine and orchestration service."""

from accredchain.credentials.lifecycle import TRANSITIONS, apply_issue, apply_revoke, can_transition

__all__ = [
    "TRANSITIONS",
    "apply_issue",
    "apply_revoke",
    "can_transition",
]
