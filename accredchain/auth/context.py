"""Authentication context passed explicitly into service calls."""

from dataclasses import dataclass

from accredchain.models import Role


@dataclass(frozen=True)
class AuthContext:
    """The authenticated caller of a service operation."""

    identity_id: str
    role: Role
    wallet_address: str | None = None
    session_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def principal(self) -> str:
        """Identifier used in audit events."""
        return self.identity_id
