"""Identity assertion issued by the external identity provider."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class IdentityAssertion:
    subject_id: str
    session_id: str | None
    expiry: datetime
    email: str | None = None
    # Active organization of the provider session
    org_id: str | None = None
    org_role: str | None = None
    # Every membership the provider listed, org id -> role
    organizations: dict[str, str] = field(default_factory=dict)

    def role_in(self, org_id: str) -> str | None:
        if self.org_id == org_id and self.org_role:
            return self.org_role
        return self.organizations.get(org_id)
