"""Organization dependencies for FastAPI."""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from seatpass.database.dependencies import get_db_session
from seatpass.features.identity.dependencies import get_identity_assertion
from seatpass.features.identity.schemas import IdentityAssertion

from .exceptions import NotOrganizationAdmin
from .service import EntitlementService

ADMIN_ROLES = frozenset({"admin", "org:admin"})


async def require_org_admin(
    org_id: str,
    assertion: IdentityAssertion = Depends(get_identity_assertion),
    session: AsyncSession = Depends(get_db_session),
) -> IdentityAssertion:
    """Allow organization admins only.

    Admin comes from the identity provider's membership claims or from an
    active admin seat.
    """
    if assertion.role_in(org_id) in ADMIN_ROLES:
        return assertion
    if await EntitlementService.is_org_admin(session, org_id, assertion.subject_id):
        return assertion
    raise NotOrganizationAdmin()
