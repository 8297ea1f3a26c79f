"""Organization and seat exceptions."""

from fastapi import HTTPException, status


class OrganizationException(HTTPException):
    """Base organization exception."""

    def __init__(self, detail: str = "Organization operation failed", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class OrganizationNotFound(OrganizationException):
    def __init__(self):
        super().__init__(detail="Organization not found", status_code=status.HTTP_404_NOT_FOUND)


class NoActiveSeat(OrganizationException):
    """Raised when the caller holds no active seat in the organization."""

    def __init__(self):
        super().__init__(detail="No active seat in this organization", status_code=status.HTTP_403_FORBIDDEN)


class NotOrganizationAdmin(OrganizationException):
    def __init__(self):
        super().__init__(detail="Organization admin role required", status_code=status.HTTP_403_FORBIDDEN)


class SeatNotFound(OrganizationException):
    def __init__(self):
        super().__init__(detail="Seat not found", status_code=status.HTTP_404_NOT_FOUND)


class NoActiveSubscription(OrganizationException):
    def __init__(self):
        super().__init__(detail="Organization has no active subscription", status_code=status.HTTP_404_NOT_FOUND)


class SeatAlreadyAssigned(OrganizationException):
    def __init__(self):
        super().__init__(detail="Identity already holds an active seat", status_code=status.HTTP_409_CONFLICT)


class SeatLimitReached(OrganizationException):
    """Raised when every seat of the subscription is taken."""

    def __init__(self):
        super().__init__(detail="No seats available on the subscription", status_code=status.HTTP_409_CONFLICT)
