"""User-related exceptions."""

from fastapi import HTTPException, status


class UserException(HTTPException):
    """Base user exception."""

    def __init__(self, detail: str = "User operation failed", status_code: int = status.HTTP_400_BAD_REQUEST):
        super().__init__(status_code=status_code, detail=detail)


class UserNotFound(UserException):
    """Raised when no user record exists for an identity."""

    def __init__(self):
        super().__init__(detail="User not found", status_code=status.HTTP_404_NOT_FOUND)


class InsufficientCredits(UserException):
    """Raised when a deduction would take the balance below zero."""

    def __init__(self):
        super().__init__(detail="Insufficient credits", status_code=status.HTTP_402_PAYMENT_REQUIRED)


class InvalidCreditAmount(UserException):
    """Raised when a credit grant or deduction is not a positive integer."""

    def __init__(self):
        super().__init__(
            detail="Credit amount must be a positive integer", status_code=status.HTTP_422_UNPROCESSABLE_CONTENT
        )
