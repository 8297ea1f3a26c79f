"""Exceptions shared by every feature."""

from fastapi import HTTPException, status


class ConfigurationException(HTTPException):
    """Raised when a deployment secret or collaborator setting is missing."""

    def __init__(self, setting: str):
        self.setting = setting
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")


class CollaboratorException(HTTPException):
    """Raised when the credential store or identity provider call fails."""

    def __init__(self, collaborator: str = "store", timed_out: bool = False):
        self.collaborator = collaborator
        self.timed_out = timed_out
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service temporarily unavailable")


class ConflictException(HTTPException):
    """Raised when a write collides with the current state of a record."""

    def __init__(self, detail: str = "Request conflicts with current state"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class RequestValidationException(HTTPException):
    """Raised when input passes schema validation but is still malformed."""

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=detail)
