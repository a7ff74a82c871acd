"""
Error taxonomy shared by the matching, chat and notification services.

Every error carries the HTTP status the API answers with; the handler in
app.main renders them as {"detail": message} like FastAPI's HTTPException.
"""


class LostFoundError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LostFoundError):
    """Missing or malformed report/message input. Never reaches storage."""
    status_code = 400


class AuthRequiredError(LostFoundError):
    status_code = 401


class ForbiddenError(LostFoundError):
    status_code = 403


class NotFoundError(LostFoundError):
    status_code = 404


class InvalidRoomKey(LostFoundError):
    status_code = 400


class InvalidStatusTransition(LostFoundError):
    status_code = 409


class UploadError(LostFoundError):
    """Object storage rejected a photo; raised before any database write."""
    status_code = 502


class PersistenceError(LostFoundError):
    status_code = 500
