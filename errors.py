# errors.py
"""
Error taxonomy for the API. Every error is an HTTPException so Flask's
error handlers can render it with the right status code.
"""

from werkzeug.exceptions import HTTPException


class ApiError(HTTPException):
    code = 500
    description = "Internal server error"


class ValidationFailure(ApiError):
    code = 400
    description = "Invalid request"


class Unauthorized(ApiError):
    code = 401
    description = "Unauthorized"


class InvalidCredentials(ApiError):
    code = 401
    description = "Invalid credentials"


class Forbidden(ApiError):
    code = 403
    description = "Forbidden"


class NotFound(ApiError):
    code = 404
    description = "Not found"


class Conflict(ApiError):
    code = 409
    description = "Conflict"


class BackendUnavailable(ApiError):
    code = 503
    description = "Backend unavailable"
