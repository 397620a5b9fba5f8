"""
Error taxonomy shared by the workflow modules.

Each error carries the HTTP status it maps to; main.py turns them into
``{"detail": message}`` responses.
"""


class AppError(Exception):
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Missing or invalid fields"


class DuplicatePhone(AppError):
    status_code = 400
    default_message = "Phone number already registered"


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid credentials"


class Forbidden(AppError):
    status_code = 403
    default_message = "Not allowed"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class InvalidTransition(AppError):
    status_code = 409
    default_message = "Invalid status transition"


class PersistenceError(AppError):
    status_code = 500
    default_message = "Internal server error"
