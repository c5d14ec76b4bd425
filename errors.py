"""
Typed application errors.

Storage and services raise these; main.py maps each class to its HTTP status,
so no caller ever has to inspect an error message to decide the response code.
"""


class AppError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(AppError):
    status_code = 401
    default_message = "Not authenticated"


class PermissionDeniedError(AppError):
    status_code = 403
    default_message = "Forbidden"


class AccountSuspendedError(PermissionDeniedError):
    default_message = "Account suspended. Please contact the front desk."


class MembershipInactiveError(PermissionDeniedError):
    default_message = "No active membership. Please renew your membership."


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    status_code = 409
    default_message = "Conflict"


class QrAlreadyUsedError(ConflictError):
    default_message = "QR code already used"


class ExternalServiceError(AppError):
    status_code = 502
    default_message = "Upstream service error"


class ServiceUnavailableError(AppError):
    status_code = 503
    default_message = "Service temporarily unavailable"
