"""Error taxonomy for the order workflow.

Every error carries the HTTP status it maps to; the application-level
exception handler in ``app.main`` renders them as ``{"detail": message}``.
"""


class OrderServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderServiceError):
    status_code = 400


class PriceMismatchError(ValidationError):
    pass


class AuthError(OrderServiceError):
    status_code = 401


class ForbiddenError(AuthError):
    status_code = 403


class NotFoundError(OrderServiceError):
    status_code = 404


class ConflictError(OrderServiceError):
    status_code = 409


class InsufficientStockError(ConflictError):
    pass


class UpstreamError(OrderServiceError):
    status_code = 500


class PersistenceError(OrderServiceError):
    status_code = 500
