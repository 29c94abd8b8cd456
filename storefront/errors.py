"""Exceptions raised by the storefront services.

Each carries the HTTP status and machine-readable code the JSON API answers
with. Page views catch `StoreError` and flash the message instead.
"""


class StoreError(Exception):
    status_code = 500
    code = "SERVER_ERROR"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {"status": 0, "message": self.message, "code": self.code}


class ValidationError(StoreError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message, field=None, errors=None):
        super().__init__(message)
        self.field = field
        self.errors = errors or {}

    def to_dict(self):
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        if self.errors:
            body["errors"] = self.errors
        return body


class AuthError(StoreError):
    status_code = 401
    code = "INVALID_CREDENTIALS"


class ForbiddenError(StoreError):
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(StoreError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(StoreError):
    status_code = 409
    code = "DUPLICATE_ERROR"


class RateLimitError(StoreError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"


class ConfigurationError(StoreError):
    status_code = 500
    code = "MISSING_CREDENTIALS"


class ConversionAPIError(StoreError):
    """The Conversion API answered with a non-2xx status."""

    code = "CONVERSION_API_ERROR"

    def __init__(self, message, status_code=502, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    def to_dict(self):
        body = super().to_dict()
        if self.details is not None:
            body["details"] = self.details
        return body
