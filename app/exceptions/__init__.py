"""Custom exceptions for the CRM sales ledger."""

class LedgerError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class ValidationError(LedgerError):
    """
    Raised for malformed input. Carries every field-level violation,
    not just the first one found.
    """
    def __init__(self, errors, message="Validation errors"):
        if isinstance(errors, str):
            errors = [{'field': None, 'message': errors}]
        self.errors = list(errors)
        super().__init__(message, 400, {'errors': self.errors})

    @classmethod
    def single(cls, field, message):
        return cls([{'field': field, 'message': message}], message=message)

class NotFoundError(LedgerError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class ConflictError(LedgerError):
    """Raised when a concurrent modification wins the race for a sale."""
    def __init__(self, message="The sale was modified concurrently. Reload its balance and retry.", payload=None):
        super().__init__(message, 409, payload)

class StorageError(LedgerError):
    """Raised when the persistence layer fails."""
    def __init__(self, message="Storage failure", payload=None):
        super().__init__(message, 500, payload)

class UnauthorizedError(LedgerError):
    """Raised when the request carries no valid credentials."""
    def __init__(self, message="Unauthorized"):
        super().__init__(message, 401)
