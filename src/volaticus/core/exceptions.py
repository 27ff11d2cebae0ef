"""
Error taxonomy shared by the catalog, storage and service layers.

Every error carries a machine readable ``code``, the HTTP status the
transport should answer with, and a short message that is safe to show to
clients. Internal causes are chained with ``raise ... from`` and logged, never
rendered.
"""

from typing import Optional


class VolaticusError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    message = "An internal error occurred"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InvalidInput(VolaticusError):
    code = "INVALID_INPUT"
    status_code = 400
    message = "Invalid input"


class InvalidStyle(InvalidInput):
    message = "Invalid URL type"


class NoFile(InvalidInput):
    message = "No file provided"


class ReadError(InvalidInput):
    message = "Error reading file"


class NotFound(VolaticusError):
    code = "NOT_FOUND"
    status_code = 404
    message = "Not found"


class Expired(VolaticusError):
    code = "EXPIRED"
    status_code = 410
    message = "Content has expired"


class Unauthorized(VolaticusError):
    code = "UNAUTHORIZED"
    status_code = 401
    message = "Unauthorized access"


class Forbidden(Unauthorized):
    status_code = 403
    message = "You do not own this resource"


class Conflict(VolaticusError):
    code = "ALREADY_EXISTS"
    status_code = 409
    message = "Resource already exists"


class DuplicateReference(Conflict):
    message = "Short reference already exists"


class CollisionExhausted(Conflict):
    message = "Could not generate a unique reference"


class PayloadTooLarge(VolaticusError):
    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "File too large"


class QuotaExceeded(VolaticusError):
    code = "QUOTA_EXCEEDED"
    status_code = 413
    message = "Storage quota exceeded"


class StorageError(VolaticusError):
    code = "STORAGE_ERROR"
    status_code = 502
    message = "Storage backend error"


class StorageWriteFailed(StorageError):
    message = "Failed to store file"


class CatalogError(VolaticusError):
    code = "CATALOG_ERROR"
    status_code = 500
    message = "Database error"


class EntropyError(VolaticusError):
    code = "ENTROPY_ERROR"
    status_code = 500
    message = "Random source unavailable"


class Internal(VolaticusError):
    pass
