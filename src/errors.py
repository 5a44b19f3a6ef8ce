"""Exception hierarchy shared by the device engine and the HTTP layer.

Each class maps to one HTTP status in ``src.main``:

    ValidationError     → 400  (unknown device type, malformed date or payload)
    AuthenticationError → 401  (no caller identity on the request)
    NotFoundError       → 404  (device or record absent for the owner)
    UpstreamError       → 500  (vendor API / text generation failed; normally
                                absorbed into a fallback before reaching a route)
    NoActivityDataError → 500  (vendor answered with nothing for the day)
    PersistenceError    → 500  (repository operation failed; never faked)
    CredentialError     → 500  (token ciphertext could not be decrypted)
"""

from __future__ import annotations


class KaloriError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(KaloriError):
    status_code = 400


class AuthenticationError(KaloriError):
    status_code = 401


class NotFoundError(KaloriError):
    status_code = 404


class UpstreamError(KaloriError):
    status_code = 500


class PersistenceError(KaloriError):
    status_code = 500


class CredentialError(KaloriError):
    status_code = 500


class NoActivityDataError(UpstreamError):
    """The vendor answered but holds no activity for the requested day."""
