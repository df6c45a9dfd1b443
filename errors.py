"""Exception hierarchy for the Property Finder back-office."""

from typing import Optional


class PropertyFinderError(Exception):
    """Base exception for all back-office errors."""


class ValidationError(PropertyFinderError):
    """Raised when a required field is missing or malformed."""


class AuthError(PropertyFinderError):
    """Raised when the upstream rejects the API key/secret."""


class NotFoundError(PropertyFinderError):
    """Raised when a permit, listing or other record does not exist."""


class DuplicateReferenceError(PropertyFinderError):
    """Raised when a listing reference is already taken."""


class InvalidListingStateError(PropertyFinderError):
    """Raised when a listing is in the wrong state for the operation."""


class ConfigurationError(PropertyFinderError):
    """Raised when account credentials or settings are missing."""


class TransportError(PropertyFinderError):
    """Raised on network failures and timeouts talking to the upstream."""


class UpstreamError(PropertyFinderError):
    """Raised on any other non-2xx response from the upstream API.

    ``remote_id`` is set when a listing was created upstream before the
    failing call, so the caller can record the orphaned remote listing.
    """

    def __init__(self, message: str, status_code: Optional[int] = None,
                 body: Optional[str] = None, remote_id: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.remote_id = remote_id
