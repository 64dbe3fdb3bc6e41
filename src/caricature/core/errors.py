"""Error kinds raised by the caricature preview service.

Every error that can reach an HTTP handler derives from
:class:`CaricatureError` and carries the status code it maps to.  The API
layer installs a single exception handler that turns any of these into a
``{"error": message}`` JSON body, so route functions never build error
responses themselves.

Hierarchy
---------
::

    CaricatureError
    ├── ValidationError        400  missing or malformed request data
    ├── NotFoundError          404  unknown project id / missing artifact
    ├── DecodeError            400  bytes are not a decodable image
    └── VendorError            502  external call failed
        ├── RateLimitError          vendor answered 429 (retryable)
        └── EmptyResultError        vendor returned no usable output

    ConfigError                     fatal, raised before the server starts
"""

from __future__ import annotations


class CaricatureError(Exception):
    """Base class for request-level errors.

    Attributes:
        message: Human readable description returned to the caller.
        status_code: HTTP status the API layer responds with.
    """

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CaricatureError):
    """A required request field is missing or malformed."""

    status_code = 400


class NotFoundError(CaricatureError):
    """The requested project (or one of its artifacts) does not exist."""

    status_code = 404


class DecodeError(CaricatureError):
    """Input bytes could not be decoded as an image."""

    status_code = 400


class VendorError(CaricatureError):
    """An external generation, upscale or storage call failed."""

    status_code = 502


class RateLimitError(VendorError):
    """The vendor rejected the call with a rate-limit response.

    This is the only error the retry policy in :mod:`caricature.core.retry`
    recovers from.
    """


class EmptyResultError(VendorError):
    """The vendor call succeeded but produced no output."""


class ConfigError(Exception):
    """Mandatory configuration is missing.  Raised at startup only."""
