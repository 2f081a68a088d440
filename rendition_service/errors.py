"""Exception types shared by the pipeline and the HTTP layer."""

from __future__ import annotations


class RenditionServiceError(Exception):
    """Base class for service errors."""


class ValidationError(RenditionServiceError):
    """Request-level problem reported back to the caller as a 4xx."""

    status_code = 400


class EmptyBatchError(ValidationError):
    """No images were submitted."""


class BatchTooLargeError(ValidationError):
    """More images than the configured batch cap."""


class UnsupportedMediaTypeError(ValidationError):
    status_code = 415


class FileTooLargeError(ValidationError):
    status_code = 413


class EmptyListError(ValidationError):
    """Bulk download requested with no identifiers."""


class CodecError(RenditionServiceError):
    """Raised by the codec adapter."""


class DecodeError(CodecError):
    """Source bytes could not be parsed as an image."""


class EncodeError(CodecError):
    """A rendition could not be produced from a decoded image."""


class StorageError(RenditionServiceError):
    """The output store could not be read or written."""


class InvalidKeyError(StorageError):
    """Key is not a flat output filename."""
