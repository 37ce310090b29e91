"""Image handling for the reference library: header sniffing, validation,
content-addressed storage, and downloads."""

from .validator import ImageValidation, sniff_dimensions, validate_image
from .store import BlobStore, ContentAddressedStore, InvalidImageError, LocalBlobStore, StoredObject, content_digest

__all__ = [
    "ImageValidation",
    "sniff_dimensions",
    "validate_image",
    "BlobStore",
    "ContentAddressedStore",
    "InvalidImageError",
    "LocalBlobStore",
    "StoredObject",
    "content_digest",
]
