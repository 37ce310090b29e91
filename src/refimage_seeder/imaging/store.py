"""Content-addressed persistence of validated image bytes."""

from __future__ import annotations

import hashlib
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config import ValidatorLimits
from ..logging import get_logger
from .validator import ImageValidation, validate_image

LOG = get_logger("image-store")


class InvalidImageError(ValueError):
    """Raised when bytes handed to the store fail validation."""


@dataclass
class StoredObject:
    sha256: str
    storage_path: str
    file_size: int
    width: int
    height: int
    content_type: str


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sanitize_segment(value: str) -> str:
    s = re.sub(r"[^a-z0-9-]", "_", (value or "").lower())
    s = re.sub(r"_+", "_", s).strip("_")
    return s or "unknown"


class BlobStore(ABC):
    """Where image bytes end up. Writes must be idempotent per path."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def put(self, path: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    def get(self, path: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove an object; missing objects are not an error."""


class LocalBlobStore(BlobStore):
    """Filesystem blob area (default: var/library/blobs under the project root)."""

    def __init__(self, root: str) -> None:
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _full(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise ValueError(f"Blob path escapes store root: {path!r}")
        return full

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._full(path))

    def put(self, path: str, data: bytes, content_type: str) -> None:
        full = self._full(path)
        if os.path.isfile(full):
            return
        folder = os.path.dirname(full)
        os.makedirs(folder, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=folder, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, full)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, path: str) -> bytes:
        with open(self._full(path), "rb") as fh:
            return fh.read()

    def delete(self, path: str) -> None:
        try:
            os.unlink(self._full(path))
        except FileNotFoundError:
            pass


class ContentAddressedStore:
    """Hash, place and persist validated image bytes.

    Paths are `<category>/<brand>/<family_id>/<sha256>.<ext>`, so storing the
    same bytes twice for a family resolves to the same object. Callers check
    the image catalog for the hash first; the blob store itself never
    overwrites an existing object.
    """

    def __init__(self, blobs: BlobStore, limits: Optional[ValidatorLimits] = None) -> None:
        self.blobs = blobs
        self.limits = limits or ValidatorLimits()

    @staticmethod
    def storage_path(category: str, brand: str, family_id: int, sha256: str, extension: str) -> str:
        return f"{sanitize_segment(category)}/{sanitize_segment(brand)}/{int(family_id)}/{sha256}.{extension}"

    def store(
        self,
        data: bytes,
        category: str,
        brand: str,
        family: str,
        family_id: int,
        *,
        validation: Optional[ImageValidation] = None,
    ) -> StoredObject:
        if validation is None:
            validation = validate_image(data, self.limits)
        if not validation.valid:
            raise InvalidImageError(validation.error or "Validation failed")

        sha256 = content_digest(data)
        path = self.storage_path(category, brand, family_id, sha256, validation.extension)
        if self.blobs.exists(path):
            LOG.debug(f"Blob already present for {brand} {family}: {path}")
        else:
            self.blobs.put(path, data, validation.content_type or "application/octet-stream")
            LOG.debug(f"Stored {len(data)} bytes at {path}")
        return StoredObject(
            sha256=sha256,
            storage_path=path,
            file_size=len(data),
            width=int(validation.width or 0),
            height=int(validation.height or 0),
            content_type=validation.content_type or "application/octet-stream",
        )

    def discard(self, path: str) -> None:
        self.blobs.delete(path)
        LOG.debug(f"Discarded blob {path}")
