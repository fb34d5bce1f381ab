"""Identifiers for stored objects.

These value objects provide type-safe identifiers used throughout the
engine so that bucket names and keys are validated once,
at the edge, and never passed around as unchecked strings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from object_transfer.domain.exceptions import InvalidArgumentError


MIN_BUCKET_LENGTH = 3
MAX_BUCKET_LENGTH = 63
MAX_KEY_BYTES = 1024

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")
_IPV4_RE = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")


def validate_bucket_name(bucket: str) -> None:
    """Check that a bucket name is DNS-safe.

    Raises:
        InvalidArgumentError: If the name is not a valid bucket name.
    """
    if not MIN_BUCKET_LENGTH <= len(bucket) <= MAX_BUCKET_LENGTH:
        raise InvalidArgumentError(
            f"Bucket name must be {MIN_BUCKET_LENGTH}-{MAX_BUCKET_LENGTH} characters: {bucket!r}"
        )
    if not _BUCKET_RE.match(bucket):
        raise InvalidArgumentError(
            f"Bucket name must be lowercase letters, digits, '.' or '-': {bucket!r}"
        )
    if ".." in bucket or ".-" in bucket or "-." in bucket:
        raise InvalidArgumentError(f"Bucket name has invalid label boundaries: {bucket!r}")
    if _IPV4_RE.match(bucket):
        raise InvalidArgumentError(f"Bucket name must not look like an IP address: {bucket!r}")


def validate_object_key(key: str) -> None:
    """Check that an object key is a non-empty, relative UTF-8 path.

    Raises:
        InvalidArgumentError: If the key is not usable.
    """
    if not key:
        raise InvalidArgumentError("Object key cannot be empty")
    if key.startswith("/"):
        raise InvalidArgumentError(f"Object key must not start with '/': {key!r}")
    try:
        encoded = key.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidArgumentError(f"Object key is not valid UTF-8: {key!r}") from exc
    if len(encoded) > MAX_KEY_BYTES:
        raise InvalidArgumentError(
            f"Object key exceeds {MAX_KEY_BYTES} bytes ({len(encoded)} bytes)"
        )


@dataclass(frozen=True, slots=True)
class ObjectReference:
    """Identifies a unique entry in the object store.

    Attributes:
        bucket: DNS-safe bucket name (3-63 characters).
        key: "/"-segmented object key without a leading "/".

    Example:
        >>> ref = ObjectReference("backups", "2024/db.tar")
        >>> ref.path
        '/backups/2024/db.tar'
    """

    bucket: str
    key: str

    def __post_init__(self) -> None:
        """Validate bucket and key."""
        validate_bucket_name(self.bucket)
        validate_object_key(self.key)

    @property
    def path(self) -> str:
        """Path-style resource path (unencoded)."""
        return f"/{self.bucket}/{self.key}"

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"
