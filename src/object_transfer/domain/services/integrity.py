"""Integrity checks for reassembled objects."""

from __future__ import annotations

import base64
import binascii
import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass

from object_transfer.domain.exceptions import IntegrityError


_MD5_ETAG_RE = re.compile(r"^[0-9a-fA-F]{32}$")

ChunkReader = Callable[[int, int], bytes]


def normalize_etag(etag: str) -> str:
    """Strip surrounding quotes and weak-validator prefix from an ETag."""
    value = etag.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"')


def is_md5_etag(etag: str) -> bool:
    """True for a plain MD5 ETag, as produced by single-part uploads."""
    return bool(_MD5_ETAG_RE.match(normalize_etag(etag)))


def decode_checksum(value: str) -> str:
    """Return a checksum header value as lowercase hex.

    ``x-amz-checksum-sha256`` carries base64; hex input is accepted as is.
    """
    value = value.strip()
    if re.fullmatch(r"[0-9a-fA-F]{64}", value):
        return value.lower()
    try:
        return base64.b64decode(value, validate=True).hex()
    except (binascii.Error, ValueError) as exc:
        raise IntegrityError("sha256", value, None, f"Unreadable checksum {value!r}") from exc


@dataclass(frozen=True, slots=True)
class IntegrityReport:
    """What was verified for a reassembled object."""

    expected_size: int
    actual_size: int
    md5_checked: bool = False
    sha256_checked: bool = False
    md5: str | None = None
    sha256: str | None = None


class IntegrityVerifier:
    """Verifies size and whole-object digests after a download."""

    def __init__(self, chunk_size: int = 1024 * 1024) -> None:
        self.chunk_size = chunk_size

    def verify_size(self, expected: int, actual: int) -> None:
        if expected != actual:
            raise IntegrityError("size", expected, actual)

    def verify_object(
        self,
        expected_size: int,
        actual_size: int,
        read_at: ChunkReader,
        etag: str | None = None,
        checksum_sha256: str | None = None,
    ) -> IntegrityReport:
        """Check byte count, then any digest the store advertised.

        Args:
            expected_size: Size reported by the store.
            actual_size: Bytes written to the destination.
            read_at: Reads ``length`` bytes at ``offset`` from the destination.
            etag: Object ETag; compared only when it is a plain MD5.
            checksum_sha256: Whole-object SHA-256 (base64 or hex), if any.

        Raises:
            IntegrityError: On the first mismatch.
        """
        self.verify_size(expected_size, actual_size)

        check_md5 = etag is not None and is_md5_etag(etag)
        check_sha = bool(checksum_sha256)
        if not check_md5 and not check_sha:
            return IntegrityReport(expected_size, actual_size)

        md5 = hashlib.md5(usedforsecurity=False)
        sha = hashlib.sha256()
        offset = 0
        while offset < actual_size:
            chunk = read_at(offset, min(self.chunk_size, actual_size - offset))
            if not chunk:
                raise IntegrityError("size", actual_size, offset, "Destination shorter than written")
            md5.update(chunk)
            sha.update(chunk)
            offset += len(chunk)

        md5_hex = md5.hexdigest()
        sha_hex = sha.hexdigest()
        if check_md5:
            expected_md5 = normalize_etag(etag).lower()
            if expected_md5 != md5_hex:
                raise IntegrityError("md5", expected_md5, md5_hex)
        if check_sha:
            expected_sha = decode_checksum(checksum_sha256)
            if expected_sha != sha_hex:
                raise IntegrityError("sha256", expected_sha, sha_hex)

        return IntegrityReport(
            expected_size=expected_size,
            actual_size=actual_size,
            md5_checked=check_md5,
            sha256_checked=check_sha,
            md5=md5_hex,
            sha256=sha_hex,
        )
