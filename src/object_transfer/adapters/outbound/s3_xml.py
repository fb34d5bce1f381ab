"""Strict codec for the S3 multipart XML documents.

Each parser accepts exactly one document shape and raises
``MalformedResponseError`` for anything else. Namespaces are ignored when
matching element names since S3-compatible stores differ in whether they
qualify their responses.
"""

from __future__ import annotations

from collections.abc import Iterable
from xml.etree import ElementTree as ET

from object_transfer.domain.exceptions import InvalidArgumentError, MalformedResponseError
from object_transfer.domain.services.integrity import normalize_etag
from object_transfer.ports.outbound.object_store_client import (
    CompletedPart,
    CompleteResult,
    ErrorResult,
    InitiateResult,
)


S3_NAMESPACE = "http://s3.amazonaws.com/doc/2006-03-01/"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse(body: bytes) -> ET.Element:
    if not body or not body.strip():
        raise MalformedResponseError("Empty XML response body")
    try:
        return ET.fromstring(body)
    except ET.ParseError as exc:
        raise MalformedResponseError(f"Unparseable XML response: {exc}") from exc


def _text(root: ET.Element, name: str) -> str | None:
    for child in root:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return None


def _require(root: ET.Element, name: str) -> str:
    value = _text(root, name)
    if not value:
        raise MalformedResponseError(f"<{_local(root.tag)}> is missing <{name}>")
    return value


def _expect_root(root: ET.Element, name: str) -> None:
    if _local(root.tag) != name:
        raise MalformedResponseError(f"Expected <{name}>, got <{_local(root.tag)}>")


def parse_initiate(body: bytes, bucket: str, key: str) -> InitiateResult:
    """Parse ``InitiateMultipartUploadResult``.

    ``bucket`` and ``key`` fill in fields some stores leave out.
    """
    root = _parse(body)
    _expect_root(root, "InitiateMultipartUploadResult")
    return InitiateResult(
        bucket=_text(root, "Bucket") or bucket,
        key=_text(root, "Key") or key,
        upload_id=_require(root, "UploadId"),
    )


def parse_complete(body: bytes, bucket: str, key: str) -> CompleteResult | ErrorResult:
    """Parse the body of a complete-multipart-upload response.

    S3 may answer 200 and still report a failure in an ``<Error>`` body,
    so both shapes are accepted here and told apart by the result type.
    """
    root = _parse(body)
    if _local(root.tag) == "Error":
        return _error_from(root, status_code=200)
    _expect_root(root, "CompleteMultipartUploadResult")
    return CompleteResult(
        bucket=_text(root, "Bucket") or bucket,
        key=_text(root, "Key") or key,
        etag=normalize_etag(_require(root, "ETag")),
        location=_text(root, "Location"),
    )


def parse_error(body: bytes, status_code: int, reason: str = "") -> ErrorResult:
    """Parse an ``<Error>`` document.

    Bodies that are empty or not an S3 error document (HEAD responses,
    proxy error pages) yield an ``ErrorResult`` derived from the status.
    """
    fallback = ErrorResult(
        code=reason.replace(" ", "") or f"HTTP{status_code}",
        message=reason or f"HTTP {status_code}",
        status_code=status_code,
    )
    if not body or not body.strip():
        return fallback
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return fallback
    if _local(root.tag) != "Error":
        return fallback
    return _error_from(root, status_code)


def _error_from(root: ET.Element, status_code: int) -> ErrorResult:
    return ErrorResult(
        code=_text(root, "Code") or f"HTTP{status_code}",
        message=_text(root, "Message") or "",
        status_code=status_code,
        resource=_text(root, "Resource"),
        request_id=_text(root, "RequestId"),
    )


def build_complete_body(parts: Iterable[CompletedPart]) -> bytes:
    """Serialize a ``CompleteMultipartUpload`` request.

    Parts are written in ascending part number order, so the same set of
    parts always produces the same bytes.

    Raises:
        InvalidArgumentError: On an empty list or a repeated part number.
    """
    ordered = sorted(parts, key=lambda p: p.part_number)
    if not ordered:
        raise InvalidArgumentError("A completion request needs at least one part")
    numbers = [p.part_number for p in ordered]
    if len(set(numbers)) != len(numbers):
        raise InvalidArgumentError(f"Duplicate part numbers in completion: {numbers}")

    root = ET.Element("CompleteMultipartUpload", {"xmlns": S3_NAMESPACE})
    for part in ordered:
        element = ET.SubElement(root, "Part")
        ET.SubElement(element, "PartNumber").text = str(part.part_number)
        ET.SubElement(element, "ETag").text = f'"{normalize_etag(part.etag)}"'
    return ET.tostring(root, encoding="utf-8")
