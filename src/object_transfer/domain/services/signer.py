"""AWS Signature Version 4 request signing.

Builds the canonical request, the string to sign and the HMAC-SHA256
signature chained through the date, region, service and signing keys.
Two modes are supported:

- header signing, which adds an ``Authorization`` header, and
- presigning, which moves the credential, date, expiry and signed header
  list into the query string and returns a complete URL.

Everything here is pure string computation. The clock is injected so
signatures are reproducible in tests.
"""

from __future__ import annotations

import hashlib
import hmac
import urllib.parse
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from object_transfer.domain.exceptions import InvalidArgumentError
from object_transfer.domain.value_objects.credentials import Credentials


ALGORITHM = "AWS4-HMAC-SHA256"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = hashlib.sha256(b"").hexdigest()
MAX_PRESIGN_EXPIRY_SECONDS = 7 * 24 * 60 * 60

_AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
_UNRESERVED = frozenset(
    b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~"
)


# ---------------------------------------------------------------------------
# Canonical form
# ---------------------------------------------------------------------------


def uri_encode(value: str, *, encode_slash: bool = True) -> str:
    """Percent-encode a value with the SigV4 encoding table.

    Unreserved characters (``A-Z a-z 0-9 - _ . ~``) are kept, every other
    UTF-8 byte becomes ``%XX`` with uppercase hex. ``/`` is kept when
    ``encode_slash`` is False.
    """
    out: list[str] = []
    for byte in value.encode("utf-8"):
        if byte in _UNRESERVED or (byte == 0x2F and not encode_slash):
            out.append(chr(byte))
        else:
            out.append(f"%{byte:02X}")
    return "".join(out)


def canonical_uri(path: str) -> str:
    """Canonical URI for an unencoded S3 path (single encoding)."""
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    return uri_encode(path, encode_slash=False)


def canonical_query(params: Mapping[str, str]) -> str:
    """Encode and sort query parameters by name, then value.

    A flag parameter such as ``uploads`` is given as an empty string and
    renders as ``uploads=``.
    """
    encoded = sorted((uri_encode(k), uri_encode(str(v))) for k, v in params.items())
    return "&".join(f"{k}={v}" for k, v in encoded)


def canonical_headers(headers: Mapping[str, str]) -> tuple[str, str]:
    """Return the canonical header block and the signed header list.

    Names are lower-cased and sorted; values are trimmed with inner runs
    of whitespace collapsed to a single space.
    """
    merged: dict[str, list[str]] = {}
    for name, value in headers.items():
        merged.setdefault(name.strip().lower(), []).append(" ".join(str(value).split()))
    names = sorted(merged)
    block = "".join(f"{name}:{','.join(merged[name])}\n" for name in names)
    return block, ";".join(names)


def format_amz_date(timestamp: datetime) -> str:
    """Format a timestamp as ``YYYYMMDDTHHMMSSZ``; naive values are UTC."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).strftime(_AMZ_DATE_FORMAT)


def credential_scope(date_stamp: str, region: str, service: str) -> str:
    return f"{date_stamp}/{region}/{service}/aws4_request"


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_key: str, date_stamp: str, region: str, service: str) -> bytes:
    """Chain the four derived keys: date, region, service, signing."""
    k_date = _hmac(f"AWS4{secret_key}".encode("utf-8"), date_stamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, service)
    return _hmac(k_service, "aws4_request")


def build_canonical_request(
    method: str,
    uri: str,
    query: str,
    header_block: str,
    signed_headers: str,
    payload_hash: str,
) -> str:
    return "\n".join([method, uri, query, header_block, signed_headers, payload_hash])


def build_string_to_sign(amz_date: str, scope: str, canonical_request: str) -> str:
    digest = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, amz_date, scope, digest])


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpRequest:
    """An unsigned request.

    Attributes:
        method: HTTP verb, any case.
        path: Unencoded resource path, e.g. ``/bucket/key``.
        query: Query parameters; flags use an empty value.
        headers: Headers to send and sign. Must include ``host``.
        payload_hash: Hex SHA-256 of the body or ``UNSIGNED-PAYLOAD``.
    """

    method: str
    path: str
    query: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    payload_hash: str = EMPTY_SHA256


@dataclass(frozen=True)
class SignedRequest:
    """A request ready to send. Built per HTTP call and then discarded."""

    method: str
    canonical_uri: str
    canonical_query: str
    headers: dict[str, str]
    payload_hash: str
    signed_headers: str
    signature: str
    credential_scope: str
    canonical_request: str = field(repr=False)
    string_to_sign: str = field(repr=False)

    @property
    def target(self) -> str:
        """Encoded path plus query, suitable for the request line."""
        if self.canonical_query:
            return f"{self.canonical_uri}?{self.canonical_query}"
        return self.canonical_uri

    @property
    def authorization(self) -> str:
        return self.headers["Authorization"]


def _host_of(headers: Mapping[str, str]) -> str | None:
    for name, value in headers.items():
        if name.lower() == "host":
            return value
    return None


def sign_request(
    request: HttpRequest,
    credentials: Credentials,
    timestamp: datetime,
    *,
    content_sha256_header: bool = True,
) -> SignedRequest:
    """Sign a request with an ``Authorization`` header.

    Deterministic for identical inputs.

    Args:
        request: Request to sign.
        credentials: Signing credentials.
        timestamp: Signing time.
        content_sha256_header: Add ``x-amz-content-sha256``, which S3
            requires. Generic SigV4 services do not.

    Returns:
        The signed request.

    Raises:
        InvalidArgumentError: If credentials are empty or ``host`` is missing.
    """
    credentials.validate()
    if not _host_of(request.headers):
        raise InvalidArgumentError("Request must carry a host header")

    amz_date = format_amz_date(timestamp)
    scope = credential_scope(amz_date[:8], credentials.region, credentials.service)

    headers = {k: str(v) for k, v in request.headers.items()}
    headers["x-amz-date"] = amz_date
    if content_sha256_header:
        headers["x-amz-content-sha256"] = request.payload_hash
    if credentials.session_token:
        headers["x-amz-security-token"] = credentials.session_token

    method = request.method.upper()
    uri = canonical_uri(request.path)
    query = canonical_query(request.query)
    header_block, signed_headers = canonical_headers(headers)
    creq = build_canonical_request(
        method, uri, query, header_block, signed_headers, request.payload_hash
    )
    sts = build_string_to_sign(amz_date, scope, creq)
    key = derive_signing_key(
        credentials.secret_key, amz_date[:8], credentials.region, credentials.service
    )
    signature = hmac.new(key, sts.encode("utf-8"), hashlib.sha256).hexdigest()

    headers["Authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key}/{scope}, "
        f"SignedHeaders={signed_headers}, Signature={signature}"
    )
    return SignedRequest(
        method=method,
        canonical_uri=uri,
        canonical_query=query,
        headers=headers,
        payload_hash=request.payload_hash,
        signed_headers=signed_headers,
        signature=signature,
        credential_scope=scope,
        canonical_request=creq,
        string_to_sign=sts,
    )


def presign_url(
    method: str,
    host: str,
    path: str,
    credentials: Credentials,
    timestamp: datetime,
    expires_in: int,
    *,
    scheme: str = "https",
    query: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    max_expiry: int = MAX_PRESIGN_EXPIRY_SECONDS,
) -> str:
    """Build a presigned URL. No request is executed.

    Args:
        method: HTTP verb the URL authorizes.
        host: Host (and port) the URL targets.
        path: Unencoded resource path.
        credentials: Signing credentials.
        timestamp: Signing time; the URL is valid from here.
        expires_in: Validity in seconds, within ``[1, max_expiry]``.
        scheme: ``https`` or ``http``.
        query: Extra query parameters to sign.
        headers: Extra headers the caller must send; they are signed.
        max_expiry: Upper bound for ``expires_in``.

    Returns:
        The fully qualified URL.

    Raises:
        InvalidArgumentError: On empty credentials or expiry out of range.
    """
    credentials.validate()
    if isinstance(expires_in, bool) or not 1 <= expires_in <= max_expiry:
        raise InvalidArgumentError(
            f"Presign expiry must be within [1, {max_expiry}] seconds, got {expires_in}"
        )

    amz_date = format_amz_date(timestamp)
    scope = credential_scope(amz_date[:8], credentials.region, credentials.service)
    signed_header_map = {"host": host, **(headers or {})}
    header_block, signed_headers = canonical_headers(signed_header_map)

    params = dict(query or {})
    params.update(
        {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{credentials.access_key}/{scope}",
            "X-Amz-Date": amz_date,
            "X-Amz-Expires": str(expires_in),
            "X-Amz-SignedHeaders": signed_headers,
        }
    )
    if credentials.session_token:
        params["X-Amz-Security-Token"] = credentials.session_token

    uri = canonical_uri(path)
    query_string = canonical_query(params)
    creq = build_canonical_request(
        method.upper(), uri, query_string, header_block, signed_headers, UNSIGNED_PAYLOAD
    )
    sts = build_string_to_sign(amz_date, scope, creq)
    key = derive_signing_key(
        credentials.secret_key, amz_date[:8], credentials.region, credentials.service
    )
    signature = hmac.new(key, sts.encode("utf-8"), hashlib.sha256).hexdigest()
    return f"{scheme}://{host}{uri}?{query_string}&X-Amz-Signature={signature}"


# ---------------------------------------------------------------------------
# Signer bound to credentials and a clock
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RequestSigner:
    """Signs requests with fixed credentials and an injectable clock."""

    def __init__(
        self,
        credentials: Credentials,
        clock: Callable[[], datetime] = utc_now,
        max_presign_expiry: int = MAX_PRESIGN_EXPIRY_SECONDS,
        content_sha256_header: bool = True,
    ) -> None:
        credentials.validate()
        self.credentials = credentials
        self.clock = clock
        self.max_presign_expiry = max_presign_expiry
        self.content_sha256_header = content_sha256_header

    def sign(self, request: HttpRequest, timestamp: datetime | None = None) -> SignedRequest:
        return sign_request(
            request,
            self.credentials,
            timestamp or self.clock(),
            content_sha256_header=self.content_sha256_header,
        )

    def presign(
        self,
        method: str,
        host: str,
        path: str,
        expires_in: int,
        *,
        scheme: str = "https",
        query: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timestamp: datetime | None = None,
    ) -> str:
        return presign_url(
            method,
            host,
            path,
            self.credentials,
            timestamp or self.clock(),
            expires_in,
            scheme=scheme,
            query=query,
            headers=headers,
            max_expiry=self.max_presign_expiry,
        )


# ---------------------------------------------------------------------------
# Presigned URL inspection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PresignedUrl:
    """Fields embedded in a presigned URL."""

    url: str
    access_key: str
    credential_scope: str
    created_at: datetime
    expires_in: int
    signed_headers: tuple[str, ...]
    signature: str

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.expires_in)

    @property
    def region(self) -> str:
        return self.credential_scope.split("/")[1]

    def is_valid_at(self, now: datetime) -> bool:
        """True when ``created_at <= now <= expires_at``."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self.created_at <= now <= self.expires_at

    @classmethod
    def parse(cls, url: str) -> PresignedUrl:
        """Read the signing fields from a presigned URL.

        Raises:
            InvalidArgumentError: If a required field is missing or malformed.
        """
        params = dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(url).query))
        try:
            credential = params["X-Amz-Credential"]
            amz_date = params["X-Amz-Date"]
            expires = int(params["X-Amz-Expires"])
            signed = params["X-Amz-SignedHeaders"]
            signature = params["X-Amz-Signature"]
        except (KeyError, ValueError) as exc:
            raise InvalidArgumentError(f"Not a presigned URL: {exc}") from exc
        access_key, _, scope = credential.partition("/")
        try:
            created = datetime.strptime(amz_date, _AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
        except ValueError as exc:
            raise InvalidArgumentError(f"Invalid X-Amz-Date: {amz_date!r}") from exc
        return cls(
            url=url,
            access_key=access_key,
            credential_scope=scope,
            created_at=created,
            expires_in=expires,
            signed_headers=tuple(signed.split(";")),
            signature=signature,
        )
