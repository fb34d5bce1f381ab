"""FastAPI REST adapter for request signing.

Exposes presigning and header signing over HTTP so tools that cannot
hold credentials can still produce authorized requests.

Usage:
    from object_transfer.adapters.inbound.rest_api import create_app

    app = create_app()
"""

from __future__ import annotations

from typing import Literal

from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from object_transfer import __version__
from object_transfer.application.transfer_service import TransferService
from object_transfer.domain.exceptions import ConfigurationError
from object_transfer.domain.services.signer import EMPTY_SHA256, HttpRequest, PresignedUrl
from object_transfer.domain.value_objects.identifiers import ObjectReference, validate_bucket_name


# Pydantic models for request/response serialization


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = __version__


class PresignRequest(BaseModel):
    """Request for a presigned URL."""

    bucket: str = Field(..., min_length=3, max_length=63, description="Bucket name")
    key: str = Field(..., min_length=1, description="Object key")
    method: Literal["GET", "PUT", "DELETE", "HEAD"] = Field(default="GET", description="HTTP method")
    expires_in: int | None = Field(default=None, description="Validity in seconds")


class PresignResponse(BaseModel):
    """Presigned URL details."""

    url: str
    method: str
    expires_at: str


class SignRequest(BaseModel):
    """Request to sign a raw store request."""

    method: str = Field(default="GET", min_length=1, description="HTTP method")
    bucket: str = Field(..., min_length=3, max_length=63, description="Bucket name")
    key: str = Field(default="", description="Object key, empty for bucket requests")
    query: dict[str, str] = Field(default_factory=dict, description="Query parameters")
    headers: dict[str, str] = Field(default_factory=dict, description="Headers to sign")
    payload_sha256: str = Field(default=EMPTY_SHA256, description="Hex SHA-256 or UNSIGNED-PAYLOAD")


class SignResponse(BaseModel):
    """Signed request details."""

    url: str
    headers: dict[str, str]
    signed_headers: str
    signature: str


def create_app(service: TransferService | None = None) -> FastAPI:
    """Create FastAPI application with signing endpoints.

    Args:
        service: Transfer service; the container's service when None.

    Returns:
        Configured FastAPI application.
    """
    if service is None:
        from object_transfer.infrastructure.container import get_container

        service = get_container().service

    app = FastAPI(
        title="Object Transfer API",
        description="Request signing for S3-compatible object stores",
        version=__version__,
    )

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="healthy")

    @app.post("/presign", response_model=PresignResponse)
    def presign(body: PresignRequest) -> PresignResponse:
        try:
            ref = ObjectReference(body.bucket, body.key)
            url = service.presign(ref, body.method, body.expires_in)
        except ConfigurationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        expires_at = PresignedUrl.parse(url).expires_at
        return PresignResponse(url=url, method=body.method, expires_at=expires_at.isoformat())

    @app.post("/sign", response_model=SignResponse)
    def sign(body: SignRequest) -> SignResponse:
        path = f"/{body.bucket}"
        try:
            validate_bucket_name(body.bucket)
            if body.key:
                path = ObjectReference(body.bucket, body.key).path
            headers = {k: v for k, v in body.headers.items() if k.lower() != "host"}
            headers["host"] = service.client.host
            signed = service.sign(
                HttpRequest(
                    method=body.method,
                    path=path,
                    query=body.query,
                    headers=headers,
                    payload_hash=body.payload_sha256,
                )
            )
        except ConfigurationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        return SignResponse(
            url=f"{service.client.base_url}{signed.target}",
            headers=signed.headers,
            signed_headers=signed.signed_headers,
            signature=signed.signature,
        )

    return app
