"""Signing credentials value object."""

from __future__ import annotations

from dataclasses import dataclass

from object_transfer.domain.exceptions import InvalidArgumentError


@dataclass(frozen=True, slots=True)
class Credentials:
    """Immutable signing credentials.

    Read-only and freely shared between workers. The secret key never
    appears in ``repr`` output so credentials can be logged safely.

    Attributes:
        access_key: Access key id.
        secret_key: Secret access key.
        region: Region used in the credential scope.
        service: Service name used in the credential scope.
        session_token: Optional temporary session token.
    """

    access_key: str
    secret_key: str
    region: str = "us-east-1"
    service: str = "s3"
    session_token: str | None = None

    def validate(self) -> None:
        """Reject credentials that cannot produce a signature.

        Raises:
            InvalidArgumentError: If a key, region or service is empty.
        """
        if not self.access_key:
            raise InvalidArgumentError("Access key cannot be empty")
        if not self.secret_key:
            raise InvalidArgumentError("Secret key cannot be empty")
        if not self.region:
            raise InvalidArgumentError("Region cannot be empty")
        if not self.service:
            raise InvalidArgumentError("Service cannot be empty")

    def __repr__(self) -> str:
        token = "'***'" if self.session_token else "None"
        return (
            f"Credentials(access_key={self.access_key!r}, secret_key='***', "
            f"region={self.region!r}, service={self.service!r}, session_token={token})"
        )
