"""AWS provider - connection configuration for the EC2 API."""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING, Any, Self

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from pydantic import BaseModel, ConfigDict

from cloudplan.engine.errors import ProviderAuthError, ProviderError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

# Error codes meaning "the credentials are missing, wrong or not allowed".
_AUTH_ERROR_CODES: frozenset[str] = frozenset(
    {
        "AuthFailure",
        "UnauthorizedOperation",
        "InvalidClientTokenId",
        "ExpiredToken",
        "RequestExpired",
        "SignatureDoesNotMatch",
        "AccessDenied",
    }
)


class AWSProvider(BaseModel):
    """Connection configuration for one AWS region.

    For normal use, provide the region (and optionally a named profile and a
    custom endpoint). For tests, use :meth:`from_client` to inject a client.

    Examples:
        provider = AWSProvider(region="us-east-1")

        # With a stubbed client
        provider = AWSProvider.from_client(MagicMock(), region="us-east-1")
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None

    # Injected client (for testing)
    _injected_client: Any = None

    @classmethod
    def from_client(cls, client: Any, *, region: str | None = None) -> Self:
        """Create a provider with an injected EC2 client."""
        provider = cls.model_construct(region=region, profile=None, endpoint_url=None)
        provider._injected_client = client
        return provider

    @cached_property
    def ec2(self) -> Any:
        """Get the EC2 client."""
        if self._injected_client is not None:
            return self._injected_client

        if self.region is None:
            raise ValueError("Either provide a region, or use AWSProvider.from_client()")

        session = boto3.session.Session(profile_name=self.profile, region_name=self.region)
        return session.client("ec2", endpoint_url=self.endpoint_url)

    def call(
        self,
        operation: str,
        fn: Callable[..., dict[str, Any]],
        *,
        not_found: Iterable[str] = (),
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """Invoke an EC2 API call, translating botocore errors.

        Returns ``None`` when the call fails with one of the *not_found* error
        codes.  Credential problems raise :class:`ProviderAuthError`; every
        other API failure raises :class:`ProviderError`.
        """
        try:
            return fn(**kwargs)
        except NoCredentialsError as exc:
            raise ProviderAuthError(operation, str(exc)) from exc
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in set(not_found):
                return None
            if code in _AUTH_ERROR_CODES:
                raise ProviderAuthError(operation, str(exc)) from exc
            raise ProviderError(operation, str(exc)) from exc
        except BotoCoreError as exc:
            raise ProviderError(operation, str(exc)) from exc
