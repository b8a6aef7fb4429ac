"""Unit tests for AWSProvider."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from cloudplan.core import AWSProvider
from cloudplan.engine.errors import ProviderAuthError, ProviderError


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "boom"}}, "DescribeInstances")


def test_provider_from_client() -> None:
    """Test creating provider with injected client."""
    mock_client = MagicMock()
    provider = AWSProvider.from_client(mock_client, region="eu-west-1")

    assert provider.ec2 is mock_client
    assert provider.region == "eu-west-1"


def test_provider_requires_region() -> None:
    provider = AWSProvider()

    with pytest.raises(ValueError, match="provide a region"):
        _ = provider.ec2


def test_provider_builds_session_client() -> None:
    provider = AWSProvider(region="us-east-1", profile="dev", endpoint_url="http://localhost:4566")

    with patch("cloudplan.core.provider.boto3.session.Session") as session_cls:
        client = provider.ec2

    session_cls.assert_called_once_with(profile_name="dev", region_name="us-east-1")
    session_cls.return_value.client.assert_called_once_with(
        "ec2", endpoint_url="http://localhost:4566"
    )
    assert client is session_cls.return_value.client.return_value
    # Cached
    assert provider.ec2 is client


class TestCall:
    def test_passes_kwargs_and_returns_response(self) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(return_value={"Reservations": []})

        assert provider.call("DescribeInstances", fn, InstanceIds=["i-1"]) == {"Reservations": []}
        fn.assert_called_once_with(InstanceIds=["i-1"])

    def test_not_found_returns_none(self) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(side_effect=_client_error("InvalidInstanceID.NotFound"))

        assert provider.call("DescribeInstances", fn, not_found=("InvalidInstanceID.NotFound",)) is None

    @pytest.mark.parametrize("code", ["AuthFailure", "UnauthorizedOperation", "ExpiredToken"])
    def test_auth_errors(self, code: str) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(side_effect=_client_error(code))

        with pytest.raises(ProviderAuthError, match="DescribeInstances failed"):
            provider.call("DescribeInstances", fn)

    def test_missing_credentials(self) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(side_effect=NoCredentialsError())

        with pytest.raises(ProviderAuthError):
            provider.call("DescribeInstances", fn)

    def test_other_client_error(self) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(side_effect=_client_error("InternalError"))

        with pytest.raises(ProviderError) as exc_info:
            provider.call("DescribeInstances", fn)
        assert type(exc_info.value) is ProviderError
        assert exc_info.value.operation == "DescribeInstances"

    def test_connection_error(self) -> None:
        provider = AWSProvider.from_client(MagicMock())
        fn = MagicMock(side_effect=EndpointConnectionError(endpoint_url="http://localhost:4566"))

        with pytest.raises(ProviderError, match="Could not connect"):
            provider.call("DescribeInstances", fn)
