"""Tests for STS role assumption and scoped KMS client construction.

Tests cover:
- Credential mapping from AssumeRole responses
- AuthError on rejected or empty assumptions
- No caching: each call is a fresh AssumeRole
- Expired credentials refused when building a KMS client
- AssumeRole against moto's STS
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import EndpointConnectionError
from moto import mock_aws

from kmskeys.services.credentials import (
    RoleAssumptionClient,
    ScopedCredentials,
    build_kms_client,
)
from kmskeys.services.errors import AuthError

from tests.factories import ROLE_ARN, client_error


def _assume_role_response(expiration: datetime) -> dict:
    return {
        "Credentials": {
            "AccessKeyId": "ASIATEST",
            "SecretAccessKey": "secret",
            "SessionToken": "token",
            "Expiration": expiration,
        }
    }


@pytest.fixture
def sts_stub():
    sts = MagicMock()
    sts.assume_role.return_value = _assume_role_response(
        datetime(2026, 1, 15, 13, 0, tzinfo=UTC)
    )
    return sts


class TestScopedCredentials:
    """Tests for ScopedCredentials."""

    def test_secrets_hidden_from_repr(self):
        creds = ScopedCredentials(
            access_key_id="ASIATEST",
            secret_access_key="very-secret",
            session_token="very-token",
            expires_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        text = repr(creds)
        assert "ASIATEST" in text
        assert "very-secret" not in text
        assert "very-token" not in text

    def test_is_expired(self):
        expires_at = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        creds = ScopedCredentials("a", "b", "c", expires_at)

        assert not creds.is_expired(expires_at - timedelta(seconds=1))
        assert creds.is_expired(expires_at)


class TestRoleAssumptionClient:
    """Tests for RoleAssumptionClient with a stubbed STS client."""

    @pytest.mark.asyncio
    async def test_assume_role_returns_credentials(self, sts_stub):
        client = RoleAssumptionClient(sts_stub)

        result = await client.assume_role(ROLE_ARN, "TestSession", 3600)

        assert result.ok
        creds = result.unwrap()
        assert creds.access_key_id == "ASIATEST"
        assert creds.secret_access_key == "secret"
        assert creds.session_token == "token"
        assert creds.expires_at == datetime(2026, 1, 15, 13, 0, tzinfo=UTC)
        sts_stub.assume_role.assert_called_once_with(
            RoleArn=ROLE_ARN,
            RoleSessionName="TestSession",
            DurationSeconds=3600,
        )

    @pytest.mark.asyncio
    async def test_default_duration_is_one_hour(self, sts_stub):
        await RoleAssumptionClient(sts_stub).assume_role(ROLE_ARN, "TestSession")
        assert sts_stub.assume_role.call_args.kwargs["DurationSeconds"] == 3600

    @pytest.mark.asyncio
    async def test_each_call_assumes_again(self, sts_stub):
        client = RoleAssumptionClient(sts_stub)

        await client.assume_role(ROLE_ARN, "TestSession")
        await client.assume_role(ROLE_ARN, "TestSession")

        assert sts_stub.assume_role.call_count == 2

    @pytest.mark.asyncio
    async def test_rejected_assumption_is_auth_error(self, sts_stub):
        sts_stub.assume_role.side_effect = client_error("AccessDenied", "AssumeRole")

        result = await RoleAssumptionClient(sts_stub).assume_role(ROLE_ARN, "TestSession")

        assert not result.ok
        assert result.value is None
        assert isinstance(result.error, AuthError)
        assert result.error.operation == "assume_role"
        assert result.error.__cause__ is sts_stub.assume_role.side_effect

    @pytest.mark.asyncio
    async def test_network_failure_is_auth_error(self, sts_stub):
        sts_stub.assume_role.side_effect = EndpointConnectionError(
            endpoint_url="https://sts.amazonaws.com"
        )

        result = await RoleAssumptionClient(sts_stub).assume_role(ROLE_ARN, "TestSession")

        assert isinstance(result.error, AuthError)

    @pytest.mark.asyncio
    async def test_missing_credentials_is_auth_error(self, sts_stub):
        sts_stub.assume_role.return_value = {}

        result = await RoleAssumptionClient(sts_stub).assume_role(ROLE_ARN, "TestSession")

        assert isinstance(result.error, AuthError)
        with pytest.raises(AuthError):
            result.unwrap()

    @pytest.mark.asyncio
    async def test_naive_expiration_treated_as_utc(self, sts_stub):
        sts_stub.assume_role.return_value = _assume_role_response(datetime(2026, 1, 15, 13, 0))

        result = await RoleAssumptionClient(sts_stub).assume_role(ROLE_ARN, "TestSession")

        assert result.unwrap().expires_at.tzinfo is UTC


class TestBuildKmsClient:
    """Tests for scoped KMS client construction."""

    def test_expired_credentials_refused(self):
        creds = ScopedCredentials("a", "b", "c", datetime(2020, 1, 1, tzinfo=UTC))
        with pytest.raises(AuthError, match="expired"):
            build_kms_client(creds, "us-east-1")

    def test_builds_client_for_region(self):
        creds = ScopedCredentials("a", "b", "c", datetime.now(UTC) + timedelta(hours=1))
        client = build_kms_client(creds, "eu-west-3")
        assert client.meta.region_name == "eu-west-3"
        assert client.meta.service_model.service_name == "kms"


class TestRoleAssumptionWithMoto:
    """End-to-end role assumption against moto's STS."""

    @pytest.mark.asyncio
    async def test_assume_role(self, aws_settings):
        with mock_aws():
            client = RoleAssumptionClient.from_settings(aws_settings)
            result = await client.assume_role(ROLE_ARN, "MotoSession", 3600)

        creds = result.unwrap()
        assert creds.access_key_id
        assert creds.session_token
        assert creds.expires_at > datetime.now(UTC)
