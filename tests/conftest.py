"""Pytest configuration and shared fixtures.

Unit tests stub boto3 clients with MagicMock for deterministic responses.
End-to-end tests run against moto's emulated KMS and STS (mock_aws), so
no AWS account or network access is needed.
"""

import os
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from kmskeys.core.config import AWSSettings, KeySettings, Settings
from kmskeys.core.settings import clear_settings_cache
from tests.factories import ROLE_ARN


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Isolate tests from real AWS credentials and KMSKEYS_ variables."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    for name in list(os.environ):
        if name.startswith("KMSKEYS_"):
            monkeypatch.delenv(name)
    clear_settings_cache()
    yield
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def aws_settings() -> AWSSettings:
    return AWSSettings(role_arn=ROLE_ARN, region="us-east-1")


@pytest.fixture
def key_settings() -> KeySettings:
    return KeySettings()


@pytest.fixture
def settings(aws_settings, key_settings) -> Settings:
    return Settings(aws=aws_settings, keys=key_settings)


@pytest.fixture
def fixed_now() -> datetime:
    """A creation instant with sub-millisecond precision to exercise truncation."""
    return datetime(2026, 1, 15, 12, 30, 45, 123456, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Key material and client stubs
# ---------------------------------------------------------------------------
@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_der(rsa_private_key) -> bytes:
    """DER SubjectPublicKeyInfo, as KMS GetPublicKey returns it."""
    return rsa_private_key.public_key().public_bytes(
        Encoding.DER, PublicFormat.SubjectPublicKeyInfo
    )


@pytest.fixture
def kms_stub(public_key_der) -> MagicMock:
    """KMS client stub whose calls all succeed."""
    kms = MagicMock()
    kms.create_key.return_value = {
        "KeyMetadata": {"KeyId": "abc123", "Enabled": True, "KeyState": "Enabled"}
    }
    kms.get_public_key.return_value = {"KeyId": "abc123", "PublicKey": public_key_der}
    kms.describe_key.return_value = {
        "KeyMetadata": {"KeyId": "abc123", "Enabled": True, "KeyState": "Enabled"}
    }
    kms.schedule_key_deletion.return_value = {
        "KeyId": "abc123",
        "DeletionDate": datetime(2026, 1, 22, tzinfo=UTC),
        "KeyState": "PendingDeletion",
        "PendingWindowInDays": 7,
    }
    kms.sign.return_value = {
        "KeyId": "kms-1",
        "Signature": bytes.fromhex("AABBCC"),
        "SigningAlgorithm": "RSASSA_PKCS1_V1_5_SHA_256",
    }
    return kms
