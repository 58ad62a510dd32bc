"""Tests for the operator command line.

The KMS session is replaced with AsyncMock stubs; these tests check argument
handling, JSON output, and exit codes only.
"""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kmskeys.cli import build_parser, main
from kmskeys.services.errors import AuthError, DeletionError
from kmskeys.services.jwt_signer import JWSCompact
from kmskeys.services.key_lifecycle import (
    DeletionReceipt,
    KeyLifecycleManager,
    KeyState,
    KeyStatus,
    SigningKey,
)
from kmskeys.services.policy import PolicyGenerator
from kmskeys.services.results import OperationResult
from tests.factories import ROLE_ARN


@pytest.fixture
def session():
    session = MagicMock()
    session.lifecycle.create = AsyncMock()
    session.lifecycle.describe = AsyncMock()
    session.lifecycle.schedule_deletion = AsyncMock()
    return session


@pytest.fixture
def run_cli(settings, session):
    """Run main() with settings and the session patched in."""

    def _run(argv, opened=None):
        opened = opened or OperationResult.success(session)
        with (
            patch("kmskeys.cli.get_settings", return_value=settings),
            patch("kmskeys.cli.open_kms_session", AsyncMock(return_value=opened)),
        ):
            return main(argv)

    return _run


def _output(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestParser:
    """Tests for argument parsing."""

    def test_create_defaults(self):
        args = build_parser().parse_args(["create"])
        assert (args.key_spec, args.ttl_days) == (None, None)

    def test_delete_window(self):
        args = build_parser().parse_args(["delete", "abc123", "--window-days", "14"])
        assert (args.key_id, args.window_days) == ("abc123", 14)

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCommands:
    """Tests for each subcommand."""

    def test_create(self, run_cli, session, capsys):
        created = datetime(2026, 1, 15, tzinfo=UTC)
        session.lifecycle.create.return_value = OperationResult.success(
            SigningKey(
                key_id="abc123",
                key_spec="RSA_2048",
                public_key_pem="-----BEGIN PUBLIC KEY-----",
                created_at=created,
                expires_at=datetime(2026, 4, 15, tzinfo=UTC),
                enabled=True,
            )
        )

        assert run_cli(["create", "--ttl-days", "90"]) == 0
        session.lifecycle.create.assert_awaited_once_with(None, 90)
        output = _output(capsys)
        assert output["key_id"] == "abc123"
        assert output["expires_at"] == "2026-04-15T00:00:00.000Z"

    def test_status(self, run_cli, session, capsys):
        session.lifecycle.describe.return_value = OperationResult.success(
            KeyStatus(key_id="abc123", enabled=False, state=KeyState.DISABLED)
        )

        assert run_cli(["status", "abc123"]) == 0
        assert _output(capsys) == {"key_id": "abc123", "enabled": False, "state": "disabled"}

    def test_delete_uses_configured_window(self, run_cli, session, capsys):
        session.lifecycle.schedule_deletion.return_value = OperationResult.success(
            DeletionReceipt(
                key_id="abc123",
                pending_window_days=7,
                deletion_date=datetime(2026, 1, 22, tzinfo=UTC),
                state=KeyState.PENDING_DELETION,
            )
        )

        assert run_cli(["delete", "abc123"]) == 0
        session.lifecycle.schedule_deletion.assert_awaited_once_with("abc123", 7)
        assert _output(capsys)["deletion_date"] == "2026-01-22T00:00:00.000Z"

    def test_delete_failure_exit_code(self, run_cli, session, capsys):
        session.lifecycle.schedule_deletion.return_value = OperationResult.failure(
            DeletionError("window out of range", operation="validate", key_id="abc123")
        )

        assert run_cli(["delete", "abc123", "--window-days", "31"]) == 1
        assert _output(capsys)["operation"] == "validate"

    def test_delete_zero_window_passed_through(self, run_cli, session, capsys):
        session.lifecycle.schedule_deletion.return_value = OperationResult.failure(
            DeletionError("window out of range", operation="validate", key_id="abc123")
        )

        assert run_cli(["delete", "abc123", "--window-days", "0"]) == 1
        session.lifecycle.schedule_deletion.assert_awaited_once_with("abc123", 0)
        assert _output(capsys)["operation"] == "validate"

    def test_sign(self, run_cli, session, capsys):
        signer = MagicMock()
        signer.sign = AsyncMock(
            return_value=OperationResult.success(JWSCompact("aGVhZA", "Ym9keQ", "qrvM"))
        )
        session.signer.return_value = signer

        argv = ["sign", "--kid", "kid-1", "--kms-key-id", "kms-1", "--payload", '{"sub": "u"}']
        assert run_cli(argv) == 0

        header, payload = signer.sign.await_args.args
        assert header == {"alg": "RS256", "typ": "JWT", "kid": "kid-1"}
        assert payload == {"sub": "u"}
        assert _output(capsys) == {"token": "aGVhZA.Ym9keQ.qrvM"}

    @pytest.mark.parametrize("payload", ["not json", "[1, 2]"])
    def test_sign_rejects_bad_payload(self, run_cli, session, capsys, payload):
        argv = ["sign", "--kid", "kid-1", "--kms-key-id", "kms-1", "--payload", payload]

        assert run_cli(argv) == 1
        assert _output(capsys)["operation"] == "parse"
        session.signer.assert_not_called()

    def test_auth_failure(self, run_cli, session, capsys):
        opened = OperationResult.failure(AuthError("denied", operation="assume_role"))

        assert run_cli(["status", "abc123"], opened=opened) == 1
        assert _output(capsys)["operation"] == "assume_role"
        session.lifecycle.describe.assert_not_called()

    def test_delete_zero_window_never_reaches_kms(self, run_cli, session, kms_stub, capsys):
        session.lifecycle = KeyLifecycleManager(kms_stub, PolicyGenerator(ROLE_ARN))

        assert run_cli(["delete", "abc123", "--window-days", "0"]) == 1
        kms_stub.schedule_key_deletion.assert_not_called()
        assert _output(capsys)["operation"] == "validate"
