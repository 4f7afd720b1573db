"""Unit tests for webhook signature verification."""

from __future__ import annotations

import pytest

from weir.webhooks import WebhookSecrets, compute_signature, verify_signature

BODY = b'{"action":"opened","number":7}'
SECRET = "s3cret"  # noqa: S105 - test fixture
OLD_SECRET = "old-s3cret"  # noqa: S105 - test fixture


class TestVerifySignature:
    """Tests for verify_signature."""

    def test_accepts_current_secret(self) -> None:
        """A digest made with the current secret verifies."""
        header = compute_signature(BODY, SECRET)
        assert verify_signature(BODY, header, SECRET) is True

    def test_rejects_tampered_body(self) -> None:
        """Changing a single byte of the body invalidates the signature."""
        header = compute_signature(BODY, SECRET)
        assert verify_signature(BODY + b" ", header, SECRET) is False

    def test_accepts_previous_secret_during_rotation(self) -> None:
        """The previous secret is tried when the current one fails."""
        header = compute_signature(BODY, OLD_SECRET)
        assert verify_signature(BODY, header, SECRET, OLD_SECRET) is True

    def test_rejects_previous_secret_once_removed(self) -> None:
        """After rotation ends the old secret no longer verifies."""
        header = compute_signature(BODY, OLD_SECRET)
        assert verify_signature(BODY, header, SECRET) is False

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "sha1=abcdef",
            "sha256=",
            "sha256=not-hex",
            "sha256=abcd",
        ],
    )
    def test_rejects_malformed_headers(self, header: str | None) -> None:
        """Absent, wrongly prefixed, non-hex and short headers are rejected."""
        assert verify_signature(BODY, header, SECRET, OLD_SECRET) is False

    def test_rejects_wrong_length_digest_without_raising(self) -> None:
        """A digest one byte too long is rejected rather than raising."""
        header = compute_signature(BODY, SECRET) + "00"
        assert verify_signature(BODY, header, SECRET) is False

    def test_signature_format(self) -> None:
        """Signatures use the sha256= prefix and a 64-character hex digest."""
        header = compute_signature(BODY, SECRET)
        prefix, _, digest = header.partition("=")
        assert prefix == "sha256"
        assert len(digest) == 64
        int(digest, 16)


class TestWebhookSecrets:
    """Tests for WebhookSecrets.from_env."""

    def test_unconfigured_when_env_missing(self) -> None:
        """No current secret means the deployment is unconfigured."""
        secrets = WebhookSecrets.from_env()
        assert secrets.configured is False
        assert secrets.current is None

    def test_reads_current_and_previous(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Both secrets are read from the environment."""
        monkeypatch.setenv("WEIR_GITHUB_WEBHOOK_SECRET", SECRET)
        monkeypatch.setenv("WEIR_GITHUB_WEBHOOK_SECRET_PREVIOUS", OLD_SECRET)

        secrets = WebhookSecrets.from_env()

        assert secrets == WebhookSecrets(current=SECRET, previous=OLD_SECRET)
        assert secrets.configured is True

    def test_blank_secret_is_unconfigured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Whitespace-only values are treated as absent."""
        monkeypatch.setenv("WEIR_GITHUB_WEBHOOK_SECRET", "   ")
        assert WebhookSecrets.from_env().configured is False
