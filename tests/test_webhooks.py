"""Tests for gateway callback verification and decoding."""

import json
from decimal import Decimal

import pytest

from collector_earnings.errors import InvalidInputError
from collector_earnings.gateway.webhooks import (
    GatewayCallback,
    compute_signature,
    map_gateway_status,
    verify_signature,
)

SECRET = "whsec-test"
BODY = json.dumps({"reference": "ref-1", "status": "successful"}).encode()


class TestSignature:
    """Test HMAC verification over the raw body."""

    def test_valid_signature(self):
        """A signature computed over the exact bytes verifies."""
        signature = compute_signature(BODY, SECRET)

        assert verify_signature(BODY, signature, SECRET) is True

    def test_tampered_body_rejected(self):
        """Any change to the body invalidates the signature."""
        signature = compute_signature(BODY, SECRET)
        tampered = BODY.replace(b"successful", b"failed")

        assert verify_signature(tampered, signature, SECRET) is False

    def test_hex_case_ignored(self):
        """Upper-case hex digests are accepted."""
        signature = compute_signature(BODY, SECRET).upper()

        assert verify_signature(BODY, signature, SECRET) is True

    def test_missing_signature_rejected(self):
        """No header means no trust."""
        assert verify_signature(BODY, None, SECRET) is False
        assert verify_signature(BODY, "", SECRET) is False

    def test_non_ascii_signature_rejected(self):
        """Garbage outside ASCII fails verification instead of raising."""
        assert verify_signature(BODY, "éabc", SECRET) is False
        assert verify_signature(BODY, "é" * 64, SECRET) is False

    def test_wrong_secret_rejected(self):
        """Signatures under another secret fail."""
        signature = compute_signature(BODY, "other-secret")

        assert verify_signature(BODY, signature, SECRET) is False

    def test_missing_secret(self):
        """Without a secret only the sandbox accepts callbacks."""
        assert verify_signature(BODY, None, None, sandbox=True) is True
        assert verify_signature(BODY, None, None, sandbox=False) is False


class TestStatusMapping:
    """Test gateway status vocabulary."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("successful", "success"),
            ("SUCCESS", "success"),
            ("completed", "success"),
            ("failed", "failed"),
            ("declined", "failed"),
            ("expired", "failed"),
            ("processing", "pending"),
            ("pending", "pending"),
            (" in_progress ", "pending"),
        ],
    )
    def test_known_statuses(self, raw, expected):
        """Known statuses map case-insensitively."""
        assert map_gateway_status(raw) == expected

    def test_unknown_status_is_failed(self):
        """Unknown or empty statuses count as failed."""
        assert map_gateway_status("reversed-ish") == "failed"
        assert map_gateway_status(None) == "failed"
        assert map_gateway_status("") == "failed"


class TestCallbackPayload:
    """Test callback decoding."""

    def test_from_payload(self):
        """Fields are read from the gateway's camelCase keys."""
        payload = {
            "reference": "ref-1",
            "status": "successful",
            "transactionId": "TX-1",
            "amount": "40.00",
            "accountNumber": "0241234567",
            "message": "ok",
        }

        callback = GatewayCallback.from_payload(payload)

        assert callback.reference == "ref-1"
        assert callback.raw_status == "successful"
        assert callback.status == "success"
        assert callback.transaction_id == "TX-1"
        assert callback.amount == Decimal("40.00")
        assert callback.account_number == "0241234567"
        assert callback.payload == payload

    def test_amount_optional(self):
        """Callbacks without an amount decode with amount None."""
        callback = GatewayCallback.from_payload({"reference": "r", "status": "failed"})

        assert callback.amount is None
        assert callback.status == "failed"

    @pytest.mark.parametrize(
        "payload",
        [
            {"status": "successful"},
            {"reference": "ref-1"},
            {"reference": "", "status": "successful"},
        ],
    )
    def test_missing_fields_rejected(self, payload):
        """Reference and status are required."""
        with pytest.raises(InvalidInputError):
            GatewayCallback.from_payload(payload)

    def test_garbage_amount_rejected(self):
        """Non-numeric amounts are malformed."""
        with pytest.raises(InvalidInputError):
            GatewayCallback.from_payload(
                {"reference": "r", "status": "successful", "amount": "lots"}
            )
