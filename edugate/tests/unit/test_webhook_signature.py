from __future__ import annotations

import hashlib
import hmac
import json

import pytest

from edugate.core.errors import WebhookPayloadError, WebhookSignatureError
from edugate.services.webhooks import (
    DUPLICATE_MESSAGE,
    WebhookResult,
    build_signature,
    build_signature_header,
    parse_event,
    parse_signature_header,
    verify_signature,
)


SECRET = "whsec_unit"
PAYLOAD = b'{"id":"evt_1","type":"invoice.paid"}'


def test_build_signature_matches_hmac_over_timestamp_and_body() -> None:
    expected = hmac.new(SECRET.encode("utf-8"), b"1700000000." + PAYLOAD, hashlib.sha256)
    assert build_signature(SECRET, 1700000000, PAYLOAD) == expected.hexdigest()


def test_verify_signature_accepts_any_matching_v1_signature() -> None:
    good = build_signature(SECRET, 1700000000, PAYLOAD)
    header = f"t=1700000000,v1={'0' * 64},v1={good}"
    assert (
        verify_signature(
            secret=SECRET, payload=PAYLOAD, header=header, tolerance_s=300, now=1700000100
        )
        == 1700000000
    )


def test_verify_signature_rejects_tampered_payload() -> None:
    header = build_signature_header(SECRET, PAYLOAD, timestamp=1700000000)
    with pytest.raises(WebhookSignatureError):
        verify_signature(
            secret=SECRET,
            payload=PAYLOAD.replace(b"evt_1", b"evt_2"),
            header=header,
            tolerance_s=300,
            now=1700000000,
        )


def test_verify_signature_rejects_wrong_secret() -> None:
    header = build_signature_header("other-secret", PAYLOAD, timestamp=1700000000)
    with pytest.raises(WebhookSignatureError):
        verify_signature(
            secret=SECRET, payload=PAYLOAD, header=header, tolerance_s=300, now=1700000000
        )


def test_verify_signature_enforces_timestamp_tolerance() -> None:
    header = build_signature_header(SECRET, PAYLOAD, timestamp=1700000000)
    with pytest.raises(WebhookSignatureError):
        verify_signature(
            secret=SECRET, payload=PAYLOAD, header=header, tolerance_s=300, now=1700000301
        )


@pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=deadbeef", "t=1700000000"])
def test_parse_signature_header_rejects_malformed_values(header: str | None) -> None:
    with pytest.raises(WebhookSignatureError):
        parse_signature_header(header)


def test_parse_event_requires_id_and_type() -> None:
    assert parse_event(PAYLOAD)["id"] == "evt_1"
    with pytest.raises(WebhookPayloadError):
        parse_event(b"not json")
    with pytest.raises(WebhookPayloadError):
        parse_event(json.dumps([1, 2]).encode())
    with pytest.raises(WebhookPayloadError):
        parse_event(json.dumps({"type": "invoice.paid"}).encode())
    with pytest.raises(WebhookPayloadError):
        parse_event(json.dumps({"id": "evt_1"}).encode())


def test_webhook_result_acknowledgement_shapes() -> None:
    duplicate = WebhookResult(event_id="evt_1", event_type="x", duplicate=True, handled=False)
    first = WebhookResult(event_id="evt_1", event_type="x", duplicate=False, handled=True)
    assert duplicate.as_response() == {
        "received": True,
        "duplicate": True,
        "event_id": "evt_1",
        "message": DUPLICATE_MESSAGE,
    }
    assert first.as_response() == {
        "received": True,
        "duplicate": False,
        "event_id": "evt_1",
        "handled": True,
    }
