import json
import time

import pytest

from gymaccess.app.billing.verifier import (
    InvalidSignature,
    MalformedEvent,
    MissingSecret,
    MissingSignature,
    WebhookVerifier,
    verify_event,
)
from gymaccess.tests.fakes import sign_payload

SECRET = "whsec_test_secret"


def _body(document) -> bytes:
    return json.dumps(document).encode("utf-8")


def test_valid_signature_yields_event():
    body = _body(
        {
            "id": "evt_1",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "status": "active"}},
        }
    )

    event = verify_event(body, sign_payload(body, SECRET), SECRET)

    assert event.event_id == "evt_1"
    assert event.event_type == "customer.subscription.updated"
    assert event.payload == {"id": "sub_1", "status": "active"}


def test_missing_secret_is_a_server_error():
    body = _body({"id": "evt_1", "type": "x"})

    with pytest.raises(MissingSecret) as excinfo:
        verify_event(body, sign_payload(body, SECRET), None)

    assert excinfo.value.status_code == 500


@pytest.mark.parametrize("header", [None, "", "   "])
def test_missing_signature_is_rejected(header):
    with pytest.raises(MissingSignature) as excinfo:
        verify_event(b"{}", header, SECRET)

    assert excinfo.value.status_code == 400


def test_tampered_body_is_rejected():
    body = _body({"id": "evt_1", "type": "checkout.session.completed"})
    header = sign_payload(body, SECRET)

    with pytest.raises(InvalidSignature):
        verify_event(body.replace(b"evt_1", b"evt_2"), header, SECRET)


def test_wrong_secret_is_rejected():
    body = _body({"id": "evt_1", "type": "checkout.session.completed"})

    with pytest.raises(InvalidSignature):
        verify_event(body, sign_payload(body, "whsec_other"), SECRET)


def test_stale_timestamp_is_rejected():
    body = _body({"id": "evt_1", "type": "checkout.session.completed"})
    header = sign_payload(body, SECRET, timestamp=int(time.time()) - 3600)

    with pytest.raises(InvalidSignature):
        verify_event(body, header, SECRET, tolerance_seconds=300)


def test_signed_but_unparseable_body_is_malformed():
    body = b"not json"

    with pytest.raises(MalformedEvent):
        verify_event(body, sign_payload(body, SECRET), SECRET)


def test_event_without_id_is_malformed():
    body = _body({"type": "checkout.session.completed", "data": {"object": {}}})

    with pytest.raises(MalformedEvent):
        verify_event(body, sign_payload(body, SECRET), SECRET)


def test_verifier_uses_bound_secret():
    verifier = WebhookVerifier(SECRET, tolerance_seconds=60)
    body = _body({"id": "evt_9", "type": "invoice.paid", "data": {"object": {"id": "in_1"}}})

    event = verifier.verify(body, sign_payload(body, SECRET))

    assert event.event_id == "evt_9"
    assert event.payload == {"id": "in_1"}
