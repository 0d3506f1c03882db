from unittest.mock import MagicMock

import pytest

from wellpulse.application import EMPTY_TWIML, DispatchEngine, InboundWebhookHandler, RecipientResolver, ResponseRouter, render
from wellpulse.domain.errors import UnknownSender
from wellpulse.infrastructure.config import DispatchSettings
from wellpulse.infrastructure.messaging import compute_signature

from conftest import FakeProvider

TOKEN = "test-auth-token"
URL = "https://wellpulse.example.com/webhooks/twilio"
REPLY_FROM = "whatsapp:+14155550000"
A = "whatsapp:+254700000001"


def inbound(body="4", sender=A, **extra):
    params = {
        "MessageSid": "SM0001",
        "AccountSid": "AC123",
        "From": sender,
        "To": "whatsapp:+14155238886",
        "Body": body,
        "NumMedia": "0",
        "ProfileName": "A",
    }
    params.update(extra)
    return params


@pytest.fixture
def handler(db, provider, clock):
    router = ResponseRouter(db, clock=clock)
    return InboundWebhookHandler(router, provider, db, auth_token=TOKEN, reply_from=REPLY_FROM, clock=clock)


@pytest.fixture
def sent_poll(db, employees, rating_poll, clock):
    outbound = MagicMock()
    engine = DispatchEngine(db, outbound, "+14155238886", DispatchSettings(max_workers=1), clock=clock)
    engine.dispatch(rating_poll, RecipientResolver(db).resolve("org_1", "all").recipients, render(rating_poll))
    return rating_poll


def signed(params, token=TOKEN, url=URL):
    return compute_signature(token, url, params)


@pytest.mark.parametrize("method", ["GET", "PUT", "DELETE"])
def test_non_post_is_rejected(handler, method):
    reply = handler.handle(method, URL, {})
    assert reply.status_code == 405
    assert reply.body == EMPTY_TWIML


def test_bad_signature_is_forbidden_and_nothing_is_stored(handler, db, sent_poll, provider):
    params = inbound("4")
    reply = handler.handle("POST", URL, params, signed(params, token="wrong-token"))

    assert reply.status_code == 403
    assert db.get_responses("poll_1") == []
    assert provider.sent == []
    assert db.count_inbound_messages() == 0


def test_signature_covers_the_url(handler, db, sent_poll):
    params = inbound("4")
    reply = handler.handle("POST", URL, params, signed(params, url="https://other.example.com/hook"))
    assert reply.status_code == 403


def test_valid_reply_is_recorded_and_acknowledged(handler, db, sent_poll, provider):
    params = inbound("4")
    reply = handler.handle("POST", URL, params, signed(params))

    assert reply.status_code == 200
    assert reply.body == EMPTY_TWIML
    assert reply.content_type == "application/xml"

    assert [r.response_rating for r in db.get_responses("poll_1")] == [4]
    assert len(provider.sent) == 1
    from_address, to_address, body = provider.sent[0]
    assert (from_address, to_address) == (REPLY_FROM, A)
    assert body.startswith("Thank you A!")


def test_unsigned_request_is_processed(handler, db, sent_poll):
    reply = handler.handle("POST", URL, inbound("2"), None)

    assert reply.status_code == 200
    assert [r.response_rating for r in db.get_responses("poll_1")] == [2]


def test_no_secret_configured_skips_verification(db, sent_poll, provider, clock):
    handler = InboundWebhookHandler(ResponseRouter(db, clock=clock), provider, db, reply_from=REPLY_FROM, clock=clock)

    reply = handler.handle("POST", URL, inbound("5"), "anything")

    assert reply.status_code == 200
    assert len(db.get_responses("poll_1")) == 1


@pytest.mark.parametrize(
    "params",
    [
        {"MessageSid": "SM1", "Body": "4"},
        {"MessageSid": "SM1", "From": A},
        {"MessageSid": "SM1", "From": A, "Body": ""},
        {"MessageSid": "SM1", "From": A, "Body": "   "},
        {"MessageSid": "SM1", "From": A, "Body": "\n\t"},
        {"MessageSid": "SM1", "From": "  ", "Body": "4"},
        {"MessageSid": "SM1", "From": "+254700000001", "Body": "4"},
    ],
)
def test_malformed_event_is_acknowledged_but_ignored(db, employees, provider, clock, params):
    router = MagicMock()
    handler = InboundWebhookHandler(router, provider, db, reply_from=REPLY_FROM, clock=clock)

    reply = handler.handle("POST", URL, params)

    assert reply.status_code == 200
    router.route.assert_not_called()
    assert db.count_inbound_messages() == 0


def test_sms_channel_accepts_plain_numbers(db, employees, provider, clock):
    router = MagicMock()
    router.route.side_effect = UnknownSender("+254700000001")
    handler = InboundWebhookHandler(router, provider, db, channel_prefix="", clock=clock)

    reply = handler.handle("POST", URL, inbound("hi", sender="+254700000001"))

    assert reply.status_code == 200
    router.route.assert_called_once_with("+254700000001", "hi", "SM0001")


def test_routing_failures_still_return_200(handler, db, employees, provider):
    for sender in (A, "whatsapp:+19999999999"):
        reply = handler.handle("POST", URL, inbound("hello", sender=sender))
        assert reply.status_code == 200
        assert reply.body == EMPTY_TWIML

    assert provider.sent == []
    assert db.count_inbound_messages() == 2


def test_unexpected_router_error_is_contained(db, provider, clock):
    router = MagicMock()
    router.route.side_effect = RuntimeError("database is locked")
    handler = InboundWebhookHandler(router, provider, db, reply_from=REPLY_FROM, clock=clock)

    reply = handler.handle("POST", URL, inbound("4"))

    assert reply.status_code == 200
    assert provider.sent == []


def test_uninterpretable_reply_gets_a_hint(handler, db, sent_poll, provider):
    handler.handle("POST", URL, inbound("9"))

    assert db.get_responses("poll_1") == []
    assert provider.bodies_to(A) == ["Please reply with a number from 1 to 5."]


def test_hints_can_be_disabled(db, sent_poll, provider, clock):
    handler = InboundWebhookHandler(
        ResponseRouter(db, clock=clock), provider, db,
        reply_from=REPLY_FROM, send_correction_hints=False, clock=clock,
    )
    handler.handle("POST", URL, inbound("9"))
    assert provider.sent == []


def test_acknowledgment_failure_does_not_lose_the_response(db, sent_poll, clock):
    failing = FakeProvider(reject={A})
    handler = InboundWebhookHandler(ResponseRouter(db, clock=clock), failing, db, reply_from=REPLY_FROM, clock=clock)

    reply = handler.handle("POST", URL, inbound("3"))

    assert reply.status_code == 200
    assert [r.response_rating for r in db.get_responses("poll_1")] == [3]


def test_no_reply_number_means_no_acknowledgment(db, sent_poll, provider, clock):
    handler = InboundWebhookHandler(ResponseRouter(db, clock=clock), provider, db, clock=clock)

    handler.handle("POST", URL, inbound("3"))

    assert len(db.get_responses("poll_1")) == 1
    assert provider.sent == []


def test_unmatched_feedback_acknowledgment_is_sent(db, employees, provider, clock):
    router = ResponseRouter(db, store_unmatched_as_feedback=True, clock=clock)
    handler = InboundWebhookHandler(router, provider, db, reply_from=REPLY_FROM, clock=clock)

    handler.handle("POST", URL, inbound("The new chairs are great"))

    assert db.count_feedback("org_1") == 1
    assert len(provider.bodies_to(A)) == 1


def test_every_well_formed_message_is_logged(handler, db, sent_poll):
    handler.handle("POST", URL, inbound("4"))
    handler.handle("POST", URL, inbound("4", MessageSid="SM0002"))

    assert db.count_inbound_messages() == 2


def test_blank_reply_leaves_context_open(handler, db, sent_poll, provider):
    reply = handler.handle("POST", URL, inbound("   "))

    assert reply.status_code == 200
    assert db.get_responses("poll_1") == []
    assert db.get_contexts(reference_id="poll_1", employee_id="emp_a")[0].is_responded is False
    assert provider.sent == []


def test_empty_twiml_is_a_bare_response_document():
    assert EMPTY_TWIML.startswith('<?xml version="1.0" encoding="UTF-8"?>')
    assert "<Response" in EMPTY_TWIML
    assert "<Message" not in EMPTY_TWIML
