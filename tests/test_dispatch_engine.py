from datetime import timedelta

import pytest

from wellpulse.application import DispatchEngine, RecipientResolver, normalize_address, render
from wellpulse.domain.errors import BroadcastNotSendable
from wellpulse.domain.models import MessageType, PollBroadcast, PollType
from wellpulse.infrastructure.config import DispatchSettings

from conftest import FakeProvider

FROM = "whatsapp:+14155238886"


def make_engine(db, provider, clock, workers=1):
    return DispatchEngine(
        db, provider, from_address="+14155238886",
        settings=DispatchSettings(max_workers=workers), clock=clock,
    )


def recipients_for(db):
    return RecipientResolver(db).resolve("org_1", "all").recipients


def test_partial_failure_scenario(db, employees, rating_poll, clock):
    provider = FakeProvider(reject={"whatsapp:+254700000002"}, error_text="Twilio error 21211")
    engine = make_engine(db, provider, clock)

    result = engine.dispatch(rating_poll, recipients_for(db), render(rating_poll))

    assert (result.sent, result.failed, result.total_eligible) == (1, 1, 2)
    assert result.errors == ["Failed to send to B: Twilio error 21211"]
    assert result.success is True

    contexts = db.get_contexts(reference_id="poll_1")
    assert len(contexts) == 1
    assert contexts[0].employee_id == "emp_a"
    assert contexts[0].message_type is MessageType.POLL
    assert contexts[0].is_responded is False


@pytest.mark.parametrize("workers", [1, 4])
def test_one_context_per_successful_send(db, clock, workers):
    phones = [f"+2547000001{i:02d}" for i in range(8)]
    for i, phone in enumerate(phones):
        db.add_employee("org_9", f"Emp{i}", phone=phone, employee_id=f"e{i}")
    poll = PollBroadcast(id="p9", organization_id="org_9", title="T", question="Q", poll_type=PollType.YES_NO)
    db.add_broadcast(poll)

    rejected = {f"whatsapp:{phones[i]}" for i in (1, 4, 6)}
    provider = FakeProvider(reject=rejected, error_text="nope")
    engine = make_engine(db, provider, clock, workers=workers)

    recipients = RecipientResolver(db).resolve("org_9", "all").recipients
    result = engine.dispatch(poll, recipients, render(poll))

    assert result.sent == 5
    assert result.failed == 3
    assert len(provider.sent) == 5
    assert {c.employee_id for c in db.get_contexts(reference_id="p9")} == {"e0", "e2", "e3", "e5", "e7"}
    # Errors follow recipient order, not completion order
    assert result.errors == [f"Failed to send to Emp{i}: nope" for i in (1, 4, 6)]


def test_name_is_substituted_per_recipient(db, employees, checkin, clock, provider):
    engine = make_engine(db, provider, clock)
    engine.dispatch(checkin, recipients_for(db), render(checkin))

    assert provider.bodies_to("whatsapp:+254700000001") == [
        "Hi A, how are you feeling today? Reply with a number from 1 to 10."
    ]
    assert all(sender == FROM for sender, _, _ in provider.sent)


def test_broadcast_flagged_sent_only_when_something_went_out(db, employees, rating_poll, clock):
    engine = make_engine(db, FakeProvider(reject={"whatsapp:+254700000001", "whatsapp:+254700000002"}), clock)
    result = engine.dispatch(rating_poll, recipients_for(db), render(rating_poll))

    assert result.sent == 0 and result.success is False
    assert db.get_broadcast("poll_1").send_via_channel is False

    engine = make_engine(db, FakeProvider(), clock)
    engine.dispatch(rating_poll, recipients_for(db), render(rating_poll))

    stored = db.get_broadcast("poll_1")
    assert stored.send_via_channel is True
    assert stored.sent_at == clock.now


def test_inactive_broadcast_is_rejected_before_any_send(db, employees, rating_poll, clock, provider):
    db.set_broadcast_active("poll_1", False)
    poll = db.get_broadcast("poll_1")

    with pytest.raises(BroadcastNotSendable) as excinfo:
        make_engine(db, provider, clock).dispatch(poll, recipients_for(db), render(poll))

    assert excinfo.value.reason == "inactive"
    assert provider.sent == []
    assert db.get_contexts(reference_id="poll_1") == []


def test_unpublished_announcement_reason(db, employees, announcement, clock, provider):
    db.set_broadcast_active("ann_1", False)
    with pytest.raises(BroadcastNotSendable) as excinfo:
        make_engine(db, provider, clock).ensure_sendable(db.get_broadcast("ann_1"))
    assert excinfo.value.reason == "unpublished"


def test_expired_or_deleted_broadcast_is_not_sendable(db, employees, clock, provider):
    expired = PollBroadcast(
        id="old", organization_id="org_1", title="T", question="Q",
        expires_at=clock.now - timedelta(minutes=1),
    )
    db.add_broadcast(expired)
    engine = make_engine(db, provider, clock)

    with pytest.raises(BroadcastNotSendable) as excinfo:
        engine.dispatch(db.get_broadcast("old"), recipients_for(db), "x")
    assert excinfo.value.reason == "expired"

    db.soft_delete_broadcast("old")
    with pytest.raises(BroadcastNotSendable) as excinfo:
        engine.ensure_sendable(db.get_broadcast("old"))
    assert excinfo.value.reason == "deleted"
    assert provider.sent == []


def test_context_lifetimes(db, employees, checkin, announcement, rating_poll, clock, provider):
    engine = make_engine(db, provider, clock)
    for broadcast in (checkin, announcement, rating_poll):
        engine.dispatch(broadcast, recipients_for(db), render(broadcast))

    def expiry(reference_id):
        return db.get_contexts(reference_id=reference_id, employee_id="emp_a")[0].expires_at

    assert expiry("chk_1") == clock.now + timedelta(hours=24)
    assert expiry("ann_1") == clock.now + timedelta(hours=24)
    assert expiry("poll_1") == clock.now + timedelta(days=7)


def test_poll_context_uses_poll_expiry_when_set(db, employees, clock, provider):
    closes = clock.now + timedelta(days=2)
    db.add_broadcast(PollBroadcast(
        id="short", organization_id="org_1", title="T", question="Q", expires_at=closes,
    ))
    poll = db.get_broadcast("short")

    make_engine(db, provider, clock).dispatch(poll, recipients_for(db), render(poll))

    assert {c.expires_at for c in db.get_contexts(reference_id="short")} == {closes}


def test_unexpected_adapter_error_is_isolated(db, employees, rating_poll, clock):
    class FlakyProvider(FakeProvider):
        def send(self, from_address, to_address, body):
            if to_address.endswith("01"):
                raise RuntimeError("connection reset")
            return super().send(from_address, to_address, body)

    result = make_engine(db, FlakyProvider(), clock).dispatch(rating_poll, recipients_for(db), "hi")

    assert (result.sent, result.failed) == (1, 1)
    assert result.errors == ["Error sending to A: connection reset"]


def test_result_dict_matches_trigger_api_shape(db, employees, rating_poll, clock):
    provider = FakeProvider(reject={"whatsapp:+254700000002"}, error_text="bad number")
    result = make_engine(db, provider, clock).dispatch(rating_poll, recipients_for(db), "x")

    assert result.to_dict("Poll") == {
        "success": True,
        "message": "Poll sent to 1 employees",
        "totalSent": 1,
        "totalFailed": 1,
        "totalEmployees": 2,
        "errors": ["Failed to send to B: bad number"],
    }


@pytest.mark.parametrize(
    "phone, expected",
    [
        ("+254 700 000001", "whatsapp:+254700000001"),
        ("254-700-000001", "whatsapp:+254700000001"),
        ("(254) 700.000.001", "whatsapp:+254700000001"),
        ("whatsapp:+254700000001", "whatsapp:+254700000001"),
        ("++254700000001", "whatsapp:+254700000001"),
    ],
)
def test_normalize_address(phone, expected):
    assert normalize_address(phone) == expected


def test_normalize_address_for_sms_channel():
    assert normalize_address("254 700 000001", channel_prefix="") == "+254700000001"
