import threading
from datetime import datetime, timedelta, timezone

import pytest

from wellpulse.domain.errors import ProviderSendFailure
from wellpulse.domain.models import (
    AnnouncementBroadcast,
    CheckInBroadcast,
    PollBroadcast,
    PollType,
    Targeting,
)
from wellpulse.infrastructure.config import DispatchSettings
from wellpulse.infrastructure.messaging import MessagingProvider, SendReceipt
from wellpulse.infrastructure.persistence import init_database


class FakeProvider(MessagingProvider):
    """Accepts every message except those addressed to `reject`."""

    def __init__(self, reject=None, error_text='{"code": 63016, "message": "Failed to send"}'):
        self.reject = set(reject or [])
        self.error_text = error_text
        self.sent = []
        self._lock = threading.Lock()

    def send(self, from_address, to_address, body):
        with self._lock:
            if to_address in self.reject:
                raise ProviderSendFailure(self.error_text, status_code=400)
            self.sent.append((from_address, to_address, body))
            return SendReceipt(provider_message_id=f"SM{len(self.sent):032d}", status="queued")

    def bodies_to(self, to_address):
        return [body for _, to, body in self.sent if to == to_address]


class Clock:
    """Callable clock the tests can move forward."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def db(tmp_path):
    return init_database(str(tmp_path / "wellpulse-test.db"))


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def dispatch_settings():
    return DispatchSettings(max_workers=1)


@pytest.fixture
def employees(db):
    """Two reachable employees of org_1, plus ones the resolver must skip."""
    ids = {
        "A": db.add_employee("org_1", "A", phone="+254700000001", department="Ops", employee_id="emp_a"),
        "B": db.add_employee("org_1", "B", phone="+254700000002", department="Sales", employee_id="emp_b"),
    }
    db.add_employee("org_1", "Inactive", phone="+254700000009", department="Ops", is_active=False,
                    employee_id="emp_inactive")
    db.add_employee("org_1", "NoPhone", phone="   ", department="Ops", employee_id="emp_nophone")
    db.add_employee("org_2", "Other Org", phone="+254700000077", department="Ops", employee_id="emp_other")
    return ids


@pytest.fixture
def rating_poll(db):
    poll = PollBroadcast(
        id="poll_1",
        organization_id="org_1",
        title="Workload",
        question="How manageable was your workload this week?",
        poll_type=PollType.RATING,
        rating_scale=5,
        targeting=Targeting(),
    )
    db.add_broadcast(poll)
    return db.get_broadcast("poll_1")


@pytest.fixture
def choice_poll(db):
    poll = PollBroadcast(
        id="poll_lunch",
        organization_id="org_1",
        title="Team lunch",
        question="Where should we go?",
        poll_type=PollType.MULTIPLE_CHOICE,
        options=["Pizza", "Sushi", "Tacos"],
    )
    db.add_broadcast(poll)
    return db.get_broadcast("poll_lunch")


@pytest.fixture
def announcement(db):
    item = AnnouncementBroadcast(
        id="ann_1",
        organization_id="org_1",
        title="Office closed Friday",
        content="The office is closed for maintenance.",
    )
    db.add_broadcast(item)
    return db.get_broadcast("ann_1")


@pytest.fixture
def checkin(db):
    item = CheckInBroadcast(
        id="chk_1",
        organization_id="org_1",
        title="Monday check-in",
        message="Hi {name}, how are you feeling today? Reply with a number from 1 to 10.",
    )
    db.add_broadcast(item)
    return db.get_broadcast("chk_1")
