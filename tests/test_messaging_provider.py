from unittest.mock import MagicMock, patch

import pytest
import requests

from wellpulse.domain.errors import ProviderSendFailure
from wellpulse.infrastructure.config import TwilioSettings
from wellpulse.infrastructure.messaging import TwilioProvider, with_channel_prefix

POST = "wellpulse.infrastructure.messaging.messaging_provider.requests.post"


@pytest.fixture
def settings():
    return TwilioSettings(
        account_sid="AC123",
        auth_token="secret",
        broadcast_number="+14155238886",
        api_base="https://api.twilio.com",
        channel="whatsapp",
        timeout_seconds=7,
    )


def fake_response(status_code=201, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.text = text
    response.json.return_value = payload if payload is not None else {}
    return response


@patch(POST)
def test_send_posts_form_to_messages_endpoint(mock_post, settings):
    mock_post.return_value = fake_response(payload={"sid": "SM42", "status": "queued"})

    receipt = TwilioProvider(settings).send("+14155238886", "whatsapp:+254700000001", "Hello")

    assert receipt.provider_message_id == "SM42"
    assert receipt.status == "queued"
    mock_post.assert_called_once_with(
        "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json",
        data={"From": "whatsapp:+14155238886", "To": "whatsapp:+254700000001", "Body": "Hello"},
        auth=("AC123", "secret"),
        timeout=7,
    )


@patch(POST)
def test_sms_channel_sends_plain_numbers(mock_post, settings):
    mock_post.return_value = fake_response(payload={"sid": "SM1"})
    sms = TwilioSettings(account_sid="AC123", auth_token="secret", broadcast_number="+1415", channel="sms")

    TwilioProvider(sms).send("+14155238886", "+254700000001", "Hi")

    data = mock_post.call_args.kwargs["data"]
    assert data["From"] == "+14155238886"
    assert data["To"] == "+254700000001"


@patch(POST)
def test_rejection_carries_provider_text(mock_post, settings):
    body = '{"code": 21211, "message": "The \'To\' number is not a valid phone number."}'
    mock_post.return_value = fake_response(status_code=400, text=body)

    with pytest.raises(ProviderSendFailure) as excinfo:
        TwilioProvider(settings).send("+14155238886", "whatsapp:+1", "Hello")

    assert excinfo.value.detail == body
    assert excinfo.value.status_code == 400


@patch(POST)
def test_network_error_becomes_send_failure(mock_post, settings):
    mock_post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(ProviderSendFailure) as excinfo:
        TwilioProvider(settings).send("+14155238886", "whatsapp:+254700000001", "Hello")

    assert "connection refused" in str(excinfo.value)
    assert excinfo.value.status_code is None


@patch(POST)
def test_non_json_success_still_returns_receipt(mock_post, settings):
    response = fake_response()
    response.json.side_effect = ValueError("no json")
    mock_post.return_value = response

    receipt = TwilioProvider(settings).send("+14155238886", "whatsapp:+254700000001", "Hello")

    assert receipt.provider_message_id == ""


def test_session_is_used_when_given(settings):
    session = MagicMock()
    session.post.return_value = fake_response(payload={"sid": "SM7"})

    receipt = TwilioProvider(settings, session=session).send("+1", "+2", "x")

    assert receipt.provider_message_id == "SM7"
    session.post.assert_called_once()


@pytest.mark.parametrize(
    "address, prefix, expected",
    [
        ("+1", "whatsapp:", "whatsapp:+1"),
        ("whatsapp:+1", "whatsapp:", "whatsapp:+1"),
        ("+1", "", "+1"),
    ],
)
def test_with_channel_prefix(address, prefix, expected):
    assert with_channel_prefix(address, prefix) == expected
