import asyncio
from unittest.mock import patch

import httpx
import pytest

from concierge.config import settings
from concierge.errors import WhatsAppError
from concierge.services.signature import compute_twilio_signature, validate_twilio_signature
from concierge.services.whatsapp_service import (
    MAX_BODY_CHARS,
    normalize_phone,
    send_whatsapp_message,
    to_whatsapp_address,
)


@pytest.fixture
def twilio_credentials(monkeypatch):
    monkeypatch.setattr(settings, "twilio_account_sid", "AC123")
    monkeypatch.setattr(settings, "twilio_auth_token", "secret")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _send(client, **kwargs):
    async def run():
        async with client:
            return await send_whatsapp_message(
                from_number=kwargs.get("from_number", "+5511999990000"),
                to=kwargs.get("to", "whatsapp:+5511988887777"),
                body=kwargs.get("body", "Olá!"),
                http_client=client,
            )

    return asyncio.run(run())


class TestPhoneNormalization:
    def test_strips_channel_prefix_and_punctuation(self):
        assert normalize_phone("whatsapp:+55 (11) 98888-7777") == "+5511988887777"

    def test_empty(self):
        assert normalize_phone(None) == ""
        assert normalize_phone("whatsapp:") == ""

    def test_routing_address_passes_through(self):
        assert to_whatsapp_address("whatsapp:+5511988887777") == "whatsapp:+5511988887777"
        assert to_whatsapp_address("+55 11 98888-7777") == "whatsapp:+5511988887777"


class TestTwilioSignature:
    def test_valid_signature(self):
        params = {"From": "whatsapp:+5511988887777", "Body": "Oi", "MessageSid": "MM001"}
        url = "https://api.example.com/webhooks/whatsapp"
        signature = compute_twilio_signature("secret", url, params)

        assert validate_twilio_signature("secret", signature, url, params) is True

    def test_tampered_body_rejected(self):
        url = "https://api.example.com/webhooks/whatsapp"
        signature = compute_twilio_signature("secret", url, {"Body": "Oi"})

        assert validate_twilio_signature("secret", signature, url, {"Body": "Tchau"}) is False

    def test_missing_signature_or_token_rejected(self):
        assert validate_twilio_signature("secret", None, "https://x", {}) is False
        assert validate_twilio_signature("", "abc", "https://x", {}) is False

    def test_param_order_does_not_matter(self):
        url = "https://api.example.com/webhooks/whatsapp"
        first = compute_twilio_signature("secret", url, {"A": "1", "B": "2"})
        second = compute_twilio_signature("secret", url, {"B": "2", "A": "1"})
        assert first == second


class TestSendWhatsAppMessage:
    def test_returns_sid(self, twilio_credentials):
        captured = {}

        def handler(request: httpx.Request):
            captured["url"] = str(request.url)
            captured["body"] = request.content.decode()
            return httpx.Response(201, json={"sid": "SM123"})

        sid = _send(_client(handler))

        assert sid == "SM123"
        assert captured["url"].endswith("/Accounts/AC123/Messages.json")
        assert "whatsapp%3A%2B5511988887777" in captured["body"]

    def test_truncates_long_body(self, twilio_credentials):
        captured = {}

        def handler(request: httpx.Request):
            captured["length"] = len(httpx.QueryParams(request.content.decode())["Body"])
            return httpx.Response(201, json={"sid": "SM1"})

        _send(_client(handler), body="a" * (MAX_BODY_CHARS + 50))

        assert captured["length"] == MAX_BODY_CHARS

    def test_server_error_is_retryable(self, twilio_credentials):
        client = _client(lambda request: httpx.Response(503, text="unavailable"))

        with pytest.raises(WhatsAppError) as exc_info:
            _send(client)

        assert exc_info.value.retryable is True
        assert exc_info.value.provider_status == 503

    def test_too_many_requests_is_retryable(self, twilio_credentials):
        client = _client(lambda request: httpx.Response(429, text="slow down"))

        with pytest.raises(WhatsAppError) as exc_info:
            _send(client)

        assert exc_info.value.retryable is True

    @patch("concierge.services.whatsapp_service.alert_error")
    def test_client_error_is_terminal_and_alerts(self, mock_alert, twilio_credentials):
        client = _client(lambda request: httpx.Response(400, json={"message": "invalid To"}))

        with pytest.raises(WhatsAppError) as exc_info:
            _send(client)

        assert exc_info.value.retryable is False
        mock_alert.assert_called_once()

    def test_transport_error_is_retryable(self, twilio_credentials):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(WhatsAppError) as exc_info:
            _send(_client(handler))

        assert exc_info.value.retryable is True

    def test_missing_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "twilio_account_sid", "")

        with pytest.raises(WhatsAppError) as exc_info:
            asyncio.run(send_whatsapp_message(from_number="+1", to="+2", body="hi"))

        assert exc_info.value.retryable is False

    def test_empty_body_refused(self, twilio_credentials):
        with pytest.raises(WhatsAppError):
            asyncio.run(send_whatsapp_message(from_number="+1", to="+2", body="   "))
