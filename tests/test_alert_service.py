from unittest.mock import MagicMock, Mock, patch

import pytest

from concierge.services.alert_service import alert_critical, alert_error, alert_warning, send_alert


@pytest.fixture
def telegram():
    with patch("concierge.services.alert_service.ALERT_BOT_TOKEN", "test-token"), patch(
        "concierge.services.alert_service.ALERT_CHAT_ID", "ops-chat"
    ), patch("concierge.services.alert_service.httpx.Client") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)
        yield mock_client


class TestSendAlert:
    @patch("concierge.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("concierge.services.alert_service.ALERT_CHAT_ID", None)
    def test_unconfigured_only_logs(self):
        assert send_alert("ERROR", "Inbound job failed") is False

    def test_posts_to_telegram(self, telegram):
        assert send_alert("CRITICAL", "Inbound queue unavailable", {"message_id": "MM001"}) is True

        url = telegram.post.call_args[0][0]
        payload = telegram.post.call_args[1]["json"]
        assert url == "https://api.telegram.org/bottest-token/sendMessage"
        assert payload["chat_id"] == "ops-chat"
        assert "🔥" in payload["text"]
        assert "message_id: MM001" in payload["text"]

    def test_rejected_by_telegram(self, telegram):
        telegram.post.return_value = Mock(status_code=400)

        assert send_alert("WARNING", "WhatsApp message for unknown number") is False

    def test_network_failure_never_raises(self, telegram):
        telegram.post.side_effect = Exception("Network error")

        assert send_alert("ERROR", "WhatsApp send rejected") is False


class TestAlertShortcuts:
    @pytest.mark.parametrize(
        "shortcut,level",
        [(alert_error, "ERROR"), (alert_critical, "CRITICAL"), (alert_warning, "WARNING")],
    )
    @patch("concierge.services.alert_service.send_alert", return_value=True)
    def test_levels(self, mock_send, shortcut, level):
        assert shortcut("Something happened", {"salon_id": "abc"}) is True
        mock_send.assert_called_once_with(level, "Something happened", {"salon_id": "abc"})
