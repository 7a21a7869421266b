from unittest.mock import MagicMock, Mock, patch

import pytest

from app.services.alert_service import (
    MAX_CONTEXT_VALUE,
    alert_critical,
    alert_error,
    alert_warning,
    format_alert,
    send_alert,
)


@pytest.fixture
def telegram():
    with patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token"), patch(
        "app.services.alert_service.ALERT_CHAT_ID", "test-chat"
    ), patch("app.services.alert_service.httpx.Client") as mock_client_class:
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)
        yield mock_client


class TestSendAlert:
    @patch("app.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("app.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert send_alert("ERROR", "Test message") is False

    def test_sends_alert_to_telegram(self, telegram):
        assert send_alert("ERROR", "Notification worker crashed") is True

        telegram.post.assert_called_once()
        url = telegram.post.call_args[0][0]
        json_data = telegram.post.call_args[1]["json"]
        assert "api.telegram.org/bottest-token" in url
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]
        assert "Notification worker crashed" in json_data["text"]

    def test_includes_context_in_message(self, telegram):
        send_alert("WARNING", "Staff notification failed", {"user_id": "919811112222", "whatsapp_failed": 2})

        text = telegram.post.call_args[1]["json"]["text"]
        assert "user_id: 919811112222" in text
        assert "whatsapp_failed: 2" in text

    def test_returns_false_on_telegram_error(self, telegram):
        telegram.post.return_value = Mock(status_code=400)
        assert send_alert("ERROR", "Test message") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_returns_false_on_exception(self, mock_client_class):
        mock_client_class.return_value.__enter__.side_effect = Exception("Network error")
        assert send_alert("ERROR", "Test message") is False


class TestFormatAlert:
    def test_level_icon(self):
        assert format_alert("CRITICAL", "DB down").startswith("🔥")
        assert format_alert("ERROR", "Loop failed").startswith("❌")

    def test_long_context_values_are_truncated(self):
        text = format_alert("WARNING", "x", {"error": "e" * 500})
        assert "e" * MAX_CONTEXT_VALUE in text
        assert "e" * (MAX_CONTEXT_VALUE + 1) not in text


class TestAlertShortcuts:
    @patch("app.services.alert_service.send_alert")
    def test_alert_error(self, mock_send):
        mock_send.return_value = True

        assert alert_error("Inbound processing failed", {"sender": "919811112222"}) is True
        mock_send.assert_called_once_with("ERROR", "Inbound processing failed", {"sender": "919811112222"})

    @patch("app.services.alert_service.send_alert")
    def test_alert_critical(self, mock_send):
        alert_critical("Started without handoff cache")
        mock_send.assert_called_once_with("CRITICAL", "Started without handoff cache", None)

    @patch("app.services.alert_service.send_alert")
    def test_alert_warning(self, mock_send):
        alert_warning("Notification queue full")
        mock_send.assert_called_once_with("WARNING", "Notification queue full", None)
