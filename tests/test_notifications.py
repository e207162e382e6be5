"""
Tests for in-app notifications and OTP delivery channels
"""

import pytest
from decimal import Decimal
from unittest.mock import Mock, patch

import requests

from bms_core.storage import InMemoryStorage
from bms_core.events import EventDispatcher, EventPayload, DomainEvent
from bms_core.notifications import (
    NotificationCenter, NotificationCategory, NotificationEventHandler,
    LogOtpDelivery, WebhookOtpDelivery, OtpDelivery,
    mask_account_number, mask_email
)


class TestMasking:

    def test_mask_account_number(self):
        assert mask_account_number("AC1234567890") == "AC12****7890"
        assert mask_account_number("AC12") == "AC12"
        assert mask_account_number(None) is None

    def test_mask_email(self):
        assert mask_email("alice@example.com") == "a***@example.com"
        assert mask_email("not-an-email") == "***"


class TestNotificationCenter:

    def setup_method(self):
        """Set up test fixtures"""
        self.center = NotificationCenter(InMemoryStorage())

    def test_notify_and_list(self):
        self.center.notify("u1", "First", "one", NotificationCategory.ACCOUNT)
        self.center.notify("u1", "Second", "two", NotificationCategory.TRANSACTION)
        self.center.notify("u2", "Other", "three", NotificationCategory.SECURITY)

        notifications = self.center.get_notifications("u1")

        assert {n.title for n in notifications} == {"First", "Second"}
        assert all(not n.is_read for n in notifications)
        assert self.center.get_unread_count("u1") == 2
        assert len(self.center.get_notifications("u1", limit=1)) == 1

    def test_mark_as_read(self):
        notification = self.center.notify("u1", "Hello", "msg", NotificationCategory.ACCOUNT)

        assert self.center.mark_as_read(notification.id, user_id="u1")

        stored = self.center.get_notifications("u1")[0]
        assert stored.is_read
        assert stored.read_at is not None
        assert self.center.get_unread_count("u1") == 0
        assert self.center.get_notifications("u1", unread_only=True) == []

    def test_mark_as_read_rejects_other_user(self):
        notification = self.center.notify("u1", "Hello", "msg", NotificationCategory.ACCOUNT)

        assert not self.center.mark_as_read(notification.id, user_id="u2")
        assert not self.center.mark_as_read("missing", user_id="u1")
        assert self.center.get_unread_count("u1") == 1

    def test_mark_all_as_read(self):
        for i in range(3):
            self.center.notify("u1", f"N{i}", "msg", NotificationCategory.TRANSACTION)
        self.center.notify("u2", "Other", "msg", NotificationCategory.TRANSACTION)

        assert self.center.mark_all_as_read("u1") == 3
        assert self.center.get_unread_count("u1") == 0
        assert self.center.get_unread_count("u2") == 1


class TestOtpDelivery:

    def test_log_delivery_never_logs_code(self, caplog):
        with caplog.at_level("INFO", logger="bms.notifications"):
            assert LogOtpDelivery().deliver_code("alice@example.com", "482913", "TRANSACTION", 5)

        assert "482913" not in caplog.text

    @patch("bms_core.notifications.requests.post")
    def test_webhook_success(self, mock_post):
        mock_post.return_value = Mock(status_code=202)
        delivery = WebhookOtpDelivery("https://gateway.example.com/send", timeout=2.0)

        assert delivery.deliver_code("alice@example.com", "482913", "TRANSACTION", 5)

        args, kwargs = mock_post.call_args
        assert args[0] == "https://gateway.example.com/send"
        assert kwargs["json"]["to"] == "alice@example.com"
        assert kwargs["json"]["code"] == "482913"
        assert "expire in 5 minutes" in kwargs["json"]["body"]
        assert kwargs["timeout"] == 2.0

    @patch("bms_core.notifications.requests.post")
    def test_webhook_http_error(self, mock_post):
        mock_post.return_value = Mock(status_code=503)
        delivery = WebhookOtpDelivery("https://gateway.example.com/send")

        assert not delivery.deliver_code("alice@example.com", "482913", "TRANSACTION", 5)

    @patch("bms_core.notifications.requests.post")
    def test_webhook_connection_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        delivery = WebhookOtpDelivery("https://gateway.example.com/send")

        assert not delivery.deliver_code("alice@example.com", "482913", "TRANSACTION", 5)


class TestNotificationEventHandler:

    def setup_method(self):
        """Set up test fixtures"""
        self.center = NotificationCenter(InMemoryStorage())
        self.delivery = Mock(spec=OtpDelivery)
        self.delivery.deliver_code.return_value = True
        self.dispatcher = EventDispatcher()
        NotificationEventHandler(
            self.center, self.delivery, high_value_threshold=Decimal("25000.00")
        ).register(self.dispatcher)

    def publish(self, event_type, data):
        self.dispatcher.publish(EventPayload(
            event_type=event_type, entity_type="transaction", entity_id="e1", data=data
        ))

    def titles(self, user_id):
        return sorted(n.title for n in self.center.get_notifications(user_id))

    def test_otp_issued_is_delivered(self):
        self.publish(DomainEvent.OTP_ISSUED, {
            "user_id": "u1", "email": "alice@example.com", "code": "482913",
            "purpose": "TRANSACTION", "expiry_minutes": 5, "reference_number": "TXN12345678"
        })

        self.delivery.deliver_code.assert_called_once_with("alice@example.com", "482913", "TRANSACTION", 5)
        assert self.center.get_notifications("u1") == []

    def test_deposit_notification_masks_account(self):
        self.publish(DomainEvent.DEPOSIT_COMPLETED, {
            "owner_id": "u1", "account_number": "AC1234567890", "amount": "100.00"
        })

        notification = self.center.get_notifications("u1")[0]
        assert notification.title == "Deposit Successful"
        assert "AC12****7890" in notification.message
        assert "AC1234567890" not in notification.message

    def test_high_value_alert(self):
        self.publish(DomainEvent.WITHDRAWAL_COMPLETED, {
            "owner_id": "u1", "account_number": "AC1234567890", "amount": "25000.01"
        })
        self.publish(DomainEvent.WITHDRAWAL_COMPLETED, {
            "owner_id": "u2", "account_number": "AC0987654321", "amount": "25000.00"
        })

        assert self.titles("u1") == ["High Value Transaction Alert", "Withdrawal Successful"]
        assert self.titles("u2") == ["Withdrawal Successful"]

    def test_transfer_notifies_both_parties(self):
        self.publish(DomainEvent.TRANSFER_COMPLETED, {
            "owner_id": "u1", "counterparty_owner_id": "u2",
            "account_number": "AC1111111111", "to_account_number": "AC2222222222",
            "reference_number": "TXN12345678", "amount": "10.00"
        })

        assert self.titles("u1") == ["Transfer Successful"]
        assert self.titles("u2") == ["Money Received"]
        assert "TXN12345678" in self.center.get_notifications("u2")[0].message

    def test_account_frozen(self):
        self.publish(DomainEvent.ACCOUNT_FROZEN, {
            "owner_id": "u1", "account_number": "AC1234567890", "reason": "fraud review"
        })

        notification = self.center.get_notifications("u1")[0]
        assert notification.category == NotificationCategory.ACCOUNT
        assert "fraud review" in notification.message
