"""
Notification Module

In-app notifications for account holders and out-of-band delivery of
one-time codes. Both are driven by domain events published after commit and
are best-effort: a failed delivery is logged and never affects the movement
that caused it.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
from abc import ABC, abstractmethod
import uuid

import requests

from .storage import StorageInterface, StorageRecord
from .events import EventDispatcher, EventPayload, DomainEvent
from .logging_config import get_logger, log_action


logger = get_logger("bms.notifications")

OTP_SUBJECT = "Your OTP Code - Banking App"


class NotificationCategory(Enum):
    TRANSACTION = "TRANSACTION"
    ACCOUNT = "ACCOUNT"
    SECURITY = "SECURITY"


@dataclass
class Notification(StorageRecord):
    """In-app notification for one user"""
    user_id: str
    title: str
    message: str
    category: NotificationCategory
    is_read: bool = False
    read_at: Optional[datetime] = None


def mask_account_number(account_number: Optional[str]) -> Optional[str]:
    """Keep the first and last four characters, e.g. AC12****7890"""
    if not account_number or len(account_number) < 8:
        return account_number
    return account_number[:4] + "****" + account_number[-4:]


def mask_email(email: str) -> str:
    name, _, domain = email.partition("@")
    if not domain:
        return "***"
    return f"{name[:1]}***@{domain}"


class NotificationCenter:
    """Stores and serves in-app notifications"""

    def __init__(self, storage: StorageInterface, table_name: str = "notifications"):
        self.storage = storage
        self.table_name = table_name

    def notify(self, user_id: str, title: str, message: str,
               category: NotificationCategory) -> Notification:
        """Create an unread notification for a user"""
        now = datetime.now(timezone.utc)
        notification = Notification(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            title=title,
            message=message,
            category=category
        )
        self._save(notification)
        logger.debug(f"Notification '{title}' created for user {user_id}")
        return notification

    def get_notifications(self, user_id: str, unread_only: bool = False,
                          limit: int = 50) -> List[Notification]:
        """Notifications for a user, newest first"""
        filters = {"user_id": user_id}
        if unread_only:
            filters["is_read"] = False
        notifications = [self._from_dict(data) for data in self.storage.find(self.table_name, filters)]
        notifications.sort(key=lambda n: n.created_at, reverse=True)
        return notifications[:limit]

    def get_unread_count(self, user_id: str) -> int:
        return len(self.storage.find(self.table_name, {"user_id": user_id, "is_read": False}))

    def mark_as_read(self, notification_id: str, user_id: Optional[str] = None) -> bool:
        """
        Mark one notification read. Returns False when it does not exist or
        belongs to another user.
        """
        data = self.storage.load(self.table_name, notification_id)
        if not data:
            return False
        notification = self._from_dict(data)
        if user_id and notification.user_id != user_id:
            return False
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.now(timezone.utc)
            notification.updated_at = notification.read_at
            self._save(notification)
        return True

    def mark_all_as_read(self, user_id: str) -> int:
        count = 0
        for notification in self.get_notifications(user_id, unread_only=True, limit=10000):
            if self.mark_as_read(notification.id):
                count += 1
        return count

    def _save(self, notification: Notification) -> None:
        data = notification.to_dict()
        data["category"] = notification.category.value
        self.storage.save(self.table_name, notification.id, data)

    def _from_dict(self, data: Dict) -> Notification:
        read_at = None
        if data.get("read_at"):
            read_at = datetime.fromisoformat(data["read_at"])
        return Notification(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            user_id=data["user_id"],
            title=data["title"],
            message=data["message"],
            category=NotificationCategory(data["category"]),
            is_read=data.get("is_read", False),
            read_at=read_at
        )


class OtpDelivery(ABC):
    """Out-of-band channel for one-time codes"""

    @abstractmethod
    def deliver_code(self, email: str, code: str, purpose: str, expiry_minutes: int) -> bool:
        """Send the code. Returns True if the channel accepted it."""
        pass


class LogOtpDelivery(OtpDelivery):
    """Development channel: logs that a code was sent, never the code itself"""

    def deliver_code(self, email: str, code: str, purpose: str, expiry_minutes: int) -> bool:
        log_action(logger, "info", f"{OTP_SUBJECT} sent to {mask_email(email)}",
                   action="otp_delivered", resource="otp",
                   extra={"purpose": purpose, "expiry_minutes": expiry_minutes, "channel": "log"})
        return True


class WebhookOtpDelivery(OtpDelivery):
    """POSTs codes to an external mail/SMS gateway"""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def deliver_code(self, email: str, code: str, purpose: str, expiry_minutes: int) -> bool:
        payload = {
            "to": email,
            "subject": OTP_SUBJECT,
            "code": code,
            "purpose": purpose,
            "expiry_minutes": expiry_minutes,
            "body": (
                f"Your one-time code for {purpose.replace('_', ' ').lower()} is {code}. "
                f"This OTP will expire in {expiry_minutes} minutes."
            )
        }
        try:
            response = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            logger.error(f"OTP webhook delivery to {mask_email(email)} failed: {e}")
            return False

        if response.status_code >= 400:
            logger.error(f"OTP webhook returned HTTP {response.status_code} for {mask_email(email)}")
            return False
        return True


class NotificationEventHandler:
    """
    Subscribes to domain events and produces user notifications and OTP
    deliveries
    """

    def __init__(
        self,
        center: NotificationCenter,
        otp_delivery: OtpDelivery,
        high_value_threshold: Optional[Decimal] = None
    ):
        self.center = center
        self.otp_delivery = otp_delivery
        self.high_value_threshold = high_value_threshold

    def register(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe(DomainEvent.OTP_ISSUED, self.on_otp_issued)
        dispatcher.subscribe(DomainEvent.DEPOSIT_COMPLETED, self.on_deposit)
        dispatcher.subscribe(DomainEvent.WITHDRAWAL_COMPLETED, self.on_withdrawal)
        dispatcher.subscribe(DomainEvent.TRANSFER_COMPLETED, self.on_transfer)
        dispatcher.subscribe(DomainEvent.TRANSFER_FAILED, self.on_transfer_failed)
        dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, self.on_account_created)
        dispatcher.subscribe(DomainEvent.ACCOUNT_FROZEN, self.on_account_frozen)
        dispatcher.subscribe(DomainEvent.ACCOUNT_UNFROZEN, self.on_account_unfrozen)
        dispatcher.subscribe(DomainEvent.ACCOUNT_CLOSED, self.on_account_closed)

    def on_otp_issued(self, event: EventPayload) -> None:
        data = event.data
        delivered = self.otp_delivery.deliver_code(
            data["email"], data["code"], data["purpose"], data["expiry_minutes"]
        )
        if not delivered:
            logger.warning(f"OTP delivery failed for user {data['user_id']}; caller may request a resend")

    def on_deposit(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Deposit Successful",
            f"{data['amount']} has been deposited to your account {mask_account_number(data['account_number'])}",
            NotificationCategory.TRANSACTION
        )
        self._high_value(data["owner_id"], data["amount"], "deposit")

    def on_withdrawal(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Withdrawal Successful",
            f"{data['amount']} has been withdrawn from your account {mask_account_number(data['account_number'])}",
            NotificationCategory.TRANSACTION
        )
        self._high_value(data["owner_id"], data["amount"], "withdrawal")

    def on_transfer(self, event: EventPayload) -> None:
        data = event.data
        reference = data["reference_number"]
        self.center.notify(
            data["owner_id"], "Transfer Successful",
            f"{data['amount']} transferred to account {mask_account_number(data['to_account_number'])}. Ref: {reference}",
            NotificationCategory.TRANSACTION
        )
        self.center.notify(
            data["counterparty_owner_id"], "Money Received",
            f"{data['amount']} received from account {mask_account_number(data['account_number'])}. Ref: {reference}",
            NotificationCategory.TRANSACTION
        )
        self._high_value(data["owner_id"], data["amount"], "transfer")

    def on_transfer_failed(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Transfer Failed",
            f"Transfer {data['reference_number']} of {data['amount']} failed: {data.get('reason')}",
            NotificationCategory.TRANSACTION
        )

    def on_account_created(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Account Created",
            f"Your {data['account_type']} account has been created successfully. "
            f"Account number: {data['account_number']}",
            NotificationCategory.ACCOUNT
        )

    def on_account_frozen(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Account Frozen",
            f"Your account {mask_account_number(data['account_number'])} has been frozen. "
            f"Reason: {data.get('reason')}. Contact support.",
            NotificationCategory.ACCOUNT
        )

    def on_account_unfrozen(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Account Unfrozen",
            f"Your account {data['account_number']} has been unfrozen and is now active.",
            NotificationCategory.ACCOUNT
        )

    def on_account_closed(self, event: EventPayload) -> None:
        data = event.data
        self.center.notify(
            data["owner_id"], "Account Closed",
            f"Your account {data['account_number']} has been closed. Reason: {data.get('reason')}",
            NotificationCategory.ACCOUNT
        )

    def _high_value(self, user_id: str, amount: str, kind: str) -> None:
        if self.high_value_threshold is None or Decimal(amount) <= self.high_value_threshold:
            return
        self.center.notify(
            user_id, "High Value Transaction Alert",
            f"A {kind} of {amount} was performed on your account",
            NotificationCategory.SECURITY
        )
