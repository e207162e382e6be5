"""
Step-Up Gate Module

Issues and verifies one-time codes. Per (user, purpose) slot the state runs
None -> Issued -> {Consumed, Expired, Exhausted}. Issuing a new code
invalidates the previous unused one for the same purpose. Verification fails
closed: it returns False for every normal failure instead of raising.
"""

import secrets
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .events import EventDispatcher, EventOutbox, EventPayload, DomainEvent
from .identity import UserIdentity
from .logging_config import get_logger, log_action


logger = get_logger("bms.otp")


class OtpPurpose(Enum):
    LOGIN_2FA = "LOGIN_2FA"
    TRANSACTION = "TRANSACTION"
    PASSWORD_RESET = "PASSWORD_RESET"


@dataclass
class OneTimeCode(StorageRecord):
    """A single issued code"""
    user_id: str
    purpose: OtpPurpose
    code: str
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None
    attempts: int = 0
    related_reference: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class StepUpGate:
    """
    One-time code state machine

    Args:
        storage: Backend for the codes table
        dispatcher: Receives OTP_ISSUED events for out-of-band delivery
        code_length: Number of digits per code
        expiry_minutes: Validity window of a code
        max_attempts: Verification attempts allowed per code
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        storage: StorageInterface,
        dispatcher: Optional[EventDispatcher] = None,
        code_length: int = 6,
        expiry_minutes: int = 5,
        max_attempts: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        table_name: str = "one_time_codes"
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.code_length = code_length
        self.expiry_minutes = expiry_minutes
        self.max_attempts = max_attempts
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.table_name = table_name

    def generate_code(self) -> str:
        """Fixed-length numeric code from the OS CSPRNG"""
        return "".join(secrets.choice("0123456789") for _ in range(self.code_length))

    def issue(
        self,
        user: UserIdentity,
        purpose: OtpPurpose,
        related_reference: Optional[str] = None,
        outbox: Optional[EventOutbox] = None,
        client_ip: Optional[str] = None
    ) -> OneTimeCode:
        """
        Issue a new code and queue it for delivery

        Prior unused codes for (user, purpose) are invalidated first. When an
        outbox is given the OTP_ISSUED event waits in it until the caller's
        unit of work commits; otherwise it is published right away.
        """
        now = self.clock()
        with self.storage.atomic():
            invalidated = self._invalidate_previous(user.id, purpose, now)
            otp = OneTimeCode(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user.id,
                purpose=purpose,
                code=self.generate_code(),
                expires_at=now + timedelta(minutes=self.expiry_minutes),
                related_reference=related_reference
            )
            self._save_code(otp)

        log_action(logger, "info", f"OTP issued for {purpose.value}",
                   user_id=user.id, action="otp_issued", resource="otp",
                   correlation_id=related_reference,
                   extra={"invalidated": invalidated, "expires_at": otp.expires_at.isoformat()})

        event = EventPayload(
            event_type=DomainEvent.OTP_ISSUED,
            entity_type="otp",
            entity_id=otp.id,
            data={
                "user_id": user.id,
                "email": user.email,
                "code": otp.code,
                "purpose": purpose.value,
                "expiry_minutes": self.expiry_minutes,
                "reference_number": related_reference
            },
            actor=user.username,
            client_ip=client_ip
        )
        if outbox is not None:
            outbox.add(event)
        elif self.dispatcher:
            self.dispatcher.publish(event)

        return otp

    def verify(
        self,
        user_id: str,
        code: Optional[str],
        purpose: Optional[OtpPurpose] = None,
        related_reference: Optional[str] = None
    ) -> bool:
        """
        Verify a code against the live slot for the user

        A wrong code increments attempts without consuming the slot; the
        correct code increments attempts and marks the code used. Returns
        False when no live code exists, it is used or expired, or attempts
        have reached the cap.
        """
        now = self.clock()
        with self.storage.atomic():
            otp = self._find_live_code(user_id, purpose, related_reference)
            if otp is None:
                logger.warning(f"No active OTP for user {user_id}")
                return False
            if otp.is_expired(now):
                logger.warning(f"OTP expired for user {user_id}")
                return False
            if otp.attempts >= self.max_attempts:
                logger.warning(f"Max OTP attempts exceeded for user {user_id}")
                return False

            otp.attempts += 1
            otp.updated_at = now
            matched = bool(code) and secrets.compare_digest(str(code), otp.code)
            if matched:
                otp.used = True
                otp.used_at = now
            self._save_code(otp)

        if matched:
            log_action(logger, "info", "OTP verified", user_id=user_id,
                       action="otp_verified", resource="otp", correlation_id=related_reference)
        else:
            log_action(logger, "warning", "Invalid OTP attempt", user_id=user_id,
                       action="otp_rejected", resource="otp", correlation_id=related_reference,
                       extra={"attempts": otp.attempts, "max_attempts": self.max_attempts})
        return matched

    def get_active_code(self, user_id: str, purpose: OtpPurpose) -> Optional[OneTimeCode]:
        """Newest unused, unexpired code for the slot"""
        otp = self._find_live_code(user_id, purpose, None)
        if otp and not otp.is_expired(self.clock()):
            return otp
        return None

    def has_live_code(self, user_id: str, purpose: OtpPurpose, related_reference: str) -> bool:
        """True while a code bound to the reference can still be verified"""
        otp = self._find_live_code(user_id, purpose, related_reference)
        return (
            otp is not None
            and not otp.is_expired(self.clock())
            and otp.attempts < self.max_attempts
        )

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete used or expired codes; returns the number removed"""
        now = now or self.clock()
        removed = 0
        with self.storage.atomic():
            for data in self.storage.load_all(self.table_name):
                otp = self._code_from_dict(data)
                if otp.used or otp.is_expired(now):
                    self.storage.delete(self.table_name, otp.id)
                    removed += 1
        if removed:
            logger.info(f"Purged {removed} used or expired OTP codes")
        return removed

    def _find_live_code(
        self,
        user_id: str,
        purpose: Optional[OtpPurpose],
        related_reference: Optional[str]
    ) -> Optional[OneTimeCode]:
        filters: Dict = {"user_id": user_id, "used": False}
        if purpose:
            filters["purpose"] = purpose.value
        if related_reference:
            filters["related_reference"] = related_reference
        codes = [self._code_from_dict(data) for data in self.storage.find(self.table_name, filters)]
        if not codes:
            return None
        return max(codes, key=lambda c: c.created_at)

    def _invalidate_previous(self, user_id: str, purpose: OtpPurpose, now: datetime) -> int:
        count = 0
        for data in self.storage.find(self.table_name, {"user_id": user_id, "purpose": purpose.value, "used": False}):
            otp = self._code_from_dict(data)
            otp.used = True
            otp.used_at = now
            otp.updated_at = now
            self._save_code(otp)
            count += 1
        return count

    def _save_code(self, otp: OneTimeCode) -> None:
        data = otp.to_dict()
        data['purpose'] = otp.purpose.value
        self.storage.save(self.table_name, otp.id, data)

    def _code_from_dict(self, data: Dict) -> OneTimeCode:
        used_at = None
        if data.get('used_at'):
            used_at = datetime.fromisoformat(data['used_at'])
        return OneTimeCode(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            purpose=OtpPurpose(data['purpose']),
            code=data['code'],
            expires_at=datetime.fromisoformat(data['expires_at']),
            used=data.get('used', False),
            used_at=used_at,
            attempts=data.get('attempts', 0),
            related_reference=data.get('related_reference')
        )
