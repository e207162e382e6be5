"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Records who did what, from where, and how severe it was. Audit writes happen
after the business unit of work commits; a failed write is logged and never
rolls back the movement that triggered it.
"""

import hashlib
import json
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, as_utc
from .events import EventDispatcher, EventPayload, DomainEvent
from .logging_config import get_logger


logger = get_logger("bms.audit")


class AuditSeverity(Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


@dataclass
class AuditRecord(StorageRecord):
    """
    Immutable audit record with hash chaining
    """
    actor_username: str
    action: str
    details: str
    severity: AuditSeverity
    previous_hash: str
    current_hash: str
    sequence: int
    client_ip: Optional[str] = None
    related_account_id: Optional[str] = None
    related_transaction_id: Optional[str] = None

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this record
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'actor_username': self.actor_username,
            'action': self.action,
            'details': self.details,
            'severity': self.severity.value,
            'client_ip': self.client_ip,
            'related_account_id': self.related_account_id,
            'related_transaction_id': self.related_transaction_id,
            'previous_hash': self.previous_hash,
            'sequence': self.sequence
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        return self.current_hash == self.calculate_hash()

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['severity'] = self.severity.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditRecord':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        data['severity'] = AuditSeverity(data['severity'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_log"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()

    def _chain_head(self) -> Tuple[str, int]:
        """Hash and sequence of the most recent record"""
        records = self.storage.load_all(self.table_name)
        if not records:
            return "", 0
        last = max(records, key=lambda r: r.get('sequence', 0))
        return last.get('current_hash', ""), last.get('sequence', 0)

    def record(
        self,
        actor_username: str,
        action: str,
        details: str,
        client_ip: Optional[str] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        related_account_id: Optional[str] = None,
        related_transaction_id: Optional[str] = None
    ) -> AuditRecord:
        """
        Append an audit record to the chain

        Args:
            actor_username: Who performed the action ("system" for jobs)
            action: Action name, e.g. TRANSACTION_DEPOSIT or ACCOUNT_FROZEN
            details: Human readable description
            client_ip: Originating address, when known
            severity: INFO, WARNING or CRITICAL
            related_account_id: Account the action touched
            related_transaction_id: Reference number the action touched

        Returns:
            The stored AuditRecord
        """
        with self._lock, self.storage.atomic():
            previous_hash, sequence = self._chain_head()
            now = datetime.now(timezone.utc)

            audit_record = AuditRecord(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                actor_username=actor_username,
                action=action,
                details=details,
                severity=severity,
                previous_hash=previous_hash,
                current_hash="",  # Calculated below
                sequence=sequence + 1,
                client_ip=client_ip,
                related_account_id=related_account_id,
                related_transaction_id=related_transaction_id
            )
            audit_record.current_hash = audit_record.calculate_hash()

            self.storage.save(self.table_name, audit_record.id, audit_record.to_dict())

        logger.info(f"Audit log created: {actor_username} - {action} - {severity.value}")
        return audit_record

    def get_records(
        self,
        actor_username: Optional[str] = None,
        severity: Optional[AuditSeverity] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[AuditRecord]:
        """
        Query audit records, newest first

        Args:
            actor_username: Only records by this user
            severity: Only records of this severity
            start_time: Start of time range (inclusive)
            end_time: End of time range (inclusive)
            limit: Maximum number of records to return
        """
        filters: Dict[str, Any] = {}
        if actor_username:
            filters['actor_username'] = actor_username
        if severity:
            filters['severity'] = severity.value

        records = [AuditRecord.from_dict(data) for data in self.storage.find(self.table_name, filters)]

        start_time, end_time = as_utc(start_time), as_utc(end_time)
        if start_time:
            records = [r for r in records if r.created_at >= start_time]
        if end_time:
            records = [r for r in records if r.created_at <= end_time]

        records.sort(key=lambda r: r.sequence, reverse=True)
        if limit:
            records = records[:limit]
        return records

    def get_records_for_transaction(self, reference_number: str) -> List[AuditRecord]:
        records_data = self.storage.find(self.table_name, {'related_transaction_id': reference_number})
        records = [AuditRecord.from_dict(data) for data in records_data]
        records.sort(key=lambda r: r.sequence)
        return records

    def count_records(self) -> int:
        return self.storage.count(self.table_name)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_records': 0,
            'hash_errors': [],
            'chain_breaks': []
        }

        records = [AuditRecord.from_dict(data) for data in self.storage.load_all(self.table_name)]
        records.sort(key=lambda r: r.sequence)
        result['total_records'] = len(records)

        previous_hash = ""
        for position, audit_record in enumerate(records):
            if not audit_record.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'record_id': audit_record.id,
                    'position': position,
                    'expected_hash': audit_record.calculate_hash(),
                    'actual_hash': audit_record.current_hash
                })
            if audit_record.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'record_id': audit_record.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': audit_record.previous_hash
                })
            previous_hash = audit_record.current_hash

        return result


# Action name and severity per event type
_AUDIT_ACTIONS = {
    DomainEvent.ACCOUNT_CREATED: ("ACCOUNT_CREATED", AuditSeverity.INFO),
    DomainEvent.ACCOUNT_FROZEN: ("ACCOUNT_FROZEN", AuditSeverity.CRITICAL),
    DomainEvent.ACCOUNT_UNFROZEN: ("ACCOUNT_UNFROZEN", AuditSeverity.INFO),
    DomainEvent.ACCOUNT_CLOSED: ("ACCOUNT_CLOSED", AuditSeverity.CRITICAL),
    DomainEvent.ACCOUNT_LIMITS_UPDATED: ("ACCOUNT_LIMITS_UPDATED", AuditSeverity.WARNING),
    DomainEvent.DEPOSIT_COMPLETED: ("TRANSACTION_DEPOSIT", AuditSeverity.INFO),
    DomainEvent.WITHDRAWAL_COMPLETED: ("TRANSACTION_WITHDRAW", AuditSeverity.INFO),
    DomainEvent.TRANSFER_INITIATED: ("TRANSACTION_TRANSFER_INITIATED", AuditSeverity.INFO),
    DomainEvent.TRANSFER_COMPLETED: ("TRANSACTION_TRANSFER", AuditSeverity.INFO),
    DomainEvent.TRANSFER_FAILED: ("TRANSACTION_TRANSFER_FAILED", AuditSeverity.WARNING),
    DomainEvent.TRANSFER_EXPIRED: ("TRANSACTION_TRANSFER_EXPIRED", AuditSeverity.WARNING),
    DomainEvent.TRANSACTION_REVIEWED: ("TRANSACTION_REVIEWED", AuditSeverity.WARNING),
    DomainEvent.OTP_ISSUED: ("SECURITY_OTP_ISSUED", AuditSeverity.INFO),
    DomainEvent.OTP_VERIFIED: ("SECURITY_OTP_VERIFIED", AuditSeverity.INFO),
    DomainEvent.OTP_REJECTED: ("SECURITY_OTP_REJECTED", AuditSeverity.WARNING),
}


class AuditEventHandler:
    """Turns published domain events into audit records"""

    def __init__(self, audit_trail: AuditTrail):
        self.audit_trail = audit_trail

    def register(self, dispatcher: EventDispatcher) -> None:
        dispatcher.subscribe_all(self.handle)

    def handle(self, event: EventPayload) -> None:
        mapping = _AUDIT_ACTIONS.get(event.event_type)
        if mapping is None:
            return
        action, severity = mapping
        self.audit_trail.record(
            actor_username=event.actor or "system",
            action=action,
            details=self._details(event),
            client_ip=event.client_ip,
            severity=severity,
            related_account_id=event.data.get('account_id'),
            related_transaction_id=event.data.get('reference_number')
        )

    @staticmethod
    def _details(event: EventPayload) -> str:
        """Readable summary; the OTP code itself never reaches the audit log"""
        data = event.data
        if event.event_type in (DomainEvent.OTP_ISSUED, DomainEvent.OTP_VERIFIED, DomainEvent.OTP_REJECTED):
            return f"OTP {event.event_type.value.split('.')[-1]} for purpose {data.get('purpose')}"
        parts = []
        for key in ('transaction_type', 'amount', 'account_number', 'to_account_number',
                    'status', 'reason', 'remarks'):
            if data.get(key) is not None:
                parts.append(f"{key}={data[key]}")
        return ", ".join(parts) or event.event_type.value
