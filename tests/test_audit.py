"""
Test suite for the audit trail

Tests hash chaining, tamper detection, querying and the event handler
that turns domain events into audit records.
"""

import pytest
from datetime import datetime, timezone, timedelta

from bms_core.storage import InMemoryStorage
from bms_core.audit import AuditTrail, AuditRecord, AuditSeverity, AuditEventHandler
from bms_core.events import EventDispatcher, EventPayload, DomainEvent


class TestAuditTrail:

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def test_records_are_chained(self):
        first = self.audit.record("alice", "TRANSACTION_DEPOSIT", "amount=10.00", client_ip="10.0.0.1")
        second = self.audit.record("admin", "ACCOUNT_FROZEN", "reason=fraud", severity=AuditSeverity.CRITICAL)

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert first.verify_hash() and second.verify_hash()

    def test_integrity_of_untouched_chain(self):
        for i in range(5):
            self.audit.record("alice", "ACTION", f"step {i}")

        result = self.audit.verify_integrity()

        assert result["valid"]
        assert result["total_records"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampering_is_detected(self):
        self.audit.record("alice", "TRANSACTION_WITHDRAW", "amount=10.00")
        target = self.audit.record("alice", "TRANSACTION_WITHDRAW", "amount=20.00")
        self.audit.record("alice", "TRANSACTION_WITHDRAW", "amount=30.00")

        data = self.storage.load(self.audit.table_name, target.id)
        data["details"] = "amount=0.01"
        self.storage.save(self.audit.table_name, target.id, data)

        result = self.audit.verify_integrity()

        assert not result["valid"]
        assert [e["record_id"] for e in result["hash_errors"]] == [target.id]

    def test_deleted_record_breaks_chain(self):
        self.audit.record("alice", "A", "1")
        middle = self.audit.record("alice", "B", "2")
        self.audit.record("alice", "C", "3")

        self.storage.delete(self.audit.table_name, middle.id)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_query_filters(self):
        self.audit.record("alice", "A", "1")
        self.audit.record("bob", "B", "2", severity=AuditSeverity.WARNING)
        self.audit.record("alice", "C", "3", severity=AuditSeverity.WARNING)

        assert [r.action for r in self.audit.get_records(actor_username="alice")] == ["C", "A"]
        assert [r.action for r in self.audit.get_records(severity=AuditSeverity.WARNING)] == ["C", "B"]
        assert len(self.audit.get_records(limit=1)) == 1

        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert self.audit.get_records(start_time=future) == []
        assert self.audit.get_records(start_time=future.replace(tzinfo=None)) == []
        assert len(self.audit.get_records(end_time=future.replace(tzinfo=None))) == 3

    def test_records_for_transaction(self):
        self.audit.record("alice", "TRANSACTION_TRANSFER_INITIATED", "x", related_transaction_id="TXN0000AAAA")
        self.audit.record("alice", "TRANSACTION_TRANSFER", "y", related_transaction_id="TXN0000AAAA")
        self.audit.record("alice", "TRANSACTION_DEPOSIT", "z", related_transaction_id="TXN0000BBBB")

        actions = [r.action for r in self.audit.get_records_for_transaction("TXN0000AAAA")]
        assert actions == ["TRANSACTION_TRANSFER_INITIATED", "TRANSACTION_TRANSFER"]
        assert self.audit.count_records() == 3

    def test_record_round_trip(self):
        record = self.audit.record("alice", "A", "details", severity=AuditSeverity.CRITICAL)
        restored = AuditRecord.from_dict(self.storage.load(self.audit.table_name, record.id))
        assert restored.severity == AuditSeverity.CRITICAL
        assert restored.verify_hash()


class TestAuditEventHandler:

    def setup_method(self):
        """Set up test fixtures"""
        self.audit = AuditTrail(InMemoryStorage())
        self.dispatcher = EventDispatcher()
        AuditEventHandler(self.audit).register(self.dispatcher)

    def test_movement_event_recorded(self):
        self.dispatcher.publish(EventPayload(
            event_type=DomainEvent.DEPOSIT_COMPLETED,
            entity_type="transaction",
            entity_id="e1",
            data={"reference_number": "TXN12345678", "account_id": "acc-1",
                  "amount": "50.00", "transaction_type": "DEPOSIT"},
            actor="alice",
            client_ip="10.0.0.9"
        ))

        record = self.audit.get_records()[0]
        assert record.action == "TRANSACTION_DEPOSIT"
        assert record.actor_username == "alice"
        assert record.client_ip == "10.0.0.9"
        assert record.related_account_id == "acc-1"
        assert record.related_transaction_id == "TXN12345678"
        assert "amount=50.00" in record.details

    def test_freeze_is_critical(self):
        self.dispatcher.publish(EventPayload(
            event_type=DomainEvent.ACCOUNT_FROZEN,
            entity_type="account",
            entity_id="acc-1",
            data={"account_id": "acc-1", "account_number": "AC1234567890", "reason": "fraud"},
            actor="admin"
        ))

        record = self.audit.get_records()[0]
        assert record.severity == AuditSeverity.CRITICAL
        assert "reason=fraud" in record.details

    def test_otp_code_never_audited(self):
        self.dispatcher.publish(EventPayload(
            event_type=DomainEvent.OTP_ISSUED,
            entity_type="otp",
            entity_id="otp-1",
            data={"user_id": "u1", "email": "a@example.com", "code": "482913",
                  "purpose": "TRANSACTION", "reference_number": "TXN12345678"},
            actor="alice"
        ))

        record = self.audit.get_records()[0]
        assert record.action == "SECURITY_OTP_ISSUED"
        assert "482913" not in record.details

    def test_system_actor_default(self):
        self.dispatcher.publish(EventPayload(
            event_type=DomainEvent.TRANSFER_EXPIRED,
            entity_type="transaction",
            entity_id="e2",
            data={"reference_number": "TXN87654321", "account_id": "acc-1", "reason": "expired"}
        ))

        assert self.audit.get_records()[0].actor_username == "system"
