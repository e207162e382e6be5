"""
Ledger Store Module

Append-only log of balance-affecting entries keyed by reference number.
Entries are created PENDING or SUCCESS; a PENDING entry resolves exactly once
(SUCCESS, FAILED, or an administrative APPROVED/REJECTED). Resolved entries
are never mutated.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord, as_utc
from .errors import TransactionNotPending
from .logging_config import get_logger


logger = get_logger("bms.ledger")


class TransactionType(Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"


class TransactionStatus(Enum):
    PENDING = "PENDING"      # High-value transfer awaiting OTP
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    APPROVED = "APPROVED"    # Administrative resolution of a PENDING entry
    REJECTED = "REJECTED"


@dataclass
class LedgerEntry(StorageRecord):
    """
    One immutable record of a balance-affecting event

    balance_after holds the account balance right after the entry was
    applied. For a PENDING transfer it is the prospective balance.
    """
    reference_number: str
    transaction_type: TransactionType
    account_id: str
    amount: Decimal
    balance_after: Decimal
    status: TransactionStatus
    transaction_date: datetime
    description: Optional[str] = None
    counterparty_account_id: Optional[str] = None
    requires_otp: bool = False
    initiated_by: Optional[str] = None
    remarks: Optional[str] = None
    resolved_at: Optional[datetime] = None
    sequence: int = 0

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def is_debit(self) -> bool:
        return self.transaction_type in (TransactionType.WITHDRAW, TransactionType.TRANSFER_OUT)


def generate_reference_number() -> str:
    """TXN followed by eight upper-case hex characters"""
    return "TXN" + uuid.uuid4().hex[:8].upper()


class LedgerStore:
    """Durable, append-only ledger backed by a StorageInterface table"""

    def __init__(self, storage: StorageInterface, table_name: str = "ledger_entries"):
        self.storage = storage
        self.table_name = table_name

    def generate_reference(self) -> str:
        """Generate a reference number not yet used anywhere in the ledger"""
        while True:
            reference = generate_reference_number()
            if not self.storage.find(self.table_name, {"reference_number": reference}):
                return reference
            logger.debug(f"Reference collision on {reference}, regenerating")

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append a new entry; existing ids are never overwritten"""
        if self.storage.exists(self.table_name, entry.id):
            raise ValueError(f"Ledger entry {entry.id} already exists")
        entry.sequence = self.storage.count(self.table_name) + 1
        self.storage.save(self.table_name, entry.id, self._entry_to_dict(entry))
        return entry

    def create_entry(
        self,
        reference_number: str,
        transaction_type: TransactionType,
        account_id: str,
        amount: Decimal,
        balance_after: Decimal,
        status: TransactionStatus,
        description: Optional[str] = None,
        counterparty_account_id: Optional[str] = None,
        requires_otp: bool = False,
        initiated_by: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> LedgerEntry:
        """Build and append an entry in one step"""
        now = now or datetime.now(timezone.utc)
        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            reference_number=reference_number,
            transaction_type=transaction_type,
            account_id=account_id,
            amount=amount,
            balance_after=balance_after,
            status=status,
            transaction_date=now,
            description=description,
            counterparty_account_id=counterparty_account_id,
            requires_otp=requires_otp,
            initiated_by=initiated_by,
            resolved_at=now if status != TransactionStatus.PENDING else None
        )
        return self.append(entry)

    def resolve(
        self,
        entry: LedgerEntry,
        status: TransactionStatus,
        balance_after: Optional[Decimal] = None,
        remarks: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> LedgerEntry:
        """
        Move a PENDING entry to its final status

        Raises:
            TransactionNotPending: the stored entry is already resolved
        """
        stored = self.get_entry(entry.id)
        if stored is None or not stored.is_pending:
            status_value = stored.status.value if stored else "MISSING"
            raise TransactionNotPending(entry.reference_number, status_value)
        if status == TransactionStatus.PENDING:
            raise ValueError("An entry cannot be resolved to PENDING")

        now = now or datetime.now(timezone.utc)
        stored.status = status
        if balance_after is not None:
            stored.balance_after = balance_after
        if remarks is not None:
            stored.remarks = remarks
        stored.resolved_at = now
        stored.updated_at = now
        self.storage.save(self.table_name, stored.id, self._entry_to_dict(stored))
        return stored

    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        data = self.storage.load(self.table_name, entry_id)
        if data:
            return self._entry_from_dict(data)
        return None

    def find_by_reference(self, reference_number: str) -> Optional[LedgerEntry]:
        """
        Primary entry for a reference: the TRANSFER_OUT of a transfer, or
        the single entry of a deposit/withdrawal
        """
        entries = self.entries_for_reference(reference_number)
        for entry in entries:
            if entry.transaction_type != TransactionType.TRANSFER_IN:
                return entry
        return entries[0] if entries else None

    def entries_for_reference(self, reference_number: str) -> List[LedgerEntry]:
        """All entries sharing a reference, in append order"""
        entries_data = self.storage.find(self.table_name, {"reference_number": reference_number})
        entries = [self._entry_from_dict(data) for data in entries_data]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def get_account_entries(
        self,
        account_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[LedgerEntry]:
        """
        Entries for an account within an optional date range (inclusive)

        Returns:
            Entries sorted newest first
        """
        return self.query_entries([account_id], start=start, end=end)

    def query_entries(
        self,
        account_ids: Iterable[str],
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[LedgerEntry]:
        """
        Entries of the given accounts matching every supplied criterion.
        Amount and date bounds are inclusive; naive dates are read as UTC.

        Returns:
            Entries sorted newest first
        """
        filters: Dict = {}
        if transaction_type:
            filters["transaction_type"] = transaction_type.value
        if status:
            filters["status"] = status.value
        start, end = as_utc(start), as_utc(end)

        entries: List[LedgerEntry] = []
        for account_id in dict.fromkeys(account_ids):
            found = self.storage.find(self.table_name, dict(filters, account_id=account_id))
            entries.extend(self._entry_from_dict(data) for data in found)

        if min_amount is not None:
            entries = [e for e in entries if e.amount >= min_amount]
        if max_amount is not None:
            entries = [e for e in entries if e.amount <= max_amount]
        if start:
            entries = [e for e in entries if e.transaction_date >= start]
        if end:
            entries = [e for e in entries if e.transaction_date <= end]

        entries.sort(key=lambda e: e.sequence, reverse=True)
        return entries

    def get_pending_entries(self, older_than: Optional[datetime] = None) -> List[LedgerEntry]:
        """PENDING entries, optionally only those created before a cutoff"""
        entries_data = self.storage.find(self.table_name, {"status": TransactionStatus.PENDING.value})
        entries = [self._entry_from_dict(data) for data in entries_data]
        older_than = as_utc(older_than)
        if older_than:
            entries = [e for e in entries if e.transaction_date < older_than]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def count_entries(self) -> int:
        return self.storage.count(self.table_name)

    def _entry_to_dict(self, entry: LedgerEntry) -> Dict:
        """Convert LedgerEntry to dictionary for storage"""
        result = entry.to_dict()
        result['transaction_type'] = entry.transaction_type.value
        result['status'] = entry.status.value
        return result

    def _entry_from_dict(self, data: Dict) -> LedgerEntry:
        """Convert dictionary to LedgerEntry"""
        resolved_at = None
        if data.get('resolved_at'):
            resolved_at = datetime.fromisoformat(data['resolved_at'])

        return LedgerEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            reference_number=data['reference_number'],
            transaction_type=TransactionType(data['transaction_type']),
            account_id=data['account_id'],
            amount=Decimal(data['amount']),
            balance_after=Decimal(data['balance_after']),
            status=TransactionStatus(data['status']),
            transaction_date=datetime.fromisoformat(data['transaction_date']),
            description=data.get('description'),
            counterparty_account_id=data.get('counterparty_account_id'),
            requires_otp=data.get('requires_otp', False),
            initiated_by=data.get('initiated_by'),
            remarks=data.get('remarks'),
            resolved_at=resolved_at,
            sequence=data.get('sequence', 0)
        )
