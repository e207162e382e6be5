"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from ..accounts import Account, AccountDirectoryEntry
from ..ledger import LedgerEntry
from ..funds import TransferResult, TransactionStats
from ..notifications import Notification
from ..audit import AuditRecord


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


# Account schemas
class OpenAccountRequest(BaseModel):
    holder_name: str
    account_type: str = Field(..., description="Account type (SAVINGS, CHECKING, CURRENT, BUSINESS)")
    owner_username: Optional[str] = Field(None, description="Open for another user (admin only)")
    opening_balance: Optional[Decimal] = None
    daily_transaction_limit: Optional[Decimal] = None
    per_transaction_limit: Optional[Decimal] = None
    minimum_balance: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None


class AccountResponse(BaseModel):
    id: str
    account_number: str
    holder_name: str
    account_type: str
    user_id: str
    balance: str = Field(..., description="Decimal amount as string")
    status: str
    daily_transaction_limit: str
    per_transaction_limit: str
    minimum_balance: str
    daily_transaction_total: str
    interest_rate: Optional[str] = None
    last_transaction_date: Optional[datetime] = None
    frozen_reason: Optional[str] = None
    closure_reason: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            account_number=account.account_number,
            holder_name=account.holder_name,
            account_type=account.account_type.value,
            user_id=account.user_id,
            balance=str(account.balance),
            status=account.status.value,
            daily_transaction_limit=str(account.daily_transaction_limit),
            per_transaction_limit=str(account.per_transaction_limit),
            minimum_balance=str(account.minimum_balance),
            daily_transaction_total=str(account.daily_transaction_total),
            interest_rate=_money(account.interest_rate),
            last_transaction_date=account.last_transaction_date,
            frozen_reason=account.frozen_reason,
            closure_reason=account.closure_reason,
            created_at=account.created_at
        )


class AccountValidationResponse(BaseModel):
    account_number: str
    masked_account_number: str
    holder_name: str
    account_type: str
    is_active: bool

    @classmethod
    def from_entry(cls, entry: AccountDirectoryEntry) -> 'AccountValidationResponse':
        return cls(
            account_number=entry.account_number,
            masked_account_number=entry.masked_account_number,
            holder_name=entry.holder_name,
            account_type=entry.account_type.value,
            is_active=entry.is_active
        )


# Transaction schemas
class AmountRequest(BaseModel):
    amount: Decimal = Field(..., description="Positive amount, two decimal places")
    description: Optional[str] = None


class TransferRequest(BaseModel):
    from_account_number: str
    to_account_number: str
    amount: Decimal
    description: Optional[str] = None


class CompleteTransferRequest(BaseModel):
    otp_code: Optional[str] = Field(None, description="Required for transfers above the step-up threshold")


class LedgerEntryResponse(BaseModel):
    id: str
    reference_number: str
    transaction_type: str
    account_id: str
    amount: str
    balance_after: str
    status: str
    transaction_date: datetime
    description: Optional[str] = None
    counterparty_account_id: Optional[str] = None
    requires_otp: bool = False
    remarks: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> 'LedgerEntryResponse':
        return cls(
            id=entry.id,
            reference_number=entry.reference_number,
            transaction_type=entry.transaction_type.value,
            account_id=entry.account_id,
            amount=str(entry.amount),
            balance_after=str(entry.balance_after),
            status=entry.status.value,
            transaction_date=entry.transaction_date,
            description=entry.description,
            counterparty_account_id=entry.counterparty_account_id,
            requires_otp=entry.requires_otp,
            remarks=entry.remarks,
            resolved_at=entry.resolved_at
        )


class TransferResponse(BaseModel):
    reference_number: str
    status: str
    otp_required: bool
    message: str
    entry: LedgerEntryResponse

    @classmethod
    def from_result(cls, result: TransferResult) -> 'TransferResponse':
        return cls(
            reference_number=result.reference_number,
            status=result.status.value,
            otp_required=result.otp_required,
            message=result.message,
            entry=LedgerEntryResponse.from_entry(result.entry)
        )


class TransactionStatsResponse(BaseModel):
    total_count: int
    total_credit: str
    total_debit: str
    net_amount: str
    deposits_count: int
    deposits_total: str
    withdrawals_count: int
    withdrawals_total: str
    transfers_count: int
    transfers_total: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_stats(cls, stats: TransactionStats) -> 'TransactionStatsResponse':
        return cls(
            total_count=stats.total_count,
            total_credit=str(stats.total_credit),
            total_debit=str(stats.total_debit),
            net_amount=str(stats.net_amount),
            deposits_count=stats.deposits_count,
            deposits_total=str(stats.deposits_total),
            withdrawals_count=stats.withdrawals_count,
            withdrawals_total=str(stats.withdrawals_total),
            transfers_count=stats.transfers_count,
            transfers_total=str(stats.transfers_total),
            start=stats.start,
            end=stats.end
        )


# Admin schemas
class RegisterUserRequest(BaseModel):
    username: str
    email: str
    role: str = Field("CUSTOMER", description="CUSTOMER or ADMIN")
    full_name: str = ""


class ReasonRequest(BaseModel):
    reason: str


class UpdateLimitsRequest(BaseModel):
    daily_transaction_limit: Optional[Decimal] = None
    per_transaction_limit: Optional[Decimal] = None
    minimum_balance: Optional[Decimal] = None


class ReviewRequest(BaseModel):
    remarks: Optional[str] = None


class AuditRecordResponse(BaseModel):
    id: str
    sequence: int
    actor_username: str
    action: str
    details: str
    severity: str
    client_ip: Optional[str] = None
    related_account_id: Optional[str] = None
    related_transaction_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_record(cls, record: AuditRecord) -> 'AuditRecordResponse':
        return cls(
            id=record.id,
            sequence=record.sequence,
            actor_username=record.actor_username,
            action=record.action,
            details=record.details,
            severity=record.severity.value,
            client_ip=record.client_ip,
            related_account_id=record.related_account_id,
            related_transaction_id=record.related_transaction_id,
            created_at=record.created_at
        )


# Notification schemas
class NotificationResponse(BaseModel):
    id: str
    title: str
    message: str
    category: str
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    @classmethod
    def from_notification(cls, notification: Notification) -> 'NotificationResponse':
        return cls(
            id=notification.id,
            title=notification.title,
            message=notification.message,
            category=notification.category.value,
            is_read=notification.is_read,
            created_at=notification.created_at,
            read_at=notification.read_at
        )


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int

