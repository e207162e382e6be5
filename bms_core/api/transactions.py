"""
Funds movement endpoints
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_request_context
from .schemas import (
    AmountRequest, TransferRequest, CompleteTransferRequest,
    LedgerEntryResponse, TransferResponse, TransactionStatsResponse
)
from ..identity import RequestContext
from ..ledger import TransactionType, TransactionStatus
from ..errors import ValidationFailed


router = APIRouter()


def _parse_enum(enum_type, value: Optional[str], label: str):
    if value is None:
        return None
    try:
        return enum_type(value.upper())
    except ValueError:
        raise ValidationFailed(f"Unknown {label} {value}")


@router.post("/accounts/{account_id}/deposit", status_code=status.HTTP_201_CREATED,
             response_model=LedgerEntryResponse)
def deposit(
    account_id: str,
    request: AmountRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit funds to an account"""
    entry = system.engine.deposit(account_id, request.amount, context, description=request.description)
    return LedgerEntryResponse.from_entry(entry)


@router.post("/accounts/{account_id}/withdraw", status_code=status.HTTP_201_CREATED,
             response_model=LedgerEntryResponse)
def withdraw(
    account_id: str,
    request: AmountRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Withdraw funds from an account"""
    entry = system.engine.withdraw(account_id, request.amount, context, description=request.description)
    return LedgerEntryResponse.from_entry(entry)


@router.post("/transfer", status_code=status.HTTP_201_CREATED, response_model=TransferResponse)
def initiate_transfer(
    request: TransferRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """
    Start a transfer. High-value transfers return PENDING with
    otp_required set; complete them with the emailed code.
    """
    result = system.engine.initiate_transfer(
        request.from_account_number,
        request.to_account_number,
        request.amount,
        request.description,
        context
    )
    return TransferResponse.from_result(result)


@router.post("/transfer/{reference_number}/complete", response_model=TransferResponse)
def complete_transfer(
    reference_number: str,
    request: CompleteTransferRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    result = system.engine.complete_transfer(reference_number, context, otp_code=request.otp_code)
    return TransferResponse.from_result(result)


@router.post("/transfer/{reference_number}/resend-otp", response_model=TransferResponse)
def resend_transfer_otp(
    reference_number: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    result = system.engine.resend_transfer_otp(reference_number, context)
    return TransferResponse.from_result(result)


@router.get("/stats", response_model=TransactionStatsResponse)
def get_transaction_stats(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Debit/credit totals across the caller's accounts"""
    stats = system.engine.get_transaction_stats(context, start, end)
    return TransactionStatsResponse.from_stats(stats)


@router.get("/filter", response_model=List[LedgerEntryResponse])
def filter_transactions(
    account_id: Optional[str] = None,
    transaction_type: Optional[str] = None,
    status: Optional[str] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Entries matching every given criterion, newest first"""
    entries = system.engine.filter_transactions(
        context,
        account_id=account_id,
        transaction_type=_parse_enum(TransactionType, transaction_type, "transaction type"),
        status=_parse_enum(TransactionStatus, status, "status"),
        min_amount=min_amount,
        max_amount=max_amount,
        start=start,
        end=end
    )
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.get("/search", response_model=List[LedgerEntryResponse])
def search_transactions(
    q: str = "",
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Case-insensitive search on description or reference number"""
    entries = system.engine.search_transactions(q, context)
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.get("/recent", response_model=List[LedgerEntryResponse])
def get_recent_transactions(
    limit: int = 10,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    entries = system.engine.get_recent_transactions(context, limit=limit)
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.get("/{reference_number}", response_model=LedgerEntryResponse)
def get_transaction(
    reference_number: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Look up a transaction by reference"""
    entry = system.engine.get_transaction_by_reference(reference_number, context)
    return LedgerEntryResponse.from_entry(entry)
