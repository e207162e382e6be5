"""
Account endpoints
"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_request_context
from .schemas import OpenAccountRequest, AccountResponse, AccountValidationResponse, LedgerEntryResponse
from ..accounts import AccountType
from ..identity import RequestContext
from ..errors import UserNotFound, ValidationFailed


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def open_account(
    request: OpenAccountRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a new account for the caller (or, for admins, another user)"""
    try:
        account_type = AccountType(request.account_type.upper())
    except ValueError:
        raise ValidationFailed(f"Unknown account type {request.account_type}")

    owner_id = None
    if request.owner_username:
        owner = system.directory.get_user_by_username(request.owner_username)
        if owner is None:
            raise UserNotFound(request.owner_username)
        owner_id = owner.id

    account = system.account_manager.open_account(
        context,
        holder_name=request.holder_name,
        account_type=account_type,
        owner_id=owner_id,
        opening_balance=request.opening_balance,
        daily_transaction_limit=request.daily_transaction_limit,
        per_transaction_limit=request.per_transaction_limit,
        minimum_balance=request.minimum_balance,
        interest_rate=request.interest_rate
    )
    return AccountResponse.from_account(account)


@router.get("", response_model=List[AccountResponse])
def list_my_accounts(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Accounts owned by the caller"""
    accounts = system.account_manager.list_accounts(context, user_id=context.user_id)
    return [AccountResponse.from_account(account) for account in accounts]


@router.get("/number/{account_number}", response_model=AccountResponse)
def get_account_by_number(
    account_number: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    account = system.account_manager.get_account_by_number(account_number, context)
    return AccountResponse.from_account(account)


@router.get("/validate/{account_number}", response_model=AccountValidationResponse)
def validate_account_for_transfer(
    account_number: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Confirm a transfer destination: holder name and whether it can receive funds"""
    entry = system.account_manager.validate_account_for_transfer(account_number)
    return AccountValidationResponse.from_entry(entry)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    account = system.account_manager.get_account(account_id, context)
    return AccountResponse.from_account(account)


@router.get("/{account_id}/transactions", response_model=List[LedgerEntryResponse])
def get_account_transactions(
    account_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Ledger history for an account, newest first"""
    entries = system.engine.get_account_transactions(account_id, context, start, end)
    return [LedgerEntryResponse.from_entry(entry) for entry in entries]


@router.post("/{account_id}/close", response_model=AccountResponse)
def close_account(
    account_id: str,
    reason: str = "Closed by account holder",
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Close an account with a zero balance"""
    account = system.account_manager.close_account(account_id, reason, context)
    return AccountResponse.from_account(account)
