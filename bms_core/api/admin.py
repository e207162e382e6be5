"""
Admin endpoints (user directory, account controls, pending review, audit)
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_request_context
from .schemas import (
    RegisterUserRequest, ReasonRequest, UpdateLimitsRequest, ReviewRequest,
    AccountResponse, LedgerEntryResponse, AuditRecordResponse
)
from ..identity import RequestContext, UserRole, require_privileged
from ..audit import AuditSeverity
from ..errors import ValidationFailed


router = APIRouter()


@router.post("/users", status_code=status.HTTP_201_CREATED)
def register_user(
    request: RegisterUserRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Add a user to the directory"""
    require_privileged(context, "register users")
    try:
        role = UserRole(request.role.upper())
    except ValueError:
        raise ValidationFailed(f"Unknown role {request.role}")
    user = system.directory.register(request.username, request.email, role=role, full_name=request.full_name)
    return {"user_id": user.id, "username": user.username, "role": user.role.value}


@router.get("/accounts", response_model=List[AccountResponse])
def list_all_accounts(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    require_privileged(context, "list all accounts")
    return [AccountResponse.from_account(a) for a in system.account_manager.list_accounts(context)]


@router.post("/accounts/{account_id}/freeze", response_model=AccountResponse)
def freeze_account(
    account_id: str,
    request: ReasonRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    account = system.account_manager.freeze_account(account_id, request.reason, context)
    return AccountResponse.from_account(account)


@router.post("/accounts/{account_id}/unfreeze", response_model=AccountResponse)
def unfreeze_account(
    account_id: str,
    request: ReasonRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    account = system.account_manager.unfreeze_account(account_id, request.reason, context)
    return AccountResponse.from_account(account)


@router.post("/accounts/{account_id}/close", response_model=AccountResponse)
def close_account(
    account_id: str,
    request: ReasonRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    account = system.account_manager.close_account(account_id, request.reason, context)
    return AccountResponse.from_account(account)


@router.put("/accounts/{account_id}/limits", response_model=AccountResponse)
def update_limits(
    account_id: str,
    request: UpdateLimitsRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    account = system.account_manager.update_limits(
        account_id,
        context,
        daily_transaction_limit=request.daily_transaction_limit,
        per_transaction_limit=request.per_transaction_limit,
        minimum_balance=request.minimum_balance
    )
    return AccountResponse.from_account(account)


@router.get("/transactions/pending", response_model=List[LedgerEntryResponse])
def list_pending_transactions(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    return [LedgerEntryResponse.from_entry(e) for e in system.engine.list_pending_transactions(context)]


@router.post("/transactions/{reference_number}/approve", response_model=LedgerEntryResponse)
def approve_transaction(
    reference_number: str,
    request: ReviewRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    entry = system.engine.review_transaction(reference_number, True, request.remarks, context)
    return LedgerEntryResponse.from_entry(entry)


@router.post("/transactions/{reference_number}/reject", response_model=LedgerEntryResponse)
def reject_transaction(
    reference_number: str,
    request: ReviewRequest,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    entry = system.engine.review_transaction(reference_number, False, request.remarks, context)
    return LedgerEntryResponse.from_entry(entry)


@router.get("/audit", response_model=List[AuditRecordResponse])
def get_audit_log(
    actor_username: Optional[str] = None,
    severity: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
):
    """Audit records, newest first"""
    require_privileged(context, "read the audit log")
    try:
        severity_filter = AuditSeverity(severity.upper()) if severity else None
    except ValueError:
        raise ValidationFailed(f"Unknown severity {severity}")
    records = system.audit_trail.get_records(
        actor_username=actor_username,
        severity=severity_filter,
        start_time=start,
        end_time=end,
        limit=limit
    )
    return [AuditRecordResponse.from_record(r) for r in records]


@router.get("/audit/integrity")
def verify_audit_integrity(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Verify the audit hash chain"""
    require_privileged(context, "verify audit integrity")
    return system.audit_trail.verify_integrity()


@router.post("/maintenance/expire-pending")
def expire_pending_transfers(
    context: RequestContext = Depends(get_request_context),
    system: BankingSystem = Depends(get_banking_system)
) -> Dict[str, Any]:
    """Run the pending-transfer sweep now"""
    expired = system.engine.expire_pending_transfers(context=context)
    return {"expired": expired}
