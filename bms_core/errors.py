"""
Error Taxonomy Module

Typed failures raised by the funds-movement core. Every error belongs to
exactly one category so callers (the API layer in particular) can map it to
a response without inspecting messages. All errors stay ValueError
compatible.
"""

from decimal import Decimal
from typing import Optional


class BankingError(ValueError):
    """Base class for all domain-level banking errors"""

    code = "banking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Categories

class NotFound(BankingError):
    """Requested account, transaction or user does not exist"""
    code = "not_found"


class ValidationFailed(BankingError):
    """Malformed input: bad amount, same-account transfer, ..."""
    code = "validation_failed"


class PolicyViolation(BankingError):
    """Business rule rejected the movement"""
    code = "policy_violation"


class AuthorizationDenied(BankingError):
    """Actor may not perform the operation"""
    code = "authorization_denied"


class ConflictState(BankingError):
    """Entity is not in a state that allows the operation"""
    code = "conflict_state"


class StepUpFailed(BankingError):
    """One-time code missing, invalid, expired or exhausted"""
    code = "step_up_failed"


# Concrete errors

class AccountNotFound(NotFound):
    def __init__(self, identifier: str):
        super().__init__(f"Account {identifier} not found")
        self.identifier = identifier


class TransactionNotFound(NotFound):
    def __init__(self, reference: str):
        super().__init__(f"Transaction {reference} not found")
        self.reference = reference


class UserNotFound(NotFound):
    def __init__(self, username: str):
        super().__init__(f"User {username} not found")
        self.username = username


class InvalidAmount(ValidationFailed):
    def __init__(self, amount):
        super().__init__(f"Amount must be greater than zero, got {amount}")
        self.amount = amount


class SameAccount(ValidationFailed):
    def __init__(self, account_number: str):
        super().__init__(f"Cannot transfer to the same account {account_number}")
        self.account_number = account_number


class AccountNotActive(PolicyViolation):
    def __init__(self, account_number: str, status: str):
        super().__init__(f"Account {account_number} is not active (status: {status})")
        self.account_number = account_number
        self.status = status


class LimitExceeded(PolicyViolation):
    """Per-transaction or daily cumulative limit would be exceeded"""

    def __init__(self, limit_kind: str, limit: Decimal, attempted: Decimal):
        super().__init__(
            f"Amount exceeds {limit_kind} limit of {limit} (attempted total {attempted})"
        )
        self.limit_kind = limit_kind
        self.limit = limit
        self.attempted = attempted


class MinimumBalanceViolation(PolicyViolation):
    def __init__(self, minimum_balance: Decimal, resulting_balance: Decimal):
        super().__init__(
            f"Minimum balance requirement of {minimum_balance} would be violated "
            f"(resulting balance {resulting_balance})"
        )
        self.minimum_balance = minimum_balance
        self.resulting_balance = resulting_balance


class InsufficientBalance(PolicyViolation):
    def __init__(self, available: Decimal, requested: Decimal):
        super().__init__(f"Insufficient balance. Available: {available}, requested: {requested}")
        self.available = available
        self.requested = requested


class NotOwner(AuthorizationDenied):
    def __init__(self, username: str, account_number: str):
        super().__init__(f"User {username} does not own account {account_number}")
        self.username = username
        self.account_number = account_number


class InsufficientRole(AuthorizationDenied):
    def __init__(self, username: str, operation: str):
        super().__init__(f"User {username} is not allowed to {operation}")
        self.username = username
        self.operation = operation


class UserLocked(AuthorizationDenied):
    def __init__(self, username: str):
        super().__init__(f"User {username} is locked")
        self.username = username


class TransactionNotPending(ConflictState):
    def __init__(self, reference: str, status: str):
        super().__init__(f"Transaction {reference} is not in PENDING state (status: {status})")
        self.reference = reference
        self.status = status


class AccountStateConflict(ConflictState):
    """Administrative transition not allowed from the current status"""

    def __init__(self, account_number: str, message: str):
        super().__init__(f"Account {account_number}: {message}")
        self.account_number = account_number


class InvalidOrExpiredOtp(StepUpFailed):
    def __init__(self, reference: Optional[str] = None):
        if reference:
            message = f"Invalid or expired OTP for transaction {reference}"
        else:
            message = "Invalid or expired OTP"
        super().__init__(message)
        self.reference = reference
