"""
Limit Policy Module

Pure evaluation of the per-transaction limit, the daily cumulative limit and
the minimum balance floor for a proposed movement. Nothing here touches
storage; the engine persists the updated daily total after a successful check.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date
from dataclasses import dataclass
from typing import Optional, Any
from enum import Enum

from .errors import InvalidAmount, LimitExceeded, MinimumBalanceViolation


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_amount(value: Any) -> Decimal:
    """
    Convert a user supplied amount to a two-place Decimal.

    Floats go through str() so 0.1 stays 0.1. Raises InvalidAmount for
    anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise InvalidAmount(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(value)
    if not amount.is_finite():
        raise InvalidAmount(value)
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class MovementKind(Enum):
    """Direction of a movement relative to the evaluated account"""
    CREDIT = "credit"  # deposit, incoming transfer
    DEBIT = "debit"    # withdrawal, outgoing transfer


class LimitViolation(Enum):
    INVALID_AMOUNT = "invalid_amount"
    PER_TRANSACTION_LIMIT = "per_transaction_limit"
    DAILY_LIMIT = "daily_limit"
    MINIMUM_BALANCE = "minimum_balance"


@dataclass(frozen=True)
class LimitDecision:
    """Outcome of a limit evaluation"""
    allowed: bool
    effective_daily_total: Decimal
    violation: Optional[LimitViolation] = None
    limit: Optional[Decimal] = None
    attempted: Optional[Decimal] = None

    @property
    def new_daily_total(self) -> Decimal:
        """Daily total to persist once the movement is applied"""
        return self.effective_daily_total + (self.attempted or ZERO)


class LimitPolicy:
    """
    Evaluates a proposed amount against an account's limits.

    The account argument only needs the limit attributes (balance,
    per_transaction_limit, daily_transaction_limit, daily_transaction_total,
    daily_total_reset_date, minimum_balance), so plain Account records work.
    """

    def effective_daily_total(self, account, today: date) -> Decimal:
        """Running daily total, treated as zero when the last reset predates today"""
        reset_date = account.daily_total_reset_date
        if reset_date is None or reset_date < today:
            return ZERO
        return account.daily_transaction_total or ZERO

    def evaluate(self, account, amount: Decimal, kind: MovementKind, today: date) -> LimitDecision:
        """
        Check a proposed movement without side effects

        Args:
            account: Account state before the movement
            amount: Proposed amount
            kind: CREDIT or DEBIT relative to the account
            today: Business date used for the daily reset

        Returns:
            LimitDecision, allowed or carrying the first violation found
        """
        daily_total = self.effective_daily_total(account, today)

        if amount is None or amount <= 0:
            return LimitDecision(False, daily_total, LimitViolation.INVALID_AMOUNT, attempted=amount)

        if amount > account.per_transaction_limit:
            return LimitDecision(
                False, daily_total, LimitViolation.PER_TRANSACTION_LIMIT,
                limit=account.per_transaction_limit, attempted=amount
            )

        if daily_total + amount > account.daily_transaction_limit:
            return LimitDecision(
                False, daily_total, LimitViolation.DAILY_LIMIT,
                limit=account.daily_transaction_limit, attempted=daily_total + amount
            )

        if kind == MovementKind.DEBIT and account.balance - amount < account.minimum_balance:
            return LimitDecision(
                False, daily_total, LimitViolation.MINIMUM_BALANCE,
                limit=account.minimum_balance, attempted=account.balance - amount
            )

        return LimitDecision(True, daily_total, attempted=amount)

    def enforce(self, account, amount: Decimal, kind: MovementKind, today: date) -> LimitDecision:
        """Evaluate and raise the typed error for any violation"""
        decision = self.evaluate(account, amount, kind, today)
        if decision.allowed:
            return decision

        if decision.violation == LimitViolation.INVALID_AMOUNT:
            raise InvalidAmount(amount)
        if decision.violation == LimitViolation.PER_TRANSACTION_LIMIT:
            raise LimitExceeded("per-transaction", decision.limit, decision.attempted)
        if decision.violation == LimitViolation.DAILY_LIMIT:
            raise LimitExceeded("daily", decision.limit, decision.attempted)
        raise MinimumBalanceViolation(decision.limit, decision.attempted)
