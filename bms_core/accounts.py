"""
Account Management Module

Account records, the account store and the administrative lifecycle
(open, freeze, unfreeze, close, update limits). Balances change only through
the funds movement engine or an opening deposit recorded in the ledger.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Iterator
from enum import Enum
from contextlib import contextmanager, ExitStack
import secrets
import threading
import uuid

from .storage import StorageInterface, StorageRecord
from .ledger import LedgerStore, TransactionType, TransactionStatus
from .limits import to_amount, ZERO
from .identity import RequestContext, UserDirectory, require_privileged
from .events import EventDispatcher, EventOutbox, EventPayload, DomainEvent
from .notifications import mask_account_number
from .errors import (
    AccountNotFound, AccountStateConflict, NotOwner, ValidationFailed, InvalidAmount, UserNotFound
)
from .logging_config import get_logger, log_action


logger = get_logger("bms.accounts")


class AccountType(Enum):
    SAVINGS = "SAVINGS"
    CHECKING = "CHECKING"
    CURRENT = "CURRENT"
    BUSINESS = "BUSINESS"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "Active"      # Normal operation
    FROZEN = "Frozen"      # Temporarily suspended
    CLOSED = "Closed"      # Terminal


@dataclass
class Account(StorageRecord):
    """
    Bank account owned by exactly one user
    """
    account_number: str
    holder_name: str
    account_type: AccountType
    user_id: str
    balance: Decimal
    daily_transaction_limit: Decimal
    per_transaction_limit: Decimal
    minimum_balance: Decimal
    status: AccountStatus = AccountStatus.ACTIVE
    daily_transaction_total: Decimal = ZERO
    daily_total_reset_date: Optional[date] = None
    interest_rate: Optional[Decimal] = None
    last_transaction_date: Optional[datetime] = None
    frozen_reason: Optional[str] = None
    frozen_at: Optional[datetime] = None
    closure_reason: Optional[str] = None
    closed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def is_owned_by(self, context: RequestContext) -> bool:
        return self.user_id == context.user_id


@dataclass
class AccountDirectoryEntry:
    """What a sender may learn about a destination before transferring"""
    account_id: str
    account_number: str
    masked_account_number: str
    holder_name: str
    account_type: AccountType
    is_active: bool


def check_access(account: Account, context: RequestContext) -> None:
    """Owner or privileged actor only"""
    if not context.is_privileged and not account.is_owned_by(context):
        raise NotOwner(context.username, account.account_number)


class AccountStore:
    """
    Persistence for accounts plus per-account locks.

    unit_of_work() acquires the locks of every touched account in ascending
    id order and then opens a storage transaction, so concurrent movements on
    the same account never lose updates and opposite transfers never
    deadlock.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "accounts"):
        self.storage = storage
        self.table_name = table_name
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def get(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def require(self, account_id: str) -> Account:
        account = self.get(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.table_name, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def require_by_number(self, account_number: str) -> Account:
        account = self.get_by_number(account_number)
        if account is None:
            raise AccountNotFound(account_number)
        return account

    def get_user_accounts(self, user_id: str) -> List[Account]:
        """All accounts owned by a user"""
        accounts = [self._account_from_dict(data)
                    for data in self.storage.find(self.table_name, {"user_id": user_id})]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def list_all(self) -> List[Account]:
        return [self._account_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def save(self, account: Account) -> None:
        self.storage.save(self.table_name, account.id, self._account_to_dict(account))

    def generate_account_number(self) -> str:
        """AC followed by ten random digits, regenerated until unique"""
        while True:
            number = "AC" + "".join(secrets.choice("0123456789") for _ in range(10))
            if not self.storage.find(self.table_name, {"account_number": number}):
                return number

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = self._locks[account_id] = threading.Lock()
            return lock

    @contextmanager
    def lock_accounts(self, *account_ids: str) -> Iterator[None]:
        """Hold the locks of the given accounts, acquired in ascending id order"""
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                stack.enter_context(self._lock_for(account_id))
            yield

    @contextmanager
    def unit_of_work(self, *account_ids: str) -> Iterator[None]:
        """Account locks plus one atomic storage transaction"""
        with self.lock_accounts(*account_ids), self.storage.atomic():
            yield

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['account_type'] = account.account_type.value
        result['status'] = account.status.value
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        def optional_datetime(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        reset_date = None
        if data.get('daily_total_reset_date'):
            reset_date = date.fromisoformat(data['daily_total_reset_date'])

        interest_rate = None
        if data.get('interest_rate') is not None:
            interest_rate = Decimal(data['interest_rate'])

        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            holder_name=data['holder_name'],
            account_type=AccountType(data['account_type']),
            user_id=data['user_id'],
            balance=Decimal(data['balance']),
            daily_transaction_limit=Decimal(data['daily_transaction_limit']),
            per_transaction_limit=Decimal(data['per_transaction_limit']),
            minimum_balance=Decimal(data['minimum_balance']),
            status=AccountStatus(data['status']),
            daily_transaction_total=Decimal(data.get('daily_transaction_total') or "0.00"),
            daily_total_reset_date=reset_date,
            interest_rate=interest_rate,
            last_transaction_date=optional_datetime('last_transaction_date'),
            frozen_reason=data.get('frozen_reason'),
            frozen_at=optional_datetime('frozen_at'),
            closure_reason=data.get('closure_reason'),
            closed_at=optional_datetime('closed_at')
        )


def account_event(event_type: DomainEvent, account: Account, context: RequestContext,
                  **extra) -> EventPayload:
    """Build an account-related event"""
    data = {
        "account_id": account.id,
        "account_number": account.account_number,
        "account_type": account.account_type.value,
        "owner_id": account.user_id,
        "status": account.status.value,
    }
    data.update(extra)
    return EventPayload(
        event_type=event_type,
        entity_type="account",
        entity_id=account.id,
        data=data,
        actor=context.username,
        client_ip=context.client_ip
    )


class AccountManager:
    """
    Manages account lifecycle: opening, freezing, closing and limits
    """

    def __init__(
        self,
        store: AccountStore,
        ledger: LedgerStore,
        event_dispatcher: Optional[EventDispatcher] = None,
        default_daily_limit: Decimal = Decimal("100000.00"),
        default_per_transaction_limit: Decimal = Decimal("50000.00"),
        default_minimum_balance: Decimal = Decimal("0.00"),
        directory: Optional[UserDirectory] = None
    ):
        self.store = store
        self.ledger = ledger
        self.directory = directory
        self._event_dispatcher = event_dispatcher
        self.default_daily_limit = default_daily_limit
        self.default_per_transaction_limit = default_per_transaction_limit
        self.default_minimum_balance = default_minimum_balance

    def open_account(
        self,
        context: RequestContext,
        holder_name: str,
        account_type: AccountType,
        owner_id: Optional[str] = None,
        opening_balance: Optional[Decimal] = None,
        daily_transaction_limit: Optional[Decimal] = None,
        per_transaction_limit: Optional[Decimal] = None,
        minimum_balance: Optional[Decimal] = None,
        interest_rate: Optional[Decimal] = None
    ) -> Account:
        """
        Open a new Active account

        Args:
            context: Acting identity
            holder_name: Name printed on the account
            account_type: SAVINGS, CHECKING, CURRENT or BUSINESS
            owner_id: Owning user; only privileged actors may open for others
            opening_balance: Seed balance, recorded as a DEPOSIT ledger entry
            daily_transaction_limit: Defaults to configuration
            per_transaction_limit: Defaults to configuration
            minimum_balance: Defaults to configuration
            interest_rate: Optional annual rate

        Returns:
            Created Account
        """
        if not holder_name or not holder_name.strip():
            raise ValidationFailed("Holder name is required")

        owner_id = owner_id or context.user_id
        if owner_id != context.user_id:
            require_privileged(context, "open accounts for other users")
        if self.directory is not None and self.directory.get_user(owner_id) is None:
            raise UserNotFound(owner_id)

        daily_limit = self._limit(daily_transaction_limit, self.default_daily_limit)
        per_txn_limit = self._limit(per_transaction_limit, self.default_per_transaction_limit)
        floor = to_amount(minimum_balance) if minimum_balance is not None else self.default_minimum_balance
        if floor < 0:
            raise ValidationFailed("Minimum balance cannot be negative")

        balance = ZERO
        if opening_balance is not None:
            balance = to_amount(opening_balance)
            if balance < 0:
                raise InvalidAmount(opening_balance)
        if balance < floor:
            raise ValidationFailed(f"Opening balance {balance} is below the minimum balance {floor}")

        now = datetime.now(timezone.utc)
        outbox = EventOutbox(self._event_dispatcher)
        with self.store.storage.atomic():
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=self.store.generate_account_number(),
                holder_name=holder_name.strip(),
                account_type=account_type,
                user_id=owner_id,
                balance=balance,
                daily_transaction_limit=daily_limit,
                per_transaction_limit=per_txn_limit,
                minimum_balance=floor,
                interest_rate=interest_rate,
                daily_total_reset_date=now.date()
            )
            self.store.save(account)

            if balance > 0:
                self.ledger.create_entry(
                    reference_number=self.ledger.generate_reference(),
                    transaction_type=TransactionType.DEPOSIT,
                    account_id=account.id,
                    amount=balance,
                    balance_after=balance,
                    status=TransactionStatus.SUCCESS,
                    description="Opening balance",
                    initiated_by=context.user_id,
                    now=now
                )
            outbox.add(account_event(DomainEvent.ACCOUNT_CREATED, account, context,
                                     opening_balance=str(balance)))

        outbox.flush()
        log_action(logger, "info", f"Account {account.account_number} opened",
                   user_id=context.user_id, action="account_opened", resource=account.id,
                   extra={"account_type": account_type.value, "owner_id": owner_id})
        return account

    def get_account(self, account_id: str, context: RequestContext) -> Account:
        """Get an account the actor may see"""
        account = self.store.require(account_id)
        check_access(account, context)
        return account

    def get_account_by_number(self, account_number: str, context: RequestContext) -> Account:
        account = self.store.require_by_number(account_number)
        check_access(account, context)
        return account

    def validate_account_for_transfer(self, account_number: str) -> AccountDirectoryEntry:
        """
        Look up a transfer destination by number

        Any authenticated user may call this; only the holder name and
        whether the account can receive funds are disclosed.
        """
        account = self.store.require_by_number(account_number)
        return AccountDirectoryEntry(
            account_id=account.id,
            account_number=account.account_number,
            masked_account_number=mask_account_number(account.account_number),
            holder_name=account.holder_name,
            account_type=account.account_type,
            is_active=account.is_active
        )

    def list_accounts(self, context: RequestContext, user_id: Optional[str] = None) -> List[Account]:
        """Accounts of the actor; privileged actors may list another user's or all"""
        if user_id and user_id != context.user_id:
            require_privileged(context, "list other users' accounts")
            return self.store.get_user_accounts(user_id)
        if user_id is None and context.is_privileged:
            return sorted(self.store.list_all(), key=lambda a: a.created_at)
        return self.store.get_user_accounts(context.user_id)

    def freeze_account(self, account_id: str, reason: str, context: RequestContext) -> Account:
        """Freeze an Active account"""
        require_privileged(context, "freeze accounts")

        def transition(account: Account, now: datetime) -> None:
            if account.status == AccountStatus.FROZEN:
                raise AccountStateConflict(account.account_number, "account is already frozen")
            if account.status == AccountStatus.CLOSED:
                raise AccountStateConflict(account.account_number, "account is closed")
            account.status = AccountStatus.FROZEN
            account.frozen_reason = reason
            account.frozen_at = now

        return self._transition(account_id, context, transition, DomainEvent.ACCOUNT_FROZEN, reason)

    def unfreeze_account(self, account_id: str, reason: str, context: RequestContext) -> Account:
        """Return a Frozen account to Active"""
        require_privileged(context, "unfreeze accounts")

        def transition(account: Account, now: datetime) -> None:
            if account.status != AccountStatus.FROZEN:
                raise AccountStateConflict(account.account_number, "account is not frozen")
            account.status = AccountStatus.ACTIVE
            account.frozen_reason = None
            account.frozen_at = None

        return self._transition(account_id, context, transition, DomainEvent.ACCOUNT_UNFROZEN, reason)

    def close_account(self, account_id: str, reason: str, context: RequestContext) -> Account:
        """Close an account with a zero balance. Closed is terminal."""

        def transition(account: Account, now: datetime) -> None:
            check_access(account, context)
            if account.status == AccountStatus.CLOSED:
                raise AccountStateConflict(account.account_number, "account is already closed")
            if account.balance != 0:
                raise AccountStateConflict(
                    account.account_number,
                    f"cannot close account with non-zero balance {account.balance}"
                )
            account.status = AccountStatus.CLOSED
            account.closure_reason = reason
            account.closed_at = now

        return self._transition(account_id, context, transition, DomainEvent.ACCOUNT_CLOSED, reason)

    def update_limits(
        self,
        account_id: str,
        context: RequestContext,
        daily_transaction_limit: Optional[Decimal] = None,
        per_transaction_limit: Optional[Decimal] = None,
        minimum_balance: Optional[Decimal] = None
    ) -> Account:
        """Change an account's transaction limits or minimum balance floor"""
        require_privileged(context, "update account limits")
        daily = self._limit(daily_transaction_limit, None) if daily_transaction_limit is not None else None
        per_txn = self._limit(per_transaction_limit, None) if per_transaction_limit is not None else None
        floor = to_amount(minimum_balance) if minimum_balance is not None else None
        if floor is not None and floor < 0:
            raise ValidationFailed("Minimum balance cannot be negative")

        def transition(account: Account, now: datetime) -> None:
            if account.status == AccountStatus.CLOSED:
                raise AccountStateConflict(account.account_number, "account is closed")
            if daily is not None:
                account.daily_transaction_limit = daily
            if per_txn is not None:
                account.per_transaction_limit = per_txn
            if floor is not None:
                account.minimum_balance = floor

        return self._transition(
            account_id, context, transition, DomainEvent.ACCOUNT_LIMITS_UPDATED, None,
            daily_transaction_limit=str(daily) if daily is not None else None,
            per_transaction_limit=str(per_txn) if per_txn is not None else None,
            minimum_balance=str(floor) if floor is not None else None
        )

    def _transition(self, account_id: str, context: RequestContext, apply, event_type: DomainEvent,
                    reason: Optional[str], **extra) -> Account:
        """Load, mutate and save an account under its lock, then publish"""
        outbox = EventOutbox(self._event_dispatcher)
        with self.store.unit_of_work(account_id):
            account = self.store.require(account_id)
            now = datetime.now(timezone.utc)
            apply(account, now)
            account.updated_at = now
            self.store.save(account)
            outbox.add(account_event(event_type, account, context, reason=reason, **extra))

        outbox.flush()
        log_action(logger, "warning" if event_type != DomainEvent.ACCOUNT_UNFROZEN else "info",
                   f"Account {account.account_number} {event_type.value.split('.')[-1]}",
                   user_id=context.user_id, action=event_type.value, resource=account.id,
                   extra={"reason": reason, "status": account.status.value})
        return account

    @staticmethod
    def _limit(value: Optional[Decimal], default: Optional[Decimal]) -> Decimal:
        if value is None:
            return default
        amount = to_amount(value)
        if amount <= 0:
            raise ValidationFailed(f"Limits must be greater than zero, got {value}")
        return amount
