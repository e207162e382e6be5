"""
Test suite for accounts module

Tests account opening, the store's per-account locking and the
administrative lifecycle (freeze, unfreeze, close, limits).
"""

import re
import threading
import pytest
from decimal import Decimal

from bms_core.storage import InMemoryStorage
from bms_core.events import EventDispatcher, DomainEvent
from bms_core.identity import UserDirectory, UserRole, RequestContext
from bms_core.ledger import LedgerStore, TransactionType
from bms_core.accounts import (
    AccountManager, AccountStore, AccountType, AccountStatus, check_access
)
from bms_core.errors import (
    AccountNotFound, AccountStateConflict, InsufficientRole, NotOwner,
    ValidationFailed, InvalidAmount, UserNotFound
)


class TestAccountManager:
    """Test account lifecycle management"""

    def setup_method(self):
        """Set up test fixtures"""
        self.storage = InMemoryStorage()
        self.dispatcher = EventDispatcher()
        self.events = []
        self.dispatcher.subscribe_all(self.events.append)
        self.directory = UserDirectory(self.storage)
        self.store = AccountStore(self.storage)
        self.ledger = LedgerStore(self.storage)
        self.manager = AccountManager(self.store, self.ledger, event_dispatcher=self.dispatcher,
                                      directory=self.directory)

        self.alice = self.directory.register("alice", "alice@example.com")
        self.bob = self.directory.register("bob", "bob@example.com")
        admin = self.directory.register("admin", "ops@example.com", role=UserRole.ADMIN)
        self.alice_ctx = RequestContext.for_identity(self.alice)
        self.bob_ctx = RequestContext.for_identity(self.bob)
        self.admin_ctx = RequestContext.for_identity(admin)

    def test_open_account_defaults(self):
        account = self.manager.open_account(self.alice_ctx, "Alice Moreau", AccountType.SAVINGS)

        assert re.fullmatch(r"AC\d{10}", account.account_number)
        assert account.status == AccountStatus.ACTIVE
        assert account.user_id == self.alice.id
        assert account.balance == Decimal("0.00")
        assert account.per_transaction_limit == Decimal("50000.00")
        assert account.daily_transaction_limit == Decimal("100000.00")
        assert account.minimum_balance == Decimal("0.00")
        assert self.ledger.get_account_entries(account.id) == []

        assert [e.event_type for e in self.events] == [DomainEvent.ACCOUNT_CREATED]
        assert self.events[0].data["account_number"] == account.account_number

    def test_opening_balance_is_recorded_in_ledger(self):
        account = self.manager.open_account(
            self.alice_ctx, "Alice", AccountType.CHECKING, opening_balance=Decimal("250.00")
        )

        entries = self.ledger.get_account_entries(account.id)
        assert len(entries) == 1
        assert entries[0].transaction_type == TransactionType.DEPOSIT
        assert entries[0].description == "Opening balance"
        assert self.store.get(account.id).balance == Decimal("250.00")

    def test_open_validation(self):
        with pytest.raises(ValidationFailed):
            self.manager.open_account(self.alice_ctx, "  ", AccountType.SAVINGS)
        with pytest.raises(InvalidAmount):
            self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS, opening_balance="-1")
        with pytest.raises(ValidationFailed):
            self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS,
                                      opening_balance="10.00", minimum_balance="100.00")
        with pytest.raises(ValidationFailed):
            self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS,
                                      per_transaction_limit="0")

    def test_only_admin_opens_for_others(self):
        with pytest.raises(InsufficientRole):
            self.manager.open_account(self.bob_ctx, "Alice", AccountType.SAVINGS, owner_id=self.alice.id)

        account = self.manager.open_account(self.admin_ctx, "Alice", AccountType.SAVINGS, owner_id=self.alice.id)
        assert account.user_id == self.alice.id

    def test_owner_must_exist(self):
        with pytest.raises(UserNotFound):
            self.manager.open_account(self.admin_ctx, "Ghost", AccountType.SAVINGS, owner_id="ghost-id")

        assert self.store.list_all() == []
        assert self.events == []

    def test_validate_account_for_transfer(self):
        account = self.manager.open_account(self.alice_ctx, "Alice Moreau", AccountType.CHECKING)

        entry = self.manager.validate_account_for_transfer(account.account_number)

        assert entry.account_id == account.id
        assert entry.holder_name == "Alice Moreau"
        assert entry.account_type == AccountType.CHECKING
        assert entry.is_active
        assert entry.masked_account_number.endswith(account.account_number[-4:])
        assert entry.masked_account_number != account.account_number

        self.manager.freeze_account(account.id, "review", self.admin_ctx)
        assert not self.manager.validate_account_for_transfer(account.account_number).is_active

        with pytest.raises(AccountNotFound):
            self.manager.validate_account_for_transfer("AC0000000000")

    def test_account_numbers_unique(self):
        numbers = {self.store.generate_account_number() for _ in range(100)}
        assert len(numbers) == 100

    def test_get_and_list(self):
        first = self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS)
        second = self.manager.open_account(self.alice_ctx, "Alice", AccountType.BUSINESS)
        self.manager.open_account(self.bob_ctx, "Bob", AccountType.SAVINGS)

        assert self.manager.get_account(first.id, self.alice_ctx).id == first.id
        assert self.manager.get_account_by_number(second.account_number, self.alice_ctx).id == second.id
        with pytest.raises(NotOwner):
            self.manager.get_account(first.id, self.bob_ctx)
        with pytest.raises(AccountNotFound):
            self.manager.get_account("nope", self.alice_ctx)

        assert [a.id for a in self.manager.list_accounts(self.alice_ctx)] == [first.id, second.id]
        assert len(self.manager.list_accounts(self.admin_ctx)) == 3
        with pytest.raises(InsufficientRole):
            self.manager.list_accounts(self.bob_ctx, user_id=self.alice.id)

    def test_freeze_and_unfreeze(self):
        account = self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS)

        with pytest.raises(InsufficientRole):
            self.manager.freeze_account(account.id, "fraud", self.alice_ctx)

        frozen = self.manager.freeze_account(account.id, "fraud review", self.admin_ctx)
        assert frozen.status == AccountStatus.FROZEN
        assert frozen.frozen_reason == "fraud review"
        assert frozen.frozen_at is not None

        with pytest.raises(AccountStateConflict):
            self.manager.freeze_account(account.id, "again", self.admin_ctx)

        active = self.manager.unfreeze_account(account.id, "cleared", self.admin_ctx)
        assert active.status == AccountStatus.ACTIVE
        assert active.frozen_reason is None

        with pytest.raises(AccountStateConflict):
            self.manager.unfreeze_account(account.id, "again", self.admin_ctx)

        assert DomainEvent.ACCOUNT_FROZEN in [e.event_type for e in self.events]
        assert DomainEvent.ACCOUNT_UNFROZEN in [e.event_type for e in self.events]

    def test_close_requires_zero_balance(self):
        account = self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS,
                                            opening_balance=Decimal("1.00"))

        with pytest.raises(AccountStateConflict):
            self.manager.close_account(account.id, "moving banks", self.alice_ctx)

        account = self.store.get(account.id)
        account.balance = Decimal("0.00")
        self.store.save(account)

        with pytest.raises(NotOwner):
            self.manager.close_account(account.id, "not mine", self.bob_ctx)

        closed = self.manager.close_account(account.id, "moving banks", self.alice_ctx)
        assert closed.status == AccountStatus.CLOSED
        assert closed.closure_reason == "moving banks"

        with pytest.raises(AccountStateConflict):
            self.manager.close_account(account.id, "again", self.alice_ctx)
        with pytest.raises(AccountStateConflict):
            self.manager.freeze_account(account.id, "closed", self.admin_ctx)

    def test_update_limits(self):
        account = self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS)

        updated = self.manager.update_limits(
            account.id, self.admin_ctx,
            daily_transaction_limit=Decimal("2000.00"),
            per_transaction_limit="500"
        )

        assert updated.daily_transaction_limit == Decimal("2000.00")
        assert updated.per_transaction_limit == Decimal("500.00")
        assert updated.minimum_balance == Decimal("0.00")
        with pytest.raises(InsufficientRole):
            self.manager.update_limits(account.id, self.alice_ctx, minimum_balance=Decimal("10"))
        with pytest.raises(ValidationFailed):
            self.manager.update_limits(account.id, self.admin_ctx, minimum_balance=Decimal("-10"))

    def test_check_access(self):
        account = self.manager.open_account(self.alice_ctx, "Alice", AccountType.SAVINGS)

        check_access(account, self.alice_ctx)
        check_access(account, self.admin_ctx)
        with pytest.raises(NotOwner):
            check_access(account, self.bob_ctx)


class TestAccountStoreLocking:

    def test_unit_of_work_serializes_updates(self):
        storage = InMemoryStorage()
        store = AccountStore(storage)
        manager = AccountManager(store, LedgerStore(storage))
        owner = RequestContext("u1", "owner", UserRole.CUSTOMER)
        account = manager.open_account(owner, "Owner", AccountType.SAVINGS)

        def bump():
            for _ in range(50):
                with store.unit_of_work(account.id):
                    current = store.require(account.id)
                    current.balance += Decimal("1.00")
                    store.save(current)

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get(account.id).balance == Decimal("200.00")

    def test_unit_of_work_rolls_back(self):
        storage = InMemoryStorage()
        store = AccountStore(storage)
        manager = AccountManager(store, LedgerStore(storage))
        owner = RequestContext("u1", "owner", UserRole.CUSTOMER)
        account = manager.open_account(owner, "Owner", AccountType.SAVINGS)

        with pytest.raises(RuntimeError):
            with store.unit_of_work(account.id):
                current = store.require(account.id)
                current.balance = Decimal("999.00")
                store.save(current)
                raise RuntimeError("boom")

        assert store.get(account.id).balance == Decimal("0.00")
