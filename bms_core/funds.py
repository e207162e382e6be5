"""
Funds Movement Engine

Deposits, withdrawals and two-phase transfers. Every mutation runs inside one
unit of work holding the touched accounts' locks (ascending id order) and a
storage transaction spanning balance read, limit check, balance write and
ledger append. Side effects are queued in an outbox and published only after
the unit of work commits.

Transfers above the step-up threshold stop after initiation with a PENDING
TRANSFER_OUT entry and an OTP bound to (initiator, reference). Completing the
transfer verifies the code, re-checks the source and then moves the money
exactly once.
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .accounts import Account, AccountStore, check_access
from .ledger import LedgerStore, LedgerEntry, TransactionType, TransactionStatus
from .limits import LimitPolicy, LimitDecision, MovementKind, to_amount, ZERO
from .otp import StepUpGate, OtpPurpose
from .identity import RequestContext, UserDirectory, UserIdentity, require_privileged
from .events import EventDispatcher, EventOutbox, EventPayload, DomainEvent
from .errors import (
    AccountNotActive, InsufficientBalance, InvalidAmount, InvalidOrExpiredOtp,
    NotOwner, PolicyViolation, SameAccount, TransactionNotFound,
    TransactionNotPending, UserNotFound, ValidationFailed
)
from .logging_config import get_logger, log_action


logger = get_logger("bms.funds")


@dataclass
class TransferResult:
    """Outcome of initiating or completing a transfer"""
    reference_number: str
    status: TransactionStatus
    otp_required: bool
    entry: LedgerEntry
    message: str = ""

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING


@dataclass
class TransactionStats:
    """Aggregates over the successful entries of a user's accounts"""
    total_count: int
    total_credit: Decimal
    total_debit: Decimal
    net_amount: Decimal
    deposits_count: int
    deposits_total: Decimal
    withdrawals_count: int
    withdrawals_total: Decimal
    transfers_count: int
    transfers_total: Decimal
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class FundsMovementEngine:
    """
    Orchestrates movements against the account store, the ledger, the limit
    policy and the step-up gate

    Args:
        accounts: Account store
        ledger: Ledger store
        step_up_gate: OTP gate for high-value transfers
        directory: Resolves the initiator's contact details for OTP delivery
        event_dispatcher: Receives post-commit events
        limit_policy: Defaults to LimitPolicy()
        step_up_threshold: Transfers strictly above this amount need an OTP
        clock: Returns the current UTC time
    """

    def __init__(
        self,
        accounts: AccountStore,
        ledger: LedgerStore,
        step_up_gate: StepUpGate,
        directory: UserDirectory,
        event_dispatcher: Optional[EventDispatcher] = None,
        limit_policy: Optional[LimitPolicy] = None,
        step_up_threshold: Decimal = Decimal("25000.00"),
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.accounts = accounts
        self.ledger = ledger
        self.step_up_gate = step_up_gate
        self.directory = directory
        self._event_dispatcher = event_dispatcher
        self.limit_policy = limit_policy or LimitPolicy()
        self.step_up_threshold = step_up_threshold
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # Single-account movements

    def deposit(self, account_id: str, amount, context: RequestContext,
                description: Optional[str] = None) -> LedgerEntry:
        """
        Credit an account

        Raises:
            AccountNotFound, NotOwner, AccountNotActive, InvalidAmount,
            LimitExceeded
        """
        amount = self._validate_amount(amount)
        outbox = EventOutbox(self._event_dispatcher)

        with self.accounts.unit_of_work(account_id):
            account = self.accounts.require(account_id)
            check_access(account, context)
            self._require_active(account)

            now = self.clock()
            decision = self.limit_policy.enforce(account, amount, MovementKind.CREDIT, now.date())

            account.balance += amount
            self._record_activity(account, decision, now)
            self.accounts.save(account)

            entry = self.ledger.create_entry(
                reference_number=self.ledger.generate_reference(),
                transaction_type=TransactionType.DEPOSIT,
                account_id=account.id,
                amount=amount,
                balance_after=account.balance,
                status=TransactionStatus.SUCCESS,
                description=description or "Deposit",
                initiated_by=context.user_id,
                now=now
            )
            outbox.add(self._movement_event(DomainEvent.DEPOSIT_COMPLETED, entry, account, context))

        outbox.flush()
        log_action(logger, "info", f"Deposit of {amount} to {account.account_number}",
                   user_id=context.user_id, action="deposit", resource=account.id,
                   correlation_id=entry.reference_number,
                   extra={"amount": str(amount), "balance_after": str(entry.balance_after)})
        return entry

    def withdraw(self, account_id: str, amount, context: RequestContext,
                 description: Optional[str] = None) -> LedgerEntry:
        """
        Debit an account

        Raises:
            AccountNotFound, NotOwner, AccountNotActive, InvalidAmount,
            InsufficientBalance, LimitExceeded, MinimumBalanceViolation
        """
        amount = self._validate_amount(amount)
        outbox = EventOutbox(self._event_dispatcher)

        with self.accounts.unit_of_work(account_id):
            account = self.accounts.require(account_id)
            check_access(account, context)
            self._require_active(account)
            self._require_funds(account, amount)

            now = self.clock()
            decision = self.limit_policy.enforce(account, amount, MovementKind.DEBIT, now.date())

            account.balance -= amount
            self._record_activity(account, decision, now)
            self.accounts.save(account)

            entry = self.ledger.create_entry(
                reference_number=self.ledger.generate_reference(),
                transaction_type=TransactionType.WITHDRAW,
                account_id=account.id,
                amount=amount,
                balance_after=account.balance,
                status=TransactionStatus.SUCCESS,
                description=description or "Withdrawal",
                initiated_by=context.user_id,
                now=now
            )
            outbox.add(self._movement_event(DomainEvent.WITHDRAWAL_COMPLETED, entry, account, context))

        outbox.flush()
        log_action(logger, "info", f"Withdrawal of {amount} from {account.account_number}",
                   user_id=context.user_id, action="withdraw", resource=account.id,
                   correlation_id=entry.reference_number,
                   extra={"amount": str(amount), "balance_after": str(entry.balance_after)})
        return entry

    # Transfers

    def initiate_transfer(self, from_account_number: str, to_account_number: str, amount,
                          description: Optional[str], context: RequestContext) -> TransferResult:
        """
        Start a transfer between two accounts identified by number

        Amounts up to the step-up threshold complete immediately. Larger
        amounts leave a PENDING entry and send an OTP to the initiator.

        Raises:
            AccountNotFound, SameAccount, NotOwner, AccountNotActive,
            InvalidAmount, InsufficientBalance, LimitExceeded,
            MinimumBalanceViolation
        """
        amount = self._validate_amount(amount)
        if from_account_number == to_account_number:
            raise SameAccount(from_account_number)

        source = self.accounts.require_by_number(from_account_number)
        destination = self.accounts.require_by_number(to_account_number)
        check_access(source, context)

        requires_otp = amount > self.step_up_threshold
        initiator = self._initiator(context) if requires_otp else None
        outbox = EventOutbox(self._event_dispatcher)

        with self.accounts.unit_of_work(source.id, destination.id):
            source = self.accounts.require(source.id)
            destination = self.accounts.require(destination.id)
            self._require_active(source)
            self._require_active(destination)
            self._require_funds(source, amount)

            now = self.clock()
            decision = self.limit_policy.enforce(source, amount, MovementKind.DEBIT, now.date())

            reference = self.ledger.generate_reference()
            entry = self.ledger.create_entry(
                reference_number=reference,
                transaction_type=TransactionType.TRANSFER_OUT,
                account_id=source.id,
                amount=amount,
                balance_after=source.balance - amount,
                status=TransactionStatus.PENDING,
                description=self._transfer_description("Transfer to", destination, description),
                counterparty_account_id=destination.id,
                requires_otp=requires_otp,
                initiated_by=context.user_id,
                now=now
            )
            outbox.add(self._transfer_event(DomainEvent.TRANSFER_INITIATED, entry, source, destination,
                                            context, requires_otp=requires_otp))

            if requires_otp:
                self.step_up_gate.issue(initiator, OtpPurpose.TRANSACTION, related_reference=reference,
                                        outbox=outbox, client_ip=context.client_ip)
            else:
                entry = self._apply_transfer(entry, source, destination, decision, context, outbox, now)

        outbox.flush()

        if requires_otp:
            log_action(logger, "info", f"Transfer {reference} pending OTP verification",
                       user_id=context.user_id, action="transfer_initiated", resource=source.id,
                       correlation_id=reference, extra={"amount": str(amount)})
            return TransferResult(reference, entry.status, True, entry,
                                  "OTP sent. Verify to complete the transfer.")

        log_action(logger, "info", f"Transfer {reference} completed",
                   user_id=context.user_id, action="transfer_completed", resource=source.id,
                   correlation_id=reference, extra={"amount": str(amount)})
        return TransferResult(reference, entry.status, False, entry, "Transfer completed successfully")

    def transfer(self, from_account_number: str, to_account_number: str, amount,
                 description: Optional[str], context: RequestContext) -> TransferResult:
        """Alias of initiate_transfer"""
        return self.initiate_transfer(from_account_number, to_account_number, amount, description, context)

    def complete_transfer(self, reference_number: str, context: RequestContext,
                          otp_code: Optional[str] = None) -> TransferResult:
        """
        Complete a PENDING transfer

        A failed OTP check leaves the entry PENDING. When the source can no
        longer cover the transfer the entry is marked FAILED, that change is
        committed, and the policy error is raised.

        Raises:
            TransactionNotFound, TransactionNotPending, NotOwner,
            InvalidOrExpiredOtp, InsufficientBalance, AccountNotActive,
            LimitExceeded, MinimumBalanceViolation
        """
        entry = self._require_entry(reference_number)
        if not entry.is_pending:
            raise TransactionNotPending(reference_number, entry.status.value)
        self._require_initiator(entry, context)

        if entry.requires_otp:
            verified = self.step_up_gate.verify(
                entry.initiated_by, otp_code, OtpPurpose.TRANSACTION, related_reference=reference_number
            )
            otp_event = self._otp_event(
                DomainEvent.OTP_VERIFIED if verified else DomainEvent.OTP_REJECTED, entry, context
            )
            if not verified:
                self._publish(otp_event)
                raise InvalidOrExpiredOtp(reference_number)
            self._publish(otp_event)

        outbox = EventOutbox(self._event_dispatcher)
        failure: Optional[PolicyViolation] = None

        with self.accounts.unit_of_work(entry.account_id, entry.counterparty_account_id):
            entry = self.ledger.get_entry(entry.id)
            if not entry.is_pending:
                raise TransactionNotPending(reference_number, entry.status.value)

            source = self.accounts.require(entry.account_id)
            destination = self.accounts.require(entry.counterparty_account_id)
            now = self.clock()

            try:
                self._require_active(source)
                self._require_active(destination)
                self._require_funds(source, entry.amount)
                decision = self.limit_policy.enforce(source, entry.amount, MovementKind.DEBIT, now.date())
            except PolicyViolation as e:
                failure = e
                entry = self.ledger.resolve(entry, TransactionStatus.FAILED, remarks=e.message, now=now)
                outbox.add(self._transfer_event(DomainEvent.TRANSFER_FAILED, entry, source, destination,
                                                context, reason=e.message))
            else:
                entry = self._apply_transfer(entry, source, destination, decision, context, outbox, now)

        outbox.flush()

        if failure is not None:
            log_action(logger, "warning", f"Transfer {reference_number} failed: {failure.message}",
                       user_id=context.user_id, action="transfer_failed", resource=entry.account_id,
                       correlation_id=reference_number)
            raise failure

        log_action(logger, "info", f"Transfer {reference_number} completed",
                   user_id=context.user_id, action="transfer_completed", resource=entry.account_id,
                   correlation_id=reference_number, extra={"amount": str(entry.amount)})
        return TransferResult(reference_number, entry.status, False, entry, "Transfer completed successfully")

    def resend_transfer_otp(self, reference_number: str, context: RequestContext) -> TransferResult:
        """Issue a fresh OTP for a PENDING transfer; the previous code stops working"""
        entry = self._require_entry(reference_number)
        if not entry.is_pending:
            raise TransactionNotPending(reference_number, entry.status.value)
        if not entry.requires_otp:
            raise ValidationFailed(f"Transaction {reference_number} does not require an OTP")
        if entry.initiated_by != context.user_id:
            raise NotOwner(context.username, self._account_number(entry.account_id))

        self.step_up_gate.issue(self._initiator(context), OtpPurpose.TRANSACTION,
                                related_reference=reference_number, client_ip=context.client_ip)
        log_action(logger, "info", f"OTP re-sent for transfer {reference_number}",
                   user_id=context.user_id, action="otp_resent", correlation_id=reference_number)
        return TransferResult(reference_number, entry.status, True, entry, "A new OTP has been sent.")

    def expire_pending_transfers(self, max_age: Optional[timedelta] = None,
                                 context: Optional[RequestContext] = None) -> int:
        """
        Mark PENDING transfers older than max_age FAILED with remark
        "expired". Defaults to the OTP validity window. A transfer whose
        latest OTP can still be verified is left alone, so a resent code
        keeps it open until that code expires. Returns the count.
        """
        context = context or RequestContext.system()
        require_privileged(context, "expire pending transfers")
        max_age = max_age if max_age is not None else timedelta(minutes=self.step_up_gate.expiry_minutes)
        cutoff = self.clock() - max_age

        expired = 0
        for candidate in self.ledger.get_pending_entries(older_than=cutoff):
            outbox = EventOutbox(self._event_dispatcher)
            with self.accounts.unit_of_work(candidate.account_id, candidate.counterparty_account_id or candidate.account_id):
                entry = self.ledger.get_entry(candidate.id)
                if entry is None or not entry.is_pending:
                    continue
                if self._awaiting_otp(entry):
                    continue
                entry = self.ledger.resolve(entry, TransactionStatus.FAILED, remarks="expired", now=self.clock())
                outbox.add(EventPayload(
                    event_type=DomainEvent.TRANSFER_EXPIRED,
                    entity_type="transaction",
                    entity_id=entry.id,
                    data=self._entry_data(entry, reason="expired"),
                    actor=context.username,
                    client_ip=context.client_ip
                ))
            outbox.flush()
            expired += 1

        if expired:
            log_action(logger, "info", f"Expired {expired} abandoned pending transfers",
                       user_id=context.user_id, action="pending_expired",
                       extra={"cutoff": cutoff.isoformat()})
        return expired

    def review_transaction(self, reference_number: str, approved: bool, remarks: Optional[str],
                           context: RequestContext) -> LedgerEntry:
        """
        Administrative resolution of a PENDING entry to APPROVED or REJECTED.
        Balances are not touched.
        """
        require_privileged(context, "review transactions")
        entry = self._require_entry(reference_number)
        outbox = EventOutbox(self._event_dispatcher)

        with self.accounts.unit_of_work(entry.account_id, entry.counterparty_account_id or entry.account_id):
            entry = self.ledger.get_entry(entry.id)
            if not entry.is_pending:
                raise TransactionNotPending(reference_number, entry.status.value)
            status = TransactionStatus.APPROVED if approved else TransactionStatus.REJECTED
            entry = self.ledger.resolve(entry, status, remarks=remarks, now=self.clock())
            outbox.add(EventPayload(
                event_type=DomainEvent.TRANSACTION_REVIEWED,
                entity_type="transaction",
                entity_id=entry.id,
                data=self._entry_data(entry, remarks=remarks),
                actor=context.username,
                client_ip=context.client_ip
            ))

        outbox.flush()
        log_action(logger, "warning", f"Transaction {reference_number} {status.value.lower()} by {context.username}",
                   user_id=context.user_id, action="transaction_reviewed",
                   correlation_id=reference_number, extra={"remarks": remarks})
        return entry

    # Read side

    def get_account_transactions(self, account_id: str, context: RequestContext,
                                 start: Optional[datetime] = None,
                                 end: Optional[datetime] = None) -> List[LedgerEntry]:
        """Ledger history of an account, newest first"""
        account = self.accounts.require(account_id)
        check_access(account, context)
        return self.ledger.get_account_entries(account_id, start, end)

    def get_transaction_by_reference(self, reference_number: str, context: RequestContext) -> LedgerEntry:
        """
        The entry of a reference the actor may see: the primary entry for
        privileged actors and senders, the TRANSFER_IN for recipients
        """
        entries = self.ledger.entries_for_reference(reference_number)
        if not entries:
            raise TransactionNotFound(reference_number)
        primary = self.ledger.find_by_reference(reference_number)
        if context.is_privileged:
            return primary

        for entry in [primary] + [e for e in entries if e.id != primary.id]:
            account = self.accounts.get(entry.account_id)
            if account and account.is_owned_by(context):
                return entry
        raise NotOwner(context.username, self._account_number(primary.account_id))

    def list_pending_transactions(self, context: RequestContext) -> List[LedgerEntry]:
        require_privileged(context, "list pending transactions")
        return self.ledger.get_pending_entries()

    def get_transaction_stats(self, context: RequestContext, start: Optional[datetime] = None,
                              end: Optional[datetime] = None) -> TransactionStats:
        """Debit/credit totals over the actor's accounts within a range"""
        entries: List[LedgerEntry] = []
        for account in self.accounts.get_user_accounts(context.user_id):
            entries.extend(self.ledger.get_account_entries(account.id, start, end))
        settled = [e for e in entries if e.status == TransactionStatus.SUCCESS]

        def total(kinds: Tuple[TransactionType, ...]) -> Tuple[int, Decimal]:
            matching = [e for e in settled if e.transaction_type in kinds]
            return len(matching), sum((e.amount for e in matching), ZERO)

        deposits_count, deposits_total = total((TransactionType.DEPOSIT,))
        withdrawals_count, withdrawals_total = total((TransactionType.WITHDRAW,))
        transfers_count, transfers_total = total((TransactionType.TRANSFER_OUT,))
        _, credit = total((TransactionType.DEPOSIT, TransactionType.TRANSFER_IN))
        _, debit = total((TransactionType.WITHDRAW, TransactionType.TRANSFER_OUT))

        return TransactionStats(
            total_count=len(settled),
            total_credit=credit,
            total_debit=debit,
            net_amount=credit - debit,
            deposits_count=deposits_count,
            deposits_total=deposits_total,
            withdrawals_count=withdrawals_count,
            withdrawals_total=withdrawals_total,
            transfers_count=transfers_count,
            transfers_total=transfers_total,
            start=start,
            end=end
        )

    def filter_transactions(
        self,
        context: RequestContext,
        account_id: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        min_amount=None,
        max_amount=None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[LedgerEntry]:
        """
        Entries matching every given criterion, newest first

        Without account_id the search covers the actor's own accounts. With
        it, the account must be visible to the actor.
        """
        if account_id:
            check_access(self.accounts.require(account_id), context)
            account_ids = [account_id]
        else:
            account_ids = self._own_account_ids(context)

        min_amount = to_amount(min_amount) if min_amount is not None else None
        max_amount = to_amount(max_amount) if max_amount is not None else None
        if min_amount is not None and max_amount is not None and min_amount > max_amount:
            raise ValidationFailed("min_amount must not exceed max_amount")

        return self.ledger.query_entries(
            account_ids,
            transaction_type=transaction_type,
            status=status,
            min_amount=min_amount,
            max_amount=max_amount,
            start=start,
            end=end
        )

    def search_transactions(self, term: str, context: RequestContext) -> List[LedgerEntry]:
        """Case-insensitive match on description or reference number over the actor's accounts"""
        needle = (term or "").strip().lower()
        if not needle:
            raise ValidationFailed("Search term is required")
        return [
            entry for entry in self.ledger.query_entries(self._own_account_ids(context))
            if needle in entry.reference_number.lower() or needle in (entry.description or "").lower()
        ]

    def get_recent_transactions(self, context: RequestContext, limit: int = 10) -> List[LedgerEntry]:
        if limit < 1:
            raise ValidationFailed("limit must be positive")
        return self.ledger.query_entries(self._own_account_ids(context))[:limit]

    # Internals

    def _apply_transfer(self, entry: LedgerEntry, source: Account, destination: Account,
                        decision: LimitDecision, context: RequestContext, outbox: EventOutbox,
                        now: datetime) -> LedgerEntry:
        """Move the money and write both SUCCESS entries. Caller holds the unit of work."""
        source.balance -= entry.amount
        destination.balance += entry.amount
        self._record_activity(source, decision, now)
        destination.last_transaction_date = now
        destination.updated_at = now
        self.accounts.save(source)
        self.accounts.save(destination)

        entry = self.ledger.resolve(entry, TransactionStatus.SUCCESS, balance_after=source.balance, now=now)
        suffix = entry.description[len(f"Transfer to {destination.account_number}"):] if entry.description else ""
        self.ledger.create_entry(
            reference_number=entry.reference_number,
            transaction_type=TransactionType.TRANSFER_IN,
            account_id=destination.id,
            amount=entry.amount,
            balance_after=destination.balance,
            status=TransactionStatus.SUCCESS,
            description=f"Transfer from {source.account_number}{suffix}",
            counterparty_account_id=source.id,
            initiated_by=entry.initiated_by,
            now=now
        )
        outbox.add(self._transfer_event(DomainEvent.TRANSFER_COMPLETED, entry, source, destination, context))
        return entry

    def _record_activity(self, account: Account, decision: LimitDecision, now: datetime) -> None:
        account.daily_transaction_total = decision.new_daily_total
        account.daily_total_reset_date = now.date()
        account.last_transaction_date = now
        account.updated_at = now

    @staticmethod
    def _validate_amount(amount) -> Decimal:
        amount = to_amount(amount)
        if amount <= 0:
            raise InvalidAmount(amount)
        return amount

    @staticmethod
    def _require_active(account: Account) -> None:
        if not account.is_active:
            raise AccountNotActive(account.account_number, account.status.value)

    @staticmethod
    def _require_funds(account: Account, amount: Decimal) -> None:
        if account.balance < amount:
            raise InsufficientBalance(account.balance, amount)

    def _require_entry(self, reference_number: str) -> LedgerEntry:
        entry = self.ledger.find_by_reference(reference_number)
        if entry is None:
            raise TransactionNotFound(reference_number)
        return entry

    def _require_initiator(self, entry: LedgerEntry, context: RequestContext) -> None:
        if context.is_privileged or entry.initiated_by == context.user_id:
            return
        raise NotOwner(context.username, self._account_number(entry.account_id))

    def _own_account_ids(self, context: RequestContext) -> List[str]:
        return [account.id for account in self.accounts.get_user_accounts(context.user_id)]

    def _awaiting_otp(self, entry: LedgerEntry) -> bool:
        if not entry.requires_otp or not entry.initiated_by:
            return False
        return self.step_up_gate.has_live_code(entry.initiated_by, OtpPurpose.TRANSACTION, entry.reference_number)

    def _initiator(self, context: RequestContext) -> UserIdentity:
        user = self.directory.get_user(context.user_id)
        if user is None:
            raise UserNotFound(context.username)
        return user

    def _account_number(self, account_id: str) -> str:
        account = self.accounts.get(account_id)
        return account.account_number if account else account_id

    @staticmethod
    def _transfer_description(prefix: str, counterparty: Account, description: Optional[str]) -> str:
        text = f"{prefix} {counterparty.account_number}"
        if description:
            text += f" - {description}"
        return text

    def _publish(self, event: EventPayload) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)

    @staticmethod
    def _entry_data(entry: LedgerEntry, **extra) -> dict:
        data = {
            "reference_number": entry.reference_number,
            "transaction_type": entry.transaction_type.value,
            "account_id": entry.account_id,
            "amount": str(entry.amount),
            "status": entry.status.value,
        }
        data.update(extra)
        return data

    def _movement_event(self, event_type: DomainEvent, entry: LedgerEntry, account: Account,
                        context: RequestContext) -> EventPayload:
        data = self._entry_data(entry, account_number=account.account_number, owner_id=account.user_id,
                                balance_after=str(entry.balance_after))
        return EventPayload(event_type=event_type, entity_type="transaction", entity_id=entry.id,
                            data=data, actor=context.username, client_ip=context.client_ip)

    def _transfer_event(self, event_type: DomainEvent, entry: LedgerEntry, source: Account,
                        destination: Account, context: RequestContext, **extra) -> EventPayload:
        data = self._entry_data(
            entry,
            account_number=source.account_number,
            owner_id=source.user_id,
            to_account_number=destination.account_number,
            counterparty_owner_id=destination.user_id,
            **extra
        )
        return EventPayload(event_type=event_type, entity_type="transaction", entity_id=entry.id,
                            data=data, actor=context.username, client_ip=context.client_ip)

    def _otp_event(self, event_type: DomainEvent, entry: LedgerEntry, context: RequestContext) -> EventPayload:
        return EventPayload(
            event_type=event_type,
            entity_type="otp",
            entity_id=entry.reference_number,
            data={"reference_number": entry.reference_number, "account_id": entry.account_id,
                  "purpose": OtpPurpose.TRANSACTION.value},
            actor=context.username,
            client_ip=context.client_ip
        )
