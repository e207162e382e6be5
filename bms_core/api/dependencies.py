"""
Banking system container and request dependencies
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ..config import BmsConfig, get_config
from ..storage import StorageInterface, create_storage
from ..events import EventDispatcher, QueuedEventDispatcher
from ..identity import RequestContext, UserDirectory, UserRole
from ..accounts import AccountStore, AccountManager
from ..ledger import LedgerStore
from ..limits import LimitPolicy
from ..otp import StepUpGate
from ..audit import AuditTrail, AuditEventHandler
from ..notifications import (
    NotificationCenter, NotificationEventHandler, OtpDelivery,
    LogOtpDelivery, WebhookOtpDelivery
)
from ..funds import FundsMovementEngine
from ..housekeeping import HousekeepingScheduler
from ..errors import UserNotFound
from ..logging_config import get_logger


logger = get_logger("bms.api")


class BankingSystem:
    """Funds-movement core with all components wired together"""

    def __init__(
        self,
        config: Optional[BmsConfig] = None,
        storage: Optional[StorageInterface] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        otp_delivery: Optional[OtpDelivery] = None
    ):
        self.config = config or get_config()

        # Initialize storage and event delivery
        self.storage = storage or create_storage(self.config.database_url)
        self.event_dispatcher = event_dispatcher or QueuedEventDispatcher(self.config.event_queue_size)

        # Initialize stores
        self.directory = UserDirectory(self.storage)
        self.account_store = AccountStore(self.storage)
        self.ledger = LedgerStore(self.storage)

        # Initialize sinks
        self.audit_trail = AuditTrail(self.storage)
        AuditEventHandler(self.audit_trail).register(self.event_dispatcher)
        self.notification_center = NotificationCenter(self.storage)
        NotificationEventHandler(
            self.notification_center,
            otp_delivery or self._create_otp_delivery(),
            high_value_threshold=self.config.step_up_threshold
        ).register(self.event_dispatcher)

        # Initialize core components
        self.step_up_gate = StepUpGate(
            self.storage,
            dispatcher=self.event_dispatcher,
            code_length=self.config.otp_length,
            expiry_minutes=self.config.otp_expiry_minutes,
            max_attempts=self.config.otp_max_attempts
        )
        self.account_manager = AccountManager(
            self.account_store,
            self.ledger,
            event_dispatcher=self.event_dispatcher,
            default_daily_limit=self.config.default_daily_transaction_limit,
            default_per_transaction_limit=self.config.default_per_transaction_limit,
            default_minimum_balance=self.config.default_minimum_balance,
            directory=self.directory
        )
        self.engine = FundsMovementEngine(
            self.account_store,
            self.ledger,
            self.step_up_gate,
            self.directory,
            event_dispatcher=self.event_dispatcher,
            limit_policy=LimitPolicy(),
            step_up_threshold=self.config.step_up_threshold
        )

        self.housekeeping: Optional[HousekeepingScheduler] = None
        if self.config.enable_housekeeping:
            self.housekeeping = HousekeepingScheduler(
                self.step_up_gate,
                self.engine,
                otp_purge_interval_minutes=self.config.otp_purge_interval_minutes,
                pending_sweep_interval_minutes=self.config.pending_sweep_interval_minutes,
                pending_transfer_ttl_minutes=self.config.pending_transfer_ttl
            )

    def _create_otp_delivery(self) -> OtpDelivery:
        """Webhook delivery when a gateway URL is configured, log delivery otherwise"""
        if self.config.otp_webhook_url:
            return WebhookOtpDelivery(self.config.otp_webhook_url, timeout=self.config.otp_webhook_timeout)
        return LogOtpDelivery()

    def bootstrap_admin(self) -> None:
        username = self.config.bootstrap_admin_username
        if not username or self.directory.get_user_by_username(username):
            return
        self.directory.register(
            username,
            self.config.bootstrap_admin_email or f"{username}@localhost",
            role=UserRole.ADMIN,
            full_name="Administrator"
        )
        logger.info(f"Bootstrap administrator {username} created")

    def start(self) -> None:
        self.bootstrap_admin()
        self.event_dispatcher.start()
        if self.housekeeping:
            self.housekeeping.start()

    def shutdown(self) -> None:
        if self.housekeeping:
            self.housekeeping.shutdown()
        self.event_dispatcher.stop()
        self.storage.close()


# Global banking system instance, created on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


def get_request_context(
    request: Request,
    x_username: Optional[str] = Header(None),
    system: BankingSystem = Depends(get_banking_system)
) -> RequestContext:
    """
    Resolve the authenticated principal passed by the upstream gateway in
    the X-Username header
    """
    if not x_username:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-Username header is required")
    client_ip = request.client.host if request.client else None
    try:
        return system.directory.context_for(x_username, client_ip)
    except UserNotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Unknown user {x_username}")
