"""
Housekeeping Jobs

Periodic maintenance on an APScheduler background scheduler: purging used
or expired one-time codes and failing PENDING transfers whose OTP window
has passed.
"""

from datetime import timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .otp import StepUpGate
from .funds import FundsMovementEngine
from .logging_config import get_logger


logger = get_logger("bms.housekeeping")


class HousekeepingScheduler:
    """Runs OTP purge and pending-transfer expiry at fixed intervals"""

    def __init__(
        self,
        step_up_gate: StepUpGate,
        engine: FundsMovementEngine,
        otp_purge_interval_minutes: int = 15,
        pending_sweep_interval_minutes: int = 5,
        pending_transfer_ttl_minutes: Optional[int] = None
    ):
        self.step_up_gate = step_up_gate
        self.engine = engine
        self.otp_purge_interval_minutes = otp_purge_interval_minutes
        self.pending_sweep_interval_minutes = pending_sweep_interval_minutes
        self.pending_transfer_ttl_minutes = pending_transfer_ttl_minutes

        self.scheduler = BackgroundScheduler(
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            },
            timezone='UTC'
        )

    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.purge_expired_codes,
            trigger=IntervalTrigger(minutes=self.otp_purge_interval_minutes),
            id="purge_expired_otps",
            name="Purge Expired OTP Codes",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.expire_pending_transfers,
            trigger=IntervalTrigger(minutes=self.pending_sweep_interval_minutes),
            id="expire_pending_transfers",
            name="Expire Abandoned Pending Transfers",
            replace_existing=True,
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Housekeeping scheduler started")

    def shutdown(self, wait: bool = False) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Housekeeping scheduler stopped")

    def purge_expired_codes(self) -> int:
        try:
            return self.step_up_gate.purge_expired()
        except Exception as e:
            logger.error(f"OTP purge failed: {e}", exc_info=True)
            return 0

    def expire_pending_transfers(self) -> int:
        max_age = None
        if self.pending_transfer_ttl_minutes is not None:
            max_age = timedelta(minutes=self.pending_transfer_ttl_minutes)
        try:
            return self.engine.expire_pending_transfers(max_age=max_age)
        except Exception as e:
            logger.error(f"Pending transfer sweep failed: {e}", exc_info=True)
            return 0
