"""
Tests for the housekeeping scheduler
"""

from datetime import timedelta
from unittest.mock import Mock

from bms_core.housekeeping import HousekeepingScheduler


class TestHousekeepingScheduler:

    def setup_method(self):
        """Set up test fixtures"""
        self.gate = Mock()
        self.engine = Mock()
        self.housekeeping = HousekeepingScheduler(
            self.gate, self.engine,
            otp_purge_interval_minutes=10,
            pending_sweep_interval_minutes=2,
            pending_transfer_ttl_minutes=30
        )

    def teardown_method(self):
        self.housekeeping.shutdown()

    def test_purge_job(self):
        self.gate.purge_expired.return_value = 4

        assert self.housekeeping.purge_expired_codes() == 4
        self.gate.purge_expired.assert_called_once_with()

    def test_pending_sweep_uses_ttl(self):
        self.engine.expire_pending_transfers.return_value = 2

        assert self.housekeeping.expire_pending_transfers() == 2
        self.engine.expire_pending_transfers.assert_called_once_with(max_age=timedelta(minutes=30))

    def test_pending_sweep_defaults_to_otp_window(self):
        housekeeping = HousekeepingScheduler(self.gate, self.engine)
        self.engine.expire_pending_transfers.return_value = 0

        housekeeping.expire_pending_transfers()

        self.engine.expire_pending_transfers.assert_called_once_with(max_age=None)

    def test_job_errors_are_logged_not_raised(self):
        self.gate.purge_expired.side_effect = RuntimeError("db down")
        self.engine.expire_pending_transfers.side_effect = RuntimeError("db down")

        assert self.housekeeping.purge_expired_codes() == 0
        assert self.housekeeping.expire_pending_transfers() == 0

    def test_start_registers_jobs(self):
        self.housekeeping.start()

        assert self.housekeeping.running
        job_ids = {job.id for job in self.housekeeping.scheduler.get_jobs()}
        assert job_ids == {"purge_expired_otps", "expire_pending_transfers"}

        self.housekeeping.start()
        assert len(self.housekeeping.scheduler.get_jobs()) == 2

        self.housekeeping.shutdown()
        assert not self.housekeeping.running
