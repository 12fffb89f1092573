"""Tests for the service facade, the usage ledger and the cleanup job."""

import asyncio
import contextlib
from datetime import timedelta

import pytest
from antifraud.blacklist import BlacklistStore
from antifraud.db.models import ActionTaken, BlacklistType, CouponUsage, RiskLog
from antifraud.exceptions import PersistenceError, ValidationError
from antifraud.jobs import BlacklistCleanupJob
from antifraud.repositories import SqlBlacklistRepository, SqlUsageLedgerRepository
from antifraud.schemas import RiskFactor, RiskFactorName
from conftest import create_coupon, record_usages
from sqlalchemy import select

IP = "203.0.113.10"


async def fetch_all(session_factory, model):
    async with session_factory() as session:
        result = await session.execute(select(model))
        return list(result.scalars().all())


# =============================================================================
# Ledger writes
# =============================================================================


class TestTrackUsage:
    """Tests for track_usage()."""

    @pytest.mark.asyncio
    async def test_usage_persisted(self, service, session_factory):
        await service.track_usage(
            coupon_id=None,
            user_id="user-42",
            ip=IP,
            user_agent="Mozilla/5.0",
            fingerprint="fp-1",
            risk_score=35,
        )

        usages = await fetch_all(session_factory, CouponUsage)
        assert len(usages) == 1
        usage = usages[0]
        assert usage.user_id == "user-42"
        assert usage.ip_address == IP
        assert usage.device_fingerprint == "fp-1"
        assert usage.user_agent == "Mozilla/5.0"
        assert usage.risk_score == 35

    @pytest.mark.asyncio
    async def test_defaults(self, service, session_factory):
        """Missing user agent and score fall back to "Unknown" and 0."""
        await service.track_usage(None, "user-1", IP, "")

        usage = (await fetch_all(session_factory, CouponUsage))[0]
        assert usage.user_agent == "Unknown"
        assert usage.risk_score == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id,ip", [("", IP), ("user-1", "")])
    async def test_required_fields(self, service, user_id, ip):
        with pytest.raises(ValidationError):
            await service.track_usage(None, user_id, ip, "Mozilla/5.0")

    @pytest.mark.asyncio
    async def test_tracked_usage_feeds_scoring(self, service):
        """The next assessment sees the usage immediately."""
        await service.track_usage(None, "user-1", IP, "Mozilla/5.0")

        assessment = await service.assess_risk(IP, "ana@example.com")

        assert assessment.factor_score(RiskFactorName.IP_REUSE) == 20


class TestLogRisk:
    """Tests for log_risk() and evaluate_and_record()."""

    @pytest.mark.asyncio
    async def test_risk_log_persisted(self, service, session_factory):
        factors = [
            RiskFactor(
                factor=RiskFactorName.TEMPORARY_EMAIL,
                score=40,
                description="Email temporário ou descartável detectado",
            )
        ]

        await service.log_risk(
            "user-1", IP, None, 40, factors, ActionTaken.EMAIL_VERIFICATION
        )

        logs = await fetch_all(session_factory, RiskLog)
        assert len(logs) == 1
        log = logs[0]
        assert log.risk_score == 40
        assert log.action_taken == "email_verification"
        assert log.factors == [
            {
                "factor": "temporary_email",
                "score": 40,
                "description": "Email temporário ou descartável detectado",
            }
        ]

    @pytest.mark.asyncio
    async def test_requires_ip(self, service):
        with pytest.raises(ValidationError):
            await service.log_risk(None, "", None, 0, [], ActionTaken.APPROVED)

    @pytest.mark.asyncio
    async def test_evaluate_and_record(self, service, session_factory):
        await service.blacklist.add(BlacklistType.IP, IP, "chargeback")

        assessment = await service.evaluate_and_record(
            IP, "ana@example.com", user_id="user-9"
        )

        logs = await fetch_all(session_factory, RiskLog)
        assert assessment.risk_score == 100
        assert len(logs) == 1
        assert logs[0].user_id == "user-9"
        assert logs[0].action_taken == ActionTaken.BLOCKED.value
        assert logs[0].factors[0]["factor"] == "blacklisted"

    @pytest.mark.asyncio
    async def test_evaluate_and_record_does_not_track_usage(
        self, service, session_factory
    ):
        await service.evaluate_and_record(IP, "ana@example.com")

        assert await fetch_all(session_factory, CouponUsage) == []


# =============================================================================
# Coupon usage stats
# =============================================================================


class TestCouponUsageStats:
    """Tests for get_coupon_usage_stats()."""

    @pytest.mark.asyncio
    async def test_counts_by_ip_and_fingerprint(self, service, session_factory, clock):
        coupon = await create_coupon(session_factory)
        await record_usages(service, clock, 2, ip=IP, coupon_id=coupon.id)
        await record_usages(
            service, clock, 1, ip="198.51.100.5", fingerprint="fp-1", coupon_id=coupon.id
        )
        await record_usages(service, clock, 3, ip="198.51.100.6", coupon_id=coupon.id)

        stats = await service.get_coupon_usage_stats(coupon.id, ip=IP, fingerprint="fp-1")

        assert stats.total == 3
        assert stats.by_ip == 2
        assert stats.by_fingerprint == 1
        assert {u.ip_address for u in stats.recent_usages} == {IP, "198.51.100.5"}

    @pytest.mark.asyncio
    async def test_limited_to_ten_most_recent(self, service, session_factory, clock):
        coupon = await create_coupon(session_factory)
        await record_usages(service, clock, 12, ip=IP, coupon_id=coupon.id)

        stats = await service.get_coupon_usage_stats(coupon.id)

        assert stats.total == 10
        assert stats.by_ip == 0
        assert stats.by_fingerprint == 0

    @pytest.mark.asyncio
    async def test_other_coupons_excluded(self, service, session_factory, clock):
        coupon = await create_coupon(session_factory)
        other = await create_coupon(session_factory)
        await record_usages(service, clock, 2, ip=IP, coupon_id=other.id)

        stats = await service.get_coupon_usage_stats(coupon.id, ip=IP)

        assert stats.total == 0
        assert stats.recent_usages == []


# =============================================================================
# Cleanup job
# =============================================================================


class TestBlacklistCleanupJob:
    """Tests for the periodic expired-entry sweep."""

    @pytest.mark.asyncio
    async def test_run_once(self, service, clock):
        await service.blacklist.add(BlacklistType.IP, IP, "temp", expires_in_hours=1)
        await service.blacklist.add(BlacklistType.IP, "198.51.100.7", "permanent")
        job = BlacklistCleanupJob(service.blacklist)

        clock.advance(hours=2)
        removed = await job.run_once()

        assert removed == 1
        assert job.removed_total == 1
        assert [e.value for e in await service.blacklist.list()] == ["198.51.100.7"]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, service, clock):
        await service.blacklist.add(BlacklistType.IP, IP, "temp", expires_in_hours=1)
        clock.advance(hours=2)
        job = BlacklistCleanupJob(service.blacklist, interval_seconds=0.01)

        await job.start()
        assert job.is_running is True
        for _ in range(100):
            if job.removed_total:
                break
            await asyncio.sleep(0.02)
        await job.stop()

        assert job.is_running is False
        assert job.removed_total == 1
        assert await service.blacklist.list() == []

    @pytest.mark.asyncio
    async def test_stop_without_start(self, service):
        job = BlacklistCleanupJob(service.blacklist)

        await job.stop()

        assert job.is_running is False

    @pytest.mark.asyncio
    async def test_start_after_task_ended_restarts(self, service):
        job = BlacklistCleanupJob(service.blacklist, interval_seconds=60)
        await job.start()
        job._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await job._task
        assert job.is_running is False

        await job.start()

        assert job.is_running is True
        await job.stop()


class FlakyBlacklist:
    """Blacklist whose first sweep fails with an unexpected error."""

    def __init__(self):
        self.calls = 0

    async def cleanup_expired(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("unexpected driver state")
        return 1


class TestCleanupJobFailures:
    """The sweep keeps running through outages and unexpected errors."""

    @pytest.mark.asyncio
    async def test_run_once_unreachable_database(self, unreachable_session_factory):
        job = BlacklistCleanupJob(
            BlacklistStore(SqlBlacklistRepository(unreachable_session_factory))
        )

        with pytest.raises(PersistenceError):
            await job.run_once()

    @pytest.mark.asyncio
    async def test_loop_survives_unreachable_database(
        self, unreachable_session_factory, caplog
    ):
        job = BlacklistCleanupJob(
            BlacklistStore(SqlBlacklistRepository(unreachable_session_factory)),
            interval_seconds=0.01,
        )

        with caplog.at_level("ERROR", logger="antifraud.jobs"):
            await job.start()
            for _ in range(100):
                if "Blacklist cleanup failed" in caplog.text:
                    break
                await asyncio.sleep(0.02)
            running = job.is_running
            await job.stop()

        assert "Blacklist cleanup failed" in caplog.text
        assert running is True

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(self, caplog):
        blacklist = FlakyBlacklist()
        job = BlacklistCleanupJob(blacklist, interval_seconds=0.01)

        with caplog.at_level("ERROR", logger="antifraud.jobs"):
            await job.start()
            for _ in range(100):
                if job.removed_total:
                    break
                await asyncio.sleep(0.02)
            running = job.is_running
            await job.stop()

        assert blacklist.calls >= 2
        assert job.removed_total >= 1
        assert running is True
        assert "Unexpected error in blacklist cleanup" in caplog.text


class TestLedgerOutage:
    """Connection failures surface as PersistenceError."""

    @pytest.mark.asyncio
    async def test_count_raises_persistence_error(
        self, unreachable_session_factory, clock
    ):
        ledger = SqlUsageLedgerRepository(unreachable_session_factory)

        with pytest.raises(PersistenceError):
            await ledger.count_usages_by_ip(IP, clock.now - timedelta(hours=24))
