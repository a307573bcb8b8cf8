"""Brute-force guard tests."""

import asyncio

import pytest

from authgate.security.protection.brute_force import BruteForceGuard


@pytest.fixture
def guard(clock):
    return BruteForceGuard(threshold=5, window_minutes=15, lockout_minutes=30, clock=clock)


class TestThresholds:
    """Blocking per user and per source address."""

    @pytest.mark.asyncio
    async def test_user_blocked_at_threshold_and_released_after_lockout(self, guard, clock):
        for _ in range(4):
            await guard.record_failed_attempt("alice", "10.0.0.5")
            clock.advance(minutes=2)
            assert not await guard.is_blocked("alice", "10.0.0.5")

        assert await guard.record_failed_attempt("alice", "10.0.0.5") is True
        assert await guard.is_blocked("alice", "10.0.0.5")

        clock.advance(minutes=31)
        assert not await guard.is_blocked("alice", "10.0.0.5")

    @pytest.mark.asyncio
    async def test_user_block_applies_from_any_address(self, guard):
        for _ in range(5):
            await guard.record_failed_attempt("alice", "10.0.0.5")

        assert await guard.is_blocked("alice", "192.168.1.1")
        assert not await guard.is_blocked("bob", "192.168.1.1")

    @pytest.mark.asyncio
    async def test_ip_threshold_is_three_times_user_threshold(self, guard):
        assert guard.ip_threshold == 15

        for i in range(14):
            await guard.record_failed_attempt(f"user{i}", "203.0.113.7")
        assert not await guard.is_blocked("fresh-user", "203.0.113.7")

        await guard.record_failed_attempt("user14", "203.0.113.7")
        assert await guard.is_blocked("fresh-user", "203.0.113.7")

    @pytest.mark.asyncio
    async def test_window_expiry_resets_count(self, guard, clock):
        for _ in range(4):
            await guard.record_failed_attempt("alice", "10.0.0.5")

        clock.advance(minutes=16)
        await guard.record_failed_attempt("alice", "10.0.0.5")

        stats = await guard.get_attempt_stats("alice", "10.0.0.5")
        assert stats["user_attempts"] == 1
        assert not stats["user_blocked"]

    @pytest.mark.asyncio
    async def test_block_survives_window_reset(self, guard, clock):
        for _ in range(5):
            await guard.record_failed_attempt("alice", "10.0.0.5")

        clock.advance(minutes=20)
        await guard.record_failed_attempt("alice", "10.0.0.5")

        assert await guard.is_blocked("alice", "10.0.0.5")

    @pytest.mark.asyncio
    async def test_lockout_disabled_never_blocks(self, clock):
        guard = BruteForceGuard(threshold=2, lockout_enabled=False, clock=clock)
        for _ in range(10):
            assert await guard.record_failed_attempt("alice", "10.0.0.5") is False

        assert not await guard.is_blocked("alice", "10.0.0.5")
        assert (await guard.get_attempt_stats("alice", "10.0.0.5"))["user_attempts"] == 10


class TestOverrides:
    """Resets and administrative unblocking."""

    @pytest.mark.asyncio
    async def test_reset_clears_user_and_ip(self, guard):
        for _ in range(5):
            await guard.record_failed_attempt("alice", "10.0.0.5")

        await guard.reset_attempts("alice", "10.0.0.5")

        stats = await guard.get_attempt_stats("alice", "10.0.0.5")
        assert stats == {
            "user_attempts": 0,
            "ip_attempts": 0,
            "user_blocked": False,
            "ip_blocked": False,
        }

    @pytest.mark.asyncio
    async def test_unblock_user_and_ip(self, guard):
        for i in range(15):
            await guard.record_failed_attempt("alice" if i < 5 else f"u{i}", "10.0.0.5")

        assert "alice" in await guard.get_blocked_users()
        assert "10.0.0.5" in await guard.get_blocked_ips()

        assert await guard.unblock_user("alice")
        assert await guard.is_blocked("alice", "10.0.0.5")  # address still blocked

        assert await guard.unblock_ip("10.0.0.5")
        assert not await guard.is_blocked("alice", "10.0.0.5")

    @pytest.mark.asyncio
    async def test_unblock_unknown_key(self, guard):
        assert await guard.unblock_user("nobody") is False
        assert await guard.unblock_ip("198.51.100.1") is False


class TestMaintenance:
    """Cleanup and lifecycle."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_idle_unblocked_records(self, clock):
        guard = BruteForceGuard(threshold=5, window_minutes=15, lockout_minutes=60, clock=clock)
        await guard.record_failed_attempt("idle", "10.0.0.1")
        for _ in range(5):
            await guard.record_failed_attempt("locked", "10.0.0.2")

        clock.advance(minutes=29)
        assert await guard.cleanup_expired_records() == 0

        # Past twice the window; the locked user is still inside its lockout
        clock.advance(minutes=2)
        removed = await guard.cleanup_expired_records()

        assert removed == 3  # idle user, both addresses
        assert guard.get_stats() == {"tracked_users": 1, "tracked_ips": 0}
        assert await guard.is_blocked("locked", "10.9.9.9")

    @pytest.mark.asyncio
    async def test_lifecycle_starts_and_stops_cleanup_task(self, clock):
        guard = BruteForceGuard(cleanup_interval=0.01, clock=clock)
        await guard.initialize()
        assert guard._cleanup_task is not None

        await asyncio.sleep(0.03)
        await guard.shutdown()

        assert guard._cleanup_task is None
        # Idempotent
        await guard.shutdown()
