"""Admin credit pool against the test DB."""

import asyncio

import pytest

from app.core.exceptions import InsufficientAdminCreditsError, InvalidAmountError
from app.services import admin_credits as pool_service

pytestmark = pytest.mark.usefixtures("db")


async def test_get_or_create_empty():
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 0
    assert pool.total_added == 0
    again = await pool_service.get_or_create()
    assert again.id == pool.id


async def test_concurrent_first_access_creates_one_pool():
    from app.models.admin_credit_pool import AdminCreditPool
    pools = await asyncio.gather(*(pool_service.get_or_create() for _ in range(5)))
    assert len({p.id for p in pools}) == 1
    assert await AdminCreditPool.find_all().count() == 1


async def test_add_credits():
    await pool_service.add_credits(1000, note="initial", actor_id="admin-1")
    pool = await pool_service.add_credits(500, note="march", actor_id="admin-1")
    assert pool.available_credits == 1500
    assert pool.total_added == 1500
    assert pool.last_note == "march"
    assert pool.last_topup_at is not None


async def test_add_credits_rejects_non_positive():
    with pytest.raises(InvalidAmountError):
        await pool_service.add_credits(0)
    pool = await pool_service.get_or_create()
    assert pool.total_added == 0


async def test_consume_insufficient_leaves_pool_unchanged():
    await pool_service.add_credits(50)
    with pytest.raises(InsufficientAdminCreditsError) as ei:
        await pool_service.consume_credits(100)
    assert ei.value.details == {"available": 50, "requested": 100}
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 50
    assert pool.total_consumed == 0


async def test_concurrent_consumption_never_overdraws():
    await pool_service.add_credits(100)
    results = await asyncio.gather(
        *(pool_service.consume_credits(30) for _ in range(5)),
        return_exceptions=True,
    )
    ok = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, InsufficientAdminCreditsError)]
    assert len(ok) == 3
    assert len(failed) == 2
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 10
    assert pool.total_consumed == 90


async def test_reservation_is_idempotent_and_rolls_back():
    await pool_service.add_credits(100)
    await pool_service.consume_credits(40, reservation_key="manual:k1")
    pool = await pool_service.consume_credits(40, reservation_key="manual:k1")
    assert pool.available_credits == 60
    assert await pool_service.has_reservation("manual:k1")

    assert await pool_service.rollback_consumption("manual:k1")
    assert not await pool_service.rollback_consumption("manual:k1")
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 100
    assert pool.total_consumed == 0
    assert pool.in_flight == []


async def test_release_reservation_keeps_consumption():
    await pool_service.add_credits(100)
    await pool_service.consume_credits(25, reservation_key="manual:k2")
    assert await pool_service.release_reservation("manual:k2")
    assert not await pool_service.rollback_consumption("manual:k2")
    pool = await pool_service.get_or_create()
    assert pool.available_credits == 75
    assert pool.total_consumed == 25


async def test_low_threshold_and_snapshot():
    await pool_service.add_credits(100)
    pool = await pool_service.update_low_threshold(150, actor_id="admin-1")
    snap = pool_service.snapshot(pool)
    assert snap["lowThreshold"] == 150
    assert snap["isLow"] is True
    assert snap["availableCredits"] == 100
    with pytest.raises(InvalidAmountError):
        await pool_service.update_low_threshold(-1)


async def test_admin_actions_are_audited():
    from app.models.audit_log import AuditLog
    await pool_service.add_credits(10, actor_id="admin-7")
    logs = await AuditLog.find(AuditLog.actor_id == "admin-7").to_list()
    assert [log.event_type for log in logs] == ["pool_topup"]
