import uuid

import pytest

from twofactor.mfa.replay import TOTPReplayGuard


@pytest.mark.asyncio
class TestTOTPReplayGuard:
    async def test_step_claimed_once(self, store) -> None:
        guard = TOTPReplayGuard(store)
        user_id = uuid.uuid4()

        assert await guard.claim(user_id, 100)
        assert not await guard.claim(user_id, 100)

    async def test_earlier_step_rejected_after_later(self, store) -> None:
        guard = TOTPReplayGuard(store)
        user_id = uuid.uuid4()

        assert await guard.claim(user_id, 101)
        assert not await guard.claim(user_id, 100)
        assert await guard.claim(user_id, 102)

    async def test_users_are_independent(self, store) -> None:
        guard = TOTPReplayGuard(store)

        assert await guard.claim(uuid.uuid4(), 100)
        assert await guard.claim(uuid.uuid4(), 100)

    async def test_reset(self, store) -> None:
        guard = TOTPReplayGuard(store)
        user_id = uuid.uuid4()
        await guard.claim(user_id, 100)

        await guard.reset(user_id)
        assert await guard.claim(user_id, 100)

    async def test_record_outlives_window(self, store, clock) -> None:
        guard = TOTPReplayGuard(store, interval=30, valid_window=1)
        user_id = uuid.uuid4()
        assert guard.ttl == 120

        await guard.claim(user_id, 100)
        clock.advance(119)
        assert not await guard.claim(user_id, 100)
