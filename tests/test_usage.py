import logging
from datetime import datetime
from unittest.mock import AsyncMock

from mathsolver.llm.quota import QuotaClock
from mathsolver.llm.usage import UsageTracker

NOW = datetime(2024, 3, 10, 12, 0)


class TestUsageTracker:
    async def test_passes_clock_time_to_store(self):
        store = AsyncMock()
        store.record_usage.return_value = True
        tracker = UsageTracker(store, QuotaClock(now=lambda: NOW))

        assert await tracker.record(1, "t1") is True
        store.record_usage.assert_awaited_once_with(1, "t1", NOW)

    async def test_logs_when_daily_slot_already_taken(self, caplog):
        store = AsyncMock()
        store.record_usage.return_value = False
        tracker = UsageTracker(store, QuotaClock(now=lambda: NOW))

        with caplog.at_level(logging.WARNING, logger="mathsolver.llm.usage"):
            assert await tracker.record(2, "t9") is False

        assert "daily limit" in caplog.text

    async def test_success_recorded_exactly_once(self, seed_provider, store, quota_clock):
        provider = await seed_provider(tokens=[("sk-1", 5)])
        token = provider.tokens[0]
        tracker = UsageTracker(store, quota_clock)

        await tracker.record(provider.id, token.id)

        fetched = await store.get_provider(provider.id)
        assert fetched.total_usage == 1
        assert fetched.find_token(token.id).used_today == 1
        assert fetched.find_token(token.id).usage_count == 1
