from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import update

from mathsolver.db import SqlProviderStore, TokenRecord, build_engine, init_db
from mathsolver.llm import FallbackEngine, ProviderRegistry, QuotaClock, UsageTracker
from mathsolver.schemas import ProviderKind, TokenSpec


class SteppingClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class ScriptedTransport:
    """Answers by API key: an exception is raised, a coroutine function is awaited,
    anything else is returned as the completion text."""

    def __init__(self, default: str | None = "x = 42") -> None:
        self.default = default
        self.outcomes: dict[str, object] = {}
        self.calls: list[tuple[ProviderKind, str, str, str]] = []

    @property
    def keys(self) -> list[str]:
        return [key for _, _, key, _ in self.calls]

    async def invoke(self, kind, model, key, prompt):
        self.calls.append((kind, model, key, prompt))
        outcome = self.outcomes.get(key, self.default)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return await outcome()
        return outcome


@pytest.fixture
def clock():
    return SteppingClock(datetime(2024, 3, 10, 12, 0))


@pytest.fixture
def quota_clock(clock):
    return QuotaClock(now=clock)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(db_engine):
    return SqlProviderStore(db_engine)


@pytest.fixture
def registry(store, quota_clock):
    return ProviderRegistry(store, quota_clock)


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def fallback(registry, transport, store, quota_clock):
    return FallbackEngine(registry, transport, UsageTracker(store, quota_clock), timeout=1)


@pytest.fixture
def seed_provider(store, registry):
    async def _seed(
        kind: ProviderKind = ProviderKind.OPENAI,
        tokens: list[tuple[str, int]] = (),
        active: bool = True,
        model: str = "gpt-4o-mini",
    ):
        provider = await store.create_provider(kind, f"{kind.value} provider", selected_model=model)
        for key, limit in tokens:
            provider = await registry.add_token(provider.id, TokenSpec(key=key, daily_limit=limit))
        if active:
            provider = await registry.activate(provider.id)
        return provider

    return _seed


@pytest.fixture
def set_usage(db_engine):
    async def _set(token_id: str, used_today: int, last_used_at: datetime | None = None):
        values: dict[str, object] = {"used_today": used_today}
        if last_used_at is not None:
            values["last_used_at"] = last_used_at
        async with db_engine.begin() as conn:
            await conn.execute(
                update(TokenRecord).where(TokenRecord.id == token_id).values(**values)
            )

    return _set
