from datetime import datetime

from mathsolver.llm.quota import QuotaClock
from mathsolver.llm.token_pool import TokenPool
from mathsolver.schemas import Provider, ProviderKind, Token

NOW = datetime(2024, 3, 10, 12, 0)


def _token(token_id: str, used_today: int = 0, daily_limit: int = 10, **overrides) -> Token:
    fields = {
        "id": token_id,
        "key": f"key-{token_id}",
        "label": token_id,
        "daily_limit": daily_limit,
        "used_today": used_today,
        "last_used_at": NOW,
    }
    fields.update(overrides)
    return Token(**fields)


def _provider(*tokens: Token) -> Provider:
    return Provider(
        id=1,
        kind=ProviderKind.OPENAI,
        display_name="OpenAI",
        is_active=True,
        tokens=list(tokens),
    )


def _pool(provider: Provider) -> TokenPool:
    return TokenPool(provider, QuotaClock(now=lambda: NOW))


class TestAvailableTokens:
    def test_least_used_first(self):
        provider = _provider(_token("a", used_today=5), _token("b", used_today=2))

        tokens = _pool(provider).available_tokens()

        assert [t.id for t in tokens] == ["b", "a"]

    def test_ties_keep_configured_order(self):
        provider = _provider(
            _token("a", used_today=1),
            _token("b", used_today=0),
            _token("c", used_today=1),
            _token("d", used_today=0),
        )

        tokens = _pool(provider).available_tokens()

        assert [t.id for t in tokens] == ["b", "d", "a", "c"]

    def test_filters_inactive_and_exhausted(self):
        provider = _provider(
            _token("inactive", is_active=False),
            _token("exhausted", used_today=10, daily_limit=10),
            _token("zero-limit", daily_limit=0),
            _token("ok", used_today=9, daily_limit=10),
        )

        tokens = _pool(provider).available_tokens()

        assert [t.id for t in tokens] == ["ok"]

    def test_empty_provider(self):
        assert _pool(_provider()).available_tokens() == []

    def test_stale_token_is_reset_in_snapshot(self):
        yesterday = datetime(2024, 3, 9, 22, 0)
        provider = _provider(
            _token("fresh", used_today=4),
            _token("stale", used_today=10, daily_limit=10, last_used_at=yesterday),
        )

        tokens = _pool(provider).available_tokens()

        assert [t.id for t in tokens] == ["stale", "fresh"]
        assert tokens[0].used_today == 0
        assert tokens[0].last_used_at == NOW


class TestSelectionIsReadOnly:
    async def test_selection_does_not_write_to_store(
        self, seed_provider, set_usage, registry, store, clock
    ):
        provider = await seed_provider(tokens=[("key-a", 1)])
        token_id = provider.tokens[0].id
        await set_usage(token_id, 1)
        clock.advance(days=1)

        snapshot = await registry.get_active()
        tokens = registry.token_pool(snapshot).available_tokens()

        assert [t.id for t in tokens] == [token_id]
        stored = (await store.get_provider(provider.id)).find_token(token_id)
        assert stored.used_today == 1
        assert stored.last_used_at == provider.tokens[0].last_used_at
