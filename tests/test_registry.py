import asyncio

import pytest

from mathsolver.constants import DEFAULT_DAILY_LIMIT
from mathsolver.errors import InvalidRequestError, NotFoundError
from mathsolver.schemas import ProviderKind, ProviderSeed, TokenPatch, TokenSpec


async def _three_providers(store):
    return [await store.create_provider(kind, kind.value) for kind in ProviderKind]


async def _active_ids(registry) -> list[int]:
    return [p.id for p in await registry.list_providers() if p.is_active]


class TestActivate:
    async def test_exactly_one_active(self, store, registry):
        openai, gemini, claude = await _three_providers(store)

        await registry.activate(openai.id)
        activated = await registry.activate(claude.id)

        assert activated.is_active
        assert await _active_ids(registry) == [claude.id]
        assert (await registry.get_active()).id == claude.id

    async def test_reactivating_active_provider_keeps_it_active(self, store, registry):
        openai, _, _ = await _three_providers(store)
        await registry.activate(openai.id)
        await registry.activate(openai.id)

        assert await _active_ids(registry) == [openai.id]

    async def test_unknown_id_deactivates_nothing(self, store, registry):
        openai, _, _ = await _three_providers(store)
        await registry.activate(openai.id)

        with pytest.raises(NotFoundError):
            await registry.activate(999)

        assert await _active_ids(registry) == [openai.id]

    async def test_concurrent_activations_leave_one_active(self, store, registry):
        providers = await _three_providers(store)

        await asyncio.gather(*(registry.activate(p.id) for p in providers * 3))

        assert len(await _active_ids(registry)) == 1


class TestSetModel:
    async def test_set_model(self, store, registry):
        provider = await store.create_provider(ProviderKind.OPENAI, "OpenAI", selected_model="a")

        updated = await registry.set_model(provider.id, "gpt-4o")

        assert updated.selected_model == "gpt-4o"
        assert (await registry.get(provider.id)).selected_model == "gpt-4o"

    async def test_unknown_provider(self, registry):
        with pytest.raises(NotFoundError):
            await registry.set_model(5, "gpt-4o")


class TestTokenCrud:
    async def test_add_token_defaults(self, store, registry, clock):
        provider = await store.create_provider(ProviderKind.OPENAI, "OpenAI")

        provider = await registry.add_token(provider.id, TokenSpec(key="sk-1"))
        provider = await registry.add_token(provider.id, TokenSpec(key="sk-2", daily_limit=7))

        first, second = provider.tokens
        assert first.label == "Token 1"
        assert first.daily_limit == DEFAULT_DAILY_LIMIT
        assert first.last_used_at == clock.current
        assert second.label == "Token 2"
        assert second.daily_limit == 7

    async def test_add_token_keeps_given_label(self, store, registry):
        provider = await store.create_provider(ProviderKind.GEMINI, "Gemini")

        provider = await registry.add_token(provider.id, TokenSpec(key="g-1", label="Backup"))

        assert provider.tokens[0].label == "Backup"

    async def test_add_token_unknown_provider(self, registry):
        with pytest.raises(NotFoundError):
            await registry.add_token(3, TokenSpec(key="sk"))

    async def test_update_and_delete(self, seed_provider, registry):
        provider = await seed_provider(tokens=[("sk-1", 5), ("sk-2", 5)])
        first, second = provider.tokens

        provider = await registry.update_token(provider.id, first.id, TokenPatch(is_active=False))
        assert provider.find_token(first.id).is_active is False

        provider = await registry.delete_token(provider.id, second.id)
        assert [t.id for t in provider.tokens] == [first.id]

    async def test_unknown_token(self, seed_provider, registry):
        provider = await seed_provider(tokens=[("sk-1", 5)])

        with pytest.raises(NotFoundError):
            await registry.update_token(provider.id, "nope", TokenPatch(label="x"))
        with pytest.raises(NotFoundError):
            await registry.delete_token(provider.id, "nope")


class TestCheckReady:
    async def test_inactive_provider(self, seed_provider, registry):
        provider = await seed_provider(tokens=[("sk-1", 5)], active=False)

        with pytest.raises(InvalidRequestError, match="not active"):
            await registry.check_ready(provider.id)

    async def test_no_tokens(self, seed_provider, registry):
        provider = await seed_provider()

        with pytest.raises(InvalidRequestError, match="No tokens"):
            await registry.check_ready(provider.id)

    async def test_no_active_tokens(self, seed_provider, registry):
        provider = await seed_provider(tokens=[("sk-1", 5)])
        await registry.update_token(provider.id, provider.tokens[0].id, TokenPatch(is_active=False))

        with pytest.raises(InvalidRequestError, match="No active tokens"):
            await registry.check_ready(provider.id)

    async def test_ready(self, seed_provider, registry):
        provider = await seed_provider(tokens=[("sk-1", 5)])

        assert (await registry.check_ready(provider.id)).id == provider.id

    async def test_unknown_provider(self, registry):
        with pytest.raises(NotFoundError):
            await registry.check_ready(404)


class TestBootstrap:
    async def test_creates_seeds_when_empty(self, registry):
        seeds = [
            ProviderSeed(kind=ProviderKind.OPENAI, display_name="OpenAI", is_active=True),
            ProviderSeed(
                kind=ProviderKind.CLAUDE,
                display_name="Claude",
                tokens=[TokenSpec(key="ant-1", label="Main", daily_limit=20)],
            ),
        ]

        assert await registry.bootstrap(seeds) == 2

        providers = {p.kind: p for p in await registry.list_providers()}
        assert providers[ProviderKind.OPENAI].is_active
        assert not providers[ProviderKind.CLAUDE].is_active
        (token,) = providers[ProviderKind.CLAUDE].tokens
        assert (token.label, token.daily_limit) == ("Main", 20)

    async def test_skips_when_store_not_empty(self, store, registry):
        await store.create_provider(ProviderKind.GEMINI, "Gemini")

        seeds = [ProviderSeed(kind=ProviderKind.OPENAI, display_name="OpenAI")]
        assert await registry.bootstrap(seeds) == 0
        assert [p.kind for p in await registry.list_providers()] == [ProviderKind.GEMINI]

    async def test_only_first_active_seed_is_activated(self, registry):
        seeds = [
            ProviderSeed(kind=ProviderKind.GEMINI, display_name="Gemini", is_active=True),
            ProviderSeed(kind=ProviderKind.CLAUDE, display_name="Claude", is_active=True),
        ]

        await registry.bootstrap(seeds)

        active = await registry.get_active()
        assert active.kind == ProviderKind.GEMINI
        assert len(await _active_ids(registry)) == 1
