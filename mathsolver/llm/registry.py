from __future__ import annotations

import logging

from mathsolver.constants import DEFAULT_DAILY_LIMIT
from mathsolver.db.store import ProviderStore
from mathsolver.errors import InvalidRequestError, NotFoundError
from mathsolver.llm.quota import QuotaClock
from mathsolver.llm.token_pool import TokenPool
from mathsolver.schemas import Provider, ProviderSeed, TokenPatch, TokenSpec

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Administrative and lookup operations over the configured providers.

    At most one provider is active at a time; `activate` switches the active
    provider in a single store transaction.
    """

    def __init__(self, store: ProviderStore, clock: QuotaClock | None = None) -> None:
        self._store = store
        self._clock = clock or QuotaClock()

    async def list_providers(self) -> list[Provider]:
        return await self._store.list_providers()

    async def get(self, provider_id: int) -> Provider:
        provider = await self._store.get_provider(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    async def get_active(self) -> Provider | None:
        return await self._store.get_active_provider()

    def token_pool(self, provider: Provider) -> TokenPool:
        return TokenPool(provider, self._clock)

    async def activate(self, provider_id: int) -> Provider:
        provider = await self._store.activate_provider(provider_id)
        logger.info("Activated provider %s (id=%d)", provider.kind, provider.id)
        return provider

    async def set_model(self, provider_id: int, model: str) -> Provider:
        provider = await self._store.update_provider(provider_id, selected_model=model)
        logger.info("Provider %s now uses model %r", provider.kind, model)
        return provider

    async def add_token(self, provider_id: int, spec: TokenSpec) -> Provider:
        provider = await self.get(provider_id)
        label = spec.label or f"Token {len(provider.tokens) + 1}"
        daily_limit = spec.daily_limit if spec.daily_limit is not None else DEFAULT_DAILY_LIMIT
        updated = await self._store.add_token(
            provider_id, spec.key, label, daily_limit, self._clock.now()
        )
        logger.info("Added token %r to provider %s", label, updated.kind)
        return updated

    async def update_token(self, provider_id: int, token_id: str, patch: TokenPatch) -> Provider:
        return await self._store.update_token(provider_id, token_id, patch)

    async def delete_token(self, provider_id: int, token_id: str) -> Provider:
        updated = await self._store.delete_token(provider_id, token_id)
        logger.info("Deleted token %s from provider %s", token_id, updated.kind)
        return updated

    async def check_ready(self, provider_id: int) -> Provider:
        provider = await self.get(provider_id)
        if not provider.is_active:
            raise InvalidRequestError("Provider is not active")
        if not provider.tokens:
            raise InvalidRequestError("No tokens configured for this provider")
        if not any(t.is_active for t in provider.tokens):
            raise InvalidRequestError("No active tokens available")
        return provider

    async def bootstrap(self, seeds: list[ProviderSeed]) -> int:
        """Create the seeded providers if the store is empty.

        Returns the number of providers created. Only the first seed flagged
        active is activated.
        """
        if await self._store.count_providers() > 0:
            return 0

        logger.info("Initializing default AI providers...")
        to_activate: int | None = None
        for seed in seeds:
            provider = await self._store.create_provider(
                kind=seed.kind,
                display_name=seed.display_name,
                selected_model=seed.selected_model,
                available_models=seed.available_models,
                api_endpoint=seed.api_endpoint,
            )
            for spec in seed.tokens:
                await self.add_token(provider.id, spec)
            if seed.is_active:
                if to_activate is None:
                    to_activate = provider.id
                else:
                    logger.warning(
                        "Seed %s is also marked active, ignoring (only one provider can be active)",
                        seed.kind,
                    )

        if to_activate is not None:
            await self.activate(to_activate)
        logger.info("AI providers initialized (%d)", len(seeds))
        return len(seeds)
