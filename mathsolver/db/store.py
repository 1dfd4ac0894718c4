"""Provider/token persistence.

`ProviderStore` is the contract the routing core depends on. `SqlProviderStore`
implements it on SQLAlchemy asyncio. Every mutation runs in a single
transaction; counters are changed with conditional UPDATE statements so
concurrent requests never push `used_today` past `daily_limit`.
"""

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import Any, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from mathsolver.constants import STORE_LOCK_RETRY_ATTEMPTS
from mathsolver.db.engine import build_session_maker
from mathsolver.db.models import ProviderRecord, TokenRecord
from mathsolver.errors import NotFoundError
from mathsolver.schemas import Provider, ProviderKind, TokenPatch

logger = logging.getLogger(__name__)


class ProviderStore(Protocol):
    async def count_providers(self) -> int: ...

    async def create_provider(
        self,
        kind: ProviderKind,
        display_name: str,
        selected_model: str = "",
        available_models: list[str] | None = None,
        api_endpoint: str = "",
    ) -> Provider: ...

    async def list_providers(self) -> list[Provider]: ...

    async def get_provider(self, provider_id: int) -> Provider | None: ...

    async def get_active_provider(self) -> Provider | None: ...

    async def activate_provider(self, provider_id: int) -> Provider: ...

    async def update_provider(self, provider_id: int, **fields: Any) -> Provider: ...

    async def add_token(
        self, provider_id: int, key: str, label: str, daily_limit: int, now: datetime
    ) -> Provider: ...

    async def update_token(self, provider_id: int, token_id: str, patch: TokenPatch) -> Provider: ...

    async def delete_token(self, provider_id: int, token_id: str) -> Provider: ...

    async def record_usage(self, provider_id: int, token_id: str, now: datetime) -> bool: ...


def _is_lock_error(exc: BaseException) -> bool:
    return isinstance(exc, OperationalError) and "locked" in str(exc).lower()


_retry_on_lock = retry(
    retry=retry_if_exception(_is_lock_error),
    stop=stop_after_attempt(STORE_LOCK_RETRY_ATTEMPTS),
    wait=wait_random_exponential(min=0.05, max=1),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(now.date(), time.min)
    return start, start + timedelta(days=1)


def _stale_day_reset(provider_id: int, token_id: str, now: datetime):
    start, end = _day_bounds(now)
    return (
        update(TokenRecord)
        .where(
            TokenRecord.id == token_id,
            TokenRecord.provider_id == provider_id,
            or_(TokenRecord.last_used_at < start, TokenRecord.last_used_at >= end),
        )
        .values(used_today=0, last_used_at=now)
        .execution_options(synchronize_session=False)
    )


class SqlProviderStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = build_session_maker(engine)
        self._write_lock = asyncio.Lock()

    async def _fetch(self, provider_id: int) -> Provider | None:
        async with self._sessions() as session:
            record = await session.get(ProviderRecord, provider_id)
            return Provider.model_validate(record) if record is not None else None

    async def _require_provider(self, session: AsyncSession, provider_id: int) -> None:
        found = await session.scalar(
            select(ProviderRecord.id).where(ProviderRecord.id == provider_id)
        )
        if found is None:
            raise NotFoundError(f"Provider {provider_id} not found")

    async def _require_token(self, session: AsyncSession, provider_id: int, token_id: str) -> None:
        await self._require_provider(session, provider_id)
        found = await session.scalar(
            select(TokenRecord.id).where(
                TokenRecord.id == token_id, TokenRecord.provider_id == provider_id
            )
        )
        if found is None:
            raise NotFoundError(f"Token {token_id} not found for provider {provider_id}")

    async def _refetch(self, provider_id: int) -> Provider:
        provider = await self._fetch(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider {provider_id} not found")
        return provider

    async def count_providers(self) -> int:
        async with self._sessions() as session:
            return await session.scalar(select(func.count()).select_from(ProviderRecord)) or 0

    @_retry_on_lock
    async def create_provider(
        self,
        kind: ProviderKind,
        display_name: str,
        selected_model: str = "",
        available_models: list[str] | None = None,
        api_endpoint: str = "",
    ) -> Provider:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                record = ProviderRecord(
                    kind=kind,
                    display_name=display_name,
                    is_active=False,
                    selected_model=selected_model,
                    available_models=list(available_models or []),
                    api_endpoint=api_endpoint,
                )
                session.add(record)
                await session.flush()
                provider_id = record.id
            return await self._refetch(provider_id)

    async def list_providers(self) -> list[Provider]:
        async with self._sessions() as session:
            records = await session.scalars(select(ProviderRecord).order_by(ProviderRecord.id))
            providers = [Provider.model_validate(r) for r in records]
        return sorted(providers, key=lambda p: p.kind.value)

    async def get_provider(self, provider_id: int) -> Provider | None:
        return await self._fetch(provider_id)

    async def get_active_provider(self) -> Provider | None:
        async with self._sessions() as session:
            records = (
                await session.scalars(
                    select(ProviderRecord)
                    .where(ProviderRecord.is_active.is_(True))
                    .order_by(ProviderRecord.id)
                )
            ).all()
            if len(records) > 1:
                logger.error(
                    "Store holds %d active providers, using id=%d", len(records), records[-1].id
                )
            return Provider.model_validate(records[-1]) if records else None

    @_retry_on_lock
    async def activate_provider(self, provider_id: int) -> Provider:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                await self._require_provider(session, provider_id)
                await session.execute(
                    update(ProviderRecord)
                    .values(is_active=ProviderRecord.id == provider_id)
                    .execution_options(synchronize_session=False)
                )
            return await self._refetch(provider_id)

    @_retry_on_lock
    async def update_provider(self, provider_id: int, **fields: Any) -> Provider:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                record = await session.get(ProviderRecord, provider_id)
                if record is None:
                    raise NotFoundError(f"Provider {provider_id} not found")
                for name, value in fields.items():
                    setattr(record, name, value)
            return await self._refetch(provider_id)

    @_retry_on_lock
    async def add_token(
        self, provider_id: int, key: str, label: str, daily_limit: int, now: datetime
    ) -> Provider:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                await self._require_provider(session, provider_id)
                last_position = await session.scalar(
                    select(func.max(TokenRecord.position)).where(
                        TokenRecord.provider_id == provider_id
                    )
                )
                session.add(
                    TokenRecord(
                        provider_id=provider_id,
                        position=0 if last_position is None else last_position + 1,
                        key=key,
                        label=label,
                        daily_limit=daily_limit,
                        used_today=0,
                        usage_count=0,
                        last_used_at=now,
                        is_active=True,
                    )
                )
            return await self._refetch(provider_id)

    @_retry_on_lock
    async def update_token(self, provider_id: int, token_id: str, patch: TokenPatch) -> Provider:
        changes = patch.model_dump(exclude_none=True)
        async with self._write_lock:
            async with self._sessions.begin() as session:
                await self._require_token(session, provider_id, token_id)
                if changes:
                    await session.execute(
                        update(TokenRecord)
                        .where(TokenRecord.id == token_id)
                        .values(**changes)
                        .execution_options(synchronize_session=False)
                    )
            return await self._refetch(provider_id)

    @_retry_on_lock
    async def delete_token(self, provider_id: int, token_id: str) -> Provider:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                await self._require_token(session, provider_id, token_id)
                await session.execute(
                    delete(TokenRecord)
                    .where(TokenRecord.id == token_id)
                    .execution_options(synchronize_session=False)
                )
            return await self._refetch(provider_id)

    @_retry_on_lock
    async def record_usage(self, provider_id: int, token_id: str, now: datetime) -> bool:
        async with self._write_lock:
            async with self._sessions.begin() as session:
                await self._require_token(session, provider_id, token_id)
                # a call that straddles midnight counts against the new day
                await session.execute(_stale_day_reset(provider_id, token_id, now))
                counted = await session.execute(
                    update(TokenRecord)
                    .where(
                        TokenRecord.id == token_id,
                        TokenRecord.used_today < TokenRecord.daily_limit,
                    )
                    .values(used_today=TokenRecord.used_today + 1)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(TokenRecord)
                    .where(TokenRecord.id == token_id)
                    .values(usage_count=TokenRecord.usage_count + 1, last_used_at=now)
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    update(ProviderRecord)
                    .where(ProviderRecord.id == provider_id)
                    .values(total_usage=ProviderRecord.total_usage + 1)
                    .execution_options(synchronize_session=False)
                )
                return counted.rowcount == 1
