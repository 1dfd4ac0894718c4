import logging

from mathsolver.db.store import ProviderStore
from mathsolver.llm.quota import QuotaClock

logger = logging.getLogger(__name__)


class UsageTracker:
    """The only writer of usage counters on the success path.

    Call `record` exactly once per successful backend call.
    """

    def __init__(self, store: ProviderStore, clock: QuotaClock | None = None) -> None:
        self._store = store
        self._clock = clock or QuotaClock()

    async def record(self, provider_id: int, token_id: str) -> bool:
        """Count one successful call against the provider and token.

        Returns False when the token's daily counter was already at its limit
        (a concurrent request took the last slot); all-time counters still move.
        """
        counted = await self._store.record_usage(provider_id, token_id, self._clock.now())
        if not counted:
            logger.warning(
                "Token %s of provider %d was at its daily limit when usage was recorded",
                token_id,
                provider_id,
            )
        return counted
