import logging

from mathsolver.llm.quota import QuotaClock
from mathsolver.schemas import Provider, Token

logger = logging.getLogger(__name__)


class TokenPool:
    """Token selection for a single provider snapshot.

    Selection never writes to the store. Day resets are applied to the
    snapshot only; the persisted counter is corrected by the next
    `record_usage` for that token.
    """

    def __init__(self, provider: Provider, clock: QuotaClock) -> None:
        self._provider = provider
        self._clock = clock

    def available_tokens(self) -> list[Token]:
        """Eligible tokens, least used first.

        `sorted` is stable, so tokens with equal usage keep their configured order.
        """
        now = self._clock.now()
        for token in self._provider.tokens:
            if self._clock.maybe_reset(token, now):
                logger.debug("Daily usage rolled over for %s token %s", self._provider.kind, token.label)

        candidates = [t for t in self._provider.tokens if t.is_available]
        return sorted(candidates, key=lambda t: t.used_today)
