from __future__ import annotations

import logging
import random
from typing import Dict, Iterable, List, Optional

from zkwire.protocol.errors import BadArgumentsError
from zkwire.utils.common import Endpoint

logger = logging.getLogger(__name__)


class EnsembleRouter:
    """
    Picks the next ensemble member to try.

    Each cycle visits every member once in a fresh random order, stable-sorted
    by consecutive failures so members that keep failing are tried last but
    are never skipped.
    """

    def __init__(
        self,
        endpoints: Iterable[Endpoint],
        *,
        base_backoff: float = 0.1,
        max_backoff: float = 2.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base_backoff = base_backoff
        self.max_backoff = max_backoff
        self._rng = rng or random.Random()
        self._endpoints: List[Endpoint] = []
        self._failures: Dict[Endpoint, int] = {}
        self._cycle: List[Endpoint] = []
        self._index = 0
        self.update(endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    @property
    def endpoints(self) -> List[Endpoint]:
        return list(self._endpoints)

    def failures(self, endpoint: Endpoint) -> int:
        return self._failures.get(endpoint, 0)

    def next(self) -> Endpoint:
        if self._index >= len(self._cycle):
            self._new_cycle()
        endpoint = self._cycle[self._index]
        self._index += 1
        return endpoint

    def _new_cycle(self) -> None:
        order = list(self._endpoints)
        self._rng.shuffle(order)
        order.sort(key=self.failures)
        self._cycle = order
        self._index = 0

    def record_failure(self, endpoint: Endpoint) -> None:
        self._failures[endpoint] = self._failures.get(endpoint, 0) + 1
        logger.debug("Endpoint %s failed %s time(s) in a row", endpoint, self._failures[endpoint])

    def record_success(self, endpoint: Endpoint) -> None:
        self._failures.pop(endpoint, None)

    def backoff(self, endpoint: Endpoint) -> float:
        """Seconds to wait before trying ``endpoint`` again; zero until it has failed."""
        failures = self.failures(endpoint)
        if failures == 0:
            return 0.0
        delay = min(self.max_backoff, self.base_backoff * (2 ** min(failures - 1, 30)))
        return delay * (0.5 + self._rng.random() / 2)

    def update(self, endpoints: Iterable[Endpoint]) -> None:
        """Replace the member list, keeping failure counts of members that remain."""
        members = list(dict.fromkeys(endpoints))
        if not members:
            raise BadArgumentsError("Ensemble must have at least one member")
        self._endpoints = members
        self._failures = {ep: n for ep, n in self._failures.items() if ep in members}
        self._cycle = []
        self._index = 0


__all__ = ["EnsembleRouter"]
