"""Usage gate charging one generation credit per request."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from workstream_engine.store import WorkstreamStore

logger = logging.getLogger(__name__)

DEFAULT_UNLIMITED_LEVELS = frozenset({"paid", "demo"})


class InsufficientCreditsError(RuntimeError):
    """Raised when a metered user cannot pay for a generation."""

    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: {required} required, {available} available.")
        self.required = required
        self.available = available


class UnknownUserError(LookupError):
    """Raised when the gate is asked to charge a user that does not exist."""


@dataclass(frozen=True, slots=True)
class Reservation:
    """Result of a successful gate pass."""

    user_id: str
    charged: int
    remaining: int | None
    unlimited: bool


class MeteringGate:
    """Check and atomically spend credits before any stream is opened."""

    def __init__(
        self,
        store: WorkstreamStore,
        *,
        cost: int = 1,
        unlimited_levels: frozenset[str] | set[str] | list[str] = DEFAULT_UNLIMITED_LEVELS,
        operation: str = "workstream_generation",
    ) -> None:
        if cost < 0:
            raise ValueError(f"cost must be >= 0, got {cost}.")
        self._store = store
        self._cost = cost
        self._unlimited_levels = frozenset(unlimited_levels)
        self._operation = operation

    def reserve(self, user_id: str) -> Reservation:
        """Charge the user, or raise :class:`InsufficientCreditsError`.

        The spend is a single conditional decrement, so of two concurrent
        requests holding only enough for one, exactly one passes.
        """

        user = self._store.get_user(user_id)
        if user is None:
            raise UnknownUserError(f"Unknown user: {user_id}")

        if user["level"] in self._unlimited_levels:
            return Reservation(user_id=user_id, charged=0, remaining=None, unlimited=True)

        available = int(user["credits"])
        if available < self._cost:
            raise InsufficientCreditsError(self._cost, available)

        remaining = self._store.deduct_credits(user_id, self._cost)
        if remaining is None:
            current = self._store.get_user(user_id)
            raise InsufficientCreditsError(self._cost, int(current["credits"]) if current else 0)

        try:
            self._store.record_ledger_entry(
                user_id=user_id,
                amount=-self._cost,
                operation=self._operation,
                remaining=remaining,
            )
        except Exception:
            logger.warning("Failed to record credit ledger entry for user %s", user_id, exc_info=True)

        return Reservation(user_id=user_id, charged=self._cost, remaining=remaining, unlimited=False)
