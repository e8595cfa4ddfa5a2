"""
Cancellation tokens for last-request-wins async work.

Every asynchronous operation that may be superseded captures a token when
it is issued and checks it before committing anything to shared state.
"""
from __future__ import annotations

from typing import Optional


class OperationCancelled(Exception):
    """Raised by `CancellationToken.raise_if_cancelled` once a newer request exists."""


class CancellationToken:
    def __init__(self, generation: int = 0):
        self.generation = generation
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(f"generation {self.generation} was superseded")


class GenerationCounter:
    """Issues tokens; issuing a new one cancels the previous token."""

    def __init__(self) -> None:
        self._generation = 0
        self._current: Optional[CancellationToken] = None

    @property
    def generation(self) -> int:
        return self._generation

    def issue(self) -> CancellationToken:
        if self._current is not None:
            self._current.cancel()
        self._generation += 1
        self._current = CancellationToken(self._generation)
        return self._current

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._current and not token.cancelled
