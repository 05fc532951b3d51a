"""
Provider chain -- the failover cursor for one logical request.

A ``ProviderChain`` walks the configured descriptors strictly in priority
order.  The orchestrator creates a fresh chain per request; the descriptor
tuple it wraps is shared and never mutated.

States::

    ATTEMPTING(i) --success--> SUCCEEDED
    ATTEMPTING(i) --capacity failure--> ADVANCING(i+1) --> ATTEMPTING(i+1)
    ATTEMPTING(last) --capacity failure--> EXHAUSTED
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterator, Sequence

from modsmith.llm.types import ProviderDescriptor

logger = logging.getLogger(__name__)


class ChainState(Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    ADVANCING = "advancing"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class ProviderChain:
    """Ordered failover over a fixed list of provider descriptors."""

    def __init__(self, descriptors: Sequence[ProviderDescriptor]) -> None:
        self._descriptors = tuple(descriptors)
        self._cursor = -1
        self.state = ChainState.PENDING if self._descriptors else ChainState.EXHAUSTED
        self.failures: list[tuple[str, BaseException]] = []

    def __iter__(self) -> Iterator[ProviderDescriptor]:
        while True:
            descriptor = self.next()
            if descriptor is None:
                return
            yield descriptor

    def __len__(self) -> int:
        return len(self._descriptors)

    @property
    def current(self) -> ProviderDescriptor | None:
        if 0 <= self._cursor < len(self._descriptors):
            return self._descriptors[self._cursor]
        return None

    def next(self) -> ProviderDescriptor | None:
        """
        Move to the next descriptor and return it.

        Returns ``None`` once the chain has succeeded or is exhausted.
        """
        if self.state in (ChainState.SUCCEEDED, ChainState.EXHAUSTED):
            return None
        if self.state == ChainState.ATTEMPTING:
            raise RuntimeError(
                "record_failure() or mark_succeeded() must be called before "
                "moving to the next provider"
            )
        self._cursor += 1
        if self._cursor >= len(self._descriptors):
            self.state = ChainState.EXHAUSTED
            return None
        self.state = ChainState.ATTEMPTING
        descriptor = self._descriptors[self._cursor]
        logger.info(
            "Attempting provider %s (%d/%d)",
            descriptor.id,
            self._cursor + 1,
            len(self._descriptors),
        )
        return descriptor

    def record_failure(self, error: BaseException) -> None:
        """Record a capacity failure of the current provider and advance."""
        descriptor = self.current
        if descriptor is None or self.state != ChainState.ATTEMPTING:
            raise RuntimeError("no provider is being attempted")
        self.failures.append((descriptor.id, error))
        has_more = self._cursor + 1 < len(self._descriptors)
        self.state = ChainState.ADVANCING if has_more else ChainState.EXHAUSTED
        logger.warning(
            "Provider %s failed with a capacity error%s: %s",
            descriptor.id,
            ", failing over" if has_more else "",
            error,
        )

    def mark_succeeded(self) -> None:
        if self.state != ChainState.ATTEMPTING:
            raise RuntimeError("no provider is being attempted")
        self.state = ChainState.SUCCEEDED
