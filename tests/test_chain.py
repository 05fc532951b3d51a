"""Tests for modsmith.llm.chain.ProviderChain."""

from __future__ import annotations

import pytest

from modsmith.llm.chain import ChainState, ProviderChain
from tests.mock_providers import ScriptedProvider, descriptor, rate_limit_error


@pytest.fixture
def descriptors():
    return [descriptor(ScriptedProvider(name)) for name in ("primary", "fallback-a", "fallback-b")]


class TestOrder:
    def test_walks_in_priority_order(self, descriptors):
        chain = ProviderChain(descriptors)
        seen = []
        for d in chain:
            seen.append(d.id)
            chain.record_failure(rate_limit_error(d.id))
        assert seen == ["primary", "fallback-a", "fallback-b"]
        assert chain.state == ChainState.EXHAUSTED

    def test_success_stops_iteration(self, descriptors):
        chain = ProviderChain(descriptors)
        first = chain.next()
        chain.mark_succeeded()
        assert first.id == "primary"
        assert chain.state == ChainState.SUCCEEDED
        assert chain.next() is None

    def test_failures_are_recorded(self, descriptors):
        chain = ProviderChain(descriptors)
        chain.next()
        err = rate_limit_error("primary")
        chain.record_failure(err)
        assert chain.state == ChainState.ADVANCING
        assert chain.failures == [("primary", err)]
        assert chain.next().id == "fallback-a"
        assert chain.current.id == "fallback-a"


class TestGuards:
    def test_cannot_advance_while_attempting(self, descriptors):
        chain = ProviderChain(descriptors)
        chain.next()
        with pytest.raises(RuntimeError):
            chain.next()

    def test_record_failure_requires_attempt(self, descriptors):
        chain = ProviderChain(descriptors)
        with pytest.raises(RuntimeError):
            chain.record_failure(rate_limit_error())

    def test_empty_chain_is_exhausted(self):
        chain = ProviderChain([])
        assert chain.state == ChainState.EXHAUSTED
        assert chain.next() is None
        assert len(chain) == 0
        assert chain.failures == []
