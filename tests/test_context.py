"""Tests for context.py wiring."""

from __future__ import annotations

import asyncio

from conftest import ALICE, BOB, FakeChain, make_context, weekly


class ClosingChain(FakeChain):
    closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_identity_change_drops_derived_views(chain: FakeChain):
    chain.add_challenge([ALICE, BOB], weekly())

    async def scenario():
        async with make_context(chain) as ctx:
            await ctx.store.fetch(1)
            first = ctx.store.wallet_summary(ALICE)
            cached = ctx.store.wallet_summary(ALICE)
            chain.switch_account(BOB)
            return first, cached, ctx.store.wallet_summary(ALICE), ctx.session.current_identity()

    first, cached, recomputed, identity = asyncio.run(scenario())
    assert cached is first
    assert recomputed is not first
    assert recomputed == first
    assert identity == BOB


def test_disconnect_releases_provider():
    chain = ClosingChain()

    async def scenario():
        ctx = make_context(chain)
        async with ctx:
            assert ctx.session.current_identity() == ALICE
        return ctx

    ctx = asyncio.run(scenario())
    assert chain.closed
    assert ctx.session.current_identity() is None
    # Listeners were removed with the session
    chain.switch_account(BOB)
    assert ctx.session.current_identity() is None


def test_contexts_are_independent():
    a, b = FakeChain(), FakeChain(account=BOB)

    async def scenario():
        async with make_context(a) as ctx_a, make_context(b) as ctx_b:
            return ctx_a.session.current_identity(), ctx_b.session.current_identity()

    assert asyncio.run(scenario()) == (ALICE, BOB)
