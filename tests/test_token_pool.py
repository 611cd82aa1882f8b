"""
Token bookkeeping, liquidity pool and migration tests.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from omnilaunch.config import ETHER
from omnilaunch.errors import AlreadyGraduated, InsufficientBalance, InvalidAmount, Unauthorized
from omnilaunch.events import EventBus, LiquidityCreated, PoolSwap
from omnilaunch.ledger import Sale
from omnilaunch.network import account
from omnilaunch.pool import LiquidityMigrator, LiquidityPool, get_amount_out
from omnilaunch.token import NativeBalances, Token

FACTORY = account("factory")
POOL = account("pool")
TRADER = account("trader")


@pytest.fixture
def natives():
    balances = NativeBalances()
    balances.credit(FACTORY, 10 * ETHER)
    balances.credit(TRADER, 10 * ETHER)
    return balances


@pytest.fixture
def token():
    t = Token(account("token"), "Test Token", "TEST", "ipfs://test")
    t.mint(FACTORY, 1_000 * ETHER)
    return t


@pytest.fixture
def pool(natives):
    return LiquidityPool(POOL, FACTORY, natives, chain_id=1, bus=EventBus())


class TestBalances:
    """Tests for token and native balance books."""

    def test_mint_and_transfer(self, token):
        """Minting raises supply; transfers conserve it."""
        token.transfer(FACTORY, TRADER, 10 * ETHER)
        assert token.balance_of(TRADER) == 10 * ETHER
        assert token.balance_of(FACTORY) == 990 * ETHER
        assert token.total_supply == 1_000 * ETHER

    def test_holders_skip_empty_balances(self, token):
        token.transfer(FACTORY, TRADER, 1_000 * ETHER)
        assert token.holders() == {TRADER: 1_000 * ETHER}
        assert token.to_dict()["holders"] == 1

    def test_overdraw_rejected(self, token):
        """A transfer larger than the balance fails and moves nothing."""
        with pytest.raises(InsufficientBalance) as exc:
            token.transfer(TRADER, FACTORY, 1)
        assert exc.value.details["token"] == "TEST"
        assert token.balance_of(FACTORY) == 1_000 * ETHER

    def test_zero_transfer_is_noop(self, natives):
        """Zero transfers succeed without touching balances."""
        natives.transfer(account("nobody"), TRADER, 0)
        assert natives.balance_of(TRADER) == 10 * ETHER

    def test_negative_transfer_rejected(self, natives):
        with pytest.raises(InvalidAmount):
            natives.transfer(TRADER, FACTORY, -1)

    def test_native_total(self, natives):
        """Credits are the only source of native currency."""
        assert natives.total() == 20 * ETHER
        natives.transfer(TRADER, FACTORY, ETHER)
        assert natives.total() == 20 * ETHER

    def test_token_serialization(self, token):
        data = token.to_dict()
        assert data["symbol"] == "TEST"
        assert data["decimals"] == 18


class TestConstantProduct:
    """Tests for the pool pricing function."""

    def test_amount_out_with_fee(self):
        """Output follows x*y=k after the 0.3% fee."""
        assert get_amount_out(1_000, 10_000, 10_000) == 906

    def test_empty_pool_rejected(self):
        with pytest.raises(InvalidAmount):
            get_amount_out(1, 0, 10)


class TestLiquidityPool:
    """Tests for adding liquidity and swapping."""

    def test_only_factory_adds_liquidity(self, pool, token):
        """Liquidity can only come from the owning ledger."""
        with pytest.raises(Unauthorized):
            pool.add_liquidity(TRADER, token, ETHER, ETHER)

    def test_add_liquidity_moves_funds(self, pool, token, natives):
        """Reserves match the funds moved into the pool."""
        reserves = pool.add_liquidity(FACTORY, token, 2 * ETHER, 500 * ETHER)
        assert reserves == (2 * ETHER, 500 * ETHER)
        assert natives.balance_of(POOL) == 2 * ETHER
        assert token.balance_of(POOL) == 500 * ETHER

    def test_failed_token_leg_restores_native(self, pool, natives):
        """A token shortfall leaves the native side untouched."""
        empty = Token(account("empty"), "Empty", "EMPTY")
        with pytest.raises(InsufficientBalance):
            pool.add_liquidity(FACTORY, empty, ETHER, ETHER)
        assert natives.balance_of(FACTORY) == 10 * ETHER
        assert pool.get_reserves(empty.address) == (0, 0)

    def test_swap_both_directions(self, pool, token, natives):
        """Swaps move reserves and balances consistently."""
        pool.add_liquidity(FACTORY, token, ETHER, 1_000 * ETHER)

        tokens_out = pool.swap_native_for_tokens(TRADER, token.address, ETHER // 10)
        assert token.balance_of(TRADER) == tokens_out
        assert pool.get_reserves(token.address) == (ETHER + ETHER // 10, 1_000 * ETHER - tokens_out)

        native_out = pool.swap_tokens_for_native(TRADER, token.address, tokens_out)
        assert native_out < ETHER // 10
        assert token.balance_of(TRADER) == 0

        swaps = pool.bus.history(PoolSwap)
        assert len(swaps) == 2

    def test_min_out_enforced(self, pool, token):
        pool.add_liquidity(FACTORY, token, ETHER, 1_000 * ETHER)
        with pytest.raises(InvalidAmount):
            pool.swap_native_for_tokens(TRADER, token.address, ETHER // 10, min_tokens_out=1_000 * ETHER)

    def test_unlisted_token_rejected(self, pool, token):
        with pytest.raises(InvalidAmount):
            pool.swap_native_for_tokens(TRADER, token.address, 1)


class TestLiquidityMigrator:
    """Tests for moving a graduating sale into the pool."""

    def _sale(self, token):
        return Sale(token=token.address, creator=TRADER, origin_chain_id=1, origin_index=0,
                    is_local=True, bought=100 * ETHER, raised_in=ETHER)

    def test_migrate_moves_raised_and_inventory(self, pool, token, natives):
        """The pool receives the raised funds and every token the holder kept."""
        sale = self._sale(token)
        record = LiquidityMigrator(pool, FACTORY).migrate(0, sale, token)

        assert record.native_amount == ETHER
        assert record.token_amount == 1_000 * ETHER
        assert pool.get_reserves(token.address) == (ETHER, 1_000 * ETHER)
        assert sale.is_liquidity_created
        assert not sale.is_open
        assert len(pool.bus.history(LiquidityCreated)) == 1

    def test_second_migration_rejected(self, pool, token):
        """Funds reach the pool exactly once."""
        sale = self._sale(token)
        migrator = LiquidityMigrator(pool, FACTORY)
        migrator.migrate(0, sale, token)
        with pytest.raises(AlreadyGraduated):
            migrator.migrate(0, sale, token)
        assert pool.get_reserves(token.address) == (ETHER, 1_000 * ETHER)
