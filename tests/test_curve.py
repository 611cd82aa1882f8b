"""
Bonding curve pricing tests.

Run with: pytest tests/test_curve.py -v

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from omnilaunch.config import ETHER, get_config_manager
from omnilaunch.curve import BondingCurveMarket, CurveParameters
from omnilaunch.errors import CurveExhausted, InvalidAmount

from conftest import SMALL_CURVE


@pytest.fixture
def market():
    return BondingCurveMarket(SMALL_CURVE)


# =============================================================================
# PRICE SCHEDULE
# =============================================================================

class TestPriceSchedule:
    """Tests for the step-linear price function."""

    def test_floor_price_at_zero(self, market):
        """Nothing sold trades at the floor."""
        assert market.price_at(0) == ETHER // 1000

    def test_price_constant_within_step(self, market):
        """The price only moves at increment boundaries."""
        assert market.price_at(999 * ETHER) == ETHER // 1000
        assert market.price_at(1_000 * ETHER - 1) == ETHER // 1000

    def test_price_steps_up(self, market):
        """Each completed increment adds one step."""
        assert market.price_at(1_000 * ETHER) == 2 * ETHER // 1000
        assert market.price_at(5_500 * ETHER) == 6 * ETHER // 1000

    def test_defaults_come_from_config(self):
        """A market without parameters reads the configured curve."""
        get_config_manager().set("curve.floor_price", 7)
        assert BondingCurveMarket().price_at(0) == 7


# =============================================================================
# COSTS AND PROCEEDS
# =============================================================================

class TestCostAndProceeds:
    """Tests for exact area pricing and rounding direction."""

    def test_cost_of_full_step(self, market):
        """The first step costs floor * increment."""
        assert market.cost_to_buy(0, 1_000 * ETHER) == ETHER

    def test_cost_across_step_boundary(self, market):
        """A buy crossing a boundary pays each step at its own price."""
        # 500 tokens at 0.001 plus 1,000 tokens at 0.002
        assert market.cost_to_buy(500 * ETHER, 1_000 * ETHER) == ETHER // 2 + 2 * ETHER

    def test_cost_rounds_up(self, market):
        """A sub-wei cost is charged as one wei."""
        assert market.cost_to_buy(0, 1) == 1

    def test_proceeds_round_down(self, market):
        """A sub-wei proceed pays nothing."""
        assert market.proceeds_from_sell(1, 1) == 0

    @pytest.mark.parametrize("sold,amount", [
        (0, 1),
        (0, 333_333_333_333_333_333),
        (999 * ETHER, 3 * ETHER + 17),
        (4_321 * ETHER + 5, 1_234 * ETHER + 7),
    ])
    def test_round_trip_never_gains(self, market, sold, amount):
        """Selling back what was just bought never returns more than it cost."""
        cost = market.cost_to_buy(sold, amount)
        proceeds = market.proceeds_from_sell(sold + amount, amount)
        assert proceeds <= cost
        assert cost - proceeds <= 1

    def test_buy_past_token_limit_rejected(self, market):
        """The curve never distributes more than its token limit."""
        with pytest.raises(CurveExhausted):
            market.cost_to_buy(9_000 * ETHER, 1_000 * ETHER + 1)

    def test_buy_up_to_token_limit_allowed(self, market):
        """Exactly reaching the token limit is fine."""
        assert market.cost_to_buy(9_000 * ETHER, 1_000 * ETHER) == 10 * ETHER

    def test_sell_more_than_sold_rejected(self, market):
        """Proceeds cannot be computed for tokens that were never sold."""
        with pytest.raises(InvalidAmount):
            market.proceeds_from_sell(100 * ETHER, 200 * ETHER)

    def test_zero_and_negative_amounts_rejected(self, market):
        """Trade amounts must be positive integers."""
        with pytest.raises(InvalidAmount):
            market.cost_to_buy(0, 0)
        with pytest.raises(InvalidAmount):
            market.cost_to_buy(-1, 10)
        with pytest.raises(InvalidAmount):
            market.cost_to_buy(0, 1.5)


# =============================================================================
# VALUE TO TOKENS
# =============================================================================

class TestTokensForValue:
    """Tests for the inverse of cost_to_buy."""

    def test_exact_step(self, market):
        """One ether buys exactly the first step."""
        assert market.tokens_for_value(0, ETHER) == 1_000 * ETHER

    def test_crosses_steps(self, market):
        """Leftover value after a step is spent at the next price."""
        assert market.tokens_for_value(0, ETHER + ETHER // 2) == 1_250 * ETHER

    def test_result_is_affordable_and_maximal(self, market):
        """The amount is affordable and one more unit is not."""
        for value in (1, 12_345, ETHER // 3, 7 * ETHER + 11):
            amount = market.tokens_for_value(777 * ETHER, value)
            assert market.cost_to_buy(777 * ETHER, amount) <= value
            assert market.cost_to_buy(777 * ETHER, amount + 1) > value or amount == 0

    def test_capped_at_token_limit(self, market):
        """Unlimited value still stops at the token limit."""
        assert market.tokens_for_value(0, 10**30) == SMALL_CURVE.token_limit

    def test_quote_for_worthless_value(self, market):
        """A value that buys nothing is not a quote."""
        with pytest.raises(CurveExhausted):
            market.quote_buy_for_value(0, 0, 0)


# =============================================================================
# QUOTES
# =============================================================================

class TestQuotes:
    """Tests for buy and sell quotes."""

    def test_buy_quote_below_target(self, market):
        """A buy short of the target does not graduate."""
        quote = market.quote_buy(0, 0, 999 * ETHER)
        assert quote.cost == 999 * ETHER // 1000
        assert quote.new_sold == 999 * ETHER
        assert not quote.target_reached

    def test_buy_quote_reaching_target(self, market):
        """The buy that lifts raised to the target is flagged."""
        quote = market.quote_buy(0, 0, 1_000 * ETHER)
        assert quote.new_raised == ETHER
        assert quote.target_reached

    def test_sell_quote(self, market):
        """Selling reduces sold by the amount."""
        quote = market.quote_sell(1_500 * ETHER, 500 * ETHER)
        assert quote.new_sold == 1_000 * ETHER
        assert quote.proceeds == ETHER

    def test_quote_serialization(self, market):
        """Quotes serialize to plain dictionaries."""
        data = market.quote_buy(0, 0, ETHER).to_dict()
        assert set(data) == {"amount", "cost", "new_sold", "new_raised", "target_reached"}


class TestCurveParameters:
    """Tests for parameter validation."""

    def test_token_limit_within_supply(self):
        """The curve cannot sell more than is minted."""
        with pytest.raises(InvalidAmount):
            CurveParameters(1, 1, 1, token_limit=10, total_supply=5, target=1)

    def test_zero_floor_rejected(self):
        """A free token would make every value buy the whole curve."""
        with pytest.raises(InvalidAmount):
            CurveParameters(0, 1, 1, token_limit=1, total_supply=1, target=1)

    def test_residual_allocation(self):
        """Tokens the curve never sells are reserved for the pool."""
        assert SMALL_CURVE.residual_allocation == 10_000 * ETHER

    def test_from_config(self):
        """Parameters snapshot the configuration."""
        params = CurveParameters.from_config()
        assert params.target == 3 * ETHER
        assert params.token_limit == 500_000 * ETHER
