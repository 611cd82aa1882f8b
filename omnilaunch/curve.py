"""
OMNILAUNCH Bonding Curve

Pure pricing math for curve sales. Nothing here touches balances; the ledger
asks for quotes and applies them.

Price schedule (step-linear, wei per whole token):

    price(sold) = floor_price + step_price * (sold // increment)

    price
      │                              ┌────
      │                        ┌─────┘
      │                  ┌─────┘
      │            ┌─────┘
      │      ┌─────┘
      │──────┘
      └──────┴─────┴─────┴─────┴─────┴──── sold
            increment

Token amounts are in the smallest unit (18 decimals). A cost is the area under
the schedule between two values of ``sold``, computed exactly as an integer
numerator over 10**18 and rounded once at the end: up for buys, down for sells.
A buy followed by the sell of the same amount therefore never returns more
than it cost.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from omnilaunch.config import CurveConfig, get_config
from omnilaunch.errors import CurveExhausted, InvalidAmount
from omnilaunch.hardening import require_amount

UNIT = 10**18


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


@dataclass(frozen=True)
class CurveParameters:
    """Immutable snapshot of the curve economics."""
    floor_price: int
    step_price: int
    increment: int
    token_limit: int
    total_supply: int
    target: int

    def __post_init__(self):
        if self.floor_price <= 0 or self.increment <= 0:
            raise InvalidAmount("floor_price and increment must be positive")
        if self.step_price < 0 or self.target <= 0:
            raise InvalidAmount("step_price must be non-negative and target positive")
        if not 0 < self.token_limit <= self.total_supply:
            raise InvalidAmount("token_limit must be positive and within total_supply")

    @classmethod
    def from_config(cls, config: Optional[CurveConfig] = None) -> "CurveParameters":
        config = config or get_config().curve
        return cls(
            floor_price=config.floor_price.get(),
            step_price=config.step_price.get(),
            increment=config.increment.get(),
            token_limit=config.token_limit.get(),
            total_supply=config.total_supply.get(),
            target=config.target.get(),
        )

    @property
    def residual_allocation(self) -> int:
        """Tokens reserved for the pool regardless of curve sales."""
        return self.total_supply - self.token_limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "floor_price": self.floor_price,
            "step_price": self.step_price,
            "increment": self.increment,
            "token_limit": self.token_limit,
            "total_supply": self.total_supply,
            "target": self.target,
        }


@dataclass(frozen=True)
class BuyQuote:
    amount: int
    cost: int
    new_sold: int
    new_raised: int
    target_reached: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "cost": self.cost,
            "new_sold": self.new_sold,
            "new_raised": self.new_raised,
            "target_reached": self.target_reached,
        }


@dataclass(frozen=True)
class SellQuote:
    amount: int
    proceeds: int
    new_sold: int

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "proceeds": self.proceeds, "new_sold": self.new_sold}


class BondingCurveMarket:
    """
    Step-linear bonding curve.

    Stateless apart from its parameters; callers pass the sale's current
    ``sold`` and ``raised``.
    """

    def __init__(self, params: Optional[CurveParameters] = None):
        self.params = params or CurveParameters.from_config()

    def price_at(self, sold: int) -> int:
        """Price in wei of one whole token at the given ``sold`` level."""
        require_amount(sold, "sold", allow_zero=True)
        return self.params.floor_price + self.params.step_price * (sold // self.params.increment)

    def _area(self, start: int, end: int) -> int:
        """Exact area under the schedule on [start, end), scaled by UNIT."""
        p = self.params
        total = 0
        position = start
        while position < end:
            step_end = min((position // p.increment + 1) * p.increment, end)
            total += self.price_at(position) * (step_end - position)
            position = step_end
        return total

    def cost_to_buy(self, sold: int, amount: int) -> int:
        """Native cost of buying ``amount`` tokens at ``sold``, rounded up."""
        require_amount(sold, "sold", allow_zero=True)
        require_amount(amount, "amount")
        if sold + amount > self.params.token_limit:
            raise CurveExhausted(
                f"Buying {amount} at sold={sold} exceeds token limit {self.params.token_limit}",
                sold=sold,
                amount=amount,
                token_limit=self.params.token_limit,
            )
        return _ceil_div(self._area(sold, sold + amount), UNIT)

    def proceeds_from_sell(self, sold: int, amount: int) -> int:
        """Native proceeds of selling ``amount`` tokens back at ``sold``, rounded down."""
        require_amount(sold, "sold", allow_zero=True)
        require_amount(amount, "amount")
        if amount > sold:
            raise InvalidAmount(f"Cannot sell {amount} when only {sold} were sold", amount=amount, sold=sold)
        return self._area(sold - amount, sold) // UNIT

    def tokens_for_value(self, sold: int, value: int) -> int:
        """Largest token amount whose rounded-up cost does not exceed ``value``."""
        require_amount(sold, "sold", allow_zero=True)
        require_amount(value, "value", allow_zero=True)
        p = self.params
        budget = value * UNIT
        position = sold
        while position < p.token_limit and budget > 0:
            price = self.price_at(position)
            step_end = min((position // p.increment + 1) * p.increment, p.token_limit)
            affordable = min(step_end - position, budget // price)
            position += affordable
            budget -= affordable * price
            if position < step_end:
                break
        return position - sold

    def quote_buy(self, sold: int, raised: int, amount: int) -> BuyQuote:
        cost = self.cost_to_buy(sold, amount)
        new_raised = raised + cost
        return BuyQuote(
            amount=amount,
            cost=cost,
            new_sold=sold + amount,
            new_raised=new_raised,
            target_reached=self.target_reached(new_raised),
        )

    def quote_buy_for_value(self, sold: int, raised: int, value: int) -> BuyQuote:
        """Quote the largest buy ``value`` can pay for."""
        amount = self.tokens_for_value(sold, value)
        if amount == 0:
            raise CurveExhausted("Value buys no tokens at this point of the curve", sold=sold, value=value)
        return self.quote_buy(sold, raised, amount)

    def quote_sell(self, sold: int, amount: int) -> SellQuote:
        proceeds = self.proceeds_from_sell(sold, amount)
        return SellQuote(amount=amount, proceeds=proceeds, new_sold=sold - amount)

    def target_reached(self, raised: int) -> bool:
        return raised >= self.params.target
