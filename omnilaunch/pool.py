"""
OMNILAUNCH Liquidity Pool and Migrator

Graduated sales trade against a native/token constant-product pool.

    ┌──────────────┐   migrate()    ┌────────────────────────────────┐
    │  SaleLedger  │ ─────────────► │        LiquidityPool            │
    │  raised (ETH)│   raised +     │  token ─► (native_r, token_r)   │
    │  inventory   │   residual     │  x * y = k, 0.3% fee            │
    └──────────────┘                └────────────────────────────────┘

Only the pool's factory (the ledger that owns it) may add liquidity. The
migrator flips a sale to graduated in the same critical section that moves
its funds, and refuses a second migration.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, TYPE_CHECKING

from omnilaunch.errors import AlreadyGraduated, InvalidAmount, LaunchpadError, Unauthorized
from omnilaunch.events import EventBus, LiquidityCreated, PoolSwap
from omnilaunch.hardening import InvariantChecker, require_amount
from omnilaunch.observability import LaunchLayer, get_logger
from omnilaunch.token import NativeBalances, Token

if TYPE_CHECKING:
    from omnilaunch.ledger import Sale

logger = get_logger("pool", LaunchLayer.POOL)

FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000


def get_amount_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Constant-product output for ``amount_in`` after the 0.3% fee."""
    require_amount(amount_in, "amount_in")
    if reserve_in <= 0 or reserve_out <= 0:
        raise InvalidAmount("Pool has no liquidity", reserve_in=reserve_in, reserve_out=reserve_out)
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    return (amount_in_with_fee * reserve_out) // (reserve_in * FEE_DENOMINATOR + amount_in_with_fee)


class LiquidityPool:
    """Native/token reserve pairs, one per graduated token."""

    def __init__(self, address: str, factory: str, natives: NativeBalances, chain_id: int = 0,
                 bus: Optional[EventBus] = None):
        self.address = address
        self.factory = factory
        self.natives = natives
        self.chain_id = chain_id
        self.bus = bus or EventBus()
        self._tokens: Dict[str, Token] = {}
        self._reserves: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.RLock()

    def add_liquidity(self, caller: str, token: Token, native_amount: int, token_amount: int) -> Tuple[int, int]:
        """Move funds from the factory into the token's reserve pair."""
        if caller != self.factory:
            raise Unauthorized(f"{caller} is not the pool factory", caller=caller)
        require_amount(native_amount, "native_amount", allow_zero=True)
        require_amount(token_amount, "token_amount", allow_zero=True)

        with self._lock:
            self.natives.transfer(caller, self.address, native_amount)
            try:
                token.transfer(caller, self.address, token_amount)
            except LaunchpadError:
                self.natives.transfer(self.address, caller, native_amount)
                raise
            self._tokens[token.address] = token
            native_reserve, token_reserve = self._reserves.get(token.address, (0, 0))
            self._reserves[token.address] = (native_reserve + native_amount, token_reserve + token_amount)
            return self._reserves[token.address]

    def get_reserves(self, token_address: str) -> Tuple[int, int]:
        """(native_reserve, token_reserve) for a token; zeros when unlisted."""
        with self._lock:
            return self._reserves.get(token_address, (0, 0))

    def _token(self, token_address: str) -> Token:
        token = self._tokens.get(token_address)
        if token is None:
            raise InvalidAmount(f"No pool for token {token_address}", token=token_address)
        return token

    def swap_native_for_tokens(self, trader: str, token_address: str, native_in: int, min_tokens_out: int = 0) -> int:
        with self._lock:
            token = self._token(token_address)
            native_reserve, token_reserve = self._reserves[token_address]
            tokens_out = get_amount_out(native_in, native_reserve, token_reserve)
            if tokens_out < min_tokens_out or tokens_out == 0:
                raise InvalidAmount("Output below minimum", out=tokens_out, minimum=min_tokens_out)

            self.natives.transfer(trader, self.address, native_in)
            token.transfer(self.address, trader, tokens_out)
            self._reserves[token_address] = (native_reserve + native_in, token_reserve - tokens_out)

        self.bus.publish(PoolSwap(
            chain_id=self.chain_id, token=token_address, trader=trader,
            native_in=native_in, tokens_out=tokens_out,
        ))
        return tokens_out

    def swap_tokens_for_native(self, trader: str, token_address: str, tokens_in: int, min_native_out: int = 0) -> int:
        with self._lock:
            token = self._token(token_address)
            native_reserve, token_reserve = self._reserves[token_address]
            native_out = get_amount_out(tokens_in, token_reserve, native_reserve)
            if native_out < min_native_out or native_out == 0:
                raise InvalidAmount("Output below minimum", out=native_out, minimum=min_native_out)

            token.transfer(trader, self.address, tokens_in)
            self.natives.transfer(self.address, trader, native_out)
            self._reserves[token_address] = (native_reserve - native_out, token_reserve + tokens_in)

        self.bus.publish(PoolSwap(
            chain_id=self.chain_id, token=token_address, trader=trader,
            tokens_in=tokens_in, native_out=native_out,
        ))
        return native_out


@dataclass(frozen=True)
class LiquidityRecord:
    sale_index: int
    token: str
    native_amount: int
    token_amount: int
    pool: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sale_index": self.sale_index,
            "token": self.token,
            "native_amount": self.native_amount,
            "token_amount": self.token_amount,
            "pool": self.pool,
        }


class LiquidityMigrator:
    """
    Moves a graduating sale into the pool.

    ``migrate`` must run inside the owning ledger's lock; it checks and sets
    the graduation flags in the same step as the transfer.
    """

    def __init__(self, pool: LiquidityPool, holder: str):
        self.pool = pool
        self.holder = holder

    def migrate(self, sale_index: int, sale: "Sale", token: Token) -> LiquidityRecord:
        if sale.is_liquidity_created:
            raise AlreadyGraduated(f"Sale {sale_index} already graduated", sale_index=sale_index)

        native_amount = sale.raised
        # residual allocation plus whatever the curve did not sell
        token_amount = token.balance_of(self.holder)
        self.pool.add_liquidity(self.holder, token, native_amount, token_amount)

        sale.is_liquidity_created = True
        sale.is_open = False
        InvariantChecker.check_graduation_closed(sale.is_liquidity_created, sale.is_open)

        record = LiquidityRecord(
            sale_index=sale_index,
            token=token.address,
            native_amount=native_amount,
            token_amount=token_amount,
            pool=self.pool.address,
        )
        logger.info(
            "Sale migrated to liquidity pool",
            sale_index=sale_index,
            native_amount=native_amount,
            token_amount=token_amount,
        )
        self.pool.bus.publish(LiquidityCreated(
            chain_id=self.pool.chain_id,
            sale_index=sale_index,
            token=token.address,
            native_amount=native_amount,
            token_amount=token_amount,
        ))
        return record
