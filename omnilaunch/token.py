"""
OMNILAUNCH Token Bookkeeping

Balance books for one chain: ``Token`` holds an ERC-20 shaped ledger of a
launched token, ``NativeBalances`` holds the chain's native currency. Both
are plain integer maps guarded by a lock; every debit is checked.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Dict

from omnilaunch.errors import InsufficientBalance
from omnilaunch.hardening import require_amount


class _BalanceBook:
    """Integer balances keyed by address."""

    label = "native"

    def __init__(self):
        self._balances: Dict[str, int] = defaultdict(int)
        self._lock = threading.RLock()

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def _credit(self, account: str, amount: int) -> None:
        self._balances[account] += amount

    def _debit(self, account: str, amount: int) -> None:
        available = self._balances.get(account, 0)
        if available < amount:
            raise InsufficientBalance(account, amount, available, token=self.label)
        self._balances[account] = available - amount

    def transfer(self, sender: str, recipient: str, amount: int) -> None:
        require_amount(amount, "amount", allow_zero=True)
        if amount == 0:
            return
        with self._lock:
            self._debit(sender, amount)
            self._credit(recipient, amount)

    def holders(self) -> Dict[str, int]:
        with self._lock:
            return {k: v for k, v in self._balances.items() if v}


class NativeBalances(_BalanceBook):
    """Native currency held by accounts on one chain."""

    def credit(self, account: str, amount: int) -> None:
        """Mint native currency to an account (faucet / genesis allocation)."""
        require_amount(amount, "amount", allow_zero=True)
        with self._lock:
            self._credit(account, amount)

    def total(self) -> int:
        with self._lock:
            return sum(self._balances.values())


class Token(_BalanceBook):
    """A launched fungible token with 18 decimals."""

    decimals = 18

    def __init__(self, address: str, name: str, symbol: str, metadata_uri: str = ""):
        super().__init__()
        self.address = address
        self.name = name
        self.symbol = symbol
        self.metadata_uri = metadata_uri
        self.label = symbol
        self._total_supply = 0

    @property
    def total_supply(self) -> int:
        with self._lock:
            return self._total_supply

    def mint(self, account: str, amount: int) -> None:
        require_amount(amount, "amount")
        with self._lock:
            self._credit(account, amount)
            self._total_supply += amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "symbol": self.symbol,
            "metadata_uri": self.metadata_uri,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "holders": len(self.holders()),
        }
