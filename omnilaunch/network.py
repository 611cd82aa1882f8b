"""
OMNILAUNCH Local Network

Wires several chains (ledger, pool, messenger, endpoint) onto one in-memory
transport, fully meshed, for simulations and tests.

    ┌─────────────── chain 1 ───────────────┐     ┌─────────────── chain 2 ───────────────┐
    │ NativeBalances  SaleLedger  Pool       │     │ NativeBalances  SaleLedger  Pool       │
    │                 Messenger ─ Endpoint ──┼──┬──┼── Endpoint ─ Messenger               │
    └────────────────────────────────────────┘  │  └────────────────────────────────────────┘
                                          InMemoryTransport

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from web3 import Web3

from omnilaunch.config import ETHER
from omnilaunch.curve import BondingCurveMarket, CurveParameters
from omnilaunch.events import EventBus
from omnilaunch.hardening import derive_address
from omnilaunch.ledger import SaleLedger
from omnilaunch.messenger import CrossChainMessenger
from omnilaunch.observability import LaunchLayer, get_logger
from omnilaunch.pool import LiquidityPool
from omnilaunch.security import AuditLogger
from omnilaunch.token import NativeBalances
from omnilaunch.transport import InMemoryTransport, LocalEndpoint

logger = get_logger("network", LaunchLayer.TRANSPORT)


def account(label: str) -> str:
    """Deterministic checksummed address for a named account."""
    return Web3.to_checksum_address("0x" + bytes(Web3.keccak(text=label))[-20:].hex())


@dataclass
class ChainNode:
    chain_id: int
    owner: str
    natives: NativeBalances
    bus: EventBus
    audit: AuditLogger
    endpoint: LocalEndpoint
    ledger: SaleLedger
    pool: LiquidityPool
    messenger: CrossChainMessenger

    def fund(self, who: str, amount: int) -> None:
        self.natives.credit(who, amount)

    def balance(self, who: str) -> int:
        return self.natives.balance_of(who)


class LaunchNetwork:
    """A set of connected chains sharing one in-memory transport."""

    def __init__(
        self,
        chain_ids: Iterable[int] = (1, 2),
        auto_deliver: bool = True,
        curve: Optional[CurveParameters] = None,
        creation_fee: Optional[int] = None,
        connect: bool = True,
    ):
        self.transport = InMemoryTransport(auto_deliver=auto_deliver)
        self.nodes: Dict[int, ChainNode] = {}
        for chain_id in chain_ids:
            self.nodes[chain_id] = self._build_node(chain_id, curve, creation_fee)
        if connect:
            self.connect_all()

    def _build_node(self, chain_id: int, curve: Optional[CurveParameters], creation_fee: Optional[int]) -> ChainNode:
        owner = account(f"owner-{chain_id}")
        natives = NativeBalances()
        bus = EventBus()
        audit = AuditLogger(chain_id)
        endpoint = LocalEndpoint(chain_id, account(f"endpoint-{chain_id}"), self.transport, natives)
        ledger = SaleLedger(
            chain_id,
            owner,
            natives,
            curve=BondingCurveMarket(curve) if curve else None,
            creation_fee=creation_fee,
            bus=bus,
            audit=audit,
        )
        pool = LiquidityPool(derive_address(ledger.address, 10**6), ledger.address, natives, chain_id, bus)
        messenger = CrossChainMessenger(chain_id, owner, endpoint, ledger, audit=audit, bus=bus)
        ledger.set_liquidity_pool(owner, pool)
        ledger.set_cross_chain_messenger(owner, messenger)
        logger.debug("Chain node built", chain_id=chain_id, ledger=ledger.address, messenger=messenger.address)
        return ChainNode(chain_id, owner, natives, bus, audit, endpoint, ledger, pool, messenger)

    def connect(self, src_chain_id: int, dst_chain_id: int, enable: bool = True) -> None:
        """Make ``src`` trust ``dst``'s messenger and, optionally, send to it."""
        src = self.nodes[src_chain_id]
        dst = self.nodes[dst_chain_id]
        src.messenger.set_peer(src.owner, dst_chain_id, dst.messenger.address)
        if enable:
            src.messenger.add_peer_chain(src.owner, dst_chain_id)

    def connect_all(self) -> None:
        for src in self.nodes:
            for dst in self.nodes:
                if src != dst:
                    self.connect(src, dst)

    def node(self, chain_id: int) -> ChainNode:
        return self.nodes[chain_id]

    def __getitem__(self, chain_id: int) -> ChainNode:
        return self.nodes[chain_id]

    @property
    def chain_ids(self) -> List[int]:
        return list(self.nodes)

    def fund(self, who: str, amount: int = 10 * ETHER, chain_ids: Optional[Iterable[int]] = None) -> None:
        for chain_id in chain_ids or self.nodes:
            self.nodes[chain_id].fund(who, amount)

    def deliver_all(self, order: str = "fifo", seed: Optional[int] = None):
        return self.transport.deliver_all(order=order, seed=seed)


def create_local_network(chain_ids: Iterable[int] = (1, 2), auto_deliver: bool = True) -> LaunchNetwork:
    """Create a fully connected network with default configuration."""
    return LaunchNetwork(chain_ids, auto_deliver=auto_deliver)
