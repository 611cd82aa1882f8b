"""
OMNILAUNCH - Cross-Chain Token Launchpad

Launch a token on one chain, sell it along a step-linear bonding curve, keep
every connected chain's view of the sale in sync over a cross-chain
messaging layer, and migrate the proceeds into a liquidity pool once the
sale raises its target.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                          ONE CHAIN'S DEPLOYMENT                          │
    │                                                                          │
    │  SALES                                                                  │
    │    ledger.py      Sale registry, curve trading, mirrors, graduation     │
    │    curve.py       Step-linear pricing with exact integer areas          │
    │    pool.py        Constant-product pool and liquidity migration         │
    │    token.py       Fungible token and native balance books               │
    │                                                                          │
    │  MESSAGING                                                              │
    │    messenger.py   Peer-gated send, metered idempotent receive           │
    │    codec.py       ABI wire format for the three message types           │
    │    peers.py       Trusted remote messengers per chain                   │
    │    transport.py   Transport interface and in-memory relayer             │
    │                                                                          │
    │  AMBIENT                                                                │
    │    config.py  observability.py  security.py  events.py  hardening.py    │
    │    errors.py  network.py  cli.py                                        │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Origin sale: the sale on the chain where the token was created. Only it
    trades on the curve.

    Mirror: another chain's read-only copy of an origin sale, created by a
    CREATE_TOKEN message and kept current by BRIDGE_TOKENS deltas.

    Graduation: the buy that lifts raised funds to the target closes the
    sale and moves its funds and remaining tokens into the pool. Mirrors
    learn about it from LIQUIDITY_CREATED.

Copyright © 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import OMNILAUNCH modules on first access."""

    if name in ("CurveParameters", "BondingCurveMarket", "BuyQuote", "SellQuote"):
        from omnilaunch import curve
        return getattr(curve, name)

    if name in ("SaleLedger", "Sale", "ApplyOutcome", "CreateQuote", "CreateResult", "TradeReceipt"):
        from omnilaunch import ledger
        return getattr(ledger, name)

    if name in ("LiquidityPool", "LiquidityMigrator", "LiquidityRecord"):
        from omnilaunch import pool
        return getattr(pool, name)

    if name in ("Token", "NativeBalances"):
        from omnilaunch import token
        return getattr(token, name)

    if name in ("CrossChainMessenger", "ResourceBudget"):
        from omnilaunch import messenger
        return getattr(messenger, name)

    if name in ("MessageType", "Direction", "SaleKey", "CreateToken", "BridgeTokens",
                "LiquidityCreatedMessage", "encode_message", "decode_message"):
        from omnilaunch import codec
        return getattr(codec, name)

    if name in ("PeerRegistry", "PeerChain"):
        from omnilaunch import peers
        return getattr(peers, name)

    if name in ("InMemoryTransport", "LocalEndpoint", "ExecutorOptions", "MessagingFee",
                "MessagingReceipt", "Origin", "MessageTransport"):
        from omnilaunch import transport
        return getattr(transport, name)

    if name in ("LaunchNetwork", "ChainNode", "account", "create_local_network"):
        from omnilaunch import network
        return getattr(network, name)

    if name in ("LaunchpadConfig", "get_config", "get_config_manager"):
        from omnilaunch import config
        return getattr(config, name)

    raise AttributeError(f"module 'omnilaunch' has no attribute '{name}'")

__all__ = [
    "__version__",
    # Sales
    "CurveParameters",
    "BondingCurveMarket",
    "SaleLedger",
    "Sale",
    "LiquidityPool",
    "Token",
    "NativeBalances",
    # Messaging
    "CrossChainMessenger",
    "MessageType",
    "SaleKey",
    "PeerRegistry",
    "InMemoryTransport",
    "LocalEndpoint",
    "ExecutorOptions",
    # Harness
    "LaunchNetwork",
    "create_local_network",
    # Config
    "LaunchpadConfig",
    "get_config",
    "get_config_manager",
]
