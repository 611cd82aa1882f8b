"""
OMNILAUNCH Wire Codec

Protocol messages and their ABI wire form.

Envelope:

    abi.encode(uint8 msg_type, bytes payload)

Payloads:

    ┌──────────────────────┬──────────────────────────────────────────────────┐
    │ 1 CREATE_TOKEN       │ (string name, string symbol, string uri,         │
    │                      │  address creator, uint256 origin_index)          │
    │ 2 BRIDGE_TOKENS      │ (uint32 origin_chain, uint256 origin_index,      │
    │                      │  uint256 amount, uint256 value, uint8 direction) │
    │ 3 LIQUIDITY_CREATED  │ (uint32 origin_chain, uint256 origin_index)      │
    └──────────────────────┴──────────────────────────────────────────────────┘

CREATE_TOKEN carries no origin chain: it is always the message's source chain.
Type tags are fixed; both sides of a connection must agree on them.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from web3 import Web3

from omnilaunch.errors import MalformedMessage, PayloadTooLarge

ENVELOPE_TYPES = ["uint8", "bytes"]
CREATE_TOKEN_TYPES = ["string", "string", "string", "address", "uint256"]
BRIDGE_TOKENS_TYPES = ["uint32", "uint256", "uint256", "uint256", "uint8"]
LIQUIDITY_CREATED_TYPES = ["uint32", "uint256"]


class MessageType(IntEnum):
    CREATE_TOKEN = 1
    BRIDGE_TOKENS = 2
    LIQUIDITY_CREATED = 3


class Direction(IntEnum):
    """Which way a curve trade moved the sale totals."""
    BUY = 0
    SELL = 1


@dataclass(frozen=True)
class SaleKey:
    """Chain-independent identity of a sale: where it was created, and its index there."""
    origin_chain_id: int
    origin_index: int

    def __str__(self) -> str:
        return f"{self.origin_chain_id}:{self.origin_index}"


@dataclass(frozen=True)
class CreateToken:
    name: str
    symbol: str
    metadata_uri: str
    creator: str
    origin_index: int

    msg_type = MessageType.CREATE_TOKEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.msg_type.name,
            "name": self.name,
            "symbol": self.symbol,
            "metadata_uri": self.metadata_uri,
            "creator": self.creator,
            "origin_index": self.origin_index,
        }


@dataclass(frozen=True)
class BridgeTokens:
    sale: SaleKey
    amount: int
    value: int
    direction: Direction

    msg_type = MessageType.BRIDGE_TOKENS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.msg_type.name,
            "sale": str(self.sale),
            "amount": self.amount,
            "value": self.value,
            "direction": self.direction.name,
        }


@dataclass(frozen=True)
class LiquidityCreatedMessage:
    sale: SaleKey

    msg_type = MessageType.LIQUIDITY_CREATED

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.msg_type.name, "sale": str(self.sale)}


ProtocolMessage = Union[CreateToken, BridgeTokens, LiquidityCreatedMessage]


# =============================================================================
# ENCODING
# =============================================================================

def encode_payload(message: ProtocolMessage) -> bytes:
    if isinstance(message, CreateToken):
        return encode(CREATE_TOKEN_TYPES, [
            message.name,
            message.symbol,
            message.metadata_uri,
            Web3.to_checksum_address(message.creator),
            message.origin_index,
        ])
    if isinstance(message, BridgeTokens):
        return encode(BRIDGE_TOKENS_TYPES, [
            message.sale.origin_chain_id,
            message.sale.origin_index,
            message.amount,
            message.value,
            int(message.direction),
        ])
    if isinstance(message, LiquidityCreatedMessage):
        return encode(LIQUIDITY_CREATED_TYPES, [message.sale.origin_chain_id, message.sale.origin_index])
    raise MalformedMessage(f"Not a protocol message: {type(message).__name__}")


def encode_message(message: ProtocolMessage) -> bytes:
    """Serialize a protocol message into its wire envelope."""
    try:
        return encode(ENVELOPE_TYPES, [int(message.msg_type), encode_payload(message)])
    except (EncodingError, OverflowError, TypeError, ValueError) as e:
        raise MalformedMessage(f"Cannot encode {type(message).__name__}: {e}") from e


# =============================================================================
# DECODING
# =============================================================================

def peek_type(raw: bytes) -> Optional[MessageType]:
    """Read the type tag without decoding the payload; None if unreadable."""
    try:
        msg_type, _ = decode(ENVELOPE_TYPES, raw)
        return MessageType(msg_type)
    except (DecodingError, ValueError):
        return None


def decode_message(raw: bytes, max_size: Optional[int] = None) -> ProtocolMessage:
    """
    Parse a wire envelope.

    Raises PayloadTooLarge before any parsing when ``raw`` exceeds
    ``max_size``, and MalformedMessage for anything that is not a well-formed
    message of a known type.
    """
    if max_size is not None and len(raw) > max_size:
        raise PayloadTooLarge(len(raw), max_size)

    try:
        msg_type, payload = decode(ENVELOPE_TYPES, raw)
    except (DecodingError, ValueError) as e:
        raise MalformedMessage(f"Bad envelope: {e}") from e

    try:
        kind = MessageType(msg_type)
    except ValueError:
        raise MalformedMessage(f"Unknown message type {msg_type}", msg_type=msg_type)

    try:
        if kind is MessageType.CREATE_TOKEN:
            name, symbol, uri, creator, origin_index = decode(CREATE_TOKEN_TYPES, payload)
            return CreateToken(
                name=name,
                symbol=symbol,
                metadata_uri=uri,
                creator=Web3.to_checksum_address(creator),
                origin_index=origin_index,
            )
        if kind is MessageType.BRIDGE_TOKENS:
            chain_id, index, amount, value, direction = decode(BRIDGE_TOKENS_TYPES, payload)
            return BridgeTokens(
                sale=SaleKey(chain_id, index),
                amount=amount,
                value=value,
                direction=Direction(direction),
            )
        chain_id, index = decode(LIQUIDITY_CREATED_TYPES, payload)
        return LiquidityCreatedMessage(sale=SaleKey(chain_id, index))
    except (DecodingError, ValueError) as e:
        raise MalformedMessage(f"Bad {kind.name} payload: {e}", msg_type=kind.name) from e
