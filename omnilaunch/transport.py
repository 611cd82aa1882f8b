"""
OMNILAUNCH Message Transport

The messaging layer between chains, modelled at its interface only. The
messenger depends on ``MessageTransport``; this module also ships an
in-process implementation used by the network harness, the CLI simulation
and the tests.

Architecture:

    ┌──────────────┐   send()    ┌──────────────┐          ┌──────────────┐
    │ Messenger A  │ ──────────► │ Endpoint A   │          │ Endpoint B   │
    └──────────────┘             └──────┬───────┘          └──────┬───────┘
                                        │      ┌────────────┐     │ receive()
                                        └────► │ InMemory   │ ────┘──────► Messenger B
                                               │ Transport  │
                                               │  (packets) │
                                               └────────────┘

The in-memory transport models an at-least-once relayer: packets can be
delivered automatically, held and delivered in any order, delivered twice,
or dropped.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import random
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional, Protocol, Sequence, Union

from eth_abi import encode
from web3 import Web3

from omnilaunch.config import TransportConfig, get_config
from omnilaunch.errors import InsufficientFee, LaunchpadError, MessageError
from omnilaunch.hardening import from_bytes32, require_amount, to_bytes32
from omnilaunch.observability import LaunchLayer, get_logger
from omnilaunch.token import NativeBalances

logger = get_logger("transport", LaunchLayer.TRANSPORT)


# =============================================================================
# TYPES
# =============================================================================

@dataclass(frozen=True)
class ExecutorOptions:
    """Gas and native value the executor supplies at the destination."""
    gas: int = 0
    value: int = 0

    def combine(self, other: Optional["ExecutorOptions"]) -> "ExecutorOptions":
        """Enforced options plus caller options; both amounts add up."""
        if other is None:
            return self
        return ExecutorOptions(gas=self.gas + other.gas, value=self.value + other.value)

    def to_dict(self) -> Dict[str, int]:
        return {"gas": self.gas, "value": self.value}


@dataclass(frozen=True)
class MessagingFee:
    native_fee: int

    def __add__(self, other: "MessagingFee") -> "MessagingFee":
        return MessagingFee(self.native_fee + other.native_fee)


@dataclass(frozen=True)
class MessagingReceipt:
    guid: str
    nonce: int
    dst_chain_id: int
    fee: MessagingFee
    refund: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guid": self.guid,
            "nonce": self.nonce,
            "dst_chain_id": self.dst_chain_id,
            "fee": self.fee.native_fee,
            "refund": self.refund,
        }


@dataclass(frozen=True)
class Origin:
    """Where an inbound message came from."""
    src_chain_id: int
    sender: bytes
    nonce: int


class PacketStatus(Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    DROPPED = "dropped"


@dataclass
class Packet:
    guid: str
    origin: Origin
    dst_chain_id: int
    receiver: bytes
    message: bytes
    options: ExecutorOptions
    status: PacketStatus = PacketStatus.PENDING
    attempts: int = 0
    error: Optional[LaunchpadError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guid": self.guid,
            "src_chain_id": self.origin.src_chain_id,
            "dst_chain_id": self.dst_chain_id,
            "nonce": self.origin.nonce,
            "size": len(self.message),
            "status": self.status.value,
            "attempts": self.attempts,
            "error": self.error.code if self.error else None,
        }


@dataclass(frozen=True)
class DeliveryResult:
    guid: str
    status: PacketStatus
    outcome: Any = None
    error: Optional[LaunchpadError] = None


# =============================================================================
# INTERFACES
# =============================================================================

class MessageReceiver(Protocol):
    """Anything an endpoint can deliver to (the messenger)."""

    def receive(self, origin: Origin, guid: str, message: bytes, options: ExecutorOptions) -> Any:
        ...


class MessageTransport(Protocol):
    """
    Protocol for the chain-local side of the messaging layer.

    Implementations quote fees, accept paid messages and eventually call the
    destination receiver's ``receive``.
    """

    @property
    def chain_id(self) -> int:
        ...

    def estimate_fee(self, dst_chain_id: int, message: bytes, options: ExecutorOptions) -> MessagingFee:
        """Fee in native currency for sending ``message`` with ``options``."""
        ...

    def send(
        self,
        sender: str,
        dst_chain_id: int,
        receiver: bytes,
        message: bytes,
        options: ExecutorOptions,
        refund_address: str,
        attached_fee: int,
        payer: str,
    ) -> MessagingReceipt:
        """
        Accept a message for delivery.

        Raises InsufficientFee when ``attached_fee`` is below the quote; the
        excess above the quote is refunded to ``refund_address``.
        """
        ...

    def set_receiver(self, address: str, receiver: MessageReceiver) -> None:
        ...

    def deferred(self) -> ContextManager[None]:
        """Hold deliveries of packets sent by this thread until the block exits."""
        ...


# =============================================================================
# IN-MEMORY TRANSPORT
# =============================================================================

def compute_guid(nonce: int, src_chain_id: int, sender: bytes, dst_chain_id: int, receiver: bytes) -> str:
    digest = Web3.keccak(encode(
        ["uint64", "uint32", "bytes32", "uint32", "bytes32"],
        [nonce, src_chain_id, sender, dst_chain_id, receiver],
    ))
    return "0x" + bytes(digest).hex()


class InMemoryTransport:
    """
    In-process relayer connecting LocalEndpoints.

    With ``auto_deliver`` every packet is delivered as soon as it is sent, or
    when the sending thread leaves its ``deferred`` block, and a failing
    receive is recorded on the packet instead of unwinding the sender.
    Without it packets queue until ``deliver`` / ``deliver_all``.
    """

    def __init__(self, config: Optional[TransportConfig] = None, auto_deliver: bool = True):
        self.config = config or get_config().transport
        self.auto_deliver = auto_deliver
        self._endpoints: Dict[int, "LocalEndpoint"] = {}
        self._packets: Dict[str, Packet] = {}
        self._order: List[str] = []
        self._nonces: Dict[tuple, int] = {}
        self._lock = threading.RLock()
        self._held = threading.local()

    def register(self, endpoint: "LocalEndpoint") -> None:
        with self._lock:
            self._endpoints[endpoint.chain_id] = endpoint

    def endpoint(self, chain_id: int) -> "LocalEndpoint":
        try:
            return self._endpoints[chain_id]
        except KeyError:
            raise MessageError(f"No endpoint for chain {chain_id}", chain_id=chain_id)

    def fee_for(self, message: bytes, options: ExecutorOptions) -> MessagingFee:
        return MessagingFee(
            self.config.base_fee.get()
            + self.config.byte_fee.get() * len(message)
            + options.gas * self.config.gas_price.get()
            + options.value
        )

    def _next_nonce(self, path: tuple) -> int:
        nonce = self._nonces.get(path, 0) + 1
        self._nonces[path] = nonce
        return nonce

    def enqueue(
        self,
        src_chain_id: int,
        sender: bytes,
        dst_chain_id: int,
        receiver: bytes,
        message: bytes,
        options: ExecutorOptions,
    ) -> Packet:
        with self._lock:
            self.endpoint(dst_chain_id)
            nonce = self._next_nonce((src_chain_id, sender, dst_chain_id, receiver))
            guid = compute_guid(nonce, src_chain_id, sender, dst_chain_id, receiver)
            packet = Packet(
                guid=guid,
                origin=Origin(src_chain_id, sender, nonce),
                dst_chain_id=dst_chain_id,
                receiver=receiver,
                message=message,
                options=options,
            )
            self._packets[guid] = packet
            self._order.append(guid)

        logger.debug("Packet queued", guid=guid, src=src_chain_id, dst=dst_chain_id, size=len(message))
        if self.auto_deliver:
            if getattr(self._held, "depth", 0):
                self._held.guids.append(guid)
            else:
                self.deliver(guid, strict=False)
        return packet

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """
        Queue auto-deliveries of packets this thread sends inside the block.

        Nested blocks join the outermost one, which delivers the queue in send
        order when it exits, whether or not the block raised.
        """
        depth = getattr(self._held, "depth", 0)
        if depth == 0:
            self._held.guids = []
        self._held.depth = depth + 1
        try:
            yield
        finally:
            self._held.depth = depth
            if depth == 0:
                guids, self._held.guids = self._held.guids, []
                for guid in guids:
                    packet = self._packets[guid]
                    if packet.status is PacketStatus.PENDING:
                        self._dispatch(packet, strict=False)

    def packet(self, guid: str) -> Packet:
        try:
            return self._packets[guid]
        except KeyError:
            raise MessageError(f"Unknown packet {guid}", guid=guid)

    def pending(self, dst_chain_id: Optional[int] = None) -> List[Packet]:
        with self._lock:
            packets = [self._packets[g] for g in self._order]
        return [
            p for p in packets
            if p.status is PacketStatus.PENDING
            and (dst_chain_id is None or p.dst_chain_id == dst_chain_id)
        ]

    def packets(self, status: Optional[PacketStatus] = None) -> List[Packet]:
        with self._lock:
            packets = [self._packets[g] for g in self._order]
        return [p for p in packets if status is None or p.status is status]

    def _dispatch(self, packet: Packet, strict: bool) -> DeliveryResult:
        packet.attempts += 1
        try:
            outcome = self.endpoint(packet.dst_chain_id).lz_receive(packet)
        except LaunchpadError as e:
            packet.status = PacketStatus.FAILED
            packet.error = e
            logger.warning(
                "Delivery failed",
                guid=packet.guid,
                dst=packet.dst_chain_id,
                error_code=e.code,
                reason=e.message,
            )
            if strict:
                raise
            return DeliveryResult(packet.guid, packet.status, error=e)

        packet.status = PacketStatus.DELIVERED
        packet.error = None
        return DeliveryResult(packet.guid, packet.status, outcome=outcome)

    def deliver(self, guid: str, strict: bool = True) -> DeliveryResult:
        """
        Deliver a pending or previously failed packet.

        With ``strict`` the receiver's error propagates to the caller;
        otherwise it is recorded on the packet and returned.
        """
        packet = self.packet(guid)
        if packet.status in (PacketStatus.DELIVERED, PacketStatus.DROPPED):
            raise MessageError(f"Packet {guid} is {packet.status.value}", guid=guid)
        return self._dispatch(packet, strict)

    def redeliver(self, guid: str, strict: bool = True) -> DeliveryResult:
        """Deliver an already delivered packet again (duplicate delivery)."""
        packet = self.packet(guid)
        if packet.status is not PacketStatus.DELIVERED:
            raise MessageError(f"Packet {guid} was not delivered yet", guid=guid)
        return self._dispatch(packet, strict)

    def drop(self, guid: str) -> None:
        packet = self.packet(guid)
        if packet.status is not PacketStatus.PENDING:
            raise MessageError(f"Only pending packets can be dropped, {guid} is {packet.status.value}")
        packet.status = PacketStatus.DROPPED
        logger.info("Packet dropped", guid=guid, dst=packet.dst_chain_id)

    def deliver_all(
        self,
        order: Union[str, Callable[[List[Packet]], Sequence[Packet]]] = "fifo",
        seed: Optional[int] = None,
        dst_chain_id: Optional[int] = None,
        strict: bool = False,
    ) -> List[DeliveryResult]:
        """
        Deliver pending packets until none remain.

        ``order`` is "fifo", "lifo", "shuffle" (seeded) or a callable that
        reorders a batch. Packets produced while delivering are picked up in
        later batches.
        """
        rng = random.Random(seed)
        results: List[DeliveryResult] = []

        while True:
            batch = self.pending(dst_chain_id)
            if not batch:
                return results
            if callable(order):
                batch = list(order(batch))
            elif order == "lifo":
                batch.reverse()
            elif order == "shuffle":
                rng.shuffle(batch)
            elif order != "fifo":
                raise ValueError(f"Unknown delivery order: {order}")

            for packet in batch:
                if packet.status is PacketStatus.PENDING:
                    results.append(self._dispatch(packet, strict))


class LocalEndpoint:
    """
    One chain's endpoint on an InMemoryTransport.

    Collects fees into its own account on the chain's native balances and
    pays destination value to receivers on delivery.
    """

    def __init__(self, chain_id: int, address: str, transport: InMemoryTransport, natives: NativeBalances):
        self._chain_id = chain_id
        self.address = address
        self.transport = transport
        self.natives = natives
        self._receivers: Dict[bytes, MessageReceiver] = {}
        transport.register(self)

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def set_receiver(self, address: str, receiver: MessageReceiver) -> None:
        self._receivers[to_bytes32(address)] = receiver

    def deferred(self) -> ContextManager[None]:
        return self.transport.deferred()

    def estimate_fee(self, dst_chain_id: int, message: bytes, options: ExecutorOptions) -> MessagingFee:
        self.transport.endpoint(dst_chain_id)
        return self.transport.fee_for(message, options)

    def send(
        self,
        sender: str,
        dst_chain_id: int,
        receiver: bytes,
        message: bytes,
        options: ExecutorOptions,
        refund_address: str,
        attached_fee: int,
        payer: str,
    ) -> MessagingReceipt:
        require_amount(attached_fee, "attached_fee", allow_zero=True)
        fee = self.estimate_fee(dst_chain_id, message, options)
        if attached_fee < fee.native_fee:
            raise InsufficientFee(fee.native_fee, attached_fee)

        self.natives.transfer(payer, self.address, attached_fee)
        refund = attached_fee - fee.native_fee
        self.natives.transfer(self.address, refund_address, refund)

        packet = self.transport.enqueue(
            self._chain_id, to_bytes32(sender), dst_chain_id, receiver, message, options,
        )
        return MessagingReceipt(
            guid=packet.guid,
            nonce=packet.origin.nonce,
            dst_chain_id=dst_chain_id,
            fee=fee,
            refund=refund,
        )

    def lz_receive(self, packet: Packet) -> Any:
        receiver = self._receivers.get(packet.receiver)
        if receiver is None:
            raise MessageError(f"No receiver at 0x{packet.receiver.hex()}", chain_id=self._chain_id)
        outcome = receiver.receive(packet.origin, packet.guid, packet.message, packet.options)
        if packet.options.value:
            self.natives.credit(from_bytes32(packet.receiver), packet.options.value)
        return outcome
