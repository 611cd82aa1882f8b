"""
OMNILAUNCH Cross-Chain Messenger

Quotes, sends, authenticates and applies protocol messages between one
chain's SaleLedger and its peers.

Outbound:   Quoted ──► Sent ──► (Delivered | Dropped by transport)
Inbound:    Received ──► Authenticated ──► Applied | Rejected | Duplicate

Inbound pipeline (each step raises and leaves ledger state untouched):

    1. sender must be the registered peer for the origin chain  UntrustedSender
    2. guid already applied                                     -> DUPLICATE
    3. size limit, then ABI decode                              PayloadTooLarge / MalformedMessage
    4. metered execution cost and native value within budget    ResourceBudgetExceeded
    5. dispatch to the ledger                                   UnknownSale, ...

A guid is only recorded once its message applies, so a message that failed
(for example BRIDGE_TOKENS that outran its CREATE_TOKEN) can be delivered
again later.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, ContextManager, Dict, List, Optional, Tuple

from omnilaunch.codec import (
    BridgeTokens,
    CreateToken,
    LiquidityCreatedMessage,
    MessageType,
    ProtocolMessage,
    decode_message,
    encode_message,
)
from omnilaunch.config import MessengerConfig, get_config
from omnilaunch.errors import (
    InsufficientFee,
    LaunchpadError,
    PayloadTooLarge,
    ResourceBudgetExceeded,
    Unauthorized,
    UntrustedSender,
)
from omnilaunch.events import EventBus, MessageApplied, MessageRejected, MessageSent
from omnilaunch.hardening import Validators, checksum_address, derive_address, require_amount
from omnilaunch.ledger import ApplyOutcome, SaleLedger
from omnilaunch.observability import (
    LaunchLayer,
    bind,
    get_correlation_id,
    get_logger,
    get_tracer,
    timed_operation,
)
from omnilaunch.peers import PeerChain, PeerRegistry
from omnilaunch.security import AuditEventType, AuditLogger, DeliveryRegistry
from omnilaunch.transport import (
    ExecutorOptions,
    MessageTransport,
    MessagingFee,
    MessagingReceipt,
    Origin,
)

logger = get_logger("messenger", LaunchLayer.MESSENGER)

# Fixed execution cost of applying each message type, before calldata.
EXECUTION_GAS: Dict[MessageType, int] = {
    MessageType.CREATE_TOKEN: 150_000,
    MessageType.BRIDGE_TOKENS: 60_000,
    MessageType.LIQUIDITY_CREATED: 40_000,
}


@dataclass(frozen=True)
class ResourceBudget:
    """Ceiling on what one inbound message may consume."""
    gas: int
    value: int = 0


def default_gas(config: MessengerConfig, msg_type: MessageType) -> int:
    return {
        MessageType.CREATE_TOKEN: config.create_token_gas.get(),
        MessageType.BRIDGE_TOKENS: config.bridge_tokens_gas.get(),
        MessageType.LIQUIDITY_CREATED: config.liquidity_created_gas.get(),
    }[msg_type]


class CrossChainMessenger:
    """
    One chain's messaging application.

    Holds the peer registry, the per-type outbound options and inbound
    budgets, and the record of applied deliveries.

    Inbound messages are applied one at a time under their own lock; the
    messenger lock only guards its tables and is never held while the ledger
    runs.
    """

    def __init__(
        self,
        chain_id: int,
        owner: str,
        transport: MessageTransport,
        ledger: SaleLedger,
        address: Optional[str] = None,
        config: Optional[MessengerConfig] = None,
        registry: Optional[PeerRegistry] = None,
        audit: Optional[AuditLogger] = None,
        bus: Optional[EventBus] = None,
    ):
        self.chain_id = chain_id
        self.owner = checksum_address(owner, "owner")
        self.transport = transport
        self.ledger = ledger
        self.address = address or derive_address(ledger.address, 0)
        self.config = config or get_config().messenger
        self.audit = audit or ledger.audit
        self.registry = registry or PeerRegistry(owner, self.audit)
        self.bus = bus or ledger.bus

        self._enforced: Dict[Tuple[int, MessageType], ExecutorOptions] = {}
        self._budgets: Dict[Tuple[int, MessageType], ResourceBudget] = {}
        self._deliveries = DeliveryRegistry()
        self._stats = {"sent": 0, "applied": 0, "duplicate": 0, "rejected": 0}
        self._lock = threading.RLock()
        self._inbound = threading.RLock()

        transport.set_receiver(self.address, self)

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def _require_owner(self, caller: str, action: str) -> str:
        """The checksummed caller, when it is the owner."""
        checked = Validators.validate_address(caller, "caller")
        if not checked.is_valid or checked.value != self.owner:
            self.audit.log(
                AuditEventType.AUTHZ_DENIED, caller, "messenger", self.address, action, outcome="failure",
            )
            raise Unauthorized(f"{caller} may not {action}", caller=caller)
        return checked.value

    def set_peer(self, caller: str, chain_id: int, remote_address: Any) -> PeerChain:
        return self.registry.set_peer(caller, chain_id, remote_address)

    def add_peer_chain(self, caller: str, chain_id: int) -> None:
        self.registry.add_peer_chain(caller, chain_id)

    def remove_peer_chain(self, caller: str, chain_id: int) -> None:
        self.registry.remove_peer_chain(caller, chain_id)

    def set_enforced_options(
        self, caller: str, dst_chain_id: int, msg_type: MessageType, options: ExecutorOptions,
    ) -> None:
        """Override the options always applied to ``msg_type`` sent to ``dst_chain_id``."""
        caller = self._require_owner(caller, "set_enforced_options")
        require_amount(options.gas, "gas")
        require_amount(options.value, "value", allow_zero=True)
        with self._lock:
            self._enforced[(dst_chain_id, MessageType(msg_type))] = options
        self.audit.log(
            AuditEventType.OPTIONS_SET, caller, "messenger", str(dst_chain_id), "set_enforced_options",
            details={"msg_type": MessageType(msg_type).name, **options.to_dict()},
        )

    def set_inbound_budget(
        self, caller: str, src_chain_id: int, msg_type: MessageType, gas: int, value: int = 0,
    ) -> None:
        """Override the resource ceiling for ``msg_type`` arriving from ``src_chain_id``."""
        caller = self._require_owner(caller, "set_inbound_budget")
        require_amount(gas, "gas")
        require_amount(value, "value", allow_zero=True)
        with self._lock:
            self._budgets[(src_chain_id, MessageType(msg_type))] = ResourceBudget(gas, value)
        self.audit.log(
            AuditEventType.BUDGET_SET, caller, "messenger", str(src_chain_id), "set_inbound_budget",
            details={"msg_type": MessageType(msg_type).name, "gas": gas, "value": value},
        )

    def enforced_options(self, dst_chain_id: int, msg_type: MessageType) -> ExecutorOptions:
        with self._lock:
            configured = self._enforced.get((dst_chain_id, msg_type))
        if configured is not None:
            return configured
        return ExecutorOptions(gas=default_gas(self.config, msg_type), value=0)

    def inbound_budget(self, src_chain_id: int, msg_type: MessageType) -> ResourceBudget:
        with self._lock:
            configured = self._budgets.get((src_chain_id, msg_type))
        if configured is not None:
            return configured
        return ResourceBudget(gas=default_gas(self.config, msg_type), value=self.config.max_native_value.get())

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _prepare(
        self, dst_chain_id: int, message: ProtocolMessage, extra_options: Optional[ExecutorOptions],
    ) -> Tuple[PeerChain, bytes, ExecutorOptions]:
        peer = self.registry.require_send_target(dst_chain_id)
        raw = encode_message(message)
        limit = self.config.max_message_size.get()
        if len(raw) > limit:
            raise PayloadTooLarge(len(raw), limit)
        options = self.enforced_options(dst_chain_id, message.msg_type).combine(extra_options)
        return peer, raw, options

    def deferred_delivery(self) -> ContextManager[None]:
        """Hold auto-delivery of messages this thread sends until the block exits."""
        return self.transport.deferred()

    def quote(
        self,
        dst_chain_id: int,
        message: ProtocolMessage,
        extra_options: Optional[ExecutorOptions] = None,
    ) -> MessagingFee:
        """Native fee ``send`` needs for this message. Read-only."""
        _, raw, options = self._prepare(dst_chain_id, message, extra_options)
        return self.transport.estimate_fee(dst_chain_id, raw, options)

    @timed_operation(logger, "send")
    def send(
        self,
        dst_chain_id: int,
        message: ProtocolMessage,
        extra_options: Optional[ExecutorOptions] = None,
        attached_fee: int = 0,
        refund_address: Optional[str] = None,
        payer: Optional[str] = None,
    ) -> MessagingReceipt:
        """
        Hand a message to the transport.

        Raises PeerNotSet before touching the transport when the destination
        has no trusted peer or is not enabled, and InsufficientFee when
        ``attached_fee`` is below the quote. ``payer`` funds the fee; the
        excess goes back to ``refund_address``.
        """
        payer = payer or refund_address
        refund_address = refund_address or payer
        if payer is None:
            raise Unauthorized("send needs a payer or refund address")
        payer = checksum_address(payer, "payer")
        refund_address = checksum_address(refund_address, "refund_address")

        peer, raw, options = self._prepare(dst_chain_id, message, extra_options)
        fee = self.transport.estimate_fee(dst_chain_id, raw, options)
        if attached_fee < fee.native_fee:
            raise InsufficientFee(fee.native_fee, attached_fee)

        receipt = self.transport.send(
            self.address, dst_chain_id, peer.address, raw, options, refund_address, attached_fee, payer,
        )
        with self._lock:
            self._stats["sent"] += 1

        with bind(guid=receipt.guid):
            logger.info("Message sent", dst=dst_chain_id, msg_type=message.msg_type.name, fee=fee.native_fee)
        self.bus.publish(MessageSent(
            chain_id=self.chain_id,
            correlation_id=get_correlation_id(),
            guid=receipt.guid,
            dst_chain_id=dst_chain_id,
            msg_type=message.msg_type.name,
            fee=fee.native_fee,
        ))
        return receipt

    def quote_broadcast(
        self, message: ProtocolMessage, extra_options: Optional[ExecutorOptions] = None,
    ) -> MessagingFee:
        """Total fee for sending ``message`` to every enabled peer chain."""
        total = MessagingFee(0)
        for dst_chain_id in self.registry.enabled_chains():
            total = total + self.quote(dst_chain_id, message, extra_options)
        return total

    def broadcast(
        self,
        message: ProtocolMessage,
        attached_fee: int,
        refund_address: str,
        payer: Optional[str] = None,
        extra_options: Optional[ExecutorOptions] = None,
    ) -> List[MessagingReceipt]:
        """Send ``message`` to every enabled peer chain, each paid at its quote."""
        targets = self.registry.enabled_chains()
        fees = [self.quote(dst, message, extra_options).native_fee for dst in targets]
        if attached_fee < sum(fees):
            raise InsufficientFee(sum(fees), attached_fee)

        return [
            self.send(dst, message, extra_options, fee, refund_address, payer)
            for dst, fee in zip(targets, fees)
        ]

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def _meter(self, origin: Origin, msg_type: MessageType, raw: bytes, options: ExecutorOptions) -> int:
        budget = self.inbound_budget(origin.src_chain_id, msg_type)
        cost = EXECUTION_GAS[msg_type] + self.config.calldata_gas_per_byte.get() * len(raw)
        if cost > budget.gas or cost > options.gas:
            raise ResourceBudgetExceeded(
                f"{msg_type.name} needs {cost} gas; budget {budget.gas}, supplied {options.gas}",
                cost=cost,
                budget=budget.gas,
                supplied=options.gas,
            )
        if options.value > budget.value:
            raise ResourceBudgetExceeded(
                f"{msg_type.name} carries value {options.value} over budget {budget.value}",
                value=options.value,
                budget=budget.value,
            )
        return cost

    def _dispatch(self, src_chain_id: int, message: ProtocolMessage) -> ApplyOutcome:
        if isinstance(message, CreateToken):
            return self.ledger.apply_create_token(self.address, src_chain_id, message)
        if isinstance(message, BridgeTokens):
            return self.ledger.apply_bridge_tokens(self.address, src_chain_id, message)
        if isinstance(message, LiquidityCreatedMessage):
            return self.ledger.apply_liquidity_created(self.address, src_chain_id, message)
        raise TypeError(f"Unhandled message {type(message).__name__}")

    def receive(self, origin: Origin, guid: str, message: bytes, options: ExecutorOptions) -> ApplyOutcome:
        """Authenticate, decode, meter and apply one inbound message."""
        with bind(chain_id=self.chain_id, guid=guid), \
                get_tracer().span("receive", LaunchLayer.MESSENGER, guid=guid, src=origin.src_chain_id) as span:
            try:
                with self._inbound:
                    outcome = self._receive(origin, guid, message, options)
            except LaunchpadError as e:
                with self._lock:
                    self._stats["rejected"] += 1
                logger.warning(
                    "Message rejected",
                    src=origin.src_chain_id,
                    error_code=e.code,
                    reason=e.message,
                )
                self.bus.publish(MessageRejected(
                    chain_id=self.chain_id,
                    guid=guid,
                    src_chain_id=origin.src_chain_id,
                    error_code=e.code,
                    reason=e.message,
                ))
                raise
            span.set_attribute("outcome", outcome.value)
            return outcome

    def _receive(self, origin: Origin, guid: str, raw: bytes, options: ExecutorOptions) -> ApplyOutcome:
        if not self.registry.is_trusted_sender(origin.src_chain_id, origin.sender):
            self.audit.log(
                AuditEventType.SENDER_REJECTED, "0x" + origin.sender.hex(), "message", guid, "receive",
                outcome="failure", details={"src_chain_id": origin.src_chain_id},
            )
            raise UntrustedSender(origin.src_chain_id, origin.sender)

        if not self._deliveries.is_fresh(guid):
            with self._lock:
                self._stats["duplicate"] += 1
            self.audit.log(
                AuditEventType.REPLAY_ATTEMPT, "0x" + origin.sender.hex(), "message", guid, "receive",
                outcome="failure", details={"src_chain_id": origin.src_chain_id},
            )
            logger.info("Duplicate delivery ignored", src=origin.src_chain_id)
            return ApplyOutcome.DUPLICATE

        decoded = decode_message(raw, max_size=self.config.max_message_size.get())
        cost = self._meter(origin, decoded.msg_type, raw, options)
        outcome = self._dispatch(origin.src_chain_id, decoded)
        self._deliveries.check_and_register(guid)

        with self._lock:
            self._stats["applied" if outcome is ApplyOutcome.APPLIED else "duplicate"] += 1
        logger.info(
            "Message applied",
            src=origin.src_chain_id,
            msg_type=decoded.msg_type.name,
            outcome=outcome.value,
            gas=cost,
        )
        self.bus.publish(MessageApplied(
            chain_id=self.chain_id,
            guid=guid,
            src_chain_id=origin.src_chain_id,
            msg_type=decoded.msg_type.name,
            outcome=outcome.value,
        ))
        return outcome

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self._stats, "deliveries": self._deliveries.size()}
