"""
OMNILAUNCH Sale Ledger

Per-chain registry of token sales: local launches traded on the bonding
curve, and mirrors of sales launched on other chains.

Sale lifecycle:

    create()                       CREATE_TOKEN (remote)
       │                                  │
       ▼                                  ▼
    ┌──────────┐  buy / sell        ┌──────────┐  BRIDGE_TOKENS
    │   OPEN   │ ◄──────────┐       │  MIRROR  │ ◄──────────┐
    │  (local) │ ───────────┘       │ (closed) │ ───────────┘
    └────┬─────┘                    └────┬─────┘
         │ raised >= target              │ LIQUIDITY_CREATED
         ▼                               ▼
    ┌──────────────────────────────────────────┐
    │        GRADUATED (closed, frozen)        │
    └──────────────────────────────────────────┘

Replicated totals are grow-only counters. ``sold`` and ``raised`` are derived
from them, so remote deltas merge the same way whatever order they arrive in.

Messages address sales by ``SaleKey(origin_chain_id, origin_index)``; the
ledger resolves a key to its own index, either a local sale or a mirror.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING

from omnilaunch.codec import (
    BridgeTokens,
    CreateToken,
    Direction,
    LiquidityCreatedMessage,
    ProtocolMessage,
    SaleKey,
)
from omnilaunch.config import get_config
from omnilaunch.curve import BondingCurveMarket
from omnilaunch.errors import (
    InsufficientBalance,
    InsufficientFee,
    LaunchpadError,
    MalformedMessage,
    SaleClosed,
    SaleStateError,
    TargetReached,
    Unauthorized,
    UnknownSale,
)
from omnilaunch.events import (
    EventBus,
    LiquidityCreated,
    MirrorRegistered,
    RemoteDeltaMerged,
    SaleCreated,
    TokensBought,
    TokensSold,
)
from omnilaunch.hardening import (
    AtomicCounter,
    InvariantChecker,
    FieldError,
    Validators,
    ValidationErrors,
    ZERO_ADDRESS,
    checksum_address,
    derive_address,
    is_zero_address,
    require_amount,
)
from omnilaunch.observability import LaunchLayer, bind, get_logger, timed_operation
from omnilaunch.pool import LiquidityMigrator, LiquidityPool, LiquidityRecord
from omnilaunch.security import AuditEventType, AuditLogger
from omnilaunch.token import NativeBalances, Token
from omnilaunch.transport import ExecutorOptions, MessagingReceipt

if TYPE_CHECKING:
    from omnilaunch.messenger import CrossChainMessenger

logger = get_logger("ledger", LaunchLayer.LEDGER)


class ApplyOutcome(Enum):
    """Result of applying an inbound message."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"


# =============================================================================
# SALE STATE
# =============================================================================

@dataclass
class Sale:
    """One sale as this chain sees it."""
    token: str
    creator: str
    origin_chain_id: int
    origin_index: int
    is_local: bool
    is_open: bool = True
    is_liquidity_created: bool = False
    bought: int = 0
    sold_back: int = 0
    raised_in: int = 0
    raised_out: int = 0

    @property
    def sold(self) -> int:
        return max(0, self.bought - self.sold_back)

    @property
    def raised(self) -> int:
        return max(0, self.raised_in - self.raised_out)

    @property
    def key(self) -> SaleKey:
        return SaleKey(self.origin_chain_id, self.origin_index)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "creator": self.creator,
            "sold": self.sold,
            "raised": self.raised,
            "is_open": self.is_open,
            "is_liquidity_created": self.is_liquidity_created,
            "origin_chain_id": self.origin_chain_id,
            "origin_index": self.origin_index,
            "is_local": self.is_local,
        }


@dataclass(frozen=True)
class CreateQuote:
    creation_fee: int
    messaging_fee: int

    @property
    def required(self) -> int:
        """The creation fee funds the broadcast; the caller pays whichever is larger."""
        return max(self.creation_fee, self.messaging_fee)


@dataclass
class CreateResult:
    sale_index: int
    token: str
    creator: str
    quote: CreateQuote
    refund: int
    receipts: List[MessagingReceipt] = field(default_factory=list)


@dataclass
class TradeReceipt:
    sale_index: int
    amount: int
    native_amount: int
    messaging_fee: int
    refund: int
    receipts: List[MessagingReceipt] = field(default_factory=list)
    liquidity: Optional[LiquidityRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sale_index": self.sale_index,
            "amount": self.amount,
            "native_amount": self.native_amount,
            "messaging_fee": self.messaging_fee,
            "refund": self.refund,
            "messages": [r.guid for r in self.receipts],
            "liquidity": self.liquidity.to_dict() if self.liquidity else None,
        }


# =============================================================================
# LEDGER
# =============================================================================

class SaleLedger:
    """
    Sales on one chain.

    All mutating calls take the acting account as ``caller`` and any attached
    native currency as ``value``; the value is taken from the caller's
    native balance and the unused part is refunded.
    """

    def __init__(
        self,
        chain_id: int,
        owner: str,
        natives: NativeBalances,
        address: Optional[str] = None,
        curve: Optional[BondingCurveMarket] = None,
        creation_fee: Optional[int] = None,
        bus: Optional[EventBus] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.chain_id = chain_id
        self.owner = checksum_address(owner, "owner")
        self.address = address or derive_address(self.owner, chain_id)
        self.natives = natives
        self.curve = curve or BondingCurveMarket()
        self.creation_fee = (
            creation_fee if creation_fee is not None else get_config().curve.creation_fee.get()
        )
        self.bus = bus or EventBus()
        self.audit = audit or AuditLogger(chain_id)
        self.pool: Optional[LiquidityPool] = None
        self.migrator: Optional[LiquidityMigrator] = None
        self.messenger: Optional["CrossChainMessenger"] = None

        self._sales: List[Sale] = []
        self._tokens: Dict[str, Token] = {}
        self._mirrors: Dict[SaleKey, int] = {}
        self._deploy_nonce = AtomicCounter(0)
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def _require_owner(self, caller: str, action: str) -> str:
        """The checksummed caller, when it is the owner."""
        checked = Validators.validate_address(caller, "caller")
        if not checked.is_valid or checked.value != self.owner:
            self.audit.log(
                AuditEventType.AUTHZ_DENIED, caller, "ledger", self.address, action, outcome="failure",
            )
            raise Unauthorized(f"{caller} may not {action}", caller=caller)
        return checked.value

    def set_liquidity_pool(self, caller: str, pool: LiquidityPool) -> None:
        caller = self._require_owner(caller, "set_liquidity_pool")
        if pool.factory != self.address:
            raise ValidationErrors([
                FieldError("pool", f"Pool factory is {pool.factory}, not this ledger", pool.address),
            ])
        with self._lock:
            self.pool = pool
            self.migrator = LiquidityMigrator(pool, self.address)
        self.audit.log(
            AuditEventType.COLLABORATOR_SET, caller, "ledger", self.address, "set_liquidity_pool",
            details={"pool": pool.address},
        )

    def set_cross_chain_messenger(self, caller: str, messenger: "CrossChainMessenger") -> None:
        caller = self._require_owner(caller, "set_cross_chain_messenger")
        with self._lock:
            self.messenger = messenger
        self.audit.log(
            AuditEventType.COLLABORATOR_SET, caller, "ledger", self.address, "set_cross_chain_messenger",
            details={"messenger": messenger.address},
        )

    def _require_messenger(self, caller: str) -> None:
        if self.messenger is None or Validators.validate_address(caller).value != self.messenger.address:
            raise Unauthorized(f"{caller} is not the cross-chain messenger", caller=caller)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def total_sales(self) -> int:
        with self._lock:
            return len(self._sales)

    def get_sale(self, sale_index: int) -> Sale:
        """Snapshot of a sale by local index."""
        with self._lock:
            return replace(self._sale(sale_index))

    def _sale(self, sale_index: int) -> Sale:
        if not 0 <= sale_index < len(self._sales):
            raise UnknownSale(sale_index)
        return self._sales[sale_index]

    def sales(self) -> List[Sale]:
        with self._lock:
            return [replace(s) for s in self._sales]

    def token(self, address: str) -> Token:
        with self._lock:
            try:
                return self._tokens[address]
            except KeyError:
                raise UnknownSale(address)

    def token_for_sale(self, sale_index: int) -> Token:
        with self._lock:
            return self._tokens[self._sale(sale_index).token]

    def resolve(self, key: SaleKey) -> int:
        """Local index of the sale a message addresses."""
        with self._lock:
            if key.origin_chain_id == self.chain_id:
                if 0 <= key.origin_index < len(self._sales):
                    return key.origin_index
                raise UnknownSale(key)
            try:
                return self._mirrors[key]
            except KeyError:
                raise UnknownSale(key)

    def find_mirror(self, key: SaleKey) -> Optional[int]:
        with self._lock:
            return self._mirrors.get(key)

    # -------------------------------------------------------------------------
    # Messaging helpers
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """
        The ledger lock, with deliveries of messages sent inside it held
        until it is released.
        """
        messenger = self.messenger
        with messenger.deferred_delivery() if messenger is not None else nullcontext(), self._lock:
            yield

    def _broadcast_fee(self, message: ProtocolMessage) -> int:
        if self.messenger is None:
            return 0
        return self.messenger.quote_broadcast(message).native_fee

    def _broadcast(self, message: ProtocolMessage, fee: int, refund_address: str) -> List[MessagingReceipt]:
        if self.messenger is None:
            return []
        return self.messenger.broadcast(
            message, attached_fee=fee, refund_address=refund_address, payer=self.address,
        )

    def _collect(self, caller: str, value: int, required: int) -> None:
        """Take ``value`` from the caller after checking it covers ``required``."""
        if value < required:
            raise InsufficientFee(required, value)
        available = self.natives.balance_of(caller)
        if available < value:
            raise InsufficientBalance(caller, value, available)
        self.natives.transfer(caller, self.address, value)

    def _deploy_token(self, name: str, symbol: str, metadata_uri: str) -> Token:
        address = derive_address(self.address, self._deploy_nonce.increment())
        token = Token(address, name, symbol, metadata_uri)
        token.mint(self.address, self.curve.params.total_supply)
        self._tokens[address] = token
        return token

    # -------------------------------------------------------------------------
    # Launch
    # -------------------------------------------------------------------------

    def quote_create(
        self,
        name: str,
        symbol: str,
        metadata_uri: str,
        creator: str = ZERO_ADDRESS,
    ) -> CreateQuote:
        """Native value ``create`` needs with these arguments."""
        message = CreateToken(
            name=name,
            symbol=symbol,
            metadata_uri=metadata_uri,
            creator=creator if not is_zero_address(creator) else self.owner,
            origin_index=self.total_sales(),
        )
        return CreateQuote(creation_fee=self.creation_fee, messaging_fee=self._broadcast_fee(message))

    @timed_operation(logger, "create")
    def create(
        self,
        caller: str,
        name: str,
        symbol: str,
        metadata_uri: str,
        creator_override: str = ZERO_ADDRESS,
        value: int = 0,
    ) -> CreateResult:
        """
        Launch a token and open its curve sale.

        The sale's creator is ``creator_override`` unless it is the zero
        address, in which case it is the caller. A CREATE_TOKEN message goes
        to every enabled peer chain, paid out of the attached value; what the
        broadcast does not use of the creation fee goes to the owner.
        """
        name = Validators.validate_token_name(name).unwrap()
        symbol = Validators.validate_symbol(symbol).unwrap()
        metadata_uri = Validators.validate_metadata_uri(metadata_uri).unwrap()
        require_amount(value, "value", allow_zero=True)
        caller = checksum_address(caller, "caller")
        creator = caller if is_zero_address(creator_override) else checksum_address(creator_override, "creator")

        with self._transaction():
            sale_index = len(self._sales)
            message = CreateToken(name, symbol, metadata_uri, creator, sale_index)
            quote = CreateQuote(creation_fee=self.creation_fee, messaging_fee=self._broadcast_fee(message))
            self._collect(caller, value, quote.required)

            token = self._deploy_token(name, symbol, metadata_uri)
            self._sales.append(Sale(
                token=token.address,
                creator=creator,
                origin_chain_id=self.chain_id,
                origin_index=sale_index,
                is_local=True,
            ))

            receipts = self._broadcast(message, quote.messaging_fee, caller)
            self.natives.transfer(self.address, self.owner, quote.required - quote.messaging_fee)
            refund = value - quote.required
            self.natives.transfer(self.address, caller, refund)

        logger.info(
            "Sale created",
            sale_index=sale_index,
            token=token.address,
            creator=creator,
            peers=len(receipts),
        )
        self.bus.publish(SaleCreated(
            chain_id=self.chain_id,
            sale_index=sale_index,
            token=token.address,
            creator=creator,
            name=name,
            symbol=symbol,
            metadata_uri=metadata_uri,
        ))
        return CreateResult(sale_index, token.address, creator, quote, refund, receipts)

    @timed_operation(logger, "send_launch_to_remote_chain")
    def send_launch_to_remote_chain(
        self,
        caller: str,
        dst_chain_id: int,
        sale_index: int,
        extra_options: Optional[ExecutorOptions] = None,
        value: int = 0,
    ) -> MessagingReceipt:
        """Send (or resend) CREATE_TOKEN for a local sale to one chain."""
        caller = checksum_address(caller, "caller")
        if self.messenger is None:
            raise SaleStateError("No cross-chain messenger configured")
        with self._lock:
            sale = self._sale(sale_index)
            if not sale.is_local:
                raise SaleStateError(f"Sale {sale_index} is a mirror", sale_index=sale_index)
            token = self._tokens[sale.token]
            message = CreateToken(token.name, token.symbol, token.metadata_uri, sale.creator, sale_index)

        return self.messenger.send(
            dst_chain_id,
            message,
            extra_options=extra_options,
            attached_fee=value,
            refund_address=caller,
            payer=caller,
        )

    # -------------------------------------------------------------------------
    # Curve trading
    # -------------------------------------------------------------------------

    def _require_tradable(self, sale_index: int, sale: Sale) -> None:
        if sale.is_liquidity_created:
            raise TargetReached(f"Sale {sale_index} graduated", sale_index=sale_index)
        if not sale.is_open:
            raise SaleClosed(f"Sale {sale_index} is closed to curve trading", sale_index=sale_index)

    def quote_buy(self, sale_index: int, amount: int) -> TradeReceipt:
        """What ``buy`` would charge, including the sync messages."""
        with self._lock:
            sale = self._sale(sale_index)
            self._require_tradable(sale_index, sale)
            quote = self.curve.quote_buy(sale.sold, sale.raised, amount)
            fee = self._broadcast_fee(BridgeTokens(sale.key, amount, quote.cost, Direction.BUY))
            if quote.target_reached:
                fee += self._broadcast_fee(LiquidityCreatedMessage(sale.key))
            return TradeReceipt(sale_index, amount, quote.cost, fee, refund=0)

    @timed_operation(logger, "buy")
    def buy(self, caller: str, sale_index: int, amount: int, value: int) -> TradeReceipt:
        """
        Buy ``amount`` tokens from the curve.

        ``value`` must cover the curve cost plus the fees for telling peer
        chains about the trade (and about graduation, when this buy reaches
        the target). A buy that reaches the target migrates the sale into the
        liquidity pool before returning.
        """
        require_amount(value, "value", allow_zero=True)
        caller = checksum_address(caller, "caller")
        with self._transaction():
            quoted = self.quote_buy(sale_index, amount)
            sale = self._sales[sale_index]
            token = self._tokens[sale.token]
            target_reached = self.curve.target_reached(sale.raised + quoted.native_amount)
            if target_reached and self.migrator is None:
                raise SaleStateError("No liquidity pool configured for graduation", sale_index=sale_index)

            required = quoted.native_amount + quoted.messaging_fee
            self._collect(caller, value, required)

            before = replace(sale)
            sale.bought += amount
            sale.raised_in += quoted.native_amount
            InvariantChecker.check_monotonic_increase("sold", before.sold, sale.sold)
            token.transfer(self.address, caller, amount)

            liquidity = None
            if target_reached:
                # migrate before any message leaves the chain
                try:
                    liquidity = self.migrator.migrate(sale_index, sale, token)
                except LaunchpadError:
                    token.transfer(caller, self.address, amount)
                    sale.bought, sale.raised_in = before.bought, before.raised_in
                    self.natives.transfer(self.address, caller, value)
                    raise
                self.audit.log(
                    AuditEventType.SALE_GRADUATED, caller, "sale", str(sale.key), "migrate",
                    details=liquidity.to_dict(),
                )

            bridge = BridgeTokens(sale.key, amount, quoted.native_amount, Direction.BUY)
            receipts = self._broadcast(bridge, self._broadcast_fee(bridge), caller)
            if liquidity is not None:
                graduation = LiquidityCreatedMessage(sale.key)
                receipts += self._broadcast(graduation, self._broadcast_fee(graduation), caller)

            refund = value - required
            self.natives.transfer(self.address, caller, refund)
            sold, raised = sale.sold, sale.raised

        with bind(sale=str(sale.key)):
            logger.info("Tokens bought", sale_index=sale_index, amount=amount, cost=quoted.native_amount)
        self.bus.publish(TokensBought(
            chain_id=self.chain_id,
            sale_index=sale_index,
            buyer=caller,
            amount=amount,
            cost=quoted.native_amount,
            sold=sold,
            raised=raised,
        ))
        return TradeReceipt(
            sale_index, amount, quoted.native_amount, quoted.messaging_fee, refund, receipts, liquidity,
        )

    def quote_sell(self, sale_index: int, amount: int) -> TradeReceipt:
        with self._lock:
            sale = self._sale(sale_index)
            self._require_tradable(sale_index, sale)
            quote = self.curve.quote_sell(sale.sold, amount)
            fee = self._broadcast_fee(BridgeTokens(sale.key, amount, quote.proceeds, Direction.SELL))
            return TradeReceipt(sale_index, amount, quote.proceeds, fee, refund=0)

    @timed_operation(logger, "sell")
    def sell(self, caller: str, sale_index: int, amount: int, value: int = 0) -> TradeReceipt:
        """Sell ``amount`` tokens back to the curve; ``value`` pays the sync messages."""
        require_amount(value, "value", allow_zero=True)
        caller = checksum_address(caller, "caller")
        with self._transaction():
            quoted = self.quote_sell(sale_index, amount)
            sale = self._sales[sale_index]
            token = self._tokens[sale.token]
            held = token.balance_of(caller)
            if held < amount:
                raise InsufficientBalance(caller, amount, held, token=token.symbol)
            self._collect(caller, value, quoted.messaging_fee)

            token.transfer(caller, self.address, amount)
            sale.sold_back += amount
            sale.raised_out += quoted.native_amount
            InvariantChecker.check_non_negative("raised", sale.raised_in - sale.raised_out)
            self.natives.transfer(self.address, caller, quoted.native_amount)

            receipts = self._broadcast(
                BridgeTokens(sale.key, amount, quoted.native_amount, Direction.SELL), quoted.messaging_fee, caller,
            )
            refund = value - quoted.messaging_fee
            self.natives.transfer(self.address, caller, refund)
            sold, raised = sale.sold, sale.raised

        with bind(sale=str(sale.key)):
            logger.info("Tokens sold", sale_index=sale_index, amount=amount, proceeds=quoted.native_amount)
        self.bus.publish(TokensSold(
            chain_id=self.chain_id,
            sale_index=sale_index,
            seller=caller,
            amount=amount,
            proceeds=quoted.native_amount,
            sold=sold,
            raised=raised,
        ))
        return TradeReceipt(sale_index, amount, quoted.native_amount, quoted.messaging_fee, refund, receipts)

    # -------------------------------------------------------------------------
    # Inbound application (messenger only)
    # -------------------------------------------------------------------------

    def apply_create_token(self, caller: str, src_chain_id: int, message: CreateToken) -> ApplyOutcome:
        """Register a mirror of a sale launched on ``src_chain_id``; replays are no-ops."""
        self._require_messenger(caller)
        key = SaleKey(src_chain_id, message.origin_index)
        with self._lock:
            if key in self._mirrors:
                with bind(sale=str(key)):
                    logger.info("Duplicate CREATE_TOKEN ignored")
                return ApplyOutcome.DUPLICATE

            token = self._deploy_token(message.name, message.symbol, message.metadata_uri)
            sale_index = len(self._sales)
            self._sales.append(Sale(
                token=token.address,
                creator=message.creator,
                origin_chain_id=src_chain_id,
                origin_index=message.origin_index,
                is_local=False,
                is_open=False,
            ))
            self._mirrors[key] = sale_index

        with bind(sale=str(key)):
            logger.info("Mirror registered", sale_index=sale_index, token=token.address)
        self.bus.publish(MirrorRegistered(
            chain_id=self.chain_id,
            sale_index=sale_index,
            token=token.address,
            creator=message.creator,
            origin_chain_id=src_chain_id,
            origin_index=message.origin_index,
        ))
        return ApplyOutcome.APPLIED

    def _resolve_remote(self, src_chain_id: int, key: SaleKey) -> int:
        if key.origin_chain_id != src_chain_id:
            raise MalformedMessage(
                f"Chain {src_chain_id} reported on sale {key} it did not originate",
                src_chain_id=src_chain_id,
            )
        return self.resolve(key)

    def apply_bridge_tokens(self, caller: str, src_chain_id: int, message: BridgeTokens) -> ApplyOutcome:
        """Merge a trade on the origin chain into the mirror's counters."""
        self._require_messenger(caller)
        with self._lock:
            sale_index = self._resolve_remote(src_chain_id, message.sale)
            sale = self._sales[sale_index]
            if message.direction is Direction.BUY:
                sale.bought += message.amount
                sale.raised_in += message.value
            else:
                sale.sold_back += message.amount
                sale.raised_out += message.value

        logger.debug(
            "Remote delta merged",
            sale_index=sale_index,
            direction=message.direction.name,
            amount=message.amount,
            value=message.value,
        )
        self.bus.publish(RemoteDeltaMerged(
            chain_id=self.chain_id,
            sale_index=sale_index,
            source_chain_id=src_chain_id,
            direction=message.direction.name,
            amount=message.amount,
            value=message.value,
        ))
        return ApplyOutcome.APPLIED

    def apply_liquidity_created(
        self, caller: str, src_chain_id: int, message: LiquidityCreatedMessage,
    ) -> ApplyOutcome:
        """Close and graduate a mirror whose origin sale migrated."""
        self._require_messenger(caller)
        with self._lock:
            sale_index = self._resolve_remote(src_chain_id, message.sale)
            sale = self._sales[sale_index]
            if sale.is_liquidity_created:
                with bind(sale=str(message.sale)):
                    logger.info("Duplicate LIQUIDITY_CREATED ignored")
                return ApplyOutcome.DUPLICATE
            sale.is_open = False
            sale.is_liquidity_created = True
            InvariantChecker.check_graduation_closed(sale.is_liquidity_created, sale.is_open)
            token = sale.token

        self.audit.log(
            AuditEventType.SALE_GRADUATED, caller, "sale", str(message.sale), "remote_graduation",
            details={"src_chain_id": src_chain_id},
        )
        with bind(sale=str(message.sale)):
            logger.info("Mirror graduated", sale_index=sale_index)
        self.bus.publish(LiquidityCreated(
            chain_id=self.chain_id, sale_index=sale_index, token=token, remote=True,
        ))
        return ApplyOutcome.APPLIED
