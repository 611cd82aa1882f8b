"""
Sale ledger tests: launches, curve trading, graduation and inbound
application.

Copyright (c) 2026 Momentum. All rights reserved.
"""

import pytest

from omnilaunch.codec import BridgeTokens, CreateToken, Direction, LiquidityCreatedMessage, SaleKey
from omnilaunch.config import ETHER
from omnilaunch.curve import BondingCurveMarket
from omnilaunch.errors import (
    InsufficientBalance,
    InsufficientFee,
    SaleClosed,
    SaleStateError,
    TargetReached,
    Unauthorized,
    UnknownSale,
)
from omnilaunch.events import LiquidityCreated, SaleCreated, TokensBought, TokensSold
from omnilaunch.hardening import ValidationErrors, ZERO_ADDRESS
from omnilaunch.ledger import ApplyOutcome, SaleLedger
from omnilaunch.network import account
from omnilaunch.pool import LiquidityPool
from omnilaunch.security import AuditEventType
from omnilaunch.token import NativeBalances

from conftest import SMALL_CURVE, buy, launch


# =============================================================================
# LAUNCH
# =============================================================================

class TestCreate:
    """Tests for launching a token."""

    def test_create_opens_sale(self, network, user):
        """A paid launch adds one open, empty, ungraduated sale."""
        ledger = network[1].ledger
        before = ledger.total_sales()
        result = launch(network, 1, user)

        assert ledger.total_sales() == before + 1
        sale = ledger.get_sale(result.sale_index)
        assert (sale.sold, sale.raised) == (0, 0)
        assert sale.is_open
        assert not sale.is_liquidity_created
        assert sale.is_local
        assert sale.creator == user
        assert sale.token == result.token

    def test_token_supply_held_by_ledger(self, network, user):
        """The whole supply starts in the ledger's inventory."""
        result = launch(network, 1, user)
        token = network[1].ledger.token(result.token)
        assert token.total_supply == SMALL_CURVE.total_supply
        assert token.balance_of(network[1].ledger.address) == SMALL_CURVE.total_supply

    def test_insufficient_fee_changes_nothing(self, network, user):
        """One wei below the quote raises and leaves no trace."""
        ledger = network[1].ledger
        required = ledger.quote_create("Test Token", "TEST", "ipfs://test").required

        with pytest.raises(InsufficientFee) as exc:
            ledger.create(user, "Test Token", "TEST", "ipfs://test", value=required - 1)

        assert exc.value.required == required
        assert ledger.total_sales() == 0
        assert network[1].balance(user) == 100 * ETHER
        assert network.transport.packets() == []

    def test_messaging_fee_dominates_small_creation_fee(self, user):
        """When the broadcast costs more than the creation fee, the broadcast sets the price."""
        from omnilaunch.network import LaunchNetwork
        net = LaunchNetwork((1, 2), curve=SMALL_CURVE, creation_fee=0)
        net.fund(user, ETHER)
        quote = net[1].ledger.quote_create("Test Token", "TEST", "ipfs://test")
        assert quote.creation_fee == 0
        assert quote.required == quote.messaging_fee > 0

        with pytest.raises(InsufficientFee):
            net[1].ledger.create(user, "Test Token", "TEST", "ipfs://test", value=quote.required - 1)
        net[1].ledger.create(user, "Test Token", "TEST", "ipfs://test", value=quote.required)
        assert net[2].ledger.total_sales() == 1

    def test_fee_split_and_refund(self, network, user):
        """The broadcast is paid from the fee, the owner keeps the rest, excess returns."""
        node = network[1]
        quote = node.ledger.quote_create("Test Token", "TEST", "ipfs://test")
        result = node.ledger.create(user, "Test Token", "TEST", "ipfs://test", value=quote.required + 5)

        assert result.refund == 5
        assert node.balance(user) == 100 * ETHER - quote.required
        assert node.balance(node.owner) == quote.required - quote.messaging_fee
        assert node.balance(node.endpoint.address) == quote.messaging_fee
        assert node.balance(node.ledger.address) == 0

    def test_creator_override(self, network, user, other_user):
        """A non-zero override names someone else as creator."""
        ledger = network[1].ledger
        required = ledger.quote_create("Test Token", "TEST", "ipfs://test").required
        result = ledger.create(user, "Test Token", "TEST", "ipfs://test", other_user, required)
        assert result.creator == other_user
        assert network[2].ledger.get_sale(0).creator == other_user

    def test_zero_override_means_caller(self, network, user):
        ledger = network[1].ledger
        required = ledger.quote_create("Test Token", "TEST", "ipfs://test").required
        result = ledger.create(user, "Test Token", "TEST", "ipfs://test", ZERO_ADDRESS, required)
        assert result.creator == user

    @pytest.mark.parametrize("name,symbol", [
        ("", "TEST"),
        ("Test Token", ""),
        ("Test Token", "TOO-LONG-SYMBOL"),
        ("x" * 65, "TEST"),
    ])
    def test_invalid_metadata_rejected(self, network, user, name, symbol):
        with pytest.raises(ValidationErrors):
            network[1].ledger.create(user, name, symbol, "ipfs://test", value=ETHER)
        assert network[1].ledger.total_sales() == 0

    def test_sale_created_event(self, network, user):
        launch(network, 1, user)
        events = network[1].bus.history(SaleCreated)
        assert len(events) == 1
        assert events[0].symbol == "TEST"
        assert events[0].chain_id == 1

    def test_distinct_token_addresses(self, network, user):
        first = launch(network, 1, user)
        second = launch(network, 1, user, name="Other", symbol="OTH")
        assert first.token != second.token
        assert second.sale_index == 1


# =============================================================================
# TRADING
# =============================================================================

class TestBuy:
    """Tests for buying on the curve."""

    def test_buy_updates_sale_and_balances(self, network, user):
        launch(network, 1, user)
        receipt = buy(network, 1, user, 0, 100 * ETHER)

        sale = network[1].ledger.get_sale(0)
        assert receipt.native_amount == ETHER // 10
        assert (sale.sold, sale.raised) == (100 * ETHER, ETHER // 10)
        assert network[1].ledger.token(sale.token).balance_of(user) == 100 * ETHER
        assert len(network[1].bus.history(TokensBought)) == 1

    def test_value_must_cover_cost_and_messaging(self, network, user):
        """The sync fee is part of the price of a buy."""
        launch(network, 1, user)
        quote = network[1].ledger.quote_buy(0, 100 * ETHER)
        assert quote.messaging_fee > 0
        with pytest.raises(InsufficientFee):
            network[1].ledger.buy(user, 0, 100 * ETHER, quote.native_amount + quote.messaging_fee - 1)
        assert network[1].ledger.get_sale(0).sold == 0

    def test_excess_value_refunded(self, network, user):
        launch(network, 1, user)
        before = network[1].balance(user)
        quote = network[1].ledger.quote_buy(0, 100 * ETHER)
        receipt = network[1].ledger.buy(user, 0, 100 * ETHER, ETHER)
        assert receipt.refund == ETHER - quote.native_amount - quote.messaging_fee
        assert network[1].balance(user) == before - quote.native_amount - quote.messaging_fee

    def test_buyer_without_funds_rejected(self, network, user):
        launch(network, 1, user)
        broke = account("broke")
        with pytest.raises(InsufficientBalance):
            network[1].ledger.buy(broke, 0, ETHER, ETHER)

    def test_unknown_sale(self, network, user):
        with pytest.raises(UnknownSale):
            network[1].ledger.buy(user, 5, ETHER, ETHER)

    def test_caller_spelling_shares_one_account(self, network, user):
        """A lowercase caller trades from the same balances as its checksummed form."""
        launch(network, 1, user)
        before = network[1].balance(user)
        receipt = buy(network, 1, user.lower(), 0, 100 * ETHER)

        token = network[1].ledger.token_for_sale(0)
        assert token.balance_of(user) == 100 * ETHER
        assert network[1].balance(user) == before - receipt.native_amount - receipt.messaging_fee
        assert network[1].bus.history(TokensBought)[-1].buyer == user

    def test_non_address_caller_rejected(self, network, user):
        launch(network, 1, user)
        with pytest.raises(ValidationErrors):
            network[1].ledger.buy("alice", 0, ETHER, ETHER)

    def test_mirror_not_tradable(self, network, user):
        """Mirrors are display-only until the origin graduates."""
        launch(network, 1, user)
        with pytest.raises(SaleClosed):
            network[2].ledger.buy(user, 0, ETHER, ETHER)
        with pytest.raises(SaleClosed):
            network[2].ledger.quote_sell(0, ETHER)


class TestSell:
    """Tests for selling back to the curve."""

    def test_sell_returns_proceeds(self, network, user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 300 * ETHER)
        before = network[1].balance(user)

        quote = network[1].ledger.quote_sell(0, 100 * ETHER)
        receipt = network[1].ledger.sell(user, 0, 100 * ETHER, value=quote.messaging_fee)

        sale = network[1].ledger.get_sale(0)
        assert receipt.native_amount == ETHER // 10
        assert (sale.sold, sale.raised) == (200 * ETHER, ETHER // 5)
        assert network[1].balance(user) == before + ETHER // 10 - quote.messaging_fee
        assert len(network[1].bus.history(TokensSold)) == 1

    def test_sell_without_tokens_rejected(self, network, user, other_user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 300 * ETHER)
        with pytest.raises(InsufficientBalance):
            network[1].ledger.sell(other_user, 0, 100 * ETHER, value=ETHER)

    def test_sell_needs_messaging_fee(self, network, user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 300 * ETHER)
        with pytest.raises(InsufficientFee):
            network[1].ledger.sell(user, 0, 100 * ETHER, value=0)

    def test_mirror_follows_sells(self, network, user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 300 * ETHER)
        fee = network[1].ledger.quote_sell(0, 100 * ETHER).messaging_fee
        network[1].ledger.sell(user, 0, 100 * ETHER, value=fee)

        origin = network[1].ledger.get_sale(0)
        mirror = network[2].ledger.get_sale(0)
        assert (mirror.sold, mirror.raised) == (origin.sold, origin.raised)


# =============================================================================
# GRADUATION
# =============================================================================

class TestGraduation:
    """Tests for reaching the target."""

    def test_target_buy_graduates(self, network, user):
        """The buy that reaches the target closes the sale and seeds the pool."""
        launch(network, 1, user)
        receipt = buy(network, 1, user, 0, 1_000 * ETHER)

        sale = network[1].ledger.get_sale(0)
        assert sale.is_liquidity_created
        assert not sale.is_open
        assert receipt.liquidity is not None
        assert receipt.liquidity.native_amount == ETHER
        assert receipt.liquidity.token_amount == SMALL_CURVE.total_supply - 1_000 * ETHER
        assert network[1].pool.get_reserves(sale.token) == (ETHER, SMALL_CURVE.total_supply - 1_000 * ETHER)
        assert len(receipt.receipts) == 2

    def test_next_buy_fails(self, network, user):
        """After graduation every curve trade is refused."""
        launch(network, 1, user)
        buy(network, 1, user, 0, 1_000 * ETHER)
        with pytest.raises(TargetReached):
            network[1].ledger.buy(user, 0, ETHER, ETHER)
        with pytest.raises(TargetReached):
            network[1].ledger.sell(user, 0, ETHER, value=ETHER)

    def test_quote_includes_graduation_broadcast(self, network, user):
        launch(network, 1, user)
        small = network[1].ledger.quote_buy(0, 100 * ETHER)
        graduating = network[1].ledger.quote_buy(0, 1_000 * ETHER)
        liquidity_fee = network[1].messenger.quote_broadcast(LiquidityCreatedMessage(SaleKey(1, 0))).native_fee
        assert graduating.messaging_fee == small.messaging_fee + liquidity_fee

    def test_graduation_audited_and_published(self, network, user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 1_000 * ETHER)
        assert network[1].audit.get_events(AuditEventType.SALE_GRADUATED)
        local = [e for e in network[1].bus.history(LiquidityCreated) if not e.remote]
        assert len(local) == 1

    def test_mirror_graduates(self, network, user):
        """LIQUIDITY_CREATED closes and graduates the mirror."""
        launch(network, 1, user)
        buy(network, 1, user, 0, 1_000 * ETHER)
        mirror = network[2].ledger.get_sale(0)
        assert mirror.is_liquidity_created
        assert not mirror.is_open
        assert (mirror.sold, mirror.raised) == (1_000 * ETHER, ETHER)

    def test_failed_migration_undoes_buy(self, network, user, monkeypatch):
        """A graduating buy whose migration fails changes nothing on either chain."""
        launch(network, 1, user)
        ledger = network[1].ledger
        balance = network[1].balance(user)
        sent = len(network.transport.packets())
        monkeypatch.setattr(network[1].pool, "factory", account("someone-else"))

        with pytest.raises(Unauthorized):
            buy(network, 1, user, 0, 1_000 * ETHER)

        sale = ledger.get_sale(0)
        assert (sale.sold, sale.raised) == (0, 0)
        assert sale.is_open and not sale.is_liquidity_created
        assert network[1].balance(user) == balance
        assert ledger.token_for_sale(0).balance_of(user) == 0
        assert len(network.transport.packets()) == sent
        assert network[2].ledger.get_sale(0).sold == 0
        assert network[1].bus.history(TokensBought) == []

    def test_graduation_needs_pool(self, user):
        """Without a pool the graduating buy is refused before any transfer."""
        owner = account("lonely-owner")
        natives = NativeBalances()
        natives.credit(user, 10 * ETHER)
        ledger = SaleLedger(1, owner, natives, curve=BondingCurveMarket(SMALL_CURVE))
        ledger.create(user, "Test Token", "TEST", "ipfs://test", value=ledger.creation_fee)

        with pytest.raises(SaleStateError):
            ledger.buy(user, 0, 1_000 * ETHER, ETHER)
        assert ledger.get_sale(0).sold == 0

        ledger.buy(user, 0, 500 * ETHER, ETHER // 2)
        assert ledger.get_sale(0).raised == ETHER // 2


# =============================================================================
# ADMINISTRATION AND INBOUND
# =============================================================================

class TestAdministration:
    """Tests for owner-only wiring."""

    def test_collaborators_owner_only(self, network, user):
        node = network[1]
        with pytest.raises(Unauthorized):
            node.ledger.set_liquidity_pool(user, node.pool)
        with pytest.raises(Unauthorized):
            node.ledger.set_cross_chain_messenger(user, node.messenger)
        assert node.audit.get_events(AuditEventType.AUTHZ_DENIED)

    def test_foreign_pool_rejected(self, network):
        """Only a pool this ledger is the factory of can receive its graduations."""
        node = network[1]
        foreign = LiquidityPool(account("foreign-pool"), node.owner, node.natives)
        with pytest.raises(ValidationErrors):
            node.ledger.set_liquidity_pool(node.owner, foreign)
        assert node.ledger.pool is node.pool

    def test_owner_in_any_case_accepted(self, network):
        node = network[1]
        node.ledger.set_liquidity_pool(node.owner.lower(), node.pool)
        record = node.audit.get_events(AuditEventType.COLLABORATOR_SET)[-1]
        assert record.actor == node.owner

    def test_apply_requires_messenger(self, network, user):
        """Inbound entry points are reserved for the messenger."""
        ledger = network[2].ledger
        with pytest.raises(Unauthorized):
            ledger.apply_create_token(user, 1, CreateToken("T", "T", "", user, 0))
        with pytest.raises(Unauthorized):
            ledger.apply_bridge_tokens(user, 1, BridgeTokens(SaleKey(1, 0), 1, 1, Direction.BUY))
        with pytest.raises(Unauthorized):
            ledger.apply_liquidity_created(user, 1, LiquidityCreatedMessage(SaleKey(1, 0)))

    def test_get_sale_is_snapshot(self, network, user):
        launch(network, 1, user)
        snapshot = network[1].ledger.get_sale(0)
        snapshot.bought = 123
        assert network[1].ledger.get_sale(0).sold == 0


class TestInboundApplication:
    """Tests for the ledger side of inbound messages."""

    def _messenger(self, network):
        return network[2].messenger.address

    def test_mirror_resolution(self, network, user):
        launch(network, 1, user)
        ledger = network[2].ledger
        assert ledger.resolve(SaleKey(1, 0)) == 0
        assert ledger.find_mirror(SaleKey(1, 0)) == 0
        assert ledger.find_mirror(SaleKey(1, 1)) is None
        with pytest.raises(UnknownSale):
            ledger.resolve(SaleKey(3, 0))

    def test_mirror_keeps_metadata(self, network, user):
        result = launch(network, 1, user)
        mirror = network[2].ledger.get_sale(0)
        token = network[2].ledger.token_for_sale(0)
        assert (token.name, token.symbol, token.metadata_uri) == ("Test Token", "TEST", "ipfs://test")
        assert (mirror.origin_chain_id, mirror.origin_index) == (1, result.sale_index)
        assert not mirror.is_local

    def test_liquidity_created_replay_is_noop(self, network, user):
        launch(network, 1, user)
        buy(network, 1, user, 0, 1_000 * ETHER)
        outcome = network[2].ledger.apply_liquidity_created(
            self._messenger(network), 1, LiquidityCreatedMessage(SaleKey(1, 0)),
        )
        assert outcome is ApplyOutcome.DUPLICATE

    def test_delta_from_non_origin_chain_rejected(self, network, user):
        """Only the chain that created a sale reports on it."""
        from omnilaunch.errors import MalformedMessage
        launch(network, 1, user)
        with pytest.raises(MalformedMessage):
            network[2].ledger.apply_bridge_tokens(
                self._messenger(network), 3, BridgeTokens(SaleKey(1, 0), ETHER, ETHER, Direction.BUY),
            )
        assert network[2].ledger.get_sale(0).sold == 0

    def test_delta_for_unknown_sale_rejected(self, network):
        with pytest.raises(UnknownSale):
            network[2].ledger.apply_bridge_tokens(
                self._messenger(network), 1, BridgeTokens(SaleKey(1, 4), ETHER, ETHER, Direction.BUY),
            )
