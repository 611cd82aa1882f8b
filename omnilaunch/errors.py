"""
OMNILAUNCH Error Taxonomy

Every failure the launchpad surfaces derives from LaunchpadError and carries a
stable ``code`` that structured logs and the CLI report verbatim.

    LaunchpadError
    ├── FeeError
    │   └── InsufficientFee          re-quote and retry
    ├── TrustError
    │   ├── PeerNotSet               admin must register the peer
    │   ├── UntrustedSender          spoofed or misconfigured origin
    │   └── Unauthorized             caller lacks the owner role
    ├── SaleStateError
    │   ├── CurveExhausted           expected terminal state
    │   ├── TargetReached            expected terminal state
    │   ├── SaleClosed
    │   ├── AlreadyGraduated
    │   └── UnknownSale              remote event for an unmirrored sale
    ├── MessageError
    │   ├── MalformedMessage
    │   ├── PayloadTooLarge
    │   └── ResourceBudgetExceeded
    └── AmountError
        ├── InvalidAmount
        └── InsufficientBalance

A replayed message is not an error: the messenger reports it as
``ApplyOutcome.DUPLICATE`` and leaves state untouched.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LaunchpadError(Exception):
    """Base class for launchpad failures."""

    code = "launchpad_error"

    def __init__(self, message: str = "", **details: Any):
        self.message = message or self.__class__.__name__
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


# =============================================================================
# FEES
# =============================================================================

class FeeError(LaunchpadError):
    code = "fee_error"


class InsufficientFee(FeeError):
    """Attached native value is below the required fee."""

    code = "insufficient_fee"

    def __init__(self, required: int, provided: int):
        self.required = required
        self.provided = provided
        super().__init__(
            f"Insufficient fee: required {required}, provided {provided}",
            required=required,
            provided=provided,
        )


# =============================================================================
# TRUST
# =============================================================================

class TrustError(LaunchpadError):
    code = "trust_error"


class PeerNotSet(TrustError):
    code = "peer_not_set"

    def __init__(self, chain_id: int):
        self.chain_id = chain_id
        super().__init__(f"No trusted peer for chain {chain_id}", chain_id=chain_id)


class UntrustedSender(TrustError):
    code = "untrusted_sender"

    def __init__(self, chain_id: int, sender: bytes):
        self.chain_id = chain_id
        self.sender = sender
        super().__init__(
            f"Sender 0x{sender.hex()} is not the trusted peer for chain {chain_id}",
            chain_id=chain_id,
            sender="0x" + sender.hex(),
        )


class Unauthorized(TrustError):
    code = "unauthorized"


# =============================================================================
# SALE STATE
# =============================================================================

class SaleStateError(LaunchpadError):
    code = "sale_state_error"


class CurveExhausted(SaleStateError):
    """A buy would push ``sold`` past the curve's token limit."""

    code = "curve_exhausted"


class TargetReached(SaleStateError):
    """The sale already met its graduation target."""

    code = "target_reached"


class SaleClosed(SaleStateError):
    code = "sale_closed"


class AlreadyGraduated(SaleStateError):
    code = "already_graduated"


class UnknownSale(SaleStateError):
    code = "unknown_sale"

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Unknown sale {key}", key=key)


# =============================================================================
# MESSAGES
# =============================================================================

class MessageError(LaunchpadError):
    code = "message_error"


class MalformedMessage(MessageError):
    code = "malformed_message"


class PayloadTooLarge(MessageError):
    code = "payload_too_large"

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Payload of {size} bytes exceeds {limit}", size=size, limit=limit)


class ResourceBudgetExceeded(MessageError):
    code = "resource_budget_exceeded"


# =============================================================================
# AMOUNTS
# =============================================================================

class AmountError(LaunchpadError):
    code = "amount_error"


class InvalidAmount(AmountError):
    code = "invalid_amount"


class InsufficientBalance(AmountError):
    code = "insufficient_balance"

    def __init__(self, account: str, required: int, available: int, token: Optional[str] = None):
        self.account = account
        self.required = required
        self.available = available
        super().__init__(
            f"{account} holds {available}, needs {required}",
            account=account,
            required=required,
            available=available,
            token=token or "native",
        )
