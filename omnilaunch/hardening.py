"""
OMNILAUNCH Validation and Hardening Module

Input validation, address handling and sale invariants shared by the ledger,
the peer registry and the messenger.

1. Launch parameters (name, symbol, metadata URI) are trimmed and bounded
2. Addresses are checksummed; peers are stored as left-padded bytes32
3. Amounts are integers in the smallest unit and fit a uint256
4. Trust comparisons are constant-time

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hmac
import re
import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from web3 import Web3

from omnilaunch.errors import InvalidAmount, LaunchpadError


ZERO_ADDRESS = "0x" + "00" * 20
ZERO_BYTES32 = b"\x00" * 32
MAX_UINT256 = 2**256 - 1


# =============================================================================
# VALIDATION RESULTS
# =============================================================================

@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationErrors(LaunchpadError):
    """One or more launch inputs were rejected."""

    code = "validation_failed"

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        super().__init__("Validation failed: " + "; ".join(str(e) for e in errors))


class InvariantViolation(LaunchpadError):
    code = "invariant_violation"


@dataclass
class ValidationResult:
    """A sanitized value, or the reasons it was rejected."""
    value: Any = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def raise_if_invalid(self) -> None:
        if self.errors:
            raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        self.raise_if_invalid()
        return self.value

    @classmethod
    def reject(cls, field_name: str, message: str, value: Any = None) -> "ValidationResult":
        return cls(errors=[FieldError(field_name, message, value)])


# =============================================================================
# LAUNCH INPUT VALIDATORS
# =============================================================================

class Validators:
    """Validators for values that reach the ledger from callers or the wire."""

    SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9]{1,11}$")

    MAX_NAME_LENGTH = 64
    MAX_URI_LENGTH = 512

    @staticmethod
    def _text(
        value: Any,
        field_name: str,
        max_length: int,
        required: bool = True,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        if not isinstance(value, str):
            return ValidationResult.reject(field_name, f"Expected string, got {type(value).__name__}", value)

        text = value.replace("\x00", "").strip()
        errors = []
        if required and not text:
            errors.append(FieldError(field_name, "Must not be empty", value))
        if len(text) > max_length:
            errors.append(FieldError(field_name, f"Too long (max {max_length} chars)", value))
        if text and pattern and not pattern.match(text):
            errors.append(FieldError(field_name, f"Must match {pattern.pattern}", value))
        return ValidationResult(text, errors)

    @classmethod
    def validate_token_name(cls, value: Any) -> ValidationResult:
        return cls._text(value, "name", cls.MAX_NAME_LENGTH)

    @classmethod
    def validate_symbol(cls, value: Any) -> ValidationResult:
        return cls._text(value, "symbol", 11, pattern=cls.SYMBOL_PATTERN)

    @classmethod
    def validate_metadata_uri(cls, value: Any) -> ValidationResult:
        return cls._text(value, "metadata_uri", cls.MAX_URI_LENGTH, required=False)

    @staticmethod
    def validate_address(value: Any, field_name: str = "address") -> ValidationResult:
        """An EVM address in any case, returned checksummed."""
        if not isinstance(value, str) or not Web3.is_address(value.strip()):
            return ValidationResult.reject(field_name, "Must be an EVM address (0x + 40 hex)", value)
        return ValidationResult(Web3.to_checksum_address(value.strip()))

    @staticmethod
    def validate_amount(value: Any, field_name: str = "amount", allow_zero: bool = False) -> ValidationResult:
        """An integer amount in the smallest unit."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.reject(field_name, f"Expected integer, got {type(value).__name__}", value)
        if value < 0 or (value == 0 and not allow_zero):
            return ValidationResult.reject(field_name, "Must be positive", value)
        if value > MAX_UINT256:
            return ValidationResult.reject(field_name, "Exceeds uint256", value)
        return ValidationResult(value)


def require_amount(value: Any, field_name: str = "amount", allow_zero: bool = False) -> int:
    """Like ``Validators.validate_amount`` but raises InvalidAmount."""
    result = Validators.validate_amount(value, field_name, allow_zero=allow_zero)
    if not result.is_valid:
        raise InvalidAmount(str(result.errors[0]), field=field_name, value=value)
    return result.value


# =============================================================================
# ADDRESSES
# =============================================================================

def checksum_address(value: Any, field_name: str = "address") -> str:
    """``value`` in checksum form; raises ValidationErrors when it is not an address."""
    return Validators.validate_address(value, field_name).unwrap()


def to_bytes32(address: Union[str, bytes]) -> bytes:
    """Left zero-pad a 20-byte address to the 32-byte peer width."""
    raw = bytes.fromhex(checksum_address(address)[2:]) if isinstance(address, str) else bytes(address)
    if len(raw) > 32:
        raise ValidationErrors([FieldError("address", "Longer than 32 bytes", address)])
    return raw.rjust(32, b"\x00")


def from_bytes32(value: bytes) -> str:
    """The checksummed address held in the low 20 bytes of a bytes32 peer."""
    if len(value) != 32:
        raise ValidationErrors([FieldError("bytes32", "Must be exactly 32 bytes", value)])
    return Web3.to_checksum_address("0x" + value[-20:].hex())


def derive_address(deployer: str, nonce: int) -> str:
    """Deterministic contract-style address for objects a ledger instantiates."""
    digest = Web3.keccak(to_bytes32(deployer) + nonce.to_bytes(32, "big"))
    return Web3.to_checksum_address("0x" + bytes(digest[-20:]).hex())


def is_zero_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


class CryptoUtils:
    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time equality for peer checks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def keccak_hex(data: bytes) -> str:
        return "0x" + bytes(Web3.keccak(data)).hex()


class AtomicCounter:
    """Lock-guarded counter for nonces and versions."""

    def __init__(self, start: int = 0):
        self._current = start
        self._lock = threading.Lock()

    def increment(self, step: int = 1) -> int:
        """Advance and return the new value."""
        with self._lock:
            self._current += step
            return self._current

    def get(self) -> int:
        with self._lock:
            return self._current


# =============================================================================
# SALE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Checks run by the ledger and the migrator after mutating a sale."""

    @staticmethod
    def check_monotonic_increase(counter: str, before: int, after: int) -> None:
        """Grow-only sale counters never shrink."""
        if after < before:
            raise InvariantViolation(f"{counter} decreased from {before} to {after}")

    @staticmethod
    def check_non_negative(counter: str, value: int) -> None:
        if value < 0:
            raise InvariantViolation(f"{counter} is negative: {value}")

    @staticmethod
    def check_graduation_closed(is_liquidity_created: bool, is_open: bool) -> None:
        if is_liquidity_created and is_open:
            raise InvariantViolation("Graduated sale must be closed")
