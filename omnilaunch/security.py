"""
OMNILAUNCH Security Layer

Replay protection and tamper-evident history for one chain's launchpad.

1. Delivery Registry - every guid and CREATE_TOKEN identity applies once
2. Versioned Store - peer configuration with monotonic versions
3. Audit Log - hash-chained record of admin, trust and graduation decisions

Audit records are chained the way on-chain logs would be verified: each
digest is the keccak of the ABI-encoded record, including the digest of the
record before it. The first record links to a zero digest.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, Hashable, List, Optional, Tuple, TypeVar

from eth_abi import encode

from omnilaunch.hardening import AtomicCounter, CryptoUtils


# =============================================================================
# DELIVERY REGISTRY
# =============================================================================

class DeliveryRegistry:
    """
    Keys of messages that have been applied.

    Entries never expire: a transport may redeliver a message at any point in
    the future and the second application must still be refused.
    """

    def __init__(self):
        self._applied_at: Dict[Hashable, str] = {}
        self._lock = threading.Lock()

    def check_and_register(self, key: Hashable) -> bool:
        """Register ``key``. False when it was already applied."""
        with self._lock:
            if key in self._applied_at:
                return False
            self._applied_at[key] = datetime.now(timezone.utc).isoformat()
            return True

    def is_fresh(self, key: Hashable) -> bool:
        with self._lock:
            return key not in self._applied_at

    def size(self) -> int:
        with self._lock:
            return len(self._applied_at)


# =============================================================================
# VERSIONED CONFIGURATION
# =============================================================================

T = TypeVar("T")


@dataclass
class VersionedValue(Generic[T]):
    value: T
    version: int
    updated_at: str


class VersionedStore(Generic[T]):
    """
    Keyed values stamped with a store-wide version.

    Versions are strictly increasing across all keys, so the most recent
    write anywhere carries the highest version. Every write is kept in the
    key's history.
    """

    def __init__(self):
        self._history: Dict[Hashable, List[VersionedValue[T]]] = {}
        self._lock = threading.RLock()
        self._versions = AtomicCounter(0)

    def get(self, key: Hashable) -> Optional[VersionedValue[T]]:
        with self._lock:
            writes = self._history.get(key)
            return writes[-1] if writes else None

    def set(self, key: Hashable, value: T) -> VersionedValue[T]:
        with self._lock:
            entry = VersionedValue(value, self._versions.increment(), datetime.now(timezone.utc).isoformat())
            self._history.setdefault(key, []).append(entry)
            return entry

    def history(self, key: Hashable) -> List[VersionedValue[T]]:
        """Every value written for ``key``, oldest first."""
        with self._lock:
            return list(self._history.get(key, []))

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._history)

    @property
    def version(self) -> int:
        return self._versions.get()


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditEventType(Enum):
    # Configuration
    PEER_SET = "peer_set"
    PEER_CHAIN_ADDED = "peer_chain_added"
    PEER_CHAIN_REMOVED = "peer_chain_removed"
    OPTIONS_SET = "options_set"
    BUDGET_SET = "budget_set"
    COLLABORATOR_SET = "collaborator_set"

    # Authorization
    AUTHZ_DENIED = "authz_denied"

    # Inbound messages
    SENDER_REJECTED = "sender_rejected"
    REPLAY_ATTEMPT = "replay_attempt"

    # Sale lifecycle
    SALE_GRADUATED = "sale_graduated"


GENESIS_DIGEST = "0x" + "00" * 32

_RECORD_ABI = ["uint64", "uint64", "string", "string", "string", "string", "string", "bool", "string", "bytes32"]


@dataclass
class AuditRecord:
    """
    One audited decision on a chain.

    ``scope`` names what kind of thing ``subject`` is: a peer chain id, a sale
    key, a message guid or a contract address.
    """
    sequence: int
    chain_id: int
    kind: AuditEventType
    actor: str
    scope: str
    subject: str
    action: str
    succeeded: bool
    recorded_at: str
    details: Dict[str, Any] = field(default_factory=dict)
    previous_digest: str = GENESIS_DIGEST
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            self.digest = self.compute_digest()

    @property
    def outcome(self) -> str:
        return "success" if self.succeeded else "failure"

    def compute_digest(self) -> str:
        encoded = encode(_RECORD_ABI, [
            self.sequence,
            self.chain_id,
            self.kind.value,
            self.actor,
            self.scope,
            self.subject,
            self.action,
            self.succeeded,
            json.dumps(self.details, sort_keys=True, separators=(",", ":"), default=str),
            bytes.fromhex(self.previous_digest[2:]),
        ])
        return CryptoUtils.keccak_hex(encoded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "chain_id": self.chain_id,
            "kind": self.kind.value,
            "actor": self.actor,
            "scope": self.scope,
            "subject": self.subject,
            "action": self.action,
            "outcome": self.outcome,
            "recorded_at": self.recorded_at,
            "details": self.details,
            "previous_digest": self.previous_digest,
            "digest": self.digest,
        }


class AuditLogger:
    """Append-only, hash-chained audit log of one chain."""

    def __init__(self, chain_id: int = 0):
        self.chain_id = chain_id
        self._records: List[AuditRecord] = []
        self._lock = threading.Lock()

    @property
    def head(self) -> str:
        """Digest of the latest record; the zero digest when empty."""
        with self._lock:
            return self._records[-1].digest if self._records else GENESIS_DIGEST

    def log(
        self,
        kind: AuditEventType,
        actor: str,
        scope: str,
        subject: str,
        action: str,
        outcome: str = "success",
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        with self._lock:
            record = AuditRecord(
                sequence=len(self._records) + 1,
                chain_id=self.chain_id,
                kind=kind,
                actor=actor,
                scope=scope,
                subject=subject,
                action=action,
                succeeded=outcome == "success",
                recorded_at=datetime.now(timezone.utc).isoformat(),
                details=dict(details or {}),
                previous_digest=self._records[-1].digest if self._records else GENESIS_DIGEST,
            )
            self._records.append(record)
            return record

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """(True, None) when intact, else (False, index of the first bad record)."""
        with self._lock:
            previous = GENESIS_DIGEST
            for i, record in enumerate(self._records):
                if record.previous_digest != previous or record.compute_digest() != record.digest:
                    return (False, i)
                previous = record.digest
            return (True, None)

    def get_events(
        self,
        kind: Optional[AuditEventType] = None,
        subject: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        with self._lock:
            records = [
                r for r in self._records
                if (kind is None or r.kind is kind) and (subject is None or r.subject == subject)
            ]
        return records[-limit:]

    def export(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [r.to_dict() for r in self._records]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
