"""
OMNILAUNCH Peer Registry

Maps remote chain ids to the trusted messenger endpoint on that chain.

Trust and send targets are kept apart: ``set_peer`` stages the address the
chain will accept messages from, ``add_peer_chain`` makes the chain a target
for outbound broadcasts. A chain with no registered address rejects every
inbound message claiming that origin; nothing is trusted implicitly.

Every change is a new version in a ``VersionedStore`` and an entry in the
hash-chained audit log. Last write wins.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Union

from omnilaunch.errors import LaunchpadError, PeerNotSet, Unauthorized
from omnilaunch.hardening import ZERO_BYTES32, CryptoUtils, Validators, checksum_address, to_bytes32
from omnilaunch.observability import LaunchLayer, get_logger
from omnilaunch.security import AuditEventType, AuditLogger, VersionedStore, VersionedValue

logger = get_logger("registry", LaunchLayer.PEERS)


@dataclass(frozen=True)
class PeerChain:
    chain_id: int
    address: bytes
    enabled: bool
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "address": "0x" + self.address.hex(),
            "enabled": self.enabled,
            "version": self.version,
        }


class PeerRegistry:
    """Trusted remote endpoints per chain, owned by one administrator."""

    def __init__(self, owner: str, audit: Optional[AuditLogger] = None):
        self.owner = checksum_address(owner, "owner")
        self.audit = audit or AuditLogger()
        self._addresses: VersionedStore[bytes] = VersionedStore()
        self._enabled: Set[int] = set()
        self._lock = threading.RLock()

    def _require_owner(self, caller: str, action: str) -> str:
        """The checksummed caller, when it is the owner."""
        checked = Validators.validate_address(caller, "caller")
        if not checked.is_valid or checked.value != self.owner:
            self.audit.log(
                AuditEventType.AUTHZ_DENIED, caller, "peer_registry", action, action, outcome="failure",
            )
            raise Unauthorized(f"{caller} may not {action}", caller=caller)
        return checked.value

    def set_peer(self, caller: str, chain_id: int, remote_address: Union[str, bytes]) -> PeerChain:
        """Register (or overwrite) the trusted endpoint for a chain."""
        caller = self._require_owner(caller, "set_peer")
        address = to_bytes32(remote_address)

        with self._lock:
            previous = self._addresses.get(chain_id)
            versioned = self._addresses.set(chain_id, address)
            self.audit.log(
                AuditEventType.PEER_SET,
                caller,
                "peer",
                str(chain_id),
                "set_peer",
                details={
                    "address": "0x" + address.hex(),
                    "previous": "0x" + previous.value.hex() if previous else None,
                    "version": versioned.version,
                },
            )
            logger.info("Peer set", chain_id=chain_id, version=versioned.version, address="0x" + address.hex())
            return self._peer_locked(chain_id)

    def add_peer_chain(self, caller: str, chain_id: int) -> None:
        """Enable a chain as an outbound target."""
        caller = self._require_owner(caller, "add_peer_chain")
        with self._lock:
            self._enabled.add(chain_id)
        self.audit.log(AuditEventType.PEER_CHAIN_ADDED, caller, "peer", str(chain_id), "add_peer_chain")
        logger.info("Peer chain enabled", chain_id=chain_id)

    def remove_peer_chain(self, caller: str, chain_id: int) -> None:
        caller = self._require_owner(caller, "remove_peer_chain")
        with self._lock:
            self._enabled.discard(chain_id)
        self.audit.log(AuditEventType.PEER_CHAIN_REMOVED, caller, "peer", str(chain_id), "remove_peer_chain")
        logger.info("Peer chain disabled", chain_id=chain_id)

    def _peer_locked(self, chain_id: int) -> Optional[PeerChain]:
        current = self._addresses.get(chain_id)
        if current is None or current.value == ZERO_BYTES32:
            return None
        return PeerChain(
            chain_id=chain_id,
            address=current.value,
            enabled=chain_id in self._enabled,
            version=current.version,
        )

    def peer(self, chain_id: int) -> Optional[PeerChain]:
        with self._lock:
            return self._peer_locked(chain_id)

    def require_send_target(self, chain_id: int) -> PeerChain:
        """Return the peer for an outbound send, or raise PeerNotSet."""
        peer = self.peer(chain_id)
        if peer is None or not peer.enabled:
            raise PeerNotSet(chain_id)
        return peer

    def is_trusted_sender(self, chain_id: int, claimed_address: Union[str, bytes]) -> bool:
        peer = self.peer(chain_id)
        if peer is None:
            return False
        try:
            claimed = to_bytes32(claimed_address)
        except LaunchpadError:
            return False
        return CryptoUtils.secure_compare(peer.address, claimed)

    def enabled_chains(self) -> List[int]:
        """Chains that are enabled and have a registered address."""
        with self._lock:
            return sorted(c for c in self._enabled if self._peer_locked(c) is not None)

    def history(self, chain_id: int) -> List[VersionedValue[bytes]]:
        return self._addresses.history(chain_id)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            chains = sorted(set(self._addresses.keys()) | self._enabled)
            peers = [self._peer_locked(c) for c in chains]
        return {
            "owner": self.owner,
            "peers": [p.to_dict() for p in peers if p is not None],
            "config_version": self._addresses.version,
        }
