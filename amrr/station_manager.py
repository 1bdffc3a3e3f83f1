"""
Station manager module for amrr-rate-control

Registry of remote peers. Stores the AMRR PeerRateState for each peer
directly, keyed by peer address, together with the capability data the
controller queries but never computes (supported modes, channel width,
aggregation support).

Thread Safety:
    The registry dictionaries are guarded by one lock. Each peer also
    gets its own RLock (lock_for) so operations on peer A never wait on
    peer B.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Callable

from .config import Config
from .errors import UnsupportedCapabilityError
from .peer_state import PeerRateState
from .rates import RateMode, is_legacy, non_erp_subset


@dataclass
class PeerCapabilities:
    """
    What a peer supports, as reported by the surrounding link layer.

    Attributes:
        supported_modes: Transmit modes ordered from most robust to fastest
        non_erp_modes: Modes usable under non-ERP protection; derived from
                       supported_modes (DSSS / HR-DSSS only) when None
        channel_width: Channel width negotiated with the peer (MHz)
        aggregation: Whether frame aggregation may be used with the peer
        ht_supported / vht_supported / he_supported: High-throughput capability flags
    """
    supported_modes: List[RateMode] = field(default_factory=list)
    non_erp_modes: Optional[List[RateMode]] = None
    channel_width: int = 20
    aggregation: bool = False
    ht_supported: bool = False
    vht_supported: bool = False
    he_supported: bool = False

    @property
    def num_supported(self) -> int:
        return len(self.supported_modes)

    def non_erp_or_supported(self) -> List[RateMode]:
        """Non-ERP subset, falling back to the full list when it is empty."""
        modes = self.non_erp_modes
        if modes is None:
            modes = non_erp_subset(self.supported_modes)
        return modes or self.supported_modes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supported_modes": [m.name for m in self.supported_modes],
            "non_erp_modes": [m.name for m in self.non_erp_or_supported()],
            "channel_width": self.channel_width,
            "aggregation": self.aggregation,
            "ht_supported": self.ht_supported,
            "vht_supported": self.vht_supported,
            "he_supported": self.he_supported,
        }


def check_capabilities(capabilities: PeerCapabilities, owner: str = "station") -> None:
    """
    Reject capability sets AMRR cannot drive.

    Raises:
        UnsupportedCapabilityError: HT/VHT/HE advertised, a non-legacy mode
            in the list, or no supported modes at all
    """
    for flag, label in (('ht_supported', 'HT'),
                        ('vht_supported', 'VHT'),
                        ('he_supported', 'HE')):
        if getattr(capabilities, flag):
            raise UnsupportedCapabilityError(
                f"{owner}: AMRR does not support {label} rates", field=flag
            )
    if not capabilities.supported_modes:
        raise UnsupportedCapabilityError(
            f"{owner}: no supported modes", field='supported_modes'
        )
    for mode in capabilities.supported_modes:
        if not is_legacy(mode):
            raise UnsupportedCapabilityError(
                f"{owner}: mode {mode.name} ({mode.modulation_class.value}) is not a legacy mode",
                field='supported_modes'
            )


class StationManager:
    """
    Registry of per-peer AMRR state and peer capabilities.

    Peers are created lazily the first time they are used; add_peer is
    only needed to register capabilities that differ from the defaults.
    """

    def __init__(self, config: Config, default_capabilities: PeerCapabilities,
                 use_non_erp_protection: bool = False,
                 short_preamble_enabled: bool = False,
                 default_tx_power_level: int = 0):
        """
        Initialize the registry.

        Args:
            config: Controller configuration
            default_capabilities: Capabilities for peers without their own entry
            use_non_erp_protection: RTS frames use the non-ERP subset when set
            short_preamble_enabled: Use short preambles where the mode allows
            default_tx_power_level: Power level placed in every TxVector
        """
        self.config = config
        self.default_capabilities = default_capabilities
        self.use_non_erp_protection = use_non_erp_protection
        self.short_preamble_enabled = short_preamble_enabled
        self.default_tx_power_level = default_tx_power_level

        self._lock = threading.Lock()
        self._states: Dict[str, PeerRateState] = {}
        self._capabilities: Dict[str, PeerCapabilities] = {}
        self._peer_locks: Dict[str, threading.RLock] = {}

        # Called with the peer address when a peer is removed
        self._on_remove_callbacks: List[Callable[[str], None]] = []

    def add_peer(self, peer: str, capabilities: PeerCapabilities) -> None:
        """Register (or replace) a peer's capabilities."""
        check_capabilities(capabilities, owner=f"peer {peer}")
        with self._lock:
            self._capabilities[peer] = capabilities

    def get_capabilities(self, peer: str) -> PeerCapabilities:
        with self._lock:
            return self._capabilities.get(peer, self.default_capabilities)

    def get_state(self, peer: str, now: float) -> PeerRateState:
        """Return the peer's state, creating it on first contact."""
        with self._lock:
            state = self._states.get(peer)
            if state is None:
                state = PeerRateState.fresh(
                    self.config.min_success_threshold, self.config.update_period, now
                )
                self._states[peer] = state
            return state

    def has_peer(self, peer: str) -> bool:
        with self._lock:
            return peer in self._states

    def reset(self, peer: str, now: float) -> PeerRateState:
        """Discard a peer's adaptation history and start over."""
        state = PeerRateState.fresh(
            self.config.min_success_threshold, self.config.update_period, now
        )
        with self._lock:
            self._states[peer] = state
        return state

    def remove_peer(self, peer: str) -> bool:
        """
        Forget a peer (association ended).

        Returns:
            True if the peer had state or capabilities registered
        """
        with self._lock:
            had_state = self._states.pop(peer, None) is not None
            had_caps = self._capabilities.pop(peer, None) is not None
            # The peer lock outlives the peer; a caller may still hold it
        if had_state or had_caps:
            for callback in list(self._on_remove_callbacks):
                callback(peer)
        return had_state or had_caps

    def on_remove(self, callback: Callable[[str], None]) -> None:
        if callback not in self._on_remove_callbacks:
            self._on_remove_callbacks.append(callback)

    def remove_on_remove(self, callback: Callable[[str], None]) -> None:
        if callback in self._on_remove_callbacks:
            self._on_remove_callbacks.remove(callback)

    def peers(self) -> List[str]:
        with self._lock:
            return sorted(self._states)

    def lock_for(self, peer: str) -> threading.RLock:
        """Per-peer lock; independent of every other peer's lock."""
        with self._lock:
            lock = self._peer_locks.get(peer)
            if lock is None:
                lock = threading.RLock()
                self._peer_locks[peer] = lock
            return lock
