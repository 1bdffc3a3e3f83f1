"""
AMRR rate controller for amrr-rate-control

Adaptive Multi Rate Retry: a per-peer transmit-rate controller driven by
acknowledgement feedback.

RateController is the interface the frame-transmission path talks to;
other algorithms can implement it and be swapped in. AmrrRateController
is the AMRR implementation. It wires together:
- StationManager: per-peer state and capabilities
- OutcomeRecorder: counter updates from transmission reports
- ReevaluationEngine: the periodic promote / demote decision
- RateSelector: data and RTS TxVectors

Outcome reports only update counters. All decisions happen lazily on the
next rate request after a peer's update period has elapsed.

Every public operation holds the peer's own lock for its duration.
"""

import abc
import logging
import time
from enum import Enum
from typing import Dict, List, Optional, Any, Callable

from .config import Config, LOG_LEVELS
from .outcome_recorder import OutcomeRecorder
from .peer_state import PeerRateState
from .rate_selector import RateSelector, RateChange, fallback_index
from .rates import TxVector, modes_for_standard
from .reevaluation import ReevaluationEngine, ReevaluationResult
from .station_manager import StationManager, PeerCapabilities, check_capabilities


class Outcome(Enum):
    """Transmission reports delivered by the link layer."""
    DATA_OK = "data_ok"
    DATA_FAILED = "data_failed"
    FINAL_DATA_FAILED = "final_data_failed"
    RTS_OK = "rts_ok"
    RTS_FAILED = "rts_failed"
    FINAL_RTS_FAILED = "final_rts_failed"
    RX_OK = "rx_ok"


class RateController(abc.ABC):
    """Interface for a per-peer transmit-rate control algorithm."""

    @abc.abstractmethod
    def on_outcome(self, peer: str, outcome: Outcome,
                   now: Optional[float] = None) -> None:
        """Deliver a transmission report for peer."""

    @abc.abstractmethod
    def select_data_rate(self, peer: str, allowed_width: Optional[int] = None,
                         now: Optional[float] = None) -> TxVector:
        """TxVector for the next data frame attempt to peer."""

    @abc.abstractmethod
    def select_rts_rate(self, peer: str, now: Optional[float] = None) -> TxVector:
        """TxVector for an RTS frame to peer."""


class AmrrRateController(RateController):
    """
    AMRR implementation of RateController.

    Usage:
        controller = AmrrRateController(Config(update_period=1.0))
        controller.record_data_ok("aa:bb:cc:dd:ee:01", now=0.1)
        tx = controller.select_data_rate("aa:bb:cc:dd:ee:01", 20, now=1.2)
    """

    def __init__(self, config: Optional[Config] = None,
                 default_capabilities: Optional[PeerCapabilities] = None,
                 use_non_erp_protection: bool = False,
                 short_preamble_enabled: bool = False,
                 default_tx_power_level: int = 0,
                 clock: Callable[[], float] = time.monotonic,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the controller.

        Args:
            config: Tunables (defaults to Config())
            default_capabilities: Capabilities of peers registered without
                their own; defaults to the 802.11a OFDM mode set
            use_non_erp_protection: RTS frames use the non-ERP subset
            short_preamble_enabled: Prefer short preambles
            default_tx_power_level: Power level placed in every TxVector
            clock: Monotonic time source used when callers pass no `now`
            logger: Parent logger; components log to its children

        Raises:
            UnsupportedCapabilityError: default capabilities advertise
                HT/VHT/HE or contain no legacy modes
        """
        self.config = config or Config()
        self.clock = clock
        self.logger = logger or logging.getLogger("amrr")

        if default_capabilities is None:
            default_capabilities = PeerCapabilities(
                supported_modes=modes_for_standard("80211a")
            )
        check_capabilities(default_capabilities, owner="station")

        self.stations = StationManager(
            self.config,
            default_capabilities,
            use_non_erp_protection=use_non_erp_protection,
            short_preamble_enabled=short_preamble_enabled,
            default_tx_power_level=default_tx_power_level,
        )
        self.recorder = OutcomeRecorder(self.logger.getChild("outcome_recorder"))
        self.engine = ReevaluationEngine(self.config, self.logger.getChild("reevaluation"))
        self.selector = RateSelector(
            self.config, self.engine, self.logger.getChild("rate_selector")
        )

        self._reevaluation_listeners: List[
            Callable[[str, ReevaluationResult, PeerRateState], None]
        ] = []

        self._log(
            f"AMRR controller initialized: update_period={self.config.update_period}s "
            f"success_ratio={self.config.success_ratio} "
            f"failure_ratio={self.config.failure_ratio:.3f} "
            f"threshold=[{self.config.min_success_threshold}, "
            f"{self.config.max_success_threshold}]"
        )

    def _log(self, message: str, level: str = 'info') -> None:
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), message)

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    # =========================================================================
    # Peer lifecycle
    # =========================================================================

    def add_peer(self, peer: str, capabilities: PeerCapabilities) -> None:
        """
        Register a peer's capabilities.

        Raises:
            UnsupportedCapabilityError: capabilities AMRR cannot drive
        """
        self.stations.add_peer(peer, capabilities)
        self._log(f"Peer {peer} added with {capabilities.num_supported} modes", level='debug')

    def remove_peer(self, peer: str) -> bool:
        with self.stations.lock_for(peer):
            removed = self.stations.remove_peer(peer)
        if removed:
            self._log(f"Peer {peer} removed", level='debug')
        return removed

    def reset(self, peer: str, now: Optional[float] = None) -> PeerRateState:
        """Restart adaptation for peer from the most robust rate."""
        with self.stations.lock_for(peer):
            return self.stations.reset(peer, self._now(now))

    def get_state(self, peer: str, now: Optional[float] = None) -> PeerRateState:
        """The peer's state, created on first contact."""
        return self.stations.get_state(peer, self._now(now))

    # =========================================================================
    # Outcome reports
    # =========================================================================

    def on_outcome(self, peer: str, outcome: Outcome,
                   now: Optional[float] = None) -> None:
        handler = {
            Outcome.DATA_OK: self.recorder.record_data_ok,
            Outcome.DATA_FAILED: self.recorder.record_data_failed,
            Outcome.FINAL_DATA_FAILED: self.recorder.record_final_data_failed,
            Outcome.RTS_OK: self.recorder.record_rts_ok,
            Outcome.RTS_FAILED: self.recorder.record_rts_failed,
            Outcome.FINAL_RTS_FAILED: self.recorder.record_final_rts_failed,
            Outcome.RX_OK: self.recorder.record_rx_ok,
        }[outcome]
        with self.stations.lock_for(peer):
            handler(peer, self.stations.get_state(peer, self._now(now)))

    def record_data_ok(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.DATA_OK, now)

    def record_data_failed(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.DATA_FAILED, now)

    def record_final_data_failed(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.FINAL_DATA_FAILED, now)

    def record_rts_ok(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.RTS_OK, now)

    def record_rts_failed(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.RTS_FAILED, now)

    def record_final_rts_failed(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.FINAL_RTS_FAILED, now)

    def record_rx_ok(self, peer: str, now: Optional[float] = None) -> None:
        self.on_outcome(peer, Outcome.RX_OK, now)

    # =========================================================================
    # Rate selection
    # =========================================================================

    def select_data_rate(self, peer: str, allowed_width: Optional[int] = None,
                         now: Optional[float] = None) -> TxVector:
        """
        TxVector for the next attempt of the current data frame to peer.

        Args:
            peer: Peer address
            allowed_width: Channel width the frame may use (MHz); defaults
                to the width negotiated with the peer
            now: Current time; defaults to the controller clock
        """
        now = self._now(now)
        capabilities = self.stations.get_capabilities(peer)
        if allowed_width is None:
            allowed_width = capabilities.channel_width
        with self.stations.lock_for(peer):
            state = self.stations.get_state(peer, now)
            tx_vector, result = self.selector.select_data_rate(
                peer, state, capabilities, allowed_width, now,
                tx_power_level=self.stations.default_tx_power_level,
                short_preamble=self.stations.short_preamble_enabled,
            )
            self._notify_reevaluation(peer, result, state)
        return tx_vector

    def select_rts_rate(self, peer: str, now: Optional[float] = None) -> TxVector:
        """TxVector for an RTS frame to peer (most robust mode)."""
        now = self._now(now)
        capabilities = self.stations.get_capabilities(peer)
        with self.stations.lock_for(peer):
            state = self.stations.get_state(peer, now)
            tx_vector, result = self.selector.select_rts_rate(
                peer, state, capabilities, now,
                use_non_erp_protection=self.stations.use_non_erp_protection,
                tx_power_level=self.stations.default_tx_power_level,
                short_preamble=self.stations.short_preamble_enabled,
            )
            self._notify_reevaluation(peer, result, state)
        return tx_vector

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_rate_listener(self, callback: Callable[[RateChange], None]) -> None:
        """Subscribe to data-rate change notifications."""
        self.selector.register_rate_listener(callback)

    def remove_rate_listener(self, callback: Callable[[RateChange], None]) -> None:
        self.selector.unregister_rate_listener(callback)

    def add_reevaluation_listener(
        self, callback: Callable[[str, ReevaluationResult, PeerRateState], None]
    ) -> None:
        """Subscribe to reevaluations that actually ran."""
        if callback not in self._reevaluation_listeners:
            self._reevaluation_listeners.append(callback)

    def remove_reevaluation_listener(
        self, callback: Callable[[str, ReevaluationResult, PeerRateState], None]
    ) -> None:
        if callback in self._reevaluation_listeners:
            self._reevaluation_listeners.remove(callback)

    def _notify_reevaluation(self, peer: str, result: ReevaluationResult,
                             state: PeerRateState) -> None:
        if not result.ran:
            return
        for cb in self._reevaluation_listeners:
            try:
                cb(peer, result, state)
            except Exception as e:
                self._log(f"Reevaluation listener error for {peer}: {e}", level='warn')

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_status(self, peer: str) -> Optional[Dict[str, Any]]:
        """Snapshot of a peer's state, or None for an unknown peer."""
        if not self.stations.has_peer(peer):
            return None
        capabilities = self.stations.get_capabilities(peer)
        with self.stations.lock_for(peer):
            state = self.stations.get_state(peer, self.clock())
            status = state.to_dict()
            attempt_index = fallback_index(state.rate_index, state.in_flight_retry_count)
        status["peer"] = peer
        status["num_supported"] = capabilities.num_supported
        status["current_mode"] = capabilities.supported_modes[
            min(state.rate_index, capabilities.num_supported - 1)
        ].name
        status["attempt_mode"] = capabilities.supported_modes[
            min(attempt_index, capabilities.num_supported - 1)
        ].name
        return status

    def get_all_status(self) -> List[Dict[str, Any]]:
        statuses = []
        for peer in self.stations.peers():
            status = self.get_status(peer)
            if status is not None:
                statuses.append(status)
        return statuses
