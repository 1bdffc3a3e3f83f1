"""
Rate selector for amrr-rate-control

Computes the TxVector for a peer's next data frame or RTS frame.

Data frames:
- Reevaluate first if the peer's update period has elapsed.
- Step down from the long-run rate index by one level per failed
  attempt of the current frame, at most three levels, never below 0.
- Report rate changes to registered listeners.

RTS frames always use the most robust mode (index 0), from the non-ERP
subset when protection is on.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Callable, Tuple

from .config import Config, LOG_LEVELS
from .peer_state import PeerRateState
from .reevaluation import ReevaluationEngine, ReevaluationResult
from .rates import RateMode, TxVector, normalize_channel_width, preamble_for
from .station_manager import PeerCapabilities

# Deepest fallback below the long-run rate for a retried frame
MAX_RETRY_STEP_DOWN = 3


@dataclass(frozen=True)
class RateChange:
    """
    A change of the data rate selected for a peer.

    Attributes:
        peer: Peer address
        old_rate: Previous data rate in bit/s (None on first selection)
        new_rate: New data rate in bit/s
        mode: Name of the newly selected mode
        time: Caller-supplied time of the selection
    """
    peer: str
    old_rate: Optional[int]
    new_rate: int
    mode: str
    time: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peer": self.peer,
            "old_rate": self.old_rate,
            "new_rate": self.new_rate,
            "mode": self.mode,
            "time": self.time,
        }


def fallback_index(rate_index: int, in_flight_retry_count: int) -> int:
    """
    Index to use for this attempt of the current frame.

    retries 0, 1, 2, >=3 step down 0, 1, 2, 3 levels, floored at 0.
    """
    step = min(max(in_flight_retry_count, 0), MAX_RETRY_STEP_DOWN)
    return max(rate_index - step, 0)


class RateSelector:
    """Builds data and RTS TxVectors from a peer's AMRR state."""

    def __init__(self, config: Config, engine: ReevaluationEngine,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.engine = engine
        self.logger = logger or logging.getLogger("amrr.rate_selector")
        self._rate_listeners: List[Callable[[RateChange], None]] = []

    def _log(self, message: str, level: str = 'debug') -> None:
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), message)

    # =========================================================================
    # Rate change listeners
    # =========================================================================

    def register_rate_listener(self, callback: Callable[[RateChange], None]) -> None:
        """Register a callback invoked whenever a peer's data rate changes."""
        if callback not in self._rate_listeners:
            self._rate_listeners.append(callback)
            self._log("RateSelector: Registered rate listener")

    def unregister_rate_listener(self, callback: Callable[[RateChange], None]) -> None:
        """Remove a previously registered callback."""
        if callback in self._rate_listeners:
            self._rate_listeners.remove(callback)

    def _notify_rate_change(self, change: RateChange) -> None:
        for cb in self._rate_listeners:
            try:
                cb(change)
            except Exception as e:
                self._log(
                    f"RateSelector: Listener error for {change.peer}: {e}",
                    level='warn'
                )

    # =========================================================================
    # Selection
    # =========================================================================

    def select_data_rate(self, peer: str, state: PeerRateState,
                         capabilities: PeerCapabilities, allowed_width: int,
                         now: float, tx_power_level: int = 0,
                         short_preamble: bool = False
                         ) -> Tuple[TxVector, ReevaluationResult]:
        """
        TxVector for the next attempt of the peer's current data frame.

        Returns:
            (tx_vector, reevaluation result for this call)
        """
        num_supported = capabilities.num_supported
        result = self.engine.maybe_reevaluate(peer, state, num_supported, now)
        self.engine.check_bounds(peer, state, num_supported)

        width = normalize_channel_width(allowed_width)
        index = fallback_index(state.rate_index, state.in_flight_retry_count)
        mode = capabilities.supported_modes[index]
        rate = mode.data_rate(width)

        if state.last_data_rate != rate:
            self._log(f"{peer}: new datarate {rate} ({mode.name})")
            change = RateChange(
                peer=peer,
                old_rate=state.last_data_rate,
                new_rate=rate,
                mode=mode.name,
                time=now,
            )
            state.last_data_rate = rate
            self._notify_rate_change(change)

        tx_vector = self._build(mode, width, capabilities, tx_power_level, short_preamble)
        return tx_vector, result

    def select_rts_rate(self, peer: str, state: PeerRateState,
                        capabilities: PeerCapabilities, now: float,
                        use_non_erp_protection: bool = False,
                        tx_power_level: int = 0,
                        short_preamble: bool = False
                        ) -> Tuple[TxVector, ReevaluationResult]:
        """
        TxVector for an RTS frame: always the most robust mode.

        Returns:
            (tx_vector, reevaluation result for this call)
        """
        width = normalize_channel_width(capabilities.channel_width)
        result = self.engine.maybe_reevaluate(peer, state, capabilities.num_supported, now)

        if use_non_erp_protection:
            mode = capabilities.non_erp_or_supported()[0]
        else:
            mode = capabilities.supported_modes[0]

        tx_vector = self._build(mode, width, capabilities, tx_power_level, short_preamble)
        return tx_vector, result

    def _build(self, mode: RateMode, width: int, capabilities: PeerCapabilities,
               tx_power_level: int, short_preamble: bool) -> TxVector:
        return TxVector(
            mode=mode,
            tx_power_level=tx_power_level,
            preamble=preamble_for(mode.modulation_class, short_preamble),
            channel_width=width,
            aggregation=capabilities.aggregation,
        )
