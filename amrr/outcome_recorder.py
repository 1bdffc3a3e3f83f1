"""
Outcome recorder for amrr-rate-control

Turns link-layer transmission reports into counter updates on a
PeerRateState. No rate decision is taken here; the next reevaluation
consumes the counters.
"""

import logging
from typing import Optional

from .config import LOG_LEVELS
from .peer_state import PeerRateState


class OutcomeRecorder:
    """
    Accumulates transmission outcomes for a peer.

    Data-frame reports update counters. RTS and receive reports are
    accepted and logged but do not change state.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("amrr.outcome_recorder")

    def _log(self, message: str, level: str = 'debug') -> None:
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), message)

    def record_data_ok(self, peer: str, state: PeerRateState) -> None:
        """Data frame acknowledged."""
        state.in_flight_retry_count = 0
        state.ok_count += 1
        self._log(f"{peer}: data ok (ok={state.ok_count})")

    def record_data_failed(self, peer: str, state: PeerRateState) -> None:
        """
        Data attempt failed; the frame will be retried.

        The failure also counts toward the window's retry counter, so a
        frame that eventually succeeds still contributes its intermediate
        failures to the long-run failure ratio.
        """
        state.in_flight_retry_count += 1
        state.retry_count += 1
        self._log(
            f"{peer}: data failed (retry={state.in_flight_retry_count}, "
            f"retr={state.retry_count})"
        )

    def record_final_data_failed(self, peer: str, state: PeerRateState) -> None:
        """Data frame dropped after exhausting its attempts."""
        state.in_flight_retry_count = 0
        state.err_count += 1
        self._log(f"{peer}: data dropped (err={state.err_count})")

    def record_rts_ok(self, peer: str, state: PeerRateState) -> None:
        self._log(f"{peer}: rts ok")

    def record_rts_failed(self, peer: str, state: PeerRateState) -> None:
        self._log(f"{peer}: rts failed")

    def record_final_rts_failed(self, peer: str, state: PeerRateState) -> None:
        self._log(f"{peer}: rts dropped")

    def record_rx_ok(self, peer: str, state: PeerRateState) -> None:
        self._log(f"{peer}: rx ok")
