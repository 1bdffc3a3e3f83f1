"""
Per-peer adaptation state for amrr-rate-control

PeerRateState holds everything AMRR tracks for one remote peer. It is
pure data: OutcomeRecorder updates the counters and the in-flight retry
count, ReevaluationEngine updates the rate index, threshold, streak,
recovery flag and deadline.

Two kinds of counters are kept apart on purpose:
- in_flight_retry_count is per frame and drives the immediate fallback
  rate of a retransmission.
- ok_count / err_count / retry_count are per reevaluation window and
  drive the long-run rate adjustment.
"""

from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class PeerRateState:
    """
    Mutable AMRR state for one peer.

    Attributes:
        rate_index: Index into the peer's ascending supported-mode list
        in_flight_retry_count: Failed non-final attempts for the current frame
        ok_count: Acknowledged data frames in the current window
        err_count: Dropped data frames (final failures) in the current window
        retry_count: Failed non-final attempts in the current window
        success_streak: Consecutive "success with enough samples" periods
        success_threshold: Periods required before the next promotion
        recovering: The current rate was reached through a promotion
        next_reevaluation_deadline: Time at or after which the next decision runs
    """
    rate_index: int = 0
    in_flight_retry_count: int = 0
    ok_count: int = 0
    err_count: int = 0
    retry_count: int = 0
    success_streak: int = 0
    success_threshold: int = 1
    recovering: bool = False
    next_reevaluation_deadline: float = 0.0

    # Diagnostics (not consulted by the algorithm)
    reevaluation_count: int = 0
    rate_increases: int = 0
    rate_decreases: int = 0
    last_data_rate: Optional[int] = None

    @classmethod
    def fresh(cls, min_success_threshold: int, update_period: float,
              now: float) -> "PeerRateState":
        """State for a peer seen for the first time."""
        return cls(
            success_threshold=min_success_threshold,
            next_reevaluation_deadline=now + update_period,
        )

    @property
    def window_total(self) -> int:
        return self.ok_count + self.err_count + self.retry_count

    @property
    def window_errors(self) -> int:
        return self.err_count + self.retry_count

    def reset_window(self) -> None:
        """Clear the window counters together."""
        self.ok_count = 0
        self.err_count = 0
        self.retry_count = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rate_index": self.rate_index,
            "in_flight_retry_count": self.in_flight_retry_count,
            "ok_count": self.ok_count,
            "err_count": self.err_count,
            "retry_count": self.retry_count,
            "success_streak": self.success_streak,
            "success_threshold": self.success_threshold,
            "recovering": self.recovering,
            "next_reevaluation_deadline": self.next_reevaluation_deadline,
            "reevaluation_count": self.reevaluation_count,
            "rate_increases": self.rate_increases,
            "rate_decreases": self.rate_decreases,
            "last_data_rate": self.last_data_rate,
        }
