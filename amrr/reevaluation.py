"""
Reevaluation engine for amrr-rate-control

The periodic decision state machine at the heart of AMRR.

Once per update period a peer's window counters are classified:
- success: (err + retr) < ok * success_ratio
- failure: (err + retr) > ok * failure_ratio
- enough:  ok + err + retr > enough_samples

Decision:
1. Success with enough samples extends the success streak. When the
   streak reaches the success threshold the rate is promoted by one step
   and the peer enters recovery.
2. Failure demotes the rate by one step. If the peer was recovering (the
   failure came right after a promotion) the success threshold doubles,
   capped at max_success_threshold; otherwise it resets to
   min_success_threshold.
3. Anything else leaves the state alone.

Counters are reset only when the period had enough samples or the rate
changed, so sparse traffic keeps accumulating until it can be classified.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

from .config import Config, LOG_LEVELS
from .peer_state import PeerRateState


class ReevaluationOutcome:
    """Outcome labels for a reevaluation."""
    NOT_DUE = "not_due"
    INCREASE = "increase"
    DECREASE = "decrease"
    HOLD = "hold"              # Classified, but no rate change
    FLOOR = "floor"            # Failure at the lowest rate
    INSUFFICIENT = "insufficient"  # Neither success nor failure


@dataclass
class ReevaluationResult:
    """
    Record of one reevaluation.

    Attributes:
        ran: False if the peer's deadline had not elapsed
        outcome: One of ReevaluationOutcome
        old_index: Rate index before the decision
        new_index: Rate index after the decision
        ok / err / retr: Window counters the decision was based on
        counters_reset: Whether the window counters were cleared
    """
    ran: bool
    outcome: str
    old_index: int
    new_index: int
    ok: int = 0
    err: int = 0
    retr: int = 0
    counters_reset: bool = False

    @property
    def rate_changed(self) -> bool:
        return self.old_index != self.new_index

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ran": self.ran,
            "outcome": self.outcome,
            "old_index": self.old_index,
            "new_index": self.new_index,
            "ok": self.ok,
            "err": self.err,
            "retr": self.retr,
            "counters_reset": self.counters_reset,
        }


class ReevaluationEngine:
    """Applies the AMRR decision to a PeerRateState once per update period."""

    def __init__(self, config: Config, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger("amrr.reevaluation")

    def _log(self, message: str, level: str = 'debug') -> None:
        self.logger.log(LOG_LEVELS.get(level, logging.INFO), message)

    # =========================================================================
    # Classification
    # =========================================================================

    def is_enough(self, state: PeerRateState) -> bool:
        return state.window_total > self.config.enough_samples

    def is_success(self, state: PeerRateState) -> bool:
        return state.window_errors < state.ok_count * self.config.success_ratio

    def is_failure(self, state: PeerRateState) -> bool:
        return state.window_errors > state.ok_count * self.config.failure_ratio

    # =========================================================================
    # Decision
    # =========================================================================

    def maybe_reevaluate(self, peer: str, state: PeerRateState,
                         num_supported: int, now: float) -> ReevaluationResult:
        """
        Run the decision if the peer's deadline has elapsed.

        The deadline is moved to now + update_period before deciding, so a
        late call performs exactly one overdue reevaluation.
        """
        if now < state.next_reevaluation_deadline:
            return ReevaluationResult(
                ran=False,
                outcome=ReevaluationOutcome.NOT_DUE,
                old_index=state.rate_index,
                new_index=state.rate_index,
            )
        state.next_reevaluation_deadline = now + self.config.update_period
        return self.reevaluate(peer, state, num_supported)

    def reevaluate(self, peer: str, state: PeerRateState,
                   num_supported: int) -> ReevaluationResult:
        """Run the decision unconditionally (deadline handling is the caller's)."""
        self.check_bounds(peer, state, num_supported)

        cfg = self.config
        old_index = state.rate_index
        ok, err, retr = state.ok_count, state.err_count, state.retry_count
        enough = self.is_enough(state)
        max_index = num_supported - 1
        need_change = False
        state.reevaluation_count += 1

        if self.is_success(state) and enough:
            state.success_streak += 1
            self._log(
                f"{peer}: ++ success={state.success_streak} "
                f"successThreshold={state.success_threshold} tx_ok={ok} tx_err={err} "
                f"tx_retr={retr} rate={state.rate_index} n-supported={num_supported}"
            )
            if state.success_streak >= state.success_threshold and state.rate_index < max_index:
                state.recovering = True
                state.success_streak = 0
                state.rate_index += 1
                state.rate_increases += 1
                need_change = True
                outcome = ReevaluationOutcome.INCREASE
            else:
                state.recovering = False
                outcome = ReevaluationOutcome.HOLD
        elif self.is_failure(state):
            state.success_streak = 0
            self._log(
                f"{peer}: -- success={state.success_streak} "
                f"successThreshold={state.success_threshold} tx_ok={ok} tx_err={err} "
                f"tx_retr={retr} rate={state.rate_index} n-supported={num_supported}"
            )
            if state.rate_index > 0:
                if state.recovering:
                    state.success_threshold = min(
                        state.success_threshold * 2, cfg.max_success_threshold
                    )
                else:
                    state.success_threshold = cfg.min_success_threshold
                state.recovering = False
                state.rate_index -= 1
                state.rate_decreases += 1
                need_change = True
                outcome = ReevaluationOutcome.DECREASE
            else:
                state.recovering = False
                outcome = ReevaluationOutcome.FLOOR
        else:
            outcome = ReevaluationOutcome.INSUFFICIENT

        counters_reset = False
        if enough or need_change:
            self._log(f"{peer}: reset counters")
            state.reset_window()
            counters_reset = True

        if need_change:
            self._log(
                f"{peer}: rate index {old_index} -> {state.rate_index} "
                f"(threshold={state.success_threshold}, recovering={state.recovering})",
                level='info'
            )

        return ReevaluationResult(
            ran=True,
            outcome=outcome,
            old_index=old_index,
            new_index=state.rate_index,
            ok=ok,
            err=err,
            retr=retr,
            counters_reset=counters_reset,
        )

    # =========================================================================
    # Invariants
    # =========================================================================

    def check_bounds(self, peer: str, state: PeerRateState, num_supported: int) -> None:
        """
        Keep rate_index and success_threshold inside their bounds.

        The decision logic never leaves them out of range; this only
        matters if the peer's supported-mode list shrank underneath the
        state. With strict_invariants an AssertionError is raised instead.
        """
        cfg = self.config
        max_index = max(num_supported - 1, 0)
        problems = []
        if not 0 <= state.rate_index <= max_index:
            problems.append(f"rate_index={state.rate_index} not in [0, {max_index}]")
        if not cfg.min_success_threshold <= state.success_threshold <= cfg.max_success_threshold:
            problems.append(
                f"success_threshold={state.success_threshold} not in "
                f"[{cfg.min_success_threshold}, {cfg.max_success_threshold}]"
            )
        if not problems:
            return

        message = f"{peer}: invariant violated: {'; '.join(problems)}"
        if cfg.strict_invariants:
            raise AssertionError(message)

        self._log(message + " (clamped)", level='warn')
        state.rate_index = max(0, min(state.rate_index, max_index))
        state.success_threshold = max(
            cfg.min_success_threshold,
            min(state.success_threshold, cfg.max_success_threshold)
        )
